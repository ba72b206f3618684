# foldervision/__main__.py
import sys

from foldervision.cli import main

if __name__ == "__main__":
    sys.exit(main())
