import os
import threading
import time
from pathlib import Path

import pytest

from foldervision.core.scan_engine import ScanEngine


def make_tree(base: Path, layout: dict) -> Path:
    """
    Build a directory tree from a nested dict.

    Keys are names; a dict value is a subfolder, an int value is a number of
    files to create inside the parent folder under that name prefix.
    """
    base.mkdir(parents=True, exist_ok=True)
    for name, value in layout.items():
        if isinstance(value, dict):
            make_tree(base / name, value)
        else:
            for i in range(value):
                (base / f"{name}{i}.txt").write_text("x")
    return base


@pytest.fixture
def sample_tree(tmp_path):
    """
    root/
      A/  (3 files)
        C/  (2 files)
      B/  (empty)
    """
    return make_tree(tmp_path / "root", {
        "A": {"a": 3, "C": {"c": 2}},
        "B": {},
    })


class FakeClock:
    def __init__(self, start: float = 0.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


class CountingEngine(ScanEngine):
    """Engine whose blocking listing records how many run at once."""

    listing_delay = 0.005

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._count_lock = threading.Lock()
        self.concurrent = 0
        self.peak_concurrent = 0
        self.listed = []

    def _list_directory(self, path):
        with self._count_lock:
            self.concurrent += 1
            self.peak_concurrent = max(self.peak_concurrent, self.concurrent)
            self.listed.append(os.path.basename(path))
        try:
            time.sleep(self.listing_delay)
            return super()._list_directory(path)
        finally:
            with self._count_lock:
                self.concurrent -= 1
