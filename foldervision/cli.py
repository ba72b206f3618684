#!/usr/bin/env python3
"""
FolderVision - command line entry point.

The scan runs in a background thread; the main thread drains the progress
tracker's snapshot queue into a rich progress bar and turns Ctrl+C into a
cooperative cancel, so a partial result is still printed.
"""

import argparse
import json
import logging
import queue
import sys
import threading
from typing import List, Optional

import yaml
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.progress import BarColumn, Progress, SpinnerColumn, TaskProgressColumn, TextColumn
from rich.table import Table

from foldervision import __version__
from foldervision.core.cancel import CancelToken
from foldervision.core.config import ScanSettings, load_settings
from foldervision.core.errors import ErrorSeverity, NoValidPathsError
from foldervision.core.models import ScanResult
from foldervision.core.progress import ProgressSnapshot, ProgressTracker
from foldervision.core.thread_manager import ThreadManager
from foldervision.services.logger import configure, flush_all_handlers, get_current_log_file

EXIT_OK = 0
EXIT_ERRORS = 1
EXIT_USAGE = 2
EXIT_INTERRUPTED = 130

INTERRUPT_REASON = "interrupted by user"

# Above ERROR: nothing the scan logs reaches the stderr handler
QUIET_CONSOLE_LEVEL = logging.CRITICAL + 1

_LARGE_FIELDS = ("max_threads", "max_depth", "max_memory_mb")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="foldervision",
        description="FolderVision - concurrent folder inventory",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s ~/Documents                     # Scan one folder
  %(prog)s /data /mnt/share --large        # Several roots, large-folder preset
  %(prog)s ~/src --max-depth 3 --json      # Shallow scan, JSON output
        """
    )
    parser.add_argument("paths", nargs="+", metavar="PATH", help="Folder(s) to scan")
    parser.add_argument("--config", metavar="FILE", help="Settings file (.json, .yaml or .yml)")
    parser.add_argument("--max-threads", type=int, metavar="N",
                        help="Concurrent subfolder visits per lane")
    parser.add_argument("--max-depth", type=int, metavar="N", help="Maximum recursion depth")
    parser.add_argument("--timeout", type=float, metavar="S",
                        help="Global wall-clock deadline in seconds")
    parser.add_argument("--large", action="store_true",
                        help="Large-folder preset (8 threads, depth 100, 1024 MB) with a log file")
    parser.add_argument("--include-hidden", action="store_true", help="Do not skip hidden folders and files")
    parser.add_argument("--include-system", action="store_true", help="Do not skip system folders")
    parser.add_argument("--json", action="store_true", help="Print the result as JSON")
    parser.add_argument("-v", "--verbose", action="store_true",
                        help="Debug logging on stderr (replaces the progress bar)")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def settings_from_args(args: argparse.Namespace) -> ScanSettings:
    """Settings file (or defaults), then the preset, then explicit flags."""
    settings = load_settings(args.config) if args.config else ScanSettings.default()
    if args.large:
        large = ScanSettings.for_large_folders()
        settings = settings.replace(**{name: getattr(large, name) for name in _LARGE_FIELDS})

    overrides = {}
    if args.max_threads is not None:
        overrides["max_threads"] = args.max_threads
    if args.max_depth is not None:
        overrides["max_depth"] = args.max_depth
    if args.timeout is not None:
        overrides["global_timeout_s"] = args.timeout
    if args.include_hidden:
        overrides["skip_hidden"] = False
    if args.include_system:
        overrides["skip_system"] = False
    if overrides:
        settings = settings.replace(**overrides)

    problems = settings.validate()
    if problems:
        raise ValueError("; ".join(problems))
    return settings


def _describe(snap: ProgressSnapshot) -> str:
    eta = snap.estimated_remaining_s
    eta_text = "--" if eta is None else f"{eta:.0f}s"
    current = next((l.current_path for l in snap.lanes if l.current_path and not l.state.is_terminal), "")
    if len(current) > 50:
        current = "..." + current[-47:]
    return (f"{snap.completed_lanes}/{snap.total_lanes} done, {snap.active_lanes} active, "
            f"ETA {eta_text} [dim]{escape(current)}[/]")


def run_scan(
    paths: List[str],
    settings: ScanSettings,
    cancel: CancelToken,
    console: Optional[Console] = None,
) -> ScanResult:
    """
    Run the scan in a worker thread, rendering progress on `console`.

    KeyboardInterrupt cancels cooperatively; the partial result is
    returned marked as cancelled.
    """
    manager = ThreadManager()
    tracker = ProgressTracker()
    updates = tracker.subscribe(maxsize=16)
    outcome = {}

    def work() -> None:
        try:
            outcome["result"] = manager.scan_all(paths, settings, tracker, cancel)
        except Exception as e:
            outcome["error"] = e

    worker = threading.Thread(target=work, name="foldervision-scan", daemon=True)
    worker.start()
    try:
        if console is None:
            while worker.is_alive():
                worker.join(timeout=0.2)
        else:
            with Progress(
                SpinnerColumn(),
                BarColumn(),
                TaskProgressColumn(),
                TextColumn("[progress.description]{task.description}"),
                console=console,
                transient=True,
            ) as progress:
                task = progress.add_task("Starting...", total=100)
                while worker.is_alive():
                    try:
                        snap = updates.get(timeout=0.2)
                    except queue.Empty:
                        continue
                    progress.update(task, completed=snap.overall_percent, description=_describe(snap))
    except KeyboardInterrupt:
        cancel.cancel(INTERRUPT_REASON)
        worker.join()
        outcome.setdefault("interrupted", True)
    finally:
        tracker.unsubscribe(updates)

    if "error" in outcome:
        raise outcome["error"]
    result = outcome["result"]
    if outcome.get("interrupted"):
        result.cancelled = True
    return result


def render_result(result: ScanResult, console: Console, verbose: bool = False) -> None:
    table = Table(title="Scanned Folders", show_header=True, header_style="bold magenta")
    table.add_column("#", style="dim", width=4)
    table.add_column("Folder", style="cyan")
    table.add_column("Subfolders", justify="right")
    table.add_column("Files", justify="right", style="bold")
    table.add_column("Last modified", justify="right", style="green")
    for idx, root in enumerate(result.root_folders, 1):
        modified = root.last_modified.strftime("%Y-%m-%d %H:%M") if root.last_modified else "-"
        table.add_row(str(idx), escape(root.path), f"{root.total_subfolder_count:,}",
                      f"{root.total_file_count:,}", modified)
    console.print(table)

    status = "[bold yellow]Cancelled (partial result)[/]" if result.cancelled else "[bold green]Completed[/]"
    summary = (f"[bold cyan]Folders:[/] {result.total_folders:,}\n"
               f"[bold cyan]Files:[/] {result.total_files:,}\n"
               f"[bold cyan]Duration:[/] {result.duration.total_seconds():.1f}s\n"
               f"[bold cyan]Status:[/] {status}")
    console.print(Panel(summary, title="[bold]Summary[/]", border_style="cyan"))

    records = result.errors.records()
    shown = [r for r in records if verbose or r.severity is not ErrorSeverity.INFO]
    if shown:
        console.print(f"\n[bold]Issues ({len(shown)}):[/]")
        for record in shown:
            style = {"error": "red", "warning": "yellow"}.get(record.severity.value, "dim")
            console.print(f"  [{style}]{escape(record.message)}[/]: {escape(record.path)}", highlight=False)
    hidden = len(records) - len(shown)
    if hidden:
        console.print(f"[dim]{hidden} informational record(s) hidden; use -v to show them[/]")


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    # Records are printed by render_result, not by the stderr handler
    configure(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        log_to_file=args.large,
        console_level=logging.DEBUG if args.verbose else QUIET_CONSOLE_LEVEL,
    )
    console = Console()
    err_console = Console(stderr=True)

    try:
        settings = settings_from_args(args)
    except (OSError, ValueError, yaml.YAMLError) as e:
        err_console.print(f"[bold red]ERROR:[/] invalid settings: {e}", highlight=False)
        return EXIT_USAGE

    cancel = CancelToken()
    try:
        live = None if args.json or args.verbose else err_console
        result = run_scan(args.paths, settings, cancel, console=live)
    except NoValidPathsError as e:
        err_console.print(f"[bold red]ERROR:[/] {e}: {', '.join(args.paths)}", highlight=False)
        return EXIT_USAGE
    finally:
        flush_all_handlers()

    if args.json:
        print(json.dumps(result.to_dict(), indent=2))
    else:
        render_result(result, console, verbose=args.verbose)
        log_file = get_current_log_file()
        if log_file is not None:
            console.print(f"[dim]Log file: {escape(str(log_file))}[/]")

    if result.cancelled and cancel.reason == INTERRUPT_REASON:
        return EXIT_INTERRUPTED
    return EXIT_ERRORS if result.errors.has_errors else EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
