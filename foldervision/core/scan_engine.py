# foldervision/core/scan_engine.py
"""
Scan Engine: walks one root path to completion.

Each directory is listed once in a worker thread under its own deadline;
files are counted, not modeled. Subdirectories are visited concurrently,
bounded per parent by max_threads, and in sequential batches with a smaller
ceiling when a directory is very wide. Progress is estimated progressively:
the denominator starts at one (the root) and grows by every freshly
discovered subdirectory.
"""

from __future__ import annotations

import asyncio
import errno
import os
import sys
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, List, Optional

from foldervision.services.logger import get_logger
from foldervision.services.memory_guard import MemoryGuard

from .cancel import CancelToken
from .config import BATCHES_PER_MEMORY_CHECK, LARGE_DIRECTORY_THRESHOLD, ScanSettings
from .errors import ErrorKind, ErrorLog, ScanCancelledError, classify_exception
from .fs_policy import should_count_file, should_skip_directory
from .models import FolderNode, ScanResult
from .progress import progressive_percent
from .timeout_policy import arm_global_deadline, resolve_deadline, run_with_deadline

log = get_logger(__name__)

_WINDOWS = sys.platform == "win32"


@dataclass
class DirectoryListing:
    file_count: int = 0
    subdirs: List[str] = field(default_factory=list)
    last_modified: Optional[datetime] = None


@dataclass(frozen=True)
class WalkProgress:
    """One progress tick, emitted right after a directory has been listed."""
    current_path: str
    processed: int
    estimated: int
    percent: float


ProgressCallback = Callable[[WalkProgress], None]


class ScanEngine:
    """
    Recursive, bounded-concurrency walker for a single root.

    One engine serves one lane: its counters and listing slots are not
    shared between walks running at the same time.
    """

    def __init__(
        self,
        settings: Optional[ScanSettings] = None,
        cancel: Optional[CancelToken] = None,
        memory_guard: Optional[MemoryGuard] = None,
        errors: Optional[ErrorLog] = None,
        progress_callback: Optional[ProgressCallback] = None,
        lane_id: Optional[int] = None,
    ):
        self.settings = settings if settings is not None else ScanSettings.default()
        self.cancel = cancel if cancel is not None else CancelToken()
        self.memory_guard = memory_guard if memory_guard is not None else MemoryGuard.from_settings(self.settings)
        self.errors = errors if errors is not None else ErrorLog()
        self.progress_callback = progress_callback
        self.lane_id = lane_id

        self._processed = 0
        self._estimated = 1
        self._memory_pressure = False
        self._listing_slots: Optional[asyncio.Semaphore] = None

        # Instrumentation: filesystem listings in flight for this lane
        self.active_listings = 0
        self.peak_listings = 0

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    @property
    def processed(self) -> int:
        return self._processed

    @property
    def estimated(self) -> int:
        return self._estimated

    @property
    def percent(self) -> float:
        return progressive_percent(self._processed, self._estimated)

    async def walk_async(self, root: str) -> Optional[FolderNode]:
        """
        Walk `root` and return its node, or None if cancelled before the
        root was visited.

        Raises FileNotFoundError if the root does not exist when the walk
        starts, and ScanTimeoutError if checking that takes longer than the
        root's directory deadline. Every later failure is recorded and the
        walk continues.
        """
        root = os.path.abspath(root)
        timeout = await resolve_deadline(root, self.settings)
        if not await run_with_deadline(lambda: asyncio.to_thread(os.path.isdir, root), timeout):
            raise FileNotFoundError(errno.ENOENT, "Root path does not exist", root)

        self._processed = 0
        self._estimated = 1
        self._memory_pressure = False
        self._listing_slots = asyncio.Semaphore(self.settings.max_threads)

        log.info("Walking %s", root)
        node = await self._visit(root, depth=0)
        log.info("Finished %s: %d directories listed", root, self._processed)
        return node

    def walk(self, root: str) -> Optional[FolderNode]:
        """Synchronous wrapper around walk_async."""
        return asyncio.run(self.walk_async(root))

    async def scan_folder_async(self, root: str) -> ScanResult:
        """Scan a single folder into a one-root ScanResult, honoring the global deadline."""
        result = ScanResult(errors=self.errors)
        timer = arm_global_deadline(self.cancel, self.settings.global_timeout_s)
        try:
            node = await self.walk_async(root)
            result.add_root_folder(node)
            if node is not None:
                result.add_scanned_path(node.path)
                self.finalize_progress()
        except OSError as e:
            self.errors.record_exception(root, e, self.lane_id)
        finally:
            if timer is not None:
                timer.cancel()
        result.cancelled = self.cancel.is_cancelled()
        result.finish()
        return result

    def scan_folder(self, root: str) -> ScanResult:
        return asyncio.run(self.scan_folder_async(root))

    def finalize_progress(self) -> None:
        """Emit the closing tick once the walk has finished normally."""
        self._processed = self._estimated
        if self.progress_callback is not None:
            self.progress_callback(WalkProgress("", self._processed, self._estimated, 100.0))

    # ------------------------------------------------------------------
    # Recursion
    # ------------------------------------------------------------------

    async def _visit(self, path: str, depth: int) -> Optional[FolderNode]:
        if self.cancel.is_cancelled():
            return None

        settings = self.settings
        node = FolderNode(path)
        if depth >= settings.max_depth:
            node.mark_truncated("depth limit")
            self.errors.info(path, f"Maximum depth reached ({settings.max_depth})",
                             ErrorKind.DEPTH_LIMIT, self.lane_id)
            self._tick(path, 0)
            return node

        try:
            listing = await self._list(path)
        except ScanCancelledError:
            node.mark_truncated("cancelled")
            self.errors.info(path, "Listing not started: scan cancelled", ErrorKind.CANCELLED, self.lane_id)
            return node
        except Exception as e:
            node.mark_truncated(classify_exception(e).value)
            self.errors.record_exception(path, e, self.lane_id)
            self._tick(path, 0)
            return node

        node.file_count = listing.file_count
        node.last_modified = listing.last_modified
        self._tick(path, len(listing.subdirs))

        if self._under_memory_pressure(path):
            node.mark_truncated("memory")
            return node

        if listing.subdirs:
            await self._visit_children(node, listing.subdirs, depth + 1)
            # Children only go missing when cancellation stopped their visit
            if len(node.children) < len(listing.subdirs):
                node.mark_truncated("cancelled")
        return node

    async def _visit_children(self, parent: FolderNode, subdirs: List[str], depth: int) -> None:
        settings = self.settings
        if settings.enable_adaptive_batching and len(subdirs) > LARGE_DIRECTORY_THRESHOLD:
            await self._visit_in_batches(parent, subdirs, depth)
        else:
            await self._visit_wave(parent, subdirs, depth, asyncio.Semaphore(settings.max_threads))

    async def _visit_wave(
        self,
        parent: FolderNode,
        subdirs: List[str],
        depth: int,
        slots: asyncio.Semaphore,
    ) -> None:
        async def visit_one(path: str) -> None:
            async with slots:
                child = await self._visit(path, depth)
            if child is not None:
                parent.add_child(child)

        await asyncio.gather(*(visit_one(path) for path in subdirs))

    async def _visit_in_batches(self, parent: FolderNode, subdirs: List[str], depth: int) -> None:
        settings = self.settings
        size = settings.batch_size
        batches = [subdirs[i:i + size] for i in range(0, len(subdirs), size)]
        slots = asyncio.Semaphore(settings.batch_concurrency)
        log.debug("Large directory %s: %d subdirectories in %d batches",
                  parent.path, len(subdirs), len(batches))

        for index, batch in enumerate(batches, start=1):
            if self.cancel.is_cancelled():
                parent.mark_truncated("cancelled")
                return
            await self._visit_wave(parent, batch, depth, slots)
            if index % BATCHES_PER_MEMORY_CHECK == 0:
                self.memory_guard.reclaim_if_needed()

    # ------------------------------------------------------------------
    # Filesystem
    # ------------------------------------------------------------------

    async def _list(self, path: str) -> DirectoryListing:
        timeout = await resolve_deadline(path, self.settings)
        async with self._listing_slots:
            # Cancellation gates the start only; a started listing runs to
            # completion or to its deadline and its result is kept
            if self.cancel.is_cancelled():
                raise ScanCancelledError(self.cancel.reason or "cancelled")
            self.active_listings += 1
            self.peak_listings = max(self.peak_listings, self.active_listings)
            try:
                # A timed-out listing gives its slot back while its thread finishes
                return await run_with_deadline(
                    lambda: asyncio.to_thread(self._list_directory, path),
                    timeout,
                )
            finally:
                self.active_listings -= 1

    def _list_directory(self, path: str) -> DirectoryListing:
        """
        Blocking: count files and collect the subdirectories worth visiting.

        Skip rules are applied here, in the worker thread, because the
        volume-root check behind them touches the filesystem.
        """
        settings = self.settings
        listing = DirectoryListing(last_modified=datetime.fromtimestamp(os.stat(path).st_mtime))
        with os.scandir(path) as it:
            for entry in it:
                try:
                    if entry.is_dir(follow_symlinks=False):
                        st = entry.stat(follow_symlinks=False) if _WINDOWS else None
                        reason = should_skip_directory(entry.path, skip_hidden=settings.skip_hidden,
                                                       skip_system=settings.skip_system, st=st)
                        if reason:
                            log.debug("Skipping %s directory: %s", reason, entry.path)
                        else:
                            listing.subdirs.append(entry.path)
                    elif entry.is_symlink() and entry.is_dir():
                        # symlinked directories are not followed
                        continue
                    else:
                        st = entry.stat(follow_symlinks=False) if _WINDOWS else None
                        if should_count_file(entry.name, st, skip_hidden=settings.skip_hidden):
                            listing.file_count += 1
                except OSError as e:
                    log.debug("Unreadable entry %s: %s", entry.path, e)
        return listing

    # ------------------------------------------------------------------
    # Progress / memory
    # ------------------------------------------------------------------

    def _tick(self, path: str, discovered: int) -> None:
        self._processed += 1
        self._estimated += discovered
        if self.progress_callback is not None:
            self.progress_callback(WalkProgress(path, self._processed, self._estimated, self.percent))

    def _under_memory_pressure(self, path: str) -> bool:
        guard = self.memory_guard
        if not guard.should_check(self._processed, self.settings.memory_check_interval):
            return self._memory_pressure

        over = False
        if guard.is_over_limit():
            guard.reclaim_if_needed()
            over = guard.is_over_limit()

        if over and not self._memory_pressure:
            self.errors.error(path, f"Memory limit exceeded, not descending further ({guard.memory_info()})",
                              ErrorKind.RESOURCE, self.lane_id)
        elif self._memory_pressure and not over:
            log.info("Memory back under the limit: %s", guard.memory_info())
        self._memory_pressure = over
        return over
