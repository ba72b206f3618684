# foldervision/core/thread_manager.py
"""
Thread Manager: fans root paths out to one Scan Engine lane each.

Lanes run under a global concurrency cap and share one cancellation token,
one error log and one Progress Tracker. A lane that fails is recorded as
failed without touching its siblings. Results are merged in input order.
"""

from __future__ import annotations

import asyncio
import os
from typing import Iterable, List, Optional, Tuple, Type

from foldervision.services.logger import get_logger, lane_context
from foldervision.services.memory_guard import MemoryGuard

from .cancel import CancelToken
from .config import ScanSettings
from .errors import ErrorKind, ErrorLog, NoValidPathsError, ScanTimeoutError
from .models import FolderNode, ScanResult
from .progress import LaneState, LaneStatus, ProgressTracker
from .scan_engine import ScanEngine, WalkProgress
from .timeout_policy import arm_global_deadline, resolve_deadline, run_with_deadline

log = get_logger(__name__)


class ThreadManager:
    """Runs several lanes concurrently and merges their trees."""

    engine_class: Type[ScanEngine] = ScanEngine

    def __init__(self, max_concurrency: int = 0):
        """
        Args:
            max_concurrency: Global lane cap; 0 uses settings.max_concurrent_lanes
        """
        self.max_concurrency = max_concurrency
        self._cancel: Optional[CancelToken] = None
        self._tracker: Optional[ProgressTracker] = None

    # ------------------------------------------------------------------
    # Control / status
    # ------------------------------------------------------------------

    def cancel_all(self, reason: str = "cancelled by caller") -> bool:
        """Cooperatively cancel the running scan. Safe from any thread."""
        token = self._cancel
        if token is None:
            return False
        return token.cancel(reason)

    @property
    def active_lanes(self) -> int:
        return sum(1 for s in self.lane_statuses() if s.state is LaneState.RUNNING)

    def lane_statuses(self) -> List[LaneStatus]:
        tracker = self._tracker
        return tracker.lane_statuses() if tracker is not None else []

    # ------------------------------------------------------------------
    # Scanning
    # ------------------------------------------------------------------

    def scan_all(
        self,
        paths: Iterable[str],
        settings: Optional[ScanSettings] = None,
        tracker: Optional[ProgressTracker] = None,
        cancel: Optional[CancelToken] = None,
    ) -> ScanResult:
        """Synchronous wrapper around scan_all_async."""
        return asyncio.run(self.scan_all_async(paths, settings, tracker, cancel))

    async def scan_all_async(
        self,
        paths: Iterable[str],
        settings: Optional[ScanSettings] = None,
        tracker: Optional[ProgressTracker] = None,
        cancel: Optional[CancelToken] = None,
    ) -> ScanResult:
        """
        Scan every existing directory in `paths`, one lane per path.

        Raises NoValidPathsError if no path names an existing directory, and
        ValueError for invalid settings. Any other failure ends up in the
        returned ScanResult's error log.
        """
        settings = settings if settings is not None else ScanSettings.default()
        problems = settings.validate()
        if problems:
            raise ValueError(f"Invalid settings: {'; '.join(problems)}")

        tracker = tracker if tracker is not None else ProgressTracker()
        cancel = cancel if cancel is not None else CancelToken()
        self._tracker = tracker
        self._cancel = cancel

        result = ScanResult()
        roots = await self._validate_paths(paths, settings, result.errors)
        if not roots:
            raise NoValidPathsError("No valid directories to scan")

        tracker.initialize(len(roots), roots)
        limit = self.max_concurrency or settings.max_concurrent_lanes
        lane_slots = asyncio.Semaphore(limit)
        # Memory is process-wide, so all lanes share one guard
        memory_guard = MemoryGuard.from_settings(settings)
        log.info("Scanning %d path(s) with up to %d concurrent lanes", len(roots), limit)

        timer = arm_global_deadline(cancel, settings.global_timeout_s)
        try:
            nodes = await asyncio.gather(*(
                self._run_lane(lane_id, root, settings, tracker, cancel,
                               lane_slots, memory_guard, result.errors)
                for lane_id, root in enumerate(roots)
            ))
        finally:
            if timer is not None:
                timer.cancel()

        for root, node in zip(roots, nodes):
            result.add_root_folder(node)
            if node is not None:
                result.add_scanned_path(root)
        result.cancelled = cancel.is_cancelled()
        result.finish()
        log.info("%s (%d error records)", result, len(result.errors))
        return result

    async def _run_lane(
        self,
        lane_id: int,
        root: str,
        settings: ScanSettings,
        tracker: ProgressTracker,
        cancel: CancelToken,
        lane_slots: asyncio.Semaphore,
        memory_guard: MemoryGuard,
        errors: ErrorLog,
    ) -> Optional[FolderNode]:
        with lane_context(lane_id):
            async with lane_slots:
                if cancel.is_cancelled():
                    tracker.cancel_lane(lane_id)
                    errors.info(root, "Lane not started: scan cancelled", ErrorKind.CANCELLED, lane_id)
                    return None

                tracker.start_lane(lane_id)

                def report(tick: WalkProgress) -> None:
                    tracker.update_lane(lane_id, tick.percent, tick.current_path,
                                        tick.processed, tick.estimated)

                engine = self.engine_class(
                    settings=settings,
                    cancel=cancel,
                    memory_guard=memory_guard,
                    errors=errors,
                    progress_callback=report,
                    lane_id=lane_id,
                )
                try:
                    node = await engine.walk_async(root)
                except Exception as e:
                    record = errors.record_exception(root, e, lane_id)
                    tracker.fail_lane(lane_id, record.message)
                    log.error("Lane failed: %s", record.message)
                    return None

                if cancel.is_cancelled():
                    tracker.cancel_lane(lane_id)
                    log.info("Lane cancelled (%s)", cancel.reason)
                else:
                    engine.finalize_progress()
                    tracker.complete_lane(lane_id)
                return node

    @staticmethod
    async def _validate_paths(paths: Iterable[str], settings: ScanSettings, errors: ErrorLog) -> List[str]:
        """
        Absolute, de-duplicated existing directories, in input order.

        Existence is checked in worker threads under each path's directory
        deadline; a path whose check times out is recorded and left out.
        """
        candidates: List[Tuple[str, str]] = []
        seen = set()
        for raw in paths:
            if not raw:
                continue
            path = os.path.abspath(os.path.expanduser(str(raw)))
            key = os.path.normcase(path)
            if key in seen:
                continue
            seen.add(key)
            candidates.append((str(raw), path))

        async def exists(path: str) -> bool:
            timeout = await resolve_deadline(path, settings)
            return await run_with_deadline(lambda: asyncio.to_thread(os.path.isdir, path), timeout)

        checks = await asyncio.gather(*(exists(path) for _, path in candidates), return_exceptions=True)
        roots: List[str] = []
        for (raw, path), found in zip(candidates, checks):
            if isinstance(found, ScanTimeoutError):
                errors.record_exception(raw, found)
            elif isinstance(found, BaseException):
                raise found
            elif not found:
                errors.error(raw, "Path does not exist or is not a directory", ErrorKind.NOT_FOUND)
            else:
                roots.append(path)
        return roots
