# foldervision/core/timeout_policy.py
"""
Per-directory deadlines.

Remote (network-backed) paths get the longer network timeout, everything
else the local directory timeout. run_with_deadline races an operation
against its deadline and against the shared cancellation token; a
caller-raised cancel is never reported as a timeout.
"""

from __future__ import annotations

import asyncio
import os
import threading
import time
from typing import Awaitable, Callable, Dict, List, Optional, Tuple, TypeVar

import psutil

from foldervision.services.logger import get_logger

from .cancel import CancelToken
from .config import ScanSettings
from .errors import ScanCancelledError, ScanTimeoutError

log = get_logger(__name__)

T = TypeVar("T")

NETWORK_FSTYPES = {
    "nfs", "nfs4", "cifs", "smbfs", "smb3", "afpfs", "webdav", "davfs",
    "ncpfs", "9p", "fuse.sshfs", "sshfs", "fuse.rclone", "glusterfs",
    "ceph", "lustre", "fuse.s3fs",
}

# Mount table cache; mounts rarely change during a scan
_MOUNT_CACHE_TTL_S = 30.0
_mount_lock = threading.Lock()
_mount_cache: Tuple[float, List[Tuple[str, bool]]] = (0.0, [])


def _load_mounts() -> List[Tuple[str, bool]]:
    """(mountpoint, is_remote) pairs, longest mountpoint first."""
    mounts: List[Tuple[str, bool]] = []
    try:
        partitions = psutil.disk_partitions(all=True)
    except (OSError, RuntimeError) as e:
        log.debug("Could not read mount table: %s", e)
        return mounts
    for part in partitions:
        fstype = (part.fstype or "").lower()
        opts = {o.strip().lower() for o in (part.opts or "").split(",")}
        remote = fstype in NETWORK_FSTYPES or "remote" in opts
        mounts.append((os.path.normcase(part.mountpoint), remote))
    mounts.sort(key=lambda m: len(m[0]), reverse=True)
    return mounts


def _mounts() -> List[Tuple[str, bool]]:
    global _mount_cache
    with _mount_lock:
        loaded_at, mounts = _mount_cache
        now = time.monotonic()
        if not mounts or now - loaded_at > _MOUNT_CACHE_TTL_S:
            mounts = _load_mounts()
            _mount_cache = (now, mounts)
        return mounts


def is_unc_path(path: str) -> bool:
    return path.startswith("\\\\") or path.startswith("//")


def _fresh_mounts() -> Optional[List[Tuple[str, bool]]]:
    # Lock-free read: a hung reload may be holding _mount_lock
    loaded_at, mounts = _mount_cache
    if loaded_at and time.monotonic() - loaded_at <= _MOUNT_CACHE_TTL_S:
        return mounts
    return None


def is_network_path(path: str, mounts: Optional[List[Tuple[str, bool]]] = None) -> bool:
    """UNC paths, and paths whose volume is a network mount."""
    if is_unc_path(path):
        return True
    try:
        target = os.path.normcase(os.path.abspath(path))
    except (OSError, ValueError):
        return False
    for mountpoint, remote in (_mounts() if mounts is None else mounts):
        if target == mountpoint or target.startswith(mountpoint.rstrip(os.sep) + os.sep):
            return remote
    # If we can't determine, assume it's local
    return False


def deadline_for(path: str, settings: ScanSettings,
                 mounts: Optional[List[Tuple[str, bool]]] = None) -> float:
    """Timeout in seconds for listing one directory."""
    return settings.network_timeout_s if is_network_path(path, mounts) else settings.directory_timeout_s


async def resolve_deadline(path: str, settings: ScanSettings) -> float:
    """
    deadline_for without blocking the event loop.

    A stale mount table is reloaded in a worker thread under the local
    directory timeout. If the reload hangs, the last known table is kept
    for another cache period and used instead.
    """
    global _mount_cache
    if is_unc_path(path):
        return settings.network_timeout_s
    mounts = _fresh_mounts()
    if mounts is None:
        try:
            mounts = await run_with_deadline(lambda: asyncio.to_thread(_mounts),
                                             settings.directory_timeout_s)
        except ScanTimeoutError:
            stale = _mount_cache[1]
            _mount_cache = (time.monotonic(), stale)
            log.warning("Mount table unavailable after %gs, using the last known one",
                        settings.directory_timeout_s)
            mounts = stale
    return deadline_for(path, settings, mounts)


async def run_with_deadline(
    operation: Callable[[], Awaitable[T]],
    timeout: Optional[float],
    cancel: Optional[CancelToken] = None,
) -> T:
    """
    Run operation() and wait for it at most `timeout` seconds.

    Raises ScanTimeoutError when the deadline expires first and
    ScanCancelledError when `cancel` fires first. In both cases the
    operation is abandoned, not interrupted: a blocking call already running
    in a worker thread finishes on its own. Callers that must keep the
    result of an operation once it has started pass no `cancel` and check
    the token themselves before starting.
    """
    if cancel is not None and cancel.is_cancelled():
        raise ScanCancelledError(cancel.reason or "cancelled")

    task = asyncio.ensure_future(operation())
    waiters: Dict[asyncio.Future, str] = {task: "op"}
    cancel_waiter: Optional[asyncio.Future] = None
    if cancel is not None:
        cancel_waiter = asyncio.ensure_future(cancel.wait())
        waiters[cancel_waiter] = "cancel"

    try:
        done, _ = await asyncio.wait(set(waiters), timeout=timeout,
                                     return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        task.cancel()
        raise
    finally:
        if cancel_waiter is not None:
            cancel_waiter.cancel()

    if task in done:
        return task.result()

    task.cancel()
    # Retrieve the outcome so an abandoned failure is not reported as unhandled
    task.add_done_callback(_swallow_result)
    if cancel_waiter is not None and cancel_waiter in done:
        raise ScanCancelledError(cancel.reason or "cancelled")
    raise ScanTimeoutError(f"Operation timed out after {timeout:g} seconds", timeout=timeout)


def _swallow_result(fut: "asyncio.Future") -> None:
    if not fut.cancelled():
        fut.exception()


def arm_global_deadline(cancel: CancelToken, timeout: Optional[float]) -> Optional[asyncio.TimerHandle]:
    """
    Cancel `cancel` once `timeout` seconds have passed on the running loop.

    Returns the timer handle (cancel it when the scan ends early), or None
    when no global deadline is configured.
    """
    if timeout is None:
        return None
    loop = asyncio.get_running_loop()

    def expire() -> None:
        if cancel.cancel("global deadline"):
            log.warning("Global deadline of %gs expired, cancelling scan", timeout)

    return loop.call_later(timeout, expire)
