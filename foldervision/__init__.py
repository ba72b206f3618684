# foldervision/__init__.py
"""
FolderVision - concurrent folder inventory.
"""

__version__ = "1.0.0"

from .core import (
    CancelToken,
    ErrorKind,
    ErrorLog,
    ErrorRecord,
    ErrorSeverity,
    FolderNode,
    FolderVisionError,
    LaneState,
    LaneStatus,
    NoValidPathsError,
    ProgressSnapshot,
    ProgressTracker,
    ScanCancelledError,
    ScanEngine,
    ScanResult,
    ScanSettings,
    ScanTimeoutError,
    ThreadManager,
    load_settings,
    save_settings,
)
from .services import MemoryGuard, get_logger

__all__ = [
    "__version__",
    "CancelToken",
    "ErrorKind",
    "ErrorLog",
    "ErrorRecord",
    "ErrorSeverity",
    "FolderNode",
    "FolderVisionError",
    "LaneState",
    "LaneStatus",
    "MemoryGuard",
    "NoValidPathsError",
    "ProgressSnapshot",
    "ProgressTracker",
    "ScanCancelledError",
    "ScanEngine",
    "ScanResult",
    "ScanSettings",
    "ScanTimeoutError",
    "ThreadManager",
    "get_logger",
    "load_settings",
    "save_settings",
]
