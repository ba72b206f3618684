# foldervision/core/__init__.py
"""
Scan core: models, settings, policies, engine, lanes and progress.
"""

from .cancel import CancelToken
from .config import ScanSettings, load_settings, save_settings
from .errors import (
    ErrorKind,
    ErrorLog,
    ErrorRecord,
    ErrorSeverity,
    FolderVisionError,
    NoValidPathsError,
    ScanCancelledError,
    ScanTimeoutError,
)
from .models import FolderNode, ScanResult
from .progress import LaneState, LaneStatus, ProgressSnapshot, ProgressTracker
from .scan_engine import ScanEngine, WalkProgress
from .thread_manager import ThreadManager

__all__ = [
    "CancelToken",
    "ScanSettings",
    "load_settings",
    "save_settings",
    "ErrorKind",
    "ErrorLog",
    "ErrorRecord",
    "ErrorSeverity",
    "FolderVisionError",
    "NoValidPathsError",
    "ScanCancelledError",
    "ScanTimeoutError",
    "FolderNode",
    "ScanResult",
    "LaneState",
    "LaneStatus",
    "ProgressSnapshot",
    "ProgressTracker",
    "ScanEngine",
    "WalkProgress",
    "ThreadManager",
]
