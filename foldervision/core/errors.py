# foldervision/core/errors.py
"""
Error taxonomy and the shared, append-only error log.

Per-directory failures never abort a scan: they are classified, recorded
here, and the walk carries on elsewhere. The log is written concurrently by
every lane and read once the scan is over.
"""

from __future__ import annotations

import errno
import logging
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, List, Optional

from foldervision.services.logger import get_logger

log = get_logger(__name__)


# ----------------------------
# Exceptions
# ----------------------------

class FolderVisionError(Exception):
    """Base class for all FolderVision errors."""


class NoValidPathsError(FolderVisionError, ValueError):
    """Raised when a scan is requested with no existing directory to scan."""


class ScanTimeoutError(FolderVisionError, TimeoutError):
    """Raised when an operation exceeds its deadline."""

    def __init__(self, message: str = "Operation timed out", timeout: Optional[float] = None):
        super().__init__(message)
        self.timeout = timeout


class ScanCancelledError(FolderVisionError):
    """Raised when the caller cancelled the scan."""


# ----------------------------
# Records
# ----------------------------

class ErrorSeverity(Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"

    @property
    def log_level(self) -> int:
        return {
            ErrorSeverity.INFO: logging.INFO,
            ErrorSeverity.WARNING: logging.WARNING,
            ErrorSeverity.ERROR: logging.ERROR,
        }[self]


class ErrorKind(Enum):
    ACCESS = "access"              # permission denied, security restriction
    NOT_FOUND = "not_found"        # vanished between listing and visiting
    PATH_INVALID = "path_invalid"  # too long or malformed
    TIMEOUT = "timeout"
    RESOURCE = "resource"          # memory ceiling persistently exceeded
    UNEXPECTED = "unexpected"
    DEPTH_LIMIT = "depth_limit"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class ErrorRecord:
    path: str
    message: str
    severity: ErrorSeverity = ErrorSeverity.ERROR
    kind: ErrorKind = ErrorKind.UNEXPECTED
    lane_id: Optional[int] = None
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, object]:
        return {
            "path": self.path,
            "message": self.message,
            "severity": self.severity.value,
            "kind": self.kind.value,
            "lane_id": self.lane_id,
            "timestamp": self.timestamp,
        }

    def __str__(self) -> str:
        return f"[{self.severity.value}] {self.message}: {self.path}"


def classify_exception(exc: BaseException) -> ErrorKind:
    """Map an exception raised while visiting a directory to an ErrorKind."""
    if isinstance(exc, ScanTimeoutError):
        return ErrorKind.TIMEOUT
    if isinstance(exc, ScanCancelledError):
        return ErrorKind.CANCELLED
    if isinstance(exc, MemoryError):
        return ErrorKind.RESOURCE
    if isinstance(exc, PermissionError):
        return ErrorKind.ACCESS
    if isinstance(exc, (FileNotFoundError, NotADirectoryError)):
        return ErrorKind.NOT_FOUND
    if isinstance(exc, OSError):
        if exc.errno == errno.ENAMETOOLONG:
            return ErrorKind.PATH_INVALID
        if exc.errno in (errno.EACCES, errno.EPERM):
            return ErrorKind.ACCESS
        if exc.errno in (errno.ENOENT, errno.ENOTDIR):
            return ErrorKind.NOT_FOUND
        return ErrorKind.UNEXPECTED
    if isinstance(exc, (ValueError, UnicodeError)):
        # embedded null byte, undecodable name
        return ErrorKind.PATH_INVALID
    return ErrorKind.UNEXPECTED


_KIND_MESSAGES = {
    ErrorKind.ACCESS: "Access denied",
    ErrorKind.NOT_FOUND: "Directory not found",
    ErrorKind.PATH_INVALID: "Invalid path",
    ErrorKind.TIMEOUT: "Timed out",
    ErrorKind.RESOURCE: "Memory limit exceeded",
    ErrorKind.UNEXPECTED: "Unexpected error",
    ErrorKind.DEPTH_LIMIT: "Maximum depth reached",
    ErrorKind.CANCELLED: "Scan cancelled",
}


def describe_exception(exc: BaseException, kind: Optional[ErrorKind] = None) -> str:
    kind = kind or classify_exception(exc)
    detail = getattr(exc, "strerror", None) or str(exc)
    prefix = _KIND_MESSAGES[kind]
    return f"{prefix} ({detail})" if detail else prefix


# ----------------------------
# Log
# ----------------------------

class ErrorLog:
    """
    Append-only error list, safe for concurrent append from every lane.

    Each appended record is also emitted on the package logger at the level
    matching its severity.
    """

    def __init__(self, records: Optional[Iterable[ErrorRecord]] = None):
        self._lock = threading.Lock()
        self._records: List[ErrorRecord] = list(records or [])

    def add(self, record: ErrorRecord) -> ErrorRecord:
        with self._lock:
            self._records.append(record)
        log.log(record.severity.log_level, "%s: %s", record.message, record.path)
        return record

    def record(
        self,
        path: str,
        message: str,
        severity: ErrorSeverity = ErrorSeverity.ERROR,
        kind: ErrorKind = ErrorKind.UNEXPECTED,
        lane_id: Optional[int] = None,
    ) -> ErrorRecord:
        return self.add(ErrorRecord(path=str(path), message=message, severity=severity,
                                    kind=kind, lane_id=lane_id))

    def record_exception(self, path: str, exc: BaseException, lane_id: Optional[int] = None,
                         severity: ErrorSeverity = ErrorSeverity.ERROR) -> ErrorRecord:
        kind = classify_exception(exc)
        return self.record(path, describe_exception(exc, kind), severity, kind, lane_id)

    def info(self, path: str, message: str, kind: ErrorKind = ErrorKind.UNEXPECTED,
             lane_id: Optional[int] = None) -> ErrorRecord:
        return self.record(path, message, ErrorSeverity.INFO, kind, lane_id)

    def warning(self, path: str, message: str, kind: ErrorKind = ErrorKind.UNEXPECTED,
                lane_id: Optional[int] = None) -> ErrorRecord:
        return self.record(path, message, ErrorSeverity.WARNING, kind, lane_id)

    def error(self, path: str, message: str, kind: ErrorKind = ErrorKind.UNEXPECTED,
              lane_id: Optional[int] = None) -> ErrorRecord:
        return self.record(path, message, ErrorSeverity.ERROR, kind, lane_id)

    def extend(self, records: Iterable[ErrorRecord]) -> None:
        records = list(records)
        with self._lock:
            self._records.extend(records)

    def records(self) -> List[ErrorRecord]:
        with self._lock:
            return list(self._records)

    def errors(self) -> List[ErrorRecord]:
        return [r for r in self.records() if r.severity is ErrorSeverity.ERROR]

    def warnings(self) -> List[ErrorRecord]:
        return [r for r in self.records() if r.severity is ErrorSeverity.WARNING]

    def by_kind(self, kind: ErrorKind) -> List[ErrorRecord]:
        return [r for r in self.records() if r.kind is kind]

    @property
    def has_errors(self) -> bool:
        return bool(self.errors())

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def __iter__(self):
        return iter(self.records())

    def __bool__(self) -> bool:
        return len(self) > 0


__all__ = [
    "FolderVisionError",
    "NoValidPathsError",
    "ScanTimeoutError",
    "ScanCancelledError",
    "ErrorSeverity",
    "ErrorKind",
    "ErrorRecord",
    "ErrorLog",
    "classify_exception",
    "describe_exception",
]
