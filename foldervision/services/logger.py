# foldervision/services/logger.py
from __future__ import annotations

"""
FolderVision Logger

- Single global logging configuration (no per-module handlers).
- Safe on locked folders (falls back to OS temp dir).
- Lane tagging: records carry the id of the scan lane that emitted them,
  held in a ContextVar so every asyncio task keeps its own value.
"""

import logging
import os
import sys
import tempfile
import threading
from contextlib import contextmanager
from contextvars import ContextVar
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Generator, Optional

ROOT_LOGGER_NAME = "FOLDERVISION"

# When set (e.g. FOLDERVISION_DEBUG=1), the root level is DEBUG
DEBUG = os.environ.get("FOLDERVISION_DEBUG", "").strip().lower() in ("1", "true", "yes")


# ----------------------------
# Context (lane tagging)
# ----------------------------

_lane_id: ContextVar[str] = ContextVar("foldervision_lane_id", default="")


def get_lane_id() -> str:
    return _lane_id.get()


@contextmanager
def lane_context(lane_id: object) -> Generator[None, None, None]:
    """Context manager for temporary lane id setting."""
    token = _lane_id.set("" if lane_id is None else str(lane_id))
    try:
        yield
    finally:
        _lane_id.reset(token)


class _LaneIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.lane_id = get_lane_id()
        return True


class _Fmt(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        lane = getattr(record, "lane_id", "")
        lane_part = f" [lane:{lane}]" if lane != "" else ""
        formatted = super().format(record)
        return formatted.replace(f"{record.name}:", f"{record.name}{lane_part}:", 1)


# ----------------------------
# Global configuration (once)
# ----------------------------

_configured = False
_config_lock = threading.Lock()
_current_log_file: Optional[Path] = None


def _safe_logs_dir() -> Path:
    """
    Prefer ~/.foldervision/logs.
    Fall back to OS temp if we can't create or write there.
    """
    preferred = Path.home() / ".foldervision" / "logs"
    try:
        preferred.mkdir(parents=True, exist_ok=True)
        marker = preferred / ".write_test"
        marker.write_text("ok", encoding="utf-8")
        marker.unlink()
        return preferred
    except OSError:
        tmp = Path(tempfile.gettempdir()) / "foldervision_logs"
        tmp.mkdir(parents=True, exist_ok=True)
        return tmp


def _configure_root(level: int = logging.INFO,
                    log_to_file: bool = False,
                    file_max_size: int = 10 * 1024 * 1024,
                    file_backup_count: int = 5,
                    console_level: Optional[int] = None) -> None:
    global _configured, _current_log_file

    with _config_lock:
        if _configured:
            return

        base = logging.getLogger(ROOT_LOGGER_NAME)
        base.setLevel(level)
        base.propagate = False
        _current_log_file = None

        # Module reloads in dev must not duplicate handlers
        for h in list(base.handlers):
            base.removeHandler(h)
            h.close()

        formatter = _Fmt(
            fmt="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%H:%M:%S",
        )

        sh = logging.StreamHandler(sys.stderr)
        sh.setLevel(level if console_level is None else console_level)
        sh.setFormatter(formatter)
        sh.addFilter(_LaneIdFilter())
        base.addHandler(sh)

        if log_to_file:
            try:
                log_file = _safe_logs_dir() / "foldervision.log"
                fh = RotatingFileHandler(
                    log_file,
                    maxBytes=file_max_size,
                    backupCount=file_backup_count,
                    encoding="utf-8",
                )
                fh.setLevel(level)
                fh.setFormatter(formatter)
                fh.addFilter(_LaneIdFilter())
                base.addHandler(fh)
                _current_log_file = log_file
            except OSError as e:
                # Console logging still works even if file logging fails.
                base.warning("File logging disabled: %s", e)

        _configured = True


def configure(level: int = logging.INFO,
              log_to_file: bool = False,
              file_max_size: int = 10 * 1024 * 1024,
              file_backup_count: int = 5,
              console_level: Optional[int] = None) -> None:
    """
    Configure the logger with custom options.

    console_level, when given, overrides `level` for the stderr handler only
    (the file handler keeps `level`).
    """
    global _configured
    with _config_lock:
        _configured = False
    _configure_root(level, log_to_file, file_max_size, file_backup_count, console_level)


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """
    Get a logger that shares the global FOLDERVISION handlers.
    Never add handlers in feature modules; use this instead.
    """
    _configure_root(level=logging.DEBUG if DEBUG else logging.INFO)
    base = logging.getLogger(ROOT_LOGGER_NAME)
    if not name:
        return base
    if name.startswith("foldervision."):
        name = name[len("foldervision."):]
    return base.getChild(name)


def get_current_log_file() -> Optional[Path]:
    """Get the path to the current rotating log file."""
    return _current_log_file


def flush_all_handlers() -> None:
    """Flush stream/file handlers (useful before exit)."""
    for h in logging.getLogger(ROOT_LOGGER_NAME).handlers[:]:
        try:
            h.flush()
        except ValueError:
            # Handler already closed
            continue


def cleanup_handlers() -> None:
    """Remove all handlers (useful for tests or reconfiguration)."""
    global _configured
    with _config_lock:
        base = logging.getLogger(ROOT_LOGGER_NAME)
        for h in list(base.handlers):
            base.removeHandler(h)
            h.close()
        _configured = False

