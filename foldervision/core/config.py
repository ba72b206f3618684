# foldervision/core/config.py
"""
Scan configuration.

ScanSettings is created once before a scan and never mutated afterwards;
every lane reads the same instance. Settings files may be JSON or YAML,
chosen by suffix.
"""

from __future__ import annotations

import json
import os
from dataclasses import asdict, dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml

from foldervision.services.logger import get_logger

log = get_logger(__name__)

# Directories with more immediate subdirectories than this are walked in batches
LARGE_DIRECTORY_THRESHOLD = 100
# Concurrency ceiling inside a batch
BATCH_CONCURRENCY_CAP = 8
# Memory guard: ask for reclamation every N batches of a large directory
BATCHES_PER_MEMORY_CHECK = 4


def _default_lanes() -> int:
    return max(1, os.cpu_count() or 1)


@dataclass(frozen=True)
class ScanSettings:
    """Immutable per-scan settings."""

    # Concurrency
    max_threads: int = 4
    max_concurrent_lanes: int = field(default_factory=_default_lanes)

    # Recursion
    max_depth: int = 50

    # Memory
    max_memory_mb: int = 512
    enable_memory_optimization: bool = True
    memory_check_interval: int = 500
    min_reclaim_interval_s: float = 5.0

    # Deadlines (seconds); global_timeout_s=None disables the wall-clock deadline
    global_timeout_s: Optional[float] = 3600.0
    directory_timeout_s: float = 30.0
    network_timeout_s: float = 120.0

    # Skip predicates
    skip_hidden: bool = True
    skip_system: bool = True

    # Large fan-out handling
    enable_adaptive_batching: bool = True
    batch_size: int = 50

    # ------------------------------------------------------------------
    # Presets
    # ------------------------------------------------------------------

    @classmethod
    def default(cls) -> "ScanSettings":
        return cls()

    @classmethod
    def for_large_folders(cls) -> "ScanSettings":
        return cls(max_threads=8, max_depth=100, max_memory_mb=1024)

    # ------------------------------------------------------------------
    # Derived values
    # ------------------------------------------------------------------

    @property
    def batch_concurrency(self) -> int:
        return max(1, min(self.max_threads, BATCH_CONCURRENCY_CAP))

    def replace(self, **changes: Any) -> "ScanSettings":
        """Return a copy with the given fields changed."""
        return replace(self, **changes)

    # ------------------------------------------------------------------
    # Validation / (de)serialization
    # ------------------------------------------------------------------

    def validate(self) -> List[str]:
        """
        Validate settings.

        Returns:
            List of validation errors (empty if valid)
        """
        errors = []
        if self.max_threads < 1:
            errors.append("max_threads must be at least 1")
        if self.max_concurrent_lanes < 1:
            errors.append("max_concurrent_lanes must be at least 1")
        if self.max_depth < 1:
            errors.append("max_depth must be at least 1")
        if self.max_memory_mb < 1:
            errors.append("max_memory_mb must be at least 1")
        if self.memory_check_interval < 1:
            errors.append("memory_check_interval must be at least 1")
        if self.min_reclaim_interval_s < 0:
            errors.append("min_reclaim_interval_s cannot be negative")
        if self.global_timeout_s is not None and self.global_timeout_s <= 0:
            errors.append("global_timeout_s must be positive (or None to disable)")
        if self.directory_timeout_s <= 0:
            errors.append("directory_timeout_s must be positive")
        if self.network_timeout_s <= 0:
            errors.append("network_timeout_s must be positive")
        if self.batch_size < 1:
            errors.append("batch_size must be at least 1")
        return errors

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "ScanSettings":
        """Create from dictionary; unknown keys are ignored."""
        if not isinstance(data, dict):
            data = {}
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            log.warning("Ignoring unknown settings: %s", ", ".join(unknown))
        return cls(**{k: v for k, v in data.items() if k in known})


PathLike = Union[str, "os.PathLike[str]"]

_YAML_SUFFIXES = {".yaml", ".yml"}


def load_settings(path: PathLike) -> ScanSettings:
    """Load settings from a JSON or YAML file."""
    path = Path(path)
    with open(path, "r", encoding="utf-8") as f:
        if path.suffix.lower() in _YAML_SUFFIXES:
            data = yaml.safe_load(f)
        else:
            data = json.load(f)
    settings = ScanSettings.from_dict(data or {})
    problems = settings.validate()
    if problems:
        raise ValueError(f"Invalid settings in {path}: {'; '.join(problems)}")
    log.debug("Loaded settings from %s", path)
    return settings


def save_settings(settings: ScanSettings, path: PathLike) -> Path:
    """Write settings to a JSON or YAML file, creating parent folders."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    data = settings.to_dict()
    with open(path, "w", encoding="utf-8") as f:
        if path.suffix.lower() in _YAML_SUFFIXES:
            yaml.safe_dump(data, f, sort_keys=False)
        else:
            json.dump(data, f, indent=2)
    return path


__all__ = [
    "ScanSettings",
    "load_settings",
    "save_settings",
    "LARGE_DIRECTORY_THRESHOLD",
    "BATCH_CONCURRENCY_CAP",
    "BATCHES_PER_MEMORY_CHECK",
]
