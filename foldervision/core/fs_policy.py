# foldervision/core/fs_policy.py
"""
foldervision/core/fs_policy.py - Filesystem policy helpers

Purpose
- Centralizes the skip rules for hidden and system directories.
- Knows what a volume root is (roots are explicit scan targets and are
  never skipped).

This module does NOT read directory contents; it only answers policy
questions about a single path.
"""

from __future__ import annotations

import os
import stat
from typing import Optional, Set

# Well-known system directory names (case-insensitive)
SYSTEM_DIR_NAMES: Set[str] = {
    "system volume information",
    "$recycle.bin",
    "lost+found",
    ".trashes",
    ".spotlight-v100",
    ".fseventsd",
}

_FILE_ATTRIBUTE_HIDDEN = getattr(stat, "FILE_ATTRIBUTE_HIDDEN", 0x2)
_FILE_ATTRIBUTE_SYSTEM = getattr(stat, "FILE_ATTRIBUTE_SYSTEM", 0x4)


def _attributes(st: Optional[os.stat_result]) -> int:
    # st_file_attributes only exists on Windows
    return int(getattr(st, "st_file_attributes", 0) or 0) if st is not None else 0


def is_hidden(name: str, st: Optional[os.stat_result] = None) -> bool:
    """Hidden by dot-name convention or by the Windows hidden attribute."""
    if name.startswith(".") and name not in (".", ".."):
        return True
    return bool(_attributes(st) & _FILE_ATTRIBUTE_HIDDEN)


def is_system(name: str, st: Optional[os.stat_result] = None) -> bool:
    """System by the Windows system attribute or a well-known system name."""
    if name.lower() in SYSTEM_DIR_NAMES:
        return True
    return bool(_attributes(st) & _FILE_ATTRIBUTE_SYSTEM)


def is_volume_root(path: str) -> bool:
    """True for a drive/filesystem anchor or a mount point."""
    normalized = os.path.abspath(path)
    if os.path.dirname(normalized) == normalized:
        return True
    try:
        return os.path.ismount(normalized)
    except (OSError, ValueError):
        return False


def should_skip_directory(
    path: str,
    *,
    skip_hidden: bool,
    skip_system: bool,
    st: Optional[os.stat_result] = None,
    is_scan_root: bool = False,
) -> Optional[str]:
    """
    Returns a reason string if the directory should be skipped, else None.

    Volume roots and the lane's own root are never skipped.
    """
    if is_scan_root:
        return None
    name = os.path.basename(os.path.normpath(path))
    reason = None
    if skip_hidden and is_hidden(name, st):
        reason = "hidden"
    elif skip_system and is_system(name, st):
        reason = "system"
    # Mount check only for candidates; it costs two stat calls
    if reason and is_volume_root(path):
        return None
    return reason


def should_count_file(name: str, st: Optional[os.stat_result], *, skip_hidden: bool) -> bool:
    """Hidden files are left out of a directory's file count when hidden items are skipped."""
    return not (skip_hidden and is_hidden(name, st))
