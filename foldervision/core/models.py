# foldervision/core/models.py
"""
Result tree data models.

FolderNode is one scanned directory; ScanResult is the aggregate of one
invocation. Totals are always derived from the tree on read, never stored.
"""

from __future__ import annotations

import os
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Iterator, List, Optional

from .errors import ErrorLog, ErrorRecord


@dataclass(eq=False)
class FolderNode:
    """One scanned directory. A parent exclusively owns its children."""

    path: str
    name: str = ""
    last_modified: Optional[datetime] = None
    file_count: int = 0
    truncated: bool = False
    truncation_reason: Optional[str] = None
    _children: List["FolderNode"] = field(default_factory=list, init=False, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    def __post_init__(self):
        if not self.name:
            self.name = os.path.basename(os.path.normpath(self.path)) or self.path

    # --- mutation (owning lane only) ---

    def add_child(self, child: "FolderNode") -> None:
        """Attach a child; appending is serialized per parent."""
        with self._lock:
            if not any(c is child for c in self._children):
                self._children.append(child)

    def mark_truncated(self, reason: str) -> None:
        self.truncated = True
        if self.truncation_reason is None:
            self.truncation_reason = reason

    # --- read side ---

    @property
    def children(self) -> List["FolderNode"]:
        """Direct subfolders, sorted by name."""
        with self._lock:
            snapshot = list(self._children)
        return sorted(snapshot, key=lambda n: (n.name.lower(), n.name))

    @property
    def subfolder_count(self) -> int:
        with self._lock:
            return len(self._children)

    @property
    def total_subfolder_count(self) -> int:
        """All descendant folders (the node itself excluded)."""
        return sum(1 for _ in self.iter_descendants())

    @property
    def total_file_count(self) -> int:
        return self.file_count + sum(n.file_count for n in self.iter_descendants())

    def iter_descendants(self) -> Iterator["FolderNode"]:
        """Depth-first over every descendant, without recursion."""
        stack = list(reversed(self.children))
        while stack:
            node = stack.pop()
            yield node
            stack.extend(reversed(node.children))

    def find(self, path: str) -> Optional["FolderNode"]:
        target = os.path.normcase(os.path.normpath(path)).lower()
        for node in self._iter_self_and_descendants():
            if os.path.normcase(os.path.normpath(node.path)).lower() == target:
                return node
        return None

    def _iter_self_and_descendants(self) -> Iterator["FolderNode"]:
        yield self
        yield from self.iter_descendants()

    def to_dict(self) -> dict:
        return {
            "path": self.path,
            "name": self.name,
            "last_modified": self.last_modified.isoformat() if self.last_modified else None,
            "file_count": self.file_count,
            "subfolder_count": self.subfolder_count,
            "truncated": self.truncated,
            "truncation_reason": self.truncation_reason,
            "children": [c.to_dict() for c in self.children],
        }

    def __str__(self) -> str:
        return f"{self.name} ({self.subfolder_count} folders, {self.file_count} files)"


@dataclass
class ScanResult:
    """
    Aggregate outcome of one scan.

    root_folders keeps input order; scanned_paths is de-duplicated.
    """

    root_folders: List[FolderNode] = field(default_factory=list)
    scanned_paths: List[str] = field(default_factory=list)
    start_time: datetime = field(default_factory=datetime.now)
    duration: timedelta = timedelta(0)
    errors: ErrorLog = field(default_factory=ErrorLog)
    cancelled: bool = False
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    def add_root_folder(self, folder: Optional[FolderNode]) -> None:
        if folder is None:
            return
        with self._lock:
            if not any(f is folder for f in self.root_folders):
                self.root_folders.append(folder)

    def add_scanned_path(self, path: str) -> None:
        if not path:
            return
        with self._lock:
            if path not in self.scanned_paths:
                self.scanned_paths.append(path)

    def add_error(self, record: ErrorRecord) -> None:
        self.errors.add(record)

    def finish(self, end_time: Optional[datetime] = None) -> None:
        self.duration = (end_time or datetime.now()) - self.start_time

    @property
    def total_folders(self) -> int:
        with self._lock:
            roots = list(self.root_folders)
        return sum(1 + r.total_subfolder_count for r in roots)

    @property
    def total_files(self) -> int:
        with self._lock:
            roots = list(self.root_folders)
        return sum(r.total_file_count for r in roots)

    def iter_folders(self) -> Iterator[FolderNode]:
        with self._lock:
            roots = list(self.root_folders)
        for root in roots:
            yield root
            yield from root.iter_descendants()

    def find_folder(self, path: str) -> Optional[FolderNode]:
        if not path:
            return None
        with self._lock:
            roots = list(self.root_folders)
        for root in roots:
            found = root.find(path)
            if found is not None:
                return found
        return None

    def to_dict(self) -> dict:
        return {
            "start_time": self.start_time.isoformat(),
            "duration_s": self.duration.total_seconds(),
            "cancelled": self.cancelled,
            "scanned_paths": list(self.scanned_paths),
            "total_folders": self.total_folders,
            "total_files": self.total_files,
            "root_folders": [r.to_dict() for r in self.root_folders],
            "errors": [e.to_dict() for e in self.errors.records()],
        }

    def __str__(self) -> str:
        return (f"Scan Result: {self.total_folders} folders, {self.total_files} files "
                f"in {self.duration.total_seconds():.1f}s")
