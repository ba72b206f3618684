# foldervision/services/__init__.py
"""
Process-wide services: logging and the memory guard.
"""

from .logger import configure, get_logger, lane_context
from .memory_guard import MemoryGuard, ReclaimStats

__all__ = [
    "configure",
    "get_logger",
    "lane_context",
    "MemoryGuard",
    "ReclaimStats",
]
