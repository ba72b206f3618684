# foldervision/core/progress.py
"""
Cross-lane progress aggregation.

Every concurrently running lane reports into one ProgressTracker. Overall
percent is the unweighted arithmetic mean of the lane percentages. This is
an approximation, not an exact progress fraction: subtree sizes are unknown
up front, so a small lane counts as much as a huge one and the overall
figure can jump or stall when lanes differ greatly in size.

Snapshots are published to subscribers through queues; the producer never
blocks, and a slow subscriber loses its oldest snapshots.
"""

from __future__ import annotations

import math
import queue
import threading
import time
from dataclasses import dataclass, replace
from enum import Enum
from typing import Callable, Dict, List, Optional

# Reported percent of a running lane never exceeds this
RUNNING_PERCENT_CAP = 95.0


class LaneState(Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (LaneState.COMPLETED, LaneState.FAILED, LaneState.CANCELLED)


@dataclass(frozen=True)
class LaneStatus:
    lane_id: int
    root_path: str = ""
    percent: float = 0.0
    state: LaneState = LaneState.PENDING
    current_path: str = ""
    processed: int = 0
    estimated: int = 1
    started_at: Optional[float] = None
    ended_at: Optional[float] = None
    error: Optional[str] = None

    def elapsed(self, now: float) -> float:
        if self.started_at is None:
            return 0.0
        return (self.ended_at if self.ended_at is not None else now) - self.started_at


@dataclass(frozen=True)
class ProgressSnapshot:
    overall_percent: float
    active_lanes: int
    completed_lanes: int
    failed_lanes: int
    cancelled_lanes: int
    total_lanes: int
    elapsed_s: float
    estimated_remaining_s: Optional[float]
    lanes: List[LaneStatus]

    @property
    def finished(self) -> bool:
        return self.total_lanes > 0 and all(l.state.is_terminal for l in self.lanes)


def progressive_percent(processed: int, estimated: int) -> float:
    """Percent from a growing denominator, capped while work is outstanding."""
    if estimated <= 0:
        return 0.0
    return min(processed * 100.0 / estimated, RUNNING_PERCENT_CAP)


class ProgressTracker:
    """
    Thread-safe aggregator of per-lane progress.

    All writes go through one lock; the aggregate figures are recomputed
    from an immutable copy of the lane map, so reads never see a half
    written lane.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._lock = threading.Lock()
        self._lanes: Dict[int, LaneStatus] = {}
        self._started_at: Optional[float] = None
        self._finished_at: Optional[float] = None
        self._subscribers: List[queue.Queue] = []

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def initialize(self, lane_count: int, root_paths: Optional[List[str]] = None) -> None:
        if lane_count < 0:
            raise ValueError("lane_count cannot be negative")
        paths = list(root_paths or [])
        with self._lock:
            self._lanes = {
                i: LaneStatus(lane_id=i, root_path=paths[i] if i < len(paths) else "")
                for i in range(lane_count)
            }
            self._started_at = self._clock()
            self._finished_at = None
        self._publish()

    def start_lane(self, lane_id: int) -> None:
        self._transition(lane_id, LaneState.RUNNING)

    def update_lane(
        self,
        lane_id: int,
        percent: float,
        current_path: str = "",
        processed: Optional[int] = None,
        estimated: Optional[int] = None,
    ) -> None:
        """Record progress of a running lane; ignored once the lane is terminal."""
        percent = max(0.0, min(float(percent), RUNNING_PERCENT_CAP))
        with self._lock:
            lane = self._lanes.get(lane_id)
            if lane is None or lane.state.is_terminal:
                return
            changes = {"percent": percent, "current_path": current_path or lane.current_path}
            if lane.state is LaneState.PENDING:
                changes.update(state=LaneState.RUNNING, started_at=self._clock())
            if processed is not None:
                changes["processed"] = processed
            if estimated is not None:
                changes["estimated"] = estimated
            self._lanes[lane_id] = replace(lane, **changes)
        self._publish()

    def complete_lane(self, lane_id: int) -> None:
        self._transition(lane_id, LaneState.COMPLETED)

    def fail_lane(self, lane_id: int, error: str) -> None:
        self._transition(lane_id, LaneState.FAILED, error=error)

    def cancel_lane(self, lane_id: int) -> None:
        self._transition(lane_id, LaneState.CANCELLED)

    def _transition(self, lane_id: int, target: LaneState, error: Optional[str] = None) -> None:
        with self._lock:
            lane = self._lanes.get(lane_id)
            if lane is None:
                raise KeyError(f"Unknown lane: {lane_id}")
            if lane.state.is_terminal or lane.state is target:
                return
            now = self._clock()
            changes = {"state": target}
            if lane.started_at is None:
                changes["started_at"] = now
            if target.is_terminal:
                changes["ended_at"] = now
            if target is LaneState.COMPLETED:
                changes["percent"] = 100.0
            if error is not None:
                changes["error"] = error
            self._lanes[lane_id] = replace(lane, **changes)
            if all(l.state.is_terminal for l in self._lanes.values()):
                self._finished_at = now
        self._publish()

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    def lane_status(self, lane_id: int) -> LaneStatus:
        with self._lock:
            return self._lanes[lane_id]

    def lane_statuses(self) -> List[LaneStatus]:
        with self._lock:
            return [self._lanes[k] for k in sorted(self._lanes)]

    def overall_percent(self) -> float:
        return self._overall(self.lane_statuses())

    def elapsed(self) -> float:
        with self._lock:
            started, finished = self._started_at, self._finished_at
        if started is None:
            return 0.0
        return (finished if finished is not None else self._clock()) - started

    def estimated_remaining(self) -> Optional[float]:
        """
        Linear extrapolation from elapsed time and overall percent.

        None means unbounded (no progress yet); 0.0 once every lane is
        complete or has otherwise reached a terminal state.
        """
        return self._remaining(self.overall_percent(), self.elapsed(), self._is_finished())

    def snapshot(self) -> ProgressSnapshot:
        lanes = self.lane_statuses()
        overall = self._overall(lanes)
        elapsed = self.elapsed()
        return ProgressSnapshot(
            overall_percent=overall,
            active_lanes=sum(1 for l in lanes if l.state is LaneState.RUNNING),
            completed_lanes=sum(1 for l in lanes if l.state is LaneState.COMPLETED),
            failed_lanes=sum(1 for l in lanes if l.state is LaneState.FAILED),
            cancelled_lanes=sum(1 for l in lanes if l.state is LaneState.CANCELLED),
            total_lanes=len(lanes),
            elapsed_s=elapsed,
            estimated_remaining_s=self._remaining(overall, elapsed, self._is_finished()),
            lanes=lanes,
        )

    @staticmethod
    def _overall(lanes: List[LaneStatus]) -> float:
        if not lanes:
            return 0.0
        return sum(l.percent for l in lanes) / len(lanes)

    def _is_finished(self) -> bool:
        with self._lock:
            return self._finished_at is not None

    @staticmethod
    def _remaining(percent: float, elapsed: float, finished: bool = False) -> Optional[float]:
        if finished or percent >= 100.0:
            return 0.0
        if percent <= 0.0:
            return None
        remaining = elapsed * (100.0 - percent) / percent
        return remaining if math.isfinite(remaining) else None

    # ------------------------------------------------------------------
    # Subscribers
    # ------------------------------------------------------------------

    def subscribe(self, maxsize: int = 100) -> "queue.Queue[ProgressSnapshot]":
        """Return a queue that receives a snapshot after every change."""
        q: "queue.Queue[ProgressSnapshot]" = queue.Queue(maxsize=maxsize)
        with self._lock:
            self._subscribers.append(q)
        return q

    def unsubscribe(self, q: queue.Queue) -> None:
        with self._lock:
            if q in self._subscribers:
                self._subscribers.remove(q)

    def _publish(self) -> None:
        with self._lock:
            subscribers = list(self._subscribers)
        if not subscribers:
            return
        snap = self.snapshot()
        for q in subscribers:
            while True:
                try:
                    q.put_nowait(snap)
                    break
                except queue.Full:
                    try:
                        q.get_nowait()
                    except queue.Empty:
                        pass
