import os
import threading
import time

import pytest

from conftest import make_tree
from foldervision.core.cancel import CancelToken
from foldervision.core.config import ScanSettings
from foldervision.core.errors import ErrorKind, NoValidPathsError
from foldervision.core.progress import LaneState, ProgressTracker
from foldervision.core.scan_engine import ScanEngine
from foldervision.core.thread_manager import ThreadManager


@pytest.fixture
def trees(tmp_path):
    one = make_tree(tmp_path / "one", {"f": 1, "x": {"g": 2}})
    two = make_tree(tmp_path / "two", {"y": {}, "z": {"h": 3}})
    three = make_tree(tmp_path / "three", {"f": 4})
    return [str(one), str(two), str(three)]


def test_merge_keeps_input_order(trees):
    tracker = ProgressTracker()
    result = ThreadManager().scan_all([trees[1], trees[0], trees[2]], ScanSettings(), tracker)

    assert [r.path for r in result.root_folders] == [trees[1], trees[0], trees[2]]
    assert result.scanned_paths == [trees[1], trees[0], trees[2]]
    assert result.total_folders == 2 + 3 + 1
    assert result.total_files == 3 + 3 + 4
    assert not result.cancelled
    assert result.duration.total_seconds() >= 0

    assert [s.state for s in tracker.lane_statuses()] == [LaneState.COMPLETED] * 3
    assert tracker.overall_percent() == 100.0
    assert tracker.estimated_remaining() == 0.0


def test_duplicate_paths_scanned_once(trees):
    result = ThreadManager().scan_all([trees[0], trees[0] + "/", trees[0]])
    assert len(result.root_folders) == 1
    assert result.scanned_paths == [trees[0]]


def test_invalid_paths_are_recorded(trees, tmp_path):
    missing = str(tmp_path / "missing")
    result = ThreadManager().scan_all([missing, trees[2]])
    assert [r.path for r in result.root_folders] == [trees[2]]
    assert [r.path for r in result.errors.by_kind(ErrorKind.NOT_FOUND)] == [missing]
    assert result.errors.has_errors


@pytest.mark.parametrize("paths", [[], ["", None], ["/definitely/not/here"]])
def test_no_valid_paths(paths):
    with pytest.raises(NoValidPathsError):
        ThreadManager().scan_all(paths)


def test_invalid_settings_rejected(trees):
    with pytest.raises(ValueError, match="max_threads"):
        ThreadManager().scan_all(trees, ScanSettings(max_threads=0))


def test_failed_lane_does_not_affect_siblings(trees):
    class FailingEngine(ScanEngine):
        async def walk_async(self, root):
            if root == trees[1]:
                raise RuntimeError("disk on fire")
            return await super().walk_async(root)

    class FailingManager(ThreadManager):
        engine_class = FailingEngine

    tracker = ProgressTracker()
    result = FailingManager().scan_all(trees, ScanSettings(), tracker)

    states = [s.state for s in tracker.lane_statuses()]
    assert states == [LaneState.COMPLETED, LaneState.FAILED, LaneState.COMPLETED]
    assert "disk on fire" in tracker.lane_status(1).error
    assert [r.path for r in result.root_folders] == [trees[0], trees[2]]
    assert result.scanned_paths == [trees[0], trees[2]]
    failures = result.errors.by_kind(ErrorKind.UNEXPECTED)
    assert [(r.path, r.lane_id) for r in failures] == [(trees[1], 1)]


def test_cancel_after_first_lane(trees):
    token = CancelToken()

    class CancelAfterFirst(ProgressTracker):
        def complete_lane(self, lane_id):
            super().complete_lane(lane_id)
            if lane_id == 0:
                token.cancel("user")

    tracker = CancelAfterFirst()
    result = ThreadManager(max_concurrency=1).scan_all(trees, ScanSettings(), tracker, token)

    assert result.cancelled
    assert [r.path for r in result.root_folders] == [trees[0]]
    assert result.root_folders[0].total_file_count == 3
    states = [s.state for s in tracker.lane_statuses()]
    assert states == [LaneState.COMPLETED, LaneState.CANCELLED, LaneState.CANCELLED]
    assert len(result.errors.by_kind(ErrorKind.CANCELLED)) == 2


def test_global_cap_on_running_lanes(trees):
    running = []
    peak = []
    lock = threading.Lock()

    class TrackingEngine(ScanEngine):
        async def walk_async(self, root):
            with lock:
                running.append(root)
                peak.append(len(running))
            try:
                return await super().walk_async(root)
            finally:
                with lock:
                    running.remove(root)

    class TrackingManager(ThreadManager):
        engine_class = TrackingEngine

    result = TrackingManager(max_concurrency=2).scan_all(trees)
    assert len(result.root_folders) == 3
    assert max(peak) <= 2


def test_global_deadline_cancels_all_lanes(trees):
    class SlowEngine(ScanEngine):
        def _list_directory(self, path):
            time.sleep(0.1)
            return super()._list_directory(path)

    class SlowManager(ThreadManager):
        engine_class = SlowEngine

    tracker = ProgressTracker()
    result = SlowManager().scan_all(trees, ScanSettings(global_timeout_s=0.03), tracker)

    assert result.cancelled
    assert all(s.state is LaneState.CANCELLED for s in tracker.lane_statuses())
    assert result.errors.by_kind(ErrorKind.CANCELLED)


def test_cancel_all_from_another_thread(trees):
    class SlowEngine(ScanEngine):
        def _list_directory(self, path):
            time.sleep(0.05)
            return super()._list_directory(path)

    class SlowManager(ThreadManager):
        engine_class = SlowEngine

    manager = SlowManager()
    assert manager.cancel_all() is False
    tracker = ProgressTracker()
    updates = tracker.subscribe()

    def cancel_when_started():
        updates.get(timeout=5)
        manager.cancel_all()

    canceller = threading.Thread(target=cancel_when_started)
    canceller.start()
    result = manager.scan_all(trees, ScanSettings(), tracker)
    canceller.join()

    assert result.cancelled
    assert manager.active_lanes == 0
    assert len(manager.lane_statuses()) == 3


def test_hung_root_does_not_stall_other_lanes(trees, monkeypatch):
    slow = trees[0]
    real_isdir = os.path.isdir
    calls = []

    def hanging_isdir(path):
        if path == slow:
            calls.append(path)
            # the first call validates the path; the lane's own check hangs
            if len(calls) > 1:
                time.sleep(0.5)
        return real_isdir(path)

    monkeypatch.setattr(os.path, "isdir", hanging_isdir)
    tracker = ProgressTracker()
    started = time.monotonic()
    result = ThreadManager(max_concurrency=3).scan_all(trees, ScanSettings(directory_timeout_s=0.1), tracker)

    states = [s.state for s in tracker.lane_statuses()]
    assert states == [LaneState.FAILED, LaneState.COMPLETED, LaneState.COMPLETED]
    assert [r.path for r in result.errors.by_kind(ErrorKind.TIMEOUT)] == [slow]
    assert [r.path for r in result.root_folders] == trees[1:]
    for lane_id in (1, 2):
        assert tracker.lane_status(lane_id).ended_at - started < 0.4


def test_hung_path_validation_is_recorded(trees, monkeypatch):
    slow = trees[2]
    real_isdir = os.path.isdir

    def hanging_isdir(path):
        if path == slow:
            time.sleep(0.5)
        return real_isdir(path)

    monkeypatch.setattr(os.path, "isdir", hanging_isdir)
    result = ThreadManager().scan_all(trees, ScanSettings(directory_timeout_s=0.1))

    assert [r.path for r in result.root_folders] == trees[:2]
    assert [r.path for r in result.errors.by_kind(ErrorKind.TIMEOUT)] == [slow]
