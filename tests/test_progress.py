import threading

import pytest

from foldervision.core.progress import (
    RUNNING_PERCENT_CAP,
    LaneState,
    ProgressTracker,
    progressive_percent,
)


@pytest.fixture
def tracker(clock):
    t = ProgressTracker(clock=clock)
    t.initialize(3, ["/a", "/b", "/c"])
    return t


def test_initial_state(tracker):
    statuses = tracker.lane_statuses()
    assert [s.state for s in statuses] == [LaneState.PENDING] * 3
    assert [s.root_path for s in statuses] == ["/a", "/b", "/c"]
    assert tracker.overall_percent() == 0.0
    assert tracker.estimated_remaining() is None


def test_running_percent_is_capped(tracker):
    tracker.update_lane(0, 120.0, "/a/x")
    status = tracker.lane_status(0)
    assert status.percent == RUNNING_PERCENT_CAP
    assert status.state is LaneState.RUNNING
    assert status.current_path == "/a/x"


def test_complete_sets_exactly_100(tracker):
    tracker.start_lane(0)
    tracker.update_lane(0, 94.0)
    tracker.complete_lane(0)
    assert tracker.lane_status(0).percent == 100.0
    assert tracker.lane_status(0).state is LaneState.COMPLETED


def test_terminal_states_are_sticky(tracker):
    tracker.complete_lane(0)
    tracker.update_lane(0, 10.0)
    tracker.fail_lane(0, "late failure")
    tracker.cancel_lane(0)
    status = tracker.lane_status(0)
    assert status.state is LaneState.COMPLETED
    assert status.percent == 100.0
    assert status.error is None

    tracker.fail_lane(1, "boom")
    tracker.complete_lane(1)
    assert tracker.lane_status(1).state is LaneState.FAILED
    assert tracker.lane_status(1).error == "boom"


def test_overall_is_unweighted_mean(tracker):
    tracker.complete_lane(0)
    tracker.update_lane(1, 50.0)
    assert tracker.overall_percent() == pytest.approx(50.0)


def test_eta_extrapolates_linearly(clock):
    t = ProgressTracker(clock=clock)
    t.initialize(2)
    clock.advance(10.0)
    t.update_lane(0, 50.0)
    t.update_lane(1, 50.0)
    assert t.elapsed() == 10.0
    assert t.estimated_remaining() == pytest.approx(10.0)


def test_eta_zero_when_done_and_elapsed_frozen(clock):
    t = ProgressTracker(clock=clock)
    t.initialize(2)
    clock.advance(4.0)
    t.complete_lane(0)
    t.fail_lane(1, "gone")
    clock.advance(100.0)
    assert t.elapsed() == 4.0
    # a failed lane keeps its last percent, but nothing remains to be done
    assert t.overall_percent() == 50.0
    assert t.estimated_remaining() == 0.0

    t2 = ProgressTracker(clock=clock)
    t2.initialize(1)
    t2.complete_lane(0)
    assert t2.estimated_remaining() == 0.0


def test_snapshot_counts(tracker):
    tracker.start_lane(0)
    tracker.complete_lane(1)
    tracker.cancel_lane(2)
    snap = tracker.snapshot()
    assert (snap.active_lanes, snap.completed_lanes, snap.failed_lanes, snap.cancelled_lanes) == (1, 1, 0, 1)
    assert snap.total_lanes == 3
    assert not snap.finished
    tracker.fail_lane(0, "x")
    assert tracker.snapshot().finished


def test_unknown_lane(tracker):
    with pytest.raises(KeyError):
        tracker.complete_lane(99)
    tracker.update_lane(99, 10.0)


def test_subscriber_drops_oldest(tracker):
    q = tracker.subscribe(maxsize=2)
    for p in (10.0, 20.0, 30.0, 40.0, 50.0):
        tracker.update_lane(0, p)
    assert q.qsize() == 2
    lane0 = [q.get_nowait().lanes[0].percent for _ in range(2)]
    assert lane0 == [40.0, 50.0]


def test_unsubscribe_stops_delivery(tracker):
    q = tracker.subscribe()
    tracker.unsubscribe(q)
    tracker.update_lane(0, 10.0)
    assert q.empty()


def test_concurrent_updates(clock):
    t = ProgressTracker(clock=clock)
    t.initialize(4)
    q = t.subscribe(maxsize=5)

    def run(lane):
        for i in range(500):
            t.update_lane(lane, i / 5.0, f"/lane{lane}/{i}")
        t.complete_lane(lane)

    threads = [threading.Thread(target=run, args=(n,)) for n in range(4)]
    for th in threads:
        th.start()
    for th in threads:
        th.join()
    assert t.overall_percent() == 100.0
    assert q.qsize() == 5


@pytest.mark.parametrize("processed, estimated, expected", [
    (0, 1, 0.0),
    (1, 4, 25.0),
    (1, 1, RUNNING_PERCENT_CAP),
    (7, 3, RUNNING_PERCENT_CAP),
    (1, 0, 0.0),
])
def test_progressive_percent(processed, estimated, expected):
    assert progressive_percent(processed, estimated) == expected
