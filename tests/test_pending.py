from __future__ import annotations

import pytest

from pymirror.state.pending import EventLocks, PendingTracker


def test_pending_counts_per_method_and_id() -> None:
    tracker = PendingTracker()
    tracker.set_pending("get", 1)
    tracker.set_pending("get", 1)
    tracker.set_pending("find")

    assert tracker.count("get", 1) == 2
    assert tracker.is_pending("get", 1)
    assert tracker.is_pending("get")
    assert tracker.is_get_pending
    assert tracker.is_find_pending
    assert not tracker.is_patch_pending
    assert tracker.is_id_pending(1)

    tracker.unset_pending("get", 1)
    assert tracker.is_pending("get", 1)
    tracker.unset_pending("get", 1)
    assert not tracker.is_pending("get", 1)


def test_counters_never_go_negative() -> None:
    tracker = PendingTracker()
    tracker.unset_pending("remove", 3)
    assert tracker.count("remove", 3) == 0
    tracker.set_pending("remove", 3)
    assert tracker.is_remove_pending


def test_track_settles_on_error() -> None:
    tracker = PendingTracker()

    with pytest.raises(RuntimeError), tracker.track("patch", 1):
        assert tracker.is_patch_pending
        raise RuntimeError("boom")

    assert not tracker.is_any_pending


def test_snapshot_and_clear() -> None:
    tracker = PendingTracker()
    tracker.set_pending("create", "temp")
    snapshot = tracker.snapshot()
    assert snapshot["create"] is True
    assert snapshot["find"] is False

    tracker.clear_all_pending()
    assert not tracker.is_any_pending


def test_event_locks_hold_and_consume() -> None:
    locks = EventLocks()

    with locks.hold("patched", 1):
        assert locks.is_locked("patched", 1)
        assert not locks.is_locked("removed", 1)
        assert locks.consume("patched", 1)
        assert not locks.consume("patched", 1)

    assert not locks.is_locked("patched", 1)


def test_event_locks_reject_unknown_events() -> None:
    with pytest.raises(ValueError):
        EventLocks().lock("bogus", 1)
