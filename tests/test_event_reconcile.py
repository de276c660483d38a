from __future__ import annotations

import asyncio
import logging

import pytest

from pymirror.state.events import ServiceEvent, ServiceEventType
from pymirror.state.reconcile import EventReconciler
from pymirror.state.store import DataStore


def _store() -> DataStore:
    store = DataStore()
    store.add_to_store({"id": 1, "name": "init"})
    return store


def test_zero_debounce_applies_immediately() -> None:
    store = _store()
    reconciler = EventReconciler(store)

    assert reconciler.handle("patched", {"id": 1, "name": "now"})
    assert reconciler.handle("created", {"id": 2, "name": "new"})
    assert reconciler.handle("removed", {"id": 1})

    assert store.get_from_store(1) is None
    assert store.get_from_store(2) == {"id": 2, "name": "new"}


@pytest.mark.asyncio
async def test_burst_of_patches_results_in_one_mutation() -> None:
    store = _store()
    writes: list[int] = []
    store.subscribe(lambda: writes.append(store.version))
    reconciler = EventReconciler(store, debounce_time=0.05)

    for i in range(5):
        reconciler.handle("patched", {"id": 1, "name": f"v{i}"})
        await asyncio.sleep(0.005)

    assert store.get_from_store(1)["name"] == "init"
    await asyncio.sleep(0.15)

    assert len(writes) == 1
    assert store.get_from_store(1)["name"] == "v4"
    assert reconciler.pending_keys == []


@pytest.mark.asyncio
async def test_guarantee_caps_the_delay_of_a_burst() -> None:
    guaranteed = _store()
    plain = _store()
    with_guarantee = EventReconciler(guaranteed, debounce_time=0.2, guarantee=True)
    without = EventReconciler(plain, debounce_time=0.2)

    for reconciler in (with_guarantee, without):
        reconciler.handle("patched", {"id": 1, "name": "first"})
    await asyncio.sleep(0.12)
    for reconciler in (with_guarantee, without):
        reconciler.handle("patched", {"id": 1, "name": "second"})
    await asyncio.sleep(0.13)

    assert guaranteed.get_from_store(1)["name"] == "second"
    assert plain.get_from_store(1)["name"] == "init"

    without.close()


@pytest.mark.asyncio
async def test_identities_are_debounced_independently() -> None:
    store = _store()
    store.add_to_store({"id": 2, "name": "init"})
    reconciler = EventReconciler(store, debounce_time=10)

    reconciler.handle("patched", {"id": 1, "name": "one"})
    reconciler.handle("patched", {"id": 2, "name": "two"})

    assert reconciler.flush(1) == 1
    assert store.get_from_store(1)["name"] == "one"
    assert store.get_from_store(2)["name"] == "init"
    assert reconciler.pending_keys == [2]

    reconciler.close()
    assert reconciler.pending_keys == []
    assert store.get_from_store(2)["name"] == "init"


@pytest.mark.asyncio
async def test_removal_supersedes_pending_add() -> None:
    store = DataStore()
    reconciler = EventReconciler(store, debounce_time=10)

    reconciler.handle("created", {"id": 5, "name": "x"})
    reconciler.handle("removed", {"id": 5})
    reconciler.flush()

    assert store.get_from_store(5) is None
    assert len(store.items) == 0


def test_malformed_events_are_dropped(caplog: pytest.LogCaptureFixture) -> None:
    store = _store()
    reconciler = EventReconciler(store)

    with caplog.at_level(logging.WARNING, logger="pymirror.state.reconcile"):
        assert not reconciler.handle("patched", "not a record")
        assert not reconciler.handle("patched", {})
        assert not reconciler.handle("renamed", {"id": 1})
        assert not reconciler.handle("patched", {"name": "no identity"})

    assert len([r for r in caplog.records if r.levelno == logging.WARNING]) == 4
    # Other identities are untouched and later events still apply.
    assert reconciler.handle("patched", {"id": 1, "name": "ok"})
    assert store.get_from_store(1)["name"] == "ok"


def test_handle_events_hooks() -> None:
    store = _store()
    seen: list[dict] = []

    def only_even(record: dict, _store: DataStore) -> bool:
        seen.append(record)
        return record["id"] % 2 == 0

    reconciler = EventReconciler(store, handle_events={"created": only_even, "removed": False})

    assert not reconciler.handle("created", {"id": 3})
    assert reconciler.handle("created", {"id": 4})
    assert not reconciler.handle("removed", {"id": 1})

    assert [r["id"] for r in seen] == [3, 4]
    assert store.get_from_store(3) is None
    assert store.get_from_store(4) is not None
    assert store.get_from_store(1) is not None


def test_echo_of_local_request_is_dropped_once() -> None:
    store = _store()
    reconciler = EventReconciler(store)
    store.event_locks.lock("patched", 1)

    assert not reconciler.handle("patched", {"id": 1, "name": "echo"})
    assert store.get_from_store(1)["name"] == "init"

    assert reconciler.handle("patched", {"id": 1, "name": "real"})
    assert store.get_from_store(1)["name"] == "real"


def test_closed_reconciler_ignores_events() -> None:
    store = _store()
    reconciler = EventReconciler(store)
    reconciler.close()
    assert not reconciler.handle("patched", {"id": 1, "name": "late"})
    assert store.get_from_store(1)["name"] == "init"


def test_service_event_model() -> None:
    event = ServiceEvent(type="removed", record={"id": 1})
    assert event.type is ServiceEventType.REMOVED
    assert event.type.is_removal
    assert event.observed_at.tzinfo is not None


def test_negative_debounce_rejected() -> None:
    with pytest.raises(ValueError):
        EventReconciler(DataStore(), debounce_time=-1)
