"""In-flight request accounting and event locks."""

from __future__ import annotations

import contextlib
from collections.abc import Iterator
from typing import Any

from pymirror._constants import SERVICE_EVENTS, SERVICE_METHODS


class PendingTracker:
    """Count in-flight remote calls per ``(method, id)``.

    ``id`` is ``None`` for calls that are not about a single record
    (``find``, ``count``, ``create`` without a temp id). Counters never go
    below zero.
    """

    def __init__(self) -> None:
        self._counts: dict[tuple[str, Any], int] = {}

    def set_pending(self, method: str, record_id: Any = None) -> None:
        key = (method, record_id)
        self._counts[key] = self._counts.get(key, 0) + 1

    def unset_pending(self, method: str, record_id: Any = None) -> None:
        key = (method, record_id)
        count = self._counts.get(key, 0) - 1
        if count > 0:
            self._counts[key] = count
        else:
            self._counts.pop(key, None)

    @contextlib.contextmanager
    def track(self, method: str, record_id: Any = None) -> Iterator[None]:
        self.set_pending(method, record_id)
        try:
            yield
        finally:
            self.unset_pending(method, record_id)

    def count(self, method: str, record_id: Any = None) -> int:
        return self._counts.get((method, record_id), 0)

    def is_pending(self, method: str, record_id: Any = None) -> bool:
        """Whether *method* is in flight; without an id, for any record."""
        if record_id is not None:
            return self.count(method, record_id) > 0
        return any(m == method for m, _ in self._counts)

    def is_id_pending(self, record_id: Any) -> bool:
        return any(rid == record_id for _, rid in self._counts)

    @property
    def is_find_pending(self) -> bool:
        return self.is_pending("find")

    @property
    def is_count_pending(self) -> bool:
        return self.is_pending("count")

    @property
    def is_get_pending(self) -> bool:
        return self.is_pending("get")

    @property
    def is_create_pending(self) -> bool:
        return self.is_pending("create")

    @property
    def is_update_pending(self) -> bool:
        return self.is_pending("update")

    @property
    def is_patch_pending(self) -> bool:
        return self.is_pending("patch")

    @property
    def is_remove_pending(self) -> bool:
        return self.is_pending("remove")

    @property
    def is_any_pending(self) -> bool:
        return bool(self._counts)

    def snapshot(self) -> dict[str, bool]:
        return {method: self.is_pending(method) for method in SERVICE_METHODS}

    def clear_all_pending(self) -> None:
        self._counts.clear()


class EventLocks:
    """Suppress realtime echoes of a local request while it is in flight."""

    def __init__(self) -> None:
        self._locks: dict[str, dict[Any, int]] = {event: {} for event in SERVICE_EVENTS}

    def _bucket(self, event: str) -> dict[Any, int]:
        bucket = self._locks.get(event)
        if bucket is None:
            raise ValueError(f"Unknown service event '{event}'")
        return bucket

    def lock(self, event: str, record_id: Any) -> None:
        bucket = self._bucket(event)
        bucket[record_id] = bucket.get(record_id, 0) + 1

    def release(self, event: str, record_id: Any) -> None:
        bucket = self._bucket(event)
        count = bucket.get(record_id, 0) - 1
        if count > 0:
            bucket[record_id] = count
        else:
            bucket.pop(record_id, None)

    def is_locked(self, event: str, record_id: Any) -> bool:
        return bool(self._locks.get(event, {}).get(record_id))

    def consume(self, event: str, record_id: Any) -> bool:
        """Release one hold on *event* for *record_id* if there is one.

        Returns whether a lock was held, i.e. whether the event is an echo.
        """
        if not self.is_locked(event, record_id):
            return False
        self.release(event, record_id)
        return True

    @contextlib.contextmanager
    def hold(self, event: str, record_id: Any) -> Iterator[None]:
        self.lock(event, record_id)
        try:
            yield
        finally:
            self.release(event, record_id)

    def clear(self) -> None:
        for bucket in self._locks.values():
            bucket.clear()
