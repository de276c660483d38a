"""Debounced reconciliation of realtime service events into the store.

Events for one identity that arrive within ``debounce_time`` seconds of each
other are coalesced: only the latest record is applied. Different identities
are debounced independently.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError

from pymirror._redact import redact_for_log
from pymirror.state.events import ServiceEvent, ServiceEventType

if TYPE_CHECKING:
    from pymirror.state.store import DataStore

_logger = logging.getLogger(__name__)

EventHook = Callable[[dict[str, Any], "DataStore"], Any]
HandleEvents = Mapping[str, bool | EventHook]


@dataclass
class ScheduledFlush:
    """Pending application of the latest event for one identity."""

    key: Any
    event: ServiceEvent
    first_at: float
    handle: asyncio.TimerHandle | None = None

    def cancel(self) -> None:
        if self.handle is not None:
            self.handle.cancel()
            self.handle = None


class EventReconciler:
    """Apply ``created`` / ``updated`` / ``patched`` / ``removed`` events."""

    def __init__(
        self,
        store: DataStore,
        *,
        debounce_time: float = 0.0,
        guarantee: bool = False,
        handle_events: HandleEvents | None = None,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        if debounce_time < 0:
            raise ValueError("debounce_time must not be negative")
        self._store = store
        self._debounce_time = debounce_time
        self._guarantee = guarantee
        self._handle_events = dict(handle_events or {})
        self._loop = loop
        self._scheduled: dict[Any, ScheduledFlush] = {}
        self._closed = False

    @property
    def debounce_time(self) -> float:
        return self._debounce_time

    @property
    def pending_keys(self) -> list[Any]:
        return list(self._scheduled)

    # ------------------------------------------------------------------
    # Intake
    # ------------------------------------------------------------------

    def handle(self, event_name: str, payload: Any) -> bool:
        """Accept a raw notification.

        Returns ``True`` when the event was applied or scheduled, ``False``
        when it was filtered out or dropped.
        """
        if self._closed:
            _logger.debug("Reconciler closed; ignoring %s event", event_name)
            return False
        try:
            event = ServiceEvent(type=event_name, record=payload)
        except ValidationError as exc:
            _logger.warning(
                "Dropping malformed %s event: %s payload=%s",
                event_name,
                exc.errors()[0]["msg"] if exc.errors() else exc,
                redact_for_log(payload),
            )
            return False
        return self.handle_event(event)

    def handle_event(self, event: ServiceEvent) -> bool:
        record = dict(event.record)
        key = self._store.identity.get_key(record)
        if key is None:
            _logger.warning("Dropping %s event without identity: %s", event.type, redact_for_log(record))
            return False

        if not self._accepts(event.type, record):
            _logger.debug("Event %s for %s filtered by handle_events", event.type, key)
            return False

        record_id = self._store.identity.get_id(record)
        if record_id is not None and self._store.event_locks.consume(event.type.value, record_id):
            _logger.debug("Dropped %s echo for %s (local request in flight)", event.type, record_id)
            return False

        if self._debounce_time == 0:
            self._apply(event)
            return True

        self._schedule(key, event)
        return True

    def _accepts(self, event_type: ServiceEventType, record: dict[str, Any]) -> bool:
        hook = self._handle_events.get(event_type.value, True)
        if hook is False:
            return False
        if hook is True or hook is None:
            return True
        return bool(hook(record, self._store))

    # ------------------------------------------------------------------
    # Debounce
    # ------------------------------------------------------------------

    def _schedule(self, key: Any, event: ServiceEvent) -> None:
        loop = self._loop or asyncio.get_running_loop()
        now = loop.time()

        scheduled = self._scheduled.get(key)
        if scheduled is None:
            scheduled = ScheduledFlush(key=key, event=event, first_at=now)
            self._scheduled[key] = scheduled
        else:
            # Latest event wins; a removal replaces a pending add and vice versa.
            scheduled.cancel()
            scheduled.event = event

        delay = self._debounce_time
        if self._guarantee:
            delay = max(0.0, min(delay, scheduled.first_at + self._debounce_time - now))
        scheduled.handle = loop.call_later(delay, self._fire, key)

    def _fire(self, key: Any) -> None:
        scheduled = self._scheduled.pop(key, None)
        if scheduled is None:
            return
        scheduled.handle = None
        self._apply(scheduled.event)

    def flush(self, key: Any = None) -> int:
        """Apply pending events now (all of them, or only *key*'s)."""
        keys = list(self._scheduled) if key is None else [key]
        flushed = 0
        for pending_key in keys:
            scheduled = self._scheduled.pop(pending_key, None)
            if scheduled is None:
                continue
            scheduled.cancel()
            self._apply(scheduled.event)
            flushed += 1
        return flushed

    def cancel_pending(self) -> None:
        """Drop pending events without applying them."""
        for scheduled in self._scheduled.values():
            scheduled.cancel()
        self._scheduled.clear()

    def close(self) -> None:
        """Cancel all timers and stop accepting events."""
        self._closed = True
        self.cancel_pending()

    # ------------------------------------------------------------------
    # Apply
    # ------------------------------------------------------------------

    def _apply(self, event: ServiceEvent) -> None:
        record = dict(event.record)
        try:
            if event.type.is_removal:
                self._store.remove_records(record)
            else:
                self._store.add_to_store(record)
        except Exception:
            _logger.warning("Failed to apply %s event", event.type, exc_info=True)
            return
        _logger.debug("Applied %s event for %s", event.type, self._store.identity.get_key(record))
