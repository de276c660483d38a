"""A remote service mirrored into a local store.

:class:`MirrorService` pairs a :class:`~pymirror._transport.RemoteService`
with a :class:`~pymirror.state.store.DataStore`. Every remote call is counted
by the pending tracker and its response is merged into the store; realtime
events reach the store through the reconciler.
"""

from __future__ import annotations

import copy
import dataclasses
import functools
import logging
from collections.abc import Mapping
from typing import Any

from pymirror._constants import CLONE_KEY, SERVICE_EVENTS, TEMP_ID_KEY
from pymirror._transport import RemoteService
from pymirror.config import ServiceOptions
from pymirror.ingestion.apply import apply_find_response, apply_record_response
from pymirror.ingestion.normalize import get_array, normalize_find_response, strip_meta
from pymirror.models.instance import BoundRecord
from pymirror.models.results import FindResult
from pymirror.state.identity import is_clone
from pymirror.state.live import Computed
from pymirror.state.reconcile import EventReconciler
from pymirror.state.store import DataStore

_logger = logging.getLogger(__name__)

# Params understood by the mirror only; never sent to the server.
_LOCAL_PARAMS = frozenset(
    {"qid", "clones", "temps", "skip_request_if_exists", "preserve_ssr", "eager", "data", "diff", "with"}
)

Params = Mapping[str, Any]


def _server_params(params: Params) -> dict[str, Any]:
    return {k: v for k, v in params.items() if k not in _LOCAL_PARAMS}


def _outgoing(data: Mapping[str, Any]) -> dict[str, Any]:
    if isinstance(data, BoundRecord):
        data = data.data
    return strip_meta(data, TEMP_ID_KEY, CLONE_KEY)


class MirrorService:
    """Hybrid remote + local service for one path."""

    def __init__(
        self,
        path: str,
        remote: RemoteService,
        *,
        options: ServiceOptions | None = None,
        store: DataStore | None = None,
    ) -> None:
        self.path = path.strip("/")
        self.remote = remote
        self.options = options or ServiceOptions()
        self.store = store or DataStore(
            id_field=self.options.id_field,
            whitelist=self.options.whitelist,
            params_for_server=self.options.params_for_server,
            custom_operators=self.options.custom_operators,
            ssr=self.options.ssr,
            query_ttl=self.options.query_ttl,
        )
        self.reconciler = EventReconciler(
            self.store,
            debounce_time=self.options.debounce_events_time,
            guarantee=self.options.debounce_events_guarantee,
            handle_events=self.options.handle_events,
        )
        self._listeners: dict[str, Any] = {}
        self._attach_events()

    def __repr__(self) -> str:
        return f"MirrorService(path={self.path!r}, items={len(self.store.items)})"

    # ------------------------------------------------------------------
    # Realtime events
    # ------------------------------------------------------------------

    def _attach_events(self) -> None:
        for event in SERVICE_EVENTS:
            handler = functools.partial(self.handle_event, event)
            self.remote.on(event, handler)
            self._listeners[event] = handler

    def handle_event(self, event: str, payload: Any) -> bool:
        """Feed one realtime notification to the reconciler."""
        return self.reconciler.handle(event, payload)

    def close(self) -> None:
        """Detach event listeners and cancel pending debounced events."""
        for event, handler in self._listeners.items():
            self.remote.off(event, handler)
        self._listeners.clear()
        self.reconciler.close()

    # ------------------------------------------------------------------
    # Binding
    # ------------------------------------------------------------------

    def bind(self, record: dict[str, Any]) -> BoundRecord:
        return BoundRecord(record, self.store, self)

    def _bind_optional(self, record: dict[str, Any] | None) -> BoundRecord | None:
        return self.bind(record) if record is not None else None

    def _bind_result(self, result: FindResult) -> FindResult:
        return dataclasses.replace(result, data=[self.bind(record) for record in result.data])

    def new(self, data: Mapping[str, Any] | None = None) -> BoundRecord:
        """Return an unsaved record with a temp id; it is not added to the store."""
        record = dict(data or {})
        self.store.identity.ensure_temp_id(record)
        return self.bind(record)

    # ------------------------------------------------------------------
    # Remote methods
    # ------------------------------------------------------------------

    def _with_page_defaults(self, params: Params | None) -> dict[str, Any]:
        params = dict(params or {})
        query = dict(params.get("query") or {})
        query.setdefault("$limit", self.options.default_limit)
        query.setdefault("$skip", 0)
        params["query"] = query
        return params

    async def find(self, params: Params | None = None) -> FindResult:
        """Query the server, store the records and record the page."""
        params = self._with_page_defaults(params)

        if self.store.pagination.is_ssr_page(params):
            # Server-rendered page: serve it locally once.
            self.store.unflag_ssr(params)
            local = self.store.find_in_store(params)
            total = self.store.pagination.get_total(params)
            _logger.debug("Serving ssr page for %s locally", self.path)
            return self._bind_result(dataclasses.replace(local, total=total if total is not None else local.total))

        with self.store.pending.track("find"):
            response = await self.remote.find(_server_params(params))
        result = apply_find_response(self.store, params, response, preserve_ssr=bool(params.get("preserve_ssr")))
        _logger.debug("find %s stored=%d total=%d", self.path, len(result.data), result.total)
        return self._bind_result(result)

    async def find_one(self, params: Params | None = None) -> BoundRecord | None:
        params = dict(params or {})
        params["query"] = {**(params.get("query") or {}), "$limit": 1}
        result = await self.find(params)
        return result.data[0] if result.data else None

    async def count(self, params: Params | None = None) -> int:
        """Ask the server for the match count only (``$limit: 0``)."""
        params = dict(params or {})
        query = {**(params.get("query") or {}), "$limit": 0}
        params["query"] = query
        with self.store.pending.track("count"):
            response = await self.remote.find(_server_params(params))
        return normalize_find_response(response, query)["total"]

    async def get(self, record_id: Any, params: Params | None = None) -> BoundRecord | None:
        params = params or {}
        if self.options.skip_get_if_exists or params.get("skip_request_if_exists"):
            existing = self.store.get_from_store(record_id)
            if existing is not None:
                return self.bind(existing)

        with self.store.pending.track("get", record_id):
            response = await self.remote.get(record_id, _server_params(params))
        if not isinstance(response, Mapping):
            return None
        return self.bind(apply_record_response(self.store, response))

    async def create(self, data: Mapping[str, Any], params: Params | None = None) -> BoundRecord:
        """Create on the server; a temp record with the same temp id is promoted."""
        params = params or {}
        record = data.data if isinstance(data, BoundRecord) else data
        temp_id = record.get(TEMP_ID_KEY)
        payload = params.get("data") if params.get("data") is not None else record

        with self.store.pending.track("create", temp_id):
            response = await self.remote.create(_outgoing(payload), _server_params(params))
        return self.bind(apply_record_response(self.store, response, temp_id=temp_id))

    async def patch(
        self,
        record_id: Any,
        data: Mapping[str, Any],
        params: Params | None = None,
    ) -> BoundRecord | list[BoundRecord]:
        """Patch on the server.

        With ``eager`` (the default) the store is patched before the request
        and rolled back when the request fails.
        """
        params = params or {}
        if record_id is None:
            with self.store.pending.track("patch"):
                response = await self.remote.patch(None, _outgoing(data), _server_params(params))
            return [self.bind(record) for record in self.store.add_to_store(get_array(response))]

        snapshot = None
        if params.get("eager", True):
            existing = self.store.get_from_store(record_id)
            if existing is not None:
                snapshot = copy.deepcopy(existing)
                self.store.patch_in_store(record_id, _outgoing(data))
        return await self._send_patch(record_id, _outgoing(data), params, snapshot)

    async def _send_patch(
        self,
        record_id: Any,
        payload: dict[str, Any],
        params: Params,
        snapshot: dict[str, Any] | None,
    ) -> BoundRecord:
        try:
            with self.store.pending.track("patch", record_id), self.store.event_locks.hold("patched", record_id):
                response = await self.remote.patch(record_id, payload, _server_params(params))
        except Exception:
            if snapshot is not None:
                _logger.debug("Rolling back eager patch of %s/%s", self.path, record_id)
                self.store.restore(record_id, snapshot)
            raise
        return self.bind(apply_record_response(self.store, response))

    async def remove(self, record_id: Any, params: Params | None = None) -> Any:
        params = params or {}
        if record_id is None:
            with self.store.pending.track("remove"):
                response = await self.remote.remove(None, _server_params(params))
            removed = get_array(response)
            self.store.remove_records(removed)
            return removed

        with self.store.pending.track("remove", record_id), self.store.event_locks.hold("removed", record_id):
            response = await self.remote.remove(record_id, _server_params(params))
        self.store.remove_from_store(record_id)
        return response

    async def save(self, record: Mapping[str, Any], params: Params | None = None) -> BoundRecord:
        """Persist *record*: create temps, patch stored records and clones.

        A clone sends only its diff (``params["diff"]`` / ``params["with"]``
        narrow or extend it) and is a no-op when nothing changed. The clone is
        committed before the request unless ``eager`` is false.
        """
        params = dict(params or {})
        data = record.data if isinstance(record, BoundRecord) else record
        identity = self.store.identity

        if identity.is_temp(data):
            return await self.create(data, params)

        record_id = identity.get_id(data)
        override = params.get("data")
        if not is_clone(data):
            return await self.patch(record_id, override if override is not None else data, params)

        payload = override if override is not None else self.store.diff(data, params.get("diff"), params.get("with"))
        if not payload:
            _logger.debug("save %s/%s skipped: no changes", self.path, record_id)
            return record if isinstance(record, BoundRecord) else self.bind(data)

        snapshot = None
        if params.get("eager", True):
            source = self.store.get_from_store(record_id)
            snapshot = copy.deepcopy(source) if source is not None else None
            self.store.commit(data, payload)
        _logger.debug("save %s/%s fields=%s", self.path, record_id, sorted(payload))
        return await self._send_patch(record_id, _outgoing(payload), params, snapshot)

    # ------------------------------------------------------------------
    # Store pass-throughs
    # ------------------------------------------------------------------

    def find_in_store(self, params: Params | None = None) -> FindResult:
        return self._bind_result(self.store.find_in_store(params))

    def find_one_in_store(self, params: Params | None = None) -> BoundRecord | None:
        return self._bind_optional(self.store.find_one_in_store(params))

    def count_in_store(self, params: Params | None) -> int:
        return self.store.count_in_store(params)

    def get_from_store(self, record_id: Any, params: Params | None = None) -> BoundRecord | None:
        return self._bind_optional(self.store.get_from_store(record_id, params))

    def create_in_store(self, data: Mapping[str, Any]) -> BoundRecord:
        record = data.data if isinstance(data, BoundRecord) else dict(data)
        return self.bind(self.store.add_to_store(record))

    add_to_store = create_in_store

    def patch_in_store(self, record_id: Any, data: Mapping[str, Any], params: Params | None = None) -> Any:
        result = self.store.patch_in_store(record_id, data, params)
        if isinstance(result, list):
            return [self.bind(record) for record in result]
        return self._bind_optional(result)

    def remove_from_store(self, record_id: Any = None, params: Params | None = None) -> Any:
        return self.store.remove_from_store(record_id, params)

    def clear_all(self) -> None:
        self.reconciler.cancel_pending()
        self.store.clear_all()

    def watch_find(self, params: Params | None = None) -> Computed[FindResult]:
        return Computed(self.store, lambda: self.find_in_store(params))

    def watch_get(self, record_id: Any, params: Params | None = None) -> Computed[BoundRecord | None]:
        return Computed(self.store, lambda: self.get_from_store(record_id, params))
