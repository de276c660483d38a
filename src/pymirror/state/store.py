"""In-memory mirror of one remote service.

This is the only component allowed to place records into the item, temp and
clone tables. Server responses, realtime events and local edits all go through
``add_to_store`` / ``patch_in_store`` / ``remove_from_store``.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping
from datetime import UTC, datetime
from typing import Any, overload

from pymirror._constants import DEFAULT_ID_FIELD, FILTERS, TEMP_ID_KEY
from pymirror.exceptions import MirrorInvalidQueryError, MirrorInvalidStateError
from pymirror.models.results import FindResult
from pymirror.state.clones import CloneManager, DiffDefinition
from pymirror.state.identity import IdentityResolver, is_clone
from pymirror.state.live import Computed
from pymirror.state.operators import CustomOperator, PredicateFactory, build_predicate
from pymirror.state.pagination import PaginationCache, QueryInfo
from pymirror.state.pending import EventLocks, PendingTracker
from pymirror.state.query import allowed_operators, filter_query, omit, select_fields, sorter
from pymirror.state.table import RecordTable

_logger = logging.getLogger(__name__)

Params = Mapping[str, Any]


def _utcnow() -> datetime:
    return datetime.now(UTC)


class DataStore:
    """Local store: tables, query engine, clones, pagination and pending state.

    The store is designed to be deterministic: given the same sequence of
    writes it holds the same records in the same order.
    """

    def __init__(
        self,
        *,
        id_field: str = DEFAULT_ID_FIELD,
        whitelist: Iterable[str] = (),
        params_for_server: Iterable[str] = (),
        custom_operators: Mapping[str, CustomOperator] | None = None,
        ssr: bool = False,
        query_ttl: float | None = None,
        predicate_factory: PredicateFactory = build_predicate,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.identity = IdentityResolver(id_field)
        self.items = RecordTable("items", self.identity.get_id)
        self.temps = RecordTable("temps", self.identity.get_temp_id)
        self.clones = RecordTable("clones", self.identity.get_key)
        self._temp_aliases: dict[Any, Any] = {}

        self._custom_operators = dict(custom_operators or {})
        self._operators = allowed_operators(whitelist, self._custom_operators)
        self._params_for_server = tuple(params_for_server)
        self._predicate_factory = predicate_factory

        self.clone_manager = CloneManager(
            identity=self.identity,
            items=self.items,
            temps=self.temps,
            clones=self.clones,
            add_item=self._add_item,
            on_change=self._touch,
        )
        self.pagination = PaginationCache(id_field=id_field, ssr=ssr, query_ttl=query_ttl, clock=clock)
        self.pending = PendingTracker()
        self.event_locks = EventLocks()

        self._version = 0
        self._listeners: list[Callable[[], None]] = []

    # ------------------------------------------------------------------
    # Change notification
    # ------------------------------------------------------------------

    @property
    def id_field(self) -> str:
        return self.identity.id_field

    @property
    def version(self) -> int:
        return self._version

    def subscribe(self, listener: Callable[[], None]) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _touch(self) -> None:
        self._version += 1
        for listener in list(self._listeners):
            try:
                listener()
            except Exception:
                _logger.debug("Store listener failed", exc_info=True)

    def watch_find(self, params: Params | None = None) -> Computed[FindResult]:
        """A view of ``find_in_store(params)`` recomputed after store writes."""
        return Computed(self, lambda: self.find_in_store(params))

    def watch_get(self, record_id: Any, params: Params | None = None) -> Computed[dict[str, Any] | None]:
        return Computed(self, lambda: self.get_from_store(record_id, params))

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    @staticmethod
    def _require_record(record: Any) -> None:
        if not isinstance(record, dict):
            raise MirrorInvalidStateError(f"Records must be dicts, got {type(record).__name__}")

    def _add_item(self, record: dict[str, Any]) -> dict[str, Any]:
        """Place one record in the table matching its identity."""
        self._require_record(record)
        self.identity.ensure_temp_id(record)

        if is_clone(record):
            return self.clones.merge(record)

        record_id = self.identity.get_id(record)
        temp_id = self.identity.get_temp_id(record)
        if record_id is not None and temp_id is not None:
            return self._move_temp_to_items(record, temp_id, record_id)
        if record_id is not None:
            return self.items.merge(record)
        return self.temps.merge(record)

    def _move_temp_to_items(self, record: dict[str, Any], temp_id: Any, record_id: Any) -> dict[str, Any]:
        temp = self.temps.remove(temp_id)
        if temp is not None and temp is not record:
            temp.update(record)
            record = temp
        stored = self.items.merge(record)
        self._temp_aliases[temp_id] = record_id
        self.clone_manager.rekey(temp_id, record_id)
        if temp is not None:
            _logger.debug("Promoted temp record temp_id=%s id=%s", temp_id, record_id)
        return stored

    @overload
    def add_to_store(self, data: dict[str, Any]) -> dict[str, Any]: ...

    @overload
    def add_to_store(self, data: list[dict[str, Any]]) -> list[dict[str, Any]]: ...

    def add_to_store(self, data: dict[str, Any] | list[dict[str, Any]]) -> dict[str, Any] | list[dict[str, Any]]:
        """Add or merge one record or a list of records.

        Returns the stored record(s); a list in gives a list out. A list
        holding a non-record is rejected before anything is written.
        """
        records = data if isinstance(data, list) else [data]
        for record in records:
            self._require_record(record)
        try:
            stored = [self._add_item(record) for record in records]
        finally:
            self._touch()
        return stored if isinstance(data, list) else stored[0]

    create_in_store = add_to_store

    def patch_in_store(
        self,
        record_id: Any,
        data: Mapping[str, Any],
        params: Params | None = None,
    ) -> dict[str, Any] | list[dict[str, Any]] | None:
        """Merge *data* onto a stored record (or every match of ``params``)."""
        if record_id is None:
            if params is None or params.get("query") is None:
                return None
            matches = self.find_in_store(omit(params, "clones")).data
            patched: list[dict[str, Any]] = []
            try:
                for item in matches:
                    patched.append(self._add_item({**item, **data}))
            finally:
                if patched:
                    self._touch()
            return patched

        existing = self.get_from_store(record_id)
        if existing is not None:
            return self.add_to_store({**existing, **data})

        record = dict(data)
        if self.identity.get_id(record) is None and record.get(TEMP_ID_KEY) is None:
            record[self.id_field] = record_id
        return self.add_to_store(record)

    def remove_records(self, data: dict[str, Any] | list[dict[str, Any]]) -> dict[str, Any] | list[dict[str, Any]]:
        """Remove records from items, temps and clones."""
        records = data if isinstance(data, list) else [data]
        for record in records:
            self._remove_record(record)
        self._touch()
        return data

    def _remove_record(self, record: Mapping[str, Any]) -> None:
        record_id = record.get(self.id_field)
        temp_id = record.get(TEMP_ID_KEY)
        if record_id is None and temp_id is not None:
            record_id = self._temp_aliases.get(temp_id)
        for key in (record_id, temp_id):
            if key is None:
                continue
            self.items.remove(key)
            self.temps.remove(key)
            self.clones.remove(key)
        if temp_id is not None:
            self._temp_aliases.pop(temp_id, None)

    def remove_from_store(
        self,
        record_id: Any = None,
        params: Params | None = None,
    ) -> dict[str, Any] | list[dict[str, Any]] | None:
        """Remove by id, or by query when no id is given.

        Removing an id that is not stored is a no-op returning ``None``. With
        neither an id nor ``params["query"]`` nothing happens and ``None`` is
        returned.
        """
        if record_id is not None:
            item = self.get_from_store(record_id)
            if item is None:
                return None
            self._remove_record(item)
            self._touch()
            return item
        if params is not None and params.get("query") is not None:
            return self.remove_by_query(params)
        return None

    def remove_by_query(self, params: Params) -> list[dict[str, Any]]:
        values, _filters = self._filter_items(params, self.clones.list())
        for record in values:
            self._remove_record(record)
        self._touch()
        return values

    def restore(self, record_id: Any, snapshot: Mapping[str, Any]) -> dict[str, Any] | None:
        """Replace the fields of a stored record with *snapshot*, in place."""
        stored = self._lookup(record_id)
        if stored is None:
            return None
        stored.clear()
        stored.update(snapshot)
        self._touch()
        return stored

    def clear_all(self) -> None:
        self.items.clear()
        self.temps.clear()
        self.clones.clear()
        self._temp_aliases.clear()
        self.pagination.clear()
        self.pending.clear_all_pending()
        self.event_locks.clear()
        self._touch()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def _filter_items(
        self,
        params: Params | None,
        starting_values: Iterable[dict[str, Any]] = (),
    ) -> tuple[list[dict[str, Any]], dict[str, Any]]:
        params = params or {}
        query = omit(params.get("query") or {}, *self._params_for_server)
        criteria, filters = filter_query(query, operators=self._operators)

        values = [*starting_values, *self.items.list()]
        if params.get("temps"):
            values.extend(self.temps.list())

        predicate = self._predicate_factory(criteria, self._custom_operators)
        return [value for value in values if predicate(value)], filters

    def find_in_store(self, params: Params | None = None) -> FindResult:
        params = params or {}
        values, filters = self._filter_items(params)
        total = len(values)

        if filters["$sort"]:
            values = sorter(filters["$sort"])(values)

        skip = filters["$skip"] or 0
        if skip:
            values = values[skip:]

        limit = filters["$limit"]
        if limit is not None:
            values = values[:limit]

        # Clones are returned whole so edits land on the clone table.
        if params.get("clones"):
            values = [self.clone_manager.clone(value, use_existing=True) for value in values]
        elif filters["$select"]:
            values = [select_fields(value, filters["$select"], self.id_field, TEMP_ID_KEY) for value in values]

        return FindResult(total=total, limit=limit or 0, skip=skip, data=values)

    def find_one_in_store(self, params: Params | None = None) -> dict[str, Any] | None:
        params = dict(params or {})
        params["query"] = {**(params.get("query") or {}), "$limit": 1}
        result = self.find_in_store(params)
        return result.data[0] if result.data else None

    def count_in_store(self, params: Params | None) -> int:
        if params is None or params.get("query") is None:
            raise MirrorInvalidQueryError("params must contain a query object")
        counted = {**params, "query": omit(params["query"], *FILTERS)}
        counted.pop("clones", None)
        return self.find_in_store(counted).total

    def _lookup(self, record_id: Any) -> dict[str, Any] | None:
        item = self.items.get(record_id)
        if item is not None:
            return item
        item = self.temps.get(record_id)
        if item is not None:
            return item
        alias = self._temp_aliases.get(record_id)
        return self.items.get(alias) if alias is not None else None

    def get_from_store(self, record_id: Any, params: Params | None = None) -> dict[str, Any] | None:
        """Look up by id, then by temp id (including promoted temp ids)."""
        if record_id is None:
            return None
        item = self._lookup(record_id)
        if item is None:
            return None

        params = params or {}
        _criteria, filters = filter_query(params.get("query") or {}, operators=self._operators)
        if params.get("clones"):
            return self.clone_manager.clone(item, use_existing=True)
        return select_fields(item, filters["$select"], self.id_field, TEMP_ID_KEY)

    # ------------------------------------------------------------------
    # Clones
    # ------------------------------------------------------------------

    def clone(
        self,
        record: dict[str, Any],
        data: Mapping[str, Any] | None = None,
        *,
        use_existing: bool = False,
    ) -> dict[str, Any]:
        return self.clone_manager.clone(record, data, use_existing=use_existing)

    def commit(self, clone: dict[str, Any], data: Mapping[str, Any] | None = None) -> dict[str, Any]:
        return self.clone_manager.commit(clone, data)

    def reset(self, clone: dict[str, Any], data: Mapping[str, Any] | None = None) -> dict[str, Any]:
        return self.clone_manager.reset(clone, data)

    def diff(
        self,
        clone: dict[str, Any],
        definition: DiffDefinition = None,
        with_: DiffDefinition = None,
    ) -> dict[str, Any]:
        return self.clone_manager.diff(clone, definition, with_)

    def get_clone(self, record: Mapping[str, Any]) -> dict[str, Any] | None:
        return self.clone_manager.get_clone(record)

    # ------------------------------------------------------------------
    # Pagination
    # ------------------------------------------------------------------

    @property
    def is_ssr(self) -> bool:
        return self.pagination.ssr

    @is_ssr.setter
    def is_ssr(self, value: bool) -> None:
        self.pagination.ssr = value

    def update_pagination_for_query(
        self,
        qid: str | None,
        query: Mapping[str, Any] | None,
        response: Mapping[str, Any],
        *,
        preserve_ssr: bool = False,
    ) -> QueryInfo:
        return self.pagination.update_pagination_for_query(qid, query, response, preserve_ssr=preserve_ssr)

    def unflag_ssr(self, params: Params | None) -> None:
        self.pagination.unflag_ssr(params)
