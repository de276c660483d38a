"""Records bound to their store (and optionally their service).

A :class:`BoundRecord` is a thin mutable mapping over a record dict. Reads and
writes go straight to the wrapped dict, so a record bound to a stored item
always shows the store's current values.
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping, MutableMapping
from typing import TYPE_CHECKING, Any

from pymirror._constants import TEMP_ID_KEY
from pymirror.exceptions import MirrorError
from pymirror.state.clones import DiffDefinition
from pymirror.state.identity import is_clone

if TYPE_CHECKING:
    from pymirror.service import MirrorService
    from pymirror.state.store import DataStore


class BoundRecord(MutableMapping[str, Any]):
    """A record together with the store it belongs to."""

    __slots__ = ("data", "store", "service")

    def __init__(self, data: dict[str, Any], store: DataStore, service: MirrorService | None = None) -> None:
        self.data = data
        self.store = store
        self.service = service

    def __getitem__(self, key: str) -> Any:
        return self.data[key]

    def __setitem__(self, key: str, value: Any) -> None:
        self.data[key] = value

    def __delitem__(self, key: str) -> None:
        del self.data[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self.data)

    def __len__(self) -> int:
        return len(self.data)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, BoundRecord):
            return self.data == other.data
        if isinstance(other, Mapping):
            return self.data == dict(other)
        return NotImplemented

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        return f"BoundRecord({self.data!r})"

    def _bind(self, data: dict[str, Any] | None) -> BoundRecord | None:
        if data is None:
            return None
        return BoundRecord(data, self.store, self.service)

    def _require_service(self) -> MirrorService:
        if self.service is None:
            raise MirrorError("Record is not bound to a service")
        return self.service

    # ------------------------------------------------------------------
    # Identity
    # ------------------------------------------------------------------

    @property
    def id(self) -> Any:
        return self.store.identity.get_id(self.data)

    @property
    def temp_id(self) -> str | None:
        return self.data.get(TEMP_ID_KEY)

    @property
    def is_temp(self) -> bool:
        return self.store.identity.is_temp(self.data)

    @property
    def is_clone(self) -> bool:
        return is_clone(self.data)

    # ------------------------------------------------------------------
    # Local lifecycle
    # ------------------------------------------------------------------

    def get_clone(self) -> BoundRecord | None:
        return self._bind(self.store.get_clone(self.data))

    def clone(self, data: Mapping[str, Any] | None = None, *, use_existing: bool = False) -> BoundRecord:
        return BoundRecord(self.store.clone(self.data, data, use_existing=use_existing), self.store, self.service)

    def commit(self, data: Mapping[str, Any] | None = None) -> BoundRecord:
        return BoundRecord(self.store.commit(self.data, data), self.store, self.service)

    def reset(self, data: Mapping[str, Any] | None = None) -> BoundRecord:
        return BoundRecord(self.store.reset(self.data, data), self.store, self.service)

    def diff(self, definition: DiffDefinition = None, with_: DiffDefinition = None) -> dict[str, Any]:
        return self.store.diff(self.data, definition, with_)

    def add_to_store(self) -> BoundRecord:
        stored = self.store.add_to_store(self.data)
        self.data = stored
        return self

    def remove_from_store(self) -> BoundRecord:
        self.store.remove_records(self.data)
        return self

    # ------------------------------------------------------------------
    # Remote
    # ------------------------------------------------------------------

    async def save(self, params: Mapping[str, Any] | None = None) -> BoundRecord:
        """Create a temp record, or patch a stored one (clones send their diff)."""
        return await self._require_service().save(self, params)

    async def create(self, params: Mapping[str, Any] | None = None) -> BoundRecord:
        return await self._require_service().create(self.data, params)

    async def patch(self, params: Mapping[str, Any] | None = None) -> BoundRecord:
        service = self._require_service()
        params = dict(params or {})
        data = params.pop("data", None)
        return await service.patch(self.id, data if data is not None else self.data, params)

    async def remove(self, params: Mapping[str, Any] | None = None) -> Any:
        service = self._require_service()
        if self.is_temp:
            self.remove_from_store()
            return self
        return await service.remove(self.id, params)
