"""Insertion-ordered keyed record container."""

from __future__ import annotations

from collections.abc import Callable, Iterator
from types import MappingProxyType
from typing import Any


class RecordTable:
    """Map an identity to the single authoritative record dict.

    ``merge`` updates the stored dict in place, so anyone holding a reference
    to a stored record observes the new field values.
    """

    def __init__(self, name: str, get_key: Callable[[dict[str, Any]], Any]) -> None:
        self.name = name
        self._get_key = get_key
        self._by_id: dict[Any, dict[str, Any]] = {}

    def __len__(self) -> int:
        return len(self._by_id)

    def __contains__(self, key: object) -> bool:
        return key in self._by_id

    def __iter__(self) -> Iterator[dict[str, Any]]:
        return iter(list(self._by_id.values()))

    def __repr__(self) -> str:
        return f"RecordTable(name={self.name!r}, size={len(self._by_id)})"

    @property
    def by_id(self) -> MappingProxyType[Any, dict[str, Any]]:
        return MappingProxyType(self._by_id)

    def has(self, key: Any) -> bool:
        return key is not None and key in self._by_id

    def get(self, key: Any) -> dict[str, Any] | None:
        if key is None:
            return None
        return self._by_id.get(key)

    def list(self) -> list[dict[str, Any]]:
        return list(self._by_id.values())

    def ids(self) -> list[Any]:
        return list(self._by_id.keys())

    def merge(self, record: dict[str, Any]) -> dict[str, Any]:
        """Insert *record*, or shallow-overwrite the stored record's fields."""
        key = self._get_key(record)
        if key is None:
            raise ValueError(f"Cannot store a record without a key in table '{self.name}'")
        existing = self._by_id.get(key)
        if existing is None:
            self._by_id[key] = record
            return record
        if existing is not record:
            existing.update(record)
        return existing

    def put(self, key: Any, record: dict[str, Any]) -> dict[str, Any]:
        """Store *record* under an explicit key, replacing any previous entry."""
        self._by_id[key] = record
        return record

    def remove(self, key: Any) -> dict[str, Any] | None:
        if key is None:
            return None
        return self._by_id.pop(key, None)

    def clear(self) -> None:
        self._by_id.clear()
