"""Lazily recomputed store views.

The store bumps a version counter on every write. A :class:`Computed`
re-runs its function only when it is read after the version changed, which is
all a UI adapter needs to wrap store reads as observables.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import TYPE_CHECKING, Generic, TypeVar

if TYPE_CHECKING:
    from pymirror.state.store import DataStore

T = TypeVar("T")


class Computed(Generic[T]):
    """A value derived from store state, cached per store version."""

    def __init__(self, store: DataStore, fn: Callable[[], T]) -> None:
        self._store = store
        self._fn = fn
        self._version: int | None = None
        self._value: T | None = None
        self.recomputations = 0

    @property
    def value(self) -> T:
        if self._version != self._store.version:
            self._value = self._fn()
            self._version = self._store.version
            self.recomputations += 1
        return self._value  # type: ignore[return-value]

    @property
    def is_stale(self) -> bool:
        return self._version != self._store.version

    def subscribe(self, listener: Callable[[], None]) -> Callable[[], None]:
        """Call *listener* after every store write; returns an unsubscribe function."""
        return self._store.subscribe(listener)
