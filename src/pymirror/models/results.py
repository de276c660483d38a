"""Query result containers."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True, slots=True)
class FindResult:
    """A page of records plus the pre-pagination match count.

    ``total`` counts every match before ``$skip`` / ``$limit``; it is not
    ``len(data)``. ``limit`` is ``0`` when the query had no ``$limit``.
    """

    total: int
    limit: int
    skip: int
    data: list[Any] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"total": self.total, "limit": self.limit, "skip": self.skip, "data": list(self.data)}
