"""Per-query pagination bookkeeping.

Server-reported totals and page contents are recorded under
``qid -> query_id -> page_id``:

* ``qid`` is a caller-chosen partition key (``"default"`` when omitted);
* ``query_id`` is a stable serialization of the query without ``$limit`` /
  ``$skip``, so every page of one logical query shares its total;
* ``page_id`` is a stable serialization of ``{"$limit", "$skip"}``.
"""

from __future__ import annotations

import json
from collections.abc import Callable, Mapping
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from pymirror._constants import DEFAULT_QID, PAGE_FILTERS
from pymirror.state.query import omit

_ALL_PAGES = "{}"


def _utcnow() -> datetime:
    return datetime.now(UTC)


def stable_stringify(value: Any) -> str:
    """Key-order independent JSON serialization used for query/page ids."""
    return json.dumps(value, sort_keys=True, separators=(",", ":"), default=str)


class PageState(BaseModel):
    model_config = ConfigDict(extra="forbid")

    ids: list[Any] = Field(default_factory=list)
    queried_at: datetime
    ssr: bool = False


class QueryState(BaseModel):
    model_config = ConfigDict(extra="forbid")

    query_params: dict[str, Any] = Field(default_factory=dict)
    total: int = 0
    pages: dict[str, PageState] = Field(default_factory=dict)


class MostRecentQuery(BaseModel):
    model_config = ConfigDict(extra="forbid")

    query: dict[str, Any]
    query_id: str
    query_params: dict[str, Any]
    page_id: str | None = None
    page_params: dict[str, int] | None = None
    queried_at: datetime
    total: int


class QidPagination(BaseModel):
    model_config = ConfigDict(extra="forbid")

    most_recent: MostRecentQuery | None = None
    queries: dict[str, QueryState] = Field(default_factory=dict)


class QueryInfo(BaseModel):
    """Identifiers derived from request params (and optionally a response)."""

    model_config = ConfigDict(frozen=True)

    qid: str
    query: dict[str, Any]
    query_id: str
    query_params: dict[str, Any]
    page_params: dict[str, int] | None = None
    page_id: str | None = None
    is_expired: bool = False


class PaginationCache:
    """Record and look up the latest server pagination metadata per query."""

    def __init__(
        self,
        *,
        id_field: str,
        ssr: bool = False,
        query_ttl: float | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._id_field = id_field
        self.ssr = ssr
        self._query_ttl = query_ttl
        self._clock = clock
        self._pagination: dict[str, QidPagination] = {}

    @property
    def pagination(self) -> dict[str, QidPagination]:
        return self._pagination

    def _page(self, info: QueryInfo) -> PageState | None:
        qid_state = self._pagination.get(info.qid)
        if qid_state is None:
            return None
        query_state = qid_state.queries.get(info.query_id)
        if query_state is None:
            return None
        return query_state.pages.get(info.page_id or _ALL_PAGES)

    def _is_expired(self, page: PageState | None) -> bool:
        if page is None or self._query_ttl is None:
            return False
        return (self._clock() - page.queried_at).total_seconds() > self._query_ttl

    def get_query_info(
        self,
        params: Mapping[str, Any] | None,
        response: Mapping[str, Any] | None = None,
    ) -> QueryInfo:
        params = params or {}
        query: dict[str, Any] = dict(params.get("query") or {})
        qid = str(params.get("qid") or DEFAULT_QID)

        limit = query.get("$limit")
        skip = query.get("$skip")
        if response is not None:
            if limit is None:
                limit = response.get("limit")
            if skip is None:
                skip = response.get("skip")

        page_params = {"$limit": int(limit), "$skip": int(skip or 0)} if limit is not None else None
        query_params = omit(query, *PAGE_FILTERS)
        info = QueryInfo(
            qid=qid,
            query=query,
            query_id=stable_stringify(query_params),
            query_params=query_params,
            page_params=page_params,
            page_id=stable_stringify(page_params) if page_params is not None else None,
        )
        return info.model_copy(update={"is_expired": self._is_expired(self._page(info))})

    def get_page(self, params: Mapping[str, Any] | None) -> PageState | None:
        return self._page(self.get_query_info(params))

    def get_total(self, params: Mapping[str, Any] | None) -> int | None:
        info = self.get_query_info(params)
        qid_state = self._pagination.get(info.qid)
        if qid_state is None or info.query_id not in qid_state.queries:
            return None
        return qid_state.queries[info.query_id].total

    def update_pagination_for_query(
        self,
        qid: str | None,
        query: Mapping[str, Any] | None,
        response: Mapping[str, Any],
        *,
        preserve_ssr: bool = False,
    ) -> QueryInfo:
        """Record a paginated server response for ``qid``."""
        data = response.get("data") or []
        ids = [record.get(self._id_field) for record in data if isinstance(record, Mapping)]
        queried_at = self._clock()
        info = self.get_query_info({"qid": qid, "query": dict(query or {})}, response)

        qid_state = self._pagination.setdefault(info.qid, QidPagination())
        query_state = qid_state.queries.get(info.query_id)
        if query_state is None:
            query_state = QueryState(query_params=info.query_params)
            qid_state.queries[info.query_id] = query_state

        page_key = info.page_id or _ALL_PAGES
        previous = query_state.pages.get(page_key)
        ssr = previous.ssr if (preserve_ssr and previous is not None) else self.ssr
        query_state.pages[page_key] = PageState(ids=ids, queried_at=queried_at, ssr=ssr)

        total = response.get("total")
        query_state.total = int(total) if total is not None else len(data)
        qid_state.most_recent = MostRecentQuery(
            query=info.query,
            query_id=info.query_id,
            query_params=info.query_params,
            page_id=info.page_id,
            page_params=info.page_params,
            queried_at=queried_at,
            total=query_state.total,
        )
        return info

    def is_ssr_page(self, params: Mapping[str, Any] | None) -> bool:
        page = self.get_page(params)
        return page is not None and page.ssr

    def unflag_ssr(self, params: Mapping[str, Any] | None) -> None:
        """Clear the server-rendered marker of the page matching *params*."""
        page = self.get_page(params)
        if page is not None:
            page.ssr = False

    def most_recent(self, qid: str = DEFAULT_QID) -> MostRecentQuery | None:
        qid_state = self._pagination.get(qid)
        return qid_state.most_recent if qid_state is not None else None

    def clear(self) -> None:
        self._pagination.clear()
