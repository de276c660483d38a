from __future__ import annotations

from datetime import UTC, datetime, timedelta

from pymirror.state.pagination import PaginationCache, stable_stringify


class _Clock:
    def __init__(self) -> None:
        self.now = datetime(2026, 1, 1, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now


def _response(total: int, ids: list[int], *, limit: int = 10, skip: int = 0) -> dict:
    return {"total": total, "limit": limit, "skip": skip, "data": [{"id": i} for i in ids]}


def test_stable_stringify_ignores_key_order() -> None:
    assert stable_stringify({"a": 1, "b": {"c": 2, "d": 3}}) == stable_stringify({"b": {"d": 3, "c": 2}, "a": 1})


def test_pages_of_one_query_share_the_total() -> None:
    cache = PaginationCache(id_field="id")
    cache.update_pagination_for_query(None, {"name": "a", "$limit": 10, "$skip": 0}, _response(25, list(range(10))))
    cache.update_pagination_for_query(
        None, {"$skip": 10, "name": "a", "$limit": 10}, _response(25, list(range(10, 20)), skip=10)
    )

    assert cache.get_total({"query": {"name": "a", "$limit": 10, "$skip": 20}}) == 25
    assert cache.get_page({"query": {"name": "a", "$limit": 10, "$skip": 10}}).ids == list(range(10, 20))
    assert cache.get_page({"query": {"name": "a", "$limit": 10, "$skip": 20}}) is None
    assert cache.get_total({"query": {"name": "b"}}) is None


def test_qid_partitions_bookkeeping() -> None:
    cache = PaginationCache(id_field="id")
    info = cache.update_pagination_for_query("sidebar", {"$limit": 5}, _response(3, [1, 2, 3], limit=5))

    assert info.qid == "sidebar"
    assert cache.most_recent("sidebar").total == 3
    assert cache.most_recent("sidebar").page_params == {"$limit": 5, "$skip": 0}
    assert cache.most_recent() is None
    assert cache.get_total({"qid": "default", "query": {"$limit": 5}}) is None


def test_page_params_fall_back_to_response() -> None:
    cache = PaginationCache(id_field="id")
    info = cache.get_query_info({"query": {"name": "a"}}, {"limit": 10, "skip": 20})
    assert info.page_params == {"$limit": 10, "$skip": 20}
    assert info.query_params == {"name": "a"}


def test_unpaginated_response_uses_data_length() -> None:
    cache = PaginationCache(id_field="id")
    cache.update_pagination_for_query(None, {}, {"data": [{"id": 1}, {"id": 2}]})
    assert cache.get_total({}) == 2
    assert cache.get_page({}).ids == [1, 2]


def test_ssr_pages_are_flagged_until_unflagged() -> None:
    cache = PaginationCache(id_field="id", ssr=True)
    params = {"query": {"$limit": 10, "$skip": 0}}
    cache.update_pagination_for_query(None, params["query"], _response(1, [1]))

    assert cache.is_ssr_page(params)
    cache.unflag_ssr(params)
    assert not cache.is_ssr_page(params)


def test_preserve_ssr_keeps_previous_flag() -> None:
    cache = PaginationCache(id_field="id", ssr=True)
    query = {"$limit": 10, "$skip": 0}
    cache.update_pagination_for_query(None, query, _response(1, [1]))
    cache.ssr = False

    cache.update_pagination_for_query(None, query, _response(1, [1]), preserve_ssr=True)
    assert cache.is_ssr_page({"query": query})

    cache.update_pagination_for_query(None, query, _response(1, [1]))
    assert not cache.is_ssr_page({"query": query})


def test_query_ttl_marks_pages_expired() -> None:
    clock = _Clock()
    cache = PaginationCache(id_field="id", query_ttl=60, clock=clock)
    params = {"query": {"$limit": 10, "$skip": 0}}
    cache.update_pagination_for_query(None, params["query"], _response(1, [1]))

    assert not cache.get_query_info(params).is_expired
    clock.now += timedelta(seconds=61)
    assert cache.get_query_info(params).is_expired


def test_clear() -> None:
    cache = PaginationCache(id_field="id")
    cache.update_pagination_for_query(None, {}, _response(1, [1]))
    cache.clear()
    assert cache.pagination == {}
