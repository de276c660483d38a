from __future__ import annotations

import pytest

from pymirror.exceptions import MirrorInvalidQueryError
from pymirror.state.operators import build_predicate, resolve_path


def _match(query: dict, record: dict, **custom) -> bool:
    return build_predicate(query, custom or None)(record)


def test_plain_equality_and_missing_fields() -> None:
    assert _match({"name": "a"}, {"name": "a"})
    assert not _match({"name": "a"}, {"name": "b"})
    assert _match({"deleted": None}, {"name": "a"})
    assert not _match({"deleted": None}, {"deleted": False})


def test_booleans_are_not_numbers() -> None:
    assert not _match({"flag": 1}, {"flag": True})
    assert _match({"flag": True}, {"flag": True})


def test_array_fields_match_any_element() -> None:
    record = {"tags": ["red", "blue"]}
    assert _match({"tags": "red"}, record)
    assert _match({"tags": {"$in": ["green", "blue"]}}, record)
    assert _match({"tags": {"$nin": ["green"]}}, record)
    assert _match({"tags": ["red", "blue"]}, record)


def test_comparison_operators() -> None:
    record = {"age": 30}
    assert _match({"age": {"$gt": 20, "$lte": 30}}, record)
    assert not _match({"age": {"$lt": 30}}, record)
    assert _match({"age": {"$ne": 31}}, record)
    assert not _match({"age": {"$gt": 20}}, {"name": "no age"})


def test_logical_operators() -> None:
    record = {"name": "a", "age": 5}
    assert _match({"$or": [{"name": "b"}, {"age": 5}]}, record)
    assert not _match({"$and": [{"name": "a"}, {"age": 6}]}, record)
    assert _match({"$nor": [{"name": "b"}]}, record)
    assert _match({"age": {"$not": {"$gt": 10}}}, record)


def test_nested_paths_fan_out_over_lists() -> None:
    record = {"author": {"name": "ann"}, "comments": [{"by": "bob"}, {"by": "cy"}]}
    assert _match({"author.name": "ann"}, record)
    assert _match({"comments.by": "cy"}, record)
    assert resolve_path(record, "comments.0.by") == "bob"


def test_regex_and_like() -> None:
    record = {"email": "Ann@Example.com"}
    assert _match({"email": {"$regex": "^ann", "$options": "i"}}, record)
    assert not _match({"email": {"$regex": "^ann"}}, record)
    assert _match({"email": {"$iLike": "%@example.com"}}, record)
    assert _match({"email": {"$notLike": "%@other.com"}}, record)


def test_array_operators() -> None:
    record = {"scores": [3, 8], "items": [{"sku": "a", "qty": 2}, {"sku": "b", "qty": 9}]}
    assert _match({"scores": {"$size": 2}}, record)
    assert _match({"scores": {"$all": [3, 8]}}, record)
    assert _match({"scores": {"$elemMatch": {"$gt": 5}}}, record)
    assert _match({"items": {"$elemMatch": {"sku": "b", "qty": {"$gt": 5}}}}, record)
    assert not _match({"items": {"$elemMatch": {"sku": "a", "qty": {"$gt": 5}}}}, record)


def test_exists() -> None:
    assert _match({"a": {"$exists": True}}, {"a": None})
    assert _match({"b": {"$exists": False}}, {"a": 1})


def test_custom_operator_is_used() -> None:
    assert _match(
        {"name": {"$startsWith": "fo"}},
        {"name": "foo"},
        **{"$startsWith": lambda value, operand: isinstance(value, str) and value.startswith(operand)},
    )


def test_in_requires_array() -> None:
    with pytest.raises(MirrorInvalidQueryError):
        _match({"name": {"$in": "a"}}, {"name": "a"})
