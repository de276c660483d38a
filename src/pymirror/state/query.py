"""Local query engine.

Splits a Feathers-style query into match criteria and reserved filters,
validates the operators it uses, and provides the sort / paginate / select
steps that :class:`pymirror.state.store.DataStore` chains together.
"""

from __future__ import annotations

import functools
from collections.abc import Callable, Iterable, Mapping
from typing import Any

from pymirror._constants import (
    ADDITIONAL_OPERATORS,
    DEFAULT_OPERATORS,
    FILTERS,
    LIKE_OPERATORS,
    REGEX_OPERATORS,
)
from pymirror.exceptions import MirrorInvalidQueryError


def allowed_operators(
    whitelist: Iterable[str] = (),
    custom_operators: Iterable[str] = (),
) -> frozenset[str]:
    """Operators accepted by the local engine for a service."""
    return frozenset(
        (*DEFAULT_OPERATORS, *ADDITIONAL_OPERATORS, *REGEX_OPERATORS, *LIKE_OPERATORS, *whitelist, *custom_operators)
    )


def _parse_int(name: str, value: Any) -> int | None:
    if value is None:
        return None
    if isinstance(value, bool):
        raise MirrorInvalidQueryError(f"{name} must be an integer, got bool")
    try:
        parsed = int(value)
    except (TypeError, ValueError) as exc:
        raise MirrorInvalidQueryError(f"{name} must be an integer, got {value!r}") from exc
    if parsed < 0:
        raise MirrorInvalidQueryError(f"{name} must not be negative, got {parsed}")
    return parsed


def _parse_sort(value: Any) -> dict[str, int] | None:
    if value is None:
        return None
    if not isinstance(value, Mapping):
        raise MirrorInvalidQueryError("$sort must be an object of field: 1 | -1")
    parsed: dict[str, int] = {}
    for field_name, direction in value.items():
        try:
            number = int(direction)
        except (TypeError, ValueError) as exc:
            raise MirrorInvalidQueryError(f"Invalid $sort direction for '{field_name}': {direction!r}") from exc
        if number not in (1, -1):
            raise MirrorInvalidQueryError(f"Invalid $sort direction for '{field_name}': {direction!r}")
        parsed[str(field_name)] = number
    return parsed


def _parse_select(value: Any) -> list[str] | None:
    if value is None:
        return None
    if isinstance(value, str):
        return [value]
    if isinstance(value, (list, tuple)) and all(isinstance(v, str) for v in value):
        return list(value)
    raise MirrorInvalidQueryError("$select must be a field name or a list of field names")


def _validate(criteria: Mapping[str, Any], allowed: frozenset[str]) -> None:
    for key, condition in criteria.items():
        if isinstance(key, str) and key.startswith("$"):
            if key not in allowed:
                raise MirrorInvalidQueryError(f"Invalid query parameter {key}")
            if key in ("$or", "$and", "$nor"):
                if not isinstance(condition, (list, tuple)):
                    raise MirrorInvalidQueryError(f"{key} requires an array of query objects")
                for clause in condition:
                    if not isinstance(clause, Mapping):
                        raise MirrorInvalidQueryError(f"{key} requires an array of query objects")
                    _validate(clause, allowed)
            continue
        _validate_condition(condition, allowed)


def _validate_condition(condition: Any, allowed: frozenset[str]) -> None:
    if not isinstance(condition, Mapping):
        return
    for op, operand in condition.items():
        if not (isinstance(op, str) and op.startswith("$")):
            # Plain nested-object equality.
            return
        if op not in allowed:
            raise MirrorInvalidQueryError(f"Invalid query parameter {op}")
        if op == "$not":
            _validate_condition(operand, allowed)
        elif op == "$elemMatch" and isinstance(operand, Mapping):
            if all(isinstance(k, str) and k.startswith("$") for k in operand):
                _validate_condition(operand, allowed)
            else:
                _validate(operand, allowed)


def filter_query(
    query: Mapping[str, Any] | None,
    *,
    operators: frozenset[str],
) -> tuple[dict[str, Any], dict[str, Any]]:
    """Split *query* into ``(criteria, filters)``.

    ``filters`` holds the parsed ``$sort``, ``$limit``, ``$skip`` and
    ``$select`` values (``None`` when absent). ``criteria`` keeps everything
    else, including ``$or`` / ``$and`` clauses.
    """
    if query is None:
        query = {}
    if not isinstance(query, Mapping):
        raise MirrorInvalidQueryError(f"query must be an object, got {type(query).__name__}")

    criteria: dict[str, Any] = {}
    raw_filters: dict[str, Any] = {}
    for key, value in query.items():
        if key in FILTERS:
            raw_filters[key] = value
        else:
            criteria[key] = value

    _validate(criteria, operators)

    filters: dict[str, Any] = {
        "$sort": _parse_sort(raw_filters.get("$sort")),
        "$limit": _parse_int("$limit", raw_filters.get("$limit")),
        "$skip": _parse_int("$skip", raw_filters.get("$skip")),
        "$select": _parse_select(raw_filters.get("$select")),
    }
    return criteria, filters


def omit(data: Mapping[str, Any], *keys: str) -> dict[str, Any]:
    return {k: v for k, v in data.items() if k not in keys}


# ---------------------------------------------------------------------------
# Sorting
# ---------------------------------------------------------------------------


def _type_rank(value: Any) -> int:
    if value is None:
        return 0
    if isinstance(value, (bool, int, float)):
        return 1
    if isinstance(value, str):
        return 2
    if isinstance(value, dict):
        return 3
    if isinstance(value, (list, tuple)):
        return 4
    return 5


def compare_values(left: Any, right: Any) -> int:
    """Total order used by ``$sort``: ``None`` first, then by type rank."""
    left_rank = _type_rank(left)
    right_rank = _type_rank(right)
    if left_rank != right_rank:
        return -1 if left_rank < right_rank else 1
    if left_rank == 0:
        return 0
    if left_rank == 3:
        return compare_values(sorted(left.items(), key=lambda kv: kv[0]), sorted(right.items(), key=lambda kv: kv[0]))
    if left_rank == 4:
        for a, b in zip(left, right, strict=False):
            result = compare_values(a, b)
            if result:
                return result
        return (len(left) > len(right)) - (len(left) < len(right))
    try:
        return (left > right) - (left < right)
    except TypeError:
        return compare_values(repr(left), repr(right))


def _sort_value(record: dict[str, Any], field_name: str) -> Any:
    current: Any = record
    for segment in field_name.split("."):
        if not isinstance(current, dict):
            return None
        current = current.get(segment)
    return current


def sorter(sort: Mapping[str, int]) -> Callable[[list[dict[str, Any]]], list[dict[str, Any]]]:
    """Return a stable multi-key sort function for a parsed ``$sort``."""
    keys = list(sort.items())

    def compare(left: dict[str, Any], right: dict[str, Any]) -> int:
        for field_name, direction in keys:
            result = compare_values(_sort_value(left, field_name), _sort_value(right, field_name))
            if result:
                return result * direction
        return 0

    def sort_items(items: list[dict[str, Any]]) -> list[dict[str, Any]]:
        # sorted() is stable: ties keep insertion order.
        return sorted(items, key=functools.cmp_to_key(compare))

    return sort_items


# ---------------------------------------------------------------------------
# Projection
# ---------------------------------------------------------------------------


def select_fields(record: dict[str, Any], select: list[str] | None, *keep: str) -> dict[str, Any]:
    """Apply ``$select``; returns *record* itself when no selection is given."""
    if not select:
        return record
    fields = [*select, *keep]
    return {key: record[key] for key in fields if key in record}
