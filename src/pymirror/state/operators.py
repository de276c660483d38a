"""MongoDB-style predicate evaluation over plain record dicts.

``build_predicate(query)`` turns a query (criteria only, no ``$sort`` /
``$limit`` / ``$skip`` / ``$select``) into a callable ``record -> bool``.

Matching follows MongoDB semantics:

* dotted paths descend into nested dicts and fan out over lists;
* a list-valued field matches a scalar condition when any element matches;
* ``None`` matches a missing field;
* ``$ne`` / ``$nin`` are the negations of ``$eq`` / ``$in``.

Extra operators are plain callables ``(field_value, operand) -> bool``.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Mapping
from typing import Any

from pymirror.exceptions import MirrorInvalidQueryError

Predicate = Callable[[dict[str, Any]], bool]
CustomOperator = Callable[[Any, Any], bool]
PredicateFactory = Callable[[Mapping[str, Any], Mapping[str, CustomOperator] | None], Predicate]

_MISSING = object()


# ---------------------------------------------------------------------------
# Path resolution
# ---------------------------------------------------------------------------


def resolve_path(data: Any, dotted_path: str) -> Any:
    """Resolve a dotted path, returning ``_MISSING`` when nothing is found.

    Lists met along the way fan out: ``"tags.name"`` on
    ``{"tags": [{"name": "a"}, {"name": "b"}]}`` yields ``["a", "b"]``.
    Numeric segments index into lists.
    """
    current: Any = data
    for segment in dotted_path.split("."):
        if isinstance(current, dict):
            if segment not in current:
                return _MISSING
            current = current[segment]
        elif isinstance(current, list):
            if segment.isdigit():
                index = int(segment)
                if index >= len(current):
                    return _MISSING
                current = current[index]
                continue
            collected = []
            for item in current:
                value = resolve_path(item, segment) if isinstance(item, (dict, list)) else _MISSING
                if value is _MISSING:
                    continue
                if isinstance(value, list):
                    collected.extend(value)
                else:
                    collected.append(value)
            if not collected:
                return _MISSING
            current = collected
        else:
            return _MISSING
    return current


def _candidates(value: Any) -> list[Any]:
    """Values a scalar condition is tested against (the value, plus list items)."""
    if isinstance(value, list):
        return [value, *value]
    return [value]


# ---------------------------------------------------------------------------
# Built-in operators
# ---------------------------------------------------------------------------


def _eq(value: Any, operand: Any) -> bool:
    if value is _MISSING:
        return operand is None
    if isinstance(operand, re.Pattern):
        return any(isinstance(c, str) and operand.search(c) is not None for c in _candidates(value))
    return any(_loose_equal(c, operand) for c in _candidates(value))


def _loose_equal(left: Any, right: Any) -> bool:
    # True == 1 in Python; keep booleans distinct from numbers like MongoDB.
    if isinstance(left, bool) != isinstance(right, bool):
        return False
    return bool(left == right)


def _require_list(op: str, operand: Any) -> list[Any]:
    if not isinstance(operand, (list, tuple, set, frozenset)):
        raise MirrorInvalidQueryError(f"{op} requires an array, got {type(operand).__name__}")
    return list(operand)


def _in(value: Any, operand: Any) -> bool:
    return any(_eq(value, item) for item in _require_list("$in", operand))


def _nin(value: Any, operand: Any) -> bool:
    return not _in(value, operand)


def _ordered(value: Any, operand: Any, compare: Callable[[Any, Any], bool]) -> bool:
    if value is _MISSING or value is None or operand is None:
        return False
    for candidate in _candidates(value):
        if candidate is None or isinstance(candidate, (dict, list)):
            continue
        if isinstance(candidate, bool) != isinstance(operand, bool):
            continue
        try:
            if compare(candidate, operand):
                return True
        except TypeError:
            continue
    return False


def _exists(value: Any, operand: Any) -> bool:
    return (value is not _MISSING) == bool(operand)


def _compile_regex(pattern: Any, options: Any = None) -> re.Pattern[str]:
    if isinstance(pattern, re.Pattern):
        return pattern
    if not isinstance(pattern, str):
        raise MirrorInvalidQueryError(f"$regex requires a string pattern, got {type(pattern).__name__}")
    flags = 0
    for flag in str(options or ""):
        if flag == "i":
            flags |= re.IGNORECASE
        elif flag == "m":
            flags |= re.MULTILINE
        elif flag == "s":
            flags |= re.DOTALL
        elif flag == "x":
            flags |= re.VERBOSE
        else:
            raise MirrorInvalidQueryError(f"Unsupported $options flag '{flag}'")
    try:
        return re.compile(pattern, flags)
    except re.error as exc:
        raise MirrorInvalidQueryError(f"Invalid $regex pattern: {exc}") from exc


def _regex_match(value: Any, regex: re.Pattern[str]) -> bool:
    if value is _MISSING:
        return False
    return any(isinstance(c, str) and regex.search(c) is not None for c in _candidates(value))


def _like_to_regex(pattern: Any, *, ignore_case: bool) -> re.Pattern[str]:
    """Translate an SQL LIKE pattern (``%`` any run, ``_`` one char)."""
    if not isinstance(pattern, str):
        raise MirrorInvalidQueryError(f"LIKE operators require a string pattern, got {type(pattern).__name__}")
    parts: list[str] = []
    for char in pattern:
        if char == "%":
            parts.append(".*")
        elif char == "_":
            parts.append(".")
        else:
            parts.append(re.escape(char))
    flags = re.DOTALL | (re.IGNORECASE if ignore_case else 0)
    return re.compile("^" + "".join(parts) + "$", flags)


def _size(value: Any, operand: Any) -> bool:
    if isinstance(operand, bool) or not isinstance(operand, int):
        raise MirrorInvalidQueryError("$size requires an integer")
    return isinstance(value, list) and len(value) == operand


def _all(value: Any, operand: Any) -> bool:
    items = _require_list("$all", operand)
    if not isinstance(value, list):
        return bool(items) and all(_eq(value, item) for item in items)
    return all(_eq(value, item) for item in items)


# ---------------------------------------------------------------------------
# Condition matching
# ---------------------------------------------------------------------------


def _is_operator_expression(condition: Any) -> bool:
    return (
        isinstance(condition, dict)
        and bool(condition)
        and all(isinstance(key, str) and key.startswith("$") for key in condition)
    )


class _Evaluator:
    """Evaluate queries with the built-in and custom operator set."""

    def __init__(self, custom_operators: Mapping[str, CustomOperator] | None = None) -> None:
        self._custom = dict(custom_operators or {})

    def matches(self, record: Any, query: Mapping[str, Any]) -> bool:
        for key, condition in query.items():
            if key == "$or":
                if not any(self.matches(record, clause) for clause in _clauses(key, condition)):
                    return False
            elif key == "$and":
                if not all(self.matches(record, clause) for clause in _clauses(key, condition)):
                    return False
            elif key == "$nor":
                if any(self.matches(record, clause) for clause in _clauses(key, condition)):
                    return False
            elif isinstance(key, str) and key.startswith("$"):
                raise MirrorInvalidQueryError(f"Unsupported top-level operator '{key}'")
            else:
                value = resolve_path(record, key) if isinstance(record, (dict, list)) else _MISSING
                if not self.match_condition(value, condition):
                    return False
        return True

    def match_condition(self, value: Any, condition: Any) -> bool:
        if not _is_operator_expression(condition):
            return _eq(value, condition)

        for op, operand in condition.items():
            if op == "$options":
                if "$regex" not in condition:
                    raise MirrorInvalidQueryError("$options requires $regex")
                continue
            if not self._apply(op, value, operand, condition):
                return False
        return True

    def _apply(self, op: str, value: Any, operand: Any, condition: Mapping[str, Any]) -> bool:
        custom = self._custom.get(op)
        if custom is not None:
            return bool(custom(None if value is _MISSING else value, operand))

        if op == "$eq":
            return _eq(value, operand)
        if op == "$ne":
            return not _eq(value, operand)
        if op == "$in":
            return _in(value, operand)
        if op == "$nin":
            return _nin(value, operand)
        if op == "$gt":
            return _ordered(value, operand, lambda a, b: a > b)
        if op == "$gte":
            return _ordered(value, operand, lambda a, b: a >= b)
        if op == "$lt":
            return _ordered(value, operand, lambda a, b: a < b)
        if op == "$lte":
            return _ordered(value, operand, lambda a, b: a <= b)
        if op == "$exists":
            return _exists(value, operand)
        if op == "$regex":
            return _regex_match(value, _compile_regex(operand, condition.get("$options")))
        if op == "$like":
            return _regex_match(value, _like_to_regex(operand, ignore_case=False))
        if op in ("$iLike", "$ilike"):
            return _regex_match(value, _like_to_regex(operand, ignore_case=True))
        if op == "$notLike":
            return not _regex_match(value, _like_to_regex(operand, ignore_case=False))
        if op == "$notILike":
            return not _regex_match(value, _like_to_regex(operand, ignore_case=True))
        if op == "$not":
            if isinstance(operand, (str, re.Pattern)):
                return not _regex_match(value, _compile_regex(operand))
            if not isinstance(operand, dict):
                raise MirrorInvalidQueryError("$not requires an operator expression or a pattern")
            return not self.match_condition(value, operand)
        if op == "$elemMatch":
            return self._elem_match(value, operand)
        if op == "$size":
            return _size(value, operand)
        if op == "$all":
            return _all(value, operand)
        raise MirrorInvalidQueryError(f"Unsupported operator '{op}'")

    def _elem_match(self, value: Any, operand: Any) -> bool:
        if not isinstance(operand, dict):
            raise MirrorInvalidQueryError("$elemMatch requires an object")
        if not isinstance(value, list):
            return False
        if _is_operator_expression(operand):
            return any(self.match_condition(item, operand) for item in value)
        return any(isinstance(item, dict) and self.matches(item, operand) for item in value)


def _clauses(op: str, condition: Any) -> list[Mapping[str, Any]]:
    if not isinstance(condition, (list, tuple)) or not all(isinstance(c, Mapping) for c in condition):
        raise MirrorInvalidQueryError(f"{op} requires an array of query objects")
    return list(condition)


def build_predicate(
    query: Mapping[str, Any],
    custom_operators: Mapping[str, CustomOperator] | None = None,
) -> Predicate:
    """Default predicate factory."""
    evaluator = _Evaluator(custom_operators)
    frozen_query = dict(query)

    def predicate(record: dict[str, Any]) -> bool:
        return evaluator.matches(record, frozen_query)

    return predicate
