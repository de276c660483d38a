"""Normalization helpers for server responses.

A Feathers ``find`` answers either with a bare list (pagination disabled on
the server) or with ``{"total", "limit", "skip", "data"}``.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from pymirror.exceptions import MirrorTransportError


def safe_int(value: Any, default: int = 0) -> int:
    if value is None or isinstance(value, bool):
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def get_array(response: Any) -> list[dict[str, Any]]:
    """Return the records of a list or paginated response."""
    if isinstance(response, list):
        data = response
    elif isinstance(response, Mapping):
        data = response.get("data") or []
    else:
        raise MirrorTransportError(f"Unexpected find response of type {type(response).__name__}")
    return [record for record in data if isinstance(record, dict)]


def is_paginated(response: Any) -> bool:
    return isinstance(response, Mapping) and "data" in response


def normalize_find_response(response: Any, query: Mapping[str, Any] | None = None) -> dict[str, Any]:
    """Return a paginated dict for any ``find`` response.

    Bare lists get ``total = len(data)`` and take ``limit`` / ``skip`` from the
    query that produced them.
    """
    query = query or {}
    data = get_array(response)
    if is_paginated(response):
        return {
            "total": safe_int(response.get("total"), len(data)),
            "limit": safe_int(response.get("limit"), safe_int(query.get("$limit"), len(data))),
            "skip": safe_int(response.get("skip"), safe_int(query.get("$skip"))),
            "data": data,
        }
    return {
        "total": len(data),
        "limit": safe_int(query.get("$limit"), len(data)),
        "skip": safe_int(query.get("$skip")),
        "data": data,
    }


def strip_meta(record: Mapping[str, Any], *keys: str) -> dict[str, Any]:
    return {k: v for k, v in record.items() if k not in keys}
