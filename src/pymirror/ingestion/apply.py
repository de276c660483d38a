"""Ingestion application helpers.

Every server response reaches the store through these functions so that
records are always placed by identity and pagination is recorded in one place.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from pymirror._constants import TEMP_ID_KEY
from pymirror.ingestion.normalize import normalize_find_response
from pymirror.models.results import FindResult
from pymirror.state.store import DataStore


def apply_find_response(
    store: DataStore,
    params: Mapping[str, Any] | None,
    response: Any,
    *,
    preserve_ssr: bool = False,
) -> FindResult:
    """Store the records of a ``find`` response and record its page.

    Returns the stored (authoritative) records, not the response dicts.
    """
    params = params or {}
    query = params.get("query") or {}
    normalized = normalize_find_response(response, query)
    stored = store.add_to_store(normalized["data"])
    store.update_pagination_for_query(params.get("qid"), query, normalized, preserve_ssr=preserve_ssr)
    return FindResult(
        total=normalized["total"],
        limit=normalized["limit"],
        skip=normalized["skip"],
        data=stored,
    )


def apply_record_response(
    store: DataStore,
    response: Mapping[str, Any],
    *,
    temp_id: Any = None,
) -> dict[str, Any]:
    """Store one record returned by ``get`` / ``create`` / ``patch``.

    *temp_id* links a ``create`` response to the temp record it confirms, so
    the temp is promoted instead of duplicated.
    """
    record = dict(response)
    if temp_id is not None and record.get(TEMP_ID_KEY) is None:
        record[TEMP_ID_KEY] = temp_id
    return store.add_to_store(record)
