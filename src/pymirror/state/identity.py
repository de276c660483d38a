"""Record identity resolution.

A record is identified by its permanent id field when the server assigned one,
otherwise by a client-generated temp id stored under ``__tempId``. The temp id
is assigned once and never replaced for the lifetime of the record.
"""

from __future__ import annotations

import itertools
import os
import secrets
import threading
import time
from typing import Any

from pymirror._constants import CLONE_KEY, TEMP_ID_KEY
from pymirror.exceptions import MirrorInvalidStateError

# ObjectId layout: 4-byte seconds, 5 random bytes fixed per process, 3-byte counter.
_PROCESS_UNIQUE = secrets.token_bytes(5)
_COUNTER = itertools.count(int.from_bytes(secrets.token_bytes(3), "big"))
_COUNTER_LOCK = threading.Lock()
_PID = os.getpid()


def generate_temp_id() -> str:
    """Return a sortable, collision-resistant 24-char hex id."""
    global _PROCESS_UNIQUE, _PID
    if os.getpid() != _PID:
        # Forked child: never share the random part with the parent.
        _PID = os.getpid()
        _PROCESS_UNIQUE = secrets.token_bytes(5)
    with _COUNTER_LOCK:
        count = next(_COUNTER) & 0xFFFFFF
    timestamp = int(time.time()) & 0xFFFFFFFF
    return (timestamp.to_bytes(4, "big") + _PROCESS_UNIQUE + count.to_bytes(3, "big")).hex()


def is_clone(record: Any) -> bool:
    return isinstance(record, dict) and bool(record.get(CLONE_KEY))


class IdentityResolver:
    """Extract permanent and temporary identities for a configured id field."""

    def __init__(self, id_field: str) -> None:
        if not id_field:
            raise ValueError("id_field must be non-empty")
        self.id_field = id_field

    def get_id(self, record: dict[str, Any]) -> Any:
        return record.get(self.id_field)

    @staticmethod
    def get_temp_id(record: dict[str, Any]) -> str | None:
        return record.get(TEMP_ID_KEY)

    def is_temp(self, record: dict[str, Any]) -> bool:
        """Derived flag: true iff the permanent id is absent."""
        return record.get(self.id_field) is None

    def get_key(self, record: dict[str, Any]) -> Any:
        """Return the identity used for table placement (id, else temp id)."""
        record_id = record.get(self.id_field)
        if record_id is not None:
            return record_id
        return record.get(TEMP_ID_KEY)

    def require_key(self, record: dict[str, Any]) -> Any:
        key = self.get_key(record)
        if key is None:
            raise MirrorInvalidStateError(
                f"Record has neither '{self.id_field}' nor '{TEMP_ID_KEY}'",
            )
        return key

    def ensure_temp_id(self, record: dict[str, Any]) -> dict[str, Any]:
        """Assign a temp id to an unidentified record, in place.

        Records that already carry a permanent id or a temp id are returned
        untouched.
        """
        if record.get(self.id_field) is None and record.get(TEMP_ID_KEY) is None:
            record[TEMP_ID_KEY] = generate_temp_id()
        return record
