"""Helpers for safe debug logging.

Requests and realtime payloads can carry access tokens, passwords and
authorization headers. :func:`redact_for_log` masks them before a payload
reaches a DEBUG or WARNING log line.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any

# Compared against keys lowercased with "-" and "_" removed.
_SENSITIVE_KEYS: frozenset[str] = frozenset(
    {
        "password",
        "accesstoken",
        "refreshtoken",
        "token",
        "authorization",
        "cookie",
        "secret",
        "apikey",
        "mqttpassword",
    }
)


def redact_for_log(value: Any, *, max_string: int = 512, _depth: int = 0) -> Any:
    """Return a redacted copy of *value* suitable for debug logs."""
    if _depth > 20:
        return "<max-depth>"

    if value is None:
        return None

    if isinstance(value, str):
        if len(value) > max_string:
            return f"{value[:max_string]}...<truncated>"
        return value

    if isinstance(value, (int, float, bool)):
        return value

    if isinstance(value, bytes):
        return f"<bytes:{len(value)}b>"

    if isinstance(value, Mapping):
        redacted: dict[str, Any] = {}
        for k, v in value.items():
            key = str(k)
            if key.lower().replace("-", "").replace("_", "") in _SENSITIVE_KEYS:
                redacted[key] = "<redacted>"
            else:
                redacted[key] = redact_for_log(v, max_string=max_string, _depth=_depth + 1)
        return redacted

    if isinstance(value, Sequence) and not isinstance(value, (str, bytes, bytearray)):
        return [redact_for_log(v, max_string=max_string, _depth=_depth + 1) for v in value]

    return repr(value)

