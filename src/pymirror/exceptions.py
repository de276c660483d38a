"""Custom exception hierarchy for pymirror."""

from __future__ import annotations


class MirrorError(Exception):
    """Base exception for all pymirror errors."""


class MirrorConfigError(MirrorError):
    """Invalid or missing configuration."""


class MirrorInvalidStateError(MirrorError):
    """A record has no resolvable identity where one is required."""


class MirrorInvalidQueryError(MirrorError):
    """Missing query object, unknown operator or malformed filter value."""


class MirrorNotFoundError(MirrorError):
    """The source record of a clone no longer exists in the store."""

    def __init__(self, message: str, *, key: object = None) -> None:
        self.key = key
        super().__init__(message)


class MirrorConflictError(MirrorError):
    """A clone already exists for the record and reuse was not requested."""

    def __init__(self, message: str, *, key: object = None) -> None:
        self.key = key
        super().__init__(message)


class MirrorTransportError(MirrorError):
    """HTTP-level failure (network, non-2xx without error body, invalid JSON)."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        endpoint: str = "",
    ) -> None:
        self.status_code = status_code
        self.endpoint = endpoint
        super().__init__(message)


class MirrorApiError(MirrorError):
    """The server answered with a Feathers error body.

    ``code`` is the HTTP status carried in the body and ``name`` the Feathers
    error class name (e.g. ``"BadRequest"``).
    """

    def __init__(
        self,
        message: str,
        *,
        code: int | None = None,
        name: str = "",
        endpoint: str = "",
        data: object = None,
    ) -> None:
        self.code = code
        self.name = name
        self.endpoint = endpoint
        self.data = data
        super().__init__(message)


class MirrorNotFoundApiError(MirrorApiError):
    """The server reported that the requested record does not exist (404)."""
