"""Feathers REST transport and the remote service interface."""

from __future__ import annotations

import json
import logging
from collections.abc import Callable, Mapping
from typing import Any, Protocol
from urllib.parse import quote

import aiohttp

from pymirror._constants import USER_AGENT
from pymirror._redact import redact_for_log
from pymirror.config import MirrorConfig
from pymirror.exceptions import MirrorApiError, MirrorNotFoundApiError, MirrorTransportError

_logger = logging.getLogger(__name__)

EventHandler = Callable[[Any], None]


class RemoteService(Protocol):
    """Structural interface of a remote record service.

    Having a protocol here makes it easy to pass test doubles while keeping
    the production implementation (`RestRemoteService`) concrete.
    """

    async def find(self, params: Mapping[str, Any] | None = None) -> dict[str, Any] | list[dict[str, Any]]: ...

    async def get(self, record_id: Any, params: Mapping[str, Any] | None = None) -> dict[str, Any]: ...

    async def create(self, data: Mapping[str, Any], params: Mapping[str, Any] | None = None) -> dict[str, Any]: ...

    async def patch(
        self,
        record_id: Any,
        data: Mapping[str, Any],
        params: Mapping[str, Any] | None = None,
    ) -> dict[str, Any]: ...

    async def remove(self, record_id: Any, params: Mapping[str, Any] | None = None) -> dict[str, Any]: ...

    def on(self, event: str, handler: EventHandler) -> None: ...

    def off(self, event: str, handler: EventHandler) -> None: ...


class EventEmitter:
    """Minimal in-process ``on`` / ``off`` / ``emit`` registry."""

    def __init__(self) -> None:
        self._handlers: dict[str, list[EventHandler]] = {}

    def on(self, event: str, handler: EventHandler) -> None:
        self._handlers.setdefault(event, []).append(handler)

    def off(self, event: str, handler: EventHandler) -> None:
        handlers = self._handlers.get(event)
        if handlers and handler in handlers:
            handlers.remove(handler)

    def listener_count(self, event: str) -> int:
        return len(self._handlers.get(event, ()))

    def emit(self, event: str, payload: Any) -> None:
        for handler in list(self._handlers.get(event, ())):
            try:
                handler(payload)
            except Exception:
                _logger.debug("Event handler for %s failed", event, exc_info=True)


def _flatten(prefix: str, value: Any, out: list[tuple[str, str]]) -> None:
    if isinstance(value, Mapping):
        for key, item in value.items():
            _flatten(f"{prefix}[{key}]" if prefix else str(key), item, out)
    elif isinstance(value, (list, tuple)):
        for index, item in enumerate(value):
            _flatten(f"{prefix}[{index}]", item, out)
    elif value is None:
        out.append((prefix, ""))
    elif isinstance(value, bool):
        out.append((prefix, "true" if value else "false"))
    else:
        out.append((prefix, str(value)))


def encode_query(query: Mapping[str, Any] | None) -> str:
    """Encode a query object with bracket notation (``a[$in][0]=x&$limit=10``)."""
    if not query:
        return ""
    pairs: list[tuple[str, str]] = []
    _flatten("", query, pairs)
    return "&".join(f"{quote(key, safe='[]$')}={quote(val, safe='')}" for key, val in pairs)


def _error_from_body(body: Any, status: int, endpoint: str) -> MirrorApiError | None:
    if not isinstance(body, Mapping) or "message" not in body or "name" not in body:
        return None
    code = body.get("code")
    code = code if isinstance(code, int) else status
    error_cls = MirrorNotFoundApiError if code == 404 else MirrorApiError
    return error_cls(
        str(body.get("message")),
        code=code,
        name=str(body.get("name")),
        endpoint=endpoint,
        data=body.get("data"),
    )


class RestRemoteService(EventEmitter):
    """A Feathers service reached over REST.

    ``find`` is ``GET /<path>``, ``get`` is ``GET /<path>/<id>``, ``create``
    is ``POST /<path>``, ``patch`` is ``PATCH /<path>/<id>`` and ``remove`` is
    ``DELETE /<path>/<id>``. Realtime adapters feed events through
    :meth:`emit`.
    """

    def __init__(
        self,
        path: str,
        config: MirrorConfig,
        http_session: aiohttp.ClientSession,
    ) -> None:
        super().__init__()
        self.path = path.strip("/")
        self._config = config
        self._http = http_session
        self._timeout = aiohttp.ClientTimeout(total=config.request_timeout)

    def _url(self, record_id: Any = None, query: Mapping[str, Any] | None = None) -> str:
        url = f"{self._config.base_url.rstrip('/')}/{self.path}"
        if record_id is not None:
            url = f"{url}/{quote(str(record_id), safe='')}"
        encoded = encode_query(query)
        return f"{url}?{encoded}" if encoded else url

    def _headers(self, params: Mapping[str, Any] | None) -> dict[str, str]:
        headers: dict[str, str] = {
            "accept": "application/json",
            "content-type": "application/json; charset=UTF-8",
            "user-agent": USER_AGENT,
        }
        headers.update(self._config.headers)
        if params and isinstance(params.get("headers"), Mapping):
            headers.update(params["headers"])
        return headers

    async def request(
        self,
        method: str,
        *,
        record_id: Any = None,
        data: Mapping[str, Any] | None = None,
        params: Mapping[str, Any] | None = None,
    ) -> Any:
        """Send one request and return the decoded JSON body."""
        query = (params or {}).get("query")
        url = self._url(record_id, query)
        endpoint = f"{method} /{self.path}" + (f"/{record_id}" if record_id is not None else "")
        body = json.dumps(data) if data is not None else None
        headers = self._headers(params)

        _logger.debug("%s %s", method, url)
        if self._config.api_trace_enabled:
            _logger.debug("Request %s headers=%s body=%s", endpoint, redact_for_log(headers), redact_for_log(data))

        try:
            async with self._http.request(method, url, data=body, headers=headers, timeout=self._timeout) as resp:
                text = await resp.text()
                status = resp.status
        except aiohttp.ClientError as exc:
            raise MirrorTransportError(
                f"Request to {endpoint} failed: {exc}",
                endpoint=endpoint,
            ) from exc

        try:
            decoded = json.loads(text) if text.strip() else None
        except json.JSONDecodeError as exc:
            if status >= 400:
                raise MirrorTransportError(
                    f"HTTP {status} from {endpoint}: {text[:200]}",
                    status_code=status,
                    endpoint=endpoint,
                ) from exc
            raise MirrorTransportError(
                f"Invalid JSON from {endpoint}: {text[:200]}",
                status_code=status,
                endpoint=endpoint,
            ) from exc

        if self._config.api_trace_enabled:
            _logger.debug("Response %s status=%s body=%s", endpoint, status, redact_for_log(decoded))

        if status >= 400:
            api_error = _error_from_body(decoded, status, endpoint)
            if api_error is not None:
                raise api_error
            raise MirrorTransportError(
                f"HTTP {status} from {endpoint}: {text[:200]}",
                status_code=status,
                endpoint=endpoint,
            )
        return decoded

    async def find(self, params: Mapping[str, Any] | None = None) -> dict[str, Any] | list[dict[str, Any]]:
        result = await self.request("GET", params=params)
        if not isinstance(result, (dict, list)):
            raise MirrorTransportError(f"Unexpected find response from /{self.path}", endpoint=f"GET /{self.path}")
        return result

    async def get(self, record_id: Any, params: Mapping[str, Any] | None = None) -> dict[str, Any]:
        return await self.request("GET", record_id=record_id, params=params)

    async def create(self, data: Mapping[str, Any], params: Mapping[str, Any] | None = None) -> dict[str, Any]:
        return await self.request("POST", data=data, params=params)

    async def patch(
        self,
        record_id: Any,
        data: Mapping[str, Any],
        params: Mapping[str, Any] | None = None,
    ) -> dict[str, Any]:
        return await self.request("PATCH", record_id=record_id, data=data, params=params)

    async def remove(self, record_id: Any, params: Mapping[str, Any] | None = None) -> dict[str, Any]:
        return await self.request("DELETE", record_id=record_id, params=params)
