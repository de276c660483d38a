from __future__ import annotations

import json
from typing import Any

import aiohttp
import pytest

from pymirror._transport import EventEmitter, RestRemoteService, encode_query
from pymirror.config import MirrorConfig
from pymirror.exceptions import MirrorApiError, MirrorNotFoundApiError, MirrorTransportError


class _FakeResponse:
    def __init__(self, status: int, text: str) -> None:
        self.status = status
        self._text = text

    async def text(self) -> str:
        return self._text

    async def __aenter__(self) -> _FakeResponse:
        return self

    async def __aexit__(self, *exc: Any) -> None:
        return None


class _FakeSession:
    def __init__(self, status: int = 200, body: Any = None, *, raw: str | None = None, error: Exception | None = None):
        self.status = status
        self.text = raw if raw is not None else json.dumps(body)
        self.error = error
        self.requests: list[dict[str, Any]] = []

    def request(self, method: str, url: str, **kwargs: Any) -> _FakeResponse:
        self.requests.append({"method": method, "url": url, **kwargs})
        if self.error is not None:
            raise self.error
        return _FakeResponse(self.status, self.text)


def _service(session: _FakeSession, **config: Any) -> RestRemoteService:
    config.setdefault("base_url", "https://api.example.com/")
    return RestRemoteService("/messages", MirrorConfig(**config), session)  # type: ignore[arg-type]


def test_encode_query_uses_bracket_notation() -> None:
    encoded = encode_query({"name": {"$in": ["a", "b"]}, "$limit": 10, "read": False, "owner": None})
    assert encoded == "name[$in][0]=a&name[$in][1]=b&$limit=10&read=false&owner="


def test_encode_query_quotes_values() -> None:
    assert encode_query({"text": "a b&c"}) == "text=a%20b%26c"
    assert encode_query({}) == ""
    assert encode_query(None) == ""


@pytest.mark.asyncio
async def test_find_builds_url_and_headers() -> None:
    session = _FakeSession(body={"total": 0, "limit": 10, "skip": 0, "data": []})
    service = _service(session, headers={"Authorization": "Bearer t"})

    result = await service.find({"query": {"$limit": 10}, "headers": {"x-trace": "1"}})

    assert result["total"] == 0
    request = session.requests[0]
    assert request["method"] == "GET"
    assert request["url"] == "https://api.example.com/messages?$limit=10"
    assert request["headers"]["Authorization"] == "Bearer t"
    assert request["headers"]["x-trace"] == "1"
    assert request["data"] is None


@pytest.mark.asyncio
async def test_patch_sends_json_body_to_record_url() -> None:
    session = _FakeSession(body={"id": 1, "name": "b"})
    service = _service(session)

    result = await service.patch(1, {"name": "b"})

    assert result == {"id": 1, "name": "b"}
    request = session.requests[0]
    assert request["method"] == "PATCH"
    assert request["url"] == "https://api.example.com/messages/1"
    assert json.loads(request["data"]) == {"name": "b"}


@pytest.mark.asyncio
async def test_feathers_error_body_raises_api_error() -> None:
    session = _FakeSession(400, {"name": "BadRequest", "message": "Invalid text", "code": 400, "data": {"f": 1}})
    service = _service(session)

    with pytest.raises(MirrorApiError) as excinfo:
        await service.create({"text": ""})

    assert excinfo.value.code == 400
    assert excinfo.value.name == "BadRequest"
    assert excinfo.value.data == {"f": 1}
    assert excinfo.value.endpoint == "POST /messages"


@pytest.mark.asyncio
async def test_not_found_maps_to_subclass() -> None:
    session = _FakeSession(404, {"name": "NotFound", "message": "No record found for id '9'", "code": 404})
    with pytest.raises(MirrorNotFoundApiError):
        await _service(session).get(9)


@pytest.mark.asyncio
async def test_error_without_body_is_transport_error() -> None:
    session = _FakeSession(502, raw="<html>bad gateway</html>")
    with pytest.raises(MirrorTransportError) as excinfo:
        await _service(session).get(1)
    assert excinfo.value.status_code == 502


@pytest.mark.asyncio
async def test_invalid_json_is_transport_error() -> None:
    session = _FakeSession(200, raw="not json")
    with pytest.raises(MirrorTransportError) as excinfo:
        await _service(session).get(1)
    assert excinfo.value.status_code == 200


@pytest.mark.asyncio
async def test_network_error_is_transport_error() -> None:
    session = _FakeSession(error=aiohttp.ClientConnectionError("refused"))
    with pytest.raises(MirrorTransportError):
        await _service(session).remove(1)


@pytest.mark.asyncio
async def test_find_rejects_scalar_response() -> None:
    session = _FakeSession(body="ok")
    with pytest.raises(MirrorTransportError):
        await _service(session).find()


def test_event_emitter_isolates_failing_handlers() -> None:
    emitter = EventEmitter()
    seen: list[Any] = []

    def broken(_payload: Any) -> None:
        raise RuntimeError("boom")

    emitter.on("created", broken)
    emitter.on("created", seen.append)
    emitter.emit("created", {"id": 1})

    assert seen == [{"id": 1}]

    emitter.off("created", seen.append)
    emitter.off("created", seen.append)
    assert emitter.listener_count("created") == 1
