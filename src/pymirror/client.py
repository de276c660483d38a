"""High-level async client: a registry of mirrored services."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterator
from typing import Any

import aiohttp

from pymirror._mqtt import MirrorMqttRuntime, MqttEvent, build_mqtt_bootstrap
from pymirror._transport import RemoteService, RestRemoteService
from pymirror.config import MirrorConfig
from pymirror.exceptions import MirrorError
from pymirror.service import MirrorService

_logger = logging.getLogger(__name__)

RemoteFactory = Callable[[str], RemoteService]


class MirrorClient:
    """Async client for a Feathers-style API.

    Usage::

        async with MirrorClient(MirrorConfig.from_env()) as client:
            messages = client.service("messages")
            await messages.find({"query": {"read": False}})
            unread = messages.find_in_store({"query": {"read": False}})
    """

    def __init__(
        self,
        config: MirrorConfig | None = None,
        *,
        session: aiohttp.ClientSession | None = None,
        remote_factory: RemoteFactory | None = None,
        on_event: Callable[[str, str, dict[str, Any]], None] | None = None,
    ) -> None:
        self._config = config or MirrorConfig()
        self._external_session = session is not None
        self._http_session = session
        self._remote_factory = remote_factory
        self._on_event_cb = on_event
        self._services: dict[str, MirrorService] = {}
        self._loop: asyncio.AbstractEventLoop | None = None
        self._mqtt_runtime: MirrorMqttRuntime | None = None

    @property
    def config(self) -> MirrorConfig:
        return self._config

    # ------------------------------------------------------------------
    # Context manager lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> MirrorClient:
        self._loop = asyncio.get_running_loop()
        if self._http_session is None and self._remote_factory is None:
            self._http_session = aiohttp.ClientSession()
        self._ensure_mqtt_started()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        self._stop_mqtt()
        for service in self._services.values():
            service.close()
        if not self._external_session and self._http_session is not None:
            await self._http_session.close()
            self._http_session = None
        self._loop = None

    # ------------------------------------------------------------------
    # Registry
    # ------------------------------------------------------------------

    def __contains__(self, path: object) -> bool:
        return isinstance(path, str) and path.strip("/") in self._services

    def __iter__(self) -> Iterator[MirrorService]:
        return iter(list(self._services.values()))

    @property
    def paths(self) -> list[str]:
        return list(self._services)

    def _create_remote(self, path: str) -> RemoteService:
        if self._remote_factory is not None:
            return self._remote_factory(path)
        if self._http_session is None:
            raise MirrorError("Client not initialized. Use 'async with MirrorClient(...) as client:'")
        return RestRemoteService(path, self._config, self._http_session)

    def service(self, path: str, *, remote: RemoteService | None = None) -> MirrorService:
        """Return the service registered for *path*, creating it on first use."""
        key = path.strip("/")
        existing = self._services.get(key)
        if existing is not None:
            if remote is not None and existing.remote is not remote:
                raise MirrorError(f"Service '{key}' is already registered with another remote")
            return existing

        service = MirrorService(
            key,
            remote if remote is not None else self._create_remote(key),
            options=self._config.resolve_service(key),
        )
        self._services[key] = service
        _logger.debug("Registered service %s", key)
        return service

    def clear_all(self) -> None:
        """Empty every registered store (items, temps, clones, pagination, pending)."""
        for service in self._services.values():
            service.clear_all()

    # ------------------------------------------------------------------
    # MQTT
    # ------------------------------------------------------------------

    def _ensure_mqtt_started(self) -> None:
        """Best-effort MQTT startup (failures must not break REST flow)."""
        if not self._config.mqtt_enabled:
            return
        if self._mqtt_runtime is not None and self._mqtt_runtime.is_running:
            return
        loop = self._loop or asyncio.get_running_loop()
        try:
            runtime = MirrorMqttRuntime(
                loop=loop,
                topic_prefix=self._config.mqtt_topic_prefix,
                on_event=self._on_mqtt_event,
                keepalive=self._config.mqtt_keepalive,
                logger=_logger,
            )
            runtime.start(build_mqtt_bootstrap(self._config))
            self._mqtt_runtime = runtime
        except Exception:
            _logger.debug("MQTT startup failed", exc_info=True)

    def _stop_mqtt(self) -> None:
        runtime = self._mqtt_runtime
        self._mqtt_runtime = None
        if runtime is not None:
            runtime.stop()

    def _on_mqtt_event(self, event: MqttEvent) -> None:
        """Route a decoded MQTT event (called on the loop via call_soon_threadsafe)."""
        if self._on_event_cb is not None:
            try:
                self._on_event_cb(event.path, event.event, event.payload)
            except Exception:
                _logger.debug("on_event callback failed", exc_info=True)

        service = self._services.get(event.path.strip("/"))
        if service is None:
            _logger.debug("No service registered for MQTT path %s", event.path)
            return
        service.handle_event(event.event, event.payload)
