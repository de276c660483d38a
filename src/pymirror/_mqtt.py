"""Internal MQTT bootstrap, parsing, and runtime helpers.

Realtime service events are published on ``<prefix>/<service path>/<event>``
with the record as a JSON object payload.
"""

from __future__ import annotations

import asyncio
import json
import logging
import secrets
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, cast

import paho.mqtt.client as mqtt

from pymirror._constants import SERVICE_EVENTS
from pymirror._redact import redact_for_log
from pymirror.config import MirrorConfig
from pymirror.exceptions import MirrorError


@dataclass(frozen=True)
class MqttBootstrap:
    """Broker data required to connect and subscribe."""

    broker_host: str
    broker_port: int
    topic: str
    client_id: str
    username: str | None = None
    password: str | None = None
    tls: bool = False


@dataclass(frozen=True)
class MqttEvent:
    """Normalized realtime event decoded from one MQTT message."""

    path: str
    event: str
    topic: str
    payload: dict[str, Any]


def build_mqtt_bootstrap(config: MirrorConfig) -> MqttBootstrap:
    """Build connection details from client configuration."""
    prefix = config.mqtt_topic_prefix.strip("/")
    return MqttBootstrap(
        broker_host=config.mqtt_host,
        broker_port=config.mqtt_port,
        topic=f"{prefix}/#" if prefix else "#",
        client_id=f"pymirror_{secrets.token_hex(6)}",
        username=config.mqtt_username,
        password=config.mqtt_password,
        tls=config.mqtt_tls,
    )


def parse_topic(topic: str, prefix: str) -> tuple[str, str]:
    """Split ``<prefix>/<path>/<event>`` into ``(path, event)``."""
    prefix = prefix.strip("/")
    rest = topic
    if prefix:
        if not topic.startswith(f"{prefix}/"):
            raise MirrorError(f"Topic {topic!r} is outside prefix {prefix!r}")
        rest = topic[len(prefix) + 1 :]
    path, _, event = rest.rpartition("/")
    if not path or event not in SERVICE_EVENTS:
        raise MirrorError(f"Topic {topic!r} does not name a service event")
    return path, event


def decode_mqtt_payload(payload: bytes) -> dict[str, Any]:
    """Parse MQTT payload bytes into a JSON object."""
    parsed = json.loads(payload.decode("utf-8"))
    if not isinstance(parsed, dict):
        raise MirrorError("MQTT payload is not a JSON object")
    return parsed


def decode_mqtt_message(topic: str, payload: bytes, prefix: str) -> MqttEvent:
    path, event = parse_topic(topic, prefix)
    return MqttEvent(path=path, event=event, topic=topic, payload=decode_mqtt_payload(payload))


class MirrorMqttRuntime:
    """Threaded paho-mqtt runtime that emits parsed events onto an asyncio loop."""

    def __init__(
        self,
        *,
        loop: asyncio.AbstractEventLoop,
        topic_prefix: str,
        on_event: Callable[[MqttEvent], None],
        keepalive: int = 60,
        logger: logging.Logger | None = None,
    ) -> None:
        self._loop = loop
        self._topic_prefix = topic_prefix
        self._on_event = on_event
        self._keepalive = keepalive
        self._logger = logger or logging.getLogger(__name__)
        self._client: mqtt.Client | None = None
        self._running = False
        self._topic: str | None = None

    @property
    def is_running(self) -> bool:
        """Whether the MQTT runtime is actively running."""
        return self._running

    def handle_message(self, topic: str, payload: bytes) -> None:
        """Decode one message and hand it to the loop; failures are dropped."""
        try:
            event = decode_mqtt_message(topic, payload, self._topic_prefix)
        except (MirrorError, ValueError):
            self._logger.debug("MQTT payload parse failure topic=%s", topic, exc_info=True)
            return
        self._logger.debug(
            "Received PUBLISH topic=%s path=%s event=%s payload=%s",
            topic,
            event.path,
            event.event,
            redact_for_log(event.payload),
        )
        self._loop.call_soon_threadsafe(self._on_event, event)

    def start(self, bootstrap: MqttBootstrap) -> None:
        """Connect and subscribe with provided broker details."""
        self.stop()
        self._logger.debug(
            "MQTT runtime start requested host=%s port=%s topic=%s client_id=%s",
            bootstrap.broker_host,
            bootstrap.broker_port,
            bootstrap.topic,
            bootstrap.client_id,
        )

        client = mqtt.Client(
            callback_api_version=cast(Any, mqtt).CallbackAPIVersion.VERSION2,
            client_id=bootstrap.client_id,
            protocol=mqtt.MQTTv5,
        )
        client.enable_logger(self._logger)
        if bootstrap.username:
            client.username_pw_set(bootstrap.username, bootstrap.password)
        if bootstrap.tls:
            client.tls_set()

        self._topic = bootstrap.topic

        def on_connect(
            c: mqtt.Client,
            _userdata: Any,
            _flags: Any,
            reason_code: Any,
            _properties: Any,
        ) -> None:
            if reason_code.value != 0:
                self._logger.warning("MQTT connect failed: %s", reason_code)
                return
            self._logger.debug("MQTT connected successfully reason=%s", reason_code)
            if self._topic:
                self._logger.debug("MQTT subscribing topic=%s", self._topic)
                c.subscribe(self._topic, qos=0)

        def on_message(_c: mqtt.Client, _userdata: Any, msg: mqtt.MQTTMessage) -> None:
            self.handle_message(msg.topic, msg.payload)

        def on_disconnect(
            _client: mqtt.Client,
            _userdata: Any,
            _disconnect_flags: Any,
            reason_code: Any,
            _properties: Any,
        ) -> None:
            if self._running:
                self._logger.debug("MQTT disconnected: %s", reason_code)

        client.on_connect = on_connect
        client.on_message = on_message
        client.on_disconnect = on_disconnect

        client.connect(bootstrap.broker_host, bootstrap.broker_port, keepalive=self._keepalive)
        client.loop_start()

        self._client = client
        self._running = True
        self._logger.debug("MQTT network loop started")

    def stop(self) -> None:
        """Stop and disconnect current MQTT client if running."""
        client = self._client
        self._client = None
        was_running = self._running
        self._running = False
        self._topic = None

        if client is None:
            return
        try:
            if was_running:
                self._logger.debug("MQTT disconnect requested")
                client.disconnect()
        finally:
            client.loop_stop()
            self._logger.debug("MQTT network loop stopped")
