"""Client configuration for pymirror."""

from __future__ import annotations

import dataclasses
import os
from collections.abc import Callable, Mapping
from typing import Any

from pymirror._constants import BASE_URL, DEFAULT_ID_FIELD, DEFAULT_LIMIT
from pymirror.exceptions import MirrorConfigError


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


def _env_list(value: str) -> tuple[str, ...]:
    return tuple(part.strip() for part in value.split(",") if part.strip())


def _env_number(env_key: str, value: str, cast: Callable[[str], Any]) -> Any:
    try:
        return cast(value)
    except ValueError as exc:
        raise MirrorConfigError(f"{env_key} must be a number, got {value!r}") from exc


def _check_operators(names: tuple[str, ...], field_name: str) -> None:
    for name in names:
        if not name.startswith("$"):
            raise MirrorConfigError(f"{field_name} entries must start with '$', got {name!r}")


@dataclasses.dataclass(frozen=True)
class ServiceOptions:
    """Effective options of one service after merging global and per-path config."""

    id_field: str = DEFAULT_ID_FIELD
    default_limit: int = DEFAULT_LIMIT
    whitelist: tuple[str, ...] = ()
    params_for_server: tuple[str, ...] = ()
    skip_get_if_exists: bool = False
    debounce_events_time: float = 0.02
    debounce_events_guarantee: bool = False
    ssr: bool = False
    query_ttl: float | None = None
    handle_events: Mapping[str, Any] = dataclasses.field(default_factory=dict)
    custom_operators: Mapping[str, Callable[[Any, Any], bool]] = dataclasses.field(default_factory=dict)


@dataclasses.dataclass(frozen=True)
class ServiceConfig:
    """Per-path overrides. ``None`` inherits the global value.

    ``whitelist`` and ``params_for_server`` are appended to the global lists;
    ``handle_events`` and ``custom_operators`` are merged over the global maps.
    """

    id_field: str | None = None
    default_limit: int | None = None
    whitelist: tuple[str, ...] = ()
    params_for_server: tuple[str, ...] = ()
    skip_get_if_exists: bool | None = None
    debounce_events_time: float | None = None
    debounce_events_guarantee: bool | None = None
    ssr: bool | None = None
    query_ttl: float | None = None
    handle_events: Mapping[str, Any] = dataclasses.field(default_factory=dict)
    custom_operators: Mapping[str, Callable[[Any, Any], bool]] = dataclasses.field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.id_field is not None and not self.id_field:
            raise MirrorConfigError("id_field must be non-empty")
        if self.default_limit is not None and self.default_limit < 0:
            raise MirrorConfigError("default_limit must not be negative")
        if self.debounce_events_time is not None and self.debounce_events_time < 0:
            raise MirrorConfigError("debounce_events_time must not be negative")
        _check_operators(tuple(self.whitelist), "whitelist")
        _check_operators(tuple(self.custom_operators), "custom operator names")


@dataclasses.dataclass(frozen=True)
class MirrorConfig:
    """Client configuration.

    Parameters
    ----------
    base_url : str
        Root URL of the Feathers REST API.
    id_field : str
        Name of the permanent id field of records (``"id"``, ``"_id"``...).
    default_limit : int
        ``$limit`` applied to remote ``find`` calls that set none.
    whitelist : tuple of str
        Extra query operators accepted by the local query engine.
    params_for_server : tuple of str
        Query keys sent to the server but ignored by local queries.
    skip_get_if_exists : bool
        Return a stored record from ``get`` without a request.
    debounce_events_time : float
        Seconds realtime events for one record are coalesced. ``0`` applies
        each event immediately.
    debounce_events_guarantee : bool
        Cap the delay of a burst at one window after its first event.
    ssr : bool
        Flag pages recorded by ``find`` as server-rendered.
    query_ttl : float or None
        Seconds after which a recorded page counts as expired.
    request_timeout : float
        Total timeout of one HTTP request, in seconds.
    headers : Mapping[str, str]
        Extra headers sent with every request (e.g. ``Authorization``).
    handle_events : Mapping
        Global per-event hooks, see :class:`pymirror.state.reconcile.EventReconciler`.
    custom_operators : Mapping
        Extra ``$operator -> (value, operand) -> bool`` predicates.
    mqtt_enabled : bool
        Enable the MQTT realtime listener.
    mqtt_host, mqtt_port, mqtt_keepalive, mqtt_topic_prefix : str, int, int, str
        MQTT broker connection and topic layout (``<prefix>/<path>/<event>``).
    mqtt_username, mqtt_password : str or None
        MQTT broker credentials.
    mqtt_tls : bool
        Connect to the broker over TLS.
    api_trace_enabled : bool
        Log every request and response at DEBUG level.
    services : Mapping[str, ServiceConfig]
        Per-path overrides.
    """

    base_url: str = BASE_URL
    id_field: str = DEFAULT_ID_FIELD
    default_limit: int = DEFAULT_LIMIT
    whitelist: tuple[str, ...] = ()
    params_for_server: tuple[str, ...] = ()
    skip_get_if_exists: bool = False
    debounce_events_time: float = 0.02
    debounce_events_guarantee: bool = False
    ssr: bool = False
    query_ttl: float | None = None
    request_timeout: float = 30.0
    headers: Mapping[str, str] = dataclasses.field(default_factory=dict)
    handle_events: Mapping[str, Any] = dataclasses.field(default_factory=dict)
    custom_operators: Mapping[str, Callable[[Any, Any], bool]] = dataclasses.field(default_factory=dict)
    mqtt_enabled: bool = False
    mqtt_host: str = "localhost"
    mqtt_port: int = 1883
    mqtt_keepalive: int = 60
    mqtt_topic_prefix: str = "feathers"
    mqtt_username: str | None = None
    mqtt_password: str | None = None
    mqtt_tls: bool = False
    api_trace_enabled: bool = False
    services: Mapping[str, ServiceConfig] = dataclasses.field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.id_field:
            raise MirrorConfigError("id_field must be non-empty")
        if self.default_limit < 0:
            raise MirrorConfigError("default_limit must not be negative")
        if self.debounce_events_time < 0:
            raise MirrorConfigError("debounce_events_time must not be negative")
        if self.request_timeout <= 0:
            raise MirrorConfigError("request_timeout must be positive")
        _check_operators(tuple(self.whitelist), "whitelist")
        for name in self.custom_operators:
            if not name.startswith("$"):
                raise MirrorConfigError(f"custom operator names must start with '$', got {name!r}")

    def resolve_service(self, path: str) -> ServiceOptions:
        """Merge the overrides registered for *path* over the global options."""
        override = self.services.get(path.strip("/"), ServiceConfig())

        def pick(value: Any, default: Any) -> Any:
            return default if value is None else value

        return ServiceOptions(
            id_field=pick(override.id_field, self.id_field),
            default_limit=pick(override.default_limit, self.default_limit),
            whitelist=(*self.whitelist, *override.whitelist),
            params_for_server=(*self.params_for_server, *override.params_for_server),
            skip_get_if_exists=pick(override.skip_get_if_exists, self.skip_get_if_exists),
            debounce_events_time=pick(override.debounce_events_time, self.debounce_events_time),
            debounce_events_guarantee=pick(override.debounce_events_guarantee, self.debounce_events_guarantee),
            ssr=pick(override.ssr, self.ssr),
            query_ttl=pick(override.query_ttl, self.query_ttl),
            handle_events={**self.handle_events, **override.handle_events},
            custom_operators={**self.custom_operators, **override.custom_operators},
        )

    @classmethod
    def from_env(cls, **overrides: Any) -> MirrorConfig:
        """Create configuration from environment variables.

        Reads optional ``MIRROR_*`` variables. Explicit keyword arguments
        override environment values.

        Parameters
        ----------
        **overrides
            Explicit field values that take precedence over env vars.

        Returns
        -------
        MirrorConfig
            Populated configuration.
        """
        env = os.environ

        _ENV_STR_MAP = {
            "MIRROR_BASE_URL": "base_url",
            "MIRROR_ID_FIELD": "id_field",
            "MIRROR_MQTT_HOST": "mqtt_host",
            "MIRROR_MQTT_TOPIC_PREFIX": "mqtt_topic_prefix",
            "MIRROR_MQTT_USERNAME": "mqtt_username",
            "MIRROR_MQTT_PASSWORD": "mqtt_password",
        }
        _ENV_NUMBER_MAP: dict[str, tuple[str, Callable[[str], Any]]] = {
            "MIRROR_DEFAULT_LIMIT": ("default_limit", int),
            "MIRROR_DEBOUNCE_EVENTS_TIME": ("debounce_events_time", float),
            "MIRROR_QUERY_TTL": ("query_ttl", float),
            "MIRROR_REQUEST_TIMEOUT": ("request_timeout", float),
            "MIRROR_MQTT_PORT": ("mqtt_port", int),
            "MIRROR_MQTT_KEEPALIVE": ("mqtt_keepalive", int),
        }
        _ENV_BOOL_MAP = {
            "MIRROR_SKIP_GET_IF_EXISTS": ("skip_get_if_exists", False),
            "MIRROR_DEBOUNCE_EVENTS_GUARANTEE": ("debounce_events_guarantee", False),
            "MIRROR_SSR": ("ssr", False),
            "MIRROR_MQTT_ENABLED": ("mqtt_enabled", False),
            "MIRROR_MQTT_TLS": ("mqtt_tls", False),
            "MIRROR_API_TRACE_ENABLED": ("api_trace_enabled", False),
        }
        _ENV_LIST_MAP = {
            "MIRROR_WHITELIST": "whitelist",
            "MIRROR_PARAMS_FOR_SERVER": "params_for_server",
        }

        config_kwargs: dict[str, Any] = {}
        for env_key, field_name in _ENV_STR_MAP.items():
            val = env.get(env_key)
            if val is not None:
                config_kwargs[field_name] = val

        for env_key, (field_name, cast) in _ENV_NUMBER_MAP.items():
            val = env.get(env_key)
            if val is not None and field_name not in overrides:
                config_kwargs[field_name] = _env_number(env_key, val, cast)

        for env_key, (field_name, default) in _ENV_BOOL_MAP.items():
            if field_name not in overrides:
                config_kwargs[field_name] = _env_bool(env.get(env_key), default)

        for env_key, field_name in _ENV_LIST_MAP.items():
            val = env.get(env_key)
            if val is not None and field_name not in overrides:
                config_kwargs[field_name] = _env_list(val)

        token = env.get("MIRROR_ACCESS_TOKEN")
        if token and "headers" not in overrides:
            config_kwargs["headers"] = {"Authorization": f"Bearer {token}"}

        config_kwargs.update(overrides)

        return cls(**config_kwargs)
