from __future__ import annotations

import pytest

from pymirror.config import MirrorConfig, ServiceConfig
from pymirror.exceptions import MirrorConfigError


def test_defaults() -> None:
    config = MirrorConfig()
    assert config.id_field == "id"
    assert config.default_limit == 10
    assert config.debounce_events_time == 0.02
    assert not config.mqtt_enabled


def test_from_env_reads_mirror_variables(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("MIRROR_BASE_URL", "https://api.example.com")
    monkeypatch.setenv("MIRROR_ID_FIELD", "_id")
    monkeypatch.setenv("MIRROR_DEFAULT_LIMIT", "25")
    monkeypatch.setenv("MIRROR_DEBOUNCE_EVENTS_TIME", "0.5")
    monkeypatch.setenv("MIRROR_WHITELIST", "$populate, $search")
    monkeypatch.setenv("MIRROR_SSR", "yes")
    monkeypatch.setenv("MIRROR_MQTT_ENABLED", "1")
    monkeypatch.setenv("MIRROR_MQTT_PORT", "8883")
    monkeypatch.setenv("MIRROR_ACCESS_TOKEN", "tok")

    config = MirrorConfig.from_env()

    assert config.base_url == "https://api.example.com"
    assert config.id_field == "_id"
    assert config.default_limit == 25
    assert config.debounce_events_time == 0.5
    assert config.whitelist == ("$populate", "$search")
    assert config.ssr is True
    assert config.mqtt_enabled is True
    assert config.mqtt_port == 8883
    assert config.headers == {"Authorization": "Bearer tok"}


def test_from_env_overrides_win(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("MIRROR_DEFAULT_LIMIT", "25")
    monkeypatch.setenv("MIRROR_SSR", "true")

    config = MirrorConfig.from_env(default_limit=3, ssr=False)

    assert config.default_limit == 3
    assert config.ssr is False


def test_from_env_rejects_bad_numbers(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("MIRROR_QUERY_TTL", "soon")
    with pytest.raises(MirrorConfigError):
        MirrorConfig.from_env()


@pytest.mark.parametrize(
    "kwargs",
    [
        {"id_field": ""},
        {"default_limit": -1},
        {"debounce_events_time": -0.1},
        {"request_timeout": 0},
        {"whitelist": ("populate",)},
        {"custom_operators": {"startsWith": lambda a, b: True}},
    ],
)
def test_invalid_values_raise(kwargs: dict) -> None:
    with pytest.raises(MirrorConfigError):
        MirrorConfig(**kwargs)


def test_resolve_service_merges_lists_and_maps() -> None:
    def global_op(a: object, b: object) -> bool:
        return True

    def local_op(a: object, b: object) -> bool:
        return False

    config = MirrorConfig(
        params_for_server=("$populate",),
        handle_events={"created": False},
        custom_operators={"$a": global_op},
        services={
            "todos": ServiceConfig(
                params_for_server=("$search",),
                handle_events={"removed": False},
                custom_operators={"$b": local_op},
                debounce_events_time=0,
            )
        },
    )

    options = config.resolve_service("/todos")

    assert options.params_for_server == ("$populate", "$search")
    assert options.handle_events == {"created": False, "removed": False}
    assert options.custom_operators == {"$a": global_op, "$b": local_op}
    assert options.debounce_events_time == 0
    assert options.id_field == "id"
    assert config.resolve_service("other").debounce_events_time == 0.02


@pytest.mark.parametrize(
    "kwargs",
    [
        {"debounce_events_time": -1},
        {"default_limit": -5},
        {"id_field": ""},
        {"whitelist": ("search",)},
        {"custom_operators": {"near": lambda a, b: True}},
    ],
)
def test_invalid_service_overrides_raise(kwargs: dict) -> None:
    with pytest.raises(MirrorConfigError):
        ServiceConfig(**kwargs)
