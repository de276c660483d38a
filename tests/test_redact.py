from __future__ import annotations

from pymirror._redact import redact_for_log


def test_redact_for_log_redacts_sensitive_keys() -> None:
    payload = {
        "name": "ann",
        "accessToken": "jwt",
        "password": "pw",
        "headers": {"Authorization": "Bearer jwt", "accept": "application/json"},
        "nested": [{"refresh_token": "r"}],
    }

    redacted = redact_for_log(payload)
    assert redacted["name"] == "ann"
    assert redacted["accessToken"] == "<redacted>"
    assert redacted["password"] == "<redacted>"
    assert redacted["headers"]["Authorization"] == "<redacted>"
    assert redacted["headers"]["accept"] == "application/json"
    assert redacted["nested"][0]["refresh_token"] == "<redacted>"
    assert payload["password"] == "pw"


def test_redact_for_log_truncates_long_strings() -> None:
    long_value = "x" * 600
    redacted = redact_for_log({"value": long_value}, max_string=10)
    assert redacted["value"].startswith("x" * 10)
    assert "<truncated>" in redacted["value"]


def test_redact_for_log_handles_bytes_and_objects() -> None:
    assert redact_for_log(b"abc") == "<bytes:3b>"
    assert redact_for_log(object()).startswith("<object")


def test_redact_for_log_matches_keys_regardless_of_separators() -> None:
    redacted = redact_for_log({"mqtt_password": "pw", "MQTT-Password": "pw", "api-key": "k"})
    assert redacted == {"mqtt_password": "<redacted>", "MQTT-Password": "<redacted>", "api-key": "<redacted>"}
