from __future__ import annotations

import pytest

from pymirror.exceptions import MirrorInvalidStateError
from pymirror.state.identity import IdentityResolver, generate_temp_id, is_clone


def test_generate_temp_id_is_24_hex_chars_and_unique() -> None:
    ids = {generate_temp_id() for _ in range(500)}
    assert len(ids) == 500
    for value in ids:
        assert len(value) == 24
        int(value, 16)


def test_ensure_temp_id_only_for_unidentified_records() -> None:
    identity = IdentityResolver("id")

    with_id = identity.ensure_temp_id({"id": 1})
    assert "__tempId" not in with_id

    temp = identity.ensure_temp_id({"name": "x"})
    temp_id = temp["__tempId"]
    # Assigned once, never replaced.
    assert identity.ensure_temp_id(temp)["__tempId"] == temp_id


def test_get_key_prefers_permanent_id() -> None:
    identity = IdentityResolver("_id")
    assert identity.get_key({"_id": "a", "__tempId": "t"}) == "a"
    assert identity.get_key({"__tempId": "t"}) == "t"
    assert identity.get_key({"id": 1}) is None
    assert identity.is_temp({"__tempId": "t"})
    assert not identity.is_temp({"_id": 0})


def test_require_key_raises_without_identity() -> None:
    with pytest.raises(MirrorInvalidStateError):
        IdentityResolver("id").require_key({"name": "x"})


def test_empty_id_field_rejected() -> None:
    with pytest.raises(ValueError):
        IdentityResolver("")


def test_is_clone_flag() -> None:
    assert is_clone({"__isClone": True})
    assert not is_clone({"id": 1})
    assert not is_clone(None)
