from __future__ import annotations

import pytest

from pymirror.state.table import RecordTable


def _table() -> RecordTable:
    return RecordTable("items", lambda record: record.get("id"))


def test_merge_updates_stored_record_in_place() -> None:
    table = _table()
    stored = table.merge({"id": 1, "name": "a"})

    result = table.merge({"id": 1, "name": "b", "extra": True})

    assert result is stored
    assert stored == {"id": 1, "name": "b", "extra": True}
    assert len(table) == 1


def test_insertion_order_is_preserved() -> None:
    table = _table()
    for record_id in (3, 1, 2):
        table.merge({"id": record_id})
    table.merge({"id": 3, "touched": True})

    assert table.ids() == [3, 1, 2]
    assert [r["id"] for r in table] == [3, 1, 2]


def test_remove_returns_record_then_none() -> None:
    table = _table()
    table.merge({"id": 1})

    assert table.remove(1) == {"id": 1}
    assert table.remove(1) is None
    assert table.remove(None) is None
    assert not table.has(1)


def test_merge_requires_key() -> None:
    with pytest.raises(ValueError):
        _table().merge({"name": "no id"})


def test_by_id_is_read_only() -> None:
    table = _table()
    table.merge({"id": 1})
    with pytest.raises(TypeError):
        table.by_id[2] = {"id": 2}  # type: ignore[index]
