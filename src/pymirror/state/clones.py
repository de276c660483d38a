"""Clone lifecycle: editable snapshots of stored records.

A clone is a deep copy of a stored record flagged with ``__isClone``. It lives
in the clone table under the source's current identity until it is committed
back onto the source (or removed with the source). At most one clone exists per
identity.
"""

from __future__ import annotations

import copy
import logging
from collections.abc import Callable, Mapping
from typing import Any

from pymirror._constants import CLONE_KEY, META_KEYS
from pymirror.exceptions import MirrorConflictError, MirrorNotFoundError
from pymirror.state.identity import IdentityResolver, is_clone
from pymirror.state.table import RecordTable

_logger = logging.getLogger(__name__)

DiffDefinition = None | bool | str | list[str] | tuple[str, ...] | Mapping[str, Any]


def _fields(record: Mapping[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in record.items() if k not in META_KEYS}


def pick_fields(record: Mapping[str, Any], definition: DiffDefinition) -> dict[str, Any]:
    """Pick the fields named by a diff definition (used for ``with``)."""
    if definition is None or definition is False:
        return {}
    if isinstance(definition, str):
        return {definition: copy.deepcopy(record[definition])} if definition in record else {}
    if isinstance(definition, Mapping):
        return copy.deepcopy(dict(definition))
    if isinstance(definition, (list, tuple)):
        return {key: copy.deepcopy(record[key]) for key in definition if key in record}
    raise TypeError(f"Unsupported diff definition: {definition!r}")


class CloneManager:
    """Create, commit, reset and diff clones against the item/temp tables."""

    def __init__(
        self,
        *,
        identity: IdentityResolver,
        items: RecordTable,
        temps: RecordTable,
        clones: RecordTable,
        add_item: Callable[[dict[str, Any]], dict[str, Any]],
        on_change: Callable[[], None] = lambda: None,
    ) -> None:
        self._identity = identity
        self._items = items
        self._temps = temps
        self._clones = clones
        self._add_item = add_item
        self._on_change = on_change

    def source_of(self, record: Mapping[str, Any]) -> dict[str, Any] | None:
        """Return the stored item or temp that *record* (or its clone) mirrors."""
        record_id = record.get(self._identity.id_field)
        if record_id is not None:
            found = self._items.get(record_id)
            if found is not None:
                return found
        temp_id = self._identity.get_temp_id(dict(record))
        if temp_id is not None:
            return self._temps.get(temp_id)
        return None

    def get_clone(self, record: Mapping[str, Any]) -> dict[str, Any] | None:
        key = self._identity.get_key(dict(record))
        return self._clones.get(key)

    def clone(
        self,
        source: dict[str, Any],
        overrides: Mapping[str, Any] | None = None,
        *,
        use_existing: bool = False,
    ) -> dict[str, Any]:
        key = self._identity.require_key(source)

        existing = self._clones.get(key)
        if existing is not None:
            if not use_existing:
                raise MirrorConflictError(f"A clone already exists for record {key!r}", key=key)
            if overrides:
                existing.update(copy.deepcopy(dict(overrides)))
                self._on_change()
            return existing

        original = self.source_of(source)
        if original is None:
            if is_clone(source):
                raise MirrorNotFoundError(f"Source of clone {key!r} is not in the store", key=key)
            original = self._add_item(source)

        copied = copy.deepcopy(original)
        if overrides:
            copied.update(copy.deepcopy(dict(overrides)))
        copied[CLONE_KEY] = True
        self._clones.put(key, copied)
        _logger.debug("Cloned record key=%s", key)
        self._on_change()
        return copied

    def commit(self, clone: dict[str, Any], data: Mapping[str, Any] | None = None) -> dict[str, Any]:
        """Merge the clone's fields (or just *data*) onto its source."""
        key = self._identity.require_key(clone)
        original = self.source_of(clone)
        if original is None:
            raise MirrorNotFoundError(f"Cannot commit clone {key!r}: source record not found", key=key)

        if data is None:
            payload = _fields(clone)
        else:
            payload = _fields(data)
            clone.update(copy.deepcopy(payload))

        original.update(copy.deepcopy(payload))
        if self._clones.get(key) is clone:
            self._clones.remove(key)
        _logger.debug("Committed clone key=%s fields=%s", key, sorted(payload))
        self._on_change()
        return original

    def reset(self, clone: dict[str, Any], data: Mapping[str, Any] | None = None) -> dict[str, Any]:
        """Re-derive the clone from its current source, in place."""
        key = self._identity.require_key(clone)
        original = self.source_of(clone)
        if original is None:
            raise MirrorNotFoundError(f"Cannot reset clone {key!r}: source record not found", key=key)

        fresh = copy.deepcopy(original)
        if data:
            fresh.update(copy.deepcopy(dict(data)))
        fresh[CLONE_KEY] = True
        clone.clear()
        clone.update(fresh)
        if self._clones.get(key) is not clone:
            self._clones.put(key, clone)
        self._on_change()
        return clone

    def diff(
        self,
        clone: Mapping[str, Any],
        definition: DiffDefinition = None,
        with_: DiffDefinition = None,
    ) -> dict[str, Any]:
        """Return the fields of *clone* that differ from its source.

        ``definition`` limits the comparison: ``None`` compares every clone
        field, a field name or list of names compares only those, a mapping is
        compared against the source in place of the clone, and ``False``
        skips diffing and returns every clone field. ``with_`` fields are
        always included.
        """
        key = self._identity.require_key(dict(clone))
        original = self.source_of(clone)
        if original is None:
            raise MirrorNotFoundError(f"Cannot diff clone {key!r}: source record not found", key=key)

        target: Mapping[str, Any] = clone
        if definition is False:
            result = copy.deepcopy(_fields(clone))
        else:
            if definition is None or definition is True:
                keys = list(_fields(clone))
            elif isinstance(definition, str):
                keys = [definition]
            elif isinstance(definition, Mapping):
                keys = list(definition)
                target = definition
            elif isinstance(definition, (list, tuple)):
                keys = list(definition)
            else:
                raise TypeError(f"Unsupported diff definition: {definition!r}")

            result = {
                k: copy.deepcopy(target[k])
                for k in keys
                if k in target and k not in META_KEYS and (k not in original or original[k] != target[k])
            }

        result.update(pick_fields(clone, with_))
        return result

    def rekey(self, old_key: Any, new_id: Any) -> None:
        """Move a clone from a temp id to the permanent id of its promoted source."""
        existing = self._clones.remove(old_key)
        if existing is None:
            return
        existing[self._identity.id_field] = new_id
        self._clones.put(new_id, existing)
