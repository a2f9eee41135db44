"""Per-entity value state: wire decoding, dirty diffs, snapshots and identity hashes.

Every entity carries an :class:`EntityState` with two sparse maps:

- ``current``: field -> value as held in Python (absent means never set)
- ``snapshot``: field -> storage value as of the last load, insert or update
  (absent means never persisted)

Snapshots hold the codec-encoded form, so comparisons and WHERE clauses use
exactly what the database holds.
"""

from __future__ import annotations

import base64
import hashlib
import json
from collections.abc import Iterable, Mapping
from typing import TYPE_CHECKING, Any

from tursomap.codecs import CodecRegistry
from tursomap.errors import UnknownWireType

if TYPE_CHECKING:
    from tursomap.codecs import Codec
    from tursomap.database import Database


class EntityState:
    """Value store for a single entity instance."""

    __slots__ = ("current", "snapshot", "database", "associations")

    def __init__(self, database: Database | None = None) -> None:
        self.current: dict[str, Any] = {}
        self.snapshot: dict[str, Any] = {}
        self.database = database
        self.associations: dict[tuple[Any, str | None], Any] = {}

    def __repr__(self) -> str:
        return f"<EntityState current={self.current!r} snapshot={self.snapshot!r}>"


def decode_cell(cell: Mapping[str, Any]) -> Any:
    """Decode one typed result cell (``{"type": ..., "value": ...}``).

    Raises:
        UnknownWireType: The type tag is not one of null, integer,
            float/double/real, boolean, text/string or blob.
    """
    tag = str(cell.get("type", "")).lower()
    value = cell.get("value")

    if tag == "null":
        return None
    if tag == "integer":
        return int(value)
    if tag in ("float", "double", "real"):
        return float(value)
    if tag == "boolean":
        if isinstance(value, str):
            return value.lower() in ("1", "true")
        return bool(value)
    if tag in ("text", "string"):
        return value
    if tag == "blob":
        encoded = cell.get("base64", value)
        return base64.b64decode(encoded) if encoded is not None else None

    raise UnknownWireType(f"Cannot decode value of unknown type {cell.get('type')!r}")


def codec_for(entity: Any, field: str) -> Codec | None:
    """Resolve the codec declared for ``field`` against the entity's database."""
    declared = entity._codec(field)
    if declared is None:
        return None
    database = entity._state.database
    registry = database.codecs if database is not None else CodecRegistry.default()
    return registry.resolve(declared)


def encode(entity: Any, field: str, value: Any) -> Any:
    """Convert a Python value to its storage form."""
    codec = codec_for(entity, field)
    return codec.encode(value) if codec else value


def initialize(entity: Any, row: Mapping[str, Mapping[str, Any]], from_storage: bool = False) -> None:
    """Assign decoded row cells (keyed by field name) to the entity.

    With ``from_storage`` the raw values also become the snapshot: the entity
    was loaded, so its current state is the persisted baseline.
    """
    state: EntityState = entity._state

    for field, cell in row.items():
        if not entity._accepts(field):
            continue

        raw = decode_cell(cell)
        if from_storage:
            state.snapshot[field] = raw

        codec = codec_for(entity, field)
        state.current[field] = codec.decode(raw) if codec else raw


def diff(entity: Any, reset: bool = False) -> dict[str, Any]:
    """Return initialized fields whose storage value differs from the snapshot.

    Values are returned in storage form. With ``reset`` the returned fields
    are committed to the snapshot.
    """
    state: EntityState = entity._state
    changes: dict[str, Any] = {}

    for field in entity._declared():
        if field not in state.current:
            continue

        value = encode(entity, field, state.current[field])
        if field not in state.snapshot or state.snapshot[field] != value:
            changes[field] = value

    if reset:
        state.snapshot.update(changes)

    return changes


def commit(entity: Any, fields: Iterable[str]) -> None:
    """Record the current value of selected fields as persisted."""
    state: EntityState = entity._state
    for field in fields:
        if field in state.current:
            state.snapshot[field] = encode(entity, field, state.current[field])


def restore(entity: Any, snapshot: Mapping[str, Any]) -> None:
    """Put back a snapshot taken before a failed write."""
    state: EntityState = entity._state
    state.snapshot.clear()
    state.snapshot.update(snapshot)


def detach(entity: Any) -> None:
    """Forget the persisted baseline; the entity becomes transient."""
    entity._state.snapshot.clear()


def dump(entity: Any, fields: Iterable[str] | None = None) -> dict[str, Any]:
    """Return last-persisted storage values, optionally limited to ``fields``."""
    snapshot = entity._state.snapshot
    if fields is None:
        return dict(snapshot)
    return {field: snapshot[field] for field in fields if field in snapshot}


def hash_values(values: Iterable[Any]) -> str:
    """Hash an ordered list of identity values."""
    payload = json.dumps(list(values), default=str, separators=(",", ":"))
    return hashlib.sha1(payload.encode("utf-8")).hexdigest()


def identity_hash(entity: Any, persisted: bool = False) -> str | None:
    """Compute the identity hash from current (or persisted) identity values.

    Returns None when the entity declares no identity or any identity field
    is unset or NULL; such entities are never identity-mapped.
    """
    identity = entity._identity()
    if not identity:
        return None

    state: EntityState = entity._state
    values: list[Any] = []

    for field in identity:
        if persisted:
            if field not in state.snapshot:
                return None
            value = state.snapshot[field]
        else:
            if field not in state.current:
                return None
            value = encode(entity, field, state.current[field])

        if value is None:
            return None
        values.append(value)

    return hash_values(values)
