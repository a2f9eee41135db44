"""Connection-scoped identity map."""

from __future__ import annotations

from typing import Any

from tursomap.state import identity_hash


class IdentityMap:
    """Keeps at most one live instance per (entity type, identity hash).

    Entities without a complete identity have no hash and are simply not
    mapped; none of the operations raise.
    """

    def __init__(self) -> None:
        self._entities: dict[tuple[type, str], Any] = {}

    def __len__(self) -> int:
        return len(self._entities)

    def __contains__(self, entity: object) -> bool:
        key = self._key(entity)
        return key is not None and self._entities.get(key) is entity

    def get(self, entity_type: type, hash: str | None) -> Any | None:
        if hash is None:
            return None
        return self._entities.get((entity_type, hash))

    def register(self, entity: Any) -> Any:
        """Store the entity, or return the instance already stored for its identity.

        Callers must continue with the returned reference.
        """
        key = self._key(entity)
        if key is None:
            return entity
        return self._entities.setdefault(key, entity)

    def rehash(self, entity: Any, old_hash: str | None) -> None:
        """Move the entity from ``old_hash`` to its current identity hash."""
        entity_type = type(entity)
        if old_hash is not None and self._entities.get((entity_type, old_hash)) is entity:
            del self._entities[(entity_type, old_hash)]

        key = self._key(entity)
        if key is not None:
            self._entities[key] = entity

    def forget(self, entity: Any, hash: str | None = None) -> None:
        """Remove the entity, by ``hash`` or by its persisted identity."""
        if hash is None:
            hash = identity_hash(entity, persisted=True)
        if hash is None:
            return
        key = (type(entity), hash)
        if self._entities.get(key) is entity:
            del self._entities[key]

    def clear(self) -> None:
        self._entities.clear()

    @staticmethod
    def _key(entity: Any) -> tuple[type, str] | None:
        hash = identity_hash(entity)
        if hash is None:
            return None
        return (type(entity), hash)
