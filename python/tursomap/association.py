"""Associations between an entity and the rows related to it."""

from __future__ import annotations

from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

import structlog

from tursomap.errors import UninitializedField, UnknownField
from tursomap.query import SelectQuery, UpdateQuery
from tursomap.state import commit, dump, encode

if TYPE_CHECKING:
    from tursomap.base import Entity
    from tursomap.database import Database
    from tursomap.result import Result

logger = structlog.get_logger(__name__)


class Association:
    """Resolves related rows for one source entity.

    ``target`` is an entity type (typed results) or a table name (records).
    Resolved rows are cached per field map until refreshed or invalidated.

    Example:
        >>> parent = await user.association(User).has_one({"parent": "id"})
        >>> groups = await user.association(Group, through="user_groups").has_many(
        ...     {"id": "user", "group": "id"}
        ... )
    """

    def __init__(
        self,
        database: Database,
        source: Any,
        target: type[Entity] | str,
        through: str | None = None,
    ) -> None:
        self.database = database
        self.source = source
        self.target = target
        self.through = through
        self._cache: dict[tuple[str, tuple[tuple[str, str], ...], str | None], Any] = {}

    @property
    def table(self) -> str:
        if isinstance(self.target, str):
            return self.target
        return self.target.__tablename__

    async def has_one(self, field_map: Mapping[str, str], refresh: bool = False) -> Any | None:
        """Get the single related entity, or None."""
        key = self._key("one", field_map)
        if refresh or key not in self._cache:
            result = await self._resolve(field_map, "Could not fulfill *-to-one association")
            self._cache[key] = result.first()
        return self._cache[key]

    async def has_many(self, field_map: Mapping[str, str], refresh: bool = False) -> Result[Any]:
        """Get every related entity."""
        key = self._key("many", field_map)
        if refresh or key not in self._cache:
            self._cache[key] = await self._resolve(field_map, "Could not fulfill *-to-many association")
        return self._cache[key]

    async def change_one(self, entity: Any, field_map: Mapping[str, str]) -> Any:
        """Point the foreign key between the source and ``entity`` at the other side.

        ``field_map`` is ``{source_field: target_field}``. The side whose field
        is not part of its identity owns the foreign key and gets the other
        side's value. When the owner is persisted its row is updated right
        away; otherwise the change stays pending until the owner is saved.

        Returns:
            The related entity.
        """
        if self.through:
            raise ValueError("change_one() does not apply to associations through a join table")
        if len(field_map) != 1:
            raise ValueError(f"change_one() needs exactly one field pair, got {dict(field_map)!r}")

        ((source_field, target_field),) = field_map.items()

        if source_field not in self.source._identity():
            owner, owner_field, other, other_field = self.source, source_field, entity, target_field
        elif target_field not in entity._identity():
            owner, owner_field, other, other_field = entity, target_field, self.source, source_field
        else:
            raise ValueError(
                f"Cannot change association, both {source_field!r} and {target_field!r} are identity fields"
            )

        if not owner._accepts(owner_field):
            raise UnknownField(f"Unknown field {owner_field!r} for {type(owner).__name__}")

        value = _current(other, other_field)
        owner._state.current[owner_field] = value

        self._cache.clear()
        if owner is self.source:
            self._cache[self._key("one", field_map)] = entity

        identity = owner._identity()
        persisted = dump(owner, identity)

        if not identity or len(persisted) != len(identity):
            logger.debug(
                "foreign_key_changed",
                entity=type(owner).__name__,
                field=owner_field,
                pending=True,
            )
            return entity

        columns = await self.database.columns(type(owner))
        query = UpdateQuery(owner.__tablename__)
        expr = query.expression()
        query.set(query.assign(owner_field, encode(owner, owner_field, value)))
        query.where(*[expr.eq(field, persisted[field]) for field in identity])

        result = await self.database.execute(query.map(columns))
        result.raise_for_error("Could not change association")
        commit(owner, [owner_field])

        logger.info(
            "foreign_key_changed",
            entity=type(owner).__name__,
            field=owner_field,
            affected=result.affected_rows,
        )
        return entity

    def invalidate(self) -> None:
        """Drop every cached result of this association."""
        self._cache.clear()

    def _key(self, kind: str, field_map: Mapping[str, str]) -> tuple[str, tuple[tuple[str, str], ...], str | None]:
        return (kind, tuple(field_map.items()), self.through)

    async def _resolve(self, field_map: Mapping[str, str], message: str) -> Result[Any]:
        pairs = list(field_map.items())
        if not pairs:
            raise ValueError("Association field map is empty")

        source_field, local_column = pairs[0]
        if not self.source._accepts(source_field):
            raise UnknownField(f"Unknown field {source_field!r} for {type(self.source).__name__}")

        value = encode(self.source, source_field, _current(self.source, source_field))
        query = SelectQuery(self.table)

        # "= NULL" on purpose: a NULL key matches no rows
        match = query("@column = {value}").raw("column", local_column).var("value", value)

        if self.through:
            if len(pairs) < 2:
                raise ValueError(
                    "Associations through a join table need "
                    "{source_field: local_column, link_column: target_column}"
                )
            link_column, target_column = pairs[1]
            subquery = SelectQuery(self.through).fetch(link_column).where(match)
            condition = (
                query("@remote IN (@subquery)")
                .raw("remote", target_column)
                .raw("subquery", subquery)
            )
        else:
            condition = match

        result = await self.database.execute(query.where(condition))
        result.raise_for_error(message)
        result.of(None if isinstance(self.target, str) else self.target)

        logger.debug(
            "association_resolved",
            source=type(self.source).__name__,
            target=self.table,
            through=self.through,
            rows=len(result),
        )
        return result


def _current(entity: Any, field: str) -> Any:
    current = entity._state.current
    if field not in current:
        raise UninitializedField(f"{type(entity).__name__}.{field} is not initialized")
    return current[field]
