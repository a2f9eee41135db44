"""Repositories: CRUD and lookups for one entity type."""

from __future__ import annotations

from collections.abc import Callable, Mapping
from typing import TYPE_CHECKING, Any, ClassVar

import structlog

from tursomap.base import Entity
from tursomap.errors import InsufficientIdentity, MultipleResultsFound, UnknownField
from tursomap.query import DeleteQuery, Expression, InsertQuery, Query, SelectQuery, UpdateQuery
from tursomap.result import Result
from tursomap.state import commit, detach, diff, dump, hash_values, identity_hash, restore

if TYPE_CHECKING:
    from tursomap.database import Database

logger = structlog.get_logger(__name__)


class Repository[T: Entity]:
    """Persistence operations for one entity type.

    Subclass it to set a default order, or get a plain repository with
    ``database.repository(User)``. Field names are used throughout; they are
    translated to the table's column names before a statement is sent.

    Example:
        >>> class Users(Repository[User]):
        ...     entity = User
        ...     order = {"last_name": "asc", "first_name": "asc"}
        >>>
        >>> users = db.repository(Users)
        >>> user = users.create(first_name="John", last_name="Wick", email="john@example.com")
        >>> await users.insert(user)
        >>> wicks = await users.find_by({"last_name": "Wick"}, limit=10, page=1)
    """

    entity: type[T]
    order: ClassVar[dict[str, str]] = {}

    def __init__(self, database: Database, entity: type[T] | None = None) -> None:
        if entity is not None:
            self.entity = entity

        entity_type = getattr(self, "entity", None)
        name = type(self).__name__
        if not (isinstance(entity_type, type) and issubclass(entity_type, Entity)):
            raise TypeError(f"Cannot initialize repository {name!r}, entity class not defined")
        if not entity_type.__identity__:
            raise TypeError(f"Cannot initialize repository {name!r}, no identity fields specified")

        self.database = database

    def __repr__(self) -> str:
        return f"<{type(self).__name__} entity={self.entity.__name__}>"

    @property
    def table(self) -> str:
        return self.entity.__tablename__

    def create(self, values: Mapping[str, Any] | None = None, /, **kwargs: Any) -> T:
        """Create a new, unsaved entity bound to this repository's database.

        Raises:
            UnknownField: One or more names are not declared on the entity.
        """
        values = {**(values or {}), **kwargs}
        invalid = [name for name in values if name not in self.entity.__fields__]
        if invalid:
            raise UnknownField(
                f"Unsupported field(s) {', '.join(invalid)} when creating {self.entity.__name__}"
            )

        entity = self.entity()
        entity._bind(self.database)
        for name, value in values.items():
            setattr(entity, name, value)
        return entity

    async def insert(self, entity: T) -> Result[T]:
        """Insert the entity's initialized fields.

        For a single identity field that was not supplied, the generated id
        is assigned to the entity. The entity then joins the identity map.
        """
        self._check(entity, "insert")
        entity._bind(self.database)

        columns = await self.database.columns(self.entity)
        snapshot = dump(entity)
        values = diff(entity, reset=True)

        try:
            result = await self.database.execute(InsertQuery(self.table).values(values).map(columns))
            result.raise_for_error("Failed inserting entity")
        except Exception:
            restore(entity, snapshot)
            raise

        identity = self.entity.__identity__
        if len(identity) == 1 and values.get(identity[0]) is None and result.insert_id is not None:
            setattr(entity, identity[0], result.insert_id)
            commit(entity, identity)

        self.database.identity_map.register(entity)
        logger.debug("entity_inserted", entity=self.entity.__name__, insert_id=result.insert_id)
        return result.of(self.entity)

    async def update(self, entity: T) -> Result[T]:
        """Write changed fields, addressing the row by its last persisted identity.

        Nothing is sent when no field changed.

        Raises:
            InsufficientIdentity: An identity field is neither persisted nor set.
        """
        self._check(entity, "update")

        values = diff(entity)
        if not values:
            return Result.empty("", self.database).of(self.entity)

        original = dump(entity)
        query = UpdateQuery(self.table)
        expr = query.expression()

        conditions: list[Query] = []
        for field in self.entity.__identity__:
            if field in original:
                conditions.append(expr.eq(field, original[field]))
            elif field in values:
                conditions.append(expr.eq(field, values[field]))
            else:
                raise InsufficientIdentity(
                    f"Cannot update {self.entity.__name__}, identity field {field!r} is not set"
                )

        columns = await self.database.columns(self.entity)
        old_hash = identity_hash(entity, persisted=True)
        query.set(*[query.assign(field, value) for field, value in values.items()])
        query.where(*conditions)

        result = await self.database.execute(query.map(columns))
        result.raise_for_error("Failed updating entity")

        diff(entity, reset=True)
        self.database.identity_map.rehash(entity, old_hash)
        return result.of(self.entity)

    async def delete(self, entity: T) -> Result[T]:
        """Delete the entity's row; the entity becomes transient.

        Raises:
            InsufficientIdentity: The entity was never persisted with its full identity.
        """
        self._check(entity, "delete")

        identity = self.entity.__identity__
        original = dump(entity, identity)
        missing = [field for field in identity if field not in original]
        if missing:
            raise InsufficientIdentity(
                f"Cannot delete {self.entity.__name__}, insufficient identity ({', '.join(missing)})"
            )

        columns = await self.database.columns(self.entity)
        query = DeleteQuery(self.table)
        expr = query.expression()
        query.where(*[expr.eq(field, original[field]) for field in identity])

        result = await self.database.execute(query.map(columns))
        result.raise_for_error("Failed deleting entity")

        self.database.identity_map.forget(entity)
        detach(entity)
        return result.of(self.entity)

    async def find(self, id: Any) -> T | None:
        """Find one entity by its id or by a mapping of unique criteria.

        Example:
            >>> await users.find(1)
            >>> await users.find({"email": "john@example.com"})

        Raises:
            InsufficientIdentity: A scalar id was given for a composite identity.
            MultipleResultsFound: The criteria matched more than one row.
        """
        identity = self.entity.__identity__

        if isinstance(id, Mapping):
            criteria = dict(id)
        else:
            if len(identity) != 1:
                raise InsufficientIdentity(
                    f"Cannot find {self.entity.__name__} by scalar id {id!r}, "
                    "identity has more than one field"
                )
            criteria = {identity[0]: id}

        if set(criteria) == set(identity):
            values = [self._encode(field, criteria[field]) for field in identity]
            if None not in values:
                cached = self.database.identity_map.get(self.entity, hash_values(values))
                if cached is not None:
                    return cached

        result = await self.find_by(criteria, limit=2)
        if len(result) > 1:
            raise MultipleResultsFound(
                f"Cannot find {self.entity.__name__}, criteria matched more than one row"
            )
        return result.first()

    async def find_all(self, order: Mapping[str, str] | None = None) -> Result[T]:
        return await self.find_by({}, order)

    async def find_by(
        self,
        criteria: Mapping[str, Any],
        order: Mapping[str, str] | None = None,
        limit: int | None = None,
        page: int | None = None,
    ) -> Result[T]:
        """Find entities matching ``field = value`` criteria.

        ``order`` maps field names to ``"asc"``/``"desc"`` and defaults to the
        repository's ``order``; pass ``{}`` for no ordering. ``page`` is
        1-based and only applies with a ``limit``.
        """
        encoded = {field: self._encode(field, value) for field, value in criteria.items()}
        sort = self.order if order is None else order

        def build(query: SelectQuery, expr: Expression) -> None:
            query.where(*[expr.eq(field, value) for field, value in encoded.items()])
            query.order(*[query.sort(field, direction) for field, direction in sort.items()])
            query.limit(limit)
            query.offset(None if limit is None else ((page or 1) - 1) * limit)

        return await self.select(build)

    async def select(
        self,
        builder: Callable[[SelectQuery, Expression], Any],
        *,
        count: bool = False,
    ) -> Result[T]:
        """Run a custom SELECT built by ``builder(query, expression)``.

        With ``count`` a second statement counts every matching row (ignoring
        limit and offset) into ``result.total``.

        Example:
            >>> result = await users.select(
            ...     lambda query, expr: query.where(expr.gte("age", 18)).limit(10),
            ...     count=True,
            ... )
            >>> result.total
        """
        columns = await self.database.columns(self.entity)
        query = SelectQuery(self.table)
        builder(query, query.expression())

        result = await self.database.execute(query.map(columns))
        result.raise_for_error("Failed selecting entities")
        result.of(self.entity)

        if count:
            query.fetch("COUNT(*) AS total").limit(None).offset(None)
            counted = await self.database.execute(query.map(columns))
            counted.raise_for_error("Failed counting entities")
            record = counted.first()
            result.total = record["total"] if record is not None and "total" in record else 0

        return result

    def _check(self, entity: Any, operation: str) -> None:
        if not isinstance(entity, self.entity):
            raise TypeError(
                f"Entity of type {type(entity).__name__!r} cannot be handled by "
                f"{type(self).__name__}.{operation}()"
            )

    def _encode(self, field: str, value: Any) -> Any:
        info = self.entity.__fields__.get(field)
        if info is None:
            raise UnknownField(f"Unknown field {field!r} for {self.entity.__name__}")
        codec = self.database.codecs.resolve(info.codec)
        if codec is None:
            return value
        if isinstance(value, (list, tuple)):
            return [codec.encode(item) for item in value]
        return codec.encode(value)
