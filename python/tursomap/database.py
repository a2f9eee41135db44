"""Connection scope: statement execution, schema mapping and repositories."""

from __future__ import annotations

import asyncio
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

import structlog

from tursomap.base import Entity
from tursomap.codecs import CodecRegistry
from tursomap.config import Settings, load_settings
from tursomap.identity import IdentityMap
from tursomap.logging import configure_logging
from tursomap.query import Query, RawValue, SelectQuery
from tursomap.result import Result
from tursomap.schema import map_fields
from tursomap.transport import HttpTransport, LocalTransport, Transport

if TYPE_CHECKING:
    from tursomap.repository import Repository

logger = structlog.get_logger(__name__)


class Database:
    """One connection to a libSQL/Turso endpoint.

    The database owns everything that is scoped to the connection: the
    identity map, schema mappings, repositories and codecs. Statements are
    sent one at a time.

    Example:
        >>> async with Database(LocalTransport()) as db:
        ...     users = db.repository(Users)
        ...     user = await users.find(1)
    """

    def __init__(self, transport: Transport, *, codecs: CodecRegistry | None = None) -> None:
        self.transport = transport
        self.codecs = codecs if codecs is not None else CodecRegistry.default()
        self.identity_map = IdentityMap()
        self._lock = asyncio.Lock()
        self._schemas: dict[type[Entity], dict[str, str]] = {}
        self._mappings: dict[tuple[type[Entity], tuple[str, ...]], dict[str, str]] = {}
        self._repositories: dict[type, Repository[Any]] = {}

    async def __aenter__(self) -> Database:
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self.transport.aclose()

    async def execute(
        self,
        sql: str | Query,
        variables: Mapping[str, Any] | None = None,
        raws: Mapping[str, RawValue] | None = None,
    ) -> Result[Any]:
        """Render and send one statement.

        Statement errors do not raise; check ``result.is_error`` or call
        ``result.raise_for_error()``. Template errors and transport failures
        do raise.

        Example:
            >>> await db.execute("SELECT * FROM @table WHERE id = {id}", {"id": 1}, {"table": "users"})
        """
        if isinstance(sql, Query):
            if variables or raws:
                raise TypeError("variables and raws can only be passed with a template string")
            query = sql
        else:
            query = Query(sql, variables, raws)

        text = query.render()

        async with self._lock:
            envelope = await self.transport.execute(text)

        if envelope.error is not None:
            logger.warning(
                "statement_failed",
                code=envelope.error.code,
                message=envelope.error.message,
                sql=text,
            )
        else:
            logger.debug(
                "statement_executed",
                sql=text,
                rows=len(envelope.rows),
                affected=envelope.affected_row_count,
            )

        return Result(text, self, envelope)

    async def schema(self, entity_type: type[Entity]) -> dict[str, str]:
        """Map the live columns of the entity's table to its fields (column -> field).

        The table is introspected once per connection.

        Raises:
            TypeError: Not an entity type with a table.
            RemoteStatementError: The table cannot be queried.
            SchemaMismatch: A column has no matching field.
        """
        cached = self._schemas.get(entity_type)
        if cached is not None:
            return cached

        table = _table(entity_type)
        result = await self.execute(SelectQuery(table).limit(0))
        result.raise_for_error(f"Cannot introspect table {table!r}")

        mapping = map_fields(entity_type.__fields__, result.columns, entity_type.__name__)
        self._schemas[entity_type] = mapping
        self._mappings[(entity_type, tuple(result.columns))] = mapping

        logger.debug("schema_mapped", entity=entity_type.__name__, table=table, columns=result.columns)
        return mapping

    async def columns(self, entity_type: type[Entity]) -> dict[str, str]:
        """Field -> column map of the entity's table."""
        return {field: column for column, field in (await self.schema(entity_type)).items()}

    def mapping_for(self, entity_type: type[Entity], columns: list[str]) -> dict[str, str]:
        """Column -> field map for a result's columns, cached per column list."""
        key = (entity_type, tuple(columns))
        mapping = self._mappings.get(key)
        if mapping is None:
            mapping = map_fields(entity_type.__fields__, columns, entity_type.__name__)
            self._mappings[key] = mapping
        return mapping

    def repository(self, target: type[Repository[Any]] | type[Entity]) -> Any:
        """Get the repository for a repository class or an entity type.

        Repositories are created once per connection.
        """
        from tursomap.repository import Repository

        cached = self._repositories.get(target)
        if cached is not None:
            return cached

        if isinstance(target, type) and issubclass(target, Repository):
            repository = target(self)
        elif isinstance(target, type) and issubclass(target, Entity):
            repository = Repository(self, target)
        else:
            raise TypeError(f"Cannot create repository, {target!r} is not a repository or entity type")

        self._repositories[target] = repository
        return repository


def _table(entity_type: type[Entity]) -> str:
    table = getattr(entity_type, "__tablename__", None)
    if not (isinstance(entity_type, type) and issubclass(entity_type, Entity)) or not table:
        raise TypeError(f"Cannot map {entity_type!r}, no table defined")
    return table


def create_database(
    url: str | None = None,
    *,
    auth_token: str | None = None,
    settings: Settings | None = None,
) -> Database:
    """Build a database from explicit arguments or ``TURSOMAP_*`` settings.

    ``libsql://`` URLs are sent over HTTPS. ``:memory:`` and ``file:`` URLs
    open a local SQLite database instead. When no settings are passed they are
    loaded from the environment and logging is configured from them.

    Example:
        >>> db = create_database("libsql://app-org.turso.io", auth_token=token)
    """
    if settings is None:
        settings = load_settings()
        configure_logging(settings.log_level, json_format=settings.log_format == "json")

    url = url or settings.url
    if not url:
        raise ValueError("No database URL configured; pass url or set TURSOMAP_URL")

    if url == ":memory:":
        return Database(LocalTransport(url))
    if url.startswith("file:"):
        return Database(LocalTransport(url.removeprefix("file:")))

    if url.startswith("libsql://"):
        url = "https://" + url.removeprefix("libsql://")

    transport = HttpTransport(url, auth_token or settings.auth_token, timeout=settings.timeout)
    return Database(transport)
