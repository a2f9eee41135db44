"""Statement results and row materialization."""

from __future__ import annotations

from collections.abc import Iterator
from typing import TYPE_CHECKING, Any

from tursomap.base import Entity, Record
from tursomap.errors import MultipleResultsFound, NoResultFound, RemoteStatementError
from tursomap.transport import Envelope, StatementError

if TYPE_CHECKING:
    from tursomap.database import Database

__all__ = ["Result", "StatementError"]


class Result[T: Entity]:
    """The outcome of one statement.

    Rows are turned into entities lazily and at most once. Typed rows are
    routed through the connection's identity map, so the same identity
    always yields the same instance.

    Example:
        >>> result = (await database.execute("SELECT * FROM users")).of(User)
        >>> for user in result:
        ...     print(user.first_name)
    """

    def __init__(self, sql: str, database: Database, envelope: Envelope) -> None:
        self.sql = sql
        self.envelope = envelope
        self.total: int | None = None
        self._database = database
        self._entity_type: type[T] | None = None
        self._records: dict[int, Any] = {}

    @classmethod
    def empty(cls, sql: str, database: Database) -> Result[Any]:
        """A successful result with no rows and nothing affected."""
        return cls(sql, database, Envelope(affected_row_count=0))

    def of(self, entity_type: type[T] | None) -> Result[T]:
        """Materialize rows as ``entity_type`` (``None`` for records)."""
        if entity_type is not self._entity_type:
            self._entity_type = entity_type
            self._records.clear()
        return self

    @property
    def is_error(self) -> bool:
        return self.envelope.error is not None

    @property
    def error(self) -> StatementError | None:
        return self.envelope.error

    @property
    def columns(self) -> list[str]:
        return list(self.envelope.columns)

    @property
    def affected_rows(self) -> int:
        return self.envelope.affected_row_count or 0

    @property
    def insert_id(self) -> int | None:
        return self.envelope.last_insert_id

    def raise_for_error(self, message: str | None = None) -> Result[T]:
        """Raise :class:`RemoteStatementError` if the statement failed."""
        error = self.envelope.error
        if error is not None:
            text = f"{message}: {error.message}" if message else error.message
            raise RemoteStatementError(text, code=error.code, sql=self.sql)
        return self

    def get_record(self, index: int) -> T | Record | None:
        """Materialize row ``index``; out of range gives None."""
        if index < 0:
            index += len(self)
        if not 0 <= index < len(self):
            return None

        if index not in self._records:
            self._records[index] = self._materialize(self.envelope.rows[index])
        return self._records[index]

    def first(self) -> T | Record | None:
        return self.get_record(0)

    def all(self) -> list[T | Record]:
        return list(self)

    def one(self) -> T | Record:
        """Get exactly one row, or raise."""
        count = len(self)
        if count == 0:
            raise NoResultFound(f"No row found for: {self.sql}")
        if count > 1:
            raise MultipleResultsFound(f"Expected one row, got {count} for: {self.sql}")
        return self.get_record(0)  # type: ignore[return-value]

    def one_or_none(self) -> T | Record | None:
        if len(self) > 1:
            raise MultipleResultsFound(f"Expected at most one row, got {len(self)} for: {self.sql}")
        return self.get_record(0)

    def __len__(self) -> int:
        if self.is_error:
            return 0
        return len(self.envelope.rows)

    def __iter__(self) -> Iterator[T | Record]:
        for index in range(len(self)):
            yield self.get_record(index)  # type: ignore[misc]

    def __repr__(self) -> str:
        if self.is_error:
            return f"<Result error={self.envelope.error!r}>"
        return f"<Result rows={len(self)} affected={self.affected_rows}>"

    def _materialize(self, cells: list[dict[str, Any]]) -> Any:
        columns = self.envelope.columns
        entity_type = self._entity_type

        if entity_type is None:
            return Record._from_row(self._database, dict(zip(columns, cells)))

        mapping = self._database.mapping_for(entity_type, columns)
        row = {mapping[column]: cell for column, cell in zip(columns, cells)}
        entity = entity_type._from_row(self._database, row)
        return self._database.identity_map.register(entity)
