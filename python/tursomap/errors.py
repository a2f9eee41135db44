"""Exception types raised by the data mapper."""

from __future__ import annotations

from collections.abc import Iterable


class MapperError(Exception):
    """Base class for all tursomap errors."""


class TransportError(MapperError):
    """The transport could not complete a round trip to the endpoint."""


class RemoteStatementError(MapperError):
    """The endpoint reported an error for a single statement.

    The offending SQL is kept on the exception for diagnostics.
    """

    def __init__(self, message: str, *, code: str | None = None, sql: str = "") -> None:
        self.code = code
        self.message = message
        self.sql = sql
        text = f"[{code}] {message}" if code else message
        if sql:
            text = f"{text}\n  SQL: {sql}"
        super().__init__(text)


class SchemaMismatch(MapperError):
    """Live columns exist that no declared field maps to."""

    def __init__(self, entity: str, columns: Iterable[str]) -> None:
        self.entity = entity
        self.columns = list(columns)
        super().__init__(
            f"Cannot map {entity}: no declared field for column(s) {', '.join(self.columns)}"
        )


class UnsupportedValueType(MapperError, TypeError):
    """A value cannot be written as an SQL literal."""


class UnknownWireType(MapperError, TypeError):
    """A result cell carried a type tag the decoder does not know."""


class TemplateError(MapperError, ValueError):
    """A query template was built or rendered incorrectly."""


class UnusedVariable(TemplateError):
    """A variable was supplied but never referenced by the template."""


class MissingVariable(TemplateError):
    """The template references a variable that was never supplied."""


class InsufficientIdentity(MapperError, ValueError):
    """Not every identity field could be resolved for the operation."""


class UnknownField(MapperError, TypeError):
    """A field name is not declared on the entity."""


class UninitializedField(MapperError, AttributeError):
    """A declared field was read before it was ever set."""


class MultipleResultsFound(MapperError, ValueError):
    """A lookup expected at most one row but matched more."""


class NoResultFound(MapperError, LookupError):
    """A lookup expected exactly one row but matched none."""
