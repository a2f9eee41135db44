"""Template-based SQL construction.

A query template mixes two kinds of placeholders:

- ``@name`` is a raw, structural substitution (table and column names,
  sub-clauses, joined lists of fragments). A raw that is not set renders as
  nothing, together with the whitespace that follows it, which is how optional
  clauses such as ``@where`` or ``@limit`` disappear.
- ``{name}`` is a value substitution and always goes through :func:`escape`.

Example:
    >>> query = SelectQuery("users")
    >>> expr = query.expression()
    >>> query.where(expr.eq("last_name", "Wick")).limit(1)
    >>> str(query)
    "SELECT * FROM users WHERE last_name = 'Wick' LIMIT 1"
"""

from __future__ import annotations

import copy
import math
import re
from collections.abc import Iterable, Mapping
from typing import Any, Self

from tursomap.errors import MissingVariable, UnknownField, UnsupportedValueType, UnusedVariable

type RawValue = str | Query | list[str | Query] | None

# One pass over the template: raws (with trailing whitespace) or variables.
_TOKEN = re.compile(r"@(\w+)(\s*)|\{\s*(\w+)\s*\}")

_INT64_MIN = -(2**63)
_INT64_MAX = 2**63 - 1


def escape(value: Any) -> str:
    """Render a Python value as an SQL literal.

    The set of supported types is closed: ``None``, ``bool``, ``int``,
    finite ``float``, ``str`` and lists/tuples of those.

    Example:
        >>> escape("O'Brien")
        "'O''Brien'"
        >>> escape([1, None, True])
        '(1, NULL, TRUE)'
    """
    if value is None:
        return "NULL"
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, int):
        if not _INT64_MIN <= value <= _INT64_MAX:
            raise UnsupportedValueType(f"Cannot escape {value!r}, outside the signed 64-bit integer range")
        return str(int(value))
    if isinstance(value, float):
        if not math.isfinite(value):
            raise UnsupportedValueType(f"Cannot escape non-finite float {value!r}")
        return repr(float(value))
    if isinstance(value, str):
        return "'" + value.replace("'", "''") + "'"
    if isinstance(value, (list, tuple)):
        return "(" + ", ".join(escape(item) for item in value) + ")"
    raise UnsupportedValueType(
        f"Cannot escape value of type {type(value).__name__!r}, not supported"
    )


class Query:
    """A composable SQL template.

    Builder methods return ``self`` so fragments can be chained. Calling a
    query with a template string creates a new, independent fragment.
    """

    def __init__(
        self,
        template: str = "",
        variables: Mapping[str, Any] | None = None,
        raws: Mapping[str, RawValue] | None = None,
    ) -> None:
        self._template = template
        self._vars: dict[str, Any] = dict(variables or {})
        self._raws: dict[str, RawValue] = dict(raws or {})
        self._names: set[str] = set()
        self._separator = ", "
        self._wrap = True

    def __call__(self, template: str) -> Query:
        return Query(template)

    def __str__(self) -> str:
        return self.render()

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self._template!r}>"

    @property
    def template(self) -> str:
        return self._template

    def bind(self, separator: str, wrap: bool = True) -> Self:
        """Set how list raws are joined and whether they are parenthesized."""
        self._separator = separator
        self._wrap = wrap
        return self

    def raw(self, ref: str, value: RawValue, *, name: bool = False) -> Self:
        """Set a structural substitution.

        Args:
            ref: The ``@ref`` the value replaces.
            value: A string, a fragment, a list of either, or None to omit.
            name: Mark the value as field name(s) to be translated by map().
        """
        self._raws[ref] = list(value) if isinstance(value, tuple) else value
        if name:
            self._names.add(ref)
        else:
            self._names.discard(ref)
        return self

    def var(self, ref: str, value: Any) -> Self:
        """Set an escaped value substitution."""
        self._vars[ref] = value
        return self

    @staticmethod
    def escape(value: Any) -> str:
        return escape(value)

    def render(self) -> str:
        """Render the template to SQL text.

        Raises:
            MissingVariable: A ``{ref}`` has no matching variable.
            UnusedVariable: A variable is never referenced.
        """
        used: set[str] = set()

        def substitute(match: re.Match[str]) -> str:
            ref, space, var = match.groups()
            if ref is not None:
                text = self._render_raw(ref)
                return text + space if text else ""
            if var not in self._vars:
                raise MissingVariable(
                    f"Cannot compile query, {{{var}}} used in template but no matching variable set"
                )
            used.add(var)
            return escape(self._vars[var])

        sql = _TOKEN.sub(substitute, self._template)

        unused = [ref for ref in self._vars if ref not in used]
        if unused:
            raise UnusedVariable(
                "Cannot compile query, the following variables were set but not used: "
                + ", ".join(unused)
            )

        return sql.strip()

    def _render_raw(self, ref: str) -> str:
        value = self._raws.get(ref)
        if value is None:
            return ""
        if isinstance(value, list):
            parts = [text for text in (str(item) for item in value) if text]
            if not parts:
                return ""
            joined = self._separator.join(parts)
            return f"({joined})" if self._wrap else joined
        return str(value)

    def map(self, mapping: Mapping[str, str]) -> Query:
        """Return a copy with every raw marked as a name translated by ``mapping``.

        Nested fragments are translated recursively. The original is unchanged.

        Raises:
            UnknownField: A marked name has no entry in ``mapping``.
        """
        clone = copy.copy(self)
        clone._vars = dict(self._vars)
        clone._names = set()
        clone._raws = {
            ref: _map_raw(value, mapping, ref in self._names)
            for ref, value in self._raws.items()
        }
        return clone


def _map_raw(value: RawValue, mapping: Mapping[str, str], named: bool) -> RawValue:
    if isinstance(value, Query):
        return value.map(mapping)
    if isinstance(value, list):
        return [_map_raw(item, mapping, named) for item in value]  # type: ignore[misc]
    if named and isinstance(value, str):
        try:
            return mapping[value]
        except KeyError:
            raise UnknownField(f"Cannot map unknown field {value!r}") from None
    return value


class Expression(Query):
    """Factory for condition fragments."""

    def all(self, *conditions: Query) -> Query:
        """Group conditions with AND, parenthesized. No conditions is always true."""
        if not conditions:
            return self("1 = 1")
        return self("@conditions").bind(" AND ").raw("conditions", list(conditions))

    def any(self, *conditions: Query) -> Query:
        """Group conditions with OR, parenthesized. No conditions is always false."""
        if not conditions:
            return self("1 = 0")
        return self("@conditions").bind(" OR ").raw("conditions", list(conditions))

    def cmp(self, name: str, value: Any, operator: str) -> Query:
        """Build ``name operator value``."""
        return (
            self("@name @operator {value}")
            .raw("name", name, name=True)
            .raw("operator", operator)
            .var("value", value)
        )

    def eq(self, name: str, value: Any) -> Query:
        if value is None:
            return self("@name IS NULL").raw("name", name, name=True)
        if isinstance(value, (list, tuple)):
            return self.in_(name, value)
        return self.cmp(name, value, "=")

    def ne(self, name: str, value: Any) -> Query:
        if value is None:
            return self("@name IS NOT NULL").raw("name", name, name=True)
        if isinstance(value, (list, tuple)):
            return self.notin(name, value)
        return (
            self("(@name <> {value} OR @name IS NULL)")
            .raw("name", name, name=True)
            .var("value", value)
        )

    def gt(self, name: str, value: Any) -> Query:
        return self.cmp(name, value, ">")

    def gte(self, name: str, value: Any) -> Query:
        return self.cmp(name, value, ">=")

    def lt(self, name: str, value: Any) -> Query:
        return self.cmp(name, value, "<")

    def lte(self, name: str, value: Any) -> Query:
        return self.cmp(name, value, "<=")

    def like(self, name: str, value: str) -> Query:
        return self.cmp(name, value, "LIKE")

    def nlike(self, name: str, value: str) -> Query:
        return self.cmp(name, value, "NOT LIKE")

    def in_(self, name: str, values: Iterable[Any]) -> Query:
        values = list(values)
        if not values:
            return self("1 = 0")  # Empty IN -> always false
        return self.cmp(name, values, "IN")

    def notin(self, name: str, values: Iterable[Any]) -> Query:
        values = list(values)
        if not values:
            return self("1 = 1")  # Empty NOT IN -> always true
        return self.cmp(name, values, "NOT IN")


class WhereQuery(Query):
    """Features common to statements with a WHERE clause."""

    def expression(self) -> Expression:
        return Expression()

    def where(self, *conditions: Query) -> Self:
        """Set the WHERE clause; conditions are joined with AND."""
        if not conditions:
            return self.raw("where", None)
        clause = self("WHERE @conditions").bind(" AND ", wrap=False).raw("conditions", list(conditions))
        return self.raw("where", clause)


class SelectQuery(WhereQuery):
    """SELECT statement.

    Example:
        >>> query = SelectQuery("users")
        >>> query.order(query.sort("first_name", "asc")).limit(10).offset(20)
        >>> str(query)
        'SELECT * FROM users ORDER BY first_name ASC LIMIT 10 OFFSET 20'
    """

    def __init__(self, table: str) -> None:
        super().__init__("SELECT @cols FROM @table @where @order @limit @offset")
        self.raw("table", table)
        self.fetch("*")

    def fetch(self, *columns: str) -> Self:
        """Set the selected columns (raw SQL, not translated)."""
        cols = self("@columns").bind(", ", wrap=False).raw("columns", list(columns or ("*",)))
        return self.raw("cols", cols)

    def sort(self, field: str, direction: str = "asc") -> Query:
        """Build a sort term for order()."""
        direction = direction.upper()
        if direction not in ("ASC", "DESC"):
            raise ValueError(f"Invalid sort direction {direction!r}, expected 'asc' or 'desc'")
        return self("@field @direction").raw("field", field, name=True).raw("direction", direction)

    def order(self, *sorts: Query) -> Self:
        if not sorts:
            return self.raw("order", None)
        return self.raw("order", self("ORDER BY @sorts").bind(", ", wrap=False).raw("sorts", list(sorts)))

    def limit(self, limit: int | None) -> Self:
        if limit is None:
            return self.raw("limit", None)
        return self.raw("limit", self("LIMIT @count").raw("count", str(int(limit))))

    def offset(self, offset: int | None) -> Self:
        if offset is None:
            return self.raw("offset", None)
        return self.raw("offset", self("OFFSET @count").raw("count", str(int(offset))))


class InsertQuery(Query):
    """INSERT statement for a single row."""

    def __init__(self, table: str) -> None:
        super().__init__("INSERT INTO @table @names VALUES @values")
        self.raw("table", table)

    def values(self, values: Mapping[str, Any]) -> Self:
        """Set the row to insert as a field -> value mapping."""
        if not values:
            self._template = "INSERT INTO @table DEFAULT VALUES"
            return self.raw("names", None).raw("values", None)

        self._template = "INSERT INTO @table @names VALUES @values"
        self.raw("names", list(values), name=True)
        self.raw("values", [self("{value}").var("value", value) for value in values.values()])
        return self


class UpdateQuery(WhereQuery):
    """UPDATE statement."""

    def __init__(self, table: str) -> None:
        super().__init__("UPDATE @table SET @assignments @where")
        self.raw("table", table)

    def assign(self, field: str, value: Any) -> Query:
        """Build a ``field = value`` assignment for set()."""
        return self("@field = {value}").raw("field", field, name=True).var("value", value)

    def set(self, *assignments: Query) -> Self:
        clause = self("@assignments").bind(", ", wrap=False).raw("assignments", list(assignments))
        return self.raw("assignments", clause)


class DeleteQuery(WhereQuery):
    """DELETE statement."""

    def __init__(self, table: str) -> None:
        super().__init__("DELETE FROM @table @where")
        self.raw("table", table)
