"""Binding of live table columns to declared entity fields."""

from __future__ import annotations

import re
from collections.abc import Iterable

from tursomap.errors import SchemaMismatch

_NON_ALNUM = re.compile(r"[^a-z0-9]")


def normalize(name: str) -> str:
    """Lowercase a name and strip everything that is not a letter or digit.

    Example:
        >>> normalize("first_name") == normalize("firstName") == "firstname"
        True
    """
    return _NON_ALNUM.sub("", name.lower())


def map_fields(
    declared: Iterable[str],
    columns: Iterable[str],
    entity: str = "entity",
) -> dict[str, str]:
    """Map every column to the declared field whose normalized name matches.

    When several fields normalize identically the first declared one wins.

    Returns:
        column -> field, in column order

    Raises:
        SchemaMismatch: One or more columns have no matching field. The
            mapping is all-or-nothing.
    """
    by_key: dict[str, str] = {}
    for field in declared:
        by_key.setdefault(normalize(field), field)

    mapping: dict[str, str] = {}
    missing: list[str] = []

    for column in columns:
        field = by_key.get(normalize(column))
        if field is None:
            missing.append(column)
        else:
            mapping[column] = field

    if missing:
        raise SchemaMismatch(entity, missing)

    return mapping
