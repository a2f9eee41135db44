"""Field codecs: conversions between storage values and Python values.

A codec is a ``(decode, encode)`` pair. ``decode`` turns the value read from
a result cell into the value held on the entity; ``encode`` does the reverse
and must produce something :func:`tursomap.query.escape` accepts.

Example:
    >>> class User(Entity):
    ...     __tablename__ = "users"
    ...     id: Mapped[int] = mapped_column(identity=True)
    ...     died: Mapped[date | None] = mapped_column("date")
"""

from __future__ import annotations

import json
from collections.abc import Callable
from dataclasses import dataclass
from datetime import date, datetime, time
from typing import Any


@dataclass(frozen=True)
class Codec:
    """A decode/encode pair for one field."""

    decode: Callable[[Any], Any]
    encode: Callable[[Any], Any]


def _decode_date(raw: str | None) -> date | None:
    if not raw:
        return None
    return date.fromisoformat(raw[:10])


def _encode_date(value: date | None) -> str | None:
    if value is None:
        return None
    return value.strftime("%Y-%m-%d")


def _decode_time(raw: str | None) -> time | None:
    if not raw:
        return None
    return time.fromisoformat(raw)


def _encode_time(value: time | None) -> str | None:
    if value is None:
        return None
    return value.strftime("%H:%M:%S")


def _decode_timestamp(raw: str | int | None) -> datetime | None:
    if raw is None or raw == "":
        return None
    if isinstance(raw, int):
        return datetime.fromtimestamp(raw)
    return datetime.fromisoformat(raw)


def _encode_timestamp(value: datetime | None) -> str | None:
    if value is None:
        return None
    return value.isoformat(sep=" ")


def _decode_array(raw: str | None) -> list[Any]:
    if not raw:
        return []
    decoded = json.loads(raw)
    return decoded if isinstance(decoded, list) else []


def _decode_object(raw: str | None) -> dict[str, Any]:
    if not raw:
        return {}
    decoded = json.loads(raw)
    return decoded if isinstance(decoded, dict) else {}


def _encode_json(value: list[Any] | dict[str, Any] | None) -> str | None:
    # Empty containers are stored as NULL
    if not value:
        return None
    return json.dumps(value)


DATE = Codec(_decode_date, _encode_date)
TIME = Codec(_decode_time, _encode_time)
TIMESTAMP = Codec(_decode_timestamp, _encode_timestamp)
ARRAY = Codec(_decode_array, _encode_json)
OBJECT = Codec(_decode_object, _encode_json)

_BUILTINS: dict[str, Codec] = {
    "date": DATE,
    "time": TIME,
    "timestamp": TIMESTAMP,
    "array": ARRAY,
    "object": OBJECT,
}


class CodecRegistry:
    """A named set of codecs, owned by a Database."""

    def __init__(self, codecs: dict[str, Codec] | None = None) -> None:
        self._codecs: dict[str, Codec] = dict(codecs or {})

    @classmethod
    def default(cls) -> CodecRegistry:
        """Create a registry holding the built-in codecs."""
        return cls(_BUILTINS)

    def register(self, name: str, codec: Codec) -> None:
        self._codecs[name] = codec

    def get(self, name: str) -> Codec:
        try:
            return self._codecs[name]
        except KeyError:
            raise LookupError(f"No codec registered under {name!r}") from None

    def resolve(self, codec: Codec | str | None) -> Codec | None:
        """Resolve a field's codec declaration (instance, name or None)."""
        if codec is None or isinstance(codec, Codec):
            return codec
        return self.get(codec)

    def __contains__(self, name: object) -> bool:
        return name in self._codecs

    def __iter__(self):
        return iter(self._codecs)
