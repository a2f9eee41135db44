"""Field definitions for entities."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from tursomap.errors import UninitializedField

if TYPE_CHECKING:
    from tursomap.codecs import Codec

T = TypeVar("T")


class Mapped(Generic[T]):
    """Type annotation wrapper indicating a field mapped to a column.

    Example:
        >>> class User(Entity):
        ...     id: Mapped[int] = mapped_column(identity=True)
        ...     first_name: Mapped[str | None]
        ...     died: Mapped[date | None] = mapped_column("date")
    """

    pass


@dataclass(eq=False)
class FieldInfo:
    """Metadata about a declared field, and the descriptor that stores it.

    Values live in the entity's sparse store: a field that was never assigned
    is absent (reading it raises UninitializedField), which is distinct from a
    field explicitly set to None.
    """

    name: str | None = None
    codec: Codec | str | None = None
    identity: bool = False
    annotation: Any = None

    def __set_name__(self, owner: type, name: str) -> None:
        self.name = name

    def __get__(self, instance: Any, owner: type | None = None) -> Any:
        if instance is None:
            return self
        try:
            return instance._state.current[self.name]
        except KeyError:
            raise UninitializedField(
                f"Field '{type(instance).__name__}.{self.name}' is not initialized"
            ) from None

    def __set__(self, instance: Any, value: Any) -> None:
        instance._state.current[self.name] = value

    def __delete__(self, instance: Any) -> None:
        instance._state.current.pop(self.name, None)

    def __repr__(self) -> str:
        flags = " identity" if self.identity else ""
        return f"<FieldInfo {self.name}{flags}>"


def mapped_column(
    codec: Codec | str | None = None,
    /,
    *,
    identity: bool = False,
) -> Any:
    """Declare a field.

    Args:
        codec: A Codec, or the name of one registered on the database
            (built-ins: "date", "time", "timestamp", "array", "object").
        identity: Whether the field is part of the entity's identity.

    Returns:
        A FieldInfo descriptor

    Example:
        >>> id: Mapped[int] = mapped_column(identity=True)
        >>> tags: Mapped[list[str]] = mapped_column("array")
    """
    return FieldInfo(codec=codec, identity=identity)
