"""Declarative entity types: typed entities and untyped records."""

from __future__ import annotations

import inspect
from collections.abc import Iterator, Mapping
from typing import TYPE_CHECKING, Any, ClassVar

from tursomap.errors import UnknownField
from tursomap.fields import FieldInfo
from tursomap.state import EntityState, initialize

if TYPE_CHECKING:
    from tursomap.association import Association
    from tursomap.codecs import Codec
    from tursomap.database import Database


class ModelMeta(type):
    """Metaclass for entities that collects the declared schema."""

    def __new__(
        mcs,
        name: str,
        bases: tuple[type, ...],
        namespace: dict[str, Any],
        **kwargs: Any,
    ) -> ModelMeta:
        cls = super().__new__(mcs, name, bases, namespace, **kwargs)

        # Skip processing for the Entity class itself
        if not bases:
            return cls

        tablename = namespace.get("__tablename__")
        if tablename is None:
            inherited = [getattr(b, "__tablename__", None) for b in bases if isinstance(b, ModelMeta)]
            tablename = next((t for t in inherited if t), None) or name.lower() + "s"
        cls.__tablename__ = tablename  # type: ignore[attr-defined]

        # Inherited fields come first, in base declaration order
        fields: dict[str, FieldInfo] = {}
        for base in reversed(cls.__mro__[1:]):
            fields.update(getattr(base, "__fields__", {}))

        annotations = inspect.get_annotations(cls)

        for attr_name, hint in annotations.items():
            if attr_name.startswith("_"):
                continue
            value = namespace.get(attr_name)
            if isinstance(value, FieldInfo):
                value.annotation = hint
                fields[attr_name] = value
            elif value is None and "Mapped" in str(hint):
                # Bare Mapped[T] annotation without mapped_column()
                info = FieldInfo(name=attr_name, annotation=hint)
                setattr(cls, attr_name, info)
                fields[attr_name] = info

        for attr_name, value in namespace.items():
            if isinstance(value, FieldInfo) and attr_name not in fields:
                value.name = attr_name
                fields[attr_name] = value

        cls.__fields__ = fields  # type: ignore[attr-defined]

        identity = namespace.get("__identity__")
        if identity is None:
            identity = tuple(n for n, f in fields.items() if f.identity)
        else:
            identity = tuple(identity)
            undeclared = [n for n in identity if n not in fields]
            if undeclared:
                raise UnknownField(
                    f"Identity field(s) {', '.join(undeclared)} not declared on {name}"
                )
        cls.__identity__ = identity  # type: ignore[attr-defined]

        # Named computed properties, in definition order
        computed: dict[str, None] = {}
        for klass in reversed(cls.__mro__):
            for attr_name, value in vars(klass).items():
                if isinstance(value, property) and not attr_name.startswith("_"):
                    computed[attr_name] = None
        cls.__computed__ = tuple(computed)  # type: ignore[attr-defined]

        return cls


class Entity(metaclass=ModelMeta):
    """Base class for typed entities.

    Example:
        >>> class User(Entity):
        ...     __tablename__ = "users"
        ...
        ...     id: Mapped[int] = mapped_column(identity=True)
        ...     parent: Mapped[int | None]
        ...     first_name: Mapped[str | None]
        ...     last_name: Mapped[str | None]
        ...     died: Mapped[date | None] = mapped_column("date")
        ...
        ...     @property
        ...     def full_name(self) -> str:
        ...         return f"{self.first_name} {self.last_name}".strip()
        ...
        ...     async def get_parent(self, refresh: bool = False) -> User | None:
        ...         return await self.association(User).has_one({"parent": "id"}, refresh)
    """

    __tablename__: ClassVar[str]
    __fields__: ClassVar[dict[str, FieldInfo]] = {}
    __identity__: ClassVar[tuple[str, ...]] = ()
    __computed__: ClassVar[tuple[str, ...]] = ()

    _state: EntityState

    def __init__(self, **values: Any) -> None:
        """Initialize an entity with the given field values."""
        object.__setattr__(self, "_state", EntityState())

        for key, value in values.items():
            if key not in self.__fields__:
                raise UnknownField(f"Unknown field {key!r} for {type(self).__name__}")
            setattr(self, key, value)

    def __repr__(self) -> str:
        current = self._state.current
        ident = " ".join(f"{n}={current[n]!r}" for n in self.__identity__ if n in current)
        return f"<{type(self).__name__} {ident}>" if ident else f"<{type(self).__name__}>"

    @classmethod
    def _from_row(cls, database: Database, row: Mapping[str, Mapping[str, Any]]) -> Entity:
        """Create a loaded instance from a row keyed by field name."""
        instance = object.__new__(cls)
        object.__setattr__(instance, "_state", EntityState(database))
        initialize(instance, row, from_storage=True)
        return instance

    def _bind(self, database: Database) -> None:
        self._state.database = database

    def _declared(self) -> tuple[str, ...]:
        return tuple(self.__fields__)

    def _accepts(self, field: str) -> bool:
        return field in self.__fields__

    def _codec(self, field: str) -> Codec | str | None:
        info = self.__fields__.get(field)
        return info.codec if info else None

    def _identity(self) -> tuple[str, ...]:
        return self.__identity__

    def to_dict(self, include_computed: bool = False) -> dict[str, Any]:
        """Convert initialized fields (and optionally computed properties) to a dict."""
        current = self._state.current
        result = {name: current[name] for name in self.__fields__ if name in current}

        if include_computed:
            for name in self.__computed__:
                result[name] = getattr(self, name)

        return result

    def association(self, target: type[Entity] | str, through: str | None = None) -> Association:
        """Get the association from this entity to ``target``, optionally through a join table.

        The association (and its result cache) is reused for repeated calls.
        """
        key = (target, through)
        cached = self._state.associations.get(key)
        if cached is not None:
            return cached

        database = self._state.database
        if database is None:
            raise RuntimeError(
                f"{type(self).__name__} is not bound to a database; "
                "create it through a repository or load it from a result."
            )

        from tursomap.association import Association

        association = Association(database, self, target, through)
        self._state.associations[key] = association
        return association


class Record:
    """Untyped row: a sparse field -> value map with no declared schema.

    Example:
        >>> record = (await database.execute("SELECT COUNT(*) AS total FROM users")).first()
        >>> record.total
        3
    """

    __slots__ = ("_state",)

    def __init__(self, values: Mapping[str, Any] | None = None, **kwargs: Any) -> None:
        object.__setattr__(self, "_state", EntityState())
        self._state.current.update(values or {})
        self._state.current.update(kwargs)

    @classmethod
    def _from_row(cls, database: Database, row: Mapping[str, Mapping[str, Any]]) -> Record:
        instance = cls()
        instance._state.database = database
        initialize(instance, row, from_storage=True)
        return instance

    def __getattr__(self, name: str) -> Any:
        if name.startswith("_"):
            raise AttributeError(name)
        try:
            return self._state.current[name]
        except KeyError:
            raise AttributeError(f"Record has no field {name!r}") from None

    def __setattr__(self, name: str, value: Any) -> None:
        if name not in self._state.current:
            raise UnknownField(f"Cannot set undeclared field {name!r} on record")
        self._state.current[name] = value

    def __getitem__(self, name: str) -> Any:
        return self._state.current[name]

    def __contains__(self, name: object) -> bool:
        return name in self._state.current

    def __iter__(self) -> Iterator[str]:
        return iter(self._state.current)

    def __len__(self) -> int:
        return len(self._state.current)

    def __repr__(self) -> str:
        return f"<Record {self._state.current!r}>"

    def keys(self) -> list[str]:
        return list(self._state.current)

    def to_dict(self) -> dict[str, Any]:
        return dict(self._state.current)

    def _declared(self) -> tuple[str, ...]:
        return tuple(self._state.current)

    def _accepts(self, field: str) -> bool:
        return True

    def _codec(self, field: str) -> None:
        return None

    def _identity(self) -> tuple[str, ...]:
        return ()
