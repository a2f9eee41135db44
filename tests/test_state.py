"""Tests for entity declaration, field state and codecs."""

from __future__ import annotations

from datetime import date, datetime, time

import pytest

from tursomap import (
    Codec,
    CodecRegistry,
    Entity,
    Mapped,
    Record,
    UninitializedField,
    UnknownField,
    UnknownWireType,
    mapped_column,
)
from tursomap.state import (
    commit,
    decode_cell,
    detach,
    diff,
    dump,
    hash_values,
    identity_hash,
    initialize,
)


class User(Entity):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(identity=True)
    first_name: Mapped[str | None]
    last_name: Mapped[str | None]
    died: Mapped[date | None] = mapped_column("date")

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class Membership(Entity):
    user_id: Mapped[int] = mapped_column(identity=True)
    group_id: Mapped[int] = mapped_column(identity=True)
    tags: Mapped[list[str]] = mapped_column("array")


class Admin(User):
    level: Mapped[int]


def row(**cells):
    return {name: cell for name, cell in cells.items()}


class TestDeclaration:
    """Tests for the entity metaclass."""

    def test_fields_and_identity(self):
        assert list(User.__fields__) == ["id", "first_name", "last_name", "died"]
        assert User.__identity__ == ("id",)
        assert User.__tablename__ == "users"
        assert User.__computed__ == ("full_name",)

    def test_default_table_name(self):
        assert Membership.__tablename__ == "memberships"
        assert Membership.__identity__ == ("user_id", "group_id")

    def test_inherited_fields_come_first(self):
        assert list(Admin.__fields__) == ["id", "first_name", "last_name", "died", "level"]
        assert Admin.__tablename__ == "users"
        assert Admin.__identity__ == ("id",)

    def test_explicit_identity_must_be_declared(self):
        with pytest.raises(UnknownField):

            class Broken(Entity):
                __identity__ = ("missing",)

                id: Mapped[int]

    def test_unknown_constructor_field(self):
        with pytest.raises(UnknownField):
            User(nickname="JW")

    def test_unset_is_distinct_from_none(self):
        """Test the unset state of a field."""
        user = User(first_name=None)

        assert user.first_name is None
        with pytest.raises(UninitializedField):
            user.last_name

        user.last_name = "Wick"
        assert user.last_name == "Wick"

        del user.last_name
        with pytest.raises(AttributeError):
            user.last_name

    def test_to_dict(self):
        user = User(id=1, first_name="John", last_name="Wick")
        assert user.to_dict() == {"id": 1, "first_name": "John", "last_name": "Wick"}
        assert user.to_dict(include_computed=True)["full_name"] == "John Wick"

    def test_association_requires_a_database(self):
        with pytest.raises(RuntimeError):
            User(id=1).association(User)


class TestDecodeCell:
    """Tests for decoding typed wire cells."""

    def test_known_types(self):
        assert decode_cell({"type": "null"}) is None
        assert decode_cell({"type": "integer", "value": "42"}) == 42
        assert decode_cell({"type": "float", "value": 1.5}) == 1.5
        assert decode_cell({"type": "double", "value": "2.5"}) == 2.5
        assert decode_cell({"type": "boolean", "value": "true"}) is True
        assert decode_cell({"type": "boolean", "value": False}) is False
        assert decode_cell({"type": "text", "value": "hi"}) == "hi"
        assert decode_cell({"type": "blob", "base64": "aGk="}) == b"hi"

    def test_unknown_type(self):
        with pytest.raises(UnknownWireType):
            decode_cell({"type": "vector", "value": "[1, 2]"})


class TestEntityState:
    """Tests for snapshots, diffs and identity hashes."""

    def test_loaded_entity_has_no_diff(self):
        user = User()
        initialize(
            user,
            row(
                id={"type": "integer", "value": "1"},
                first_name={"type": "text", "value": "John"},
                died={"type": "text", "value": "2014-10-24"},
            ),
            from_storage=True,
        )

        assert user.id == 1
        assert user.died == date(2014, 10, 24)
        assert dump(user) == {"id": 1, "first_name": "John", "died": "2014-10-24"}
        assert diff(user) == {}

    def test_initialize_skips_undeclared_fields(self):
        user = User()
        initialize(user, row(nickname={"type": "text", "value": "JW"}))
        assert user.to_dict() == {}

    def test_diff_compares_encoded_values(self):
        """Test that the diff holds storage values of changed fields only."""
        user = User()
        initialize(
            user,
            row(id={"type": "integer", "value": "1"}, died={"type": "null"}),
            from_storage=True,
        )

        user.died = date(2014, 10, 24)
        user.first_name = "John"

        assert diff(user) == {"died": "2014-10-24", "first_name": "John"}
        assert diff(user) == {"died": "2014-10-24", "first_name": "John"}

        assert diff(user, reset=True) == {"died": "2014-10-24", "first_name": "John"}
        assert diff(user) == {}
        assert dump(user, ["died"]) == {"died": "2014-10-24"}

    def test_diff_of_new_entity_holds_every_initialized_field(self):
        user = User(first_name="John", last_name=None)
        assert diff(user) == {"first_name": "John", "last_name": None}

    def test_commit_selected_fields(self):
        user = User(first_name="John", last_name="Wick")
        commit(user, ["first_name"])
        assert diff(user) == {"last_name": "Wick"}

    def test_detach(self):
        user = User(id=1)
        diff(user, reset=True)
        detach(user)
        assert dump(user) == {}
        assert diff(user) == {"id": 1}

    def test_identity_hash(self):
        user = User(first_name="John")
        assert identity_hash(user) is None

        user.id = 1
        assert identity_hash(user) == hash_values([1])
        assert identity_hash(user, persisted=True) is None

        diff(user, reset=True)
        user.id = 2
        assert identity_hash(user) == hash_values([2])
        assert identity_hash(user, persisted=True) == hash_values([1])

    def test_null_identity_has_no_hash(self):
        assert identity_hash(User(id=None)) is None

    def test_composite_identity(self):
        membership = Membership(user_id=1, group_id=2)
        assert identity_hash(membership) == hash_values([1, 2])
        assert identity_hash(Membership(user_id=1)) is None


class TestRecord:
    """Tests for untyped records."""

    def test_access(self):
        record = Record({"total": 3}, name="users")

        assert record.total == 3
        assert record["name"] == "users"
        assert "total" in record
        assert len(record) == 2
        assert record.keys() == ["total", "name"]
        assert record.to_dict() == {"total": 3, "name": "users"}

    def test_unknown_attribute(self):
        record = Record({"total": 3})
        with pytest.raises(AttributeError):
            record.missing

    def test_setting_existing_and_unknown_keys(self):
        record = Record({"total": 3})
        record.total = 4
        assert record.total == 4

        with pytest.raises(UnknownField):
            record.other = 1

    def test_records_have_no_identity(self):
        assert identity_hash(Record({"id": 1})) is None

    def test_record_diff(self):
        record = Record()
        initialize(record, row(id={"type": "integer", "value": "5"}), from_storage=True)
        assert record.id == 5
        assert diff(record) == {}

        record.id = 6
        assert diff(record) == {"id": 6}


class TestCodecs:
    """Tests for the built-in codecs and the registry."""

    def setup_method(self):
        self.codecs = CodecRegistry.default()

    def test_builtins_are_registered(self):
        assert set(self.codecs) == {"date", "time", "timestamp", "array", "object"}

    def test_date(self):
        codec = self.codecs.get("date")
        assert codec.decode("2014-10-24") == date(2014, 10, 24)
        assert codec.decode(None) is None
        assert codec.encode(date(2014, 10, 24)) == "2014-10-24"

    def test_time_and_timestamp(self):
        assert self.codecs.get("time").encode(time(9, 30, 15)) == "09:30:15"
        assert self.codecs.get("timestamp").decode("2024-01-02 03:04:05") == datetime(2024, 1, 2, 3, 4, 5)
        assert self.codecs.get("timestamp").encode(datetime(2024, 1, 2, 3, 4, 5)) == "2024-01-02 03:04:05"

    def test_json_containers(self):
        """Test that empty containers are stored as NULL."""
        array = self.codecs.get("array")
        obj = self.codecs.get("object")

        assert array.decode('["a", "b"]') == ["a", "b"]
        assert array.decode(None) == []
        assert array.encode([]) is None
        assert obj.decode('{"a": 1}') == {"a": 1}
        assert obj.decode("") == {}
        assert obj.encode({"a": 1}) == '{"a": 1}'

    def test_register_and_resolve(self):
        upper = Codec(decode=str.lower, encode=str.upper)
        self.codecs.register("upper", upper)

        assert "upper" in self.codecs
        assert self.codecs.resolve("upper") is upper
        assert self.codecs.resolve(upper) is upper
        assert self.codecs.resolve(None) is None

    def test_unknown_codec(self):
        with pytest.raises(LookupError):
            self.codecs.get("money")

    def test_registries_are_independent(self):
        self.codecs.register("extra", Codec(str, str))
        assert "extra" not in CodecRegistry.default()

    def test_entity_diff_with_array_codec(self):
        membership = Membership(user_id=1, group_id=2, tags=[])
        assert diff(membership) == {"user_id": 1, "group_id": 2, "tags": None}
