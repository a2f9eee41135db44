"""tursomap - An async data mapper for libSQL/Turso databases."""

from __future__ import annotations

from tursomap.association import Association
from tursomap.base import Entity, Record
from tursomap.codecs import Codec, CodecRegistry
from tursomap.config import Settings, load_settings
from tursomap.database import Database, create_database
from tursomap.errors import (
    InsufficientIdentity,
    MapperError,
    MissingVariable,
    MultipleResultsFound,
    NoResultFound,
    RemoteStatementError,
    SchemaMismatch,
    TemplateError,
    TransportError,
    UninitializedField,
    UnknownField,
    UnknownWireType,
    UnsupportedValueType,
    UnusedVariable,
)
from tursomap.fields import Mapped, mapped_column
from tursomap.identity import IdentityMap
from tursomap.logging import configure_logging
from tursomap.query import (
    DeleteQuery,
    Expression,
    InsertQuery,
    Query,
    SelectQuery,
    UpdateQuery,
    escape,
)
from tursomap.repository import Repository
from tursomap.result import Result, StatementError
from tursomap.transport import Envelope, HttpTransport, LocalTransport, Transport

__version__ = "0.1.0"

__all__ = [
    # Core
    "Database",
    "create_database",
    "Repository",
    "Result",
    "Association",
    "IdentityMap",
    # Entity definition
    "Entity",
    "Record",
    "Mapped",
    "mapped_column",
    "Codec",
    "CodecRegistry",
    # Query building
    "Query",
    "Expression",
    "SelectQuery",
    "InsertQuery",
    "UpdateQuery",
    "DeleteQuery",
    "escape",
    # Transport
    "Transport",
    "HttpTransport",
    "LocalTransport",
    "Envelope",
    "StatementError",
    # Configuration
    "Settings",
    "load_settings",
    "configure_logging",
    # Errors
    "MapperError",
    "TransportError",
    "RemoteStatementError",
    "SchemaMismatch",
    "UnsupportedValueType",
    "UnknownWireType",
    "TemplateError",
    "UnusedVariable",
    "MissingVariable",
    "InsufficientIdentity",
    "UnknownField",
    "UninitializedField",
    "MultipleResultsFound",
    "NoResultFound",
]
