"""
entmap - an object-relational mapping layer over DB-API connections.

Entity classes are dataclasses described with declarative metadata; entmap
resolves them into an immutable schema and generates parameterized SQL:
- Declaration API: @table, @mapped_superclass, column(), id_column(), ...
- Metadata: EntityData/FieldData resolved by SchemaBuilder into a Schema
- Finder: SELECT/DELETE with foreign key joins and field groups
- EntitySql: INSERT/UPDATE/DELETE with generated keys and optimistic locking
- Repository/SqlQuery: per-thread transactions
- MappingTool: additive schema migration

Architecture:
    entity classes ──▶ SchemaBuilder ──▶ Schema (immutable, shared)
                                            │
                        ┌───────────────────┼───────────────────┐
                        ▼                   ▼                   ▼
                     Finder             EntitySql          MappingTool
                        └─────────┬─────────┘                   │
                                  ▼                             ▼
                       SqlQuery (one connection) ◀── Repository (per thread)

Invariants:
    - The Schema is built once and never mutated
    - One connection per thread per Repository
    - Optimistic-lock conflicts surface as zero row counts, not errors

How to change safely:
    - Never change derived table/column/index names for existing entities
    - Migration is additive only; drop columns manually
"""

from ._version import __version__
from .errors import (
    ConfigurationError,
    ConnectionAcquisitionError,
    InvalidQueryError,
    PersistError,
    QueryExecutionError,
    TransactionError,
)
from .mapping import (
    EntityListener,
    FieldGroup,
    Index,
    UniqueConstraint,
    column,
    id_column,
    lob,
    mapped_superclass,
    table,
    transient,
    version_column,
)
from .metadata import ColumnType, EntityData, FieldData, Schema, SchemaBuilder, build_schema
from .sql import (
    Finder,
    MappingTool,
    PostgresDialect,
    Repository,
    SqliteDialect,
    SqlQuery,
    create_dialect,
)

__all__ = [
    "__version__",
    # Declarations
    "table",
    "mapped_superclass",
    "column",
    "id_column",
    "version_column",
    "lob",
    "transient",
    "FieldGroup",
    "Index",
    "UniqueConstraint",
    "EntityListener",
    # Metadata
    "ColumnType",
    "FieldData",
    "EntityData",
    "Schema",
    "SchemaBuilder",
    "build_schema",
    # SQL
    "Finder",
    "SqlQuery",
    "Repository",
    "MappingTool",
    "SqliteDialect",
    "PostgresDialect",
    "create_dialect",
    # Errors
    "PersistError",
    "ConfigurationError",
    "InvalidQueryError",
    "QueryExecutionError",
    "ConnectionAcquisitionError",
    "TransactionError",
]
