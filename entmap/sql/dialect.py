"""
SQL dialects supported by entmap.

Statements are built once with ``?`` placeholders. A Dialect adapts them to
the DB-API driver in use:
- Placeholder conversion (qmark for sqlite3, format for psycopg)
- OFFSET/LIMIT and row-lock rendering
- Parameter value adaptation (enums bind their name)
- Column type definitions used by the mapping tool

Invariants:
    - Placeholders inside single-quoted literals are never converted
    - Enum parameters are bound by name on every dialect
    - A dialect never changes the order of parameters

How to change safely:
    - Add a new subclass and register it in create_dialect()
    - Keep generated DDL additive; dialects never emit DROP statements
"""

from __future__ import annotations

import datetime
import logging
import uuid
from abc import ABC, abstractmethod
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from ..mapping import DEFAULT_COLUMN
from ..metadata.types import ColumnType, FieldData

logger = logging.getLogger(__name__)


class Dialect(ABC):
    """Adapts generated SQL and parameters to one database.

    Attributes:
        name: Dialect name, as used in configuration
        supports_schemas: Whether CREATE SCHEMA is available
        supports_row_locks: Whether FOR UPDATE is rendered
        supports_alter_constraints: Whether ALTER TABLE ADD CONSTRAINT is available
    """

    name: str = ""
    supports_schemas: bool = True
    supports_row_locks: bool = True
    supports_alter_constraints: bool = True

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"

    # -- statements --------------------------------------------------------

    def convert_placeholders(self, sql: str) -> str:
        """Convert ``?`` placeholders to the driver's paramstyle."""
        return sql

    def offset_limit(self, offset: int, limit: int) -> str:
        """Render the paging suffix; non-positive values are omitted."""
        clause = ""
        if offset > 0:
            clause += f" OFFSET {offset}"
        if limit > 0:
            clause += f" LIMIT {limit}"
        return clause

    def for_update(self, alias: Optional[str] = None) -> str:
        """Render the row-lock suffix, optionally restricted to one alias."""
        if not self.supports_row_locks:
            return ""
        return " FOR UPDATE" if alias is None else f" FOR UPDATE OF {alias}"

    # -- parameters --------------------------------------------------------

    def adapt(self, value: Any) -> Any:
        """Adapt one parameter value for binding."""
        if isinstance(value, Enum):
            return value.name
        return value

    def adapt_parameters(self, parameters: Any) -> tuple[Any, ...]:
        return tuple(self.adapt(value) for value in parameters)

    # -- DDL ---------------------------------------------------------------

    @abstractmethod
    def primary_key_definition(self, field_data: FieldData) -> str:
        """Type and constraint of a generated identity column."""
        ...

    @abstractmethod
    def sql_type(self, field_data: FieldData) -> str:
        """SQL type of a non-identity column."""
        ...

    def column_definition(
        self, field_data: FieldData, references: Optional[str] = None, nullable: bool = False
    ) -> str:
        """Full column definition for CREATE TABLE / ADD COLUMN.

        Args:
            field_data: The mapped field
            references: ``table (column)`` target, rendered inline when given
            nullable: Omit NOT NULL even for a non-optional field
        """
        if field_data.column_type is ColumnType.PRIMARY_KEY:
            return f"{field_data.column_name} {self.primary_key_definition(field_data)}"
        definition = f"{field_data.column_name} {self.sql_type(field_data)}"
        if field_data.column_type is ColumnType.VERSION:
            definition += " NOT NULL DEFAULT 1"
        elif not field_data.optional and not nullable:
            definition += " NOT NULL"
        if references is not None:
            definition += f" REFERENCES {references} DEFERRABLE INITIALLY DEFERRED"
        return definition

    def add_columns(self, qualified_table: str, definitions: list[str]) -> list[str]:
        """ALTER TABLE statements adding columns; one statement by default."""
        additions = ", ".join(f"ADD COLUMN {definition}" for definition in definitions)
        return [f"ALTER TABLE {qualified_table} {additions}"]

    def _numeric(self, field_data: FieldData) -> str:
        precision = 19 if field_data.length == DEFAULT_COLUMN.length else field_data.length
        return f"numeric({precision}, {field_data.scale})"


class SqliteDialect(Dialect):
    """The sqlite3 module (qmark paramstyle).

    Schemas are attached databases in sqlite, so CREATE SCHEMA is skipped,
    row locks are not rendered and foreign keys are declared inline.
    """

    name = "sqlite"
    supports_schemas = False
    supports_row_locks = False
    supports_alter_constraints = False

    def offset_limit(self, offset: int, limit: int) -> str:
        # sqlite requires LIMIT before OFFSET; -1 means no limit
        if offset > 0:
            return f" LIMIT {limit if limit > 0 else -1} OFFSET {offset}"
        return f" LIMIT {limit}" if limit > 0 else ""

    def adapt(self, value: Any) -> Any:
        if isinstance(value, Enum):
            return value.name
        if isinstance(value, (datetime.date, datetime.time)):
            return value.isoformat()
        if isinstance(value, Decimal):
            return str(value)
        if isinstance(value, uuid.UUID):
            return str(value)
        return value

    def add_columns(self, qualified_table: str, definitions: list[str]) -> list[str]:
        # sqlite adds one column per ALTER TABLE
        return [f"ALTER TABLE {qualified_table} ADD COLUMN {definition}" for definition in definitions]

    def primary_key_definition(self, field_data: FieldData) -> str:
        return "INTEGER PRIMARY KEY"

    def sql_type(self, field_data: FieldData) -> str:
        field_type = field_data.field_type
        if field_data.column_type is ColumnType.FOREIGN_KEY:
            return "INTEGER"
        if field_data.column_type is ColumnType.LARGE_OBJECT:
            return "BLOB" if field_type in (bytes, bytearray) else "TEXT"
        if not isinstance(field_type, type):
            return "TEXT"
        if issubclass(field_type, bool) or issubclass(field_type, int):
            return "INTEGER"
        if issubclass(field_type, float):
            return "REAL"
        if issubclass(field_type, Decimal):
            return self._numeric(field_data)
        if issubclass(field_type, (bytes, bytearray)):
            return "BLOB"
        if issubclass(field_type, (str, Enum)):
            return f"VARCHAR({field_data.length})"
        if issubclass(field_type, datetime.datetime):
            return "TIMESTAMP"
        if issubclass(field_type, datetime.date):
            return "DATE"
        return "TEXT"


class PostgresDialect(Dialect):
    """psycopg (format paramstyle) against PostgreSQL."""

    name = "postgresql"

    def convert_placeholders(self, sql: str) -> str:
        # psycopg scans % in the whole text, literals included
        chars = []
        in_literal = False
        for ch in sql:
            if ch == "%":
                chars.append("%%")
            elif ch == "'":
                in_literal = not in_literal
                chars.append(ch)
            elif ch == "?" and not in_literal:
                chars.append("%s")
            else:
                chars.append(ch)
        return "".join(chars)

    def primary_key_definition(self, field_data: FieldData) -> str:
        return "bigserial PRIMARY KEY"

    def sql_type(self, field_data: FieldData) -> str:
        field_type = field_data.field_type
        if field_data.column_type is ColumnType.FOREIGN_KEY:
            return "bigint"
        if field_data.column_type is ColumnType.VERSION:
            return "integer"
        if field_data.column_type is ColumnType.LARGE_OBJECT:
            return "bytea" if field_type in (bytes, bytearray) else "text"
        if not isinstance(field_type, type):
            return "text"
        if issubclass(field_type, bool):
            return "boolean"
        if issubclass(field_type, int):
            return "bigint"
        if issubclass(field_type, float):
            return "double precision"
        if issubclass(field_type, Decimal):
            return self._numeric(field_data)
        if issubclass(field_type, (bytes, bytearray)):
            return "bytea"
        if issubclass(field_type, (str, Enum)):
            return f"varchar({field_data.length})"
        if issubclass(field_type, datetime.datetime):
            return "timestamp"
        if issubclass(field_type, datetime.date):
            return "date"
        if issubclass(field_type, datetime.time):
            return "time"
        if issubclass(field_type, uuid.UUID):
            return "uuid"
        return "text"


def create_dialect(name: str) -> Dialect:
    """Factory function to create a dialect by name.

    Args:
        name: ``sqlite``, ``postgresql`` or ``postgres``

    Raises:
        ValueError: If the dialect is not supported
    """
    normalized = name.strip().lower()
    if normalized == "sqlite":
        return SqliteDialect()
    elif normalized in ("postgresql", "postgres"):
        return PostgresDialect()
    else:
        raise ValueError(f"Unsupported SQL dialect: {name}")
