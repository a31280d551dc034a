"""
Mapping tool: additive schema migration from entity metadata.

Compares the declared entities with a snapshot of the live catalog and
emits the DDL needed to reconcile them:
- CREATE SCHEMA for a missing schema
- CREATE TABLE for a missing table
- ALTER TABLE ADD COLUMN for missing columns
- CREATE INDEX / unique constraints for missing indexes
- Foreign key constraints named ``<table>_<column>_fkey``

Invariants:
    - Never drops, renames or alters existing objects
    - Planning is pure: plan() only reads the snapshot
    - Generated index names are deterministic across processes

How to change safely:
    - New DDL kinds must be additive and get a new ChangeKind
    - Keep index and foreign key naming stable; existing databases are
      matched by name

Example:
    >>> snapshot = read_sqlite_catalog(connection)
    >>> for statement in MappingTool.plan(schema, snapshot, SqliteDialect()):
    ...     print(statement)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Optional

from ..errors import QueryExecutionError
from ..metadata.schema import Schema
from ..metadata.types import ColumnType, EntityData
from ..utils import hash_code_to_string, stable_string_hash
from .dialect import Dialect

if TYPE_CHECKING:
    from .query import SqlQuery

logger = logging.getLogger(__name__)


class ChangeKind(Enum):
    """Kinds of additive DDL."""
    SCHEMA_CREATED = auto()
    TABLE_CREATED = auto()
    COLUMN_ADDED = auto()
    INDEX_CREATED = auto()
    UNIQUE_CONSTRAINT_ADDED = auto()
    FOREIGN_KEY_ADDED = auto()


@dataclass
class DdlStatement:
    """One planned DDL statement.

    Attributes:
        kind: The kind of change
        table: Affected table (None for a schema)
        statement: SQL text
    """
    kind: ChangeKind
    table: Optional[str]
    statement: str

    def __str__(self) -> str:
        return f"[{self.kind.name}] {self.table or '-'}: {self.statement}"

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind.name, "table": self.table, "statement": self.statement}


@dataclass(frozen=True)
class IndexInfo:
    """A declared index or unique constraint, resolved to column names."""
    name: str
    table: str
    columns: tuple[str, ...]
    unique: bool = False

    def __post_init__(self) -> None:
        if not self.columns:
            raise ValueError(f"at least one column should be specified for index: {self.name}")


@dataclass(frozen=True)
class ForeignKeyInfo:
    """A foreign key from ``table.column`` to ``target_table.target_column``."""
    name: str
    table: str
    column: str
    target_table: str
    target_column: str


@dataclass(frozen=True)
class CatalogSnapshot:
    """Names of existing database objects in one schema.

    Attributes:
        schemas: Existing schema names
        tables: Table name -> existing column names
        indexes: Existing index (and unique constraint) names
        foreign_keys: Existing foreign key constraint names
    """
    schemas: frozenset[str] = frozenset()
    tables: Mapping[str, frozenset[str]] = field(default_factory=dict)
    indexes: frozenset[str] = frozenset()
    foreign_keys: frozenset[str] = frozenset()

    def has_table(self, table: str) -> bool:
        return table in self.tables

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation, sorted for stable output."""
        return {
            "schemas": sorted(self.schemas),
            "tables": {name: sorted(columns) for name, columns in sorted(self.tables.items())},
            "indexes": sorted(self.indexes),
            "foreign_keys": sorted(self.foreign_keys),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> CatalogSnapshot:
        """Create from dictionary representation."""
        return cls(
            schemas=frozenset(data.get("schemas", ())),
            tables={name: frozenset(columns) for name, columns in data.get("tables", {}).items()},
            indexes=frozenset(data.get("indexes", ())),
            foreign_keys=frozenset(data.get("foreign_keys", ())),
        )


def read_sqlite_catalog(connection: Any) -> CatalogSnapshot:
    """Read table, column, index and foreign key names from a sqlite3 connection.

    sqlite has no named foreign keys; they are reported as ``<table>_<column>_fkey``.
    """
    tables: Dict[str, frozenset[str]] = {}
    foreign_keys = set()
    table_names = [
        row[0]
        for row in connection.execute(
            "SELECT name FROM sqlite_master WHERE type = 'table' AND name NOT LIKE 'sqlite_%'"
        ).fetchall()
    ]
    for table in table_names:
        columns = connection.execute(f'PRAGMA table_info("{table}")').fetchall()
        tables[table] = frozenset(row[1] for row in columns)
        for row in connection.execute(f'PRAGMA foreign_key_list("{table}")').fetchall():
            foreign_keys.add(f"{table}_{row[3]}_fkey")
    indexes = frozenset(
        row[0]
        for row in connection.execute("SELECT name FROM sqlite_master WHERE type = 'index'").fetchall()
    )
    return CatalogSnapshot(
        schemas=frozenset({"main"}),
        tables=tables,
        indexes=indexes,
        foreign_keys=frozenset(foreign_keys),
    )


def read_postgres_catalog(connection: Any, schema_name: Optional[str] = None) -> CatalogSnapshot:
    """Read the catalog of one PostgreSQL schema (``public`` if None)."""
    schema_name = schema_name or "public"
    with connection.cursor() as cursor:
        cursor.execute(
            "SELECT schema_name FROM information_schema.schemata WHERE schema_name = %s",
            (schema_name,),
        )
        schemas = frozenset(row[0] for row in cursor.fetchall())
        cursor.execute(
            "SELECT table_name, column_name FROM information_schema.columns WHERE table_schema = %s",
            (schema_name,),
        )
        columns: Dict[str, set] = {}
        for table, column in cursor.fetchall():
            columns.setdefault(table, set()).add(column)
        cursor.execute("SELECT indexname FROM pg_indexes WHERE schemaname = %s", (schema_name,))
        indexes = frozenset(row[0] for row in cursor.fetchall())
        cursor.execute(
            "SELECT constraint_name FROM information_schema.table_constraints"
            " WHERE table_schema = %s AND constraint_type = 'FOREIGN KEY'",
            (schema_name,),
        )
        foreign_keys = frozenset(row[0] for row in cursor.fetchall())
    return CatalogSnapshot(
        schemas=schemas,
        tables={table: frozenset(names) for table, names in columns.items()},
        indexes=indexes,
        foreign_keys=foreign_keys,
    )


def read_catalog(query: SqlQuery) -> CatalogSnapshot:
    """Read the catalog of the query's connection, by dialect."""
    if query.dialect.name == "sqlite":
        return read_sqlite_catalog(query.connection)
    return read_postgres_catalog(query.connection, query.schema.name)


def index_name(table: str, name: str, fields: tuple[str, ...], unique: bool) -> str:
    """Name of a declared index: ``<table>_<name>``, generated from the fields when blank."""
    name = name.strip()
    if not name:
        name = hash_code_to_string(stable_string_hash("".join(fields))) + ("_key" if unique else "_idx")
    return f"{table}_{name}"


class MappingTool:
    """Plans and applies additive DDL for a Schema."""

    @staticmethod
    def declared_indexes(entity_data: EntityData) -> List[IndexInfo]:
        """Unique constraints, table indexes and field indexes of an entity."""
        table = entity_data.table_name
        result: Dict[str, IndexInfo] = {}
        for constraint in entity_data.unique_constraints:
            name = index_name(table, constraint.name, constraint.columns, True)
            columns = tuple(entity_data.get_field(f).column_name for f in constraint.columns)
            result[name] = IndexInfo(name, table, columns, unique=True)
        for index in entity_data.indexes:
            name = index_name(table, index.name, index.columns, False)
            columns = tuple(entity_data.get_field(f).column_name for f in index.columns)
            result[name] = IndexInfo(name, table, columns)
        for field_data in entity_data.fields:
            if field_data.indexed:
                name = f"{table}_{field_data.column_name}_idx"
                result[name] = IndexInfo(name, table, (field_data.column_name,))
        return list(result.values())

    @staticmethod
    def plan(schema: Schema, snapshot: CatalogSnapshot, dialect: Dialect) -> List[DdlStatement]:
        """Compute the minimal additive DDL to reconcile the catalog with the schema.

        Args:
            schema: Declared entities
            snapshot: Existing database objects
            dialect: Target dialect

        Returns:
            Statements in execution order
        """
        statements: List[DdlStatement] = []
        if schema.name is not None and dialect.supports_schemas and schema.name not in snapshot.schemas:
            statements.append(
                DdlStatement(ChangeKind.SCHEMA_CREATED, None, f"CREATE SCHEMA IF NOT EXISTS {schema.name}")
            )
        inline_references = not dialect.supports_alter_constraints
        foreign_keys: List[ForeignKeyInfo] = []
        for entity_data in schema.entity_data():
            if entity_data.is_super_class:
                continue
            table = entity_data.table_name
            qualified = schema.to_schema_table_name(entity_data)
            references: Dict[str, str] = {}
            for field_data in entity_data.fields:
                if field_data.column_type is not ColumnType.FOREIGN_KEY:
                    continue
                target = schema.get_entity_data(field_data.field_type)
                fk = ForeignKeyInfo(
                    f"{table}_{field_data.column_name}_fkey",
                    table,
                    field_data.column_name,
                    target.table_name,
                    target.id_field.column_name,
                )
                foreign_keys.append(fk)
                references[field_data.name] = f"{schema.qualify(fk.target_table)} ({fk.target_column})"

            def definition(f, nullable=False):
                reference = references.get(f.name) if inline_references else None
                return dialect.column_definition(f, reference, nullable)

            existing_columns = snapshot.tables.get(table)
            if existing_columns is None:
                column_definitions = ", ".join(definition(f) for f in entity_data.fields)
                statements.append(
                    DdlStatement(ChangeKind.TABLE_CREATED, table, f"CREATE TABLE {qualified} ({column_definitions})")
                )
            else:
                missing = [f for f in entity_data.fields if f.column_name not in existing_columns]
                for f in missing:
                    if not f.optional and f.column_type not in (ColumnType.PRIMARY_KEY, ColumnType.VERSION):
                        logger.warning(
                            f"Adding {table}.{f.column_name} as nullable: existing rows have no value for it"
                        )
                if missing:
                    # existing rows would violate NOT NULL
                    added = [definition(f, nullable=True) for f in missing]
                    for statement in dialect.add_columns(qualified, added):
                        statements.append(DdlStatement(ChangeKind.COLUMN_ADDED, table, statement))
            for index in MappingTool.declared_indexes(entity_data):
                if index.name in snapshot.indexes:
                    continue
                statements.append(MappingTool._index_statement(qualified, index, dialect))
        if not inline_references:
            for fk in foreign_keys:
                if fk.name in snapshot.foreign_keys:
                    continue
                statements.append(
                    DdlStatement(
                        ChangeKind.FOREIGN_KEY_ADDED,
                        fk.table,
                        f"ALTER TABLE {schema.qualify(fk.table)} ADD CONSTRAINT {fk.name}"
                        f" FOREIGN KEY ({fk.column}) REFERENCES {schema.qualify(fk.target_table)}"
                        f" ({fk.target_column}) DEFERRABLE INITIALLY DEFERRED",
                    )
                )
        return statements

    @staticmethod
    def _index_statement(qualified_table: str, index: IndexInfo, dialect: Dialect) -> DdlStatement:
        columns = ", ".join(index.columns)
        if not index.unique:
            return DdlStatement(
                ChangeKind.INDEX_CREATED,
                index.table,
                f"CREATE INDEX {index.name} ON {qualified_table} ({columns})",
            )
        if dialect.supports_alter_constraints:
            statement = f"ALTER TABLE {qualified_table} ADD CONSTRAINT {index.name} UNIQUE ({columns})"
        else:
            statement = f"CREATE UNIQUE INDEX {index.name} ON {qualified_table} ({columns})"
        return DdlStatement(ChangeKind.UNIQUE_CONSTRAINT_ADDED, index.table, statement)

    @staticmethod
    def create(query: SqlQuery) -> List[DdlStatement]:
        """Read the live catalog, plan and execute the DDL.

        Returns:
            The executed statements

        Raises:
            QueryExecutionError: If reading the catalog or a statement fails
        """
        try:
            snapshot = read_catalog(query)
        except Exception as e:
            raise QueryExecutionError(f"failed to read the database catalog: {e}") from e
        statements = MappingTool.plan(query.schema, snapshot, query.dialect)
        for statement in statements:
            query.run_update(statement.statement)
            logger.info(f"Applied: {statement}")
        if not statements:
            logger.info("Database mapping is up to date")
        return statements
