"""
SQL module for entmap.

This module generates and executes SQL for mapped entities:
- Dialects adapting placeholders, paging and DDL types
- Finder for SELECT/DELETE with joins and field groups
- EntitySql for INSERT/UPDATE/DELETE per entity
- SqlQuery as the execution context of one transaction
- Repository for thread-scoped transactions
- MappingTool for additive schema migration

Invariants:
    - All statements are parameterized; values are never inlined
    - One connection per thread per Repository
    - Migration never drops or renames database objects
"""

from .dialect import Dialect, PostgresDialect, SqliteDialect, create_dialect
from .entity_sql import EntitySql, StatementKind
from .finder import AliasFinder, Finder
from .mapping_tool import (
    CatalogSnapshot,
    ChangeKind,
    DdlStatement,
    MappingTool,
    read_postgres_catalog,
    read_sqlite_catalog,
)
from .plan import ReferencePlan, SelectPlan
from .query import SqlQuery
from .repository import Repository

__all__ = [
    # Dialects
    "Dialect",
    "SqliteDialect",
    "PostgresDialect",
    "create_dialect",
    # Statements
    "EntitySql",
    "StatementKind",
    "Finder",
    "AliasFinder",
    "SelectPlan",
    "ReferencePlan",
    # Execution
    "SqlQuery",
    "Repository",
    # Migration
    "MappingTool",
    "CatalogSnapshot",
    "ChangeKind",
    "DdlStatement",
    "read_sqlite_catalog",
    "read_postgres_catalog",
]
