"""
SqlQuery: the execution context of one transaction.

A SqlQuery wraps one DB-API connection together with the Schema and the
Dialect. It is the sole owner of statement execution: entity statements
(EntitySql), finders (Finder) and free SQL all run through it.

Invariants:
    - One SqlQuery is used by one thread at a time
    - The nesting counter is only changed by the owning Repository
    - Driver errors are wrapped in QueryExecutionError with the SQL text
    - Statements are logged at DEBUG before execution

How to change safely:
    - Keep every execution path going through run_query/run_update/run_batch
      so placeholder conversion and parameter adaptation are never skipped
"""

from __future__ import annotations

import logging
from typing import Any, Iterable, Mapping, Optional, Sequence, TypeVar

from ..errors import QueryExecutionError, TransactionError
from ..metadata.schema import Schema
from ..metadata.types import to_python_value
from .dialect import Dialect
from .entity_sql import EntitySql
from .finder import Finder

logger = logging.getLogger(__name__)

E = TypeVar("E")

DEFAULT_BATCH_SIZE = 100


class SqlQuery:
    """Executes statements on one connection.

    Attributes:
        connection: The DB-API connection
        schema: The entity schema
        dialect: SQL dialect of the connection
        batch_size: Rows per batch statement
    """

    def __init__(
        self,
        connection: Any,
        schema: Schema,
        dialect: Dialect,
        batch_size: int = DEFAULT_BATCH_SIZE,
    ) -> None:
        self.connection = connection
        self.schema = schema
        self.dialect = dialect
        self.batch_size = batch_size
        self._counter = 0

    # -- transaction bookkeeping (used by Repository) ----------------------

    def increment_counter(self) -> None:
        self._counter += 1

    def decrement_counter(self) -> int:
        self._counter -= 1
        return self._counter

    def begin_transaction(self) -> None:
        """Turn autocommit off so that statements run in one transaction."""
        if hasattr(self.connection, "autocommit"):
            self.connection.autocommit = False

    def close(self, on_success: bool) -> None:
        """Commit (or roll back) and close the connection.

        Rollback failures are logged and never raised, so an exception that
        caused the rollback reaches the caller unchanged.

        Raises:
            TransactionError: If the commit failed; a rollback was attempted
        """
        try:
            if on_success:
                try:
                    self.connection.commit()
                except Exception as e:
                    self._rollback_quietly("after failed commit")
                    raise TransactionError("Couldn't commit transaction") from e
            else:
                self._rollback_quietly("on error")
        finally:
            try:
                self.connection.close()
            except Exception as close_error:
                logger.warning(f"Failed to close connection: {close_error}")

    def _rollback_quietly(self, reason: str) -> None:
        try:
            self.connection.rollback()
        except Exception as rollback_error:
            logger.warning(f"Rollback {reason} failed: {rollback_error}")

    # -- low-level execution -----------------------------------------------

    def _cursor(self, sql: str, parameters: Sequence[Any]) -> Any:
        logger.debug(sql, extra={"parameter_count": len(parameters)})
        cursor = self.connection.cursor()
        try:
            cursor.execute(self.dialect.convert_placeholders(sql), self.dialect.adapt_parameters(parameters))
        except Exception as e:
            cursor.close()
            raise QueryExecutionError(f"Couldn't execute query: {e}", sql=sql) from e
        return cursor

    def run_query(self, sql: str, parameters: Sequence[Any] = ()) -> tuple[list[tuple], list[str]]:
        """Execute a statement returning rows.

        Returns:
            Tuple of (rows as tuples, column labels)
        """
        cursor = self._cursor(sql, parameters)
        try:
            rows = [tuple(row) for row in cursor.fetchall()]
            labels = [column[0] for column in cursor.description or ()]
        except Exception as e:
            raise QueryExecutionError(f"Couldn't read query result: {e}", sql=sql) from e
        finally:
            cursor.close()
        return rows, labels

    def run_update(self, sql: str, parameters: Sequence[Any] = ()) -> int:
        """Execute a statement and return the affected row count."""
        cursor = self._cursor(sql, parameters)
        try:
            return max(cursor.rowcount, 0)
        finally:
            cursor.close()

    def run_batch(self, sql: str, parameter_rows: Iterable[Sequence[Any]]) -> int:
        """Execute one statement for many parameter rows (``executemany``)."""
        rows = [self.dialect.adapt_parameters(parameters) for parameters in parameter_rows]
        logger.debug(sql, extra={"batch_size": len(rows)})
        cursor = self.connection.cursor()
        try:
            cursor.executemany(self.dialect.convert_placeholders(sql), rows)
            return max(cursor.rowcount, 0)
        except Exception as e:
            raise QueryExecutionError(f"Couldn't execute batch: {e}", sql=sql) from e
        finally:
            cursor.close()

    # -- entity operations -------------------------------------------------

    def insert(self, entity: Any) -> int:
        """Insert an entity; its identity (and version) are set from the database."""
        if entity is None:
            raise TypeError("entity must not be None")
        return EntitySql.insert(self, type(entity)).execute(entity)

    def batch_insert(self, entities: Sequence[Any]) -> int:
        """Insert entities of one class in batches."""
        if not entities:
            return 0
        return EntitySql.insert(self, type(entities[0])).execute_in_batch(entities)

    def batch_upsert(
        self, entities: Sequence[Any], on_conflict: str, update_clause: Optional[str] = None
    ) -> int:
        """Insert entities with ``ON CONFLICT (on_conflict) DO NOTHING | DO UPDATE SET update_clause``.

        Example:
            >>> query.batch_upsert(items, "sku", "price = excluded.price")
        """
        if not entities:
            return 0
        entity_sql = EntitySql.insert(self, type(entities[0]), on_conflict, update_clause)
        return entity_sql.execute_in_batch(entities)

    def update(self, entity: Any, field_group: Optional[str] = None) -> int:
        """Update the fields of a group (default group if None).

        Returns:
            Rows updated; 0 on a version mismatch or when nothing is to update
        """
        if entity is None:
            raise TypeError("entity must not be None")
        entity_sql = EntitySql.update(self, type(entity), field_group)
        return entity_sql.execute(entity) if entity_sql is not None else 0

    def batch_update(self, entities: Sequence[Any], field_group: Optional[str] = None) -> int:
        if not entities:
            return 0
        entity_sql = EntitySql.update(self, type(entities[0]), field_group)
        return entity_sql.execute_in_batch(entities) if entity_sql is not None else 0

    def save(self, entity: E, is_new: bool, field_group: Optional[str] = None) -> E:
        """Insert a new entity or update an existing one."""
        if is_new:
            self.insert(entity)
        else:
            self.update(entity, field_group)
        return entity

    def delete(self, entity: Any) -> int:
        """Delete an entity by identity (and version)."""
        if entity is None:
            raise TypeError("entity must not be None")
        return EntitySql.delete(self, entity)

    def batch_delete(self, entities: Sequence[Any]) -> int:
        return EntitySql.batch_delete(self, entities)

    def lock_for_update(self, entity_class: type, primary_key: Any) -> None:
        EntitySql.lock_for_update(self, entity_class, primary_key)

    def select(self, entity_class: type[E], primary_key: Any, field_group: Optional[str] = None) -> Optional[E]:
        """Select one entity by identity, None if not found."""
        return self._select_by_id(entity_class, primary_key).fetch_first(field_group)

    def select_for_update(
        self, entity_class: type[E], primary_key: Any, field_group: Optional[str] = None
    ) -> Optional[E]:
        """Select one entity by identity and lock its row."""
        return self._select_by_id(entity_class, primary_key).fetch_first_for_update(field_group)

    def _select_by_id(self, entity_class: type, primary_key: Any) -> Finder[Any]:
        id_field = self.schema.get_entity_data(entity_class).id_field
        return self.find(entity_class).where(f"x.{id_field.name} = ?", primary_key)

    def find(self, entity_class: type[E], alias: str = "x") -> Finder[E]:
        """Create a finder for an entity class bound to an alias."""
        return Finder(self, entity_class, alias)

    # -- free SQL ----------------------------------------------------------

    def execute_query(
        self, sql: str, *parameters: Any, column_types: Optional[Mapping[int, Any]] = None
    ) -> list[Any]:
        """Execute free SQL; one selected column yields scalars, else tuples.

        Args:
            sql: Statement text with ``?`` placeholders
            *parameters: Values bound to the placeholders
            column_types: Column index to Python type; those columns are
                converted the way entity fields are read

        Example:
            >>> query.execute_query("SELECT status, sum(amount) FROM t GROUP BY status",
            ...                     column_types={0: OrderStatus, 1: Decimal})
        """
        rows, labels = self.run_query(sql, parameters)
        if column_types:
            rows = [
                tuple(
                    to_python_value(column_types[index], value) if index in column_types else value
                    for index, value in enumerate(row)
                )
                for row in rows
            ]
        if len(labels) == 1:
            return [row[0] for row in rows]
        return rows

    def execute_update(self, sql: str, *parameters: Any, entity_class: Optional[type] = None) -> int:
        """Execute free DML; with ``entity_class`` the text follows ``UPDATE <table>``.

        Example:
            >>> query.execute_update("SET status = ? WHERE amount < ?", "CLOSED", 10, entity_class=Order)
        """
        if entity_class is not None:
            sql = f"UPDATE {self.get_table_name(entity_class)} {sql}"
        return self.run_update(sql, parameters)

    def execute_union_query(
        self, prefix: str, finder_selects: Mapping[Finder[Any], str], suffix: str = ""
    ) -> list[Any]:
        """Execute ``prefix (SELECT ...) UNION ALL (SELECT ...) suffix`` built from finders."""
        parts = []
        parameters: list[Any] = []
        for finder, select_clause in finder_selects.items():
            parameters.extend(finder.parameters)
            parts.append(f" ({finder.build_inner_query(select_clause)}) ")
        return self.execute_query(prefix + "UNION ALL".join(parts) + suffix, *parameters)

    def get_table_name(self, entity_class: type) -> str:
        """Schema-qualified table name of an entity class."""
        return self.schema.to_schema_table_name(self.schema.get_entity_data(entity_class))

    def create_mapping(self) -> list[Any]:
        """Create or extend the database objects of the schema (additive only)."""
        from .mapping_tool import MappingTool

        return MappingTool.create(self)
