"""
Entity statement builder: INSERT, UPDATE and DELETE per entity class.

Statements are built from EntityData and executed through a SqlQuery.
Generated columns (identity and version) are read back with RETURNING and
written onto the entity through its FieldData setters.

Invariants:
    - INSERT binds every field except the identity; version is bound as 1
    - UPDATE bumps the version server-side and checks the old version
    - Foreign keys bind the identity of the referenced entity
    - The entity listener is notified once per row, before parameters are read
    - Zero rows affected is returned as 0, never raised

How to change safely:
    - Keep the column order of INSERT equal to the EntityData field order
    - Batches run sequentially; generated keys are matched by identity order
      within a chunk, or by conflict columns for upserts
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import TYPE_CHECKING, Any, Optional, Sequence

from ..metadata.types import ColumnType, EntityData, FieldData, to_python_value

if TYPE_CHECKING:
    from .query import SqlQuery

logger = logging.getLogger(__name__)


class StatementKind(Enum):
    """Kind of an entity statement."""

    INSERT = "insert"
    UPDATE = "update"


def _chunks(items: Sequence[Any], size: int):
    for start in range(0, len(items), size):
        yield items[start:start + size]


class EntitySql:
    """A parameterized INSERT or UPDATE statement for one entity class.

    Created by the ``insert()`` / ``update()`` factories; the same instance
    executes for one entity or for a batch.

    Attributes:
        entity_data: Metadata of the entity class
        sql: Statement text with ``?`` placeholders, without RETURNING
        parameter_fields: Fields bound to the placeholders, in order
        generated_fields: Columns read back after execution
        kind: INSERT or UPDATE
        conflict_fields: ON CONFLICT fields of an upsert, returned to match rows
    """

    def __init__(
        self,
        query: SqlQuery,
        entity_data: EntityData,
        sql: str,
        parameter_fields: tuple[FieldData, ...],
        kind: StatementKind,
        generated_fields: tuple[FieldData, ...] = (),
        values_clause: Optional[tuple[str, str, str]] = None,
        conflict_fields: tuple[FieldData, ...] = (),
    ) -> None:
        self._query = query
        self.entity_data = entity_data
        self.sql = sql
        self.parameter_fields = parameter_fields
        self.kind = kind
        self.generated_fields = generated_fields
        # (head, row placeholders, tail) of an INSERT, for multi-row batches
        self._values_clause = values_clause
        self.conflict_fields = conflict_fields

    def __repr__(self) -> str:
        return f"EntitySql({self.kind.value}, {self.sql!r})"

    # -- factories ---------------------------------------------------------

    @classmethod
    def insert(
        cls,
        query: SqlQuery,
        entity_class: type,
        on_conflict: Optional[str] = None,
        update_clause: Optional[str] = None,
    ) -> EntitySql:
        """Build ``INSERT INTO t AS x (...) VALUES (...)`` for an entity class.

        Args:
            query: The executing context
            entity_class: The mapped class
            on_conflict: Comma-separated field names for ``ON CONFLICT (...)``
            update_clause: SQL for ``DO UPDATE SET``; ``DO NOTHING`` when None
        """
        schema = query.schema
        entity_data = schema.get_entity_data(entity_class)
        parameter_fields = tuple(
            f for f in entity_data.fields if f.column_type is not ColumnType.PRIMARY_KEY
        )
        columns = ", ".join(f.column_name for f in parameter_fields)
        head = f"INSERT INTO {schema.to_schema_table_name(entity_data)} AS x ({columns}) VALUES "
        row = f"({','.join('?' * len(parameter_fields))})"
        tail = ""
        conflict_fields: tuple[FieldData, ...] = ()
        if on_conflict is not None:
            conflict_fields = tuple(entity_data.get_field(name.strip()) for name in on_conflict.split(","))
            conflict_columns = ", ".join(f.column_name for f in conflict_fields)
            tail = f" ON CONFLICT ({conflict_columns})"
            tail += " DO NOTHING" if update_clause is None else f" DO UPDATE SET {update_clause}"
        generated = [entity_data.id_field]
        if entity_data.version_field is not None:
            generated.append(entity_data.version_field)
        return cls(
            query,
            entity_data,
            head + row + tail,
            parameter_fields,
            StatementKind.INSERT,
            tuple(generated),
            (head, row, tail),
            conflict_fields,
        )

    @classmethod
    def update(
        cls, query: SqlQuery, entity_class: type, field_group: Optional[str] = None
    ) -> Optional[EntitySql]:
        """Build ``UPDATE t SET v = v + 1, c = ? WHERE id = ? [AND v = ?]``.

        Returns:
            The statement, or None (with a warning) when the group holds no
            field besides identity and version
        """
        schema = query.schema
        entity_data = schema.get_entity_data(entity_class)
        version_field = entity_data.version_field
        assignments = []
        if version_field is not None:
            assignments.append(f"{version_field.column_name} = {version_field.column_name} + 1")
        parameter_fields = []
        for name in entity_data.get_field_group_fields(field_group):
            field_data = entity_data.get_field(name.partition("@")[0])
            if field_data.column_type in (ColumnType.PRIMARY_KEY, ColumnType.VERSION):
                continue
            parameter_fields.append(field_data)
            assignments.append(f"{field_data.column_name} = ?")
        if not parameter_fields:
            logger.warning(
                f"Fields are not included to update: {entity_data.class_name} (group={field_group})"
            )
            return None
        id_field = entity_data.id_field
        parameter_fields.append(id_field)
        sql = (
            f"UPDATE {schema.to_schema_table_name(entity_data)} SET {', '.join(assignments)}"
            f" WHERE {id_field.column_name} = ?"
        )
        generated: tuple[FieldData, ...] = ()
        if version_field is not None:
            parameter_fields.append(version_field)
            sql += f" AND {version_field.column_name} = ?"
            generated = (version_field,)
        return cls(query, entity_data, sql, tuple(parameter_fields), StatementKind.UPDATE, generated)

    @staticmethod
    def delete_sql(query: SqlQuery, entity_data: EntityData) -> str:
        """Build ``DELETE FROM t WHERE id = ? [AND v = ?]``."""
        sql = (
            f"DELETE FROM {query.schema.to_schema_table_name(entity_data)}"
            f" WHERE {entity_data.id_field.column_name} = ?"
        )
        if entity_data.version_field is not None:
            sql += f" AND {entity_data.version_field.column_name} = ?"
        return sql

    @staticmethod
    def _key_parameters(entity_data: EntityData, entity: Any) -> tuple[Any, ...]:
        if entity_data.version_field is None:
            return (entity_data.id_field.get_value(entity),)
        return entity_data.id_field.get_value(entity), entity_data.version_field.get_value(entity)

    @classmethod
    def delete(cls, query: SqlQuery, entity: Any) -> int:
        """Delete one entity by identity (and version).

        Returns:
            Rows deleted; 0 on a version mismatch
        """
        entity_data = query.schema.get_entity_data(type(entity))
        return query.run_update(cls.delete_sql(query, entity_data), cls._key_parameters(entity_data, entity))

    @classmethod
    def batch_delete(cls, query: SqlQuery, entities: Sequence[Any]) -> int:
        """Delete entities in batches.

        Returns:
            Total rows deleted
        """
        if not entities:
            return 0
        entity_data = query.schema.get_entity_data(type(entities[0]))
        sql = cls.delete_sql(query, entity_data)
        total = 0
        for chunk in _chunks(entities, query.batch_size):
            total += query.run_batch(sql, [cls._key_parameters(entity_data, e) for e in chunk])
        return total

    @staticmethod
    def lock_for_update(query: SqlQuery, entity_class: type, primary_key: Any) -> None:
        """Lock one row with ``SELECT 1 ... FOR UPDATE``."""
        entity_data = query.schema.get_entity_data(entity_class)
        sql = (
            f"SELECT 1 FROM {query.schema.to_schema_table_name(entity_data)}"
            f" WHERE {entity_data.id_field.column_name} = ?{query.dialect.for_update()}"
        )
        query.run_query(sql, (primary_key,))

    # -- execution ---------------------------------------------------------

    def _returning(self, fields: Sequence[FieldData] = ()) -> str:
        return " RETURNING " + ", ".join(f.column_name for f in (*self.generated_fields, *fields))

    def get_parameters(self, entity: Any) -> list[Any]:
        """Notify the listener, then read the parameter values of one entity."""
        self._notify_listener(entity)
        schema = self._query.schema
        parameters = []
        for field_data in self.parameter_fields:
            if self.kind is StatementKind.INSERT and field_data.column_type is ColumnType.VERSION:
                parameters.append(1)
            elif field_data.column_type is ColumnType.FOREIGN_KEY:
                value = field_data.get_value(entity)
                if value is not None:
                    value = schema.get_entity_data(field_data.field_type).id_field.get_value(value)
                parameters.append(value)
            else:
                parameters.append(field_data.get_value(entity))
        return parameters

    def _notify_listener(self, entity: Any) -> None:
        listener = self._query.schema.entity_listener
        if listener is None:
            return
        if self.kind is StatementKind.INSERT:
            listener.before_insert(entity)
        else:
            listener.before_update(entity)

    def _set_generated_values(self, entity: Any, row: Sequence[Any]) -> None:
        for field_data, value in zip(self.generated_fields, row):
            field_data.set_value(entity, value)

    def execute(self, entity: Any) -> int:
        """Execute for one entity and write generated values back.

        Returns:
            Rows affected
        """
        parameters = self.get_parameters(entity)
        if not self.generated_fields:
            return self._query.run_update(self.sql, parameters)
        rows, _ = self._query.run_query(self.sql + self._returning(), parameters)
        if rows:
            self._set_generated_values(entity, rows[0])
        return len(rows)

    def execute_in_batch(self, entities: Sequence[Any]) -> int:
        """Execute for many entities, in chunks of the configured batch size.

        An INSERT chunk is one multi-row statement. Its generated keys are
        written back in identity order, which is the VALUES order, or matched
        on the conflict columns for upserts.

        Returns:
            Total rows affected
        """
        if self.kind is StatementKind.INSERT:
            return self._insert_in_batch(entities)
        total = 0
        for chunk in _chunks(entities, self._query.batch_size):
            if self.generated_fields:
                total += sum(self.execute(entity) for entity in chunk)
            else:
                total += self._query.run_batch(self.sql, [self.get_parameters(e) for e in chunk])
        return total

    def _insert_in_batch(self, entities: Sequence[Any]) -> int:
        head, row, tail = self._values_clause
        total = 0
        for chunk in _chunks(entities, self._query.batch_size):
            parameters: list[Any] = []
            for entity in chunk:
                parameters.extend(self.get_parameters(entity))
            sql = head + ",".join([row] * len(chunk)) + tail + self._returning(self.conflict_fields)
            rows, _ = self._query.run_query(sql, parameters)
            if self.conflict_fields:
                self._match_on_conflict_key(chunk, rows)
            elif len(rows) == len(chunk):
                # RETURNING order is unspecified; identities follow VALUES order
                for entity, generated in zip(chunk, sorted(rows, key=lambda r: r[0])):
                    self._set_generated_values(entity, generated)
            else:
                logger.warning(
                    f"Generated keys not written back: {len(rows)} rows returned "
                    f"for {len(chunk)} entities of {self.entity_data.class_name}"
                )
            total += len(rows)
        return total

    def _conflict_key(self, entity: Any) -> tuple[Any, ...]:
        key = []
        for field_data in self.conflict_fields:
            value = field_data.get_value(entity)
            if value is not None and field_data.column_type is ColumnType.FOREIGN_KEY:
                value = self._query.schema.get_entity_data(field_data.field_type).id_field.get_value(value)
            key.append(value)
        return tuple(key)

    def _match_on_conflict_key(self, chunk: Sequence[Any], rows: Sequence[Sequence[Any]]) -> None:
        offset = len(self.generated_fields)
        returned = {}
        for generated in rows:
            key = tuple(
                value if f.column_type is ColumnType.FOREIGN_KEY else to_python_value(f.field_type, value)
                for f, value in zip(self.conflict_fields, generated[offset:])
            )
            returned[key] = generated[:offset]
        unmatched = 0
        for entity in chunk:
            generated = returned.get(self._conflict_key(entity))
            if generated is None:
                unmatched += 1
            else:
                self._set_generated_values(entity, generated)
        if unmatched:
            logger.warning(
                f"Generated keys not written back for {unmatched} of {len(chunk)} "
                f"entities of {self.entity_data.class_name}"
            )
