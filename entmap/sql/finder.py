"""
Finder: the query builder for SELECT and DELETE statements.

A Finder is created by ``SqlQuery.find(entity_class, alias)`` and composed
by chained calls. Free-form fragments may reference fields as
``alias.field``; those tokens are rewritten to ``alias.column`` before the
statement reaches the driver.

Invariants:
    - Predicate text and parameters are appended together, in call order
    - GROUP BY and ORDER BY are set at most once each
    - The SELECT column list and the row mapping come from one SelectPlan
    - Offset and limit are rendered only when positive

How to change safely:
    - Keep the fragment scanner limited to ``alias.field`` tokens; any other
      SQL must pass through unchanged
    - Never reorder the parameter list after a predicate was appended

Example:
    >>> orders = (
    ...     query.find(Order, "o")
    ...     .join("o.customer", "c")
    ...     .where("c.name = ?", "Acme")
    ...     .where_in("o.status", [Status.OPEN, Status.HOLD])
    ...     .order_by("o.createdAt desc")
    ...     .fetch(limit=20)
    ... )
"""

from __future__ import annotations

import dataclasses
import logging
import typing
from typing import TYPE_CHECKING, Any, Callable, Generic, Iterable, Optional, TypeVar

from ..errors import ConfigurationError, InvalidQueryError
from ..metadata.types import ColumnType, EntityData, FieldData, to_python_value
from ..utils import underscore_to_camel_case
from .plan import ReferencePlan, SelectPlan

if TYPE_CHECKING:
    from .query import SqlQuery

logger = logging.getLogger(__name__)

E = TypeVar("E")


def _is_identifier_char(ch: str) -> bool:
    return ch.isalnum() or ch == "_"


class Finder(Generic[E]):
    """Composes one SELECT or DELETE statement with alias-scoped entities.

    Attributes:
        alias: The root alias
    """

    def __init__(self, query: SqlQuery, entity_class: type, alias: str) -> None:
        entity_data = query.schema.get_entity_data(entity_class)
        if entity_data.is_super_class:
            raise ConfigurationError(
                f"A mapped superclass can not be queried: {entity_data.class_name}",
                entity=entity_data.class_name,
            )
        self._query = query
        self.alias = alias
        self._alias_entity_data: dict[str, EntityData] = {alias: entity_data}
        self._join_alias: dict[str, str] = {}
        self._join_clause = ""
        self._predicates: list[str] = []
        self._group_by: Optional[str] = None
        self._order_by: Optional[str] = None
        self._parameters: list[Any] = []

    @property
    def parameters(self) -> tuple[Any, ...]:
        """Bound parameters, in placeholder order."""
        return tuple(self._parameters)

    def select(self, alias: str) -> AliasFinder[Any]:
        """Create a finder that fetches the entity bound to a joined alias."""
        return AliasFinder(self, alias)

    # -- joins -------------------------------------------------------------

    def join(self, alias_field: str, as_alias: str, inner: bool = False) -> Finder[E]:
        """Join the entity referenced by the ``alias.field`` foreign key.

        A LEFT OUTER JOIN is used for optional fields unless ``inner`` is set.

        Raises:
            InvalidQueryError: If the alias is already used or the expression is malformed
            ConfigurationError: If the field is unknown or not a foreign key
        """
        if as_alias in self._alias_entity_data:
            raise InvalidQueryError(f"this alias is already used: {as_alias}", alias=as_alias)
        from_alias, field_name = self._split_alias_field(alias_field)
        field_data = self._to_field_data(field_name, from_alias)
        if field_data.column_type is not ColumnType.FOREIGN_KEY:
            raise ConfigurationError(
                f"join field is not a foreign key: {alias_field}",
                entity=self._alias_entity_data[from_alias].class_name,
                field=field_name,
            )
        fk_entity_data = self._query.schema.get_entity_data(field_data.field_type)
        self._alias_entity_data[as_alias] = fk_entity_data
        self._join_clause += self._join_text(from_alias, fk_entity_data, field_data, as_alias, inner)
        self._join_alias[f"{from_alias}.{field_data.name}"] = as_alias
        return self

    def join_on(self, entity_class: type, alias: str, outer: bool, on_condition: str) -> Finder[E]:
        """Join the table of an entity class on a free condition.

        Raises:
            InvalidQueryError: If the alias is already used
        """
        if alias in self._alias_entity_data:
            raise InvalidQueryError(f"this alias is already used: {alias}", alias=alias)
        self._alias_entity_data[alias] = self._query.schema.get_entity_data(entity_class)
        join_type = " LEFT OUTER JOIN " if outer else " INNER JOIN "
        self._join_clause += (
            f"{join_type}{self._query.get_table_name(entity_class)} AS {alias}"
            f" ON {self._to_sql_string(on_condition)}"
        )
        return self

    def _join_text(
        self,
        from_alias: str,
        fk_entity_data: EntityData,
        field_data: FieldData,
        as_alias: str,
        inner: bool,
    ) -> str:
        join_type = " INNER JOIN " if inner or not field_data.optional else " LEFT OUTER JOIN "
        table_name = self._query.schema.to_schema_table_name(fk_entity_data)
        return (
            f"{join_type}{table_name} AS {as_alias} ON {as_alias}.{fk_entity_data.id_field.column_name}"
            f" = {from_alias}.{field_data.column_name}"
        )

    # -- predicates --------------------------------------------------------

    def where(self, fragment: Optional[str], *parameters: Any) -> Finder[E]:
        """Append a predicate (AND-ed with earlier ones) and its parameters.

        Example:
            >>> finder.where("x.amount > ? and x.status = ?", 100, Status.OPEN)
        """
        self._parameters.extend(parameters)
        if fragment:
            self._predicates.append(self._to_sql_string(fragment))
        return self

    def where_in(self, expression: str, values: Iterable[Any]) -> Finder[E]:
        """Append ``expression IN (?, ...)`` with one parameter per value.

        Raises:
            InvalidQueryError: If values is empty
        """
        value_list = list(values)
        if not value_list:
            raise InvalidQueryError("IN parameters can not be empty!", expression=expression)
        placeholders = ",".join("?" * len(value_list))
        self._predicates.append(f"{self._in_prefix(expression)} ({placeholders})")
        self._parameters.extend(value_list)
        return self

    def where_in_query(self, expression: str, finder: Finder[Any], select_clause: str) -> Finder[E]:
        """Append ``expression IN (SELECT ...)`` built by another finder.

        The inner finder's parameters are appended to this finder's.
        """
        inner_query = finder.build_inner_query(select_clause)
        self._predicates.append(f"{self._in_prefix(expression)} ({inner_query})")
        self._parameters.extend(finder._parameters)
        return self

    def _in_prefix(self, expression: str) -> str:
        prefix = self._to_sql_string(expression).rstrip()
        words = prefix.split()
        if not words or words[-1].lower() != "in":
            prefix += " IN"
        return prefix

    def like(self, text: str, *columns: str, search_by_word: bool = False) -> Finder[E]:
        """Append a case-insensitive OR-of-LIKE predicate over columns.

        With ``search_by_word`` the text is split on whitespace and every word
        is matched against every column.

        Raises:
            InvalidQueryError: If no column is given or a column is not ``alias.field``
        """
        if not columns:
            raise InvalidQueryError("at least one search column is required for like")
        words = text.lower().split() if search_by_word else [text.lower()]
        conditions = []
        for column in columns:
            sql_column = self._to_sql_column(column)
            for word in words:
                conditions.append(f"lower({sql_column}) LIKE ?")
                self._parameters.append(f"%{word}%")
        self._predicates.append(f"({' OR '.join(conditions)})")
        return self

    def add_parameter(self, index: int, value: Any) -> None:
        """Insert a parameter at a position, e.g. for placeholders in a select clause."""
        self._parameters.insert(index, value)

    def group_by(self, clause: str) -> Finder[E]:
        """Set the GROUP BY clause; can be set only once."""
        if self._group_by is not None:
            raise InvalidQueryError("Group By clause is already specified in this finder!")
        self._group_by = f" GROUP BY {self._to_sql_string(clause)}"
        return self

    def order_by(self, clause: str) -> Finder[E]:
        """Set the ORDER BY clause; can be set only once."""
        if self._order_by is not None:
            raise InvalidQueryError("Order By clause is already specified in this finder!")
        self._order_by = f" ORDER BY {self._to_sql_string(clause)}"
        return self

    # -- fragment rewriting ------------------------------------------------

    def _split_alias_field(self, alias_field: str) -> tuple[str, str]:
        parts = alias_field.split(".")
        if len(parts) != 2 or not parts[0].strip() or not parts[1].strip():
            raise InvalidQueryError(f"invalid usage of field: {alias_field}", expression=alias_field)
        return parts[0].strip(), parts[1].strip()

    def _to_field_data(self, field_name: str, alias: str) -> FieldData:
        entity_data = self._alias_entity_data.get(alias)
        if entity_data is None:
            raise ConfigurationError(f"the alias is not joined in this query: {alias}", alias=alias)
        return entity_data.get_field(field_name)

    def _to_sql_column(self, alias_field: str) -> str:
        alias, field_name = self._split_alias_field(alias_field)
        return f"{alias}.{self._to_field_data(field_name, alias).column_name}"

    def _to_sql_string(self, text: str) -> str:
        """Rewrite every ``alias.field`` token of a fragment to ``alias.column``.

        Scans left to right in two states: reading an alias (before a dot)
        and reading a field name (after it). Tokens starting with a digit
        and single-quoted literals pass through unchanged.
        """
        out: list[str] = []
        token = ""
        alias: Optional[str] = None
        i = 0
        length = len(text)
        while i < length:
            ch = text[i]
            if alias is None:
                if _is_identifier_char(ch):
                    token += ch
                elif ch == "." and token and not token[0].isdigit():
                    alias, token = token, ""
                elif ch == "'":
                    end = text.find("'", i + 1)
                    end = length - 1 if end == -1 else end
                    out.append(token)
                    out.append(text[i:end + 1])
                    token = ""
                    i = end
                else:
                    out.append(token)
                    out.append(ch)
                    token = ""
            elif _is_identifier_char(ch):
                token += ch
            else:
                out.append(self._resolve_token(alias, token))
                out.append(ch)
                alias, token = None, ""
            i += 1
        if alias is not None:
            out.append(self._resolve_token(alias, token))
        else:
            out.append(token)
        return "".join(out)

    def _resolve_token(self, alias: str, field_name: str) -> str:
        if not field_name:
            return f"{alias}."
        return f"{alias}.{self._to_field_data(field_name, alias).column_name}"

    # -- statement assembly ------------------------------------------------

    def _from_clause(self) -> str:
        entity_data = self._alias_entity_data[self.alias]
        return f" FROM {self._query.schema.to_schema_table_name(entity_data)} AS {self.alias}"

    def _where_clause(self) -> str:
        return f" WHERE {' AND '.join(self._predicates)}" if self._predicates else ""

    def build_inner_query(self, select_clause: str) -> str:
        """Render ``SELECT <clause> FROM ... [GROUP BY]`` for use as a sub-query."""
        return "".join(
            [
                f"SELECT {self._to_sql_string(select_clause)}",
                self._from_clause(),
                self._join_clause,
                self._where_clause(),
                self._group_by or "",
            ]
        )

    def build_select_plan(self, alias: str, field_group: Optional[str] = None) -> SelectPlan:
        """Build the column list and row mapping for the entity bound to an alias.

        Foreign keys that were not joined explicitly get a synthesized LEFT
        OUTER JOIN (``t0``, ``t1``, ...) and are expanded with the target's
        join-fetch group, or the group named by a ``field@group`` suffix.
        """
        entity_data = self._alias_entity_data.get(alias)
        if entity_data is None:
            raise ConfigurationError(f"the alias is not joined in this query: {alias}", alias=alias)
        schema = self._query.schema
        columns: list[str] = []
        entries: list[Any] = []
        joins: list[str] = []
        synthesized: set[str] = set()
        for name in entity_data.get_field_group_fields(field_group):
            field_name, _, join_group = name.partition("@")
            field_data = entity_data.get_field(field_name)
            if field_data.column_type is not ColumnType.FOREIGN_KEY:
                entries.append(field_data)
                columns.append(f"{alias}.{field_data.column_name}")
                continue
            fk_entity_data = schema.get_entity_data(field_data.field_type)
            as_alias = self._join_alias.get(f"{alias}.{field_data.name}")
            if as_alias is None:
                as_alias = self._next_join_alias(synthesized)
                joins.append(self._join_text(alias, fk_entity_data, field_data, as_alias, False))
            fk_fields = []
            nested = {}
            for fk_name in fk_entity_data.get_join_fetch_fields(join_group or None):
                fk_field_data = fk_entity_data.get_field(fk_name.partition("@")[0])
                if fk_field_data.column_type is ColumnType.FOREIGN_KEY:
                    nested[fk_field_data.name] = schema.get_entity_data(fk_field_data.field_type)
                fk_fields.append(fk_field_data)
                columns.append(f"{as_alias}.{fk_field_data.column_name}")
            entries.append(ReferencePlan(field_data, fk_entity_data, as_alias, tuple(fk_fields), nested))
        return SelectPlan(entity_data, alias, tuple(columns), tuple(entries), "".join(joins))

    def _next_join_alias(self, synthesized: set[str]) -> str:
        counter = 0
        while f"t{counter}" in self._alias_entity_data or f"t{counter}" in synthesized:
            counter += 1
        synthesized.add(f"t{counter}")
        return f"t{counter}"

    def _fetch(
        self,
        alias: str,
        field_group: Optional[str],
        offset: int,
        limit: int,
        for_update: bool,
    ) -> list[Any]:
        plan = self.build_select_plan(alias, field_group)
        dialect = self._query.dialect
        sql = "".join(
            [
                f"SELECT {', '.join(plan.columns)}",
                self._from_clause(),
                self._join_clause,
                plan.joins,
                self._where_clause(),
                self._group_by or "",
                self._order_by or "",
                dialect.offset_limit(offset, limit),
                dialect.for_update(alias) if for_update else "",
            ]
        )
        rows, _ = self._query.run_query(sql, self._parameters)
        return [plan.map_row(row) for row in rows]

    # -- fetch -------------------------------------------------------------

    def fetch(self, field_group: Optional[str] = None, offset: int = -1, limit: int = -1) -> list[E]:
        """Fetch entities, selecting the fields of a group (default group if None)."""
        return self._fetch(self.alias, field_group, offset, limit, False)

    def fetch_first(self, field_group: Optional[str] = None) -> Optional[E]:
        """Fetch the first entity, None if no row matches."""
        results = self._fetch(self.alias, field_group, -1, 1, False)
        return results[0] if results else None

    def fetch_for_update(
        self, field_group: Optional[str] = None, offset: int = -1, limit: int = -1
    ) -> list[E]:
        """Fetch entities and lock their rows until the transaction ends."""
        return self._fetch(self.alias, field_group, offset, limit, True)

    def fetch_first_for_update(self, field_group: Optional[str] = None) -> Optional[E]:
        results = self._fetch(self.alias, field_group, -1, 1, True)
        return results[0] if results else None

    def fetch_results(
        self,
        select_clause: str,
        offset: int = -1,
        limit: int = -1,
        result_type: Optional[type] = None,
    ) -> list[Any]:
        """Fetch rows of a free select clause (aggregates, projections).

        A single selected column yields scalar values; several columns yield
        tuples, or instances of ``result_type`` when it is a dataclass whose
        fields are matched by column label.
        """
        return self._fetch_results(select_clause, offset, limit, result_type, None)

    def fetch_single_result(
        self,
        select_clause: str,
        result_type: Optional[type] = None,
        query_modifier: Optional[Callable[[str], str]] = None,
    ) -> Any:
        """Fetch the first row of a free select clause, None if there is none.

        Example:
            >>> finder.where("x.amount > ?", 100).fetch_single_result("count(*)")
            3
        """
        limit = -1 if query_modifier is not None else 1
        results = self._fetch_results(select_clause, -1, limit, result_type, query_modifier)
        return results[0] if results else None

    def _fetch_results(
        self,
        select_clause: str,
        offset: int,
        limit: int,
        result_type: Optional[type],
        query_modifier: Optional[Callable[[str], str]],
    ) -> list[Any]:
        sql = "".join(
            [
                f"SELECT {self._to_sql_string(select_clause)}",
                self._from_clause(),
                self._join_clause,
                self._where_clause(),
                self._group_by or "",
                self._order_by or "",
                self._query.dialect.offset_limit(offset, limit),
            ]
        )
        if query_modifier is not None:
            sql = query_modifier(sql)
        rows, labels = self._query.run_query(sql, self._parameters)
        if len(labels) == 1:
            if result_type is None:
                return [row[0] for row in rows]
            return [to_python_value(result_type, row[0]) for row in rows]
        if result_type is None or result_type is tuple:
            return rows
        return _map_result_objects(result_type, labels, rows)

    def delete(self) -> int:
        """Delete the matching rows.

        Returns:
            The number of rows deleted
        """
        sql = f"DELETE{self._from_clause()}{self._join_clause}{self._where_clause()}"
        return self._query.run_update(sql, self._parameters)

    def __str__(self) -> str:
        return "".join(
            [
                self._from_clause(),
                self._join_clause,
                self._where_clause(),
                self._group_by or "",
                self._order_by or "",
            ]
        )


def _map_result_objects(result_type: type, labels: list[str], rows: list[tuple]) -> list[Any]:
    if not dataclasses.is_dataclass(result_type):
        raise ConfigurationError(
            f"result type for a multi-column query must be a dataclass: {result_type.__qualname__}"
        )
    type_hints = typing.get_type_hints(result_type)
    attribute_names = []
    for label in labels:
        name = label if label in type_hints else underscore_to_camel_case(label)
        if name not in type_hints:
            raise ConfigurationError(
                f"column '{label}' has no field in result type: {result_type.__qualname__}"
            )
        attribute_names.append(name)
    results = []
    for row in rows:
        values = {
            name: to_python_value(type_hints[name], value) for name, value in zip(attribute_names, row)
        }
        results.append(result_type(**values))
    return results


class AliasFinder(Generic[E]):
    """Fetches the entity bound to a joined alias of a Finder.

    Example:
        >>> customers = query.find(Order, "o").join("o.customer", "c").select("c").fetch()
    """

    def __init__(self, finder: Finder[Any], alias: str) -> None:
        self._finder = finder
        self.alias = alias

    def fetch(self, field_group: Optional[str] = None, offset: int = -1, limit: int = -1) -> list[E]:
        return self._finder._fetch(self.alias, field_group, offset, limit, False)

    def fetch_first(self, field_group: Optional[str] = None) -> Optional[E]:
        results = self._finder._fetch(self.alias, field_group, -1, 1, False)
        return results[0] if results else None

    def fetch_for_update(
        self, field_group: Optional[str] = None, offset: int = -1, limit: int = -1
    ) -> list[E]:
        return self._finder._fetch(self.alias, field_group, offset, limit, True)

    def fetch_first_for_update(self, field_group: Optional[str] = None) -> Optional[E]:
        results = self._finder._fetch(self.alias, field_group, -1, 1, True)
        return results[0] if results else None
