"""
Core metadata types for entmap.

This module defines the resolved, immutable description of mapped entities:
- ColumnType: How a field is persisted (plain, primary key, version, ...)
- FieldData: One persisted attribute of an entity
- EntityData: One mapped class (entity or mapped superclass)

Both FieldData and EntityData are created by the schema builder
(see ``entmap.metadata.schema``) and are read-only once the build finishes.

Invariants:
    - A FieldData column name is fixed at registration and never recomputed
    - Fields are ordered: primary key first, version last, the rest by column name
    - Every concrete entity has exactly one primary key field
    - Every field group contains the primary key (and version, if present)

How to change safely:
    - Never mutate EntityData/FieldData after Schema.build() returns;
      they are shared without locking by every thread
    - Keep the field ordering rule stable; generated INSERT column order
      and SELECT column order depend on it
"""

from __future__ import annotations

import datetime
import logging
import types
import typing
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, Iterator, Mapping, Optional

from ..errors import ConfigurationError
from ..mapping import Index, UniqueConstraint

logger = logging.getLogger(__name__)


class ColumnType(Enum):
    """How a field maps to its column."""

    PLAIN = "plain"
    PRIMARY_KEY = "primary_key"
    VERSION = "version"
    FOREIGN_KEY = "foreign_key"
    LARGE_OBJECT = "large_object"


def unwrap_optional(tp: Any) -> tuple[Any, bool]:
    """Strip ``Optional[...]`` / ``X | None`` from a declared type.

    Returns:
        Tuple of (inner type, whether None was part of the union)
    """
    origin = typing.get_origin(tp)
    if origin is typing.Union or origin is types.UnionType:
        args = [arg for arg in typing.get_args(tp) if arg is not type(None)]
        if len(args) == 1:
            return args[0], True
    return tp, False


def to_python_value(field_type: Any, value: Any) -> Any:
    """Convert a value read from the driver to the declared field type."""
    if value is None or typing.get_origin(field_type) is not None:
        return value
    if not isinstance(field_type, type) or isinstance(value, field_type):
        return value
    if issubclass(field_type, Enum):
        return field_type[value] if isinstance(value, str) else field_type(value)
    if field_type is bool:
        return bool(value)
    if field_type is Decimal:
        return Decimal(str(value))
    if field_type is datetime.datetime and isinstance(value, str):
        return datetime.datetime.fromisoformat(value)
    if field_type is datetime.date and isinstance(value, str):
        return datetime.date.fromisoformat(value)
    return value


@dataclass(frozen=True, eq=False)
class FieldData:
    """Metadata of one persisted attribute.

    Attributes:
        name: Attribute name on the entity class
        column_name: Resolved SQL column name
        field_type: Declared type with Optional stripped
        column_type: How the field is persisted
        optional: Whether the column is nullable
        fetch: Whether the field is part of the default projection
        length: Length for string columns
        scale: Scale for decimal columns
        indexed: Whether a single-column index is declared
        getter: Reads the attribute from an entity
        setter: Writes the attribute on an entity
    """

    name: str
    column_name: str
    field_type: Any
    column_type: ColumnType
    optional: bool = True
    fetch: bool = True
    length: int = 255
    scale: int = 0
    indexed: bool = False
    getter: Callable[[Any], Any] = field(default=None, repr=False)  # type: ignore[assignment]
    setter: Callable[[Any, Any], None] = field(default=None, repr=False)  # type: ignore[assignment]

    def get_value(self, entity: Any) -> Any:
        """Read this field's value from an entity instance."""
        return self.getter(entity)

    def set_value(self, entity: Any, value: Any) -> None:
        """Write a (driver) value onto an entity instance, converting it to the field type."""
        if self.column_type is not ColumnType.FOREIGN_KEY:
            value = to_python_value(self.field_type, value)
        self.setter(entity, value)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation for fingerprinting."""
        result: dict[str, Any] = {
            "name": self.name,
            "column": self.column_name,
            "type": getattr(self.field_type, "__qualname__", str(self.field_type)),
            "column_type": self.column_type.value,
        }
        if not self.optional:
            result["optional"] = False
        if not self.fetch:
            result["fetch"] = False
        if self.indexed:
            result["indexed"] = True
        return result


def make_accessors(name: str) -> tuple[Callable[[Any], Any], Callable[[Any, Any], None]]:
    """Build the getter/setter pair for an attribute, captured once."""

    def getter(entity: Any) -> Any:
        return getattr(entity, name)

    def setter(entity: Any, value: Any) -> None:
        setattr(entity, name, value)

    return getter, setter


class EntityData:
    """Metadata of one mapped class.

    A table name of None marks a mapped superclass, which contributes
    inherited fields but cannot be queried directly.

    Attributes:
        entity_class: The mapped class
        table_name: SQL table name, None for a mapped superclass
        parent_entity: Metadata of the mapped parent class, if any
        id_field: The primary key field (None only for a superclass without one)
        version_field: The version field, if declared
        join_field_group: Name of the group flagged join_fetch, if any
        indexes: Declared table-level indexes
        unique_constraints: Declared unique constraints
    """

    def __init__(
        self,
        entity_class: type,
        table_name: Optional[str],
        indexes: tuple[Index, ...] = (),
        unique_constraints: tuple[UniqueConstraint, ...] = (),
    ) -> None:
        self.entity_class = entity_class
        self.table_name = table_name
        self.indexes = indexes
        self.unique_constraints = unique_constraints
        self.parent_entity: Optional[EntityData] = None
        self.id_field: Optional[FieldData] = None
        self.version_field: Optional[FieldData] = None
        self.join_field_group: Optional[str] = None
        self._declared_fields: dict[str, FieldData] = {}
        self._fields: Mapping[str, FieldData] = types.MappingProxyType({})
        self._field_groups: Mapping[Optional[str], tuple[str, ...]] = types.MappingProxyType({})

    def __repr__(self) -> str:
        return f"EntityData({self.class_name!r}, table={self.table_name!r})"

    @property
    def class_name(self) -> str:
        """Fully-qualified name of the entity class."""
        return f"{self.entity_class.__module__}.{self.entity_class.__qualname__}"

    @property
    def is_super_class(self) -> bool:
        """True if this is a mapped superclass (no table)."""
        return self.table_name is None

    @property
    def declared_fields(self) -> tuple[FieldData, ...]:
        """Fields declared directly on this class, in declaration order."""
        return tuple(self._declared_fields.values())

    @property
    def fields(self) -> tuple[FieldData, ...]:
        """All fields including inherited ones, in column order."""
        return tuple(self._fields.values())

    def __iter__(self) -> Iterator[FieldData]:
        return iter(self._fields.values())

    def has_field(self, field_name: str) -> bool:
        return field_name in self._fields

    def get_field(self, field_name: str) -> FieldData:
        """Get the metadata of a field by attribute name.

        Raises:
            ConfigurationError: If the field is not mapped on this entity
        """
        field_data = self._fields.get(field_name)
        if field_data is None:
            raise ConfigurationError(
                f"Field '{field_name}' is not mapped in: {self.class_name}",
                entity=self.class_name,
                field=field_name,
            )
        return field_data

    def get_field_group_fields(self, field_group: Optional[str]) -> tuple[str, ...]:
        """Get the field names of a group; None selects the default group.

        Names may carry an ``@group`` suffix for foreign keys.

        Raises:
            ConfigurationError: If the group is not declared on this entity
        """
        fields = self._field_groups.get(field_group)
        if fields is None:
            raise ConfigurationError(
                f"Field Group: {field_group} not found on {self.table_name}",
                entity=self.class_name,
                field_group=field_group,
            )
        return fields

    def get_join_fetch_fields(self, join_group: Optional[str] = None) -> tuple[str, ...]:
        """Fields fetched when this entity is reached through a foreign key.

        The primary key is always first; the given group, else the group
        flagged join_fetch, else nothing is added to it.
        """
        names: dict[str, None] = {self.id_field.name: None}
        group = join_group if join_group is not None else self.join_field_group
        if group is not None:
            names.update(dict.fromkeys(self.get_field_group_fields(group)))
        return tuple(names)

    @property
    def field_group_names(self) -> tuple[Optional[str], ...]:
        return tuple(self._field_groups)

    def create_instance(self) -> Any:
        """Create an empty instance of the entity class."""
        try:
            return self.entity_class()
        except TypeError as e:
            raise ConfigurationError(
                f"Entity class must be constructible without arguments: {self.class_name}",
                entity=self.class_name,
            ) from e

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation for fingerprinting."""
        return {
            "class": self.class_name,
            "table": self.table_name,
            "parent": self.parent_entity.class_name if self.parent_entity else None,
            "fields": [f.to_dict() for f in self._fields.values()],
            "field_groups": {
                name if name is not None else "": list(names)
                for name, names in self._field_groups.items()
            },
            "join_field_group": self.join_field_group,
        }

    # -- build-time mutators, used only by SchemaBuilder -------------------

    def _add_field(self, field_data: FieldData) -> None:
        self._declared_fields[field_data.name] = field_data

    def _resolve_fields(self) -> None:
        field_list = list(self._declared_fields.values())
        if self.parent_entity is not None:
            field_list.extend(
                f for f in self.parent_entity.fields if f.name not in self._declared_fields
            )

        def sort_key(f: FieldData) -> tuple[int, str]:
            if f.column_type is ColumnType.PRIMARY_KEY:
                return 0, ""
            if f.column_type is ColumnType.VERSION:
                return 2, ""
            return 1, f.column_name

        field_map: dict[str, FieldData] = {}
        for field_data in sorted(field_list, key=sort_key):
            if field_data.column_type is ColumnType.PRIMARY_KEY:
                if self.id_field is not None:
                    raise ConfigurationError(
                        f"multiple id columns can not be present in an entity: {self.class_name}",
                        entity=self.class_name,
                    )
                self.id_field = field_data
            elif field_data.column_type is ColumnType.VERSION:
                if self.version_field is not None:
                    raise ConfigurationError(
                        f"multiple version columns can not be present in an entity: {self.class_name}",
                        entity=self.class_name,
                    )
                self.version_field = field_data
            field_map[field_data.name] = field_data
        if self.id_field is None and not self.is_super_class:
            raise ConfigurationError(
                f"The table must have an id field for table: {self.table_name}",
                entity=self.class_name,
            )
        self._fields = types.MappingProxyType(field_map)

    def _seed_group(self) -> dict[str, None]:
        names: dict[str, None] = {}
        if self.id_field is not None:
            names[self.id_field.name] = None
        if self.version_field is not None:
            names[self.version_field.name] = None
        return names

    def _resolve_field_groups(self, field_groups: tuple[Any, ...]) -> None:
        groups: dict[Optional[str], tuple[str, ...]] = {}
        default_names = self._seed_group()
        default_names.update((f.name, None) for f in self._fields.values() if f.fetch)
        groups[None] = tuple(default_names)

        declared: dict[str, Any] = {}
        for group in field_groups:
            if group.join_fetch:
                if self.join_field_group is not None:
                    raise ConfigurationError(
                        f"Field Group with join_fetch can only be used once!: {self.table_name}",
                        entity=self.class_name,
                    )
                self.join_field_group = group.name
            if group.name in declared:
                raise ConfigurationError(
                    f"Field Group name should be unique for: {self.table_name}",
                    entity=self.class_name,
                    field_group=group.name,
                )
            declared[group.name] = group

        for group in declared.values():
            names = self._seed_group()
            for include in group.includes:
                include_names = groups.get(include)
                if include_names is None:
                    raise ConfigurationError(
                        f"Included Field Group: {include} not found on {self.table_name}",
                        entity=self.class_name,
                        field_group=group.name,
                    )
                names.update(dict.fromkeys(include_names))
            for name in group.fields:
                if name.split("@", 1)[0] not in self._fields:
                    raise ConfigurationError(
                        f"Field Group: {group.name} refers to unknown field '{name}' on {self.table_name}",
                        entity=self.class_name,
                        field_group=group.name,
                    )
                names[name] = None
            groups[group.name] = tuple(names)
        self._field_groups = types.MappingProxyType(groups)
