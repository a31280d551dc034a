"""
Declarative mapping API for entmap entities.

Entities are plain dataclasses. Table-level metadata is attached with the
``@table`` / ``@mapped_superclass`` decorators, column-level metadata with
the field helpers below, which wrap ``dataclasses.field``:

- column(): plain column with name/optional/length/scale/fetch overrides
- id_column(): the identity (primary key) column, generated by the database
- version_column(): the optimistic-lock version column
- lob(): a large-object column
- transient(): an attribute that is never persisted

Invariants:
    - Decorator metadata is stored on the class itself and never inherited;
      each class in a hierarchy declares its own table, groups and indexes
    - Field groups are kept in declaration order; ``includes`` may only
      refer to groups declared earlier on the same class

Example:
    >>> @table(field_groups=[FieldGroup("brief", fields=("name",), join_fetch=True)])
    ... @dataclass
    ... class Customer:
    ...     id: int | None = id_column()
    ...     name: str | None = column(length=80, optional=False)
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from typing import Any, Callable, Optional, Protocol, TypeVar

METADATA_KEY = "entmap"
TABLE_ATTR = "__entmap_table__"
SUPERCLASS_ATTR = "__entmap_superclass__"

T = TypeVar("T", bound=type)


@dataclass(frozen=True)
class ColumnInfo:
    """Column-level metadata attached to a dataclass field.

    Attributes:
        name: Explicit column name (derived from the field name if None)
        optional: Whether the column is nullable
        length: Column length for string columns
        scale: Scale for decimal columns
        fetch: Whether the field belongs to the default projection
        indexed: Whether a single-column index is created for it
        primary_key: Identity column marker
        version: Optimistic-lock version column marker
        lob: Large-object column marker
        transient: Never persisted
    """

    name: Optional[str] = None
    optional: bool = True
    length: int = 255
    scale: int = 0
    fetch: bool = True
    indexed: bool = False
    primary_key: bool = False
    version: bool = False
    lob: bool = False
    transient: bool = False


DEFAULT_COLUMN = ColumnInfo()


@dataclass(frozen=True)
class FieldGroup:
    """A named subset of an entity's fields.

    Attributes:
        name: Group name, unique per entity
        fields: Field names; ``"customer@brief"`` selects the foreign key
            ``customer`` and expands it with the target's ``brief`` group
        includes: Names of groups declared earlier whose fields are added
        join_fetch: Use this group when the entity is reached via a foreign key
    """

    name: str = "default"
    fields: tuple[str, ...] = ()
    includes: tuple[str, ...] = ()
    join_fetch: bool = False


@dataclass(frozen=True)
class Index:
    """A (non-unique) index over one or more fields.

    The name is generated from the table and field names when empty.
    """

    columns: tuple[str, ...]
    name: str = ""


@dataclass(frozen=True)
class UniqueConstraint:
    """A unique constraint over one or more fields."""

    columns: tuple[str, ...]
    name: str = ""


@dataclass(frozen=True)
class TableInfo:
    """Table-level metadata set by ``@table`` / ``@mapped_superclass``."""

    name: Optional[str] = None
    field_groups: tuple[FieldGroup, ...] = ()
    indexes: tuple[Index, ...] = ()
    unique_constraints: tuple[UniqueConstraint, ...] = ()


class EntityListener(Protocol):
    """Notified before an entity is inserted or updated."""

    def before_insert(self, entity: Any) -> None: ...

    def before_update(self, entity: Any) -> None: ...


def table(
    name: Optional[str] = None,
    *,
    field_groups: tuple[FieldGroup, ...] | list[FieldGroup] = (),
    indexes: tuple[Index, ...] | list[Index] = (),
    unique_constraints: tuple[UniqueConstraint, ...] | list[UniqueConstraint] = (),
) -> Callable[[T], T]:
    """Mark a dataclass as an entity mapped to a table.

    Args:
        name: Table name (derived from the class name if omitted)
        field_groups: Field groups, in declaration order
        indexes: Table-level indexes
        unique_constraints: Table-level unique constraints
    """
    info = TableInfo(
        name=name,
        field_groups=tuple(field_groups),
        indexes=tuple(indexes),
        unique_constraints=tuple(unique_constraints),
    )

    def decorate(cls: T) -> T:
        setattr(cls, TABLE_ATTR, info)
        return cls

    return decorate


def mapped_superclass(
    cls: Optional[T] = None,
    *,
    field_groups: tuple[FieldGroup, ...] | list[FieldGroup] = (),
) -> Any:
    """Mark a dataclass as a mapped superclass: its fields are inherited, it has no table.

    Usable bare (``@mapped_superclass``) or with arguments.
    """
    info = TableInfo(field_groups=tuple(field_groups))

    def decorate(klass: T) -> T:
        setattr(klass, TABLE_ATTR, info)
        setattr(klass, SUPERCLASS_ATTR, True)
        return klass

    if cls is not None:
        return decorate(cls)
    return decorate


def table_info(cls: type) -> Optional[TableInfo]:
    """Table metadata declared directly on ``cls`` (not inherited)."""
    return cls.__dict__.get(TABLE_ATTR)


def is_mapped_superclass(cls: type) -> bool:
    return bool(cls.__dict__.get(SUPERCLASS_ATTR, False))


def column_info(dc_field: dataclasses.Field) -> ColumnInfo:
    """Column metadata of a dataclass field, defaults if none was declared."""
    return dc_field.metadata.get(METADATA_KEY, DEFAULT_COLUMN)


def _field(info: ColumnInfo, default: Any, default_factory: Any) -> Any:
    if default_factory is not dataclasses.MISSING:
        return dataclasses.field(default_factory=default_factory, metadata={METADATA_KEY: info})
    return dataclasses.field(default=default, metadata={METADATA_KEY: info})


def column(
    name: Optional[str] = None,
    *,
    optional: bool = True,
    length: int = 255,
    scale: int = 0,
    fetch: bool = True,
    index: bool = False,
    default: Any = None,
    default_factory: Any = dataclasses.MISSING,
) -> Any:
    """Declare a plain column with overrides."""
    info = ColumnInfo(
        name=name,
        optional=optional,
        length=length,
        scale=scale,
        fetch=fetch,
        indexed=index,
    )
    return _field(info, default, default_factory)


def id_column(name: Optional[str] = None) -> Any:
    """Declare the identity column. Its value is generated by the database."""
    return _field(ColumnInfo(name=name, optional=False, primary_key=True), None, dataclasses.MISSING)


def version_column(name: Optional[str] = None) -> Any:
    """Declare the optimistic-lock version column. Always non-optional."""
    return _field(ColumnInfo(name=name, optional=False, version=True), None, dataclasses.MISSING)


def lob(
    name: Optional[str] = None,
    *,
    optional: bool = True,
    fetch: bool = True,
    default: Any = None,
) -> Any:
    """Declare a large-object column (text or binary)."""
    info = ColumnInfo(name=name, optional=optional, fetch=fetch, lob=True)
    return _field(info, default, dataclasses.MISSING)


def transient(default: Any = None, default_factory: Any = dataclasses.MISSING) -> Any:
    """Declare an attribute that is never persisted."""
    return _field(ColumnInfo(transient=True), default, default_factory)
