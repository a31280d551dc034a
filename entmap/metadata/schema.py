"""
Entity schema metadata for entmap.

The Schema is the central authority for all mapped entity classes.
It provides:
- Resolution of declared classes into EntityData/FieldData
- Synthesized metadata for mapped superclasses
- Foreign key detection between registered entities
- Lookup by class or fully-qualified class name
- Schema fingerprinting for consistency checks

Invariants:
    - A Schema is built once by SchemaBuilder and is immutable afterwards
    - Parent metadata is always resolved before its subclasses
    - A field whose type is a registered entity is a foreign key
    - Fingerprint changes when the mapping changes

How to change safely:
    - Add every entity class before calling build()
    - Share one Schema between all threads; never modify it
    - Compare fingerprints (``entmap-mapping snapshot``) before deployment

Example:
    >>> schema = Schema.builder().named("shop").add(Customer).add(Order).build()
    >>> schema.get_entity_data(Order).get_field("customer").column_type
    <ColumnType.FOREIGN_KEY: 'foreign_key'>
"""

from __future__ import annotations

import dataclasses
import hashlib
import inspect
import json
import logging
import typing
from typing import Any, Iterable, Optional, Union

from ..errors import ConfigurationError
from ..mapping import EntityListener, column_info, is_mapped_superclass, table_info
from ..utils import get_sql_name
from .types import ColumnType, EntityData, FieldData, make_accessors, unwrap_optional

logger = logging.getLogger(__name__)


def _class_name(cls: type) -> str:
    return f"{cls.__module__}.{cls.__qualname__}"


class Schema:
    """Immutable metadata of all mapped entities.

    Thread-safety:
        - Fully built before it is returned by SchemaBuilder.build()
        - Lookups are lock-free; nothing is mutated afterwards

    Attributes:
        name: SQL schema (namespace) name, or None
        entity_listener: Notified before insert/update, or None
        fingerprint: SHA-256 hash of the mapping
    """

    def __init__(self, name: Optional[str], listener: Optional[EntityListener]) -> None:
        self._name = name
        self._listener = listener
        self._entity_data: dict[str, EntityData] = {}
        self._fingerprint: Optional[str] = None

    @staticmethod
    def builder() -> SchemaBuilder:
        """Create a new schema builder."""
        return SchemaBuilder()

    @property
    def name(self) -> Optional[str]:
        """The schema name, None if not configured."""
        return self._name

    @property
    def entity_listener(self) -> Optional[EntityListener]:
        return self._listener

    @property
    def fingerprint(self) -> Optional[str]:
        return self._fingerprint

    def to_schema_table_name(self, entity_data: EntityData) -> str:
        """Get ``schema.table`` (or just ``table``) for use in SQL."""
        return self.qualify(entity_data.table_name)

    def qualify(self, table_name: str) -> str:
        return table_name if self._name is None else f"{self._name}.{table_name}"

    def entity_data(self) -> tuple[EntityData, ...]:
        """All entity metadata, including mapped superclasses."""
        return tuple(self._entity_data.values())

    def get_entity_data(self, entity_class: Union[type, str]) -> EntityData:
        """Get the entity metadata for a class or fully-qualified class name.

        Raises:
            ConfigurationError: If the class is not part of this schema
        """
        class_name = entity_class if isinstance(entity_class, str) else _class_name(entity_class)
        entity_data = self._entity_data.get(class_name)
        if entity_data is None:
            raise ConfigurationError(
                f"Entity data is not available for class: {class_name}", entity=class_name
            )
        return entity_data

    def is_entity(self, cls: Any) -> bool:
        return isinstance(cls, type) and _class_name(cls) in self._entity_data

    def to_dict(self) -> dict:
        """Convert schema to dictionary representation, sorted by class name."""
        return {
            "name": self._name,
            "entities": [self._entity_data[k].to_dict() for k in sorted(self._entity_data)],
        }

    def to_json(self, indent: Optional[int] = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent, sort_keys=True)

    def _compute_fingerprint(self) -> str:
        """Compute SHA-256 fingerprint of the canonical JSON form."""
        canonical = json.dumps(self.to_dict(), sort_keys=True, separators=(",", ":"))
        hash_bytes = hashlib.sha256(canonical.encode("utf-8")).hexdigest()
        return f"sha256:{hash_bytes}"

    # -- build steps -------------------------------------------------------

    def _register_entity(self, entity_class: type) -> None:
        chain = [entity_class]
        superclass = _mapped_base(entity_class)
        while superclass is not None:
            chain.append(superclass)
            superclass = _mapped_base(superclass)
        # root first, so parents are always configured before children
        previous: Optional[EntityData] = None
        for cls in reversed(chain):
            entity_data = self._entity_data.get(_class_name(cls))
            if entity_data is None:
                entity_data = _create_entity_data(cls)
                self._entity_data[_class_name(cls)] = entity_data
            if previous is not None:
                entity_data.parent_entity = previous
            previous = entity_data

    def _configure_metadata(self) -> None:
        for entity_data in self._entity_data.values():
            for field_data in self._read_declared_fields(entity_data.entity_class):
                entity_data._add_field(field_data)
            entity_data._resolve_fields()
            info = table_info(entity_data.entity_class)
            entity_data._resolve_field_groups(info.field_groups if info else ())
            logger.debug(
                f"Configured entity: {entity_data.class_name} "
                f"(table={entity_data.table_name}, fields={len(entity_data.fields)})"
            )
        self._fingerprint = self._compute_fingerprint()

    def _read_declared_fields(self, cls: type) -> list[FieldData]:
        try:
            annotations = inspect.get_annotations(cls, eval_str=True)
        except NameError as e:
            raise ConfigurationError(
                f"Cannot resolve field types of {_class_name(cls)}: {e}", entity=_class_name(cls)
            ) from e
        dc_fields = {f.name: f for f in dataclasses.fields(cls)}
        result = []
        for name, declared_type in annotations.items():
            dc_field = dc_fields.get(name)
            if dc_field is None or _is_final(declared_type):
                continue  # ClassVar / InitVar / Final
            info = column_info(dc_field)
            if info.transient:
                continue
            field_type, _ = unwrap_optional(declared_type)
            optional = info.optional
            if info.primary_key:
                column_type = ColumnType.PRIMARY_KEY
            elif info.version:
                column_type = ColumnType.VERSION
                optional = False
            elif info.lob:
                column_type = ColumnType.LARGE_OBJECT
            else:
                column_type = ColumnType.PLAIN
            if self.is_entity(field_type):
                column_type = ColumnType.FOREIGN_KEY
            getter, setter = make_accessors(name)
            result.append(
                FieldData(
                    name=name,
                    column_name=get_sql_name(name, info.name),
                    field_type=field_type,
                    column_type=column_type,
                    optional=optional,
                    fetch=info.fetch,
                    length=info.length,
                    scale=info.scale,
                    indexed=info.indexed,
                    getter=getter,
                    setter=setter,
                )
            )
        return result


def _is_final(declared_type: Any) -> bool:
    return declared_type is typing.Final or typing.get_origin(declared_type) is typing.Final


def _mapped_base(cls: type) -> Optional[type]:
    base = cls.__base__
    if base is None or base is object or not dataclasses.is_dataclass(base):
        return None
    return base


def _create_entity_data(cls: type) -> EntityData:
    if not dataclasses.is_dataclass(cls):
        raise ConfigurationError(f"An entity must be a dataclass: {_class_name(cls)}", entity=_class_name(cls))
    info = table_info(cls)
    if is_mapped_superclass(cls):
        return EntityData(cls, None)
    if info is None:
        raise ConfigurationError(
            f"@table must be specified for an entity: {_class_name(cls)}", entity=_class_name(cls)
        )
    return EntityData(
        cls,
        get_sql_name(cls.__name__, info.name),
        indexes=info.indexes,
        unique_constraints=info.unique_constraints,
    )


class SchemaBuilder:
    """Collects entity classes and builds the immutable Schema.

    Example:
        >>> schema = (
        ...     Schema.builder()
        ...     .named("shop")
        ...     .add(Customer)
        ...     .add(Order)
        ...     .having(AuditListener())
        ...     .build()
        ... )
    """

    def __init__(self) -> None:
        self._name: Optional[str] = None
        self._listener: Optional[EntityListener] = None
        self._entity_classes: dict[type, None] = {}

    def named(self, name: str) -> SchemaBuilder:
        """Set the schema name (lower-cased).

        Raises:
            ConfigurationError: If the name is blank
        """
        if name is None or not name.strip():
            raise ConfigurationError(f"Invalid schema name: {name!r}")
        self._name = name.strip().lower()
        return self

    def add(self, entity_class: type) -> SchemaBuilder:
        """Add an entity class.

        Raises:
            ConfigurationError: If the class was already added
        """
        if entity_class is None:
            raise TypeError("entity_class must not be None")
        if entity_class in self._entity_classes:
            raise ConfigurationError(
                f"This entity is already added: {_class_name(entity_class)}",
                entity=_class_name(entity_class),
            )
        self._entity_classes[entity_class] = None
        return self

    def having(self, listener: EntityListener) -> SchemaBuilder:
        """Set the listener notified before insert or update."""
        if listener is None:
            raise TypeError("listener must not be None")
        self._listener = listener
        return self

    def build(self) -> Schema:
        """Build the fully configured schema.

        Raises:
            ConfigurationError: If no entity was added or any metadata is invalid
        """
        if not self._entity_classes:
            raise ConfigurationError("This schema doesn't contain any entity!")
        schema = Schema(self._name, self._listener)
        for entity_class in self._entity_classes:
            schema._register_entity(entity_class)
        schema._configure_metadata()
        self._entity_classes.clear()
        logger.info(
            f"Schema built with {len(schema.entity_data())} entities, "
            f"fingerprint={schema.fingerprint}"
        )
        return schema


def build_schema(
    entity_classes: Iterable[type],
    name: Optional[str] = None,
    listener: Optional[EntityListener] = None,
) -> Schema:
    """Build a Schema from entity classes in one call."""
    builder = Schema.builder()
    if name is not None:
        builder.named(name)
    if listener is not None:
        builder.having(listener)
    for entity_class in entity_classes:
        builder.add(entity_class)
    return builder.build()
