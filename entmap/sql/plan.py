"""Select mapping plan data classes.

Frozen dataclasses describing the column order of a generated SELECT.
The Finder builds a SelectPlan together with the column list and maps
every result row with it, so both always agree on the column order.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping, Sequence, Union

from ..metadata.types import ColumnType, EntityData, FieldData


@dataclass(frozen=True)
class ReferencePlan:
    """Mapping plan for a foreign key expanded through a join."""

    field_data: FieldData
    entity_data: EntityData
    alias: str
    fields: tuple[FieldData, ...]
    nested: Mapping[str, EntityData] = field(default_factory=dict)  # field name -> target of a nested foreign key

    @property
    def width(self) -> int:
        return len(self.fields)

    def map_columns(self, values: Sequence[Any]) -> Any:
        """Build the referenced entity, None if the join matched no row."""
        instance = None
        for field_data, value in zip(self.fields, values):
            if value is None:
                continue
            if instance is None:
                instance = self.entity_data.create_instance()
            if field_data.column_type is ColumnType.FOREIGN_KEY:
                # only the identity of a second level reference is selected
                target = self.nested[field_data.name]
                reference = target.create_instance()
                target.id_field.set_value(reference, value)
                field_data.set_value(instance, reference)
            else:
                field_data.set_value(instance, value)
        return instance


@dataclass(frozen=True)
class SelectPlan:
    """Compiled column list and row mapping for one entity alias."""

    entity_data: EntityData
    alias: str
    columns: tuple[str, ...]
    entries: tuple[Union[FieldData, ReferencePlan], ...]
    joins: str = ""

    def map_row(self, row: Sequence[Any]) -> Any:
        """Create an entity from one row, consuming columns in plan order."""
        instance = self.entity_data.create_instance()
        index = 0
        for entry in self.entries:
            if isinstance(entry, ReferencePlan):
                values = row[index:index + entry.width]
                entry.field_data.set_value(instance, entry.map_columns(values))
                index += entry.width
            else:
                entry.set_value(instance, row[index])
                index += 1
        return instance
