"""
Metadata module for entmap.

This module resolves declared entity classes into the metadata used by the
statement and query builders:
- Field and entity descriptors (FieldData, EntityData)
- Schema for lookup by class, built once by SchemaBuilder

Invariants:
    - Metadata is immutable once Schema.build() returns
    - Every concrete entity has exactly one primary key field
    - Field group includes refer only to groups declared earlier

How to change safely:
    - Add new entity classes to the builder; never patch EntityData afterwards
    - Use ``entmap-mapping snapshot`` to compare schema fingerprints
"""

from .schema import Schema, SchemaBuilder, build_schema
from .types import ColumnType, EntityData, FieldData

__all__ = [
    # Types
    "ColumnType",
    "FieldData",
    "EntityData",
    # Schema
    "Schema",
    "SchemaBuilder",
    "build_schema",
]
