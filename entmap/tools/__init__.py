"""
CLI tools for entmap.

This module provides command-line tools for:
- mapping: Export the schema, plan and apply additive DDL

Invariants:
    - Tools never drop or rename database objects
    - All applied statements are logged
"""

from .mapping_cli import MappingCLI

__all__ = ["MappingCLI"]
