"""
Mapping CLI tool for entmap.

This tool inspects and applies the database mapping of a schema:
- snapshot: Export the resolved schema (with fingerprint) to JSON
- plan: Show the DDL needed to bring a database up to date
- migrate: Apply that DDL in one transaction

Usage:
    entmap-mapping snapshot --module shop.entities > schema.lock.json
    entmap-mapping plan --module shop.entities
    entmap-mapping plan --module shop.entities --catalog catalog.json --dialect postgresql
    entmap-mapping migrate --module shop.entities

The database is taken from ENTMAP_* environment settings unless
``--database-url`` is given.

Invariants:
    - Schema files are deterministic (sorted JSON)
    - plan never modifies the database
    - migrate only runs additive DDL

How to change safely:
    - Add new commands, don't modify existing ones
    - Keep output format stable for CI parsing
"""

from __future__ import annotations

import argparse
import importlib
import json
import logging
import sys
from typing import Optional

from ..config import Settings, setup_logging
from ..metadata.schema import Schema
from ..sql.dialect import Dialect, create_dialect
from ..sql.mapping_tool import CatalogSnapshot, DdlStatement, MappingTool, read_catalog
from ..sql.repository import Repository

logger = logging.getLogger(__name__)


class MappingCLI:
    """CLI tool for database mapping.

    Example:
        >>> cli = MappingCLI()
        >>> print(cli.snapshot(schema))
        >>> statements = cli.plan(schema, settings)
    """

    def snapshot(self, schema: Schema) -> str:
        """Export the resolved schema to JSON.

        Returns:
            JSON string representation
        """
        output = {
            "version": 1,
            "fingerprint": schema.fingerprint,
            "schema": schema.to_dict(),
        }
        return json.dumps(output, indent=2, sort_keys=True)

    def plan(
        self,
        schema: Schema,
        settings: Settings,
        catalog_path: Optional[str] = None,
        dialect: Optional[Dialect] = None,
    ) -> list[DdlStatement]:
        """Plan DDL against a saved catalog snapshot or the live database.

        Args:
            schema: Resolved schema
            settings: Connection settings (used when no catalog file is given)
            catalog_path: Path to a CatalogSnapshot JSON file
            dialect: Dialect override for a catalog file
        """
        dialect = dialect or settings.create_dialect()
        if catalog_path:
            with open(catalog_path) as f:
                snapshot = CatalogSnapshot.from_dict(json.load(f))
            return MappingTool.plan(schema, snapshot, dialect)
        repository = Repository.from_settings(settings, schema)
        return repository.execute(lambda query: MappingTool.plan(schema, read_catalog(query), dialect))

    def migrate(self, schema: Schema, settings: Settings) -> list[DdlStatement]:
        """Apply the planned DDL in one transaction."""
        repository = Repository.from_settings(settings, schema)
        return repository.execute(lambda query: query.create_mapping())


def main(argv: Optional[list[str]] = None) -> None:
    """CLI entry point for the mapping tool."""
    parser = argparse.ArgumentParser(description="entmap database mapping tool")
    parser.add_argument("--database-url", help="Database URL (default: ENTMAP_DATABASE_URL)")
    subparsers = parser.add_subparsers(dest="command", required=True)

    snapshot_parser = subparsers.add_parser("snapshot", help="Export schema to JSON")
    snapshot_parser.add_argument("--module", required=True, help="Module defining the schema")
    snapshot_parser.add_argument("--output", "-o", help="Output file (default: stdout)")

    plan_parser = subparsers.add_parser("plan", help="Show DDL needed to update the database")
    plan_parser.add_argument("--module", required=True, help="Module defining the schema")
    plan_parser.add_argument("--catalog", help="CatalogSnapshot JSON file instead of a live database")
    plan_parser.add_argument("--dialect", choices=["sqlite", "postgresql"], help="Dialect for --catalog")
    plan_parser.add_argument(
        "--format", choices=["text", "json"], default="text", help="Output format"
    )

    migrate_parser = subparsers.add_parser("migrate", help="Apply DDL to the database")
    migrate_parser.add_argument("--module", required=True, help="Module defining the schema")

    args = parser.parse_args(argv)
    settings = Settings() if args.database_url is None else Settings(database_url=args.database_url)
    setup_logging(settings)
    cli = MappingCLI()
    schema = _load_schema(args.module)

    if args.command == "snapshot":
        output = cli.snapshot(schema)
        if args.output:
            with open(args.output, "w") as f:
                f.write(output)
            print(f"Schema exported to {args.output}", file=sys.stderr)
        else:
            print(output)

    elif args.command == "plan":
        dialect = create_dialect(args.dialect) if args.dialect else None
        statements = cli.plan(schema, settings, args.catalog, dialect)
        if args.format == "json":
            print(json.dumps([s.to_dict() for s in statements], indent=2))
        elif not statements:
            print("Database mapping is up to date")
        else:
            print(f"{len(statements)} statement(s) to apply:")
            for statement in statements:
                print(f"  {statement}")

    elif args.command == "migrate":
        statements = cli.migrate(schema, settings)
        print(f"Applied {len(statements)} statement(s)")


def _load_schema(module_path: str) -> Schema:
    """Load a schema from ``module`` (attribute ``schema`` or ``get_schema()``) or ``module:attr``.

    Raises:
        ValueError: If the module defines no schema
    """
    module_name, _, attribute = module_path.partition(":")
    module = importlib.import_module(module_name)
    if attribute:
        value = getattr(module, attribute)
        return value() if callable(value) else value
    if hasattr(module, "schema"):
        return module.schema
    if hasattr(module, "get_schema"):
        return module.get_schema()
    raise ValueError(f"Module {module_name} has no 'schema' or 'get_schema()'")


if __name__ == "__main__":
    main()
