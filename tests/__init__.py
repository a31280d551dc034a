"""
entmap Test Suite.

This package contains:
- unit/: Unit tests (no database, statements recorded by a fake connection)
- integration/: Integration tests (SQLite file databases in temp directories)
"""
