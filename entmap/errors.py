"""
Error types for entmap.

This module defines all exception types raised by the mapping layer:
- PersistError: Base exception
- ConfigurationError: Malformed or contradictory metadata, unresolved references
- InvalidQueryError: Invalid arguments while composing a query
- QueryExecutionError: Driver/SQL failure while executing a statement
- ConnectionAcquisitionError: A connection could not be opened
- TransactionError: A transaction could not be committed

Invariants:
    - All errors inherit from PersistError
    - Driver errors are chained as __cause__, never swallowed
    - Optimistic-lock conflicts are NOT errors: they surface as zero row counts
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class PersistError(Exception):
    """Base exception for all entmap errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "PERSIST_ERROR"
        self.details = details or {}


class ConfigurationError(PersistError):
    """Entity metadata or a query reference could not be resolved.

    Raised when:
    - An entity has no identity field, or declares two
    - Two version fields or two field groups with the same name are declared
    - A field group includes a group that was not declared before it
    - An alias or field used in a query is unknown
    - A join is requested on a field that is not a foreign key

    Always fatal; never retried.
    """

    def __init__(
        self,
        message: str,
        entity: Optional[str] = None,
        **details: Any,
    ) -> None:
        details["entity"] = entity
        super().__init__(message, code="CONFIGURATION_ERROR", details=details)
        self.entity = entity


class InvalidQueryError(ConfigurationError, ValueError):
    """A query composition call received an invalid argument.

    Raised when:
    - An IN list is empty
    - A join alias is already bound
    - GROUP BY / ORDER BY is set twice
    - An ``alias.field`` expression is malformed
    """

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message, **details)
        self.code = "INVALID_QUERY"


class QueryExecutionError(PersistError):
    """The database driver failed to execute a statement.

    The original driver exception is available as ``__cause__``.

    Attributes:
        sql: The statement text that failed
    """

    def __init__(self, message: str, sql: Optional[str] = None) -> None:
        super().__init__(message, code="QUERY_EXECUTION_ERROR", details={"sql": sql})
        self.sql = sql


class ConnectionAcquisitionError(PersistError):
    """A database connection could not be opened.

    Raised before any statement is issued.
    """

    def __init__(self, message: str, database: Optional[str] = None) -> None:
        super().__init__(message, code="CONNECTION_ERROR", details={"database": database})
        self.database = database


class TransactionError(PersistError):
    """A transaction could not be committed.

    A rollback has already been attempted when this is raised.
    """

    def __init__(self, message: str) -> None:
        super().__init__(message, code="TRANSACTION_ERROR")
