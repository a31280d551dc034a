"""
Recording DB-API fakes for unit tests.

FakeConnection records every executed statement and answers with queued
results, so generated SQL can be asserted without a database.
"""

from __future__ import annotations

from typing import Any, Optional, Sequence


class FakeCursor:
    """Cursor answering with the connection's next queued result."""

    def __init__(self, connection: FakeConnection) -> None:
        self._connection = connection
        self._rows: list[tuple] = []
        self.description: Optional[list[tuple]] = None
        self.rowcount = -1

    def execute(self, sql: str, parameters: Sequence[Any] = ()) -> None:
        self._connection.statements.append((sql, tuple(parameters)))
        if self._connection.fail_on is not None and self._connection.fail_on in sql:
            raise RuntimeError(f"statement failed: {sql}")
        labels, rows, rowcount = self._connection.next_result()
        self.description = [(label, None, None, None, None, None, None) for label in labels] or None
        self._rows = list(rows)
        self.rowcount = rowcount

    def executemany(self, sql: str, parameter_rows: Sequence[Sequence[Any]]) -> None:
        rows = [tuple(parameters) for parameters in parameter_rows]
        self._connection.statements.append((sql, rows))
        self.rowcount = len(rows)

    def fetchall(self) -> list[tuple]:
        return list(self._rows)

    def close(self) -> None:
        pass


class FakeConnection:
    """DB-API connection that records statements.

    Attributes:
        statements: (sql, parameters) pairs in execution order
        results: Queue of (labels, rows, rowcount) answers
        fail_on: Substring making execute() raise
    """

    def __init__(self) -> None:
        self.statements: list[tuple[str, Any]] = []
        self.results: list[tuple[list[str], list[tuple], int]] = []
        self.fail_on: Optional[str] = None
        self.autocommit = True
        self.committed = 0
        self.rolled_back = 0
        self.closed = False
        self.fail_commit = False
        self.fail_rollback = False

    def queue(self, labels: list[str], rows: list[tuple], rowcount: int = -1) -> None:
        self.results.append((labels, rows, rowcount if rowcount >= 0 else len(rows)))

    def next_result(self) -> tuple[list[str], list[tuple], int]:
        if self.results:
            return self.results.pop(0)
        return [], [], 1

    @property
    def last_sql(self) -> str:
        return self.statements[-1][0]

    @property
    def last_parameters(self) -> Any:
        return self.statements[-1][1]

    def cursor(self) -> FakeCursor:
        return FakeCursor(self)

    def commit(self) -> None:
        if self.fail_commit:
            raise RuntimeError("commit failed")
        self.committed += 1

    def rollback(self) -> None:
        self.rolled_back += 1
        if self.fail_rollback:
            raise RuntimeError("connection lost")

    def close(self) -> None:
        self.closed = True
