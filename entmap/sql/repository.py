"""
Repository: thread-scoped transactions over a connection factory.

The first transactional entry on a thread opens a connection and begins a
transaction; nested entries on the same thread reuse it. Only the outermost
exit commits (on success) or rolls back (on failure) and closes the
connection.

Invariants:
    - One SqlQuery per thread per Repository at a time
    - Connections are never shared between threads
    - Commit/rollback happens exactly once, when the nesting counter is zero
    - A failed commit is followed by a rollback and surfaces as TransactionError

How to change safely:
    - Keep all entry points going through transaction()
    - Never cache a SqlQuery beyond the outermost transaction() block

Example:
    >>> repository = Repository(connect, schema, SqliteDialect())
    >>> with repository.transaction() as query:
    ...     query.insert(customer)
    >>> count = repository.execute(lambda q: q.find(Customer).fetch_single_result("count(*)"))
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any, Callable, Iterator, Optional, TypeVar

from ..errors import ConnectionAcquisitionError
from ..metadata.schema import Schema
from .dialect import Dialect
from .query import DEFAULT_BATCH_SIZE, SqlQuery

if TYPE_CHECKING:
    from ..config import Settings

logger = logging.getLogger(__name__)

R = TypeVar("R")


class Repository:
    """Hands out per-thread SqlQuery contexts.

    Attributes:
        schema: The entity schema
        dialect: SQL dialect of the connections
        batch_size: Rows per batch statement
    """

    def __init__(
        self,
        connection_factory: Callable[[], Any],
        schema: Schema,
        dialect: Dialect,
        batch_size: int = DEFAULT_BATCH_SIZE,
    ) -> None:
        self._connection_factory = connection_factory
        self.schema = schema
        self.dialect = dialect
        self.batch_size = batch_size
        self._local = threading.local()

    @classmethod
    def from_settings(cls, settings: Settings, schema: Schema) -> Repository:
        """Create a repository whose connections follow the settings."""
        from ..config import create_connection_factory

        return cls(
            create_connection_factory(settings),
            schema,
            settings.create_dialect(),
            batch_size=settings.batch_size,
        )

    def _current(self) -> Optional[SqlQuery]:
        return getattr(self._local, "query", None)

    def _acquire(self) -> SqlQuery:
        query = self._current()
        if query is not None:
            return query
        try:
            connection = self._connection_factory()
        except Exception as e:
            raise ConnectionAcquisitionError(
                f"Couldn't establish database connection: {e}", database=self.dialect.name
            ) from e
        query = SqlQuery(connection, self.schema, self.dialect, self.batch_size)
        try:
            query.begin_transaction()
        except Exception as e:
            connection.close()
            raise ConnectionAcquisitionError(
                f"Couldn't begin transaction: {e}", database=self.dialect.name
            ) from e
        self._local.query = query
        logger.debug(f"Transaction started on thread {threading.current_thread().name}")
        return query

    @contextmanager
    def transaction(self) -> Iterator[SqlQuery]:
        """Enter the thread's transaction, starting one if needed.

        Yields:
            The thread's SqlQuery
        """
        query = self._acquire()
        query.increment_counter()
        on_success = False
        try:
            yield query
            on_success = True
        finally:
            if query.decrement_counter() == 0:
                self._local.query = None
                query.close(on_success)
                logger.debug(
                    f"Transaction {'committed' if on_success else 'rolled back'} "
                    f"on thread {threading.current_thread().name}"
                )

    def execute(self, function: Callable[[SqlQuery], R]) -> R:
        """Run a function in the thread's transaction and return its result."""
        with self.transaction() as query:
            return function(query)

    def transact(self, consumer: Callable[[SqlQuery], Any]) -> None:
        """Run a function in the thread's transaction, ignoring its result."""
        with self.transaction() as query:
            consumer(query)
