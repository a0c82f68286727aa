"""
Base protocol for storage backends.

This module defines the Backend protocol that all backends implement,
the names of the auxiliary tables, and a factory that builds a backend
from configuration.

Invariants:
    - Backends only append rows, except drop_namespace-style test cleanup
    - Parameters are always bound, never spliced into statements
    - Rows come back as plain dicts keyed by column name
    - Every method raises NotConnectedError before connect()

How to change safely:
    - Protocol changes require updating all implementations
    - Keep the ClickHouse and SQLite table layouts column-compatible; the
      stores use the same column lists for both
"""

from __future__ import annotations

from abc import abstractmethod
from typing import TYPE_CHECKING, Any, AsyncIterator, Protocol, runtime_checkable

from ..query.dialect import Dialect

if TYPE_CHECKING:
    from ..config import StoreConfig

STAGING_TABLE = "actions"
EVENTS_TABLE = "events"


def relationships_table(table: str) -> str:
    """Edge table name for a document table."""
    return f"{table}_relationships"


@runtime_checkable
class Backend(Protocol):
    """Protocol for append-only storage backends.

    Consumed operations:
        - command(): run a parameterized mutation statement
        - query() / stream(): run a parameterized query, return rows
        - insert(): bulk-append an array of records to a table

    Example:
        >>> backend = SQLiteBackend(SQLiteConfig(path="/tmp/docs.db"))
        >>> await backend.connect()
        >>> await backend.ensure_schema("mergedoc")
        >>> rows = await backend.query("SELECT 1 AS one")
    """

    @property
    @abstractmethod
    def dialect(self) -> Dialect:
        """SQL dialect statements for this backend must be written in."""
        ...

    @abstractmethod
    async def connect(self) -> None:
        """Open the backend connection.

        Must be called before any other operations.
        """
        ...

    @abstractmethod
    async def close(self) -> None:
        """Release backend resources."""
        ...

    @abstractmethod
    async def ensure_schema(self, table: str) -> None:
        """Create the document, edge, staging and event tables if missing."""
        ...

    @abstractmethod
    async def command(self, query: str, params: dict[str, Any] | None = None) -> None:
        """Run a statement that returns no rows.

        Raises:
            NotConnectedError: If not connected
            BackendError: If the backend rejects the statement
        """
        ...

    @abstractmethod
    async def query(
        self, query: str, params: dict[str, Any] | None = None
    ) -> list[dict[str, Any]]:
        """Run a query and return all rows."""
        ...

    @abstractmethod
    def stream(
        self, query: str, params: dict[str, Any] | None = None
    ) -> AsyncIterator[dict[str, Any]]:
        """Run a query and yield rows as they arrive."""
        ...

    @abstractmethod
    async def insert(self, table: str, rows: list[dict[str, Any]]) -> None:
        """Append rows to a table in a single call.

        All rows must share the same keys. An empty list is a no-op.
        """
        ...

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        """Whether connect() has been called and close() has not."""
        ...


def create_backend(config: "StoreConfig") -> Backend:
    """Factory function to create a backend from configuration.

    Args:
        config: Store configuration

    Returns:
        Appropriate Backend implementation

    Raises:
        ValueError: If backend kind is not supported
    """
    from ..config import BackendKind

    if config.backend == BackendKind.CLICKHOUSE:
        from .clickhouse import ClickHouseBackend

        return ClickHouseBackend(config.clickhouse)
    elif config.backend == BackendKind.SQLITE:
        from .sqlite import SQLiteBackend

        return SQLiteBackend(config.sqlite)
    else:
        raise ValueError(f"Unsupported backend: {config.backend}")
