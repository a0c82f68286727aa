"""
Storage backends for MergeDoc.

- base: Backend protocol, auxiliary table names, create_backend factory
- clickhouse: ClickHouse over its HTTP interface (httpx)
- sqlite: embedded SQLite file for local development and tests
"""

from .base import (
    EVENTS_TABLE,
    STAGING_TABLE,
    Backend,
    create_backend,
    relationships_table,
)
from .clickhouse import ClickHouseBackend
from .sqlite import SQLiteBackend

__all__ = [
    "Backend",
    "create_backend",
    "relationships_table",
    "STAGING_TABLE",
    "EVENTS_TABLE",
    "ClickHouseBackend",
    "SQLiteBackend",
]
