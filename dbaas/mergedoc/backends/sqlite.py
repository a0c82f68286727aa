"""
Embedded SQLite backend.

Runs the same append-only tables as ClickHouse in a single SQLite file so
the store can be used (and tested) without a server. Timestamps are
INTEGER epoch milliseconds and the payload column holds JSON text read
with json_extract.

Invariants:
    - Tables have no primary keys; every write is an append
    - A new connection is opened per operation and closed afterwards
    - Geo predicates are Python functions registered on every connection
    - sqlite3 errors propagate unchanged

How to change safely:
    - Keep column names and order identical to the ClickHouse DDL
    - New UDFs must be registered in _register_functions and named in
      query/dialect.py
"""

from __future__ import annotations

import asyncio
import json
import logging
import math
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any, AsyncIterator, Iterator

from ..config import SQLiteConfig
from ..errors import NotConnectedError
from ..query.dialect import (
    SQLITE_GEO_DISTANCE,
    SQLITE_POINT_EQUALS,
    SQLITE_POINT_IN_POLYGON,
    SQLiteDialect,
)
from ..sanitize import assert_valid_table_name
from .base import EVENTS_TABLE, STAGING_TABLE, relationships_table

logger = logging.getLogger(__name__)

# Same radius ClickHouse uses for greatCircleDistance
EARTH_RADIUS_METERS = 6372797.560856


def _load_point(value: Any) -> tuple[float, float] | None:
    if value is None:
        return None
    try:
        point = json.loads(value) if isinstance(value, str) else value
        return float(point[0]), float(point[1])
    except (ValueError, TypeError, IndexError, KeyError):
        return None


def geo_distance(point_json: Any, lon: float, lat: float) -> float | None:
    """Great-circle distance in metres between a stored [lon, lat] and a point."""
    point = _load_point(point_json)
    if point is None or lon is None or lat is None:
        return None
    lon1, lat1 = map(math.radians, point)
    lon2, lat2 = math.radians(lon), math.radians(lat)
    a = (
        math.sin((lat2 - lat1) / 2) ** 2
        + math.cos(lat1) * math.cos(lat2) * math.sin((lon2 - lon1) / 2) ** 2
    )
    return 2 * EARTH_RADIUS_METERS * math.asin(min(1.0, math.sqrt(a)))


def point_in_polygon(point_json: Any, ring_json: str) -> int | None:
    """Ray-casting test of a stored [lon, lat] against a ring of [lon, lat] pairs."""
    point = _load_point(point_json)
    if point is None:
        return None
    x, y = point
    ring = json.loads(ring_json)
    inside = False
    j = len(ring) - 1
    for i in range(len(ring)):
        xi, yi = ring[i]
        xj, yj = ring[j]
        if (yi > y) != (yj > y) and x < (xj - xi) * (y - yi) / (yj - yi) + xi:
            inside = not inside
        j = i
    return 1 if inside else 0


def point_equals(point_json: Any, lon: float, lat: float) -> int | None:
    point = _load_point(point_json)
    if point is None:
        return None
    return 1 if point == (float(lon), float(lat)) else 0


def _encode_value(value: Any) -> Any:
    if isinstance(value, bool):
        return 1 if value else 0
    if isinstance(value, (dict, list)):
        return json.dumps(value)
    return value


def _create_schema(conn: sqlite3.Connection, table: str) -> None:
    edges = relationships_table(table)
    conn.executescript(f"""
        -- Documents: one row per version
        CREATE TABLE IF NOT EXISTS {table} (
            ns TEXT NOT NULL,
            type TEXT NOT NULL,
            id TEXT NOT NULL,
            v INTEGER NOT NULL,
            title TEXT NOT NULL DEFAULT '',
            data TEXT NOT NULL DEFAULT '{{}}',
            createdAt INTEGER NOT NULL,
            createdBy TEXT,
            updatedAt INTEGER NOT NULL,
            updatedBy TEXT,
            deletedAt INTEGER,
            deletedBy TEXT
        );

        CREATE INDEX IF NOT EXISTS idx_{table}_key ON {table}(ns, type, id, v DESC);

        -- Relationship edges: one row per edge version
        CREATE TABLE IF NOT EXISTS {edges} (
            ns TEXT NOT NULL,
            fromType TEXT NOT NULL,
            fromId TEXT NOT NULL,
            fromField TEXT NOT NULL,
            toType TEXT NOT NULL,
            toId TEXT NOT NULL,
            position INTEGER NOT NULL DEFAULT 0,
            locale TEXT,
            v INTEGER NOT NULL,
            deletedAt INTEGER
        );

        CREATE INDEX IF NOT EXISTS idx_{edges}_to
            ON {edges}(ns, toType, toId, fromType, fromId, fromField, position);
        CREATE INDEX IF NOT EXISTS idx_{edges}_from ON {edges}(ns, fromType, fromId);

        -- Staged transaction writes and status records
        CREATE TABLE IF NOT EXISTS {STAGING_TABLE} (
            txId TEXT NOT NULL,
            txStatus TEXT NOT NULL CHECK (txStatus IN ('pending', 'committed', 'aborted')),
            txTimeout INTEGER,
            txCreatedAt INTEGER NOT NULL,
            id TEXT NOT NULL,
            ns TEXT NOT NULL,
            type TEXT NOT NULL,
            v INTEGER NOT NULL,
            data TEXT NOT NULL DEFAULT '{{}}',
            title TEXT NOT NULL DEFAULT '',
            createdAt INTEGER NOT NULL,
            createdBy TEXT,
            updatedAt INTEGER NOT NULL,
            updatedBy TEXT,
            deletedAt INTEGER,
            deletedBy TEXT
        );

        CREATE INDEX IF NOT EXISTS idx_{STAGING_TABLE}_tx ON {STAGING_TABLE}(ns, txId, type, id);

        -- Append-only event log
        CREATE TABLE IF NOT EXISTS {EVENTS_TABLE} (
            id TEXT NOT NULL,
            ns TEXT NOT NULL,
            timestamp INTEGER NOT NULL,
            type TEXT NOT NULL,
            collection TEXT,
            docId TEXT,
            userId TEXT,
            sessionId TEXT,
            ip TEXT,
            duration INTEGER NOT NULL DEFAULT 0,
            input TEXT NOT NULL DEFAULT '{{}}',
            result TEXT NOT NULL DEFAULT '{{}}'
        );

        CREATE INDEX IF NOT EXISTS idx_{EVENTS_TABLE}_time ON {EVENTS_TABLE}(ns, timestamp, id);
    """)


class SQLiteBackend:
    """SQLite implementation of the Backend protocol.

    Example:
        >>> backend = SQLiteBackend(SQLiteConfig(path="/tmp/docs.db"))
        >>> await backend.connect()
        >>> await backend.ensure_schema("mergedoc")
    """

    def __init__(self, config: SQLiteConfig) -> None:
        self.config = config
        self._connected = False
        self._lock = asyncio.Lock()
        self._dialect = SQLiteDialect()

    @property
    def dialect(self) -> SQLiteDialect:
        return self._dialect

    @property
    def is_connected(self) -> bool:
        return self._connected

    @contextmanager
    def _get_connection(self) -> Iterator[sqlite3.Connection]:
        """Open a configured connection.

        Yields:
            SQLite connection with row factory, pragmas and UDFs set up

        Raises:
            NotConnectedError: If connect() has not been called
        """
        if not self._connected:
            raise NotConnectedError("SQLite")

        conn = sqlite3.connect(
            self.config.path,
            timeout=self.config.busy_timeout_ms / 1000.0,
            isolation_level=None,
        )
        conn.row_factory = sqlite3.Row

        try:
            conn.execute(f"PRAGMA busy_timeout = {self.config.busy_timeout_ms}")
            conn.execute(f"PRAGMA cache_size = {self.config.cache_size_pages}")
            if self.config.wal_mode:
                conn.execute("PRAGMA journal_mode = WAL")
            conn.execute("PRAGMA synchronous = NORMAL")
            self._register_functions(conn)

            yield conn
        finally:
            conn.close()

    @staticmethod
    def _register_functions(conn: sqlite3.Connection) -> None:
        conn.create_function(SQLITE_GEO_DISTANCE, 3, geo_distance, deterministic=True)
        conn.create_function(SQLITE_POINT_IN_POLYGON, 2, point_in_polygon, deterministic=True)
        conn.create_function(SQLITE_POINT_EQUALS, 3, point_equals, deterministic=True)

    async def connect(self) -> None:
        if self._connected:
            return
        if self.config.path != ":memory:":
            Path(self.config.path).parent.mkdir(parents=True, exist_ok=True)
        self._connected = True
        logger.info("Connected to SQLite", extra={"path": self.config.path})

    async def close(self) -> None:
        self._connected = False

    async def ensure_schema(self, table: str) -> None:
        assert_valid_table_name(table)
        async with self._lock:
            with self._get_connection() as conn:
                _create_schema(conn, table)
                logger.info(f"Initialized SQLite schema for table: {table}")

    async def command(self, query: str, params: dict[str, Any] | None = None) -> None:
        with self._get_connection() as conn:
            conn.execute(query, params or {})

    async def query(
        self, query: str, params: dict[str, Any] | None = None
    ) -> list[dict[str, Any]]:
        with self._get_connection() as conn:
            cursor = conn.execute(query, params or {})
            return [dict(row) for row in cursor.fetchall()]

    async def stream(
        self, query: str, params: dict[str, Any] | None = None
    ) -> AsyncIterator[dict[str, Any]]:
        with self._get_connection() as conn:
            for row in conn.execute(query, params or {}):
                yield dict(row)

    async def insert(self, table: str, rows: list[dict[str, Any]]) -> None:
        if not rows:
            return
        assert_valid_table_name(table)
        columns = list(rows[0].keys())
        placeholders = ", ".join("?" for _ in columns)
        sql = f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({placeholders})"
        values = [tuple(_encode_value(row.get(col)) for col in columns) for row in rows]
        with self._get_connection() as conn:
            conn.execute("BEGIN")
            try:
                conn.executemany(sql, values)
                conn.execute("COMMIT")
            except sqlite3.Error:
                conn.execute("ROLLBACK")
                raise
        logger.debug(f"Inserted {len(rows)} rows", extra={"table": table})
