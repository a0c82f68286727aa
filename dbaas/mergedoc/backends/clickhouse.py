"""
ClickHouse backend over the HTTP interface.

Statements are POSTed to the HTTP interface with httpx. Query parameters
travel as param_<name> URL parameters and are referenced in SQL as
{name:Type}; rows come back as JSONEachRow; bulk inserts send an NDJSON
body to `INSERT INTO <table> FORMAT JSONEachRow`.

Invariants:
    - Document and edge tables are ReplacingMergeTree(v) but FINAL is never
      used; readers rank rows themselves
    - All DateTime64 columns are UTC; results are requested in ISO format
    - HTTP error statuses raise BackendError with the server's message;
      transport errors from httpx propagate unchanged
    - Nothing is retried here

How to change safely:
    - Schema changes must stay column-compatible with the SQLite backend
    - New settings must be accepted by the oldest supported server
"""

from __future__ import annotations

import json
import logging
from typing import Any, AsyncIterator

import httpx

from ..config import ClickHouseConfig
from ..errors import BackendError, NotConnectedError
from ..query.dialect import ClickHouseDialect
from ..sanitize import assert_valid_table_name
from .base import EVENTS_TABLE, STAGING_TABLE, relationships_table

logger = logging.getLogger(__name__)

NULL_PARAM = "\\N"


def document_table_sql(table: str) -> str:
    return f"""
CREATE TABLE IF NOT EXISTS {table} (
    ns String,
    type String,
    id String,
    v DateTime64(3, 'UTC'),
    title String DEFAULT '',
    data JSON,
    createdAt DateTime64(3, 'UTC'),
    createdBy Nullable(String),
    updatedAt DateTime64(3, 'UTC'),
    updatedBy Nullable(String),
    deletedAt Nullable(DateTime64(3, 'UTC')),
    deletedBy Nullable(String)
) ENGINE = ReplacingMergeTree(v)
ORDER BY (ns, type, id, v)
"""


def relationships_table_sql(table: str) -> str:
    return f"""
CREATE TABLE IF NOT EXISTS {relationships_table(table)} (
    ns String,
    fromType String,
    fromId String,
    fromField String,
    toType String,
    toId String,
    position UInt16 DEFAULT 0,
    locale Nullable(String),
    v DateTime64(3, 'UTC'),
    deletedAt Nullable(DateTime64(3, 'UTC'))
) ENGINE = ReplacingMergeTree(v)
ORDER BY (ns, toType, toId, fromType, fromId, fromField, position)
"""


STAGING_TABLE_SQL = f"""
CREATE TABLE IF NOT EXISTS {STAGING_TABLE} (
    txId String,
    txStatus Enum8('pending' = 0, 'committed' = 1, 'aborted' = 2),
    txTimeout Nullable(DateTime64(3, 'UTC')),
    txCreatedAt DateTime64(3, 'UTC'),
    id String,
    ns String,
    type String,
    v DateTime64(3, 'UTC'),
    data JSON,
    title String DEFAULT '',
    createdAt DateTime64(3, 'UTC'),
    createdBy Nullable(String),
    updatedAt DateTime64(3, 'UTC'),
    updatedBy Nullable(String),
    deletedAt Nullable(DateTime64(3, 'UTC')),
    deletedBy Nullable(String)
) ENGINE = MergeTree
PARTITION BY toYYYYMM(txCreatedAt)
ORDER BY (ns, txId, type, id)
"""

EVENTS_TABLE_SQL = f"""
CREATE TABLE IF NOT EXISTS {EVENTS_TABLE} (
    id String,
    ns String,
    timestamp DateTime64(3, 'UTC'),
    type String,
    collection Nullable(String),
    docId Nullable(String),
    userId Nullable(String),
    sessionId Nullable(String),
    ip Nullable(String),
    duration UInt32 DEFAULT 0,
    input String DEFAULT '{{}}',
    result String DEFAULT '{{}}'
) ENGINE = MergeTree
ORDER BY (ns, timestamp, id)
"""


def encode_param(value: Any) -> str:
    """Encode a bound value for a param_<name> URL parameter."""
    if value is None:
        return NULL_PARAM
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, (dict, list)):
        return json.dumps(value)
    return str(value)


class ClickHouseBackend:
    """ClickHouse implementation of the Backend protocol.

    Attributes:
        config: ClickHouse configuration

    Example:
        >>> backend = ClickHouseBackend(ClickHouseConfig(url="http://localhost:8123"))
        >>> await backend.connect()
        >>> await backend.ensure_schema("mergedoc")
    """

    def __init__(
        self,
        config: ClickHouseConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the backend.

        Args:
            config: ClickHouse configuration
            transport: Optional httpx transport (tests inject a mock one)
        """
        self.config = config
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._dialect = ClickHouseDialect()

    @property
    def dialect(self) -> ClickHouseDialect:
        return self._dialect

    @property
    def is_connected(self) -> bool:
        """Whether an HTTP client is open."""
        return self._client is not None

    def _require_client(self) -> httpx.AsyncClient:
        if self._client is None:
            raise NotConnectedError("ClickHouse")
        return self._client

    async def connect(self) -> None:
        """Open the HTTP client and create the database if needed."""
        if self._client is not None:
            return

        database = assert_valid_table_name(self.config.database, "database")
        headers = {"X-ClickHouse-User": self.config.username}
        if self.config.password:
            headers["X-ClickHouse-Key"] = self.config.password

        self._client = httpx.AsyncClient(
            base_url=self.config.url,
            headers=headers,
            timeout=self.config.timeout_seconds,
            transport=self._transport,
        )
        try:
            await self._post(f"CREATE DATABASE IF NOT EXISTS {database}", use_database=False)
        except Exception:
            await self.close()
            raise

        logger.info(
            "Connected to ClickHouse",
            extra={"url": self.config.url, "database": database},
        )

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def _request_params(
        self,
        params: dict[str, Any] | None,
        use_database: bool = True,
        extra_settings: dict[str, str] | None = None,
    ) -> dict[str, str]:
        request_params = {
            "date_time_output_format": "iso",
            "output_format_json_quote_64bit_integers": "0",
            "session_timezone": self.config.timezone,
        }
        if use_database:
            request_params["database"] = self.config.database
        if extra_settings:
            request_params.update(extra_settings)
        for name, value in (params or {}).items():
            request_params[f"param_{name}"] = encode_param(value)
        return request_params

    @staticmethod
    def _raise_for_status(response: httpx.Response, query: str) -> None:
        if response.is_error:
            raise BackendError(
                response.text.strip() or f"ClickHouse returned HTTP {response.status_code}",
                status_code=response.status_code,
                query=query,
            )

    async def _post(
        self,
        query: str,
        params: dict[str, Any] | None = None,
        use_database: bool = True,
        extra_settings: dict[str, str] | None = None,
    ) -> httpx.Response:
        client = self._require_client()
        response = await client.post(
            "/",
            params=self._request_params(params, use_database, extra_settings),
            content=query.encode("utf-8"),
        )
        self._raise_for_status(response, query)
        return response

    @staticmethod
    def _with_format(query: str) -> str:
        return f"{query.strip().rstrip(';')}\nFORMAT JSONEachRow"

    async def ensure_schema(self, table: str) -> None:
        """Create the document, edge, staging and event tables."""
        assert_valid_table_name(table)
        statements = [
            document_table_sql(table),
            relationships_table_sql(table),
            STAGING_TABLE_SQL,
            EVENTS_TABLE_SQL,
        ]
        for statement in statements:
            await self._post(statement, extra_settings={"allow_experimental_json_type": "1"})
        logger.info("ClickHouse schema ensured", extra={"table": table})

    async def command(self, query: str, params: dict[str, Any] | None = None) -> None:
        await self._post(query, params, extra_settings={"wait_end_of_query": "1"})

    async def query(
        self, query: str, params: dict[str, Any] | None = None
    ) -> list[dict[str, Any]]:
        response = await self._post(self._with_format(query), params)
        return [json.loads(line) for line in response.text.splitlines() if line.strip()]

    async def stream(
        self, query: str, params: dict[str, Any] | None = None
    ) -> AsyncIterator[dict[str, Any]]:
        client = self._require_client()
        sql = self._with_format(query)
        async with client.stream(
            "POST", "/", params=self._request_params(params), content=sql.encode("utf-8")
        ) as response:
            if response.is_error:
                await response.aread()
                self._raise_for_status(response, sql)
            async for line in response.aiter_lines():
                if line.strip():
                    yield json.loads(line)

    async def insert(self, table: str, rows: list[dict[str, Any]]) -> None:
        if not rows:
            return
        client = self._require_client()
        assert_valid_table_name(table)
        statement = f"INSERT INTO {table} FORMAT JSONEachRow"
        body = "\n".join(json.dumps(row, default=str) for row in rows)
        request_params = self._request_params(None)
        request_params["query"] = statement
        response = await client.post("/", params=request_params, content=body.encode("utf-8"))
        self._raise_for_status(response, statement)
        logger.debug(f"Inserted {len(rows)} rows", extra={"table": table})
