"""
Transaction staging.

The backend has no multi-statement transactions, so MergeDoc emulates them
with the append-only `actions` table:

    begin     -> append a pending metadata record (optionally with an expiry)
    write     -> append document rows tagged with txId, status pending
    commit    -> copy the staged rows into the document table with one
                 INSERT ... SELECT, index their edges, append a committed record
    rollback  -> append an aborted record; staged rows stay where they are

The status of a transaction is the txStatus of its latest metadata record
(same rank-and-filter rule as documents, partitioned by ns, txId).

States:
    pending -> committed
    pending -> aborted
    committed / aborted are terminal

Invariants:
    - Staged rows never reach the document table unless commit runs
    - commit/rollback of an empty, unknown or terminal id is a silent no-op
    - Expiry is advisory: nothing here sweeps expired transactions, and an
      expired-but-pending transaction can still be committed. Janitors call
      list_expired() / abort_expired().
    - No isolation: reads inside a transaction see committed data only
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import TYPE_CHECKING, Any

from ..backends.base import STAGING_TABLE, Backend
from ..ids import IdType, next_id, next_version
from ..query.compiler import QueryCompiler
from ..timestamps import now_ms, to_millis
from .projection import DOCUMENT_COLUMNS, TX_COLUMNS, TX_KEY, LatestProjection
from .transform import parse_data

if TYPE_CHECKING:
    from ..schema.registry import CollectionLookup
    from .relationships import RelationshipIndex

logger = logging.getLogger(__name__)

TX_METADATA_TYPE = "_tx_metadata"
VERSIONS_TYPE_PREFIX = "_versions_"

# Default for begin(timeout=...): use the configured timeout
DEFAULT_TIMEOUT = object()


class TxStatus(str, Enum):
    """Transaction status values stored in txStatus."""

    PENDING = "pending"
    COMMITTED = "committed"
    ABORTED = "aborted"


_RECORD_IDS = {
    TxStatus.PENDING: "_tx_metadata",
    TxStatus.COMMITTED: "_tx_committed",
    TxStatus.ABORTED: "_tx_aborted",
}


def staged_rows(
    rows: list[dict[str, Any]],
    tx_id: str,
    created_at: Any,
) -> list[dict[str, Any]]:
    """Tag document rows for the staging table."""
    return [
        {
            "txId": tx_id,
            "txStatus": TxStatus.PENDING.value,
            "txTimeout": None,
            "txCreatedAt": created_at,
            **row,
        }
        for row in rows
    ]


class TransactionManager:
    """Begin/commit/rollback over the staging table.

    Attributes:
        backend: Storage backend
        namespace: Namespace transactions are scoped to
        table: Document table committed rows are copied into
        default_timeout_ms: Expiry applied by begin() when none is given
    """

    def __init__(
        self,
        backend: Backend,
        namespace: str,
        table: str,
        relationships: "RelationshipIndex",
        collections: "CollectionLookup",
        default_timeout_ms: int | None = 30_000,
        id_type: IdType = IdType.TEXT,
    ) -> None:
        self.backend = backend
        self.namespace = namespace
        self.table = table
        self.relationships = relationships
        self.collections = collections
        self.default_timeout_ms = default_timeout_ms
        self.id_type = id_type
        self.projection = LatestProjection(STAGING_TABLE, TX_COLUMNS, TX_KEY)

    def _compiler(self) -> QueryCompiler:
        return QueryCompiler(self.backend.dialect)

    async def stage(self, rows: list[dict[str, Any]], tx_id: str) -> None:
        """Append document rows to the staging table under tx_id."""
        stamp = self.backend.dialect.timestamp_value(now_ms())
        await self.backend.insert(STAGING_TABLE, staged_rows(rows, tx_id, stamp))
        logger.debug(f"Staged {len(rows)} rows", extra={"tx_id": tx_id})

    async def _append_record(
        self, tx_id: str, status: TxStatus, timeout_at: int | None = None
    ) -> None:
        dialect = self.backend.dialect
        now = now_ms()
        record = {
            "txId": tx_id,
            "txStatus": status.value,
            "txTimeout": dialect.timestamp_value(timeout_at),
            "txCreatedAt": dialect.timestamp_value(now),
            "id": _RECORD_IDS[status],
            "ns": self.namespace,
            "type": TX_METADATA_TYPE,
            "v": dialect.timestamp_value(next_version()),
            "data": {},
            "title": "",
            "createdAt": dialect.timestamp_value(now),
            "createdBy": None,
            "updatedAt": dialect.timestamp_value(now),
            "updatedBy": None,
            "deletedAt": None,
            "deletedBy": None,
        }
        await self.backend.insert(STAGING_TABLE, [record])

    async def begin(self, timeout: Any = DEFAULT_TIMEOUT) -> str:
        """Start a transaction.

        Args:
            timeout: Milliseconds until the transaction counts as expired;
                None for no expiry; omitted for the configured default

        Returns:
            New transaction id
        """
        if timeout is DEFAULT_TIMEOUT:
            timeout = self.default_timeout_ms
        tx_id = next_id(self.id_type)
        timeout_at = now_ms() + int(timeout) if timeout is not None else None
        await self._append_record(tx_id, TxStatus.PENDING, timeout_at)
        logger.info("Transaction started", extra={"tx_id": tx_id, "timeout_ms": timeout})
        return tx_id

    async def _latest_record(self, tx_id: str) -> dict[str, Any] | None:
        qb = self._compiler()
        inner = (
            f"ns = {qb.add_named_param('ns', self.namespace)} "
            f"AND txId = {qb.add_named_param('txId', tx_id)} "
            f"AND type = {qb.add_named_param('metaType', TX_METADATA_TYPE)}"
        )
        sql = self.projection.select(
            inner, live_only=False, columns=("txId", "txStatus", "txTimeout", "txCreatedAt")
        )
        rows = await self.backend.query(sql, qb.get_params())
        return rows[0] if rows else None

    async def status(self, tx_id: str | None) -> TxStatus | None:
        """Current status, or None for an empty or unknown id."""
        if not tx_id:
            return None
        record = await self._latest_record(tx_id)
        if record is None:
            return None
        return TxStatus(record["txStatus"])

    def _staged_where(self, qb: QueryCompiler, tx_id: str) -> str:
        return (
            f"ns = {qb.add_named_param('ns', self.namespace)} "
            f"AND txId = {qb.add_named_param('txId', tx_id)} "
            f"AND txStatus = {qb.add_named_param('pending', TxStatus.PENDING.value)} "
            f"AND type != {qb.add_named_param('metaType', TX_METADATA_TYPE)}"
        )

    async def staged(self, tx_id: str) -> list[dict[str, Any]]:
        """Document rows staged under tx_id, in staging order of version."""
        qb = self._compiler()
        sql = (
            f"SELECT {', '.join(DOCUMENT_COLUMNS)} FROM {STAGING_TABLE} "
            f"WHERE {self._staged_where(qb, tx_id)} ORDER BY v"
        )
        return await self.backend.query(sql, qb.get_params())

    async def commit(self, tx_id: str | None) -> bool:
        """Publish a pending transaction's staged rows.

        Returns:
            True when the transaction was committed by this call
        """
        if await self.status(tx_id) is not TxStatus.PENDING:
            logger.debug("Commit skipped: transaction is not pending", extra={"tx_id": tx_id})
            return False

        qb = self._compiler()
        columns = ", ".join(DOCUMENT_COLUMNS)
        copy = (
            f"INSERT INTO {self.table} ({columns}) "
            f"SELECT {columns} FROM {STAGING_TABLE} WHERE {self._staged_where(qb, tx_id)}"
        )
        await self.backend.command(copy, qb.get_params())

        rows = await self.staged(tx_id)
        for row in rows:
            await self._index(row)

        await self._append_record(tx_id, TxStatus.COMMITTED)
        logger.info("Transaction committed", extra={"tx_id": tx_id, "rows": len(rows)})
        return True

    async def _index(self, row: dict[str, Any]) -> None:
        doc_type = row["type"]
        v = to_millis(row["v"])
        if row.get("deletedAt") is not None:
            await self.relationships.soft_delete_document(row["ns"], doc_type, row["id"], v)
            return
        if doc_type.startswith(VERSIONS_TYPE_PREFIX):
            return
        collection = self.collections.get_collection(doc_type)
        if collection is None:
            return
        await self.relationships.sync_document(
            parse_data(row.get("data")), collection.fields, row["ns"], doc_type, row["id"], v
        )

    async def rollback(self, tx_id: str | None) -> bool:
        """Abort a pending transaction.

        Returns:
            True when the transaction was aborted by this call
        """
        if await self.status(tx_id) is not TxStatus.PENDING:
            logger.debug("Rollback skipped: transaction is not pending", extra={"tx_id": tx_id})
            return False
        await self._append_record(tx_id, TxStatus.ABORTED)
        logger.info("Transaction rolled back", extra={"tx_id": tx_id})
        return True

    async def list_expired(self, now: int | None = None) -> list[str]:
        """Ids of pending transactions whose expiry is before `now` (ms)."""
        now = now_ms() if now is None else now
        qb = self._compiler()
        inner = (
            f"ns = {qb.add_named_param('ns', self.namespace)} "
            f"AND type = {qb.add_named_param('metaType', TX_METADATA_TYPE)}"
        )
        outer = (
            f"txStatus = {qb.add_named_param('pending', TxStatus.PENDING.value)} "
            f"AND txTimeout IS NOT NULL AND txTimeout < {qb.add_timestamp(now, 'now')}"
        )
        sql = self.projection.select(
            inner, outer, live_only=False, columns=("txId",), suffix="ORDER BY txId"
        )
        rows = await self.backend.query(sql, qb.get_params())
        return [row["txId"] for row in rows]

    async def abort_expired(self, now: int | None = None) -> list[str]:
        """Roll back every expired pending transaction; returns their ids."""
        aborted = []
        for tx_id in await self.list_expired(now):
            if await self.rollback(tx_id):
                aborted.append(tx_id)
        if aborted:
            logger.info(f"Aborted {len(aborted)} expired transactions")
        return aborted
