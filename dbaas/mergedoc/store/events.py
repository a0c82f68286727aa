"""
Append-only event log.

Events (API calls, document operations, anything a host wants to audit)
go to the `events` table with a ULID id, so ids sort in creation order.
Rows are never versioned or deleted; queries are plain filtered scans.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Mapping

from ..backends.base import EVENTS_TABLE, Backend
from ..ids import next_sortable_id
from ..models import PaginatedDocs, paging
from ..query.compiler import QueryCompiler, combine_where
from ..query.fields import EVENT_FIELDS
from ..query.sort import build_limit_offset, build_order_by
from ..timestamps import now_ms, to_iso

logger = logging.getLogger(__name__)

EVENT_COLUMNS = (
    "id",
    "ns",
    "timestamp",
    "type",
    "collection",
    "docId",
    "userId",
    "sessionId",
    "ip",
    "duration",
    "input",
    "result",
)


def _decode(value: Any) -> Any:
    if isinstance(value, str):
        try:
            return json.loads(value)
        except ValueError:
            return value
    return value


def row_to_event(row: dict[str, Any]) -> dict[str, Any]:
    return {
        **row,
        "timestamp": to_iso(row.get("timestamp")),
        "input": _decode(row.get("input")),
        "result": _decode(row.get("result")),
    }


class EventLog:
    """Writes and queries the events table for one namespace."""

    def __init__(self, backend: Backend, namespace: str) -> None:
        self.backend = backend
        self.namespace = namespace

    async def log_event(
        self,
        type: str,
        collection: str | None = None,
        doc_id: str | None = None,
        user_id: str | None = None,
        session_id: str | None = None,
        ip: str | None = None,
        duration: int = 0,
        input: Mapping[str, Any] | None = None,
        result: Mapping[str, Any] | None = None,
    ) -> str:
        """Append one event.

        Returns:
            The event's ULID
        """
        event_id = next_sortable_id()
        row = {
            "id": event_id,
            "ns": self.namespace,
            "timestamp": self.backend.dialect.timestamp_value(now_ms()),
            "type": type,
            "collection": collection,
            "docId": doc_id,
            "userId": user_id,
            "sessionId": session_id,
            "ip": ip,
            "duration": max(int(duration), 0),
            "input": json.dumps(dict(input or {}), default=str),
            "result": json.dumps(dict(result or {}), default=str),
        }
        await self.backend.insert(EVENTS_TABLE, [row])
        logger.debug("Logged event", extra={"event_type": type, "event_id": event_id})
        return event_id

    async def query_events(
        self,
        where: Mapping[str, Any] | None = None,
        sort: str = "-timestamp",
        limit: int = 10,
        page: int = 1,
    ) -> PaginatedDocs:
        """Filter, sort and page events. Filters may use the event columns only."""
        page = max(page, 1)
        qb = QueryCompiler(self.backend.dialect, fields=EVENT_FIELDS)
        base = f"ns = {qb.add_named_param('ns', self.namespace)}"
        where_clause = combine_where(base, qb.compile(dict(where) if where else None))
        order_by = build_order_by(
            sort, self.backend.dialect, fields=EVENT_FIELDS, default="ORDER BY timestamp DESC"
        )
        params = qb.get_params()

        columns = ", ".join(EVENT_COLUMNS)
        sql = (
            f"SELECT {columns} FROM {EVENTS_TABLE} WHERE {where_clause} "
            f"{order_by} {build_limit_offset(limit, page)}"
        ).strip()
        rows = await self.backend.query(sql, params)
        count_rows = await self.backend.query(
            f"SELECT count(*) AS total FROM {EVENTS_TABLE} WHERE {where_clause}", params
        )
        total = int(count_rows[0]["total"]) if count_rows else 0

        return PaginatedDocs(docs=[row_to_event(row) for row in rows], **paging(total, limit, page))
