"""
Relationship edge index.

Every document version that references other documents also appends one
edge row per reference to <table>_relationships, stamped with the same
version. Edges follow the document table's discipline: append-only, latest
row per edge key wins, tombstones carry deletedAt.

Edge key (liveness partition):
    ns, fromType, fromId, fromField, toType, toId, position, locale

Invariants:
    - Edges are derived from payload + collection metadata only
    - Updating a document tombstones edges the new payload no longer has
    - Soft-deleting a document tombstones every live edge where it is the
      source and every live edge where it is the target, each with one
      INSERT ... SELECT parameterized only by (ns, type, id)
    - Reverse lookups (find_referencing) read through the latest-row projection

How to change safely:
    - Adding a container field kind means teaching _walk about it
    - Changing fromField semantics breaks existing join definitions
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterable

from ..backends.base import Backend, relationships_table
from ..query.compiler import QueryCompiler
from ..schema.types import FieldDef, FieldKind
from .projection import EDGE_COLUMNS, edge_projection

logger = logging.getLogger(__name__)

EMPTY_IDS = ("", "None", "null", "undefined")


@dataclass(frozen=True)
class Edge:
    """One reference from a document field to another document."""

    ns: str
    from_type: str
    from_id: str
    from_field: str
    to_type: str
    to_id: str
    position: int = 0
    locale: str | None = None

    @property
    def key(self) -> tuple[str, str, str, int, str | None]:
        """Identity of the edge within its source document."""
        return (self.from_field, self.to_type, self.to_id, self.position, self.locale)


def _edge_key(row: dict[str, Any]) -> tuple[str, str, str, int, str | None]:
    return (row["fromField"], row["toType"], row["toId"], int(row["position"]), row.get("locale"))


def _parse_reference(value: Any, relation_to: tuple[str, ...]) -> tuple[str, str] | None:
    if value is None:
        return None
    if isinstance(value, dict):
        if "relationTo" in value and "value" in value:
            target = value["value"]
            if isinstance(target, dict):
                target = target.get("id")
            to_type, to_id = str(value["relationTo"]), str(target)
        elif "id" in value:
            # populated document
            to_type, to_id = relation_to[0], str(value["id"])
        else:
            return None
    else:
        to_type, to_id = relation_to[0], str(value)
    if to_id in EMPTY_IDS:
        return None
    return to_type, to_id


def _walk(
    data: dict[str, Any],
    fields: Iterable[FieldDef],
    make: Any,
    out: list[Edge],
) -> None:
    for field_def in fields:
        kind = field_def.kind

        if kind.is_reference:
            value = data.get(field_def.name)
            if value is None:
                continue
            if field_def.has_many and isinstance(value, list):
                items = list(enumerate(value))
            else:
                items = [(0, value)]
            for position, item in items:
                parsed = _parse_reference(item, field_def.relation_to)
                if parsed is not None:
                    out.append(make(field_def.name, parsed[0], parsed[1], position))

        elif kind is FieldKind.GROUP:
            group = data.get(field_def.name)
            if isinstance(group, dict):
                _walk(group, field_def.fields, make, out)

        elif kind is FieldKind.ARRAY:
            rows = data.get(field_def.name)
            if isinstance(rows, list):
                for row in rows:
                    if isinstance(row, dict):
                        _walk(row, field_def.fields, make, out)

        elif kind is FieldKind.BLOCKS:
            blocks = data.get(field_def.name)
            if isinstance(blocks, list):
                by_slug = {block.slug: block for block in field_def.blocks}
                for block in blocks:
                    if not isinstance(block, dict):
                        continue
                    block_def = by_slug.get(block.get("blockType"))
                    if block_def is not None:
                        _walk(block, block_def.fields, make, out)

        elif kind is FieldKind.TABS:
            for tab in field_def.tabs:
                if tab.name:
                    tab_data = data.get(tab.name)
                    if isinstance(tab_data, dict):
                        _walk(tab_data, tab.fields, make, out)
                else:
                    _walk(data, tab.fields, make, out)


def extract_relationships(
    data: dict[str, Any],
    fields: Iterable[FieldDef],
    ns: str,
    from_type: str,
    from_id: str,
    locale: str | None = None,
) -> list[Edge]:
    """Derive the edges a document payload implies.

    Args:
        data: Document payload
        fields: Collection field definitions
        ns: Namespace
        from_type: Source collection slug
        from_id: Source document id
        locale: Locale stamped on every edge

    Returns:
        One edge per (field, target); has_many lists carry their index as
        position. Polymorphic {"relationTo", "value"} values pick the target
        type; plain values use the field's first relation_to.
    """

    def make(field_name: str, to_type: str, to_id: str, position: int) -> Edge:
        return Edge(ns, from_type, from_id, field_name, to_type, to_id, position, locale)

    edges: list[Edge] = []
    _walk(data, fields, make, edges)
    return edges


class RelationshipIndex:
    """Reads and writes the edge table for one document table.

    Attributes:
        backend: Storage backend
        table: Edge table name
    """

    def __init__(self, backend: Backend, table: str) -> None:
        self.backend = backend
        self.table = relationships_table(table)
        self.projection = edge_projection(self.table)

    def _compiler(self) -> QueryCompiler:
        return QueryCompiler(self.backend.dialect)

    def _row(self, edge: Edge, v: int, deleted_at: int | None = None) -> dict[str, Any]:
        dialect = self.backend.dialect
        return {
            "ns": edge.ns,
            "fromType": edge.from_type,
            "fromId": edge.from_id,
            "fromField": edge.from_field,
            "toType": edge.to_type,
            "toId": edge.to_id,
            "position": edge.position,
            "locale": edge.locale,
            "v": dialect.timestamp_value(v),
            "deletedAt": dialect.timestamp_value(deleted_at),
        }

    async def append(self, batches: Iterable[tuple[Iterable[Edge], int]]) -> None:
        """Append live edges in one insert; each batch carries its document version."""
        rows = [self._row(edge, v) for edges, v in batches for edge in edges]
        await self.backend.insert(self.table, rows)

    async def live_from(self, ns: str, from_type: str, from_id: str) -> list[dict[str, Any]]:
        """Live edges whose source is the given document."""
        qb = self._compiler()
        inner = (
            f"ns = {qb.add_named_param('ns', ns)} "
            f"AND fromType = {qb.add_named_param('fromType', from_type)} "
            f"AND fromId = {qb.add_named_param('fromId', from_id)}"
        )
        return await self.backend.query(self.projection.select(inner), qb.get_params())

    async def sync_document(
        self,
        data: dict[str, Any],
        fields: Iterable[FieldDef],
        ns: str,
        from_type: str,
        from_id: str,
        v: int,
        locale: str | None = None,
        previous: bool = True,
    ) -> list[Edge]:
        """Index a document version's edges.

        Appends the payload's edges with version v and, when `previous` is
        set, tombstones live edges from this document (same locale) that
        the payload no longer contains. All rows go out in one insert.

        Returns:
            The edges now live for the document
        """
        edges = extract_relationships(data, fields, ns, from_type, from_id, locale)
        rows = [self._row(edge, v) for edge in edges]

        if previous:
            keep = {edge.key for edge in edges}
            for row in await self.live_from(ns, from_type, from_id):
                if row.get("locale") != locale or _edge_key(row) in keep:
                    continue
                stale = Edge(
                    ns,
                    from_type,
                    from_id,
                    row["fromField"],
                    row["toType"],
                    row["toId"],
                    int(row["position"]),
                    row.get("locale"),
                )
                rows.append(self._row(stale, v, deleted_at=v))

        await self.backend.insert(self.table, rows)
        if rows:
            logger.debug(
                f"Indexed {len(edges)} edges ({len(rows) - len(edges)} tombstoned)",
                extra={"from_type": from_type, "from_id": from_id},
            )
        return edges

    async def _tombstone(self, ns: str, side: str, doc_type: str, doc_id: str, v: int) -> None:
        qb = self._compiler()
        inner = (
            f"ns = {qb.add_named_param('ns', ns)} "
            f"AND {side}Type = {qb.add_named_param('docType', doc_type)} "
            f"AND {side}Id = {qb.add_named_param('docId', doc_id)}"
        )
        stamp = qb.add_timestamp(v, "v")
        # INSERT ... SELECT maps by position; no aliases so deletedAt in the
        # rank filter still refers to the stored column
        columns = [
            stamp if column in ("v", "deletedAt") else column for column in EDGE_COLUMNS
        ]
        sql = (
            f"INSERT INTO {self.table} ({', '.join(EDGE_COLUMNS)}) "
            f"{self.projection.select(inner, columns=columns)}"
        )
        await self.backend.command(sql, qb.get_params())

    async def soft_delete_from(self, ns: str, doc_type: str, doc_id: str, v: int) -> None:
        """Tombstone every live edge where the document is the source."""
        await self._tombstone(ns, "from", doc_type, doc_id, v)

    async def soft_delete_to(self, ns: str, doc_type: str, doc_id: str, v: int) -> None:
        """Tombstone every live edge where the document is the target."""
        await self._tombstone(ns, "to", doc_type, doc_id, v)

    async def soft_delete_document(self, ns: str, doc_type: str, doc_id: str, v: int) -> None:
        await self.soft_delete_from(ns, doc_type, doc_id, v)
        await self.soft_delete_to(ns, doc_type, doc_id, v)
        logger.debug(
            "Propagated soft delete to edges",
            extra={"type": doc_type, "id": doc_id},
        )

    async def find_referencing(
        self,
        ns: str,
        to_type: str,
        to_ids: list[str],
        from_types: list[str] | tuple[str, ...] | None = None,
        from_field: str | None = None,
        locale: str | None = None,
    ) -> list[dict[str, Any]]:
        """Distinct live back-references to any of the given target ids.

        Returns:
            Rows {fromId, fromType, toId} ordered by toId, fromType, fromId
        """
        if not to_ids or (from_types is not None and not from_types):
            return []

        qb = self._compiler()
        conditions = [
            f"ns = {qb.add_named_param('ns', ns)}",
            f"toType = {qb.add_named_param('toType', to_type)}",
            f"toId IN ({', '.join(qb.add_param(str(i)) for i in to_ids)})",
        ]
        if from_types is not None:
            conditions.append(f"fromType IN ({', '.join(qb.add_param(t) for t in from_types)})")
        if from_field is not None:
            conditions.append(f"fromField = {qb.add_named_param('fromField', from_field)}")
        if locale is not None:
            conditions.append(f"locale = {qb.add_named_param('locale', locale)}")

        sql = self.projection.select(
            " AND ".join(conditions),
            columns=("fromId", "fromType", "toId"),
            distinct=True,
            suffix="ORDER BY toId, fromType, fromId",
        )
        return await self.backend.query(sql, qb.get_params())
