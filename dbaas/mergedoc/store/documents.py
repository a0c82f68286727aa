"""
Versioned document store.

Documents are never updated or deleted in place. Every write appends a full
row with a fresh version `v`; the current state of (ns, type, id) is its
max-v row, and the document is live only if that row has no deletedAt.

Write protocol:
    create       -> append row (deletedAt NULL) + its edges
    update       -> read latest live row, deep-merge, append row + re-index edges
    soft delete  -> append tombstone (v = deletedAt = max(next, prev + 1),
                    data {}), then tombstone the document's edges
    tx_id given  -> rows go to the staging table; edges wait for commit

Read protocol:
    rank rows per (ns, type, id) by v DESC, keep rank 1, drop tombstones,
    then apply the caller's filter, sort and page (see projection.py)

Invariants:
    - Rows are only ever appended
    - Caller filters are applied after ranking, never inside it
    - createdAt/createdBy survive updates; callers may override timestamps
    - Sensitive fields (password, confirm-password) are never stored

How to change safely:
    - Any new read path must go through LatestProjection
    - New columns must be added to DOCUMENT_COLUMNS and both backends' DDL
"""

from __future__ import annotations

import logging
from typing import Any, Mapping, Sequence

from ..backends.base import EVENTS_TABLE, STAGING_TABLE, Backend
from ..errors import CollectionNotFoundError, NotFoundError
from ..ids import IdType, next_id, next_version
from ..models import PaginatedDistinct, PaginatedDocs, paging
from ..query.compiler import QueryCompiler
from ..query.sort import build_limit_offset, build_order_by
from ..sanitize import assert_valid_namespace, assert_valid_slug, assert_valid_table_name
from ..schema.registry import CollectionLookup
from ..schema.types import CollectionDef
from ..timestamps import to_iso, to_millis
from .projection import document_projection
from .relationships import RelationshipIndex, extract_relationships
from .transactions import TransactionManager
from .transform import (
    deep_merge,
    extract_title,
    parse_data,
    row_to_document,
    split_document,
    strip_sensitive_fields,
)

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 10

Where = Mapping[str, Any] | None
Sort = str | Sequence[str] | Mapping[str, Any] | None


class DocumentStore:
    """CRUD over the append-only document table.

    Attributes:
        backend: Storage backend
        namespace: Namespace every row is scoped to
        table: Document table name
        collections: Collection metadata lookup
        relationships: Edge index for this table
        transactions: Staging manager used when tx_id is given

    Example:
        >>> doc = await store.create("posts", {"title": "Hello"})
        >>> await store.update_one("posts", {"title": "Hi"}, id=doc["id"])
        >>> await store.delete_one("posts", id=doc["id"])
        >>> await store.find_by_id("posts", doc["id"]) is None
        True
    """

    def __init__(
        self,
        backend: Backend,
        namespace: str,
        table: str,
        collections: CollectionLookup,
        relationships: RelationshipIndex,
        transactions: TransactionManager,
        id_type: IdType = IdType.TEXT,
    ) -> None:
        self.backend = backend
        self.namespace = assert_valid_namespace(namespace)
        self.table = assert_valid_table_name(table)
        self.collections = collections
        self.relationships = relationships
        self.transactions = transactions
        self.id_type = id_type
        self.projection = document_projection(self.table)

    # --- helpers ---

    def compiler(self) -> QueryCompiler:
        return QueryCompiler(self.backend.dialect)

    def require_collection(self, slug: str) -> CollectionDef:
        assert_valid_slug(slug)
        collection = self.collections.get_collection(slug)
        if collection is None:
            raise CollectionNotFoundError(slug)
        return collection

    def make_row(
        self,
        doc_type: str,
        doc_id: str,
        v: int,
        data: dict[str, Any],
        title: str,
        created_at: int,
        updated_at: int,
        created_by: str | None = None,
        updated_by: str | None = None,
        deleted_at: int | None = None,
        deleted_by: str | None = None,
    ) -> dict[str, Any]:
        """Build one document row ready for Backend.insert()."""
        ts = self.backend.dialect.timestamp_value
        return {
            "ns": self.namespace,
            "type": doc_type,
            "id": doc_id,
            "v": ts(v),
            "title": title,
            "data": data,
            "createdAt": ts(created_at),
            "createdBy": created_by,
            "updatedAt": ts(updated_at),
            "updatedBy": updated_by,
            "deletedAt": ts(deleted_at),
            "deletedBy": deleted_by,
        }

    async def write(self, rows: list[dict[str, Any]], tx_id: str | None = None) -> None:
        """Append rows to the document table, or stage them under tx_id."""
        if not rows:
            return
        if tx_id:
            await self.transactions.stage(rows, tx_id)
        else:
            await self.backend.insert(self.table, rows)
            logger.debug(f"Appended {len(rows)} document rows", extra={"table": self.table})

    async def locate(
        self,
        doc_type: str,
        where: Where = None,
        doc_id: str | None = None,
        sort: Sort = None,
        limit: int = 0,
    ) -> list[dict[str, Any]]:
        """Latest live rows of a type matching an optional id and filter."""
        assert_valid_slug(doc_type)
        qb = self.compiler()
        inner = qb.build_base_where(self.namespace, doc_type)
        if doc_id is not None:
            inner = f"{inner} AND id = {qb.add_named_param('id', str(doc_id))}"
        outer = qb.compile(dict(where) if where else None)
        suffix = ""
        if sort is not None:
            suffix = build_order_by(sort, qb.dialect)
        if limit > 0:
            suffix = f"{suffix} LIMIT {int(limit)}".strip()
        sql = self.projection.select(inner, outer, suffix=suffix)
        return await self.backend.query(sql, qb.get_params())

    # --- reads ---

    async def find_by_id(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        rows = await self.locate(collection, doc_id=doc_id, limit=1)
        return row_to_document(rows[0]) if rows else None

    async def get(self, collection: str, doc_id: str) -> dict[str, Any]:
        """Like find_by_id but raises NotFoundError."""
        doc = await self.find_by_id(collection, doc_id)
        if doc is None:
            raise NotFoundError(collection, doc_id)
        return doc

    async def find_one(
        self, collection: str, where: Where = None, sort: Sort = None
    ) -> dict[str, Any] | None:
        rows = await self.locate(collection, where=where, sort=sort, limit=1)
        return row_to_document(rows[0]) if rows else None

    async def count(self, collection: str, where: Where = None) -> int:
        assert_valid_slug(collection)
        qb = self.compiler()
        inner = qb.build_base_where(self.namespace, collection)
        outer = qb.compile(dict(where) if where else None)
        rows = await self.backend.query(self.projection.count(inner, outer), qb.get_params())
        return int(rows[0]["total"]) if rows else 0

    async def find(
        self,
        collection: str,
        where: Where = None,
        sort: Sort = None,
        limit: int | None = None,
        page: int = 1,
        pagination: bool = True,
    ) -> PaginatedDocs:
        """List live documents.

        Args:
            collection: Collection slug
            where: Filter applied after ranking
            sort: "field" / "-field" (comma-separated), list or mapping
            limit: Page size; 0 means no limit. Defaults to 10, or to no
                limit when pagination is off
            page: 1-based page (ignored when pagination is off)
            pagination: Page through results
        """
        assert_valid_slug(collection)
        if limit is None:
            limit = DEFAULT_LIMIT if pagination else 0
        page = max(page, 1) if pagination else 1

        qb = self.compiler()
        inner = qb.build_base_where(self.namespace, collection)
        outer = qb.compile(dict(where) if where else None)
        suffix = f"{build_order_by(sort, qb.dialect)} {build_limit_offset(limit, page)}".strip()
        params = qb.get_params()

        rows = await self.backend.query(self.projection.select(inner, outer, suffix=suffix), params)
        count_rows = await self.backend.query(self.projection.count(inner, outer), params)
        total = int(count_rows[0]["total"]) if count_rows else 0

        return PaginatedDocs(
            docs=[row_to_document(row) for row in rows],
            **paging(total, limit, page),
        )

    async def find_distinct(
        self,
        collection: str,
        field: str,
        where: Where = None,
        sort: str | None = None,
        limit: int = DEFAULT_LIMIT,
        page: int = 1,
    ) -> PaginatedDistinct:
        """Distinct values of one field over live documents.

        Returns values as [{field: value}, ...] ordered by value (descending
        when sort starts with '-').
        """
        assert_valid_slug(collection)
        page = max(page, 1)
        qb = self.compiler()
        resolved = qb.field_expr(field)
        if resolved is None:
            return PaginatedDistinct(values=[], **paging(0, limit, page))
        expr = qb.dialect.sortable(*resolved)

        inner = qb.build_base_where(self.namespace, collection)
        outer = qb.compile(dict(where) if where else None)
        direction = "DESC" if sort and str(sort).startswith("-") else "ASC"
        suffix = f"ORDER BY value {direction} {build_limit_offset(limit, page)}".strip()
        params = qb.get_params()

        sql = self.projection.select(
            inner, outer, columns=(f"{expr} AS value",), distinct=True, suffix=suffix
        )
        rows = await self.backend.query(sql, params)
        count_sql = self.projection.count(inner, outer, expression=f"DISTINCT {expr}")
        count_rows = await self.backend.query(count_sql, params)
        total = int(count_rows[0]["total"]) if count_rows else 0

        return PaginatedDistinct(
            values=[{field: row["value"]} for row in rows],
            **paging(total, limit, page),
        )

    # --- writes ---

    def _new_row(
        self,
        collection: CollectionDef,
        data: Mapping[str, Any],
        user_id: str | None,
    ) -> tuple[dict[str, Any], dict[str, Any], int]:
        payload, created_at, updated_at = split_document(dict(data))
        payload = strip_sensitive_fields(payload)
        given_id = data.get("id")
        doc_id = str(given_id) if given_id not in (None, "") else next_id(self.id_type)
        v = next_version()
        created = to_millis(created_at) or v
        updated = to_millis(updated_at) or v
        row = self.make_row(
            collection.slug,
            doc_id,
            v,
            payload,
            extract_title(payload, collection.title_field, doc_id),
            created,
            updated,
            created_by=user_id,
            updated_by=user_id,
        )
        doc = {"id": doc_id, **payload, "createdAt": to_iso(created), "updatedAt": to_iso(updated)}
        return row, doc, v

    async def create(
        self,
        collection: str,
        data: Mapping[str, Any],
        user_id: str | None = None,
        tx_id: str | None = None,
        locale: str | None = None,
    ) -> dict[str, Any]:
        """Create a document.

        Args:
            collection: Collection slug (must be registered)
            data: Payload; may carry id, createdAt and updatedAt
            user_id: Recorded as createdBy/updatedBy
            tx_id: Stage the write in this transaction
            locale: Locale stamped on the document's edges

        Returns:
            The created document
        """
        collection_def = self.require_collection(collection)
        row, doc, v = self._new_row(collection_def, data, user_id)
        await self.write([row], tx_id)
        if not tx_id:
            await self.relationships.sync_document(
                row["data"],
                collection_def.fields,
                self.namespace,
                collection,
                doc["id"],
                v,
                locale,
                previous=data.get("id") not in (None, ""),
            )
        logger.debug("Created document", extra={"collection": collection, "id": doc["id"]})
        return doc

    async def bulk_append(
        self,
        collection: str,
        docs: Sequence[Mapping[str, Any]],
        user_id: str | None = None,
        tx_id: str | None = None,
        locale: str | None = None,
    ) -> list[dict[str, Any]]:
        """Append one new version per document in a single insert.

        No prior read is made: each document is written as given (not merged)
        and the read-side ranking makes the newest version win.
        """
        collection_def = self.require_collection(collection)
        rows, results, batches = [], [], []
        for data in docs:
            row, doc, v = self._new_row(collection_def, data, user_id)
            rows.append(row)
            results.append(doc)
            batches.append(
                (
                    extract_relationships(
                        row["data"], collection_def.fields, self.namespace, collection,
                        doc["id"], locale,
                    ),
                    v,
                )
            )
        await self.write(rows, tx_id)
        if not tx_id:
            await self.relationships.append(batches)
        return results

    async def update_rows(
        self,
        collection: CollectionDef,
        rows: list[dict[str, Any]],
        data: Mapping[str, Any],
        user_id: str | None,
        tx_id: str | None,
        locale: str | None,
    ) -> list[dict[str, Any]]:
        patch, created_at, updated_at = split_document(dict(data))
        patch = strip_sensitive_fields(patch)
        keep_updated_at = "updatedAt" in data and data["updatedAt"] is None

        new_rows, docs, indexed = [], [], []
        for existing in rows:
            merged = deep_merge(parse_data(existing.get("data")), patch)
            v = max(next_version(), (to_millis(existing["v"]) or 0) + 1)
            created = to_millis(created_at) or to_millis(existing["createdAt"]) or v
            if keep_updated_at:
                updated = to_millis(existing["updatedAt"]) or v
            else:
                updated = to_millis(updated_at) or v
            doc_id = existing["id"]
            new_rows.append(
                self.make_row(
                    collection.slug,
                    doc_id,
                    v,
                    merged,
                    extract_title(merged, collection.title_field, doc_id),
                    created,
                    updated,
                    created_by=existing.get("createdBy"),
                    updated_by=user_id,
                )
            )
            docs.append(
                {"id": doc_id, **merged, "createdAt": to_iso(created), "updatedAt": to_iso(updated)}
            )
            indexed.append((merged, doc_id, v))

        await self.write(new_rows, tx_id)
        if not tx_id and collection.fields:
            for merged, doc_id, v in indexed:
                await self.relationships.sync_document(
                    merged, collection.fields, self.namespace, collection.slug, doc_id, v, locale
                )
        return docs

    async def update_one(
        self,
        collection: str,
        data: Mapping[str, Any],
        id: str | None = None,
        where: Where = None,
        upsert: bool = False,
        user_id: str | None = None,
        tx_id: str | None = None,
        locale: str | None = None,
    ) -> dict[str, Any]:
        """Merge a partial payload into one live document.

        The document is addressed by id, or by the first match of where.
        Passing updatedAt=None keeps the stored updatedAt.

        Raises:
            NotFoundError: If nothing matches and upsert is off
        """
        collection_def = self.require_collection(collection)
        rows = await self.locate(collection, where=where, doc_id=id, limit=1)
        if not rows:
            if upsert:
                create_data = {**data, "id": id} if id is not None else dict(data)
                return await self.create(collection, create_data, user_id, tx_id, locale)
            raise NotFoundError(collection, id)
        docs = await self.update_rows(collection_def, rows, data, user_id, tx_id, locale)
        return docs[0]

    async def update_many(
        self,
        collection: str,
        data: Mapping[str, Any],
        where: Where = None,
        user_id: str | None = None,
        tx_id: str | None = None,
        locale: str | None = None,
    ) -> list[dict[str, Any]]:
        """Merge a partial payload into every matching live document (one insert)."""
        collection_def = self.require_collection(collection)
        rows = await self.locate(collection, where=where)
        if not rows:
            return []
        return await self.update_rows(collection_def, rows, data, user_id, tx_id, locale)

    async def upsert(
        self,
        collection: str,
        data: Mapping[str, Any],
        where: Where = None,
        user_id: str | None = None,
        tx_id: str | None = None,
        locale: str | None = None,
    ) -> dict[str, Any]:
        """Update the first match of where (or data's id), else create."""
        doc_id = data.get("id") if where is None else None
        if doc_id in (None, "") and where is None:
            return await self.create(collection, data, user_id, tx_id, locale)
        return await self.update_one(
            collection,
            data,
            id=doc_id,
            where=where,
            upsert=True,
            user_id=user_id,
            tx_id=tx_id,
            locale=locale,
        )

    async def upsert_many(
        self,
        collection: str,
        docs: Sequence[Mapping[str, Any]],
        bulk: bool = False,
        user_id: str | None = None,
        tx_id: str | None = None,
        locale: str | None = None,
    ) -> list[dict[str, Any]]:
        """Upsert several documents by id.

        With bulk=True every document is appended in one insert without a
        prior read (see bulk_append).
        """
        if bulk:
            return await self.bulk_append(collection, docs, user_id, tx_id, locale)
        results = []
        for data in docs:
            results.append(
                await self.upsert(collection, data, user_id=user_id, tx_id=tx_id, locale=locale)
            )
        return results

    def _tombstone(self, existing: dict[str, Any], user_id: str | None) -> tuple[dict[str, Any], int]:
        v = max(next_version(), (to_millis(existing["v"]) or 0) + 1)
        row = self.make_row(
            existing["type"],
            existing["id"],
            v,
            {},
            existing.get("title") or "",
            to_millis(existing["createdAt"]) or v,
            to_millis(existing["updatedAt"]) or v,
            created_by=existing.get("createdBy"),
            updated_by=existing.get("updatedBy"),
            deleted_at=v,
            deleted_by=user_id,
        )
        return row, v

    async def delete_one(
        self,
        collection: str,
        id: str | None = None,
        where: Where = None,
        user_id: str | None = None,
        tx_id: str | None = None,
    ) -> dict[str, Any] | None:
        """Soft-delete one live document.

        Returns:
            The document as it was before deletion, or None when nothing
            matched (a no-op)
        """
        rows = await self.locate(collection, where=where, doc_id=id, limit=1)
        if not rows:
            return None
        existing = rows[0]
        row, v = self._tombstone(existing, user_id)
        await self.write([row], tx_id)
        if not tx_id:
            await self.relationships.soft_delete_document(
                self.namespace, collection, existing["id"], v
            )
        logger.debug("Soft-deleted document", extra={"collection": collection, "id": existing["id"]})
        return row_to_document(existing)

    async def delete_many(
        self,
        collection: str,
        where: Where = None,
        user_id: str | None = None,
        tx_id: str | None = None,
    ) -> int:
        """Soft-delete every matching live document; returns how many."""
        rows = await self.locate(collection, where=where)
        if not rows:
            return 0
        tombstones = [self._tombstone(existing, user_id) for existing in rows]
        await self.write([row for row, _ in tombstones], tx_id)
        if not tx_id:
            for existing, (_, v) in zip(rows, tombstones):
                await self.relationships.soft_delete_document(
                    self.namespace, collection, existing["id"], v
                )
        return len(rows)

    # --- raw access ---

    async def execute(
        self, query: str, params: dict[str, Any] | None = None
    ) -> list[dict[str, Any]]:
        """Run a raw parameterized query. Placeholders follow the backend's dialect."""
        return await self.backend.query(query, params)

    async def drop_namespace(self) -> None:
        """Physically remove every row of this namespace. Test isolation only."""
        tables = (self.table, self.relationships.table, STAGING_TABLE, EVENTS_TABLE)
        for table in tables:
            qb = self.compiler()
            await self.backend.command(
                f"DELETE FROM {table} WHERE ns = {qb.add_named_param('ns', self.namespace)}",
                qb.get_params(),
            )
        logger.info("Dropped namespace", extra={"namespace": self.namespace})
