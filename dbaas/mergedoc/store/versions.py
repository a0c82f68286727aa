"""
Version history.

Versions of a collection's documents are ordinary rows in the document
table under type `_versions_<slug>`. The version payload is stored directly
in data next to two bookkeeping keys:

    _parentId   id of the document the version belongs to
    _autosave   whether the version came from an autosave

Whether a version is the latest one for its parent is never stored; it is
computed at read time by ranking live versions per _parentId.

Callers filter on `parent`, `autosave` and `latest` (plus `version.<path>`
for payload fields); the first two are rewritten to the stored keys and
`latest` selects the rank.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping

from ..errors import NotFoundError
from ..ids import next_id, next_version
from ..models import PaginatedDocs, paging
from ..query.sort import build_limit_offset, build_order_by
from ..schema.types import CollectionDef
from ..timestamps import to_iso, to_millis
from .documents import DocumentStore, Sort, Where
from .projection import DOCUMENT_COLUMNS
from .transactions import VERSIONS_TYPE_PREFIX
from .transform import extract_title, parse_data

logger = logging.getLogger(__name__)

PARENT_KEY = "_parentId"
AUTOSAVE_KEY = "_autosave"

_RENAMES = {"parent": PARENT_KEY, "autosave": AUTOSAVE_KEY}


def versions_type(collection: str) -> str:
    return f"{VERSIONS_TYPE_PREFIX}{collection}"


def _latest_value(condition: Any) -> bool | None:
    if isinstance(condition, Mapping):
        condition = condition.get("equals")
    if isinstance(condition, str):
        return condition.lower() == "true"
    return None if condition is None else bool(condition)


def rewrite_where(where: Where) -> tuple[dict[str, Any] | None, bool | None]:
    """Map caller keys to stored keys and pull out the top-level `latest` condition.

    Returns:
        (rewritten where, latest) where latest is True, False or None
    """
    if not where:
        return None, None

    def rewrite(node: Any) -> Any:
        if isinstance(node, list):
            return [rewrite(item) for item in node]
        if not isinstance(node, Mapping):
            return node
        out = {}
        for key, value in node.items():
            if key in ("and", "or"):
                out[key] = rewrite(value)
            else:
                out[_RENAMES.get(key, key)] = value
        return out

    conditions = dict(where)
    latest = _latest_value(conditions.pop("latest")) if "latest" in conditions else None
    rewritten = rewrite(conditions)
    return (rewritten or None), latest


def row_to_version(row: dict[str, Any]) -> dict[str, Any]:
    data = parse_data(row.get("data"))
    parent = data.pop(PARENT_KEY, None)
    autosave = bool(data.pop(AUTOSAVE_KEY, False))
    return {
        "id": row["id"],
        "parent": parent,
        "autosave": autosave,
        "createdAt": to_iso(row.get("createdAt")),
        "updatedAt": to_iso(row.get("updatedAt")),
        "version": data,
    }


class VersionHistory:
    """Version-history operations on top of a DocumentStore."""

    def __init__(self, store: DocumentStore) -> None:
        self.store = store

    def _version_def(self, collection: str) -> CollectionDef:
        parent = self.store.require_collection(collection)
        # no fields: version rows never produce edges
        return CollectionDef(slug=versions_type(collection), title_field=parent.title_field)

    async def create_version(
        self,
        collection: str,
        parent: str,
        version_data: Mapping[str, Any],
        autosave: bool = False,
        created_at: Any = None,
        updated_at: Any = None,
        user_id: str | None = None,
        tx_id: str | None = None,
    ) -> dict[str, Any]:
        """Append a new version of `parent`.

        Returns:
            {id, parent, autosave, createdAt, updatedAt, version}
        """
        version_def = self._version_def(collection)
        version_id = next_id(self.store.id_type)
        v = next_version()
        created = to_millis(created_at) or v
        updated = to_millis(updated_at) or v
        payload = dict(version_data)
        data = {**payload, AUTOSAVE_KEY: bool(autosave), PARENT_KEY: parent}
        row = self.store.make_row(
            version_def.slug,
            version_id,
            v,
            data,
            extract_title(payload, version_def.title_field, version_id),
            created,
            updated,
            created_by=user_id,
            updated_by=user_id,
        )
        await self.store.write([row], tx_id)
        logger.debug("Created version", extra={"collection": collection, "parent": parent})
        return {
            "id": version_id,
            "parent": parent,
            "autosave": bool(autosave),
            "createdAt": to_iso(created),
            "updatedAt": to_iso(updated),
            "version": payload,
        }

    def _select(self, collection: str, where: Where, suffix: str = "", count: bool = False):
        store = self.store
        rewritten, latest = rewrite_where(where)
        qb = store.compiler()
        inner = qb.build_base_where(store.namespace, versions_type(collection))
        outer = qb.compile(rewritten)

        if latest is None:
            if count:
                return store.projection.count(inner, outer), qb.get_params()
            return store.projection.select(inner, outer, suffix=suffix), qb.get_params()

        parent_expr = qb.dialect.sortable(qb.dialect.json_path("data", PARENT_KEY), False)
        columns = ", ".join(DOCUMENT_COLUMNS)
        live = store.projection.select(inner, outer)
        per_parent = (
            f"SELECT {columns}, "
            f"row_number() OVER (PARTITION BY {parent_expr} ORDER BY v DESC) AS _prn "
            f"FROM ({live}) AS live"
        )
        rank_filter = "_prn = 1" if latest else "_prn > 1"
        output = "count(*) AS total" if count else columns
        sql = f"SELECT {output} FROM ({per_parent}) AS versions WHERE {rank_filter}"
        if suffix and not count:
            sql = f"{sql} {suffix}"
        return sql, qb.get_params()

    async def find_versions(
        self,
        collection: str,
        where: Where = None,
        sort: Sort = "-createdAt",
        limit: int | None = None,
        page: int = 1,
        pagination: bool = True,
    ) -> PaginatedDocs:
        """List versions of a collection's documents.

        `where` may use parent, autosave, latest (true/false) and
        version.<path> in addition to the usual columns.
        """
        if limit is None:
            limit = 10 if pagination else 0
        page = max(page, 1) if pagination else 1
        dialect = self.store.backend.dialect
        suffix = f"{build_order_by(sort, dialect)} {build_limit_offset(limit, page)}".strip()

        sql, params = self._select(collection, where, suffix)
        rows = await self.store.backend.query(sql, params)
        count_sql, count_params = self._select(collection, where, count=True)
        count_rows = await self.store.backend.query(count_sql, count_params)
        total = int(count_rows[0]["total"]) if count_rows else 0

        return PaginatedDocs(docs=[row_to_version(row) for row in rows], **paging(total, limit, page))

    async def count_versions(self, collection: str, where: Where = None) -> int:
        sql, params = self._select(collection, where, count=True)
        rows = await self.store.backend.query(sql, params)
        return int(rows[0]["total"]) if rows else 0

    async def update_version(
        self,
        collection: str,
        version_data: Mapping[str, Any],
        id: str | None = None,
        where: Where = None,
        user_id: str | None = None,
        tx_id: str | None = None,
    ) -> dict[str, Any]:
        """Merge a partial version payload into one version.

        Raises:
            NotFoundError: If no live version matches
        """
        version_def = self._version_def(collection)
        rewritten, _ = rewrite_where(where)
        rows = await self.store.locate(version_def.slug, where=rewritten, doc_id=id, limit=1)
        if not rows:
            raise NotFoundError(version_def.slug, id)
        docs = await self.store.update_rows(version_def, rows, version_data, user_id, tx_id, None)
        doc = docs[0]
        data = {k: v for k, v in doc.items() if k not in ("id", "createdAt", "updatedAt")}
        return row_to_version(
            {"id": doc["id"], "data": data, "createdAt": doc["createdAt"], "updatedAt": doc["updatedAt"]}
        )

    async def delete_versions(self, collection: str, where: Where = None) -> int:
        """Soft-delete every matching version; returns how many."""
        rewritten, latest = rewrite_where(where)
        if latest is not None:
            page = await self.find_versions(collection, where, limit=0, pagination=False)
            ids = [doc["id"] for doc in page.docs]
            if not ids:
                return 0
            rewritten = {"id": {"in": ids}}
        return await self.store.delete_many(versions_type(collection), where=rewritten)
