"""
Join resolution over the relationship index.

A join on collection C named `related` with {collection: "posts", on:
"category"} lists, for every C document, the posts whose `category` field
points at it. Nothing is stored for joins: each request reads live
back-references from the edge table and pages through them per parent.

Result shape attached at the join path (dots create nested dicts):

    {"docs": [<id> | {"relationTo", "value"}], "hasNextPage": bool,
     "totalDocs": int (only when count was requested)}
"""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Any, Mapping

from pydantic import ValidationError

from ..models import JoinQuery
from ..schema.registry import CollectionLookup
from ..schema.types import JoinDef
from .relationships import RelationshipIndex

logger = logging.getLogger(__name__)

DEFAULT_JOIN_LIMIT = 10


def attach(doc: dict[str, Any], path: str, value: Any) -> None:
    """Set value at a dot-separated path, creating intermediate dicts."""
    parts = path.split(".")
    target = doc
    for part in parts[:-1]:
        child = target.get(part)
        if not isinstance(child, dict):
            child = {}
            target[part] = child
        target = child
    target[parts[-1]] = value


def paginate(
    matches: list[dict[str, Any]],
    join: JoinDef,
    query: JoinQuery,
) -> dict[str, Any]:
    """Page one parent's back-references."""
    limit = query.limit
    if limit is None:
        limit = join.default_limit if join.default_limit is not None else DEFAULT_JOIN_LIMIT
    skip = (query.page - 1) * limit
    if limit == 0:
        selected, has_next = matches, False
    else:
        selected, has_next = matches[skip : skip + limit], len(matches) > skip + limit

    if join.is_polymorphic:
        docs = [{"relationTo": m["fromType"], "value": m["fromId"]} for m in selected]
    else:
        docs = [m["fromId"] for m in selected]

    result: dict[str, Any] = {"docs": docs, "hasNextPage": has_next}
    if query.count:
        result["totalDocs"] = len(matches)
    return result


def _parse_query(raw: Any) -> JoinQuery | None:
    if raw is False or raw is None:
        return None
    if raw is True:
        return JoinQuery()
    if isinstance(raw, JoinQuery):
        return raw
    try:
        return JoinQuery.model_validate(raw)
    except ValidationError:
        logger.warning("Ignoring malformed join query", extra={"join_query": repr(raw)})
        return None


class JoinResolver:
    """Attaches join results to already-loaded documents."""

    def __init__(
        self,
        relationships: RelationshipIndex,
        collections: CollectionLookup,
        namespace: str,
    ) -> None:
        self.relationships = relationships
        self.collections = collections
        self.namespace = namespace

    async def resolve_joins(
        self,
        collection: str,
        docs: list[dict[str, Any]],
        joins: Mapping[str, Any] | None,
        locale: str | None = None,
        versions: bool = False,
    ) -> list[dict[str, Any]]:
        """Resolve requested joins in place.

        Args:
            collection: Slug of the documents' collection
            docs: Documents (or version documents when versions=True)
            joins: Join path -> {limit, page, count}; False skips a join
            locale: Only follow edges written for this locale
            versions: Docs are version documents; key by parent, attach
                under doc["version"]

        Returns:
            The same docs list
        """
        if not joins or not docs:
            return docs
        collection_def = self.collections.get_collection(collection)
        if collection_def is None:
            return docs

        def key_of(doc: dict[str, Any]) -> str:
            if versions:
                return str(doc.get("parent") if doc.get("parent") is not None else doc["id"])
            return str(doc["id"])

        parent_ids = list(dict.fromkeys(key_of(doc) for doc in docs))

        for path, raw_query in joins.items():
            query = _parse_query(raw_query)
            if query is None:
                continue
            join = collection_def.get_join(path)
            if join is None:
                logger.debug(f"Unknown join '{path}' on {collection}")
                continue

            matches = await self.relationships.find_referencing(
                self.namespace,
                collection,
                parent_ids,
                from_types=join.targets,
                from_field=join.on,
                locale=locale,
            )
            by_parent: dict[str, list[dict[str, Any]]] = defaultdict(list)
            for match in matches:
                by_parent[str(match["toId"])].append(match)

            for doc in docs:
                target = doc
                if versions:
                    target = doc.setdefault("version", {})
                attach(target, join.name, paginate(by_parent.get(key_of(doc), []), join, query))

        return docs
