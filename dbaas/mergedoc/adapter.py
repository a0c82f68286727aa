"""
MergeDoc facade.

One object per (backend, namespace, table) wiring the document store, edge
index, join resolver, transaction staging, version history and event log
together. Hosts talk to this class only.

Example:
    >>> store = create_mergedoc(config, collections=[posts, categories])
    >>> async with store:
    ...     doc = await store.create("posts", {"title": "Hello"})
    ...     page = await store.find("posts", where={"title": {"like": "hel"}})
"""

from __future__ import annotations

import logging
from typing import Any, Iterable, Mapping, Sequence

from .backends.base import Backend, create_backend
from .config import StoreConfig
from .ids import IdType
from .models import PaginatedDistinct, PaginatedDocs
from .schema.registry import CollectionLookup, CollectionRegistry, get_registry
from .schema.types import CollectionDef
from .store.documents import DocumentStore, Sort, Where
from .store.events import EventLog
from .store.joins import JoinResolver
from .store.relationships import RelationshipIndex
from .store.transactions import DEFAULT_TIMEOUT, TransactionManager, TxStatus
from .store.versions import VersionHistory

logger = logging.getLogger(__name__)


class MergeDoc:
    """Versioned document store over an append-only backend.

    Attributes:
        backend: Storage backend
        collections: Collection metadata lookup
        documents: Document CRUD
        relationships: Edge index
        joins: Join resolver
        transactions: Transaction staging
        versions: Version history
        events: Event log
    """

    def __init__(
        self,
        backend: Backend,
        collections: CollectionLookup | Iterable[CollectionDef] | None = None,
        namespace: str = "default",
        table: str = "mergedoc",
        id_type: IdType | str = IdType.TEXT,
        transaction_timeout_ms: int | None = 30_000,
    ) -> None:
        if collections is None:
            collections = get_registry()
        elif not isinstance(collections, CollectionLookup):
            collections = CollectionRegistry(list(collections))
        if isinstance(id_type, str):
            id_type = IdType.from_str(id_type)

        self.backend = backend
        self.collections = collections
        self.relationships = RelationshipIndex(backend, table)
        self.transactions = TransactionManager(
            backend,
            namespace,
            table,
            self.relationships,
            collections,
            default_timeout_ms=transaction_timeout_ms,
            id_type=id_type,
        )
        self.documents = DocumentStore(
            backend,
            namespace,
            table,
            collections,
            self.relationships,
            self.transactions,
            id_type=id_type,
        )
        self.joins = JoinResolver(self.relationships, collections, namespace)
        self.versions = VersionHistory(self.documents)
        self.events = EventLog(backend, namespace)

    @classmethod
    def from_config(
        cls,
        config: StoreConfig,
        collections: CollectionLookup | Iterable[CollectionDef] | None = None,
    ) -> MergeDoc:
        """Build a store (not yet connected) from configuration."""
        docs = config.documents
        return cls(
            create_backend(config),
            collections,
            namespace=docs.namespace,
            table=docs.table,
            id_type=docs.id_type,
            transaction_timeout_ms=docs.transaction_timeout_ms,
        )

    @property
    def namespace(self) -> str:
        return self.documents.namespace

    @property
    def table(self) -> str:
        return self.documents.table

    @property
    def is_connected(self) -> bool:
        return self.backend.is_connected

    # --- lifecycle ---

    async def connect(self) -> None:
        """Connect the backend and create missing tables."""
        await self.backend.connect()
        await self.backend.ensure_schema(self.table)
        logger.info(
            "MergeDoc ready",
            extra={"namespace": self.namespace, "table": self.table},
        )

    async def close(self) -> None:
        await self.backend.close()

    async def __aenter__(self) -> MergeDoc:
        await self.connect()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    # --- documents ---

    async def create(
        self,
        collection: str,
        data: Mapping[str, Any],
        user_id: str | None = None,
        tx_id: str | None = None,
        locale: str | None = None,
    ) -> dict[str, Any]:
        return await self.documents.create(collection, data, user_id, tx_id, locale)

    async def find(
        self,
        collection: str,
        where: Where = None,
        sort: Sort = None,
        limit: int | None = None,
        page: int = 1,
        pagination: bool = True,
        joins: Mapping[str, Any] | None = None,
        locale: str | None = None,
    ) -> PaginatedDocs:
        """List live documents, optionally resolving joins on the page."""
        result = await self.documents.find(collection, where, sort, limit, page, pagination)
        if joins:
            await self.joins.resolve_joins(collection, result.docs, joins, locale)
        return result

    async def find_by_id(
        self,
        collection: str,
        id: str,
        joins: Mapping[str, Any] | None = None,
        locale: str | None = None,
    ) -> dict[str, Any] | None:
        doc = await self.documents.find_by_id(collection, id)
        if doc is not None and joins:
            await self.joins.resolve_joins(collection, [doc], joins, locale)
        return doc

    async def get(self, collection: str, id: str) -> dict[str, Any]:
        return await self.documents.get(collection, id)

    async def find_one(
        self,
        collection: str,
        where: Where = None,
        sort: Sort = None,
        joins: Mapping[str, Any] | None = None,
        locale: str | None = None,
    ) -> dict[str, Any] | None:
        doc = await self.documents.find_one(collection, where, sort)
        if doc is not None and joins:
            await self.joins.resolve_joins(collection, [doc], joins, locale)
        return doc

    async def count(self, collection: str, where: Where = None) -> int:
        return await self.documents.count(collection, where)

    async def find_distinct(
        self,
        collection: str,
        field: str,
        where: Where = None,
        sort: str | None = None,
        limit: int = 10,
        page: int = 1,
    ) -> PaginatedDistinct:
        return await self.documents.find_distinct(collection, field, where, sort, limit, page)

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
        return await self.documents.update_one(
            collection, data, id=id, where=where, upsert=upsert,
            user_id=user_id, tx_id=tx_id, locale=locale,
        )

    async def update_many(
        self,
        collection: str,
        data: Mapping[str, Any],
        where: Where = None,
        user_id: str | None = None,
        tx_id: str | None = None,
        locale: str | None = None,
    ) -> list[dict[str, Any]]:
        return await self.documents.update_many(collection, data, where, user_id, tx_id, locale)

    async def upsert(
        self,
        collection: str,
        data: Mapping[str, Any],
        where: Where = None,
        user_id: str | None = None,
        tx_id: str | None = None,
        locale: str | None = None,
    ) -> dict[str, Any]:
        return await self.documents.upsert(collection, data, where, user_id, tx_id, locale)

    async def upsert_many(
        self,
        collection: str,
        docs: Sequence[Mapping[str, Any]],
        bulk: bool = False,
        user_id: str | None = None,
        tx_id: str | None = None,
        locale: str | None = None,
    ) -> list[dict[str, Any]]:
        return await self.documents.upsert_many(collection, docs, bulk, user_id, tx_id, locale)

    async def bulk_append(
        self,
        collection: str,
        docs: Sequence[Mapping[str, Any]],
        user_id: str | None = None,
        tx_id: str | None = None,
        locale: str | None = None,
    ) -> list[dict[str, Any]]:
        return await self.documents.bulk_append(collection, docs, user_id, tx_id, locale)

    async def delete_one(
        self,
        collection: str,
        id: str | None = None,
        where: Where = None,
        user_id: str | None = None,
        tx_id: str | None = None,
    ) -> dict[str, Any] | None:
        return await self.documents.delete_one(collection, id, where, user_id, tx_id)

    async def delete_many(
        self,
        collection: str,
        where: Where = None,
        user_id: str | None = None,
        tx_id: str | None = None,
    ) -> int:
        return await self.documents.delete_many(collection, where, user_id, tx_id)

    async def execute(
        self, query: str, params: dict[str, Any] | None = None
    ) -> list[dict[str, Any]]:
        return await self.documents.execute(query, params)

    async def drop_namespace(self) -> None:
        await self.documents.drop_namespace()

    # --- joins ---

    async def resolve_joins(
        self,
        collection: str,
        docs: list[dict[str, Any]],
        joins: Mapping[str, Any] | None,
        locale: str | None = None,
        versions: bool = False,
    ) -> list[dict[str, Any]]:
        return await self.joins.resolve_joins(collection, docs, joins, locale, versions)

    async def find_referencing(
        self,
        to_type: str,
        to_ids: Sequence[str],
        from_types: Sequence[str] | None = None,
        from_field: str | None = None,
        locale: str | None = None,
    ) -> list[dict[str, Any]]:
        """Live edges pointing at the given documents."""
        return await self.relationships.find_referencing(
            self.namespace, to_type, to_ids, from_types, from_field, locale
        )

    # --- transactions ---

    async def begin_transaction(self, timeout: Any = DEFAULT_TIMEOUT) -> str:
        return await self.transactions.begin(timeout)

    async def commit_transaction(self, tx_id: str | None) -> bool:
        return await self.transactions.commit(tx_id)

    async def rollback_transaction(self, tx_id: str | None) -> bool:
        return await self.transactions.rollback(tx_id)

    async def transaction_status(self, tx_id: str | None) -> TxStatus | None:
        return await self.transactions.status(tx_id)

    async def list_expired_transactions(self, now: int | None = None) -> list[str]:
        return await self.transactions.list_expired(now)

    async def abort_expired_transactions(self, now: int | None = None) -> list[str]:
        return await self.transactions.abort_expired(now)

    # --- versions ---

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
        return await self.versions.create_version(
            collection, parent, version_data, autosave, created_at, updated_at, user_id, tx_id
        )

    async def find_versions(
        self,
        collection: str,
        where: Where = None,
        sort: Sort = "-createdAt",
        limit: int | None = None,
        page: int = 1,
        pagination: bool = True,
        joins: Mapping[str, Any] | None = None,
        locale: str | None = None,
    ) -> PaginatedDocs:
        result = await self.versions.find_versions(
            collection, where, sort, limit, page, pagination
        )
        if joins:
            await self.joins.resolve_joins(collection, result.docs, joins, locale, versions=True)
        return result

    async def count_versions(self, collection: str, where: Where = None) -> int:
        return await self.versions.count_versions(collection, where)

    async def update_version(
        self,
        collection: str,
        version_data: Mapping[str, Any],
        id: str | None = None,
        where: Where = None,
        user_id: str | None = None,
        tx_id: str | None = None,
    ) -> dict[str, Any]:
        return await self.versions.update_version(
            collection, version_data, id, where, user_id, tx_id
        )

    async def delete_versions(self, collection: str, where: Where = None) -> int:
        return await self.versions.delete_versions(collection, where)

    # --- events ---

    async def log_event(self, type: str, **fields: Any) -> str:
        """Append an event; see EventLog.log_event for the accepted fields."""
        return await self.events.log_event(type, **fields)

    async def query_events(
        self,
        where: Where = None,
        sort: str = "-timestamp",
        limit: int = 10,
        page: int = 1,
    ) -> PaginatedDocs:
        return await self.events.query_events(where, sort, limit, page)


def create_mergedoc(
    config: StoreConfig | None = None,
    collections: CollectionLookup | Iterable[CollectionDef] | None = None,
) -> MergeDoc:
    """Build a MergeDoc from configuration (loaded from env if not provided).

    The returned store is not connected; call connect() or use it as an
    async context manager.
    """
    return MergeDoc.from_config(config or StoreConfig.from_env(), collections)
