"""
Error types for MergeDoc.

This module defines all exception types raised by the store:
- MergeDocError: Base exception
- NotConnectedError: Backend handle absent
- NotFoundError: Point lookup addressed no live row
- InvalidArgumentError: Malformed namespace, slug or table identifier
- CollectionNotFoundError: Collection metadata is missing
- BackendError: Backend answered with an error status

Invariants:
    - All errors inherit from MergeDocError
    - Errors include context for debugging
    - Transport errors (httpx, sqlite3) are not wrapped; they propagate unchanged
    - Malformed filter input never raises (it fails open)
"""

from __future__ import annotations

from typing import Any


class MergeDocError(Exception):
    """Base exception for all MergeDoc errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "MERGEDOC_ERROR"
        self.details = details or {}


class NotConnectedError(MergeDocError):
    """Backend client is not connected.

    Raised by every operation when connect() has not been called
    (or close() already has), before anything is sent.
    """

    def __init__(self, backend: str) -> None:
        super().__init__(
            f"{backend} backend is not connected",
            code="NOT_CONNECTED",
            details={"backend": backend},
        )
        self.backend = backend


class NotFoundError(MergeDocError):
    """No live row exists for the requested key.

    Attributes:
        collection: Collection slug that was searched
        document_id: Document id, if the lookup was by id
    """

    def __init__(
        self,
        collection: str,
        document_id: str | None = None,
    ) -> None:
        if document_id is not None:
            message = f"Document '{document_id}' not found in collection '{collection}'"
        else:
            message = f"Document not found in collection '{collection}'"
        super().__init__(
            message,
            code="NOT_FOUND",
            details={"collection": collection, "document_id": document_id},
        )
        self.collection = collection
        self.document_id = document_id


class InvalidArgumentError(MergeDocError):
    """An identifier failed validation.

    Identifiers (namespace, collection slug, table and database names)
    cannot be parameter-bound, so they are checked before any query is built.
    """

    def __init__(self, message: str, argument: str, value: Any) -> None:
        super().__init__(
            message,
            code="INVALID_ARGUMENT",
            details={"argument": argument, "value": value},
        )
        self.argument = argument
        self.value = value


class CollectionNotFoundError(MergeDocError):
    """Collection metadata is not registered."""

    def __init__(self, collection: str) -> None:
        super().__init__(
            f"Collection '{collection}' not found",
            code="COLLECTION_NOT_FOUND",
            details={"collection": collection},
        )
        self.collection = collection


class BackendError(MergeDocError):
    """The backend rejected a statement.

    Carries the server's own error text; nothing is retried.
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        query: str | None = None,
    ) -> None:
        super().__init__(
            message,
            code="BACKEND_ERROR",
            details={"status_code": status_code, "query": query},
        )
        self.status_code = status_code
        self.query = query
