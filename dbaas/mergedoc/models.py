"""
Result and request models for MergeDoc.

Paginated results are pydantic models whose fields are snake_case in Python
and camelCase on the wire (model_dump(by_alias=True)), matching the shape
hosts already expect: docs, totalDocs, limit, page, totalPages, hasNextPage,
hasPrevPage, nextPage, prevPage, pagingCounter.
"""

from __future__ import annotations

import math
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Pagination(_CamelModel):
    """Paging metadata shared by every paginated result."""

    total_docs: int = Field(..., description="Matching live documents")
    limit: int = Field(..., description="Page size (0 = unlimited)")
    page: int = Field(1, description="1-based page number")
    total_pages: int = Field(1, description="Number of pages")
    has_next_page: bool = Field(False, description="Whether a later page exists")
    has_prev_page: bool = Field(False, description="Whether an earlier page exists")
    next_page: int | None = Field(None, description="Next page number")
    prev_page: int | None = Field(None, description="Previous page number")
    paging_counter: int = Field(1, description="1-based index of the first doc on this page")


class PaginatedDocs(Pagination):
    docs: list[dict[str, Any]] = Field(default_factory=list, description="Page of documents")


class PaginatedDistinct(Pagination):
    values: list[dict[str, Any]] = Field(
        default_factory=list, description="Page of {field: value} entries"
    )


class JoinQuery(_CamelModel):
    """Per-join request options."""

    limit: int | None = Field(None, ge=0, description="Page size (0 = all)")
    page: int = Field(1, ge=1, description="1-based page number")
    count: bool = Field(False, description="Include totalDocs")


def paging(total_docs: int, limit: int, page: int) -> dict[str, Any]:
    """Compute paging metadata for a result page."""
    total_pages = math.ceil(total_docs / limit) if limit > 0 else 1
    has_next = page < total_pages
    has_prev = page > 1
    return {
        "total_docs": total_docs,
        "limit": limit,
        "page": page,
        "total_pages": total_pages,
        "has_next_page": has_next,
        "has_prev_page": has_prev,
        "next_page": page + 1 if has_next else None,
        "prev_page": page - 1 if has_prev else None,
        "paging_counter": (page - 1) * limit + 1,
    }
