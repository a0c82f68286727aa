"""
MergeDoc - versioned document store on append-only OLAP tables.

This package implements a document store with conventional CRUD semantics
on top of a backend that can only append rows (ClickHouse ReplacingMergeTree,
or an embedded SQLite file that follows the same discipline):
- Every write is an INSERT of a new row version
- Soft delete is an INSERT of a tombstone row
- Reads rank rows per key by version and keep the newest live one
- References between documents live in an append-only edge table
- Transactions are emulated through a staging table

Architecture:
    ┌─────────────┐     ┌──────────────────┐     ┌─────────────────┐
    │   Caller    │────▶│  MergeDoc facade │────▶│  QueryCompiler  │
    │  (host app) │     │    (adapter)     │     │ where -> SQL    │
    └─────────────┘     └────────┬─────────┘     └─────────────────┘
                                 │
          ┌──────────────┬───────┴───────┬──────────────┐
          ▼              ▼               ▼              ▼
    ┌───────────┐  ┌─────────────┐ ┌──────────┐ ┌──────────────┐
    │ Documents │  │Relationships│ │  Joins   │ │ Transactions │
    │ + versions│  │ (edge index)│ │ resolver │ │  (staging)   │
    └─────┬─────┘  └──────┬──────┘ └────┬─────┘ └──────┬───────┘
          └───────────────┴──────┬──────┴──────────────┘
                                 ▼
                   ┌───────────────────────────┐
                   │ Backend (ClickHouse HTTP  │
                   │   or embedded SQLite)     │
                   └───────────────────────────┘

Invariants:
    - Physical rows are never updated or deleted by normal operations
    - The live row for (ns, type, id) is the max-v row with deletedAt NULL
    - Caller filters over payload fields apply after ranking, never before
    - Background merges are never relied on for read correctness

How to change safely:
    - Any new table must be read through store.projection
    - Identifiers that cannot be bound must pass through sanitize
    - Keep both backend dialects in step when adding operators
"""

from ._version import __version__
from .adapter import MergeDoc, create_mergedoc

__all__ = ["MergeDoc", "create_mergedoc", "__version__"]
