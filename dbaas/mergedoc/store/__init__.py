"""
Document, edge, join, transaction, version and event stores.

- projection: LatestProjection (rank-and-filter SQL) and column lists
- transform: row <-> document helpers
- documents: DocumentStore
- relationships: RelationshipIndex, extract_relationships
- joins: JoinResolver
- transactions: TransactionManager, TxStatus
- versions: VersionHistory
- events: EventLog
"""

from .documents import DocumentStore
from .events import EventLog
from .joins import JoinResolver
from .projection import LatestProjection
from .relationships import Edge, RelationshipIndex, extract_relationships
from .transactions import TransactionManager, TxStatus
from .versions import VersionHistory

__all__ = [
    "DocumentStore",
    "EventLog",
    "JoinResolver",
    "LatestProjection",
    "Edge",
    "RelationshipIndex",
    "extract_relationships",
    "TransactionManager",
    "TxStatus",
    "VersionHistory",
]
