"""
Field spaces: which names are physical columns and which are payload paths.

A FieldSpace is the allow-list the compiler and the sort builder consult
to turn a caller's field name into a SQL expression. Names on the list are
used verbatim; every other name is sanitised and resolved inside the JSON
payload column (or rejected when the table has no payload column).
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from ..sanitize import sanitize_field_path

VERSION_PREFIX = "version."

# dot-separated word segments, each optionally followed by [n] indices
_PAYLOAD_PATH_RE = re.compile(r"\w+(?:\[\d+\])*(?:\.\w+(?:\[\d+\])*)*", re.ASCII)


@dataclass(frozen=True)
class FieldSpace:
    """Column allow-list for one table shape.

    Attributes:
        columns: Physical column names matched verbatim
        timestamp_columns: Columns holding millisecond timestamps
        payload_column: JSON column for all other paths (None = no payload)
    """

    columns: frozenset[str]
    timestamp_columns: frozenset[str]
    payload_column: str | None = "data"

    def resolve(self, field: str) -> tuple[str, bool] | None:
        """Resolve a caller field name.

        Returns:
            (name, is_column) where name is either the column name or the
            sanitised payload sub-path, or None when the field cannot be
            addressed in this space (including paths with empty segments
            or malformed indices).
        """
        cleaned = sanitize_field_path(field)
        if not cleaned:
            return None
        if cleaned in self.columns:
            return cleaned, True
        if self.payload_column is None:
            return None
        # version-history rows store the version payload directly in data
        if cleaned.startswith(VERSION_PREFIX):
            cleaned = cleaned[len(VERSION_PREFIX):]
        if not _PAYLOAD_PATH_RE.fullmatch(cleaned):
            return None
        return cleaned, False

    def is_timestamp(self, field: str) -> bool:
        return sanitize_field_path(field) in self.timestamp_columns


DOCUMENT_FIELDS = FieldSpace(
    columns=frozenset(
        {
            "id",
            "ns",
            "type",
            "v",
            "title",
            "createdAt",
            "createdBy",
            "updatedAt",
            "updatedBy",
            "deletedAt",
            "deletedBy",
        }
    ),
    timestamp_columns=frozenset({"createdAt", "updatedAt", "deletedAt", "v"}),
)

EVENT_FIELDS = FieldSpace(
    columns=frozenset(
        {
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
        }
    ),
    timestamp_columns=frozenset({"timestamp"}),
    payload_column=None,
)
