"""
Row <-> document conversion helpers.

A stored row carries the payload as JSON (a string from SQLite, an object
from ClickHouse) and timestamps as integers or ISO strings depending on the
backend. The logical document hosts see is {"id", **data, "createdAt",
"updatedAt"} with ISO-8601 timestamps.
"""

from __future__ import annotations

import json
from typing import Any

from ..timestamps import to_iso

SENSITIVE_FIELDS = ("password", "confirm-password")
TITLE_FALLBACKS = ("title", "name", "label", "email", "slug")


def parse_data(value: Any) -> dict[str, Any]:
    if value is None or value == "":
        return {}
    if isinstance(value, str):
        parsed = json.loads(value)
        return parsed if isinstance(parsed, dict) else {}
    return dict(value)


def row_to_document(row: dict[str, Any]) -> dict[str, Any]:
    data = parse_data(row.get("data"))
    return {
        "id": row["id"],
        **data,
        "createdAt": to_iso(row.get("createdAt")),
        "updatedAt": to_iso(row.get("updatedAt")),
    }


def extract_title(data: dict[str, Any], title_field: str | None, doc_id: str) -> str:
    """Pick the value stored in the title column.

    The collection's title field wins (any non-null value, stringified);
    otherwise the first string among title, name, label, email, slug;
    otherwise the document id.
    """
    if title_field and data.get(title_field) is not None:
        value = data[title_field]
        return value if isinstance(value, str) else str(value)
    for key in TITLE_FALLBACKS:
        if isinstance(data.get(key), str):
            return data[key]
    return doc_id


def deep_merge(base: dict[str, Any], patch: dict[str, Any]) -> dict[str, Any]:
    """Merge patch into base; nested dicts merge key by key, anything else overwrites."""
    merged = dict(base)
    for key, value in patch.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def strip_sensitive_fields(data: dict[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in data.items() if key not in SENSITIVE_FIELDS}


def split_document(data: dict[str, Any]) -> tuple[dict[str, Any], Any, Any]:
    """Split caller input into (payload, createdAt, updatedAt); id is dropped."""
    payload = {
        key: value
        for key, value in data.items()
        if key not in ("id", "createdAt", "updatedAt")
    }
    return payload, data.get("createdAt"), data.get("updatedAt")
