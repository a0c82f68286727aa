"""
ORDER BY / LIMIT builders.

Sort strings use the "field" / "-field" convention, comma-separated for
multiple keys. Field names go through the same FieldSpace resolution as
filters, so they are sanitised before being spliced into SQL.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence

from .dialect import ClickHouseDialect, Dialect
from .fields import DOCUMENT_FIELDS, FieldSpace

DEFAULT_ORDER_BY = "ORDER BY createdAt DESC"


def normalize_sort(sort: str | Sequence[str] | Mapping[str, object] | None) -> str | None:
    """Flatten the accepted sort shapes to one comma-separated string.

    Accepts "a,-b", ["a", "-b"] or {"a": "asc", "b": "desc"} (-1 also means
    descending).
    """
    if sort is None:
        return None
    if isinstance(sort, str):
        return sort
    if isinstance(sort, Mapping):
        return ",".join(
            f"-{key}" if direction in ("desc", -1) else str(key)
            for key, direction in sort.items()
        )
    return ",".join(str(part) for part in sort)


def build_order_by(
    sort: str | Sequence[str] | Mapping[str, object] | None,
    dialect: Dialect | None = None,
    fields: FieldSpace = DOCUMENT_FIELDS,
    default: str = DEFAULT_ORDER_BY,
) -> str:
    """Build an ORDER BY clause.

    Unknown or empty sort keys are skipped; when nothing usable remains the
    default ordering is returned.
    """
    dialect = dialect or ClickHouseDialect()
    sort_string = normalize_sort(sort)
    if not sort_string:
        return default

    order_parts = []
    for raw in sort_string.split(","):
        key = raw.strip()
        if not key:
            continue
        direction = "ASC"
        if key.startswith("-"):
            direction = "DESC"
            key = key[1:]
        resolved = fields.resolve(key)
        if resolved is None:
            continue
        name, is_column = resolved
        expr = name if is_column else dialect.json_path(fields.payload_column, name)
        order_parts.append(f"{dialect.sortable(expr, is_column)} {direction}")

    if not order_parts:
        return default
    return "ORDER BY " + ", ".join(order_parts)


def build_limit_offset(limit: int, page: int = 1) -> str:
    """Build LIMIT/OFFSET for a 1-based page; limit <= 0 means no limit."""
    if limit <= 0:
        return ""
    offset = (max(page, 1) - 1) * limit
    return f"LIMIT {int(limit)} OFFSET {int(offset)}"
