"""
Query compilation for MergeDoc.

- filters: closed filter variant model and the where-dict parser
- compiler: QueryCompiler, combine_where
- dialect: ClickHouse and SQLite fragment renderers
- fields: column allow-lists (FieldSpace)
- sort: ORDER BY / LIMIT builders
"""

from .compiler import ALWAYS_FALSE, ALWAYS_TRUE, QueryCompiler, combine_where
from .dialect import ClickHouseDialect, Dialect, SQLiteDialect, get_dialect
from .fields import DOCUMENT_FIELDS, EVENT_FIELDS, FieldSpace
from .filters import KNOWN_OPERATORS, Filter, parse_where
from .sort import build_limit_offset, build_order_by, normalize_sort

__all__ = [
    "ALWAYS_FALSE",
    "ALWAYS_TRUE",
    "QueryCompiler",
    "combine_where",
    "Dialect",
    "ClickHouseDialect",
    "SQLiteDialect",
    "get_dialect",
    "FieldSpace",
    "DOCUMENT_FIELDS",
    "EVENT_FIELDS",
    "KNOWN_OPERATORS",
    "Filter",
    "parse_where",
    "build_order_by",
    "build_limit_offset",
    "normalize_sort",
]
