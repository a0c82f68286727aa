"""
Filter compiler: where-dicts to parameterized SQL predicates.

QueryCompiler walks a Filter tree (see filters.py) and renders one boolean
SQL expression per node through a Dialect. Every literal is bound under a
fresh placeholder p0, p1, ... typed by runtime inspection; identifiers are
resolved through a FieldSpace allow-list and never bound.

Invariants:
    - No caller value is ever spliced into SQL text
    - `in []` is 1=0, `not_in []` is 1=1, unknown operators are 1=1
    - not_equals on a payload field also matches documents missing the field
    - NaN and +/-Infinity bind as NULL
    - bool is tested before int (True is an int in Python)

How to change safely:
    - Add operators in filters.py first, then add a branch in _compile
    - Keep both dialects able to render every branch
    - Placeholder names `ns` and `type` are reserved for build_base_where

Example:
    >>> qb = QueryCompiler()
    >>> base = qb.build_base_where("site", "posts")
    >>> extra = qb.compile({"title": {"equals": "Hello"}})
    >>> combine_where(base, extra)
    'ns = {ns:String} AND type = {type:String} AND (data.title = {p0:String})'
    >>> qb.get_params()
    {'ns': 'site', 'type': 'posts', 'p0': 'Hello'}
"""

from __future__ import annotations

import json
import logging
import math
from datetime import date, datetime
from typing import Any

from ..timestamps import to_millis
from .dialect import ClickHouseDialect, Dialect
from .fields import DOCUMENT_FIELDS, FieldSpace
from .filters import (
    All,
    Always,
    And,
    Contains,
    Equals,
    Exists,
    Filter,
    In,
    Intersects,
    Like,
    Near,
    NotEquals,
    NotIn,
    Or,
    Range,
    Within,
    parse_where,
)

logger = logging.getLogger(__name__)

ALWAYS_TRUE = "1=1"
ALWAYS_FALSE = "1=0"


def combine_where(base: str, extra: str) -> str:
    """AND a mandatory scoping predicate with an optional extra one."""
    if not extra:
        return base
    return f"{base} AND ({extra})"


class QueryCompiler:
    """Builds parameterized predicates and collects their bound values.

    One compiler instance is used per statement: its params map holds every
    placeholder emitted so far, and get_params() is passed to the backend
    alongside the SQL text.

    Attributes:
        dialect: SQL dialect fragments are rendered in
        fields: Column allow-list used to resolve field names
    """

    def __init__(
        self,
        dialect: Dialect | None = None,
        fields: FieldSpace = DOCUMENT_FIELDS,
    ) -> None:
        self.dialect = dialect or ClickHouseDialect()
        self.fields = fields
        self._counter = 0
        self._params: dict[str, Any] = {}

    # --- binding ---

    def _next_name(self) -> str:
        name = f"p{self._counter}"
        self._counter += 1
        return name

    def _bind(self, name: str, value: Any) -> str:
        if value is None:
            self._params[name] = None
            return "NULL"
        if isinstance(value, bool):
            self._params[name] = 1 if value else 0
            return self.dialect.placeholder(name, "UInt8")
        if isinstance(value, int):
            self._params[name] = value
            return self.dialect.placeholder(name, "Int64")
        if isinstance(value, float):
            if not math.isfinite(value):
                self._params[name] = None
                return "NULL"
            self._params[name] = value
            return self.dialect.placeholder(name, "Float64")
        if isinstance(value, str):
            self._params[name] = value
            return self.dialect.placeholder(name, "String")
        if isinstance(value, (datetime, date)):
            self._params[name] = to_millis(value)
            return self.dialect.timestamp(self.dialect.placeholder(name, "Int64"))
        if isinstance(value, (dict, list, tuple)):
            self._params[name] = json.dumps(value)
            return self.dialect.placeholder(name, "String")
        self._params[name] = str(value)
        return self.dialect.placeholder(name, "String")

    def add_param(self, value: Any) -> str:
        """Bind a value under a fresh placeholder and return its SQL text."""
        return self._bind(self._next_name(), value)

    def add_named_param(self, name: str, value: Any) -> str:
        """Bind a value under a fixed name (reused across the statement)."""
        return self._bind(name, value)

    def add_timestamp(self, millis: int, name: str | None = None) -> str:
        """Bind epoch milliseconds as a timestamp expression."""
        name = name or self._next_name()
        self._params[name] = int(millis)
        return self.dialect.timestamp(self.dialect.placeholder(name, "Int64"))

    def get_params(self) -> dict[str, Any]:
        return dict(self._params)

    # --- scoping ---

    def build_base_where(self, ns: str, type_: str) -> str:
        """Scope a statement to one namespace and entity type.

        Deliberately has no deletedAt condition: it is used inside the
        ranking subquery, where tombstones must still be visible.
        """
        ns_param = self.add_named_param("ns", ns)
        type_param = self.add_named_param("type", type_)
        return f"ns = {ns_param} AND type = {type_param}"

    # --- field paths ---

    def field_expr(self, field: str) -> tuple[str, bool] | None:
        """Return (sql_expression, is_column) for a field, or None."""
        resolved = self.fields.resolve(field)
        if resolved is None:
            return None
        name, is_column = resolved
        if is_column:
            return name, True
        return self.dialect.json_path(self.fields.payload_column, name), False

    # --- compilation ---

    def compile(self, where: dict[str, Any] | Filter | None) -> str:
        """Compile a where-dict (or a parsed Filter) to SQL.

        Returns:
            Predicate text, or '' when there is nothing to filter on
        """
        node = parse_where(where) if isinstance(where, dict) or where is None else where
        if node is None:
            return ""
        return self._compile(node)

    def _join(self, items: tuple, glue: str) -> str:
        parts = [self._compile(item) for item in items]
        if len(parts) == 1:
            return parts[0]
        return "(" + f" {glue} ".join(parts) + ")"

    def _unresolved(self, field: str) -> str:
        logger.warning(
            f"Filter degraded to always-true: field '{field}' is not addressable",
            extra={"field": field},
        )
        return ALWAYS_TRUE

    def _compile(self, node: Filter) -> str:
        if isinstance(node, Always):
            return ALWAYS_TRUE if node.matches else ALWAYS_FALSE
        if isinstance(node, And):
            return self._join(node.items, "AND")
        if isinstance(node, Or):
            return self._join(node.items, "OR")

        resolved = self.field_expr(node.field)
        if resolved is None:
            return self._unresolved(node.field)
        path, is_column = resolved

        timestamp = is_column and self.fields.is_timestamp(node.field)

        if isinstance(node, Equals):
            if node.value is None:
                return f"{path} IS NULL"
            operands = self._operands(node.field, (node.value,), timestamp)
            if operands is None:
                return ALWAYS_TRUE
            return f"{path} = {operands[0]}"

        if isinstance(node, NotEquals):
            if node.value is None:
                return f"{path} IS NOT NULL"
            operands = self._operands(node.field, (node.value,), timestamp)
            if operands is None:
                return ALWAYS_TRUE
            if is_column:
                return f"{path} != {operands[0]}"
            return f"({path} IS NULL OR {path} != {operands[0]})"

        if isinstance(node, In):
            if not node.values:
                return ALWAYS_FALSE
            operands = self._operands(node.field, node.values, timestamp)
            if operands is None:
                return ALWAYS_TRUE
            return f"{path} IN ({', '.join(operands)})"

        if isinstance(node, NotIn):
            if not node.values:
                return ALWAYS_TRUE
            operands = self._operands(node.field, node.values, timestamp)
            if operands is None:
                return ALWAYS_TRUE
            return f"{path} NOT IN ({', '.join(operands)})"

        if isinstance(node, Range):
            operands = self._operands(node.field, (node.value,), timestamp)
            if operands is None:
                return ALWAYS_TRUE
            return f"{path} {node.op} {operands[0]}"

        if isinstance(node, Like):
            return self.dialect.ilike(path, self.add_param(node.pattern))

        if isinstance(node, Contains):
            return self.dialect.contains(path, self.add_param(node.text))

        if isinstance(node, Exists):
            return f"{path} IS NOT NULL" if node.present else f"{path} IS NULL"

        if isinstance(node, All):
            checks = [self.dialect.array_has(path, self.add_param(v)) for v in node.values]
            return "(" + " AND ".join(checks) + ")"

        if isinstance(node, Near):
            return self._compile_near(node, path)

        if isinstance(node, Within):
            return self.dialect.point_in_polygon(path, node.ring, self.add_param)

        if isinstance(node, Intersects):
            if node.point is not None:
                lon, lat = node.point
                return self.dialect.point_equals(path, self.add_param(lon), self.add_param(lat))
            return self.dialect.point_in_polygon(path, node.ring, self.add_param)

        raise TypeError(f"Unsupported filter node: {type(node).__name__}")

    def _operands(self, field: str, values, timestamp: bool) -> list[str] | None:
        """Bind comparison operands; timestamp columns bind as milliseconds.

        Returns None (after logging) when a timestamp operand does not parse.
        """
        if not timestamp:
            return [self.add_param(value) for value in values]
        millis = [to_millis(value) for value in values]
        for value, converted in zip(values, millis):
            if converted is None:
                logger.warning(
                    f"Filter degraded to always-true: {value!r} is not a timestamp",
                    extra={"field": field},
                )
                return None
        return [self.add_timestamp(m) for m in millis]

    def _compile_near(self, node: Near, path: str) -> str:
        distance = self.dialect.geo_distance(
            path, self.add_param(node.lon), self.add_param(node.lat)
        )
        conditions = []
        if node.max_distance is not None:
            conditions.append(f"{distance} <= {self.add_param(node.max_distance)}")
        if node.min_distance is not None:
            conditions.append(f"{distance} >= {self.add_param(node.min_distance)}")
        if not conditions:
            return f"{path} IS NOT NULL"
        if len(conditions) == 1:
            return conditions[0]
        return "(" + " AND ".join(conditions) + ")"
