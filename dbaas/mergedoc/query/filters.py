"""
Filter model: a closed set of predicate variants built from untyped input.

Callers pass filters as plain dicts in the familiar shape::

    {"title": {"like": "intro"},
     "or": [{"status": {"equals": "draft"}}, {"views": {"greater_than": 10}}]}

parse_where() turns that into a tree of the frozen dataclasses below. Every
shape that is not understood becomes Always(True) (fail-open) and is logged
at WARNING, so a typo yields unfiltered results rather than an exception.

Invariants:
    - The variant set is closed; the compiler handles each one explicitly
    - Parsing never raises on malformed operands
    - Geometry is validated here (arity, ranges, finiteness)

How to change safely:
    - A new operator needs a variant, a parse branch, a compile branch and
      an entry in KNOWN_OPERATORS
    - Keep fail-open behaviour for operand errors; callers depend on it
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Any, Union

logger = logging.getLogger(__name__)

RANGE_OPERATORS = {
    "greater_than": ">",
    "greater_than_equal": ">=",
    "less_than": "<",
    "less_than_equal": "<=",
}

KNOWN_OPERATORS = frozenset(
    {
        "equals",
        "not_equals",
        "in",
        "not_in",
        "like",
        "contains",
        "exists",
        "all",
        "near",
        "within",
        "intersects",
        *RANGE_OPERATORS,
    }
)


@dataclass(frozen=True)
class Equals:
    field: str
    value: Any


@dataclass(frozen=True)
class NotEquals:
    field: str
    value: Any


@dataclass(frozen=True)
class In:
    field: str
    values: tuple


@dataclass(frozen=True)
class NotIn:
    field: str
    values: tuple


@dataclass(frozen=True)
class Range:
    """Ordering comparison; op is one of >, >=, <, <=."""

    field: str
    op: str
    value: Any


@dataclass(frozen=True)
class Like:
    field: str
    pattern: str


@dataclass(frozen=True)
class Contains:
    field: str
    text: str


@dataclass(frozen=True)
class Exists:
    field: str
    present: bool


@dataclass(frozen=True)
class All:
    """Every value must appear in the list-valued field."""

    field: str
    values: tuple


@dataclass(frozen=True)
class Near:
    """Point within [min_distance, max_distance] metres of (lon, lat)."""

    field: str
    lon: float
    lat: float
    max_distance: float | None = None
    min_distance: float | None = None


@dataclass(frozen=True)
class Within:
    """Point inside a polygon ring of (lon, lat) pairs."""

    field: str
    ring: tuple[tuple[float, float], ...]


@dataclass(frozen=True)
class Intersects:
    """Point equal to a point, or inside a polygon ring."""

    field: str
    point: tuple[float, float] | None = None
    ring: tuple[tuple[float, float], ...] | None = None


@dataclass(frozen=True)
class And:
    items: tuple[Filter, ...]


@dataclass(frozen=True)
class Or:
    items: tuple[Filter, ...]


@dataclass(frozen=True)
class Always:
    """Constant predicate: 1=1 when matches is true, 1=0 otherwise."""

    matches: bool = True


Filter = Union[
    Equals,
    NotEquals,
    In,
    NotIn,
    Range,
    Like,
    Contains,
    Exists,
    All,
    Near,
    Within,
    Intersects,
    And,
    Or,
    Always,
]


def _fail_open(reason: str, **context: Any) -> Always:
    logger.warning(f"Filter degraded to always-true: {reason}", extra=context)
    return Always(True)


def _as_tuple(value: Any) -> tuple:
    if isinstance(value, (list, tuple)):
        return tuple(value)
    return (value,)


def _finite_number(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str) and value.strip():
        try:
            number = float(value)
        except ValueError:
            return None
    else:
        return None
    return number if math.isfinite(number) else None


def _parse_point(value: Any) -> tuple[float, float] | None:
    """Validate a [lon, lat] pair."""
    if not isinstance(value, (list, tuple)) or len(value) != 2:
        return None
    lon = _finite_number(value[0])
    lat = _finite_number(value[1])
    if lon is None or lat is None:
        return None
    if not (-180.0 <= lon <= 180.0 and -90.0 <= lat <= 90.0):
        return None
    return lon, lat


def _parse_polygon(value: Any) -> tuple[tuple[float, float], ...] | None:
    """Validate a GeoJSON Polygon and return its outer ring."""
    if not isinstance(value, dict) or value.get("type") != "Polygon":
        return None
    coordinates = value.get("coordinates")
    if not isinstance(coordinates, (list, tuple)) or not coordinates:
        return None
    outer = coordinates[0]
    if not isinstance(outer, (list, tuple)) or len(outer) < 3:
        return None
    ring = []
    for vertex in outer:
        point = _parse_point(vertex)
        if point is None:
            return None
        ring.append(point)
    return tuple(ring)


def _optional_distance(raw: list, index: int) -> tuple[bool, float | None]:
    """Read an optional non-negative distance; (ok, value)."""
    if index >= len(raw):
        return True, None
    item = raw[index]
    if item is None or (isinstance(item, str) and item.strip().lower() in ("", "null")):
        return True, None
    number = _finite_number(item)
    if number is None or number < 0:
        return False, None
    return True, number


def _parse_near(field: str, value: Any) -> Filter:
    if isinstance(value, str):
        raw = [part.strip() for part in value.split(",")]
    elif isinstance(value, (list, tuple)):
        raw = list(value)
    else:
        return _fail_open("near expects [lon, lat, max?, min?]", field=field)
    if len(raw) < 2 or len(raw) > 4:
        return _fail_open("near expects [lon, lat, max?, min?]", field=field)
    point = _parse_point(raw[:2])
    if point is None:
        return _fail_open("near has an invalid point", field=field)
    ok_max, max_distance = _optional_distance(raw, 2)
    ok_min, min_distance = _optional_distance(raw, 3)
    if not (ok_max and ok_min):
        return _fail_open("near has an invalid distance", field=field)
    return Near(field, point[0], point[1], max_distance, min_distance)


def _parse_geometry_operator(field: str, operator: str, value: Any) -> Filter:
    if operator == "near":
        return _parse_near(field, value)
    if operator == "within":
        ring = _parse_polygon(value)
        if ring is None:
            return _fail_open("within expects a GeoJSON Polygon", field=field)
        return Within(field, ring)
    # intersects
    if isinstance(value, dict) and value.get("type") == "Point":
        point = _parse_point(value.get("coordinates"))
        if point is None:
            return _fail_open("intersects has an invalid Point", field=field)
        return Intersects(field, point=point)
    ring = _parse_polygon(value)
    if ring is None:
        return _fail_open("intersects expects a GeoJSON Point or Polygon", field=field)
    return Intersects(field, ring=ring)


def parse_operator(field: str, operator: str, value: Any) -> Filter:
    """Build the variant for a single field/operator/value triple."""
    if operator == "equals":
        return Equals(field, value)
    if operator == "not_equals":
        return NotEquals(field, value)
    if operator == "in":
        return In(field, _as_tuple(value) if value is not None else ())
    if operator == "not_in":
        return NotIn(field, _as_tuple(value) if value is not None else ())
    if operator in RANGE_OPERATORS:
        return Range(field, RANGE_OPERATORS[operator], value)
    if operator == "like":
        if not isinstance(value, str):
            return _fail_open("like expects a string", field=field)
        return Like(field, value)
    if operator == "contains":
        if not isinstance(value, str):
            return _fail_open("contains expects a string", field=field)
        return Contains(field, value)
    if operator == "exists":
        return Exists(field, value is True or value == "true")
    if operator == "all":
        if not isinstance(value, (list, tuple)) or len(value) == 0:
            return _fail_open("all expects a non-empty list", field=field)
        return All(field, tuple(value))
    if operator in ("near", "within", "intersects"):
        return _parse_geometry_operator(field, operator, value)
    return _fail_open(f"unknown operator '{operator}'", field=field, operator=operator)


def _combine(items: list[Filter], kind: type) -> Filter | None:
    if not items:
        return None
    if len(items) == 1:
        return items[0]
    return kind(tuple(items))


def parse_field(field: str, operators: dict[str, Any]) -> Filter | None:
    """Parse one field's operator map.

    A value that is itself a map containing known operators is a nested
    field: {"meta": {"author": {"equals": "x"}}} addresses meta.author.
    """
    conditions: list[Filter] = []
    for operator, value in operators.items():
        if isinstance(value, dict) and any(key in KNOWN_OPERATORS for key in value):
            nested = parse_field(f"{field}.{operator}", value)
            if nested is not None:
                conditions.append(nested)
        else:
            conditions.append(parse_operator(field, operator, value))
    return _combine(conditions, And)


def parse_where(where: dict[str, Any] | None) -> Filter | None:
    """Parse a where-dict into a Filter tree.

    Returns:
        The filter, or None when the where-dict is empty
    """
    if not where:
        return None
    parts: list[Filter] = []
    for key, value in where.items():
        if key in ("and", "or") and isinstance(value, (list, tuple)):
            children = [child for child in (parse_where(item) for item in value) if child]
            combined = _combine(children, And if key == "and" else Or)
            if combined is not None:
                parts.append(combined)
        elif isinstance(value, dict):
            parsed = parse_field(key, value)
            if parsed is not None:
                parts.append(parsed)
        else:
            parts.append(_fail_open("field condition must be an operator map", field=key))
    return _combine(parts, And)
