"""
SQL dialects for the supported backends.

The compiler, the sort builder and the stores emit SQL through a Dialect so
the same rank-and-filter queries run on ClickHouse and on embedded SQLite.
A dialect only renders fragments; it never decides semantics.

ClickHouse:
    - placeholders {name:Type}, bound via param_<name> on the HTTP interface
    - payload paths are JSON subcolumns: data.a.b
    - timestamps are DateTime64(3, 'UTC'); literals go through
      fromUnixTimestamp64Milli

SQLite:
    - placeholders :name
    - payload paths are json_extract(data, '$.a.b')
    - timestamps are INTEGER epoch milliseconds
    - geo predicates call Python functions registered on each connection
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable
from datetime import datetime, timezone

Bind = Callable[[object], str]

SQLITE_GEO_DISTANCE = "mergedoc_geo_distance"
SQLITE_POINT_IN_POLYGON = "mergedoc_point_in_polygon"
SQLITE_POINT_EQUALS = "mergedoc_point_equals"


class Dialect(ABC):
    """Fragment renderer for one SQL dialect."""

    name: str = ""

    @abstractmethod
    def placeholder(self, name: str, ch_type: str) -> str:
        """Render a bound placeholder; ch_type is the ClickHouse type name."""

    @abstractmethod
    def json_path(self, column: str, path: str) -> str:
        """Render access to a sanitised sub-path of a JSON column."""

    @abstractmethod
    def timestamp(self, placeholder: str) -> str:
        """Wrap an Int64 millisecond placeholder as a timestamp expression."""

    @abstractmethod
    def timestamp_value(self, millis: int | None):
        """Value to send for a timestamp column in a bulk insert."""

    @abstractmethod
    def ilike(self, expr: str, placeholder: str) -> str:
        """Case-insensitive substring pattern match."""

    @abstractmethod
    def contains(self, expr: str, placeholder: str) -> str:
        """Case-insensitive substring test."""

    @abstractmethod
    def array_has(self, expr: str, placeholder: str) -> str:
        """Test that a JSON list contains a value."""

    @abstractmethod
    def geo_distance(self, expr: str, lon: str, lat: str) -> str:
        """Great-circle distance in metres between a [lon, lat] field and a point."""

    @abstractmethod
    def point_in_polygon(self, expr: str, ring: tuple, bind: Bind) -> str:
        """Test that a [lon, lat] field lies inside a ring."""

    @abstractmethod
    def point_equals(self, expr: str, lon: str, lat: str) -> str:
        """Test that a [lon, lat] field equals a point."""

    def sortable(self, expr: str, is_column: bool) -> str:
        """Expression usable in ORDER BY / DISTINCT."""
        return expr


class ClickHouseDialect(Dialect):
    name = "clickhouse"

    def placeholder(self, name: str, ch_type: str) -> str:
        return f"{{{name}:{ch_type}}}"

    def json_path(self, column: str, path: str) -> str:
        return f"{column}.{path}"

    def timestamp(self, placeholder: str) -> str:
        return f"fromUnixTimestamp64Milli({placeholder})"

    def timestamp_value(self, millis: int | None):
        if millis is None:
            return None
        moment = datetime.fromtimestamp(millis // 1000, tz=timezone.utc)
        return moment.strftime("%Y-%m-%d %H:%M:%S.") + f"{millis % 1000:03d}"

    def ilike(self, expr: str, placeholder: str) -> str:
        return f"{expr} ILIKE concat('%', {placeholder}, '%')"

    def contains(self, expr: str, placeholder: str) -> str:
        return f"position(lower(toString({expr})), lower({placeholder})) > 0"

    def array_has(self, expr: str, placeholder: str) -> str:
        return f"has({expr}, {placeholder})"

    def _coordinates(self, expr: str) -> tuple[str, str]:
        arr = f"CAST({expr}, 'Array(Float64)')"
        return f"{arr}[1]", f"{arr}[2]"

    def geo_distance(self, expr: str, lon: str, lat: str) -> str:
        x, y = self._coordinates(expr)
        return f"greatCircleDistance({x}, {y}, {lon}, {lat})"

    def point_in_polygon(self, expr: str, ring: tuple, bind: Bind) -> str:
        x, y = self._coordinates(expr)
        vertices = ", ".join(f"({bind(float(px))}, {bind(float(py))})" for px, py in ring)
        return f"pointInPolygon(({x}, {y}), [{vertices}])"

    def point_equals(self, expr: str, lon: str, lat: str) -> str:
        x, y = self._coordinates(expr)
        return f"({x} = {lon} AND {y} = {lat})"

    def sortable(self, expr: str, is_column: bool) -> str:
        # Dynamic JSON subcolumns cannot be used in ORDER BY directly
        return expr if is_column else f"toString({expr})"


class SQLiteDialect(Dialect):
    name = "sqlite"

    def placeholder(self, name: str, ch_type: str) -> str:
        return f":{name}"

    def json_path(self, column: str, path: str) -> str:
        # path is sanitised to [A-Za-z0-9_.[\]] so it cannot close the literal
        return f"json_extract({column}, '$.{path}')"

    def timestamp(self, placeholder: str) -> str:
        return placeholder

    def timestamp_value(self, millis: int | None):
        return millis

    def ilike(self, expr: str, placeholder: str) -> str:
        # LIKE is case-insensitive for ASCII in SQLite
        return f"{expr} LIKE '%' || {placeholder} || '%'"

    def contains(self, expr: str, placeholder: str) -> str:
        return f"instr(lower(CAST({expr} AS TEXT)), lower({placeholder})) > 0"

    def array_has(self, expr: str, placeholder: str) -> str:
        return f"EXISTS (SELECT 1 FROM json_each({expr}) WHERE json_each.value = {placeholder})"

    def geo_distance(self, expr: str, lon: str, lat: str) -> str:
        return f"{SQLITE_GEO_DISTANCE}({expr}, {lon}, {lat})"

    def point_in_polygon(self, expr: str, ring: tuple, bind: Bind) -> str:
        return f"{SQLITE_POINT_IN_POLYGON}({expr}, {bind([list(p) for p in ring])})"

    def point_equals(self, expr: str, lon: str, lat: str) -> str:
        return f"{SQLITE_POINT_EQUALS}({expr}, {lon}, {lat})"


def get_dialect(name: str) -> Dialect:
    """Return the dialect for a backend name."""
    if name == ClickHouseDialect.name:
        return ClickHouseDialect()
    if name == SQLiteDialect.name:
        return SQLiteDialect()
    raise ValueError(f"Unknown SQL dialect '{name}'")
