"""
Latest-row projection shared by documents, edges and transaction records.

Every read in MergeDoc has the same shape: rank the rows of one logical key
by version, keep rank 1, and only then look at deletedAt and the caller's
filters.

    SELECT <columns>
    FROM (
        SELECT <all columns>,
               row_number() OVER (PARTITION BY <key> ORDER BY v DESC) AS _rn
        FROM <table>
        WHERE <inner>
    ) AS ranked
    WHERE _rn = 1 [AND deletedAt IS NULL] [AND (<outer>)]

Invariants:
    - Only scoping predicates (ns, type, point-lookup id) go in <inner>;
      payload filters go in <outer> so an older matching version can never
      resurface once a newer one stops matching
    - Column lists are explicit; `_rn` never leaks into results
    - FINAL is never used
"""

from __future__ import annotations

from dataclasses import dataclass

DOCUMENT_COLUMNS = (
    "ns",
    "type",
    "id",
    "v",
    "title",
    "data",
    "createdAt",
    "createdBy",
    "updatedAt",
    "updatedBy",
    "deletedAt",
    "deletedBy",
)

EDGE_COLUMNS = (
    "ns",
    "fromType",
    "fromId",
    "fromField",
    "toType",
    "toId",
    "position",
    "locale",
    "v",
    "deletedAt",
)

TX_COLUMNS = ("txId", "txStatus", "txTimeout", "txCreatedAt") + DOCUMENT_COLUMNS

DOCUMENT_KEY = ("ns", "type", "id")
EDGE_KEY = ("ns", "fromType", "fromId", "fromField", "toType", "toId", "position", "locale")
TX_KEY = ("ns", "txId")


@dataclass(frozen=True)
class LatestProjection:
    """Rank-and-filter query builder for one table and one logical key.

    Attributes:
        table: Table name (already validated)
        columns: Columns carried through the ranking subquery
        key: Columns identifying one logical row
    """

    table: str
    columns: tuple[str, ...]
    key: tuple[str, ...]

    def ranked(self, inner_where: str, partition: tuple[str, ...] | None = None) -> str:
        """The ranking subquery on its own (without the rank filter)."""
        cols = ", ".join(self.columns)
        partition_by = ", ".join(partition or self.key)
        return (
            f"SELECT {cols}, "
            f"row_number() OVER (PARTITION BY {partition_by} ORDER BY v DESC) AS _rn "
            f"FROM {self.table} WHERE {inner_where}"
        )

    def _outer(self, outer_where: str, live_only: bool) -> str:
        conditions = ["_rn = 1"]
        if live_only:
            conditions.append("deletedAt IS NULL")
        if outer_where:
            conditions.append(f"({outer_where})")
        return " AND ".join(conditions)

    def select(
        self,
        inner_where: str,
        outer_where: str = "",
        live_only: bool = True,
        columns: tuple[str, ...] | list[str] | None = None,
        suffix: str = "",
        distinct: bool = False,
    ) -> str:
        """Latest (live) rows matching the filters.

        Args:
            inner_where: Scoping predicate applied before ranking
            outer_where: Caller predicate applied after ranking
            live_only: Also drop tombstoned keys
            columns: Output expressions (defaults to all projected columns)
            suffix: ORDER BY / LIMIT text appended verbatim
            distinct: Emit SELECT DISTINCT
        """
        output = ", ".join(columns or self.columns)
        keyword = "SELECT DISTINCT" if distinct else "SELECT"
        sql = (
            f"{keyword} {output} FROM ({self.ranked(inner_where)}) AS ranked "
            f"WHERE {self._outer(outer_where, live_only)}"
        )
        if suffix:
            sql = f"{sql} {suffix}"
        return sql

    def count(
        self,
        inner_where: str,
        outer_where: str = "",
        live_only: bool = True,
        expression: str = "*",
    ) -> str:
        """Count of latest (live) rows; `expression` may be `DISTINCT <expr>`."""
        return (
            f"SELECT count({expression}) AS total FROM ({self.ranked(inner_where)}) AS ranked "
            f"WHERE {self._outer(outer_where, live_only)}"
        )


def document_projection(table: str) -> LatestProjection:
    return LatestProjection(table, DOCUMENT_COLUMNS, DOCUMENT_KEY)


def edge_projection(table: str) -> LatestProjection:
    return LatestProjection(table, EDGE_COLUMNS, EDGE_KEY)
