"""
Record matching.
Single responsibility: compare two keyed row sets and classify the differences.

Rows are staged into an in-memory DuckDB database as VARCHAR tables and
compared with SQL, one connection per match call.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence

import duckdb
import pandas as pd

from .errors import KeyColumnMissing
from ..utils.logger import get_logger


logger = get_logger()


Row = Dict[str, Optional[str]]

ORDINAL_COLUMN = "__ordinal__"


def ordinal_column(*column_lists: Sequence[str]) -> str:
    """Staging column name for row order that no data column already uses."""
    taken = {column for columns in column_lists for column in columns}
    name = ORDINAL_COLUMN
    suffix = 1
    while name in taken:
        name = f"{ORDINAL_COLUMN}_{suffix}"
        suffix += 1
    return name


def qident(name: str) -> str:
    """
    Quote SQL identifiers for safe usage in DuckDB queries.

    Args:
        name: Column or table name

    Returns:
        Double-quoted identifier with embedded quotes escaped
    """
    return '"' + str(name).replace('"', '""') + '"'


@dataclass
class MatchResult:
    """Outcome of one match."""

    matched_count: int = 0
    mismatched_count: int = 0
    source_only_rows: List[Row] = field(default_factory=list)
    target_only_rows: List[Row] = field(default_factory=list)
    per_row_detail: List[Dict[str, Any]] = field(default_factory=list)
    compared_columns: List[str] = field(default_factory=list)
    source_only_columns: List[str] = field(default_factory=list)
    target_only_columns: List[str] = field(default_factory=list)
    duplicate_keys: Dict[str, int] = field(default_factory=dict)
    join_key_column: str = ""

    @property
    def source_only_count(self) -> int:
        return len(self.source_only_rows)

    @property
    def target_only_count(self) -> int:
        return len(self.target_only_rows)

    @property
    def has_differences(self) -> bool:
        return bool(self.mismatched_count or self.source_only_rows
                    or self.target_only_rows)


class Matcher:
    """
    DuckDB-backed matcher.

    Values are compared as text with IS DISTINCT FROM, so NULL equals NULL.
    A column with a threshold is also equal when both sides cast to DOUBLE
    and |source - target| <= |source| * pct / 100.
    """

    def match(self, source_rows: Sequence[Row], target_rows: Sequence[Row],
              join_key_column: str,
              thresholds: Optional[Dict[str, float]] = None,
              ignore_columns: Optional[Iterable[str]] = None,
              compare_columns: Optional[Sequence[str]] = None,
              source_columns: Optional[Sequence[str]] = None,
              target_columns: Optional[Sequence[str]] = None) -> MatchResult:
        """
        Match two row sets on a join key.

        Args:
            source_rows: Source rows, join key included
            target_rows: Target rows, join key included
            join_key_column: Column present on both sides holding the key
            thresholds: Column -> tolerated percentage difference
            ignore_columns: Columns kept on the rows but never compared
            compare_columns: Restrict comparison to these columns
            source_columns: Column order when source_rows is empty
            target_columns: Column order when target_rows is empty

        Returns:
            MatchResult

        Raises:
            KeyColumnMissing: If a side lacks the join key column
        """
        thresholds = dict(thresholds or {})
        ignored = set(ignore_columns or ())

        src_cols = self._columns(source_rows, source_columns)
        tgt_cols = self._columns(target_rows, target_columns)
        for side, cols in (("source", src_cols), ("target", tgt_cols)):
            if join_key_column not in cols:
                raise KeyColumnMissing(join_key_column, cols, source=side)

        shared = [c for c in src_cols if c in tgt_cols and c != join_key_column]
        if compare_columns is not None:
            allowed = set(compare_columns)
            shared = [c for c in shared if c in allowed]
        compared = [c for c in shared if c not in ignored]

        result = MatchResult(
            compared_columns=compared,
            source_only_columns=[c for c in src_cols if c not in tgt_cols],
            target_only_columns=[c for c in tgt_cols if c not in src_cols],
            join_key_column=join_key_column,
        )

        for column in thresholds:
            if column not in compared:
                logger.warning("matcher.threshold.unused_column", column=column)

        logger.info("matcher.starting",
                   source_rows=len(source_rows),
                   target_rows=len(target_rows),
                   key=join_key_column,
                   compared_columns=len(compared))

        ordinal = ordinal_column(src_cols, tgt_cols)
        con = duckdb.connect()
        try:
            self._stage(con, "src", source_rows, src_cols, ordinal)
            self._stage(con, "tgt", target_rows, tgt_cols, ordinal)

            for side, table in (("source", "src"), ("target", "tgt")):
                duplicates = self._count_duplicate_keys(con, table, join_key_column)
                if duplicates:
                    result.duplicate_keys[side] = duplicates
                    logger.warning("matcher.duplicate_keys",
                                  side=side,
                                  keys=duplicates,
                                  action="first occurrence used")
                self._create_unique_view(con, table, join_key_column, ordinal)

            result.source_only_rows = self._find_only_in(
                con, "src_u", "tgt_u", join_key_column, src_cols, ordinal)
            result.target_only_rows = self._find_only_in(
                con, "tgt_u", "src_u", join_key_column, tgt_cols, ordinal)

            both = con.execute(f"""
                SELECT COUNT(*)
                FROM src_u s
                INNER JOIN tgt_u t ON s.{qident(join_key_column)} = t.{qident(join_key_column)}
            """).fetchone()[0]

            result.per_row_detail = self._find_value_differences(
                con, join_key_column, compared, thresholds, ordinal)
            result.mismatched_count = len(
                {detail["key"] for detail in result.per_row_detail})
            result.matched_count = int(both) - result.mismatched_count
        finally:
            con.close()

        logger.info("matcher.completed",
                   matched=result.matched_count,
                   mismatched=result.mismatched_count,
                   source_only=result.source_only_count,
                   target_only=result.target_only_count)
        return result

    @staticmethod
    def _columns(rows: Sequence[Row],
                 columns: Optional[Sequence[str]]) -> List[str]:
        if rows:
            return list(rows[0].keys())
        return list(columns or [])

    def _stage(self, con, table: str, rows: Sequence[Row],
               columns: List[str], ordinal: str) -> None:
        """Create a VARCHAR table with an ordinal column and load the rows."""
        column_defs = ", ".join(
            [f"{qident(ordinal)} BIGINT"]
            + [f"{qident(c)} VARCHAR" for c in columns]
        )
        con.execute(f"CREATE TABLE {table} ({column_defs})")
        if not rows:
            return

        df = pd.DataFrame(
            [[row.get(c) for c in columns] for row in rows],
            columns=columns,
            dtype=object,
        )
        df.insert(0, ordinal, range(len(df)))
        con.register(f"{table}_df", df)
        con.execute(f"INSERT INTO {table} SELECT * FROM {table}_df")
        con.unregister(f"{table}_df")

    @staticmethod
    def _count_duplicate_keys(con, table: str, key: str) -> int:
        return con.execute(f"""
            SELECT COUNT(*) FROM (
                SELECT {qident(key)}
                FROM {table}
                GROUP BY {qident(key)}
                HAVING COUNT(*) > 1
            )
        """).fetchone()[0]

    @staticmethod
    def _create_unique_view(con, table: str, key: str, ordinal: str) -> None:
        con.execute(f"""
            CREATE VIEW {table}_u AS
            SELECT * FROM {table}
            QUALIFY ROW_NUMBER() OVER (
                PARTITION BY {qident(key)} ORDER BY {qident(ordinal)}
            ) = 1
        """)

    @staticmethod
    def _find_only_in(con, left: str, right: str, key: str,
                      columns: List[str], ordinal: str) -> List[Row]:
        """Rows of `left` whose key has no counterpart in `right`."""
        select = ", ".join(f"l.{qident(c)}" for c in columns)
        sql = f"""
            SELECT {select}
            FROM {left} l
            LEFT JOIN {right} r ON l.{qident(key)} = r.{qident(key)}
            WHERE r.{qident(key)} IS NULL
            ORDER BY l.{qident(ordinal)}
        """
        logger.debug("matcher.sql.find_only_in", table=left)
        return [dict(zip(columns, values)) for values in con.execute(sql).fetchall()]

    @staticmethod
    def _difference_condition(column: str, pct: Optional[float]) -> str:
        s = f"s.{qident(column)}"
        t = f"t.{qident(column)}"
        condition = f"{s} IS DISTINCT FROM {t}"
        if pct is None:
            return condition
        tolerance = (
            f"abs(TRY_CAST({s} AS DOUBLE) - TRY_CAST({t} AS DOUBLE)) "
            f"<= abs(TRY_CAST({s} AS DOUBLE)) * {float(pct)!r} / 100.0"
        )
        return f"({condition} AND NOT COALESCE({tolerance}, FALSE))"

    def _find_value_differences(self, con, key: str, compared: List[str],
                                thresholds: Dict[str, float],
                                ordinal: str) -> List[Dict[str, Any]]:
        if not compared:
            return []

        union_queries = []
        for position, column in enumerate(compared):
            literal = column.replace("'", "''")
            union_queries.append(f"""
                SELECT
                    s.{qident(key)} AS diff_key,
                    '{literal}' AS column_name,
                    s.{qident(column)} AS source_value,
                    t.{qident(column)} AS target_value,
                    s.{qident(ordinal)} AS row_order,
                    {position} AS column_order
                FROM src_u s
                INNER JOIN tgt_u t ON s.{qident(key)} = t.{qident(key)}
                WHERE {self._difference_condition(column, thresholds.get(column))}
            """)

        sql = f"""
            SELECT diff_key, column_name, source_value, target_value
            FROM ({' UNION ALL '.join(union_queries)})
            ORDER BY row_order, column_order
        """
        return [
            {
                "key": key_value,
                "column": column_name,
                "source_value": source_value,
                "target_value": target_value,
            }
            for key_value, column_name, source_value, target_value
            in con.execute(sql).fetchall()
        ]
