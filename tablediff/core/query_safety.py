"""
Query safety and query text helpers.
Single responsibility: textual SELECT-only validation and query rewriting.

This is a defense-in-depth check, not a SQL parser.
"""

import re
from typing import Optional

from .errors import UnsafeQuery
from ..utils.normalizers import sanitize_hint


BLOCKED_KEYWORDS = (
    "DROP", "DELETE", "INSERT", "UPDATE", "ALTER", "CREATE",
    "TRUNCATE", "GRANT", "REVOKE", "EXEC", "EXECUTE",
)

_LEADING_TOKEN = re.compile(r"^\s*([A-Za-z_]+)")
_LIMIT_CLAUSE = re.compile(r"\bLIMIT\b", re.IGNORECASE)


def strip_trailing_semicolon(sql: str) -> str:
    """
    Strip trailing semicolon from SQL query to prepare for safe wrapping.

    Args:
        sql: SQL query that may contain trailing semicolon

    Returns:
        SQL query without trailing semicolon
    """
    if not sql:
        return sql

    sql_stripped = sql.strip()
    while sql_stripped.endswith(';'):
        sql_stripped = sql_stripped[:-1].rstrip()

    return sql_stripped


def validate_query_safety(query: Optional[str]) -> None:
    """
    Reject anything that is not a read-only SELECT.

    Every statement-leading token (start of text and after each ';') is
    checked against BLOCKED_KEYWORDS, then the text must begin with SELECT.

    Args:
        query: Query text

    Raises:
        UnsafeQuery: naming the offending keyword or the required shape
    """
    if query is None or not query.strip():
        raise UnsafeQuery("Query text is empty")

    for statement in query.strip().split(";"):
        match = _LEADING_TOKEN.match(statement)
        if not match:
            continue
        token = match.group(1).upper()
        if token in BLOCKED_KEYWORDS:
            raise UnsafeQuery(
                f"Unsafe query operation not allowed: {token}", keyword=token
            )

    if not query.strip().upper().startswith("SELECT"):
        raise UnsafeQuery("Only SELECT queries are allowed")


def add_limit(query: str, limit: int) -> str:
    """
    Bound a query for preview unless it already carries a LIMIT.

    Args:
        query: Validated query text
        limit: Row limit to append

    Returns:
        Bounded query
    """
    trimmed = strip_trailing_semicolon(query)
    if _LIMIT_CLAUSE.search(trimmed):
        return trimmed
    return f"{trimmed} LIMIT {int(limit)}"


def count_query(query: str) -> str:
    """Wrap a query so it returns its unbounded row count."""
    return (
        "SELECT COUNT(*) AS total_count FROM ("
        f"{strip_trailing_semicolon(query)}"
        ") AS count_subquery"
    )


def extract_table_hint(query: Optional[str]) -> str:
    """
    Table name following the first FROM of a SELECT, for file naming.

    Args:
        query: Query text

    Returns:
        Sanitized table hint, "query" when none can be found
    """
    if query and query.strip():
        words = query.strip().split()
        if len(words) >= 3 and words[0].upper() == "SELECT":
            for i in range(1, len(words) - 1):
                if words[i].upper() == "FROM":
                    hint = re.sub(r"[^A-Za-z0-9_]", "", words[i + 1])
                    return sanitize_hint(hint, default="query")
    return "query"
