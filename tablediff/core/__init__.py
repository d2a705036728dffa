"""
Core comparison logic.

Sessions and the orchestrator depend on the adapters package; import them
from their modules (tablediff.core.session, tablediff.core.orchestrator).
"""

from .errors import (
    TableDiffError,
    InvalidRequest,
    SourceNotFound,
    KeyColumnMissing,
    UnsafeQuery,
    ConnectionFailure,
    SessionClosed,
    QueryTimeout,
    QueryExecutionError,
    MalformedThreshold,
    ReportGenerationFailure,
    FetchCancelled
)
from .query_safety import validate_query_safety, add_limit, count_query

__all__ = [
    "TableDiffError",
    "InvalidRequest",
    "SourceNotFound",
    "KeyColumnMissing",
    "UnsafeQuery",
    "ConnectionFailure",
    "SessionClosed",
    "QueryTimeout",
    "QueryExecutionError",
    "MalformedThreshold",
    "ReportGenerationFailure",
    "FetchCancelled",
    "validate_query_safety",
    "add_limit",
    "count_query",
]
