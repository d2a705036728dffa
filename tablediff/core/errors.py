"""
Error taxonomy.
Single responsibility: typed failures that the orchestrator converts into results.
"""

from typing import Iterable, Optional


class TableDiffError(Exception):
    """Base class for every recoverable failure in a comparison."""

    kind = "TableDiffError"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidRequest(TableDiffError):
    """A required parameter is missing or malformed."""

    kind = "InvalidRequest"

    def __init__(self, parameter: str, reason: str):
        self.parameter = parameter
        super().__init__(
            f"[INVALID REQUEST] Parameter '{parameter}' {reason}. "
            f"Suggestion: Provide a value for '{parameter}' and retry."
        )


class SourceNotFound(TableDiffError):
    """A file source is missing or unreadable."""

    kind = "SourceNotFound"

    def __init__(self, path, reason: str = "not found"):
        self.path = str(path)
        super().__init__(
            f"[SOURCE ERROR] File {reason}: {self.path}. "
            f"Suggestion: Check the path and read permissions."
        )


class KeyColumnMissing(TableDiffError):
    """A KeySpec column does not exist in the resolved headers."""

    kind = "KeyColumnMissing"

    def __init__(self, column: str, available: Iterable[str],
                 source: Optional[str] = None):
        self.column = column
        self.available = list(available)
        location = f" in {source}" if source else ""
        super().__init__(
            f"[KEY COLUMN ERROR] Key column '{column}' not found{location}. "
            f"Available columns: {', '.join(self.available)}. "
            f"Suggestion: Use one of the available columns as key."
        )


class UnsafeQuery(TableDiffError):
    """A query failed the SELECT-only textual safety check."""

    kind = "UnsafeQuery"

    def __init__(self, reason: str, keyword: Optional[str] = None):
        self.keyword = keyword
        super().__init__(
            f"[UNSAFE QUERY] {reason}. "
            f"Suggestion: Submit a single read-only statement of the form "
            f"'SELECT ... FROM ...'."
        )


class ConnectionFailure(TableDiffError):
    """Malformed connection target or connection rejected by the server."""

    kind = "ConnectionFailure"

    def __init__(self, target: str, reason: str):
        self.target = target
        super().__init__(
            f"[CONNECTION ERROR] Could not connect to '{target}': {reason}. "
            f"Suggestion: Verify the connection URL "
            f"(e.g. postgresql://host:5432/db, duckdb:///path/file.duckdb) "
            f"and credentials."
        )


class SessionClosed(ConnectionFailure):
    """A query was issued on a session that has already been closed."""

    def __init__(self, session_id: str):
        self.session_id = session_id
        TableDiffError.__init__(
            self,
            f"[CONNECTION ERROR] Session {session_id} is closed. "
            f"Suggestion: Open a new session before executing queries."
        )
        self.target = session_id


class QueryTimeout(TableDiffError):
    """A query exceeded its execution time budget."""

    kind = "QueryTimeout"

    def __init__(self, query: str, timeout: float):
        self.query = query
        self.timeout = timeout
        super().__init__(
            f"[QUERY TIMEOUT] Query did not finish within {timeout:g}s: {query}. "
            f"Suggestion: Narrow the query or raise query_timeout."
        )


class QueryExecutionError(TableDiffError):
    """The database rejected or failed a query."""

    kind = "QueryExecutionError"

    def __init__(self, query: str, reason: str):
        self.query = query
        super().__init__(
            f"[QUERY ERROR] Query failed: {reason}. Query: {query}. "
            f"Suggestion: Run the query directly against the database to debug it."
        )


class MalformedThreshold(TableDiffError):
    """A threshold value is non-numeric or negative."""

    kind = "MalformedThreshold"

    def __init__(self, column: str, value):
        self.column = column
        self.value = value
        super().__init__(
            f"[THRESHOLD ERROR] Threshold for column '{column}' must be a "
            f"non-negative number, got {value!r}. "
            f"Suggestion: Use a percentage such as 2.5."
        )


class ReportGenerationFailure(TableDiffError):
    """The comparison succeeded but the report could not be written."""

    kind = "ReportGenerationFailure"

    def __init__(self, path, reason: str):
        self.path = str(path)
        super().__init__(
            f"[REPORT ERROR] Failed to write report {self.path}: {reason}. "
            f"Suggestion: Check that the output directory is writable."
        )


class FetchCancelled(TableDiffError):
    """A fetch was abandoned because the other side already failed."""

    kind = "FetchCancelled"

    def __init__(self, side: str):
        self.side = side
        super().__init__(
            f"[CANCELLED] Fetch of {side} was cancelled before it started. "
            f"Suggestion: See the error reported for the other side."
        )
