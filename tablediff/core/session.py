"""
Connection sessions.
Single responsibility: scope one live database connection from connect to close.

Every session owns a single worker thread. All driver calls for that
session (connect, execute, close) run on the worker, which keeps drivers
with thread affinity happy and lets a caller bound a statement with a
timeout without blocking on the driver.
"""

import threading
import time
import uuid
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Sequence, Union

from ..adapters.engines import (
    DRIVER_ERRORS,
    ConnectionTarget,
    Credentials,
    EngineConnection,
    QueryEngine,
    parse_target,
)
from .errors import (
    ConnectionFailure,
    QueryExecutionError,
    QueryTimeout,
    SessionClosed,
    TableDiffError,
)
from .query_safety import (
    add_limit,
    count_query,
    strip_trailing_semicolon,
    validate_query_safety,
)
from ..utils.logger import get_logger
from ..utils.normalizers import truncate_text


logger = get_logger()


Row = Dict[str, Optional[str]]


class ConnectionRegistry:
    """
    Live sessions keyed by opaque id.

    The only state shared between comparisons; every operation holds the lock.
    """

    def __init__(self):
        self._sessions: Dict[str, "ConnectionSession"] = {}
        self._lock = threading.Lock()

    def add(self, session: "ConnectionSession") -> str:
        with self._lock:
            self._sessions[session.session_id] = session
        return session.session_id

    def remove(self, session_id: str) -> None:
        with self._lock:
            self._sessions.pop(session_id, None)

    def get(self, session_id: str) -> Optional["ConnectionSession"]:
        with self._lock:
            return self._sessions.get(session_id)

    def active_count(self) -> int:
        with self._lock:
            return len(self._sessions)

    def close_all(self) -> int:
        """
        Close every registered session.

        Returns:
            Number of sessions closed
        """
        with self._lock:
            sessions = list(self._sessions.values())

        for session in sessions:
            try:
                session.close()
            except TableDiffError as e:
                logger.warning("session.close_all.failed",
                              session_id=session.session_id,
                              error=e.message)
        return len(sessions)


@dataclass
class QueryResult:
    """Rows returned by one execution."""

    query: str
    columns: List[str]
    rows: List[Row]
    elapsed_seconds: float
    total_count: Optional[int] = None
    row_limit: Optional[int] = None
    warnings: List[str] = field(default_factory=list)

    @property
    def row_count(self) -> int:
        return len(self.rows)

    @property
    def truncated(self) -> bool:
        """True when a preview returned fewer rows than the query holds."""
        if self.total_count is None:
            return False
        return self.total_count > self.row_count

    def to_dict(self) -> Dict[str, Any]:
        return {
            "query": self.query,
            "columns": self.columns,
            "rows": self.rows,
            "rowCount": self.row_count,
            "totalCount": self.total_count,
            "executionTime": round(self.elapsed_seconds, 3),
        }


def unique_labels(labels: Sequence[str]) -> List[str]:
    """
    Make result set labels unique by suffixing the 1-based ordinal.

    Args:
        labels: Column labels by ordinal

    Returns:
        Labels with duplicates renamed to <label>_<ordinal>
    """
    seen = set()
    unique = []
    for ordinal, label in enumerate(labels, start=1):
        label = str(label)
        if label in seen:
            renamed = f"{label}_{ordinal}"
            logger.warning("session.duplicate_column_label",
                          column=label,
                          renamed=renamed)
            label = renamed
        seen.add(label)
        unique.append(label)
    return unique


def _to_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    return str(value)


class ConnectionSession:
    """
    One live connection, used by exactly one comparison.
    """

    def __init__(self, target: ConnectionTarget, connection: EngineConnection,
                 executor: ThreadPoolExecutor, registry: ConnectionRegistry,
                 query_timeout: Optional[float] = None,
                 close_timeout: float = 30.0):
        """
        Initialize session. Use SessionManager.connect to create one.

        Args:
            target: Parsed connection target
            connection: Open driver connection
            executor: Single-worker executor that owns the connection
            registry: Registry the session is recorded in
            query_timeout: Default per-statement timeout in seconds
            close_timeout: Seconds to wait for the driver to close
        """
        self.session_id = uuid.uuid4().hex
        self.target = target
        self.query_timeout = query_timeout
        self.close_timeout = close_timeout
        self._connection = connection
        self._executor = executor
        self._registry = registry
        self._closed = False
        self._state_lock = threading.Lock()

        registry.add(self)

    @property
    def database(self) -> str:
        return self.target.database

    @property
    def closed(self) -> bool:
        return self._closed

    def execute(self, query: str, row_limit: Optional[int] = None,
                timeout: Optional[float] = None) -> QueryResult:
        """
        Run one validated SELECT.

        Args:
            query: Query text
            row_limit: Preview size; appends LIMIT unless present and
                fetches the unbounded count in a second round trip
            timeout: Seconds before the statement is interrupted
                (session default when None)

        Returns:
            QueryResult

        Raises:
            UnsafeQuery: Before any I/O
            SessionClosed: If the session was closed
            QueryTimeout: If the statement exceeded its timeout
            QueryExecutionError: If the database failed the statement
        """
        validate_query_safety(query)
        if self._closed:
            raise SessionClosed(self.session_id)

        timeout = self.query_timeout if timeout is None else timeout
        sql = add_limit(query, row_limit) if row_limit else strip_trailing_semicolon(query)

        logger.info("session.query.executing",
                   session_id=self.session_id,
                   database=self.database,
                   query=truncate_text(sql))

        start = time.perf_counter()
        labels, raw_rows = self._run(sql, timeout)
        columns = unique_labels(labels)
        rows = [
            {column: _to_text(value) for column, value in zip(columns, raw)}
            for raw in raw_rows
        ]

        result = QueryResult(
            query=query,
            columns=columns,
            rows=rows,
            elapsed_seconds=time.perf_counter() - start,
            row_limit=row_limit,
        )

        if row_limit:
            result.total_count = self._count(query, timeout, result)

        logger.info("session.query.completed",
                   session_id=self.session_id,
                   rows=result.row_count,
                   total=result.total_count,
                   duration=round(result.elapsed_seconds, 3))
        return result

    def _count(self, query: str, timeout: Optional[float],
               result: QueryResult) -> Optional[int]:
        try:
            _, rows = self._run(count_query(query), timeout)
            return int(rows[0][0]) if rows else 0
        except (QueryExecutionError, QueryTimeout, ValueError, TypeError) as e:
            message = getattr(e, "message", str(e))
            logger.warning("session.query.count_failed",
                          session_id=self.session_id,
                          error=message)
            result.warnings.append(f"Total row count unavailable: {message}")
            return None

    def _run(self, sql: str, timeout: Optional[float]):
        future = self._executor.submit(self._connection.execute, sql)
        try:
            return future.result(timeout=timeout or None)
        except FutureTimeout:
            logger.error("session.query.timeout",
                        session_id=self.session_id,
                        timeout=timeout,
                        query=truncate_text(sql))
            self._interrupt()
            raise QueryTimeout(truncate_text(sql), timeout)
        except DRIVER_ERRORS as e:
            logger.error("session.query.failed",
                        session_id=self.session_id,
                        error=str(e))
            raise QueryExecutionError(truncate_text(sql), str(e))

    def _interrupt(self) -> None:
        try:
            self._connection.interrupt()
        except DRIVER_ERRORS as e:
            logger.warning("session.interrupt.failed",
                          session_id=self.session_id,
                          error=str(e))

    def close(self) -> None:
        """
        Close the connection and leave the registry. Safe to call twice.

        Raises:
            ConnectionFailure: If the driver failed while closing
        """
        with self._state_lock:
            if self._closed:
                return
            self._closed = True

        future = self._executor.submit(self._connection.close)
        try:
            future.result(timeout=self.close_timeout)
        except FutureTimeout:
            logger.warning("session.close.timeout",
                          session_id=self.session_id,
                          timeout=self.close_timeout)
        except DRIVER_ERRORS as e:
            raise ConnectionFailure(self.target.raw, f"close failed ({e})")
        finally:
            self._registry.remove(self.session_id)
            self._executor.shutdown(wait=False)
            logger.info("session.closed",
                       session_id=self.session_id,
                       database=self.database)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False


class SessionManager:
    """
    Opens sessions and guarantees their release.
    """

    def __init__(self, engine: Optional[QueryEngine] = None,
                 registry: Optional[ConnectionRegistry] = None,
                 query_timeout: Optional[float] = None,
                 close_timeout: float = 30.0):
        """
        Initialize session manager.

        Args:
            engine: Driver front end (QueryEngine when None)
            registry: Shared session registry
            query_timeout: Default per-statement timeout in seconds
            close_timeout: Seconds to wait for a driver close
        """
        self.engine = engine or QueryEngine()
        self.registry = registry if registry is not None else ConnectionRegistry()
        self.query_timeout = query_timeout
        self.close_timeout = close_timeout

    def connect(self, target: Union[str, ConnectionTarget],
                credentials: Optional[Credentials] = None) -> ConnectionSession:
        """
        Open a session.

        Args:
            target: Connection target text or parsed target
            credentials: Username / password

        Returns:
            Registered ConnectionSession

        Raises:
            ConnectionFailure: Malformed target or connection rejected
        """
        parsed = target if isinstance(target, ConnectionTarget) else parse_target(target)

        logger.info("session.connect.start",
                   database=parsed.database,
                   engine=parsed.engine)

        executor = ThreadPoolExecutor(
            max_workers=1, thread_name_prefix=f"session-{parsed.database}"
        )
        future = executor.submit(self.engine.connect, parsed, credentials)
        try:
            connection = future.result()
        except TableDiffError as e:
            executor.shutdown(wait=False)
            logger.error("session.connect.failed",
                        database=parsed.database,
                        error=e.message)
            raise
        except DRIVER_ERRORS as e:
            executor.shutdown(wait=False)
            logger.error("session.connect.failed",
                        database=parsed.database,
                        error=str(e))
            raise ConnectionFailure(parsed.raw, str(e))

        session = ConnectionSession(
            parsed, connection, executor, self.registry,
            query_timeout=self.query_timeout,
            close_timeout=self.close_timeout,
        )
        logger.info("session.connect.success",
                   session_id=session.session_id,
                   database=parsed.database,
                   active=self.registry.active_count())
        return session

    @contextmanager
    def session(self, target: Union[str, ConnectionTarget],
                credentials: Optional[Credentials] = None
                ) -> Iterator[ConnectionSession]:
        """
        Acquire a session, yield it, always close it.

        A close failure while another error is propagating is logged and
        the primary error is re-raised.
        """
        session = self.connect(target, credentials)
        try:
            yield session
        except BaseException:
            try:
                session.close()
            except TableDiffError as close_error:
                logger.warning("session.close.failed_during_unwind",
                              session_id=session.session_id,
                              error=close_error.message)
            raise
        session.close()

    def test_connection(self, target: str,
                        credentials: Optional[Credentials] = None) -> Dict[str, Any]:
        """
        Connect, run SELECT 1, close.

        Returns:
            Status dict with status, database, message and executionTime
        """
        start = time.perf_counter()
        try:
            with self.session(target, credentials) as session:
                session.execute("SELECT 1")
                database = session.database
        except TableDiffError as e:
            return {
                "status": "FAILED",
                "database": None,
                "errorKind": e.kind,
                "message": e.message,
                "executionTime": round(time.perf_counter() - start, 3),
            }

        return {
            "status": "SUCCESS",
            "database": database,
            "message": f"Connected to {database}",
            "executionTime": round(time.perf_counter() - start, 3),
        }
