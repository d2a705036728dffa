"""
Query engines.
Single responsibility: driver-agnostic connect / execute / interrupt / close.

`duckdb://` targets use the native DuckDB driver. Every other
`dialect[+driver]://` URL, and `jdbc:postgresql://` URLs, go through
SQLAlchemy with pooling disabled.
"""

from dataclasses import dataclass
from typing import Any, List, Optional, Sequence, Tuple

import duckdb
from sqlalchemy import create_engine, text
from sqlalchemy.engine import make_url
from sqlalchemy.exc import ArgumentError, SQLAlchemyError
from sqlalchemy.pool import NullPool

from ..core.errors import ConnectionFailure
from ..utils.logger import get_logger


logger = get_logger()

# Driver-level failures raised while a statement runs
DRIVER_ERRORS = (duckdb.Error, SQLAlchemyError)


@dataclass(frozen=True)
class Credentials:
    """Username / password passed through to the driver untouched."""

    username: Optional[str] = None
    password: Optional[str] = None

    def __repr__(self) -> str:
        return f"Credentials(username={self.username!r}, password='***')"


@dataclass(frozen=True)
class ConnectionTarget:
    """Parsed connection target."""

    raw: str
    engine: str  # "duckdb" or "sqlalchemy"
    url: str
    database: str


def parse_target(target: Optional[str]) -> ConnectionTarget:
    """
    Validate and classify a connection target without connecting.

    Accepted forms:
        duckdb:///path/to/file.duckdb, duckdb:///:memory:
        jdbc:postgresql://host:port/database
        any SQLAlchemy URL such as postgresql://host/db or sqlite:///file.db

    Args:
        target: Connection target text

    Returns:
        ConnectionTarget

    Raises:
        ConnectionFailure: If the target is empty or malformed
    """
    if target is None or not str(target).strip():
        raise ConnectionFailure("", "connection target is empty")

    raw = str(target).strip()
    lowered = raw.lower()

    if lowered.startswith("duckdb://"):
        # Same convention as sqlite: duckdb:///relative, duckdb:////absolute
        path = raw[len("duckdb://"):]
        if path.startswith("/"):
            path = path[1:]
        path = path or ":memory:"
        return ConnectionTarget(raw=raw, engine="duckdb", url=path,
                                database=_database_name(path))

    if lowered.startswith("jdbc:"):
        if not lowered.startswith("jdbc:postgresql://"):
            raise ConnectionFailure(
                raw, "only jdbc:postgresql:// JDBC URLs can be translated")
        url = "postgresql://" + raw[len("jdbc:postgresql://"):]
    else:
        url = raw

    if "://" not in url:
        raise ConnectionFailure(
            raw, "malformed target, expected dialect://host[:port]/database")

    try:
        parsed = make_url(url)
    except ArgumentError as e:
        raise ConnectionFailure(raw, f"malformed target ({e})")

    return ConnectionTarget(raw=raw, engine="sqlalchemy", url=url,
                            database=_database_name(parsed.database or ""))


def _database_name(database: str) -> str:
    if not database or database == ":memory:":
        return "memory"
    name = database.replace("\\", "/").rstrip("/").split("/")[-1]
    name = name.split("?")[0]
    for suffix in (".duckdb", ".db", ".sqlite", ".sqlite3"):
        if name.lower().endswith(suffix):
            name = name[: -len(suffix)]
    return name or "unknown"


class EngineConnection:
    """One live driver connection."""

    def execute(self, sql: str) -> Tuple[List[str], List[Sequence[Any]]]:
        """Run a statement and return (column names by ordinal, rows)."""
        raise NotImplementedError

    def interrupt(self) -> None:
        """Ask the driver to abort the statement in flight."""

    def close(self) -> None:
        raise NotImplementedError


class DuckDBConnection(EngineConnection):
    def __init__(self, con: duckdb.DuckDBPyConnection):
        self.con = con

    def execute(self, sql: str):
        cursor = self.con.execute(sql)
        columns = [desc[0] for desc in (cursor.description or [])]
        return columns, cursor.fetchall()

    def interrupt(self) -> None:
        self.con.interrupt()

    def close(self) -> None:
        self.con.close()


class SQLAlchemyConnection(EngineConnection):
    def __init__(self, engine, conn):
        self.engine = engine
        self.conn = conn

    def execute(self, sql: str):
        result = self.conn.execute(text(sql))
        columns = list(result.keys())
        return columns, [tuple(row) for row in result]

    def interrupt(self) -> None:
        dbapi_conn = self.conn.connection.dbapi_connection
        # sqlite3 exposes interrupt(), psycopg exposes cancel()
        for name in ("interrupt", "cancel"):
            hook = getattr(dbapi_conn, name, None)
            if callable(hook):
                hook()
                return
        logger.warning("engine.interrupt.unsupported",
                      driver=type(dbapi_conn).__name__)

    def close(self) -> None:
        try:
            self.conn.close()
        finally:
            self.engine.dispose()


class QueryEngine:
    """Opens driver connections for parsed targets."""

    def connect(self, target: ConnectionTarget,
                credentials: Optional[Credentials] = None) -> EngineConnection:
        """
        Open a connection.

        Args:
            target: Parsed connection target
            credentials: Username/password (ignored by DuckDB)

        Returns:
            EngineConnection

        Raises:
            ConnectionFailure: If the driver rejects the connection
        """
        if target.engine == "duckdb":
            return self._connect_duckdb(target)
        return self._connect_sqlalchemy(target, credentials or Credentials())

    def _connect_duckdb(self, target: ConnectionTarget) -> EngineConnection:
        read_only = target.url != ":memory:"
        try:
            con = duckdb.connect(target.url, read_only=read_only)
        except duckdb.Error as e:
            raise ConnectionFailure(target.raw, str(e))
        return DuckDBConnection(con)

    def _connect_sqlalchemy(self, target: ConnectionTarget,
                            credentials: Credentials) -> EngineConnection:
        try:
            url = make_url(target.url)
            if credentials.username:
                url = url.set(username=credentials.username)
            if credentials.password is not None:
                url = url.set(password=credentials.password)
            engine = create_engine(url, poolclass=NullPool)
        except (ArgumentError, ImportError) as e:
            # ImportError: the DBAPI driver for this dialect is not installed
            raise ConnectionFailure(target.raw, str(e))

        try:
            conn = engine.connect()
        except SQLAlchemyError as e:
            engine.dispose()
            reason = str(getattr(e, "orig", None) or e)
            raise ConnectionFailure(target.raw, reason)
        return SQLAlchemyConnection(engine, conn)
