"""
Source fetching.
Single responsibility: turn one source descriptor into a normalized FetchResult.
"""

import threading
import time
from dataclasses import dataclass, field
from typing import List, Optional

from .normalizer import Row, TableNormalizer
from ..adapters.delimiter import DelimiterDetector
from ..adapters.file_reader import FileReader
from ..config.models import (
    FileSource,
    QuerySource,
    RecordsSource,
    Settings,
    SourceDescriptor,
)
from ..core.errors import FetchCancelled, InvalidRequest
from ..core.query_safety import extract_table_hint
from ..core.session import ConnectionSession, SessionManager
from ..utils.logger import get_logger
from ..utils.normalizers import file_hint, sanitize_hint, truncate_text


logger = get_logger()


@dataclass
class FetchResult:
    """Rows fetched from one side of a comparison."""

    rows: List[Row]
    columns: List[str]
    kind: str
    descriptor: str
    hint: str
    elapsed_seconds: float = 0.0
    database: Optional[str] = None
    warnings: List[str] = field(default_factory=list)

    @property
    def row_count(self) -> int:
        return len(self.rows)


class SourceFetcher:
    """
    Fetch files, inline records and query results as canonical rows.
    """

    def __init__(self, sessions: Optional[SessionManager] = None,
                 normalizer: Optional[TableNormalizer] = None,
                 file_reader: Optional[FileReader] = None,
                 settings: Optional[Settings] = None):
        """
        Initialize fetcher.

        Args:
            sessions: Session manager used for query sources
            normalizer: Row normalizer
            file_reader: Reader for spreadsheets
            settings: Defaults (header flag, delimiter, timeouts)
        """
        self.settings = settings or Settings()
        self.sessions = sessions or SessionManager(
            query_timeout=self.settings.query_timeout
        )
        self.file_reader = file_reader or FileReader()
        self.normalizer = normalizer or TableNormalizer(
            composite_column=self.settings.composite_key_column,
            file_reader=self.file_reader,
            detector=DelimiterDetector(
                sample_lines=self.settings.sample_lines,
                default=self.settings.default_delimiter,
            ),
        )

    def fetch(self, descriptor: SourceDescriptor, key_spec: str,
              session: Optional[ConnectionSession] = None,
              cancelled: Optional[threading.Event] = None,
              side: str = "source") -> FetchResult:
        """
        Fetch one side.

        Args:
            descriptor: FileSource, RecordsSource or QuerySource
            key_spec: Resolved KeySpec string for this side
            session: Open session to reuse for a QuerySource
            cancelled: Set by the other side on failure; checked before
                any connection is opened
            side: "source" or "target", for logs

        Returns:
            FetchResult

        Raises:
            TableDiffError: Any failure from reading, connecting or querying
        """
        start = time.perf_counter()
        logger.info("fetcher.fetch.start",
                   side=side,
                   kind=descriptor.kind,
                   descriptor=truncate_text(descriptor.describe()))

        if isinstance(descriptor, FileSource):
            result = self._fetch_file(descriptor, key_spec)
        elif isinstance(descriptor, RecordsSource):
            result = self._fetch_records(descriptor, key_spec)
        elif isinstance(descriptor, QuerySource):
            if cancelled is not None and cancelled.is_set():
                raise FetchCancelled(side)
            result = self._fetch_query(descriptor, key_spec, session)
        else:
            raise InvalidRequest(side, f"has unsupported descriptor type "
                                       f"{type(descriptor).__name__}")

        result.elapsed_seconds = time.perf_counter() - start
        logger.info("fetcher.fetch.completed",
                   side=side,
                   rows=result.row_count,
                   columns=len(result.columns),
                   duration=round(result.elapsed_seconds, 3))
        return result

    def _fetch_file(self, descriptor: FileSource, key_spec: str) -> FetchResult:
        if descriptor.kind == "spreadsheet":
            sheet = descriptor.sheet
            if sheet in (None, ""):
                sheet = self.settings.default_sheet
            columns, records = self.file_reader.read_sheet(descriptor.path, sheet)
            rows = self.normalizer.normalize_records(
                records, key_spec, columns=columns, source=descriptor.describe()
            )
            hint = file_hint(descriptor.path)
            if sheet not in (None, ""):
                hint = f"{hint}_{sanitize_hint(str(sheet))}"
            return FetchResult(
                rows=rows,
                columns=list(rows[0].keys()) if rows else columns,
                kind="excel",
                descriptor=descriptor.describe(),
                hint=hint,
            )

        has_header = descriptor.has_header
        if has_header is None:
            has_header = self.settings.has_header
        rows, _ = self.normalizer.normalize_file(
            descriptor.path, key_spec,
            delimiter=descriptor.delimiter,
            has_header_row=has_header,
            encoding=descriptor.encoding,
        )
        return FetchResult(
            rows=rows,
            columns=list(rows[0].keys()) if rows else [],
            kind="csv",
            descriptor=descriptor.describe(),
            hint=file_hint(descriptor.path),
        )

    def _fetch_records(self, descriptor: RecordsSource,
                       key_spec: str) -> FetchResult:
        rows = self.normalizer.normalize_records(
            descriptor.records, key_spec,
            columns=descriptor.columns, source=descriptor.name,
        )
        columns = list(rows[0].keys()) if rows else list(descriptor.columns or [])
        return FetchResult(
            rows=rows,
            columns=columns,
            kind="table",
            descriptor=descriptor.describe(),
            hint=sanitize_hint(descriptor.name),
        )

    def _fetch_query(self, descriptor: QuerySource, key_spec: str,
                     session: Optional[ConnectionSession]) -> FetchResult:
        if session is not None:
            query_result = session.execute(descriptor.query)
            database = session.database
        else:
            with self.sessions.session(descriptor.target,
                                       descriptor.credentials) as owned:
                query_result = owned.execute(descriptor.query)
                database = owned.database

        rows = self.normalizer.normalize_records(
            query_result.rows, key_spec,
            columns=query_result.columns,
            source=f"{database}: {truncate_text(descriptor.query)}",
        )
        table = extract_table_hint(descriptor.query)
        return FetchResult(
            rows=rows,
            columns=list(rows[0].keys()) if rows else list(query_result.columns),
            kind="database",
            descriptor=f"{truncate_text(descriptor.query)} ({database})",
            hint=f"{sanitize_hint(database)}_{table}",
            database=database,
            warnings=list(query_result.warnings),
        )
