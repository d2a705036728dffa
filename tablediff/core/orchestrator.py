"""
Comparison orchestration.
Single responsibility: run one comparison from validated request to report.

Every failure is converted into a FAILED ComparisonSummary at this boundary;
sessions are always released before the summary is returned.
"""

import threading
import time
import traceback
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

from .errors import FetchCancelled, InvalidRequest, TableDiffError
from .matcher import Matcher
from .query_safety import extract_table_hint, validate_query_safety
from .report import ExcelReportGenerator
from .session import SessionManager
from ..adapters.engines import Credentials, parse_target
from ..config.models import (
    CompareRequest,
    QuerySource,
    Settings,
    SourceDescriptor,
    descriptor_from_dict,
    parse_thresholds,
)
from ..pipeline.fetcher import FetchResult, SourceFetcher
from ..pipeline.normalizer import parse_column_list, parse_key_spec
from ..utils.logger import get_logger
from ..utils.metrics import MetricsCollector
from ..utils.normalizers import sanitize_hint


logger = get_logger()


TIMESTAMP_FORMAT = "%Y-%m-%d_%H-%M-%S"
MAX_HINT_LENGTH = 40

STATUS_SUCCESS = "SUCCESS"
STATUS_FAILED = "FAILED"


@dataclass
class ComparisonSummary:
    """Outcome of one comparison."""

    status: str
    report_path: Optional[str] = None
    auto_generated_filename: bool = False
    comparison_type: Optional[str] = None
    source_row_count: int = 0
    target_row_count: int = 0
    match_count: int = 0
    mismatch_count: int = 0
    source_extra_count: int = 0
    target_extra_count: int = 0
    execution_time: float = 0.0
    source_database: Optional[str] = None
    target_database: Optional[str] = None
    timings: Dict[str, float] = field(default_factory=dict)
    warnings: List[str] = field(default_factory=list)
    error_kind: Optional[str] = None
    message: str = ""
    name: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status == STATUS_SUCCESS

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "status": self.status,
            "reportFile": self.report_path,
            "autoGeneratedFilename": self.auto_generated_filename,
            "comparisonType": self.comparison_type,
            "sourceRowCount": self.source_row_count,
            "targetRowCount": self.target_row_count,
            "matchCount": self.match_count,
            "mismatchCount": self.mismatch_count,
            "sourceExtraCount": self.source_extra_count,
            "targetExtraCount": self.target_extra_count,
            "executionTime": round(self.execution_time, 3),
            "sourceDatabase": self.source_database,
            "targetDatabase": self.target_database,
            "timings": dict(self.timings),
            "message": self.message,
        }
        if self.warnings:
            data["warnings"] = list(self.warnings)
        if self.error_kind:
            data["errorKind"] = self.error_kind
        return data


@dataclass
class _Plan:
    """A request with every default resolved."""

    source: SourceDescriptor
    target: SourceDescriptor
    key: str
    source_key: str
    target_key: str
    ignore_columns: Tuple[str, ...]
    thresholds: Dict[str, float]
    output_dir: Path
    report_name: Optional[str]
    same_source: bool


class ComparisonOrchestrator:
    """
    Top-level coordinator for comparisons, previews and exports.
    """

    def __init__(self, settings: Optional[Settings] = None,
                 sessions: Optional[SessionManager] = None,
                 fetcher: Optional[SourceFetcher] = None,
                 matcher: Optional[Matcher] = None,
                 report_generator: Optional[ExcelReportGenerator] = None,
                 clock: Optional[Callable[[], datetime]] = None):
        """
        Initialize orchestrator.

        Args:
            settings: Defaults
            sessions: Session manager (owns the connection registry)
            fetcher: Source fetcher
            matcher: Record matcher
            report_generator: Workbook writer
            clock: Returns the time used in generated file names
        """
        self.settings = settings or Settings()
        self.sessions = sessions or SessionManager(
            query_timeout=self.settings.query_timeout
        )
        self.fetcher = fetcher or SourceFetcher(
            sessions=self.sessions, settings=self.settings
        )
        self.matcher = matcher or Matcher()
        self.report_generator = report_generator or ExcelReportGenerator()
        self.clock = clock or datetime.now

    # ------------------------------------------------------------------
    # Compare
    # ------------------------------------------------------------------

    def compare(self, request: CompareRequest) -> ComparisonSummary:
        """
        Run one comparison.

        Args:
            request: Comparison job

        Returns:
            ComparisonSummary, FAILED with error_kind on any error
        """
        start = time.perf_counter()
        metrics = MetricsCollector()
        if isinstance(request, dict):
            name = request.get("name")
        else:
            name = getattr(request, "name", None)

        logger.info("orchestrator.compare.start", comparison=name)

        try:
            if isinstance(request, dict):
                request = CompareRequest.from_dict(request)
            plan = self._plan(request)
            source, target = self._fetch_both(plan, metrics)
            summary = self._match_and_report(plan, source, target, metrics, start)
        except TableDiffError as e:
            logger.error("orchestrator.compare.failed",
                        comparison=name,
                        kind=e.kind,
                        error=e.message)
            return self._failed(e.kind, e.message, start, metrics, name)
        except Exception as e:
            logger.critical("orchestrator.compare.unexpected_error",
                           comparison=name,
                           error=str(e),
                           traceback=traceback.format_exc())
            return self._failed("UnexpectedError", f"Unexpected error: {e}",
                                start, metrics, name)

        summary.name = name
        logger.info("orchestrator.compare.completed",
                   comparison=name,
                   report=summary.report_path,
                   matched=summary.match_count,
                   mismatched=summary.mismatch_count,
                   duration=round(summary.execution_time, 3))
        return summary

    def _failed(self, kind: str, message: str, start: float,
                metrics: MetricsCollector, name: Optional[str]) -> ComparisonSummary:
        return ComparisonSummary(
            status=STATUS_FAILED,
            error_kind=kind,
            message=message,
            execution_time=time.perf_counter() - start,
            timings=metrics.timings(),
            name=name,
        )

    def _plan(self, request: CompareRequest) -> _Plan:
        """Validate the request and resolve defaults before any I/O."""
        if request is None:
            raise InvalidRequest("request", "is required")
        if request.source is None or request.source == "":
            raise InvalidRequest("source", "is required")
        if request.target is None or request.target == "":
            raise InvalidRequest("target", "is required")

        source = descriptor_from_dict(request.source)
        target = descriptor_from_dict(request.target)

        output_dir = request.output_dir or self.settings.output_dir
        if not output_dir or not str(output_dir).strip():
            raise InvalidRequest("output_dir", "is required")

        key = request.key if request.key and str(request.key).strip() \
            else self.settings.default_key
        key = ",".join(parse_key_spec(key))
        source_key = ",".join(parse_key_spec(source.key)) if source.key else key
        target_key = ",".join(parse_key_spec(target.key)) if target.key else key

        thresholds = parse_thresholds(request.thresholds)
        ignore_columns = parse_column_list(request.ignore_columns)

        for descriptor in (source, target):
            if isinstance(descriptor, QuerySource):
                validate_query_safety(descriptor.query)
                parse_target(descriptor.target)

        report_name = None
        if request.report_name and str(request.report_name).strip():
            report_name = str(request.report_name).strip()
            if "/" in report_name or "\\" in report_name:
                raise InvalidRequest("report_name", "must be a file name, not a path")
            if not report_name.lower().endswith(".xlsx"):
                report_name += ".xlsx"

        same_source = (isinstance(source, QuerySource)
                       and isinstance(target, QuerySource)
                       and source.same_connection(target))

        return _Plan(
            source=source,
            target=target,
            key=key,
            source_key=source_key,
            target_key=target_key,
            ignore_columns=ignore_columns,
            thresholds=thresholds,
            output_dir=Path(str(output_dir)).expanduser(),
            report_name=report_name,
            same_source=same_source,
        )

    # ------------------------------------------------------------------
    # Fetch scheduling
    # ------------------------------------------------------------------

    def _fetch_both(self, plan: _Plan,
                    metrics: MetricsCollector) -> Tuple[FetchResult, FetchResult]:
        if plan.same_source:
            logger.info("orchestrator.mode", mode="same-source")
            return self._fetch_same_source(plan, metrics)
        if self.settings.fetch_mode == "concurrent":
            logger.info("orchestrator.mode", mode="concurrent")
            return self._fetch_concurrent(plan, metrics)
        logger.info("orchestrator.mode", mode="sequential")
        source = self._fetch_side(plan.source, plan.source_key, "source", metrics)
        target = self._fetch_side(plan.target, plan.target_key, "target", metrics)
        return source, target

    def _fetch_side(self, descriptor: SourceDescriptor, key: str, side: str,
                    metrics: MetricsCollector,
                    cancelled: Optional[threading.Event] = None,
                    session=None) -> FetchResult:
        with metrics.track(f"fetch.{side}") as op:
            result = self.fetcher.fetch(descriptor, key, session=session,
                                        cancelled=cancelled, side=side)
            op.record_rows(result.row_count)
        return result

    def _fetch_same_source(self, plan: _Plan,
                           metrics: MetricsCollector) -> Tuple[FetchResult, FetchResult]:
        with self.sessions.session(plan.source.target,
                                   plan.source.credentials) as session:
            source = self._fetch_side(plan.source, plan.source_key, "source",
                                      metrics, session=session)
            target = self._fetch_side(plan.target, plan.target_key, "target",
                                      metrics, session=session)
        return source, target

    def _fetch_concurrent(self, plan: _Plan,
                          metrics: MetricsCollector) -> Tuple[FetchResult, FetchResult]:
        """
        Fetch both sides on two threads.

        A failure on one side cancels the other before it connects; both
        sides finish their own cleanup before the error is raised.
        """
        cancelled = threading.Event()

        def run(descriptor, key, side):
            try:
                return self._fetch_side(descriptor, key, side, metrics,
                                        cancelled=cancelled)
            except BaseException:
                cancelled.set()
                raise

        with ThreadPoolExecutor(max_workers=2, thread_name_prefix="fetch") as pool:
            futures = [
                pool.submit(run, plan.source, plan.source_key, "source"),
                pool.submit(run, plan.target, plan.target_key, "target"),
            ]
            wait(futures)

        errors = [f.exception() for f in futures if f.exception() is not None]
        if errors:
            primary = next(
                (e for e in errors if not isinstance(e, FetchCancelled)), errors[0]
            )
            raise primary

        return futures[0].result(), futures[1].result()

    # ------------------------------------------------------------------
    # Match and report
    # ------------------------------------------------------------------

    def _match_and_report(self, plan: _Plan, source: FetchResult,
                          target: FetchResult, metrics: MetricsCollector,
                          start: float) -> ComparisonSummary:
        join_column = self.settings.join_column
        normalizer = self.fetcher.normalizer

        prepared_source = normalizer.prepare_for_comparison(
            source.rows, plan.source_key, plan.ignore_columns,
            join_column=join_column, source="source")
        prepared_target = normalizer.prepare_for_comparison(
            target.rows, plan.target_key, plan.ignore_columns,
            join_column=join_column, source="target")

        target_compare = set(prepared_target.compare_columns)
        compare_columns = [c for c in prepared_source.compare_columns
                           if c in target_compare]
        source_columns = [join_column] + [c for c in source.columns if c != join_column]
        target_columns = [join_column] + [c for c in target.columns if c != join_column]

        with metrics.track("match") as op:
            result = self.matcher.match(
                prepared_source.rows, prepared_target.rows, join_column,
                thresholds=plan.thresholds,
                ignore_columns=plan.ignore_columns,
                compare_columns=compare_columns,
                source_columns=source_columns,
                target_columns=target_columns,
            )
            op.record_rows(source.row_count + target.row_count)

        type_tag = self._type_tag(source, target, plan.same_source)
        if plan.report_name:
            file_name = plan.report_name
        else:
            file_name = self._report_file_name(source.hint, target.hint, type_tag)
        destination = self._unique_path(plan.output_dir / file_name)

        context = {
            "source_descriptor": source.descriptor,
            "target_descriptor": target.descriptor,
            "source_database": source.database,
            "target_database": target.database,
            "key": plan.key if plan.source_key == plan.target_key
            else f"{plan.source_key} / {plan.target_key}",
            "ignore_columns": list(plan.ignore_columns),
            "source_row_count": source.row_count,
            "target_row_count": target.row_count,
            "source_columns": source_columns,
            "target_columns": target_columns,
            "type_tag": type_tag,
            "execution_time": round(time.perf_counter() - start, 3),
        }

        with metrics.track("report"):
            report_path = self.report_generator.write(
                result, destination, context=context, thresholds=plan.thresholds)

        warnings = list(source.warnings) + list(target.warnings)
        for side, count in result.duplicate_keys.items():
            warnings.append(f"{count} duplicate key(s) in {side}; first occurrence used")

        if result.has_differences:
            message = (f"Comparison completed with differences: "
                       f"{result.mismatched_count} mismatched, "
                       f"{result.source_only_count} source only, "
                       f"{result.target_only_count} target only")
        else:
            message = "Comparison completed: no differences found"

        return ComparisonSummary(
            status=STATUS_SUCCESS,
            report_path=str(report_path),
            auto_generated_filename=plan.report_name is None,
            comparison_type=type_tag,
            source_row_count=source.row_count,
            target_row_count=target.row_count,
            match_count=result.matched_count,
            mismatch_count=result.mismatched_count,
            source_extra_count=result.source_only_count,
            target_extra_count=result.target_only_count,
            execution_time=time.perf_counter() - start,
            source_database=source.database,
            target_database=target.database,
            timings=metrics.timings(),
            warnings=warnings,
            message=message,
        )

    @staticmethod
    def _type_tag(source: FetchResult, target: FetchResult,
                  same_source: bool) -> str:
        if same_source:
            return "database"
        if source.kind == target.kind == "database":
            return "cross_db"
        if source.kind == target.kind:
            return source.kind
        return "mixed"

    def _timestamp(self) -> str:
        return self.clock().strftime(TIMESTAMP_FORMAT)

    def _report_file_name(self, source_hint: str, target_hint: str,
                          type_tag: str) -> str:
        src = sanitize_hint(source_hint)[:MAX_HINT_LENGTH]
        tgt = sanitize_hint(target_hint)[:MAX_HINT_LENGTH]
        return f"{src}_vs_{tgt}_{type_tag}_comparison_{self._timestamp()}.xlsx"

    @staticmethod
    def _unique_path(path: Path) -> Path:
        """Append _2, _3, ... when a report of that name already exists."""
        if not path.exists():
            return path
        counter = 2
        while True:
            candidate = path.with_name(f"{path.stem}_{counter}{path.suffix}")
            if not candidate.exists():
                return candidate
            counter += 1

    # ------------------------------------------------------------------
    # Single-query operations
    # ------------------------------------------------------------------

    def preview_query(self, target: str, query: str,
                      credentials: Optional[Credentials] = None,
                      rows: Optional[int] = None) -> Dict[str, Any]:
        """
        Run a bounded query and report its unbounded total.

        Args:
            target: Connection target
            query: SELECT to preview
            credentials: Username / password
            rows: Preview size (settings.preview_rows when None)

        Returns:
            Status dict with columns, rows, rowCount and totalCount
        """
        start = time.perf_counter()
        limit = rows if rows and rows > 0 else self.settings.preview_rows
        try:
            validate_query_safety(query)
            with self.sessions.session(target, credentials) as session:
                result = session.execute(query, row_limit=limit)
                database = session.database
        except TableDiffError as e:
            logger.error("orchestrator.preview.failed", kind=e.kind, error=e.message)
            return {
                "status": STATUS_FAILED,
                "errorKind": e.kind,
                "message": e.message,
                "executionTime": round(time.perf_counter() - start, 3),
            }

        data = result.to_dict()
        data.update({
            "status": STATUS_SUCCESS,
            "database": database,
            "executionTime": round(time.perf_counter() - start, 3),
            "message": f"Showing {result.row_count} of "
                       f"{result.total_count if result.total_count is not None else 'unknown'} rows",
        })
        if result.warnings:
            data["warnings"] = list(result.warnings)
        return data

    def export_query(self, target: str, query: str,
                     credentials: Optional[Credentials] = None,
                     output_dir: Optional[str] = None,
                     sheet_name: Optional[str] = None,
                     report_name: Optional[str] = None) -> Dict[str, Any]:
        """
        Run a query and write the full result to a single-sheet workbook.

        Returns:
            Status dict with reportFile and rowCount
        """
        start = time.perf_counter()
        try:
            validate_query_safety(query)
            out_dir = output_dir or self.settings.output_dir
            if not out_dir:
                raise InvalidRequest("output_dir", "is required")

            with self.sessions.session(target, credentials) as session:
                result = session.execute(query)
                database = session.database

            if report_name and report_name.strip():
                file_name = report_name.strip()
                if not file_name.lower().endswith(".xlsx"):
                    file_name += ".xlsx"
            else:
                hint = extract_table_hint(query)
                file_name = f"database_{hint}_export_{self._timestamp()}.xlsx"

            destination = self._unique_path(Path(str(out_dir)).expanduser() / file_name)
            path = self.report_generator.write_export(
                result.columns, result.rows, destination,
                sheet_name=sheet_name or "Query Results")
        except TableDiffError as e:
            logger.error("orchestrator.export.failed", kind=e.kind, error=e.message)
            return {
                "status": STATUS_FAILED,
                "errorKind": e.kind,
                "message": e.message,
                "executionTime": round(time.perf_counter() - start, 3),
            }

        return {
            "status": STATUS_SUCCESS,
            "reportFile": str(path),
            "autoGeneratedFilename": not (report_name and report_name.strip()),
            "database": database,
            "rowCount": result.row_count,
            "executionTime": round(time.perf_counter() - start, 3),
            "message": f"Exported {result.row_count} rows",
        }

    def test_connection(self, target: str,
                        credentials: Optional[Credentials] = None) -> Dict[str, Any]:
        """Connect, run SELECT 1 and close."""
        return self.sessions.test_connection(target, credentials)

    def active_sessions(self) -> int:
        """Number of sessions currently registered."""
        return self.sessions.registry.active_count()
