"""
Excel report writing.
Single responsibility: persist match results and query exports as workbooks.
"""

import os
import tempfile
from contextlib import contextmanager
from datetime import datetime, timezone
from importlib.metadata import PackageNotFoundError, version
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import pandas as pd
from xlsxwriter.exceptions import XlsxWriterException

from .errors import ReportGenerationFailure
from .matcher import MatchResult
from ..utils.logger import get_logger


logger = get_logger()


SHEET_SUMMARY = "Summary"
SHEET_MISMATCHES = "Mismatches"
SHEET_SOURCE_ONLY = "Source Only"
SHEET_TARGET_ONLY = "Target Only"
SHEET_LINEAGE = "Data_Lineage"

MISMATCH_COLUMNS = ["Key", "Column", "Source Value", "Target Value", "Difference Type"]

EMPTY_EXPORT_MESSAGE = "No data returned by query"

# Excel rejects longer sheet names
MAX_SHEET_NAME = 31


def _ver(package: str) -> str:
    try:
        return version(package)
    except PackageNotFoundError:
        return "n/a"


def _difference_type(source_value, target_value, has_threshold: bool) -> str:
    if source_value is None and target_value is not None:
        return "Missing in Source"
    if source_value is not None and target_value is None:
        return "Missing in Target"
    if has_threshold:
        return "Outside Threshold"
    return "Different Values"


@contextmanager
def _staged_workbook(path: Path):
    """
    Yield an XlsxWriter-backed ExcelWriter on a temp file beside path.

    The temp file replaces path only when the block completes, so a failed
    write never leaves a partial workbook behind.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, staged = tempfile.mkstemp(prefix=f"~{path.stem}_", suffix=path.suffix,
                                  dir=str(path.parent))
    os.close(fd)
    staged = Path(staged)
    try:
        with pd.ExcelWriter(staged, engine="xlsxwriter") as writer:
            yield writer
        os.replace(staged, path)
    finally:
        if staged.exists():
            staged.unlink()


def _rows_frame(rows: Sequence[Dict[str, Any]], columns: Sequence[str]) -> pd.DataFrame:
    if not rows:
        return pd.DataFrame(columns=list(columns))
    return pd.DataFrame(list(rows), columns=list(columns))


class ExcelReportGenerator:
    """
    Write the comparison workbook with pandas and XlsxWriter.
    """

    def write(self, result: MatchResult, destination,
              context: Optional[Dict[str, Any]] = None,
              thresholds: Optional[Dict[str, float]] = None) -> Path:
        """
        Write a comparison report.

        Args:
            result: Matcher output
            destination: Target .xlsx path; parent directories are created
            context: Summary metadata (sources, key, counts, databases)
            thresholds: Threshold map, listed in the summary

        Returns:
            Path of the written workbook

        Raises:
            ReportGenerationFailure: If anything prevents the write
        """
        path = Path(destination)
        context = dict(context or {})
        thresholds = dict(thresholds or {})

        logger.info("report.writing", file=str(path))

        try:
            with _staged_workbook(path) as writer:
                self._summary_frame(result, context, thresholds).to_excel(
                    writer, sheet_name=SHEET_SUMMARY, index=False)

                mismatches = self._mismatch_frame(result, thresholds)
                mismatches.to_excel(writer, sheet_name=SHEET_MISMATCHES, index=False)

                source_only = _rows_frame(result.source_only_rows,
                                          context.get("source_columns") or
                                          self._row_columns(result.source_only_rows))
                source_only.to_excel(writer, sheet_name=SHEET_SOURCE_ONLY, index=False)

                target_only = _rows_frame(result.target_only_rows,
                                          context.get("target_columns") or
                                          self._row_columns(result.target_only_rows))
                target_only.to_excel(writer, sheet_name=SHEET_TARGET_ONLY, index=False)

                self._lineage_frame(context).to_excel(
                    writer, sheet_name=SHEET_LINEAGE, index=False)

                self._format_sheet(writer, SHEET_MISMATCHES, mismatches)
                self._format_sheet(writer, SHEET_SOURCE_ONLY, source_only)
                self._format_sheet(writer, SHEET_TARGET_ONLY, target_only)
        except (OSError, ValueError, TypeError, XlsxWriterException) as e:
            logger.error("report.write_failed", file=str(path), error=str(e))
            raise ReportGenerationFailure(path, str(e))

        logger.info("report.written",
                   file=str(path),
                   mismatches=result.mismatched_count,
                   source_only=result.source_only_count,
                   target_only=result.target_only_count)
        return path

    def write_export(self, columns: Sequence[str], rows: Sequence[Dict[str, Any]],
                     destination, sheet_name: str = "Query Results") -> Path:
        """
        Write one query result set to a single-sheet workbook.

        An empty result produces a sheet holding a single explanatory cell.

        Raises:
            ReportGenerationFailure: If anything prevents the write
        """
        path = Path(destination)
        sheet = (sheet_name or "Query Results")[:MAX_SHEET_NAME]

        if rows:
            frame = _rows_frame(rows, columns)
        else:
            frame = pd.DataFrame({"Message": [EMPTY_EXPORT_MESSAGE]})

        try:
            with _staged_workbook(path) as writer:
                frame.to_excel(writer, sheet_name=sheet, index=False)
                self._format_sheet(writer, sheet, frame)
        except (OSError, ValueError, TypeError, XlsxWriterException) as e:
            logger.error("report.export_failed", file=str(path), error=str(e))
            raise ReportGenerationFailure(path, str(e))

        logger.info("report.export_written", file=str(path), rows=len(rows))
        return path

    @staticmethod
    def _row_columns(rows: Sequence[Dict[str, Any]]) -> List[str]:
        return list(rows[0].keys()) if rows else []

    def _summary_frame(self, result: MatchResult, context: Dict[str, Any],
                       thresholds: Dict[str, float]) -> pd.DataFrame:
        entries = [
            ["Source", context.get("source_descriptor", "")],
            ["Target", context.get("target_descriptor", "")],
        ]
        if context.get("source_database") or context.get("target_database"):
            entries += [
                ["Source Database", context.get("source_database") or ""],
                ["Target Database", context.get("target_database") or ""],
            ]
        entries += [
            ["Key", context.get("key", "")],
            ["Join Column", result.join_key_column],
            ["Source Rows", context.get("source_row_count", "")],
            ["Target Rows", context.get("target_row_count", "")],
            ["Matched Rows", result.matched_count],
            ["Mismatched Rows", result.mismatched_count],
            ["Source Only Rows", result.source_only_count],
            ["Target Only Rows", result.target_only_count],
            ["Compared Columns", ", ".join(result.compared_columns)],
            ["Ignored Columns", ", ".join(context.get("ignore_columns") or [])],
        ]
        if thresholds:
            entries.append([
                "Thresholds (%)",
                ", ".join(f"{col}={pct:g}" for col, pct in thresholds.items()),
            ])
        if result.source_only_columns:
            entries.append(["Columns Only In Source", ", ".join(result.source_only_columns)])
        if result.target_only_columns:
            entries.append(["Columns Only In Target", ", ".join(result.target_only_columns)])
        for side, count in result.duplicate_keys.items():
            entries.append([f"Duplicate Keys ({side})", count])
        entries.append(["Generated (UTC)", datetime.now(timezone.utc).isoformat()])
        return pd.DataFrame(entries, columns=["Metric", "Value"])

    def _mismatch_frame(self, result: MatchResult,
                        thresholds: Dict[str, float]) -> pd.DataFrame:
        records = [
            [
                detail["key"],
                detail["column"],
                detail["source_value"],
                detail["target_value"],
                _difference_type(detail["source_value"], detail["target_value"],
                                 detail["column"] in thresholds),
            ]
            for detail in result.per_row_detail
        ]
        return pd.DataFrame(records, columns=MISMATCH_COLUMNS)

    def _lineage_frame(self, context: Dict[str, Any]) -> pd.DataFrame:
        rows = [
            ["comparison_type", context.get("type_tag", "")],
            ["execution_seconds", context.get("execution_time", "")],
            ["duckdb", _ver("duckdb")],
            ["pandas", _ver("pandas")],
            ["SQLAlchemy", _ver("SQLAlchemy")],
            ["XlsxWriter", _ver("XlsxWriter")],
        ]
        return pd.DataFrame(rows, columns=["Key", "Value"])

    @staticmethod
    def _format_sheet(writer, sheet_name: str, frame: pd.DataFrame) -> None:
        """Freeze header + AutoFilter."""
        ws = writer.sheets[sheet_name]
        nrows, ncols = frame.shape
        ws.freeze_panes(1, 0)
        if ncols:
            ws.autofilter(0, 0, max(nrows, 1), ncols - 1)
