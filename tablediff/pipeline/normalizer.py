"""
Table normalization and key construction.
Single responsibility: turn raw lines or records into canonical rows.

A Row is an insertion-ordered dict of column name -> Optional[str].
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from ..adapters.delimiter import split_line
from ..adapters.file_reader import FileReader
from ..adapters.delimiter import DelimiterDetector
from ..core.errors import KeyColumnMissing, InvalidRequest
from ..utils.logger import get_logger
from ..utils.normalizers import strip_quotes


logger = get_logger()


Row = Dict[str, Optional[str]]

KEY_SEPARATOR = "|"
COMPOSITE_KEY_COLUMN = "_COMPOSITE_KEY_"
JOIN_COLUMN = "UNI_KEY"


def parse_column_list(value) -> Tuple[str, ...]:
    """
    Parse a comma-separated string (or an iterable) of column names.

    Blank entries are dropped, names are trimmed, order is kept and
    duplicates are removed.

    Args:
        value: "a, b" or ["a", "b"] or None

    Returns:
        Ordered tuple of column names
    """
    if value is None:
        return ()
    if isinstance(value, str):
        items = value.split(",")
    else:
        items = [str(item) for item in value]

    names: List[str] = []
    for item in items:
        name = item.strip()
        if name and name not in names:
            names.append(name)
    return tuple(names)


def parse_key_spec(key_spec) -> Tuple[str, ...]:
    """
    Parse a KeySpec string such as "id" or "account, branch".

    Raises:
        InvalidRequest: If no column name remains after parsing
    """
    columns = parse_column_list(key_spec)
    if not columns:
        raise InvalidRequest("key", "must name at least one column")
    return columns


def effective_key_column(key_spec,
                         composite_column: str = COMPOSITE_KEY_COLUMN) -> str:
    """Column that carries the key value after normalization."""
    columns = parse_key_spec(key_spec)
    if len(columns) > 1:
        return composite_column
    return columns[0]


def composite_key_value(row: Row, key_columns: Sequence[str], row_index: int) -> str:
    """
    Join key values with '|'.

    A null or empty value in data row i becomes NULL_<i> so two rows
    missing the same key column still produce distinct composite keys.
    """
    parts = []
    for column in key_columns:
        value = row.get(column)
        parts.append(value if value else f"NULL_{row_index}")
    return KEY_SEPARATOR.join(parts)


def validate_key_columns(headers: Sequence[str], key_columns: Sequence[str],
                         source: Optional[str] = None) -> None:
    """
    Fail on the first key column absent from the headers.

    Raises:
        KeyColumnMissing: with the full header list
    """
    header_set = set(headers)
    for column in key_columns:
        if column not in header_set:
            logger.error("normalizer.key_column_missing",
                        column=column,
                        available=list(headers),
                        source=source)
            raise KeyColumnMissing(column, headers, source=source)


@dataclass
class PreparedRows:
    """Rows ready for the matcher: join column first, ignored columns kept."""

    rows: List[Row]
    join_column: str
    key_columns: Tuple[str, ...]
    ignore_columns: frozenset = field(default_factory=frozenset)
    compare_columns: List[str] = field(default_factory=list)

    def comparison_fields(self, row: Row) -> Row:
        """The subset of a row that takes part in value comparison."""
        return {column: row.get(column) for column in self.compare_columns}


class TableNormalizer:
    """
    Convert raw delimited input or tabular records into canonical rows.
    """

    def __init__(self, composite_column: str = COMPOSITE_KEY_COLUMN,
                 file_reader: Optional[FileReader] = None,
                 detector: Optional[DelimiterDetector] = None):
        """
        Initialize normalizer.

        Args:
            composite_column: Reserved column for multi-column keys
            file_reader: Reader used by normalize_file
            detector: Delimiter detector used when no delimiter is given
        """
        self.composite_column = composite_column
        self.file_reader = file_reader or FileReader()
        self.detector = detector or DelimiterDetector()

    # ------------------------------------------------------------------
    # Delimited text
    # ------------------------------------------------------------------

    def normalize(self, raw_lines: Sequence[str], delimiter: str,
                  has_header_row: bool, key_spec,
                  source: Optional[str] = None) -> List[Row]:
        """
        Convert raw delimited lines into rows.

        Args:
            raw_lines: Lines of the file, without terminators
            delimiter: Literal field separator
            has_header_row: Whether the first non-blank line holds column names
            key_spec: KeySpec string ("id" or "a,b")
            source: Label for error messages

        Returns:
            Rows in input order

        Raises:
            KeyColumnMissing: Before any data row is processed
        """
        if not delimiter:
            raise InvalidRequest("delimiter", "must not be empty")

        key_columns = parse_key_spec(key_spec)

        # Index of the first non-blank line
        start = next(
            (i for i, line in enumerate(raw_lines) if line.strip()), None
        )
        if start is None:
            logger.warning("normalizer.empty_input", source=source)
            return []

        if has_header_row:
            headers = self._extract_headers(raw_lines[start], delimiter)
            data_start = start + 1
        else:
            width = len(split_line(raw_lines[start], delimiter))
            headers = [f"COLUMN_{n}" for n in range(1, width + 1)]
            data_start = start

        headers = self._dedupe(headers, source)
        validate_key_columns(headers, key_columns, source)

        rows: List[Row] = []
        for row_index in range(data_start, len(raw_lines)):
            line = raw_lines[row_index].strip()
            if not line:
                continue
            values = [strip_quotes(v) for v in split_line(line, delimiter)]
            row: Row = {}
            for position, column in enumerate(headers):
                row[column] = values[position] if position < len(values) else ""
            rows.append(self._apply_key(row, key_columns, row_index, len(rows)))

        logger.info("normalizer.lines.converted",
                   source=source,
                   rows=len(rows),
                   columns=len(headers),
                   key=",".join(key_columns))
        return rows

    def normalize_file(self, file_path, key_spec,
                       delimiter: Optional[str] = None,
                       has_header_row: bool = True,
                       encoding: Optional[str] = None) -> Tuple[List[Row], str]:
        """
        Read and normalize a delimited file.

        Args:
            file_path: Path to file
            key_spec: KeySpec string
            delimiter: Separator, auto-detected when None or blank
            has_header_row: Whether the first line holds column names
            encoding: Forced encoding

        Returns:
            (rows, delimiter used)

        Raises:
            SourceNotFound: If the file is missing or unreadable
        """
        lines, used_encoding = self.file_reader.read_lines(file_path, encoding)
        if not delimiter:
            delimiter = self.detector.detect_from_lines(
                lines[: self.detector.sample_lines * 2]
            )
            logger.info("normalizer.delimiter.auto_detected",
                       file=str(file_path),
                       delimiter=DelimiterDetector.describe(delimiter))
        rows = self.normalize(lines, delimiter, has_header_row, key_spec,
                              source=str(file_path))
        return rows, delimiter

    # ------------------------------------------------------------------
    # Tabular records (database result sets, spreadsheets, inline data)
    # ------------------------------------------------------------------

    def normalize_records(self, records: Iterable[Dict[str, Any]], key_spec,
                          columns: Optional[Sequence[str]] = None,
                          source: Optional[str] = None) -> List[Row]:
        """
        Convert records into rows with string values and keys applied.

        Args:
            records: Mappings of column -> value
            key_spec: KeySpec string
            columns: Column order; taken from the first record when None
            source: Label for error messages

        Returns:
            Schema-homogeneous rows
        """
        key_columns = parse_key_spec(key_spec)
        records = list(records)

        if columns is None:
            columns = []
            for record in records:
                for column in record:
                    if str(column) not in columns:
                        columns.append(str(column))
        columns = [str(c) for c in columns]

        validate_key_columns(columns, key_columns, source)

        rows: List[Row] = []
        for row_index, record in enumerate(records):
            row: Row = {}
            for column in columns:
                row[column] = self._to_text(record.get(column))
            rows.append(self._apply_key(row, key_columns, row_index, row_index))

        logger.info("normalizer.records.converted",
                   source=source,
                   rows=len(rows),
                   columns=len(columns))
        return rows

    # ------------------------------------------------------------------
    # Reconciliation for the matcher
    # ------------------------------------------------------------------

    def prepare_for_comparison(self, rows: Sequence[Row], key_spec,
                               ignore_columns: Iterable[str] = (),
                               join_column: str = JOIN_COLUMN,
                               source: Optional[str] = None) -> PreparedRows:
        """
        Put the canonical join column first on every row.

        Ignored columns stay on the rows but are left out of
        compare_columns, which is what the matcher compares.

        Args:
            rows: Normalized rows
            key_spec: KeySpec for this side
            ignore_columns: Columns excluded from comparison
            join_column: Canonical join column name shared by both sides
            source: Label for error messages

        Returns:
            PreparedRows
        """
        key_columns = parse_key_spec(key_spec)
        ignored = frozenset(parse_column_list(ignore_columns))
        columns = list(rows[0].keys()) if rows else []

        if rows:
            validate_key_columns(columns, key_columns, source)

        prepared: List[Row] = []
        for row_index, row in enumerate(rows):
            if len(key_columns) > 1:
                key_value = row.get(self.composite_column) or \
                    composite_key_value(row, key_columns, row_index)
            else:
                key_value = row.get(key_columns[0]) or f"ROW_{row_index}"
            prepared_row: Row = {join_column: key_value}
            for column, value in row.items():
                if column != join_column:
                    prepared_row[column] = value
            prepared.append(prepared_row)

        excluded = set(key_columns) | ignored | {join_column, self.composite_column}
        compare_columns = [c for c in columns if c not in excluded]

        logger.debug("normalizer.prepared",
                    source=source,
                    rows=len(prepared),
                    join_column=join_column,
                    compare_columns=len(compare_columns),
                    ignored=sorted(ignored))

        return PreparedRows(
            rows=prepared,
            join_column=join_column,
            key_columns=key_columns,
            ignore_columns=ignored,
            compare_columns=compare_columns,
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _apply_key(self, row: Row, key_columns: Tuple[str, ...],
                   line_index: int, data_index: int) -> Row:
        """ROW_<line_index> for a blank single key, NULL_<data_index> in composites."""
        if len(key_columns) > 1:
            keyed: Row = {
                self.composite_column: composite_key_value(row, key_columns, data_index)
            }
            keyed.update(row)
            return keyed
        key = key_columns[0]
        if not row.get(key):
            row[key] = f"ROW_{line_index}"
        return row

    def _extract_headers(self, line: str, delimiter: str) -> List[str]:
        headers = []
        for position, raw in enumerate(split_line(line, delimiter), start=1):
            name = strip_quotes(raw)
            headers.append(name if name else f"COLUMN_{position}")
        return headers

    def _dedupe(self, headers: List[str], source: Optional[str]) -> List[str]:
        seen = set()
        unique = []
        for position, name in enumerate(headers, start=1):
            if name in seen:
                renamed = f"{name}_{position}"
                logger.warning("normalizer.duplicate_column",
                              source=source,
                              column=name,
                              renamed=renamed)
                name = renamed
            seen.add(name)
            unique.append(name)
        return unique

    @staticmethod
    def _to_text(value: Any) -> Optional[str]:
        if value is None:
            return None
        # pandas NaN / NaT from spreadsheet cells
        if isinstance(value, float) and value != value:
            return None
        return str(value)
