"""
Typed settings, source descriptors and comparison requests.
Single responsibility: hold caller intent with absent values kept explicit.

Optional fields use None for "not specified"; defaults are resolved once,
by the orchestrator, from Settings.
"""

from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from ..adapters.engines import Credentials
from ..adapters.file_reader import file_kind
from ..core.errors import InvalidRequest, MalformedThreshold


FETCH_MODES = ("sequential", "concurrent")


@dataclass
class Settings:
    """Defaults applied to every comparison."""

    default_key: str = "ID"
    join_column: str = "UNI_KEY"
    composite_key_column: str = "_COMPOSITE_KEY_"
    has_header: bool = True
    sample_lines: int = 20
    default_delimiter: str = ","
    query_timeout: Optional[float] = 300.0
    preview_rows: int = 5
    fetch_mode: str = "sequential"
    output_dir: str = "reports"
    default_sheet: Optional[str] = None
    log_level: str = "INFO"
    log_file: Optional[str] = None

    def __post_init__(self):
        """Validate settings after initialization."""
        if self.fetch_mode not in FETCH_MODES:
            raise InvalidRequest(
                "fetch_mode", f"must be one of {', '.join(FETCH_MODES)}"
            )
        if not str(self.default_key).strip():
            raise InvalidRequest("default_key", "must not be empty")
        if int(self.sample_lines) < 1:
            raise InvalidRequest("sample_lines", "must be at least 1")
        if int(self.preview_rows) < 1:
            raise InvalidRequest("preview_rows", "must be at least 1")
        if self.query_timeout is not None and float(self.query_timeout) <= 0:
            self.query_timeout = None

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "Settings":
        """Build settings from a mapping, ignoring unknown keys."""
        data = dict(data or {})
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})


@dataclass
class FileSource:
    """A delimited text file or a spreadsheet sheet."""

    path: str
    delimiter: Optional[str] = None
    has_header: Optional[bool] = None
    sheet: Optional[Union[str, int]] = None
    key: Optional[str] = None
    encoding: Optional[str] = None

    def __post_init__(self):
        if not self.path or not str(self.path).strip():
            raise InvalidRequest("path", "must not be empty")
        self.path = str(self.path)

    @property
    def kind(self) -> str:
        return file_kind(self.path)

    def describe(self) -> str:
        if self.kind == "spreadsheet" and self.sheet not in (None, ""):
            return f"{self.path} [{self.sheet}]"
        return self.path


@dataclass
class RecordsSource:
    """Inline tabular data."""

    records: List[Dict[str, Any]]
    columns: Optional[List[str]] = None
    name: str = "inline"
    key: Optional[str] = None

    kind = "records"

    def __post_init__(self):
        if self.records is None:
            raise InvalidRequest("records", "must be a list of mappings")
        self.records = list(self.records)
        for record in self.records:
            if not isinstance(record, Mapping):
                raise InvalidRequest("records", "must contain only mappings")

    def describe(self) -> str:
        return f"{self.name} ({len(self.records)} records)"


@dataclass
class QuerySource:
    """A SELECT run against one database."""

    target: str
    query: str
    credentials: Credentials = field(default_factory=Credentials)
    key: Optional[str] = None

    kind = "query"

    def __post_init__(self):
        if not self.target or not str(self.target).strip():
            raise InvalidRequest("target", "must not be empty")
        if not self.query or not str(self.query).strip():
            raise InvalidRequest("query", "must not be empty")

    def same_connection(self, other: "QuerySource") -> bool:
        """True when both sides would open an identical connection."""
        return (self.target.strip() == other.target.strip()
                and self.credentials == other.credentials)

    def describe(self) -> str:
        return self.query


SourceDescriptor = Union[FileSource, RecordsSource, QuerySource]


def descriptor_from_dict(data: Union[str, Mapping[str, Any], SourceDescriptor],
                         base_dir: Optional[Path] = None) -> SourceDescriptor:
    """
    Classify a descriptor mapping.

    'query' or 'sql' -> QuerySource, 'records' -> RecordsSource,
    'path' (or a bare string) -> FileSource.

    Args:
        data: Descriptor mapping, path string or ready descriptor
        base_dir: Directory relative file paths are resolved against

    Returns:
        Typed descriptor

    Raises:
        InvalidRequest: If the mapping matches no descriptor shape
    """
    if isinstance(data, (FileSource, RecordsSource, QuerySource)):
        return data

    if isinstance(data, (str, Path)):
        data = {"path": str(data)}

    if not isinstance(data, Mapping):
        raise InvalidRequest("source", "must be a path or a descriptor mapping")

    key = data.get("key")
    if isinstance(key, (list, tuple)):
        key = ",".join(str(k) for k in key)

    query = data.get("query") or data.get("sql")
    if query:
        target = data.get("target") or data.get("url") or data.get("connection")
        credentials = Credentials(
            username=data.get("username"),
            password=data.get("password"),
        )
        return QuerySource(target=target, query=query,
                           credentials=credentials, key=key)

    if "records" in data:
        return RecordsSource(
            records=data.get("records") or [],
            columns=data.get("columns"),
            name=data.get("name", "inline"),
            key=key,
        )

    if data.get("path"):
        path = Path(str(data["path"])).expanduser()
        if base_dir is not None and not path.is_absolute():
            path = Path(base_dir) / path
        return FileSource(
            path=str(path),
            delimiter=data.get("delimiter"),
            has_header=data.get("has_header"),
            sheet=data.get("sheet"),
            key=key,
            encoding=data.get("encoding"),
        )

    raise InvalidRequest(
        "source", "must define one of 'path', 'records' or 'query'"
    )


def parse_thresholds(value: Union[None, str, Mapping[str, Any], Sequence[str]]
                     ) -> Dict[str, float]:
    """
    Parse a ThresholdMap.

    Accepts {"amount": 2.5}, "amount=2.5,qty=1" or ["amount=2.5"].

    Raises:
        MalformedThreshold: For non-numeric or negative percentages
    """
    if value is None:
        return {}

    if isinstance(value, Mapping):
        pairs = list(value.items())
    else:
        items = value.split(",") if isinstance(value, str) else list(value)
        pairs = []
        for item in items:
            item = str(item).strip()
            if not item:
                continue
            if "=" not in item:
                raise MalformedThreshold(item, None)
            column, pct = item.split("=", 1)
            pairs.append((column, pct))

    thresholds: Dict[str, float] = {}
    for column, pct in pairs:
        column = str(column).strip()
        if not column:
            raise MalformedThreshold(column, pct)
        if isinstance(pct, bool):
            raise MalformedThreshold(column, pct)
        try:
            number = float(pct)
        except (TypeError, ValueError):
            raise MalformedThreshold(column, pct)
        if number != number or number < 0:
            raise MalformedThreshold(column, pct)
        thresholds[column] = number
    return thresholds


@dataclass
class CompareRequest:
    """One comparison job."""

    source: SourceDescriptor
    target: SourceDescriptor
    key: Optional[str] = None
    ignore_columns: Tuple[str, ...] = ()
    thresholds: Dict[str, float] = field(default_factory=dict)
    output_dir: Optional[str] = None
    report_name: Optional[str] = None
    name: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any],
                  base_dir: Optional[Path] = None) -> "CompareRequest":
        """
        Build a request from a job mapping.

        Raises:
            InvalidRequest: If source or target is missing
            MalformedThreshold: For invalid thresholds
        """
        for side in ("source", "target"):
            if not data.get(side):
                raise InvalidRequest(side, "is required")

        key = data.get("key")
        if isinstance(key, (list, tuple)):
            key = ",".join(str(k) for k in key)

        ignore = data.get("ignore") or data.get("ignore_columns") or ()
        if isinstance(ignore, str):
            ignore = ignore.split(",")

        return cls(
            source=descriptor_from_dict(data["source"], base_dir),
            target=descriptor_from_dict(data["target"], base_dir),
            key=key,
            ignore_columns=tuple(str(c).strip() for c in ignore if str(c).strip()),
            thresholds=parse_thresholds(data.get("thresholds")),
            output_dir=data.get("output_dir"),
            report_name=data.get("report_name"),
            name=data.get("name"),
        )
