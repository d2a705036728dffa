"""Input adapters: files, delimiters and database drivers."""

from .delimiter import DelimiterDetector, split_line
from .file_reader import FileReader, file_kind
from .engines import (
    QueryEngine,
    Credentials,
    ConnectionTarget,
    parse_target
)

__all__ = [
    "DelimiterDetector",
    "split_line",
    "FileReader",
    "file_kind",
    "QueryEngine",
    "Credentials",
    "ConnectionTarget",
    "parse_target",
]
