"""Row normalization and source fetching."""

from .normalizer import (
    TableNormalizer,
    PreparedRows,
    parse_key_spec,
    parse_column_list,
    effective_key_column
)
from .fetcher import SourceFetcher, FetchResult

__all__ = [
    "TableNormalizer",
    "PreparedRows",
    "parse_key_spec",
    "parse_column_list",
    "effective_key_column",
    "SourceFetcher",
    "FetchResult",
]
