"""Utility functions and helpers."""

from .logger import get_logger, StructuredLogger
from .metrics import MetricsCollector
from .normalizers import (
    strip_quotes,
    collapse_spaces,
    truncate_text,
    sanitize_hint,
    file_hint
)

__all__ = [
    "get_logger",
    "StructuredLogger",
    "MetricsCollector",
    "strip_quotes",
    "collapse_spaces",
    "truncate_text",
    "sanitize_hint",
    "file_hint",
]
