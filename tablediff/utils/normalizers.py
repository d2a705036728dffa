"""
Text normalization utilities.
Single responsibility: clean cell values, names and hints.
"""

import re
from pathlib import Path
from typing import Optional


def strip_quotes(val: str) -> str:
    """
    Trim a raw field and remove one pair of enclosing double quotes.

    A lone or unterminated quote is kept as literal text.

    Args:
        val: Raw field text

    Returns:
        Cleaned field text
    """
    val = val.strip()
    if len(val) > 1 and val.startswith('"') and val.endswith('"'):
        val = val[1:-1].replace('""', '"')
    return val


def collapse_spaces(val: str) -> str:
    """
    Collapse multiple whitespace characters into a single space.

    Args:
        val: Input string

    Returns:
        String with collapsed spaces
    """
    if not isinstance(val, str):
        return val
    return re.sub(r"\s+", " ", val).strip()


def truncate_text(val: Optional[str], limit: int = 100) -> str:
    """
    Collapse whitespace and shorten text for display.

    Args:
        val: Text to shorten (query text, descriptor)
        limit: Maximum length including the ellipsis

    Returns:
        Display-safe text
    """
    if val is None:
        return ""
    cleaned = collapse_spaces(val)
    if len(cleaned) > limit:
        return cleaned[:limit - 3] + "..."
    return cleaned


def sanitize_hint(val: Optional[str], default: str = "data") -> str:
    """
    Turn an arbitrary label into a file-name-safe hint.

    Args:
        val: Raw label (file stem, table name, database name)
        default: Value used when nothing usable remains

    Returns:
        Hint containing only letters, digits, underscores and dashes
    """
    if not val:
        return default
    hint = re.sub(r"[^A-Za-z0-9_\-]", "_", str(val))
    hint = re.sub(r"_+", "_", hint).strip("_")
    return hint or default


def file_hint(path) -> str:
    """File stem of a path, sanitized for use in report names."""
    return sanitize_hint(Path(str(path)).stem)
