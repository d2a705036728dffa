"""Terminal rendering."""

from .console import ConsoleRenderer

__all__ = [
    "ConsoleRenderer",
]
