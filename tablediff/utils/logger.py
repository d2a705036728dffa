"""
Structured logging utility.
Single responsibility: provide consistent event logging across the package.
"""

import sys
import json
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional


LEVELS = {
    "DEBUG": 10,
    "INFO": 20,
    "WARN": 30,
    "ERROR": 40,
    "CRITICAL": 50,
}

# Context fields whose values never reach the console or the log file
SECRET_FIELDS = {"password", "credentials", "secret", "token"}


class StructuredLogger:
    """
    Structured logger emitting dotted event names with keyword context.
    """

    def __init__(self, name: str = "tablediff",
                 log_file: Optional[Path] = None,
                 level: str = "INFO"):
        """
        Initialize logger.

        Args:
            name: Logger name
            log_file: Optional file path for JSON-lines output
            level: Minimum level written (DEBUG, INFO, WARN, ERROR, CRITICAL)
        """
        self.name = name
        self.log_file = Path(log_file) if log_file else None
        self.level = self._resolve_level(level)
        self._lock = threading.Lock()

    @staticmethod
    def _resolve_level(level: str) -> int:
        level = (level or "INFO").upper()
        if level == "WARNING":
            level = "WARN"
        return LEVELS.get(level, LEVELS["INFO"])

    def configure(self, level: Optional[str] = None,
                  log_file: Optional[Path] = None):
        """
        Reconfigure level and file sink at runtime.

        Args:
            level: New minimum level
            log_file: New JSON-lines sink path
        """
        if level:
            self.level = self._resolve_level(level)
        if log_file:
            self.log_file = Path(log_file)

    def _format_message(self, level: str, message: str,
                       **kwargs) -> Dict[str, Any]:
        """
        Format log message with metadata.

        Args:
            level: Log level (INFO, DEBUG, ERROR, etc.)
            message: Event name
            **kwargs: Additional context fields

        Returns:
            Formatted log entry
        """
        entry = {
            "timestamp": datetime.now().isoformat(),
            "level": level,
            "logger": self.name,
            "message": message,
            "thread": threading.current_thread().name,
        }

        if kwargs:
            entry["context"] = {
                key: ("***" if key.lower() in SECRET_FIELDS else value)
                for key, value in kwargs.items()
            }

        return entry

    def _output(self, entry: Dict[str, Any]):
        """
        Output log entry to stderr and optionally to the file sink.

        Args:
            entry: Log entry dictionary
        """
        timestamp = entry["timestamp"].split("T")[1][:8]
        level = entry["level"]
        msg = entry["message"]

        with self._lock:
            print(f"[{timestamp}] {level:5} | {msg}", file=sys.stderr)

            if "context" in entry:
                for key, value in entry["context"].items():
                    print(f"  {key}={value}", file=sys.stderr)

            if self.log_file:
                self.log_file.parent.mkdir(parents=True, exist_ok=True)
                with open(self.log_file, "a", encoding="utf-8") as f:
                    f.write(json.dumps(entry, default=str) + "\n")

    def _log(self, level: str, message: str, **kwargs):
        if LEVELS[level] < self.level:
            return
        self._output(self._format_message(level, message, **kwargs))

    def info(self, message: str, **kwargs):
        """Log info message."""
        self._log("INFO", message, **kwargs)

    def debug(self, message: str, **kwargs):
        """Log debug message."""
        self._log("DEBUG", message, **kwargs)

    def warning(self, message: str, **kwargs):
        """Log warning message."""
        self._log("WARN", message, **kwargs)

    def error(self, message: str, **kwargs):
        """Log error message."""
        self._log("ERROR", message, **kwargs)

    def critical(self, message: str, **kwargs):
        """Log critical message."""
        self._log("CRITICAL", message, **kwargs)


# Global logger instance
_logger: Optional[StructuredLogger] = None


def get_logger(name: str = "tablediff") -> StructuredLogger:
    """
    Get or create logger instance.

    Args:
        name: Logger name

    Returns:
        Logger instance
    """
    global _logger
    if _logger is None:
        _logger = StructuredLogger(name)
    return _logger
