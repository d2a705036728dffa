"""
tablediff - compare files, spreadsheets and SQL query results across databases.
"""

__version__ = "1.0.0"

from .core.orchestrator import ComparisonOrchestrator, ComparisonSummary
from .core.session import SessionManager, ConnectionRegistry
from .config.manager import ConfigManager
from .config.models import (
    Settings,
    CompareRequest,
    FileSource,
    RecordsSource,
    QuerySource
)
from .adapters.engines import Credentials
from .utils.logger import get_logger

__all__ = [
    "ComparisonOrchestrator",
    "ComparisonSummary",
    "SessionManager",
    "ConnectionRegistry",
    "ConfigManager",
    "Settings",
    "CompareRequest",
    "FileSource",
    "RecordsSource",
    "QuerySource",
    "Credentials",
    "get_logger",
]
