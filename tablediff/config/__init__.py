"""Configuration management."""

from .manager import ConfigManager, create_sample_config, expand_env
from .models import (
    Settings,
    FileSource,
    RecordsSource,
    QuerySource,
    CompareRequest,
    descriptor_from_dict,
    parse_thresholds
)

__all__ = [
    "ConfigManager",
    "create_sample_config",
    "expand_env",
    "Settings",
    "FileSource",
    "RecordsSource",
    "QuerySource",
    "CompareRequest",
    "descriptor_from_dict",
    "parse_thresholds",
]
