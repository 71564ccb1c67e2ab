"""
Utility functions for Memoer MCP
Copyright 2025 Jurden Bruce
"""

import re
import sqlite3
import logging
from datetime import datetime
from typing import Union, Optional

logger = logging.getLogger("memoer-mcp.utils")

_WHITESPACE_RE = re.compile(r"\s+")

LOG_LEVELS = ("CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG")


def parse_log_level(name: Optional[str], default: int = logging.INFO) -> int:
    """Map a level name to its logging constant, falling back to default"""
    if name and name.upper() in LOG_LEVELS:
        return getattr(logging, name.upper())
    return default


def _adapt_datetime(dt: datetime) -> str:
    """Convert datetime to ISO format string for SQLite storage"""
    # Fixed width keeps lexical ORDER BY in time order
    return dt.isoformat(timespec="microseconds")


def _convert_timestamp(val: Union[str, bytes]) -> Optional[datetime]:
    """Convert timestamp string to datetime with error handling"""
    try:
        decoded = val.decode() if isinstance(val, bytes) else val
        return datetime.fromisoformat(decoded)
    except (ValueError, AttributeError) as e:
        logger.warning(f"Failed to convert timestamp: {val}, error: {e}")
        return None


def register_sqlite_adapters():
    """Register SQLite adapters for datetime handling"""
    sqlite3.register_adapter(datetime, _adapt_datetime)
    sqlite3.register_converter("TIMESTAMP", _convert_timestamp)


def normalize_app_name(app_name: str) -> str:
    """Lowercase an app/agent name and collapse whitespace runs to underscores"""
    return _WHITESPACE_RE.sub("_", app_name.lower())


def escape_like(value: str) -> str:
    """Escape LIKE wildcards so the value matches literally (ESCAPE '\\')"""
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
