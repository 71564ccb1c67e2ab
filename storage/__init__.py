"""
Storage backends for Memoer MCP
Copyright 2025 Jurden Bruce
"""

from .sqlite_store import SQLiteStore, SCHEMA

__all__ = ['SQLiteStore', 'SCHEMA']
