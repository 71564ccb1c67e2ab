#!/usr/bin/env python3
"""
MCP Server for Memoer - local memory storage for apps and agents
Copyright 2025 Jurden Bruce

"""

import sys
import os
import asyncio
import argparse
import logging
import sqlite3
import threading
import traceback
from typing import Any, List, Dict, Optional
from pathlib import Path

from utils import LOG_LEVELS, normalize_app_name, parse_log_level, register_sqlite_adapters

_env_log_level = os.getenv("MEMOER_LOG_LEVEL", "INFO")

logging.basicConfig(
    level=parse_log_level(_env_log_level),
    stream=sys.stderr,
    format="%(asctime)s [%(levelname)s] [%(name)s] %(message)s",
)

logger = logging.getLogger("memoer-mcp")

if _env_log_level.upper() not in LOG_LEVELS:
    logger.warning(f"Unknown MEMOER_LOG_LEVEL {_env_log_level!r}, using INFO")

from mcp.server.models import InitializationOptions
from mcp.server import NotificationOptions, Server
from mcp.server.stdio import stdio_server
from mcp.types import Tool, TextContent

from models import DEFAULT_USER_NAME, DEFAULT_RESEARCH_APP, Memory, User
from mcp_tools import get_tool_definitions, handle_tool_call
from storage import SQLiteStore

SERVER_NAME = "memoer-mcp"
SERVER_VERSION = "1.0.0"
DEFAULT_DB_FILE = "./memoer.db"

register_sqlite_adapters()


def resolve_database_path(db_path: Optional[str] = None) -> Path:
    """Pick the database file and publish it as DATABASE_URL.

    Order: explicit argument, then DATABASE_URL (with or without a "file:"
    prefix), then ./memoer.db. Relative paths resolve against the cwd.
    """
    raw_path = db_path
    if not raw_path:
        database_url = os.getenv("DATABASE_URL")
        if database_url:
            raw_path = database_url[len("file:"):] if database_url.startswith("file:") else database_url
    if not raw_path:
        raw_path = DEFAULT_DB_FILE

    abs_path = Path(raw_path).expanduser().resolve()
    os.environ["DATABASE_URL"] = f"file:{abs_path}"
    logger.info(f"Using DATABASE_URL: {os.environ['DATABASE_URL']}")
    return abs_path


class MemoerStore:
    """Application context: one SQLite connection plus the default user"""

    def __init__(self, db_path: Path):
        self.db_path = Path(db_path)
        self.db_conn = None
        self._db_lock = threading.RLock()
        self.error_log: List[Dict[str, Any]] = []
        self.sqlite_store: Optional[SQLiteStore] = None
        self.default_user: Optional[User] = None

        self.initialize()

    def initialize(self):
        """Open the database, apply the schema and ensure the default user.

        Raises on failure; the server must not start against a half-built store.
        """
        self._init_directories()
        self._init_sqlite()
        self.default_user = self.sqlite_store.ensure_user(DEFAULT_USER_NAME)
        logger.info(f"Default user ready: {self.default_user.name} ({self.default_user.id})")

    def _init_directories(self):
        """Create the database directory"""
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.error(f"Directory initialization failed: {e}")
            raise

    def _init_sqlite(self):
        """Connect and push the schema"""
        self.db_conn = sqlite3.connect(
            str(self.db_path),
            check_same_thread=False,
            timeout=30.0,
            isolation_level="IMMEDIATE",
            detect_types=sqlite3.PARSE_DECLTYPES | sqlite3.PARSE_COLNAMES
        )
        self.db_conn.row_factory = sqlite3.Row
        self.db_conn.execute("PRAGMA foreign_keys = ON")

        self.sqlite_store = SQLiteStore(self.db_path, self.db_conn, self._db_lock, self.error_log)
        self.sqlite_store.initialize()

    async def create_memory(self, content: str, app_name: str) -> Memory:
        formatted_app = normalize_app_name(app_name)
        memory = await asyncio.to_thread(
            self.sqlite_store.create_memory,
            content=content,
            app_name=formatted_app,
            user_name=DEFAULT_USER_NAME,
        )
        logger.info(f"Stored memory {memory.id} for app {formatted_app}")
        return memory

    async def get_memories(self, app_name: Optional[str] = None, category: Optional[str] = None,
                           limit: int = 10) -> List[Memory]:
        return await asyncio.to_thread(
            self.sqlite_store.find_memories,
            limit=limit,
            app_name=normalize_app_name(app_name) if app_name else None,
            category=category,
        )

    async def create_research_memory(self, content: str, research_topic: str, memory_type: str,
                                     source_reliability: Optional[str] = None,
                                     source_type: Optional[str] = None,
                                     research_loop_count: Optional[int] = None,
                                     metadata: Optional[str] = None,
                                     app_name: str = DEFAULT_RESEARCH_APP) -> Memory:
        formatted_app = normalize_app_name(app_name)
        memory = await asyncio.to_thread(
            self.sqlite_store.create_memory,
            content=content,
            app_name=formatted_app,
            user_name=DEFAULT_USER_NAME,
            research_topic=research_topic,
            memory_type=memory_type,
            source_reliability=source_reliability,
            source_type=source_type,
            research_loop_count=research_loop_count,
            metadata=metadata,
        )
        logger.info(f"Stored research memory {memory.id} ({memory_type}) on '{research_topic}'")
        return memory

    async def get_research_memories(self, research_topic: Optional[str] = None,
                                    memory_type: Optional[str] = None,
                                    source_type: Optional[str] = None,
                                    limit: int = 10) -> List[Memory]:
        return await asyncio.to_thread(
            self.sqlite_store.find_memories,
            limit=limit,
            research_topic=research_topic,
            memory_type=memory_type,
            source_type=source_type,
        )

    async def shutdown(self):
        """Gracefully shutdown the memory store"""
        logger.info("Shutting down MemoerStore...")
        if self.sqlite_store:
            await asyncio.to_thread(self.sqlite_store.close)
        self.db_conn = None
        logger.info("MemoerStore shutdown complete")


def create_server(memoer_store: MemoerStore) -> Server:
    """Build the MCP server with every tool bound to the given store"""
    app = Server(SERVER_NAME)

    @app.list_tools()
    async def handle_list_tools() -> list[Tool]:
        """List available memory tools"""
        return get_tool_definitions()

    @app.call_tool(validate_input=False)
    async def handle_call_tool(name: str, arguments: dict) -> list[TextContent]:
        return await handle_tool_call(name, arguments, memoer_store)

    return app


async def main(db_path: Optional[str] = None):
    """Main entry point"""
    memoer_store = None

    # Keep stray prints off the protocol stream until the transport owns stdout
    original_stdout_fd = os.dup(1)
    os.dup2(2, 1)

    try:
        resolved_path = resolve_database_path(db_path)
        memoer_store = MemoerStore(resolved_path)
        app = create_server(memoer_store)

        os.dup2(original_stdout_fd, 1)

        logger.info("Starting MCP server...")
        async with stdio_server() as (read_stream, write_stream):
            await app.run(
                read_stream,
                write_stream,
                InitializationOptions(
                    server_name=SERVER_NAME,
                    server_version=SERVER_VERSION,
                    capabilities=app.get_capabilities(
                        notification_options=NotificationOptions(),
                        experimental_capabilities={},
                    ),
                ),
            )
    except KeyboardInterrupt:
        logger.info("Received interrupt signal")
    except Exception as e:
        logger.error(f"Fatal error: {e}")
        logger.error(traceback.format_exc())
        sys.exit(1)
    finally:
        os.dup2(original_stdout_fd, 1)
        os.close(original_stdout_fd)
        if memoer_store:
            await memoer_store.shutdown()


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Memoer MCP server (stdio)")
    parser.add_argument("--db", type=str, default=None,
                        help="SQLite database file (default: $DATABASE_URL or ./memoer.db)")
    parser.add_argument("--log-level", type=str.upper, default=None, choices=LOG_LEVELS,
                        help="Override MEMOER_LOG_LEVEL")
    return parser.parse_args(argv)


def run(argv=None):
    """Console script entry point"""
    args = parse_args(argv)
    if args.log_level:
        logging.getLogger().setLevel(parse_log_level(args.log_level))
    asyncio.run(main(args.db))


if __name__ == "__main__":
    run()
