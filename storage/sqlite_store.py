"""
SQLite persistence store for Memoer MCP
Copyright 2025 Jurden Bruce
"""

import sqlite3
import logging
import traceback
import uuid
from contextlib import contextmanager
from typing import List, Dict, Any, Optional
from datetime import datetime
from pathlib import Path

from models import User, App, Category, Memory, MemoryCategory
from utils import escape_like

logger = logging.getLogger("memoer-mcp.sqlite")

SCHEMA = """
    CREATE TABLE IF NOT EXISTS users (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL UNIQUE,
        created_at TIMESTAMP NOT NULL,
        updated_at TIMESTAMP NOT NULL
    );

    CREATE TABLE IF NOT EXISTS apps (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL UNIQUE,
        owner_id TEXT NOT NULL,
        created_at TIMESTAMP NOT NULL,
        updated_at TIMESTAMP NOT NULL,
        FOREIGN KEY (owner_id) REFERENCES users(id)
    );

    CREATE TABLE IF NOT EXISTS memories (
        id TEXT PRIMARY KEY,
        content TEXT NOT NULL,
        user_id TEXT NOT NULL,
        app_id TEXT NOT NULL,
        state TEXT NOT NULL DEFAULT 'active',
        created_at TIMESTAMP NOT NULL,
        updated_at TIMESTAMP NOT NULL,
        research_topic TEXT,
        memory_type TEXT,
        source_reliability TEXT,
        source_type TEXT,
        research_loop_count INTEGER,
        metadata TEXT,
        FOREIGN KEY (user_id) REFERENCES users(id),
        FOREIGN KEY (app_id) REFERENCES apps(id)
    );

    CREATE TABLE IF NOT EXISTS categories (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL UNIQUE,
        created_at TIMESTAMP NOT NULL
    );

    CREATE TABLE IF NOT EXISTS memory_categories (
        memory_id TEXT NOT NULL,
        category_id TEXT NOT NULL,
        created_at TIMESTAMP NOT NULL,
        PRIMARY KEY (memory_id, category_id),
        FOREIGN KEY (memory_id) REFERENCES memories(id),
        FOREIGN KEY (category_id) REFERENCES categories(id)
    );

    CREATE INDEX IF NOT EXISTS idx_apps_owner ON apps(owner_id);
    CREATE INDEX IF NOT EXISTS idx_memories_created ON memories(created_at DESC);
    CREATE INDEX IF NOT EXISTS idx_memories_app_created ON memories(app_id, created_at DESC);
    CREATE INDEX IF NOT EXISTS idx_memories_user ON memories(user_id);
    CREATE INDEX IF NOT EXISTS idx_memories_memory_type ON memories(memory_type);
    CREATE INDEX IF NOT EXISTS idx_memories_source_type ON memories(source_type);
    CREATE INDEX IF NOT EXISTS idx_memory_categories_category ON memory_categories(category_id);
"""


class SQLiteStore:
    """Handles all SQLite database operations"""

    def __init__(self, db_path: Path, db_conn, db_lock, error_log: List[Dict[str, Any]]):
        self.db_path = db_path
        self.conn = db_conn  # Use external connection
        self._lock = db_lock  # Use external lock
        self.error_log = error_log

    def _log_error(self, operation: str, error: Exception):
        """Log detailed error information"""
        error_entry = {
            "timestamp": datetime.now().isoformat(),
            "operation": operation,
            "error_type": type(error).__name__,
            "error_msg": str(error),
            "traceback": traceback.format_exc(),
        }
        self.error_log.append(error_entry)
        if len(self.error_log) > 100:
            del self.error_log[:-100]

    def _require_conn(self):
        if not self.conn:
            raise RuntimeError(f"No database connection for {self.db_path}")

    @contextmanager
    def _transaction(self, operation: str):
        """Run the enclosed statements as one transaction, rolling back on failure"""
        self._require_conn()
        with self._lock:
            try:
                yield self.conn
                self.conn.commit()
            except Exception as e:
                self.conn.rollback()
                logger.error(f"{operation} failed: {e}")
                self._log_error(operation, e)
                raise

    def initialize(self):
        """Apply the schema. Safe to run against an existing database."""
        self._require_conn()
        try:
            with self._lock:
                self.conn.executescript(SCHEMA)
                self.conn.commit()
            logger.info(f"SQLite schema applied to {self.db_path}")
        except Exception as e:
            logger.error(f"SQLite initialization failed: {e}")
            self._log_error("sqlite_init", e)
            raise

    # ===== UPSERTS =====
    # Callers hold the lock and an open transaction.

    def _upsert_user(self, name: str) -> User:
        now = datetime.now()
        self.conn.execute("""
            INSERT INTO users (id, name, created_at, updated_at)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(name) DO NOTHING
        """, (str(uuid.uuid4()), name, now, now))
        row = self.conn.execute("SELECT * FROM users WHERE name = ?", (name,)).fetchone()
        return User.from_row(row)

    def _upsert_app(self, name: str, owner: User) -> App:
        # An existing app keeps its original owner
        now = datetime.now()
        self.conn.execute("""
            INSERT INTO apps (id, name, owner_id, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(name) DO NOTHING
        """, (str(uuid.uuid4()), name, owner.id, now, now))
        row = self.conn.execute("SELECT * FROM apps WHERE name = ?", (name,)).fetchone()
        return App.from_row(row)

    def _upsert_category(self, name: str) -> Category:
        self.conn.execute("""
            INSERT INTO categories (id, name, created_at)
            VALUES (?, ?, ?)
            ON CONFLICT(name) DO NOTHING
        """, (str(uuid.uuid4()), name, datetime.now()))
        row = self.conn.execute("SELECT * FROM categories WHERE name = ?", (name,)).fetchone()
        return Category.from_row(row)

    def ensure_user(self, name: str) -> User:
        """Get or insert a user by unique name"""
        with self._transaction("ensure_user"):
            return self._upsert_user(name)

    def get_or_create_category(self, name: str) -> Category:
        with self._transaction("get_or_create_category"):
            return self._upsert_category(name)

    def attach_category(self, memory_id: str, category_name: str) -> MemoryCategory:
        """Tag a memory with a category. Re-attaching the same pair is a no-op."""
        with self._transaction("attach_category"):
            category = self._upsert_category(category_name)
            self.conn.execute("""
                INSERT OR IGNORE INTO memory_categories (memory_id, category_id, created_at)
                VALUES (?, ?, ?)
            """, (memory_id, category.id, datetime.now()))
            row = self.conn.execute(
                "SELECT * FROM memory_categories WHERE memory_id = ? AND category_id = ?",
                (memory_id, category.id)
            ).fetchone()
            return MemoryCategory(
                memory_id=row["memory_id"],
                category_id=row["category_id"],
                created_at=row["created_at"],
                category=category,
            )

    # ===== MEMORIES =====

    def create_memory(self, content: str, app_name: str, user_name: str,
                      research_topic: Optional[str] = None,
                      memory_type: Optional[str] = None,
                      source_reliability: Optional[str] = None,
                      source_type: Optional[str] = None,
                      research_loop_count: Optional[int] = None,
                      metadata: Optional[str] = None) -> Memory:
        """Upsert user and app, then insert the memory, all in one transaction"""
        with self._transaction("create_memory"):
            user = self._upsert_user(user_name)
            app = self._upsert_app(app_name, user)

            now = datetime.now()
            memory = Memory(
                id=str(uuid.uuid4()),
                content=content,
                user_id=user.id,
                app_id=app.id,
                created_at=now,
                updated_at=now,
                research_topic=research_topic,
                memory_type=memory_type,
                source_reliability=source_reliability,
                source_type=source_type,
                research_loop_count=research_loop_count,
                metadata=metadata,
            )
            self.conn.execute("""
                INSERT INTO memories
                (id, content, user_id, app_id, state, created_at, updated_at,
                 research_topic, memory_type, source_reliability, source_type,
                 research_loop_count, metadata)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                memory.id, memory.content, memory.user_id, memory.app_id, memory.state,
                memory.created_at, memory.updated_at,
                memory.research_topic, memory.memory_type, memory.source_reliability,
                memory.source_type, memory.research_loop_count, memory.metadata
            ))
            return memory

    def find_memories(self, limit: int = 10,
                      app_name: Optional[str] = None,
                      category: Optional[str] = None,
                      research_topic: Optional[str] = None,
                      memory_type: Optional[str] = None,
                      source_type: Optional[str] = None) -> List[Memory]:
        """Filtered, newest-first memory query with category joins included.

        Empty or None filters are ignored. research_topic is a substring match
        (LIKE, so ASCII case-insensitive); the other filters are exact.
        """
        self._require_conn()
        conditions = []
        params: List[Any] = []

        if app_name:
            conditions.append("a.name = ?")
            params.append(app_name)
        if category:
            conditions.append("""EXISTS (
                SELECT 1 FROM memory_categories mc
                JOIN categories c ON c.id = mc.category_id
                WHERE mc.memory_id = m.id AND c.name = ?
            )""")
            params.append(category)
        if research_topic:
            conditions.append("m.research_topic LIKE ? ESCAPE '\\'")
            params.append(f"%{escape_like(research_topic)}%")
        if memory_type:
            conditions.append("m.memory_type = ?")
            params.append(memory_type)
        if source_type:
            conditions.append("m.source_type = ?")
            params.append(source_type)

        where_clause = f"WHERE {' AND '.join(conditions)}" if conditions else ""
        params.append(limit)

        try:
            with self._lock:
                rows = self.conn.execute(f"""
                    SELECT m.* FROM memories m
                    JOIN apps a ON a.id = m.app_id
                    {where_clause}
                    ORDER BY m.created_at DESC, m.rowid DESC
                    LIMIT ?
                """, params).fetchall()

                memories = []
                for row in rows:
                    # The TIMESTAMP converter yields None for unparseable values
                    if row["created_at"] is None or row["updated_at"] is None:
                        logger.warning(f"Skipping memory {row['id']} with unreadable timestamp")
                        continue
                    memories.append(Memory.from_row(row))
                self._attach_categories(memories)
                return memories
        except Exception as e:
            logger.error(f"Memory query failed: {e}")
            self._log_error("find_memories", e)
            raise

    def _attach_categories(self, memories: List[Memory]):
        if not memories:
            return

        by_id = {memory.id: memory for memory in memories}
        placeholders = ", ".join("?" for _ in by_id)
        rows = self.conn.execute(f"""
            SELECT mc.memory_id, mc.category_id, mc.created_at,
                   c.name AS category_name, c.created_at AS category_created_at
            FROM memory_categories mc
            JOIN categories c ON c.id = mc.category_id
            WHERE mc.memory_id IN ({placeholders})
            ORDER BY c.name
        """, list(by_id)).fetchall()

        for row in rows:
            by_id[row["memory_id"]].categories.append(MemoryCategory(
                memory_id=row["memory_id"],
                category_id=row["category_id"],
                created_at=row["created_at"],
                category=Category(
                    id=row["category_id"],
                    name=row["category_name"],
                    created_at=row["category_created_at"],
                ),
            ))

    # ===== INSPECTION =====
    # Read-only lookups for operators and tests; no tool calls these.

    def get_user(self, name: str) -> Optional[User]:
        """Look up a user by name, None when absent"""
        self._require_conn()
        with self._lock:
            row = self.conn.execute("SELECT * FROM users WHERE name = ?", (name,)).fetchone()
        return User.from_row(row) if row else None

    def get_app(self, name: str) -> Optional[App]:
        """Look up an app by its normalized name, None when absent"""
        self._require_conn()
        with self._lock:
            row = self.conn.execute("SELECT * FROM apps WHERE name = ?", (name,)).fetchone()
        return App.from_row(row) if row else None

    def count(self, table: str) -> int:
        """Row count for one of the schema tables"""
        if table not in ("users", "apps", "memories", "categories", "memory_categories"):
            raise ValueError(f"Unknown table: {table}")
        self._require_conn()
        with self._lock:
            return self.conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]

    def close(self):
        """Close database connection"""
        if self.conn:
            try:
                with self._lock:
                    self.conn.close()
                logger.info("SQLite connection closed")
            except sqlite3.Error as e:
                logger.error(f"Error closing SQLite: {e}")
            finally:
                self.conn = None
