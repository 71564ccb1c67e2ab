"""
Data models for Memoer MCP
Copyright 2025 Jurden Bruce
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, List, Dict, Literal, Optional, get_args

DEFAULT_USER_NAME = "default-user"
DEFAULT_RESEARCH_APP = "local-deep-researcher"

ResearchMemoryType = Literal["research_summary", "search_query", "web_results", "final_report"]
SourceReliability = Literal["high", "medium", "low"]
SourceType = Literal["academic", "web", "technical"]

RESEARCH_MEMORY_TYPES = get_args(ResearchMemoryType)
SOURCE_RELIABILITIES = get_args(SourceReliability)
SOURCE_TYPES = get_args(SourceType)


def _as_datetime(value):
    if isinstance(value, str):
        return datetime.fromisoformat(value)
    return value


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


@dataclass
class User:
    id: str
    name: str
    created_at: datetime
    updated_at: datetime

    def __post_init__(self):
        self.created_at = _as_datetime(self.created_at)
        self.updated_at = _as_datetime(self.updated_at)

    @classmethod
    def from_row(cls, row) -> 'User':
        return cls(
            id=row["id"],
            name=row["name"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )


@dataclass
class App:
    """Named namespace of memories, owned by one user"""
    id: str
    name: str
    owner_id: str
    created_at: datetime
    updated_at: datetime

    def __post_init__(self):
        self.created_at = _as_datetime(self.created_at)
        self.updated_at = _as_datetime(self.updated_at)

    @classmethod
    def from_row(cls, row) -> 'App':
        return cls(
            id=row["id"],
            name=row["name"],
            owner_id=row["owner_id"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )


@dataclass
class Category:
    id: str
    name: str
    created_at: datetime

    def __post_init__(self):
        self.created_at = _as_datetime(self.created_at)

    @classmethod
    def from_row(cls, row) -> 'Category':
        return cls(id=row["id"], name=row["name"], created_at=row["created_at"])

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "createdAt": _iso(self.created_at),
        }


@dataclass
class MemoryCategory:
    """Join row between a memory and a category"""
    memory_id: str
    category_id: str
    created_at: datetime
    category: Optional[Category] = None

    def __post_init__(self):
        self.created_at = _as_datetime(self.created_at)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "memoryId": self.memory_id,
            "categoryId": self.category_id,
            "createdAt": _iso(self.created_at),
            "category": self.category.to_dict() if self.category else None,
        }


@dataclass
class Memory:
    id: str
    content: str
    user_id: str
    app_id: str
    created_at: datetime
    updated_at: datetime
    # Stored but not read by any tool
    state: str = "active"
    # Research attributes (createResearchMemory)
    research_topic: Optional[str] = None
    memory_type: Optional[str] = None  # research_summary | search_query | web_results | final_report
    source_reliability: Optional[str] = None  # high | medium | low
    source_type: Optional[str] = None  # academic | web | technical
    research_loop_count: Optional[int] = None
    metadata: Optional[str] = None  # free-form, usually a JSON string
    categories: List[MemoryCategory] = None

    def __post_init__(self):
        if self.categories is None:
            self.categories = []
        self.created_at = _as_datetime(self.created_at)
        self.updated_at = _as_datetime(self.updated_at)

    @classmethod
    def from_row(cls, row) -> 'Memory':
        """Convert SQLite row to Memory object

        Args:
            row: sqlite3.Row from the memories table

        Returns:
            Memory instance (categories are attached separately)
        """
        return cls(
            id=row["id"],
            content=row["content"],
            user_id=row["user_id"],
            app_id=row["app_id"],
            state=row["state"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            research_topic=row["research_topic"],
            memory_type=row["memory_type"],
            source_reliability=row["source_reliability"],
            source_type=row["source_type"],
            research_loop_count=row["research_loop_count"],
            metadata=row["metadata"],
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "content": self.content,
            "userId": self.user_id,
            "appId": self.app_id,
            "state": self.state,
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
            "researchTopic": self.research_topic,
            "memoryType": self.memory_type,
            "sourceReliability": self.source_reliability,
            "sourceType": self.source_type,
            "researchLoopCount": self.research_loop_count,
            "metadata": self.metadata,
            "categories": [c.to_dict() for c in self.categories],
        }
