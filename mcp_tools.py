"""
MCP Tool Definitions and Handlers for Memoer MCP
Copyright 2025 Jurden Bruce

Creation tools answer with a one-line confirmation; retrieval tools return
the matching records as indented JSON.
"""

import json
import logging
from datetime import datetime
from typing import List, Dict, Any, Optional

from mcp.types import Tool, TextContent
from pydantic import BaseModel, ConfigDict, Field

from models import (
    DEFAULT_RESEARCH_APP,
    RESEARCH_MEMORY_TYPES,
    SOURCE_RELIABILITIES,
    SOURCE_TYPES,
    ResearchMemoryType,
    SourceReliability,
    SourceType,
)

logger = logging.getLogger("memoer-mcp.mcp-tools")

DEFAULT_LIMIT = 10

ERROR_PREFIXES = {
    "createMemory": "Error creating memory",
    "getMemories": "Error retrieving memories",
    "createResearchMemory": "Error creating research memory",
    "getResearchMemories": "Error retrieving research memories",
}


class DateTimeEncoder(json.JSONEncoder):
    """JSON encoder that handles datetime objects"""
    def default(self, obj):
        if isinstance(obj, datetime):
            return obj.isoformat()
        return super().default(obj)


# ===== REQUEST MODELS =====

class _ToolRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class CreateMemoryRequest(_ToolRequest):
    content: str = Field(..., description="Memory content to store")
    app_name: str = Field(..., alias="appName", description="Name of the calling app/agent")


class GetMemoriesRequest(_ToolRequest):
    app_name: Optional[str] = Field(default=None, alias="appName", description="Filter by app")
    category: Optional[str] = Field(default=None, description="Filter by category name")
    limit: int = Field(default=DEFAULT_LIMIT, ge=0, description="Max results")


class CreateResearchMemoryRequest(_ToolRequest):
    content: str = Field(..., description="Research content to store")
    research_topic: str = Field(..., alias="researchTopic")
    memory_type: ResearchMemoryType = Field(..., alias="memoryType")
    source_reliability: Optional[SourceReliability] = Field(default=None, alias="sourceReliability")
    source_type: Optional[SourceType] = Field(default=None, alias="sourceType")
    research_loop_count: Optional[int] = Field(default=None, alias="researchLoopCount")
    metadata: Optional[str] = Field(default=None, description="Additional metadata as JSON string")
    app_name: str = Field(default=DEFAULT_RESEARCH_APP, alias="appName")


class GetResearchMemoriesRequest(_ToolRequest):
    research_topic: Optional[str] = Field(default=None, alias="researchTopic")
    memory_type: Optional[str] = Field(default=None, alias="memoryType")
    source_type: Optional[str] = Field(default=None, alias="sourceType")
    limit: int = Field(default=DEFAULT_LIMIT, ge=0)


def get_tool_definitions() -> List[Tool]:
    """Return list of available MCP tools"""
    return [
        Tool(
            name="createMemory",
            description="Store a memory in memoer-mcp local storage under the calling app/agent.",
            inputSchema={
                "type": "object",
                "properties": {
                    "content": {"type": "string", "description": "the content/memory to store into memoer-mcp local storage"},
                    "appName": {"type": "string", "description": "the name of the app/agent you are"},
                },
                "required": ["content", "appName"],
            },
        ),
        Tool(
            name="getMemories",
            description="Retrieve stored memories, newest first, optionally filtered by app and category.",
            inputSchema={
                "type": "object",
                "properties": {
                    "appName": {"type": "string", "description": "Only memories stored by this app/agent"},
                    "category": {"type": "string", "description": "Only memories tagged with this category"},
                    "limit": {"type": "integer", "description": "Max results", "default": DEFAULT_LIMIT, "minimum": 0},
                },
            },
        ),
        Tool(
            name="createResearchMemory",
            description="Store a research memory (summary, query, web results or final report) with research metadata.",
            inputSchema={
                "type": "object",
                "properties": {
                    "content": {"type": "string", "description": "the research content to store"},
                    "researchTopic": {"type": "string", "description": "the main research topic"},
                    "memoryType": {
                        "type": "string",
                        "enum": list(RESEARCH_MEMORY_TYPES),
                        "description": "type of research memory",
                    },
                    "sourceReliability": {
                        "type": "string",
                        "enum": list(SOURCE_RELIABILITIES),
                        "description": "reliability of the source",
                    },
                    "sourceType": {
                        "type": "string",
                        "enum": list(SOURCE_TYPES),
                        "description": "type of source",
                    },
                    "researchLoopCount": {"type": "integer", "description": "number of research loops"},
                    "metadata": {"type": "string", "description": "additional metadata as JSON string"},
                    "appName": {
                        "type": "string",
                        "description": "the name of the research app",
                        "default": DEFAULT_RESEARCH_APP,
                    },
                },
                "required": ["content", "researchTopic", "memoryType"],
            },
        ),
        Tool(
            name="getResearchMemories",
            description="Retrieve research memories, newest first. researchTopic matches any topic containing the given text.",
            inputSchema={
                "type": "object",
                "properties": {
                    "researchTopic": {"type": "string", "description": "Substring of the research topic"},
                    "memoryType": {"type": "string", "description": "Exact research memory type"},
                    "sourceType": {"type": "string", "description": "Exact source type"},
                    "limit": {"type": "integer", "description": "Max results", "default": DEFAULT_LIMIT, "minimum": 0},
                },
            },
        ),
    ]


def _text(text: str) -> List[TextContent]:
    return [TextContent(type="text", text=text)]


def _dump_memories(memories) -> str:
    return json.dumps([m.to_dict() for m in memories], indent=2, cls=DateTimeEncoder)


def format_error(name: str, error: Exception) -> str:
    """Error text for a failed tool call.

    Creation tools embed a JSON description of the exception; retrieval
    tools only report its message.
    """
    prefix = ERROR_PREFIXES.get(name, f"Error executing {name}")
    if name.startswith("create"):
        detail = json.dumps({
            "error": str(error),
            "tool": name,
            "type": type(error).__name__,
        }, indent=2)
    else:
        detail = str(error) or "Unknown error"
    return f"{prefix}: {detail}"


async def handle_tool_call(name: str, arguments: Optional[Dict[str, Any]], memoer_store) -> List[TextContent]:
    """
    Handle MCP tool calls

    Args:
        name: Tool name
        arguments: Tool arguments
        memoer_store: MemoerStore instance

    Returns:
        List with a single TextContent; failures are reported as text
    """
    arguments = arguments or {}

    try:
        if name == "createMemory":
            request = CreateMemoryRequest.model_validate(arguments)
            memory = await memoer_store.create_memory(
                content=request.content,
                app_name=request.app_name,
            )
            return _text(f"Memory created successfully with ID: {memory.id}")

        elif name == "getMemories":
            request = GetMemoriesRequest.model_validate(arguments)
            memories = await memoer_store.get_memories(
                app_name=request.app_name,
                category=request.category,
                limit=request.limit,
            )
            return _text(_dump_memories(memories))

        elif name == "createResearchMemory":
            request = CreateResearchMemoryRequest.model_validate(arguments)
            memory = await memoer_store.create_research_memory(
                content=request.content,
                research_topic=request.research_topic,
                memory_type=request.memory_type,
                source_reliability=request.source_reliability,
                source_type=request.source_type,
                research_loop_count=request.research_loop_count,
                metadata=request.metadata,
                app_name=request.app_name,
            )
            return _text(
                f"Research memory created successfully with ID: {memory.id}, "
                f"Topic: {request.research_topic}, Type: {request.memory_type}"
            )

        elif name == "getResearchMemories":
            request = GetResearchMemoriesRequest.model_validate(arguments)
            memories = await memoer_store.get_research_memories(
                research_topic=request.research_topic,
                memory_type=request.memory_type,
                source_type=request.source_type,
                limit=request.limit,
            )
            return _text(_dump_memories(memories))

        else:
            return _text(json.dumps({"error": f"Unknown tool: {name}"}))

    except Exception as e:
        logger.error(f"Tool execution error: {name}: {e}", exc_info=True)
        return _text(format_error(name, e))
