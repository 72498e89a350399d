"""LLM clients and agent-output parsing."""

from relay.llm.client import get_client
from relay.llm.providers import LLMClient, LLMResponse, StreamEvent, Usage
from relay.llm.tag_parser import (
    TagScanner,
    ToolTag,
    contains_finish_sentinel,
    extract_ids_from_tag,
    parse_checklist,
    parse_json,
    parse_task_markers,
    parse_tool_tags,
)

__all__ = [
    "LLMClient",
    "LLMResponse",
    "StreamEvent",
    "TagScanner",
    "ToolTag",
    "Usage",
    "contains_finish_sentinel",
    "extract_ids_from_tag",
    "get_client",
    "parse_checklist",
    "parse_json",
    "parse_task_markers",
    "parse_tool_tags",
]
