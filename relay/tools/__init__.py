"""
Tools executed on behalf of agents.

This package contains:
- dispatcher: routes parsed tool tags to the operations below
- file_ops: workspace file service, working set, fuzzy block matching
- command_runner: foreground/background subprocess execution
- approval: human approval gate for mutating actions
- assets: optional image and search service interfaces
"""

from relay.tools.approval import ProposalManager
from relay.tools.assets import ImageService, SearchService
from relay.tools.command_runner import CommandResult, ProcessManager
from relay.tools.dispatcher import MUTATING_TOOLS, ToolDispatcher
from relay.tools.errors import ToolError, ToolErrorType
from relay.tools.file_ops import FileService, LocalFileService, WorkingSet, find_fuzzy_block

__all__ = [
    "CommandResult",
    "FileService",
    "ImageService",
    "LocalFileService",
    "MUTATING_TOOLS",
    "ProcessManager",
    "ProposalManager",
    "SearchService",
    "ToolDispatcher",
    "ToolError",
    "ToolErrorType",
    "WorkingSet",
    "find_fuzzy_block",
]
