#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Error taxonomy for tool dispatch.

Tool failures never abort a turn. They are classified here and rendered into
a ToolResult so the agent sees what went wrong and the loop continues.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from relay.models.messages import ToolResult


class ToolErrorType(Enum):
    """Categories of tool failure.

    - NOT_FOUND: target file or process does not exist
    - ANCHOR_MISMATCH: replace/patch anchor text not present in the file
    - PERMISSION_DENIED: path escapes the workspace or the OS refused access
    - NOT_PERMITTED: tool disabled for the current mode (analysis)
    - REJECTED: the user declined the proposal
    - UNAVAILABLE: an optional external service is not configured
    - TIMEOUT: command exceeded its time budget
    - VALIDATION_ERROR: malformed tag arguments
    """

    NOT_FOUND = "not_found"
    ANCHOR_MISMATCH = "anchor_mismatch"
    PERMISSION_DENIED = "permission_denied"
    NOT_PERMITTED = "not_permitted"
    REJECTED = "rejected"
    UNAVAILABLE = "unavailable"
    TIMEOUT = "timeout"
    VALIDATION_ERROR = "validation_error"
    UNKNOWN = "unknown"

    @property
    def recoverable_by_agent(self) -> bool:
        """Whether an agent can recover from this error without user help."""
        return self in {
            ToolErrorType.NOT_FOUND,
            ToolErrorType.ANCHOR_MISMATCH,
            ToolErrorType.TIMEOUT,
            ToolErrorType.VALIDATION_ERROR,
        }


@dataclass
class ToolError:
    """Structured tool failure, convertible to a dual-audience ToolResult."""

    error_type: ToolErrorType
    message: str
    context: Dict[str, Any] = field(default_factory=dict)
    suggested_recovery: List[str] = field(default_factory=list)
    original_error: Optional[str] = None

    @property
    def recoverable(self) -> bool:
        return self.error_type.recoverable_by_agent

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.message,
            "error_type": self.error_type.value,
            "recoverable": self.recoverable,
            "suggested_recovery": self.suggested_recovery,
            "context": self.context,
            "original_error": self.original_error,
        }

    def to_result(self) -> ToolResult:
        """Render for the model (with hints) and for the user (one line)."""
        llm_text = f"[Tool Error] {self.message}"
        if self.suggested_recovery:
            llm_text += "\nHint: " + " ".join(self.suggested_recovery)
        return ToolResult(
            llm_output_text=llm_text,
            user_facing_text=f"\n> ❌ {self.message}\n",
            structured_action={"type": "error", **self.to_dict()},
            success=False,
        )

    @classmethod
    def from_exception(cls, exc: Exception, tool_name: str) -> "ToolError":
        """Create a ToolError from a Python exception raised inside a tool."""
        error_type = cls._classify_exception(exc)
        return cls(
            error_type=error_type,
            message=f"{tool_name}: {exc}",
            context={"exception_type": type(exc).__name__, "tool": tool_name},
            original_error=str(exc),
        )

    @staticmethod
    def _classify_exception(exc: Exception) -> ToolErrorType:
        if isinstance(exc, FileNotFoundError):
            return ToolErrorType.NOT_FOUND
        if isinstance(exc, PermissionError):
            return ToolErrorType.PERMISSION_DENIED
        if isinstance(exc, TimeoutError):
            return ToolErrorType.TIMEOUT
        if isinstance(exc, (ValueError, KeyError)):
            return ToolErrorType.VALIDATION_ERROR
        return ToolErrorType.UNKNOWN


# Error factory functions for common scenarios

def file_not_found_error(file_path: str, tool_name: str = "read_file") -> ToolError:
    return ToolError(
        error_type=ToolErrorType.NOT_FOUND,
        message=f"{tool_name}: File not found: {file_path}",
        context={"file_path": file_path, "tool": tool_name},
        suggested_recovery=["Use <search query=\"...\"/> to locate the file before reading it."],
    )


def anchor_not_found_error(file_path: str, tool_name: str = "replace") -> ToolError:
    """Replace or patch could not find the anchor text, even with fuzzy matching."""
    return ToolError(
        error_type=ToolErrorType.ANCHOR_MISMATCH,
        message=f"{tool_name}: Could not find the text to replace in {file_path}",
        context={"file_path": file_path, "tool": tool_name},
        suggested_recovery=[
            "The <old> block must match the file exactly.",
            "Read the file again and copy the lines verbatim.",
        ],
    )


def not_permitted_error(tool_name: str, mode: str = "analysis") -> ToolError:
    return ToolError(
        error_type=ToolErrorType.NOT_PERMITTED,
        message=f"{tool_name}: not permitted in {mode} mode",
        context={"tool": tool_name, "mode": mode},
        suggested_recovery=["Only read-only tools (read_file, search) are available."],
    )


def rejected_error(target: str, tool_name: str) -> ToolError:
    return ToolError(
        error_type=ToolErrorType.REJECTED,
        message=f"{tool_name}: User rejected the change to {target}",
        context={"target": target, "tool": tool_name},
    )


def service_unavailable_error(service: str, tool_name: str) -> ToolError:
    return ToolError(
        error_type=ToolErrorType.UNAVAILABLE,
        message=f"{tool_name}: {service} service is not configured",
        context={"service": service, "tool": tool_name},
    )


def timeout_error(operation: str, timeout_seconds: Optional[float] = None, tool_name: str = "execute_command") -> ToolError:
    msg = f"{tool_name}: Operation timed out - {operation}"
    if timeout_seconds:
        msg += f" (timeout: {timeout_seconds}s)"
    return ToolError(
        error_type=ToolErrorType.TIMEOUT,
        message=msg,
        context={"operation": operation, "timeout": timeout_seconds, "tool": tool_name},
        suggested_recovery=[
            "Run long-lived commands with background=\"true\".",
            "Check if the command is waiting for user input.",
        ],
    )


def validation_error(error_msg: str, tool_name: str = "tool") -> ToolError:
    return ToolError(
        error_type=ToolErrorType.VALIDATION_ERROR,
        message=f"{tool_name}: Validation error - {error_msg}",
        context={"tool": tool_name},
    )
