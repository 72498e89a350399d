#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""Conversation, trace and tool-result models shared across relay."""

import time
import uuid
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Optional


@dataclass
class ChatMessage:
    """A single entry of prior conversation passed into a session."""
    role: str  # user, assistant, system
    content: str
    agent_name: Optional[str] = None
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ChatMessage":
        return cls(
            role=data.get("role", "user"),
            content=data.get("content", ""),
            agent_name=data.get("agent_name") or data.get("agentName"),
            id=str(data.get("id") or uuid.uuid4().hex),
            timestamp=float(data.get("timestamp") or time.time()),
        )


@dataclass
class Step:
    """One agent's contribution to the current user turn."""
    agent: str
    input: str
    output: str
    reasoning: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class ToolResult:
    """Dual-audience tool result.

    llm_output_text is appended to the model-visible transcript,
    user_facing_text to what the user reads.
    """
    llm_output_text: str
    user_facing_text: str
    structured_action: Optional[Dict[str, Any]] = None
    success: bool = True

    @classmethod
    def failure(cls, message: str, user_text: Optional[str] = None) -> "ToolResult":
        return cls(
            llm_output_text=f"[Tool Error] {message}",
            user_facing_text=user_text or f"\n> ❌ {message}\n",
            success=False,
        )


@dataclass(frozen=True)
class Proposal:
    """A pending tool action awaiting a human accept/reject decision."""
    id: str
    kind: str  # new, edit, command, asset
    path: str
    original: str
    modified: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class ProposalDecision:
    status: str  # accepted, rejected
    content: Optional[str] = None

    @property
    def accepted(self) -> bool:
        return self.status == "accepted"
