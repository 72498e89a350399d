#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""Session token accounting.

Counts for the running turn are kept apart from the committed session
totals: they start as a character-based estimate while the model streams and
are replaced by the provider's authoritative numbers when those arrive. Only
commit_turn() folds them into the totals.
"""

import threading
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from relay import config
from relay.llm.providers.base import Usage


@dataclass
class AgentUsage:
    input: int = 0
    output: int = 0
    context_size: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {"input": self.input, "output": self.output, "context_size": self.context_size}


@dataclass
class SessionStats:
    total_input: int = 0
    total_output: int = 0
    current_context_size: int = 0
    agent_stats: Dict[str, AgentUsage] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_input": self.total_input,
            "total_output": self.total_output,
            "current_context_size": self.current_context_size,
            "agent_stats": {name: s.to_dict() for name, s in self.agent_stats.items()},
        }


class _TurnUsage:
    """Live counts for the turn in progress."""

    def __init__(self, agent: str = "", input_tokens: int = 0):
        self.agent = agent
        self.input = input_tokens
        self.output = 0.0
        self.authoritative = False


class UsageTracker:
    """Per-session and per-agent token counts."""

    def __init__(self, chars_per_token: int = config.CHARS_PER_TOKEN):
        self._chars_per_token = max(1, chars_per_token)
        self._lock = threading.Lock()
        self._stats = SessionStats()
        self._current = _TurnUsage()

    def begin_turn(self, agent: str, input_estimate: int = 0) -> None:
        """Start accounting a turn; input_estimate stands until real usage arrives."""
        with self._lock:
            self._current = _TurnUsage(agent, max(0, int(input_estimate)))

    def update_live_output(self, delta_chars: int) -> None:
        """Add an estimate for delta_chars streamed characters."""
        with self._lock:
            if not self._current.authoritative:
                self._current.output += delta_chars / self._chars_per_token

    def update_usage(self, usage: Optional[Usage], agent: Optional[str] = None) -> None:
        """Replace the current turn's counts with the provider's authoritative usage."""
        if usage is None:
            return
        with self._lock:
            self._current.input = usage.input_tokens
            self._current.output = float(usage.output_tokens)
            self._current.authoritative = True
            if agent:
                self._current.agent = agent

    def record(self, agent: str, usage: Optional[Usage]) -> None:
        """Account a standalone call (router, compressor) as its own committed turn."""
        if usage is None:
            return
        with self._lock:
            self._fold(agent, usage.input_tokens, usage.output_tokens)

    def commit_turn(self) -> None:
        with self._lock:
            current = self._current
            if current.agent:
                self._fold(current.agent, current.input, round(current.output))
            self._current = _TurnUsage()

    def _fold(self, agent: str, input_tokens: int, output_tokens: int) -> None:
        stats = self._stats
        stats.total_input += input_tokens
        stats.total_output += output_tokens
        stats.current_context_size = input_tokens

        agent_usage = stats.agent_stats.setdefault(agent, AgentUsage())
        agent_usage.input += input_tokens
        agent_usage.output += output_tokens
        agent_usage.context_size = input_tokens

    def get_stats(self) -> SessionStats:
        """Merged view of committed totals plus the uncommitted current turn."""
        with self._lock:
            current = self._current
            live_output = round(current.output)
            merged = SessionStats(
                total_input=self._stats.total_input + current.input,
                total_output=self._stats.total_output + live_output,
                current_context_size=current.input or self._stats.current_context_size,
                agent_stats={
                    name: AgentUsage(s.input, s.output, s.context_size)
                    for name, s in self._stats.agent_stats.items()
                },
            )
            if current.agent:
                existing = merged.agent_stats.get(current.agent, AgentUsage())
                merged.agent_stats[current.agent] = AgentUsage(
                    input=existing.input + current.input,
                    output=existing.output + live_output,
                    context_size=current.input or existing.context_size,
                )
            return merged

    def reset_stats(self) -> None:
        with self._lock:
            self._stats = SessionStats()
            self._current = _TurnUsage()
