"""
Orchestration of agent turns.

This package contains:
- orchestrator: the turn/agent state machine driving one session
- workflow: agent definitions and the router prompt
- loop_detector: repetition-loop detection for streamed output
- history, usage: transcript compression and token accounting
- pause, events: the pause gate and observer events
"""

from relay.execution.errors import (
    CancelledError,
    LLMError,
    OrchestrationError,
    RouterDecisionError,
    UnknownAgentError,
)

__all__ = [
    "CancelledError",
    "LLMError",
    "OrchestrationError",
    "RouterDecisionError",
    "UnknownAgentError",
]
