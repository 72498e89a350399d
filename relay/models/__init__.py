"""Data models for relay."""

from relay.models.messages import ChatMessage, Proposal, ProposalDecision, Step, ToolResult
from relay.models.task import Task, TaskBoard, TaskStatus, normalize_task_id

__all__ = [
    "ChatMessage",
    "Proposal",
    "ProposalDecision",
    "Step",
    "Task",
    "TaskBoard",
    "TaskStatus",
    "ToolResult",
    "normalize_task_id",
]
