#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""relay - multi-agent coding workflow orchestrator."""

from relay.versioning import get_version

__version__ = get_version()

from relay.execution.orchestrator import Orchestrator, OrchestratorConfig, OrchestratorResponse
from relay.execution.workflow import AgentDefinition, WorkflowRegistry
from relay.llm import get_client
from relay.models import ChatMessage, Task, TaskBoard, TaskStatus

__all__ = [
    "AgentDefinition",
    "ChatMessage",
    "Orchestrator",
    "OrchestratorConfig",
    "OrchestratorResponse",
    "Task",
    "TaskBoard",
    "TaskStatus",
    "WorkflowRegistry",
    "get_client",
    "get_version",
]
