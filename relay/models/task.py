#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""Task models and the session task board for relay."""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional


class TaskStatus(Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    REVIEW_PENDING = "review_pending"
    COMPLETED = "completed"
    REJECTED = "rejected"
    FAILED = "failed"

    @property
    def is_incomplete(self) -> bool:
        """Whether the task still needs work before the workflow can finish."""
        return self in {TaskStatus.PENDING, TaskStatus.IN_PROGRESS}


_NON_ALNUM_RE = re.compile(r"[^a-z0-9]")


def normalize_task_id(task_id: Any) -> str:
    """Normalize a task id for matching.

    Separators and case are ignored and a leading "task" prefix is dropped,
    so "Task 3", "task-3", "TASK3" and "3" all normalize to "3".
    """
    normalized = _NON_ALNUM_RE.sub("", str(task_id).lower())
    if normalized.startswith("task") and len(normalized) > 4:
        normalized = normalized[4:]
    return normalized


@dataclass
class Task:
    """A single checklist item produced by a planning agent."""
    id: str
    description: str
    status: TaskStatus = TaskStatus.PENDING
    assigned_agent: Optional[str] = None
    last_modified_files: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "description": self.description,
            "status": self.status.value,
            "assigned_agent": self.assigned_agent,
            "last_modified_files": list(self.last_modified_files),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Task":
        return cls(
            id=str(data["id"]),
            description=data.get("description", ""),
            status=TaskStatus(data.get("status", "pending")),
            assigned_agent=data.get("assigned_agent"),
            last_modified_files=list(data.get("last_modified_files") or []),
        )


class TaskBoard:
    """Flat task arena addressed by normalized id.

    Every status change goes through apply_update() so the uniqueness of
    normalized ids holds for the whole session.
    """

    def __init__(self, tasks: Optional[Iterable[Task]] = None):
        self._tasks: List[Task] = []
        self._index: Dict[str, int] = {}
        if tasks:
            self.replace_all(tasks)

    def __len__(self) -> int:
        return len(self._tasks)

    def __iter__(self):
        return iter(list(self._tasks))

    @property
    def tasks(self) -> List[Task]:
        return list(self._tasks)

    def get(self, task_id: Any) -> Optional[Task]:
        idx = self._index.get(normalize_task_id(task_id))
        return self._tasks[idx] if idx is not None else None

    def add(self, task: Task) -> Task:
        """Add a task, replacing any existing task with the same normalized id."""
        key = normalize_task_id(task.id)
        idx = self._index.get(key)
        if idx is not None:
            self._tasks[idx] = task
        else:
            self._index[key] = len(self._tasks)
            self._tasks.append(task)
        return task

    def replace_all(self, tasks: Iterable[Task]) -> None:
        self.clear()
        for task in tasks:
            self.add(task)

    def clear(self) -> None:
        self._tasks = []
        self._index = {}

    def apply_update(
        self,
        task_id: Any,
        status: TaskStatus,
        *,
        agent: Optional[str] = None,
        modified_files: Optional[Iterable[str]] = None,
    ) -> Optional[Task]:
        """Apply a status update to the task matching task_id.

        Returns the updated task, or None when no task matches.
        """
        task = self.get(task_id)
        if task is None:
            return None

        task.status = status
        if agent:
            task.assigned_agent = agent
        if modified_files:
            task.last_modified_files = list(dict.fromkeys(modified_files))
        return task

    def with_status(self, *statuses: TaskStatus) -> List[Task]:
        return [t for t in self._tasks if t.status in statuses]

    def has_review_pending(self) -> bool:
        return any(t.status == TaskStatus.REVIEW_PENDING for t in self._tasks)

    def incomplete(self) -> List[Task]:
        return [t for t in self._tasks if t.status.is_incomplete]

    def next_pending(self) -> Optional[Task]:
        for task in self._tasks:
            if task.status == TaskStatus.PENDING:
                return task
        return None

    def to_list(self) -> List[Dict[str, Any]]:
        return [t.to_dict() for t in self._tasks]

    def format_status(self) -> str:
        """Render the plan as a checklist for agent context."""
        if not self._tasks:
            return ""
        lines = []
        for task in self._tasks:
            mark = "x" if task.status == TaskStatus.COMPLETED else " "
            lines.append(f"- [{mark}] {task.id}: {task.description} ({task.status.value})")
        return "\n".join(lines)
