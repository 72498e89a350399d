"""Typed events published by the orchestrator to its observers."""

import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Type

from relay.debug_logger import get_logger


class Phase(Enum):
    PREPARING_CONTEXT = "PREPARING_CONTEXT"
    WAITING_FOR_API = "WAITING_FOR_API"
    STREAMING = "STREAMING"
    EXECUTING_TOOL = "EXECUTING_TOOL"
    ANALYZING = "ANALYZING"


@dataclass(frozen=True)
class Event:
    pass


@dataclass(frozen=True)
class PlanUpdated(Event):
    tasks: List[Dict[str, Any]]


@dataclass(frozen=True)
class StepsUpdated(Event):
    steps: List[Dict[str, Any]]


@dataclass(frozen=True)
class ContentDelta(Event):
    text: str
    agent: str = ""


@dataclass(frozen=True)
class ContentReplaced(Event):
    """The visible output of the current turn was rewritten (loop truncation)."""
    text: str
    agent: str = ""


@dataclass(frozen=True)
class StatsUpdated(Event):
    stats: Dict[str, Any]


@dataclass(frozen=True)
class AgentChanged(Event):
    agent: str
    reasoning: Optional[str] = None


@dataclass(frozen=True)
class WorkflowPaused(Event):
    agent: str
    system_prompt: str
    transcript: str
    file_context: str


@dataclass(frozen=True)
class WorkflowResumed(Event):
    pass


@dataclass(frozen=True)
class PhaseChanged(Event):
    phase: Phase
    detail: Optional[str] = None


@dataclass(frozen=True)
class ProposalRequested(Event):
    proposal: Dict[str, Any]


@dataclass(frozen=True)
class TerminalOutput(Event):
    """Output (or lifecycle notice) from a tracked command process."""
    kind: str  # start, output, stop, killed
    data: str = ""
    pid: Optional[int] = None
    extra: Dict[str, Any] = field(default_factory=dict)


Subscriber = Callable[[Event], None]


class EventBus:
    """Observer list; publish() delivers synchronously on the caller's thread.

    A failing subscriber is logged and skipped so observers cannot break the
    orchestration loop.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._subscribers: List[tuple] = []

    def subscribe(self, callback: Subscriber, event_type: Optional[Type[Event]] = None) -> Callable[[], None]:
        """Register callback (optionally for one event type); returns an unsubscribe function."""
        entry = (event_type, callback)
        with self._lock:
            self._subscribers.append(entry)

        def unsubscribe():
            with self._lock:
                if entry in self._subscribers:
                    self._subscribers.remove(entry)

        return unsubscribe

    def publish(self, event: Event) -> None:
        with self._lock:
            subscribers = list(self._subscribers)
        for event_type, callback in subscribers:
            if event_type is not None and not isinstance(event, event_type):
                continue
            try:
                callback(event)
            except Exception as e:
                get_logger().log_error("events", e, {"event": type(event).__name__})
