#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Orchestrator for relay's multi-agent workflow.

One user message runs a loop of agent turns: in multi-agent mode the Router
picks the next agent after every turn; in solo and analysis mode the Solo
agent keeps the turn until it finishes or stops to wait for the user. Agent
output streams through the loop detector and the incremental tag scanner,
tools are dispatched as soon as their tags are complete, and task markers
update the plan.
"""

import queue
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple, Union

from relay import config
from relay.debug_logger import DebugLogger
from relay.execution.context_builder import ContextBuilder, ContextItem, DefaultContextBuilder
from relay.execution.errors import (
    CancelledError,
    LLMError,
    OrchestrationError,
    RouterDecisionError,
    UnknownAgentError,
)
from relay.execution.events import (
    AgentChanged,
    ContentDelta,
    ContentReplaced,
    EventBus,
    Phase,
    PhaseChanged,
    PlanUpdated,
    ProposalRequested,
    StatsUpdated,
    StepsUpdated,
    TerminalOutput,
    WorkflowPaused,
    WorkflowResumed,
)
from relay.execution.history import HistoryManager
from relay.execution.loop_detector import INTERVENTION_NOTICE, LoopDetector, LoopPolicy
from relay.execution.pause import GateState, PauseGate
from relay.execution.usage import UsageTracker
from relay.execution.workflow import (
    FINISH,
    QA_AGENT,
    REVIEWER_AGENT,
    ROUTER_AGENT,
    SOLO_AGENT,
    AgentDefinition,
    WorkflowRegistry,
)
from relay.llm.providers.base import LLMClient, StreamEvent
from relay.llm.tag_parser import (
    MARKER_STATUS,
    TagScanner,
    contains_finish_sentinel,
    extract_ids_from_tag,
    parse_checklist,
    parse_json,
    parse_task_markers,
)
from relay.models.messages import ChatMessage, Proposal, Step, ToolResult
from relay.models.task import TaskBoard, TaskStatus
from relay.tools.approval import ProposalManager
from relay.tools.assets import ImageService, SearchService
from relay.tools.command_runner import ProcessManager
from relay.tools.dispatcher import ToolDispatcher
from relay.tools.file_ops import FileService, LocalFileService, WorkingSet


STOPPED_NOTICE = "\n\n[System] Workflow stopped by user."
USER_AGENT = "User"

VERIFY_INSTRUCTION = (
    "[SYSTEM INTERRUPT]: The workflow tried to finish while these tasks are still open:\n"
    "{tasks}\n"
    "Verify whether each one was actually implemented. Output [COMPLETED: Task N] for every "
    "task that is done and explain what is missing for the rest."
)

_APPROVED_STATUSES = {"APPROVED", "PASS"}
_REJECTED_STATUSES = {"REJECTED", "FAIL"}

# Queue poll slice while waiting for stream chunks; lets stop() interrupt the wait
_POLL_INTERVAL = 0.25

_STREAM_DONE = object()


class _StreamFailure:
    def __init__(self, error: Exception):
        self.error = error


HistoryInput = Sequence[Union[ChatMessage, Dict[str, Any]]]


@dataclass
class OrchestratorConfig:
    """Settings for one orchestrator session."""
    mode: str = config.ORCHESTRATION_MODE
    auto_apply: bool = config.AUTO_APPLY
    auto_mark_tasks: bool = config.AUTO_MARK_TASKS
    max_iterations: int = config.MAX_LOOP_ITERATIONS
    silence_timeout: float = config.STREAM_SILENCE_TIMEOUT


@dataclass
class OrchestratorResponse:
    """Result of handling one user message."""
    content: str
    steps: List[Step] = field(default_factory=list)
    next_agent: str = FINISH
    tasks: List[Dict[str, Any]] = field(default_factory=list)
    stats: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "content": self.content,
            "steps": [s.to_dict() for s in self.steps],
            "next_agent": self.next_agent,
            "tasks": self.tasks,
            "stats": self.stats,
        }


@dataclass
class _AgentTurn:
    visible: str
    model_text: str
    raw: str
    tools_used: int = 0
    looped: bool = False


class _TurnRender:
    """Generated text plus tool results spliced in at the offsets their tags ended."""

    def __init__(self):
        self.raw = ""
        self.insertions: List[Tuple[int, ToolResult]] = []

    def truncate(self, index: int) -> None:
        self.raw = self.raw[:index]
        self.insertions = [(pos, res) for pos, res in self.insertions if pos <= index]

    def render(self, model_facing: bool) -> str:
        parts = []
        prev = 0
        for pos, result in self.insertions:
            parts.append(self.raw[prev:pos])
            parts.append("\n" + result.llm_output_text + "\n" if model_facing else result.user_facing_text)
            prev = pos
        parts.append(self.raw[prev:])
        return "".join(parts)


class Orchestrator:
    """Runs the agent workflow for one session.

    handle_message() is not reentrant; the host runs it on one worker thread
    and calls stop(), pause(), resume() or resolve_proposal() from others.
    """

    def __init__(
        self,
        llm: LLMClient,
        files: Optional[FileService] = None,
        workflow: Optional[WorkflowRegistry] = None,
        context_builder: Optional[ContextBuilder] = None,
        proposals: Optional[ProposalManager] = None,
        image_service: Optional[ImageService] = None,
        search_service: Optional[SearchService] = None,
        events: Optional[EventBus] = None,
        orchestrator_config: Optional[OrchestratorConfig] = None,
        loop_policy: Optional[LoopPolicy] = None,
        project_root: Optional[Path] = None,
    ):
        self.llm = llm
        self.config = orchestrator_config or OrchestratorConfig()
        if self.config.mode not in config.VALID_MODES:
            raise ValueError(f"Unknown orchestration mode: {self.config.mode}")

        root = Path(project_root or config.ROOT)
        self.files = files or LocalFileService(root)
        self.workflow = workflow or WorkflowRegistry()
        self.context_builder = context_builder or DefaultContextBuilder()
        self.events = events or EventBus()

        self.gate = PauseGate()
        self.tasks = TaskBoard()
        self.working_set = WorkingSet()
        self.usage = UsageTracker()
        self.history = HistoryManager(self.usage)
        self.loop_detector = LoopDetector(loop_policy)

        self.proposals = proposals or ProposalManager()
        if self.proposals.on_proposal is None:
            self.proposals.on_proposal = self._publish_proposal
        self.proposals.cancel_event = self.gate.cancel_event
        self.processes = ProcessManager(cwd=root, on_output=self._publish_terminal_output)
        self.dispatcher = ToolDispatcher(
            self.files,
            proposals=self.proposals,
            processes=self.processes,
            working_set=self.working_set,
            image_service=image_service,
            search_service=search_service,
            auto_apply=self.config.auto_apply,
            read_only=self.config.mode == "analysis",
        )
        self.dispatcher.cancel_event = self.gate.cancel_event

        self._stream_cancel = threading.Event()
        self._task_feedback: List[str] = []
        self.debug_logger = DebugLogger.get_instance()

        self.debug_logger.log("orchestrator", "ORCHESTRATOR_INITIALIZED", {
            "mode": self.config.mode,
            "auto_apply": self.config.auto_apply,
            "auto_mark_tasks": self.config.auto_mark_tasks,
            "agents": self.workflow.agent_ids(),
        })

    # ---- settings ----

    @property
    def mode(self) -> str:
        return self.config.mode

    @mode.setter
    def mode(self, value: str) -> None:
        if value not in config.VALID_MODES:
            raise ValueError(f"Unknown orchestration mode: {value}")
        self.config.mode = value
        self.dispatcher.read_only = value == "analysis"

    @property
    def auto_apply(self) -> bool:
        return self.config.auto_apply

    @auto_apply.setter
    def auto_apply(self, value: bool) -> None:
        self.config.auto_apply = bool(value)
        self.dispatcher.auto_apply = bool(value)

    @property
    def auto_mark_tasks(self) -> bool:
        return self.config.auto_mark_tasks

    @auto_mark_tasks.setter
    def auto_mark_tasks(self, value: bool) -> None:
        self.config.auto_mark_tasks = bool(value)

    @property
    def is_multi_agent(self) -> bool:
        return self.config.mode == "multi"

    # ---- session control ----

    def stop(self) -> None:
        """Cancel the running workflow and release any pending approval."""
        self.gate.cancel()
        self._stream_cancel.set()
        released = self.proposals.cancel_all()
        self.debug_logger.log("orchestrator", "WORKFLOW_STOPPED", {"released_proposals": released})

    def pause(self) -> bool:
        paused = self.gate.pause()
        if paused:
            self.debug_logger.log("orchestrator", "PAUSE_REQUESTED", {})
        return paused

    def resume(self) -> bool:
        return self.gate.resume()

    def reset(self) -> None:
        """Stop everything and clear the plan, working set and usage."""
        self.stop()
        self.processes.kill()
        self.tasks.clear()
        self._task_feedback = []
        self.working_set.clear()
        self.usage.reset_stats()
        self.dispatcher.take_modified_files()
        self.events.publish(PlanUpdated([]))
        self.events.publish(StatsUpdated(self.get_stats()))
        self.debug_logger.log("orchestrator", "SESSION_RESET", {})

    def resolve_proposal(self, proposal_id: str, status: str, content: Optional[str] = None) -> bool:
        return self.proposals.resolve_proposal(proposal_id, status, content)

    def confirm_task(self, task_id: str, accepted: bool, comment: Optional[str] = None) -> bool:
        """Record the user's verdict on a task.

        A rejection comment is handed to the agents with the next message.
        Returns False when no task matches task_id.
        """
        status = TaskStatus.COMPLETED if accepted else TaskStatus.REJECTED
        task = self.tasks.apply_update(task_id, status, agent=USER_AGENT)
        if task is None:
            return False
        if not accepted and comment:
            self._task_feedback.append(f"The user rejected {task.id} ({task.description}): {comment}")
        self.debug_logger.log_task_status(task.id, status.value, {"agent": USER_AGENT, "comment": comment})
        self.events.publish(PlanUpdated(self.tasks.to_list()))
        return True

    def compress_history(self, messages: HistoryInput) -> List[ChatMessage]:
        compressed = self.history.compress_history(_as_messages(messages), self.llm)
        self.events.publish(StatsUpdated(self.get_stats()))
        return compressed

    def kill_active_process(self) -> bool:
        return self.processes.kill()

    def write_to_process(self, data: str) -> bool:
        return self.processes.write_input(data)

    def get_stats(self) -> Dict[str, Any]:
        return self.usage.get_stats().to_dict()

    # ---- main loop ----

    def handle_message(
        self,
        message: str,
        context_items: Optional[Sequence[Union[ContextItem, Dict[str, Any]]]] = None,
        history: Optional[HistoryInput] = None,
        file_tree: Optional[Sequence[Any]] = None,
    ) -> OrchestratorResponse:
        """Run the workflow for one user message until it finishes or stops."""
        self.gate.reset()

        items = [i if isinstance(i, ContextItem) else ContextItem.from_dict(i) for i in context_items or []]
        transcript = HistoryManager.format_history_text(_as_messages(history))
        for note in self._task_feedback:
            transcript += f"[System]: {note}\n\n"
        self._task_feedback = []
        transcript += f"[User]: {message}\n\n"
        steps: List[Step] = []
        content = ""
        current = ROUTER_AGENT if self.is_multi_agent else SOLO_AGENT
        agent_input = message

        self.debug_logger.log("orchestrator", "MESSAGE_RECEIVED", {
            "mode": self.config.mode,
            "message_length": len(message),
            "context_items": len(items),
            "history": len(history or []),
        })

        try:
            for iteration in range(self.config.max_iterations):
                if self.gate.is_cancelled:
                    raise CancelledError("Workflow stopped by user")

                file_context = self._build_context(items, file_tree)
                self._checkpoint(current, transcript, file_context)

                if current == ROUTER_AGENT:
                    current, reasoning, agent_input = self._route(transcript, file_context, message, steps)
                    if agent_input != message:
                        transcript += f"[System]: {agent_input}\n\n"
                    if current == FINISH:
                        break
                    self._checkpoint(current, transcript, file_context)

                agent = self.workflow.get_agent(current)
                if agent is None:
                    raise UnknownAgentError(f"Unknown agent: {current}", agent=current)

                self.debug_logger.log("orchestrator", "AGENT_TURN_START", {
                    "iteration": iteration + 1,
                    "agent": agent.id,
                })
                turn = self._run_agent(agent, transcript, file_context)
                content = turn.visible
                transcript += f"[{agent.id}]: {turn.model_text}\n\n"
                steps.append(Step(agent=agent.id, input=agent_input, output=turn.visible))
                self.events.publish(StepsUpdated([s.to_dict() for s in steps]))

                if self.gate.is_cancelled:
                    raise CancelledError("Workflow stopped by user", agent=agent.id)

                self._publish_phase(Phase.ANALYZING)
                data = parse_json(turn.raw)
                self._apply_task_updates(agent, turn.raw, data)

                current = self._next_agent(turn, data)
                agent_input = message
                if current == FINISH:
                    break
            else:
                content += (
                    f"\n\n[System] Reached the maximum of {self.config.max_iterations} iterations. "
                    "Stopping the workflow."
                )
                self.debug_logger.log("orchestrator", "ITERATION_CAP_REACHED", {
                    "max_iterations": self.config.max_iterations,
                    "agent": current,
                }, "WARNING")
        except CancelledError:
            content += STOPPED_NOTICE
            self.debug_logger.log("orchestrator", "WORKFLOW_CANCELLED", {"agent": current})
        except OrchestrationError as e:
            content += f"\n\n[System Error] {e}"
            self.debug_logger.log_error("orchestrator", e, {"agent": e.agent or current})

        stats = self.get_stats()
        self.events.publish(StatsUpdated(stats))
        return OrchestratorResponse(
            content=content,
            steps=steps,
            next_agent=current,
            tasks=self.tasks.to_list(),
            stats=stats,
        )

    # ---- loop pieces ----

    def _build_context(self, items: List[ContextItem], file_tree: Optional[Sequence[Any]]) -> str:
        self._publish_phase(Phase.PREPARING_CONTEXT)
        return self.context_builder.build(items, file_tree, self.working_set, self.tasks)

    def _checkpoint(self, agent: str, transcript: str, file_context: str) -> None:
        """Block here while paused; raises CancelledError once the gate is cancelled."""
        if self.gate.is_paused:
            self.events.publish(WorkflowPaused(
                agent=agent,
                system_prompt=self.workflow.system_prompt_for(agent),
                transcript=transcript,
                file_context=file_context,
            ))
            self.debug_logger.log("orchestrator", "WORKFLOW_PAUSED", {"agent": agent})
            if self.gate.wait_if_paused() == GateState.RUNNING:
                self.events.publish(WorkflowResumed())
                self.debug_logger.log("orchestrator", "WORKFLOW_RESUMED", {"agent": agent})
        if self.gate.is_cancelled:
            raise CancelledError("Workflow stopped by user", agent=agent)

    def _route(
        self, transcript: str, file_context: str, message: str, steps: List[Step]
    ) -> Tuple[str, Optional[str], str]:
        """Decide the next agent; returns (agent, reasoning, input for that agent)."""
        if self.tasks.has_review_pending():
            agent, reasoning = REVIEWER_AGENT, "Tasks are awaiting review"
            router_output = "Forced review of pending tasks"
        else:
            self._publish_phase(Phase.WAITING_FOR_API)
            try:
                response = self.llm.complete(
                    self.workflow.router_prompt, transcript, file_context, cancel_event=self.gate.cancel_event
                )
            except LLMError:
                raise
            except Exception as e:
                raise LLMError(f"Router request failed: {e}", agent=ROUTER_AGENT) from e
            if self.gate.is_cancelled:
                raise CancelledError("Workflow stopped by user", agent=ROUTER_AGENT)

            self.usage.record(ROUTER_AGENT, response.usage)
            self.events.publish(StatsUpdated(self.get_stats()))
            router_output = response.text

            decision = parse_json(response.text)
            if not isinstance(decision, dict) or not decision.get("next_agent"):
                raise RouterDecisionError(
                    f"Router returned no next_agent decision: {response.text[:200]!r}", agent=ROUTER_AGENT
                )
            agent = str(decision["next_agent"]).strip()
            reasoning = decision.get("reasoning")

        agent_input = message
        if agent.upper() == FINISH:
            open_tasks = self.tasks.incomplete()
            if not open_tasks:
                steps.append(Step(ROUTER_AGENT, message, router_output, reasoning))
                self.events.publish(StepsUpdated([s.to_dict() for s in steps]))
                self.debug_logger.log_transition(ROUTER_AGENT, FINISH, reasoning or "")
                return FINISH, reasoning, agent_input
            agent = QA_AGENT
            reasoning = f"{len(open_tasks)} task(s) still open; verifying before finishing"
            agent_input = VERIFY_INSTRUCTION.format(
                tasks="\n".join(f"- {t.id}: {t.description}" for t in open_tasks)
            )

        definition = self.workflow.get_agent(agent)
        if definition is None or definition.id == ROUTER_AGENT:
            raise UnknownAgentError(f"Router selected unknown agent: {agent}", agent=agent)

        steps.append(Step(ROUTER_AGENT, message, router_output, reasoning))
        self.events.publish(StepsUpdated([s.to_dict() for s in steps]))
        self.events.publish(AgentChanged(definition.id, reasoning))
        self.debug_logger.log_transition(ROUTER_AGENT, definition.id, reasoning or "")
        return definition.id, reasoning, agent_input

    def _run_agent(self, agent: AgentDefinition, transcript: str, file_context: str) -> _AgentTurn:
        """Stream one agent turn, dispatching tools as their tags complete."""
        if not self.is_multi_agent:
            self.events.publish(AgentChanged(agent.id))
        system_prompt = agent.system_prompt
        self.usage.begin_turn(
            agent.id, (len(system_prompt) + len(transcript) + len(file_context)) // config.CHARS_PER_TOKEN
        )
        render = _TurnRender()
        scanner = TagScanner()
        tools_used = 0
        looped = False

        try:
            for event in self._stream(agent.id, system_prompt, transcript, file_context):
                if self.gate.is_cancelled:
                    break
                if event.kind == "usage":
                    self.usage.update_usage(event.usage, agent.id)
                    self.events.publish(StatsUpdated(self.get_stats()))
                    continue
                if event.kind == "phase":
                    self._publish_phase(_as_phase(event.phase), event.detail)
                    continue
                if not event.text:
                    continue

                render.raw += event.text
                self.usage.update_live_output(len(event.text))

                analysis = self.loop_detector.analyze(render.raw)
                if analysis.is_looping:
                    render.truncate(analysis.trim_index)
                    render.raw += INTERVENTION_NOTICE
                    self.events.publish(ContentReplaced(render.render(model_facing=False), agent.id))
                    looped = True
                    break

                self.events.publish(ContentDelta(event.text, agent.id))
                for tag in scanner.feed(event.text):
                    if self.gate.is_cancelled:
                        break
                    self._publish_phase(Phase.EXECUTING_TOOL, tag.kind)
                    result = self.dispatcher.dispatch(tag)
                    tools_used += 1
                    render.insertions.append((tag.end, result))
                    self.events.publish(ContentDelta(result.user_facing_text, agent.id))
                    self._publish_phase(Phase.STREAMING)
                self.events.publish(StatsUpdated(self.get_stats()))
        finally:
            self.usage.commit_turn()
        self.events.publish(StatsUpdated(self.get_stats()))

        visible = render.render(model_facing=False)
        self.debug_logger.log("orchestrator", "AGENT_TURN_END", {
            "agent": agent.id,
            "tools_used": tools_used,
            "looped": looped,
            "output_length": len(render.raw),
        })
        return _AgentTurn(
            visible=visible,
            model_text=render.render(model_facing=True),
            raw=render.raw,
            tools_used=tools_used,
            looped=looped,
        )

    def _stream(self, agent_id: str, system_prompt: str, transcript: str, file_context: str) -> Iterator[StreamEvent]:
        """Bridge the client's stream through a reader thread.

        Silence longer than the configured timeout counts as the end of the
        response. Leaving the iterator early asks the client to stop.
        """
        stream_cancel = threading.Event()
        if self.gate.is_cancelled:
            stream_cancel.set()
        self._stream_cancel = stream_cancel
        chunks: "queue.Queue[Any]" = queue.Queue()

        def reader():
            try:
                for item in self.llm.stream(system_prompt, transcript, file_context, cancel_event=stream_cancel):
                    chunks.put(item)
                    if stream_cancel.is_set():
                        break
            except Exception as e:
                chunks.put(_StreamFailure(e))
            finally:
                chunks.put(_STREAM_DONE)

        thread = threading.Thread(target=reader, name=f"relay-stream-{agent_id}", daemon=True)
        thread.start()

        silent_since = time.monotonic()
        try:
            while True:
                if self.gate.is_cancelled:
                    return
                try:
                    item = chunks.get(timeout=_POLL_INTERVAL)
                except queue.Empty:
                    if time.monotonic() - silent_since >= self.config.silence_timeout:
                        self.debug_logger.log("orchestrator", "STREAM_SILENCE_TIMEOUT", {
                            "agent": agent_id,
                            "timeout": self.config.silence_timeout,
                        }, "WARNING")
                        return
                    continue
                silent_since = time.monotonic()

                if item is _STREAM_DONE:
                    return
                if isinstance(item, _StreamFailure):
                    if isinstance(item.error, LLMError):
                        raise item.error
                    raise LLMError(f"Stream failed: {item.error}", agent=agent_id) from item.error
                yield item
        finally:
            stream_cancel.set()

    def _apply_task_updates(self, agent: AgentDefinition, text: str, data: Optional[Any]) -> None:
        changed = False

        creates_plan = agent.creates_plan and (agent.id != SOLO_AGENT or len(self.tasks) == 0)
        if creates_plan:
            parsed = parse_checklist(text)
            if parsed:
                self.tasks.replace_all(parsed)
                changed = True
                self.debug_logger.log("orchestrator", "PLAN_CREATED", {
                    "agent": agent.id,
                    "tasks": [t.id for t in parsed],
                })

        modified = self.dispatcher.take_modified_files()
        completed_status = TaskStatus.COMPLETED if self.config.auto_mark_tasks else TaskStatus.REVIEW_PENDING
        markers = parse_task_markers(text)
        updates: List[Tuple[str, TaskStatus]] = []
        for name, tags in markers.items():
            status = completed_status if name == "completed" else MARKER_STATUS[name]
            for tag in tags:
                updates.extend((task_id, status) for task_id in extract_ids_from_tag(tag))

        if isinstance(data, dict):
            for entry in data.get("task_updates") or []:
                if not isinstance(entry, dict) or "id" not in entry:
                    continue
                try:
                    updates.append((str(entry["id"]), TaskStatus(str(entry.get("status", "")).lower())))
                except ValueError:
                    self.debug_logger.log("orchestrator", "INVALID_TASK_UPDATE", {"entry": entry}, "WARNING")

            review_status = str(data.get("status", "")).upper()
            if review_status in _APPROVED_STATUSES or review_status in _REJECTED_STATUSES:
                outcome = TaskStatus.COMPLETED if review_status in _APPROVED_STATUSES else TaskStatus.REJECTED
                updates.extend((t.id, outcome) for t in self.tasks.with_status(TaskStatus.REVIEW_PENDING))

        for task_id, status in updates:
            task = self.tasks.apply_update(task_id, status, agent=agent.id, modified_files=modified)
            if task is None:
                continue
            changed = True
            self.debug_logger.log_task_status(task.id, status.value, {"agent": agent.id})

        if changed:
            self.events.publish(PlanUpdated(self.tasks.to_list()))

    def _next_agent(self, turn: _AgentTurn, data: Optional[Any]) -> str:
        if contains_finish_sentinel(turn.raw):
            return FINISH
        if self.is_multi_agent:
            return ROUTER_AGENT
        if isinstance(data, dict) and str(data.get("next_agent", "")).upper() == FINISH:
            return FINISH
        if turn.tools_used == 0 or turn.looped:
            # Nothing left to react to; wait for the user
            return FINISH
        return SOLO_AGENT

    # ---- observers ----

    def _publish_phase(self, phase: Phase, detail: Optional[str] = None) -> None:
        self.events.publish(PhaseChanged(phase, detail))

    def _publish_proposal(self, proposal: Proposal) -> None:
        self.events.publish(ProposalRequested(proposal.to_dict()))

    def _publish_terminal_output(self, kind: str, data: str, pid: Optional[int]) -> None:
        self.events.publish(TerminalOutput(kind=kind, data=data, pid=pid))


def _as_messages(messages: Optional[HistoryInput]) -> List[ChatMessage]:
    return [m if isinstance(m, ChatMessage) else ChatMessage.from_dict(m) for m in messages or []]


def _as_phase(value: Optional[str]) -> Phase:
    try:
        return Phase(value)
    except ValueError:
        return Phase.STREAMING
