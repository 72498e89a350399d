#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""Main entry point for the relay CLI."""

import argparse
import difflib
import shutil
import sys
from pathlib import Path
from typing import List, Optional

from . import config
from .debug_logger import DebugLogger
from .execution.events import (
    AgentChanged,
    ContentDelta,
    ContentReplaced,
    Event,
    PlanUpdated,
    ProposalRequested,
    TerminalOutput,
    WorkflowPaused,
)
from .execution.orchestrator import Orchestrator, OrchestratorConfig
from .execution.workflow import WorkflowRegistry
from .llm.client import get_client
from .models.messages import ChatMessage


HELP_TEXT = """Commands:
  /mode <multi|solo|analysis>  switch orchestration mode
  /auto <on|off>               toggle auto-apply of proposals
  /tasks                       show the current plan
  /verify <id>                 confirm a task awaiting review
  /reject <id> <comment>       reject a task with feedback for the agents
  /stats                       show token usage
  /kill                        stop the background process
  /reset                       clear plan, working set and usage
  /exit                        quit"""


class ConsoleObserver:
    """Prints orchestrator events and asks the user to approve proposals."""

    def __init__(self, orchestrator: Orchestrator, out=None):
        self.orchestrator = orchestrator
        self.out = out or sys.stdout
        self._agent = ""

    def __call__(self, event: Event) -> None:
        if isinstance(event, AgentChanged):
            if event.agent != self._agent:
                self._agent = event.agent
                reason = f" ({event.reasoning})" if event.reasoning else ""
                self._write(f"\n\n=== {event.agent}{reason} ===\n")
        elif isinstance(event, ContentDelta):
            self._write(event.text)
        elif isinstance(event, ContentReplaced):
            self._write(f"\n[output rewritten]\n{event.text}\n")
        elif isinstance(event, PlanUpdated):
            self._write("\n" + format_plan(event.tasks) + "\n")
        elif isinstance(event, TerminalOutput):
            if event.kind == "output":
                self._write(event.data)
            else:
                self._write(f"\n[process {event.kind}{'' if event.pid is None else f' pid={event.pid}'}]\n")
        elif isinstance(event, WorkflowPaused):
            self._write(f"\n[paused before {event.agent}]\n")
        elif isinstance(event, ProposalRequested):
            self._review(event.proposal)

    def _write(self, text: str) -> None:
        self.out.write(text)
        self.out.flush()

    def _review(self, proposal: dict) -> None:
        kind = proposal.get("kind", "edit")
        if kind == "command":
            self._write(f"\n\n[approval] Run command: {proposal.get('modified', '')}\n")
        elif kind == "asset":
            self._write(f"\n\n[approval] Save asset {proposal.get('original', '')} -> {proposal.get('path', '')}\n")
        else:
            diff = difflib.unified_diff(
                proposal.get("original", "").splitlines(keepends=True),
                proposal.get("modified", "").splitlines(keepends=True),
                fromfile=f"a/{proposal.get('path', '')}",
                tofile=f"b/{proposal.get('path', '')}",
            )
            self._write(f"\n\n[approval] {kind} {proposal.get('path', '')}\n{''.join(diff)}\n")

        try:
            answer = input("Apply? [y/N] ").strip().lower()
        except EOFError:
            answer = "n"
        status = "accepted" if answer in ("y", "yes") else "rejected"
        self.orchestrator.resolve_proposal(proposal["id"], status)


def format_plan(tasks: List[dict]) -> str:
    if not tasks:
        return "(no plan)"
    lines = ["Plan:"]
    for task in tasks:
        mark = "x" if task["status"] == "completed" else " "
        lines.append(f"  [{mark}] {task['id']}: {task['description']} ({task['status']})")
    return "\n".join(lines)


def format_stats(stats: dict) -> str:
    lines = [
        f"Tokens: {stats['total_input']} in / {stats['total_output']} out "
        f"(context {stats['current_context_size']})"
    ]
    for name, agent in stats.get("agent_stats", {}).items():
        lines.append(f"  {name:<18} {agent['input']:>8} in {agent['output']:>8} out")
    return "\n".join(lines)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="relay - multi-agent coding workflow powered by Ollama"
    )
    parser.add_argument(
        "message",
        nargs="*",
        help="Request to run once (omit for interactive mode)"
    )
    parser.add_argument(
        "--solo",
        action="store_true",
        help="Use a single autonomous agent instead of the routed team"
    )
    parser.add_argument(
        "--analysis",
        action="store_true",
        help="Solo mode with read-only tools"
    )
    parser.add_argument(
        "--auto-apply",
        action="store_true",
        help="Apply file changes and run commands without asking"
    )
    parser.add_argument(
        "--auto-mark-tasks",
        action="store_true",
        help="Mark tasks completed without review"
    )
    parser.add_argument(
        "--model",
        default=config.OLLAMA_MODEL,
        help=f"Ollama model (default: {config.OLLAMA_MODEL})"
    )
    parser.add_argument(
        "--base-url",
        default=config.OLLAMA_BASE_URL,
        help=f"Ollama base URL (default: {config.OLLAMA_BASE_URL})"
    )
    parser.add_argument(
        "--workflow",
        type=Path,
        help="YAML file overriding agent prompts or adding agents"
    )
    parser.add_argument(
        "--export-workflow",
        type=Path,
        help="Write the active workflow to a YAML file and exit"
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable detailed debug logging to file"
    )
    parser.add_argument(
        "--clean",
        action="store_true",
        help="Remove the .relay directory (logs) and exit"
    )
    parser.add_argument(
        "-v",
        "--version",
        action="store_true",
        help="Show relay version information and exit",
    )
    return parser


def run_message(orchestrator: Orchestrator, message: str, history: List[ChatMessage]) -> List[ChatMessage]:
    """Run one request; returns the updated conversation history."""
    history = orchestrator.compress_history(history)
    try:
        response = orchestrator.handle_message(message, history=history)
    except KeyboardInterrupt:
        orchestrator.stop()
        print("\n[interrupted]")
        return history

    print("\n")
    print(format_stats(response.stats))
    return history + [
        ChatMessage(role="user", content=message),
        ChatMessage(role="assistant", content=response.content,
                    agent_name=response.steps[-1].agent if response.steps else None),
    ]


def repl(orchestrator: Orchestrator) -> None:
    print(HELP_TEXT)
    history: List[ChatMessage] = []
    while True:
        try:
            line = input("\nrelay> ").strip()
        except (EOFError, KeyboardInterrupt):
            print()
            break
        if not line:
            continue

        if line.startswith("/"):
            command, _, arg = line[1:].partition(" ")
            arg = arg.strip()
            if command in ("exit", "quit"):
                break
            elif command == "mode":
                try:
                    orchestrator.mode = arg
                    print(f"Mode: {orchestrator.mode}")
                except ValueError as e:
                    print(e)
            elif command == "auto":
                orchestrator.auto_apply = arg.lower() in ("on", "true", "1")
                print(f"Auto-apply: {orchestrator.auto_apply}")
            elif command == "tasks":
                print(format_plan(orchestrator.tasks.to_list()))
            elif command in ("verify", "reject"):
                task_id, _, comment = arg.partition(" ")
                if not task_id:
                    print(f"Usage: /{command} <id>" + (" <comment>" if command == "reject" else ""))
                elif orchestrator.confirm_task(task_id, command == "verify", comment.strip() or None):
                    print(format_plan(orchestrator.tasks.to_list()))
                else:
                    print(f"No task matches {task_id}")
            elif command == "stats":
                print(format_stats(orchestrator.get_stats()))
            elif command == "kill":
                print("Stopped." if orchestrator.kill_active_process() else "No background process.")
            elif command == "reset":
                orchestrator.reset()
                history = []
                print("Session reset.")
            else:
                print(HELP_TEXT)
            continue

        history = run_message(orchestrator, line, history)


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the relay CLI."""
    args = build_parser().parse_args(argv)

    if args.clean:
        if config.RELAY_DIR.exists():
            shutil.rmtree(config.RELAY_DIR)
            print(f"Removed {config.RELAY_DIR}")
        return 0

    mode = "analysis" if args.analysis else ("solo" if args.solo else config.ORCHESTRATION_MODE)
    config.set_orchestration_mode(mode)

    if args.version:
        from relay.versioning import build_version_output

        print(build_version_output(args.model, config.get_orchestration_mode()))
        return 0

    debug_logger = DebugLogger.initialize(enabled=args.debug)
    if args.debug:
        print(f"Debug logging enabled: {debug_logger.log_file_path}")

    config.set_model(args.model)
    config.OLLAMA_BASE_URL = args.base_url

    try:
        workflow = WorkflowRegistry.from_yaml(args.workflow) if args.workflow else WorkflowRegistry()
    except (OSError, ValueError) as e:
        print(f"Could not load workflow: {e}", file=sys.stderr)
        return 2

    if args.export_workflow:
        workflow.save_yaml(args.export_workflow)
        print(f"Workflow written to {args.export_workflow}")
        return 0

    debug_logger.log("main", "CONFIGURATION", {
        "model": args.model,
        "base_url": args.base_url,
        "mode": config.get_orchestration_mode(),
        "auto_apply": args.auto_apply,
        "workflow": workflow.name,
    })

    orchestrator = Orchestrator(
        get_client(base_url=args.base_url, model=args.model),
        workflow=workflow,
        orchestrator_config=OrchestratorConfig(
            mode=config.get_orchestration_mode(),
            auto_apply=args.auto_apply or config.AUTO_APPLY,
            auto_mark_tasks=args.auto_mark_tasks or config.AUTO_MARK_TASKS,
        ),
    )
    orchestrator.events.subscribe(ConsoleObserver(orchestrator))

    print("relay - Multi-Agent Coding Workflow")
    print(f"Model: {config.OLLAMA_MODEL}")
    print(f"Ollama: {config.OLLAMA_BASE_URL}")
    print(f"Repository: {config.ROOT}")
    print(f"Mode: {orchestrator.mode}")

    try:
        if args.message:
            run_message(orchestrator, " ".join(args.message), [])
        else:
            repl(orchestrator)
    finally:
        orchestrator.kill_active_process()
        debug_logger.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
