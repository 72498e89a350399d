#!/usr/bin/env python3
"""End-to-end orchestration runs with a scripted model and a temporary workspace."""

import threading

import pytest

from relay.execution.events import (
    AgentChanged,
    ContentDelta,
    ContentReplaced,
    PhaseChanged,
    PlanUpdated,
    ProposalRequested,
    WorkflowPaused,
    WorkflowResumed,
)
from relay.execution.events import Phase
from relay.execution.loop_detector import INTERVENTION_NOTICE
from relay.execution.orchestrator import STOPPED_NOTICE, Orchestrator, OrchestratorConfig
from relay.execution.workflow import FINISH, SOLO_PROMPT
from relay.models.messages import ChatMessage
from relay.models.task import Task, TaskStatus

from fakes import BlockingLLM, ScriptedLLM, collect


PLAN = (
    "Plan:\n"
    "- [ ] **Task 1:** Create hello.txt with a greeting. *Verify by:* the file exists\n"
)


def make_orchestrator(tmp_path, llm, mode="solo", **overrides):
    settings = dict(mode=mode, auto_apply=True, auto_mark_tasks=False, max_iterations=10, silence_timeout=5)
    settings.update(overrides)
    return Orchestrator(llm, orchestrator_config=OrchestratorConfig(**settings), project_root=tmp_path)


class TestSoloMode:
    def test_finish_sentinel_ends_turn(self, tmp_path):
        llm = ScriptedLLM(turns=["Nothing to change, all good. [FINISH]"])
        orch = make_orchestrator(tmp_path, llm)
        deltas = collect(orch.events, ContentDelta)
        agents = collect(orch.events, AgentChanged)

        history = [
            ChatMessage(role="user", content="first question"),
            {"role": "assistant", "content": "first answer", "agent_name": "Solo"},
        ]
        response = orch.handle_message("is it done?", history=history)

        assert response.content == "Nothing to change, all good. [FINISH]"
        assert response.next_agent == FINISH
        assert [s.agent for s in response.steps] == ["Solo"]
        assert "".join(d.text for d in deltas) == response.content
        assert agents == [AgentChanged("Solo")]
        assert llm.stream_calls[0]["system_prompt"] == SOLO_PROMPT
        assert llm.stream_calls[0]["message"] == (
            "[User]: first question\n\n[Solo]: first answer\n\n[User]: is it done?\n\n"
        )
        assert response.stats["agent_stats"]["Solo"]["input"] == 120
        assert response.stats["total_output"] == 30

    def test_plan_without_tools_waits_for_user(self, tmp_path):
        llm = ScriptedLLM(turns=[PLAN + "Shall I proceed?"])
        orch = make_orchestrator(tmp_path, llm)
        plans = collect(orch.events, PlanUpdated)

        response = orch.handle_message("add a greeting file")

        assert response.next_agent == FINISH
        assert len(llm.stream_calls) == 1
        assert [t["id"] for t in response.tasks] == ["Task 1"]
        assert response.tasks[0]["status"] == "pending"
        assert plans[-1].tasks == response.tasks

    def test_tool_results_feed_the_next_turn(self, tmp_path):
        llm = ScriptedLLM(turns=[
            'Writing it.\n<write_file path="hello.txt">\nhello\n</write_file>\n[COMPLETED: Task 1]',
            "Verified the file. [FINISH]",
        ])
        orch = make_orchestrator(tmp_path, llm)
        orch.tasks.add(Task("Task 1", "Create hello.txt"))

        response = orch.handle_message("go ahead")

        assert (tmp_path / "hello.txt").read_text() == "hello\n"
        assert [s.agent for s in response.steps] == ["Solo", "Solo"]
        assert "Created `hello.txt`" in response.steps[0].output
        assert "[System] Successfully wrote to hello.txt" not in response.steps[0].output

        second = llm.stream_calls[1]
        assert "</write_file>\n[System] Successfully wrote to hello.txt\n" in second["message"]
        assert "### RECENTLY MODIFIED FILES" in second["context"]

        task = response.tasks[0]
        assert task["status"] == "review_pending"
        assert task["assigned_agent"] == "Solo"
        assert task["last_modified_files"] == ["hello.txt"]

    @pytest.mark.parametrize("mode", ["solo", "analysis"])
    def test_completed_marker_awaits_confirmation(self, tmp_path, mode):
        llm = ScriptedLLM(turns=["Done with it.\n[COMPLETED:3]\n[FINISH]"])
        orch = make_orchestrator(tmp_path, llm, mode=mode)
        orch.tasks.add(Task("Task 3", "Document the API"))

        response = orch.handle_message("finish task 3")

        assert response.tasks[0]["status"] == "review_pending"
        assert response.next_agent == FINISH

    def test_completed_marker_with_auto_mark(self, tmp_path):
        llm = ScriptedLLM(turns=["Done with it.\n[COMPLETED:3]\n[FINISH]"])
        orch = make_orchestrator(tmp_path, llm, auto_mark_tasks=True)
        orch.tasks.add(Task("Task 3", "Document the API"))

        assert orch.handle_message("finish task 3").tasks[0]["status"] == "completed"

    def test_user_confirms_and_rejects_tasks(self, tmp_path):
        llm = ScriptedLLM(turns=["On it. [FINISH]"])
        orch = make_orchestrator(tmp_path, llm)
        orch.tasks.add(Task("Task 1", "Create hello.txt", status=TaskStatus.REVIEW_PENDING))
        orch.tasks.add(Task("Task 2", "Create bye.txt", status=TaskStatus.REVIEW_PENDING))
        plans = collect(orch.events, PlanUpdated)

        assert orch.confirm_task("task-1", True)
        assert orch.confirm_task("2", False, "wrong file name")
        assert not orch.confirm_task("Task 9", True)

        assert [t["status"] for t in plans[-1].tasks] == ["completed", "rejected"]
        assert orch.tasks.get("1").assigned_agent == "User"
        assert len(plans) == 2

        orch.handle_message("try task 2 again")
        message = llm.stream_calls[0]["message"]
        assert "[System]: The user rejected Task 2 (Create bye.txt): wrong file name\n\n[User]: try task 2 again" in message

    def test_rejection_feedback_is_delivered_once(self, tmp_path):
        llm = ScriptedLLM(turns=["[FINISH]", "[FINISH]"])
        orch = make_orchestrator(tmp_path, llm)
        orch.tasks.add(Task("Task 1", "Create hello.txt", status=TaskStatus.REVIEW_PENDING))
        orch.confirm_task("1", False, "missing newline")

        orch.handle_message("again")
        orch.handle_message("and again")

        assert "missing newline" in llm.stream_calls[0]["message"]
        assert "missing newline" not in llm.stream_calls[1]["message"]

    def test_silence_ends_the_stream(self, tmp_path):
        llm = BlockingLLM("Looking into the build script now.")
        orch = make_orchestrator(tmp_path, llm, silence_timeout=0.5)

        response = orch.handle_message("why does the build fail?")

        assert response.content == "Looking into the build script now."
        assert "[System Error]" not in response.content
        assert [s.agent for s in response.steps] == ["Solo"]
        assert response.next_agent == FINISH

    def test_existing_plan_is_not_replaced(self, tmp_path):
        llm = ScriptedLLM(turns=["- [ ] **Task 1:** Something else entirely. *Verify by:* nothing"])
        orch = make_orchestrator(tmp_path, llm)
        orch.tasks.add(Task("Task 1", "Create hello.txt"))

        response = orch.handle_message("continue")
        assert response.tasks[0]["description"] == "Create hello.txt"

    def test_proposals_go_through_events(self, tmp_path):
        llm = ScriptedLLM(turns=['<write_file path="notes.md"># Notes</write_file>', "[FINISH]"])
        orch = make_orchestrator(tmp_path, llm, auto_apply=False)
        requested = []

        def approve(event):
            requested.append(event.proposal)
            orch.resolve_proposal(event.proposal["id"], "accepted")

        orch.events.subscribe(approve, ProposalRequested)
        orch.handle_message("write notes")

        assert requested[0]["path"] == "notes.md"
        assert requested[0]["kind"] == "new"
        assert (tmp_path / "notes.md").read_text() == "# Notes"

    def test_analysis_mode_blocks_writes(self, tmp_path):
        llm = ScriptedLLM(turns=['<write_file path="x.txt">data</write_file>', "Read-only it is. [FINISH]"])
        orch = make_orchestrator(tmp_path, llm, mode="analysis")

        response = orch.handle_message("fix it")

        assert not (tmp_path / "x.txt").exists()
        assert "write_file: not permitted in analysis mode" in llm.stream_calls[1]["message"]
        assert response.content == "Read-only it is. [FINISH]"

    def test_iteration_cap(self, tmp_path):
        turn = '<search query="needle" />'
        llm = ScriptedLLM(turns=[turn, turn])
        orch = make_orchestrator(tmp_path, llm, max_iterations=2)

        response = orch.handle_message("keep searching")

        assert len(response.steps) == 2
        assert response.next_agent == "Solo"
        assert response.content.endswith("[System] Reached the maximum of 2 iterations. Stopping the workflow.")

    def test_stream_failure_is_reported(self, tmp_path):
        llm = ScriptedLLM(turns=[RuntimeError("socket closed")])
        orch = make_orchestrator(tmp_path, llm)

        response = orch.handle_message("hello")

        assert response.content == "\n\n[System Error] Stream failed: socket closed"
        assert response.steps == []
        assert response.next_agent == "Solo"

    def test_loop_is_truncated(self, tmp_path):
        intro = "I will now update the configuration loader so it reads the new settings file correctly.\n"
        looping = intro + "\nWait. checking\nReady. applying\nWait, one more\nActually, no\nFinal check done\n"
        llm = ScriptedLLM(turns=[looping])
        orch = make_orchestrator(tmp_path, llm)
        replaced = collect(orch.events, ContentReplaced)

        response = orch.handle_message("update the loader")

        assert response.content.endswith(INTERVENTION_NOTICE)
        assert "Final check done" not in response.content
        assert replaced[-1].text == response.content
        assert response.next_agent == FINISH


class TestMultiAgent:
    def test_plan_code_review_finish(self, tmp_path):
        llm = ScriptedLLM(
            router=[
                '{"next_agent": "Planner", "reasoning": "needs a plan"}',
                '```json\n{"next_agent": "Coder", "reasoning": "task 1 pending"}\n```',
                '{"next_agent": "FINISH", "reasoning": "all done"}',
            ],
            turns=[
                PLAN,
                '<write_file path="hello.txt">\nhi\n</write_file>\n[COMPLETED: Task 1]',
                '```json\n{"status": "APPROVED", "comments": []}\n```',
            ],
        )
        orch = make_orchestrator(tmp_path, llm, mode="multi")
        agents = collect(orch.events, AgentChanged)
        plans = collect(orch.events, PlanUpdated)

        response = orch.handle_message("add a greeting file")

        assert [s.agent for s in response.steps] == [
            "Router", "Planner", "Router", "Coder", "Router", "Reviewer", "Router",
        ]
        assert [a.agent for a in agents] == ["Planner", "Coder", "Reviewer"]
        assert response.next_agent == FINISH
        assert (tmp_path / "hello.txt").read_text() == "hi\n"

        # Review is forced without asking the router
        assert len(llm.complete_calls) == 3
        assert response.steps[4].output == "Forced review of pending tasks"

        statuses = [p.tasks[0]["status"] for p in plans]
        assert statuses == ["pending", "review_pending", "completed"]
        assert response.tasks[0]["last_modified_files"] == ["hello.txt"]
        assert response.stats["agent_stats"]["Router"]["input"] == 150

        reviewer_call = llm.stream_calls[2]
        assert "[Coder]:" in reviewer_call["message"]
        assert "[System] Successfully wrote to hello.txt" in reviewer_call["message"]
        assert "- [ ] Task 1: Create hello.txt with a greeting. (review_pending)" in reviewer_call["context"]

    def test_finish_with_open_tasks_goes_to_qa(self, tmp_path):
        llm = ScriptedLLM(
            router=['{"next_agent": "finish"}', '{"next_agent": "FINISH"}'],
            turns=["Checked it. [COMPLETED: Task 1]"],
        )
        orch = make_orchestrator(tmp_path, llm, mode="multi", auto_mark_tasks=True)
        orch.tasks.add(Task("Task 1", "Create hello.txt"))

        response = orch.handle_message("are we done?")

        assert [s.agent for s in response.steps] == ["Router", "QA", "Router"]
        qa_step = response.steps[1]
        assert qa_step.input.startswith("[SYSTEM INTERRUPT]")
        assert "- Task 1: Create hello.txt" in qa_step.input
        assert "[System]: [SYSTEM INTERRUPT]" in llm.stream_calls[0]["message"]
        assert response.tasks[0]["status"] == "completed"
        assert response.next_agent == FINISH

    def test_reviewer_rejection(self, tmp_path):
        llm = ScriptedLLM(
            router=['{"next_agent": "FINISH"}'],
            turns=['{"status": "REJECTED", "suggestions": "rename the file"}'],
        )
        orch = make_orchestrator(tmp_path, llm, mode="multi")
        orch.tasks.add(Task("Task 1", "Create hello.txt", status=TaskStatus.REVIEW_PENDING))

        response = orch.handle_message("review please")

        assert [s.agent for s in response.steps] == ["Router", "Reviewer", "Router"]
        assert response.tasks[0]["status"] == "rejected"

    @pytest.mark.parametrize("reply,message", [
        ("I think the coder should go next", "Router returned no next_agent decision"),
        ('{"next_agent": "Janitor"}', "Router selected unknown agent: Janitor"),
        ('{"next_agent": "Router"}', "Router selected unknown agent: Router"),
        (RuntimeError("connection refused"), "Router request failed: connection refused"),
    ])
    def test_router_failures(self, tmp_path, reply, message):
        orch = make_orchestrator(tmp_path, ScriptedLLM(router=[reply]), mode="multi")

        response = orch.handle_message("do something")

        assert response.content.startswith(f"\n\n[System Error] {message}")
        assert response.next_agent == "Router"


class TestSessionControl:
    def test_stop_while_streaming(self, tmp_path):
        llm = BlockingLLM("Working on it")
        orch = make_orchestrator(tmp_path, llm)
        first_delta = threading.Event()
        orch.events.subscribe(lambda e: first_delta.set(), ContentDelta)

        result = {}
        worker = threading.Thread(target=lambda: result.update(response=orch.handle_message("long task")))
        worker.start()
        assert first_delta.wait(5)
        orch.stop()
        worker.join(5)

        response = result["response"]
        assert response.content == "Working on it" + STOPPED_NOTICE
        assert [s.agent for s in response.steps] == ["Solo"]
        assert response.next_agent == "Solo"

    def test_write_after_stop_is_not_left_waiting(self, tmp_path):
        orch = make_orchestrator(tmp_path, ScriptedLLM(), auto_apply=False)
        requested = collect(orch.events, ProposalRequested)
        orch.stop()

        result = {}
        worker = threading.Thread(target=lambda: result.update(res=orch.dispatcher.write_file("late.txt", "x")))
        worker.start()
        worker.join(5)

        assert not worker.is_alive()
        assert requested == []
        assert not (tmp_path / "late.txt").exists()
        assert orch.proposals.pending_ids() == []

    def test_pause_and_resume(self, tmp_path):
        llm = ScriptedLLM(turns=["[FINISH]"])
        orch = make_orchestrator(tmp_path, llm)
        seen = []

        def on_event(event):
            if isinstance(event, PhaseChanged) and event.phase == Phase.PREPARING_CONTEXT and not seen:
                orch.pause()
            elif isinstance(event, WorkflowPaused):
                seen.append(event)
                orch.resume()
            elif isinstance(event, WorkflowResumed):
                seen.append(event)

        orch.events.subscribe(on_event)
        response = orch.handle_message("hi")

        assert isinstance(seen[0], WorkflowPaused)
        assert seen[0].agent == "Solo"
        assert seen[0].system_prompt == SOLO_PROMPT
        assert seen[0].transcript == "[User]: hi\n\n"
        assert isinstance(seen[1], WorkflowResumed)
        assert response.next_agent == FINISH

    def test_reset_clears_session(self, tmp_path):
        llm = ScriptedLLM(turns=[PLAN, "[FINISH]"])
        orch = make_orchestrator(tmp_path, llm)
        orch.handle_message("plan it")
        assert len(orch.tasks) == 1

        plans = collect(orch.events, PlanUpdated)
        orch.reset()

        assert len(orch.tasks) == 0
        assert plans == [PlanUpdated([])]
        assert orch.get_stats()["total_input"] == 0

        # A stopped session accepts new messages
        assert orch.handle_message("again").next_agent == FINISH

    def test_settings_propagate_to_dispatcher(self, tmp_path):
        orch = make_orchestrator(tmp_path, ScriptedLLM())
        orch.mode = "analysis"
        assert orch.dispatcher.read_only
        orch.mode = "multi"
        assert not orch.dispatcher.read_only
        orch.auto_apply = False
        assert orch.dispatcher.auto_apply is False

        with pytest.raises(ValueError):
            orch.mode = "swarm"
        with pytest.raises(ValueError):
            make_orchestrator(tmp_path, ScriptedLLM(), mode="swarm")

    def test_compress_history_accepts_dicts(self, tmp_path):
        orch = make_orchestrator(tmp_path, ScriptedLLM())
        history = [{"role": "user", "content": "hi"}]
        compressed = orch.compress_history(history)
        assert [m.content for m in compressed] == ["hi"]
