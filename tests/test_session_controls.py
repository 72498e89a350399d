"""Approval gate, pause gate and event bus."""

import threading
import time

import pytest

from relay.execution.events import AgentChanged, ContentDelta, EventBus, StatsUpdated
from relay.execution.pause import GateState, PauseGate
from relay.models.messages import Proposal
from relay.tools.approval import ProposalManager

from fakes import collect


def _proposal(pid="p1"):
    return Proposal(id=pid, kind="edit", path="a.py", original="a", modified="b")


class TestProposalManager:
    def test_decision_from_another_thread(self):
        published = []
        manager = ProposalManager(on_proposal=published.append)
        result = {}

        worker = threading.Thread(target=lambda: result.update(decision=manager.request_approval(_proposal())))
        worker.start()
        while not manager.pending_ids():
            time.sleep(0.01)

        assert published[0].id == "p1"
        assert manager.resolve_proposal("p1", "accepted", "b2")
        worker.join(timeout=2)

        assert result["decision"].accepted
        assert result["decision"].content == "b2"
        assert manager.pending_ids() == []

    def test_unknown_or_repeated_resolution(self):
        manager = ProposalManager(on_proposal=lambda p: manager.resolve_proposal(p.id, "rejected"))
        assert not manager.request_approval(_proposal()).accepted
        assert manager.resolve_proposal("p1", "accepted") is False
        assert manager.resolve_proposal("nope", "accepted") is False

    def test_cancel_all_rejects_waiters(self):
        manager = ProposalManager(on_proposal=lambda p: None)
        decisions = []
        workers = [
            threading.Thread(target=lambda i=i: decisions.append(manager.request_approval(_proposal(f"p{i}"))))
            for i in range(2)
        ]
        for w in workers:
            w.start()
        while len(manager.pending_ids()) < 2:
            time.sleep(0.01)

        assert manager.cancel_all() == 2
        for w in workers:
            w.join(timeout=2)
        assert [d.accepted for d in decisions] == [False, False]

    def test_request_after_cancel_is_rejected_immediately(self):
        published = []
        manager = ProposalManager(on_proposal=published.append)
        manager.cancel_event = threading.Event()
        manager.cancel_event.set()
        assert manager.cancel_all() == 0

        result = {}
        worker = threading.Thread(target=lambda: result.update(decision=manager.request_approval(_proposal())))
        worker.start()
        worker.join(timeout=2)

        assert not worker.is_alive()
        assert not result["decision"].accepted
        assert published == []
        assert manager.pending_ids() == []

    def test_no_reviewer_attached(self):
        manager = ProposalManager()
        with pytest.raises(RuntimeError):
            manager.request_approval(_proposal())
        assert manager.pending_ids() == []


class TestPauseGate:
    def test_pause_blocks_until_resume(self):
        gate = PauseGate()
        assert gate.pause()
        assert not gate.pause()

        states = []
        waiter = threading.Thread(target=lambda: states.append(gate.wait_if_paused()))
        waiter.start()
        time.sleep(0.05)
        assert states == []

        assert gate.resume()
        waiter.join(timeout=2)
        assert states == [GateState.RUNNING]
        assert not gate.resume()

    def test_cancel_releases_waiter(self):
        gate = PauseGate()
        gate.pause()
        states = []
        waiter = threading.Thread(target=lambda: states.append(gate.wait_if_paused()))
        waiter.start()
        gate.cancel()
        waiter.join(timeout=2)

        assert states == [GateState.CANCELLED]
        assert gate.cancel_event.is_set()
        assert not gate.pause()

    def test_reset_clears_cancel(self):
        gate = PauseGate()
        gate.cancel()
        gate.reset()
        assert gate.state == GateState.RUNNING
        assert not gate.cancel_event.is_set()
        assert gate.wait_if_paused() == GateState.RUNNING


class TestEventBus:
    def test_typed_subscription(self):
        bus = EventBus()
        everything = collect(bus)
        deltas = collect(bus, ContentDelta)

        bus.publish(ContentDelta("hi", agent="Coder"))
        bus.publish(AgentChanged("Coder"))

        assert len(everything) == 2
        assert deltas == [ContentDelta("hi", agent="Coder")]

    def test_unsubscribe(self):
        bus = EventBus()
        seen = []
        unsubscribe = bus.subscribe(seen.append)
        unsubscribe()
        unsubscribe()
        bus.publish(StatsUpdated({}))
        assert seen == []

    def test_failing_subscriber_does_not_block_others(self):
        bus = EventBus()

        def broken(event):
            raise ValueError("observer bug")

        bus.subscribe(broken)
        seen = collect(bus)
        bus.publish(AgentChanged("QA"))
        assert seen == [AgentChanged("QA")]
