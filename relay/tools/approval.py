"""Human approval gate for mutating tool actions."""

import threading
import uuid
from typing import Callable, Dict, Optional

from relay.debug_logger import get_logger
from relay.models.messages import Proposal, ProposalDecision


class _Pending:
    def __init__(self, proposal: Proposal):
        self.proposal = proposal
        self.event = threading.Event()
        self.decision: Optional[ProposalDecision] = None


class ProposalManager:
    """Publishes proposals and blocks the caller until a decision arrives.

    request_approval() runs on the orchestration thread; resolve_proposal()
    is called from the host (UI, CLI prompt, IPC handler) on any thread.
    There is no timeout: cancel_all() releases every waiter with a rejection.
    Once cancel_event is set, new requests are rejected without being published.
    """

    def __init__(self, on_proposal: Optional[Callable[[Proposal], None]] = None):
        self.on_proposal = on_proposal
        self.cancel_event: Optional[threading.Event] = None
        self._lock = threading.Lock()
        self._pending: Dict[str, _Pending] = {}

    @staticmethod
    def new_id() -> str:
        return uuid.uuid4().hex

    def request_approval(self, proposal: Proposal) -> ProposalDecision:
        pending = _Pending(proposal)
        with self._lock:
            # stop() sets cancel_event before calling cancel_all()
            if self.cancel_event is not None and self.cancel_event.is_set():
                get_logger().log("approval", "PROPOSAL_CANCELLED", {"id": proposal.id, "kind": proposal.kind})
                return ProposalDecision("rejected")
            self._pending[proposal.id] = pending

        get_logger().log("approval", "PROPOSAL_REQUESTED", {
            "id": proposal.id,
            "kind": proposal.kind,
            "path": proposal.path,
        })

        if self.on_proposal is None:
            with self._lock:
                self._pending.pop(proposal.id, None)
            raise RuntimeError("No reviewer is attached to approve proposals")

        self.on_proposal(proposal)
        pending.event.wait()
        return pending.decision or ProposalDecision("rejected")

    def resolve_proposal(self, proposal_id: str, status: str, content: Optional[str] = None) -> bool:
        """Deliver a decision; returns False for unknown or already resolved ids."""
        with self._lock:
            pending = self._pending.pop(proposal_id, None)
        if pending is None:
            get_logger().warning("Attempted to resolve unknown proposal: %s", proposal_id)
            return False
        pending.decision = ProposalDecision(status=status, content=content)
        pending.event.set()
        return True

    def pending_ids(self):
        with self._lock:
            return list(self._pending.keys())

    def cancel_all(self) -> int:
        """Reject every outstanding proposal; returns how many were released."""
        with self._lock:
            pending = list(self._pending.values())
            self._pending.clear()
        for item in pending:
            item.decision = ProposalDecision("rejected")
            item.event.set()
        return len(pending)
