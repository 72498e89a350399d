"""Cooperative pause/resume/cancel gate for the orchestration loop."""

import threading
from enum import Enum


class GateState(Enum):
    RUNNING = "running"
    PAUSED = "paused"
    CANCELLED = "cancelled"


class PauseGate:
    """Three-state gate checked by the loop at fixed checkpoints.

    pause() and resume() may be called from any thread; the loop thread
    blocks in wait_if_paused() until the state leaves PAUSED. Cancellation is
    terminal until reset().
    """

    def __init__(self):
        self._cond = threading.Condition()
        self._state = GateState.RUNNING
        self.cancel_event = threading.Event()

    @property
    def state(self) -> GateState:
        with self._cond:
            return self._state

    @property
    def is_paused(self) -> bool:
        return self.state == GateState.PAUSED

    @property
    def is_cancelled(self) -> bool:
        return self.state == GateState.CANCELLED

    def pause(self) -> bool:
        """Request a pause. Returns False when already paused or cancelled."""
        with self._cond:
            if self._state != GateState.RUNNING:
                return False
            self._state = GateState.PAUSED
            return True

    def resume(self) -> bool:
        """Release a pending pause exactly once."""
        with self._cond:
            if self._state != GateState.PAUSED:
                return False
            self._state = GateState.RUNNING
            self._cond.notify_all()
            return True

    def cancel(self) -> None:
        with self._cond:
            self._state = GateState.CANCELLED
            self.cancel_event.set()
            self._cond.notify_all()

    def reset(self) -> None:
        with self._cond:
            self._state = GateState.RUNNING
            self.cancel_event.clear()
            self._cond.notify_all()

    def wait_if_paused(self) -> GateState:
        """Block while paused; return the state that ended the wait."""
        with self._cond:
            while self._state == GateState.PAUSED:
                self._cond.wait()
            return self._state
