"""Exceptions that end an orchestration turn."""

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from relay.llm.providers.base import ErrorClass


class OrchestrationError(Exception):
    """A fatal-to-turn failure inside the orchestration loop.

    The loop catches it, appends a [System Error] message to the visible
    output and stops; session state is preserved.
    """

    def __init__(self, message: str, agent: Optional[str] = None):
        super().__init__(message)
        self.agent = agent


class LLMError(OrchestrationError):
    """The model transport failed or returned nothing usable.

    error_class is the provider's ErrorClass when the client classified the
    failure, else None.
    """

    def __init__(
        self,
        message: str,
        agent: Optional[str] = None,
        error_class: Optional["ErrorClass"] = None,
    ):
        super().__init__(message, agent)
        self.error_class = error_class


class RouterDecisionError(OrchestrationError):
    """The router's reply held no usable next_agent decision."""


class UnknownAgentError(OrchestrationError):
    """A decision named an agent the workflow does not define."""


class CancelledError(OrchestrationError):
    """The user stopped the workflow."""
