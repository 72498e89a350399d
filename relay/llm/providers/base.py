"""Base interface for LLM clients consumed by the orchestrator."""

import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Iterator, Optional


class ErrorClass(Enum):
    """Standardized error categories across all providers."""
    TIMEOUT = "timeout"
    NETWORK_ERROR = "network_error"
    RATE_LIMIT = "rate_limit"
    AUTH_ERROR = "auth_error"
    MODEL_NOT_FOUND = "model_not_found"
    INVALID_REQUEST = "invalid_request"
    CONTEXT_LENGTH_EXCEEDED = "context_length_exceeded"
    SERVER_ERROR = "server_error"
    CANCELLED = "cancelled"
    UNKNOWN = "unknown"


@dataclass
class ProviderError:
    """Standardized error representation."""
    error_class: ErrorClass
    message: str
    retryable: bool
    original_error: Optional[Exception] = None


@dataclass(frozen=True)
class Usage:
    """Authoritative token counts reported by the provider for one call."""
    input_tokens: int
    output_tokens: int

    @property
    def total(self) -> int:
        return self.input_tokens + self.output_tokens


@dataclass(frozen=True)
class StreamEvent:
    """One item of a streamed response.

    kind is "text" (text holds a chunk), "usage" (usage holds final counts)
    or "phase" (phase/detail describe provider progress, e.g. WAITING_FOR_API).
    """
    kind: str
    text: str = ""
    usage: Optional[Usage] = None
    phase: Optional[str] = None
    detail: Optional[str] = None

    @classmethod
    def chunk(cls, text: str) -> "StreamEvent":
        return cls(kind="text", text=text)

    @classmethod
    def usage_report(cls, input_tokens: int, output_tokens: int) -> "StreamEvent":
        return cls(kind="usage", usage=Usage(input_tokens, output_tokens))

    @classmethod
    def phase_change(cls, phase: str, detail: Optional[str] = None) -> "StreamEvent":
        return cls(kind="phase", phase=phase, detail=detail)


@dataclass
class LLMResponse:
    """Result of a non-streaming completion."""
    text: str
    usage: Optional[Usage] = None


class LLMClient(ABC):
    """Abstract base class for LLM clients.

    The orchestrator only depends on this interface; transports (Ollama,
    hosted APIs, test fakes) live behind it.
    """

    def __init__(self):
        self.name = "base"

    @abstractmethod
    def complete(
        self,
        system_prompt: str,
        message: str,
        context: str = "",
        cancel_event: Optional[threading.Event] = None,
    ) -> LLMResponse:
        """Make a single non-streaming completion request.

        Raises:
            LLMError: If the request fails
        """

    @abstractmethod
    def stream(
        self,
        system_prompt: str,
        message: str,
        context: str = "",
        cancel_event: Optional[threading.Event] = None,
    ) -> Iterator[StreamEvent]:
        """Stream a completion as StreamEvent items.

        The iterator stops early once cancel_event is set.

        Raises:
            LLMError: If the request fails
        """

    def classify_error(self, error: Exception) -> ProviderError:
        """Classify an error into a standard ErrorClass."""
        return ProviderError(ErrorClass.UNKNOWN, str(error), retryable=False, original_error=error)

    def __str__(self) -> str:
        return f"{self.__class__.__name__}"

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(name='{self.name}')"
