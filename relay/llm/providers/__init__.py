"""LLM client abstraction layer."""

from .base import ErrorClass, LLMClient, LLMResponse, ProviderError, StreamEvent, Usage
from .ollama import OllamaClient

__all__ = [
    "ErrorClass",
    "LLMClient",
    "LLMResponse",
    "OllamaClient",
    "ProviderError",
    "StreamEvent",
    "Usage",
]
