"""Ollama LLM client implementation."""

import json
import os
import threading
from typing import Any, Dict, Iterator, List, Optional

import requests

from relay import config
from relay.debug_logger import get_logger
from relay.execution.errors import LLMError
from .base import ErrorClass, LLMClient, LLMResponse, ProviderError, StreamEvent, Usage


# Debug mode
OLLAMA_DEBUG = os.getenv("OLLAMA_DEBUG", "0") == "1"

_CONNECT_TIMEOUT = 10


def _build_messages(system_prompt: str, message: str, context: str) -> List[Dict[str, Any]]:
    """Assemble the chat payload: system prompt, then file context plus transcript."""
    user_content = f"{context}\n\n{message}" if context else message
    messages = []
    if system_prompt:
        messages.append({"role": "system", "content": system_prompt})
    messages.append({"role": "user", "content": user_content})
    return messages


def _usage_from_payload(payload: Dict[str, Any]) -> Optional[Usage]:
    # Ollama reports prompt_eval_count/eval_count on the final (done) object
    if "prompt_eval_count" in payload or "eval_count" in payload:
        return Usage(
            input_tokens=int(payload.get("prompt_eval_count") or 0),
            output_tokens=int(payload.get("eval_count") or 0),
        )
    return None


def _make_request_interruptible(url, json_payload, timeout, cancel_event: Optional[threading.Event]):
    """Make a blocking HTTP request that gives up as soon as cancel_event is set."""
    result = {"response": None, "error": None}

    def do_request():
        try:
            result["response"] = requests.post(url, json=json_payload, timeout=timeout)
        except Exception as e:
            result["error"] = e

    request_thread = threading.Thread(target=do_request, daemon=True)
    request_thread.start()

    while request_thread.is_alive():
        request_thread.join(timeout=0.5)
        if cancel_event is not None and cancel_event.is_set():
            raise LLMError("Request cancelled by user", error_class=ErrorClass.CANCELLED)

    if result["error"]:
        raise result["error"]

    return result["response"]


class OllamaClient(LLMClient):
    """Streaming chat client for a local (or proxied cloud) Ollama server."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        num_ctx: Optional[int] = None,
        timeout: Optional[int] = None,
    ):
        super().__init__()
        self.name = "ollama"
        self.base_url = (base_url or config.OLLAMA_BASE_URL).rstrip("/")
        self._model = model
        self.temperature = config.OLLAMA_TEMPERATURE if temperature is None else temperature
        self.num_ctx = num_ctx or config.OLLAMA_NUM_CTX
        self.timeout = timeout or config.OLLAMA_REQUEST_TIMEOUT

    @property
    def model(self) -> str:
        # Follows config.set_model() unless pinned at construction
        return self._model or config.OLLAMA_MODEL

    def _payload(self, messages: List[Dict[str, Any]], stream: bool) -> Dict[str, Any]:
        return {
            "model": self.model,
            "messages": messages,
            "stream": stream,
            "options": {
                "temperature": self.temperature,
                "num_ctx": self.num_ctx,
            },
        }

    def complete(
        self,
        system_prompt: str,
        message: str,
        context: str = "",
        cancel_event: Optional[threading.Event] = None,
    ) -> LLMResponse:
        messages = _build_messages(system_prompt, message, context)
        debug_logger = get_logger()
        debug_logger.log_llm_request(self.model, system_prompt, message, context, streaming=False)

        url = f"{self.base_url}/api/chat"
        try:
            response = _make_request_interruptible(
                url, self._payload(messages, stream=False), (_CONNECT_TIMEOUT, self.timeout), cancel_event
            )
            response.raise_for_status()
            data = response.json()
        except LLMError:
            raise
        except (requests.exceptions.RequestException, ValueError) as e:
            raise self._to_llm_error(e) from e

        if "error" in data:
            raise LLMError(f"Ollama error: {data['error']}", error_class=ErrorClass.SERVER_ERROR)

        text = (data.get("message") or {}).get("content", "")
        usage = _usage_from_payload(data)
        debug_logger.log_llm_response(self.model, text, usage.__dict__ if usage else None)
        return LLMResponse(text=text, usage=usage)

    def stream(
        self,
        system_prompt: str,
        message: str,
        context: str = "",
        cancel_event: Optional[threading.Event] = None,
    ) -> Iterator[StreamEvent]:
        messages = _build_messages(system_prompt, message, context)
        debug_logger = get_logger()
        debug_logger.log_llm_request(self.model, system_prompt, message, context, streaming=True)

        url = f"{self.base_url}/api/chat"
        yield StreamEvent.phase_change("WAITING_FOR_API", self.model)

        accumulated = []
        usage: Optional[Usage] = None
        try:
            with requests.post(
                url,
                json=self._payload(messages, stream=True),
                timeout=(_CONNECT_TIMEOUT, self.timeout),
                stream=True,
            ) as response:
                response.raise_for_status()
                streaming_started = False

                for line in response.iter_lines():
                    if cancel_event is not None and cancel_event.is_set():
                        return

                    if not line:
                        continue

                    try:
                        chunk_data = json.loads(line)
                    except json.JSONDecodeError:
                        continue

                    if "error" in chunk_data:
                        raise LLMError(f"Ollama error: {chunk_data['error']}", error_class=ErrorClass.SERVER_ERROR)

                    content = (chunk_data.get("message") or {}).get("content", "")
                    if content:
                        if not streaming_started:
                            streaming_started = True
                            yield StreamEvent.phase_change("STREAMING")
                        accumulated.append(content)
                        yield StreamEvent.chunk(content)

                    if chunk_data.get("done", False):
                        usage = _usage_from_payload(chunk_data)
                        if usage is not None:
                            yield StreamEvent.usage_report(usage.input_tokens, usage.output_tokens)
                        break

        except requests.exceptions.RequestException as e:
            raise self._to_llm_error(e) from e

        debug_logger.log_llm_response(self.model, "".join(accumulated), usage.__dict__ if usage else None)

    def _to_llm_error(self, error: Exception) -> LLMError:
        classified = self.classify_error(error)
        if OLLAMA_DEBUG:
            print(f"[DEBUG] Ollama request failed ({classified.error_class.value}): {classified.message}")
        return LLMError(f"Ollama request failed: {classified.message}", error_class=classified.error_class)

    def classify_error(self, error: Exception) -> ProviderError:
        """Classify an error into standard ErrorClass."""
        error_str = str(error).lower()

        if isinstance(error, requests.exceptions.Timeout) or "timeout" in error_str:
            return ProviderError(ErrorClass.TIMEOUT, str(error), retryable=True, original_error=error)

        if isinstance(error, requests.exceptions.ConnectionError) or "connection" in error_str:
            return ProviderError(ErrorClass.NETWORK_ERROR, str(error), retryable=True, original_error=error)

        if "rate limit" in error_str or "too many requests" in error_str or "429" in error_str:
            return ProviderError(ErrorClass.RATE_LIMIT, str(error), retryable=True, original_error=error)

        if "401" in error_str or "unauthorized" in error_str:
            return ProviderError(ErrorClass.AUTH_ERROR, str(error), retryable=False, original_error=error)

        if "404" in error_str or "not found" in error_str:
            return ProviderError(ErrorClass.MODEL_NOT_FOUND, str(error), retryable=False, original_error=error)

        if "context length" in error_str or "too long" in error_str:
            return ProviderError(ErrorClass.CONTEXT_LENGTH_EXCEEDED, str(error), retryable=False, original_error=error)

        if "400" in error_str or "bad request" in error_str:
            return ProviderError(ErrorClass.INVALID_REQUEST, str(error), retryable=False, original_error=error)

        if any(code in error_str for code in ["500", "502", "503", "504"]) or "server error" in error_str:
            return ProviderError(ErrorClass.SERVER_ERROR, str(error), retryable=True, original_error=error)

        return ProviderError(ErrorClass.UNKNOWN, str(error), retryable=False, original_error=error)
