"""Ollama client against a stubbed requests.post."""

import json
import threading

import pytest
import requests

from relay import config
from relay.execution.errors import LLMError
from relay.llm.client import clear_client_cache, get_client
from relay.llm.providers.base import ErrorClass
from relay.llm.providers.ollama import OllamaClient


class FakeResponse:
    def __init__(self, lines=None, body=None, status_error=None):
        self.lines = [json.dumps(line).encode() if isinstance(line, dict) else line for line in (lines or [])]
        self.body = body
        self.status_error = status_error

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def raise_for_status(self):
        if self.status_error:
            raise self.status_error

    def iter_lines(self):
        return iter(self.lines)

    def json(self):
        return self.body


class FakePost:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.calls = []

    def __call__(self, url, json=None, timeout=None, stream=False):
        self.calls.append({"url": url, "json": json, "stream": stream})
        if self.error:
            raise self.error
        return self.response


STREAM_LINES = [
    {"message": {"role": "assistant", "content": "Hel"}, "done": False},
    b"",
    b"not json",
    {"message": {"role": "assistant", "content": "lo"}, "done": False},
    {"message": {"role": "assistant", "content": ""}, "done": True, "prompt_eval_count": 42, "eval_count": 7},
]


def _client():
    return OllamaClient(base_url="http://ollama.test:11434/", model="test-model")


def test_stream_yields_phases_chunks_and_usage(monkeypatch):
    post = FakePost(FakeResponse(STREAM_LINES))
    monkeypatch.setattr(requests, "post", post)

    events = list(_client().stream("Be brief.", "[User]: hi", context="### FILE: a.py"))

    assert [e.kind for e in events] == ["phase", "phase", "text", "text", "usage"]
    assert events[0].phase == "WAITING_FOR_API"
    assert events[1].phase == "STREAMING"
    assert "".join(e.text for e in events if e.kind == "text") == "Hello"
    assert (events[-1].usage.input_tokens, events[-1].usage.output_tokens) == (42, 7)

    call = post.calls[0]
    assert call["url"] == "http://ollama.test:11434/api/chat"
    assert call["stream"] is True
    assert call["json"]["model"] == "test-model"
    assert call["json"]["messages"] == [
        {"role": "system", "content": "Be brief."},
        {"role": "user", "content": "### FILE: a.py\n\n[User]: hi"},
    ]


def test_stream_stops_when_cancelled(monkeypatch):
    monkeypatch.setattr(requests, "post", FakePost(FakeResponse(STREAM_LINES)))
    cancel = threading.Event()
    cancel.set()

    events = list(_client().stream("", "hi", cancel_event=cancel))
    assert [e.kind for e in events] == ["phase"]


def test_stream_server_error_line(monkeypatch):
    monkeypatch.setattr(requests, "post", FakePost(FakeResponse([{"error": "model crashed"}])))
    with pytest.raises(LLMError) as excinfo:
        list(_client().stream("", "hi"))
    assert excinfo.value.error_class == ErrorClass.SERVER_ERROR
    assert "model crashed" in str(excinfo.value)


def test_stream_connection_failure_is_classified(monkeypatch):
    monkeypatch.setattr(requests, "post", FakePost(error=requests.exceptions.ConnectionError("refused")))
    with pytest.raises(LLMError) as excinfo:
        list(_client().stream("", "hi"))
    assert excinfo.value.error_class == ErrorClass.NETWORK_ERROR


def test_complete_returns_text_and_usage(monkeypatch):
    body = {"message": {"role": "assistant", "content": '{"next_agent": "Coder"}'},
            "done": True, "prompt_eval_count": 10, "eval_count": 3}
    post = FakePost(FakeResponse(body=body))
    monkeypatch.setattr(requests, "post", post)

    response = _client().complete("route", "[User]: add login")

    assert response.text == '{"next_agent": "Coder"}'
    assert response.usage.total == 13
    assert post.calls[0]["json"]["stream"] is False
    assert post.calls[0]["json"]["messages"][1]["content"] == "[User]: add login"


def test_complete_http_error(monkeypatch):
    error = requests.exceptions.HTTPError("404 Client Error: Not Found for url")
    monkeypatch.setattr(requests, "post", FakePost(FakeResponse(body={}, status_error=error)))
    with pytest.raises(LLMError) as excinfo:
        _client().complete("", "hi")
    assert excinfo.value.error_class == ErrorClass.MODEL_NOT_FOUND


@pytest.mark.parametrize("error,expected,retryable", [
    (requests.exceptions.ReadTimeout("read timed out"), ErrorClass.TIMEOUT, True),
    (RuntimeError("429 Too Many Requests"), ErrorClass.RATE_LIMIT, True),
    (RuntimeError("401 Unauthorized"), ErrorClass.AUTH_ERROR, False),
    (RuntimeError("prompt is too long"), ErrorClass.CONTEXT_LENGTH_EXCEEDED, False),
    (RuntimeError("400 Bad Request"), ErrorClass.INVALID_REQUEST, False),
    (RuntimeError("502 Bad Gateway"), ErrorClass.SERVER_ERROR, True),
    (RuntimeError("something odd"), ErrorClass.UNKNOWN, False),
])
def test_classify_error(error, expected, retryable):
    classified = _client().classify_error(error)
    assert classified.error_class == expected
    assert classified.retryable is retryable


def test_model_follows_config_unless_pinned(monkeypatch):
    monkeypatch.setattr(config, "OLLAMA_MODEL", "llama3.1:8b")
    assert OllamaClient().model == "llama3.1:8b"
    assert _client().model == "test-model"


def test_get_client_caches_per_settings():
    first = get_client("ollama", model="a")
    assert get_client("Ollama ", model="a") is first
    assert get_client("ollama", model="b") is not first
    assert get_client("ollama", model="a", force_new=True) is not first
    clear_client_cache()
    assert get_client("ollama", model="a") is not first

    with pytest.raises(ValueError):
        get_client("mystery")
