"""Tests for the Ollama transport, using httpx.MockTransport."""

import json
import sys
from pathlib import Path

import httpx
import pytest

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

import termai.streaming_client as streaming_client
from termai.errors import TransportError
from termai.session import Turn
from termai.stream_parser import StreamingResponseParser
from termai.streaming_client import OllamaClient

HISTORY = (Turn("system", "sys"), Turn("user", "hi"))

BODY = (
    b'{"message": {"role": "assistant", "content": "<think>hm</think>"}, "done": false}\n'
    b'{"message": {"role": "assistant", "content": "Hello"}, "done": false}\n'
    b'{"message": {"role": "assistant", "content": ""}, "done": true, "eval_count": 2}\n'
)


@pytest.fixture
def sleeps(monkeypatch):
    recorded = []
    monkeypatch.setattr(streaming_client.time, "sleep", recorded.append)
    return recorded


def make_client(handler, **kwargs) -> OllamaClient:
    kwargs.setdefault("model", "llama3")
    return OllamaClient(
        base_url="http://ollama.test/",
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


# ── list_models ──────────────────────────────────────────────────────

def test_list_models_in_server_order():
    def handler(request):
        assert request.url.path == "/api/tags"
        return httpx.Response(200, json={"models": [{"name": "qwen3:8b"}, {"name": "llama3"}]})

    with make_client(handler) as client:
        assert client.list_models() == ["qwen3:8b", "llama3"]


def test_list_models_http_error():
    with make_client(lambda request: httpx.Response(500)) as client:
        with pytest.raises(TransportError) as exc_info:
            client.list_models()
    assert exc_info.value.status_code == 500


def test_list_models_unreachable():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with make_client(handler) as client:
        with pytest.raises(TransportError, match="Could not reach"):
            client.list_models()


# ── chat_stream ──────────────────────────────────────────────────────

def test_chat_stream_payload_and_body():
    seen = {}

    def handler(request):
        seen["path"] = request.url.path
        seen["payload"] = json.loads(request.content)
        return httpx.Response(200, content=BODY)

    with make_client(handler, temperature=0.2) as client:
        data = b"".join(client.chat_stream(HISTORY))

    assert data == BODY
    assert seen["path"] == "/api/chat"
    assert seen["payload"] == {
        "model": "llama3",
        "messages": [{"role": "system", "content": "sys"}, {"role": "user", "content": "hi"}],
        "stream": True,
        "options": {"temperature": 0.2},
    }


def test_payload_without_temperature():
    client = make_client(lambda request: httpx.Response(200))
    assert "options" not in client.build_payload(HISTORY)
    client.close()


def test_chat_stream_feeds_parser():
    with make_client(lambda request: httpx.Response(200, content=BODY)) as client:
        result = StreamingResponseParser().consume(client.chat_stream(HISTORY))
    assert result.text == "<think>hm</think>Hello"
    assert result.completed
    assert result.usage == {"eval_count": 2}


def test_http_error_reports_server_detail(sleeps):
    def handler(request):
        return httpx.Response(404, json={"error": "model 'nope' not found"})

    with make_client(handler, max_retries=3) as client:
        with pytest.raises(TransportError) as exc_info:
            list(client.chat_stream(HISTORY))
    assert exc_info.value.status_code == 404
    assert "model 'nope' not found" in str(exc_info.value)
    assert sleeps == []


def test_retryable_status_is_retried(sleeps):
    calls = []

    def handler(request):
        calls.append(request)
        if len(calls) == 1:
            return httpx.Response(503)
        return httpx.Response(200, content=BODY)

    with make_client(handler, max_retries=2) as client:
        data = b"".join(client.chat_stream(HISTORY))
    assert data == BODY
    assert len(calls) == 2
    assert sleeps == [2]


def test_connection_error_gives_up_after_retries(sleeps):
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with make_client(handler, max_retries=2) as client:
        with pytest.raises(TransportError, match="Request failed"):
            list(client.chat_stream(HISTORY))
    assert sleeps == [2, 4]
