"""
Tests for the completion client and the OpenAI-compatible backend.
Run with: pytest tests/test_completion.py
"""

import json
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from chatline.backends.base import BaseBackend, BackendResponse
from chatline.backends.openai_compat import OpenAICompatibleBackend
from chatline.completion import CompletionClient, decode_stream_line
from chatline.errors import CompletionError
from chatline.storage.models import Message


def _chunk(content):
    return "data: " + json.dumps({"choices": [{"delta": {"content": content}, "index": 0}]})


class ScriptedBackend(BaseBackend):
    """Backend that replays canned lines and responses."""

    def __init__(self, lines=(), response=None, error=None):
        super().__init__("scripted", "http://fake")
        self.lines = list(lines)
        self.response = response or BackendResponse(ok=True)
        self.error = error
        self.bodies = []

    async def forward(self, body):
        self.bodies.append(body)
        return self.response

    async def forward_stream(self, body):
        self.bodies.append(body)
        for line in self.lines:
            yield line
        if self.error is not None:
            raise self.error


async def _collect(client, messages):
    return [f async for f in client.stream(messages)]


# ---------------------------------------------------------------------------
# Line decoding
# ---------------------------------------------------------------------------

def test_decode_stream_line():
    assert decode_stream_line(_chunk("Hel")) == "Hel"
    assert decode_stream_line('{"choices": [{"delta": {"content": "raw"}}]}') == "raw"


@pytest.mark.parametrize("line", [
    "data: [DONE]",
    "data: {broken",
    ": keep-alive",
    'data: {"choices": []}',
    'data: {"choices": [{"delta": {}}]}',
    'data: {"error": "x"}',
    'data: {"choices": [{"delta": {"content": 5}}]}',
    'data: {"choices": [{"delta": {"content": ["a", "b"]}}]}',
    'data: {"choices": [{"delta": {"content": null}}]}',
])
def test_decode_stream_line_drops_undecodable(line):
    assert decode_stream_line(line) is None


# ---------------------------------------------------------------------------
# CompletionClient.stream
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_stream_preserves_order_and_skips_noise():
    backend = ScriptedBackend(lines=[
        'data: {"choices": [{"delta": {"role": "assistant"}}]}',
        _chunk("Hel"),
        "data: {garbage",
        _chunk("lo, "),
        _chunk("world"),
        "data: [DONE]",
    ])
    client = CompletionClient(backend, model="gpt-test")

    fragments = await _collect(client, [Message("user", "hi")])

    assert fragments == ["Hel", "lo, ", "world"]
    assert backend.bodies[0] == {
        "model": "gpt-test",
        "messages": [{"role": "user", "content": "hi"}],
        "stream": True,
    }


@pytest.mark.asyncio
async def test_stream_connection_error_becomes_completion_error():
    backend = ScriptedBackend(lines=[_chunk("partial")], error=httpx.ReadError("connection reset"))
    client = CompletionClient(backend, model="m")

    seen = []
    with pytest.raises(CompletionError):
        async for fragment in client.stream([Message("user", "hi")]):
            seen.append(fragment)
    assert seen == ["partial"]


@pytest.mark.asyncio
async def test_stream_http_status_error_keeps_status():
    request = httpx.Request("POST", "http://fake/v1/chat/completions")
    response = httpx.Response(401, request=request)
    backend = ScriptedBackend(error=httpx.HTTPStatusError("unauthorized", request=request, response=response))
    client = CompletionClient(backend, model="m")

    with pytest.raises(CompletionError) as exc_info:
        await _collect(client, [Message("user", "hi")])
    assert exc_info.value.status_code == 401


@pytest.mark.asyncio
async def test_stream_skips_non_string_content():
    backend = ScriptedBackend(lines=[
        _chunk("ok"),
        'data: {"choices": [{"delta": {"content": 5}}]}',
        _chunk("!"),
    ])
    client = CompletionClient(backend, model="m")

    assert await _collect(client, [Message("user", "hi")]) == ["ok", "!"]


@pytest.mark.asyncio
async def test_stream_invalid_url_becomes_completion_error():
    backend = ScriptedBackend(error=httpx.InvalidURL("Invalid URL component 'host'"))
    client = CompletionClient(backend, model="m")

    with pytest.raises(CompletionError) as exc_info:
        await _collect(client, [Message("user", "hi")])
    assert "InvalidURL" in str(exc_info.value)
    assert exc_info.value.status_code is None


# ---------------------------------------------------------------------------
# CompletionClient.complete
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_complete_returns_first_choice():
    backend = ScriptedBackend(response=BackendResponse(ok=True, data={
        "choices": [
            {"message": {"role": "assistant", "content": "\"Sorting in Python\""}},
            {"message": {"role": "assistant", "content": "ignored"}},
        ],
    }))
    client = CompletionClient(backend, model="m")

    title = await client.complete([Message("user", "suggest me a short title for sorting")])

    assert title == "\"Sorting in Python\""
    assert backend.bodies[0]["stream"] is False


@pytest.mark.asyncio
async def test_complete_failure_raises():
    backend = ScriptedBackend(response=BackendResponse(ok=False, status_code=503, error="HTTP 503: busy"))
    client = CompletionClient(backend, model="m")

    with pytest.raises(CompletionError) as exc_info:
        await client.complete([Message("user", "x")])
    assert exc_info.value.status_code == 503


@pytest.mark.asyncio
async def test_complete_without_choices_raises():
    backend = ScriptedBackend(response=BackendResponse(ok=True, data={"choices": []}))
    with pytest.raises(CompletionError):
        await CompletionClient(backend, model="m").complete([Message("user", "x")])


# ---------------------------------------------------------------------------
# OpenAICompatibleBackend
# ---------------------------------------------------------------------------

def test_backend_init():
    b = OpenAICompatibleBackend(name="openai", url="https://api.openai.com/", timeout=30, api_key="sk-x")
    assert b.url == "https://api.openai.com"
    assert b.completions_url == "https://api.openai.com/v1/chat/completions"
    assert b._headers()["Authorization"] == "Bearer sk-x"


@pytest.mark.asyncio
async def test_backend_forward_success():
    b = OpenAICompatibleBackend(name="test", url="http://fake", api_key="sk-test")

    mock_resp = MagicMock()
    mock_resp.status_code = 200
    mock_resp.json.return_value = {"choices": [{"message": {"content": "hello"}}]}

    with patch("chatline.backends.openai_compat.httpx.AsyncClient") as mock_client_cls:
        mock_client = AsyncMock()
        mock_client.post.return_value = mock_resp
        mock_client.__aenter__ = AsyncMock(return_value=mock_client)
        mock_client.__aexit__ = AsyncMock(return_value=False)
        mock_client_cls.return_value = mock_client

        result = await b.forward({"model": "gpt-3.5-turbo", "messages": []})

    assert result.ok
    assert result.content == "hello"
    _, kwargs = mock_client.post.call_args
    assert kwargs["headers"]["Authorization"] == "Bearer sk-test"


@pytest.mark.asyncio
async def test_backend_forward_http_error():
    b = OpenAICompatibleBackend(name="test", url="http://fake")

    mock_resp = MagicMock()
    mock_resp.status_code = 429
    mock_resp.text = "rate limited"

    with patch("chatline.backends.openai_compat.httpx.AsyncClient") as mock_client_cls:
        mock_client = AsyncMock()
        mock_client.post.return_value = mock_resp
        mock_client.__aenter__ = AsyncMock(return_value=mock_client)
        mock_client.__aexit__ = AsyncMock(return_value=False)
        mock_client_cls.return_value = mock_client

        result = await b.forward({"model": "m", "messages": []})

    assert not result.ok
    assert result.status_code == 429
    assert "rate limited" in result.error


@pytest.mark.asyncio
async def test_backend_forward_timeout():
    b = OpenAICompatibleBackend(name="test", url="http://fake", timeout=1)

    with patch("chatline.backends.openai_compat.httpx.AsyncClient") as mock_client_cls:
        mock_client = AsyncMock()
        mock_client.post.side_effect = httpx.TimeoutException("timed out")
        mock_client.__aenter__ = AsyncMock(return_value=mock_client)
        mock_client.__aexit__ = AsyncMock(return_value=False)
        mock_client_cls.return_value = mock_client

        result = await b.forward({"model": "m", "messages": []})

    assert not result.ok
    assert "Timeout" in result.error


@pytest.mark.asyncio
async def test_backend_forward_connect_error():
    b = OpenAICompatibleBackend(name="test", url="http://fake")

    with patch("chatline.backends.openai_compat.httpx.AsyncClient") as mock_client_cls:
        mock_client = AsyncMock()
        mock_client.post.side_effect = httpx.ConnectError("refused")
        mock_client.__aenter__ = AsyncMock(return_value=mock_client)
        mock_client.__aexit__ = AsyncMock(return_value=False)
        mock_client_cls.return_value = mock_client

        result = await b.forward({"model": "m", "messages": []})

    assert not result.ok
    assert result.error == "ConnectError: refused"
    assert result.backend_name == "test"


def _mock_transport_client(handler):
    real_client = httpx.AsyncClient

    def factory(**kwargs):
        return real_client(transport=httpx.MockTransport(handler), **kwargs)

    return patch("chatline.backends.openai_compat.httpx.AsyncClient", side_effect=factory)


@pytest.mark.asyncio
async def test_backend_stream_end_to_end():
    """SSE body is split into lines and decoded in order."""
    body = "\n\n".join([_chunk("Hel"), _chunk("lo, "), _chunk("world"), "data: [DONE]"]) + "\n"

    def handler(request):
        payload = json.loads(request.content)
        assert payload["stream"] is True
        return httpx.Response(200, content=body.encode())

    backend = OpenAICompatibleBackend(name="test", url="http://fake")
    with _mock_transport_client(handler):
        fragments = await _collect(CompletionClient(backend, model="m"), [Message("user", "hi")])

    assert "".join(fragments) == "Hello, world"


@pytest.mark.asyncio
async def test_backend_stream_non_2xx():
    def handler(request):
        return httpx.Response(500, content=b"oops")

    backend = OpenAICompatibleBackend(name="test", url="http://fake")
    with _mock_transport_client(handler):
        with pytest.raises(CompletionError) as exc_info:
            await _collect(CompletionClient(backend, model="m"), [Message("user", "hi")])
    assert exc_info.value.status_code == 500
