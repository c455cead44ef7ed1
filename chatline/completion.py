"""
Completion client: the two calls a turn makes to the remote service.

  complete()  one-shot request, returns the first choice's text.
                Used for title suggestions.
  stream()    streaming request, yields content fragments in arrival order.

Stream lines look like `data: {"choices": [{"delta": {"content": "..."}}]}`.
Lines that do not decode (keep-alives, `data: [DONE]`, garbage) are dropped;
only the end of the response body ends the stream.

Every transport failure surfaces as CompletionError so a failed turn can be
abandoned without taking the process down.
"""

from __future__ import annotations

import json
import logging
from typing import AsyncIterator

import httpx

from chatline.backends.base import BaseBackend
from chatline.errors import CompletionError
from chatline.storage.models import Message

logger = logging.getLogger(__name__)

SSE_PREFIX = "data: "


def decode_stream_line(line: str) -> str | None:
    """
    Content fragment carried by one SSE line, or None if the line
    does not hold a decodable fragment.
    """
    if line.startswith(SSE_PREFIX):
        line = line[len(SSE_PREFIX):]
    try:
        chunk = json.loads(line)
        content = chunk["choices"][0]["delta"]["content"]
    except (json.JSONDecodeError, KeyError, IndexError, TypeError):
        return None
    return content if isinstance(content, str) else None


class CompletionClient:
    """Builds request bodies for one model and maps backend failures."""

    def __init__(self, backend: BaseBackend, model: str):
        self.backend = backend
        self.model = model

    def _body(self, messages: list[Message], stream: bool) -> dict:
        return {
            "model": self.model,
            "messages": [m.to_openai_format() for m in messages],
            "stream": stream,
        }

    async def complete(self, messages: list[Message]) -> str:
        """Non-streaming completion. Returns the first choice's content."""
        resp = await self.backend.forward(self._body(messages, stream=False))
        if not resp.ok:
            raise CompletionError(resp.error or "completion request failed", resp.status_code or None)
        if not resp.data.get("choices"):
            raise CompletionError("completion response had no choices", resp.status_code)
        return resp.content or ""

    async def stream(self, messages: list[Message]) -> AsyncIterator[str]:
        """Streaming completion. Yields non-empty fragments in arrival order."""
        try:
            async for line in self.backend.forward_stream(self._body(messages, stream=True)):
                fragment = decode_stream_line(line)
                if fragment:
                    yield fragment
        except httpx.HTTPStatusError as e:
            raise CompletionError(
                f"HTTP {e.response.status_code} from {self.backend.name}",
                e.response.status_code,
            ) from e
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise CompletionError(f"{type(e).__name__}: {e}") from e
        except OSError as e:
            raise CompletionError(str(e)) from e
