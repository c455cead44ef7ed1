"""
OpenAI-compatible backend.

Talks to api.openai.com or any other service exposing
/v1/chat/completions (llama.cpp server, vLLM, LocalAI, Ollama, ...).
"""

from __future__ import annotations

import logging
import time

import httpx

from chatline.backends.base import BaseBackend, BackendResponse

logger = logging.getLogger(__name__)

# Failures forward_stream() logs before letting them propagate.
STREAM_ERRORS = (httpx.HTTPError, httpx.InvalidURL)


class OpenAICompatibleBackend(BaseBackend):
    """Backend for endpoints speaking the OpenAI chat completions API."""

    def __init__(
        self,
        name: str,
        url: str,
        timeout: int = 120,
        api_key: str = "",
    ):
        super().__init__(name, url, timeout)
        self.api_key = api_key

    @property
    def completions_url(self) -> str:
        return f"{self.url}/v1/chat/completions"

    def _headers(self) -> dict:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def _failure(self, started: float, error: str, status_code: int = 0) -> BackendResponse:
        elapsed_ms = (time.monotonic() - started) * 1000
        logger.warning("Completion request to '%s' failed after %.0fms: %s",
                       self.name, elapsed_ms, error)
        return BackendResponse(
            ok=False,
            status_code=status_code,
            backend_name=self.name,
            latency_ms=elapsed_ms,
            error=error,
        )

    async def forward(self, body: dict) -> BackendResponse:
        """One-shot request. Failures come back as ok=False, never raised."""
        started = time.monotonic()
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                resp = await client.post(self.completions_url, json=body, headers=self._headers())
                if resp.status_code >= 400:
                    return self._failure(
                        started, f"HTTP {resp.status_code}: {resp.text[:200]}", resp.status_code
                    )
                data = resp.json()
        except httpx.TimeoutException:
            return self._failure(started, f"Timeout after {self.timeout}s")
        except Exception as e:
            return self._failure(started, f"{type(e).__name__}: {e}")

        return BackendResponse(
            ok=True,
            status_code=resp.status_code,
            data=data,
            backend_name=self.name,
            latency_ms=(time.monotonic() - started) * 1000,
        )

    async def forward_stream(self, body: dict):
        """Streaming request. Yields non-empty SSE lines as they arrive."""
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                async with client.stream(
                    "POST", self.completions_url, json=body, headers=self._headers()
                ) as resp:
                    resp.raise_for_status()
                    async for line in resp.aiter_lines():
                        if line:
                            yield line
        except STREAM_ERRORS as e:
            logger.warning("Stream from '%s' failed: %s: %s", self.name, type(e).__name__, e)
            raise
