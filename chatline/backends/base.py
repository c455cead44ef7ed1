"""
Base backend abstraction.
The completion client talks to this interface, so tests and alternative
services can stand in for the real HTTP endpoint.
"""

from __future__ import annotations

import abc
import logging
from dataclasses import dataclass, field
from typing import AsyncIterator

logger = logging.getLogger(__name__)


@dataclass
class BackendResponse:
    """Standardized response from any backend."""
    ok: bool
    status_code: int = 200
    data: dict = field(default_factory=dict)
    backend_name: str = ""
    latency_ms: float = 0.0
    error: str = ""

    @property
    def content(self) -> str:
        """Extract assistant content from the first choice."""
        choices = self.data.get("choices", [])
        if choices:
            return choices[0].get("message", {}).get("content", "")
        return ""


class BaseBackend(abc.ABC):
    """
    Abstract base for completion backends.
    forward() never raises for transport failures; it reports them in the
    BackendResponse. forward_stream() raises, since a stream can fail midway.
    """

    def __init__(self, name: str, url: str, timeout: int = 120):
        self.name = name
        self.url = url.rstrip("/")
        self.timeout = timeout

    @abc.abstractmethod
    async def forward(self, body: dict) -> BackendResponse:
        """
        Send a non-streaming chat completion request.
        Body is OpenAI-compatible format.
        """
        ...

    @abc.abstractmethod
    def forward_stream(self, body: dict) -> AsyncIterator[str]:
        """
        Send a streaming chat completion request.
        Yields raw SSE lines (str), in arrival order.
        """
        ...

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} name={self.name!r} url={self.url!r}>"
