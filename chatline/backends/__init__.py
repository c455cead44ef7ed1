"""
HTTP backends for the completion service.
Anything that speaks the OpenAI chat completions format can sit behind BaseBackend.
"""
from chatline.backends.base import BaseBackend, BackendResponse
from chatline.backends.openai_compat import OpenAICompatibleBackend

__all__ = [
    "BaseBackend",
    "BackendResponse",
    "OpenAICompatibleBackend",
]
