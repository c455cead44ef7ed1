"""
Error taxonomy for chatline.

Lock and configuration errors end the session at startup.
Completion errors abort a single turn. Decode errors are absorbed per record.
"""

from __future__ import annotations


class ChatlineError(Exception):
    """Base class for everything chatline raises on purpose."""


class ConfigurationError(ChatlineError):
    """A required setting (usually the API key) is missing."""


class LockTimeout(ChatlineError):
    """Exclusive access to the store could not be obtained in time."""

    def __init__(self, target, timeout: float, attempts: int):
        self.target = target
        self.timeout = timeout
        self.attempts = attempts
        super().__init__(
            f"Could not lock {target} within {timeout:.2f}s ({attempts} attempts)"
        )


class StoreDecodeError(ChatlineError):
    """A stored record is not valid JSON or not the expected shape."""

    def __init__(self, title: str, reason: str):
        self.title = title
        self.reason = reason
        super().__init__(f"Malformed record {title!r}: {reason}")


class CompletionError(ChatlineError):
    """Transport or decoding failure talking to the completion service."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


class DuplicateTitleError(ChatlineError):
    """Rename target already names another conversation."""

    def __init__(self, title: str):
        self.title = title
        super().__init__(f"A conversation titled {title!r} already exists")


class ConversationNotFound(ChatlineError, KeyError):
    """No conversation is stored under the given title."""

    def __init__(self, title: str):
        self.title = title
        super().__init__(title)

    def __str__(self) -> str:
        return f"No conversation titled {self.title!r}"
