"""
Data models for conversation storage.
These define the shape of data flowing between the session, the cache
and the store.

Stored value format, keyed externally by title:
    {"time": <epoch seconds>, "messages": [{"role": ..., "content": ...}, ...]}
"""

from __future__ import annotations

import json
import time
from dataclasses import dataclass, field

from chatline.errors import StoreDecodeError

ROLE_SYSTEM = "system"
ROLE_USER = "user"
ROLE_ASSISTANT = "assistant"
ROLES = (ROLE_SYSTEM, ROLE_USER, ROLE_ASSISTANT)


@dataclass(frozen=True)
class Message:
    """A single message in a conversation."""
    role: str
    content: str

    def to_openai_format(self) -> dict:
        return {"role": self.role, "content": self.content}

    @classmethod
    def from_dict(cls, data: dict) -> Message:
        role = data.get("role")
        content = data.get("content")
        if role not in ROLES or not isinstance(content, str):
            raise ValueError(f"bad message: {data!r}")
        return cls(role=role, content=content)


def strip_system(messages: list[Message]) -> list[Message]:
    """Drop the leading system message, which is never persisted."""
    if messages and messages[0].role == ROLE_SYSTEM:
        return list(messages[1:])
    return list(messages)


@dataclass
class ConversationRecord:
    """One stored conversation: title (the key), last update, transcript."""
    title: str
    time: int = field(default_factory=lambda: int(time.time()))
    messages: list[Message] = field(default_factory=list)

    def __post_init__(self):
        if not self.title:
            raise ValueError("conversation title must be non-empty")
        self.messages = strip_system(self.messages)

    def to_json(self) -> str:
        return json.dumps(
            {
                "time": self.time,
                "messages": [m.to_openai_format() for m in self.messages],
            },
            ensure_ascii=False,
        )

    @classmethod
    def from_json(cls, title: str, value: str) -> ConversationRecord:
        """Decode a stored value. Raises StoreDecodeError on anything malformed."""
        try:
            data = json.loads(value)
        except (json.JSONDecodeError, TypeError) as e:
            raise StoreDecodeError(title, str(e)) from e

        if not isinstance(data, dict):
            raise StoreDecodeError(title, "value is not an object")
        ts = data.get("time")
        if not isinstance(ts, int) or isinstance(ts, bool):
            raise StoreDecodeError(title, "missing integer 'time'")
        raw_messages = data.get("messages")
        if not isinstance(raw_messages, list):
            raise StoreDecodeError(title, "missing 'messages' list")

        try:
            messages = [Message.from_dict(m) for m in raw_messages]
        except (ValueError, AttributeError) as e:
            raise StoreDecodeError(title, str(e)) from e

        return cls(title=title, time=ts, messages=messages)

    def renamed(self, new_title: str) -> ConversationRecord:
        """Same messages and timestamp under a different title."""
        return ConversationRecord(title=new_title, time=self.time, messages=list(self.messages))
