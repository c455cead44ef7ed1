"""
In-memory mirror of the conversation store.

Read paths (selecting a conversation to view) go here instead of the
database. The session updates it in the same step as every store write;
any difference between the two is a bug.
"""

from __future__ import annotations

from chatline.storage.models import ConversationRecord


class ConversationCache:
    """title -> ConversationRecord."""

    def __init__(self, records: list[ConversationRecord] | None = None):
        self._records: dict[str, ConversationRecord] = {}
        for record in records or []:
            self.put(record)

    def get(self, title: str) -> ConversationRecord | None:
        return self._records.get(title)

    def put(self, record: ConversationRecord) -> None:
        self._records[record.title] = record

    def remove(self, title: str) -> None:
        self._records.pop(title, None)

    def rename(self, old_title: str, record: ConversationRecord) -> None:
        """Drop old_title and store record under its (new) title."""
        self._records.pop(old_title, None)
        self._records[record.title] = record

    def titles(self) -> list[str]:
        return list(self._records)

    def __contains__(self, title: object) -> bool:
        return title in self._records

    def __len__(self) -> int:
        return len(self._records)
