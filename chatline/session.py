"""
Chat session: one user turn at a time, end to end.

A turn goes

    IDLE -> STREAMING (+ title request for a new conversation)
         -> MERGING -> COMMITTED
                    \\-> ABORTED   (completion failure)

The reply stream and the title suggestion run as two independent asyncio
tasks. MERGING is the only place they meet: the reply is complete and the
title task is awaited there. A failed title falls back to a timestamped one.
A failed reply aborts the turn before anything is written.

ChatSession owns the cache, the newest-first title listing and the
in-flight flag. Only the coroutine driving a turn mutates them, and a
second submit while a turn is running is refused.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import time
from typing import Callable

from chatline.cache import ConversationCache
from chatline.completion import CompletionClient
from chatline.errors import (
    CompletionError,
    ConversationNotFound,
    DuplicateTitleError,
    StoreDecodeError,
)
from chatline.storage.models import (
    ROLE_ASSISTANT,
    ROLE_SYSTEM,
    ROLE_USER,
    ConversationRecord,
    Message,
    strip_system,
)
from chatline.storage.sqlite_store import SQLiteStore

logger = logging.getLogger(__name__)

DEFAULT_SYSTEM_PROMPT = "You are a helpful assistant."
DEFAULT_TITLE_PREFIX = "suggest me a short title for "

FragmentCallback = Callable[[str], None]


class TurnState(str, enum.Enum):
    IDLE = "idle"
    STREAMING = "streaming"
    MERGING = "merging"
    COMMITTED = "committed"
    ABORTED = "aborted"


def clean_title(suggestion: str) -> str:
    """First line of a suggested title, without whitespace or wrapping quotes."""
    lines = [line for line in suggestion.strip().splitlines() if line.strip()]
    if not lines:
        return ""
    return lines[0].strip().strip("\"'").strip()


class ChatSession:
    """Session context: store, cache, listing and the state of the current turn."""

    def __init__(
        self,
        store: SQLiteStore,
        client: CompletionClient,
        system_prompt: str = DEFAULT_SYSTEM_PROMPT,
        title_prefix: str = DEFAULT_TITLE_PREFIX,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.client = client
        self.system_prompt = system_prompt
        self.title_prefix = title_prefix
        self._clock = clock

        self.cache = ConversationCache()
        self.listing: list[str] = []
        self.current_title: str | None = None
        self.transcript: list[Message] = []

        self.state = TurnState.IDLE
        self.in_flight = False
        self._view_epoch = 0
        self._tasks: set[asyncio.Task] = set()

    # ── Loading and navigation ───────────────────────────────────────────────

    def load(self) -> list[str]:
        """Fill the cache and listing from the store, newest first."""
        records = self.store.load()
        self.cache = ConversationCache(records)
        self.listing = [r.title for r in records]
        return list(self.listing)

    @property
    def is_new(self) -> bool:
        return self.current_title is None

    def select_conversation(self, title: str) -> list[Message]:
        """Make title the active conversation and return its transcript."""
        record = self.cache.get(title)
        if record is None:
            raise ConversationNotFound(title)
        self.current_title = title
        self.transcript = list(record.messages)
        self._view_epoch += 1
        return list(self.transcript)

    def new_conversation(self) -> None:
        """The next submission starts a fresh record."""
        self.current_title = None
        self.transcript = []
        self._view_epoch += 1

    def rename_conversation(self, old_title: str, new_title: str) -> bool:
        """Move a conversation to a new title. Refused (False) while a turn is in flight."""
        if self.in_flight:
            logger.warning("Rename %r refused: a turn is in flight", old_title)
            return False
        new_title = new_title.strip()
        if not new_title:
            return False
        try:
            record = self.store.rename(old_title, new_title)
        except (ConversationNotFound, DuplicateTitleError, StoreDecodeError) as e:
            logger.warning("Rename %r -> %r refused: %s", old_title, new_title, e)
            return False

        self.cache.rename(old_title, record)
        self.listing = [new_title if t == old_title else t for t in self.listing]
        if self.current_title == old_title:
            self.current_title = new_title
        return True

    def delete_conversation(self, title: str) -> bool:
        """Delete a conversation. Refused (False) while a turn is in flight."""
        if self.in_flight:
            logger.warning("Delete %r refused: a turn is in flight", title)
            return False
        self.store.delete(title)
        self.cache.remove(title)
        if title in self.listing:
            self.listing.remove(title)
        if self.current_title == title:
            self.new_conversation()
        return True

    # ── Turns ────────────────────────────────────────────────────────────────

    def _transition(self, state: TurnState) -> None:
        logger.debug("turn: %s -> %s", self.state.value, state.value)
        self.state = state

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def _outgoing(self, content: str) -> list[Message]:
        if self.is_new:
            history = [Message(ROLE_SYSTEM, self.system_prompt)] if self.system_prompt else []
        else:
            record = self.cache.get(self.current_title)
            history = list(record.messages) if record else list(self.transcript)
        return history + [Message(ROLE_USER, content)]

    async def _stream_reply(self, messages: list[Message], on_fragment: FragmentCallback | None) -> str:
        parts: list[str] = []
        async for fragment in self.client.stream(messages):
            parts.append(fragment)
            if on_fragment is not None:
                on_fragment(fragment)
        return "".join(parts)

    def _fallback_title(self) -> str:
        return time.strftime("Chat %Y-%m-%d %H:%M:%S", time.localtime(self._clock()))

    def _unique_title(self, title: str) -> str:
        candidate, n = title, 2
        while candidate in self.cache:
            candidate = f"{title} ({n})"
            n += 1
        return candidate

    async def _resolve_title(self, title_task: asyncio.Task) -> str:
        try:
            suggestion = await title_task
        except Exception as e:
            logger.warning("Title suggestion failed, using fallback: %s", e)
            suggestion = ""
        return self._unique_title(clean_title(suggestion) or self._fallback_title())

    async def submit_turn(
        self,
        content: str,
        on_fragment: FragmentCallback | None = None,
    ) -> ConversationRecord | None:
        """
        Run one turn. Returns the committed record, or None when the
        content is blank or another turn is still running.
        Raises CompletionError if the reply could not be fetched; nothing
        is persisted in that case and the session accepts the next submit.
        """
        if not content.strip():
            return None
        if self.in_flight:
            logger.debug("Turn already in flight, submission ignored")
            return None

        self.in_flight = True
        epoch = self._view_epoch
        turn_title = self.current_title
        outgoing = self._outgoing(content)
        title_task: asyncio.Task | None = None

        try:
            if turn_title is None:
                title_task = self._spawn(
                    self.client.complete([Message(ROLE_USER, self.title_prefix + content)])
                )
            self._transition(TurnState.STREAMING)
            reply = await self._spawn(self._stream_reply(outgoing, on_fragment))

            self._transition(TurnState.MERGING)
            if title_task is not None:
                turn_title = await self._resolve_title(title_task)

            messages = strip_system(outgoing + [Message(ROLE_ASSISTANT, reply)])
            record = ConversationRecord(title=turn_title, time=int(self._clock()), messages=messages)
            self.store.set(record)
            self.cache.put(record)
            if turn_title in self.listing:
                self.listing.remove(turn_title)
            self.listing.insert(0, turn_title)

            if epoch == self._view_epoch:
                self.current_title = turn_title
                self.transcript = list(record.messages)
            self._transition(TurnState.COMMITTED)
            logger.info("Committed %r (%d messages)", turn_title, len(record.messages))
            return record
        except BaseException as e:
            self._transition(TurnState.ABORTED)
            if isinstance(e, CompletionError):
                logger.warning("Turn aborted: %s", e)
            raise
        finally:
            if title_task is not None:
                if not title_task.done():
                    title_task.cancel()
                elif not title_task.cancelled():
                    title_task.exception()  # mark retrieved
            self.in_flight = False

    async def aclose(self) -> None:
        """Cancel any outstanding request tasks."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
