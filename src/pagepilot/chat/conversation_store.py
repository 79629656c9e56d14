"""Per-site conversations and their transcript persistence."""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

from .message_model import ChatMessage

LOGGER = logging.getLogger(__name__)

CHAT_COLLECTION = "chats"
TRANSCRIPT_VERSION = 1
UNKNOWN_KEY = "unknown"
EXCLUDED_KEYS: frozenset[str] = frozenset({"newtab", "extensions"})


class TranscriptPersistence(Protocol):
    """Full-document persistence used to save and rehydrate transcripts."""

    async def save_full_document(self, *, collection: str, id: str, text: str) -> Any:
        ...

    async def load_full_document(self, *, collection: str, id: str) -> Any:
        ...


@dataclass(slots=True)
class Conversation:
    """Ordered messages exchanged while browsing one base domain."""

    key: str
    messages: list[ChatMessage] = field(default_factory=list)

    def append(self, message: ChatMessage) -> ChatMessage:
        self.messages.append(message)
        return message

    def last(self) -> ChatMessage | None:
        return self.messages[-1] if self.messages else None

    def is_empty(self) -> bool:
        return not self.messages

    def transcript(self) -> str:
        """Serialize the conversation as the persisted JSON transcript."""

        payload = {"version": TRANSCRIPT_VERSION, "messages": [message.to_dict() for message in self.messages]}
        return json.dumps(payload, ensure_ascii=False)

    def load_transcript(self, text: str | None) -> bool:
        """Replace the messages with those from ``text``.

        Malformed transcripts are treated as "no prior history" and leave the
        conversation untouched. Returns ``True`` when messages were loaded.
        """

        if not text:
            return False
        try:
            payload = json.loads(text)
        except ValueError:
            LOGGER.debug("Ignoring malformed transcript for %s", self.key)
            return False
        raw_messages = payload.get("messages") if isinstance(payload, dict) else None
        if not isinstance(raw_messages, list):
            return False
        loaded: list[ChatMessage] = []
        for item in raw_messages:
            if not isinstance(item, dict):
                continue
            try:
                loaded.append(ChatMessage.from_dict(item))
            except ValueError:
                LOGGER.debug("Skipping unreadable message in transcript for %s", self.key)
        self.messages = loaded
        return bool(loaded)


class ConversationStore:
    """Owns one :class:`Conversation` per base domain.

    Conversations are created lazily and rehydrated from the persistence
    collaborator the first time they are requested while still empty. Saves
    are detached tasks: callers never wait for them and failures are logged.
    """

    def __init__(self, persistence: TranscriptPersistence | None = None) -> None:
        self._persistence = persistence
        self._conversations: dict[str, Conversation] = {}
        self._loaded: set[str] = set()
        self._loading: dict[str, asyncio.Task[None]] = {}
        self._pending: set[asyncio.Task[Any]] = set()

    @staticmethod
    def normalize_key(key: str | None) -> str:
        return key or UNKNOWN_KEY

    def conversations(self) -> tuple[Conversation, ...]:
        return tuple(self._conversations.values())

    def peek(self, key: str | None) -> Conversation:
        """Return the conversation for ``key`` without touching persistence."""

        normalized = self.normalize_key(key)
        conversation = self._conversations.get(normalized)
        if conversation is None:
            conversation = Conversation(key=normalized)
            self._conversations[normalized] = conversation
        return conversation

    async def get(self, key: str | None) -> Conversation:
        """Return the conversation for ``key``, rehydrating it on first access.

        Callers that arrive while the first load is still running wait for
        that load, so nobody sees (or saves) a conversation before its
        history is back.
        """

        conversation = self.peek(key)
        normalized = conversation.key
        if normalized in self._loaded or normalized in EXCLUDED_KEYS or self._persistence is None:
            return conversation
        loading = self._loading.get(normalized)
        if loading is None:
            loading = asyncio.ensure_future(self._rehydrate(conversation))
            self._loading[normalized] = loading
        await asyncio.shield(loading)
        return conversation

    async def _rehydrate(self, conversation: Conversation) -> None:
        key = conversation.key
        try:
            if not conversation.is_empty():
                return
            try:
                response = await self._persistence.load_full_document(collection=CHAT_COLLECTION, id=key)
            except Exception as exc:
                LOGGER.warning("Failed to load chat history for %s: %s", key, exc)
                return
            doc = getattr(response, "doc", None)
            if conversation.is_empty() and isinstance(doc, str) and conversation.load_transcript(doc):
                LOGGER.debug("Rehydrated %d message(s) for %s", len(conversation.messages), key)
        finally:
            self._loaded.add(key)
            self._loading.pop(key, None)

    def save(self, conversation: Conversation) -> asyncio.Task[Any] | None:
        """Persist ``conversation`` in the background; returns the detached task."""

        if conversation.key in EXCLUDED_KEYS or self._persistence is None:
            return None
        text = conversation.transcript()
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            LOGGER.debug("No running event loop; skipping chat save for %s", conversation.key)
            return None
        task = loop.create_task(
            self._persistence.save_full_document(collection=CHAT_COLLECTION, id=conversation.key, text=text)
        )
        self._pending.add(task)
        task.add_done_callback(lambda done, key=conversation.key: self._on_saved(key, done))
        return task

    async def drain(self) -> None:
        """Wait for every outstanding save task."""

        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def _on_saved(self, key: str, task: asyncio.Task[Any]) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            LOGGER.warning("Failed to save chat for %s: %s", key, exc)


__all__ = [
    "CHAT_COLLECTION",
    "Conversation",
    "ConversationStore",
    "EXCLUDED_KEYS",
    "TranscriptPersistence",
    "UNKNOWN_KEY",
]
