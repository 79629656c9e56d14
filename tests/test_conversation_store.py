"""Tests for conversations and transcript persistence."""

from __future__ import annotations

import asyncio
import json

import pytest

from pagepilot.chat.conversation_store import Conversation, ConversationStore
from pagepilot.chat.message_model import ChatMessage

from tests.helpers import FakeDocumentStore


def _transcript(*contents: str) -> str:
    messages = [{"role": "user" if index % 2 == 0 else "assistant", "content": text} for index, text in enumerate(contents)]
    return json.dumps({"version": 1, "messages": messages})


class TestConversation:
    def test_transcript_roundtrip_keeps_origin_and_star(self) -> None:
        conversation = Conversation(key="example.com")
        conversation.append(
            ChatMessage(role="user", content="hi", origin_url="https://example.com/a", origin_title="A", starred=True)
        )
        conversation.append(ChatMessage(role="assistant", content="hello"))

        restored = Conversation(key="example.com")
        assert restored.load_transcript(conversation.transcript()) is True

        first, second = restored.messages
        assert (first.role, first.content, first.origin_url, first.origin_title, first.starred) == (
            "user",
            "hi",
            "https://example.com/a",
            "A",
            True,
        )
        assert second.content == "hello"
        assert second.streaming is False
        assert json.loads(conversation.transcript())["version"] == 1

    @pytest.mark.parametrize("text", ["", "{broken", "[]", '{"version": 1}', '{"messages": "nope"}'])
    def test_malformed_transcript_means_no_history(self, text: str) -> None:
        conversation = Conversation(key="example.com")
        conversation.append(ChatMessage(role="user", content="keep me"))

        assert conversation.load_transcript(text) is False
        assert [message.content for message in conversation.messages] == ["keep me"]

    def test_unreadable_messages_are_skipped(self) -> None:
        conversation = Conversation(key="example.com")
        payload = json.dumps({"messages": [{"role": "tool", "content": "x"}, {"role": "user", "content": "ok"}, 5]})

        assert conversation.load_transcript(payload) is True
        assert [message.content for message in conversation.messages] == ["ok"]


class TestConversationStore:
    @pytest.mark.asyncio
    async def test_get_rehydrates_empty_conversation_once(self) -> None:
        persistence = FakeDocumentStore(documents={"example.com": _transcript("q", "a")})
        store = ConversationStore(persistence)

        first = await store.get("example.com")
        second = await store.get("example.com")

        assert first is second
        assert [message.content for message in first.messages] == ["q", "a"]
        assert persistence.load_calls == ["example.com"]

    @pytest.mark.asyncio
    async def test_overlapping_gets_wait_for_the_first_load(self) -> None:
        class _SlowStore(FakeDocumentStore):
            async def load_full_document(self, *, collection: str, id: str):
                await asyncio.sleep(0.01)
                return await super().load_full_document(collection=collection, id=id)

        persistence = _SlowStore(documents={"example.com": _transcript("old q", "old a")})
        store = ConversationStore(persistence)

        prewarm = asyncio.ensure_future(store.get("example.com"))
        await asyncio.sleep(0)
        conversation = await store.get("example.com")
        seen = [message.content for message in conversation.messages]
        conversation.append(ChatMessage(role="user", content="new q"))
        store.save(conversation)
        await store.drain()
        await prewarm

        assert seen == ["old q", "old a"]
        assert [message.content for message in conversation.messages] == ["old q", "old a", "new q"]
        persisted = json.loads(persistence.documents["example.com"])["messages"]
        assert [message["content"] for message in persisted] == ["old q", "old a", "new q"]
        assert persistence.load_calls == ["example.com"]

    @pytest.mark.asyncio
    async def test_missing_key_maps_to_unknown(self) -> None:
        store = ConversationStore(FakeDocumentStore())

        conversation = await store.get(None)

        assert conversation.key == "unknown"

    @pytest.mark.asyncio
    async def test_load_failure_yields_empty_conversation(self) -> None:
        class _Failing(FakeDocumentStore):
            async def load_full_document(self, *, collection: str, id: str):
                raise RuntimeError("store offline")

        conversation = await ConversationStore(_Failing()).get("example.com")

        assert conversation.messages == []

    @pytest.mark.asyncio
    async def test_save_persists_in_background(self) -> None:
        persistence = FakeDocumentStore()
        store = ConversationStore(persistence)
        conversation = await store.get("example.com")
        conversation.append(ChatMessage(role="user", content="hi"))

        task = store.save(conversation)
        await store.drain()

        assert task is not None and task.done()
        assert persistence.save_calls[0]["collection"] == "chats"
        assert persistence.save_calls[0]["id"] == "example.com"
        assert json.loads(persistence.documents["example.com"])["messages"][0]["content"] == "hi"

    @pytest.mark.asyncio
    async def test_save_failure_is_logged(self, caplog: pytest.LogCaptureFixture) -> None:
        store = ConversationStore(FakeDocumentStore(fail_saves=True))
        conversation = await store.get("example.com")

        store.save(conversation)
        await store.drain()

        assert "Failed to save chat for example.com" in caplog.text

    @pytest.mark.asyncio
    @pytest.mark.parametrize("key", ["newtab", "extensions"])
    async def test_excluded_keys_skip_persistence(self, key: str) -> None:
        persistence = FakeDocumentStore(documents={key: _transcript("old")})
        store = ConversationStore(persistence)

        conversation = await store.get(key)
        conversation.append(ChatMessage(role="user", content="hi"))

        assert store.save(conversation) is None
        assert conversation.messages[0].content == "hi"
        assert persistence.load_calls == []
        assert persistence.save_calls == []

    @pytest.mark.asyncio
    async def test_conversations_are_partitioned_by_key(self) -> None:
        store = ConversationStore(FakeDocumentStore())

        a = await store.get("a.com")
        b = await store.get("b.com")
        a.append(ChatMessage(role="user", content="only in a"))

        assert b.messages == []
        assert {conversation.key for conversation in store.conversations()} == {"a.com", "b.com"}
