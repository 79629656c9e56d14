"""Tests for the panel coordinator."""

from __future__ import annotations

import asyncio
import json
from typing import Any

import httpx
import pytest

from pagepilot.ai.client import AIStreamEvent
from pagepilot.context.host import StaticHostEnvironment
from pagepilot.coordinator import PanelCoordinator
from pagepilot.services.document_store import RetrievalResult
from pagepilot.services.settings import Settings

from tests.helpers import FakeAIClient, FakeDocumentStore, FakeExtractor


class _StubPdfExtractor:
    async def extract(self, data: bytes, *, filename: str = "file.pdf") -> str:
        return ""

    async def aclose(self) -> None:
        return None


def _coordinator(
    host: StaticHostEnvironment,
    extractor: FakeExtractor,
    document_store: FakeDocumentStore,
    ai_client: Any,
) -> PanelCoordinator:
    return PanelCoordinator(
        Settings(llm_base_url="http://llm.local:8080/v1"),
        host,
        extractor=extractor,
        document_store=document_store,
        pdf_extractor=_StubPdfExtractor(),
        ai_client=ai_client,
    )


@pytest.mark.asyncio
async def test_send_records_both_sides_of_the_turn(host, extractor, document_store) -> None:
    client = FakeAIClient(["Hel", "lo"])
    coordinator = _coordinator(host, extractor, document_store, client)
    fragments: list[str] = []

    result = await coordinator.send("What is this?", fragments.append)
    await coordinator.aclose()

    assert result.ok
    assert result.text == "Hello"
    assert result.conversation_key == "example.com"
    assert "".join(fragments) == "Hello"

    conversation = coordinator.conversations.peek("example.com")
    user, assistant = conversation.messages
    assert (user.role, user.content, user.origin_url, user.origin_title) == (
        "user",
        "What is this?",
        "https://www.example.com/articles/intro.html",
        "Intro",
    )
    assert (assistant.role, assistant.content, assistant.streaming) == ("assistant", "Hello", False)
    assert assistant.origin_url == user.origin_url

    assert client.calls[0]["messages"][-1] == {"role": "user", "content": "What is this?"}
    saved = json.loads(document_store.documents["example.com"])
    assert [message["content"] for message in saved["messages"]] == ["What is this?", "Hello"]
    assert len(document_store.embed_calls) == 1


@pytest.mark.asyncio
async def test_failed_turn_drops_placeholder_and_reports(host, extractor, document_store) -> None:
    client = FakeAIClient(["partial "], error=httpx.ConnectError("refused"), fail_after=1)
    coordinator = _coordinator(host, extractor, document_store, client)
    fragments: list[str] = []

    result = await coordinator.send("Hello?", fragments.append)
    await coordinator.aclose()

    assert not result.ok
    assert result.error == (
        "Can't connect to the local AI server at http://llm.local:8080. Please make sure it's running and reachable."
    )
    assert fragments == ["partial "]
    conversation = coordinator.conversations.peek("example.com")
    assert [(message.role, message.content) for message in conversation.messages] == [("user", "Hello?")]
    saved = json.loads(document_store.documents["example.com"])
    assert [message["content"] for message in saved["messages"]] == ["Hello?"]


@pytest.mark.asyncio
async def test_unexpected_error_text_is_surfaced(host, extractor, document_store) -> None:
    coordinator = _coordinator(host, extractor, document_store, FakeAIClient([], error=RuntimeError("bad gateway")))

    result = await coordinator.send("Hello?")
    await coordinator.aclose()

    assert result.error == "bad gateway"


@pytest.mark.asyncio
async def test_citations_resolve_against_browse_history(host, extractor) -> None:
    store = FakeDocumentStore(
        retrieval=RetrievalResult(history_overview=[{"title": "Old", "metadata": {"url": "https://old.example/a"}}])
    )
    client = FakeAIClient(["First answer"])
    coordinator = _coordinator(host, extractor, store, client)
    await coordinator.send("first")

    client.deltas = ["You read [this](ref_0)."]
    result = await coordinator.send("what did I read?")
    await coordinator.aclose()

    assert result.text == "You read [this](https://old.example/a)."
    assert store.retrieve_calls[-1][-1] == {"role": "user", "content": "what did I read?"}


@pytest.mark.asyncio
async def test_turns_on_one_conversation_are_serialized(host, extractor, document_store) -> None:
    order: list[str] = []

    class _SlowClient:
        def __init__(self) -> None:
            self.calls: list[list[dict[str, Any]]] = []

        async def stream_chat(self, messages, **kwargs):
            label = f"turn{len(self.calls) + 1}"
            self.calls.append([dict(message) for message in messages])
            order.append(f"{label}:start")
            await asyncio.sleep(0.01)
            yield AIStreamEvent(type="content.delta", content=label)
            order.append(f"{label}:end")

        async def aclose(self) -> None:
            return None

    client = _SlowClient()
    coordinator = _coordinator(host, extractor, document_store, client)

    first, second = await asyncio.gather(coordinator.send("one"), coordinator.send("two"))
    await coordinator.aclose()

    assert (first.text, second.text) == ("turn1", "turn2")
    assert order == ["turn1:start", "turn1:end", "turn2:start", "turn2:end"]
    assert {"role": "assistant", "content": "turn1"} in client.calls[1]


@pytest.mark.asyncio
async def test_conversations_follow_the_base_domain(host, extractor, document_store) -> None:
    coordinator = _coordinator(host, extractor, document_store, FakeAIClient(["ok"]))

    await coordinator.send("on example")
    host.navigate("https://docs.other.org/guide", "Guide")
    result = await coordinator.send("on other")
    await coordinator.aclose()

    assert result.conversation_key == "other.org"
    assert [message.content for message in coordinator.conversations.peek("other.org").messages] == ["on other", "ok"]
    assert [message.content for message in coordinator.conversations.peek("example.com").messages] == [
        "on example",
        "ok",
    ]


@pytest.mark.asyncio
async def test_star_message_persists_flag(host, extractor, document_store) -> None:
    coordinator = _coordinator(host, extractor, document_store, FakeAIClient(["ok"]))
    await coordinator.send("remember this")
    conversation = await coordinator.current_conversation()

    message = coordinator.star_message(conversation, 1)
    await coordinator.aclose()

    assert message.starred is True
    saved = json.loads(document_store.documents["example.com"])
    assert saved["messages"][1]["starred"] is True


@pytest.mark.asyncio
async def test_monitoring_is_started_once_and_cancelled_on_close(host, extractor, document_store) -> None:
    client = FakeAIClient()
    coordinator = _coordinator(host, extractor, document_store, client)

    task = coordinator.start_monitoring()
    assert coordinator.start_monitoring() is task
    await asyncio.sleep(0)
    await coordinator.aclose()

    assert task.done()
    assert client.closed is False


@pytest.mark.asyncio
async def test_browse_history_lists_stored_pages(host, extractor) -> None:
    store = FakeDocumentStore(
        history=[
            {"title": "Newest", "metadata": {"url": "https://a.example/new"}},
            {"title": "Older", "metadata": {"url": "https://a.example/old"}},
        ]
    )
    coordinator = _coordinator(host, extractor, store, FakeAIClient([]))

    entries = await coordinator.browse_history(1)
    await coordinator.aclose()

    assert [entry["title"] for entry in entries] == ["Newest"]
    assert store.list_calls == [{"collection": "docs", "limit": 1}]
