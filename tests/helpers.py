"""Shared test helpers and stub classes.

Import from here instead of duplicating these classes in individual test files.
"""

from __future__ import annotations

import asyncio
from typing import Any, AsyncIterator, Callable, Iterable, Mapping, Sequence

from pagepilot.ai.client import AIStreamEvent
from pagepilot.context.host import ExtractionResult
from pagepilot.context.models import TabContent, TabInfo
from pagepilot.services.document_store import RetrievalResult, StoreResponse


class FakeClock:
    """Manually advanced wall clock."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def page(url: str, title: str = "Example", text: str = "Body text") -> TabContent:
    return TabContent(
        title=title,
        url=url,
        meta_description="A page",
        headings=("Intro",),
        text=text,
        content_length=len(text),
    )


class FakeExtractor:
    """Tab extractor returning canned results and counting calls."""

    def __init__(
        self,
        result: ExtractionResult | Callable[[TabInfo], ExtractionResult] | None = None,
        *,
        delay: float = 0.0,
    ) -> None:
        self._result = result
        self._delay = delay
        self.calls: list[TabInfo] = []

    async def extract(self, tab: TabInfo) -> ExtractionResult:
        self.calls.append(tab)
        if self._delay:
            await asyncio.sleep(self._delay)
        if callable(self._result):
            return self._result(tab)
        if self._result is None:
            return page(tab.url or "", title=tab.title or "Example")
        return self._result


class FakeDocumentStore:
    """In-memory stand-in for :class:`DocumentStoreClient`."""

    def __init__(
        self,
        *,
        retrieval: RetrievalResult | Exception | None = None,
        documents: Mapping[str, str] | None = None,
        fail_saves: bool = False,
        history: Sequence[Mapping[str, Any]] = (),
    ) -> None:
        self.retrieval = retrieval or RetrievalResult()
        self.documents: dict[str, str] = dict(documents or {})
        self.fail_saves = fail_saves
        self.embed_calls: list[dict[str, Any]] = []
        self.save_calls: list[dict[str, Any]] = []
        self.load_calls: list[str] = []
        self.retrieve_calls: list[list[dict[str, Any]]] = []
        self.history = [dict(entry) for entry in history]
        self.list_calls: list[dict[str, Any]] = []

    async def retrieve_context(
        self, messages: Sequence[Mapping[str, Any]], *, collection: str = "docs", top_k: int = 7
    ) -> RetrievalResult:
        self.retrieve_calls.append([dict(message) for message in messages])
        if isinstance(self.retrieval, Exception):
            raise self.retrieval
        return self.retrieval

    async def save_and_embed_doc(self, **kwargs: Any) -> StoreResponse:
        self.embed_calls.append(kwargs)
        await asyncio.sleep(0)
        return StoreResponse(status=200, data={"status": "ok"})

    async def save_full_document(self, *, collection: str, id: str, text: str) -> StoreResponse:
        self.save_calls.append({"collection": collection, "id": id, "text": text})
        if self.fail_saves:
            raise RuntimeError("disk full")
        self.documents[id] = text
        return StoreResponse(status=200, data={"status": "ok"})

    async def load_full_document(self, *, collection: str, id: str) -> StoreResponse:
        self.load_calls.append(id)
        return StoreResponse(status=200, doc=self.documents.get(id))

    async def list_documents(self, *, collection: str, limit: int | None = None) -> list[dict[str, Any]]:
        self.list_calls.append({"collection": collection, "limit": limit})
        return self.history[:limit] if limit is not None else list(self.history)

    async def aclose(self) -> None:
        return None


class FakeAIClient:
    """AI client stub streaming canned deltas."""

    def __init__(self, deltas: Iterable[str] = (), *, error: BaseException | None = None, fail_after: int = 0) -> None:
        self.deltas = list(deltas)
        self.error = error
        self.fail_after = fail_after
        self.calls: list[dict[str, Any]] = []
        self.closed = False

    async def stream_chat(self, messages: Iterable[Mapping[str, Any]], **kwargs: Any) -> AsyncIterator[AIStreamEvent]:
        self.calls.append({"messages": [dict(message) for message in messages], **kwargs})
        for index, delta in enumerate(self.deltas):
            if self.error is not None and index == self.fail_after:
                raise self.error
            yield AIStreamEvent(type="content.delta", content=delta)
        if self.error is not None and self.fail_after >= len(self.deltas):
            raise self.error
        yield AIStreamEvent(type="content.done", content="".join(self.deltas))

    async def aclose(self) -> None:
        self.closed = True
