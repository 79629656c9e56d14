"""Panel coordinator: the single object that owns the assistant's runtime state."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass
from typing import Any, Callable

from .ai.client import AIClient, ClientSettings
from .ai.orchestration.request_composer import RequestComposer
from .ai.orchestration.turn_runner import TurnRunner
from .chat.conversation_store import Conversation, ConversationStore
from .chat.message_model import ChatMessage
from .context.host import HostEnvironment, TabContentExtractor
from .context.tracker import PageContextTracker
from .core.events import BaseDomainChanged, EventBus
from .errors import to_user_message
from .services.document_store import DocumentStoreClient
from .services.pdf_text import PdfTextExtractor
from .services.retriever import Retriever
from .services.settings import Settings
from .services.tab_extraction import HttpTabExtractor

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class TurnResult:
    """Outcome of :meth:`PanelCoordinator.send`."""

    conversation_key: str
    text: str = ""
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class PanelCoordinator:
    """Wires the tracker, conversation store, composer and turn runner together.

    Collaborators not passed in are built from ``settings`` and closed by
    :meth:`aclose`.
    """

    def __init__(
        self,
        settings: Settings,
        host: HostEnvironment,
        *,
        extractor: TabContentExtractor | None = None,
        document_store: DocumentStoreClient | None = None,
        pdf_extractor: PdfTextExtractor | None = None,
        ai_client: AIClient | None = None,
        event_bus: EventBus | None = None,
    ) -> None:
        self._settings = settings
        self._owned: list[Any] = []
        self._bus = event_bus or EventBus()

        if document_store is None:
            document_store = DocumentStoreClient(
                settings.document_store_url,
                settings.document_store_api_key,
                retrieval_timeout=settings.retrieval_timeout,
                upsert_timeout=settings.upsert_timeout,
                load_timeout=settings.load_timeout,
            )
            self._owned.append(document_store)
        if extractor is None:
            extractor = HttpTabExtractor(timeout=settings.extraction_timeout)
            self._owned.append(extractor)
        if pdf_extractor is None:
            pdf_extractor = PdfTextExtractor(settings.pdf_extract_url, settings.api_key, timeout=settings.pdf_timeout)
            self._owned.append(pdf_extractor)
        if ai_client is None:
            ai_client = AIClient(ClientSettings.from_settings(settings))
            self._owned.append(ai_client)

        self.tracker = PageContextTracker(
            host,
            extractor,
            document_store=document_store,
            pdf_extractor=pdf_extractor,
            event_bus=self._bus,
            ttl_seconds=settings.context_ttl_seconds,
            stored_url_limit=settings.stored_url_limit,
            extraction_timeout=settings.extraction_timeout,
        )
        self.conversations = ConversationStore(document_store)
        self.retriever = Retriever(document_store, top_k=settings.retrieval_top_k)
        self.composer = RequestComposer(
            self.tracker,
            self.retriever,
            history_char_budget=settings.history_char_budget,
            page_text_char_limit=settings.page_text_char_limit,
        )
        self.runner = TurnRunner(
            self.composer,
            ai_client,
            temperature=settings.temperature,
            origin=settings.llm_origin,
        )
        self._locks: dict[str, asyncio.Lock] = {}
        self._background: set[asyncio.Task[Any]] = set()
        self._monitor: asyncio.Task[None] | None = None
        self._bus.subscribe(BaseDomainChanged, self._handle_base_domain_changed)

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def event_bus(self) -> EventBus:
        return self._bus

    async def current_conversation(self) -> Conversation:
        return await self.conversations.get(self.tracker.current_base_domain)

    async def send(self, prompt: str, on_delta: Callable[[str], None] | None = None) -> TurnResult:
        """Run one user turn against the conversation of the page being viewed."""

        await self.tracker.ensure_fresh()
        conversation = await self.current_conversation()
        lock = self._locks.setdefault(conversation.key, asyncio.Lock())
        async with lock:
            return await self._run_turn(conversation, prompt, on_delta)

    async def _run_turn(
        self,
        conversation: Conversation,
        prompt: str,
        on_delta: Callable[[str], None] | None,
    ) -> TurnResult:
        origin_url = self.tracker.page_context.url
        origin_title = self.tracker.current_page_title()
        conversation.append(ChatMessage(role="user", content=prompt, origin_url=origin_url, origin_title=origin_title))
        self.conversations.save(conversation)

        placeholder = conversation.append(
            ChatMessage(role="assistant", content="", streaming=True, origin_url=origin_url, origin_title=origin_title)
        )

        def _forward(fragment: str) -> None:
            placeholder.content += fragment
            if on_delta is not None:
                on_delta(fragment)

        try:
            text = await self.runner.compose_and_stream(conversation, _forward)
        except asyncio.CancelledError:
            self._discard(conversation, placeholder)
            raise
        except Exception as exc:
            self._discard(conversation, placeholder)
            message = to_user_message(exc, origin=self._settings.llm_origin)
            LOGGER.warning("Turn failed for %s: %s", conversation.key, message)
            return TurnResult(conversation_key=conversation.key, error=message)

        placeholder.content = text
        placeholder.streaming = False
        self.conversations.save(conversation)
        return TurnResult(conversation_key=conversation.key, text=text)

    async def browse_history(self, limit: int | None = None) -> list[dict[str, Any]]:
        """Pages previously stored in the document store, newest first as the store returns them."""

        return await self.retriever.browse_history(limit)

    def star_message(self, conversation: Conversation, index: int, flag: bool = True) -> ChatMessage:
        message = conversation.messages[index]
        message.starred = bool(flag)
        self.conversations.save(conversation)
        return message

    def start_monitoring(self) -> asyncio.Task[None]:
        if self._monitor is None or self._monitor.done():
            self._monitor = asyncio.get_running_loop().create_task(
                self.tracker.monitor(self._settings.poll_interval_seconds)
            )
        return self._monitor

    async def aclose(self) -> None:
        if self._monitor is not None:
            self._monitor.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._monitor
            self._monitor = None
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)
        await self.tracker.drain()
        await self.conversations.drain()
        for resource in self._owned:
            await resource.aclose()
        self._owned.clear()

    def _discard(self, conversation: Conversation, placeholder: ChatMessage) -> None:
        conversation.messages[:] = [message for message in conversation.messages if message is not placeholder]
        self.conversations.save(conversation)

    def _handle_base_domain_changed(self, event: BaseDomainChanged) -> None:
        # Rehydrate the new site's conversation ahead of the next send.
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        task = loop.create_task(self.conversations.get(event.new_domain))
        self._background.add(task)
        task.add_done_callback(self._background.discard)


__all__ = ["PanelCoordinator", "TurnResult"]
