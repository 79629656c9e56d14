"""Tracks the page the user is viewing and keeps one fresh snapshot of it."""

from __future__ import annotations

import asyncio
import base64
import logging
import time
from collections import deque
from typing import TYPE_CHECKING, Any, Callable, Deque, Dict
from urllib.parse import unquote, urlsplit

from ..core.domain import parse_base_domain_from_url
from ..core.events import BaseDomainChanged, EventBus, Handler, UrlChanged
from .host import BinaryTextExtractor, HostEnvironment, TabContentExtractor
from .models import NO_TAB, ExtractionFailure, PageContent, PageContext, PdfDocument, TabContent, TabInfo

if TYPE_CHECKING:  # pragma: no cover
    from ..services.document_store import DocumentStoreClient

LOGGER = logging.getLogger(__name__)

CONTEXT_TTL_SECONDS = 60.0
STORED_URL_LIMIT = 20
EXCLUDED_DOMAINS: frozenset[str] = frozenset({"newtab", "extensions"})
PAGE_COLLECTION = "docs"
_RESTRICTED_PREFIXES: tuple[str, ...] = (
    "chrome://",
    "chrome-extension://",
    "chrome-search://",
    "chrome-untrusted://",
    "devtools://",
    "edge://",
    "about:",
    "view-source:",
)
_NOTE_TAB_GONE = "Tab changed or closed before content capture."
_NOTE_NO_TEXT = "No textual content extracted."
_NOTE_UNAVAILABLE = "Page content not available."
_TIMESTAMP_STEP = 1e-6


def is_restricted_url(url: str | None) -> bool:
    """Return ``True`` for internal browser pages that must never be sent to extraction."""

    if not url:
        return False
    return url.startswith(_RESTRICTED_PREFIXES)


def build_minimal_content(
    *,
    title: str | None,
    url: str | None,
    restricted: bool = False,
    note: str | None = None,
    pending: bool = False,
) -> PageContent:
    return PageContent(
        title=title or ("Restricted page" if restricted else "Page"),
        url=url,
        restricted=restricted,
        note=note or ("Restricted page" if restricted else None),
        pending=pending,
    )


def build_page_text(content: PageContent) -> str:
    """Render a snapshot as plain text: title heading, description, heading bullets, body."""

    blocks: list[str] = []
    if content.title:
        blocks.append(f"# {content.title}")
    if content.meta_description:
        blocks.append(content.meta_description)
    if content.headings:
        blocks.append("\n".join(f"- {heading}" for heading in content.headings))
    if content.text:
        blocks.append(content.text)
    return "\n\n".join(block for block in blocks if block)


def make_page_metadata(content: PageContent, url: str, base_domain: str | None) -> Dict[str, Any]:
    metadata: Dict[str, Any] = {
        "title": content.title or None,
        "url": url,
        "base_domain": base_domain or None,
        "namespace": "pages",
        "source": "pagepilot",
    }
    return {key: value for key, value in metadata.items() if value is not None}


def page_document_id(url: str) -> str:
    """Stable document id for ``url``: ``page:`` plus unpadded URL-safe base64."""

    encoded = base64.urlsafe_b64encode(url.encode("utf-8")).decode("ascii").rstrip("=")
    return f"page:{encoded}"


def title_from_url(url: str | None) -> str | None:
    """Return the last path segment of ``url`` without extension, percent-decoded."""

    if not url:
        return None
    try:
        path = urlsplit(url).path
    except ValueError:
        return None
    segments = [segment for segment in path.split("/") if segment]
    if not segments:
        return None
    segment = segments[-1]
    dot = segment.rfind(".")
    if dot > 0:
        segment = segment[:dot]
    return unquote(segment) or None


class PageContextTracker:
    """Owns the live :class:`PageContext` and reconciles navigation-triggered refreshes.

    Refreshes write a minimal placeholder before the extraction call so that
    overlapping callers see a recent timestamp, and concurrent callers for the
    same URL share one in-flight refresh.
    """

    def __init__(
        self,
        host: HostEnvironment,
        extractor: TabContentExtractor,
        *,
        document_store: DocumentStoreClient | None = None,
        pdf_extractor: BinaryTextExtractor | None = None,
        event_bus: EventBus | None = None,
        ttl_seconds: float = CONTEXT_TTL_SECONDS,
        stored_url_limit: int = STORED_URL_LIMIT,
        extraction_timeout: float | None = 20.0,
        clock: Callable[[], float] = time.time,
        auto_store: bool = True,
    ) -> None:
        self._host = host
        self._extractor = extractor
        self._document_store = document_store
        self._pdf_extractor = pdf_extractor
        self._bus: EventBus = event_bus or EventBus()
        self._ttl = ttl_seconds
        self._extraction_timeout = extraction_timeout
        self._clock = clock
        self._context = PageContext()
        self._page_title: str | None = None
        self._base_domain: str | None = None
        self._announced_url: str | None = None
        self._stored_urls: Deque[str] = deque(maxlen=max(1, int(stored_url_limit)))
        self._storing: set[str] = set()
        self._starred_urls: set[str] = set()
        self._inflight: dict[str, asyncio.Task[PageContext]] = {}
        self._background: set[asyncio.Task[Any]] = set()
        if auto_store:
            self._bus.subscribe(UrlChanged, self._handle_url_changed)

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def page_context(self) -> PageContext:
        return self._context

    @property
    def current_base_domain(self) -> str | None:
        return self._base_domain

    @property
    def event_bus(self) -> EventBus:
        return self._bus

    @property
    def stored_urls(self) -> tuple[str, ...]:
        return tuple(self._stored_urls)

    def current_page_title(self) -> str | None:
        if self._page_title:
            return self._page_title
        return title_from_url(self._context.url)

    def is_current_page_starred(self) -> bool:
        url = self._context.url
        return bool(url) and url in self._starred_urls

    def set_current_page_starred(self, flag: bool) -> bool:
        """Star or unstar the current URL. Kept in memory only."""

        url = self._context.url
        if not url:
            return False
        if flag:
            self._starred_urls.add(url)
        else:
            self._starred_urls.discard(url)
        return bool(flag)

    def on_base_domain_change(self, handler: Handler[BaseDomainChanged]) -> Callable[[], None]:
        return self._bus.subscribe(BaseDomainChanged, handler)

    def on_url_change(self, handler: Handler[UrlChanged]) -> Callable[[], None]:
        return self._bus.subscribe(UrlChanged, handler)

    # ------------------------------------------------------------------
    # Refresh
    # ------------------------------------------------------------------

    def needs_refresh(self, url: str) -> bool:
        if not self._context.url or self._context.url != url:
            return True
        return self._clock() - self._context.fetched_at > self._ttl

    async def ensure_fresh(self) -> PageContext | None:
        """Refresh the snapshot when the URL changed or it has gone stale.

        Returns the new context, or ``None`` when nothing needed refreshing.
        """

        try:
            tab = await self._host.active_tab()
        except Exception:
            LOGGER.warning("Unable to determine the active tab", exc_info=True)
            return None
        url = tab.url if tab is not None else None
        if tab is None or not url:
            return None

        pending = self._inflight.get(url)
        if pending is not None and not pending.done():
            return await asyncio.shield(pending)
        if not self.needs_refresh(url):
            return None

        task = asyncio.ensure_future(self._refresh(tab))
        self._inflight[url] = task
        task.add_done_callback(lambda done, key=url: self._clear_inflight(key, done))
        return await asyncio.shield(task)

    async def monitor(self, interval: float = 3.0) -> None:
        """Poll :meth:`ensure_fresh` every ``interval`` seconds until cancelled."""

        while True:
            try:
                await self.ensure_fresh()
            except Exception:
                LOGGER.warning("Page context refresh failed", exc_info=True)
            await asyncio.sleep(interval)

    async def _refresh(self, tab: TabInfo) -> PageContext:
        url = tab.url or ""
        restricted = is_restricted_url(url)

        self._replace_context(
            url, build_minimal_content(title=tab.title, url=url, restricted=restricted, pending=not restricted)
        )
        if not restricted:
            content, content_length = await self._capture(tab)
            if self._context.url != url:
                # A newer navigation owns the context and will announce itself.
                LOGGER.debug("Discarding capture for %s; context moved to %s", url, self._context.url)
                return self._context
            self._replace_context(url, content, content_length)

        new_base = parse_base_domain_from_url(url)
        if new_base and new_base != self._base_domain:
            old_base = self._base_domain
            self._base_domain = new_base
            self._bus.publish(BaseDomainChanged(new_domain=new_base, old_domain=old_base))
        if self._announced_url != url:
            old_url, self._announced_url = self._announced_url, url
            self._bus.publish(UrlChanged(new_url=url, old_url=old_url))
        return self._context

    async def _capture(self, tab: TabInfo) -> tuple[PageContent, int | None]:
        url = tab.url or ""
        try:
            if self._extraction_timeout:
                result = await asyncio.wait_for(self._extractor.extract(tab), self._extraction_timeout)
            else:
                result = await self._extractor.extract(tab)
        except asyncio.TimeoutError:
            LOGGER.warning("Content extraction timed out for %s", url)
            return build_minimal_content(title=tab.title, url=url, note=_NOTE_UNAVAILABLE), None
        except Exception as exc:
            LOGGER.warning("Content extraction failed for %s: %s", url, exc)
            return build_minimal_content(title=tab.title, url=url, note=_NOTE_UNAVAILABLE), None

        if isinstance(result, ExtractionFailure):
            LOGGER.warning("Content extraction for %s returned %s: %s", url, result.tag, result.message)
            if result.tag == NO_TAB and not await self._tab_still_active(tab):
                title = (tab.title or "").strip() or "Page"
                return build_minimal_content(title=title, url=url, note=_NOTE_TAB_GONE), None
            result = None

        if isinstance(result, PdfDocument):
            text = await self.process_pdf_bytes(result.data)
            content = PageContent(
                title=tab.title or "PDF Document",
                url=url,
                pdf=True,
                pdf_byte_length=result.byte_length,
                text=text,
            )
            return content, result.byte_length

        if isinstance(result, TabContent):
            content = result.as_page_content()
            if content.has_meaningful_text():
                return content, result.content_length

        title = (tab.title or "").strip() or title_from_url(url) or "Page"
        return build_minimal_content(title=title, url=url, note=_NOTE_NO_TEXT), None

    async def _tab_still_active(self, tab: TabInfo) -> bool:
        try:
            active = await self._host.active_tab()
        except Exception:
            LOGGER.debug("Active tab lookup failed after capture error", exc_info=True)
            return True
        return active is not None and active.tab_id == tab.tab_id

    async def process_pdf_bytes(self, data: bytes | None) -> str:
        """Extract text from PDF bytes, falling back to a short diagnostic string."""

        if not data:
            return "PDF (unavailable)"
        text = ""
        if self._pdf_extractor is not None:
            try:
                text = await self._pdf_extractor.extract(bytes(data))
            except Exception as exc:
                LOGGER.warning("PDF text extraction raised: %s", exc)
                text = ""
        if text and text.strip():
            return text.strip()
        head = "".join(chr(byte) if 32 <= byte <= 126 else "." for byte in bytes(data[:16]))
        return f"PDF ({len(data)} bytes) - text extraction failed. First16='{head}'"

    def _replace_context(self, url: str, content: PageContent, content_length: int | None = None) -> None:
        fetched_at = max(self._clock(), self._context.fetched_at + _TIMESTAMP_STEP)
        self._context = PageContext(url=url, content=content, fetched_at=fetched_at, content_length=content_length)
        title = (content.title or "").strip()
        self._page_title = title or None

    def _clear_inflight(self, url: str, task: asyncio.Task[PageContext]) -> None:
        if self._inflight.get(url) is task:
            del self._inflight[url]

    # ------------------------------------------------------------------
    # Page persistence
    # ------------------------------------------------------------------

    async def maybe_store_current_page(self) -> bool:
        """Upsert the current page into the document store once per URL.

        Returns ``True`` when the page was stored by this call.
        """

        if self._base_domain in EXCLUDED_DOMAINS:
            return False
        context = self._context
        url, content = context.url, context.content
        if not url or content is None:
            return False
        if content.pending:
            return False
        if url in self._stored_urls or url in self._storing:
            return False
        if self._document_store is None:
            return False

        if content.title and content.title.strip():
            self._page_title = content.title.strip()
        metadata = make_page_metadata(content, url, self._base_domain)
        chunk_prefix = f"{(metadata.get('title') or '')[:25]}; {(self._base_domain or '')[:30]}"
        text = build_page_text(content) or content.text or url

        self._storing.add(url)
        try:
            response = await self._document_store.save_and_embed_doc(
                collection=PAGE_COLLECTION,
                id=page_document_id(url),
                text=text,
                metadata=metadata,
                chunk_prefix=chunk_prefix,
            )
        finally:
            self._storing.discard(url)
        if not response.ok:
            return False
        self._stored_urls.append(url)
        return True

    def schedule_store_current_page(self) -> asyncio.Task[bool] | None:
        """Run :meth:`maybe_store_current_page` as a detached task; failures are only logged."""

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            LOGGER.debug("No running event loop; skipping page store")
            return None
        task = loop.create_task(self.maybe_store_current_page())
        self._background.add(task)
        task.add_done_callback(self._on_store_done)
        return task

    async def drain(self) -> None:
        """Wait for detached page-store tasks to finish."""

        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    def _handle_url_changed(self, event: UrlChanged) -> None:
        self.schedule_store_current_page()

    def _on_store_done(self, task: asyncio.Task[Any]) -> None:
        self._background.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            LOGGER.error("Failed to store current page: %s", exc)


__all__ = [
    "CONTEXT_TTL_SECONDS",
    "EXCLUDED_DOMAINS",
    "PageContextTracker",
    "build_minimal_content",
    "build_page_text",
    "is_restricted_url",
    "make_page_metadata",
    "page_document_id",
    "title_from_url",
]
