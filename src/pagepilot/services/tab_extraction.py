"""Tab content extraction by fetching the page over HTTP."""

from __future__ import annotations

import logging
import re

import httpx
from bs4 import BeautifulSoup

from ..context.host import ExtractionResult
from ..context.models import ExtractionFailure, PdfDocument, TabContent, TabInfo

LOGGER = logging.getLogger(__name__)

_MAX_HEADINGS = 50
_WHITESPACE_RE = re.compile(r"\s+")


class HttpTabExtractor:
    """Fetch the tab's URL and capture title, description, headings and body text."""

    def __init__(
        self,
        *,
        client: httpx.AsyncClient | None = None,
        timeout: float = 20.0,
        user_agent: str = "pagepilot/0.3",
    ) -> None:
        self._client = client or httpx.AsyncClient(follow_redirects=True)
        self._owns_client = client is None
        self._timeout = timeout
        self._user_agent = user_agent

    async def extract(self, tab: TabInfo) -> ExtractionResult:
        if not tab.url:
            return None
        try:
            response = await self._client.get(
                tab.url, headers={"User-Agent": self._user_agent}, timeout=self._timeout
            )
        except httpx.TimeoutException:
            return ExtractionFailure(tag="timeout", message=f"Timed out fetching {tab.url}")
        except httpx.HTTPError as exc:
            return ExtractionFailure(tag="fetch-failed", message=str(exc) or type(exc).__name__)

        if not response.is_success:
            return ExtractionFailure(tag="http-error", message=f"{response.status_code} {response.reason_phrase}")

        content_type = response.headers.get("content-type", "")
        if "application/pdf" in content_type:
            return PdfDocument(data=response.content, content_type=content_type)
        if content_type and "html" not in content_type and not content_type.startswith("text/"):
            return ExtractionFailure(tag="non-text", message=f"Unsupported content type {content_type}")
        return parse_html(response.text, url=str(response.url))

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


def parse_html(html: str, *, url: str) -> TabContent:
    """Capture the structured view of an HTML document."""

    soup = BeautifulSoup(html, "html.parser")
    title = soup.title.get_text().strip() if soup.title else None
    meta = soup.find("meta", attrs={"name": "description"})
    meta_description = meta.get("content") if meta is not None else None
    headings: list[str] = []
    for node in soup.find_all(["h1", "h2", "h3"]):
        if len(headings) >= _MAX_HEADINGS:
            break
        text = node.get_text().strip()
        if text:
            headings.append(text)
    for node in soup(["script", "style", "noscript", "template"]):
        node.decompose()
    body = soup.body or soup
    text = _WHITESPACE_RE.sub(" ", body.get_text(" ")).strip()
    return TabContent(
        title=title,
        url=url,
        meta_description=meta_description or None,
        headings=tuple(headings),
        text=text,
        content_length=len(html),
    )


__all__ = ["HttpTabExtractor", "parse_html"]
