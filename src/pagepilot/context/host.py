"""Collaborator protocols for the page context tracker."""

from __future__ import annotations

from typing import Protocol, Union

from .models import ExtractionFailure, PdfDocument, TabContent, TabInfo

ExtractionResult = Union[TabContent, PdfDocument, ExtractionFailure, None]


class HostEnvironment(Protocol):
    """Reports which tab the user is currently looking at."""

    async def active_tab(self) -> TabInfo | None:
        """Return the active tab, or ``None`` when there is none."""


class TabContentExtractor(Protocol):
    """Captures the content of a tab."""

    async def extract(self, tab: TabInfo) -> ExtractionResult:
        """Return the tab's content, a PDF payload, or a failure tag."""


class BinaryTextExtractor(Protocol):
    """Turns raw document bytes into plain text; returns ``""`` on failure."""

    async def extract(self, data: bytes) -> str:
        """Return best-effort text for ``data``."""


class StaticHostEnvironment:
    """Single-tab host whose URL only changes through :meth:`navigate`."""

    def __init__(self, url: str | None = None, title: str | None = None, *, tab_id: int = 1) -> None:
        self._tab = TabInfo(tab_id=tab_id, url=url, title=title)

    async def active_tab(self) -> TabInfo | None:
        if self._tab.url is None:
            return None
        return self._tab

    def navigate(self, url: str | None, title: str | None = None) -> None:
        self._tab = TabInfo(tab_id=self._tab.tab_id, url=url, title=title)


__all__ = [
    "BinaryTextExtractor",
    "ExtractionResult",
    "HostEnvironment",
    "StaticHostEnvironment",
    "TabContentExtractor",
]
