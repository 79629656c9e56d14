"""Value types describing the page the user is viewing."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Mapping


@dataclass(frozen=True, slots=True)
class PageContent:
    """Structured extraction of a page at one point in time."""

    title: str | None = None
    url: str | None = None
    meta_description: str | None = None
    headings: tuple[str, ...] = ()
    text: str | None = None
    content_length: int | None = None
    restricted: bool = False
    note: str | None = None
    pdf: bool = False
    pdf_byte_length: int | None = None
    # Set on the title-only snapshot shown while extraction is still running.
    pending: bool = False

    def to_dict(self) -> Dict[str, Any]:
        """Serialize using the key names expected by the model prompt, dropping empty fields."""

        payload: Dict[str, Any] = {
            "title": self.title,
            "url": self.url,
            "metaDescription": self.meta_description,
            "headings": list(self.headings) if self.headings else None,
            "text": self.text,
            "contentLength": self.content_length,
            "restricted": True if self.restricted else None,
            "note": self.note,
            "pdf": True if self.pdf else None,
            "pdfByteLength": self.pdf_byte_length,
        }
        return {key: value for key, value in payload.items() if value is not None}

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "PageContent":
        headings = payload.get("headings") or ()
        return cls(
            title=payload.get("title"),
            url=payload.get("url"),
            meta_description=payload.get("metaDescription"),
            headings=tuple(str(item) for item in headings),
            text=payload.get("text"),
            content_length=payload.get("contentLength"),
            restricted=bool(payload.get("restricted", False)),
            note=payload.get("note"),
            pdf=bool(payload.get("pdf", False)),
            pdf_byte_length=payload.get("pdfByteLength"),
        )

    def has_meaningful_text(self) -> bool:
        return bool(
            (self.title and self.title.strip())
            or self.headings
            or (self.text and self.text.strip())
        )


@dataclass(frozen=True, slots=True)
class PageContext:
    """The single live snapshot owned by the tracker. Replaced, never mutated."""

    url: str | None = None
    content: PageContent | None = None
    fetched_at: float = 0.0
    content_length: int | None = None

    @property
    def title(self) -> str | None:
        if self.content is None or not self.content.title:
            return None
        return self.content.title.strip() or None


@dataclass(frozen=True, slots=True)
class TabInfo:
    """The active tab reported by the host environment."""

    tab_id: int | str | None
    url: str | None
    title: str | None = None


@dataclass(frozen=True, slots=True)
class TabContent:
    """Successful reply from the tab content extraction collaborator."""

    title: str | None
    url: str
    meta_description: str | None = None
    headings: tuple[str, ...] = ()
    text: str = ""
    content_length: int | None = None

    def as_page_content(self) -> PageContent:
        return PageContent(
            title=self.title,
            url=self.url,
            meta_description=self.meta_description,
            headings=self.headings,
            text=self.text,
            content_length=self.content_length,
        )


@dataclass(frozen=True, slots=True)
class PdfDocument:
    """The page turned out to be a binary PDF; ``data`` holds its raw bytes."""

    data: bytes
    content_type: str = "application/pdf"

    @property
    def byte_length(self) -> int:
        return len(self.data)


@dataclass(frozen=True, slots=True)
class ExtractionFailure:
    """Error tag returned by the extraction collaborator."""

    tag: str
    message: str = ""
    details: Dict[str, Any] = field(default_factory=dict)


NO_TAB = "no-tab"
