"""Prompt templates for the browsing assistant."""

from __future__ import annotations

PAGE_TEXT_CHAR_LIMIT = 20_000

SYSTEM_PROMPT = (
    "You are the PagePilot assistant running in the user's browser.\n"
    "- Below is the content of the current website; further down related context from pages visited in the past.\n"
    "- Only talk about the content if asked!\n"
    "- Always respond concisely. If a page summary is requested, provide a brief overview of the main points only.\n"
    "- Provide links to sources where possible. Some links are shown as \"ref_1\", \"ref_2\", etc. to make them "
    "short. Use them as references using \"ref_1, ref_2\" or \"[text](ref_1)\".\n"
    "- Never invent any content, only talk about what you really know. Otherwise ask for details."
)

CURRENT_PAGE_HEADER = (
    "\n\nCurrent page (JSON with keys: title, url, metaDescription, headings, text). Use as grounding: "
)
RAW_PAGE_HEADER = "\n\nPage context (raw): "
CONTEXT_MESSAGE_HEADER = "Here is context from other visited pages:\n\n"
RECENT_PAGES_HEADER = "Content from recently visited pages:\n"
BROWSE_HISTORY_HEADER = "**Browse history**\n"


def current_page_note(url: str | None) -> str:
    return f"\n\nThe current page is {url or 'unknown page'}"


__all__ = [
    "BROWSE_HISTORY_HEADER",
    "CONTEXT_MESSAGE_HEADER",
    "CURRENT_PAGE_HEADER",
    "PAGE_TEXT_CHAR_LIMIT",
    "RAW_PAGE_HEADER",
    "RECENT_PAGES_HEADER",
    "SYSTEM_PROMPT",
    "current_page_note",
]
