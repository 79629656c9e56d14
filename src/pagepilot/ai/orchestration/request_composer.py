"""Assembly of the chat-completion request for one turn.

The request is made of the system prompt (with the current page snapshot
embedded as JSON), a budgeted trailing window of the conversation, and one
auxiliary system message carrying retrieved context from other pages. The
browse history inside that message cites URLs as short ``ref_<n>`` tokens
whose mapping is returned alongside the messages.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any, Mapping, Sequence
from urllib.parse import urlsplit

from .. import prompts
from .references import ReferenceMap

if TYPE_CHECKING:  # pragma: no cover
    from ...chat.conversation_store import Conversation
    from ...context.models import PageContext
    from ...context.tracker import PageContextTracker
    from ...services.retriever import Retriever

LOGGER = logging.getLogger(__name__)

HISTORY_CHAR_BUDGET = 12_000
HISTORY_MESSAGE_MARGIN = 20
HISTORY_FALLBACK_COUNT = 6


@dataclass(slots=True)
class ComposedRequest:
    """Messages for one completion call plus the reference map scoped to it."""

    messages: list[dict[str, str]]
    reference_map: ReferenceMap = field(default_factory=ReferenceMap)


def limit_chat_history(messages: Sequence[Mapping[str, Any]], budget: Any) -> list[dict[str, Any]]:
    """Keep the newest messages whose ``len(content) + margin`` fits in ``budget``.

    The newest message is always kept. A zero or invalid budget falls back to
    the last few messages.
    """

    items = [dict(message) for message in messages]
    try:
        remaining = max(0, int(budget or 0))
    except (TypeError, ValueError):
        remaining = 0
    if not remaining:
        return items[-HISTORY_FALLBACK_COUNT:]

    kept: list[dict[str, Any]] = []
    for message in reversed(items):
        cost = len(message.get("content") or "") + HISTORY_MESSAGE_MARGIN
        if cost <= remaining or not kept:
            kept.append(message)
            remaining -= cost
        else:
            break
    kept.reverse()
    return kept


def format_updated_at(value: str | None, *, now: datetime | None = None) -> str:
    """Render an ISO timestamp as ``today HH:MM``, ``yesterday HH:MM`` or ``YYYY-MM-DD HH:MM``."""

    if not value:
        return ""
    try:
        moment = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return str(value)
    if moment.tzinfo is not None:
        moment = moment.astimezone()
    reference = now or datetime.now()
    if reference.tzinfo is not None:
        reference = reference.astimezone()
    today = reference.date()
    if moment.date() >= today:
        label = "today"
    elif moment.date() >= today - timedelta(days=1):
        label = "yesterday"
    else:
        label = moment.date().isoformat()
    return f"{label} {moment.strftime('%H:%M')}"


def history_entry_fields(entry: Mapping[str, Any]) -> tuple[str, str, str]:
    """Return ``(title, url, updated label)`` for one stored-page descriptor."""

    metadata = entry.get("metadata") if isinstance(entry.get("metadata"), Mapping) else {}
    title = entry.get("title") or metadata.get("title") or entry.get("id") or "Untitled"
    url = metadata.get("url") or metadata.get("link") or ""
    return str(title), str(url), format_updated_at(metadata.get("updated_at"))


def browse_history_to_markdown(entries: Sequence[Mapping[str, Any]] | None) -> tuple[str, ReferenceMap]:
    """Render browse-history entries as bullets with ``[host](ref_<idx>)`` links."""

    reference_map = ReferenceMap()
    if not entries:
        return "", reference_map
    lines: list[str] = []
    for index, entry in enumerate(entries):
        title, url, updated = history_entry_fields(entry)
        line = f"{updated}: {title}" if updated else title
        if url:
            token = reference_map.allocate(url, index)
            line += f" [{_host_of(url)}]({token})"
        lines.append(f"- {line}")
    markdown = prompts.BROWSE_HISTORY_HEADER + "\n".join(lines) + "\n\n"
    return markdown, reference_map


def render_history_blocks(entries: Sequence[Mapping[str, Any]] | None) -> str:
    if not entries:
        return ""
    blocks: list[str] = []
    for entry in entries:
        metadata = entry.get("metadata") if isinstance(entry.get("metadata"), Mapping) else {}
        title = entry.get("title") or metadata.get("title") or "Untitled"
        url = entry.get("url") or metadata.get("url") or ""
        body = "\n".join(f"    {line}" for line in str(entry.get("content") or "").split("\n"))
        blocks.append(f"## Page: {title}\n  {url}\n\n{body}")
    return "\n\n".join(blocks)


def page_context_block(page_context: PageContext | None, limit: int = prompts.PAGE_TEXT_CHAR_LIMIT) -> str:
    """Return the system-prompt suffix describing the current page, or ``""``."""

    content = page_context.content if page_context is not None else None
    if content is None:
        return ""
    if isinstance(content, str):
        try:
            payload = json.loads(content)
        except ValueError:
            LOGGER.warning("Page context is not valid JSON, sending as raw text")
            return prompts.RAW_PAGE_HEADER + content[:limit]
        if not isinstance(payload, dict):
            return ""
    else:
        payload = content.to_dict()
    text = payload.get("text")
    if isinstance(text, str) and len(text) > limit:
        payload["text"] = text[:limit]
    return prompts.CURRENT_PAGE_HEADER + json.dumps(payload, ensure_ascii=False, separators=(",", ":"))


class RequestComposer:
    """Builds :class:`ComposedRequest` objects from the live page and a conversation."""

    def __init__(
        self,
        tracker: PageContextTracker,
        retriever: Retriever | None = None,
        *,
        history_char_budget: int = HISTORY_CHAR_BUDGET,
        page_text_char_limit: int = prompts.PAGE_TEXT_CHAR_LIMIT,
        system_prompt: str = prompts.SYSTEM_PROMPT,
    ) -> None:
        self._tracker = tracker
        self._retriever = retriever
        self._history_char_budget = history_char_budget
        self._page_text_char_limit = page_text_char_limit
        self._system_prompt = system_prompt

    async def compose(self, conversation: Conversation) -> ComposedRequest:
        page_context = self._tracker.page_context
        system_content = self._system_prompt + page_context_block(page_context, self._page_text_char_limit)

        # The newest message is the assistant placeholder for this turn.
        prior = [message.as_prompt_message() for message in conversation.messages[:-1]]
        messages: list[dict[str, str]] = [{"role": "system", "content": system_content}]
        messages.extend(limit_chat_history(prior, self._history_char_budget))

        combined, reference_map = await self._retrieved_context(prior, page_context)
        if combined:
            note = prompts.CONTEXT_MESSAGE_HEADER + combined + prompts.current_page_note(page_context.url)
            position = len(messages) - 3 if len(messages) > 3 else len(messages) - 1
            messages.insert(position, {"role": "system", "content": note})

        LOGGER.debug(
            "Composed request for %s: %d message(s), %d reference(s)",
            conversation.key,
            len(messages),
            len(reference_map),
        )
        return ComposedRequest(messages=messages, reference_map=reference_map)

    async def _retrieved_context(
        self,
        prior: Sequence[Mapping[str, Any]],
        page_context: PageContext,
    ) -> tuple[str, ReferenceMap]:
        if self._retriever is None or not prior:
            return "", ReferenceMap()
        result = await self._retriever.retrieve(prior, page_context)
        blocks = render_history_blocks(result.history_content or result.history_summary)
        browse_markdown, reference_map = browse_history_to_markdown(result.history_overview)
        combined = browse_markdown
        if blocks:
            combined += prompts.RECENT_PAGES_HEADER + blocks
        return combined, reference_map


def _host_of(url: str) -> str:
    try:
        host = urlsplit(url).hostname
    except ValueError:
        return url
    return host or url


__all__ = [
    "ComposedRequest",
    "HISTORY_CHAR_BUDGET",
    "RequestComposer",
    "browse_history_to_markdown",
    "format_updated_at",
    "history_entry_fields",
    "limit_chat_history",
    "page_context_block",
    "render_history_blocks",
]
