"""Runs one assistant turn: compose the request, stream the answer, resolve citations."""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Callable

import httpx
from openai import APIConnectionError

from ...errors import AssistantConnectionError, DEFAULT_LLM_ORIGIN
from .stream_parser import ReferenceStreamParser

if TYPE_CHECKING:  # pragma: no cover
    from ...chat.conversation_store import Conversation
    from ..client import AIClient
    from .request_composer import RequestComposer

LOGGER = logging.getLogger(__name__)

_CONNECTION_ERRORS = (APIConnectionError, httpx.ConnectError, httpx.TimeoutException)


class TurnRunner:
    """Streams one completion for a conversation and returns the final text."""

    def __init__(
        self,
        composer: RequestComposer,
        client: AIClient,
        *,
        temperature: float | None = 1.0,
        origin: str = DEFAULT_LLM_ORIGIN,
    ) -> None:
        self._composer = composer
        self._client = client
        self._temperature = temperature
        self._origin = origin

    async def compose_and_stream(
        self,
        conversation: Conversation,
        on_delta: Callable[[str], None] | None = None,
    ) -> str:
        """Stream the answer for the conversation's in-flight turn.

        ``on_delta`` receives display-ready fragments with reference tokens
        already resolved. Connectivity failures are raised as
        :class:`AssistantConnectionError`; anything else propagates unchanged.
        """

        request = await self._composer.compose(conversation)
        parser = ReferenceStreamParser(request.reference_map, on_delta=on_delta)
        try:
            async for event in self._client.stream_chat(request.messages, temperature=self._temperature):
                if event.type == "content.delta" and event.content:
                    parser.process_delta(event.content)
        except _CONNECTION_ERRORS as exc:
            LOGGER.warning("Completion server unreachable at %s: %s", self._origin, exc)
            raise AssistantConnectionError(self._origin) from exc
        except Exception:
            LOGGER.exception("Streaming failed for conversation %s", conversation.key)
            LOGGER.debug("Failed request transcript:\n%s", json.dumps(request.messages, ensure_ascii=False, indent=2))
            raise
        text = parser.finalize()
        LOGGER.debug("Turn for %s finished with %d character(s)", conversation.key, len(text))
        return text


__all__ = ["TurnRunner"]
