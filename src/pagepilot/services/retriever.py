"""Retrieval facade used by the request composer."""

from __future__ import annotations

import logging
from typing import Any, Mapping, Sequence

from ..context.models import PageContext
from .document_store import DocumentStoreClient, RetrievalResult

LOGGER = logging.getLogger(__name__)

DOCS_COLLECTION = "docs"


class Retriever:
    """Asks the document store for context; failures degrade to an empty result."""

    def __init__(self, client: DocumentStoreClient, *, top_k: int = 7, collection: str = DOCS_COLLECTION) -> None:
        self._client = client
        self._top_k = top_k
        self._collection = collection

    async def retrieve(
        self,
        messages: Sequence[Mapping[str, Any]],
        page_context: PageContext | None = None,
    ) -> RetrievalResult:
        if not messages:
            return RetrievalResult()
        try:
            result = await self._client.retrieve_context(messages, collection=self._collection, top_k=self._top_k)
        except Exception as exc:
            url = page_context.url if page_context is not None else None
            LOGGER.warning("Retrieval failed for %s; continuing without context: %s", url or "unknown page", exc)
            return RetrievalResult()
        LOGGER.debug(
            "Retrieved %d content block(s), %d summary block(s), %d history entries",
            len(result.history_content),
            len(result.history_summary),
            len(result.history_overview),
        )
        return result

    async def browse_history(self, limit: int | None = None) -> list[dict[str, Any]]:
        try:
            return await self._client.list_documents(collection=self._collection, limit=limit)
        except Exception as exc:
            LOGGER.warning("Unable to list browse history: %s", exc)
            return []


__all__ = ["DOCS_COLLECTION", "Retriever"]
