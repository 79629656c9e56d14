"""Client for the local document store and retrieval service.

Endpoints used:

* ``POST {base}/retrieval/query-advanced``: ranked context for a conversation
* ``POST {base}/documents``: upsert a document (embedded or full-text only)
* ``GET  {base}/documents/{collection}/{id}``: load a stored document
* ``GET  {base}/documents/{collection}``: list stored documents
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Mapping, Sequence
from urllib.parse import quote

import httpx

from ..errors import ServiceRequestError, ServiceTimeoutError, ServiceUnavailableError

LOGGER = logging.getLogger(__name__)

DEFAULT_BASE_URL = "http://localhost:8081"


@dataclass(slots=True)
class RetrievalResult:
    """Ranked context returned by the retrieval endpoint."""

    history_content: list[dict[str, Any]] = field(default_factory=list)
    history_summary: list[dict[str, Any]] = field(default_factory=list)
    history_overview: list[dict[str, Any]] = field(default_factory=list)
    hits: list[dict[str, Any]] = field(default_factory=list)
    took_ms: float | None = None

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any] | None) -> "RetrievalResult":
        if not isinstance(payload, Mapping):
            return cls()
        return cls(
            history_content=_dict_list(payload.get("history_content")),
            history_summary=_dict_list(payload.get("history_summary")),
            history_overview=_dict_list(payload.get("history_overview")),
            hits=_dict_list(payload.get("hits")),
            took_ms=payload.get("took_ms"),
        )

    def is_empty(self) -> bool:
        return not (self.history_content or self.history_summary or self.history_overview or self.hits)


@dataclass(slots=True)
class StoreResponse:
    status: int
    data: Any = None
    doc: Any = None

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


class DocumentStoreClient:
    """Async REST client for the document store; every request carries a bearer token."""

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        api_key: str = "",
        *,
        client: httpx.AsyncClient | None = None,
        retrieval_timeout: float = 10.0,
        upsert_timeout: float = 30.0,
        load_timeout: float = 15.0,
        list_timeout: float = 10.0,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._client = client or httpx.AsyncClient()
        self._owns_client = client is None
        self._retrieval_timeout = retrieval_timeout
        self._upsert_timeout = upsert_timeout
        self._load_timeout = load_timeout
        self._list_timeout = list_timeout

    @property
    def base_url(self) -> str:
        return self._base_url

    async def retrieve_context(
        self,
        messages: Sequence[Mapping[str, Any]],
        *,
        collection: str = "docs",
        top_k: int = 7,
    ) -> RetrievalResult:
        """Query ranked context for ``messages`` (last message = current user query)."""

        if messages is None or isinstance(messages, (str, bytes)):
            raise ValueError("retrieve_context: messages are required")
        url = f"{self._base_url}/retrieval/query-advanced"
        body = {"collection": collection, "messages": [dict(message) for message in messages], "top_k": top_k}
        response, data = await self._request(
            "POST", url, operation="Retrieval", json_body=body, timeout=self._retrieval_timeout
        )
        if not response.is_success:
            raise ServiceRequestError(
                f"Retrieval failed: {_error_message(response, data)}", status=response.status_code, payload=data
            )
        return RetrievalResult.from_payload(data)

    async def save_and_embed_doc(
        self,
        *,
        collection: str,
        id: str,
        text: str,
        metadata: Mapping[str, Any],
        chunk_prefix: str | None = None,
        doc_url: str | None = None,
    ) -> StoreResponse:
        """Upsert a document and have the service chunk and embed it."""

        if not collection:
            raise ValueError("save_and_embed_doc: collection is required")
        if not id:
            raise ValueError("save_and_embed_doc: id is required")
        if not text:
            raise ValueError("save_and_embed_doc: text is required")
        if not metadata:
            raise ValueError("save_and_embed_doc: metadata is required")

        url = f"{self._base_url}/documents"
        body: dict[str, Any] = {"collection": collection, "id": id, "text": text, "metadata": dict(metadata)}
        if doc_url:
            body["docUrl"] = doc_url
        started = time.perf_counter()
        response, data = await self._request(
            "POST", url, operation="save_and_embed_doc", json_body=body, timeout=self._upsert_timeout
        )
        if not response.is_success or not isinstance(data, Mapping) or data.get("status") != "ok":
            raise ServiceRequestError(
                f"save_and_embed_doc failed: {_error_message(response, data)}",
                status=response.status_code,
                payload=data,
            )
        LOGGER.info(
            "Document updated id=%s status=%s collection=%s title=%s chunks=%s length=%d chunk_prefix=%s duration_ms=%d",
            id,
            response.status_code,
            collection,
            metadata.get("title"),
            data.get("chunks"),
            len(text),
            chunk_prefix,
            _elapsed_ms(started),
        )
        return StoreResponse(status=response.status_code, data=data)

    async def save_full_document(self, *, collection: str, id: str, text: str) -> StoreResponse:
        """Store ``text`` verbatim without embedding it."""

        if not collection:
            raise ValueError("save_full_document: collection is required")
        if not id:
            raise ValueError("save_full_document: id is required")
        if not text:
            raise ValueError("save_full_document: text is required")

        url = f"{self._base_url}/documents"
        body = {"collection": collection, "id": id, "text": text, "embed": False}
        started = time.perf_counter()
        response, data = await self._request(
            "POST", url, operation="save_full_document", json_body=body, timeout=self._upsert_timeout
        )
        if not response.is_success or data is None:
            raise ServiceRequestError(
                f"save_full_document failed: {_error_message(response, data)}",
                status=response.status_code,
                payload=data,
            )
        LOGGER.debug(
            "Full document updated id=%s status=%s collection=%s length=%d duration_ms=%d",
            id,
            response.status_code,
            collection,
            len(text),
            _elapsed_ms(started),
        )
        return StoreResponse(status=response.status_code, data=data)

    async def load_full_document(self, *, collection: str, id: str) -> StoreResponse:
        """Load a stored document; ``doc`` is the first entry of ``docs`` or ``None``."""

        if not collection:
            raise ValueError("load_full_document: collection is required")
        if not id:
            raise ValueError("load_full_document: id is required")

        url = f"{self._base_url}/documents/{quote(collection, safe='')}/{quote(id, safe='')}"
        started = time.perf_counter()
        response, data = await self._request("GET", url, operation="load_full_document", timeout=self._load_timeout)
        if not response.is_success:
            raise ServiceRequestError(
                f"load_full_document failed: {_error_message(response, data)}",
                status=response.status_code,
                payload=data,
            )
        docs = data.get("docs") if isinstance(data, Mapping) else None
        doc = docs[0] if isinstance(docs, list) and docs else None
        LOGGER.debug(
            "Full document loaded id=%s status=%s has_text=%s duration_ms=%d",
            id,
            response.status_code,
            isinstance(doc, str),
            _elapsed_ms(started),
        )
        return StoreResponse(status=response.status_code, data=data, doc=doc)

    async def list_documents(self, *, collection: str, limit: int | None = None) -> list[dict[str, Any]]:
        """Return the document descriptors stored in ``collection``."""

        if not collection:
            raise ValueError("list_documents: collection is required")
        url = f"{self._base_url}/documents/{quote(collection, safe='')}"
        params = {"limit": str(limit)} if limit is not None else None
        response, data = await self._request(
            "GET", url, operation="list_documents", params=params, timeout=self._list_timeout
        )
        if not response.is_success:
            raise ServiceRequestError(
                f"list_documents failed: {_error_message(response, data)}",
                status=response.status_code,
                payload=data,
            )
        if not isinstance(data, Mapping):
            return []
        return _dict_list(data.get("documents"))

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _request(
        self,
        method: str,
        url: str,
        *,
        operation: str,
        json_body: Mapping[str, Any] | None = None,
        params: Mapping[str, str] | None = None,
        timeout: float,
    ) -> tuple[httpx.Response, Any]:
        headers = {"Authorization": f"Bearer {self._api_key}"}
        try:
            response = await self._client.request(
                method, url, json=json_body, params=params, headers=headers, timeout=timeout
            )
        except httpx.TimeoutException as exc:
            raise ServiceTimeoutError(f"{operation} request timed out") from exc
        except httpx.TransportError as exc:
            raise ServiceUnavailableError(f"Cannot reach document store at {url}") from exc
        return response, _decode_body(response)


def _decode_body(response: httpx.Response) -> Any:
    text = response.text
    if not text:
        return {}
    try:
        return json.loads(text)
    except ValueError:
        return {"raw": text}


def _error_message(response: httpx.Response, data: Any) -> str:
    if isinstance(data, Mapping):
        error = data.get("error")
        if isinstance(error, Mapping) and error.get("message"):
            return str(error["message"])
        if data.get("message"):
            return str(data["message"])
    return f"{response.status_code} {response.reason_phrase}".strip()


def _dict_list(value: Any) -> list[dict[str, Any]]:
    if not isinstance(value, list):
        return []
    return [dict(item) for item in value if isinstance(item, Mapping)]


def _elapsed_ms(started: float) -> int:
    return int(round((time.perf_counter() - started) * 1000))


__all__ = [
    "DEFAULT_BASE_URL",
    "DocumentStoreClient",
    "RetrievalResult",
    "StoreResponse",
]
