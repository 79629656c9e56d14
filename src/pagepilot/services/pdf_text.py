"""PDF to text via the unstructured ``general`` endpoint.

The endpoint takes ``multipart/form-data`` with ``files`` and ``strategy``
fields and answers with a list of elements (or ``{"elements": [...]}``).
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

LOGGER = logging.getLogger(__name__)

DEFAULT_ENDPOINT = "http://localhost:8080/unstructured/general/v0/general"
_TEXT_KEYS = ("text", "Title", "content")


class PdfTextExtractor:
    """Best-effort binary document text extraction. Never raises; failures yield ``""``."""

    def __init__(
        self,
        endpoint: str = DEFAULT_ENDPOINT,
        api_key: str | None = None,
        *,
        client: httpx.AsyncClient | None = None,
        timeout: float = 120.0,
        strategy: str = "fast",
    ) -> None:
        self._endpoint = endpoint
        self._api_key = api_key
        self._client = client or httpx.AsyncClient()
        self._owns_client = client is None
        self._timeout = timeout
        self._strategy = strategy

    async def extract(self, data: bytes, *, filename: str = "file.pdf") -> str:
        if not data:
            return ""
        headers = {"Accept": "application/json"}
        if self._api_key and self._api_key != "NONE":
            headers["Authorization"] = f"Bearer {self._api_key}"
        try:
            response = await self._client.post(
                self._endpoint,
                files={"files": (filename, bytes(data), "application/pdf")},
                data={"strategy": self._strategy},
                headers=headers,
                timeout=self._timeout,
            )
        except httpx.TimeoutException:
            LOGGER.warning("PDF text extraction timed out after %.0fs", self._timeout)
            return ""
        except httpx.HTTPError as exc:
            LOGGER.warning("PDF text extraction failed: %s", exc)
            return ""
        if not response.is_success:
            LOGGER.warning("PDF text extraction backend error %s", response.status_code)
            return ""
        try:
            payload = response.json()
        except ValueError:
            return ""
        parts = _element_texts(payload)
        LOGGER.debug("PDF text extraction returned %d element(s)", len(parts))
        return "\n".join(parts)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


def _element_texts(payload: Any) -> list[str]:
    if isinstance(payload, list):
        elements = payload
    elif isinstance(payload, dict) and isinstance(payload.get("elements"), list):
        elements = payload["elements"]
    else:
        return []
    parts: list[str] = []
    for element in elements:
        if not isinstance(element, dict):
            continue
        for key in _TEXT_KEYS:
            value = element.get(key)
            if value and isinstance(value, str):
                parts.append(value)
                break
    return parts


__all__ = ["DEFAULT_ENDPOINT", "PdfTextExtractor"]
