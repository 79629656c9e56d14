"""Error types surfaced by the assistant pipeline.

Only :class:`AssistantConnectionError` and other failures of the completion
stream reach the user. Retrieval, extraction and persistence errors are
absorbed where they happen and merely logged.
"""

from __future__ import annotations

from typing import Any

__all__ = [
    "PagePilotError",
    "AssistantConnectionError",
    "ServiceRequestError",
    "ServiceTimeoutError",
    "ServiceUnavailableError",
    "DEFAULT_LLM_ORIGIN",
    "connection_message",
    "to_user_message",
]

DEFAULT_LLM_ORIGIN = "http://localhost:8080"
_NETWORK_MARKERS = ("failed to fetch", "networkerror", "econnrefused", "enotfound", "connection refused")


def connection_message(origin: str | None = None) -> str:
    """Return the stable message shown when the completion server is unreachable."""

    target = (origin or DEFAULT_LLM_ORIGIN).rstrip("/")
    return f"Can't connect to the local AI server at {target}. Please make sure it's running and reachable."


class PagePilotError(Exception):
    """Base class for errors raised by the package."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return self.message


class AssistantConnectionError(PagePilotError):
    """The chat-completion endpoint could not be reached."""

    def __init__(self, origin: str | None = None) -> None:
        super().__init__(connection_message(origin))
        self.origin = origin


class ServiceRequestError(PagePilotError):
    """A document-store request failed or returned an unusable reply."""

    def __init__(self, message: str, *, status: int | None = None, payload: Any = None) -> None:
        super().__init__(message)
        self.status = status
        self.payload = payload


class ServiceTimeoutError(ServiceRequestError):
    """A document-store request exceeded its timeout."""


class ServiceUnavailableError(ServiceRequestError):
    """The document store could not be reached at all."""


def to_user_message(error: BaseException | str, *, origin: str | None = None) -> str:
    """Normalize ``error`` into the single line displayed to the user."""

    if isinstance(error, str):
        return error
    if isinstance(error, PagePilotError):
        return error.message
    text = str(error) or type(error).__name__
    lowered = text.lower()
    if any(marker in lowered for marker in _NETWORK_MARKERS):
        return connection_message(origin)
    return text
