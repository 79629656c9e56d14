"""Chat message data model."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Literal, Mapping, Optional


def _utcnow() -> datetime:
    """Return the current UTC time as a timezone-aware datetime."""

    return datetime.now(timezone.utc)

ChatRole = Literal["user", "assistant", "system"]
_ROLES = ("user", "assistant", "system")


@dataclass(slots=True)
class ChatMessage:
    """Represents a row inside a conversation.

    ``origin_url`` and ``origin_title`` record the page the user was looking at
    when the turn started. ``streaming`` is ``True`` while an assistant reply is
    still being received.
    """

    role: ChatRole
    content: str
    streaming: bool = False
    origin_url: Optional[str] = None
    origin_title: Optional[str] = None
    starred: bool = False
    created_at: datetime = field(default_factory=_utcnow)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize the message for persistence."""

        payload: Dict[str, Any] = {"role": self.role, "content": self.content}
        if self.origin_url or self.origin_title:
            payload["origin"] = {"url": self.origin_url, "title": self.origin_title}
        if self.starred:
            payload["starred"] = True
        payload["created_at"] = self.created_at.isoformat()
        return payload

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "ChatMessage":
        role = payload.get("role")
        if role not in _ROLES:
            raise ValueError(f"Unsupported chat role: {role!r}")
        origin = payload.get("origin")
        origin = origin if isinstance(origin, Mapping) else {}
        created_at = _utcnow()
        raw_created = payload.get("created_at")
        if isinstance(raw_created, str):
            try:
                created_at = datetime.fromisoformat(raw_created)
            except ValueError:
                pass
        content = payload.get("content")
        return cls(
            role=role,
            content=content if isinstance(content, str) else "",
            origin_url=origin.get("url"),
            origin_title=origin.get("title"),
            starred=bool(payload.get("starred", False)),
            created_at=created_at,
        )

    def as_prompt_message(self) -> Dict[str, str]:
        return {"role": self.role, "content": self.content}


__all__ = ["ChatMessage", "ChatRole"]
