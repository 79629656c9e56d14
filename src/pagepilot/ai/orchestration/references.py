"""Per-request mapping of short ``ref_<n>`` tokens to URLs."""

from __future__ import annotations

from typing import Dict, Iterator, Mapping

REFERENCE_PREFIX = "ref_"
UNKNOWN_REFERENCE_PREFIX = "[unknown:]"


class ReferenceMap(Mapping[str, str]):
    """Read-mostly mapping populated while rendering the browse history.

    Tokens are allocated from the entry position so the model sees stable,
    short identifiers in place of long URLs.
    """

    __slots__ = ("_entries",)

    def __init__(self, entries: Mapping[str, str] | None = None) -> None:
        self._entries: Dict[str, str] = dict(entries or {})

    def __getitem__(self, token: str) -> str:
        return self._entries[token]

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __repr__(self) -> str:
        return f"ReferenceMap({self._entries!r})"

    def allocate(self, url: str, index: int | None = None) -> str:
        """Record ``url`` under ``ref_<index>`` (next free index when omitted)."""

        position = len(self._entries) if index is None else index
        token = f"{REFERENCE_PREFIX}{position}"
        self._entries[token] = url
        return token

    def resolve(self, token: str) -> str:
        url = self._entries.get(token)
        if url is None:
            return f"{UNKNOWN_REFERENCE_PREFIX}{token}"
        return url


__all__ = ["REFERENCE_PREFIX", "ReferenceMap", "UNKNOWN_REFERENCE_PREFIX"]
