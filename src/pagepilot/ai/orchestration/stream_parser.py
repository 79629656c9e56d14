"""Incremental substitution of ``ref_<n>`` tokens in streamed model output.

The parser holds back only the text that might still turn into a reference
token. A token is resolved once at least one character follows its digits,
so a number is never cut short by a delta boundary. Everything else is
forwarded as soon as it arrives, exactly once and in order.

Two details keep output identical however the stream is chunked:

* On a false alarm (``ref`` not followed by ``_<digit>``) only the ``ref``
  head is released and scanning resumes right after it. Releasing the whole
  buffer would skip a real token later in it, e.g. ``prefer ref_3``.
* A trailing ``r`` or ``re`` is held back until the next delta, since it may
  be the start of a token split one character per delta.
"""

from __future__ import annotations

import enum
import logging
import re
from typing import Callable, Mapping

from .references import REFERENCE_PREFIX, UNKNOWN_REFERENCE_PREFIX

LOGGER = logging.getLogger(__name__)

_CANDIDATE = "ref"
_TOKEN_RE = re.compile(r"ref_\d+")

DeltaCallback = Callable[[str], None]


class ParserState(enum.Enum):
    SCANNING = "scanning"
    TENTATIVE = "tentative"
    CONFIRMED = "confirmed"


class ReferenceStreamParser:
    """State machine over one growing buffer of streamed text."""

    def __init__(self, reference_map: Mapping[str, str] | None = None, on_delta: DeltaCallback | None = None) -> None:
        self._references: Mapping[str, str] = reference_map or {}
        self._on_delta = on_delta
        self._buffer = ""
        self._parts: list[str] = []
        self._state = ParserState.SCANNING
        self._finalized = False

    @property
    def state(self) -> ParserState:
        return self._state

    @property
    def buffer(self) -> str:
        return self._buffer

    @property
    def full_text(self) -> str:
        return "".join(self._parts)

    def process_delta(self, delta: str) -> list[str]:
        """Consume ``delta`` and return the fragments that are now safe to display."""

        if self._finalized:
            raise RuntimeError("process_delta() called after finalize()")
        forwarded: list[str] = []
        if not delta:
            return forwarded
        self._buffer += delta
        while self._buffer:
            if not self._step(forwarded):
                break
        self._state = ParserState.TENTATIVE if self._buffer else ParserState.SCANNING
        return forwarded

    def finalize(self) -> str:
        """Flush whatever is still held back, unresolved, and return the full text."""

        if not self._finalized:
            self._finalized = True
            if self._buffer:
                if _TOKEN_RE.fullmatch(self._buffer):
                    LOGGER.debug("Stream ended on unresolved reference %s", self._buffer)
                self._forward(self._buffer, [])
                self._buffer = ""
            self._state = ParserState.SCANNING
        return self.full_text

    def _step(self, forwarded: list[str]) -> bool:
        """Advance the buffer once; ``False`` means more input is needed."""

        buffer = self._buffer
        index = buffer.find(_CANDIDATE)
        if index == -1:
            # A trailing "r" or "re" may still grow into a candidate.
            keep = _partial_candidate_length(buffer)
            self._forward(buffer[: len(buffer) - keep], forwarded)
            self._buffer = buffer[len(buffer) - keep:]
            return False
        if index > 0:
            self._forward(buffer[:index], forwarded)
            buffer = self._buffer = buffer[index:]

        if len(buffer) > len(REFERENCE_PREFIX) and not buffer.startswith(REFERENCE_PREFIX):
            # Plain word such as "reference"; release the candidate and keep scanning.
            self._forward(_CANDIDATE, forwarded)
            self._buffer = buffer[len(_CANDIDATE):]
            return True

        match = _TOKEN_RE.match(buffer)
        if match is not None and match.end() < len(buffer):
            self._state = ParserState.CONFIRMED
            token = match.group(0)
            self._forward(self._resolve(token), forwarded)
            self._buffer = buffer[match.end():]
            return True
        if match is None and len(buffer) > len(REFERENCE_PREFIX):
            # "ref_" followed by a non-digit can never become a token.
            self._forward(REFERENCE_PREFIX, forwarded)
            self._buffer = buffer[len(REFERENCE_PREFIX):]
            return True

        self._state = ParserState.TENTATIVE
        return False

    def _resolve(self, token: str) -> str:
        url = self._references.get(token)
        if url is None:
            LOGGER.debug("Model cited unknown reference %s", token)
            return f"{UNKNOWN_REFERENCE_PREFIX}{token}"
        return url

    def _forward(self, text: str, forwarded: list[str]) -> None:
        if not text:
            return
        self._parts.append(text)
        forwarded.append(text)
        if self._on_delta is not None:
            self._on_delta(text)


def _partial_candidate_length(buffer: str) -> int:
    for size in range(len(_CANDIDATE) - 1, 0, -1):
        if buffer.endswith(_CANDIDATE[:size]):
            return size
    return 0


__all__ = ["DeltaCallback", "ParserState", "ReferenceStreamParser"]
