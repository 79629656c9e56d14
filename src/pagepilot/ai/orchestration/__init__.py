"""Request composition, citation resolution and turn execution."""

from .references import ReferenceMap
from .request_composer import ComposedRequest, RequestComposer
from .stream_parser import ParserState, ReferenceStreamParser
from .turn_runner import TurnRunner

__all__ = [
    "ComposedRequest",
    "ParserState",
    "ReferenceMap",
    "ReferenceStreamParser",
    "RequestComposer",
    "TurnRunner",
]
