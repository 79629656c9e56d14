"""Event bus used for page navigation notifications.

Components subscribe to event types and are invoked in registration order.
A handler that raises is logged and skipped; the remaining handlers still run.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Callable, DefaultDict, Generic, TypeVar
from weakref import WeakMethod

logger = logging.getLogger(__name__)

E = TypeVar("E", bound="Event")

Handler = Callable[[E], None]


@dataclass(slots=True)
class Event:
    """Base class for all events published on an :class:`EventBus`."""


@dataclass(slots=True)
class BaseDomainChanged(Event):
    """Emitted after a refresh lands on a page with a different base domain.

    Attributes:
        new_domain: Base domain of the page now being viewed.
        old_domain: Base domain of the previous page, ``None`` on first load.
    """

    new_domain: str
    old_domain: str | None


@dataclass(slots=True)
class UrlChanged(Event):
    """Emitted after a refresh records a URL different from the previous snapshot.

    Attributes:
        new_url: The URL now tracked.
        old_url: The previously tracked URL, ``None`` on first load.
    """

    new_url: str
    old_url: str | None


class EventBus(Generic[E]):
    """A typed publish-subscribe event bus.

    Bound methods are held through :class:`weakref.WeakMethod` so a subscriber
    that goes away is dropped automatically; plain functions and lambdas are
    held strongly.

    Not thread-safe: use from the event loop thread only.
    """

    __slots__ = ("_handlers",)

    def __init__(self) -> None:
        self._handlers: DefaultDict[type[Event], list[_HandlerRef]] = defaultdict(list)

    def subscribe(self, event_type: type[E], handler: Handler[E]) -> Callable[[], None]:
        """Register ``handler`` for ``event_type`` and return a callable that removes it."""

        self._handlers[event_type].append(_HandlerRef.create(handler))
        logger.debug("Subscribed handler %s to event type %s", _handler_name(handler), event_type.__name__)

        def _unsubscribe() -> None:
            self.unsubscribe(event_type, handler)

        return _unsubscribe

    def unsubscribe(self, event_type: type[E], handler: Handler[E]) -> None:
        """Remove the first registration of ``handler``; unknown handlers are ignored."""

        handlers = self._handlers.get(event_type)
        if handlers is None:
            return
        for index, handler_ref in enumerate(handlers):
            if handler_ref.matches(handler):
                handlers.pop(index)
                logger.debug(
                    "Unsubscribed handler %s from event type %s",
                    _handler_name(handler),
                    event_type.__name__,
                )
                return

    def publish(self, event: E) -> None:
        """Invoke every handler registered for the event's type, isolating failures."""

        event_type = type(event)
        handlers = self._handlers.get(event_type)
        if not handlers:
            logger.debug("No handlers for event type %s", event_type.__name__)
            return

        logger.debug("Publishing %s to %d handler(s)", event_type.__name__, len(handlers))
        dead: list[_HandlerRef] = []
        for handler_ref in list(handlers):
            handler = handler_ref.resolve()
            if handler is None:
                dead.append(handler_ref)
                continue
            try:
                handler(event)
            except Exception:
                logger.exception(
                    "Handler %s raised exception for event %s",
                    _handler_name(handler),
                    event_type.__name__,
                )
        for handler_ref in dead:
            if handler_ref in handlers:
                handlers.remove(handler_ref)

    def clear(self) -> None:
        self._handlers.clear()

    def handler_count(self, event_type: type[E] | None = None) -> int:
        if event_type is not None:
            return len(self._handlers.get(event_type, []))
        return sum(len(handlers) for handlers in self._handlers.values())


class _HandlerRef:
    """Weak reference for bound methods, strong reference for everything else."""

    __slots__ = ("_ref", "_is_weak")

    def __init__(self, handler_ref: WeakMethod | Handler, is_weak: bool) -> None:
        self._ref = handler_ref
        self._is_weak = is_weak

    @classmethod
    def create(cls, handler: Handler) -> _HandlerRef:
        if hasattr(handler, "__self__") and hasattr(handler, "__func__"):
            try:
                return cls(WeakMethod(handler), is_weak=True)
            except TypeError:
                pass
        return cls(handler, is_weak=False)

    def resolve(self) -> Handler | None:
        if not self._is_weak:
            return self._ref  # type: ignore[return-value]
        return self._ref()  # type: ignore[operator]

    def matches(self, handler: Handler) -> bool:
        resolved = self.resolve()
        return resolved is not None and resolved == handler


def _handler_name(handler: Handler) -> str:
    if hasattr(handler, "__self__") and hasattr(handler, "__func__"):
        return f"{type(handler.__self__).__name__}.{handler.__func__.__name__}"
    if hasattr(handler, "__name__"):
        return handler.__name__
    return repr(handler)


__all__ = [
    "Event",
    "EventBus",
    "Handler",
    "BaseDomainChanged",
    "UrlChanged",
]
