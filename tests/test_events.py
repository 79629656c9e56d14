"""Unit tests for :mod:`pagepilot.core.events`."""

from __future__ import annotations

import gc
import logging
from dataclasses import dataclass

import pytest

from pagepilot.core.events import BaseDomainChanged, Event, EventBus, UrlChanged


@dataclass(slots=True)
class SampleEvent(Event):
    """A sample event for testing."""

    message: str


class _Listener:
    def __init__(self) -> None:
        self.received: list[SampleEvent] = []

    def on_event(self, event: SampleEvent) -> None:
        self.received.append(event)


class TestEventBusSubscription:
    def test_handlers_run_in_registration_order(self) -> None:
        bus: EventBus[Event] = EventBus()
        calls: list[str] = []
        bus.subscribe(SampleEvent, lambda event: calls.append("first"))
        bus.subscribe(SampleEvent, lambda event: calls.append("second"))

        bus.publish(SampleEvent("hello"))

        assert calls == ["first", "second"]

    def test_subscribe_returns_unsubscribe_callable(self) -> None:
        bus: EventBus[Event] = EventBus()
        received: list[SampleEvent] = []
        unsubscribe = bus.subscribe(SampleEvent, received.append)

        unsubscribe()
        bus.publish(SampleEvent("ignored"))

        assert received == []
        assert bus.handler_count(SampleEvent) == 0

    def test_unsubscribe_unknown_handler_is_ignored(self) -> None:
        bus: EventBus[Event] = EventBus()
        bus.unsubscribe(SampleEvent, lambda event: None)
        assert bus.handler_count() == 0

    def test_events_are_routed_by_type(self) -> None:
        bus: EventBus[Event] = EventBus()
        urls: list[UrlChanged] = []
        domains: list[BaseDomainChanged] = []
        bus.subscribe(UrlChanged, urls.append)
        bus.subscribe(BaseDomainChanged, domains.append)

        bus.publish(UrlChanged(new_url="https://b", old_url="https://a"))

        assert [event.new_url for event in urls] == ["https://b"]
        assert domains == []


class TestEventBusIsolation:
    def test_failing_handler_does_not_stop_others(self, caplog: pytest.LogCaptureFixture) -> None:
        bus: EventBus[Event] = EventBus()
        received: list[str] = []

        def broken(event: SampleEvent) -> None:
            raise RuntimeError("boom")

        bus.subscribe(SampleEvent, broken)
        bus.subscribe(SampleEvent, lambda event: received.append(event.message))

        with caplog.at_level(logging.ERROR, logger="pagepilot.core.events"):
            bus.publish(SampleEvent("still delivered"))

        assert received == ["still delivered"]
        assert "broken" in caplog.text


class TestEventBusWeakReferences:
    def test_bound_method_is_dropped_with_its_owner(self) -> None:
        bus: EventBus[Event] = EventBus()
        listener = _Listener()
        bus.subscribe(SampleEvent, listener.on_event)
        bus.publish(SampleEvent("one"))
        assert len(listener.received) == 1

        del listener
        gc.collect()
        bus.publish(SampleEvent("two"))

        assert bus.handler_count(SampleEvent) == 0

    def test_bound_method_can_be_unsubscribed(self) -> None:
        bus: EventBus[Event] = EventBus()
        listener = _Listener()
        bus.subscribe(SampleEvent, listener.on_event)

        bus.unsubscribe(SampleEvent, listener.on_event)

        assert bus.handler_count(SampleEvent) == 0

    def test_clear_removes_everything(self) -> None:
        bus: EventBus[Event] = EventBus()
        bus.subscribe(SampleEvent, lambda event: None)
        bus.subscribe(UrlChanged, lambda event: None)

        bus.clear()

        assert bus.handler_count() == 0
