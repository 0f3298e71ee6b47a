"""Fake event stream transports for unit testing code built on the engine."""

from __future__ import annotations

import json
from typing import Any, Callable

from ocstream.client.streaming import GlobalEvent


class FakeEventSource:
    """
    Fake implementation of EventTransport for testing.

    Nothing happens on its own except the optional open signal; tests drive
    the stream with emit_open / emit_message / emit_error.

    Example:
        factory = FakeTransportFactory()
        connection = ConnectionStateMachine(transport_factory=factory,
                                            health_check=always_healthy)
        await connection.connect("http://server")
        factory.latest.emit_message(make_global_event("session.status", {...}))
    """

    def __init__(self, url: str, auto_open: bool = True, fail_with: Exception | None = None):
        self.url = url
        self.auto_open = auto_open
        self.fail_with = fail_with
        self.opened = False
        self.closed = False
        self._is_open = False

        self.on_open: Callable[[], None] | None = None
        self.on_message: Callable[[str], None] | None = None
        self.on_error: Callable[[Exception], None] | None = None

    @property
    def is_open(self) -> bool:
        return self._is_open

    async def open(self) -> None:
        self.opened = True
        if self.fail_with is not None:
            self.emit_error(self.fail_with)
        elif self.auto_open:
            self.emit_open()

    async def close(self) -> None:
        self.closed = True
        self._is_open = False

    def emit_open(self) -> None:
        self._is_open = True
        if self.on_open:
            self.on_open()

    def emit_message(self, data: str | dict[str, Any] | list[Any]) -> None:
        if not isinstance(data, str):
            data = json.dumps(data)
        if self.on_message:
            self.on_message(data)

    def emit_error(self, error: Exception) -> None:
        self._is_open = False
        if self.on_error:
            self.on_error(error)


class FakeTransportFactory:
    """
    TransportFactory that records every FakeEventSource it builds.

    fail_first makes the first N sources fail on open with fail_with.
    """

    def __init__(
        self,
        auto_open: bool = True,
        fail_first: int = 0,
        fail_with: Exception | None = None,
    ):
        self.auto_open = auto_open
        self.fail_first = fail_first
        self.fail_with = fail_with or ConnectionError("connection refused")
        self.sources: list[FakeEventSource] = []

    def __call__(self, url: str) -> FakeEventSource:
        failing = len(self.sources) < self.fail_first
        source = FakeEventSource(
            url,
            auto_open=self.auto_open,
            fail_with=self.fail_with if failing else None,
        )
        self.sources.append(source)
        return source

    @property
    def latest(self) -> FakeEventSource | None:
        return self.sources[-1] if self.sources else None

    @property
    def open_count(self) -> int:
        return sum(1 for source in self.sources if source.opened)


def make_global_event(
    event_type: str,
    properties: dict[str, Any] | None = None,
    **extra: Any,
) -> dict[str, Any]:
    """Build a /global/event frame dict: {payload: {type, properties}, ...}."""
    event = {"payload": {"type": event_type, "properties": properties or {}}, **extra}
    GlobalEvent.model_validate(event)
    return event
