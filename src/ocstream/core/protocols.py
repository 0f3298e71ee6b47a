"""Collaborator protocols for the synchronization engine."""

from __future__ import annotations

from typing import Any, Callable, Protocol, runtime_checkable


@runtime_checkable
class EventTransport(Protocol):
    """
    One live push-stream handle, EventSource style.

    Implementations: EventStreamClient (default), FakeEventSource (testing)
    """

    url: str
    on_open: Callable[[], None] | None
    on_message: Callable[[str], None] | None
    on_error: Callable[[Exception], None] | None

    @property
    def is_open(self) -> bool:
        """Whether the stream is currently delivering frames."""
        ...

    async def open(self) -> None:
        """Start the stream. Open/error are reported via callbacks."""
        ...

    async def close(self) -> None:
        """Stop the stream and release its resources."""
        ...


# Builds a transport for a stream URL
TransportFactory = Callable[[str], EventTransport]


@runtime_checkable
class KeyValueStore(Protocol):
    """
    Persistent key-value collaborator.

    Holds lastConnectedUrl, lastSelectedProject, lastSelectedSession and
    lastSelectedModel. Persistence mechanics are up to the implementation.
    """

    async def get(self, key: str) -> Any:
        """Return the stored value or None."""
        ...

    async def set(self, key: str, value: Any) -> None:
        """Store a JSON-compatible value."""
        ...
