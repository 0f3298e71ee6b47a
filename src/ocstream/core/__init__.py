"""Core protocols shared across layers."""

from .protocols import EventTransport, KeyValueStore, TransportFactory

__all__ = [
    "EventTransport",
    "KeyValueStore",
    "TransportFactory",
]
