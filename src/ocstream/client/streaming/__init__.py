"""OpenCode event stream SDK.

This module provides Server-Sent-Events based real-time delivery from an
OpenCode server's /global/event endpoint.

Usage:
    from ocstream.client.streaming import EventStreamClient
"""

from ocstream.client.streaming.client import (
    EventStreamClient,
    EventStreamClosed,
    EventPayload,
    GlobalEvent,
    MessagePartPayload,
    parse_frame,
)

__all__ = [
    "EventStreamClient",
    "EventStreamClosed",
    "EventPayload",
    "GlobalEvent",
    "MessagePartPayload",
    "parse_frame",
]
