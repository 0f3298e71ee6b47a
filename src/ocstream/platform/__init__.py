"""
ocstream Platform Layer - Live connection to an OpenCode server.

Components:
    ConnectionStateMachine: Stream lifecycle, heartbeat and reconnect backoff
    ConnectionState: Connection lifecycle states
    ConnectionErrorInfo: Error details surfaced via on_error
    ReconnectBackoff: Retry counter and delay policy
"""

from .backoff import ReconnectBackoff
from .connection import ConnectionStateMachine, classify_transport_error
from .event import (
    ConnectionConfig,
    ConnectionErrorInfo,
    ConnectionErrorKind,
    ConnectionState,
)

__all__ = [
    "ConnectionStateMachine",
    "ConnectionState",
    "ConnectionErrorKind",
    "ConnectionErrorInfo",
    "ConnectionConfig",
    "ReconnectBackoff",
    "classify_transport_error",
]
