"""
Connection state types for the live event stream.

The state machine in connection.py is the only place that moves between
these states; everything else reads them.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class ConnectionState(str, Enum):
    """Lifecycle of the single live stream transport."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    FAILED = "failed"


class ConnectionErrorKind(str, Enum):
    """Transport failure taxonomy surfaced to callers."""

    NETWORK = "network"
    TIMEOUT = "timeout"
    SERVER_UNREACHABLE = "server_unreachable"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class ConnectionErrorInfo:
    """Error details passed to on_error callbacks."""

    kind: ConnectionErrorKind
    message: str
    retry_count: int = 0
    max_retries: int = 10


@dataclass
class ConnectionConfig:
    """Configuration for the connection state machine."""

    heartbeat_interval_seconds: float = 30.0
    max_missed_heartbeats: int = 3  # Consecutive misses before FAILED
    max_retries: int = 10
    base_retry_delay_seconds: float = 1.0
    max_retry_delay_seconds: float = 30.0
