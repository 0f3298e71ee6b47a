"""
ocstream - Live session synchronization for OpenCode servers.

Platform Layer:
    ConnectionStateMachine: Event stream lifecycle, heartbeat and backoff
    ConnectionState: Connection lifecycle states

Runtime Layer:
    SessionOrchestrator: Selection, live routing, history and sends
    HistoricalLoader: Paginated history with de-duplication
    MessageStore: Streamed part assembly
    classify_message: Message taxonomy

Clients:
    AsyncRestClient: OpenCode REST API
    EventStreamClient: /global/event SSE transport

Example:
    from ocstream import SessionOrchestrator, YamlFileStore

    orchestrator = SessionOrchestrator(storage=YamlFileStore("state.yaml"))
    await orchestrator.connect("http://localhost:4096", auto_select=True)
    await orchestrator.send_message("Summarize the open todos")
"""

# Clients
from .client.rest import AsyncRestClient, FetchError
from .client.streaming import EventStreamClient

# Platform layer
from .platform import (
    ConnectionConfig,
    ConnectionErrorInfo,
    ConnectionErrorKind,
    ConnectionState,
    ConnectionStateMachine,
)

# Runtime layer
from .runtime import (
    ClassifiedMessage,
    DeepLinkRequest,
    EventList,
    HistoricalLoader,
    MessageStore,
    SessionOrchestrator,
    SyncConfig,
    classify_message,
)

# Storage
from .storage import MemoryStore, YamlFileStore

__all__ = [
    # Clients
    "AsyncRestClient",
    "FetchError",
    "EventStreamClient",
    # Platform
    "ConnectionStateMachine",
    "ConnectionState",
    "ConnectionErrorKind",
    "ConnectionErrorInfo",
    "ConnectionConfig",
    # Runtime
    "SessionOrchestrator",
    "HistoricalLoader",
    "MessageStore",
    "EventList",
    "ClassifiedMessage",
    "DeepLinkRequest",
    "SyncConfig",
    "classify_message",
    # Storage
    "MemoryStore",
    "YamlFileStore",
]

__version__ = "0.0.1"
