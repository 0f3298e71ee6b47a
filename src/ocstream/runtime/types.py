"""
Runtime types for the session synchronization engine.

Data structures shared by the classifier, message store, history loader
and orchestrator.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


# Categories
CATEGORY_MESSAGE = "message"
CATEGORY_INTERNAL = "internal"
CATEGORY_UNCLASSIFIED = "unclassified"
CATEGORY_SENT = "sent"

# Types
TYPE_SESSION_STATUS = "session_status"
TYPE_MESSAGE_FINALIZED = "message_finalized"
TYPE_MESSAGE_UPDATE_INCOMPLETE = "message_update_incomplete"
TYPE_TODO_UPDATED = "todo_updated"
TYPE_SENT = "sent"
TYPE_UNCLASSIFIED = "unclassified"

# Categories rendered in the visible event list
VISIBLE_CATEGORIES = frozenset({CATEGORY_MESSAGE, CATEGORY_SENT})


@dataclass
class ClassifiedMessage:
    """
    A raw event mapped onto the message taxonomy.

    id is the event list identity. The classifier leaves it unset; the
    orchestrator assigns message_id or a locally generated id.
    """

    type: str
    category: str
    id: str | None = None
    message_id: str | None = None
    session_id: str | None = None
    role: str | None = None
    message: str | None = None
    display_message: str | None = None
    project_name: str = "Unknown Project"
    payload_type: str = "unknown"
    mode: str = "build"
    timestamp: int | None = None
    raw_data: Any = None
    session_status: str | None = None
    todos: list[dict[str, Any]] | None = None
    reasoning: str | None = None

    @property
    def is_visible(self) -> bool:
        return self.category in VISIBLE_CATEGORIES


@dataclass
class MessagePart:
    """One streamed fragment of a message."""

    part_id: str | None = None
    part_type: str = "text"
    text: str | None = None  # Cumulative content, replaces earlier text
    delta: str | None = None  # Append-only increment
    sequence: int | None = None


@dataclass
class MessageRecord:
    """Accumulated state for one message id."""

    message_id: str
    parts: dict[str, MessagePart] = field(default_factory=dict)
    arrival: dict[str, int] = field(default_factory=dict)
    role: str | None = None
    session_id: str | None = None
    finalized: bool = False
    text: str | None = None
    raw_data: Any = None


@dataclass
class DeepLinkRequest:
    """Request to open a specific session, possibly on another server."""

    server_url: str
    project_path: str
    session_id: str

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> DeepLinkRequest:
        """Build from a {serverUrl, projectPath, sessionId} payload."""
        server_url = payload.get("serverUrl") or payload.get("server_url")
        project_path = payload.get("projectPath") or payload.get("project_path")
        session_id = payload.get("sessionId") or payload.get("session_id")
        if not server_url or not project_path or not session_id:
            raise ValueError(
                "Deep link requires serverUrl, projectPath and sessionId"
            )
        return cls(
            server_url=str(server_url),
            project_path=str(project_path),
            session_id=str(session_id),
        )


@dataclass
class HistoryPage:
    """Result of one paginated history fetch."""

    events: list[ClassifiedMessage] = field(default_factory=list)
    unclassified_messages: list[ClassifiedMessage] = field(default_factory=list)
    grouped_unclassified: dict[str, list[ClassifiedMessage]] = field(default_factory=dict)
    grouped_all: dict[str, dict[str, list[ClassifiedMessage]]] = field(
        default_factory=lambda: {"classified": {}, "unclassified": {}}
    )
    oldest_message_id: str | None = None
    newest_message_id: str | None = None
    raw_count: int = 0  # Items the server returned before filtering
    error: str | None = None


@dataclass
class SyncConfig:
    """Configuration for history paging and session orchestration."""

    initial_load_limit: int = 20
    older_fetch_limit: int = 20  # Items requested per load-older fetch
    older_display_limit: int = 10  # Items spliced per load-older call
    catch_up_limit: int = 100
    settle_delay_seconds: float = 0.1  # Wait after connect before checking state
    default_mode: str = "build"
