"""
ocstream Runtime Layer - Session synchronization.

Components:
    SessionOrchestrator: Wires connection, classifier, store and history
    classify_message: Raw event -> ClassifiedMessage taxonomy
    MessageStore: Streamed part accumulation per message id
    HistoricalLoader: Paginated history with cursor and buffer
    EventList: Visible event list plus debugging channels
"""

from .classifier import (
    classify_message,
    extract_message_part,
    extract_session_id,
    group_all_messages,
    group_unclassified_messages,
    project_display_name,
)
from .event_list import EventList
from .history import HistoricalLoader, load_historical_messages, normalize_history_item
from .ids import MessageIdGenerator
from .message_store import MessageStore
from .orchestrator import SessionOrchestrator
from .types import (
    ClassifiedMessage,
    DeepLinkRequest,
    HistoryPage,
    MessagePart,
    MessageRecord,
    SyncConfig,
)

__all__ = [
    # Core
    "SessionOrchestrator",
    "HistoricalLoader",
    "MessageStore",
    "EventList",
    "MessageIdGenerator",
    # Classification
    "classify_message",
    "extract_message_part",
    "extract_session_id",
    "group_all_messages",
    "group_unclassified_messages",
    "project_display_name",
    # History
    "load_historical_messages",
    "normalize_history_item",
    # Types
    "ClassifiedMessage",
    "DeepLinkRequest",
    "HistoryPage",
    "MessagePart",
    "MessageRecord",
    "SyncConfig",
]
