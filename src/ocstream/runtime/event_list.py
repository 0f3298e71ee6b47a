"""
EventList - the ordered, visible conversation plus debugging channels.

Visible events (categories message and sent) are kept in display order.
Every classified event, visible or not, is also recorded on the debug
channels exposed as all_messages / unclassified_messages.
"""

from __future__ import annotations

import logging
from typing import Iterable, Iterator

from .classifier import group_all_messages, group_unclassified_messages
from .types import CATEGORY_UNCLASSIFIED, ClassifiedMessage

logger = logging.getLogger(__name__)


class EventList:
    """Ordered visible events keyed by id, with message_id lookups."""

    def __init__(self):
        self._events: list[ClassifiedMessage] = []
        self.all_messages: list[ClassifiedMessage] = []
        self.unclassified_messages: list[ClassifiedMessage] = []

    def __len__(self) -> int:
        return len(self._events)

    def __iter__(self) -> Iterator[ClassifiedMessage]:
        return iter(self._events)

    @property
    def events(self) -> list[ClassifiedMessage]:
        """Snapshot of the visible events in display order."""
        return list(self._events)

    @property
    def grouped_unclassified_messages(self) -> dict[str, list[ClassifiedMessage]]:
        return group_unclassified_messages(self.unclassified_messages)

    @property
    def grouped_all_messages(self) -> dict[str, dict[str, list[ClassifiedMessage]]]:
        return group_all_messages(self.all_messages)

    @property
    def message_ids(self) -> set[str]:
        return {event.message_id for event in self._events if event.message_id}

    @property
    def last_received_message_id(self) -> str | None:
        """Server id of the newest visible event, skipping local-only ones."""
        for event in reversed(self._events):
            if event.message_id:
                return event.message_id
        return None

    @property
    def oldest_message_id(self) -> str | None:
        for event in self._events:
            if event.message_id:
                return event.message_id
        return None

    def contains_message_id(self, message_id: str | None) -> bool:
        if not message_id:
            return False
        return any(event.message_id == message_id for event in self._events)

    def find_by_message_id(self, message_id: str) -> ClassifiedMessage | None:
        for event in self._events:
            if event.message_id == message_id:
                return event
        return None

    # --- Debug channels ---

    def record(self, message: ClassifiedMessage) -> None:
        """Track a classified event on the debug channels."""
        self.all_messages.append(message)
        if message.category == CATEGORY_UNCLASSIFIED:
            self.unclassified_messages.append(message)

    def record_many(self, messages: Iterable[ClassifiedMessage]) -> None:
        for message in messages:
            self.record(message)

    def clear_debug(self) -> None:
        self.all_messages = []
        self.unclassified_messages = []

    # --- Visible list mutations ---

    def add_event(self, event: ClassifiedMessage) -> None:
        if not event.is_visible:
            logger.debug(f"Not adding non-visible event {event.type} to event list")
            return
        self._events.append(event)

    def upsert_event(self, event: ClassifiedMessage) -> bool:
        """
        Replace the event with the same message_id, or append.

        Returns True when an existing event was updated in place.
        """
        if event.message_id:
            for index, existing in enumerate(self._events):
                if existing.message_id == event.message_id:
                    event.id = existing.id or event.id
                    self._events[index] = event
                    return True
        self.add_event(event)
        return False

    def remove_event(self, event_id: str) -> ClassifiedMessage | None:
        for index, event in enumerate(self._events):
            if event.id == event_id:
                return self._events.pop(index)
        return None

    def prepend_events(self, events: Iterable[ClassifiedMessage]) -> int:
        """Insert older events before the current ones, skipping known ids."""
        known = self.message_ids
        fresh = [
            event
            for event in events
            if event.is_visible and not (event.message_id and event.message_id in known)
        ]
        self._events[:0] = fresh
        return len(fresh)

    def extend_events(self, events: Iterable[ClassifiedMessage]) -> int:
        """Append newer events, skipping known ids."""
        added = 0
        for event in events:
            if event.message_id and self.contains_message_id(event.message_id):
                continue
            if event.is_visible:
                self._events.append(event)
                added += 1
        return added

    def splice_history(self, history: Iterable[ClassifiedMessage]) -> None:
        """
        Replace the list with a history page followed by live events that
        arrived while it loaded and are not part of it.
        """
        page = [event for event in history if event.is_visible]
        page_ids = {event.message_id for event in page if event.message_id}
        live = [
            event
            for event in self._events
            if not (event.message_id and event.message_id in page_ids)
        ]
        self._events = page + live

    def clear_events(self) -> None:
        self._events = []
        self.clear_debug()
