"""
MessageStore - per-message accumulator for streamed parts.

Streamed parts arrive keyed by message id. A part carries either the
cumulative text so far (text) or an append-only increment (delta). The store
merges them and assembles the final message text on demand.
"""

from __future__ import annotations

import logging
import math
from typing import Any, Iterator

from .types import MessagePart, MessageRecord

logger = logging.getLogger(__name__)


class MessageStore:
    """
    Keyed map message_id -> MessageRecord.

    Example:
        store = MessageStore()
        store.add_part("msg_1", MessagePart(part_id="p1", delta="Hel"))
        store.add_part("msg_1", MessagePart(part_id="p1", delta="lo"))
        store.assemble_message_text("msg_1")  # "Hello"
    """

    def __init__(self):
        self._records: dict[str, MessageRecord] = {}
        self._arrival = 0

    def __contains__(self, message_id: object) -> bool:
        return message_id in self._records

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[str]:
        return iter(self._records)

    def get(self, message_id: str) -> MessageRecord | None:
        return self._records.get(message_id)

    def _record(self, message_id: str) -> MessageRecord:
        record = self._records.get(message_id)
        if record is None:
            record = MessageRecord(message_id=message_id)
            self._records[message_id] = record
        return record

    def add_part(
        self,
        message_id: str,
        part: MessagePart,
        role: str | None = None,
        session_id: str | None = None,
    ) -> MessageRecord:
        """
        Insert or merge a part.

        Parts with the same part_id merge: text replaces the accumulated text,
        delta appends to the accumulated deltas. Parts without an id are
        keyed by arrival.
        """
        record = self._record(message_id)
        self._arrival += 1
        key = part.part_id or f"{message_id}:{self._arrival}"

        existing = record.parts.get(key)
        if existing is None:
            record.parts[key] = MessagePart(
                part_id=key,
                part_type=part.part_type,
                text=part.text,
                delta=part.delta,
                sequence=part.sequence,
            )
            record.arrival[key] = self._arrival
        else:
            if part.text is not None:
                existing.text = part.text
            if part.delta:
                existing.delta = (existing.delta or "") + part.delta
            if part.sequence is not None:
                existing.sequence = part.sequence
            existing.part_type = part.part_type or existing.part_type

        if role and not record.role:
            record.role = role
        if session_id and not record.session_id:
            record.session_id = session_id
        return record

    def finalize_message(
        self,
        message_id: str,
        role: str | None = None,
        text: str | None = None,
        raw_data: Any = None,
        session_id: str | None = None,
    ) -> MessageRecord:
        """Merge authoritative fields from a terminal event and mark final."""
        record = self._record(message_id)
        if record.finalized:
            logger.debug(f"Message {message_id} finalized again; merging fields")
        if role:
            record.role = role
        if text:
            record.text = text
        if raw_data is not None:
            record.raw_data = raw_data
        if session_id:
            record.session_id = session_id
        record.finalized = True
        return record

    def assemble_message_text(self, message_id: str) -> str:
        """
        Concatenate text parts in sequence order (arrival order as fallback).

        If any part supplies cumulative text the texts are joined with a
        newline; otherwise the deltas concatenate. Unknown ids give "".
        """
        record = self._records.get(message_id)
        if record is None:
            return ""

        ordered = sorted(
            (
                (key, part)
                for key, part in record.parts.items()
                if part.part_type == "text"
            ),
            key=lambda item: (
                item[1].sequence if item[1].sequence is not None else math.inf,
                record.arrival.get(item[0], 0),
            ),
        )
        parts = [part for _, part in ordered]

        if any(part.text for part in parts):
            return "\n".join(part.text for part in parts if part.text)
        return "".join(part.delta or "" for part in parts)

    def clear_store(self) -> None:
        logger.debug(f"Clearing message store ({len(self._records)} records)")
        self._records.clear()
        self._arrival = 0
