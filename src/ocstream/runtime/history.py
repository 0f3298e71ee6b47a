"""
Historical message loading.

Fetches pages from GET /session/{id}/message, normalizes the shapes the
server returns, classifies each item as a message.loaded event and
de-duplicates by message id.

HistoricalLoader adds paging state on top: the oldest-loaded cursor and a
buffer of fetched-but-not-yet-displayed older messages.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable

from ocstream.client.rest import AsyncRestClient, FetchError, Project

from .classifier import classify_message, group_all_messages, group_unclassified_messages
from .types import CATEGORY_UNCLASSIFIED, ClassifiedMessage, HistoryPage, SyncConfig

logger = logging.getLogger(__name__)

STRUCTURE_LOADED = "loaded"
STRUCTURE_FLAT = "flat"
STRUCTURE_MINIMAL = "minimal"
STRUCTURE_UNKNOWN = "unknown"


def _present(value: Any) -> bool:
    """Objects and arrays count as present even when empty."""
    return isinstance(value, (dict, list)) or bool(value)


def detect_structure(raw: dict[str, Any]) -> str:
    """Classify the shape of one history item."""
    properties = raw.get("properties") if isinstance(raw.get("properties"), dict) else {}
    if _present(raw.get("info")) and (_present(raw.get("parts")) or _present(properties.get("parts"))):
        return STRUCTURE_LOADED
    if _present(properties.get("info")) or _present(raw.get("info")):
        return STRUCTURE_FLAT
    if raw.get("messageId") or raw.get("id") or raw.get("type"):
        return STRUCTURE_MINIMAL
    return STRUCTURE_UNKNOWN


def _part_text(part: Any) -> str | None:
    if not isinstance(part, dict):
        return None
    value = part.get("content") or part.get("text")
    return value if isinstance(value, str) and value else None


def extract_history_text(parts: list[Any], raw: dict[str, Any]) -> str | None:
    """
    Best-effort text for a history item.

    Tries text/output parts, then any part with content, then the message
    field, info.summary.body, info.message and finally nested parts.parts.
    """
    if parts:
        primary = [
            _part_text(part)
            for part in parts
            if isinstance(part, dict) and part.get("type") in ("text", "output")
        ]
        primary = [text for text in primary if text]
        if primary:
            return "\n".join(primary)

        fallback = [text for text in (_part_text(part) for part in parts) if text]
        if fallback:
            return "\n".join(fallback)

    message = raw.get("message")
    if isinstance(message, str) and message:
        return message

    info = raw.get("info") if isinstance(raw.get("info"), dict) else {}
    summary = info.get("summary")
    if isinstance(summary, dict) and summary.get("body"):
        return summary["body"]

    if isinstance(info.get("message"), str) and info["message"]:
        return info["message"]

    nested = raw.get("parts")
    if isinstance(nested, dict) and isinstance(nested.get("parts"), list):
        texts = [text for text in (_part_text(part) for part in nested["parts"]) if text]
        if texts:
            return "\n".join(texts)

    return None


def _infer_role(raw: dict[str, Any], info: dict[str, Any], parts: list[Any]) -> str | None:
    role = info.get("role") or raw.get("role")
    if role:
        return role

    raw_type = str(raw.get("type") or "").lower()
    if raw_type in ("user", "sent", "message.created"):
        return "user"
    if raw_type in ("system", "system_message"):
        return "system"

    part_types = {part.get("type") for part in parts if isinstance(part, dict)}
    if "reasoning" in part_types or "output" in part_types:
        return "assistant"
    return None


def normalize_history_item(raw: Any, session_id: str | None = None) -> dict[str, Any] | None:
    """
    Normalize one history item into a flat dict.

    Returns None for items that are not objects or have no recognizable
    structure.
    """
    if not isinstance(raw, dict):
        logger.warning("Skipping invalid history item (not an object)")
        return None

    structure = detect_structure(raw)
    if structure == STRUCTURE_UNKNOWN:
        logger.warning(f"Skipping history item with unknown structure: keys={list(raw)[:20]}")
        return None

    properties = raw.get("properties") if isinstance(raw.get("properties"), dict) else {}
    info = raw.get("info") or properties.get("info") or {}
    if not isinstance(info, dict):
        info = {}
    parts = raw.get("parts") if isinstance(raw.get("parts"), list) else properties.get("parts")
    if not isinstance(parts, list):
        parts = []

    reasoning = next(
        (_part_text(part) for part in parts if isinstance(part, dict) and part.get("type") == "reasoning"),
        None,
    )

    return {
        "structure": structure,
        "message_id": raw.get("messageId") or raw.get("id") or info.get("id"),
        "session_id": raw.get("sessionId") or raw.get("session_id") or info.get("sessionID") or session_id,
        "role": _infer_role(raw, info, parts),
        "mode": info.get("mode") or raw.get("mode") or "build",
        "agent": info.get("agent") or raw.get("agent"),
        "info": info,
        "parts": [
            {"type": part.get("type"), "text": _part_text(part)}
            for part in parts
            if isinstance(part, dict)
        ],
        "text": extract_history_text(parts, {**raw, "info": info}),
        "reasoning": reasoning,
        "raw": raw,
    }


def _project_label(project: Project | dict[str, Any] | None) -> str | None:
    if project is None:
        return None
    if isinstance(project, dict):
        return project.get("name") or project.get("worktree") or project.get("directory")
    return project.name or project.path


def classify_history_item(
    normalized: dict[str, Any],
    project: Project | dict[str, Any] | None = None,
) -> ClassifiedMessage:
    """Classify a normalized item as a message.loaded event."""
    info = {
        **normalized["info"],
        "id": normalized["message_id"],
        "role": normalized["role"],
        "sessionID": normalized["session_id"],
    }
    event = {
        "payload": {
            "type": "message.loaded",
            "properties": {"info": info, "parts": normalized["parts"]},
        },
        "session_id": normalized["session_id"],
        "info": {"mode": normalized["mode"]},
    }
    label = _project_label(project)
    if label:
        event["projectName"] = label

    # Mode comes from the item itself, not the live selection
    classified = classify_message(event, current_mode=None)
    classified.raw_data = normalized["raw"]
    classified.id = classified.message_id
    if not classified.message and normalized["text"]:
        classified.message = normalized["text"]
    if normalized["reasoning"]:
        classified.reasoning = normalized["reasoning"]
    return classified


async def load_historical_messages(
    rest: AsyncRestClient,
    session_id: str,
    project: Project | dict[str, Any] | None = None,
    limit: int = 20,
    before: str | None = None,
    after: str | None = None,
) -> HistoryPage:
    """
    Fetch and classify one page of history.

    Never raises for fetch failures: the page comes back empty with error set.
    """
    if not session_id:
        logger.warning("load_historical_messages called without a session id")
        return HistoryPage()

    logger.debug(f"Loading history for {session_id} (limit={limit}, before={before}, after={after})")
    try:
        data = await rest.get_session_messages(
            session_id, project=project, limit=limit, before=before, after=after
        )
    except FetchError as e:
        logger.warning(f"Failed to load history for {session_id}: {e}")
        return HistoryPage(error=str(e))

    if not isinstance(data, list):
        logger.warning(f"History response for {session_id} is not a list")
        return HistoryPage()

    seen: set[str] = set()
    events: list[ClassifiedMessage] = []
    for raw in data:
        try:
            normalized = normalize_history_item(raw, session_id=session_id)
            if normalized is None:
                continue
            classified = classify_history_item(normalized, project)
        except Exception as e:
            logger.warning(f"Skipping malformed history item: {e}")
            continue

        if not classified.session_id:
            classified.session_id = session_id
        if classified.message_id:
            if classified.message_id in seen:
                logger.debug(f"Skipping duplicate history message {classified.message_id}")
                continue
            seen.add(classified.message_id)
        events.append(classified)

    unclassified = [event for event in events if event.category == CATEGORY_UNCLASSIFIED]
    ids = [event.message_id for event in events if event.message_id]
    logger.debug(f"Loaded {len(events)} history events for {session_id}")
    return HistoryPage(
        events=events,
        unclassified_messages=unclassified,
        grouped_unclassified=group_unclassified_messages(unclassified),
        grouped_all=group_all_messages(events),
        oldest_message_id=ids[0] if ids else None,
        newest_message_id=ids[-1] if ids else None,
        raw_count=len(data),
    )


class HistoricalLoader:
    """
    Paginated history for one connected server.

    Pages are in server order (oldest first). load_older_messages() fetches
    older_fetch_limit items before the cursor, returns the older_display_limit
    items nearest the visible list and buffers the rest; the next call is
    served from the buffer without a network request.

    Example:
        loader = HistoricalLoader(rest)
        page = await loader.load_messages("ses_1", project)
        older = await loader.load_older_messages("ses_1", project, existing_ids)
    """

    def __init__(self, rest: AsyncRestClient, config: SyncConfig | None = None):
        self.rest = rest
        self.config = config or SyncConfig()
        self.oldest_loaded_message_id: str | None = None
        self.has_older_messages = True
        self.is_loading_older = False
        self._buffer: list[ClassifiedMessage] = []
        # Bumped by reset(); responses from an older generation are dropped
        self._generation = 0
        self._session_id: str | None = None

    @property
    def has_buffered_messages(self) -> bool:
        return bool(self._buffer)

    @property
    def buffered_count(self) -> int:
        return len(self._buffer)

    def reset(self) -> None:
        self._generation += 1
        self._session_id = None
        self.oldest_loaded_message_id = None
        self.has_older_messages = True
        self.is_loading_older = False
        self._buffer = []

    async def load_messages(
        self, session_id: str, project: Project | dict[str, Any] | None = None
    ) -> HistoryPage:
        """Load the initial page for a session, resetting paging state."""
        self.reset()
        self._session_id = session_id
        generation = self._generation
        limit = self.config.initial_load_limit
        page = await load_historical_messages(self.rest, session_id, project, limit=limit)
        if generation != self._generation:
            logger.debug(f"Discarding paging state for superseded load of {session_id}")
        elif page.error is None:
            self.oldest_loaded_message_id = page.oldest_message_id
            self.has_older_messages = page.raw_count >= limit
        return page

    async def load_older_messages(
        self,
        session_id: str,
        project: Project | dict[str, Any] | None = None,
        existing_ids: Iterable[str] = (),
    ) -> list[ClassifiedMessage]:
        """
        Return the next batch of older messages to prepend.

        Never returns an id in existing_ids. Returns [] when nothing older
        is available or the fetch failed.
        """
        existing = set(existing_ids)
        if self._session_id != session_id:
            logger.debug(f"No paging state for session {session_id}")
            return []

        if self._buffer:
            return self._take_from_buffer(existing)

        if self.is_loading_older:
            logger.debug("Older messages already loading")
            return []
        if not self.has_older_messages or not self.oldest_loaded_message_id:
            return []

        fetch_limit = self.config.older_fetch_limit
        generation = self._generation
        self.is_loading_older = True
        try:
            page = await load_historical_messages(
                self.rest,
                session_id,
                project,
                limit=fetch_limit,
                before=self.oldest_loaded_message_id,
            )
        finally:
            if generation == self._generation:
                self.is_loading_older = False

        if generation != self._generation:
            logger.debug(f"Discarding older messages for superseded session {session_id}")
            return []
        if page.error is not None:
            return []
        if page.raw_count < fetch_limit:
            self.has_older_messages = False

        fresh = [
            event
            for event in page.events
            if not (event.message_id and event.message_id in existing)
        ]
        if not fresh:
            # Everything was already visible; step past the page
            if page.oldest_message_id:
                self.oldest_loaded_message_id = page.oldest_message_id
            return []

        self._buffer = fresh
        return self._take_from_buffer(existing)

    def _take_from_buffer(self, existing: set[str]) -> list[ClassifiedMessage]:
        size = self.config.older_display_limit
        if size <= 0:
            batch, self._buffer = self._buffer, []
        else:
            batch, self._buffer = self._buffer[-size:], self._buffer[:-size]

        batch = [
            event
            for event in batch
            if not (event.message_id and event.message_id in existing)
        ]
        oldest = next((event.message_id for event in batch if event.message_id), None)
        if oldest:
            self.oldest_loaded_message_id = oldest
        logger.debug(f"Serving {len(batch)} older messages ({len(self._buffer)} buffered)")
        return batch

    async def load_messages_since(
        self,
        session_id: str,
        project: Project | dict[str, Any] | None = None,
        since_message_id: str | None = None,
        existing_ids: Iterable[str] = (),
    ) -> list[ClassifiedMessage]:
        """Catch-up fetch of messages newer than since_message_id."""
        if not since_message_id:
            return []

        existing = set(existing_ids)
        existing.add(since_message_id)
        page = await load_historical_messages(
            self.rest,
            session_id,
            project,
            limit=self.config.catch_up_limit,
            after=since_message_id,
        )
        if page.error is not None:
            return []
        return [
            event
            for event in page.events
            if not (event.message_id and event.message_id in existing)
        ]
