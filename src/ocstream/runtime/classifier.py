"""
Message classification for OpenCode stream events.

classify_message() maps one heterogeneous raw event onto the message
taxonomy. It is pure and total: the same input always yields the same
result and malformed input degrades to the unclassified category.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Iterable

from pydantic import ValidationError

from ocstream.client.streaming import MessagePartPayload

from .types import (
    CATEGORY_INTERNAL,
    CATEGORY_MESSAGE,
    CATEGORY_UNCLASSIFIED,
    TYPE_MESSAGE_FINALIZED,
    TYPE_MESSAGE_UPDATE_INCOMPLETE,
    TYPE_SENT,
    TYPE_SESSION_STATUS,
    TYPE_TODO_UPDATED,
    TYPE_UNCLASSIFIED,
    ClassifiedMessage,
    MessagePart,
)

logger = logging.getLogger(__name__)

UNKNOWN_PROJECT = "Unknown Project"
DEFAULT_MODE = "build"


def _get(data: Any, *path: str) -> Any:
    """Walk nested dicts, returning None as soon as a level is missing."""
    for key in path:
        if not isinstance(data, dict):
            return None
        data = data.get(key)
    return data


def project_display_name(directory: str | None) -> str:
    """Last non-empty path segment of a project directory."""
    if not directory:
        return UNKNOWN_PROJECT
    segments = [segment for segment in directory.split("/") if segment.strip()]
    return segments[-1] if segments else UNKNOWN_PROJECT


def extract_session_id(item: dict[str, Any]) -> str | None:
    """
    Resolve the session id of a raw event.

    Lookup order: session_id, sessionId, info.sessionID,
    payload.properties.sessionID, payload.properties.info.sessionID,
    payload.properties.part.sessionID.
    """
    return (
        item.get("session_id")
        or item.get("sessionId")
        or _get(item, "info", "sessionID")
        or _get(item, "payload", "properties", "sessionID")
        or _get(item, "payload", "properties", "info", "sessionID")
        or _get(item, "payload", "properties", "part", "sessionID")
        or None
    )


def _project_name(item: dict[str, Any]) -> str:
    return item.get("projectName") or project_display_name(item.get("directory"))


def _timestamp(info: Any) -> int | None:
    created = _get(info, "time", "created")
    if created is None:
        created = _get(info, "created")
    return created if isinstance(created, (int, float)) else None


def _join_text_parts(parts: Iterable[Any]) -> str:
    return "\n".join(
        part.get("text") or ""
        for part in parts
        if isinstance(part, dict) and part.get("type") == "text"
    )


def classify_message(item: Any, current_mode: str | None = DEFAULT_MODE) -> ClassifiedMessage:
    """
    Classify one raw stream or history event.

    Args:
        item: Raw event, discriminated by payload.type
        current_mode: Active agent mode ("build" or "plan")

    Returns:
        ClassifiedMessage. Never raises.
    """
    if not isinstance(item, dict):
        return ClassifiedMessage(
            type=TYPE_UNCLASSIFIED,
            category=CATEGORY_UNCLASSIFIED,
            display_message=repr(item),
            raw_data=item,
        )

    try:
        return _classify(item, current_mode)
    except Exception as e:
        logger.warning(f"Classification failed, treating as unclassified: {e}")
        return ClassifiedMessage(
            type=TYPE_UNCLASSIFIED,
            category=CATEGORY_UNCLASSIFIED,
            display_message="Error classifying message",
            payload_type=str(_get(item, "payload", "type") or "unknown"),
            raw_data=item,
        )


def _classify(item: dict[str, Any], current_mode: str | None) -> ClassifiedMessage:
    payload_type = _get(item, "payload", "type") or "unknown"
    properties = _get(item, "payload", "properties") or {}
    prop_info = _get(properties, "info")
    session_id = extract_session_id(item)
    project_name = _project_name(item)
    item_mode = _get(item, "info", "mode") or DEFAULT_MODE
    selected_mode = (current_mode if current_mode is not None else _get(item, "info", "mode")) or DEFAULT_MODE

    if payload_type == "session.status":
        status = _get(properties, "status", "type")
        if status in ("busy", "idle"):
            return ClassifiedMessage(
                type=TYPE_SESSION_STATUS,
                category=CATEGORY_INTERNAL,
                session_id=session_id,
                display_message=f"Session status: {status}",
                project_name=project_name,
                payload_type=payload_type,
                mode=selected_mode,
                raw_data=item,
                session_status=status,
            )

    if payload_type == "message.loaded":
        parts = _get(properties, "parts") or []
        text = _join_text_parts(parts) if isinstance(parts, list) else "No content available"
        role = _get(prop_info, "role")
        return ClassifiedMessage(
            type=TYPE_SENT if role == "user" else TYPE_MESSAGE_FINALIZED,
            category=CATEGORY_MESSAGE,
            message_id=_get(prop_info, "id"),
            session_id=session_id,
            role=role,
            message=text,
            project_name=project_name,
            payload_type=payload_type,
            mode=selected_mode,
            timestamp=_timestamp(prop_info),
            raw_data=item,
        )

    if payload_type == "message.updated":
        summary_body = _get(prop_info, "summary", "body")
        if summary_body:
            return ClassifiedMessage(
                type=TYPE_MESSAGE_FINALIZED,
                category=CATEGORY_MESSAGE,
                message_id=_get(prop_info, "id"),
                session_id=session_id,
                role=_get(prop_info, "role"),
                message=summary_body,
                project_name=project_name,
                payload_type=payload_type,
                mode=_get(prop_info, "agent") or DEFAULT_MODE,
                timestamp=_timestamp(prop_info),
                raw_data=item,
            )
        return ClassifiedMessage(
            type=TYPE_MESSAGE_UPDATE_INCOMPLETE,
            category=CATEGORY_UNCLASSIFIED,
            message_id=_get(prop_info, "id"),
            session_id=session_id,
            role=_get(prop_info, "role"),
            display_message="Incomplete message.update - missing summary body",
            project_name=project_name,
            payload_type=payload_type,
            mode=item_mode,
            timestamp=_timestamp(prop_info),
            raw_data=item,
        )

    if payload_type == "todo.update":
        todos = _get(properties, "todos") or []
        return ClassifiedMessage(
            type=TYPE_TODO_UPDATED,
            category=CATEGORY_INTERNAL,
            session_id=session_id,
            display_message=f"Todo list updated: {len(todos)} tasks",
            project_name=project_name,
            payload_type=payload_type,
            mode=item_mode,
            raw_data=item,
            todos=list(todos),
        )

    parts = item.get("parts")
    if isinstance(parts, list):
        text_parts = [p for p in parts if isinstance(p, dict) and p.get("type") == "text"]
        if text_parts:
            info = item.get("info")
            role = _get(info, "role")
            return ClassifiedMessage(
                type=TYPE_SENT if role == "user" else TYPE_MESSAGE_FINALIZED,
                category=CATEGORY_MESSAGE,
                message_id=_get(info, "id"),
                session_id=session_id,
                role=role,
                message=_join_text_parts(text_parts),
                project_name=project_name,
                payload_type=payload_type,
                mode=_get(info, "mode") or _get(info, "agent") or DEFAULT_MODE,
                timestamp=_timestamp(info),
                raw_data=item,
            )

    return ClassifiedMessage(
        type=TYPE_UNCLASSIFIED,
        category=CATEGORY_UNCLASSIFIED,
        session_id=session_id,
        display_message=json.dumps(item, indent=2, default=str),
        project_name=project_name,
        payload_type=payload_type,
        mode=item_mode,
        raw_data=item,
    )


def extract_message_part(item: Any) -> tuple[str, MessagePart, str | None] | None:
    """
    Pull the streamed part out of a message.part.updated event.

    Returns:
        (message_id, part, role) or None when the event carries no part
    """
    if not isinstance(item, dict) or _get(item, "payload", "type") != "message.part.updated":
        return None

    properties = _get(item, "payload", "properties") or {}
    raw_part = properties.get("part")
    if not isinstance(raw_part, dict):
        return None

    try:
        part = MessagePartPayload.model_validate(raw_part)
    except ValidationError as e:
        logger.debug(f"Ignoring malformed message part: {e}")
        return None

    delta = properties.get("delta")
    sequence = raw_part.get("sequence", properties.get("sequence"))
    return (
        part.messageID,
        MessagePart(
            part_id=part.id,
            part_type=part.type,
            text=part.text,
            delta=delta if isinstance(delta, str) else None,
            sequence=sequence if isinstance(sequence, int) else None,
        ),
        _get(properties, "info", "role"),
    )


def group_unclassified_messages(
    messages: Iterable[ClassifiedMessage],
) -> dict[str, list[ClassifiedMessage]]:
    """Group unclassified messages by payload type for debugging."""
    grouped: dict[str, list[ClassifiedMessage]] = {}
    for message in messages:
        if message.category == CATEGORY_UNCLASSIFIED:
            grouped.setdefault(message.payload_type or "unknown", []).append(message)
    return grouped


def group_all_messages(
    messages: Iterable[ClassifiedMessage],
) -> dict[str, dict[str, list[ClassifiedMessage]]]:
    """Group every message by classified/unclassified, then by type."""
    grouped: dict[str, dict[str, list[ClassifiedMessage]]] = {
        "classified": {},
        "unclassified": {},
    }
    for message in messages:
        bucket = "unclassified" if message.category == CATEGORY_UNCLASSIFIED else "classified"
        key = message.type or message.payload_type or "unknown"
        grouped[bucket].setdefault(key, []).append(message)
    return grouped
