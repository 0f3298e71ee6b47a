"""Tests for message classification."""

import copy

import pytest

from ocstream.runtime import (
    classify_message,
    extract_message_part,
    extract_session_id,
    group_all_messages,
    group_unclassified_messages,
    project_display_name,
)
from ocstream.testing import make_global_event

from tests.conftest import make_live_message, make_part_event, make_status_event


class TestSessionStatus:
    @pytest.mark.parametrize("status", ["busy", "idle"])
    def test_busy_idle_internal(self, status):
        result = classify_message(make_status_event("ses_1", status))

        assert result.type == "session_status"
        assert result.category == "internal"
        assert result.session_status == status
        assert result.session_id == "ses_1"
        assert result.display_message == f"Session status: {status}"

    def test_other_status_unclassified(self):
        result = classify_message(make_status_event("ses_1", "retry"))

        assert result.category == "unclassified"
        assert result.payload_type == "session.status"


class TestMessageLoaded:
    def make_loaded(self, role, parts):
        return make_global_event(
            "message.loaded",
            {"info": {"id": "msg_1", "role": role, "sessionID": "ses_1"}, "parts": parts},
        )

    def test_text_parts_joined(self):
        result = classify_message(
            self.make_loaded(
                "assistant",
                [
                    {"type": "text", "text": "a"},
                    {"type": "reasoning", "text": "hidden"},
                    {"type": "text", "text": "b"},
                ],
            )
        )

        assert result.type == "message_finalized"
        assert result.category == "message"
        assert result.message == "a\nb"
        assert result.message_id == "msg_1"
        assert result.role == "assistant"

    def test_user_role_is_sent(self):
        result = classify_message(self.make_loaded("user", [{"type": "text", "text": "hi"}]))

        assert result.type == "sent"
        assert result.category == "message"

    def test_mode_from_current_mode(self):
        result = classify_message(self.make_loaded("assistant", []), current_mode="plan")

        assert result.mode == "plan"


class TestMessageUpdated:
    def test_summary_body_finalizes(self):
        event = make_global_event(
            "message.updated",
            {
                "info": {
                    "id": "msg_2",
                    "sessionID": "ses_1",
                    "agent": "plan",
                    "summary": {"body": "Done"},
                }
            },
        )

        result = classify_message(event)

        assert result.type == "message_finalized"
        assert result.category == "message"
        assert result.message == "Done"
        assert result.mode == "plan"

    def test_missing_summary_is_incomplete(self):
        event = make_global_event(
            "message.updated", {"info": {"id": "msg_2", "sessionID": "ses_1"}}
        )

        result = classify_message(event)

        assert result.type == "message_update_incomplete"
        assert result.category == "unclassified"


class TestTodoUpdate:
    def test_todos_carried(self):
        todos = [{"id": "t1", "content": "write tests", "status": "pending"}]
        event = make_global_event("todo.update", {"sessionID": "ses_1", "todos": todos})

        result = classify_message(event)

        assert result.type == "todo_updated"
        assert result.category == "internal"
        assert result.todos == todos
        assert result.display_message == "Todo list updated: 1 tasks"


class TestLiveParts:
    def test_top_level_parts(self):
        result = classify_message(make_live_message("msg_3", "Hello"))

        assert result.type == "message_finalized"
        assert result.message == "Hello"
        assert result.session_id == "ses_1"
        assert result.message_id == "msg_3"

    def test_mode_prefers_info_mode_then_agent(self):
        item = make_live_message("msg_3", "Hello")
        item["info"]["agent"] = "plan"

        assert classify_message(item).mode == "plan"

    def test_no_text_parts_unclassified(self):
        item = {"info": {"id": "m"}, "parts": [{"type": "tool"}]}

        assert classify_message(item).category == "unclassified"


class TestUnclassified:
    def test_unknown_type(self):
        event = make_global_event("file.edited", {"file": "a.py"}, directory="/work/app")

        result = classify_message(event)

        assert result.type == "unclassified"
        assert result.category == "unclassified"
        assert result.project_name == "app"
        assert result.raw_data is event
        assert '"file.edited"' in result.display_message

    def test_message_part_updated_unclassified(self):
        result = classify_message(make_part_event("msg_1", "p1", delta="x"))

        assert result.category == "unclassified"
        assert result.session_id == "ses_1"

    @pytest.mark.parametrize("item", [None, "text", 42, ["a"]])
    def test_non_dict_never_raises(self, item):
        result = classify_message(item)

        assert result.category == "unclassified"

    def test_malformed_payload_never_raises(self):
        result = classify_message({"payload": {"type": "todo.update", "properties": {"todos": 5}}})

        assert result.category == "unclassified"

    def test_pure(self):
        event = make_status_event("ses_1", "busy")
        snapshot = copy.deepcopy(event)

        first = classify_message(event)
        second = classify_message(event)

        assert first == second
        assert event == snapshot


class TestSessionIdChain:
    def test_priority_order(self):
        item = {
            "sessionId": "b",
            "info": {"sessionID": "c"},
            "payload": {"type": "x", "properties": {"sessionID": "d"}},
        }
        assert extract_session_id(item) == "b"
        assert extract_session_id({**item, "session_id": "a"}) == "a"

    def test_nested_fallbacks(self):
        assert extract_session_id(
            {"payload": {"properties": {"info": {"sessionID": "e"}}}}
        ) == "e"
        assert extract_session_id(
            {"payload": {"properties": {"part": {"sessionID": "f"}}}}
        ) == "f"

    def test_missing(self):
        assert extract_session_id({"payload": {"type": "x"}}) is None


class TestExtractMessagePart:
    def test_delta_part(self):
        message_id, part, role = extract_message_part(make_part_event("msg_1", "p1", delta="He"))

        assert message_id == "msg_1"
        assert part.part_id == "p1"
        assert part.delta == "He"
        assert part.text is None
        assert role is None

    def test_not_a_part_event(self):
        assert extract_message_part(make_status_event("ses_1", "busy")) is None

    def test_part_without_message_id(self):
        event = make_global_event("message.part.updated", {"part": {"id": "p1"}})

        assert extract_message_part(event) is None


class TestGrouping:
    def test_group_unclassified_by_payload_type(self):
        messages = [
            classify_message(make_global_event("file.edited")),
            classify_message(make_global_event("file.edited")),
            classify_message(make_status_event("ses_1", "busy")),
        ]

        grouped = group_unclassified_messages(messages)

        assert list(grouped) == ["file.edited"]
        assert len(grouped["file.edited"]) == 2

    def test_group_all(self):
        messages = [
            classify_message(make_global_event("file.edited")),
            classify_message(make_status_event("ses_1", "busy")),
        ]

        grouped = group_all_messages(messages)

        assert list(grouped["unclassified"]) == ["unclassified"]
        assert list(grouped["classified"]) == ["session_status"]


class TestProjectDisplayName:
    @pytest.mark.parametrize(
        "directory,expected",
        [("/work/app", "app"), ("/work/app/", "app"), ("", "Unknown Project"), (None, "Unknown Project")],
    )
    def test_last_segment(self, directory, expected):
        assert project_display_name(directory) == expected
