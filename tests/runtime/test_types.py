"""Tests for runtime types and local ids."""

import pytest

from ocstream.runtime import ClassifiedMessage, DeepLinkRequest
from ocstream.runtime.ids import MessageIdGenerator


class TestDeepLinkRequest:
    def test_from_camel_case_payload(self):
        request = DeepLinkRequest.from_payload(
            {"serverUrl": "http://a:4096", "projectPath": "/work/app", "sessionId": "ses_1"}
        )

        assert request == DeepLinkRequest("http://a:4096", "/work/app", "ses_1")

    def test_from_snake_case_payload(self):
        request = DeepLinkRequest.from_payload(
            {"server_url": "http://a:4096", "project_path": "/work/app", "session_id": "ses_1"}
        )

        assert request.session_id == "ses_1"

    @pytest.mark.parametrize("missing", ["serverUrl", "projectPath", "sessionId"])
    def test_missing_field(self, missing):
        payload = {"serverUrl": "http://a:4096", "projectPath": "/work/app", "sessionId": "ses_1"}
        del payload[missing]

        with pytest.raises(ValueError):
            DeepLinkRequest.from_payload(payload)


class TestClassifiedMessage:
    @pytest.mark.parametrize(
        "category,visible",
        [("message", True), ("sent", True), ("internal", False), ("unclassified", False)],
    )
    def test_visibility(self, category, visible):
        assert ClassifiedMessage(type="x", category=category).is_visible is visible


class TestMessageIdGenerator:
    def test_ids_unique_with_prefix(self):
        ids = MessageIdGenerator()

        generated = {ids.next_id() for _ in range(100)}

        assert len(generated) == 100
        assert all(i.startswith("msg_") for i in generated)

    def test_custom_prefix(self):
        assert MessageIdGenerator("local").next_id().startswith("local_")
