"""
Pytest fixtures for ocstream tests.

Provides fake transports and mocked REST clients for fast testing without
a real OpenCode server.

Key fixture pattern:
- fake_factory: FakeTransportFactory recording every stream handle
- mock_rest: MagicMock of AsyncRestClient with AsyncMock endpoints
- Tests verify REST calls using assert_awaited_once() and call_args
"""

import asyncio
from typing import Any, Callable
from unittest.mock import AsyncMock, MagicMock

import pytest

from ocstream.client.rest import Project, Session
from ocstream.platform import ConnectionConfig, ConnectionStateMachine
from ocstream.runtime import SessionOrchestrator, SyncConfig
from ocstream.storage import MemoryStore
from ocstream.testing import FakeTransportFactory, make_global_event

SERVER_URL = "http://server:4096"
PROJECT_PATH = "/work/app"


# --- Helpers ---


async def always_healthy(url: str) -> bool:
    return True


async def never_healthy(url: str) -> bool:
    return False


async def wait_for(predicate: Callable[[], bool], attempts: int = 2000) -> None:
    """Yield to the event loop until predicate() holds."""
    for _ in range(attempts):
        if predicate():
            return
        await asyncio.sleep(0.001)
    raise AssertionError("Condition not reached")


def make_history_item(
    message_id: str,
    text: str,
    role: str = "assistant",
    session_id: str = "ses_1",
) -> dict[str, Any]:
    """History item in the loaded (info + parts) shape."""
    return {
        "info": {
            "id": message_id,
            "role": role,
            "sessionID": session_id,
            "time": {"created": 1700000000000},
        },
        "parts": [{"type": "text", "text": text}],
    }


def make_live_message(
    message_id: str,
    text: str,
    role: str = "assistant",
    session_id: str = "ses_1",
) -> dict[str, Any]:
    """Live event with top-level info + parts."""
    return {
        "info": {"id": message_id, "role": role, "sessionID": session_id},
        "parts": [{"type": "text", "text": text}],
    }


def make_part_event(
    message_id: str,
    part_id: str,
    text: str | None = None,
    delta: str | None = None,
    session_id: str = "ses_1",
    part_type: str = "text",
) -> dict[str, Any]:
    """message.part.updated frame."""
    part: dict[str, Any] = {
        "id": part_id,
        "messageID": message_id,
        "sessionID": session_id,
        "type": part_type,
    }
    if text is not None:
        part["text"] = text
    properties: dict[str, Any] = {"part": part}
    if delta is not None:
        properties["delta"] = delta
    return make_global_event("message.part.updated", properties)


def make_status_event(session_id: str, status: str) -> dict[str, Any]:
    return make_global_event(
        "session.status",
        {"sessionID": session_id, "status": {"type": status}},
    )


# --- Fixtures ---


@pytest.fixture
def fake_factory() -> FakeTransportFactory:
    return FakeTransportFactory()


@pytest.fixture
def connection_config() -> ConnectionConfig:
    """No backoff delay and a heartbeat that never fires on its own."""
    return ConnectionConfig(
        heartbeat_interval_seconds=3600,
        base_retry_delay_seconds=0,
    )


@pytest.fixture
async def connection(fake_factory, connection_config):
    machine = ConnectionStateMachine(
        transport_factory=fake_factory,
        health_check=always_healthy,
        config=connection_config,
    )
    yield machine
    await machine.disconnect()


@pytest.fixture
def mock_rest() -> MagicMock:
    """Create a mocked AsyncRestClient with all endpoints stubbed.

    Tests override return values for the endpoints they exercise:

        mock_rest.get_session_messages.return_value = [make_history_item(...)]
    """
    rest = MagicMock()
    rest.check_health = AsyncMock(return_value=True)
    rest.aclose = AsyncMock()
    rest.list_projects = AsyncMock(
        return_value=[Project(id="proj-1", worktree=PROJECT_PATH, name="app")]
    )
    rest.list_sessions = AsyncMock(
        return_value=[Session(id="ses_1", title="First"), Session(id="ses_2", title="Second")]
    )
    rest.get_session = AsyncMock(return_value={"id": "ses_1"})
    rest.get_session_statuses = AsyncMock(return_value={})
    rest.get_session_todos = AsyncMock(return_value=[])
    rest.get_session_messages = AsyncMock(return_value=[])
    rest.get_providers = AsyncMock(return_value={"providers": [], "default": {}})
    rest.create_session = AsyncMock(return_value=Session(id="ses_new", title="New"))
    rest.delete_session = AsyncMock(return_value=True)
    rest.send_message = AsyncMock(return_value={"info": {"id": "msg_srv"}})
    rest.send_command = AsyncMock(return_value={})
    return rest


@pytest.fixture
def storage() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
async def orchestrator(fake_factory, connection_config, mock_rest, storage):
    machine = ConnectionStateMachine(
        transport_factory=fake_factory,
        health_check=always_healthy,
        config=connection_config,
    )
    orch = SessionOrchestrator(
        connection=machine,
        storage=storage,
        config=SyncConfig(settle_delay_seconds=0),
        rest_factory=lambda url: mock_rest,
    )
    yield orch
    await orch.connection.disconnect()
