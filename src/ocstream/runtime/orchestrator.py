"""
SessionOrchestrator - composes connection, classifier, store and history.

Routes live frames into the message store and event list, loads history
on session and app-state changes, replays queued deep links and manages
optimistic sends.

Stale results are discarded by comparing the session token captured before
each await with the current one; nothing is cancelled.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from typing import Any, Callable

from ocstream.client.rest import (
    AsyncRestClient,
    FetchError,
    Project,
    Session,
    normalize_base_url,
)
from ocstream.client.streaming import parse_frame
from ocstream.core.protocols import KeyValueStore
from ocstream.platform import ConnectionErrorInfo, ConnectionState, ConnectionStateMachine
from ocstream.storage import (
    LAST_CONNECTED_URL,
    LAST_SELECTED_MODEL,
    LAST_SELECTED_PROJECT,
    LAST_SELECTED_SESSION,
    MemoryStore,
)

from .classifier import classify_message, extract_message_part
from .event_list import EventList
from .history import HistoricalLoader
from .ids import MessageIdGenerator
from .message_store import MessageStore
from .types import (
    CATEGORY_SENT,
    TYPE_MESSAGE_FINALIZED,
    TYPE_SENT,
    TYPE_SESSION_STATUS,
    TYPE_TODO_UPDATED,
    ClassifiedMessage,
    DeepLinkRequest,
    HistoryPage,
    MessagePart,
    SyncConfig,
)

logger = logging.getLogger(__name__)


def _as_project(value: Project | dict[str, Any]) -> Project:
    return value if isinstance(value, Project) else Project.model_validate(value)


def _as_session(value: Session | dict[str, Any]) -> Session:
    return value if isinstance(value, Session) else Session.model_validate(value)


def parse_command(command_text: str) -> tuple[str, list[str]]:
    """Split "/name arg1 arg2" into ("name", ["arg1", "arg2"])."""
    tokens = command_text.strip().split()
    name = tokens[0][1:] if tokens[0].startswith("/") else tokens[0]
    return name, tokens[1:]


class SessionOrchestrator:
    """
    Owns the current server, project and session selection.

    Example:
        orchestrator = SessionOrchestrator(storage=YamlFileStore("state.yaml"))
        await orchestrator.connect("http://localhost:4096", auto_select=True)
        await orchestrator.select_session(orchestrator.project_sessions[0])
        await orchestrator.send_message("Run the tests")
        for event in orchestrator.events:
            print(event.role, event.message)
    """

    def __init__(
        self,
        connection: ConnectionStateMachine | None = None,
        storage: KeyValueStore | None = None,
        config: SyncConfig | None = None,
        rest_factory: Callable[[str], AsyncRestClient] | None = None,
    ):
        """
        Initialize orchestrator.

        Args:
            connection: Stream state machine (default: real SSE transport)
            storage: Key-value store for the last URL/project/session/model
            config: Paging and settle configuration
            rest_factory: Builds a REST client for a base URL
        """
        self.connection = connection or ConnectionStateMachine()
        self.storage: KeyValueStore = storage or MemoryStore()
        self.config = config or SyncConfig()
        self._rest_factory = rest_factory or AsyncRestClient

        self.message_store = MessageStore()
        self.event_list = EventList()
        self._ids = MessageIdGenerator()

        self.base_url: str | None = None
        self.rest: AsyncRestClient | None = None
        self.history: HistoricalLoader | None = None

        self.projects: list[Project] = []
        self.selected_project: Project | None = None
        self.project_sessions: list[Session] = []
        self.selected_session: Session | None = None

        self.session_statuses: dict[str, str] = {}
        self.todos: list[dict[str, Any]] = []
        self.current_mode = self.config.default_mode
        self.selected_model: dict[str, str] | None = None
        self.providers: list[dict[str, Any]] = []
        self.send_error: str | None = None

        self.pending_deep_link: DeepLinkRequest | None = None
        self.should_show_project_selector = False
        self.should_show_server_selector = False

        self._session_token = 0
        # message_id -> finalize event waiting for its parts
        self._held_finalizes: dict[str, ClassifiedMessage] = {}
        # event id -> text of optimistic bubbles not yet echoed
        self._pending_sent: dict[str, str] = {}
        self._echoed_ids: set[str] = set()

        self.connection.on_message = self.handle_frame
        self.connection.on_state_change = self._on_connection_state_change
        self.connection.on_error = self._on_connection_error
        self.connection.heartbeat_callback = self._on_heartbeat

    # --- Exposed state ---

    @property
    def events(self) -> list[ClassifiedMessage]:
        return self.event_list.events

    @property
    def unclassified_messages(self) -> list[ClassifiedMessage]:
        return self.event_list.unclassified_messages

    @property
    def all_messages(self) -> list[ClassifiedMessage]:
        return self.event_list.all_messages

    @property
    def grouped_unclassified_messages(self) -> dict[str, list[ClassifiedMessage]]:
        return self.event_list.grouped_unclassified_messages

    @property
    def grouped_all_messages(self) -> dict[str, dict[str, list[ClassifiedMessage]]]:
        return self.event_list.grouped_all_messages

    @property
    def connection_state(self) -> ConnectionState:
        return self.connection.state

    @property
    def error(self) -> ConnectionErrorInfo | None:
        return self.connection.error

    @property
    def retry_count(self) -> int:
        return self.connection.retry_count

    @property
    def max_retries(self) -> int:
        return self.connection.max_retries

    @property
    def is_connected(self) -> bool:
        return self.connection.is_connected

    @property
    def has_older_messages(self) -> bool:
        if self.history is None:
            return False
        return self.history.has_buffered_messages or self.history.has_older_messages

    def is_session_busy(self, session_id: str | None = None) -> bool:
        if session_id is None and self.selected_session is not None:
            session_id = self.selected_session.id
        return self.session_statuses.get(session_id or "") == "busy"

    # --- Connection lifecycle ---

    async def initialize(self) -> bool:
        """
        Restore the last connected server, if any and reachable.

        Connects the stream and loads projects concurrently.
        """
        saved_model = await self.storage.get(LAST_SELECTED_MODEL)
        if isinstance(saved_model, dict):
            self.selected_model = saved_model

        saved_url = await self.storage.get(LAST_CONNECTED_URL)
        if not saved_url:
            logger.debug("No saved server URL")
            return False

        clean_url = normalize_base_url(saved_url)
        rest = self._rest_factory(clean_url)
        if not await rest.check_health():
            logger.warning(f"Saved server not healthy: {clean_url}")
            await rest.aclose()
            self.should_show_server_selector = True
            return False

        await self._set_base_url(clean_url, rest)
        await asyncio.gather(
            self.connection.connect(clean_url, skip_health_check=True),
            self.load_projects(),
        )
        return True

    async def connect(
        self, url: str, auto_select: bool = False, force_reconnect: bool = False
    ) -> bool:
        """
        Validate url, open the stream and load projects.

        Returns False when the server is unreachable or the stream failed
        within the settle delay.
        """
        if force_reconnect and self.connection.is_connected:
            await self.disconnect()

        clean_url = normalize_base_url(url or "")
        if not clean_url:
            logger.warning("Cannot connect: empty server URL")
            return False

        rest = self._rest_factory(clean_url)
        if not await rest.check_health():
            logger.warning(f"Server not reachable: {clean_url}")
            await rest.aclose()
            return False

        if self.base_url and self.base_url != clean_url:
            logger.info(f"Switching server {self.base_url} -> {clean_url}")
            await self.disconnect()

        await self._set_base_url(clean_url, rest)
        await self.connection.connect(clean_url, skip_health_check=True)
        await asyncio.sleep(self.config.settle_delay_seconds)

        if self.connection.is_failed:
            logger.warning(f"Event stream failed for {clean_url}")
            return False

        await self.load_projects()

        if auto_select:
            await self._restore_selection()

        await self.storage.set(LAST_CONNECTED_URL, clean_url)
        return True

    async def disconnect(self) -> None:
        """Close the stream and drop all server-scoped state."""
        await self.connection.disconnect()
        self._begin_session(None)
        self.selected_project = None
        self.project_sessions = []
        self.projects = []
        self.session_statuses = {}
        self.providers = []
        self.base_url = None
        self.history = None
        if self.rest is not None:
            await self.rest.aclose()
            self.rest = None
        self.should_show_project_selector = True

    async def reconnect(self) -> None:
        await self.connection.reconnect()

    async def on_url_update(self, new_url: str) -> bool:
        """The server moved: persist the new URL and reconnect to it."""
        logger.info(f"Server URL updated: {new_url}")
        await self.storage.set(LAST_CONNECTED_URL, normalize_base_url(new_url))
        await self.disconnect()
        return await self.connect(new_url, auto_select=False)

    async def _set_base_url(self, clean_url: str, rest: AsyncRestClient) -> None:
        if self.base_url == clean_url and self.rest is not None:
            await rest.aclose()
            return

        if self.rest is not None:
            await self.rest.aclose()
        self.base_url = clean_url
        self.rest = rest
        self.history = HistoricalLoader(rest, self.config)

    async def _restore_selection(self) -> None:
        try:
            saved_project = await self.storage.get(LAST_SELECTED_PROJECT)
            saved_session = await self.storage.get(LAST_SELECTED_SESSION)
            if not saved_project:
                self.should_show_project_selector = True
                return

            await self.select_project(saved_project)
            if saved_session:
                await self.select_session(saved_session)
        except (FetchError, ValueError) as e:
            logger.warning(f"Auto-selection failed: {e}")

    def _on_connection_state_change(self, new_state: ConnectionState, old_state: ConnectionState) -> None:
        logger.debug(f"Connection state changed: {old_state.value} -> {new_state.value}")

    def _on_connection_error(self, info: ConnectionErrorInfo) -> None:
        logger.warning(
            f"Connection error ({info.kind.value}): {info.message} "
            f"[{info.retry_count}/{info.max_retries}]"
        )

    async def _on_heartbeat(self) -> None:
        if self.selected_project is not None:
            await self.refresh_project_sessions()

    # --- App lifecycle ---

    async def on_app_foreground(self) -> list[ClassifiedMessage]:
        """
        Recover after the app returns to the foreground.

        Reconnects a disconnected (not failed) stream, then fetches messages
        missed since the newest visible one and refreshes status and sessions.
        """
        logger.debug("App came to foreground")
        if self.base_url and self.connection.is_disconnected and not self.connection.is_failed:
            logger.debug("Reconnecting on app foreground")
            await self.connection.connect(self.base_url)

        since = self.event_list.last_received_message_id
        if not (self.base_url and self.selected_session and self.history and since):
            return []

        token = self._session_token
        session = self.selected_session
        missed = await self.history.load_messages_since(
            session.id,
            self.selected_project,
            since,
            existing_ids=self.event_list.message_ids,
        )
        if token != self._session_token:
            logger.debug("Discarding catch-up results for a previous session")
            return []

        if missed:
            logger.debug(f"Adding {len(missed)} missed messages")
            self._assign_ids(missed)
            self.event_list.record_many(missed)
            self.event_list.extend_events(missed)

        await self.refresh_session_status()
        await self.refresh_project_sessions()
        return missed

    def on_app_background(self) -> None:
        logger.debug("App went to background")

    # --- Projects & sessions ---

    async def load_projects(self) -> list[Project]:
        if self.rest is None:
            return []
        try:
            projects = await self.rest.list_projects()
        except FetchError as e:
            logger.warning(f"Failed to load projects: {e}")
            return self.projects
        await self.set_projects(projects)
        return projects

    async def set_projects(self, projects: list[Project | dict[str, Any]]) -> None:
        """Replace the project list and replay a queued deep link."""
        self.projects = [_as_project(project) for project in projects]
        logger.debug(f"Projects updated: {len(self.projects)}")
        if not self.projects:
            return

        if self.selected_project is None:
            self.should_show_project_selector = True

        if self.pending_deep_link is not None:
            logger.debug("Projects loaded, replaying queued deep link")
            request, self.pending_deep_link = self.pending_deep_link, None
            await self.handle_deep_link(request)

    async def select_project(self, project: Project | dict[str, Any] | None) -> None:
        if project is None:
            self.selected_project = None
            self.project_sessions = []
            self._begin_session(None)
            return

        project = _as_project(project)
        if self.selected_project is None or self.selected_project.id != project.id:
            self._begin_session(None)
            self.project_sessions = []
        self.selected_project = project
        self.should_show_project_selector = False
        await self.storage.set(LAST_SELECTED_PROJECT, project.model_dump())
        await self.refresh_project_sessions()
        await self.load_models()

    async def refresh_project_sessions(self) -> list[Session]:
        if self.rest is None or self.selected_project is None:
            return []

        project = self.selected_project
        try:
            sessions = await self.rest.list_sessions(project)
        except FetchError as e:
            logger.warning(f"Failed to refresh sessions: {e}")
            return self.project_sessions

        if self.selected_project is None or self.selected_project.id != project.id:
            logger.debug("Discarding session list for a previous project")
            return self.project_sessions

        self.project_sessions = sessions
        return sessions

    async def refresh_session_status(self) -> dict[str, str]:
        if self.rest is None:
            return self.session_statuses
        try:
            statuses = await self.rest.get_session_statuses(self.selected_project)
        except FetchError as e:
            logger.warning(f"Failed to refresh session status: {e}")
            return self.session_statuses

        for session_id, status in statuses.items():
            value = status.get("type") if isinstance(status, dict) else status
            if isinstance(value, str):
                self.session_statuses[session_id] = value
        return self.session_statuses

    async def load_todos(self) -> list[dict[str, Any]]:
        if self.rest is None or self.selected_session is None:
            return self.todos

        token = self._session_token
        try:
            todos = await self.rest.get_session_todos(
                self.selected_session.id, self.selected_project
            )
        except FetchError as e:
            logger.warning(f"Failed to load todos: {e}")
            return self.todos

        if token == self._session_token:
            self.todos = list(todos)
        return self.todos

    async def select_session(self, session: Session | dict[str, Any] | None) -> HistoryPage | None:
        """
        Switch to session: clears the store and event list, then loads history.

        Returns the history page, or None when superseded or cleared.
        """
        if session is None:
            self._begin_session(None)
            return None

        session = _as_session(session)
        logger.debug(f"Selecting session {session.id} ({session.title})")
        self._begin_session(session)
        await self.storage.set(LAST_SELECTED_SESSION, session.model_dump())
        return await self._load_session(session)

    async def refresh_session(self) -> HistoryPage | None:
        """Reload history and todos for the selected session."""
        if self.selected_session is None:
            return None
        session = self.selected_session
        self._begin_session(session)
        return await self._load_session(session)

    async def create_session(self, title: str | None = None) -> Session:
        """Create a session in the selected project and switch to it."""
        if self.rest is None or self.selected_project is None:
            raise RuntimeError("No project selected")

        session = await self.rest.create_session(title, self.selected_project)
        logger.info(f"Created session {session.id}")
        await self.refresh_project_sessions()
        await self.select_session(session)
        return session

    async def delete_session(self, session_id: str) -> None:
        """Delete a session; clears the selection if it was selected."""
        if self.rest is None:
            raise RuntimeError("Not connected")

        await self.rest.delete_session(session_id, self.selected_project)
        logger.info(f"Deleted session {session_id}")
        self.session_statuses.pop(session_id, None)
        if self._is_selected(session_id):
            await self.select_session(None)
        await self.refresh_project_sessions()

    def _begin_session(self, session: Session | None) -> int:
        self._session_token += 1
        self.selected_session = session
        self.message_store.clear_store()
        self.event_list.clear_events()
        self._held_finalizes.clear()
        self._pending_sent.clear()
        self._echoed_ids.clear()
        self.todos = []
        self.send_error = None
        if self.history is not None:
            self.history.reset()
        return self._session_token

    async def _load_session(self, session: Session) -> HistoryPage | None:
        if self.history is None:
            logger.debug("No server connected; skipping history load")
            return None

        token = self._session_token
        page = await self.history.load_messages(session.id, self.selected_project)
        if token != self._session_token:
            logger.debug(f"Discarding history for superseded session {session.id}")
            return None

        self._assign_ids(page.events)
        self.event_list.record_many(page.events)
        self.event_list.splice_history(page.events)
        await self.load_todos()
        return page

    async def load_older_messages(self) -> list[ClassifiedMessage]:
        """Prepend the next batch of older messages to the event list."""
        if self.selected_session is None or self.history is None:
            return []

        token = self._session_token
        older = await self.history.load_older_messages(
            self.selected_session.id,
            self.selected_project,
            existing_ids=self.event_list.message_ids,
        )
        if token != self._session_token:
            return []

        self._assign_ids(older)
        self.event_list.record_many(older)
        self.event_list.prepend_events(older)
        return older

    # --- Deep links ---

    async def handle_deep_link(self, request: DeepLinkRequest | dict[str, Any]) -> bool:
        """
        Open the session a deep link points to.

        Queued (single slot, replacing) while no projects are loaded. Returns
        True when the linked session ends up selected.
        """
        if isinstance(request, dict):
            try:
                request = DeepLinkRequest.from_payload(request)
            except ValueError as e:
                logger.warning(f"Ignoring deep link: {e}")
                return False

        clean_url = normalize_base_url(request.server_url)
        is_different_server = clean_url != self.base_url

        if is_different_server and request.session_id:
            rest = self._rest_factory(clean_url)
            try:
                await rest.get_session(request.session_id)
            except FetchError as e:
                logger.warning(f"Deep link session {request.session_id} not found on {clean_url}: {e}")
                return False
            finally:
                await rest.aclose()

        if not self.projects:
            logger.debug("Projects not loaded yet, queuing deep link")
            self.pending_deep_link = request
            if is_different_server or self.connection.state in (
                ConnectionState.DISCONNECTED,
                ConnectionState.FAILED,
            ):
                await self.connect(clean_url, auto_select=False)
            return self._is_selected(request.session_id)

        self.pending_deep_link = None
        if is_different_server:
            if not await self.connect(clean_url, auto_select=False):
                return False
        elif self.connection.state in (ConnectionState.DISCONNECTED, ConnectionState.FAILED):
            await self.connection.connect(clean_url, skip_health_check=True)

        wanted_path = request.project_path.rstrip("/")
        project = next(
            (p for p in self.projects if (p.path or "").rstrip("/") == wanted_path),
            None,
        )
        if project is None:
            logger.debug(f"Deep link project not found: {request.project_path}")
        else:
            await self.select_project(project)

        session = next((s for s in self.project_sessions if s.id == request.session_id), None)
        if session is None:
            logger.debug(f"Deep link session not found: {request.session_id}")
            return False

        await self.select_session(session)
        return self._is_selected(request.session_id)

    def _is_selected(self, session_id: str) -> bool:
        return self.selected_session is not None and self.selected_session.id == session_id

    # --- Sending ---

    async def send_message(
        self,
        text: str,
        agent: str | dict[str, Any] = "build",
        model: dict[str, str] | None = None,
    ) -> Any:
        """
        Send text to the selected session with an optimistic sent bubble.

        Raises:
            RuntimeError: No session selected or stream not connected
            ValueError: Empty message or a model without providerID/modelID
            FetchError: The send failed; the bubble has been retracted
        """
        session = self._require_sendable()
        if not text or not text.strip():
            raise ValueError("Cannot send empty message")

        agent_name = agent if isinstance(agent, str) else agent.get("name", self.config.default_mode)
        agent_model = model or (agent.get("model") if isinstance(agent, dict) else None)
        self.current_mode = agent_name
        if agent_model:
            provider_id, model_id = agent_model.get("providerID"), agent_model.get("modelID")
            if not provider_id or not model_id:
                raise ValueError("Model selection requires providerID and modelID")
            await self.select_model(provider_id, model_id)

        event_id = self._add_optimistic(text, agent_name, session)
        try:
            return await self.rest.send_message(
                session.id,
                text,
                agent=agent_name,
                model=self.selected_model,
                project=self.selected_project,
            )
        except FetchError as e:
            logger.error(f"Message send failed: {e}")
            self._retract_optimistic(event_id, str(e))
            raise

    async def send_command(self, command_text: str) -> Any:
        """Send "/command args" to the selected session."""
        session = self._require_sendable()
        if not command_text or not command_text.strip():
            raise ValueError("Cannot send empty command")

        name, arguments = parse_command(command_text)
        event_id = self._add_optimistic(command_text, self.current_mode, session)
        try:
            return await self.rest.send_command(
                session.id, name, arguments, project=self.selected_project
            )
        except FetchError as e:
            logger.error(f"Command send failed: {e}")
            self._retract_optimistic(event_id, str(e))
            raise

    async def load_models(self) -> list[dict[str, Any]]:
        """
        Load providers for the selected project.

        Falls back to the server's default model when none is selected.
        """
        if self.rest is None or self.selected_project is None:
            return self.providers

        try:
            data = await self.rest.get_providers(self.selected_project)
        except FetchError as e:
            logger.warning(f"Failed to load models: {e}")
            self.providers = []
            return self.providers

        if not isinstance(data, dict):
            data = {}
        self.providers = list(data.get("providers") or [])
        defaults = data.get("default")
        if self.selected_model is None and isinstance(defaults, dict) and defaults:
            provider_id, model_id = next(iter(defaults.items()))
            self.selected_model = {"providerID": provider_id, "modelID": model_id}
        logger.debug(f"Loaded {len(self.providers)} providers")
        return self.providers

    async def select_model(self, provider_id: str, model_id: str) -> None:
        self.selected_model = {"providerID": provider_id, "modelID": model_id}
        await self.storage.set(LAST_SELECTED_MODEL, self.selected_model)

    def _require_sendable(self) -> Session:
        if self.selected_session is None:
            raise RuntimeError("No session selected")
        if not self.connection.is_connected or self.rest is None:
            raise RuntimeError("Not connected")
        return self.selected_session

    def _add_optimistic(self, text: str, mode: str, session: Session) -> str:
        event_id = self._ids.next_id()
        self.send_error = None
        self.event_list.add_event(
            ClassifiedMessage(
                type=TYPE_SENT,
                category=CATEGORY_SENT,
                id=event_id,
                session_id=session.id,
                role="user",
                message=text,
                project_name="Me",
                payload_type="local",
                mode=mode,
                timestamp=int(time.time() * 1000),
            )
        )
        self._pending_sent[event_id] = text
        return event_id

    def _retract_optimistic(self, event_id: str, error: str) -> None:
        self.event_list.remove_event(event_id)
        self._pending_sent.pop(event_id, None)
        self.send_error = error

    def _consume_echo(self, event: ClassifiedMessage) -> bool:
        """
        True when a user message echoes one of our optimistic bubbles.

        The first user message while sends are pending consumes one: the
        bubble with the same text if there is one, else the oldest. The
        server's echo may carry a summary instead of the prompt text.
        """
        if event.message_id and event.message_id in self._echoed_ids:
            return True
        if not self._pending_sent:
            return False

        text = (event.message or "").strip()
        event_id = next(
            (eid for eid, sent_text in self._pending_sent.items() if sent_text.strip() == text),
            next(iter(self._pending_sent)),
        )
        del self._pending_sent[event_id]
        if event.message_id:
            self._echoed_ids.add(event.message_id)
        return True

    # --- Live events ---

    def handle_frame(self, data: str) -> None:
        """Decode one stream frame (object or array) and route each event."""
        try:
            items = parse_frame(data)
        except json.JSONDecodeError as e:
            logger.warning(f"Ignoring non-JSON frame: {e}")
            return

        for item in items:
            self.handle_live_event(item)

    def handle_live_event(self, raw: Any) -> ClassifiedMessage | None:
        """
        Route one raw live event.

        Returns the event added to or updated in the visible list, or None.
        """
        classified = classify_message(raw, self.current_mode)
        if classified.id is None:
            classified.id = classified.message_id or self._ids.next_id()
        self.event_list.record(classified)

        if classified.type == TYPE_SESSION_STATUS and classified.session_id:
            self.session_statuses[classified.session_id] = classified.session_status or ""
        elif classified.payload_type == "session.idle" and classified.session_id:
            self.session_statuses[classified.session_id] = "idle"
        elif classified.type == TYPE_TODO_UPDATED and self._is_selected(classified.session_id or ""):
            self.todos = list(classified.todos or [])

        extracted = extract_message_part(raw)
        if extracted is not None:
            self._accept_part(classified.session_id, *extracted)
            return None

        if not classified.is_visible:
            return None

        if not self._is_selected(classified.session_id or ""):
            logger.debug(
                f"Dropping {classified.type} for session {classified.session_id} (not selected)"
            )
            return None

        if classified.role == "user" and self._consume_echo(classified):
            logger.debug(f"Dropping echo of optimistic message {classified.message_id}")
            return None

        if classified.type == TYPE_MESSAGE_FINALIZED and not classified.message:
            return self._assemble_or_hold(classified)

        return self._commit(classified)

    def _accept_part(
        self, session_id: str | None, message_id: str, part: MessagePart, role: str | None
    ) -> None:
        if self.selected_session is None:
            return
        if session_id and session_id != self.selected_session.id:
            return

        self.message_store.add_part(message_id, part, role=role, session_id=session_id)
        held = self._held_finalizes.get(message_id)
        if held is not None:
            self._assemble_or_hold(held)

    def _assemble_or_hold(self, event: ClassifiedMessage) -> ClassifiedMessage | None:
        message_id = event.message_id
        text = self.message_store.assemble_message_text(message_id) if message_id else ""
        if text:
            self._held_finalizes.pop(message_id, None)
            event.message = text
            return self._commit(event)

        if message_id:
            logger.debug(f"Holding finalize for {message_id} until parts arrive")
            self._held_finalizes[message_id] = event
        return None

    def _commit(self, event: ClassifiedMessage) -> ClassifiedMessage:
        if event.message_id:
            self.message_store.finalize_message(
                event.message_id,
                role=event.role,
                text=event.message,
                raw_data=event.raw_data,
                session_id=event.session_id,
            )
        self.event_list.upsert_event(event)
        return event

    # --- Misc ---

    def _assign_ids(self, events: list[ClassifiedMessage]) -> None:
        for event in events:
            if event.id is None:
                event.id = event.message_id or self._ids.next_id()

    def clear_error(self) -> None:
        self.connection.clear_error()
        self.send_error = None

    def clear_debug_messages(self) -> None:
        self.event_list.clear_debug()

    async def aclose(self) -> None:
        await self.disconnect()
