"""
ConnectionStateMachine - lifecycle of the single live event stream.

Handles connect/disconnect, heartbeat liveness checks and reconnect backoff.
Does NOT interpret frames: raw frame data is forwarded to on_message for
the orchestrator to classify.

States:
    DISCONNECTED -> CONNECTING -> CONNECTED <-> RECONNECTING -> FAILED
    DISCONNECTED is reachable from any state via disconnect().
    FAILED is left only via an explicit reconnect().
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Awaitable, Callable

import httpx

from ocstream.client.rest import check_server_health, normalize_base_url
from ocstream.client.streaming import EventStreamClient, EventStreamClosed
from ocstream.core.protocols import EventTransport, TransportFactory

from .backoff import ReconnectBackoff
from .event import (
    ConnectionConfig,
    ConnectionErrorInfo,
    ConnectionErrorKind,
    ConnectionState,
)

logger = logging.getLogger(__name__)

STREAM_PATH = "/global/event"


def classify_transport_error(error: BaseException) -> ConnectionErrorKind:
    """Map a transport exception onto the connection error taxonomy."""
    if isinstance(error, (httpx.TimeoutException, asyncio.TimeoutError, TimeoutError)):
        return ConnectionErrorKind.TIMEOUT
    if isinstance(error, httpx.HTTPStatusError):
        return ConnectionErrorKind.SERVER_UNREACHABLE
    if isinstance(error, (httpx.TransportError, EventStreamClosed, ConnectionError, OSError)):
        return ConnectionErrorKind.NETWORK
    return ConnectionErrorKind.UNKNOWN


class ConnectionStateMachine:
    """
    Owns exactly one stream transport and its connection state.

    Example:
        connection = ConnectionStateMachine()
        connection.on_state_change = lambda new, old: print(old, "->", new)
        connection.on_message = handle_frame
        await connection.connect("http://localhost:4096")
    """

    def __init__(
        self,
        transport_factory: TransportFactory | None = None,
        health_check: Callable[[str], Awaitable[bool]] | None = None,
        config: ConnectionConfig | None = None,
    ):
        """
        Initialize the state machine.

        Args:
            transport_factory: Builds a transport for a stream URL
                (default: EventStreamClient)
            health_check: Async reachability probe for a base URL
                (default: HEAD request via check_server_health)
            config: Heartbeat and backoff configuration
        """
        self.config = config or ConnectionConfig()
        self._transport_factory: TransportFactory = transport_factory or EventStreamClient
        self._health_check = health_check or check_server_health

        self.base_url: str | None = None
        self.error: ConnectionErrorInfo | None = None

        self._state = ConnectionState.DISCONNECTED
        self._backoff = ReconnectBackoff(
            max_retries=self.config.max_retries,
            base_delay=self.config.base_retry_delay_seconds,
            max_delay=self.config.max_retry_delay_seconds,
        )

        # Single transport handle; generation guards callbacks from old handles
        self._transport: EventTransport | None = None
        self._generation = 0

        self._reconnect_task: asyncio.Task[None] | None = None
        self._cleanup_tasks: set[asyncio.Task[None]] = set()
        self._heartbeat_task: asyncio.Task[None] | None = None
        self._missed_heartbeats = 0
        self._activity_since_check = False
        # Set on every open; the first check after an open passes
        self._fresh_stream = False

        # Callbacks (set by user or SessionOrchestrator)
        self.on_state_change: Callable[[ConnectionState, ConnectionState], None] | None = None
        self.on_error: Callable[[ConnectionErrorInfo], None] | None = None
        self.on_heartbeat_missed: Callable[[], None] | None = None
        self.on_message: Callable[[str], None] | None = None
        self.heartbeat_callback: Callable[[], Awaitable[None] | None] | None = None

    # --- State accessors ---

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    @property
    def is_connecting(self) -> bool:
        return self._state is ConnectionState.CONNECTING

    @property
    def is_reconnecting(self) -> bool:
        return self._state is ConnectionState.RECONNECTING

    @property
    def is_failed(self) -> bool:
        return self._state is ConnectionState.FAILED

    @property
    def is_disconnected(self) -> bool:
        return self._state is ConnectionState.DISCONNECTED

    @property
    def retry_count(self) -> int:
        return min(self._backoff.attempts, self._backoff.max_retries)

    @property
    def max_retries(self) -> int:
        return self._backoff.max_retries

    @property
    def missed_heartbeats(self) -> int:
        return self._missed_heartbeats

    @property
    def transport(self) -> EventTransport | None:
        return self._transport

    # --- Actions ---

    async def connect(self, url: str | None = None, skip_health_check: bool = False) -> None:
        """
        Open the stream for url (or the last used base URL).

        No-op while CONNECTING or CONNECTED so repeated calls never create a
        second transport.
        """
        url = url or self.base_url
        if not url:
            logger.warning("Cannot connect: no base URL provided")
            return

        if self._state in (ConnectionState.CONNECTING, ConnectionState.CONNECTED):
            logger.debug(f"Skipping connect - already {self._state.value}")
            return

        self._cancel_reconnect()
        base_url = normalize_base_url(url)
        self.base_url = base_url
        self._set_state(ConnectionState.CONNECTING)

        if not skip_health_check:
            healthy = await self._probe(base_url)
            if self._state is not ConnectionState.CONNECTING or self.base_url != base_url:
                logger.debug("Connect superseded during health check")
                return
            if not healthy:
                self._handle_failure(
                    ConnectionErrorKind.SERVER_UNREACHABLE,
                    f"Server not reachable: {base_url}",
                )
                return

        await self._open_transport()

    async def disconnect(self) -> None:
        """Close the transport, reset counters and move to DISCONNECTED."""
        logger.debug("Disconnect requested")
        self._cancel_reconnect()
        self._stop_heartbeat()
        await self._close_transport()
        self._backoff.reset()
        self.error = None
        self._missed_heartbeats = 0
        self._set_state(ConnectionState.DISCONNECTED)

    async def reconnect(self) -> None:
        """Force a fresh connect attempt regardless of the current state."""
        if not self.base_url:
            logger.warning("Cannot reconnect: never connected")
            return

        logger.info(f"Reconnect requested for {self.base_url}")
        self._cancel_reconnect()
        self._stop_heartbeat()
        await self._close_transport()
        self._backoff.reset()
        self.error = None
        self._missed_heartbeats = 0
        self._set_state(ConnectionState.CONNECTING)
        await self._open_transport()

    def clear_error(self) -> None:
        self.error = None
        self._backoff.reset()

    def acknowledge_heartbeat(self) -> None:
        """Mark the stream as alive for the current heartbeat interval."""
        self._activity_since_check = True
        self._missed_heartbeats = 0

    # --- Transport management ---

    async def _probe(self, base_url: str) -> bool:
        try:
            return await self._health_check(base_url)
        except Exception as e:
            logger.warning(f"Health check raised for {base_url}: {e}")
            return False

    async def _open_transport(self) -> None:
        await self._close_transport()

        self._generation += 1
        generation = self._generation
        transport = self._transport_factory(f"{self.base_url}{STREAM_PATH}")
        transport.on_open = lambda: self._on_transport_open(generation)
        transport.on_message = lambda data: self._on_transport_message(generation, data)
        transport.on_error = lambda error: self._on_transport_error(generation, error)
        self._transport = transport

        try:
            await transport.open()
        except Exception as e:
            self._on_transport_error(generation, e)

    async def _close_transport(self) -> None:
        transport, self._transport = self._transport, None
        self._generation += 1
        if transport is not None:
            await self._close_quietly(transport)

    async def _close_quietly(self, transport: EventTransport) -> None:
        try:
            await transport.close()
        except Exception as e:
            logger.warning(f"Error closing transport {transport.url}: {e}")

    def _detach_transport(self) -> EventTransport | None:
        """Drop the current handle without awaiting its close."""
        transport, self._transport = self._transport, None
        self._generation += 1
        return transport

    def _close_later(self, transport: EventTransport | None) -> None:
        if transport is None:
            return
        task = asyncio.create_task(self._close_quietly(transport))
        self._cleanup_tasks.add(task)
        task.add_done_callback(self._cleanup_tasks.discard)

    # --- Transport callbacks ---

    def _on_transport_open(self, generation: int) -> None:
        if generation != self._generation:
            return

        logger.info(f"Event stream connected: {self.base_url}")
        self._backoff.reset()
        self.error = None
        self._fresh_stream = True
        self._set_state(ConnectionState.CONNECTED)
        self._start_heartbeat()

    def _on_transport_message(self, generation: int, data: str) -> None:
        if generation != self._generation:
            return

        self._activity_since_check = True
        self._missed_heartbeats = 0
        if self.on_message:
            try:
                self.on_message(data)
            except Exception as e:
                logger.error(f"on_message callback error: {e}", exc_info=True)

    def _on_transport_error(self, generation: int, error: BaseException) -> None:
        if generation != self._generation:
            return
        if self._state in (ConnectionState.DISCONNECTED, ConnectionState.FAILED):
            return

        kind = classify_transport_error(error)
        self._handle_failure(kind, str(error) or type(error).__name__)

    # --- Failure handling & backoff ---

    def _handle_failure(self, kind: ConnectionErrorKind, message: str) -> None:
        dead = self._detach_transport()
        attempts, exceeded = self._backoff.record_attempt()

        if exceeded:
            self._close_later(dead)
            self._fail(kind, message)
            return

        info = ConnectionErrorInfo(
            kind=kind,
            message=message,
            retry_count=attempts,
            max_retries=self._backoff.max_retries,
        )
        self.error = info
        self._set_state(ConnectionState.RECONNECTING)
        self._emit_error(info)
        self._schedule_reconnect(self._backoff.delay_for(attempts), dead)

    def _fail(self, kind: ConnectionErrorKind, message: str) -> None:
        self._stop_heartbeat()
        info = ConnectionErrorInfo(
            kind=kind,
            message=message,
            retry_count=self.retry_count,
            max_retries=self._backoff.max_retries,
        )
        self.error = info
        logger.warning(f"Connection failed ({kind.value}): {message}")
        self._set_state(ConnectionState.FAILED)
        self._emit_error(info)

    def _schedule_reconnect(self, delay: float, dead: EventTransport | None) -> None:
        self._cancel_reconnect()
        self._reconnect_task = asyncio.create_task(
            self._reconnect_after(delay, dead), name="sse-reconnect"
        )

    async def _reconnect_after(self, delay: float, dead: EventTransport | None) -> None:
        if dead is not None:
            await self._close_quietly(dead)
        await asyncio.sleep(delay)

        if self._state is not ConnectionState.RECONNECTING:
            return

        logger.info(
            f"Reconnecting to {self.base_url} "
            f"(attempt {self._backoff.attempts}/{self._backoff.max_retries})"
        )
        await self._open_transport()

    def _cancel_reconnect(self) -> None:
        task, self._reconnect_task = self._reconnect_task, None
        if task and not task.done() and task is not asyncio.current_task():
            task.cancel()

    # --- Heartbeat ---

    def _start_heartbeat(self) -> None:
        if self._heartbeat_task and not self._heartbeat_task.done():
            return
        self._heartbeat_task = asyncio.create_task(
            self._heartbeat_loop(), name="sse-heartbeat"
        )

    def _stop_heartbeat(self) -> None:
        task, self._heartbeat_task = self._heartbeat_task, None
        if task and not task.done() and task is not asyncio.current_task():
            task.cancel()

    async def _heartbeat_loop(self) -> None:
        interval = self.config.heartbeat_interval_seconds
        while True:
            await asyncio.sleep(interval)
            if self._state in (ConnectionState.DISCONNECTED, ConnectionState.FAILED):
                return
            if self._check_heartbeat() and self.is_connected:
                await self._run_heartbeat_callback()

    def _check_heartbeat(self) -> bool:
        """
        Run one liveness check. Returns True when the stream is alive.

        A stream opened since the previous check passes once. A miss reopens
        the stream; max_missed_heartbeats consecutive misses without a frame
        or acknowledgement move to FAILED with a timeout error.
        """
        if self._state is not ConnectionState.CONNECTED:
            return True

        is_open = self._transport is not None and self._transport.is_open
        active, fresh = self._activity_since_check, self._fresh_stream
        self._activity_since_check = False
        self._fresh_stream = False
        if is_open and active:
            self._missed_heartbeats = 0
            return True
        if is_open and fresh:
            return True

        self._missed_heartbeats += 1
        logger.warning(
            f"Heartbeat missed ({self._missed_heartbeats}/{self.config.max_missed_heartbeats})"
        )
        self._emit_heartbeat_missed()

        dead = self._detach_transport()
        if self._missed_heartbeats >= self.config.max_missed_heartbeats:
            self._close_later(dead)
            self._fail(
                ConnectionErrorKind.TIMEOUT,
                f"Missed {self._missed_heartbeats} consecutive heartbeats",
            )
            return False

        self._set_state(ConnectionState.RECONNECTING)
        self._schedule_reconnect(0, dead)
        return False

    async def _run_heartbeat_callback(self) -> None:
        if not self.heartbeat_callback:
            return
        try:
            result = self.heartbeat_callback()
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.warning(f"Heartbeat callback error: {e}")

    # --- Callback dispatch ---

    def _set_state(self, new_state: ConnectionState) -> None:
        old_state = self._state
        if new_state is old_state:
            return

        self._state = new_state
        logger.debug(f"Connection state: {old_state.value} -> {new_state.value}")
        if self.on_state_change:
            try:
                self.on_state_change(new_state, old_state)
            except Exception as e:
                logger.error(f"on_state_change callback error: {e}", exc_info=True)

    def _emit_error(self, info: ConnectionErrorInfo) -> None:
        if self.on_error:
            try:
                self.on_error(info)
            except Exception as e:
                logger.warning(f"on_error callback error: {e}")

    def _emit_heartbeat_missed(self) -> None:
        if self.on_heartbeat_missed:
            try:
                self.on_heartbeat_missed()
            except Exception as e:
                logger.error(f"on_heartbeat_missed callback error: {e}", exc_info=True)
