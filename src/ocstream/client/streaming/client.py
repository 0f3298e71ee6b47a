from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Callable, Optional

import httpx
from httpx_sse import aconnect_sse
from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)


# Event stream frame payloads (based on observed /global/event frames)
# Using Pydantic for runtime validation


class EventPayload(BaseModel):
    """Inner payload of a global event frame."""

    model_config = ConfigDict(extra="allow")

    type: str
    properties: dict[str, Any] = Field(default_factory=dict)


class GlobalEvent(BaseModel):
    """One event delivered on the /global/event stream."""

    model_config = ConfigDict(extra="allow")

    payload: EventPayload
    session_id: Optional[str] = None
    directory: Optional[str] = None
    projectName: Optional[str] = None


class MessagePartPayload(BaseModel):
    """The `part` object carried by message.part.updated frames."""

    model_config = ConfigDict(extra="allow")

    id: Optional[str] = None
    messageID: str
    sessionID: Optional[str] = None
    type: str = "text"
    text: Optional[str] = None


class EventStreamClosed(Exception):
    """The server ended the event stream."""


def parse_frame(data: str) -> list[Any]:
    """
    Decode one SSE data field into a list of raw events.

    Frames carry either a single event object or an array of them.
    Raises json.JSONDecodeError for non-JSON data.
    """
    decoded = json.loads(data)
    if isinstance(decoded, list):
        return decoded
    return [decoded]


class EventStreamClient:
    """
    Server-Sent-Events transport for {base_url}/global/event.

    Exposes the EventSource-style surface the connection state machine
    drives: open()/close() plus on_open, on_message and on_error callbacks.
    Callbacks run on the reader task, in frame order.

    Example:
        stream = EventStreamClient("http://localhost:4096/global/event")
        stream.on_message = lambda data: print(data)
        await stream.open()
        ...
        await stream.close()
    """

    def __init__(
        self,
        url: str,
        http_client: httpx.AsyncClient | None = None,
        headers: dict[str, str] | None = None,
    ):
        self.url = url
        self.headers = headers or {}
        self._http_client = http_client
        self._owns_client = http_client is None
        self._task: asyncio.Task[None] | None = None
        self._is_open = False

        self.on_open: Callable[[], None] | None = None
        self.on_message: Callable[[str], None] | None = None
        self.on_error: Callable[[Exception], None] | None = None

    @property
    def is_open(self) -> bool:
        return self._is_open

    async def open(self) -> None:
        """Start reading the stream in a background task."""
        if self._task and not self._task.done():
            logger.warning("[SSE] Stream already open")
            return

        if self._http_client is None:
            # No read timeout on the long-lived stream
            self._http_client = httpx.AsyncClient(timeout=httpx.Timeout(10.0, read=None))

        self._task = asyncio.create_task(self._run(), name=f"sse-{self.url}")

    async def close(self) -> None:
        """Stop reading and release the HTTP client if we created it."""
        self._is_open = False
        task, self._task = self._task, None
        if task and not task.done() and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        if self._owns_client and self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    async def _run(self) -> None:
        assert self._http_client is not None
        logger.debug(f"[SSE] Opening stream: {self.url}")
        try:
            async with aconnect_sse(
                self._http_client, "GET", self.url, headers=self.headers
            ) as event_source:
                event_source.response.raise_for_status()
                self._is_open = True
                logger.info(f"[SSE] Stream open: {self.url}")
                self._emit_open()

                async for sse in event_source.aiter_sse():
                    if sse.event != "message" or not sse.data:
                        logger.debug(f"[SSE] Skipping '{sse.event}' frame")
                        continue
                    self._emit_message(sse.data)

            raise EventStreamClosed("Event stream closed by server")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._is_open = False
            logger.warning(f"[SSE] Stream error on {self.url}: {e}")
            self._emit_error(e)

    def _emit_open(self) -> None:
        if self.on_open:
            self.on_open()

    def _emit_message(self, data: str) -> None:
        if self.on_message:
            self.on_message(data)

    def _emit_error(self, error: Exception) -> None:
        if self.on_error:
            self.on_error(error)
