"""Reconnecting consumer for the ``/api/updates/stream`` SSE channel.

Used by dashboards and background workers that follow an event live. The
client never gives up: after a drop it reconnects, backing off
exponentially (capped, jittered) while connection attempts keep failing.
Updates published while disconnected are not replayed.
"""

import asyncio
import json
from collections.abc import Awaitable, Callable
from enum import Enum

import httpx
import structlog
from pydantic import ValidationError as PydanticValidationError
from tenacity import AsyncRetrying, retry_if_exception_type, stop_never, wait_exponential_jitter

from pledgerank.schemas.updates import UpdateEvent, UpdateType

logger = structlog.get_logger(__name__)

UpdateHandler = Callable[[UpdateEvent], Awaitable[None]]
StateListener = Callable[["ConnectionState"], None]

_UPDATE_TYPES = {t.value for t in UpdateType}


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


def parse_sse_frame(lines: list[str]) -> tuple[str, str] | None:
    """Collapse one SSE frame into (event type, data). Comment-only frames give None."""
    event_type = "message"
    data: list[str] = []
    for line in lines:
        if line.startswith(":"):
            continue
        field, _, value = line.partition(":")
        value = value[1:] if value.startswith(" ") else value
        if field == "event":
            event_type = value
        elif field == "data":
            data.append(value)
    if not data and event_type == "message":
        return None
    return event_type, "\n".join(data)


class UpdateFeedClient:
    """Follows one topic and hands each update to ``handler``.

    Usage::

        client = UpdateFeedClient("https://api.example.org", topic="event:gala-2026")
        await client.run(handle_update)   # until client.stop()
    """

    def __init__(
        self,
        base_url: str,
        topic: str = "global",
        initial_delay: float = 1.0,
        max_delay: float = 30.0,
        jitter: float = 1.0,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        on_state_change: StateListener | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.topic = topic
        self.initial_delay = initial_delay
        self.max_delay = max_delay
        self.jitter = jitter
        self._transport = transport
        self._sleep = sleep
        self._on_state_change = on_state_change
        self._stopped = False
        self.state = ConnectionState.DISCONNECTED
        self.reconnects = 0

    def _set_state(self, state: ConnectionState) -> None:
        if state is self.state:
            return
        self.state = state
        logger.debug("update_feed_state", topic=self.topic, state=state.value)
        if self._on_state_change is not None:
            self._on_state_change(state)

    def stop(self) -> None:
        self._stopped = True

    @property
    def stopped(self) -> bool:
        return self._stopped

    async def run(self, handler: UpdateHandler) -> None:
        """Consume until ``stop()``. Never raises for connection or handler failures."""
        while not self._stopped:
            async for attempt in AsyncRetrying(
                retry=retry_if_exception_type(httpx.HTTPError),
                wait=wait_exponential_jitter(initial=self.initial_delay, max=self.max_delay, jitter=self.jitter),
                stop=stop_never,
                sleep=self._sleep,
                before_sleep=lambda rs: logger.info(
                    "update_feed_retrying",
                    topic=self.topic,
                    attempt=rs.attempt_number,
                    sleep_seconds=rs.next_action.sleep,
                    error=str(rs.outcome.exception()),
                ),
                reraise=True,
            ):
                with attempt:
                    await self._stream_once(handler)

            if not self._stopped:
                # Connected stream ended; start a fresh backoff sequence
                self.reconnects += 1
                await self._sleep(self.initial_delay)

        self._set_state(ConnectionState.DISCONNECTED)

    async def _stream_once(self, handler: UpdateHandler) -> None:
        if self._stopped:
            return

        self._set_state(ConnectionState.CONNECTING)
        try:
            async with httpx.AsyncClient(base_url=self.base_url, transport=self._transport, timeout=None) as client:
                async with client.stream(
                    "GET",
                    "/api/updates/stream",
                    params={"topic": self.topic},
                    headers={"Accept": "text/event-stream"},
                ) as response:
                    response.raise_for_status()
                    self._set_state(ConnectionState.CONNECTED)
                    await self._consume(response, handler)
        except httpx.HTTPError:
            if self.state is ConnectionState.CONNECTED:
                # Drop after a successful connect is not a failed attempt
                self._set_state(ConnectionState.DISCONNECTED)
                return
            self._set_state(ConnectionState.DISCONNECTED)
            raise
        self._set_state(ConnectionState.DISCONNECTED)

    async def _consume(self, response: httpx.Response, handler: UpdateHandler) -> None:
        frame: list[str] = []
        async for line in response.aiter_lines():
            if self._stopped:
                return
            if line:
                frame.append(line)
                continue
            parsed = parse_sse_frame(frame)
            frame = []
            if parsed is None:
                continue
            event_type, data = parsed
            if event_type not in _UPDATE_TYPES:
                continue  # connected / heartbeat
            try:
                update = UpdateEvent.model_validate(json.loads(data))
            except (json.JSONDecodeError, PydanticValidationError) as exc:
                logger.warning("update_feed_bad_frame", topic=self.topic, error=str(exc))
                continue
            try:
                await handler(update)
            except Exception:
                # A bad handler must not end the feed
                logger.exception(
                    "update_feed_handler_failed", topic=self.topic, update_id=update.id, update_type=update.type.value
                )
