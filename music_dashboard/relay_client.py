"""Python consumer of the full-duplex relay.

Keeps one WebSocket open to the relay, re-authenticates on every connect and
reconnects with exponential backoff when the connection drops or goes quiet.
Received events are dispatched through an EventBus keyed by event type.

This is the package's client-side API for programs that want live playback
updates (a wall display, a scrobbler). The server never imports it::

    client = RelayClient.from_settings(get_settings(), token_provider)
    client.subscribe("playback", on_playback)
    client.start()
    ...
    await client.stop()
"""

import asyncio
import contextlib
import functools
import json
import random
from collections.abc import Awaitable, Callable
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass
from enum import Enum
from typing import Any

import websockets

from music_dashboard.config import Settings
from music_dashboard.event_bus import EventBus, Handler, Subscription
from music_dashboard.logging_config import get_logger, log_with_context

logger = get_logger(__name__)

Connector = Callable[[str], AbstractAsyncContextManager]
TokenProvider = Callable[[], Awaitable[str]]

default_connect: Connector = functools.partial(
    websockets.connect,
    open_timeout=10,
    close_timeout=5,
    ping_interval=20,
    ping_timeout=10,
)


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


@dataclass(frozen=True)
class BackoffPolicy:
    """Exponential reconnect delay: min(base * factor**attempt, cap), spread by +/- jitter."""

    base: float = 1.0
    factor: float = 2.0
    cap: float = 30.0
    jitter: float = 0.25

    def delay(self, attempt: int, rng: random.Random) -> float:
        raw = min(self.base * self.factor**attempt, self.cap)
        if self.jitter:
            raw *= 1 + rng.uniform(-self.jitter, self.jitter)
        return min(max(raw, 0.0), self.cap)


class RelayClient:
    """Reconnecting relay subscriber.

    Runs as a single task started by start() and cancelled by stop(). The
    reconnect bookkeeping (`state`, `attempt`, `next_delay`) lives on the
    instance so callers can observe it.
    """

    def __init__(
        self,
        url: str,
        token_provider: TokenProvider,
        connect: Connector = default_connect,
        backoff: BackoffPolicy | None = None,
        heartbeat_timeout: float = 60.0,
        rng: random.Random | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self._url = url
        self._token_provider = token_provider
        self._connect = connect
        self._backoff = backoff or BackoffPolicy()
        self._heartbeat_timeout = heartbeat_timeout
        self._rng = rng or random.Random()
        self._sleep = sleep
        self._task: asyncio.Task | None = None
        self._stopping = False

        self.state = ConnectionState.DISCONNECTED
        self.attempt = 0
        self.next_delay: float | None = None
        self.events = EventBus()

    @classmethod
    def from_settings(cls, settings: Settings, token_provider: TokenProvider, **kwargs: Any) -> "RelayClient":
        """Client for the relay advertised in settings; silence beyond two heartbeats means a dead link."""
        kwargs.setdefault("heartbeat_timeout", settings.heartbeat_interval * 2)
        return cls(settings.relay_websocket_url, token_provider, **kwargs)

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def subscribe(self, event_type: str, handler: Handler) -> Subscription:
        """Register a handler for one event type; handlers receive the event's `data`."""
        return self.events.subscribe(event_type, handler)

    def start(self) -> None:
        if self.running:
            return
        self._stopping = False
        self._task = asyncio.create_task(self._run(), name="relay-client")

    async def stop(self) -> None:
        self._stopping = True
        task, self._task = self._task, None
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._set_state(ConnectionState.DISCONNECTED)
        self.next_delay = None

    async def _run(self) -> None:
        while not self._stopping:
            self._set_state(ConnectionState.CONNECTING)
            try:
                await self._connect_once()
            except TimeoutError:
                log_with_context(
                    logger,
                    "warning",
                    "Relay went quiet, reconnecting",
                    heartbeat_timeout=self._heartbeat_timeout,
                    event_type="relay_client_timeout",
                )
            except Exception as e:
                log_with_context(
                    logger,
                    "warning",
                    "Relay connection lost",
                    url=self._url,
                    error=str(e),
                    error_type=type(e).__name__,
                    event_type="relay_client_disconnected",
                )

            self._set_state(ConnectionState.DISCONNECTED)
            if self._stopping:
                break

            self.next_delay = self._backoff.delay(self.attempt, self._rng)
            self.attempt += 1
            log_with_context(
                logger,
                "info",
                "Scheduling relay reconnect",
                attempt=self.attempt,
                delay_seconds=round(self.next_delay, 3),
                event_type="relay_client_backoff",
            )
            await self._sleep(self.next_delay)

    async def _connect_once(self) -> None:
        async with self._connect(self._url) as ws:
            self._set_state(ConnectionState.CONNECTED)
            self.attempt = 0
            self.next_delay = None

            token = await self._token_provider()
            await ws.send(json.dumps({"type": "auth", "token": token}))

            while True:
                raw = await asyncio.wait_for(ws.recv(), timeout=self._heartbeat_timeout)
                await self._handle(ws, raw)

    async def _handle(self, ws: Any, raw: str | bytes) -> None:
        try:
            message = json.loads(raw)
        except ValueError:
            log_with_context(logger, "warning", "Ignoring non-JSON relay message", event_type="relay_client_bad_message")
            return
        if not isinstance(message, dict) or "type" not in message:
            log_with_context(logger, "warning", "Ignoring untyped relay message", event_type="relay_client_bad_message")
            return

        event_type = message["type"]
        if event_type == "ping":
            await ws.send(json.dumps({"type": "pong"}))
        elif event_type == "error":
            log_with_context(
                logger,
                "warning",
                "Relay reported an error",
                error=(message.get("data") or {}).get("message"),
                code=(message.get("data") or {}).get("code"),
                event_type="relay_client_error_event",
            )

        self.events.publish(event_type, message.get("data"))

    def _set_state(self, state: ConnectionState) -> None:
        if state is self.state:
            return
        log_with_context(
            logger,
            "debug",
            "Relay client state change",
            from_state=self.state.value,
            to_state=state.value,
            event_type="relay_client_state",
        )
        self.state = state
