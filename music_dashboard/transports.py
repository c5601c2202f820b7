"""Transport adapters: WebSocket (full-duplex) and Server-Sent Events (push-stream)."""

import asyncio
import contextlib
import time
from collections.abc import AsyncIterator

from fastapi import WebSocket, WebSocketDisconnect

from music_dashboard.cache import Clock
from music_dashboard.exceptions import TransportFailureException
from music_dashboard.logging_config import get_logger, log_with_context
from music_dashboard.models.events import RelayEvent
from music_dashboard.protocols import CloseCallback, MessageCallback

logger = get_logger(__name__)

_HEARTBEAT = object()
_END_OF_STREAM = None


class _BaseTransport:
    """Close bookkeeping shared by both transports."""

    kind = "base"

    def __init__(self, clock: Clock = time.monotonic):
        self._clock = clock
        self._closed = False
        self._close_callbacks: list[CloseCallback] = []
        self._last_activity = clock()

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def last_activity(self) -> float:
        return self._last_activity

    def on_close(self, callback: CloseCallback) -> None:
        self._close_callbacks.append(callback)

    def _mark_active(self) -> None:
        self._last_activity = self._clock()

    async def _run_close_callbacks(self) -> None:
        callbacks, self._close_callbacks = self._close_callbacks, []
        for callback in callbacks:
            try:
                await callback()
            except Exception as e:
                log_with_context(
                    logger,
                    "error",
                    "Transport close callback failed",
                    transport=self.kind,
                    error=str(e),
                    error_type=type(e).__name__,
                    event_type="transport_close_callback_error",
                )


class WebSocketTransport(_BaseTransport):
    """Full-duplex transport over a FastAPI WebSocket.

    Writes are serialized by a lock so events leave in push order.
    """

    kind = "websocket"

    def __init__(self, websocket: WebSocket, clock: Clock = time.monotonic):
        super().__init__(clock)
        self._websocket = websocket
        self._write_lock = asyncio.Lock()
        self._message_callbacks: list[MessageCallback] = []

    async def accept(self) -> None:
        await self._websocket.accept()
        self._mark_active()

    def on_message(self, callback: MessageCallback) -> None:
        self._message_callbacks.append(callback)

    async def push(self, event: RelayEvent) -> None:
        error: Exception | None = None
        async with self._write_lock:
            if self._closed:
                raise TransportFailureException("Transport already closed", details={"event": event.type})
            try:
                await self._websocket.send_text(event.to_json())
            except (WebSocketDisconnect, RuntimeError, OSError) as e:
                error = e

        if error is not None:
            log_with_context(
                logger,
                "warning",
                "WebSocket write failed",
                relay_event=event.type,
                error=str(error),
                error_type=type(error).__name__,
                event_type="transport_write_failed",
            )
            await self.close(code=1011)
            raise TransportFailureException(f"WebSocket write failed: {error}") from error

        self._mark_active()

    async def send_heartbeat(self) -> None:
        await self.push(RelayEvent(type="ping"))

    async def receive_loop(self) -> None:
        try:
            while not self._closed:
                message = await self._websocket.receive()
                if message["type"] == "websocket.disconnect":
                    break
                text = message.get("text")
                if text is None and message.get("bytes") is not None:
                    text = message["bytes"].decode("utf-8", errors="replace")
                if text is None:
                    continue
                self._mark_active()
                for callback in list(self._message_callbacks):
                    await callback(text)
        except WebSocketDisconnect:
            pass
        finally:
            await self.close()

    async def close(self, code: int = 1000) -> None:
        if self._closed:
            return
        self._closed = True
        # Peer may already be gone
        with contextlib.suppress(WebSocketDisconnect, RuntimeError, OSError):
            await self._websocket.close(code=code)
        log_with_context(logger, "debug", "WebSocket transport closed", code=code, event_type="transport_closed")
        await self._run_close_callbacks()


class EventStreamTransport(_BaseTransport):
    """Server-to-client stream rendered as text/event-stream by a StreamingResponse.

    Events are queued and written by stream(); a full queue means the client
    is not reading and counts as a failed write.
    """

    kind = "event-stream"

    def __init__(self, queue_size: int = 100, clock: Clock = time.monotonic):
        super().__init__(clock)
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=queue_size)

    async def push(self, event: RelayEvent) -> None:
        if self._closed:
            raise TransportFailureException("Transport already closed", details={"event": event.type})
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull as e:
            log_with_context(
                logger,
                "warning",
                "Event stream client is not keeping up",
                relay_event=event.type,
                queue_size=self._queue.maxsize,
                event_type="transport_write_failed",
            )
            await self.close()
            raise TransportFailureException("Event stream queue overflow") from e

    async def send_heartbeat(self) -> None:
        if self._closed:
            raise TransportFailureException("Transport already closed")
        # Heartbeats are advisory; skip them while events are backed up
        with contextlib.suppress(asyncio.QueueFull):
            self._queue.put_nowait(_HEARTBEAT)

    async def stream(self) -> AsyncIterator[str]:
        """Yield SSE frames until the transport closes or the client goes away."""
        try:
            while True:
                item = await self._queue.get()
                if item is _END_OF_STREAM:
                    break
                if item is _HEARTBEAT:
                    yield ": keepalive\n\n"
                else:
                    yield f"data: {item.to_json()}\n\n"
                self._mark_active()
        finally:
            # Runs on client disconnect too, where the response task is being cancelled
            await asyncio.shield(self.close())

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            self._queue.put_nowait(_END_OF_STREAM)
        except asyncio.QueueFull:
            while not self._queue.empty():
                self._queue.get_nowait()
            self._queue.put_nowait(_END_OF_STREAM)
        log_with_context(logger, "debug", "Event stream transport closed", event_type="transport_closed")
        await self._run_close_callbacks()
