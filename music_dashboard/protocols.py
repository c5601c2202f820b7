"""Protocol definitions for dependency injection."""

from collections.abc import Awaitable, Callable
from typing import Protocol

from music_dashboard.models.events import RelayEvent

CloseCallback = Callable[[], Awaitable[None]]
MessageCallback = Callable[[str], Awaitable[None]]


class TransportProtocol(Protocol):
    """Delivery channel between the relay and one connected client.

    Implementations must deliver events in push order, refuse pushes once
    closed, and close themselves when a write fails.
    """

    @property
    def closed(self) -> bool: ...

    @property
    def last_activity(self) -> float:
        """Monotonic time of the last successful write or inbound message."""
        ...

    async def push(self, event: RelayEvent) -> None:
        """Deliver one event.

        Raises:
            TransportFailureException: If the write failed (the transport is closed afterwards)
        """
        ...

    async def send_heartbeat(self) -> None:
        """Keep the connection alive between events."""
        ...

    async def close(self) -> None:
        """Close the transport; idempotent. Runs the on_close callbacks once."""
        ...

    def on_close(self, callback: CloseCallback) -> None: ...


class DuplexTransportProtocol(TransportProtocol, Protocol):
    """Transport that also receives client messages."""

    def on_message(self, callback: MessageCallback) -> None: ...

    async def receive_loop(self) -> None:
        """Dispatch inbound messages until the client disconnects."""
        ...
