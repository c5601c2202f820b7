"""Typed in-process publish/subscribe for relay events."""

from collections.abc import Callable
from typing import Any

from music_dashboard.logging_config import get_logger, log_with_context

logger = get_logger(__name__)

Handler = Callable[[Any], None]


class Subscription:
    """Token returned by EventBus.subscribe.

    unsubscribe() may be called at any time, including after the bus has
    been cleared or discarded; calls after the first are no-ops.
    """

    def __init__(self, bus: "EventBus", event_type: str, handler: Handler):
        self._bus: EventBus | None = bus
        self.event_type = event_type
        self.handler = handler

    @property
    def active(self) -> bool:
        return self._bus is not None

    def unsubscribe(self) -> None:
        bus, self._bus = self._bus, None
        if bus is not None:
            bus._remove(self)


class EventBus:
    """Handlers per event type; the publisher owns the bus, subscribers own their tokens."""

    def __init__(self) -> None:
        self._handlers: dict[str, list[Subscription]] = {}

    def subscribe(self, event_type: str, handler: Handler) -> Subscription:
        subscription = Subscription(self, event_type, handler)
        self._handlers.setdefault(event_type, []).append(subscription)
        return subscription

    def publish(self, event_type: str, payload: Any = None) -> int:
        """Call every handler registered for event_type.

        A failing handler is logged and does not stop the others.

        Returns:
            Number of handlers called
        """
        delivered = 0
        for subscription in list(self._handlers.get(event_type, ())):
            try:
                subscription.handler(payload)
            except Exception as e:
                log_with_context(
                    logger,
                    "error",
                    "Event handler failed",
                    event_name=event_type,
                    error=str(e),
                    error_type=type(e).__name__,
                    event_type="event_handler_error",
                )
            delivered += 1
        return delivered

    def subscriber_count(self, event_type: str | None = None) -> int:
        if event_type is not None:
            return len(self._handlers.get(event_type, ()))
        return sum(len(subs) for subs in self._handlers.values())

    def clear(self) -> None:
        self._handlers.clear()

    def _remove(self, subscription: Subscription) -> None:
        subs = self._handlers.get(subscription.event_type)
        if subs and subscription in subs:
            subs.remove(subscription)
            if not subs:
                del self._handlers[subscription.event_type]
