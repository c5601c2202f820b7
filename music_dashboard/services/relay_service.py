"""Connection lifecycle of the real-time relay.

Ties a transport to a session, authenticates it, starts and stops its
polling, and interprets inbound messages on the full-duplex transport.
"""

from typing import Any

from pydantic import ValidationError

from music_dashboard.config import Settings
from music_dashboard.exceptions import (
    ErrorCode,
    MalformedClientMessageException,
    SessionNotFoundException,
    TransportFailureException,
    UpstreamUnavailableException,
)
from music_dashboard.logging_config import get_logger, log_with_context
from music_dashboard.models.credential import Credential
from music_dashboard.models.events import AuthMessage, RelayEvent, SubscribeMessage, client_message_adapter
from music_dashboard.protocols import TransportProtocol
from music_dashboard.scheduler import FanoutScheduler
from music_dashboard.services.spotify_client import EndpointClass
from music_dashboard.services.spotify_gateway import SpotifyGateway
from music_dashboard.session_registry import Session, SessionRegistry
from music_dashboard.transports import EventStreamTransport

logger = get_logger(__name__)


class RelayService:
    def __init__(
        self,
        registry: SessionRegistry,
        scheduler: FanoutScheduler,
        gateway: SpotifyGateway,
        settings: Settings,
    ):
        self._registry = registry
        self._scheduler = scheduler
        self._gateway = gateway
        self._settings = settings

    @property
    def registry(self) -> SessionRegistry:
        return self._registry

    @property
    def scheduler(self) -> FanoutScheduler:
        return self._scheduler

    async def validate_credential(self, credential: Credential) -> None:
        """Prove a credential works by reading the current user through the gateway.

        Raises:
            UnauthenticatedException: Spotify rejected the credential
            UpstreamUnavailableException: Spotify could not be asked
        """
        await self._gateway.read(EndpointClass.CURRENT_USER, credential)

    async def connect(self, transport: TransportProtocol) -> str:
        """Register a transport and greet the client with a `connected` event."""
        session_id = await self._registry.create_session(transport)
        await self._push(session_id, RelayEvent(type="connected", data={"session_id": session_id}))
        return session_id

    async def authenticate(self, session_id: str, credential: Credential) -> bool:
        """Authenticate a session and start its polling.

        The client is told the outcome: `auth_success` or an `error` event.
        A rejected attempt leaves the session connected so the client can retry.

        Raises:
            SessionNotFoundException: No live session with this id
        """
        session = self._registry.get(session_id)
        if session is None:
            raise SessionNotFoundException(session_id)

        try:
            accepted = await self._registry.authenticate(session_id, credential)
        except UpstreamUnavailableException as e:
            await self._push(session_id, RelayEvent.error(e.code.value, "Spotify is unavailable, try again"))
            return False

        if not accepted:
            if session.is_authenticated:
                event = RelayEvent.error(
                    ErrorCode.ALREADY_AUTHENTICATED.value, "Session is already authenticated with another token"
                )
            else:
                event = RelayEvent.error(ErrorCode.SPOTIFY_NOT_AUTHENTICATED.value, "Invalid token")
            await self._push(session_id, event)
            return False

        if not await self._push(session_id, RelayEvent(type="auth_success")):
            return False
        self._scheduler.start(session)
        return True

    async def handle_message(self, session_id: str, raw: str) -> None:
        """Interpret one inbound full-duplex message.

        Malformed messages are answered with an `error` event; the connection stays open.
        """
        session = self._registry.get(session_id)
        if session is None:
            return

        try:
            message = client_message_adapter.validate_json(raw)
        except ValidationError as e:
            error = MalformedClientMessageException(details={"errors": e.error_count()})
            log_with_context(
                logger,
                "warning",
                "Malformed client message",
                session_id=session_id,
                error=error.message,
                validation_errors=e.error_count(),
                event_type="client_message_malformed",
            )
            await self._push(session_id, RelayEvent.error(error.code.value, error.message))
            return

        if isinstance(message, AuthMessage):
            credential = Credential(access_token=message.token, refresh_token=message.refresh_token)
            await self.authenticate(session_id, credential)
        elif isinstance(message, SubscribeMessage):
            self._apply_subscription(session, message)
        # ping/pong only refresh the transport's activity time, already done on receipt

    async def open_event_stream(self, credential: Credential) -> EventStreamTransport:
        """Create, register and authenticate a push-stream session.

        The stream carries no in-band auth; if the credential is rejected the
        client receives the error event and the stream ends.
        """
        transport = EventStreamTransport(queue_size=self._settings.event_stream_queue_size)
        session_id = await self.connect(transport)
        if not await self.authenticate(session_id, credential):
            await self._registry.destroy_session(session_id)
        return transport

    async def disconnect(self, session_id: str) -> None:
        await self._registry.destroy_session(session_id)

    def stats(self) -> dict[str, Any]:
        return {
            "sessions": len(self._registry),
            "sessions_by_state": self._registry.count_by_state(),
            "event_subscribers": self._scheduler.events.subscriber_count(),
            "cache": self._gateway.cache.stats(),
            "in_flight_requests": self._gateway.in_flight(),
            "upstream_calls": self._gateway.upstream_calls,
        }

    def _apply_subscription(self, session: Session, message: SubscribeMessage) -> None:
        requested = set(message.events)
        added = requested - session.subscriptions
        session.subscriptions = requested

        # Newly subscribed kinds get the current state on their next tick
        if "playback" in added:
            session.playback = None
        if "queue" in added:
            session.queue_fingerprint = None
        if "devices" in added:
            session.devices_fingerprint = None

        log_with_context(
            logger,
            "info",
            "Session subscriptions updated",
            session_id=session.session_id,
            subscriptions=sorted(requested),
            event_type="session_subscribed",
        )

    async def _push(self, session_id: str, event: RelayEvent) -> bool:
        session = self._registry.get(session_id)
        if session is None:
            return False
        try:
            await session.transport.push(event)
        except TransportFailureException as e:
            log_with_context(
                logger,
                "warning",
                "Dropping session after transport failure",
                session_id=session_id,
                relay_event=event.type,
                error=e.message,
                event_type="session_transport_failed",
            )
            await self._registry.destroy_session(session_id)
            return False
        return True
