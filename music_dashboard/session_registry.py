"""Registry of live relay sessions, one per connected client."""

import asyncio
import time
import uuid
from collections.abc import Awaitable, Callable
from enum import Enum

from music_dashboard.exceptions import UnauthenticatedException
from music_dashboard.logging_config import get_logger, log_with_context
from music_dashboard.models.credential import Credential
from music_dashboard.models.events import DATA_EVENT_TYPES
from music_dashboard.models.snapshots import PlaybackSnapshot
from music_dashboard.protocols import TransportProtocol
from music_dashboard.state_managers import StateManager

logger = get_logger(__name__)

POLL_KINDS = ("playback", "queue", "devices")

CredentialValidator = Callable[[Credential], Awaitable[None]]


class SessionState(str, Enum):
    CONNECTED = "connected"
    AUTHENTICATED = "authenticated"
    CLOSED = "closed"


class Session:
    """One live client connection and what it was last told."""

    def __init__(self, session_id: str, transport: TransportProtocol):
        self.session_id = session_id
        self.transport = transport
        self.state = SessionState.CONNECTED
        self.credential: Credential | None = None
        self.created_at = time.time()

        # Fingerprints of the last state successfully pushed to this client
        self.playback: PlaybackSnapshot | None = None
        self.queue_fingerprint: str | None = None
        self.devices_fingerprint: str | None = None

        self.subscriptions: set[str] = set(DATA_EVENT_TYPES)
        self.auth_failures = 0

        self.auth_lock = asyncio.Lock()
        self.poll_locks = {kind: asyncio.Lock() for kind in POLL_KINDS}
        self.tasks: dict[str, asyncio.Task] = {}

    @property
    def is_authenticated(self) -> bool:
        return self.state is SessionState.AUTHENTICATED

    @property
    def is_closed(self) -> bool:
        return self.state is SessionState.CLOSED

    @property
    def last_heartbeat(self) -> float:
        return self.transport.last_activity

    def reset_fingerprints(self) -> None:
        self.playback = None
        self.queue_fingerprint = None
        self.devices_fingerprint = None

    def cancel_tasks(self) -> None:
        """Cancel every timer without waiting for in-flight upstream calls."""
        current = asyncio.current_task()
        for task in self.tasks.values():
            # The calling task notices the closed state and exits on its own
            if task is not current and not task.done():
                task.cancel()
        self.tasks.clear()

    def describe(self) -> dict:
        return {
            "session_id": self.session_id,
            "state": self.state.value,
            "transport": getattr(self.transport, "kind", type(self.transport).__name__),
            "credential": self.credential.fingerprint if self.credential else None,
            "subscriptions": sorted(self.subscriptions),
            "auth_failures": self.auth_failures,
            "tasks": sorted(self.tasks),
        }


class SessionRegistry(StateManager):
    """Tracks sessions by id.

    Authentication attempts for one session are serialized; the first
    credential accepted is kept until replace_credential() is called.
    """

    def __init__(self, validator: CredentialValidator | None = None):
        self._sessions: dict[str, Session] = {}
        self._validator = validator

    async def initialize(self) -> None:
        pass

    async def cleanup(self) -> None:
        """Destroy every session on shutdown."""
        for session_id in list(self._sessions):
            await self.destroy_session(session_id)

    async def create_session(self, transport: TransportProtocol) -> str:
        """Register a new, unauthenticated session for a transport.

        Closing the transport destroys the session.
        """
        session_id = uuid.uuid4().hex
        session = Session(session_id, transport)
        self._sessions[session_id] = session

        async def _on_transport_close() -> None:
            await self.destroy_session(session_id)

        transport.on_close(_on_transport_close)
        log_with_context(
            logger,
            "info",
            "Session created",
            session_id=session_id,
            transport=getattr(transport, "kind", type(transport).__name__),
            active_sessions=len(self._sessions),
            event_type="session_created",
        )
        return session_id

    async def authenticate(self, session_id: str, credential: Credential) -> bool:
        """Attach a credential to a session after validating it.

        Returns:
            True if the session now holds this credential; False if the
            session is gone, the credential was rejected, or a different
            credential was already accepted

        Raises:
            UpstreamUnavailableException: Validation could not reach Spotify
        """
        session = self._sessions.get(session_id)
        if session is None:
            return False

        async with session.auth_lock:
            if session.is_closed:
                return False
            if session.credential is not None:
                return session.credential.fingerprint == credential.fingerprint
            if not await self._validate(session_id, credential):
                return False
            if session.is_closed:
                return False

            session.credential = credential
            session.state = SessionState.AUTHENTICATED
            session.auth_failures = 0

        log_with_context(
            logger,
            "info",
            "Session authenticated",
            session_id=session_id,
            credential=credential.fingerprint,
            event_type="session_authenticated",
        )
        return True

    async def replace_credential(self, session_id: str, credential: Credential) -> bool:
        """Swap an authenticated session's credential for a new, validated one."""
        session = self._sessions.get(session_id)
        if session is None:
            return False

        async with session.auth_lock:
            if not session.is_authenticated:
                return False
            if not await self._validate(session_id, credential):
                return False
            if session.credential is None or session.credential.fingerprint != credential.fingerprint:
                session.reset_fingerprints()
            session.credential = credential
            session.auth_failures = 0

        log_with_context(
            logger,
            "info",
            "Session credential replaced",
            session_id=session_id,
            credential=credential.fingerprint,
            event_type="session_credential_replaced",
        )
        return True

    async def destroy_session(self, session_id: str) -> bool:
        """Close a session, cancel its timers and release its transport.

        Idempotent: destroying an unknown or already destroyed session is a no-op.

        Returns:
            True if a live session was destroyed by this call
        """
        session = self._sessions.pop(session_id, None)
        if session is None:
            return False

        session.state = SessionState.CLOSED
        session.cancel_tasks()
        await session.transport.close()

        log_with_context(
            logger,
            "info",
            "Session destroyed",
            session_id=session_id,
            active_sessions=len(self._sessions),
            event_type="session_destroyed",
        )
        return True

    async def reap_stale(self, timeout: float, now: float | None = None) -> list[str]:
        """Destroy sessions whose transport has been silent for longer than timeout seconds."""
        now = time.monotonic() if now is None else now
        stale = [sid for sid, session in self._sessions.items() if now - session.last_heartbeat > timeout]
        for session_id in stale:
            log_with_context(
                logger,
                "warning",
                "Reaping stale session",
                session_id=session_id,
                timeout_seconds=timeout,
                event_type="session_stale",
            )
            await self.destroy_session(session_id)
        return stale

    def get(self, session_id: str) -> Session | None:
        return self._sessions.get(session_id)

    def sessions(self) -> list[Session]:
        return list(self._sessions.values())

    def count_by_state(self) -> dict[str, int]:
        counts = {state.value: 0 for state in SessionState if state is not SessionState.CLOSED}
        for session in self._sessions.values():
            counts[session.state.value] += 1
        return counts

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    async def _validate(self, session_id: str, credential: Credential) -> bool:
        if self._validator is None:
            return True
        try:
            await self._validator(credential)
        except UnauthenticatedException as e:
            log_with_context(
                logger,
                "warning",
                "Session credential rejected",
                session_id=session_id,
                credential=credential.fingerprint,
                error=e.message,
                event_type="session_auth_rejected",
            )
            return False
        return True
