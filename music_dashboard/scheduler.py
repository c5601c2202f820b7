"""Per-session polling timers that turn upstream state into pushed events.

Every authenticated session gets three poll tasks (playback, queue, devices)
and a heartbeat task. A tick reads through the shared gateway, so sessions of
the same user coalesce onto one upstream call, and pushes only when the change
detector says the state moved.
"""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from music_dashboard.change_detector import (
    has_significant_devices_change,
    has_significant_playback_change,
    has_significant_queue_change,
    has_track_changed,
)
from music_dashboard.config import Settings
from music_dashboard.event_bus import EventBus
from music_dashboard.exceptions import (
    ErrorCode,
    TransportFailureException,
    UnauthenticatedException,
    UpstreamUnavailableException,
)
from music_dashboard.logging_config import get_logger, log_with_context
from music_dashboard.models.events import RelayEvent, now_ms
from music_dashboard.models.snapshots import DevicesSnapshot, PlaybackSnapshot, QueueSnapshot
from music_dashboard.services.spotify_client import EndpointClass
from music_dashboard.services.spotify_gateway import SpotifyGateway
from music_dashboard.session_registry import Session, SessionRegistry

logger = get_logger(__name__)

Tick = Callable[[Session], Awaitable[bool]]
Sleep = Callable[[float], Awaitable[Any]]


@dataclass(frozen=True)
class Delivery:
    """Published on FanoutScheduler.events for every event a session received."""

    session_id: str
    event: RelayEvent


class FanoutScheduler:
    def __init__(
        self,
        gateway: SpotifyGateway,
        registry: SessionRegistry,
        settings: Settings,
        clock_ms: Callable[[], int] = now_ms,
        sleep: Sleep = asyncio.sleep,
    ):
        self._gateway = gateway
        self._registry = registry
        self._clock_ms = clock_ms
        self._sleep = sleep
        self._intervals = {
            "playback": settings.playback_poll_interval,
            "queue": settings.queue_poll_interval,
            "devices": settings.devices_poll_interval,
        }
        self._heartbeat_interval = settings.heartbeat_interval
        self._progress_threshold_ms = settings.progress_jump_threshold_ms
        self._max_auth_failures = settings.max_auth_failures
        self.events = EventBus()

    def start(self, session: Session) -> None:
        """Start the poll and heartbeat tasks of an authenticated session.

        Calling start() on a session that is already running is a no-op.
        """
        if not session.is_authenticated or session.tasks:
            return

        ticks: dict[str, Tick] = {
            "playback": self.poll_playback,
            "queue": self.poll_queue,
            "devices": self.poll_devices,
        }
        for kind, tick in ticks.items():
            session.tasks[kind] = asyncio.create_task(
                self._run_periodic(session, tick, self._intervals[kind], immediate=True),
                name=f"{kind}:{session.session_id}",
            )
        session.tasks["heartbeat"] = asyncio.create_task(
            self._run_periodic(session, self.send_heartbeat, self._heartbeat_interval, immediate=False),
            name=f"heartbeat:{session.session_id}",
        )

        log_with_context(
            logger,
            "info",
            "Session polling started",
            session_id=session.session_id,
            intervals=self._intervals,
            event_type="polling_started",
        )

    def stop(self, session: Session) -> None:
        session.cancel_tasks()

    async def poll_playback(self, session: Session) -> bool:
        """Run one playback tick. Returns True if an event was pushed."""
        return await self._guarded(session, "playback", self._playback_tick)

    async def poll_queue(self, session: Session) -> bool:
        return await self._guarded(session, "queue", self._queue_tick)

    async def poll_devices(self, session: Session) -> bool:
        return await self._guarded(session, "devices", self._devices_tick)

    async def send_heartbeat(self, session: Session) -> bool:
        try:
            await session.transport.send_heartbeat()
        except TransportFailureException as e:
            await self._drop(session, e)
            return False
        return True

    async def _run_periodic(self, session: Session, tick: Tick, interval: float, immediate: bool) -> None:
        if not immediate:
            await self._sleep(interval)
        while session.is_authenticated:
            try:
                await tick(session)
            except Exception as e:
                log_with_context(
                    logger,
                    "error",
                    "Unexpected error in session tick",
                    session_id=session.session_id,
                    tick=getattr(tick, "__name__", repr(tick)),
                    error=str(e),
                    error_type=type(e).__name__,
                    event_type="poll_unexpected_error",
                )
            if not session.is_authenticated:
                break
            await self._sleep(interval)

    async def _guarded(self, session: Session, kind: str, tick: Tick) -> bool:
        lock = session.poll_locks[kind]
        if lock.locked():
            log_with_context(
                logger,
                "debug",
                "Skipping tick, previous one still running",
                session_id=session.session_id,
                poll=kind,
                event_type="poll_skipped",
            )
            return False

        async with lock:
            if not session.is_authenticated or kind not in session.subscriptions:
                return False
            try:
                pushed = await tick(session)
            except UpstreamUnavailableException as e:
                log_with_context(
                    logger,
                    "warning",
                    "Upstream unavailable, skipping tick",
                    session_id=session.session_id,
                    poll=kind,
                    upstream_status=e.upstream_status,
                    retry_after=e.retry_after,
                    event_type="poll_upstream_error",
                )
                await self._push_best_effort(session, RelayEvent(type="ping"))
                return False
            except UnauthenticatedException as e:
                await self._record_auth_failure(session, kind, e)
                return False
            except TransportFailureException as e:
                await self._drop(session, e)
                return False

            session.auth_failures = 0
            return pushed

    async def _playback_tick(self, session: Session) -> bool:
        payload = await self._gateway.read(EndpointClass.PLAYBACK, session.credential)
        snapshot = PlaybackSnapshot.from_payload(payload, captured_at=self._clock_ms())
        previous = session.playback

        if not has_significant_playback_change(previous, snapshot, self._progress_threshold_ms):
            return False

        await self._deliver(session, RelayEvent(type="playback", data=payload))
        session.playback = snapshot

        if previous is not None and has_track_changed(previous, snapshot):
            # The queue moves with the track; refresh it now rather than at the next cadence
            self._gateway.invalidate(session.credential, [EndpointClass.QUEUE])
            await self.poll_queue(session)
        return True

    async def _queue_tick(self, session: Session) -> bool:
        payload = await self._gateway.read(EndpointClass.QUEUE, session.credential)
        snapshot = QueueSnapshot.from_payload(payload)
        if not has_significant_queue_change(session.queue_fingerprint, snapshot):
            return False

        await self._deliver(session, RelayEvent(type="queue", data=payload))
        session.queue_fingerprint = snapshot.fingerprint
        return True

    async def _devices_tick(self, session: Session) -> bool:
        payload = await self._gateway.read(EndpointClass.DEVICES, session.credential)
        snapshot = DevicesSnapshot.from_payload(payload)
        if not has_significant_devices_change(session.devices_fingerprint, snapshot):
            return False

        await self._deliver(session, RelayEvent(type="devices", data=payload))
        session.devices_fingerprint = snapshot.fingerprint
        return True

    async def _deliver(self, session: Session, event: RelayEvent) -> None:
        if not session.is_authenticated:
            raise TransportFailureException("Session closed during tick", details={"event": event.type})
        await session.transport.push(event)
        self.events.publish(event.type, Delivery(session.session_id, event))

    async def _push_best_effort(self, session: Session, event: RelayEvent) -> bool:
        try:
            await session.transport.push(event)
        except TransportFailureException as e:
            await self._drop(session, e)
            return False
        return True

    async def _record_auth_failure(self, session: Session, kind: str, exc: UnauthenticatedException) -> None:
        session.auth_failures += 1
        log_with_context(
            logger,
            "warning",
            "Credential rejected during tick",
            session_id=session.session_id,
            poll=kind,
            auth_failures=session.auth_failures,
            max_auth_failures=self._max_auth_failures,
            event_type="poll_auth_error",
        )

        if session.auth_failures < self._max_auth_failures:
            await self._push_best_effort(session, RelayEvent(type="ping"))
            return

        await self._push_best_effort(
            session,
            RelayEvent.error(ErrorCode.SPOTIFY_NOT_AUTHENTICATED.value, exc.message),
        )
        await self._registry.destroy_session(session.session_id)

    async def _drop(self, session: Session, exc: TransportFailureException) -> None:
        log_with_context(
            logger,
            "warning",
            "Dropping session after transport failure",
            session_id=session.session_id,
            error=exc.message,
            event_type="session_transport_failed",
        )
        await self._registry.destroy_session(session.session_id)


async def run_stale_reaper(
    registry: SessionRegistry,
    timeout: float,
    interval: float,
    gateway: SpotifyGateway | None = None,
    sleep: Sleep = asyncio.sleep,
) -> None:
    """Every interval, destroy sessions silent for longer than timeout and purge expired gateway state."""
    while True:
        await sleep(interval)
        try:
            await registry.reap_stale(timeout)
            if gateway is not None:
                gateway.cleanup()
        except Exception as e:
            log_with_context(
                logger,
                "error",
                "Stale session reaper failed",
                error=str(e),
                error_type=type(e).__name__,
                event_type="reaper_error",
            )
