"""Unit tests for the per-session fan-out scheduler."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio

from music_dashboard.cache import ResponseCache
from music_dashboard.exceptions import UnauthenticatedException, UpstreamUnavailableException
from music_dashboard.scheduler import Delivery, FanoutScheduler, run_stale_reaper
from music_dashboard.services.spotify_client import EndpointClass, SpotifyClient
from music_dashboard.services.spotify_gateway import SpotifyGateway
from music_dashboard.session_registry import SessionRegistry


class FakeSpotify:
    """Stands in for SpotifyClient.call with a payload (or exception) per endpoint."""

    def __init__(self):
        self.responses = {}
        self.calls = []

    async def __call__(self, endpoint, credential, params=None):
        self.calls.append(endpoint)
        response = self.responses[endpoint]
        if isinstance(response, list):
            response = response.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    def count(self, endpoint):
        return self.calls.count(endpoint)


class MsClock:
    def __init__(self):
        self.now = 0

    def __call__(self):
        return self.now


def uncached_gateway(client):
    return SpotifyGateway(client, ResponseCache({}), min_interval=0, sleep=AsyncMock())


@pytest.fixture
def upstream():
    return FakeSpotify()


@pytest.fixture
def gateway(upstream):
    client = AsyncMock(spec=SpotifyClient)
    client.call.side_effect = upstream.__call__
    return uncached_gateway(client)


@pytest.fixture
def registry():
    return SessionRegistry()


@pytest.fixture
def ms_clock():
    return MsClock()


@pytest.fixture
def scheduler(gateway, registry, test_settings, ms_clock):
    return FanoutScheduler(gateway, registry, test_settings, clock_ms=ms_clock)


@pytest_asyncio.fixture
async def session(registry, make_transport, credential):
    session_id = await registry.create_session(make_transport())
    await registry.authenticate(session_id, credential)
    return registry.get(session_id)


async def settle():
    for _ in range(10):
        await asyncio.sleep(0)


class TestPlayback:
    @pytest.mark.asyncio
    async def test_track_change_pushes_playback_then_queue(
        self, scheduler, session, upstream, ms_clock, make_playback_payload, make_queue_payload
    ):
        """A track change is pushed and triggers an immediate queue read."""
        upstream.responses[EndpointClass.PLAYBACK] = [
            make_playback_payload(track_id="track-1", progress_ms=60000),
            make_playback_payload(track_id="track-2", progress_ms=0),
        ]
        upstream.responses[EndpointClass.QUEUE] = make_queue_payload("track-3", "track-4")

        assert await scheduler.poll_playback(session) is True
        ms_clock.now = 1000
        assert await scheduler.poll_playback(session) is True

        assert session.transport.event_types == ["playback", "playback", "queue"]
        assert session.transport.events[1].data["item"]["id"] == "track-2"
        assert upstream.count(EndpointClass.QUEUE) == 1
        assert session.playback.track_id == "track-2"

    @pytest.mark.asyncio
    async def test_first_poll_does_not_read_queue(self, scheduler, session, upstream, make_playback_payload):
        upstream.responses[EndpointClass.PLAYBACK] = make_playback_payload()

        await scheduler.poll_playback(session)

        assert upstream.count(EndpointClass.QUEUE) == 0

    @pytest.mark.asyncio
    async def test_steady_progress_is_not_pushed(self, scheduler, session, upstream, ms_clock, make_playback_payload):
        upstream.responses[EndpointClass.PLAYBACK] = [
            make_playback_payload(progress_ms=60000),
            make_playback_payload(progress_ms=61000),
            make_playback_payload(progress_ms=62100),
        ]

        await scheduler.poll_playback(session)
        baseline = session.playback
        ms_clock.now = 1000
        assert await scheduler.poll_playback(session) is False
        ms_clock.now = 2000
        assert await scheduler.poll_playback(session) is False

        assert session.transport.event_types == ["playback"]
        assert session.playback is baseline

    @pytest.mark.asyncio
    async def test_seek_is_pushed(self, scheduler, session, upstream, ms_clock, make_playback_payload):
        upstream.responses[EndpointClass.PLAYBACK] = [
            make_playback_payload(progress_ms=60000),
            make_playback_payload(progress_ms=150000),
        ]

        await scheduler.poll_playback(session)
        ms_clock.now = 1000
        assert await scheduler.poll_playback(session) is True

    @pytest.mark.asyncio
    async def test_refresh_is_transparent(
        self, registry, make_transport, credential, mock_http_client, test_settings, make_response, make_playback_payload
    ):
        """A 401 answered by a successful refresh reaches the client as a normal event."""

        async def refresher(client, settings, cred):
            cred.update("access-token-2", expires_in=3600)

        spotify = SpotifyClient(mock_http_client, test_settings, refresher=refresher)
        scheduler = FanoutScheduler(uncached_gateway(spotify), registry, test_settings)
        mock_http_client.request.side_effect = [make_response(401), make_response(200, make_playback_payload())]
        session_id = await registry.create_session(make_transport())
        await registry.authenticate(session_id, credential)
        session = registry.get(session_id)

        assert await scheduler.poll_playback(session) is True

        assert session.transport.event_types == ["playback"]
        assert session.auth_failures == 0
        assert session.is_authenticated
        assert credential.access_token == "access-token-2"


class TestQueueAndDevices:
    @pytest.mark.asyncio
    async def test_queue_pushed_only_on_change(self, scheduler, session, upstream, make_queue_payload):
        upstream.responses[EndpointClass.QUEUE] = [
            make_queue_payload("a", "b"),
            make_queue_payload("a", "b"),
            make_queue_payload("b"),
        ]

        results = [await scheduler.poll_queue(session) for _ in range(3)]

        assert results == [True, False, True]
        assert session.transport.event_types == ["queue", "queue"]

    @pytest.mark.asyncio
    async def test_devices_pushed_only_on_change(self, scheduler, session, upstream, devices_payload):
        upstream.responses[EndpointClass.DEVICES] = devices_payload

        assert await scheduler.poll_devices(session) is True
        assert await scheduler.poll_devices(session) is False
        assert session.transport.event_types == ["devices"]

    @pytest.mark.asyncio
    async def test_unsubscribed_kind_is_not_polled(self, scheduler, session, upstream):
        session.subscriptions.discard("queue")

        assert await scheduler.poll_queue(session) is False
        assert upstream.calls == []


class TestFailures:
    @pytest.mark.asyncio
    async def test_push_failure_destroys_session(self, scheduler, session, registry, upstream, make_playback_payload):
        """A failed write closes the session, cancels its timers and forgets it."""
        upstream.responses[EndpointClass.PLAYBACK] = make_playback_payload()
        upstream.responses[EndpointClass.QUEUE] = {"queue": []}
        upstream.responses[EndpointClass.DEVICES] = {"devices": []}
        scheduler.start(session)
        await settle()
        tasks = list(session.tasks.values())
        assert len(tasks) == 4

        session.transport.fail_writes = True
        upstream.responses[EndpointClass.PLAYBACK] = make_playback_payload(track_id="track-2")
        assert await scheduler.poll_playback(session) is False
        await settle()

        assert session.is_closed
        assert session.session_id not in registry
        assert session.tasks == {}
        assert all(task.done() for task in tasks)

    @pytest.mark.asyncio
    async def test_upstream_error_pushes_ping(self, scheduler, session, upstream):
        upstream.responses[EndpointClass.DEVICES] = UpstreamUnavailableException("down", upstream_status=503)

        assert await scheduler.poll_devices(session) is False

        assert session.transport.event_types == ["ping"]
        assert session.is_authenticated

    @pytest.mark.asyncio
    async def test_repeated_auth_failures_end_session(self, scheduler, session, registry, upstream):
        upstream.responses[EndpointClass.PLAYBACK] = UnauthenticatedException("expired")

        for _ in range(2):
            await scheduler.poll_playback(session)
        assert session.transport.event_types == ["ping", "ping"]
        assert session.is_authenticated

        await scheduler.poll_playback(session)

        last = session.transport.events[-1]
        assert last.type == "error"
        assert last.data["code"] == "SPOTIFY_NOT_AUTHENTICATED"
        assert session.session_id not in registry

    @pytest.mark.asyncio
    async def test_success_resets_auth_failures(self, scheduler, session, upstream, devices_payload):
        upstream.responses[EndpointClass.DEVICES] = [UnauthenticatedException("expired"), devices_payload]

        await scheduler.poll_devices(session)
        assert session.auth_failures == 1
        await scheduler.poll_devices(session)

        assert session.auth_failures == 0

    @pytest.mark.asyncio
    async def test_unauthenticated_session_is_not_polled(self, scheduler, registry, make_transport, upstream):
        session = registry.get(await registry.create_session(make_transport()))

        assert await scheduler.poll_playback(session) is False
        assert upstream.calls == []


class TestTasks:
    @pytest.mark.asyncio
    async def test_start_requires_authentication(self, scheduler, registry, make_transport):
        session = registry.get(await registry.create_session(make_transport()))

        scheduler.start(session)

        assert session.tasks == {}

    @pytest.mark.asyncio
    async def test_start_is_idempotent_and_stop_cancels(self, scheduler, session, upstream, devices_payload):
        upstream.responses[EndpointClass.PLAYBACK] = {"is_playing": False}
        upstream.responses[EndpointClass.QUEUE] = {"queue": []}
        upstream.responses[EndpointClass.DEVICES] = devices_payload

        scheduler.start(session)
        tasks = dict(session.tasks)
        scheduler.start(session)
        assert session.tasks == tasks
        assert sorted(tasks) == ["devices", "heartbeat", "playback", "queue"]

        await settle()
        assert sorted(session.transport.event_types) == ["devices", "playback", "queue"]

        scheduler.stop(session)
        await settle()
        assert all(task.cancelled() for task in tasks.values())

    @pytest.mark.asyncio
    async def test_deliveries_are_published(self, scheduler, session, upstream, devices_payload):
        upstream.responses[EndpointClass.DEVICES] = devices_payload
        received = []
        scheduler.events.subscribe("devices", received.append)

        await scheduler.poll_devices(session)

        assert len(received) == 1
        assert isinstance(received[0], Delivery)
        assert received[0].session_id == session.session_id
        assert received[0].event.type == "devices"

    @pytest.mark.asyncio
    async def test_heartbeat(self, scheduler, session, registry):
        assert await scheduler.send_heartbeat(session) is True
        assert session.transport.heartbeats == 1

        session.transport.fail_writes = True
        assert await scheduler.send_heartbeat(session) is False
        assert session.session_id not in registry


class TestStaleReaper:
    @pytest.mark.asyncio
    async def test_reaps_and_purges_each_interval(self):
        registry = MagicMock()
        registry.reap_stale = AsyncMock(side_effect=[RuntimeError("boom"), []])
        gateway = MagicMock()
        sleep = AsyncMock(side_effect=[None, None, asyncio.CancelledError()])

        with pytest.raises(asyncio.CancelledError):
            await run_stale_reaper(registry, timeout=90, interval=30, gateway=gateway, sleep=sleep)

        assert registry.reap_stale.await_count == 2
        registry.reap_stale.assert_awaited_with(90)
        gateway.cleanup.assert_called_once()
        sleep.assert_awaited_with(30)
