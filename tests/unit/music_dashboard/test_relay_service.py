"""Unit tests for the relay connection lifecycle."""

import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from music_dashboard.exceptions import SessionNotFoundException, UnauthenticatedException, UpstreamUnavailableException
from music_dashboard.models.credential import Credential
from music_dashboard.services.relay_service import RelayService
from music_dashboard.services.spotify_client import EndpointClass
from music_dashboard.session_registry import SessionRegistry, SessionState


@pytest.fixture
def gateway():
    gateway = MagicMock()
    gateway.read = AsyncMock(return_value={"id": "user-1"})
    gateway.cache.stats.return_value = {"entries": 0, "hits": 0, "misses": 0}
    gateway.in_flight.return_value = 0
    gateway.upstream_calls = 0
    return gateway


@pytest.fixture
def scheduler():
    scheduler = MagicMock()
    scheduler.events.subscriber_count.return_value = 0
    return scheduler


def build_relay(gateway, scheduler, settings):
    """Wire a relay whose registry validates credentials through the gateway."""

    async def validate(credential):
        await relay.validate_credential(credential)

    registry = SessionRegistry(validator=validate)
    relay = RelayService(registry, scheduler, gateway, settings)
    return relay


@pytest.fixture
def relay(gateway, scheduler, test_settings):
    return build_relay(gateway, scheduler, test_settings)


def error_codes(transport):
    return [event.data["code"] for event in transport.events if event.type == "error"]


class TestConnect:
    @pytest.mark.asyncio
    async def test_connect_greets_with_session_id(self, relay, make_transport):
        transport = make_transport()

        session_id = await relay.connect(transport)

        assert transport.event_types == ["connected"]
        assert transport.events[0].data == {"session_id": session_id}
        assert relay.registry.get(session_id).state is SessionState.CONNECTED

    @pytest.mark.asyncio
    async def test_failed_greeting_drops_session(self, relay, make_transport):
        transport = make_transport()
        transport.fail_writes = True

        session_id = await relay.connect(transport)

        assert session_id not in relay.registry

    @pytest.mark.asyncio
    async def test_disconnect(self, relay, make_transport):
        transport = make_transport()
        session_id = await relay.connect(transport)

        await relay.disconnect(session_id)

        assert transport.closed
        assert len(relay.registry) == 0


class TestAuthenticate:
    @pytest.mark.asyncio
    async def test_auth_message_starts_polling(self, relay, scheduler, gateway, make_transport):
        transport = make_transport()
        session_id = await relay.connect(transport)

        await relay.handle_message(session_id, '{"type": "auth", "token": "good-token"}')

        session = relay.registry.get(session_id)
        assert transport.event_types == ["connected", "auth_success"]
        assert session.is_authenticated
        assert session.credential.access_token == "good-token"
        scheduler.start.assert_called_once_with(session)
        assert gateway.read.await_args.args[0] is EndpointClass.CURRENT_USER

    @pytest.mark.asyncio
    async def test_rejected_token_keeps_session_connected(self, relay, scheduler, gateway, make_transport):
        gateway.read.side_effect = UnauthenticatedException("Spotify rejected the refreshed credential")
        transport = make_transport()
        session_id = await relay.connect(transport)

        await relay.handle_message(session_id, '{"type": "auth", "token": "bad-token"}')

        assert error_codes(transport) == ["SPOTIFY_NOT_AUTHENTICATED"]
        assert transport.events[-1].data["message"] == "Invalid token"
        assert relay.registry.get(session_id).state is SessionState.CONNECTED
        scheduler.start.assert_not_called()

    @pytest.mark.asyncio
    async def test_upstream_outage_during_auth(self, relay, gateway, make_transport):
        gateway.read.side_effect = UpstreamUnavailableException("down", upstream_status=503)
        transport = make_transport()
        session_id = await relay.connect(transport)

        assert await relay.authenticate(session_id, Credential("token")) is False

        assert error_codes(transport) == ["SPOTIFY_API_ERROR"]
        assert session_id in relay.registry

    @pytest.mark.asyncio
    async def test_second_token_is_refused(self, relay, scheduler, make_transport):
        transport = make_transport()
        session_id = await relay.connect(transport)
        await relay.authenticate(session_id, Credential("first-token"))

        assert await relay.authenticate(session_id, Credential("second-token")) is False

        assert error_codes(transport) == ["ALREADY_AUTHENTICATED"]
        assert relay.registry.get(session_id).credential.access_token == "first-token"
        scheduler.start.assert_called_once()

    @pytest.mark.asyncio
    async def test_unknown_session(self, relay):
        with pytest.raises(SessionNotFoundException):
            await relay.authenticate("missing", Credential("token"))

    @pytest.mark.asyncio
    async def test_validation_disabled(self, gateway, scheduler, test_settings, make_transport):
        relay = RelayService(SessionRegistry(), scheduler, gateway, test_settings)
        session_id = await relay.connect(make_transport())

        assert await relay.authenticate(session_id, Credential("token")) is True
        gateway.read.assert_not_awaited()


class TestMessages:
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "raw", ["{not json", '{"type": "dance"}', '{"type": "auth"}', '{"type": "auth", "token": "   "}']
    )
    async def test_malformed_message_answered_with_error(self, relay, make_transport, raw):
        transport = make_transport()
        session_id = await relay.connect(transport)

        await relay.handle_message(session_id, raw)

        assert error_codes(transport) == ["MALFORMED_MESSAGE"]
        assert session_id in relay.registry

    @pytest.mark.asyncio
    async def test_ping_is_silent(self, relay, make_transport):
        transport = make_transport()
        session_id = await relay.connect(transport)

        await relay.handle_message(session_id, '{"type": "ping"}')
        await relay.handle_message(session_id, '{"type": "pong"}')

        assert transport.event_types == ["connected"]

    @pytest.mark.asyncio
    async def test_subscribe_narrows_and_resets_added_kinds(self, relay, make_transport):
        session_id = await relay.connect(make_transport())
        session = relay.registry.get(session_id)
        session.queue_fingerprint = "queue-fp"
        session.devices_fingerprint = "devices-fp"

        await relay.handle_message(session_id, json.dumps({"type": "subscribe", "events": ["playback"]}))
        assert session.subscriptions == {"playback"}
        assert session.queue_fingerprint == "queue-fp"

        await relay.handle_message(session_id, json.dumps({"type": "subscribe", "events": ["playback", "queue"]}))
        assert session.subscriptions == {"playback", "queue"}
        assert session.queue_fingerprint is None
        assert session.devices_fingerprint == "devices-fp"

    @pytest.mark.asyncio
    async def test_message_for_unknown_session_is_ignored(self, relay):
        await relay.handle_message("missing", '{"type": "ping"}')


class TestEventStream:
    @pytest.mark.asyncio
    async def test_open_event_stream(self, relay, scheduler):
        transport = await relay.open_event_stream(Credential("good-token"))

        assert not transport.closed
        (session,) = relay.registry.sessions()
        assert session.is_authenticated
        assert session.transport is transport
        scheduler.start.assert_called_once_with(session)

    @pytest.mark.asyncio
    async def test_rejected_stream_ends_after_error(self, relay, gateway):
        gateway.read.side_effect = UnauthenticatedException()

        transport = await relay.open_event_stream(Credential("bad-token"))

        assert transport.closed
        assert len(relay.registry) == 0
        frames = [frame async for frame in transport.stream()]
        assert len(frames) == 2
        assert '"type":"connected"' in frames[0]
        assert '"SPOTIFY_NOT_AUTHENTICATED"' in frames[1]


@pytest.mark.asyncio
async def test_stats(relay, make_transport):
    await relay.connect(make_transport())

    stats = relay.stats()

    assert stats["sessions"] == 1
    assert stats["sessions_by_state"] == {"connected": 1, "authenticated": 0}
    assert stats["cache"] == {"entries": 0, "hits": 0, "misses": 0}
    assert stats["in_flight_requests"] == 0
