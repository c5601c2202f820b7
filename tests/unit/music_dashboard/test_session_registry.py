"""Unit tests for the session registry."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from music_dashboard.exceptions import UnauthenticatedException, UpstreamUnavailableException
from music_dashboard.models.credential import Credential
from music_dashboard.models.snapshots import PlaybackSnapshot
from music_dashboard.session_registry import SessionRegistry, SessionState


@pytest.fixture
def registry():
    return SessionRegistry()


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_create_session(self, registry, make_transport):
        session_id = await registry.create_session(make_transport())

        session = registry.get(session_id)
        assert session.state is SessionState.CONNECTED
        assert session.credential is None
        assert session_id in registry
        assert len(registry) == 1

    @pytest.mark.asyncio
    async def test_session_ids_are_unique(self, registry, make_transport):
        ids = {await registry.create_session(make_transport()) for _ in range(20)}

        assert len(ids) == 20

    @pytest.mark.asyncio
    async def test_destroy_is_idempotent(self, registry, make_transport):
        transport = make_transport()
        session_id = await registry.create_session(transport)
        session = registry.get(session_id)

        assert await registry.destroy_session(session_id) is True
        assert await registry.destroy_session(session_id) is False

        assert session.is_closed
        assert transport.closed
        assert session_id not in registry

    @pytest.mark.asyncio
    async def test_destroy_cancels_tasks(self, registry, make_transport):
        session_id = await registry.create_session(make_transport())
        session = registry.get(session_id)
        task = asyncio.create_task(asyncio.sleep(60))
        session.tasks["playback"] = task

        await registry.destroy_session(session_id)
        await asyncio.sleep(0)

        assert task.cancelled()
        assert session.tasks == {}

    @pytest.mark.asyncio
    async def test_transport_close_destroys_session(self, registry, make_transport):
        transport = make_transport()
        session_id = await registry.create_session(transport)

        await transport.close()

        assert session_id not in registry

    @pytest.mark.asyncio
    async def test_cleanup_destroys_everything(self, registry, make_transport):
        transports = [make_transport() for _ in range(3)]
        for transport in transports:
            await registry.create_session(transport)

        await registry.cleanup()

        assert len(registry) == 0
        assert all(transport.closed for transport in transports)

    @pytest.mark.asyncio
    async def test_count_by_state(self, registry, make_transport, credential):
        first = await registry.create_session(make_transport())
        await registry.create_session(make_transport())
        await registry.authenticate(first, credential)

        assert registry.count_by_state() == {"connected": 1, "authenticated": 1}


class TestAuthenticate:
    @pytest.mark.asyncio
    async def test_authenticate_without_validator(self, registry, make_transport, credential):
        session_id = await registry.create_session(make_transport())

        assert await registry.authenticate(session_id, credential) is True

        session = registry.get(session_id)
        assert session.is_authenticated
        assert session.credential is credential

    @pytest.mark.asyncio
    async def test_unknown_session(self, registry, credential):
        assert await registry.authenticate("missing", credential) is False

    @pytest.mark.asyncio
    async def test_rejected_credential(self, make_transport, credential):
        validator = AsyncMock(side_effect=UnauthenticatedException("Invalid token"))
        registry = SessionRegistry(validator=validator)
        session_id = await registry.create_session(make_transport())

        assert await registry.authenticate(session_id, credential) is False
        assert registry.get(session_id).state is SessionState.CONNECTED
        validator.assert_awaited_once_with(credential)

    @pytest.mark.asyncio
    async def test_upstream_failure_propagates(self, make_transport, credential):
        registry = SessionRegistry(validator=AsyncMock(side_effect=UpstreamUnavailableException("down", 503)))
        session_id = await registry.create_session(make_transport())

        with pytest.raises(UpstreamUnavailableException):
            await registry.authenticate(session_id, credential)
        assert registry.get(session_id).credential is None

    @pytest.mark.asyncio
    async def test_repeat_with_same_credential_is_accepted(self, registry, make_transport, credential):
        session_id = await registry.create_session(make_transport())
        await registry.authenticate(session_id, credential)

        assert await registry.authenticate(session_id, Credential("access-token-1")) is True

    @pytest.mark.asyncio
    async def test_different_credential_is_refused(self, registry, make_transport, credential):
        session_id = await registry.create_session(make_transport())
        await registry.authenticate(session_id, credential)

        assert await registry.authenticate(session_id, Credential("other-token")) is False
        assert registry.get(session_id).credential is credential

    @pytest.mark.asyncio
    async def test_concurrent_auth_first_wins(self, make_transport):
        async def slow_validator(credential):
            await asyncio.sleep(0)

        registry = SessionRegistry(validator=slow_validator)
        session_id = await registry.create_session(make_transport())
        first, second = Credential("token-a"), Credential("token-b")

        results = await asyncio.gather(
            registry.authenticate(session_id, first),
            registry.authenticate(session_id, second),
        )

        assert results == [True, False]
        assert registry.get(session_id).credential is first

    @pytest.mark.asyncio
    async def test_destroyed_while_validating(self, make_transport, credential):
        registry = SessionRegistry()
        session_id = await registry.create_session(make_transport())

        async def validator(cred):
            await registry.destroy_session(session_id)

        registry._validator = validator

        assert await registry.authenticate(session_id, credential) is False

    @pytest.mark.asyncio
    async def test_replace_credential_resets_fingerprints(self, registry, make_transport, credential):
        session_id = await registry.create_session(make_transport())
        await registry.authenticate(session_id, credential)
        session = registry.get(session_id)
        session.playback = PlaybackSnapshot(track_id="track-1")
        session.queue_fingerprint = "abc"

        replacement = Credential("other-token")
        assert await registry.replace_credential(session_id, replacement) is True

        assert session.credential is replacement
        assert session.playback is None
        assert session.queue_fingerprint is None

    @pytest.mark.asyncio
    async def test_replace_requires_authenticated_session(self, registry, make_transport, credential):
        session_id = await registry.create_session(make_transport())

        assert await registry.replace_credential(session_id, credential) is False


class TestReapStale:
    @pytest.mark.asyncio
    async def test_reaps_only_silent_sessions(self, registry, make_transport, fake_clock):
        quiet = make_transport(fake_clock)
        quiet_id = await registry.create_session(quiet)
        fake_clock.advance(50)
        busy = make_transport(fake_clock)
        busy_id = await registry.create_session(busy)

        fake_clock.advance(45)
        reaped = await registry.reap_stale(timeout=90, now=fake_clock())

        assert reaped == [quiet_id]
        assert quiet.closed
        assert busy_id in registry

    @pytest.mark.asyncio
    async def test_activity_keeps_session_alive(self, registry, make_transport, fake_clock):
        transport = make_transport(fake_clock)
        session_id = await registry.create_session(transport)

        fake_clock.advance(80)
        await transport.send_heartbeat()
        fake_clock.advance(80)

        assert await registry.reap_stale(timeout=90, now=fake_clock()) == []
        assert session_id in registry
