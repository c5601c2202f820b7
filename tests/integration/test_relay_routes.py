"""Integration tests for the WebSocket relay and the event stream."""

import json
from unittest.mock import AsyncMock

import pytest

from music_dashboard.cache import ResponseCache
from music_dashboard.dependencies import get_relay_service, get_websocket_relay_service
from music_dashboard.exceptions import UnauthenticatedException
from music_dashboard.scheduler import FanoutScheduler
from music_dashboard.services.relay_service import RelayService
from music_dashboard.services.spotify_client import EndpointClass, SpotifyClient
from music_dashboard.services.spotify_gateway import SpotifyGateway
from music_dashboard.session_registry import SessionRegistry

UPSTREAM = {
    EndpointClass.CURRENT_USER: {"id": "user-1"},
    EndpointClass.PLAYBACK: {"is_playing": False, "item": {"id": "track-1"}, "progress_ms": 1000},
    EndpointClass.QUEUE: {"currently_playing": None, "queue": [{"id": "track-2"}]},
    EndpointClass.DEVICES: {"devices": [{"id": "device-1", "is_active": True, "volume_percent": 50}]},
}


async def fake_upstream(endpoint, credential, params=None):
    if credential.access_token == "rejected-token":
        raise UnauthenticatedException("Spotify rejected the refreshed credential")
    return UPSTREAM[endpoint]


@pytest.fixture
def relay(app, test_settings):
    """Relay wired to a scripted Spotify, installed for both relay routes."""
    spotify = AsyncMock(spec=SpotifyClient)
    spotify.call.side_effect = fake_upstream
    gateway = SpotifyGateway(spotify, ResponseCache({}), min_interval=0)

    async def validate(credential):
        await service.validate_credential(credential)

    registry = SessionRegistry(validator=validate)
    scheduler = FanoutScheduler(gateway, registry, test_settings)
    service = RelayService(registry, scheduler, gateway, test_settings)

    app.dependency_overrides[get_relay_service] = lambda: service
    app.dependency_overrides[get_websocket_relay_service] = lambda: service
    return service


class TestWebSocketRelay:
    def test_auth_then_initial_state(self, client, relay):
        with client.websocket_connect("/ws") as ws:
            connected = ws.receive_json()
            assert connected["type"] == "connected"
            assert connected["data"]["session_id"] in relay.registry

            ws.send_json({"type": "auth", "token": "user-token"})
            assert ws.receive_json()["type"] == "auth_success"

            events = {message["type"]: message for message in (ws.receive_json() for _ in range(3))}
            assert set(events) == {"playback", "queue", "devices"}
            assert events["playback"]["data"]["item"]["id"] == "track-1"
            assert events["queue"]["data"]["queue"] == [{"id": "track-2"}]

        assert len(relay.registry) == 0

    def test_rejected_token_keeps_connection_open(self, client, relay):
        with client.websocket_connect("/ws") as ws:
            ws.receive_json()
            ws.send_json({"type": "auth", "token": "rejected-token"})

            error = ws.receive_json()
            assert error["type"] == "error"
            assert error["data"] == {"code": "SPOTIFY_NOT_AUTHENTICATED", "message": "Invalid token"}

            ws.send_json({"type": "auth", "token": "user-token"})
            assert ws.receive_json()["type"] == "auth_success"

    def test_malformed_message(self, client, relay):
        with client.websocket_connect("/ws") as ws:
            ws.receive_json()
            ws.send_text("definitely not json")

            error = ws.receive_json()
            assert error["type"] == "error"
            assert error["data"]["code"] == "MALFORMED_MESSAGE"

            # The connection survives a bad message
            ws.send_text(json.dumps({"type": "ping"}))
            ws.send_json({"type": "auth", "token": "user-token"})
            assert ws.receive_json()["type"] == "auth_success"


class TestEventStream:
    def test_requires_credential(self, client, relay):
        response = client.get("/api/spotify/events")

        assert response.status_code == 401
        assert response.json()["error"]["code"] == "SPOTIFY_NOT_AUTHENTICATED"

    def test_rejected_credential_ends_stream(self, client, relay):
        response = client.get("/api/spotify/events", headers={"Authorization": "Bearer rejected-token"})

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        frames = [json.loads(frame[len("data: "):]) for frame in response.text.strip().split("\n\n")]
        assert [frame["type"] for frame in frames] == ["connected", "error"]
        assert frames[1]["data"]["code"] == "SPOTIFY_NOT_AUTHENTICATED"
        assert len(relay.registry) == 0
