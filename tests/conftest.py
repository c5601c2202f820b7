"""Pytest configuration and shared fixtures."""

import os

# Required settings must exist before the app module is imported
os.environ.setdefault("SPOTIFY_CLIENT_ID", "test-spotify-client-id")
os.environ.setdefault("SPOTIFY_CLIENT_SECRET", "test-spotify-client-secret")
os.environ.setdefault("DASHBOARD_API_KEY", "test-api-key")

from unittest.mock import AsyncMock  # noqa: E402

import httpx  # noqa: E402
import pytest  # noqa: E402

from music_dashboard.config import Settings  # noqa: E402
from music_dashboard.exceptions import TransportFailureException  # noqa: E402
from music_dashboard.models.credential import Credential  # noqa: E402


class FakeClock:
    """Monotonic clock the test moves by hand."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeTransport:
    """In-memory transport recording what was pushed."""

    kind = "fake"

    def __init__(self, clock=None):
        self._clock = clock or (lambda: 0.0)
        self.events = []
        self.heartbeats = 0
        self.fail_writes = False
        self.close_calls = 0
        self._closed = False
        self._callbacks = []
        self._last_activity = self._clock()

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def last_activity(self) -> float:
        return self._last_activity

    @property
    def event_types(self) -> list[str]:
        return [event.type for event in self.events]

    def on_close(self, callback) -> None:
        self._callbacks.append(callback)

    async def push(self, event) -> None:
        if self._closed:
            raise TransportFailureException("Transport already closed")
        if self.fail_writes:
            await self.close()
            raise TransportFailureException("write failed")
        self.events.append(event)
        self._last_activity = self._clock()

    async def send_heartbeat(self) -> None:
        if self._closed or self.fail_writes:
            await self.close()
            raise TransportFailureException("heartbeat failed")
        self.heartbeats += 1
        self._last_activity = self._clock()

    async def close(self) -> None:
        self.close_calls += 1
        if self._closed:
            return
        self._closed = True
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            await callback()


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def make_transport():
    """Factory for FakeTransport instances."""

    def _make(clock=None) -> FakeTransport:
        return FakeTransport(clock)

    return _make


@pytest.fixture
def test_settings():
    """Settings instance with test values and fast relay cadence."""
    return Settings(
        spotify_client_id="test-spotify-client-id",
        spotify_client_secret="test-spotify-client-secret",
        spotify_redirect_uri="http://localhost:8000/api/auth/callback",
        dashboard_api_key="test-api-key",
        playback_poll_interval=1.0,
        queue_poll_interval=5.0,
        devices_poll_interval=30.0,
        heartbeat_interval=30.0,
        session_stale_timeout=90.0,
        max_auth_failures=3,
        _env_file=None,
    )


@pytest.fixture
def credential():
    return Credential(access_token="access-token-1", refresh_token="refresh-token-1")


@pytest.fixture
def mock_http_client():
    """Mock httpx.AsyncClient for external API calls."""
    mock_client = AsyncMock(spec=httpx.AsyncClient)
    mock_client.request = AsyncMock()
    mock_client.post = AsyncMock()
    mock_client.aclose = AsyncMock()
    return mock_client


def spotify_response(status_code: int, json_body=None, headers=None, method: str = "GET") -> httpx.Response:
    """httpx.Response bound to a request, as the client would receive it."""
    request = httpx.Request(method, "https://api.spotify.com/v1/me/player")
    if json_body is None:
        return httpx.Response(status_code, headers=headers, request=request)
    return httpx.Response(status_code, json=json_body, headers=headers, request=request)


@pytest.fixture
def make_response():
    return spotify_response


@pytest.fixture
def make_playback_payload():
    """Factory for `GET /me/player` payloads."""

    def _make(track_id="track-1", is_playing=True, progress_ms=60000, device_id="device-1"):
        return {
            "device": {"id": device_id, "is_active": True, "name": "Living Room", "volume_percent": 50},
            "is_playing": is_playing,
            "item": {
                "id": track_id,
                "name": f"Song {track_id}",
                "artists": [{"name": "Test Artist"}],
                "duration_ms": 240000,
            },
            "progress_ms": progress_ms,
            "shuffle_state": False,
            "repeat_state": "off",
        }

    return _make


@pytest.fixture
def make_queue_payload():
    def _make(*track_ids):
        return {"currently_playing": None, "queue": [{"id": track_id} for track_id in track_ids]}

    return _make


@pytest.fixture
def devices_payload():
    return {
        "devices": [
            {"id": "device-1", "is_active": True, "name": "Living Room", "type": "Speaker", "volume_percent": 50},
            {"id": "device-2", "is_active": False, "name": "Phone", "type": "Smartphone", "volume_percent": 80},
        ]
    }
