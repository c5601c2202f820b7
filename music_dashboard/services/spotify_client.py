"""Spotify Web API client: request shaping, error translation and reactive token refresh."""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import httpx

from music_dashboard.config import Settings
from music_dashboard.exceptions import SpotifyAuthException, UnauthenticatedException, UpstreamUnavailableException
from music_dashboard.logging_config import get_logger, log_with_context
from music_dashboard.models.credential import Credential
from music_dashboard.services import oauth_service

logger = get_logger(__name__)


class EndpointClass(str, Enum):
    """Upstream operations the relay knows how to call."""

    # Reads
    PLAYBACK = "playback"
    QUEUE = "queue"
    DEVICES = "devices"
    RECENTLY_PLAYED = "recently-played"
    TOP_TRACKS = "top-tracks"
    AUDIO_FEATURES = "audio-features"
    CURRENT_USER = "current-user"

    # Mutations
    PLAY = "play"
    PAUSE = "pause"
    NEXT = "next"
    PREVIOUS = "previous"
    SEEK = "seek"
    VOLUME = "volume"
    SHUFFLE = "shuffle"
    REPEAT = "repeat"
    TRANSFER = "transfer"


def _transfer_body(params: dict[str, Any]) -> dict[str, Any]:
    return {"device_ids": [params["device_id"]], "play": bool(params.get("play", True))}


@dataclass(frozen=True)
class EndpointSpec:
    """How to shape one endpoint class into an HTTP request."""

    method: str
    path: str
    query: tuple[str, ...] = ()
    optional_query: tuple[str, ...] = ()
    body: Callable[[dict[str, Any]], dict[str, Any]] | None = None
    empty_payload: dict[str, Any] = field(default_factory=dict)
    affects: frozenset[EndpointClass] = frozenset()
    shared: bool = False
    no_cache: bool = False

    @property
    def is_mutation(self) -> bool:
        return self.method != "GET"

    def build(self, params: dict[str, Any]) -> tuple[str, dict[str, Any], dict[str, Any] | None]:
        """Return (path, query params, json body) for the given call parameters."""
        try:
            path = self.path.format(**params)
            query = {name: params[name] for name in self.query}
        except KeyError as e:
            raise ValueError(f"Missing parameter {e.args[0]!r} for {self.method} {self.path}") from e
        query.update({name: params[name] for name in self.optional_query if params.get(name) is not None})
        return path, query, self.body(params) if self.body else None


_PLAYER_STATE = frozenset({EndpointClass.PLAYBACK, EndpointClass.QUEUE})

ENDPOINTS: dict[EndpointClass, EndpointSpec] = {
    EndpointClass.PLAYBACK: EndpointSpec("GET", "/me/player", empty_payload={"is_playing": False}),
    EndpointClass.QUEUE: EndpointSpec(
        "GET", "/me/player/queue", empty_payload={"currently_playing": None, "queue": []}, no_cache=True
    ),
    EndpointClass.DEVICES: EndpointSpec("GET", "/me/player/devices", empty_payload={"devices": []}),
    EndpointClass.RECENTLY_PLAYED: EndpointSpec(
        "GET", "/me/player/recently-played", optional_query=("limit",), empty_payload={"items": []}
    ),
    EndpointClass.TOP_TRACKS: EndpointSpec(
        "GET", "/me/top/tracks", optional_query=("limit", "time_range"), empty_payload={"items": []}
    ),
    EndpointClass.AUDIO_FEATURES: EndpointSpec("GET", "/audio-features/{track_id}", shared=True),
    EndpointClass.CURRENT_USER: EndpointSpec("GET", "/me"),
    EndpointClass.PLAY: EndpointSpec("PUT", "/me/player/play", affects=_PLAYER_STATE),
    EndpointClass.PAUSE: EndpointSpec("PUT", "/me/player/pause", affects=_PLAYER_STATE),
    EndpointClass.NEXT: EndpointSpec("POST", "/me/player/next", affects=_PLAYER_STATE),
    EndpointClass.PREVIOUS: EndpointSpec("POST", "/me/player/previous", affects=_PLAYER_STATE),
    EndpointClass.SEEK: EndpointSpec("PUT", "/me/player/seek", query=("position_ms",), affects=_PLAYER_STATE),
    EndpointClass.VOLUME: EndpointSpec(
        "PUT",
        "/me/player/volume",
        query=("volume_percent",),
        affects=frozenset({EndpointClass.PLAYBACK, EndpointClass.DEVICES}),
    ),
    EndpointClass.SHUFFLE: EndpointSpec("PUT", "/me/player/shuffle", query=("state",), affects=_PLAYER_STATE),
    EndpointClass.REPEAT: EndpointSpec("PUT", "/me/player/repeat", query=("state",), affects=_PLAYER_STATE),
    EndpointClass.TRANSFER: EndpointSpec(
        "PUT",
        "/me/player",
        body=_transfer_body,
        affects=_PLAYER_STATE | {EndpointClass.DEVICES},
    ),
}

Refresher = Callable[[httpx.AsyncClient, Settings, Credential], Awaitable[None]]


def _retry_after(response: httpx.Response) -> float | None:
    value = response.headers.get("Retry-After")
    if value is None:
        return None
    try:
        return max(float(value), 0.0)
    except ValueError:
        return None


class SpotifyClient:
    """Authenticated calls to the Spotify Web API.

    Does not cache or throttle; see SpotifyGateway for that.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        settings: Settings,
        refresher: Refresher = oauth_service.refresh_credential,
    ):
        self._client = http_client
        self._settings = settings
        self._refresher = refresher

    async def call(
        self,
        endpoint: EndpointClass,
        credential: Credential,
        params: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Call one endpoint class on behalf of a credential.

        On 401 the credential is refreshed once and the request retried once.

        Args:
            endpoint: Endpoint class to call
            credential: Credential of the user the call is made for
            params: Path, query and body parameters for the endpoint

        Returns:
            Decoded JSON payload, or the endpoint's empty-state payload on 204

        Raises:
            UnauthenticatedException: Credential rejected and not refreshable
            UpstreamUnavailableException: Any other non-success outcome
        """
        spec = ENDPOINTS[endpoint]
        path, query, body = spec.build(params or {})

        token_used = credential.access_token
        response = await self._send(endpoint, spec, credential, path, query, body)

        if response.status_code == 401:
            await self._refresh(credential, token_used)
            response = await self._send(endpoint, spec, credential, path, query, body)
            if response.status_code == 401:
                raise UnauthenticatedException(
                    "Spotify rejected the refreshed credential", details={"endpoint": endpoint.value}
                )

        return self._translate(endpoint, spec, response)

    async def _send(
        self,
        endpoint: EndpointClass,
        spec: EndpointSpec,
        credential: Credential,
        path: str,
        query: dict[str, Any],
        body: dict[str, Any] | None,
    ) -> httpx.Response:
        headers = credential.authorization_header
        if spec.no_cache:
            headers["Cache-Control"] = "no-cache"
        try:
            return await self._client.request(
                spec.method,
                f"{self._settings.spotify_api_base}{path}",
                params=query or None,
                json=body,
                headers=headers,
                timeout=10.0,
            )
        except httpx.HTTPError as e:
            log_with_context(
                logger,
                "warning",
                "Spotify request failed",
                endpoint=endpoint.value,
                error=str(e),
                error_type=type(e).__name__,
                event_type="upstream_network_error",
            )
            raise UpstreamUnavailableException(
                f"Spotify {endpoint.value} request failed: {str(e)}", details={"endpoint": endpoint.value}
            ) from e

    async def _refresh(self, credential: Credential, stale_token: str) -> None:
        async with credential.refresh_lock:
            if credential.access_token != stale_token:
                # Another caller already refreshed while we waited
                return
            if not credential.can_refresh:
                raise UnauthenticatedException("Spotify access token expired and no refresh token is available")
            try:
                await self._refresher(self._client, self._settings, credential)
            except SpotifyAuthException as e:
                raise UnauthenticatedException(f"Spotify token refresh failed: {e.message}") from e

    def _translate(self, endpoint: EndpointClass, spec: EndpointSpec, response: httpx.Response) -> dict[str, Any]:
        status = response.status_code

        if status == 204:
            return dict(spec.empty_payload)

        if not 200 <= status < 300:
            retry_after = _retry_after(response) if status == 429 else None
            log_with_context(
                logger,
                "warning",
                "Spotify returned error status",
                endpoint=endpoint.value,
                status_code=status,
                retry_after=retry_after,
                event_type="upstream_error_status",
            )
            raise UpstreamUnavailableException(
                f"Spotify {endpoint.value} returned {status}",
                upstream_status=status,
                retry_after=retry_after,
                details={"endpoint": endpoint.value},
            )

        if not response.content:
            return dict(spec.empty_payload)

        try:
            data = response.json()
        except ValueError as e:
            raise UpstreamUnavailableException(
                f"Spotify {endpoint.value} returned invalid JSON", upstream_status=status
            ) from e
        return data if isinstance(data, dict) else {"items": data}
