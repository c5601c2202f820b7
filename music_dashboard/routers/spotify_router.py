"""Spotify read and player-control routes.

Every call goes through the shared gateway, so REST reads share the cache and
in-flight requests with the relay's pollers.
"""

from typing import Any, Literal

from fastapi import APIRouter, Body, Depends, Query, Request, Response
from slowapi import Limiter
from slowapi.util import get_remote_address

from music_dashboard.config import Settings, get_settings
from music_dashboard.dependencies import get_control_service, get_gateway
from music_dashboard.exceptions import UpstreamUnavailableException
from music_dashboard.logging_config import get_logger, log_with_context
from music_dashboard.models import ControlResponse
from music_dashboard.models.credential import Credential
from music_dashboard.security import get_request_credential, set_auth_cookies
from music_dashboard.services.control_service import POST_ACTIONS, PUT_ACTIONS, ControlService, parse_command
from music_dashboard.services.spotify_client import EndpointClass
from music_dashboard.services.spotify_gateway import SpotifyGateway

router = APIRouter()
limiter = Limiter(key_func=get_remote_address)
logger = get_logger(__name__)

# Returned while Spotify answers 403 for the deprecated audio-features endpoint
_AUDIO_FEATURES_PLACEHOLDER: dict[str, Any] = {
    "danceability": 0,
    "energy": 0,
    "key": 0,
    "loudness": 0,
    "mode": 0,
    "speechiness": 0,
    "acousticness": 0,
    "instrumentalness": 0,
    "liveness": 0,
    "valence": 0,
    "tempo": 0,
    "duration_ms": 0,
    "time_signature": 4,
}


def _sync_refreshed_token(response: Response, credential: Credential, presented: str, settings: Settings) -> None:
    """Hand a token refreshed during the call back to the browser."""
    if credential.access_token != presented:
        set_auth_cookies(response, credential, settings)


async def _read(
    gateway: SpotifyGateway,
    endpoint: EndpointClass,
    credential: Credential,
    response: Response,
    settings: Settings,
    params: dict[str, Any] | None = None,
) -> dict[str, Any]:
    presented = credential.access_token
    data = await gateway.read(endpoint, credential, params)
    _sync_refreshed_token(response, credential, presented, settings)
    return data


@router.get(
    "/current-playback",
    summary="Get current playback state",
    responses={
        200: {"description": "Playback state; `{\"is_playing\": false}` when nothing is playing"},
        401: {"description": "Not authenticated - visit /api/auth/login"},
        502: {"description": "Spotify API error"},
    },
)
@limiter.limit("120/minute")
async def current_playback(
    request: Request,
    response: Response,
    gateway: SpotifyGateway = Depends(get_gateway),
    credential: Credential = Depends(get_request_credential),
    settings: Settings = Depends(get_settings),
):
    """Current playback, served from the shared cache while fresh."""
    return await _read(gateway, EndpointClass.PLAYBACK, credential, response, settings)


@router.get("/queue", summary="Get the playback queue")
@limiter.limit("120/minute")
async def queue(
    request: Request,
    response: Response,
    gateway: SpotifyGateway = Depends(get_gateway),
    credential: Credential = Depends(get_request_credential),
    settings: Settings = Depends(get_settings),
):
    return await _read(gateway, EndpointClass.QUEUE, credential, response, settings)


@router.get("/devices", summary="List available playback devices")
@limiter.limit("120/minute")
async def devices(
    request: Request,
    response: Response,
    gateway: SpotifyGateway = Depends(get_gateway),
    credential: Credential = Depends(get_request_credential),
    settings: Settings = Depends(get_settings),
):
    return await _read(gateway, EndpointClass.DEVICES, credential, response, settings)


@router.get("/recently-played", summary="Recently played tracks")
@limiter.limit("60/minute")
async def recently_played(
    request: Request,
    response: Response,
    limit: int = Query(default=10, ge=1, le=50),
    gateway: SpotifyGateway = Depends(get_gateway),
    credential: Credential = Depends(get_request_credential),
    settings: Settings = Depends(get_settings),
):
    return await _read(gateway, EndpointClass.RECENTLY_PLAYED, credential, response, settings, {"limit": limit})


@router.get("/top-tracks", summary="The user's top tracks")
@limiter.limit("60/minute")
async def top_tracks(
    request: Request,
    response: Response,
    limit: int = Query(default=10, ge=1, le=50),
    time_range: Literal["short_term", "medium_term", "long_term"] = Query(default="short_term"),
    gateway: SpotifyGateway = Depends(get_gateway),
    credential: Credential = Depends(get_request_credential),
    settings: Settings = Depends(get_settings),
):
    return await _read(
        gateway,
        EndpointClass.TOP_TRACKS,
        credential,
        response,
        settings,
        {"limit": limit, "time_range": time_range},
    )


@router.get(
    "/audio-features/{track_id}",
    summary="Audio features of a track",
    description="""
    Audio features are shared between users and cached for an hour.

    Spotify has deprecated this endpoint for new applications and answers 403;
    a zeroed placeholder is returned in that case so clients keep working.
    """,
)
@limiter.limit("60/minute")
async def audio_features(
    request: Request,
    response: Response,
    track_id: str,
    gateway: SpotifyGateway = Depends(get_gateway),
    credential: Credential = Depends(get_request_credential),
    settings: Settings = Depends(get_settings),
):
    try:
        return await _read(gateway, EndpointClass.AUDIO_FEATURES, credential, response, settings, {"track_id": track_id})
    except UpstreamUnavailableException as e:
        if e.upstream_status != 403:
            raise
        log_with_context(
            logger,
            "info",
            "Audio features unavailable, returning placeholder",
            track_id=track_id,
            event_type="audio_features_placeholder",
        )
        return {"message": "Audio features endpoint deprecated by Spotify", "id": track_id, **_AUDIO_FEATURES_PLACEHOLDER}


async def _control(
    body: Any,
    allowed: frozenset[str],
    response: Response,
    control: ControlService,
    credential: Credential,
    settings: Settings,
) -> ControlResponse:
    command = parse_command(body, allowed)
    presented = credential.access_token
    await control.execute(command, credential)
    _sync_refreshed_token(response, credential, presented, settings)
    return ControlResponse(action=command.action)


@router.put(
    "/player",
    response_model=ControlResponse,
    summary="Control playback",
    description="""
    Actions: `toggle-play`, `volume` (`volume_percent`), `seek` (`position_ms`),
    `transfer` (`device_id`), `shuffle` (`state`), `repeat` (`state`).

    Cached playback and queue state is invalidated before the response is sent.

    **Rate Limited:** 30 requests/minute
    """,
    responses={400: {"description": "Invalid action"}, 401: {"description": "Not authenticated"}},
)
@limiter.limit("30/minute")
async def player_put(
    request: Request,
    response: Response,
    body: Any = Body(...),
    control: ControlService = Depends(get_control_service),
    credential: Credential = Depends(get_request_credential),
    settings: Settings = Depends(get_settings),
):
    return await _control(body, PUT_ACTIONS, response, control, credential, settings)


@router.post(
    "/player",
    response_model=ControlResponse,
    summary="Skip tracks",
    description="Actions: `next`, `previous`.",
    responses={400: {"description": "Invalid action"}, 401: {"description": "Not authenticated"}},
)
@limiter.limit("30/minute")
async def player_post(
    request: Request,
    response: Response,
    body: Any = Body(...),
    control: ControlService = Depends(get_control_service),
    credential: Credential = Depends(get_request_credential),
    settings: Settings = Depends(get_settings),
):
    return await _control(body, POST_ACTIONS, response, control, credential, settings)
