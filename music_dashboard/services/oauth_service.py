"""Spotify OAuth2 authorization-code and refresh-token exchanges."""

from urllib.parse import urlencode

import httpx

from music_dashboard.config import Settings
from music_dashboard.exceptions import SpotifyAuthException
from music_dashboard.logging_config import get_logger, log_with_context
from music_dashboard.models.credential import Credential

logger = get_logger(__name__)

# Spotify OAuth scopes needed for playback state, control and listening history
SPOTIFY_SCOPES = [
    "user-read-private",
    "user-read-email",
    "user-read-playback-state",
    "user-modify-playback-state",
    "user-read-currently-playing",
    "user-read-recently-played",
    "user-top-read",
]


def build_authorize_url(settings: Settings, state: str) -> str:
    """Build the URL the browser is sent to for user consent.

    Args:
        settings: Settings with client id and redirect URI
        state: CSRF state echoed back on the callback

    Returns:
        Fully qualified authorization URL
    """
    query = urlencode(
        {
            "response_type": "code",
            "client_id": settings.spotify_client_id,
            "scope": " ".join(SPOTIFY_SCOPES),
            "redirect_uri": settings.spotify_redirect_uri,
            "state": state,
        }
    )
    return f"{settings.spotify_accounts_base}/authorize?{query}"


async def _token_request(client: httpx.AsyncClient, settings: Settings, data: dict[str, str], grant: str) -> dict:
    try:
        response = await client.post(
            f"{settings.spotify_accounts_base}/api/token",
            auth=(settings.spotify_client_id, settings.spotify_client_secret),
            data=data,
            timeout=10.0,
        )
        response.raise_for_status()
        payload = response.json()
        if "access_token" not in payload:
            raise KeyError("access_token")
        return payload
    except httpx.HTTPStatusError as e:
        log_with_context(
            logger,
            "warning",
            "Spotify token exchange rejected",
            grant_type=grant,
            status_code=e.response.status_code,
            event_type="oauth_exchange_failed",
        )
        raise SpotifyAuthException(
            f"Spotify token {grant} failed", details={"status_code": e.response.status_code}
        ) from e
    except httpx.HTTPError as e:
        raise SpotifyAuthException(f"Spotify token {grant} failed: {str(e)}") from e
    except (KeyError, ValueError) as e:
        raise SpotifyAuthException(f"Invalid Spotify token response: {str(e)}") from e


async def exchange_code(client: httpx.AsyncClient, settings: Settings, code: str) -> dict:
    """Exchange an authorization code for access and refresh tokens.

    Args:
        client: Shared HTTP client
        settings: Settings with client credentials and redirect URI
        code: Authorization code from the callback

    Returns:
        Token payload with access_token, refresh_token and expires_in

    Raises:
        SpotifyAuthException: If the exchange fails
    """
    payload = await _token_request(
        client,
        settings,
        {"grant_type": "authorization_code", "code": code, "redirect_uri": settings.spotify_redirect_uri},
        "exchange",
    )
    log_with_context(logger, "info", "Spotify authorization code exchanged", event_type="oauth_code_exchanged")
    return payload


async def refresh_credential(client: httpx.AsyncClient, settings: Settings, credential: Credential) -> None:
    """Refresh a credential in place using its refresh token.

    Raises:
        SpotifyAuthException: If there is no refresh token or the refresh is rejected
    """
    if not credential.refresh_token:
        raise SpotifyAuthException("No refresh token available")

    payload = await _token_request(
        client,
        settings,
        {"grant_type": "refresh_token", "refresh_token": credential.refresh_token},
        "refresh",
    )
    credential.update(
        payload["access_token"],
        expires_in=payload.get("expires_in", 3600),
        refresh_token=payload.get("refresh_token"),
    )
    log_with_context(
        logger,
        "info",
        "Spotify credential refreshed",
        credential=credential.fingerprint,
        event_type="oauth_token_refreshed",
    )
