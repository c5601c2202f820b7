"""Spotify OAuth routes.

The browser is sent through Spotify's authorization-code flow; the callback
stores the resulting tokens in HttpOnly cookies that the REST routes and the
event stream read. Relay clients fetch the access token from /token to send
it in the full-duplex auth message.
"""

import httpx
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, RedirectResponse
from slowapi import Limiter
from slowapi.util import get_remote_address

from music_dashboard.config import Settings, get_settings
from music_dashboard.dependencies import get_http_client, get_oauth_state_manager
from music_dashboard.exceptions import SpotifyAuthException
from music_dashboard.logging_config import get_logger, log_with_context
from music_dashboard.models import TokenResponse
from music_dashboard.models.credential import Credential
from music_dashboard.security import (
    OAUTH_STATE_COOKIE,
    clear_auth_cookies,
    get_request_credential,
    set_auth_cookies,
)
from music_dashboard.services import oauth_service
from music_dashboard.state_managers import OAUTH_STATE_TTL_SECONDS, OAuthStateManager

router = APIRouter()
limiter = Limiter(key_func=get_remote_address)
logger = get_logger(__name__)


def _redirect_with_error(error: str) -> RedirectResponse:
    return RedirectResponse(url=f"/?error={error}", status_code=303)


@router.get("/login", summary="Start the Spotify OAuth flow")
@limiter.limit("10/minute")
async def auth_login(
    request: Request,
    redirect: bool = False,
    settings: Settings = Depends(get_settings),
    state_manager: OAuthStateManager = Depends(get_oauth_state_manager),
):
    """Return the Spotify authorization URL (or redirect to it with `?redirect=true`).

    A CSRF state is issued, remembered server-side and set as a cookie; the
    callback requires both to match.
    """
    state = await state_manager.issue()
    auth_url = oauth_service.build_authorize_url(settings, state)

    response = RedirectResponse(url=auth_url) if redirect else JSONResponse({"url": auth_url})
    response.set_cookie(
        OAUTH_STATE_COOKIE,
        state,
        max_age=int(OAUTH_STATE_TTL_SECONDS),
        path="/",
        httponly=True,
        secure=settings.secure_cookies,
        samesite="lax",
    )
    return response


@router.get("/callback", summary="Spotify OAuth callback")
async def auth_callback(
    request: Request,
    code: str | None = None,
    state: str | None = None,
    error: str | None = None,
    client: httpx.AsyncClient = Depends(get_http_client),
    settings: Settings = Depends(get_settings),
    state_manager: OAuthStateManager = Depends(get_oauth_state_manager),
):
    """Exchange the authorization code and store the tokens in cookies.

    Redirects to `/` with an `error` query parameter on any failure.
    """
    if error:
        log_with_context(logger, "warning", "Spotify authorization denied", error=error, event_type="oauth_denied")
        return _redirect_with_error(error)

    stored_state = request.cookies.get(OAUTH_STATE_COOKIE)
    if not state or state != stored_state or not await state_manager.consume(state):
        log_with_context(logger, "warning", "OAuth state mismatch", event_type="oauth_state_mismatch")
        return _redirect_with_error("state_mismatch")

    if not code:
        return _redirect_with_error("missing_code")

    try:
        tokens = await oauth_service.exchange_code(client, settings, code)
    except SpotifyAuthException as e:
        log_with_context(
            logger,
            "error",
            "Token exchange failed",
            error=e.message,
            event_type="oauth_exchange_failed",
        )
        return _redirect_with_error("token_exchange_failed")

    credential = Credential(access_token=tokens["access_token"], refresh_token=tokens.get("refresh_token"))
    response = RedirectResponse(url="/", status_code=303)
    set_auth_cookies(response, credential, settings, max_age=int(tokens.get("expires_in", 3600)))
    response.delete_cookie(OAUTH_STATE_COOKIE, path="/")

    log_with_context(
        logger,
        "info",
        "Spotify authentication completed",
        credential=credential.fingerprint,
        event_type="spotify_auth_success",
    )
    return response


@router.get("/token", response_model=TokenResponse, summary="Access token for relay clients")
async def auth_token(
    credential: Credential = Depends(get_request_credential),
    settings: Settings = Depends(get_settings),
):
    """Return the caller's access token and the relay URL to send it to."""
    return JSONResponse(
        TokenResponse(
            access_token=credential.access_token,
            websocket_url=settings.relay_websocket_url,
        ).model_dump(by_alias=True)
    )


@router.post("/logout", summary="Forget the Spotify tokens")
async def auth_logout():
    response = JSONResponse({"success": True})
    clear_auth_cookies(response)
    return response
