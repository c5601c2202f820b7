"""Security dependencies: dashboard API key and the caller's Spotify credential."""

from fastapi import Depends, HTTPException, Request, Response, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from music_dashboard.config import Settings, get_settings
from music_dashboard.exceptions import UnauthenticatedException
from music_dashboard.logging_config import get_logger, log_with_context
from music_dashboard.models.credential import Credential

logger = get_logger(__name__)

ACCESS_TOKEN_COOKIE = "spotify_access_token"
REFRESH_TOKEN_COOKIE = "spotify_refresh_token"
OAUTH_STATE_COOKIE = "spotify_auth_state"
REFRESH_TOKEN_MAX_AGE = 60 * 60 * 24 * 30  # 30 days

# HTTP Bearer token scheme
security = HTTPBearer(auto_error=False)


async def verify_api_key(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
    settings: Settings = Depends(get_settings),
) -> None:
    """Verify the dashboard API key from the Authorization header.

    Raises:
        HTTPException: If the key is not configured, missing or wrong

    Example:
        Authorization: Bearer your-api-key-here
    """
    api_key = settings.dashboard_api_key

    if not api_key:
        log_with_context(
            logger,
            "error",
            "DASHBOARD_API_KEY not configured",
            event_type="security_error",
            path=request.url.path,
        )
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication not configured - DASHBOARD_API_KEY environment variable is missing",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if not credentials:
        log_with_context(
            logger,
            "warning",
            "Missing API key",
            event_type="auth_failure",
            path=request.url.path,
            ip=request.client.host if request.client else "unknown",
        )
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing API key",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if credentials.credentials != api_key:
        log_with_context(
            logger,
            "warning",
            "Invalid API key",
            event_type="auth_failure",
            path=request.url.path,
            ip=request.client.host if request.client else "unknown",
        )
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API key",
            headers={"WWW-Authenticate": "Bearer"},
        )


def credential_from_request(request: Request) -> Credential | None:
    """Read the caller's Spotify credential from the auth cookies or a bearer header."""
    # A blank cookie counts as missing
    access_token = (request.cookies.get(ACCESS_TOKEN_COOKIE) or "").strip()
    refresh_token = (request.cookies.get(REFRESH_TOKEN_COOKIE) or "").strip()

    if not access_token:
        scheme, _, token = request.headers.get("Authorization", "").partition(" ")
        if scheme.lower() == "bearer" and token.strip():
            access_token = token.strip()

    if not access_token:
        return None
    return Credential(access_token=access_token, refresh_token=refresh_token or None)


async def get_request_credential(request: Request) -> Credential:
    """Dependency: the caller's Spotify credential.

    Raises:
        UnauthenticatedException: If the request carries no credential
    """
    credential = credential_from_request(request)
    if credential is None:
        raise UnauthenticatedException()
    return credential


def set_auth_cookies(response: Response, credential: Credential, settings: Settings, max_age: int = 3600) -> None:
    """Store a credential in HttpOnly cookies."""
    response.set_cookie(
        ACCESS_TOKEN_COOKIE,
        credential.access_token,
        max_age=max_age,
        path="/",
        httponly=True,
        secure=settings.secure_cookies,
        samesite="lax",
    )
    if credential.refresh_token:
        response.set_cookie(
            REFRESH_TOKEN_COOKIE,
            credential.refresh_token,
            max_age=REFRESH_TOKEN_MAX_AGE,
            path="/",
            httponly=True,
            secure=settings.secure_cookies,
            samesite="lax",
        )


def clear_auth_cookies(response: Response) -> None:
    response.delete_cookie(ACCESS_TOKEN_COOKIE, path="/")
    response.delete_cookie(REFRESH_TOKEN_COOKIE, path="/")


def get_cors_origins(settings: Settings) -> list[str]:
    """Get allowed CORS origins from settings.

    Args:
        settings: Settings instance with CORS configuration

    Returns:
        List of allowed origins
    """
    return [origin.strip() for origin in settings.cors_origins.split(",") if origin.strip()]


def get_trusted_hosts(settings: Settings) -> list[str]:
    """Get trusted host patterns from settings.

    Args:
        settings: Settings instance with trusted hosts configuration

    Returns:
        List of trusted host patterns
    """
    return [host.strip() for host in settings.trusted_hosts.split(",") if host.strip()]
