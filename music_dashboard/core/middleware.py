"""CORS, host checking, the app-wide rate limit and the request counter."""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from slowapi import Limiter
from slowapi.util import get_remote_address

from music_dashboard.config import Settings
from music_dashboard.logging_config import get_logger, log_with_context
from music_dashboard.security import get_cors_origins, get_trusted_hosts

logger = get_logger(__name__)


def setup_middleware(app: FastAPI, settings: Settings) -> Limiter:
    """Install the middleware stack and return the app-wide limiter.

    The dashboard front end calls the API from another origin with the auth
    cookies attached, so CORS allows credentials; the player routes need
    PUT and POST on top of GET.
    """
    cors_origins = get_cors_origins(settings)
    trusted_hosts = get_trusted_hosts(settings)
    log_with_context(
        logger,
        "info",
        "Configuring HTTP middleware",
        origins=cors_origins,
        hosts=trusted_hosts,
        default_limit=settings.rate_limit_default,
        event_type="security_config",
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT"],
        allow_headers=["Authorization", "Content-Type"],
    )
    app.add_middleware(TrustedHostMiddleware, allowed_hosts=trusted_hosts)

    limiter = Limiter(key_func=get_remote_address, default_limits=[settings.rate_limit_default])
    app.state.limiter = limiter

    @app.middleware("http")
    async def count_requests(request, call_next):
        # Shown by /debug
        app.state.request_count = getattr(app.state, "request_count", 0) + 1
        return await call_next(request)

    return limiter
