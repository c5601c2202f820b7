"""Application factory for creating and configuring the FastAPI app."""

from fastapi import FastAPI

from music_dashboard import __version__
from music_dashboard.config import get_settings
from music_dashboard.core.lifespan import lifespan
from music_dashboard.core.middleware import setup_middleware
from music_dashboard.middleware.error_handlers import register_error_handlers
from music_dashboard.routers import auth_router, health_router, relay_router, spotify_router


def custom_openapi(app: FastAPI):
    """Generate custom OpenAPI schema with the debug API key scheme."""
    if app.openapi_schema:
        return app.openapi_schema

    from fastapi.openapi.utils import get_openapi

    openapi_schema = get_openapi(
        title=app.title,
        version=app.version,
        description=app.description,
        routes=app.routes,
    )

    openapi_schema.setdefault("components", {})["securitySchemes"] = {
        "BearerAuth": {
            "type": "http",
            "scheme": "bearer",
            "bearerFormat": "API Key",
            "description": "Dashboard API key (only /debug requires it)",
        },
        "SpotifyCookie": {
            "type": "apiKey",
            "in": "cookie",
            "name": "spotify_access_token",
            "description": "Set by /api/auth/callback",
        },
    }

    for path, path_item in openapi_schema.get("paths", {}).items():
        for method, operation in path_item.items():
            if method not in ["get", "post", "put", "delete", "patch"]:
                continue
            if path == "/debug":
                operation["security"] = [{"BearerAuth": []}]
            elif path.startswith("/api/spotify/") or path in ("/api/auth/token",):
                operation["security"] = [{"SpotifyCookie": []}]

    app.openapi_schema = openapi_schema
    return app.openapi_schema


def create_app() -> FastAPI:
    """Create and configure the FastAPI application.

    Returns:
        Configured FastAPI application instance
    """
    settings = get_settings()

    app = FastAPI(
        title="Music Dashboard API",
        description="""
        🎵 **Music Dashboard** - Spotify now-playing, player control and a real-time playback relay

        ## 🔐 Authentication
        1. Call `/api/auth/login` and open the returned URL (or use `?redirect=true`)
        2. Approve access on Spotify; the callback stores your tokens in cookies
        3. REST routes and the event stream read the cookies automatically

        ## ⚡ Real-time relay
        - `/ws` - WebSocket; send `{"type": "auth", "token": ...}` after `connected`
        - `/api/spotify/events` - Server-Sent Events for cookie-authenticated browsers

        ## 📊 Health & Monitoring
        - `/health` - Basic health check
        - `/health/live` - Liveness probe
        - `/health/ready` - Readiness probe
        - `/debug` - Relay state and diagnostics (requires API key)
        """,
        version=__version__,
        lifespan=lifespan,
    )

    setup_middleware(app, settings)
    register_error_handlers(app)

    # Health and debug endpoints
    app.include_router(health_router.router, tags=["health"])

    # Real-time relay (/ws and /api/spotify/events)
    app.include_router(relay_router.router, tags=["relay"])

    # API routes
    app.include_router(spotify_router.router, prefix="/api/spotify", tags=["spotify"])
    app.include_router(auth_router.router, prefix="/api/auth", tags=["auth"])

    app.openapi = lambda: custom_openapi(app)

    return app
