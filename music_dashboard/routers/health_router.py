"""Health and debug endpoints."""

import platform
import sys
import time
from datetime import UTC, datetime

import httpx
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from music_dashboard import __version__
from music_dashboard.config import Settings, get_settings
from music_dashboard.dependencies import get_http_client, get_relay_service
from music_dashboard.models import DebugInfo, DetailedHealthResponse, HealthResponse
from music_dashboard.security import get_cors_origins, get_trusted_hosts, verify_api_key
from music_dashboard.services.relay_service import RelayService

router = APIRouter()


@router.get("/health", response_model=HealthResponse)
async def health_check():
    """Basic health check endpoint.

    Returns simple status for Docker healthcheck and basic monitoring.
    For detailed health status, use `/health/ready`.
    """
    return HealthResponse(status="ok", version=__version__)


@router.get("/health/live", response_model=HealthResponse)
async def liveness_check():
    """Liveness probe - is the process up and serving?"""
    return HealthResponse(status="alive", version=__version__)


@router.get("/health/ready", response_model=DetailedHealthResponse)
async def readiness_check(
    request: Request,
    client: httpx.AsyncClient = Depends(get_http_client),
    relay: RelayService = Depends(get_relay_service),
):
    """Readiness probe - can the application serve traffic?

    Checks that the upstream HTTP client is open and the relay components are
    wired. Spotify itself is not called; it is per-user and rate limited.

    **Returns:**
    - 200: Application is ready to serve requests
    - 503: Application is not ready
    """
    checks = {
        "http_client": "failed" if client.is_closed else "ok",
        "relay": "ok",
        "reaper": "ok",
    }

    scheduler = getattr(request.app.state, "scheduler", None)
    if scheduler is not relay.scheduler:
        checks["relay"] = "failed"

    reaper = getattr(request.app.state, "reaper_task", None)
    if reaper is not None and reaper.done():
        checks["reaper"] = "stopped"

    all_healthy = all(value == "ok" for value in checks.values())
    return JSONResponse(
        status_code=200 if all_healthy else 503,
        content=DetailedHealthResponse(
            status="healthy" if all_healthy else "unhealthy",
            version=__version__,
            timestamp=datetime.now(UTC),
            checks=checks,
        ).model_dump(mode="json"),
    )


@router.get(
    "/debug",
    response_model=DebugInfo,
    dependencies=[Depends(verify_api_key)],
    responses={
        200: {"description": "System diagnostics and relay state"},
        401: {"description": "Unauthorized - missing or invalid API key"},
    },
)
async def debug_info(
    request: Request,
    relay: RelayService = Depends(get_relay_service),
    settings: Settings = Depends(get_settings),
):
    """Debug endpoint with system state and diagnostics.

    **🔒 Authentication Required:** This endpoint requires Bearer token authentication.

    Returns:
    - System info (version, uptime, Python version)
    - Relay state (sessions by state, cache hit rate, in-flight and upstream calls)
    - Configuration (sanitized, no secrets)
    - Request statistics
    """
    uptime_seconds = int(time.time() - request.app.state.startup_time)

    system_info = {
        "version": __version__,
        "python_version": f"{sys.version_info.major}.{sys.version_info.minor}.{sys.version_info.micro}",
        "platform": platform.system(),
        "uptime_seconds": uptime_seconds,
        "log_level": settings.log_level,
    }

    relay_info = relay.stats()
    relay_info["session_details"] = [session.describe() for session in relay.registry.sessions()[:20]]

    # Config info (sanitized - no secrets)
    config_info = {
        "api_host": settings.api_host,
        "api_port": settings.api_port,
        "spotify_redirect_uri": settings.spotify_redirect_uri,
        "cors_origins": get_cors_origins(settings),
        "trusted_hosts": get_trusted_hosts(settings),
        "poll_intervals": {
            "playback": settings.playback_poll_interval,
            "queue": settings.queue_poll_interval,
            "devices": settings.devices_poll_interval,
        },
        "heartbeat_interval": settings.heartbeat_interval,
        "session_stale_timeout": settings.session_stale_timeout,
        "request_min_interval": settings.request_min_interval,
        "rate_limit_default": "60/minute",
    }

    request_stats = {
        "total_requests": getattr(request.app.state, "request_count", 0),
    }

    return DebugInfo(
        system=system_info,
        relay=relay_info,
        config=config_info,
        requests=request_stats,
    )
