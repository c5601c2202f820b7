"""Application lifespan management."""

import asyncio
import contextlib
import os
import time
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from typing import Any

import httpx
from fastapi import FastAPI

from music_dashboard import __version__
from music_dashboard.cache import ResponseCache, ttl_table_from_settings
from music_dashboard.config import Settings, get_settings
from music_dashboard.logging_config import get_logger, log_with_context
from music_dashboard.middleware.logging_middleware import redact_sensitive_data
from music_dashboard.scheduler import FanoutScheduler, run_stale_reaper
from music_dashboard.services.control_service import ControlService
from music_dashboard.services.relay_service import RelayService
from music_dashboard.services.spotify_client import SpotifyClient
from music_dashboard.services.spotify_gateway import SpotifyGateway
from music_dashboard.session_registry import SessionRegistry
from music_dashboard.state_managers import OAuthStateManager

logger = get_logger(__name__)


async def log_request(request: httpx.Request) -> None:
    """Event hook to log requests with redacted sensitive data."""
    log_with_context(
        logger,
        "debug",
        "HTTP Request",
        method=request.method,
        url=redact_sensitive_data(str(request.url)),
        event_type="http_request",
    )


async def log_response(response: httpx.Response) -> None:
    """Event hook to log responses with redacted sensitive data."""
    log_with_context(
        logger,
        "debug",
        "HTTP Response",
        status_code=response.status_code,
        url=redact_sensitive_data(str(response.request.url)),
        event_type="http_response",
    )


def create_http_client() -> httpx.AsyncClient:
    """Shared upstream client with pooled connections and logging hooks."""
    event_hooks: dict[str, list[Callable[..., Any]]] = {
        "request": [log_request],
        "response": [log_response],
    }

    proxy = os.getenv("HTTPS_PROXY") or os.getenv("HTTP_PROXY")
    if proxy:
        log_with_context(
            logger,
            "info",
            "Using proxy for upstream requests",
            proxy=redact_sensitive_data(proxy),
            event_type="proxy_config",
        )

    return httpx.AsyncClient(  # nosec B113
        timeout=httpx.Timeout(
            connect=5.0,  # Connection establishment timeout
            read=10.0,  # Read response timeout
            write=5.0,  # Write operation timeout
            pool=5.0,  # Pool checkout timeout
        ),
        limits=httpx.Limits(
            max_keepalive_connections=10,
            max_connections=20,
            keepalive_expiry=30.0,  # How long to keep idle connections
        ),
        proxy=proxy or None,
        event_hooks=event_hooks,
    )


def build_relay(app: FastAPI, client: httpx.AsyncClient, settings: Settings) -> None:
    """Wire the gateway, registry, scheduler and services into app.state."""
    cache = ResponseCache(ttl_table_from_settings(settings))
    gateway = SpotifyGateway(SpotifyClient(client, settings), cache, min_interval=settings.request_min_interval)

    async def validate(credential) -> None:
        await relay_service.validate_credential(credential)

    registry = SessionRegistry(validator=validate if settings.validate_credentials_on_auth else None)
    scheduler = FanoutScheduler(gateway, registry, settings)
    relay_service = RelayService(registry, scheduler, gateway, settings)

    app.state.cache = cache
    app.state.gateway = gateway
    app.state.session_registry = registry
    app.state.scheduler = scheduler
    app.state.relay_service = relay_service
    app.state.control_service = ControlService(gateway)
    app.state.oauth_state_manager = OAuthStateManager()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application lifespan - startup and shutdown events.

    Exceptions after yield are re-raised after logging so cleanup still runs.
    """
    settings = get_settings()
    app.state.startup_time = time.time()
    app.state.request_count = 0

    log_with_context(
        logger,
        "info",
        "Starting Music Dashboard application",
        version=__version__,
        event_type="app_startup",
    )

    client = create_http_client()
    app.state.http_client = client
    log_with_context(
        logger,
        "info",
        "HTTP client initialized successfully",
        event_type="http_client_ready",
    )

    build_relay(app, client, settings)
    await app.state.session_registry.initialize()
    await app.state.oauth_state_manager.initialize()

    reaper = asyncio.create_task(
        run_stale_reaper(
            app.state.session_registry,
            timeout=settings.session_stale_timeout,
            interval=settings.heartbeat_interval,
            gateway=app.state.gateway,
        ),
        name="stale-session-reaper",
    )
    app.state.reaper_task = reaper
    log_with_context(
        logger,
        "info",
        "Relay initialized",
        stale_timeout=settings.session_stale_timeout,
        event_type="relay_ready",
    )

    try:
        yield
    except Exception as e:
        log_with_context(
            logger,
            "error",
            "Application error during lifespan",
            error=str(e),
            error_type=type(e).__name__,
            event_type="app_error",
        )
        raise
    finally:
        log_with_context(
            logger,
            "info",
            "Shutting down Music Dashboard application",
            event_type="app_shutdown",
        )

        reaper.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await reaper

        await app.state.session_registry.cleanup()
        await app.state.oauth_state_manager.cleanup()
        app.state.scheduler.events.clear()
        app.state.cache.clear()
        log_with_context(
            logger,
            "info",
            "Relay sessions and state managers cleaned up",
            event_type="state_managers_cleanup",
        )

        await client.aclose()
        log_with_context(
            logger,
            "info",
            "HTTP client closed",
            event_type="http_client_cleanup",
        )
