"""FastAPI dependencies for dependency injection."""

import httpx
from fastapi import Request, WebSocket

from music_dashboard.services.control_service import ControlService
from music_dashboard.services.relay_service import RelayService
from music_dashboard.services.spotify_gateway import SpotifyGateway
from music_dashboard.state_managers import OAuthStateManager


async def get_http_client(request: Request) -> httpx.AsyncClient:
    """
    Get the shared HTTP client from app state.

    Args:
        request: The FastAPI request object.

    Returns:
        The shared AsyncClient instance.

    Raises:
        RuntimeError: If HTTP client is not initialized.
    """
    client: httpx.AsyncClient | None = getattr(request.app.state, "http_client", None)

    if client is None:
        raise RuntimeError("HTTP client not initialized. This should never happen.")

    return client


async def get_gateway(request: Request) -> SpotifyGateway:
    """
    Get the shared Spotify gateway (cache and throttle gate) from app state.

    Raises:
        RuntimeError: If the gateway is not initialized.
    """
    gateway: SpotifyGateway | None = getattr(request.app.state, "gateway", None)

    if gateway is None:
        raise RuntimeError("Spotify gateway not initialized.")

    return gateway


async def get_control_service(request: Request) -> ControlService:
    service: ControlService | None = getattr(request.app.state, "control_service", None)

    if service is None:
        raise RuntimeError("Control service not initialized.")

    return service


async def get_relay_service(request: Request) -> RelayService:
    """
    Get the relay service from app state.

    Raises:
        RuntimeError: If the relay service is not initialized.
    """
    service: RelayService | None = getattr(request.app.state, "relay_service", None)

    if service is None:
        raise RuntimeError("Relay service not initialized.")

    return service


async def get_websocket_relay_service(websocket: WebSocket) -> RelayService:
    """Same as get_relay_service, for WebSocket routes (which have no Request)."""
    service: RelayService | None = getattr(websocket.app.state, "relay_service", None)

    if service is None:
        raise RuntimeError("Relay service not initialized.")

    return service


async def get_oauth_state_manager(request: Request) -> OAuthStateManager:
    """
    Get the OAuth state manager from app state.

    Raises:
        RuntimeError: If the OAuth state manager is not initialized.
    """
    manager: OAuthStateManager | None = getattr(request.app.state, "oauth_state_manager", None)

    if manager is None:
        raise RuntimeError("OAuth state manager not initialized.")

    return manager
