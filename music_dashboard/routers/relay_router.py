"""Real-time relay endpoints: full-duplex WebSocket and Server-Sent Events."""

from fastapi import APIRouter, Depends, Request, WebSocket
from fastapi.responses import StreamingResponse

from music_dashboard.dependencies import get_relay_service, get_websocket_relay_service
from music_dashboard.exceptions import UnauthenticatedException
from music_dashboard.logging_config import get_logger, log_with_context
from music_dashboard.security import credential_from_request
from music_dashboard.services.relay_service import RelayService
from music_dashboard.transports import WebSocketTransport

router = APIRouter()
logger = get_logger(__name__)


@router.websocket("/ws")
async def relay_websocket(websocket: WebSocket, relay: RelayService = Depends(get_websocket_relay_service)):
    """Full-duplex relay.

    The server greets with `connected`; the client must then send
    `{"type": "auth", "token": "..."}`. Polling starts after `auth_success`.
    """
    transport = WebSocketTransport(websocket)
    await transport.accept()
    session_id = await relay.connect(transport)

    async def on_message(raw: str) -> None:
        await relay.handle_message(session_id, raw)

    transport.on_message(on_message)
    log_with_context(
        logger,
        "info",
        "WebSocket client connected",
        session_id=session_id,
        client=websocket.client.host if websocket.client else "unknown",
        event_type="ws_connected",
    )
    try:
        await transport.receive_loop()
    finally:
        await relay.disconnect(session_id)
        log_with_context(logger, "info", "WebSocket client disconnected", session_id=session_id, event_type="ws_closed")


@router.get(
    "/api/spotify/events",
    summary="Playback event stream (SSE)",
    description="""
    Server-Sent Events stream of `playback`, `queue` and `devices` changes for
    the user identified by the auth cookies (or a bearer token).
    """,
    responses={
        200: {"content": {"text/event-stream": {}}},
        401: {"description": "Not authenticated - visit /api/auth/login"},
    },
)
async def event_stream(request: Request, relay: RelayService = Depends(get_relay_service)):
    credential = credential_from_request(request)
    if credential is None:
        raise UnauthenticatedException()

    transport = await relay.open_event_stream(credential)
    return StreamingResponse(
        transport.stream(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache, no-transform",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )
