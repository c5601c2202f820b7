"""Player control commands mapped onto Spotify mutations."""

from typing import Any

from pydantic import ValidationError

from music_dashboard.exceptions import InvalidControlCommandException
from music_dashboard.logging_config import get_logger, log_with_context
from music_dashboard.models.commands import (
    NextCommand,
    PreviousCommand,
    RepeatCommand,
    SeekCommand,
    ShuffleCommand,
    TogglePlayCommand,
    TransferCommand,
    VolumeCommand,
    control_command_adapter,
)
from music_dashboard.models.credential import Credential
from music_dashboard.services.spotify_client import EndpointClass
from music_dashboard.services.spotify_gateway import SpotifyGateway

logger = get_logger(__name__)

# Actions accepted per HTTP method on the player route
PUT_ACTIONS = frozenset({"toggle-play", "volume", "seek", "transfer", "shuffle", "repeat"})
POST_ACTIONS = frozenset({"next", "previous"})


def parse_command(body: Any, allowed: frozenset[str] | None = None):
    """Validate a raw request body into a control command.

    Raises:
        InvalidControlCommandException: Unknown action, action not allowed here, or bad parameters
    """
    action = body.get("action") if isinstance(body, dict) else None
    if not isinstance(action, str) or action not in (allowed if allowed is not None else PUT_ACTIONS | POST_ACTIONS):
        raise InvalidControlCommandException(details={"action": action})
    try:
        return control_command_adapter.validate_python(body)
    except ValidationError as e:
        raise InvalidControlCommandException(
            f"Invalid parameters for {action!r}",
            details={"action": action, "errors": e.errors(include_url=False, include_context=False)},
        ) from e


class ControlService:
    def __init__(self, gateway: SpotifyGateway):
        self._gateway = gateway

    async def execute(self, command, credential: Credential) -> EndpointClass:
        """Run one command through the gateway's mutation path.

        Returns:
            The mutation that was applied

        Raises:
            UnauthenticatedException, UpstreamUnavailableException: From the upstream call
        """
        endpoint, params = await self._resolve(command, credential)
        await self._gateway.mutate(endpoint, credential, params)
        log_with_context(
            logger,
            "info",
            "Player command executed",
            action=command.action,
            mutation=endpoint.value,
            credential=credential.fingerprint,
            event_type="player_command",
        )
        return endpoint

    async def _resolve(self, command, credential: Credential) -> tuple[EndpointClass, dict[str, Any] | None]:
        if isinstance(command, TogglePlayCommand):
            play = command.play
            if play is None:
                playback = await self._gateway.read(EndpointClass.PLAYBACK, credential)
                play = not playback.get("is_playing", False)
            return (EndpointClass.PLAY if play else EndpointClass.PAUSE), None
        if isinstance(command, NextCommand):
            return EndpointClass.NEXT, None
        if isinstance(command, PreviousCommand):
            return EndpointClass.PREVIOUS, None
        if isinstance(command, VolumeCommand):
            return EndpointClass.VOLUME, {"volume_percent": command.volume_percent}
        if isinstance(command, SeekCommand):
            return EndpointClass.SEEK, {"position_ms": command.position_ms}
        if isinstance(command, TransferCommand):
            return EndpointClass.TRANSFER, {"device_id": command.device_id, "play": command.play}
        if isinstance(command, ShuffleCommand):
            return EndpointClass.SHUFFLE, {"state": "true" if command.state else "false"}
        if isinstance(command, RepeatCommand):
            return EndpointClass.REPEAT, {"state": command.state}
        raise InvalidControlCommandException(details={"action": getattr(command, "action", None)})
