"""Music Dashboard models"""

from music_dashboard.models.base_models import (
    ControlResponse,
    DebugInfo,
    DetailedHealthResponse,
    HealthResponse,
    TokenResponse,
)
from music_dashboard.models.commands import ControlCommand, control_command_adapter
from music_dashboard.models.credential import Credential
from music_dashboard.models.events import RelayEvent, client_message_adapter
from music_dashboard.models.snapshots import DevicesSnapshot, PlaybackSnapshot, QueueSnapshot

__all__ = [
    "ControlCommand",
    "ControlResponse",
    "Credential",
    "DebugInfo",
    "DetailedHealthResponse",
    "DevicesSnapshot",
    "HealthResponse",
    "PlaybackSnapshot",
    "QueueSnapshot",
    "RelayEvent",
    "TokenResponse",
    "client_message_adapter",
    "control_command_adapter",
]
