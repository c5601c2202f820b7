"""Player control commands sent by the UI."""

from typing import Annotated, Literal

from pydantic import BaseModel, Field, TypeAdapter


class TogglePlayCommand(BaseModel):
    action: Literal["toggle-play"]
    play: bool | None = Field(default=None, description="Force play (True) or pause (False); None toggles")


class NextCommand(BaseModel):
    action: Literal["next"]


class PreviousCommand(BaseModel):
    action: Literal["previous"]


class VolumeCommand(BaseModel):
    action: Literal["volume"]
    volume_percent: int = Field(ge=0, le=100)


class SeekCommand(BaseModel):
    action: Literal["seek"]
    position_ms: int = Field(ge=0)


class TransferCommand(BaseModel):
    action: Literal["transfer"]
    device_id: str = Field(min_length=1)
    play: bool = True


class ShuffleCommand(BaseModel):
    action: Literal["shuffle"]
    state: bool


class RepeatCommand(BaseModel):
    action: Literal["repeat"]
    state: Literal["track", "context", "off"]


ControlCommand = Annotated[
    TogglePlayCommand
    | NextCommand
    | PreviousCommand
    | VolumeCommand
    | SeekCommand
    | TransferCommand
    | ShuffleCommand
    | RepeatCommand,
    Field(discriminator="action"),
]

control_command_adapter: TypeAdapter = TypeAdapter(ControlCommand)
