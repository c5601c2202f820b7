"""Relay wire contract: outbound events and inbound full-duplex messages."""

import time
from typing import Annotated, Any, Literal

from pydantic import BaseModel, Field, TypeAdapter, field_validator

EventType = Literal["connected", "playback", "queue", "devices", "ping", "error", "auth_success"]

# Event types a client can subscribe to; the rest are always delivered.
DATA_EVENT_TYPES: frozenset[str] = frozenset({"playback", "queue", "devices"})


def now_ms() -> int:
    """Wall-clock milliseconds, the timestamp unit of the event contract."""
    return int(time.time() * 1000)


class RelayEvent(BaseModel):
    """Message pushed from the relay to a client."""

    type: EventType
    data: dict[str, Any] | None = None
    timestamp: int = Field(default_factory=now_ms)

    def to_json(self) -> str:
        return self.model_dump_json(exclude_none=True)

    @classmethod
    def error(cls, code: str, message: str) -> "RelayEvent":
        return cls(type="error", data={"code": code, "message": message})


class AuthMessage(BaseModel):
    """First message on the full-duplex transport; carries the credential reference."""

    type: Literal["auth"]
    token: str = Field(min_length=1)
    refresh_token: str | None = None

    @field_validator("token", mode="after")
    @classmethod
    def validate_token(cls, v: str) -> str:
        """Reject blank tokens so they are reported as malformed messages."""
        v = v.strip()
        if not v:
            raise ValueError("token cannot be empty")
        return v

    @field_validator("refresh_token", mode="after")
    @classmethod
    def blank_refresh_token_is_none(cls, v: str | None) -> str | None:
        if v is None:
            return None
        return v.strip() or None


class PingMessage(BaseModel):
    type: Literal["ping", "pong"]


class SubscribeMessage(BaseModel):
    """Narrow the data events delivered to this session."""

    type: Literal["subscribe"]
    events: list[Literal["playback", "queue", "devices"]] = Field(min_length=1)


ClientMessage = Annotated[AuthMessage | PingMessage | SubscribeMessage, Field(discriminator="type")]

client_message_adapter: TypeAdapter[AuthMessage | PingMessage | SubscribeMessage] = TypeAdapter(ClientMessage)
