"""Pydantic models for request/response validation."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


class HealthResponse(BaseModel):
    """Basic health check response."""

    status: str
    version: str


class DetailedHealthResponse(BaseModel):
    """Detailed health check response with dependency status."""

    status: str = Field(..., description="Overall health status: healthy or unhealthy")
    version: str = Field(..., description="Application version")
    timestamp: datetime = Field(..., description="Current server timestamp")
    checks: dict[str, str] = Field(..., description="Individual health check results")


class DebugInfo(BaseModel):
    """Debug information about application state."""

    system: dict[str, Any] = Field(..., description="System information")
    relay: dict[str, Any] = Field(..., description="Relay sessions and cache state")
    config: dict[str, Any] = Field(..., description="Configuration (sanitized)")
    requests: dict[str, int] = Field(..., description="Request statistics")


class ControlResponse(BaseModel):
    """Result of a player control command."""

    success: bool = True
    action: str


class TokenResponse(BaseModel):
    """Access token handed to relay clients for the full-duplex auth message."""

    access_token: str = Field(serialization_alias="accessToken")
    websocket_url: str = Field(serialization_alias="wsUrl")
