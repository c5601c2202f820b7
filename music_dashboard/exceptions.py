"""Custom exceptions for Music Dashboard with proper HTTP status codes."""

from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Error codes for structured error responses and relay error events."""

    # Generic errors
    DASHBOARD_ERROR = "DASHBOARD_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    RATE_LIMITED = "RATE_LIMITED"

    # Spotify errors
    SPOTIFY_ERROR = "SPOTIFY_ERROR"
    SPOTIFY_AUTH_ERROR = "SPOTIFY_AUTH_ERROR"
    SPOTIFY_NOT_AUTHENTICATED = "SPOTIFY_NOT_AUTHENTICATED"
    SPOTIFY_API_ERROR = "SPOTIFY_API_ERROR"
    SPOTIFY_RATE_LIMIT = "SPOTIFY_RATE_LIMIT"

    # Relay errors
    RELAY_ERROR = "RELAY_ERROR"
    TRANSPORT_FAILURE = "TRANSPORT_FAILURE"
    MALFORMED_MESSAGE = "MALFORMED_MESSAGE"
    SESSION_NOT_FOUND = "SESSION_NOT_FOUND"
    ALREADY_AUTHENTICATED = "ALREADY_AUTHENTICATED"

    # Player control errors
    INVALID_COMMAND = "INVALID_COMMAND"


class DashboardException(Exception):
    """Base exception for dashboard errors with HTTP status code support.

    All custom exceptions should inherit from this class to ensure
    consistent error handling across the application.
    """

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.DASHBOARD_ERROR,
        status_code: int = 500,
        details: dict[str, Any] | None = None,
    ):
        """Initialize dashboard exception.

        Args:
            message: Human-readable error message
            code: Error code from ErrorCode enum
            status_code: HTTP status code (default 500)
            details: Additional error context/details
        """
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(message)


class SpotifyException(DashboardException):
    """Spotify-related errors."""

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.SPOTIFY_ERROR,
        status_code: int = 500,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, code, status_code, details)


class SpotifyAuthException(SpotifyException):
    """OAuth code or refresh-token exchange failed."""

    def __init__(self, message: str = "Spotify authentication failed", details: dict[str, Any] | None = None):
        super().__init__(
            message,
            code=ErrorCode.SPOTIFY_AUTH_ERROR,
            status_code=401,
            details=details,
        )


class UnauthenticatedException(SpotifyException):
    """Credential is missing, expired, or could not be refreshed."""

    def __init__(self, message: str = "Not authenticated with Spotify", details: dict[str, Any] | None = None):
        super().__init__(
            message,
            code=ErrorCode.SPOTIFY_NOT_AUTHENTICATED,
            status_code=401,
            details=details,
        )


class UpstreamUnavailableException(SpotifyException):
    """Spotify answered with a non-success status (other than 401) or could not be reached."""

    def __init__(
        self,
        message: str,
        upstream_status: int | None = None,
        retry_after: float | None = None,
        details: dict[str, Any] | None = None,
    ):
        self.upstream_status = upstream_status
        self.retry_after = retry_after
        details = dict(details or {})
        details["upstream_status"] = upstream_status
        if retry_after is not None:
            details["retry_after"] = retry_after
        super().__init__(
            message,
            code=ErrorCode.SPOTIFY_RATE_LIMIT if upstream_status == 429 else ErrorCode.SPOTIFY_API_ERROR,
            status_code=429 if upstream_status == 429 else 502,
            details=details,
        )


class RelayException(DashboardException):
    """Real-time relay errors."""

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.RELAY_ERROR,
        status_code: int = 500,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, code, status_code, details)


class TransportFailureException(RelayException):
    """Writing to a client transport failed; the session must be destroyed."""

    def __init__(self, message: str = "Transport write failed", details: dict[str, Any] | None = None):
        super().__init__(
            message,
            code=ErrorCode.TRANSPORT_FAILURE,
            status_code=500,
            details=details,
        )


class MalformedClientMessageException(RelayException):
    """An inbound full-duplex message could not be parsed or validated."""

    def __init__(self, message: str = "Invalid message format", details: dict[str, Any] | None = None):
        super().__init__(
            message,
            code=ErrorCode.MALFORMED_MESSAGE,
            status_code=400,
            details=details,
        )


class SessionNotFoundException(RelayException):
    """No live session with the given id."""

    def __init__(self, session_id: str):
        super().__init__(
            f"Session {session_id} not found",
            code=ErrorCode.SESSION_NOT_FOUND,
            status_code=404,
            details={"session_id": session_id},
        )


class InvalidControlCommandException(DashboardException):
    """Player control command has an unknown action or invalid parameters."""

    def __init__(self, message: str = "Invalid action", details: dict[str, Any] | None = None):
        super().__init__(
            message,
            code=ErrorCode.INVALID_COMMAND,
            status_code=400,
            details=details,
        )
