from pathlib import Path

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from music_dashboard.logging_config import get_logger

logger = get_logger(__name__)

BASE_DIR = Path(__file__).resolve().parent.parent  # music-dashboard/


class Settings(BaseSettings):
    """Application settings with validation.

    Spotify OAuth credentials are required and will raise validation errors if missing.
    Everything that tunes the relay (poll cadence, cache TTLs, throttling, heartbeats)
    has a default matching the upstream API's rate limits and can be overridden
    via environment variables or the .env file.
    """

    # API server settings
    api_host: str = Field(default="127.0.0.1", min_length=1, description="API server host (e.g., '0.0.0.0')")
    api_port: int = Field(ge=1, le=65535, default=8000, description="API server port")
    log_level: str = Field(default="INFO", description="Root log level")
    log_dir: Path = Field(default=BASE_DIR / "logs", description="Directory for the JSON log file")
    log_file_max_mb: int = Field(default=10, ge=1, description="Size at which the JSON log file rotates")
    log_file_backups: int = Field(default=5, ge=0)
    rate_limit_default: str = Field(default="60/minute", description="slowapi limit applied to every route")

    # Spotify OAuth - required
    spotify_client_id: str = Field(min_length=1, description="Spotify OAuth client ID")
    spotify_client_secret: str = Field(min_length=1, description="Spotify OAuth client secret")
    spotify_redirect_uri: str = Field(
        default="http://localhost:8000/api/auth/callback",
        pattern=r"^https?://",
        description="Spotify OAuth redirect URI",
    )
    spotify_api_base: str = Field(default="https://api.spotify.com/v1", description="Spotify Web API base URL")
    spotify_accounts_base: str = Field(
        default="https://accounts.spotify.com", description="Spotify accounts service base URL"
    )

    # Security
    dashboard_api_key: str = Field(default="", description="Bearer key protecting the /debug endpoint")
    cors_origins: str = Field(default="http://localhost:3000,http://localhost:8000")
    trusted_hosts: str = Field(default="localhost,127.0.0.1,testserver")
    secure_cookies: bool = Field(default=False, description="Mark auth cookies as Secure (enable behind HTTPS)")

    # Response cache TTLs (seconds)
    cache_ttl_playback: float = Field(default=2.0, ge=0)
    cache_ttl_queue: float = Field(default=3.0, ge=0)
    cache_ttl_devices: float = Field(default=30.0, ge=0)
    cache_ttl_recently_played: float = Field(default=60.0, ge=0)
    cache_ttl_top_tracks: float = Field(default=3600.0, ge=0)
    cache_ttl_audio_features: float = Field(default=3600.0, ge=0)
    cache_ttl_current_user: float = Field(default=3600.0, ge=0)

    # Throttle gate
    request_min_interval: float = Field(default=0.5, ge=0, description="Minimum seconds between identical reads")

    # Fan-out scheduler
    playback_poll_interval: float = Field(default=1.0, gt=0)
    queue_poll_interval: float = Field(default=5.0, gt=0)
    devices_poll_interval: float = Field(default=30.0, gt=0)
    heartbeat_interval: float = Field(default=30.0, gt=0)
    session_stale_timeout: float = Field(default=90.0, gt=0)
    progress_jump_threshold_ms: int = Field(default=2000, ge=0)
    max_auth_failures: int = Field(default=3, ge=1)
    event_stream_queue_size: int = Field(default=100, ge=1)
    validate_credentials_on_auth: bool = Field(default=True)

    # Advertised to clients that want to open the full-duplex relay
    relay_websocket_url: str = Field(default="ws://localhost:8000/ws", pattern=r"^wss?://")

    model_config = SettingsConfigDict(
        env_file=Path(BASE_DIR / ".env"),
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        validate_default=True,
    )

    @field_validator("api_host", mode="after")
    @classmethod
    def validate_api_host(cls, v: str) -> str:
        """Ensure api_host is not empty or whitespace."""
        v = v.strip()
        if not v:
            raise ValueError("api_host cannot be empty")
        return v

    @field_validator("log_level", mode="after")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Normalise log level and reject unknown names."""
        v = v.strip().upper()
        if v not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"log_level must be a standard logging level, got {v!r}")
        return v

    @field_validator("spotify_api_base", "spotify_accounts_base", mode="after")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        """Base URLs are joined with paths that start with '/'."""
        return v.rstrip("/")

    @model_validator(mode="after")
    def validate_poll_cadence(self) -> "Settings":
        """Playback must be polled at least as often as the queue, and the queue as often as devices."""
        if not self.playback_poll_interval <= self.queue_poll_interval <= self.devices_poll_interval:
            raise ValueError("poll intervals must satisfy playback <= queue <= devices")
        if self.session_stale_timeout <= self.heartbeat_interval:
            raise ValueError("session_stale_timeout must be longer than heartbeat_interval")
        return self


# Singleton settings instance (cached for performance)
_settings_instance: Settings | None = None


def get_settings() -> Settings:
    """Get singleton Settings instance for dependency injection.

    This function creates a singleton to avoid re-reading .env file
    on every request. Use this with FastAPI's Depends() for
    dependency injection.

    Returns:
        Cached Settings instance
    """
    global _settings_instance
    if _settings_instance is None:
        _settings_instance = Settings()
    return _settings_instance
