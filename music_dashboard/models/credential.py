"""Upstream credential held by a relay session."""

import asyncio
import hashlib
import time


class Credential:
    """Spotify bearer token plus optional refresh token.

    Refreshed in place so every session holding the same object sees the new
    access token. The fingerprint is derived from the token presented at
    creation and stays stable across refreshes; it keys cache entries and
    in-flight requests so nothing leaks between users.
    """

    def __init__(self, access_token: str, refresh_token: str | None = None, expires_at: float | None = None):
        if not access_token or not access_token.strip():
            raise ValueError("access_token must not be empty")
        self.access_token = access_token.strip()
        self.refresh_token = refresh_token or None
        self.expires_at = expires_at
        self.fingerprint = hashlib.sha256(self.access_token.encode("utf-8")).hexdigest()[:16]
        self.refresh_lock = asyncio.Lock()

    @property
    def can_refresh(self) -> bool:
        return self.refresh_token is not None

    @property
    def authorization_header(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.access_token}"}

    def is_expired(self, now: float | None = None) -> bool:
        """Check whether the access token has passed its known expiry."""
        if self.expires_at is None:
            return False
        return (now if now is not None else time.time()) >= self.expires_at

    def update(self, access_token: str, expires_in: float | None = None, refresh_token: str | None = None) -> None:
        """Swap in a refreshed access token (and rotated refresh token, if any)."""
        self.access_token = access_token
        self.expires_at = time.time() + expires_in if expires_in is not None else None
        if refresh_token:
            self.refresh_token = refresh_token

    def __repr__(self) -> str:
        return f"Credential(fingerprint={self.fingerprint!r}, can_refresh={self.can_refresh})"
