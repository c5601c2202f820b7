"""In-memory response cache with per-endpoint-class TTLs."""

import time
from collections.abc import Callable, Hashable, Iterable, Mapping
from typing import Any

from music_dashboard.config import Settings
from music_dashboard.logging_config import get_logger, log_with_context
from music_dashboard.services.spotify_client import EndpointClass

logger = get_logger(__name__)

# (endpoint class, credential fingerprint or None for shared entries, normalized params)
CacheKey = tuple[EndpointClass, str | None, tuple[tuple[str, Hashable], ...]]

Clock = Callable[[], float]


def make_key(endpoint: EndpointClass, credential_key: str | None, params: Mapping[str, Any] | None = None) -> CacheKey:
    """Build a cache key; parameter order does not matter."""
    normalized = tuple(sorted((name, value) for name, value in (params or {}).items() if value is not None))
    return (endpoint, credential_key, normalized)


def ttl_table_from_settings(settings: Settings) -> dict[EndpointClass, float]:
    """TTL (seconds) for every cacheable endpoint class."""
    return {
        EndpointClass.PLAYBACK: settings.cache_ttl_playback,
        EndpointClass.QUEUE: settings.cache_ttl_queue,
        EndpointClass.DEVICES: settings.cache_ttl_devices,
        EndpointClass.RECENTLY_PLAYED: settings.cache_ttl_recently_played,
        EndpointClass.TOP_TRACKS: settings.cache_ttl_top_tracks,
        EndpointClass.AUDIO_FEATURES: settings.cache_ttl_audio_features,
        EndpointClass.CURRENT_USER: settings.cache_ttl_current_user,
    }


class CacheEntry:
    """A cached payload with the time it was stored and when it expires."""

    def __init__(self, value: Any, stored_at: float, expires_at: float):
        self.value = value
        self.stored_at = stored_at
        self.expires_at = expires_at

    def is_expired(self, now: float) -> bool:
        """An entry at or past its TTL is expired."""
        return now >= self.expires_at


class ResponseCache:
    """Response cache keyed by (endpoint class, credential, params).

    Construct one per process and pass it by reference. The clock is injected
    so expiry is testable without sleeping. All operations are synchronous and
    never await, so callers on the event loop see them as atomic.
    """

    def __init__(self, ttls: Mapping[EndpointClass, float], clock: Clock = time.monotonic):
        self._ttls = dict(ttls)
        self._clock = clock
        self._entries: dict[CacheKey, CacheEntry] = {}
        self.hits = 0
        self.misses = 0

    def ttl_for(self, endpoint: EndpointClass) -> float:
        return self._ttls.get(endpoint, 0.0)

    def get(self, key: CacheKey) -> Any | None:
        """Get cached value if not expired.

        Args:
            key: Cache key

        Returns:
            Cached value or None if not found/expired
        """
        entry = self._entries.get(key)
        if entry and not entry.is_expired(self._clock()):
            self.hits += 1
            log_with_context(
                logger,
                "debug",
                "Cache hit",
                endpoint=key[0].value,
                credential=key[1],
                event_type="cache_hit",
            )
            return entry.value

        if entry:
            del self._entries[key]
            log_with_context(
                logger,
                "debug",
                "Cache expired",
                endpoint=key[0].value,
                credential=key[1],
                event_type="cache_expired",
            )

        self.misses += 1
        return None

    def set(self, key: CacheKey, value: Any) -> None:
        """Store a value with the TTL of its endpoint class; a zero TTL stores nothing."""
        ttl = self.ttl_for(key[0])
        if ttl <= 0:
            return
        now = self._clock()
        self._entries[key] = CacheEntry(value, stored_at=now, expires_at=now + ttl)
        log_with_context(
            logger,
            "debug",
            "Cache set",
            endpoint=key[0].value,
            credential=key[1],
            ttl_seconds=ttl,
            event_type="cache_set",
        )

    def invalidate(self, endpoints: Iterable[EndpointClass], credential_key: str | None) -> int:
        """Drop every entry of the given endpoint classes for one credential.

        Shared entries (credential None) are left alone unless credential_key is None.

        Returns:
            Number of entries removed
        """
        targets = set(endpoints)
        doomed = [key for key in self._entries if key[0] in targets and key[1] == credential_key]
        for key in doomed:
            del self._entries[key]

        if doomed:
            log_with_context(
                logger,
                "debug",
                "Cache entries invalidated",
                endpoints=sorted(endpoint.value for endpoint in targets),
                credential=credential_key,
                count=len(doomed),
                event_type="cache_invalidate",
            )
        return len(doomed)

    def clear(self) -> None:
        """Clear the entire cache."""
        self._entries.clear()
        log_with_context(logger, "info", "Cache cleared", event_type="cache_clear_all")

    def cleanup_expired(self) -> int:
        """Remove all expired entries from cache."""
        now = self._clock()
        expired_keys = [key for key, entry in self._entries.items() if entry.is_expired(now)]
        for key in expired_keys:
            del self._entries[key]

        if expired_keys:
            log_with_context(
                logger,
                "debug",
                "Cleaned up expired cache entries",
                count=len(expired_keys),
                event_type="cache_cleanup",
            )
        return len(expired_keys)

    def __len__(self) -> int:
        return len(self._entries)

    def stats(self) -> dict[str, int]:
        return {"entries": len(self._entries), "hits": self.hits, "misses": self.misses}
