"""Cache and throttle gate in front of the Spotify client.

Reads are served from the response cache while fresh, coalesced while in
flight, and spaced by a minimum interval per key. Mutations bypass the cache
and invalidate the entries they affect before returning.
"""

import asyncio
import time
from collections.abc import Awaitable, Callable, Iterable
from typing import Any

from music_dashboard.cache import CacheKey, Clock, ResponseCache, make_key
from music_dashboard.exceptions import UpstreamUnavailableException
from music_dashboard.logging_config import get_logger, log_with_context
from music_dashboard.models.credential import Credential
from music_dashboard.services.spotify_client import ENDPOINTS, EndpointClass, SpotifyClient

logger = get_logger(__name__)


class SpotifyGateway:
    """Shared by every session in the process."""

    def __init__(
        self,
        client: SpotifyClient,
        cache: ResponseCache,
        min_interval: float = 0.5,
        clock: Clock = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self._client = client
        self._cache = cache
        self._min_interval = min_interval
        self._clock = clock
        self._sleep = sleep
        self._lock = asyncio.Lock()
        self._inflight: dict[CacheKey, asyncio.Future] = {}
        self._last_call: dict[CacheKey, float] = {}
        self._generations: dict[tuple[EndpointClass, str | None], int] = {}
        self._retry_not_before = 0.0
        self.upstream_calls = 0

    @property
    def cache(self) -> ResponseCache:
        return self._cache

    def in_flight(self) -> int:
        return len(self._inflight)

    async def read(
        self,
        endpoint: EndpointClass,
        credential: Credential,
        params: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Read an endpoint through the cache.

        Args:
            endpoint: A read endpoint class
            credential: Credential the read is made for
            params: Endpoint parameters (part of the cache key)

        Returns:
            Payload, possibly shared with other callers (treat as read-only)

        Raises:
            UnauthenticatedException, UpstreamUnavailableException: Propagated from the client, never cached
        """
        spec = ENDPOINTS[endpoint]
        if spec.is_mutation:
            raise ValueError(f"{endpoint.value} is a mutation; use mutate()")

        credential_key = None if spec.shared else credential.fingerprint
        key = make_key(endpoint, credential_key, params)

        async with self._lock:
            cached = self._cache.get(key)
            if cached is not None:
                return cached

            task = self._inflight.get(key)
            if task is None:
                generation = self._generations.get((endpoint, credential_key), 0)
                task = asyncio.ensure_future(self._fetch(key, credential, params, generation))
                self._inflight[key] = task
                task.add_done_callback(lambda done, key=key: self._release(key, done))
            else:
                log_with_context(
                    logger,
                    "debug",
                    "Joining in-flight request",
                    endpoint=endpoint.value,
                    credential=credential_key,
                    event_type="request_coalesced",
                )

        # A cancelled caller (e.g. a destroyed session) must not cancel the shared request
        return await asyncio.shield(task)

    async def mutate(
        self,
        endpoint: EndpointClass,
        credential: Credential,
        params: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Run a mutation and invalidate the cache entries it affects.

        Raises:
            UnauthenticatedException, UpstreamUnavailableException: Propagated from the client
        """
        spec = ENDPOINTS[endpoint]
        if not spec.is_mutation:
            raise ValueError(f"{endpoint.value} is a read; use read()")

        self.upstream_calls += 1
        try:
            payload = await self._client.call(endpoint, credential, params)
        except UpstreamUnavailableException as e:
            self._note_retry_after(e)
            raise

        self.invalidate(credential, spec.affects)
        log_with_context(
            logger,
            "info",
            "Mutation applied",
            endpoint=endpoint.value,
            credential=credential.fingerprint,
            invalidated=sorted(affected.value for affected in spec.affects),
            event_type="mutation_applied",
        )
        return payload

    def invalidate(self, credential: Credential, endpoints: Iterable[EndpointClass]) -> None:
        """Drop cached entries for a credential and keep in-flight reads from storing stale results."""
        targets = set(endpoints)
        for endpoint in targets:
            generation_key = (endpoint, credential.fingerprint)
            self._generations[generation_key] = self._generations.get(generation_key, 0) + 1
        self._cache.invalidate(targets, credential.fingerprint)

    def cleanup(self) -> int:
        """Purge expired cache entries and forget throttle state that no longer applies.

        A last-call timestamp older than the minimum interval cannot delay a
        request, and a generation counter only matters while a read for it is
        in flight.

        Returns:
            Number of expired cache entries removed
        """
        now = self._clock()
        removed = self._cache.cleanup_expired()

        for key in [key for key, last in self._last_call.items() if now - last >= self._min_interval]:
            del self._last_call[key]

        pending = {(endpoint, credential_key) for endpoint, credential_key, _ in self._inflight}
        for generation_key in [key for key in self._generations if key not in pending]:
            del self._generations[generation_key]

        return removed

    async def _fetch(
        self,
        key: CacheKey,
        credential: Credential,
        params: dict[str, Any] | None,
        generation: int,
    ) -> dict[str, Any]:
        endpoint, credential_key, _ = key
        await self._throttle(key)

        self._last_call[key] = self._clock()
        self.upstream_calls += 1
        try:
            payload = await self._client.call(endpoint, credential, params)
        except UpstreamUnavailableException as e:
            self._note_retry_after(e)
            raise

        if self._generations.get((endpoint, credential_key), 0) == generation:
            self._cache.set(key, payload)
        else:
            log_with_context(
                logger,
                "debug",
                "Discarding read invalidated while in flight",
                endpoint=endpoint.value,
                credential=credential_key,
                event_type="cache_stale_discard",
            )
        return payload

    async def _throttle(self, key: CacheKey) -> None:
        now = self._clock()
        delay = 0.0
        last = self._last_call.get(key)
        if last is not None:
            delay = last + self._min_interval - now
        delay = max(delay, self._retry_not_before - now)
        if delay > 0:
            log_with_context(
                logger,
                "debug",
                "Throttling upstream request",
                endpoint=key[0].value,
                delay_seconds=round(delay, 3),
                event_type="request_throttled",
            )
            await self._sleep(delay)

    def _note_retry_after(self, exc: UpstreamUnavailableException) -> None:
        if exc.retry_after:
            self._retry_not_before = max(self._retry_not_before, self._clock() + exc.retry_after)

    def _release(self, key: CacheKey, task: asyncio.Future) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]
        if not task.cancelled():
            # Mark the exception retrieved; every awaiter already received it
            task.exception()
