"""State managers for handling application-wide mutable state.

This module provides thread-safe state management using asyncio.Lock
for async operations. All state managers inherit from StateManager ABC.
"""

import asyncio
import secrets
import time
from abc import ABC, abstractmethod

OAUTH_STATE_TTL_SECONDS = 600  # 10 minutes


class StateManager(ABC):
    """Base class for all state managers.

    State managers provide thread-safe access to mutable application state.
    All subclasses must implement lifecycle methods.
    """

    @abstractmethod
    async def initialize(self) -> None:
        """Initialize the state manager (called during app startup)."""
        pass

    @abstractmethod
    async def cleanup(self) -> None:
        """Cleanup resources (called during app shutdown)."""
        pass


class OAuthStateManager(StateManager):
    """Tracks CSRF states issued by the login route until the callback consumes them.

    States expire after OAUTH_STATE_TTL_SECONDS so abandoned auth flows do not
    accumulate.
    """

    def __init__(self, ttl_seconds: float = OAUTH_STATE_TTL_SECONDS):
        """Initialize the OAuth state manager."""
        self._states: dict[str, float] = {}
        self._ttl_seconds = ttl_seconds
        self._lock = asyncio.Lock()

    async def initialize(self) -> None:
        """Initialize the OAuth state manager."""
        # No initialization needed for now
        pass

    async def cleanup(self) -> None:
        """Forget all pending states on shutdown."""
        async with self._lock:
            self._states.clear()

    async def issue(self) -> str:
        """Create and remember a new state value.

        Returns:
            Random URL-safe state string
        """
        async with self._lock:
            self._expire()
            state = secrets.token_urlsafe(16)
            self._states[state] = time.time()
            return state

    async def consume(self, state: str | None) -> bool:
        """Check and forget a state value.

        Returns:
            True if the state was issued by us and has not expired
        """
        if not state:
            return False
        async with self._lock:
            self._expire()
            return self._states.pop(state, None) is not None

    async def pending_count(self) -> int:
        async with self._lock:
            return len(self._states)

    def _expire(self) -> None:
        cutoff = time.time() - self._ttl_seconds
        for state in [state for state, issued in self._states.items() if issued < cutoff]:
            self._states.pop(state, None)
