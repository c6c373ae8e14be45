"""Single-flight cache for the gateway bearer token."""

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

import structlog

logger = structlog.get_logger()

Clock = Callable[[], float]


@dataclass(frozen=True)
class IssuedToken:
    """A token returned by the gateway login and how long it lives."""

    token: str
    ttl_seconds: float


@dataclass(frozen=True)
class _CachedToken:
    token: str
    expires_at: float  # Clock time, not wall time


class TokenCache:
    """Holds the current gateway token and refreshes it once at a time.

    A token is reused while ``now < expires_at - refresh_buffer``. When it is
    stale, the first caller logs in while holding the lock; callers that
    queued behind it find the fresh token and reuse it.
    """

    def __init__(
        self,
        refresh_buffer_seconds: float = 5 * 60,
        clock: Clock = time.monotonic,
    ):
        self._refresh_buffer = refresh_buffer_seconds
        self._clock = clock
        self._lock = asyncio.Lock()
        self._current: _CachedToken | None = None

    def _fresh_token(self) -> str | None:
        current = self._current
        if current is not None and self._clock() < current.expires_at - self._refresh_buffer:
            return current.token
        return None

    def peek(self) -> str | None:
        """The cached token if it is still fresh."""
        return self._fresh_token()

    async def get(self, login: Callable[[], Awaitable[IssuedToken]]) -> str:
        """Return a fresh token, calling ``login`` only if none is cached."""
        token = self._fresh_token()
        if token is not None:
            return token

        async with self._lock:
            token = self._fresh_token()
            if token is not None:
                return token
            issued = await login()
            self._current = _CachedToken(issued.token, self._clock() + issued.ttl_seconds)
            logger.info("bureau_token_refreshed", ttl_seconds=issued.ttl_seconds)
            return issued.token

    def invalidate(self, token: str) -> bool:
        """Drop ``token`` if it is still the cached one.

        A caller holding a rejected token must not discard a newer token
        another caller already fetched.

        Returns:
            True if the cache was cleared
        """
        if self._current is not None and self._current.token == token:
            self._current = None
            return True
        return False

    def clear(self) -> None:
        self._current = None
