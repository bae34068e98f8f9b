"""Expiring cache for partner session tokens.

Owned by a channel client and injected at construction, so every client
(and every test) decides its own cache lifetime and clock.
"""

import threading
from collections.abc import Callable
from datetime import UTC, datetime, timedelta

# Tokens are treated as expired this long before the partner says they are
DEFAULT_EXPIRY_BUFFER = timedelta(seconds=60)


def _utc_now() -> datetime:
    return datetime.now(UTC)


class TokenCache:
    """Single bearer token with an expiry-checked get/set.

    Example:
        cache = TokenCache()
        token = cache.get()
        if token is None:
            token = await fetch_token()
            cache.set(token, expires_in=600)
    """

    def __init__(
        self,
        expiry_buffer: timedelta = DEFAULT_EXPIRY_BUFFER,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._expiry_buffer = expiry_buffer
        self._clock = clock
        self._lock = threading.Lock()
        self._token: str | None = None
        self._expires_at: datetime | None = None

    def get(self) -> str | None:
        """Return the cached token, or None when absent or about to expire."""
        with self._lock:
            if self._token is None or self._expires_at is None:
                return None
            if self._clock() >= self._expires_at - self._expiry_buffer:
                return None
            return self._token

    def set(self, token: str, expires_in: int | float) -> datetime:
        """Cache ``token`` for ``expires_in`` seconds.

        Returns:
            The absolute expiry time recorded.
        """
        expires_at = self._clock() + timedelta(seconds=expires_in)
        with self._lock:
            self._token = token
            self._expires_at = expires_at
        return expires_at

    def clear(self) -> None:
        """Drop the cached token, e.g. after the partner answered 401."""
        with self._lock:
            self._token = None
            self._expires_at = None

    @property
    def expires_at(self) -> datetime | None:
        return self._expires_at
