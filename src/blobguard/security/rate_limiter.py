"""Per-client download rate limiting over an external counter store.

One logical counter per client lives under ``rate_limit:{client_id}`` with a TTL
equal to the rate window. Each increment reads the current count and writes
count + 1, resetting the TTL (reset-on-write, not a true sliding log).

Read-then-write is not atomic: two concurrent increments for one client may read
the same count and undercount by at most the concurrency degree. The limiter is
advisory and tolerates this.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Final, Protocol, runtime_checkable

import redis

from blobguard.errors import BackendUnavailableError
from blobguard.security.models import RateLimitStatus, StorageOperation

logger = logging.getLogger(__name__)

KEY_PREFIX: Final[str] = "rate_limit:"
DEFAULT_WINDOW_SECONDS: Final[int] = 3600


@runtime_checkable
class CounterStore(Protocol):
    """Shared counter store consumed by the rate limiter."""

    def get(self, key: str) -> int | None:
        """Return the stored count, or None if absent or expired."""
        ...

    def set(self, key: str, value: int, ttl_seconds: int) -> None:
        """Store a count that expires after ttl_seconds."""
        ...


class InMemoryCounterStore:
    """Process-local counter store with TTL expiry.

    Thread-safe. Expired keys are dropped lazily on read.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: dict[str, tuple[int, float]] = {}

    def get(self, key: str) -> int | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if self._clock() >= expires_at:
                del self._entries[key]
                return None
            return value

    def set(self, key: str, value: int, ttl_seconds: int) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        with self._lock:
            self._entries[key] = (value, self._clock() + ttl_seconds)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()


class RedisCounterStore:
    """Counter store backed by Redis (``SET key value EX ttl``)."""

    def __init__(self, client: redis.Redis) -> None:
        """Initialize with a redis-py client.

        Args:
            client: A ``redis.Redis`` (or API-compatible) client.
        """
        self._client = client

    @classmethod
    def from_url(cls, url: str) -> RedisCounterStore:
        """Build a store from a redis:// URL."""
        return cls(redis.Redis.from_url(url))

    def get(self, key: str) -> int | None:
        try:
            raw = self._client.get(key)
        except redis.RedisError as e:
            raise BackendUnavailableError(f"Counter store read failed: {e}", cause=e) from e
        if raw is None:
            return None
        return int(raw)

    def set(self, key: str, value: int, ttl_seconds: int) -> None:
        try:
            self._client.set(key, value, ex=ttl_seconds)
        except redis.RedisError as e:
            raise BackendUnavailableError(f"Counter store write failed: {e}", cause=e) from e


class RateLimiter:
    """Fixed-allowance limiter keyed by client identifier.

    Args:
        store: Counter store shared by every limiter instance.
        max_allowed: Operations allowed per window (> 0).
        window_seconds: Window length and counter TTL.
    """

    def __init__(
        self,
        store: CounterStore,
        max_allowed: int,
        window_seconds: int = DEFAULT_WINDOW_SECONDS,
    ) -> None:
        if max_allowed <= 0:
            raise ValueError("max_allowed must be positive")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        self._store = store
        self._max_allowed = max_allowed
        self._window_seconds = window_seconds

    @property
    def max_allowed(self) -> int:
        return self._max_allowed

    @staticmethod
    def key_for(client_id: str) -> str:
        """Return the counter key for a client."""
        return f"{KEY_PREFIX}{client_id}"

    def get_status(self, client_id: str) -> RateLimitStatus:
        """Return the client's current status; unseen clients have count 0."""
        current = self._store.get(self.key_for(client_id)) or 0
        return RateLimitStatus(
            client_id=client_id,
            current_count=current,
            max_allowed=self._max_allowed,
            reset_at=datetime.now(UTC) + timedelta(seconds=self._window_seconds),
        )

    def increment(
        self, client_id: str, operation: StorageOperation = StorageOperation.DOWNLOAD
    ) -> int:
        """Count one operation for the client and reset the window TTL.

        Returns:
            The new count.
        """
        key = self.key_for(client_id)
        current = self._store.get(key) or 0
        new_count = current + 1
        self._store.set(key, new_count, self._window_seconds)
        logger.debug(
            "Rate counter incremented: client=%s operation=%s count=%d",
            client_id,
            operation.value,
            new_count,
        )
        return new_count
