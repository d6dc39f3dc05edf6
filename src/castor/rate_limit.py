"""Fixed-window request limiting per provider.

The limiter consults a :class:`CounterStore` whose ``increment`` is atomic:
it bumps the counter (starting a new window when the previous one expired)
and returns the new value in one step. A call is admitted only when that
value is within the limit, so concurrent callers can never overshoot.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from castor.config import RateLimitSettings
from castor.errors import RateLimitExceededError

if TYPE_CHECKING:
    from collections.abc import Callable

log = logging.getLogger(__name__)


@runtime_checkable
class RateLimiter(Protocol):
    """Raises :class:`~castor.errors.RateLimitExceededError` to refuse a call."""

    def check(self, provider: str) -> None: ...


@runtime_checkable
class CounterStore(Protocol):
    """Expiring integer counters."""

    def increment(self, key: str, window_s: int) -> int:
        """Atomically add one and return the new count.

        A missing or expired key starts at 1 with a fresh ``window_s`` expiry.
        """
        ...

    def get(self, key: str) -> int:
        """Current count, 0 for missing or expired keys."""
        ...

    def delete(self, key: str) -> None: ...


class InMemoryCounterStore:
    """Thread-safe, process-local counter store."""

    def __init__(self, *, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._counters: dict[str, tuple[int, float]] = {}

    def increment(self, key: str, window_s: int) -> int:
        now = self._clock()
        with self._lock:
            count, expires_at = self._counters.get(key, (0, 0.0))
            if now >= expires_at:
                count, expires_at = 0, now + window_s
            count += 1
            self._counters[key] = (count, expires_at)
            return count

    def get(self, key: str) -> int:
        now = self._clock()
        with self._lock:
            count, expires_at = self._counters.get(key, (0, 0.0))
            return count if now < expires_at else 0

    def delete(self, key: str) -> None:
        with self._lock:
            self._counters.pop(key, None)


class FixedWindowRateLimiter:
    """Allow ``limit`` calls per provider per ``window_s`` seconds.

    Disabled settings make :meth:`check` a no-op.

    Example:
        limiter = FixedWindowRateLimiter(RateLimitSettings(enabled=True, default_limit=10))
        limiter.check("openai")
    """

    def __init__(
        self,
        settings: RateLimitSettings | None = None,
        *,
        store: CounterStore | None = None,
    ) -> None:
        self.settings = settings if settings is not None else RateLimitSettings()
        self.store = store if store is not None else InMemoryCounterStore()

    @property
    def enabled(self) -> bool:
        return self.settings.enabled

    def check(self, provider: str) -> None:
        if not self.settings.enabled:
            return
        limit, window_s = self.settings.limit_for(provider)
        count = self.store.increment(self._key(provider), window_s)
        if count > limit:
            log.debug("Rate limit hit for %s (%d/%d)", provider, count, limit)
            raise RateLimitExceededError(
                f"Rate limit exceeded for provider [{provider}]. "
                f"Limit: {limit} requests per {window_s} seconds.",
                hint="Wait for the window to reset or raise the limit in RateLimitSettings.",
                provider=provider,
                limit=limit,
                window_s=window_s,
            )

    def remaining(self, provider: str) -> int:
        limit, _ = self.settings.limit_for(provider)
        return max(0, limit - self.store.get(self._key(provider)))

    def reset(self, provider: str) -> None:
        self.store.delete(self._key(provider))

    def _key(self, provider: str) -> str:
        return f"{self.settings.key_prefix}:{provider}"
