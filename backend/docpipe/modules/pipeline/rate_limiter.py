"""Fixed-window, per-caller rate limiting.

The window opens on a caller's first request and lasts `window_seconds`.
Up to `max_requests` requests are allowed inside it; any request at or
after the reset time opens a fresh window.

Counter state lives behind CounterStore so a shared backend can replace
the process-local default without touching the limiter.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Protocol

import structlog
from fastapi import Request

from docpipe.core.config import settings
from docpipe.core.database import utcnow
from docpipe.core.errors import RateLimited

logger = structlog.get_logger()


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    window_reset_at: datetime
    remaining: int = 0


class CounterStore(Protocol):
    def increment_or_reject(
        self,
        key: str,
        now: datetime,
        window: timedelta,
        limit: int,
    ) -> RateLimitDecision:
        """Atomically count one request for `key` or reject it."""
        ...


class InMemoryCounterStore:
    """Process-local store. The lock is never held across an await."""

    def __init__(self) -> None:
        self._windows: dict[str, tuple[int, datetime]] = {}
        self._lock = threading.Lock()

    def increment_or_reject(
        self,
        key: str,
        now: datetime,
        window: timedelta,
        limit: int,
    ) -> RateLimitDecision:
        with self._lock:
            count, reset_at = self._windows.get(key, (0, now))
            if count == 0 or now >= reset_at:
                self._evict_expired(now)
                count, reset_at = 0, now + window
            if count >= limit:
                return RateLimitDecision(allowed=False, window_reset_at=reset_at)
            count += 1
            self._windows[key] = (count, reset_at)
            return RateLimitDecision(
                allowed=True, window_reset_at=reset_at, remaining=limit - count
            )

    def _evict_expired(self, now: datetime) -> None:
        # Caller holds the lock
        expired = [k for k, (_, reset_at) in self._windows.items() if reset_at <= now]
        for key in expired:
            del self._windows[key]

    def size(self) -> int:
        with self._lock:
            return len(self._windows)

    def reset(self) -> None:
        with self._lock:
            self._windows.clear()


class RateLimiter:
    def __init__(
        self,
        store: CounterStore | None = None,
        *,
        window_seconds: int | None = None,
        max_requests: int | None = None,
    ) -> None:
        self.store = store if store is not None else InMemoryCounterStore()
        self.window = timedelta(seconds=window_seconds or settings.rate_limit_window_seconds)
        self.max_requests = max_requests or settings.rate_limit_max_requests

    def allow(self, caller_id: str, now: datetime | None = None) -> RateLimitDecision:
        return self.store.increment_or_reject(
            caller_id, now or utcnow(), self.window, self.max_requests
        )

    def check(self, caller_id: str, now: datetime | None = None) -> RateLimitDecision:
        """Like allow(), but raises RateLimited on rejection."""
        decision = self.allow(caller_id, now)
        if not decision.allowed:
            logger.warning(
                "Rate limit exceeded",
                caller_id=caller_id,
                reset_at=decision.window_reset_at.isoformat(),
            )
            raise RateLimited(decision.window_reset_at)
        return decision


def get_rate_limiter(request: Request) -> RateLimiter:
    limiter = getattr(request.app.state, "rate_limiter", None)
    if limiter is None:
        limiter = RateLimiter()
        request.app.state.rate_limiter = limiter
    return limiter
