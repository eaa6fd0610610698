"""Fixed-window rate-limit counters backed by a TTLCache.

Each key gets a counter entry whose TTL is the window length; the window
opens on the first hit and closes when the entry expires, after which
the next hit starts a fresh window. With max_keys set, the least recently
active identities are forgotten first.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Hashable, Optional

from .cache import TTLCache
from .errors import RateLimitExceededError, ValidationError
from .models import validate_ttl

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class _Window:
    count: int
    opened_at: float


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    remaining: int
    reset_after: float  # seconds until the current window closes


class RateLimiter:
    def __init__(
        self,
        *,
        limit: int,
        window_seconds: float,
        max_keys: Optional[int] = None,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        if not isinstance(limit, int) or isinstance(limit, bool) or limit < 1:
            raise ValidationError(f"limit must be an integer >= 1, got {limit!r}")
        self._limit = limit
        self._window = validate_ttl(window_seconds, name="window_seconds")
        self._clock = clock or time.monotonic
        self._counters: TTLCache[Hashable, _Window] = TTLCache(
            ttl_seconds=self._window,
            max_size=max_keys,
            clock=self._clock,
        )

    @property
    def limit(self) -> int:
        return self._limit

    @property
    def window_seconds(self) -> float:
        return self._window

    def hit(self, key: Hashable) -> RateLimitDecision:
        """Count one request for `key` and report whether it fits in the window."""
        window = self._counters.get(key)
        if window is None:
            window = _Window(count=0, opened_at=self._clock())
            # Window length is fixed at open; later hits must not extend it
            self._counters.set(key, window)

        window.count += 1
        reset_after = self._counters.ttl_remaining(key) or 0.0
        allowed = window.count <= self._limit
        if not allowed:
            logger.debug("Rate limit exceeded for %r (%d/%d)", key, window.count, self._limit)

        return RateLimitDecision(
            allowed=allowed,
            remaining=max(0, self._limit - window.count),
            reset_after=reset_after,
        )

    def check(self, key: Hashable) -> RateLimitDecision:
        decision = self.hit(key)
        if not decision.allowed:
            raise RateLimitExceededError(
                f"Rate limit of {self._limit} per {self._window:g}s exceeded for {key!r}",
                retry_after=decision.reset_after,
            )
        return decision

    def reset(self, key: Hashable) -> bool:
        return self._counters.delete(key)

    def tracked_keys(self) -> int:
        return self._counters.stats().valid_entries
