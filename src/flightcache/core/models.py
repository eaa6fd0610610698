"""Dataclasses shared by the cache components.

CacheEntry is the per-key record held by the entry store, CacheStats is
the on-demand snapshot returned by TTLCache.stats(), and CacheOptions
carries validated construction parameters.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Generic, Hashable, Optional, TypeVar

from .errors import ValidationError

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


@dataclass(slots=True)
class CacheEntry(Generic[K, V]):
    key: K
    value: V
    expires_at: Optional[float]  # clock reading; None = never expires
    inserted_at: float
    recency: int
    expiry_stamp: int = 0  # matches the entry's live record in the store's expiry heap

    def is_expired(self, now: float) -> bool:
        return self.expires_at is not None and now >= self.expires_at

    def remaining(self, now: float) -> float:
        if self.expires_at is None:
            return math.inf
        return max(0.0, self.expires_at - now)


@dataclass(frozen=True)
class CacheStats:
    """Point-in-time counts; `size` includes expired entries not yet swept."""

    size: int
    valid_entries: int
    expired_entries: int
    max_size: Optional[int] = None


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def validate_ttl(value: Any, *, name: str = "ttl_seconds") -> float:
    # Per-call and default TTLs must be positive finite-or-infinite numbers
    if not _is_number(value) or math.isnan(value):
        raise ValidationError(f"{name} must be a number, got {value!r}")
    if value <= 0:
        raise ValidationError(f"{name} must be > 0, got {value!r}")
    return float(value)


@dataclass(frozen=True)
class CacheOptions:
    """Validated TTLCache construction options.

    Field semantics:
    - ttl_seconds: default TTL for set(); None means entries never expire.
    - max_size: LRU bound; None means unbounded. Must be >= 1 when given.
    - auto_cleanup_seconds: background sweep interval; None or 0 disables it.
    """

    ttl_seconds: Optional[float] = None
    max_size: Optional[int] = None
    auto_cleanup_seconds: Optional[float] = None

    def __post_init__(self) -> None:
        if self.ttl_seconds is not None:
            validate_ttl(self.ttl_seconds)

        if self.max_size is not None:
            if not isinstance(self.max_size, int) or isinstance(self.max_size, bool):
                raise ValidationError(f"max_size must be an integer, got {self.max_size!r}")
            if self.max_size < 1:
                raise ValidationError(f"max_size must be >= 1, got {self.max_size!r}")

        if self.auto_cleanup_seconds is not None:
            interval = self.auto_cleanup_seconds
            if not _is_number(interval) or math.isnan(interval) or math.isinf(interval):
                raise ValidationError(f"auto_cleanup_seconds must be a finite number, got {interval!r}")
            if interval < 0:
                raise ValidationError(f"auto_cleanup_seconds must be >= 0, got {interval!r}")

    @property
    def auto_cleanup_enabled(self) -> bool:
        return bool(self.auto_cleanup_seconds) and self.auto_cleanup_seconds > 0

    @classmethod
    def from_env(cls) -> "CacheOptions":
        """Build options from CACHE_* environment defaults (see flightcache.config)."""
        from flightcache import config

        return cls(
            ttl_seconds=config.CACHE_TTL_SECONDS,
            max_size=config.CACHE_MAX_SIZE or None,
            auto_cleanup_seconds=config.CACHE_AUTO_CLEANUP_SECONDS,
        )
