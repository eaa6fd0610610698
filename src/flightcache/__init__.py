"""In-process TTL/LRU cache with single-flight recomputation for asyncio services."""

from flightcache.core.cache import TTLCache
from flightcache.core.errors import (
    CacheError,
    ExternalServiceError,
    NotFoundError,
    RateLimitExceededError,
    ValidationError,
)
from flightcache.core.models import CacheOptions, CacheStats
from flightcache.core.rate_limiter import RateLimitDecision, RateLimiter

__version__ = "0.1.0"

__all__ = [
    "__version__",
    "CacheError",
    "CacheOptions",
    "CacheStats",
    "ExternalServiceError",
    "NotFoundError",
    "RateLimitDecision",
    "RateLimitExceededError",
    "RateLimiter",
    "TTLCache",
    "ValidationError",
]
