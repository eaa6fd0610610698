from __future__ import annotations

from typing import Optional


class CacheError(Exception):
    """Base error for the cache package."""


class ValidationError(CacheError):
    """Raised when options or call arguments are invalid."""


class NotFoundError(CacheError):
    """Raised when a requested remote resource is not found."""


class ExternalServiceError(CacheError):
    """Raised when an upstream HTTP service fails."""


class RateLimitExceededError(CacheError):
    """Raised when a rate-limit counter is over its limit for the current window."""

    def __init__(self, message: str, *, retry_after: Optional[float] = None) -> None:
        super().__init__(message)
        self.retry_after = retry_after
