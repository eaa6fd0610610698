"""Configuration and environment helpers for the package.

Provides small helpers to read typed environment variables and exposes
package-level defaults used by CacheOptions.from_env() and the HTTP
client (default TTL, size bound, sweep interval, timeouts and limits).
"""

from __future__ import annotations

import logging
import os
from typing import Optional, Union

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None:
        return default
    try:
        return int(raw.strip())
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None:
        return default
    try:
        return float(raw.strip())
    except ValueError:
        return default


def _env_optional_float(name: str) -> Optional[float]:
    # Unset, empty or "0" all mean "not configured"
    value = _env_float(name, 0.0)
    return value if value else None


# Cache defaults
CACHE_TTL_SECONDS = _env_optional_float("CACHE_TTL_SECONDS")
CACHE_MAX_SIZE = _env_int("CACHE_MAX_SIZE", 0)
CACHE_AUTO_CLEANUP_SECONDS = _env_optional_float("CACHE_AUTO_CLEANUP_SECONDS")

# Network / HTTP
HTTP_TIMEOUT = _env_float("HTTP_TIMEOUT", 20.0)
HTTP_VERIFY = _env_bool("HTTP_VERIFY", True)
HTTP_MAX_CONCURRENCY = _env_int("HTTP_MAX_CONCURRENCY", 5)

# Logging
LOG_LEVEL = os.environ.get("FLIGHTCACHE_LOG_LEVEL", "WARNING").strip().upper() or "WARNING"


def configure_logging(level: Union[int, str, None] = None) -> None:
    """Install a basic root handler for applications embedding the cache.

    The library itself never adds handlers; call this from an entrypoint.
    """
    resolved = LOG_LEVEL if level is None else level
    if isinstance(resolved, str):
        resolved = logging.getLevelName(resolved.upper())
        if not isinstance(resolved, int):
            resolved = logging.WARNING

    logging.basicConfig(level=resolved, format=LOG_FORMAT)
