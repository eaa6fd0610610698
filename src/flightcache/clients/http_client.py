"""Async HTTP client whose GET responses are cached and deduplicated.

Bodies are cached in a TTLCache and fetched through get_or_compute, so
concurrent identical requests share one network call. Requests are
bounded by a semaphore, an optional per-host RateLimiter is consulted
before each network call, and 429 responses with a Retry-After header
are retried after a bounded sleep. Failed requests are never cached.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Tuple

import httpx

from flightcache.config import HTTP_MAX_CONCURRENCY, HTTP_TIMEOUT, HTTP_VERIFY
from flightcache.core.cache import TTLCache
from flightcache.core.errors import ExternalServiceError, NotFoundError
from flightcache.core.models import CacheStats
from flightcache.core.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class _RequestKey:
    # Cache key: response kind + URL + params sorted for a stable identity
    kind: str
    url: str
    params: Tuple[Tuple[str, str], ...]


class CachedHttpClient:
    """Async GET client with a response cache and single-flight fetches.

    Purpose:
      - get_text(url, params=None, ttl_seconds=None) -> str
      - get_json(url, params=None, ttl_seconds=None) -> Any

    Key behavior:
      - Concurrent identical requests result in one network call.
      - 404 raises NotFoundError; other failures raise ExternalServiceError.
      - Honors Retry-After on 429 with a bounded sleep and bounded retries.
    """

    _MAX_RATE_LIMIT_RETRIES = 2  # total attempts = 1 + retries

    def __init__(
        self,
        base_url: str = "",
        *,
        timeout: float = HTTP_TIMEOUT,
        verify: bool = HTTP_VERIFY,
        ttl_seconds: Optional[float] = 60.0,
        max_size: Optional[int] = 256,
        max_concurrency: int = HTTP_MAX_CONCURRENCY,
        rate_limiter: Optional[RateLimiter] = None,
        max_retry_after_seconds: float = 60.0,
        headers: Optional[Mapping[str, str]] = None,
    ) -> None:
        self._base_url = (base_url or "").rstrip("/")
        self._timeout = float(timeout)
        self._verify = bool(verify)
        self._headers = {"User-Agent": "flightcache", **dict(headers or {})}

        self._sem = asyncio.Semaphore(max(1, int(max_concurrency)))
        self._rate_limiter = rate_limiter
        self._max_retry_after = float(max_retry_after_seconds)

        self._cache: TTLCache[_RequestKey, Any] = TTLCache(ttl_seconds=ttl_seconds, max_size=max_size)
        self._client: Optional[httpx.AsyncClient] = None

    async def get_text(
        self,
        url: str,
        *,
        params: Optional[Mapping[str, Any]] = None,
        ttl_seconds: Optional[float] = None,
    ) -> str:
        key = self._key("text", url, params)

        async def _fetch() -> str:
            resp = await self._request(url, params=params)
            return resp.text or ""

        return await self._cache.get_or_compute(key, _fetch, ttl_seconds)

    async def get_json(
        self,
        url: str,
        *,
        params: Optional[Mapping[str, Any]] = None,
        ttl_seconds: Optional[float] = None,
    ) -> Any:
        key = self._key("json", url, params)

        async def _fetch() -> Any:
            resp = await self._request(url, params=params)
            try:
                return resp.json()
            except ValueError as e:
                raise ExternalServiceError(f"Invalid JSON from GET {url}: {e}") from e

        return await self._cache.get_or_compute(key, _fetch, ttl_seconds)

    def invalidate(self, url: str, *, params: Optional[Mapping[str, Any]] = None) -> bool:
        removed_text = self._cache.delete(self._key("text", url, params))
        removed_json = self._cache.delete(self._key("json", url, params))
        return removed_text or removed_json

    def stats(self) -> CacheStats:
        return self._cache.stats()

    async def aclose(self) -> None:
        self._cache.destroy()
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "CachedHttpClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    # --- HTTP helpers ---

    def _key(self, kind: str, url: str, params: Optional[Mapping[str, Any]]) -> _RequestKey:
        items = tuple(sorted((str(k), str(v)) for k, v in (params or {}).items()))
        return _RequestKey(kind=kind, url=url.strip(), params=items)

    def _create_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self._base_url,
            headers=self._headers,
            timeout=self._timeout,
            verify=self._verify,
        )

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = self._create_client()
        return self._client

    def _external(self, context: str, err: BaseException) -> ExternalServiceError:
        return ExternalServiceError(f"HTTP request failed ({context}): {err}")

    async def _request(self, url: str, *, params: Optional[Mapping[str, Any]] = None) -> httpx.Response:
        """GET with concurrency bound, client-side rate limit and bounded 429 retries."""
        client = self._get_client()
        attempts = self._MAX_RATE_LIMIT_RETRIES + 1

        for attempt in range(attempts):
            if self._rate_limiter is not None:
                self._rate_limiter.check(self._host_of(client, url))

            try:
                async with self._sem:
                    resp = await client.get(url, params=dict(params or {}))
            except httpx.HTTPError as e:
                raise self._external(f"GET {url}", e) from e

            if resp.status_code == 429 and attempt < attempts - 1:
                delay = self._retry_after(resp)
                if delay is not None:
                    logger.debug("GET %s throttled; retrying in %.1fs", url, delay)
                    await asyncio.sleep(delay)
                    continue

            if resp.status_code == 404:
                raise NotFoundError(f"Not found: GET {url}")

            try:
                resp.raise_for_status()
            except httpx.HTTPStatusError as e:
                raise self._external(f"GET {url}", e) from e
            return resp

        raise RuntimeError("Unreachable: _request did not return a response")

    def _retry_after(self, resp: httpx.Response) -> Optional[float]:
        value = (resp.headers.get("Retry-After") or "").strip()
        if not value.isdigit():
            return None
        return min(float(value), self._max_retry_after)

    @staticmethod
    def _host_of(client: httpx.AsyncClient, url: str) -> str:
        return client.build_request("GET", url).url.host
