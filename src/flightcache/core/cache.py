"""In-memory TTL cache with LRU eviction and single-flight recomputation.

Store values with a clock-based expiration timestamp, evict the least
recently used entry (expired ones first) when max_size is exceeded, and
deduplicate concurrent get_or_compute() misses so a producer runs at most
once per key at a time.

Recency policy: set/set_with_ttl/refresh and a get() hit count as use;
has(), peek() and iteration do not.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Mapping
from typing import (
    Any,
    Callable,
    Generic,
    Iterable,
    Iterator,
    List,
    Optional,
    Tuple,
    Union,
)

from .errors import ValidationError
from .eviction import LruEvictionPolicy
from .expiry import ExpiryManager
from .models import CacheEntry, CacheOptions, CacheStats, K, V, validate_ttl
from .single_flight import Producer, SingleFlight
from .store import EntryStore

logger = logging.getLogger(__name__)

BatchItem = Union[Tuple[K, V], Tuple[K, V, float]]


class TTLCache(Generic[K, V]):
    """Bounded TTL cache for a single asyncio event loop.

    Purpose:
      - set/get/has/delete with per-entry TTL and lazy expiry on every read
      - optional max_size with LRU eviction
      - optional background sweep (auto_cleanup_seconds) owned by the instance
      - get_or_compute(key, producer) with single-flight deduplication

    All operations except get_or_compute are synchronous and never yield to
    the loop. Constructing with auto_cleanup_seconds > 0 requires a running
    event loop; destroy() (or leaving a with/async with block) stops it.
    """

    def __init__(
        self,
        ttl_seconds: Optional[float] = None,
        max_size: Optional[int] = None,
        auto_cleanup_seconds: Optional[float] = None,
        *,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        self._options = CacheOptions(
            ttl_seconds=ttl_seconds,
            max_size=max_size,
            auto_cleanup_seconds=auto_cleanup_seconds,
        )
        self._store: EntryStore[K, V] = EntryStore(clock=clock or time.monotonic)
        self._eviction: LruEvictionPolicy[K, V] = LruEvictionPolicy(max_size=max_size)
        self._expiry = ExpiryManager(default_ttl=self._options.ttl_seconds)
        self._flights: SingleFlight[K, V] = SingleFlight()
        self._destroyed = False

        if self._options.auto_cleanup_enabled:
            self._expiry.start_timer(self._options.auto_cleanup_seconds, self._sweep_from_timer)

    @classmethod
    def from_options(
        cls,
        options: CacheOptions,
        *,
        clock: Optional[Callable[[], float]] = None,
    ) -> "TTLCache[K, V]":
        return cls(
            ttl_seconds=options.ttl_seconds,
            max_size=options.max_size,
            auto_cleanup_seconds=options.auto_cleanup_seconds,
            clock=clock,
        )

    @property
    def options(self) -> CacheOptions:
        return self._options

    @property
    def max_size(self) -> Optional[int]:
        return self._eviction.max_size

    # --- writes ---

    def set(self, key: K, value: V) -> None:
        self._write(key, value, self._expiry.default_ttl)

    def set_with_ttl(self, key: K, value: V, ttl_seconds: float) -> None:
        self._write(key, value, validate_ttl(ttl_seconds))

    def set_many(self, items: Union[Mapping, Iterable[BatchItem]]) -> List[K]:
        """Write several entries; tuples may carry a third ttl_seconds element.

        Every item is validated before anything is written, so a malformed
        item or bad TTL leaves the cache untouched.
        """
        pairs = items.items() if isinstance(items, Mapping) else items
        batch: List[Tuple[K, V, Optional[float]]] = []
        for item in pairs:
            if len(item) == 3:
                key, value, ttl = item
                batch.append((key, value, validate_ttl(ttl)))
            elif len(item) == 2:
                key, value = item
                batch.append((key, value, self._expiry.default_ttl))
            else:
                raise ValidationError(f"set_many items must be (key, value[, ttl_seconds]), got {item!r}")

        for key, value, ttl in batch:
            self._write(key, value, ttl)
        return [key for key, _, _ in batch]

    def refresh(self, key: K, ttl_seconds: Optional[float] = None) -> bool:
        """Extend a live entry's expiry; never resurrects an expired one."""
        ttl = self._expiry.default_ttl if ttl_seconds is None else validate_ttl(ttl_seconds)
        now = self._store.now()
        entry = self._store.live(key, now)
        if entry is None:
            return False
        self._store.set_expiry(entry, self._expiry.expires_at(ttl, now))
        self._store.touch(entry)
        return True

    def delete(self, key: K) -> bool:
        return self._store.remove(key)

    def clear(self) -> None:
        self._store.clear()

    # --- reads ---

    def get(self, key: K, default: Optional[V] = None) -> Optional[V]:
        entry = self._store.live(key, self._store.now())
        if entry is None:
            return default
        self._store.touch(entry)
        return entry.value

    def peek(self, key: K, default: Optional[V] = None) -> Optional[V]:
        entry = self._store.live(key, self._store.now())
        return default if entry is None else entry.value

    def has(self, key: K) -> bool:
        return self._store.live(key, self._store.now()) is not None

    def get_many(self, keys: Iterable[K], default: Optional[V] = None) -> List[Optional[V]]:
        return [self.get(key, default) for key in keys]

    def ttl_remaining(self, key: K) -> Optional[float]:
        """Seconds left for `key`; math.inf if it never expires, None if absent."""
        now = self._store.now()
        entry = self._store.live(key, now)
        return None if entry is None else entry.remaining(now)

    def size(self) -> int:
        return len(self._store)

    def keys(self) -> Iterator[K]:
        for entry in self._iter_live():
            yield entry.key

    def values(self) -> Iterator[V]:
        for entry in self._iter_live():
            yield entry.value

    def entries(self) -> Iterator[Tuple[K, V]]:
        for entry in self._iter_live():
            yield entry.key, entry.value

    def for_each(self, callback: Callable[[K, V], Any]) -> None:
        for key, value in self.entries():
            callback(key, value)

    def stats(self) -> CacheStats:
        now = self._store.now()
        expired = sum(1 for entry in self._store.iter_oldest() if entry.is_expired(now))
        size = len(self._store)
        return CacheStats(
            size=size,
            valid_entries=size - expired,
            expired_entries=expired,
            max_size=self._eviction.max_size,
        )

    # --- expiry / lifecycle ---

    def cleanup(self) -> int:
        return self._expiry.sweep(self._store, self._store.now())

    def destroy(self) -> None:
        if not self._destroyed:
            logger.debug("Destroying cache (auto cleanup was %s)", "on" if self._expiry.timer_active else "off")
        self._destroyed = True
        self._expiry.stop_timer()

    @property
    def destroyed(self) -> bool:
        return self._destroyed

    # --- single flight ---

    async def get_or_compute(
        self,
        key: K,
        producer: Producer,
        ttl_seconds: Optional[float] = None,
    ) -> V:
        """Return the cached value for `key`, computing it at most once concurrently.

        Params:
          - producer: zero-argument callable returning a value or an awaitable.
          - ttl_seconds: TTL for the computed value; defaults to the cache TTL.
            Only the caller that launches the computation decides it; callers
            joining a pending computation for the same key get the value
            stored with the launcher's TTL and their own ttl_seconds is ignored.

        Raises:
          ValidationError if producer is not callable or ttl_seconds <= 0;
          otherwise whatever the producer raised, unwrapped, to every waiter.
        """
        if not callable(producer):
            raise ValidationError(f"producer must be callable, got {type(producer).__name__}")
        ttl = None if ttl_seconds is None else validate_ttl(ttl_seconds)

        entry = self._store.live(key, self._store.now())
        if entry is not None:
            self._store.touch(entry)
            return entry.value

        def _store_result(k: K, value: V) -> None:
            if ttl is None:
                self.set(k, value)
            else:
                self.set_with_ttl(k, value, ttl)

        return await self._flights.do(key, producer, _store_result)

    def pending_keys(self) -> List[K]:
        return self._flights.pending_keys()

    # --- protocols ---

    def __len__(self) -> int:
        return self.size()

    def __contains__(self, key: object) -> bool:
        return self.has(key)  # type: ignore[arg-type]

    def __enter__(self) -> "TTLCache[K, V]":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.destroy()

    async def __aenter__(self) -> "TTLCache[K, V]":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        self.destroy()

    def __repr__(self) -> str:
        return (
            f"TTLCache(size={len(self._store)}, ttl_seconds={self._options.ttl_seconds}, "
            f"max_size={self._eviction.max_size}, auto_cleanup_seconds={self._options.auto_cleanup_seconds})"
        )

    # --- internals ---

    def _write(self, key: K, value: V, ttl: Optional[float]) -> CacheEntry[K, V]:
        now = self._store.now()
        self._eviction.make_room(self._store, key, now)
        entry, _ = self._store.put(key, value, expires_at=self._expiry.expires_at(ttl, now), now=now)
        return entry

    def _iter_live(self) -> Iterator[CacheEntry[K, V]]:
        # Snapshot so callers may mutate the cache while iterating
        for entry in self._store.snapshot():
            if entry.is_expired(self._store.now()):
                continue
            if self._store.raw(entry.key) is not entry:
                continue
            yield entry

    def _sweep_from_timer(self) -> None:
        self.cleanup()
