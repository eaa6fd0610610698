from __future__ import annotations

import logging
from typing import Generic, List, Optional

from .models import CacheEntry, K, V
from .store import EntryStore

logger = logging.getLogger(__name__)


class LruEvictionPolicy(Generic[K, V]):
    # Size bound with LRU eviction; an already expired entry is reclaimed before any live one
    def __init__(self, *, max_size: Optional[int]) -> None:
        self._max_size = max_size

    @property
    def max_size(self) -> Optional[int]:
        return self._max_size

    def needs_room(self, store: EntryStore[K, V], key: K) -> bool:
        # Overwrites never change the count, so only new keys can overflow
        if self._max_size is None or key in store:
            return False
        return len(store) >= self._max_size

    def choose_victim(self, store: EntryStore[K, V], now: float) -> Optional[CacheEntry[K, V]]:
        # Heap top first (the earliest-expiring entry, if already expired), else the LRU head
        expired = store.earliest_expired(now)
        if expired is not None:
            return expired
        return store.oldest()

    def make_room(self, store: EntryStore[K, V], key: K, now: float) -> List[K]:
        """Evict until inserting `key` keeps the store within max_size."""
        evicted: List[K] = []
        while self.needs_room(store, key):
            victim = self.choose_victim(store, now)
            if victim is None:
                break
            store.remove(victim.key)
            evicted.append(victim.key)
            logger.debug(
                "Evicted %r (%s) to make room for %r",
                victim.key,
                "expired" if victim.is_expired(now) else "lru",
                key,
            )
        return evicted
