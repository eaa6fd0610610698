"""Ordered key -> CacheEntry table.

Entries are kept in recency order (least recently used first) in an
OrderedDict; every touch moves the key to the end and stamps the entry
with the next value of a strictly increasing counter.

Expiring entries are also indexed by a min-heap of (expires_at, stamp,
key). Records are deleted lazily: a record is live only while the key is
still stored and the entry's expiry_stamp equals the record's stamp, so
overwrites, refreshes and removals never search the heap. The store
knows nothing about size bounds or timers.
"""

from __future__ import annotations

import heapq
import itertools
from collections import OrderedDict
from typing import Callable, Generic, Iterator, List, Optional, Tuple

from .models import CacheEntry, K, V

# Rebuild the heap once stale records outnumber live entries by this factor
_HEAP_SLACK = 2


class EntryStore(Generic[K, V]):
    def __init__(self, *, clock: Callable[[], float]) -> None:
        self._clock = clock
        self._entries: "OrderedDict[K, CacheEntry[K, V]]" = OrderedDict()
        self._recency = itertools.count(1)
        self._expiry_heap: List[Tuple[float, int, K]] = []
        self._stamps = itertools.count(1)

    def now(self) -> float:
        return self._clock()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        # Physical presence, expired entries included
        return key in self._entries

    def raw(self, key: K) -> Optional[CacheEntry[K, V]]:
        return self._entries.get(key)

    def live(self, key: K, now: float) -> Optional[CacheEntry[K, V]]:
        """Return the entry for `key` only if it has not expired at `now`."""
        entry = self._entries.get(key)
        if entry is None or entry.is_expired(now):
            return None
        return entry

    def put(self, key: K, value: V, *, expires_at: Optional[float], now: float) -> Tuple[CacheEntry[K, V], bool]:
        """Insert or overwrite `key`; returns (entry, created)."""
        entry = self._entries.get(key)
        if entry is None:
            entry = CacheEntry(
                key=key,
                value=value,
                expires_at=None,
                inserted_at=now,
                recency=next(self._recency),
            )
            self._entries[key] = entry
            self.set_expiry(entry, expires_at)
            return entry, True

        entry.value = value
        self.set_expiry(entry, expires_at)
        self.touch(entry)
        return entry, False

    def set_expiry(self, entry: CacheEntry[K, V], expires_at: Optional[float]) -> None:
        # A new stamp invalidates whatever heap record the entry had before
        entry.expires_at = expires_at
        entry.expiry_stamp = next(self._stamps)
        if expires_at is None:
            return
        heapq.heappush(self._expiry_heap, (expires_at, entry.expiry_stamp, entry.key))
        if len(self._expiry_heap) > _HEAP_SLACK * len(self._entries) + 16:
            self._rebuild_heap()

    def touch(self, entry: CacheEntry[K, V]) -> None:
        entry.recency = next(self._recency)
        self._entries.move_to_end(entry.key, last=True)

    def remove(self, key: K) -> bool:
        return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        self._entries.clear()
        self._expiry_heap.clear()

    def earliest_expired(self, now: float) -> Optional[CacheEntry[K, V]]:
        """Return the entry with the earliest expiry if it has expired at `now`."""
        heap = self._expiry_heap
        while heap:
            _, stamp, key = heap[0]
            entry = self._entries.get(key)
            if entry is None or entry.expiry_stamp != stamp:
                heapq.heappop(heap)
                continue
            return entry if entry.is_expired(now) else None
        return None

    def drain_expired(self, now: float) -> List[K]:
        """Remove every entry expired at `now`; returns their keys, earliest expiry first."""
        removed: List[K] = []
        while True:
            entry = self.earliest_expired(now)
            if entry is None:
                return removed
            heapq.heappop(self._expiry_heap)
            self.remove(entry.key)
            removed.append(entry.key)

    def iter_oldest(self) -> Iterator[CacheEntry[K, V]]:
        # Live view; callers must not mutate while consuming it
        return iter(self._entries.values())

    def oldest(self) -> Optional[CacheEntry[K, V]]:
        for entry in self._entries.values():
            return entry
        return None

    def snapshot(self) -> List[CacheEntry[K, V]]:
        return list(self._entries.values())

    def _rebuild_heap(self) -> None:
        self._expiry_heap = [
            (entry.expires_at, entry.expiry_stamp, entry.key)
            for entry in self._entries.values()
            if entry.expires_at is not None
        ]
        heapq.heapify(self._expiry_heap)
