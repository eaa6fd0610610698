"""Expiry bookkeeping and the optional background sweep.

Reads never depend on a sweep having run: the store is filtered by
expiry on every lookup. The sweep only reclaims memory. The timer is a
chain of loop.call_later handles owned by one cache instance; a pending
handle does not keep the event loop alive.
"""

from __future__ import annotations

import asyncio
import logging
import math
from typing import Callable, Optional

from .errors import ValidationError
from .models import K, V
from .store import EntryStore

logger = logging.getLogger(__name__)


class ExpiryManager:
    def __init__(self, *, default_ttl: Optional[float]) -> None:
        self._default_ttl = default_ttl

        self._handle: Optional[asyncio.TimerHandle] = None
        self._interval = 0.0
        self._callback: Optional[Callable[[], object]] = None
        self._stopped = True

    @property
    def default_ttl(self) -> Optional[float]:
        return self._default_ttl

    @property
    def timer_active(self) -> bool:
        return not self._stopped

    def expires_at(self, ttl: Optional[float], now: float) -> Optional[float]:
        if ttl is None or math.isinf(ttl):
            return None
        return now + ttl

    def sweep(self, store: EntryStore[K, V], now: float) -> int:
        expired = store.drain_expired(now)
        if expired:
            logger.debug("Swept %d expired entries", len(expired))
        return len(expired)

    # --- background timer ---

    def start_timer(self, interval: float, callback: Callable[[], object]) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError as e:
            raise ValidationError("auto_cleanup_seconds requires a running event loop") from e

        self._interval = float(interval)
        self._callback = callback
        self._stopped = False
        self._schedule(loop)

    def stop_timer(self) -> None:
        # Idempotent; after this returns no further sweep will run
        self._stopped = True
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        self._callback = None

    def _schedule(self, loop: asyncio.AbstractEventLoop) -> None:
        self._handle = loop.call_later(self._interval, self._tick, loop)

    def _tick(self, loop: asyncio.AbstractEventLoop) -> None:
        self._handle = None
        if self._stopped or self._callback is None:
            return

        try:
            self._callback()
        except Exception:
            logger.exception("Background cache sweep failed")

        # The callback itself may have stopped the timer
        if not self._stopped:
            self._schedule(loop)
