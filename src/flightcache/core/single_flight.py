"""Per-key deduplication of concurrent computations.

The first caller for a key launches one asyncio.Task that runs the
producer; callers arriving before it settles await that same task
instead of launching another. Waiters go through asyncio.shield so that
cancelling one waiter leaves the shared computation running for the
rest. The key is released as soon as the task settles, whether it
succeeded or failed, so failures are never remembered.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, Dict, Generic, List, Union

from .models import K, V

logger = logging.getLogger(__name__)

Producer = Callable[[], Union[V, Awaitable[V]]]


class SingleFlight(Generic[K, V]):
    def __init__(self) -> None:
        self._pending: Dict[K, "asyncio.Task[V]"] = {}

    def __contains__(self, key: object) -> bool:
        return key in self._pending

    def __len__(self) -> int:
        return len(self._pending)

    def pending_keys(self) -> List[K]:
        return list(self._pending)

    async def do(
        self,
        key: K,
        producer: Producer,
        on_success: Callable[[K, V], Any],
    ) -> V:
        """Run `producer` once for `key` and share its outcome with every concurrent caller.

        `on_success` runs before the key is released and before any waiter
        resumes, so a value is always cached by the time callers see it.
        """
        task = self._pending.get(key)
        if task is None:
            task = asyncio.get_running_loop().create_task(self._run(key, producer, on_success))
            task.add_done_callback(_retrieve_outcome)
            # Register before any await so later callers fold into this task
            self._pending[key] = task
            logger.debug("Launched computation for %r", key)
        else:
            logger.debug("Joined pending computation for %r", key)

        return await asyncio.shield(task)

    async def _run(self, key: K, producer: Producer, on_success: Callable[[K, V], Any]) -> V:
        try:
            result = producer()
            if inspect.isawaitable(result):
                result = await result
            on_success(key, result)
            return result
        except BaseException as e:
            logger.debug("Computation for %r failed: %s", key, type(e).__name__)
            raise
        finally:
            self._release(key)

    def _release(self, key: K) -> None:
        if self._pending.get(key) is asyncio.current_task():
            del self._pending[key]


def _retrieve_outcome(task: "asyncio.Task[Any]") -> None:
    # Waiters may all have been cancelled; mark a failure as seen so the loop
    # does not report it as never retrieved. Waiters still get it via shield.
    if not task.cancelled():
        task.exception()
