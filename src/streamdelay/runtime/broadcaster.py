"""
Snapshot broadcaster.

Delivers controller snapshots to subscribers once per value-distinct change.
Every subscriber has its own bounded queue and pump task, so a slow or failing
subscriber never blocks the controller or the other subscribers. When a
subscriber falls behind, its oldest undelivered snapshot is dropped; the most
recent state always gets through.
"""

from __future__ import annotations

import asyncio
import inspect
import itertools
import logging
from typing import Any, Awaitable, Callable, Union

from streamdelay.runtime.states import Snapshot

logger = logging.getLogger(__name__)

SnapshotHandler = Callable[[Snapshot], Union[None, Awaitable[Any]]]

# Maximum undelivered snapshots per subscriber
MAX_SUBSCRIBER_QUEUE_SIZE = 16


class _Subscription:
    def __init__(self, subscriber_id: int, handler: SnapshotHandler, maxsize: int) -> None:
        self.subscriber_id = subscriber_id
        self.handler = handler
        self.queue: asyncio.Queue[Snapshot] = asyncio.Queue(maxsize=maxsize)
        self.task: asyncio.Task | None = None
        self.dropped = 0

    def offer(self, snapshot: Snapshot) -> None:
        if self.queue.full():
            self.queue.get_nowait()
            self.queue.task_done()
            self.dropped += 1
            logger.debug("Subscriber %d is behind; dropped oldest snapshot", self.subscriber_id)
        self.queue.put_nowait(snapshot)

    async def pump(self) -> None:
        while True:
            snapshot = await self.queue.get()
            try:
                result = self.handler(snapshot)
                if inspect.isawaitable(result):
                    await result
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Subscriber %d failed to handle snapshot", self.subscriber_id)
            finally:
                self.queue.task_done()


class SnapshotBroadcaster:
    """Fan-out of snapshots to subscribers. Must be used on the event loop thread."""

    def __init__(self, initial: Snapshot, *, max_queue_size: int = MAX_SUBSCRIBER_QUEUE_SIZE) -> None:
        self._current = initial
        self._max_queue_size = max_queue_size
        self._subscriptions: dict[int, _Subscription] = {}
        self._ids = itertools.count(1)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    def subscribe(self, handler: SnapshotHandler) -> Callable[[], None]:
        """Register ``handler``; it receives the current snapshot right away.

        Returns a callable that unsubscribes. Calling it twice is harmless.
        """
        subscription = _Subscription(next(self._ids), handler, self._max_queue_size)
        subscription.task = asyncio.get_running_loop().create_task(
            subscription.pump(), name=f"streamdelay-subscriber-{subscription.subscriber_id}"
        )
        self._subscriptions[subscription.subscriber_id] = subscription
        subscription.offer(self._current)

        def unsubscribe() -> None:
            removed = self._subscriptions.pop(subscription.subscriber_id, None)
            if removed is not None and removed.task is not None:
                removed.task.cancel()

        return unsubscribe

    def publish(self, snapshot: Snapshot) -> bool:
        """Forward ``snapshot`` if it differs from the last one. Returns True if sent."""
        if snapshot == self._current:
            return False
        self._current = snapshot
        for subscription in list(self._subscriptions.values()):
            subscription.offer(snapshot)
        return True

    async def drain(self) -> None:
        """Wait until every queued snapshot has been handled."""
        for subscription in list(self._subscriptions.values()):
            await subscription.queue.join()

    async def close(self) -> None:
        subscriptions = list(self._subscriptions.values())
        self._subscriptions.clear()
        tasks = [s.task for s in subscriptions if s.task is not None]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
