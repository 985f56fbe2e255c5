"""Timer facility used by the stream controller.

A scheduler hands out single-shot delayed callbacks that can be cancelled
before they fire. The controller never sleeps: the censorship release window
and the restart backoff are both expressed as scheduled callbacks.
"""

from __future__ import annotations

import asyncio
import heapq
import itertools
import time
from typing import Callable, Protocol, runtime_checkable

Callback = Callable[[], None]


@runtime_checkable
class TimerHandle(Protocol):
    """Handle returned by :meth:`Scheduler.call_later`."""

    def cancel(self) -> None:
        """Prevent the callback from running. No-op once fired."""


@runtime_checkable
class Scheduler(Protocol):
    """Protocol implemented by timer providers."""

    def time(self) -> float:
        """Return the current wall-clock time in epoch seconds."""

    def call_later(self, delay: float, callback: Callback) -> TimerHandle:
        """Run ``callback`` once after ``delay`` seconds."""


class AsyncioScheduler:
    """Scheduler backed by the running asyncio event loop.

    Callbacks run on the loop thread, so they may touch loop-owned state
    (queues, futures) directly.
    """

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        self._loop = loop

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def time(self) -> float:
        return time.time()

    def call_later(self, delay: float, callback: Callback) -> asyncio.TimerHandle:
        return self.loop.call_later(max(0.0, delay), callback)


class _ManualTimer:
    __slots__ = ("deadline", "seq", "callback", "cancelled")

    def __init__(self, deadline: float, seq: int, callback: Callback) -> None:
        self.deadline = deadline
        self.seq = seq
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True

    def __lt__(self, other: _ManualTimer) -> bool:
        return (self.deadline, self.seq) < (other.deadline, other.seq)


class ManualScheduler:
    """Deterministic scheduler used for tests.

    Time advances only when :meth:`advance` is called. Due callbacks fire in
    deadline order; timers sharing a deadline fire in registration order.
    """

    def __init__(self, start: float = 0.0) -> None:
        self._now = start
        self._timers: list[_ManualTimer] = []
        self._seq = itertools.count()

    def time(self) -> float:
        return self._now

    def call_later(self, delay: float, callback: Callback) -> _ManualTimer:
        timer = _ManualTimer(self._now + max(0.0, delay), next(self._seq), callback)
        heapq.heappush(self._timers, timer)
        return timer

    @property
    def pending(self) -> int:
        """Number of armed, uncancelled timers."""
        return sum(1 for timer in self._timers if not timer.cancelled)

    def advance(self, seconds: float) -> float:
        """Advance time by ``seconds`` (must be non-negative), firing due timers."""
        if seconds < 0.0:
            raise ValueError("seconds must be non-negative")
        target = self._now + seconds
        while self._timers and self._timers[0].deadline <= target:
            timer = heapq.heappop(self._timers)
            if timer.cancelled:
                continue
            self._now = timer.deadline
            timer.callback()
        self._now = target
        return self._now
