"""
Stream controller.

Composes the censorship and stream regions into one consistent state and
serializes everything that can change it. Operator intents, engine lifecycle
events and fired timers all go through one asyncio queue and are processed
one at a time, to completion, in arrival order.

Cross-region rule: when the stream enters ``running.started`` the new engine
gets exactly one render command matching the censorship state at that
instant, in the same processing step. Later render-mode changes are sent as
they happen, but only while the stream is ``running.started``; otherwise the
state itself carries the intent until the next start.

Usage:
    async with StreamController(settings, spawn_gst_engine) as controller:
        controller.send("START")
        unsubscribe = controller.subscribe(print)
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from streamdelay.engine.base import EngineEnded, EngineFactory, EngineStarted
from streamdelay.runtime.broadcaster import SnapshotBroadcaster, SnapshotHandler
from streamdelay.runtime.censorship import CensorshipRegion
from streamdelay.runtime.clock import AsyncioScheduler, Scheduler
from streamdelay.runtime.config import StreamSettings
from streamdelay.runtime.states import (
    ControlEvent,
    Snapshot,
    StreamState,
    TimerElapsed,
    TimerKind,
)
from streamdelay.runtime.stream import StreamRegion

logger = logging.getLogger(__name__)


class ControllerNotRunningError(RuntimeError):
    """Raised when events are sent to a controller that is not started."""


class StreamController:
    """Single-session lifecycle and censorship controller."""

    def __init__(
        self,
        settings: StreamSettings,
        engine_factory: EngineFactory,
        *,
        scheduler: Scheduler | None = None,
        broadcaster: SnapshotBroadcaster | None = None,
    ) -> None:
        """
        Args:
            settings: Immutable stream settings
            engine_factory: Spawns engine generations
            scheduler: Timer provider (defaults to the running asyncio loop)
            broadcaster: Snapshot fan-out (a new one by default)
        """
        self.settings = settings
        self._scheduler: Scheduler = scheduler or AsyncioScheduler()
        self._censorship = CensorshipRegion(settings.delay_seconds, self._scheduler, self._post)
        self._stream = StreamRegion(settings, engine_factory, self._scheduler, self._post)
        self._broadcaster = broadcaster or SnapshotBroadcaster(self._compute_snapshot())

        self._loop: asyncio.AbstractEventLoop | None = None
        self._queue: asyncio.Queue[tuple[Any, asyncio.Future | None]] | None = None
        self._task: asyncio.Task | None = None
        self._closed = False

    # ------------------------------------------------------------------ lifecycle

    @property
    def running(self) -> bool:
        return self._task is not None and not self._closed

    async def start(self) -> None:
        if self._task is not None:
            return
        if self._closed:
            raise ControllerNotRunningError("Controller has been closed")
        self._loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue()
        self._task = self._loop.create_task(self._run(), name="streamdelay-controller")
        logger.info(
            "Controller started (delay %.1fs, restart %.1fs)",
            self.settings.delay_seconds,
            self.settings.restart_seconds,
        )

    async def close(self) -> None:
        """Stop processing and release the engine and all timers."""
        if self._closed:
            return
        self._closed = True
        if self._task is not None:
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)
        self._fail_pending()
        # Shutdown takes the same path as an operator STOP
        self._process(ControlEvent.STOP)
        self._stream.close()
        self._censorship.close()
        await self._broadcaster.close()
        logger.info("Controller closed")

    async def __aenter__(self) -> StreamController:
        await self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    # ------------------------------------------------------------------ public API

    def send(self, event: ControlEvent | str) -> None:
        """Enqueue START, STOP, CENSOR or UNCENSOR. Never blocks."""
        parsed = ControlEvent.parse(event)
        self._require_running()
        self._queue.put_nowait((parsed, None))

    async def request(self, event: ControlEvent | str) -> Snapshot:
        """Enqueue an event and wait until it has been processed."""
        parsed = ControlEvent.parse(event)
        self._require_running()
        future = self._loop.create_future()
        self._queue.put_nowait((parsed, future))
        return await future

    def get_snapshot(self) -> Snapshot:
        return self._compute_snapshot()

    def subscribe(self, handler: SnapshotHandler):
        """Subscribe to snapshot changes. Returns an unsubscribe callable."""
        return self._broadcaster.subscribe(handler)

    async def settle(self) -> None:
        """Wait until every queued event is processed and delivered to subscribers."""
        if self._queue is not None and self.running:
            await self._queue.join()
        await self._broadcaster.drain()

    # ------------------------------------------------------------------ internals

    def _require_running(self) -> None:
        if not self.running:
            raise ControllerNotRunningError("Controller is not running")

    def _post(self, event: Any) -> None:
        """Enqueue an internal event from timers or engine threads."""
        loop = self._loop
        if loop is None or self._closed:
            logger.debug("Dropping %r posted while controller is not running", event)
            return
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is loop:
            self._queue.put_nowait((event, None))
        else:
            loop.call_soon_threadsafe(self._queue.put_nowait, (event, None))

    async def _run(self) -> None:
        queue = self._queue
        while True:
            event, future = await queue.get()
            try:
                self._process(event)
            except Exception as exc:
                logger.exception("Failed to process event %r", event)
                if future is not None and not future.done():
                    future.set_exception(exc)
            else:
                if future is not None and not future.done():
                    future.set_result(self.get_snapshot())
            finally:
                queue.task_done()

    def _fail_pending(self) -> None:
        if self._queue is None:
            return
        while not self._queue.empty():
            _event, future = self._queue.get_nowait()
            self._queue.task_done()
            if future is not None and not future.done():
                future.set_exception(ControllerNotRunningError("Controller closed"))

    def _process(self, event: Any) -> None:
        was_started = self._stream.state is StreamState.STARTED
        previous_render = self._censorship.render_command

        if event in (ControlEvent.CENSOR, ControlEvent.UNCENSOR):
            self._censorship.handle(event)
        elif event in (ControlEvent.START, ControlEvent.STOP):
            self._stream.handle(event)
        elif isinstance(event, (EngineStarted, EngineEnded)):
            self._stream.handle(event)
        elif isinstance(event, TimerElapsed):
            if event.kind is TimerKind.RELEASE:
                self._censorship.on_timer(event)
            else:
                self._stream.on_timer(event)
        else:
            logger.warning("Ignoring unknown event %r", event)
            return

        self._synchronize(was_started, previous_render)

        snapshot = self._compute_snapshot()
        if self._broadcaster.publish(snapshot):
            logger.info("State: %s", snapshot.state_value)

    def _synchronize(self, was_started: bool, previous_render) -> None:
        if self._stream.state is not StreamState.STARTED:
            return
        command = self._censorship.render_command
        if not was_started or command is not previous_render:
            self._stream.send(command)
            logger.info(
                "Sent %s to engine generation %d", command.value, self._stream.active_generation
            )

    def _compute_snapshot(self) -> Snapshot:
        return Snapshot(
            censorship=self._censorship.state,
            stream=self._stream.state,
            start_time=self._stream.start_time,
            delay_seconds=self.settings.delay_seconds,
            restart_seconds=self.settings.restart_seconds,
            generation=self._stream.generation,
            error=self._stream.error,
        )
