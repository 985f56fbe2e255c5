"""
Stream region.

Tracks the engine lifecycle, spawns and tears down engine generations and
applies the restart backoff.

Transitions:
    stopped | error  --START-->            running.waiting   (spawn N+1)
    restarting       --START-->            running.waiting   (disarm backoff, spawn)
    running.waiting  --ENGINE_STARTED(N)-> running.started   (record start_time)
    running.*        --ENGINE_ENDED(N)-->  restarting        (teardown, arm backoff)
    restarting       --backoff elapsed-->  running.waiting   (spawn N+1)
    running.*        --STOP-->             stopped           (teardown)
    restarting       --STOP-->             stopped           (disarm backoff)
    error            --STOP-->             stopped
    spawn raised                           error             (never retried)

Engine events whose generation is not the live one are stale and ignored.
The live generation is held in an EngineLease; every path out of
``running.*`` (and controller shutdown) releases it exactly once.
"""

from __future__ import annotations

import logging
from contextlib import ExitStack
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Union

from streamdelay.engine.base import (
    EngineChannel,
    EngineEnded,
    EngineEvent,
    EngineFactory,
    EngineHandle,
    EngineStarted,
    RenderCommand,
)
from streamdelay.runtime.clock import Scheduler, TimerHandle
from streamdelay.runtime.config import StreamSettings
from streamdelay.runtime.states import ControlEvent, StreamState, TimerElapsed, TimerKind

logger = logging.getLogger(__name__)


class StreamEffect(Enum):
    SPAWN = "spawn"
    TEARDOWN = "teardown"
    ARM_RESTART = "arm_restart"
    DISARM_RESTART = "disarm_restart"
    MARK_STARTED = "mark_started"


@dataclass(frozen=True)
class RestartElapsed:
    pass


@dataclass(frozen=True)
class SpawnFailed:
    message: str


StreamEvent = Union[ControlEvent, EngineStarted, EngineEnded, RestartElapsed, SpawnFailed]

_RUNNING = (StreamState.WAITING, StreamState.STARTED)


def stream_transition(
    state: StreamState,
    event: StreamEvent,
    active_generation: int | None,
) -> tuple[StreamState, tuple[StreamEffect, ...]]:
    """Pure transition function for the stream region.

    ``active_generation`` is the generation currently holding the lease, or
    None when no engine is running.
    """
    if event is ControlEvent.START:
        if state in (StreamState.STOPPED, StreamState.ERROR):
            return StreamState.WAITING, (StreamEffect.SPAWN,)
        if state is StreamState.RESTARTING:
            return StreamState.WAITING, (StreamEffect.DISARM_RESTART, StreamEffect.SPAWN)
        return state, ()

    if event is ControlEvent.STOP:
        if state in _RUNNING:
            return StreamState.STOPPED, (StreamEffect.TEARDOWN,)
        if state is StreamState.RESTARTING:
            return StreamState.STOPPED, (StreamEffect.DISARM_RESTART,)
        if state is StreamState.ERROR:
            return StreamState.STOPPED, ()
        return state, ()

    if isinstance(event, EngineStarted):
        if event.generation == active_generation and state is StreamState.WAITING:
            return StreamState.STARTED, (StreamEffect.MARK_STARTED,)
        return state, ()

    if isinstance(event, EngineEnded):
        if event.generation == active_generation and state in _RUNNING:
            return StreamState.RESTARTING, (StreamEffect.TEARDOWN, StreamEffect.ARM_RESTART)
        return state, ()

    if isinstance(event, RestartElapsed):
        if state is StreamState.RESTARTING:
            return StreamState.WAITING, (StreamEffect.SPAWN,)
        return state, ()

    if isinstance(event, SpawnFailed):
        return StreamState.ERROR, ()

    raise ValueError(f"Unknown stream event: {event!r}")


class EngineLease:
    """Scoped ownership of one engine generation.

    Releasing closes the channel (no more events) and then stops the handle.
    Release runs once; later calls are no-ops.
    """

    def __init__(self, channel: EngineChannel, handle: EngineHandle) -> None:
        self.channel = channel
        self.handle = handle
        self._stack = ExitStack()
        # LIFO: the channel closes before the handle stops
        self._stack.callback(handle.stop)
        self._stack.callback(channel.close)

    @property
    def generation(self) -> int:
        return self.channel.generation

    def release(self) -> None:
        self._stack.close()


class StreamRegion:
    """Stream state plus the engine lease and restart timer it owns."""

    def __init__(
        self,
        settings: StreamSettings,
        engine_factory: EngineFactory,
        scheduler: Scheduler,
        post: Callable[[object], None],
    ) -> None:
        self.settings = settings
        self._engine_factory = engine_factory
        self._scheduler = scheduler
        self._post = post

        self.state = StreamState.STOPPED
        self.start_time: float | None = None
        self.error: str | None = None
        self.generation = 0
        self.restarts = 0

        self._lease: EngineLease | None = None
        self._restart_timer: TimerHandle | None = None
        self._restart_token = 0

    @property
    def active_generation(self) -> int | None:
        return self._lease.generation if self._lease is not None else None

    def handle(self, event: ControlEvent | EngineEvent) -> bool:
        """Apply START/STOP or an engine event. Returns True when the state changed."""
        if isinstance(event, (EngineStarted, EngineEnded)) and event.generation != self.active_generation:
            logger.debug(
                "Ignoring stale %s (live generation %s)",
                type(event).__name__,
                self.active_generation,
            )
            return False
        if isinstance(event, EngineEnded):
            logger.warning("Engine generation %d ended: %s", event.generation, event.reason or "unknown")
        return self._apply(event)

    def on_timer(self, elapsed: TimerElapsed) -> bool:
        if elapsed.token != self._restart_token or self._restart_timer is None:
            logger.debug("Ignoring stale restart timer (token %d)", elapsed.token)
            return False
        self._restart_timer = None
        return self._apply(RestartElapsed())

    def send(self, command: RenderCommand) -> bool:
        """Forward a render command to the live engine if it has started."""
        if self.state is not StreamState.STARTED or self._lease is None:
            return False
        self._lease.handle.send(command)
        return True

    def close(self) -> None:
        """Release everything this region owns (controller shutdown)."""
        self._disarm_restart()
        self._teardown()

    def _apply(self, event: StreamEvent) -> bool:
        previous = self.state
        self.state, effects = stream_transition(previous, event, self.active_generation)
        for effect in effects:
            if effect is StreamEffect.SPAWN:
                self._spawn()
            elif effect is StreamEffect.TEARDOWN:
                self._teardown()
            elif effect is StreamEffect.ARM_RESTART:
                self._arm_restart()
            elif effect is StreamEffect.DISARM_RESTART:
                self._disarm_restart()
            elif effect is StreamEffect.MARK_STARTED:
                self.start_time = self._scheduler.time()
        if self.state is not StreamState.STARTED:
            self.start_time = None
        if self.state is not previous:
            logger.info("Stream %s -> %s", previous.value, self.state.value)
            return True
        return False

    def _spawn(self) -> None:
        self.generation += 1
        generation = self.generation
        channel = EngineChannel(generation, self._post)
        self.error = None
        logger.info("Spawning engine generation %d", generation)
        try:
            handle = self._engine_factory(self.settings, channel)
        except Exception as exc:
            channel.close()
            message = str(exc) or type(exc).__name__
            logger.error("Engine generation %d failed to start: %s", generation, message)
            self.error = message
            self.state, _ = stream_transition(self.state, SpawnFailed(message), None)
            return
        self._lease = EngineLease(channel, handle)

    def _teardown(self) -> None:
        lease, self._lease = self._lease, None
        if lease is None:
            return
        logger.info("Tearing down engine generation %d", lease.generation)
        try:
            lease.release()
        except Exception:
            logger.exception("Engine generation %d failed to stop cleanly", lease.generation)

    def _arm_restart(self) -> None:
        self._disarm_restart()
        self.restarts += 1
        self._restart_token += 1
        elapsed = TimerElapsed(TimerKind.RESTART, self._restart_token)
        logger.info(
            "Restarting in %.1fs (attempt #%d)", self.settings.restart_seconds, self.restarts
        )
        self._restart_timer = self._scheduler.call_later(
            self.settings.restart_seconds, lambda: self._post(elapsed)
        )

    def _disarm_restart(self) -> None:
        if self._restart_timer is not None:
            self._restart_timer.cancel()
            self._restart_timer = None
            self._restart_token += 1
