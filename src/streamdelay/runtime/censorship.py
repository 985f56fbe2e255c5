"""
Censorship region.

Tracks whether output should be redacted and enforces the release delay:
after UNCENSOR the region stays censored for a full ``delay_seconds`` so that
content already in the delay buffer is flushed before the engine renders
normally again. A CENSOR during that window cancels it; the next UNCENSOR
starts a fresh window. A repeated UNCENSOR while deactivating also restarts
the window, so the delay is measured from the last UNCENSOR.

Transitions:
    normal                 --CENSOR-->   censored.active
    censored.active        --UNCENSOR--> censored.deactivating  (arm release)
    censored.deactivating  --CENSOR-->   censored.active        (disarm release)
    censored.deactivating  --UNCENSOR--> censored.deactivating  (re-arm release)
    censored.deactivating  --elapsed-->  normal
"""

from __future__ import annotations

import logging
from enum import Enum

from streamdelay.engine.base import RenderCommand
from streamdelay.runtime.clock import Scheduler, TimerHandle
from streamdelay.runtime.states import CensorshipState, ControlEvent, TimerElapsed, TimerKind

logger = logging.getLogger(__name__)


class CensorshipIntent(Enum):
    CENSOR = "CENSOR"
    UNCENSOR = "UNCENSOR"
    RELEASE_ELAPSED = "RELEASE_ELAPSED"


class CensorshipEffect(Enum):
    ARM_RELEASE = "arm_release"
    DISARM_RELEASE = "disarm_release"


def censorship_transition(
    state: CensorshipState, intent: CensorshipIntent
) -> tuple[CensorshipState, CensorshipEffect | None]:
    """Pure transition function for the censorship region."""
    if intent is CensorshipIntent.CENSOR:
        if state is CensorshipState.CENSORED_DEACTIVATING:
            return CensorshipState.CENSORED_ACTIVE, CensorshipEffect.DISARM_RELEASE
        return CensorshipState.CENSORED_ACTIVE, None

    if intent is CensorshipIntent.UNCENSOR:
        if state is CensorshipState.NORMAL:
            return state, None
        return CensorshipState.CENSORED_DEACTIVATING, CensorshipEffect.ARM_RELEASE

    if intent is CensorshipIntent.RELEASE_ELAPSED:
        if state is CensorshipState.CENSORED_DEACTIVATING:
            return CensorshipState.NORMAL, None
        return state, None

    raise ValueError(f"Unknown censorship intent: {intent!r}")


def render_command_for(state: CensorshipState) -> RenderCommand:
    if state is CensorshipState.NORMAL:
        return RenderCommand.RENDER_NORMAL
    return RenderCommand.RENDER_CENSORED


class CensorshipRegion:
    """Censorship state plus the release timer it owns."""

    def __init__(self, delay_seconds: float, scheduler: Scheduler, post) -> None:
        """
        Args:
            delay_seconds: Minimum time between UNCENSOR and normal rendering
            scheduler: Timer provider
            post: Callable used by a fired timer to enqueue its TimerElapsed
        """
        self.delay_seconds = delay_seconds
        self._scheduler = scheduler
        self._post = post
        self.state = CensorshipState.NORMAL
        self._release_timer: TimerHandle | None = None
        self._release_token = 0

    @property
    def render_command(self) -> RenderCommand:
        return render_command_for(self.state)

    @property
    def release_pending(self) -> bool:
        return self._release_timer is not None

    def handle(self, event: ControlEvent) -> bool:
        """Apply CENSOR/UNCENSOR. Returns True when the state changed."""
        return self._apply(CensorshipIntent(event.value))

    def on_timer(self, elapsed: TimerElapsed) -> bool:
        if elapsed.token != self._release_token or self._release_timer is None:
            logger.debug("Ignoring stale release timer (token %d)", elapsed.token)
            return False
        self._release_timer = None
        return self._apply(CensorshipIntent.RELEASE_ELAPSED)

    def close(self) -> None:
        self._disarm()

    def _apply(self, intent: CensorshipIntent) -> bool:
        previous = self.state
        self.state, effect = censorship_transition(previous, intent)
        if effect is CensorshipEffect.ARM_RELEASE:
            self._arm()
        elif effect is CensorshipEffect.DISARM_RELEASE:
            self._disarm()
        if self.state is not previous:
            logger.info("Censorship %s -> %s", previous.value, self.state.value)
            return True
        return False

    def _arm(self) -> None:
        self._disarm()
        self._release_token += 1
        elapsed = TimerElapsed(TimerKind.RELEASE, self._release_token)
        self._release_timer = self._scheduler.call_later(
            self.delay_seconds, lambda: self._post(elapsed)
        )

    def _disarm(self) -> None:
        if self._release_timer is not None:
            self._release_timer.cancel()
            self._release_timer = None
            # Invalidate an elapsed event that may already be queued
            self._release_token += 1
