"""
Censorship region: transition table and release timer handling.
"""

from __future__ import annotations

import pytest

from streamdelay.engine.base import RenderCommand
from streamdelay.runtime.censorship import (
    CensorshipEffect,
    CensorshipIntent,
    CensorshipRegion,
    censorship_transition,
    render_command_for,
)
from streamdelay.runtime.states import CensorshipState, ControlEvent, TimerElapsed, TimerKind

NORMAL = CensorshipState.NORMAL
ACTIVE = CensorshipState.CENSORED_ACTIVE
DEACTIVATING = CensorshipState.CENSORED_DEACTIVATING


@pytest.mark.parametrize(
    "state,intent,expected",
    [
        (NORMAL, CensorshipIntent.CENSOR, (ACTIVE, None)),
        (ACTIVE, CensorshipIntent.CENSOR, (ACTIVE, None)),
        (DEACTIVATING, CensorshipIntent.CENSOR, (ACTIVE, CensorshipEffect.DISARM_RELEASE)),
        (NORMAL, CensorshipIntent.UNCENSOR, (NORMAL, None)),
        (ACTIVE, CensorshipIntent.UNCENSOR, (DEACTIVATING, CensorshipEffect.ARM_RELEASE)),
        (DEACTIVATING, CensorshipIntent.UNCENSOR, (DEACTIVATING, CensorshipEffect.ARM_RELEASE)),
        (DEACTIVATING, CensorshipIntent.RELEASE_ELAPSED, (NORMAL, None)),
        (ACTIVE, CensorshipIntent.RELEASE_ELAPSED, (ACTIVE, None)),
    ],
)
def test_transition_table(state, intent, expected):
    assert censorship_transition(state, intent) == expected


def test_render_command_follows_censored_flag():
    assert render_command_for(NORMAL) is RenderCommand.RENDER_NORMAL
    assert render_command_for(ACTIVE) is RenderCommand.RENDER_CENSORED
    assert render_command_for(DEACTIVATING) is RenderCommand.RENDER_CENSORED


# ---------------------------------------------------------------------------
# Region
# ---------------------------------------------------------------------------


@pytest.fixture
def posted():
    return []


@pytest.fixture
def region(scheduler, posted):
    return CensorshipRegion(15, scheduler, posted.append)


def test_uncensor_arms_release_timer(region, scheduler, posted):
    region.handle(ControlEvent.CENSOR)
    assert region.handle(ControlEvent.UNCENSOR) is True
    assert region.state is DEACTIVATING
    assert region.release_pending

    scheduler.advance(15)
    assert posted == [TimerElapsed(TimerKind.RELEASE, 1)]
    assert region.on_timer(posted[0]) is True
    assert region.state is NORMAL
    assert not region.release_pending


def test_censor_cancels_pending_release(region, scheduler, posted):
    region.handle(ControlEvent.CENSOR)
    region.handle(ControlEvent.UNCENSOR)
    region.handle(ControlEvent.CENSOR)
    assert region.state is ACTIVE
    assert scheduler.pending == 0

    scheduler.advance(30)
    assert posted == []


def test_repeated_uncensor_rearms_release(region, scheduler, posted):
    region.handle(ControlEvent.CENSOR)
    region.handle(ControlEvent.UNCENSOR)
    scheduler.advance(10)
    assert region.handle(ControlEvent.UNCENSOR) is False
    assert region.state is DEACTIVATING

    scheduler.advance(5)
    assert posted == []

    scheduler.advance(10)
    [elapsed] = posted
    assert region.on_timer(elapsed) is True
    assert region.state is NORMAL


def test_stale_release_is_ignored(region, scheduler, posted):
    region.handle(ControlEvent.CENSOR)
    region.handle(ControlEvent.UNCENSOR)
    scheduler.advance(15)
    stale = posted.pop()

    # CENSOR processed before the queued release
    region.handle(ControlEvent.CENSOR)
    assert region.on_timer(stale) is False
    assert region.state is ACTIVE


def test_repeated_censor_reports_no_change(region):
    assert region.handle(ControlEvent.CENSOR) is True
    assert region.handle(ControlEvent.CENSOR) is False


def test_close_cancels_timer(region, scheduler, posted):
    region.handle(ControlEvent.CENSOR)
    region.handle(ControlEvent.UNCENSOR)
    region.close()
    scheduler.advance(20)
    assert posted == []
