"""
Global test configuration for streamdelay.

This module provides global pytest configuration and fixtures: a manual
scheduler, a recording fake engine and stream settings.
"""

from __future__ import annotations

import sys
from pathlib import Path

import pytest
import pytest_asyncio

# Ensure the project src directory is importable without relying on external environment.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_PATH = PROJECT_ROOT / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

from streamdelay.engine.base import EngineChannel, RenderCommand  # noqa: E402
from streamdelay.runtime.clock import ManualScheduler  # noqa: E402
from streamdelay.runtime.config import StreamSettings  # noqa: E402
from streamdelay.runtime.controller import StreamController  # noqa: E402


class FakeEngine:
    """Engine handle that records commands; lifecycle is driven by the test."""

    def __init__(self, settings: StreamSettings, channel: EngineChannel) -> None:
        self.settings = settings
        self.channel = channel
        self.commands: list[RenderCommand] = []
        self.stop_calls = 0

    @property
    def generation(self) -> int:
        return self.channel.generation

    def send(self, command: RenderCommand) -> None:
        self.commands.append(command)

    def stop(self) -> None:
        self.stop_calls += 1

    # Test helpers: emit lifecycle events as the real engine would
    def start_output(self) -> None:
        self.channel.started()

    def fail(self, reason: str = "error: boom") -> None:
        self.channel.ended(reason)


class FakeEngineFactory:
    """EngineFactory that records every spawned FakeEngine.

    Set ``fail_with`` to an exception to make the next spawns raise it.
    """

    def __init__(self) -> None:
        self.engines: list[FakeEngine] = []
        self.fail_with: Exception | None = None
        self.attempts = 0

    def __call__(self, settings: StreamSettings, channel: EngineChannel) -> FakeEngine:
        self.attempts += 1
        if self.fail_with is not None:
            raise self.fail_with
        engine = FakeEngine(settings, channel)
        self.engines.append(engine)
        return engine

    @property
    def latest(self) -> FakeEngine:
        return self.engines[-1]

    @property
    def all_commands(self) -> list[RenderCommand]:
        return [command for engine in self.engines for command in engine.commands]


@pytest.fixture
def scheduler() -> ManualScheduler:
    return ManualScheduler(start=1_000.0)


@pytest.fixture
def engine_factory() -> FakeEngineFactory:
    return FakeEngineFactory()


@pytest.fixture
def stream_settings() -> StreamSettings:
    return StreamSettings(
        delay_seconds=15,
        restart_seconds=3,
        srt_in_uri="srt://127.0.0.1:9000?mode=listener",
        out_uri="rtmp://live.example.com/app/stream-key",
        overlay_img="/tmp/censored.png",
    )


@pytest_asyncio.fixture
async def controller(stream_settings, engine_factory, scheduler):
    """Started controller on the manual scheduler; closed after the test."""
    controller = StreamController(stream_settings, engine_factory, scheduler=scheduler)
    await controller.start()
    yield controller
    await controller.close()
