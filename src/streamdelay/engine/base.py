"""
Engine Protocol (External Collaborator)

The engine is the media-processing subsystem that ingests the stream, holds
it in the delay buffer, renders it normally or redacted, and sends it on.
The controller treats it as an opaque, fallible, restartable process.

Each spawn is one *generation*. A generation gets its own EngineChannel for
lifecycle events and returns an EngineHandle for commands and teardown:

- commands flow controller -> handle via ``EngineHandle.send``
- events flow handle -> controller via ``EngineChannel.started/ended``
- ``EngineHandle.stop`` ends the generation; the channel is closed first so
  nothing is delivered afterwards

Boundaries:
- Engine IS allowed to: build and run the media graph, report lifecycle
- Engine IS NOT allowed to: decide censorship, restart itself, hold on to
  controller state
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Protocol, Union

from streamdelay.runtime.config import StreamSettings

logger = logging.getLogger(__name__)


class RenderCommand(Enum):
    """Commands accepted by a started engine"""

    RENDER_NORMAL = "RENDER_NORMAL"
    RENDER_CENSORED = "RENDER_CENSORED"


@dataclass(frozen=True)
class EngineStarted:
    """The engine is producing output and accepts render commands."""

    generation: int


@dataclass(frozen=True)
class EngineEnded:
    """The engine stopped on its own (EOS, error, output script exit)."""

    generation: int
    reason: str = ""


EngineEvent = Union[EngineStarted, EngineEnded]


class EngineChannel:
    """Event side of one engine generation.

    Safe to call from any thread. Once :meth:`close` returns, further
    emissions are dropped.
    """

    def __init__(self, generation: int, post: Callable[[EngineEvent], None]) -> None:
        self.generation = generation
        self._post = post
        self._closed = False
        self._lock = threading.Lock()

    @property
    def closed(self) -> bool:
        return self._closed

    def started(self) -> None:
        self._emit(EngineStarted(self.generation))

    def ended(self, reason: str = "") -> None:
        self._emit(EngineEnded(self.generation, reason))

    def close(self) -> None:
        with self._lock:
            self._closed = True

    def _emit(self, event: EngineEvent) -> None:
        with self._lock:
            if self._closed:
                logger.debug("Dropping %s from closed generation %d", event, self.generation)
                return
            self._post(event)


class EngineHandle(Protocol):
    """Running engine instance owned by the stream region."""

    def send(self, command: RenderCommand) -> None:
        """Apply a render command. Best effort."""
        ...

    def stop(self) -> None:
        """Release every resource. Idempotent."""
        ...


class EngineFactory(Protocol):
    """Spawns engine generations.

    May raise ConfigurationError synchronously; asynchronous failures are
    reported through ``channel.ended``.
    """

    def __call__(self, settings: StreamSettings, channel: EngineChannel) -> EngineHandle:
        ...
