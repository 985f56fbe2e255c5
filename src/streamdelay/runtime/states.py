"""
State, event and snapshot types shared by the controller regions.

Two regions run side by side: the censorship region (what the engine should
render) and the stream region (whether an engine is running). Their values
are plain enums; the controller combines them into an immutable Snapshot
after every processed event.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any


class ControlEvent(str, Enum):
    """Operator intents accepted by :meth:`StreamController.send`."""

    START = "START"
    STOP = "STOP"
    CENSOR = "CENSOR"
    UNCENSOR = "UNCENSOR"

    @classmethod
    def parse(cls, value: ControlEvent | str) -> ControlEvent:
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).upper())
        except ValueError:
            raise ValueError(f"Unknown control event: {value!r}") from None


class CensorshipState(Enum):
    """Censorship region states"""

    NORMAL = "normal"
    CENSORED_ACTIVE = "censored.active"
    CENSORED_DEACTIVATING = "censored.deactivating"

    @property
    def is_censored(self) -> bool:
        return self is not CensorshipState.NORMAL


class StreamState(Enum):
    """Stream region states"""

    STOPPED = "stopped"
    WAITING = "running.waiting"
    STARTED = "running.started"
    RESTARTING = "restarting"
    ERROR = "error"

    @property
    def is_running(self) -> bool:
        return self in (StreamState.WAITING, StreamState.STARTED)


class TimerKind(Enum):
    RELEASE = "release"  # censored.deactivating -> normal
    RESTART = "restart"  # restarting -> running.waiting


@dataclass(frozen=True)
class TimerElapsed:
    """Posted by a fired timer. Ignored unless ``token`` is still current."""

    kind: TimerKind
    token: int


def _nested(value: str) -> str | dict[str, str]:
    parent, _, child = value.partition(".")
    return {parent: child} if child else parent


@dataclass(frozen=True)
class Snapshot:
    """Point-in-time view of the controller, compared by value."""

    censorship: CensorshipState
    stream: StreamState
    start_time: float | None
    delay_seconds: float
    restart_seconds: float
    generation: int = 0
    error: str | None = None

    @property
    def is_censored(self) -> bool:
        return self.censorship.is_censored

    @property
    def is_stream_running(self) -> bool:
        return self.stream.is_running

    @property
    def state_value(self) -> dict[str, Any]:
        """Nested state value, e.g. ``{"censorship": {"censored": "active"}, ...}``."""
        return {
            "censorship": _nested(self.censorship.value),
            "stream": _nested(self.stream.value),
        }

    def to_status(self) -> dict[str, Any]:
        """Wire shape used by the HTTP and WebSocket API."""
        return {
            "delaySeconds": self.delay_seconds,
            "restartSeconds": self.restart_seconds,
            "isCensored": self.is_censored,
            "isStreamRunning": self.is_stream_running,
            "startTime": int(self.start_time * 1000) if self.start_time is not None else None,
            "state": self.state_value,
            "error": self.error,
        }
