"""
Stream configuration data structures.

Defines StreamSettings: the immutable settings a controller is created with.
Timing fields drive the controller; everything else is passed through
untouched to the engine factory.
"""

from __future__ import annotations

from dataclasses import dataclass, fields, replace
from typing import Any, Literal

from streamdelay.infra.exceptions import ConfigurationError

Encoder = Literal["x264", "nvenc", "none"]

ENCODERS: tuple[str, ...] = ("x264", "nvenc", "none")


@dataclass(frozen=True)
class StreamSettings:
    """
    Settings for one stream session.

    delay_seconds and restart_seconds are read by the controller. The rest
    describe the media graph and are only interpreted by the engine binding.
    """

    delay_seconds: float = 15.0
    restart_seconds: float = 3.0

    width: int = 1920
    height: int = 1080
    srt_in_uri: str | None = None
    in_pipeline: str | None = None
    out_uri: str | None = None
    out_pipeline: str | None = None
    out_script: str | None = None
    bitrate: int = 4500
    encoder: Encoder = "x264"
    x264_preset: str = "slow"
    x264_psy_tune: str = "none"
    x264_threads: int = 0
    nvenc_preset: str = "low-latency-hq"
    pixelize_scale: int = 20
    overlay_img: str = ""
    debug: bool = False

    def __post_init__(self) -> None:
        if self.delay_seconds < 0:
            raise ConfigurationError("delay_seconds must be non-negative")
        if self.restart_seconds < 0:
            raise ConfigurationError("restart_seconds must be non-negative")

    @classmethod
    def field_names(cls) -> tuple[str, ...]:
        return tuple(f.name for f in fields(cls))

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> StreamSettings:
        """
        Deserialize from a dict (e.g. a parsed TOML/JSON config file).

        Keys may be snake_case (``delay_seconds``) or kebab-case
        (``delay-seconds``). Unknown keys are ignored so a single config file
        can also carry API options.
        """
        known = set(cls.field_names())
        values: dict[str, Any] = {}
        for key, value in data.items():
            name = key.replace("-", "_")
            if name in known:
                values[name] = value
        return cls(**values)

    def merged(self, overrides: dict[str, Any]) -> StreamSettings:
        """Return a copy with every non-None override applied."""
        known = set(self.field_names())
        changes = {k: v for k, v in overrides.items() if k in known and v is not None}
        return replace(self, **changes)

    def to_dict(self) -> dict[str, Any]:
        return {name: getattr(self, name) for name in self.field_names()}
