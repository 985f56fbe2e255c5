from .base import (
    EngineChannel,
    EngineEnded,
    EngineEvent,
    EngineFactory,
    EngineHandle,
    EngineStarted,
    RenderCommand,
)
from .pipeline import build_pipeline_description

__all__ = [
    "EngineChannel",
    "EngineEnded",
    "EngineEvent",
    "EngineFactory",
    "EngineHandle",
    "EngineStarted",
    "RenderCommand",
    "build_pipeline_description",
]
