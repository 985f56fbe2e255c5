"""
Infrastructure layer - logging, settings, and error types.

This layer contains the technical concerns shared by the runtime,
the engine bindings and the operator surfaces.
"""

from .exceptions import (
    ConfigurationError,
    EngineError,
    EngineUnavailableError,
    StreamDelayError,
)

__all__ = [
    "StreamDelayError",
    "ConfigurationError",
    "EngineUnavailableError",
    "EngineError",
]
