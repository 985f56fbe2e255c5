"""
Custom exceptions for streamdelay.

This module provides the exception classes used across the controller,
the engine bindings and the operator-facing surfaces.
"""


class StreamDelayError(Exception):
    """Base exception for all streamdelay errors."""

    pass


class ConfigurationError(StreamDelayError):
    """Raised when settings cannot describe a working engine.

    Treated as an operator mistake: the stream enters ``error`` and is never
    retried automatically.
    """

    pass


class EngineUnavailableError(ConfigurationError):
    """Raised when the media engine runtime (GStreamer bindings) is missing."""

    pass


class EngineError(StreamDelayError):
    """Raised when a running engine fails."""

    pass
