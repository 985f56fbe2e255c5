"""
Logging configuration for streamdelay.

This module configures structlog for JSON (or console) logging and routes
records from stdlib loggers through the same processor chain, so modules
that use ``logging.getLogger(__name__)`` render identically.
"""

from __future__ import annotations

import logging
import re
from typing import Any

import structlog

from .settings import settings

# Keys whose values are always masked
SECRET_KEYS = [
    "api_key",
    "apikey",
    "token",
    "password",
    "passphrase",
    "secret",
]

# Patterns to redact in string values
SECRET_PATTERNS = [
    r"://[^:/@\s]+:[^@\s]+@",  # URLs with credentials
    r"passphrase=[^&\s]+",  # SRT passphrase parameters
    r"token=[^&\s]+",  # Token parameters
    r"password=[^&\s]+",  # Password parameters
    r"key=[^&\s]+",  # API key query parameters
]


def _mask(match: re.Match[str]) -> str:
    text = match.group(0)
    if text.startswith("://"):
        return "://***@"
    return text.split("=")[0] + "=***"


def redact_secrets(_, __, event_dict: dict[str, Any]) -> dict[str, Any]:
    """Redact sensitive information from log events."""

    def redact_value(value: Any) -> Any:
        if isinstance(value, str):
            for pattern in SECRET_PATTERNS:
                value = re.sub(pattern, _mask, value)
            return value
        elif isinstance(value, dict):
            return {k: redact_value(v) for k, v in value.items()}
        elif isinstance(value, list):
            return [redact_value(item) for item in value]
        return value

    # Redact based on key names
    for key in list(event_dict.keys()):
        if any(secret in key.lower() for secret in SECRET_KEYS):
            event_dict[key] = "***REDACTED***"
        else:
            event_dict[key] = redact_value(event_dict[key])

    return event_dict


def _shared_processors() -> list[Any]:
    return [
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        redact_secrets,  # Redact secrets before rendering
    ]


def configure_logging(level: str | None = None, fmt: str | None = None) -> None:
    """Configure structlog and the stdlib root logger.

    ``level`` and ``fmt`` default to ``LOG_LEVEL`` / ``LOG_FORMAT`` from settings.
    ``fmt`` is ``json`` or ``console``.
    """
    level = (level or settings.log_level).upper()
    fmt = (fmt or settings.log_format).lower()

    renderer: Any
    if fmt == "console":
        renderer = structlog.dev.ConsoleRenderer()
    else:
        renderer = structlog.processors.JSONRenderer()

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            *_shared_processors(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=_shared_processors(),
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )
    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(level)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a configured logger with service context."""
    logger = structlog.get_logger(name)
    return logger.bind(service="streamdelay", env=settings.env)
