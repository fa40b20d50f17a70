"""Structured logging setup using structlog."""

from __future__ import annotations

import logging
import re
import sys
from typing import Any

import structlog

_KEY_PARAM = re.compile(r"([?&]key=)[^&\s]+")


def redact_api_key(_logger: Any, _method: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """Mask ``key=...`` query parameters in any string value."""
    for name, value in event_dict.items():
        if isinstance(value, str) and "key=" in value:
            event_dict[name] = _KEY_PARAM.sub(r"\1***", value)
    return event_dict


def setup_logging(level: str = "INFO") -> None:
    """Configure structlog with console output.

    Logs go to stderr; stdout carries the streamed model text.
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            redact_api_key,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )


def bind_turn(**context: Any) -> None:
    """Attach per-turn context (model, streaming, ...) to every log line."""
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(**context)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a named logger instance."""
    return structlog.get_logger(name)
