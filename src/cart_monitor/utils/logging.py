"""Structured logging setup using structlog."""

from __future__ import annotations

import logging
import sys
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any

import structlog


if TYPE_CHECKING:
    from collections.abc import Iterator


# Chatty third-party loggers kept at WARNING unless DEBUG is requested
_NOISY_LOGGERS = ("nodriver", "websockets", "uc", "sqlalchemy.engine")


def setup_logging(level: str = "INFO", json_format: bool = False) -> None:
    """Configure structured logging.

    Log lines go to stderr so that machine-readable command output on stdout
    stays parseable.
    """
    numeric_level = getattr(logging, level.upper())
    logging.basicConfig(format="%(message)s", stream=sys.stderr, level=numeric_level)
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(
            logging.DEBUG if numeric_level == logging.DEBUG else logging.WARNING
        )

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]

    if json_format:
        processors.append(structlog.processors.format_exc_info)
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.BoundLogger:
    """Get a logger instance."""
    return structlog.get_logger(name)


@contextmanager
def bound_context(**values: Any) -> Iterator[None]:
    """Bind account/product identifiers to every log line inside the block."""
    tokens = structlog.contextvars.bind_contextvars(**values)
    try:
        yield
    finally:
        structlog.contextvars.reset_contextvars(**tokens)
