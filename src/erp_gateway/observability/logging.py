"""Structured logging configuration for the ERP gateway.

This module provides structured logging using structlog to emit
JSON-formatted logs with contextual information. Events use dotted names
(``upstream.attempt``, ``upstream.backoff``, ``dedup.replay``,
``queue.admitted``) and carry the request id bound by the HTTP surface
through ``structlog.contextvars``.

Examples:
    Configure logging::

        from erp_gateway.observability.logging import configure_logging

        configure_logging(level="INFO", json_output=True)

    Use the logger::

        from erp_gateway.observability.logging import get_logger

        logger = get_logger(__name__)
        logger.info(
            "upstream.attempt",
            path="/pedido/nuevopedido",
            attempt=2,
            classification="retryable",
        )

    Output (JSON)::

        {
            "event": "upstream.attempt",
            "path": "/pedido/nuevopedido",
            "attempt": 2,
            "classification": "retryable",
            "request_id": "9b1f...",
            "timestamp": "2024-01-01T00:00:00.000000Z",
            "level": "info"
        }
"""

import logging
import sys
from typing import Any

import structlog

_SILENCED_LOGGERS = ("httpx", "httpcore")


def configure_logging(
    level: str = "INFO",
    json_output: bool = True,
) -> None:
    """Configure structured logging for the gateway process.

    Call once at startup. Chatty third-party HTTP loggers are raised to
    WARNING so upstream round trips are reported only through the
    gateway's own ``upstream.*`` events.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_output: If True, emit JSON logs; if False, use console format
    """
    numeric_level = getattr(logging, level.upper())
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=numeric_level,
    )
    for name in _SILENCED_LOGGERS:
        logging.getLogger(name).setLevel(max(numeric_level, logging.WARNING))

    processors: list[object] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
    ]

    if json_output:
        processors.extend(
            [
                structlog.processors.format_exc_info,
                structlog.processors.JSONRenderer(),
            ]
        )
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    structlog.configure(
        processors=processors,  # type: ignore[arg-type]
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> Any:
    """Get a structured logger instance.

    Args:
        name: Logger name (typically __name__ from the calling module)

    Examples:
        >>> logger = get_logger(__name__)
        >>> logger.info("queue.admitted", depth=3)
    """
    return structlog.get_logger(name)


def bind_request_context(**values: Any) -> None:
    """Bind values (request id, route) to every log event of the current task."""
    structlog.contextvars.bind_contextvars(**values)


def clear_request_context() -> None:
    structlog.contextvars.clear_contextvars()
