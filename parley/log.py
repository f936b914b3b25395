"""Structured logging setup.

Call :func:`configure_logging` once at process start (the API app and the
CLI both do).  Other modules use ``structlog.get_logger(__name__)`` and never
reconfigure the library.
"""

from __future__ import annotations

import logging
import os

import structlog
from structlog.contextvars import bind_contextvars, clear_contextvars

__all__ = [
    "configure_logging",
    "bind_request_context",
    "clear_request_context",
]

_configured = False


def configure_logging(force: bool = False) -> None:
    """Configure structlog with a stdlib bridge.

    JSON output by default; set ``PARLEY_LOG_PRETTY=1`` for a console renderer.
    ``PARLEY_LOG_LEVEL`` selects the root level (default ``INFO``).
    """
    global _configured
    if _configured and not force:
        return

    level_name = os.getenv("PARLEY_LOG_LEVEL", "INFO").upper()
    pretty = os.getenv("PARLEY_LOG_PRETTY", "0").lower() in {"1", "true", "yes"}
    renderer = structlog.dev.ConsoleRenderer() if pretty else structlog.processors.JSONRenderer()

    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=[structlog.contextvars.merge_contextvars],
        processors=[
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            renderer,
        ],
    )

    root_logger = logging.getLogger()
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
    handler = logging.StreamHandler()
    handler.setFormatter(formatter)
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, level_name, logging.INFO))

    structlog.configure(
        processors=shared_processors + [renderer],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
    _configured = True


def bind_request_context(**ids: str | None) -> None:
    """Bind correlation identifiers for every subsequent log line in this task."""
    payload = {key: value for key, value in ids.items() if value}
    if payload:
        bind_contextvars(**payload)


def clear_request_context() -> None:
    clear_contextvars()
