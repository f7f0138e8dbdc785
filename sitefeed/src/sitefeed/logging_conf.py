"""
Structured logging configuration using structlog.

Every module logs snake_case events with keyword context, e.g.
``logger.info("source_extracted", source=..., items=...)``. Fetches bind
the source id for their duration so nested component logs carry it too.
"""

import logging
import sys
from contextlib import contextmanager
from typing import Iterator, Optional

import structlog
from structlog.types import Processor

# Libraries whose INFO/DEBUG output drowns out fetch logs
NOISY_LOGGERS = ("httpx", "httpcore", "playwright", "asyncio", "charset_normalizer")


def setup_logging(
    level: Optional[str] = None,
    json_output: Optional[bool] = None,
    run_id: Optional[str] = None,
) -> None:
    """
    Configure structured logging for the application.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR); defaults to settings
        json_output: If True, output logs as JSON; defaults to settings
        run_id: Optional run ID to include in all log entries
    """
    if level is None or json_output is None:
        from .config import get_settings

        settings = get_settings()
        level = level or settings.log_level
        json_output = settings.log_json if json_output is None else json_output

    log_level = getattr(logging, level.upper())
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=log_level)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if json_output:
        renderer: list[Processor] = [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(ensure_ascii=False),
        ]
    else:
        renderer = [structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())]

    structlog.configure(
        processors=shared_processors + renderer,
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    if run_id:
        structlog.contextvars.bind_contextvars(run_id=run_id)


def get_logger(name: str = None) -> structlog.BoundLogger:
    """
    Get a lazily configured logger tagged with ``module=name``.

    The proxy resolves the processor chain on first use, so loggers created
    at import time follow a later ``setup_logging`` call.
    """
    if name:
        return structlog.get_logger(module=name)
    return structlog.get_logger()


@contextmanager
def source_context(source_id: str, **extra) -> Iterator[None]:
    """Tag every log entry inside the block with the source being fetched."""
    with structlog.contextvars.bound_contextvars(source_id=source_id, **extra):
        yield


def bind_context(**kwargs) -> None:
    """Bind additional context (e.g. run or batch id) to subsequent log entries."""
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_context() -> None:
    """Clear all bound context."""
    structlog.contextvars.clear_contextvars()
