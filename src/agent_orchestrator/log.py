"""structlog configuration for the orchestrator and its library loggers."""

from __future__ import annotations

import logging
import sys

import structlog

# Libraries that log through stdlib logging; kept at WARNING unless DEBUG is asked for
_LIBRARY_LOGGERS = ("apscheduler", "httpx", "anthropic", "openai", "aiosqlite")


def _processors(json: bool) -> list:
    shared = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]
    if json:
        return [*shared, structlog.processors.dict_tracebacks, structlog.processors.JSONRenderer()]
    return [*shared, structlog.dev.ConsoleRenderer()]


def setup_logging(level: str = "INFO", json: bool = False) -> None:
    """Configure structlog.

    Console rendering by default; ``json=True`` emits one JSON object per
    line for log shippers. Session ids bound with
    ``structlog.contextvars.bound_contextvars`` appear on every event.
    """
    log_level = logging.getLevelName(level.upper())
    if not isinstance(log_level, int):
        log_level = logging.INFO

    structlog.configure(
        processors=_processors(json),
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(stream=sys.stderr, level=log_level, format="%(levelname)s %(name)s: %(message)s")
    library_level = logging.DEBUG if log_level <= logging.DEBUG else logging.WARNING
    for name in _LIBRARY_LOGGERS:
        logging.getLogger(name).setLevel(library_level)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
