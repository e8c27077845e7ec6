"""Structured logging for the API and worker processes.

Every record carries the service name, its version and the process role, so
API and worker output can share one log stream.
"""

import logging
import sys
from typing import Any

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

from flakeguard.core.config import Settings, get_settings

DEPENDENCY_LOGGERS = ("aio_pika", "aiormq", "httpx", "httpcore", "uvicorn.access")


class ServiceContext:
    """Processor stamping service identity onto each event."""

    def __init__(self, service: str, version: str, role: str):
        self._fields = {"service": service, "version": version, "role": role}

    def __call__(self, logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
        for name, value in self._fields.items():
            event_dict.setdefault(name, value)
        return event_dict


def setup_logging(role: str = "api", settings: Settings | None = None) -> None:
    """Configure structlog and the standard library loggers for one process.

    Args:
        role: Process role recorded on every event ("api" or "worker")
        settings: Settings to read levels from; the cached settings by default
    """
    settings = settings or get_settings()
    level = getattr(logging, settings.log_level)

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        ServiceContext(settings.app_name.lower(), settings.app_version, role),
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]

    if settings.debug:
        renderer: list[Processor] = [structlog.dev.ConsoleRenderer(colors=True)]
    else:
        renderer = [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]

    structlog.configure(
        processors=[*shared_processors, *renderer],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stdout),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)
    quiet_dependencies(settings.dependency_log_level)


def quiet_dependencies(level_name: str) -> None:
    """Raise the threshold of chatty client libraries independently of our own level."""
    level = getattr(logging, level_name)
    for name in DEPENDENCY_LOGGERS:
        logging.getLogger(name).setLevel(level)


def get_logger(name: str | None = None, **initial_values: Any) -> structlog.stdlib.BoundLogger:
    """Get a logger instance with optional initial context values.

    Args:
        name: Logger name (optional)
        **initial_values: Initial context values to bind

    Returns:
        Bound logger instance
    """
    logger = structlog.get_logger(name)
    if initial_values:
        logger = logger.bind(**initial_values)
    return logger
