"""Structured logging configuration with structlog."""

import logging

import structlog

from streakbet.config import Settings

# Libraries that log every statement or connection at INFO.
_NOISY_LOGGERS = ("sqlalchemy.engine", "aiosqlite", "arq.worker")


def _renderer(settings: Settings) -> structlog.types.Processor:
    if settings.log_format == "json":
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(colors=settings.environment == "development")


def setup_logging(settings: Settings) -> None:
    """Configure structlog and tag every event with the engine's identity.

    Settlement and expiry events carry ``service``, ``environment`` and
    ``version`` so audit consumers can tell deployments apart.
    """
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            _renderer(settings),
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(
        service="streakbet",
        environment=settings.environment,
        version=settings.app_version,
    )

    level = getattr(logging, settings.log_level.upper(), logging.INFO)
    logging.basicConfig(level=level)
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))
