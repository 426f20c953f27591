"""
Structured logging configuration using structlog.
"""
import logging

import structlog
from app.config import settings


def configure_logging():
    """
    Configure structured logging for the POS ingestion service.
    JSON lines in production so webhook traces can be shipped as-is,
    console formatting everywhere else.
    """
    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
    ]

    if settings.app_environment == "production":
        processors.append(structlog.processors.format_exc_info)
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, settings.log_level.upper(), logging.INFO)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=False,
    )


def bind_webhook_context(vendor: str, **fields):
    """
    Bind per-request fields (vendor, restaurant, event id) so every log line
    emitted while handling one webhook carries them.
    """
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(vendor=vendor, **fields)
