"""Logfire setup and structured logging helpers.

Modules log through ``logging.getLogger(__name__)``; Logfire picks the records
up once ``configure_logfire`` has run. Service operations are wrapped in
``span`` and realtime code tags records with ``log_with_session_context``.
"""

import logging

import logfire
from fastapi import FastAPI

from src.core.config import settings


def configure_logfire() -> None:
    """Configure Logfire for this service; nothing is exported without a token."""
    logfire.configure(
        token=settings.logfire_token,
        service_name="wastesync",
        service_version="0.1.0",
        environment=settings.environment,
        send_to_logfire="if-token-present",
    )

    logger = logging.getLogger(__name__)
    logger.info("Logfire configured")


def instrument_fastapi(app: FastAPI) -> None:
    """Trace every request handled by the app."""
    logfire.instrument_fastapi(app)
    logger = logging.getLogger(__name__)
    logger.info("FastAPI instrumentation configured")


def span(name: str) -> logfire.LogfireSpan:
    """Span named after the service operation, e.g. ``task_store.start``."""
    return logfire.span(name)


def log_with_context(
    logger: logging.Logger,
    level: str,
    message: str,
    **context: object,
) -> None:
    """Log ``message`` at ``level`` with the keyword fields as ``extra``."""
    log_method = getattr(logger, level.lower())
    log_method(message, extra=context)


def log_with_session_context(
    logger: logging.Logger,
    level: str,
    message: str,
    session_id: str | None = None,
    user_id: str | None = None,
    **extra: object,
) -> None:
    """Log a message tagged with the realtime session and its user."""
    context: dict[str, object] = dict(extra)
    if session_id:
        context["session_id"] = session_id
    if user_id:
        context["user_id"] = user_id
    log_with_context(logger, level, message, **context)
