"""Logging configuration for content-relay.

This module provides structlog configuration and small helpers shared by
the session, spool and bridge code: sanitizing untrusted text coming back
from the engine and binding the MTA queue id to log records.
"""

import logging
import re
from typing import Any

import structlog

NO_QUEUE_ID = "NOQUEUE"


def sanitize_for_log(text: str, max_length: int = 200) -> str:
    """Remove control characters and limit length for safe logging.

    Args:
        text: The text to sanitize.
        max_length: Maximum length of returned string.

    Returns:
        Sanitized text safe for logging.
    """
    if not text:
        return ""
    # ANSI codes first, the control char pass would strip the ESC only
    text = re.sub(r"\x1b\[[0-9;]*m", "", text)
    text = re.sub(r"[\x00-\x1f\x7f]", "", text)
    return text[:max_length]


def queue_logger(logger: Any, queue_id: str | None) -> Any:
    """Bind the message queue id (or NOQUEUE) to a structlog logger."""
    return logger.bind(queue_id=queue_id or NO_QUEUE_ID)


def configure_logging(json_format: bool = False, debug: bool = False) -> None:
    """Configure structlog for the application.

    Args:
        json_format: If True, output JSON logs (for production).
        debug: If True, enable DEBUG level logging.
    """
    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if json_format:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=False))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.DEBUG if debug else logging.INFO
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )
