"""Structured logging for the feed API and the encoding worker, using structlog."""

import logging
import sys
from typing import Any

import structlog

from pawfeed.config import settings

# Signed storage URLs grant access until they expire; token claims may carry contact details
SENSITIVE_KEYS = frozenset({"authorization", "token", "upload_url", "play_url", "email", "phone"})
REDACTED = "***REDACTED***"


def redact_sensitive_data(data: dict[str, Any]) -> dict[str, Any]:
    """Copy of ``data`` with sensitive keys masked, nested dicts and lists included."""
    redacted = {}
    for key, value in data.items():
        if key.lower() in SENSITIVE_KEYS:
            redacted[key] = REDACTED
        elif isinstance(value, dict):
            redacted[key] = redact_sensitive_data(value)
        elif isinstance(value, list):
            redacted[key] = [
                redact_sensitive_data(item) if isinstance(item, dict) else item
                for item in value
            ]
        else:
            redacted[key] = value
    return redacted


def redact_event(logger, method_name, event_dict):
    return redact_sensitive_data(event_dict)


def configure_logging():
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, settings.log_level.upper()),
    )

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        redact_event,
    ]

    if settings.log_format == "json":
        processors.extend([
            structlog.processors.format_exc_info,
            # Korean tags and titles stay readable
            structlog.processors.JSONRenderer(ensure_ascii=False),
        ])
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty()))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


configure_logging()

logger = structlog.get_logger()
