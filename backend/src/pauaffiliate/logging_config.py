"""Logging configuration.

Every event carries the app name and environment. Bank account numbers are
masked and credentials are dropped before rendering.
"""

import logging
import sys

import structlog

from pauaffiliate.settings import settings

REDACTED_KEYS = {"authorization", "secret_key", "verif_hash", "webhook_secret", "binding_token"}
MASKED_KEYS = {"account_number"}

# Kept at WARNING and above
QUIET_LOGGERS = ("httpx", "httpcore")


def mask_account_number(value) -> str:
    digits = str(value)
    if len(digits) <= 4:
        return "*" * len(digits)
    return "*" * (len(digits) - 4) + digits[-4:]


def redact_sensitive(logger, method_name: str, event_dict: dict) -> dict:
    """Structlog processor hiding credentials and bank account numbers."""
    for key in list(event_dict):
        lowered = key.lower()
        if lowered in REDACTED_KEYS:
            event_dict[key] = "[redacted]"
        elif lowered in MASKED_KEYS and event_dict[key]:
            event_dict[key] = mask_account_number(event_dict[key])
    return event_dict


def _add_service_context(logger, method_name: str, event_dict: dict) -> dict:
    event_dict.setdefault("app", settings.app_name)
    event_dict.setdefault("env", settings.env)
    return event_dict


def _processors(log_format: str) -> list:
    shared = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        _add_service_context,
        redact_sensitive,
    ]
    if log_format == "json":
        return shared + [
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    return shared + [
        structlog.processors.TimeStamper(fmt="%Y-%m-%d %H:%M:%S"),
        structlog.dev.ConsoleRenderer(),
    ]


def configure_logging() -> None:
    """Configure structured logging for the API and the CLI."""
    level = logging.getLevelName(settings.log_level.upper())

    structlog.configure(
        processors=_processors(settings.log_format),
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stdout),
        cache_logger_on_first_use=True,
    )

    # Third-party libraries log through the standard library
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))


def get_logger(name: str) -> structlog.BoundLogger:
    """Get a logger instance."""
    return structlog.get_logger(name)
