"""
Centralized structured logging for the auth service.

This module sets up structured logging with:
- Settings-driven configuration (dev vs production)
- JSON formatting for production, pretty console for development
- Redaction of secrets (passwords, tokens, OTP codes) from every event
- IP hashing and phone masking helpers for privacy in production

setup_logging() is called once from create_app(); get_logger() is safe to
call at import time because structlog binds lazily.
"""

from __future__ import annotations

import hashlib
import logging
import sys
from datetime import datetime, timezone
from typing import Optional

import structlog
from structlog.stdlib import BoundLogger
from structlog.types import EventDict, Processor

# Flipped by setup_logging(); controls hash_ip / mask_phone behaviour
_IS_PRODUCTION = False

# Sensitive fields to redact from logs
REDACTED_FIELDS = {
    "password",
    "new_password",
    "password_hash",
    "token",
    "access_token",
    "refresh_token",
    "otp_code",
    "code_hash",
    "token_hash",
    "authorization",
    "cookie",
    "secret",
}

_SENSITIVE_FRAGMENTS = ("password", "secret")
_PASSTHROUGH_KEYS = {"level", "event", "timestamp", "logger"}


def get_logger(name: str) -> BoundLogger:
    """
    Get a configured logger instance.

    Example:
        >>> log = get_logger(__name__)
        >>> log.info("password_login_succeeded", identity_id="65f...")
    """
    return structlog.get_logger(name)


def hash_ip(ip_address: Optional[str]) -> Optional[str]:
    """
    Hash IP address for privacy in production.

    In production: Returns SHA-256 hash (first 16 chars).
    In development: Returns the original IP for easier debugging.
    """
    if ip_address is None:
        return None
    if _IS_PRODUCTION and ip_address:
        return hashlib.sha256(ip_address.encode()).hexdigest()[:16]
    return ip_address


def mask_phone(phone: Optional[str]) -> Optional[str]:
    """Mask the middle digits of a phone number: ``+98912***4567``."""
    if not phone:
        return phone
    if len(phone) <= 7:
        return "***"
    return f"{phone[:6]}***{phone[-4:]}"


def add_timestamp(
    logger: logging.Logger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Add ISO format timestamp to event dict."""
    event_dict["timestamp"] = datetime.now(timezone.utc).isoformat()
    return event_dict


def redact_sensitive_fields(
    logger: logging.Logger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Redact sensitive fields from logs."""
    for key in list(event_dict.keys()):
        if key in _PASSTHROUGH_KEYS:
            continue
        lowered = key.lower()
        if lowered in REDACTED_FIELDS or any(
            fragment in lowered for fragment in _SENSITIVE_FRAGMENTS
        ):
            event_dict[key] = "***REDACTED***"
    return event_dict


def configure_structlog(log_format: str) -> None:
    """
    Configure structlog with appropriate processors for the environment.

    Production: JSON formatting for easy parsing
    Development: Pretty console formatting with colors
    """
    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        add_timestamp,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        redact_sensitive_fields,
        structlog.processors.format_exc_info,
    ]

    if log_format == "json":
        renderer: Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(
            colors=True,
            pad_event=15,
            sort_keys=False,
        )

    structlog.configure(
        processors=shared_processors + [renderer],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def configure_stdlib_logging(log_level: str) -> None:
    """Route stdlib logging to stdout at the configured level."""
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper(), logging.INFO),
    )

    # Reduce noise from third-party libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("pymongo").setLevel(logging.WARNING)
    logging.getLogger("pymongo.connection").setLevel(logging.WARNING)
    logging.getLogger("pymongo.serverSelection").setLevel(logging.WARNING)
    logging.getLogger("pymongo.topology").setLevel(logging.WARNING)


def setup_logging(settings) -> None:
    """
    Initialize logging system for the application.

    Args:
        settings: A ``config.LoggingSettings`` instance.
    """
    global _IS_PRODUCTION
    _IS_PRODUCTION = settings.env == "production"

    configure_stdlib_logging(settings.log_level)
    configure_structlog(settings.log_format)

    get_logger(__name__).info(
        "logging_initialized",
        env=settings.env,
        log_level=settings.log_level,
        log_format=settings.log_format,
    )


__all__ = [
    "get_logger",
    "hash_ip",
    "mask_phone",
    "setup_logging",
    "configure_structlog",
    "redact_sensitive_fields",
]
