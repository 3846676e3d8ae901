"""Tool Ledger — Structured Logging System.

Provides structured JSON logging for production and colored text output
for local development. Secrets and credentials are redacted before
rendering.

Usage:
    from logger import get_logger, configure_logging

    # Initialize at startup
    configure_logging(environment="production")

    # Get a logger
    logger = get_logger(__name__)
    logger.info("maintenance_event_applied", tool_id=42, event_type="regrinding")
"""

from __future__ import annotations

import logging
import re
import sys
from typing import Any

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

# =============================================================================
# Secret Filtering
# =============================================================================

# Patterns that indicate sensitive field names
SENSITIVE_FIELD_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"password", re.IGNORECASE),
    re.compile(r"passwd", re.IGNORECASE),
    re.compile(r"secret", re.IGNORECASE),
    re.compile(r"token", re.IGNORECASE),
    re.compile(r"api[_-]?key", re.IGNORECASE),
    re.compile(r"credential", re.IGNORECASE),
    re.compile(r"private[_-]?key", re.IGNORECASE),
    re.compile(r"dsn$", re.IGNORECASE),
)

# Fields that should never be logged (exact match)
BLOCKLIST_FIELDS: frozenset[str] = frozenset({
    "password",
    "passwd",
    "secret",
    "token",
    "api_key",
    "apikey",
    "private_key",
    "authorization",
    "cookie",
})

# Credentials embedded in connection URLs
URL_CREDENTIALS_PATTERN = re.compile(r"(\w+(?:\+\w+)?://[^:/@\s]+:)[^@\s]+@")

REDACTED = "[REDACTED]"


def _is_sensitive_field(field_name: str) -> bool:
    """Check if a field name indicates sensitive data."""
    if field_name.lower() in BLOCKLIST_FIELDS:
        return True
    return any(pattern.search(field_name) for pattern in SENSITIVE_FIELD_PATTERNS)


def _sanitize_value(value: Any, field_name: str = "") -> Any:
    """Recursively sanitize a value, redacting sensitive data."""
    if _is_sensitive_field(field_name):
        return REDACTED

    if isinstance(value, str):
        return URL_CREDENTIALS_PATTERN.sub(r"\1***@", value)

    if isinstance(value, dict):
        return {k: _sanitize_value(v, k) for k, v in value.items()}

    if isinstance(value, (list, tuple)):
        return type(value)(_sanitize_value(item, field_name) for item in value)

    return value


# =============================================================================
# Structlog Processors
# =============================================================================

def sanitize_sensitive_data(
    logger: WrappedLogger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    """Remove secrets from log entries."""
    return {k: _sanitize_value(v, k) for k, v in event_dict.items()}


def add_service_context(
    logger: WrappedLogger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    """Add service metadata for log aggregation."""
    event_dict["app"] = "tool-ledger"
    event_dict["version"] = "1.0.0"
    return event_dict


def drop_color_message_key(
    logger: WrappedLogger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    """Remove color_message key added by structlog (not needed in JSON)."""
    event_dict.pop("color_message", None)
    return event_dict


# =============================================================================
# Logging Configuration
# =============================================================================

def configure_logging(
    environment: str = "development",
    log_level: str = "INFO",
    json_format: bool | None = None,
) -> None:
    """Configure structured logging for the application.

    Args:
        environment: Deployment environment (development, staging, production).
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        json_format: Force JSON output. If None, auto-detect based on environment.
    """
    use_json = json_format if json_format is not None else (environment != "development")

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        add_service_context,
        sanitize_sensitive_data,
    ]

    if use_json:
        shared_processors.extend([
            drop_color_message_key,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ])
    else:
        shared_processors.extend([
            structlog.dev.ConsoleRenderer(
                colors=True,
                exception_formatter=structlog.dev.rich_traceback,
            ),
        ])

    structlog.configure(
        processors=shared_processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper()),
        force=True,
    )

    # Suppress noisy third-party loggers
    for noisy_logger in ("sqlalchemy.engine", "aiosqlite", "asyncio"):
        logging.getLogger(noisy_logger).setLevel(logging.WARNING)


def configure_from_settings() -> None:
    """Configure logging from the LOG_* settings section."""
    from config import get_settings

    settings = get_settings()
    configure_logging(
        environment=settings.environment,
        log_level=settings.log.level,
        json_format=settings.log.format == "json",
    )


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Get a configured structlog logger.

    Args:
        name: Logger name (typically __name__).

    Returns:
        Configured structlog logger with automatic context injection.
    """
    return structlog.stdlib.get_logger(name)
