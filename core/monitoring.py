"""Tool Ledger — Error Monitoring.

Provides a capture_exception function used wherever a failure indicates
a bug rather than bad input (consistency violations). When Sentry is
configured the exception is forwarded; it is always logged to structlog.

Usage:
    from core.monitoring import capture_exception

    try:
        check_invariants(tool)
    except ConsistencyViolation as e:
        capture_exception(e, context={"tool_id": tool.tool_id})
        raise

Configuration:
    SENTRY_DSN=https://xxx@sentry.io/yyy
"""

from __future__ import annotations

import os
from typing import Any

from logger import get_logger

logger = get_logger("monitoring")

# =============================================================================
# Sentry Configuration
# =============================================================================

_sentry_initialized = False


def init_sentry(dsn: str | None = None) -> bool:
    """Initialize Sentry SDK if a DSN is configured.

    Returns:
        True if Sentry is active after the call.
    """
    global _sentry_initialized

    if _sentry_initialized:
        return True

    dsn = dsn or os.getenv("SENTRY_DSN")
    if not dsn:
        logger.debug("sentry_not_configured", action="log_only")
        return False

    try:
        import sentry_sdk
    except ImportError:
        logger.warning("sentry_sdk_not_installed", action="log_only")
        return False

    sentry_sdk.init(
        dsn=dsn,
        traces_sample_rate=0.0,
        environment=os.getenv("ENVIRONMENT", "development"),
    )
    _sentry_initialized = True
    logger.info("sentry_initialized")
    return True


def capture_exception(
    exception: BaseException,
    context: dict[str, Any] | None = None,
) -> None:
    """Capture an exception for error monitoring.

    Args:
        exception: The exception to capture.
        context: Optional additional context to attach.
    """
    logger.error(
        "exception_captured",
        error_type=type(exception).__name__,
        error=str(exception),
        context=context,
    )

    if not _sentry_initialized:
        return

    import sentry_sdk

    sentry_sdk.capture_exception(exception, extras=context or {})
