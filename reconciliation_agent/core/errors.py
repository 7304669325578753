"""
Error taxonomy and unified error capture with Sentry integration.

Exceptions:
- ConfigurationError: fatal at startup, never retried
- GatewayError (+ GatewayTimeoutError, GatewaySchemaError): upstream failures,
  retried by the retry policy and counted by the circuit breaker
- CircuitOpenError: call short-circuited, no network I/O attempted
- OrderUpdateError: the guarded status update failed in the datastore

Capture helpers:
- Structured logging with run context enrichment (always)
- Sentry forwarding when a DSN was configured

Usage:
    # Capture an exception
    capture_exception(exc, context={"order_id": "ord_123"})

    # Best-effort section: log, capture, suppress
    with ErrorHandler("release_lock"):
        await lock.release(owner_id)
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import sentry_sdk
import structlog
from sentry_sdk.integrations.httpx import HttpxIntegration
from sentry_sdk.integrations.logging import LoggingIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

from reconciliation_agent.core.context import get_context_dict

logger = structlog.get_logger(__name__)

__all__ = [
    "ReconciliationError",
    "ConfigurationError",
    "GatewayError",
    "GatewayTimeoutError",
    "GatewaySchemaError",
    "CircuitOpenError",
    "OrderUpdateError",
    "init_sentry",
    "capture_exception",
    "capture_message",
    "ErrorHandler",
    "is_sentry_enabled",
]


class ReconciliationError(Exception):
    """Base class for all agent errors."""


class ConfigurationError(ReconciliationError):
    """Missing credentials or invalid settings. Fatal at startup."""


class GatewayError(ReconciliationError):
    """
    The payment gateway call failed.

    Attributes:
        status_code: HTTP status when the gateway answered, else None
        retryable: Whether another attempt may succeed
    """

    def __init__(self, message: str, status_code: Optional[int] = None, retryable: bool = True):
        super().__init__(message)
        self.status_code = status_code
        self.retryable = retryable


class GatewayTimeoutError(GatewayError):
    """A single gateway attempt exceeded the per-call timeout."""


class GatewaySchemaError(GatewayError):
    """The gateway answered with a payload that violates the charge schema."""


class CircuitOpenError(ReconciliationError):
    """The circuit breaker rejected the call; nothing was sent upstream."""

    def __init__(self, name: str, retry_after: float = 0.0):
        super().__init__(f"Circuit {name} is open (retry after {retry_after:.1f}s)")
        self.name = name
        self.retry_after = retry_after


class OrderUpdateError(ReconciliationError):
    """The guarded order update (status + audit) could not be applied."""


_sentry_initialized: bool = False


def init_sentry(dsn: str, environment: str = "production", traces_sample_rate: float = 0.0) -> bool:
    """
    Initialize Sentry SDK for error tracking.

    Returns:
        True if initialization successful, False otherwise
    """
    global _sentry_initialized

    if not dsn:
        logger.info("Sentry disabled (no DSN provided)")
        return False

    try:
        sentry_sdk.init(
            dsn=dsn,
            environment=environment,
            traces_sample_rate=traces_sample_rate,
            integrations=[
                HttpxIntegration(),
                SqlalchemyIntegration(),
                LoggingIntegration(level=logging.INFO, event_level=logging.ERROR),
            ],
            ignore_errors=[KeyboardInterrupt, SystemExit],
        )
    except Exception as e:
        logger.error("Failed to initialize Sentry", error=str(e))
        return False

    _sentry_initialized = True
    logger.info("Sentry initialized", environment=environment)
    return True


def is_sentry_enabled() -> bool:
    return _sentry_initialized


def capture_exception(
    exc: BaseException,
    context: Optional[Dict[str, Any]] = None,
    level: str = "error",
    tags: Optional[Dict[str, str]] = None,
) -> Optional[str]:
    """
    Capture an exception with Sentry and structured logging.

    Args:
        exc: Exception to capture
        context: Additional context dict (e.g., {"order_id": "ord_1"})
        level: Severity level (debug, info, warning, error, fatal)
        tags: Additional tags for filtering in Sentry

    Returns:
        Sentry event ID or None if not sent
    """
    enriched_context = {
        **get_context_dict(),
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "error_type": type(exc).__name__,
        **(context or {}),
    }

    logger.error("Exception captured", exc_info=exc, **enriched_context)

    if _sentry_initialized:
        try:
            with sentry_sdk.push_scope() as scope:
                for key, value in enriched_context.items():
                    if value is not None:
                        scope.set_extra(key, value)
                for key, value in (tags or {}).items():
                    scope.set_tag(key, value)
                scope.level = level
                return sentry_sdk.capture_exception(exc)
        except Exception as e:
            logger.warning("Failed to send exception to Sentry", error=str(e))

    return None


def capture_message(
    message: str,
    level: str = "info",
    context: Optional[Dict[str, Any]] = None,
) -> Optional[str]:
    """
    Capture a non-exception event (circuit opened, alert raised, ...).

    Returns:
        Sentry event ID or None if not sent
    """
    enriched_context = {
        **get_context_dict(),
        **(context or {}),
    }

    log_func = getattr(logger, level, logger.info)
    log_func(message, **enriched_context)

    if _sentry_initialized:
        try:
            with sentry_sdk.push_scope() as scope:
                for key, value in enriched_context.items():
                    if value is not None:
                        scope.set_extra(key, value)
                scope.level = level
                return sentry_sdk.capture_message(message, level=level)
        except Exception as e:
            logger.warning("Failed to send message to Sentry", error=str(e))

    return None


class ErrorHandler:
    """
    Context manager for best-effort operations.

    Usage:
        # Suppress and capture errors
        with ErrorHandler("trigger_fulfillment", context={"order_id": order_id}):
            ...

        # Re-raise after capturing
        with ErrorHandler("fetch_pending_orders", reraise=True):
            ...
    """

    def __init__(
        self,
        operation: str,
        context: Optional[Dict[str, Any]] = None,
        capture: bool = True,
        reraise: bool = False,
    ):
        self.operation = operation
        self.context = context or {}
        self.capture = capture
        self.reraise = reraise
        self.error: Optional[BaseException] = None

    def __enter__(self) -> "ErrorHandler":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        if exc_val is None:
            return False
        # Cancellation and interpreter exit are never swallowed
        if not isinstance(exc_val, Exception):
            return False

        self.error = exc_val
        if self.capture:
            capture_exception(exc_val, context={"operation": self.operation, **self.context})
        else:
            logger.warning(
                f"{self.operation} failed",
                error=str(exc_val),
                error_type=type(exc_val).__name__,
                **self.context,
            )
        return not self.reraise

