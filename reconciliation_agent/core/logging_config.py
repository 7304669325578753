"""
Structured logging configuration using structlog.

Provides JSON-formatted logs for production (searchable/aggregatable)
and human-readable colored output for development.

Usage:
    from reconciliation_agent.core.logging_config import configure_logging, get_logger

    configure_logging(level="INFO", json_logs=True)
    logger = get_logger(__name__)
    logger.info("order reconciled", order_id="ord_1", new_status="paid")

Output in production (JSON):
    {"event": "order reconciled", "order_id": "ord_1", "new_status": "paid",
     "run_id": "run_a1b2...", "timestamp": "2024-01-01T12:00:00Z", "level": "info"}
"""

import logging
import sys
from typing import Any, Optional

import structlog

IS_TEST = "pytest" in sys.modules


def configure_logging(level: str = "INFO", json_logs: Optional[bool] = None) -> None:
    """Configure structlog with processors appropriate for the environment."""
    log_level = logging.getLevelName(level.upper())
    if not isinstance(log_level, int):
        log_level = logging.INFO

    shared_processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    if json_logs:
        processors = shared_processors + [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors = shared_processors + [
            structlog.dev.ConsoleRenderer(colors=not IS_TEST),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=not IS_TEST,  # pytest swaps sys.stdout per test
    )

    # Route standard logging (third-party libraries) to the same stream
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=log_level,
    )

    # Reduce noise from chatty libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)
    logging.getLogger("apscheduler").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """
    Get a structured logger instance.

    Args:
        name: Logger name (typically __name__)
    """
    return structlog.get_logger(name)
