"""
Command-line entry point.

Usage:
    reconciliation-agent start          # schedule runs until SIGINT/SIGTERM
    reconciliation-agent once           # single run; exit 0 on success, 1 on error
    reconciliation-agent health         # health report; exit 1 when critical
    reconciliation-agent stats --hours 24
    reconciliation-agent init-db        # create the agent's tables
"""

import argparse
import asyncio
import json
import signal
import sys
from typing import Optional, Sequence

import structlog

from reconciliation_agent.core.config import Settings, load_settings
from reconciliation_agent.core.errors import ConfigurationError, init_sentry
from reconciliation_agent.core.health_check import HealthCheck
from reconciliation_agent.core.logging_config import configure_logging
from reconciliation_agent.core.metrics_persistent import get_execution_stats, get_recent_runs
from reconciliation_agent.core.scheduler import ReconciliationScheduler
from reconciliation_agent.db import create_db_and_tables, create_engine_for_url, create_session_factory
from reconciliation_agent.services.reconciler import build_agent

logger = structlog.get_logger(__name__)


def _setup_observability(settings: Settings) -> None:
    configure_logging(level=settings.LOG_LEVEL or "INFO", json_logs=settings.LOG_JSON or settings.is_production)
    init_sentry(settings.SENTRY_DSN, environment=settings.ENVIRONMENT)


async def run_once(settings: Settings) -> int:
    engine = create_engine_for_url(settings.DATABASE_URL)
    session_factory = create_session_factory(engine)
    try:
        agent = build_agent(settings, session_factory)
    except ConfigurationError as e:
        logger.error("Invalid configuration", error=str(e))
        await engine.dispose()
        return 1

    try:
        result = await agent.run(trigger="manual")
    except Exception as e:
        logger.error("Reconciliation run failed", error=str(e), error_type=type(e).__name__)
        return 1
    finally:
        await agent.aclose()
        await engine.dispose()

    if result.skipped:
        print(f"Run {result.run_id} skipped: another run holds the lock")
    elif result.metrics is not None:
        m = result.metrics
        print(
            f"Run {result.run_id} {result.status}: {m.orders_processed} processed, "
            f"{m.orders_updated} updated, {m.api_calls} API calls ({m.api_errors} errors), "
            f"{m.duration_seconds:.1f}s"
        )
    return 0


async def run_forever(settings: Settings) -> int:
    engine = create_engine_for_url(settings.DATABASE_URL)
    session_factory = create_session_factory(engine)
    try:
        agent = build_agent(settings, session_factory)
    except ConfigurationError as e:
        logger.error("Invalid configuration", error=str(e))
        await engine.dispose()
        return 1

    stop_requested = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop_requested.set)

    scheduler = ReconciliationScheduler(agent, settings)
    scheduler.start(run_immediately=True)
    logger.info("Reconciliation agent running", environment=settings.ENVIRONMENT)

    try:
        await stop_requested.wait()
        logger.info("Shutdown requested")
        await scheduler.stop(timeout=settings.RUN_TIMEOUT_SECONDS)
    finally:
        await agent.aclose()
        await engine.dispose()

    logger.info("Reconciliation agent stopped")
    return 0


async def show_health(settings: Settings) -> int:
    engine = create_engine_for_url(settings.DATABASE_URL)
    try:
        report = await HealthCheck(engine, create_session_factory(engine)).check_overall_health()
    finally:
        await engine.dispose()

    print(json.dumps(report, indent=2, default=str))
    return 1 if report["status"] == "critical" else 0


async def show_stats(settings: Settings, hours: int, limit: int) -> int:
    engine = create_engine_for_url(settings.DATABASE_URL)
    session_factory = create_session_factory(engine)
    try:
        stats = await get_execution_stats(session_factory, hours=hours)
        recent = await get_recent_runs(session_factory, limit=limit)
    finally:
        await engine.dispose()

    if stats is None:
        print("Could not load execution stats", file=sys.stderr)
        return 1

    print(json.dumps({"stats": stats, "recent_runs": recent}, indent=2, default=str))
    return 0


async def init_db(settings: Settings) -> int:
    engine = create_engine_for_url(settings.DATABASE_URL)
    try:
        await create_db_and_tables(engine)
    finally:
        await engine.dispose()
    print("Database tables created")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="reconciliation-agent",
        description="Reconcile pending orders against the payment gateway",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("start", help="Run on schedule until terminated")
    sub.add_parser("once", help="Run a single reconciliation and exit")
    sub.add_parser("health", help="Print a health report")

    stats = sub.add_parser("stats", help="Print execution statistics")
    stats.add_argument("--hours", type=int, default=24, help="Look-back window (default: 24)")
    stats.add_argument("--limit", type=int, default=10, help="Recent runs to list (default: 10)")

    sub.add_parser("init-db", help="Create the agent's tables")
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        settings = load_settings()
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1

    _setup_observability(settings)

    if args.command == "start":
        return asyncio.run(run_forever(settings))
    if args.command == "once":
        return asyncio.run(run_once(settings))
    if args.command == "health":
        return asyncio.run(show_health(settings))
    if args.command == "stats":
        return asyncio.run(show_stats(settings, hours=args.hours, limit=args.limit))
    return asyncio.run(init_db(settings))


if __name__ == "__main__":
    sys.exit(main())
