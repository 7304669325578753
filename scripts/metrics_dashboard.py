#!/usr/bin/env python3
"""
Terminal dashboard for reconciliation runs.

Run with: python scripts/metrics_dashboard.py [--hours 24]

Sections:
- Summary of runs in the window
- Latest runs
- Recent alerts
- Hourly trend (last 6 hours with data)
"""

import argparse
import asyncio
import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(project_root))

from reconciliation_agent.core.config import load_settings  # noqa: E402
from reconciliation_agent.core.metrics_persistent import (  # noqa: E402
    get_execution_stats,
    get_hourly_trends,
    get_recent_alerts,
    get_recent_runs,
)
from reconciliation_agent.db import create_engine_for_url, create_session_factory  # noqa: E402


async def show_dashboard(hours: int) -> int:
    settings = load_settings()
    engine = create_engine_for_url(settings.DATABASE_URL)
    session_factory = create_session_factory(engine)

    try:
        stats = await get_execution_stats(session_factory, hours=hours)
        if stats is None:
            print("Could not load execution stats")
            return 1

        print(f"Reconciliation metrics - last {hours}h")
        print("=" * 50)

        print("\nSummary:")
        print(f"  Executions:        {stats['total_executions']} ({stats['failed_executions']} failed)")
        print(f"  Avg duration:      {stats['avg_duration_seconds']:.1f}s")
        print(f"  Orders processed:  {stats['total_processed']}")
        print(f"  Orders updated:    {stats['total_updated']}")
        print(f"  API success rate:  {stats['avg_success_rate'] * 100:.1f}%")
        print(f"  Runs with errors:  {stats['executions_with_errors']}")
        if stats["total_processed"]:
            print(f"  Correction rate:   {stats['total_updated'] / stats['total_processed'] * 100:.1f}%")

        print("\nLatest runs:")
        runs = await get_recent_runs(session_factory, limit=10)
        if not runs:
            print("  (none)")
        for run in runs:
            mark = "OK " if run["success"] and not run["errors_count"] else "ERR"
            print(
                f"  {mark} {run['started_at']} | {run['duration_seconds']:.1f}s | "
                f"{run['orders_processed']}/{run['orders_updated']} | "
                f"API {run['api_success_rate'] * 100:.1f}%"
            )

        print("\nRecent alerts:")
        alerts = await get_recent_alerts(session_factory, hours=hours, limit=10)
        if not alerts:
            print("  (none)")
        for alert in alerts:
            print(f"  [{alert['severity'].upper()}] {alert['triggered_at']} | {alert['metric']} | {alert['description']}")

        print("\nHourly trend:")
        trends = await get_hourly_trends(session_factory, hours=hours)
        if not trends:
            print("  (not enough data)")
        for bucket in trends[-6:]:
            print(
                f"  {bucket['hour']}: {bucket['avg_duration_seconds']:.1f}s avg "
                f"({bucket['executions']} runs, {bucket['total_processed']}/{bucket['total_updated']})"
            )
        return 0
    finally:
        await engine.dispose()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Show reconciliation metrics")
    parser.add_argument("--hours", type=int, default=24, help="Look-back window (default: 24)")
    args = parser.parse_args()
    sys.exit(asyncio.run(show_dashboard(args.hours)))
