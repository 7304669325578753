"""
Run metrics persistence, alerting and history.

Every reconciliation run that acquired the lock leaves exactly one row in
reconciliation_metrics. Thresholds are evaluated on that row and breaches
are stored in reconciliation_alerts.

None of the write helpers raise: a metrics failure must never fail a run.

Usage:
    from reconciliation_agent.core.metrics_persistent import persist_run_metrics

    run = recorder.finish(success=True)
    await persist_run_metrics(session_factory, run, thresholds=thresholds)

    stats = await get_execution_stats(session_factory, hours=24)
"""

from datetime import timedelta
from typing import Any, Dict, List, Optional

import structlog
from sqlalchemy import delete, func
from sqlmodel import select

from reconciliation_agent.core.errors import capture_exception, capture_message
from reconciliation_agent.core.health_thresholds import RunThresholds, check_threshold
from reconciliation_agent.core.metrics import RunMetrics
from reconciliation_agent.core.typing import as_utc, col, safe_getattr, utc_now
from reconciliation_agent.models.observability import ReconciliationAlert, ReconciliationMetrics

logger = structlog.get_logger(__name__)

__all__ = [
    "persist_run_metrics",
    "evaluate_alerts",
    "get_execution_stats",
    "get_recent_runs",
    "get_recent_alerts",
    "get_hourly_trends",
    "count_alerts_since",
    "purge_old_metrics",
]


def evaluate_alerts(run: RunMetrics, thresholds: RunThresholds) -> List[ReconciliationAlert]:
    """Build (unsaved) alert rows for every threshold the run breached."""
    observed = {
        thresholds.duration.name: run.duration_seconds,
        thresholds.api_error_rate.name: 1.0 - run.success_rate,
        thresholds.errors_count.name: float(run.errors_count),
    }

    alerts = []
    for threshold in thresholds.all():
        value = observed[threshold.name]
        status = check_threshold(value, threshold)
        if status == "ok":
            continue
        limit = threshold.critical if status == "critical" else threshold.warning
        alerts.append(
            ReconciliationAlert(
                execution_id=run.run_id,
                metric=threshold.name,
                severity=status,
                threshold_value=limit,
                actual_value=value,
                description=f"{threshold.name} {value:.3f}{threshold.unit} breached {status} level {limit}{threshold.unit}",
            )
        )
    return alerts


async def persist_run_metrics(
    session_factory,
    run: RunMetrics,
    metadata: Optional[Dict[str, Any]] = None,
    thresholds: Optional[RunThresholds] = None,
) -> Optional[ReconciliationMetrics]:
    """
    Store the run summary (and any alerts). Errors are logged, never raised.

    Returns:
        The stored row, or None if persistence failed
    """
    try:
        row = ReconciliationMetrics(
            execution_id=run.run_id,
            started_at=run.started_at,
            completed_at=run.completed_at,
            duration_seconds=run.duration_seconds,
            orders_processed=run.orders_processed,
            orders_updated=run.orders_updated,
            api_calls=run.api_calls,
            api_errors=run.api_errors,
            api_success_rate=run.success_rate,
            errors_count=run.errors_count,
            errors=list(run.errors),
            success=run.success,
            run_metadata=metadata,
        )
        async with session_factory() as session:
            session.add(row)
            await session.commit()
            await session.refresh(row)
    except Exception as e:
        logger.warning("Failed to persist run metrics", run_id=run.run_id, error=str(e))
        capture_exception(e, context={"run_id": run.run_id, "action": "persist_run_metrics"})
        return None

    logger.debug("Run metrics persisted", run_id=run.run_id, metrics_id=row.id)

    if thresholds is not None:
        await _record_alerts(session_factory, evaluate_alerts(run, thresholds))

    return row


async def _record_alerts(session_factory, alerts: List[ReconciliationAlert]) -> None:
    if not alerts:
        return

    for alert in alerts:
        if alert.severity == "critical":
            capture_message(
                f"Critical reconciliation alert: {alert.description}",
                level="error",
                context={"metric": alert.metric, "execution_id": alert.execution_id},
            )
            continue
        logger.warning(
            "Reconciliation alert",
            metric=alert.metric,
            severity=alert.severity,
            value=round(alert.actual_value, 4),
            threshold=alert.threshold_value,
        )

    try:
        async with session_factory() as session:
            session.add_all(alerts)
            await session.commit()
    except Exception as e:
        logger.warning("Failed to persist alerts", count=len(alerts), error=str(e))
        capture_exception(e, context={"action": "record_alerts"})


async def get_execution_stats(session_factory, hours: int = 24) -> Optional[Dict[str, Any]]:
    """
    Aggregate the runs of the last `hours` hours.

    Returns:
        Stats dict, or None if the query failed
    """
    since = utc_now() - timedelta(hours=hours)

    try:
        async with session_factory() as session:
            result = await session.exec(
                select(ReconciliationMetrics)
                .where(col(ReconciliationMetrics.started_at) >= since)
                .order_by(col(ReconciliationMetrics.started_at).desc())
            )
            rows = result.all()
    except Exception as e:
        logger.warning("Failed to load execution stats", hours=hours, error=str(e))
        return None

    if not rows:
        return {
            "hours": hours,
            "total_executions": 0,
            "failed_executions": 0,
            "avg_duration_seconds": 0.0,
            "total_processed": 0,
            "total_updated": 0,
            "avg_success_rate": 0.0,
            "executions_with_errors": 0,
            "last_execution": None,
        }

    count = len(rows)
    return {
        "hours": hours,
        "total_executions": count,
        "failed_executions": sum(1 for r in rows if not r.success),
        "avg_duration_seconds": round(sum(r.duration_seconds for r in rows) / count, 3),
        "total_processed": sum(r.orders_processed for r in rows),
        "total_updated": sum(r.orders_updated for r in rows),
        "avg_success_rate": round(sum(r.api_success_rate for r in rows) / count, 4),
        "executions_with_errors": sum(1 for r in rows if r.errors_count > 0),
        "last_execution": as_utc(rows[0].started_at).isoformat(),
    }


async def get_recent_runs(session_factory, limit: int = 10) -> List[Dict[str, Any]]:
    """Most recent run summaries, newest first. Empty list on failure."""
    try:
        async with session_factory() as session:
            result = await session.exec(
                select(ReconciliationMetrics)
                .order_by(col(ReconciliationMetrics.started_at).desc())
                .limit(limit)
            )
            rows = result.all()
    except Exception as e:
        logger.warning("Failed to load recent runs", error=str(e))
        return []

    return [
        {
            "execution_id": r.execution_id,
            "started_at": as_utc(r.started_at).isoformat(),
            "duration_seconds": round(r.duration_seconds, 3),
            "orders_processed": r.orders_processed,
            "orders_updated": r.orders_updated,
            "api_success_rate": round(r.api_success_rate, 4),
            "errors_count": r.errors_count,
            "success": r.success,
        }
        for r in rows
    ]


async def count_alerts_since(session_factory, since, severity: Optional[str] = None) -> int:
    """Number of alerts triggered since `since` (optionally of one severity)."""
    stmt = select(func.count()).select_from(ReconciliationAlert).where(
        col(ReconciliationAlert.triggered_at) >= since
    )
    if severity is not None:
        stmt = stmt.where(col(ReconciliationAlert.severity) == severity)

    async with session_factory() as session:
        result = await session.exec(stmt)
        return result.one()


async def purge_old_metrics(session_factory, days: int = 30) -> int:
    """
    Delete metrics and alert rows older than `days` days.

    Returns:
        Number of rows deleted (0 on failure)
    """
    cutoff = utc_now() - timedelta(days=days)

    try:
        async with session_factory() as session:
            metrics_result = await session.execute(
                delete(ReconciliationMetrics).where(col(ReconciliationMetrics.started_at) < cutoff)
            )
            alerts_result = await session.execute(
                delete(ReconciliationAlert).where(col(ReconciliationAlert.triggered_at) < cutoff)
            )
            await session.commit()
    except Exception as e:
        logger.warning("Failed to purge old metrics", days=days, error=str(e))
        capture_exception(e, context={"action": "purge_old_metrics"})
        return 0

    deleted = safe_getattr(metrics_result, "rowcount", 0) + safe_getattr(alerts_result, "rowcount", 0)
    logger.info("Old metrics purged", days=days, deleted=deleted)
    return deleted


async def get_recent_alerts(session_factory, hours: int = 24, limit: int = 10) -> List[Dict[str, Any]]:
    """Alerts triggered in the last `hours` hours, newest first. Empty list on failure."""
    since = utc_now() - timedelta(hours=hours)
    try:
        async with session_factory() as session:
            result = await session.exec(
                select(ReconciliationAlert)
                .where(col(ReconciliationAlert.triggered_at) >= since)
                .order_by(col(ReconciliationAlert.triggered_at).desc())
                .limit(limit)
            )
            rows = result.all()
    except Exception as e:
        logger.warning("Failed to load recent alerts", error=str(e))
        return []

    return [
        {
            "execution_id": a.execution_id,
            "triggered_at": as_utc(a.triggered_at).isoformat(),
            "metric": a.metric,
            "severity": a.severity,
            "actual_value": a.actual_value,
            "threshold_value": a.threshold_value,
            "description": a.description,
        }
        for a in rows
    ]


async def get_hourly_trends(session_factory, hours: int = 24) -> List[Dict[str, Any]]:
    """Per-hour aggregates (UTC) of the last `hours` hours, oldest first."""
    since = utc_now() - timedelta(hours=hours)
    try:
        async with session_factory() as session:
            result = await session.exec(
                select(ReconciliationMetrics)
                .where(col(ReconciliationMetrics.started_at) >= since)
                .order_by(col(ReconciliationMetrics.started_at).asc())
            )
            rows = result.all()
    except Exception as e:
        logger.warning("Failed to load hourly trends", error=str(e))
        return []

    buckets: Dict[str, List[ReconciliationMetrics]] = {}
    for row in rows:
        hour = as_utc(row.started_at).strftime("%Y-%m-%dT%H:00Z")
        buckets.setdefault(hour, []).append(row)

    return [
        {
            "hour": hour,
            "executions": len(group),
            "avg_duration_seconds": round(sum(r.duration_seconds for r in group) / len(group), 3),
            "total_processed": sum(r.orders_processed for r in group),
            "total_updated": sum(r.orders_updated for r in group),
        }
        for hour, group in buckets.items()
    ]
