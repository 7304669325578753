"""
Agent health check.

Checks:
- Datastore connectivity (critical when unreachable)
- A run recorded within the last hour (warning otherwise)
- No critical alert within the last hour (critical otherwise)
- No expired lock row left behind (warning otherwise)

Usage:
    from reconciliation_agent.core.health_check import HealthCheck

    health = await HealthCheck(engine, session_factory).check_overall_health()
    # Returns: {"status": "healthy", "checks": [...], "timestamp": "..."}
"""

from datetime import timedelta
from typing import Any, Dict, List

import structlog
from sqlmodel import select

from reconciliation_agent.core.metrics_persistent import count_alerts_since, get_execution_stats
from reconciliation_agent.core.typing import as_utc, utc_now
from reconciliation_agent.db import check_connection
from reconciliation_agent.models.reconciliation import SINGLETON_LOCK_ID, ReconciliationLock

logger = structlog.get_logger(__name__)

__all__ = ["HealthCheck"]

_SEVERITY_ORDER = {"healthy": 0, "warning": 1, "critical": 2}


def _escalate(current: str, candidate: str) -> str:
    return candidate if _SEVERITY_ORDER[candidate] > _SEVERITY_ORDER[current] else current


class HealthCheck:
    def __init__(self, engine, session_factory, recent_window_hours: int = 1):
        self.engine = engine
        self.session_factory = session_factory
        self.recent_window_hours = recent_window_hours

    async def check_database(self) -> Dict[str, Any]:
        error = await check_connection(self.engine)
        return {"name": "database", "ok": error is None, "message": error or "OK"}

    async def check_recent_execution(self) -> Dict[str, Any]:
        stats = await get_execution_stats(self.session_factory, hours=self.recent_window_hours)
        recent = bool(stats and stats["total_executions"] > 0)
        return {
            "name": "recent_execution",
            "ok": recent,
            "message": "OK" if recent else f"No run in the last {self.recent_window_hours}h",
            "last_execution": stats["last_execution"] if stats else None,
        }

    async def check_critical_alerts(self) -> Dict[str, Any]:
        since = utc_now() - timedelta(hours=self.recent_window_hours)
        count = await count_alerts_since(self.session_factory, since, severity="critical")
        return {
            "name": "critical_alerts",
            "ok": count == 0,
            "message": "OK" if count == 0 else f"{count} critical alerts",
            "count": count,
        }

    async def check_lock(self) -> Dict[str, Any]:
        async with self.session_factory() as session:
            lock = await session.get(ReconciliationLock, SINGLETON_LOCK_ID)

        if lock is None:
            return {"name": "lock", "ok": True, "message": "Free"}

        expires_at = as_utc(lock.expires_at)
        stale = expires_at < utc_now()
        return {
            "name": "lock",
            "ok": not stale,
            "message": f"Expired lock held by {lock.owner_id}" if stale else f"Held by {lock.owner_id}",
            "expires_at": expires_at.isoformat(),
        }

    async def check_overall_health(self) -> Dict[str, Any]:
        status = "healthy"
        checks: List[Dict[str, Any]] = []

        db = await self.check_database()
        checks.append(db)
        if not db["ok"]:
            return {"status": "critical", "checks": checks, "timestamp": utc_now().isoformat()}

        try:
            recent = await self.check_recent_execution()
            checks.append(recent)
            if not recent["ok"]:
                status = _escalate(status, "warning")

            alerts = await self.check_critical_alerts()
            checks.append(alerts)
            if not alerts["ok"]:
                status = _escalate(status, "critical")

            lock = await self.check_lock()
            checks.append(lock)
            if not lock["ok"]:
                status = _escalate(status, "warning")
        except Exception as e:
            logger.error("Health check failed", error=str(e))
            checks.append({"name": "health_check", "ok": False, "message": f"Error: {e}"})
            status = "critical"

        return {"status": status, "checks": checks, "timestamp": utc_now().isoformat()}
