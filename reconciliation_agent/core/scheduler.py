"""
Reconciliation scheduling.

Runs the agent on a cron expression (every 5 minutes by default) in the
configured timezone, once immediately at startup, and purges old metrics
daily. An in-process flag prevents overlapping runs inside one process; the
distributed lock covers overlap between replicas.

Usage:
    scheduler = ReconciliationScheduler(agent, settings)
    scheduler.start()
    ...
    result = await scheduler.trigger()  # operator-invoked run, same code path
    ...
    await scheduler.stop()
"""

import asyncio
from datetime import datetime
from typing import TYPE_CHECKING, Any, Dict, Optional

import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from reconciliation_agent.core.config import Settings
from reconciliation_agent.core.metrics_persistent import purge_old_metrics

if TYPE_CHECKING:
    from reconciliation_agent.services.reconciler import ReconciliationAgent, RunResult

logger = structlog.get_logger(__name__)

RECONCILIATION_JOB_ID = "reconciliation"
PURGE_JOB_ID = "purge_old_metrics"


class ReconciliationScheduler:
    def __init__(
        self,
        agent: "ReconciliationAgent",
        settings: Settings,
        scheduler: Optional[AsyncIOScheduler] = None,
    ):
        self.agent = agent
        self.settings = settings
        self.scheduler = scheduler or AsyncIOScheduler(timezone=settings.SCHEDULER_TIMEZONE)
        self.last_result: Optional["RunResult"] = None
        self._running = False
        self._idle: Optional[asyncio.Event] = None

    @property
    def is_running(self) -> bool:
        """Whether a run is in progress in this process."""
        return self._running

    def register_jobs(self, run_immediately: bool = True) -> None:
        # Job configuration:
        # - max_instances=1: never two reconciliation jobs in this process
        # - coalesce=True: missed firings collapse into one
        # - misfire_grace_time: a firing later than this is skipped
        tz = self.settings.SCHEDULER_TIMEZONE
        trigger = CronTrigger.from_crontab(self.settings.SCHEDULE_CRON, timezone=tz)

        job_kwargs: Dict[str, Any] = dict(
            id=RECONCILIATION_JOB_ID,
            max_instances=1,
            misfire_grace_time=60,
            coalesce=True,
            replace_existing=True,
        )
        if run_immediately:
            job_kwargs["next_run_time"] = datetime.now(trigger.timezone)

        self.scheduler.add_job(self._scheduled_run, trigger, **job_kwargs)

        # Metrics retention: daily at 03:30 local time
        self.scheduler.add_job(
            self._purge_metrics,
            CronTrigger(hour=3, minute=30, timezone=tz),
            id=PURGE_JOB_ID,
            max_instances=1,
            misfire_grace_time=3600,
            coalesce=True,
            replace_existing=True,
        )

    def start(self, run_immediately: bool = True) -> None:
        """Register jobs and start firing. Must be called with a running event loop."""
        self.register_jobs(run_immediately=run_immediately)
        self.scheduler.start()
        logger.info(
            "Scheduler started",
            cron=self.settings.SCHEDULE_CRON,
            timezone=self.settings.SCHEDULER_TIMEZONE,
            run_immediately=run_immediately,
        )

    async def stop(self, timeout: Optional[float] = None) -> None:
        """
        Stop accepting new firings, then wait for an in-flight run to finish.

        Args:
            timeout: Maximum seconds to wait for the in-flight run (None = no limit)
        """
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")

        if self._running and self._idle is not None:
            logger.info("Waiting for in-flight reconciliation run")
            try:
                await asyncio.wait_for(self._idle.wait(), timeout=timeout)
            except asyncio.TimeoutError:
                logger.warning("In-flight run still active at shutdown", timeout=timeout)

    async def trigger(self, trigger: str = "manual") -> Optional["RunResult"]:
        """
        Run reconciliation now through the same path as scheduled runs.

        Returns:
            The run result, or None if a run is already active in this process
        """
        if self._running:
            logger.info("Reconciliation already running in this process, skipping", trigger=trigger)
            return None

        self._running = True
        self._idle = asyncio.Event()
        try:
            result = await self.agent.run(trigger=trigger)
            self.last_result = result
            return result
        finally:
            self._running = False
            self._idle.set()

    async def _scheduled_run(self) -> None:
        try:
            await self.trigger(trigger="scheduled")
        except Exception as e:
            # Already captured by the agent; keep the schedule alive
            logger.error("Scheduled reconciliation run failed", error=str(e))

    async def _purge_metrics(self) -> None:
        await purge_old_metrics(self.agent.session_factory, days=self.settings.METRICS_RETENTION_DAYS)

    def status(self) -> Dict[str, Any]:
        job = self.scheduler.get_job(RECONCILIATION_JOB_ID)
        next_run = getattr(job, "next_run_time", None) if job else None
        last = self.last_result
        return {
            "scheduler_running": self.scheduler.running,
            "run_in_progress": self._running,
            "cron": self.settings.SCHEDULE_CRON,
            "timezone": self.settings.SCHEDULER_TIMEZONE,
            "next_run_time": next_run.isoformat() if next_run else None,
            "last_run": {"run_id": last.run_id, "status": last.status} if last else None,
        }
