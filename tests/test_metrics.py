"""
Tests for run metrics.

Tests cover:
- MetricsRecorder counters and success rate
- Persisting the run summary (best-effort)
- Alert evaluation and persistence
- Execution statistics, recent runs, purge
"""

from datetime import timedelta

import pytest
from sqlmodel import select

from reconciliation_agent.core.health_thresholds import RunThresholds
from reconciliation_agent.core.metrics import MetricsRecorder, RunMetrics
from reconciliation_agent.core.metrics_persistent import (
    evaluate_alerts,
    get_execution_stats,
    get_hourly_trends,
    get_recent_alerts,
    get_recent_runs,
    persist_run_metrics,
    purge_old_metrics,
)
from reconciliation_agent.core.typing import utc_now
from reconciliation_agent.models import ReconciliationAlert, ReconciliationMetrics


def _run(run_id="run_1", age=timedelta(0), **counters) -> RunMetrics:
    started = utc_now() - age
    run = RunMetrics(run_id=run_id, started_at=started, completed_at=started + timedelta(seconds=2))
    for key, value in counters.items():
        setattr(run, key, value)
    return run


class TestMetricsRecorder:
    def test_initial_state(self):
        recorder = MetricsRecorder(run_id="run_1")
        m = recorder.metrics

        assert m.run_id == "run_1"
        assert m.orders_processed == 0
        assert m.api_calls == 0
        assert m.errors == []
        assert m.completed_at is None

    def test_success_rate_without_calls_is_one(self):
        assert MetricsRecorder(run_id="run_1").metrics.success_rate == 1.0

    def test_success_rate(self):
        recorder = MetricsRecorder(run_id="run_1")
        for ok in (True, True, True, False):
            recorder.record_api_call(ok)

        assert recorder.metrics.api_calls == 4
        assert recorder.metrics.api_errors == 1
        assert recorder.metrics.success_rate == 0.75

    def test_counters(self):
        recorder = MetricsRecorder(run_id="run_1")
        recorder.record_processed()
        recorder.record_processed()
        recorder.record_updated()
        recorder.record_error("Order 1: boom")

        m = recorder.metrics
        assert (m.orders_processed, m.orders_updated, m.errors_count) == (2, 1, 1)

    def test_finish_sets_outcome_once(self):
        recorder = MetricsRecorder(run_id="run_1")
        first = recorder.finish(success=True).completed_at
        second = recorder.finish(success=False)

        assert second.completed_at == first
        assert second.success is False

    def test_summary(self):
        recorder = MetricsRecorder(run_id="run_1")
        recorder.record_api_call(True)
        recorder.finish(success=True)

        summary = recorder.summary()
        assert summary["run_id"] == "run_1"
        assert summary["success_rate"] == 1.0
        assert summary["success"] is True
        assert summary["completed_at"] is not None


class TestPersistRunMetrics:
    @pytest.mark.asyncio
    async def test_persists_summary_row(self, session_factory):
        run = _run(orders_processed=5, orders_updated=2, api_calls=6, api_errors=1, success=True)

        row = await persist_run_metrics(session_factory, run, metadata={"trigger": "scheduled"})

        assert row is not None
        async with session_factory() as session:
            stored = (await session.exec(select(ReconciliationMetrics))).one()
        assert stored.execution_id == "run_1"
        assert stored.orders_processed == 5
        assert stored.api_success_rate == pytest.approx(5 / 6)
        assert stored.duration_seconds == pytest.approx(2.0)
        assert stored.run_metadata == {"trigger": "scheduled"}

    @pytest.mark.asyncio
    async def test_errors_are_swallowed(self):
        def broken_factory():
            raise ConnectionError("database unreachable")

        assert await persist_run_metrics(broken_factory, _run()) is None

    @pytest.mark.asyncio
    async def test_alerts_persisted_on_breach(self, session_factory, settings):
        run = _run(api_calls=10, api_errors=8, errors=["e"] * 12)

        await persist_run_metrics(session_factory, run, thresholds=RunThresholds.from_settings(settings))

        async with session_factory() as session:
            alerts = (await session.exec(select(ReconciliationAlert))).all()
        by_metric = {a.metric: a.severity for a in alerts}
        assert by_metric == {"api_error_rate": "critical", "errors_count": "critical"}


class TestEvaluateAlerts:
    def test_healthy_run_has_no_alerts(self, settings):
        run = _run(api_calls=10, api_errors=0)
        assert evaluate_alerts(run, RunThresholds.from_settings(settings)) == []

    def test_warning_levels(self, settings):
        run = _run(api_calls=10, api_errors=2, errors=["e"] * 6)  # 20% error rate, 6 errors

        alerts = evaluate_alerts(run, RunThresholds.from_settings(settings))

        assert {(a.metric, a.severity) for a in alerts} == {
            ("api_error_rate", "warning"),
            ("errors_count", "warning"),
        }
        assert all(a.execution_id == "run_1" for a in alerts)

    def test_duration_critical_at_run_deadline(self, settings_factory):
        settings = settings_factory(RUN_TIMEOUT_SECONDS=1.0, ALERT_DURATION_SECONDS=0.5)
        run = _run()  # 2 seconds

        alerts = evaluate_alerts(run, RunThresholds.from_settings(settings))

        assert [(a.metric, a.severity) for a in alerts] == [("duration_seconds", "critical")]


class TestHistory:
    @pytest.mark.asyncio
    async def test_execution_stats(self, session_factory):
        await persist_run_metrics(session_factory, _run("run_1", orders_processed=4, orders_updated=1, success=True))
        await persist_run_metrics(
            session_factory, _run("run_2", orders_processed=6, orders_updated=3, errors=["x"], success=False)
        )
        await persist_run_metrics(session_factory, _run("run_old", age=timedelta(hours=30), orders_processed=100))

        stats = await get_execution_stats(session_factory, hours=24)

        assert stats["total_executions"] == 2
        assert stats["failed_executions"] == 1
        assert stats["total_processed"] == 10
        assert stats["total_updated"] == 4
        assert stats["executions_with_errors"] == 1
        assert stats["avg_success_rate"] == 1.0
        assert stats["last_execution"] is not None

    @pytest.mark.asyncio
    async def test_execution_stats_empty(self, session_factory):
        stats = await get_execution_stats(session_factory, hours=1)
        assert stats["total_executions"] == 0
        assert stats["last_execution"] is None

    @pytest.mark.asyncio
    async def test_recent_runs_newest_first(self, session_factory):
        await persist_run_metrics(session_factory, _run("run_older", age=timedelta(minutes=10)))
        await persist_run_metrics(session_factory, _run("run_newer"))

        runs = await get_recent_runs(session_factory, limit=5)

        assert [r["execution_id"] for r in runs] == ["run_newer", "run_older"]

    @pytest.mark.asyncio
    async def test_recent_alerts_and_trends(self, session_factory, settings):
        thresholds = RunThresholds.from_settings(settings)
        await persist_run_metrics(session_factory, _run("run_1", api_calls=2, api_errors=2), thresholds=thresholds)

        alerts = await get_recent_alerts(session_factory, hours=1)
        trends = await get_hourly_trends(session_factory, hours=1)

        assert [a["metric"] for a in alerts] == ["api_error_rate"]
        assert sum(t["executions"] for t in trends) == 1

    @pytest.mark.asyncio
    async def test_purge_old_metrics(self, session_factory):
        await persist_run_metrics(session_factory, _run("run_old", age=timedelta(days=40)))
        await persist_run_metrics(session_factory, _run("run_new"))
        async with session_factory() as session:
            session.add(
                ReconciliationAlert(
                    execution_id="run_old",
                    metric="errors_count",
                    severity="warning",
                    threshold_value=5,
                    actual_value=6,
                    description="old alert",
                    triggered_at=utc_now() - timedelta(days=40),
                )
            )
            await session.commit()

        deleted = await purge_old_metrics(session_factory, days=30)

        assert deleted == 2
        runs = await get_recent_runs(session_factory)
        assert [r["execution_id"] for r in runs] == ["run_new"]
