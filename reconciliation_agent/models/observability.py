"""
SQLModel models for observability tables.

Tables:
- reconciliation_metrics: one summary row per reconciliation run (append-only)
- reconciliation_alerts: threshold breaches detected after a run

These tables enable:
- Historical execution statistics (survive restarts)
- Health checks (recent execution, critical alerts)
- Operator dashboards
"""

from datetime import datetime
from typing import Any, Optional

from sqlalchemy import JSON, DateTime
from sqlmodel import Column, Field, SQLModel

from reconciliation_agent.core.typing import utc_now

__all__ = [
    "ReconciliationMetrics",
    "ReconciliationAlert",
]


class ReconciliationMetrics(SQLModel, table=True):
    """
    Summary of one reconciliation run.

    Example:
        row = ReconciliationMetrics(
            execution_id="run_a1b2c3d4e5f6a7b8",
            started_at=started,
            completed_at=finished,
            orders_processed=42,
            orders_updated=3,
            api_calls=45,
            api_errors=3,
            api_success_rate=0.933,
            success=True,
        )
    """

    __tablename__ = "reconciliation_metrics"

    id: Optional[int] = Field(default=None, primary_key=True)
    execution_id: str = Field(max_length=64, unique=True, index=True)
    started_at: datetime = Field(index=True, sa_type=DateTime(timezone=True))
    completed_at: Optional[datetime] = Field(default=None, sa_type=DateTime(timezone=True))
    duration_seconds: float = Field(default=0.0)
    orders_processed: int = Field(default=0)
    orders_updated: int = Field(default=0)
    api_calls: int = Field(default=0)
    api_errors: int = Field(default=0)
    api_success_rate: float = Field(default=1.0)
    errors_count: int = Field(default=0)
    errors: list[str] = Field(default_factory=list, sa_column=Column(JSON))
    success: bool = Field(default=False, index=True)
    run_metadata: Optional[dict[str, Any]] = Field(
        default=None,
        sa_column=Column(JSON),
        description="Trigger, environment, circuit state at end of run",
    )
    created_at: datetime = Field(default_factory=utc_now, nullable=False, sa_type=DateTime(timezone=True))


class ReconciliationAlert(SQLModel, table=True):
    """
    A threshold breached by a run.

    Example:
        alert = ReconciliationAlert(
            execution_id="run_a1b2c3d4e5f6a7b8",
            metric="api_error_rate",
            severity="critical",
            threshold_value=0.5,
            actual_value=0.8,
            description="Gateway error rate above threshold",
        )
    """

    __tablename__ = "reconciliation_alerts"

    id: Optional[int] = Field(default=None, primary_key=True)
    execution_id: str = Field(max_length=64, index=True)
    metric: str = Field(max_length=50)
    severity: str = Field(max_length=20, index=True, description="warning, critical")
    threshold_value: float
    actual_value: float
    description: str = Field(max_length=500)
    triggered_at: datetime = Field(default_factory=utc_now, index=True, sa_type=DateTime(timezone=True))
