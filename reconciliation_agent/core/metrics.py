"""In-memory counters for a single reconciliation run.

A MetricsRecorder is created per run and discarded afterwards. The summary it
produces is persisted exactly once by core.metrics_persistent.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from threading import Lock
from typing import Optional


@dataclass
class RunMetrics:
    """Counters and timing of one reconciliation run."""

    run_id: str
    started_at: datetime
    completed_at: Optional[datetime] = None
    orders_processed: int = 0
    orders_updated: int = 0
    api_calls: int = 0
    api_errors: int = 0
    short_circuited: int = 0  # lookups rejected by an open circuit, no I/O
    errors: list[str] = field(default_factory=list)
    success: bool = False

    @property
    def duration_seconds(self) -> float:
        end = self.completed_at or datetime.now(timezone.utc)
        return (end - self.started_at).total_seconds()

    @property
    def success_rate(self) -> float:
        """(api_calls - api_errors) / api_calls, or 1.0 when no call was made."""
        if self.api_calls == 0:
            return 1.0
        return (self.api_calls - self.api_errors) / self.api_calls

    @property
    def errors_count(self) -> int:
        return len(self.errors)


@dataclass
class MetricsRecorder:
    """Thread-safe accumulator for run counters."""

    run_id: str
    _metrics: RunMetrics = field(init=False)
    _lock: Lock = field(default_factory=Lock, init=False)

    def __post_init__(self) -> None:
        self._metrics = RunMetrics(run_id=self.run_id, started_at=datetime.now(timezone.utc))

    @property
    def metrics(self) -> RunMetrics:
        return self._metrics

    def record_api_call(self, success: bool) -> None:
        """Count one gateway attempt. Short-circuited calls are never recorded."""
        with self._lock:
            self._metrics.api_calls += 1
            if not success:
                self._metrics.api_errors += 1

    def record_short_circuit(self) -> None:
        with self._lock:
            self._metrics.short_circuited += 1

    def record_processed(self) -> None:
        with self._lock:
            self._metrics.orders_processed += 1

    def record_updated(self) -> None:
        with self._lock:
            self._metrics.orders_updated += 1

    def record_error(self, message: str) -> None:
        with self._lock:
            self._metrics.errors.append(message)

    def finish(self, success: bool) -> RunMetrics:
        """Freeze end time and outcome. Calling it again keeps the first end time."""
        with self._lock:
            if self._metrics.completed_at is None:
                self._metrics.completed_at = datetime.now(timezone.utc)
            self._metrics.success = success
            return self._metrics

    def summary(self) -> dict:
        """Get the run counters as a dictionary (for logs and the CLI)."""
        with self._lock:
            m = self._metrics
            return {
                "run_id": m.run_id,
                "started_at": m.started_at.isoformat(),
                "completed_at": m.completed_at.isoformat() if m.completed_at else None,
                "duration_seconds": round(m.duration_seconds, 3),
                "orders_processed": m.orders_processed,
                "orders_updated": m.orders_updated,
                "api_calls": m.api_calls,
                "api_errors": m.api_errors,
                "short_circuited": m.short_circuited,
                "success_rate": round(m.success_rate, 4),
                "errors_count": m.errors_count,
                "success": m.success,
            }
