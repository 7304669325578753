"""
Alert thresholds for reconciliation runs.

Each run summary is checked against warning/critical levels after it is
persisted. Warning levels come from settings; critical levels are derived
from the limits the agent already enforces.

Usage:
    from reconciliation_agent.core.health_thresholds import RunThresholds, check_threshold

    thresholds = RunThresholds.from_settings(settings)
    status = check_threshold(value=run.duration_seconds, threshold=thresholds.duration)
    # Returns: "ok", "warning", or "critical"
"""

from dataclasses import dataclass
from typing import TYPE_CHECKING, Literal

if TYPE_CHECKING:
    from reconciliation_agent.core.config import Settings

__all__ = [
    "Threshold",
    "RunThresholds",
    "check_threshold",
    "ThresholdStatus",
]

ThresholdStatus = Literal["ok", "warning", "critical"]


@dataclass(frozen=True)
class Threshold:
    """
    Health threshold with warning and critical levels.

    Attributes:
        warning: Value at which to warn (degraded)
        critical: Value at which to alert (unhealthy)
        unit: Human-readable unit for display
        name: Metric name used in alert rows
    """

    warning: float
    critical: float
    unit: str = ""
    name: str = ""

    def __str__(self) -> str:
        return f"{self.name or 'threshold'}: warn={self.warning}{self.unit}, crit={self.critical}{self.unit}"


def check_threshold(value: float, threshold: Threshold) -> ThresholdStatus:
    """
    Check if value exceeds threshold.

    Returns:
        "ok" if below warning
        "warning" if above warning but below critical
        "critical" if at/above critical
    """
    if value >= threshold.critical:
        return "critical"
    elif value > threshold.warning:
        return "warning"
    return "ok"


@dataclass(frozen=True)
class RunThresholds:
    duration: Threshold
    api_error_rate: Threshold
    errors_count: Threshold

    @classmethod
    def from_settings(cls, settings: "Settings") -> "RunThresholds":
        return cls(
            # Critical when the run hit its own deadline
            duration=Threshold(
                warning=settings.ALERT_DURATION_SECONDS,
                critical=settings.RUN_TIMEOUT_SECONDS,
                unit="s",
                name="duration_seconds",
            ),
            # Critical when the breaker would have opened
            api_error_rate=Threshold(
                warning=settings.ALERT_API_ERROR_RATE,
                critical=settings.CIRCUIT_BREAKER_THRESHOLD,
                unit="ratio",
                name="api_error_rate",
            ),
            errors_count=Threshold(
                warning=settings.ALERT_ERRORS_COUNT,
                critical=settings.ALERT_ERRORS_COUNT * 2,
                name="errors_count",
            ),
        )

    def all(self) -> list[Threshold]:
        return [self.duration, self.api_error_rate, self.errors_count]
