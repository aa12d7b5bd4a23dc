"""Operation metrics, rolling window and health aggregation.

Metrics are kept in memory only, for the configured retention period; nothing is
persisted beyond the window. Health is recomputed from the window on every call.
"""

from __future__ import annotations

import logging
import threading
from collections import Counter, deque
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import StrEnum

from blobguard.config import MonitoringSettings

logger = logging.getLogger(__name__)


class OperationType(StrEnum):
    """Kinds of storage operation recorded by the monitoring filter."""

    UPLOAD = "UPLOAD"
    DOWNLOAD = "DOWNLOAD"
    DELETE = "DELETE"
    LIST = "LIST"
    GET_METADATA = "GET_METADATA"
    COPY = "COPY"
    EXISTS = "EXISTS"
    CONTAINER = "CONTAINER"
    PRESIGN = "PRESIGN"
    TIER_CHANGE = "TIER_CHANGE"
    USAGE = "USAGE"


class HealthState(StrEnum):
    """Overall storage health."""

    HEALTHY = "HEALTHY"
    DEGRADED = "DEGRADED"
    UNHEALTHY = "UNHEALTHY"


class AlertType(StrEnum):
    """Threshold alert categories."""

    LOW_SUCCESS_RATE = "LOW_SUCCESS_RATE"
    HIGH_RESPONSE_TIME = "HIGH_RESPONSE_TIME"
    HIGH_ERROR_RATE = "HIGH_ERROR_RATE"


class AlertSeverity(StrEnum):
    """Threshold alert severities."""

    WARNING = "WARNING"
    CRITICAL = "CRITICAL"


@dataclass(frozen=True)
class OperationMetric:
    """One measured storage operation.

    Attributes:
        operation_name: Name of the StorageService method.
        operation_type: Operation category.
        container: Container involved.
        object_name: Object involved (None for container-level calls).
        success: Whether the call returned normally.
        response_time_seconds: Elapsed wall time (>= 0).
        bytes_transferred: Payload bytes moved (>= 0).
        timestamp: When the operation completed.
        error_type: Exception class name on failure.
    """

    operation_name: str
    operation_type: OperationType
    container: str
    object_name: str | None
    success: bool
    response_time_seconds: float
    bytes_transferred: int = 0
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))
    error_type: str | None = None

    def __post_init__(self) -> None:
        if self.response_time_seconds < 0:
            raise ValueError("response_time_seconds must be >= 0")
        if self.bytes_transferred < 0:
            raise ValueError("bytes_transferred must be >= 0")


@dataclass(frozen=True)
class HealthStatus:
    """Health aggregated over the rolling window."""

    status: HealthState
    success_rate: float
    error_rate: float
    average_response_time_seconds: float
    checked_at: datetime
    sample_size: int = 0


@dataclass(frozen=True)
class StorageMetrics:
    """Aggregate metrics over a requested period."""

    period: timedelta
    generated_at: datetime
    total_operations: int
    successful_operations: int
    failed_operations: int
    total_bytes_transferred: int
    average_response_time_seconds: float
    operations_by_type: dict[OperationType, int]
    errors_by_type: dict[str, int]


@dataclass(frozen=True)
class ThresholdAlert:
    """A breached health threshold."""

    alert_type: AlertType
    severity: AlertSeverity
    message: str
    value: float
    threshold: float
    timestamp: datetime


class MetricsWindow:
    """Thread-safe in-memory store of recent OperationMetrics.

    Args:
        retention: How long metrics are kept.
        clock: Returns the current UTC time (injectable for tests).
    """

    def __init__(
        self,
        retention: timedelta = timedelta(hours=24),
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        if retention <= timedelta(0):
            raise ValueError("retention must be positive")
        self._retention = retention
        self._clock = clock or (lambda: datetime.now(UTC))
        self._metrics: deque[OperationMetric] = deque()
        self._lock = threading.Lock()

    def now(self) -> datetime:
        return self._clock()

    def _prune(self, now: datetime) -> None:
        cutoff = now - self._retention
        while self._metrics and self._metrics[0].timestamp < cutoff:
            self._metrics.popleft()

    def record(self, metric: OperationMetric) -> None:
        """Store a metric, keeping the window ordered by timestamp."""
        with self._lock:
            index = len(self._metrics)
            while index > 0 and self._metrics[index - 1].timestamp > metric.timestamp:
                index -= 1
            self._metrics.insert(index, metric)
            self._prune(self._clock())

    def snapshot(self, period: timedelta) -> list[OperationMetric]:
        """Return metrics whose timestamp falls within the last ``period``."""
        now = self._clock()
        cutoff = now - period
        with self._lock:
            self._prune(now)
            return [m for m in self._metrics if m.timestamp >= cutoff]

    def __len__(self) -> int:
        with self._lock:
            return len(self._metrics)

    def clear(self) -> None:
        with self._lock:
            self._metrics.clear()


def compute_health(
    metrics: list[OperationMetric],
    settings: MonitoringSettings,
    checked_at: datetime,
) -> HealthStatus:
    """Map window metrics to a HealthStatus; an empty window is healthy."""
    if not metrics:
        return HealthStatus(
            status=HealthState.HEALTHY,
            success_rate=1.0,
            error_rate=0.0,
            average_response_time_seconds=0.0,
            checked_at=checked_at,
        )

    total = len(metrics)
    successes = sum(1 for m in metrics if m.success)
    success_rate = successes / total
    average = sum(m.response_time_seconds for m in metrics) / total

    status = HealthState.HEALTHY
    if success_rate < settings.unhealthy_success_rate:
        status = HealthState.UNHEALTHY
    elif success_rate < settings.degraded_success_rate:
        status = HealthState.DEGRADED
    if average > settings.max_response_time_seconds and status == HealthState.HEALTHY:
        status = HealthState.DEGRADED

    return HealthStatus(
        status=status,
        success_rate=success_rate,
        error_rate=(total - successes) / total,
        average_response_time_seconds=average,
        checked_at=checked_at,
        sample_size=total,
    )


def aggregate_metrics(
    metrics: list[OperationMetric], period: timedelta, generated_at: datetime
) -> StorageMetrics:
    """Summarize metrics into totals, averages and per-type counts."""
    total = len(metrics)
    successes = sum(1 for m in metrics if m.success)
    return StorageMetrics(
        period=period,
        generated_at=generated_at,
        total_operations=total,
        successful_operations=successes,
        failed_operations=total - successes,
        total_bytes_transferred=sum(m.bytes_transferred for m in metrics),
        average_response_time_seconds=(
            sum(m.response_time_seconds for m in metrics) / total if total else 0.0
        ),
        operations_by_type=dict(Counter(m.operation_type for m in metrics)),
        errors_by_type=dict(Counter(m.error_type or "Unknown" for m in metrics if not m.success)),
    )


def evaluate_thresholds(health: HealthStatus, settings: MonitoringSettings) -> list[ThresholdAlert]:
    """Return an alert for every threshold the health snapshot breaches."""
    alerts: list[ThresholdAlert] = []
    now = health.checked_at
    if health.success_rate < settings.degraded_success_rate:
        alerts.append(
            ThresholdAlert(
                alert_type=AlertType.LOW_SUCCESS_RATE,
                severity=AlertSeverity.WARNING,
                message=(
                    f"Storage success rate is {health.success_rate:.2%}, "
                    f"below {settings.degraded_success_rate:.0%} threshold"
                ),
                value=health.success_rate,
                threshold=settings.degraded_success_rate,
                timestamp=now,
            )
        )
    if health.average_response_time_seconds > settings.max_response_time_seconds:
        alerts.append(
            ThresholdAlert(
                alert_type=AlertType.HIGH_RESPONSE_TIME,
                severity=AlertSeverity.WARNING,
                message=(
                    f"Storage response time is {health.average_response_time_seconds:.2f}s, "
                    f"above {settings.max_response_time_seconds:.2f}s threshold"
                ),
                value=health.average_response_time_seconds,
                threshold=settings.max_response_time_seconds,
                timestamp=now,
            )
        )
    if health.error_rate > settings.max_error_rate:
        alerts.append(
            ThresholdAlert(
                alert_type=AlertType.HIGH_ERROR_RATE,
                severity=AlertSeverity.CRITICAL,
                message=(
                    f"Storage error rate is {health.error_rate:.2%}, "
                    f"above {settings.max_error_rate:.0%} threshold"
                ),
                value=health.error_rate,
                threshold=settings.max_error_rate,
                timestamp=now,
            )
        )
    for alert in alerts:
        logger.warning("Storage threshold breached: %s", alert.message)
    return alerts
