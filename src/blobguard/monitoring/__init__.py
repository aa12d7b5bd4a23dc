"""blobguard monitoring layer.

Provides the MonitoringFilter decorator and the in-memory metric window it
aggregates into health status, period metrics and threshold alerts.
"""

from blobguard.monitoring.filter import MonitoringFilter
from blobguard.monitoring.metrics import (
    AlertSeverity,
    AlertType,
    HealthState,
    HealthStatus,
    MetricsWindow,
    OperationMetric,
    OperationType,
    StorageMetrics,
    ThresholdAlert,
)

__all__ = [
    "AlertSeverity",
    "AlertType",
    "HealthState",
    "HealthStatus",
    "MetricsWindow",
    "MonitoringFilter",
    "OperationMetric",
    "OperationType",
    "StorageMetrics",
    "ThresholdAlert",
]
