"""Monitoring filter: timing and success accounting for every storage call.

MonitoringFilter implements StorageService by decorating the next layer. Each
call runs inside measure(): on success an OperationMetric with success=True is
recorded, on any exception a metric with success=False and the exception class
name is recorded and the original exception is re-raised unchanged.
"""

from __future__ import annotations

import io
import logging
import time
from collections.abc import Iterable, Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import timedelta
from typing import BinaryIO

from blobguard.config import MonitoringSettings
from blobguard.context import OperationContext
from blobguard.monitoring.metrics import (
    HealthStatus,
    MetricsWindow,
    OperationMetric,
    OperationType,
    StorageMetrics,
    ThresholdAlert,
    aggregate_metrics,
    compute_health,
    evaluate_thresholds,
)
from blobguard.storage.models import (
    StorageObjectInfo,
    StorageObjectMetadata,
    StoragePermission,
    StorageTier,
    StorageUsage,
)
from blobguard.storage.service import Payload, StorageService

logger = logging.getLogger(__name__)


@dataclass
class Measurement:
    """Mutable handle yielded by measure() to report transferred bytes."""

    bytes_transferred: int = 0


class MeasuredListing(Iterable[StorageObjectInfo]):
    """Listing whose every iteration is measured as one list_objects operation.

    The backend is queried while iterating, so failures raised mid-iteration are
    recorded against the listing rather than lost.
    """

    def __init__(
        self, monitor: MonitoringFilter, listing: Iterable[StorageObjectInfo], container: str
    ) -> None:
        self._monitor = monitor
        self._listing = listing
        self.container = container

    def __iter__(self) -> Iterator[StorageObjectInfo]:
        with self._monitor.measure("list_objects", OperationType.LIST, self.container):
            yield from self._listing

    def __repr__(self) -> str:
        return f"MeasuredListing(container={self.container!r}, listing={self._listing!r})"


class MonitoringFilter:
    """StorageService decorator recording OperationMetrics.

    Args:
        inner: Next layer (normally the StorageGateway).
        window: Metric store shared with health queries.
        settings: Health thresholds and window length.
    """

    def __init__(
        self,
        inner: StorageService,
        window: MetricsWindow | None = None,
        settings: MonitoringSettings | None = None,
    ) -> None:
        self._inner = inner
        self._settings = settings or MonitoringSettings()
        self._window = window or MetricsWindow(
            retention=timedelta(seconds=self._settings.retention_seconds)
        )

    @property
    def window(self) -> MetricsWindow:
        return self._window

    @contextmanager
    def measure(
        self,
        operation_name: str,
        operation_type: OperationType,
        container: str,
        object_name: str | None = None,
        *,
        record_success: bool = True,
    ) -> Iterator[Measurement]:
        """Time the enclosed block and record its outcome.

        With ``record_success=False`` only a failure is recorded; used when the
        operation completes later, outside the block.
        """
        measurement = Measurement()
        start = time.perf_counter()
        try:
            yield measurement
        except Exception as e:
            self._record(
                operation_name,
                operation_type,
                container,
                object_name,
                success=False,
                elapsed=time.perf_counter() - start,
                measurement=measurement,
                error_type=type(e).__name__,
            )
            raise
        if not record_success:
            return
        self._record(
            operation_name,
            operation_type,
            container,
            object_name,
            success=True,
            elapsed=time.perf_counter() - start,
            measurement=measurement,
        )

    def _record(
        self,
        operation_name: str,
        operation_type: OperationType,
        container: str,
        object_name: str | None,
        *,
        success: bool,
        elapsed: float,
        measurement: Measurement,
        error_type: str | None = None,
    ) -> None:
        if not self._settings.enable_metrics:
            return
        metric = OperationMetric(
            operation_name=operation_name,
            operation_type=operation_type,
            container=container,
            object_name=object_name,
            success=success,
            response_time_seconds=max(elapsed, 0.0),
            bytes_transferred=measurement.bytes_transferred,
            timestamp=self._window.now(),
            error_type=error_type,
        )
        self._window.record(metric)
        if not success:
            logger.debug(
                "Storage operation failed: op=%s container=%s name=%s error=%s",
                operation_name,
                container,
                object_name,
                error_type,
            )

    def get_health_status(self) -> HealthStatus:
        """Aggregate the last ``window_seconds`` of metrics into a HealthStatus."""
        period = timedelta(seconds=self._settings.window_seconds)
        return compute_health(self._window.snapshot(period), self._settings, self._window.now())

    def get_metrics(self, period: timedelta) -> StorageMetrics:
        """Summarize metrics recorded within ``period``."""
        return aggregate_metrics(self._window.snapshot(period), period, self._window.now())

    def check_thresholds(self) -> list[ThresholdAlert]:
        """Return alerts for every health threshold currently breached."""
        return evaluate_thresholds(self.get_health_status(), self._settings)

    def upload(
        self,
        container: str,
        name: str,
        content: Payload,
        content_type: str,
        metadata: Mapping[str, str] | None = None,
        *,
        context: OperationContext | None = None,
    ) -> str:
        with self.measure("upload", OperationType.UPLOAD, container, name) as m:
            if isinstance(content, (bytes, bytearray, memoryview)):
                m.bytes_transferred = len(content)
            return self._inner.upload(
                container, name, content, content_type, metadata, context=context
            )

    def download(
        self, container: str, name: str, *, context: OperationContext | None = None
    ) -> BinaryIO:
        with self.measure("download", OperationType.DOWNLOAD, container, name) as m:
            data = self._inner.download(container, name, context=context).read()
            m.bytes_transferred = len(data)
            return io.BytesIO(data)

    def delete(self, container: str, name: str, *, context: OperationContext | None = None) -> None:
        with self.measure("delete", OperationType.DELETE, container, name):
            self._inner.delete(container, name, context=context)

    def delete_batch(
        self, container: str, names: Iterable[str], *, context: OperationContext | None = None
    ) -> int:
        with self.measure("delete_batch", OperationType.DELETE, container):
            return self._inner.delete_batch(container, names, context=context)

    def exists(self, container: str, name: str, *, context: OperationContext | None = None) -> bool:
        with self.measure("exists", OperationType.EXISTS, container, name):
            return self._inner.exists(container, name, context=context)

    def get_metadata(
        self, container: str, name: str, *, context: OperationContext | None = None
    ) -> StorageObjectMetadata:
        with self.measure("get_metadata", OperationType.GET_METADATA, container, name):
            return self._inner.get_metadata(container, name, context=context)

    def list_objects(
        self,
        container: str,
        prefix: str | None = None,
        *,
        context: OperationContext | None = None,
    ) -> Iterable[StorageObjectInfo]:
        with self.measure("list_objects", OperationType.LIST, container, record_success=False):
            listing = self._inner.list_objects(container, prefix, context=context)
        return MeasuredListing(self, listing, container)

    def get_presigned_url(
        self,
        container: str,
        name: str,
        ttl: timedelta,
        permissions: StoragePermission = StoragePermission.READ,
        *,
        context: OperationContext | None = None,
    ) -> str:
        with self.measure("get_presigned_url", OperationType.PRESIGN, container, name):
            return self._inner.get_presigned_url(
                container, name, ttl, permissions, context=context
            )

    def create_container(
        self, container: str, public: bool = False, *, context: OperationContext | None = None
    ) -> None:
        with self.measure("create_container", OperationType.CONTAINER, container):
            self._inner.create_container(container, public, context=context)

    def delete_container(self, container: str, *, context: OperationContext | None = None) -> None:
        with self.measure("delete_container", OperationType.CONTAINER, container):
            self._inner.delete_container(container, context=context)

    def list_containers(self, *, context: OperationContext | None = None) -> list[str]:
        with self.measure("list_containers", OperationType.LIST, ""):
            return self._inner.list_containers(context=context)

    def copy(
        self,
        src_container: str,
        src_name: str,
        dst_container: str,
        dst_name: str,
        *,
        context: OperationContext | None = None,
    ) -> None:
        with self.measure("copy", OperationType.COPY, src_container, src_name):
            self._inner.copy(src_container, src_name, dst_container, dst_name, context=context)

    def change_tier(
        self,
        container: str,
        name: str,
        tier: StorageTier,
        *,
        context: OperationContext | None = None,
    ) -> None:
        with self.measure("change_tier", OperationType.TIER_CHANGE, container, name):
            self._inner.change_tier(container, name, tier, context=context)

    def get_usage(self, container: str, *, context: OperationContext | None = None) -> StorageUsage:
        with self.measure("get_usage", OperationType.USAGE, container):
            return self._inner.get_usage(container, context=context)
