"""Composition root for the storage policy pipeline.

Callers use ``StoragePipeline.service``; calls flow
SecurityFilter -> MonitoringFilter -> StorageGateway -> BlobBackend. The
lifecycle engine and backup orchestrator operate on the gateway directly.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from blobguard.audit.sink import AuditSink, get_audit_sink
from blobguard.backup.orchestrator import BackupOrchestrator
from blobguard.config import StorageSettings, load_storage_settings
from blobguard.lifecycle.engine import LifecycleEngine
from blobguard.lifecycle.loader import load_policies
from blobguard.monitoring.filter import MonitoringFilter
from blobguard.scheduling.jobs import StoragePassWorker
from blobguard.security.filter import SecurityFilter
from blobguard.security.rate_limiter import (
    CounterStore,
    InMemoryCounterStore,
    RateLimiter,
    RedisCounterStore,
)
from blobguard.storage.backend import BlobBackend
from blobguard.storage.gateway import StorageGateway, build_backend

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StoragePipeline:
    """Wired storage stack.

    Attributes:
        service: Outermost StorageService (the security filter).
        gateway: Unfiltered gateway used by batch passes.
        security: Security filter (validation, encryption, rate limiting).
        monitoring: Monitoring filter (metrics and health).
        lifecycle: Lifecycle engine bound to the gateway.
        backup: Backup orchestrator bound to the gateway.
        settings: Settings tree the pipeline was built from.
    """

    service: SecurityFilter
    gateway: StorageGateway
    security: SecurityFilter
    monitoring: MonitoringFilter
    lifecycle: LifecycleEngine
    backup: BackupOrchestrator
    settings: StorageSettings

    def create_worker(self, interval_seconds: float = 3600.0) -> StoragePassWorker:
        """Background worker running lifecycle, backup and expiry passes."""
        return StoragePassWorker(
            lifecycle=self.lifecycle,
            backup=self.backup,
            backup_containers=self.settings.backup.containers,
            interval_seconds=interval_seconds,
        )


def _default_counter_store(settings: StorageSettings) -> CounterStore:
    if settings.redis_url:
        return RedisCounterStore.from_url(settings.redis_url)
    logger.warning("No Redis URL configured; rate limits are tracked per process")
    return InMemoryCounterStore()


def build_storage_pipeline(
    settings: StorageSettings | None = None,
    backend: BlobBackend | None = None,
    counter_store: CounterStore | None = None,
    audit_sink: AuditSink | None = None,
) -> StoragePipeline:
    """Build the full pipeline from settings.

    Args:
        settings: Settings tree; loaded from the environment when omitted.
        backend: Backend to use instead of the one selected by ``settings.provider``.
        counter_store: Rate-limit counter store (Redis when BLOBGUARD_REDIS_URL is set,
            otherwise in-process).
        audit_sink: Security event sink (JSONL file by default when access logging is on).

    Raises:
        ConfigError: If settings are invalid.
        PolicyInvalidError: If the configured lifecycle policy file holds an invalid policy.
    """
    settings = settings or load_storage_settings()
    if backend is None:
        backend = build_backend(settings)
    backend_name = backend.backend_name

    gateway = StorageGateway({backend_name: backend}, active=backend_name)
    monitoring = MonitoringFilter(gateway, settings=settings.monitoring)

    if audit_sink is None and settings.security.enable_access_logging:
        audit_sink = get_audit_sink()
    rate_limiter = RateLimiter(
        counter_store or _default_counter_store(settings),
        max_allowed=settings.security.max_download_attempts_per_hour,
        window_seconds=settings.security.rate_limit_window_seconds,
    )
    security = SecurityFilter(
        monitoring,
        settings.security,
        rate_limiter,
        audit_sink=audit_sink,
    )

    lifecycle = LifecycleEngine(gateway, settings.lifecycle)
    if settings.lifecycle.policy_file:
        for policy in load_policies(settings.lifecycle.policy_file):
            lifecycle.register_policy(policy)

    backup = BackupOrchestrator(gateway, settings.backup)
    logger.info(
        "Storage pipeline ready: backend=%s encryption=%s scanning=%s policies=%d",
        backend_name,
        settings.security.enable_encryption_at_rest,
        settings.security.enable_virus_scanning,
        len(lifecycle.policies),
    )
    return StoragePipeline(
        service=security,
        gateway=gateway,
        security=security,
        monitoring=monitoring,
        lifecycle=lifecycle,
        backup=backup,
        settings=settings,
    )
