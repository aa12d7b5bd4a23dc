"""Scheduled storage passes and the background worker that runs them.

Lifecycle and backup passes are long-running batch jobs meant for a schedule,
not for request paths. The engine and orchestrator are synchronous and drive
their own worker pool event loop, so the background worker off-loads each
pass to a thread.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from blobguard.context import OperationContext

if TYPE_CHECKING:
    from blobguard.backup.models import BackupResult
    from blobguard.backup.orchestrator import BackupOrchestrator
    from blobguard.lifecycle.engine import LifecycleEngine
    from blobguard.lifecycle.models import LifecyclePassReport, LifecyclePolicy

logger = logging.getLogger(__name__)


def run_lifecycle_pass(
    engine: LifecycleEngine,
    policies: Sequence[LifecyclePolicy] | None = None,
    context: OperationContext | None = None,
) -> LifecyclePassReport:
    """Run lifecycle policies (default: all registered) and return the per-object report."""
    return engine.run_lifecycle_pass(policies, context)


def run_backup_pass(
    orchestrator: BackupOrchestrator,
    containers: Sequence[str],
    context: OperationContext | None = None,
) -> list[BackupResult]:
    """Back up each container in turn; one result per container, in input order."""
    results: list[BackupResult] = []
    for container in containers:
        result = orchestrator.create_backup(container, context)
        if result.success:
            logger.info(
                "Backup pass: container=%s backup_id=%s files=%d",
                container,
                result.backup_id,
                result.file_count,
            )
        else:
            logger.error(
                "Backup pass failed: container=%s error=%s", container, result.error_message
            )
        results.append(result)
    return results


@dataclass
class PassSummary:
    """What one worker cycle did."""

    lifecycle: LifecyclePassReport | None = None
    backups: list[BackupResult] = field(default_factory=list)
    expired_backups: list[str] = field(default_factory=list)


class StoragePassWorker:
    """Background worker running lifecycle, backup and backup-expiry passes.

    Args:
        lifecycle: Engine whose registered policies run each cycle (optional).
        backup: Orchestrator used for backups and expiry (optional).
        backup_containers: Containers backed up each cycle.
        interval_seconds: Seconds between cycles.
    """

    def __init__(
        self,
        lifecycle: LifecycleEngine | None = None,
        backup: BackupOrchestrator | None = None,
        backup_containers: Sequence[str] = (),
        interval_seconds: float = 3600.0,
    ) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self._lifecycle = lifecycle
        self._backup = backup
        self._backup_containers = tuple(backup_containers)
        self._interval = interval_seconds
        self._running = False
        self._task: asyncio.Task[None] | None = None
        self._last_summary: PassSummary | None = None

    @property
    def running(self) -> bool:
        return self._running

    @property
    def last_summary(self) -> PassSummary | None:
        return self._last_summary

    @property
    def backup_containers(self) -> tuple[str, ...]:
        return self._backup_containers

    async def start(self) -> None:
        """Start the worker."""
        if self._running:
            logger.warning("Storage pass worker already running")
            return

        self._running = True
        self._task = asyncio.create_task(self._poll_loop())
        logger.info("Storage pass worker started: interval=%ss", self._interval)

    async def stop(self) -> None:
        """Stop the worker."""
        if not self._running:
            return

        self._running = False
        if self._task:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None
        logger.info("Storage pass worker stopped")

    async def run_once(self) -> PassSummary:
        """Run one full cycle and remember its summary."""
        summary = PassSummary()
        if self._lifecycle is not None:
            summary.lifecycle = await asyncio.to_thread(run_lifecycle_pass, self._lifecycle)
        if self._backup is not None:
            if self._backup_containers:
                summary.backups = await asyncio.to_thread(
                    run_backup_pass, self._backup, self._backup_containers
                )
            summary.expired_backups = await asyncio.to_thread(
                self._backup.cleanup_expired_backups
            )
        self._last_summary = summary
        return summary

    async def _poll_loop(self) -> None:
        """Main scheduling loop."""
        while self._running:
            try:
                await self.run_once()
            except Exception as e:
                logger.error("Error in storage pass worker: %s", e, exc_info=True)

            await asyncio.sleep(self._interval)
