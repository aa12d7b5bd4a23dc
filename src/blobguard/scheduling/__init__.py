"""blobguard scheduled passes and bounded worker pool."""

from blobguard.scheduling.jobs import (
    PassSummary,
    StoragePassWorker,
    run_backup_pass,
    run_lifecycle_pass,
)
from blobguard.scheduling.worker_pool import TaskOutcome, run_bounded, run_bounded_async

__all__ = [
    "PassSummary",
    "StoragePassWorker",
    "TaskOutcome",
    "run_backup_pass",
    "run_bounded",
    "run_bounded_async",
    "run_lifecycle_pass",
]
