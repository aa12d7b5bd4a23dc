"""blobguard backup orchestration."""

from blobguard.backup.models import (
    BackupFileEntry,
    BackupInfo,
    BackupManifest,
    BackupResult,
    BackupStatistics,
    RestoreResult,
)
from blobguard.backup.orchestrator import (
    RESTORED_FROM_BACKUP_KEY,
    BackupCorruptError,
    BackupOrchestrator,
)

__all__ = [
    "RESTORED_FROM_BACKUP_KEY",
    "BackupCorruptError",
    "BackupFileEntry",
    "BackupInfo",
    "BackupManifest",
    "BackupOrchestrator",
    "BackupResult",
    "BackupStatistics",
    "RestoreResult",
]
