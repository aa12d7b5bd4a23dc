"""Backup manifest and result models.

The manifest is persisted as ``{backup_id}/manifest.json`` in the backup
container and is the only index of a backup; it is a Pydantic model so it
round-trips through JSON with strict validation. Results returned to callers are
plain frozen dataclasses.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

MANIFEST_NAME = "manifest.json"


class BackupFileEntry(BaseModel):
    """One object captured by a backup.

    Attributes:
        name: Original object name in the source container.
        backup_object_name: Object name inside the backup container.
        original_size: Size of the stored object as read from the source.
        stored_size: Size written to the backup container (after compression).
        content_type: Content type of the source object.
        sha256: Hex SHA-256 of the original bytes.
        last_modified: Source modification time at backup.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str = Field(min_length=1)
    backup_object_name: str = Field(min_length=1)
    original_size: int = Field(ge=0)
    stored_size: int = Field(ge=0)
    content_type: str
    sha256: str = Field(pattern=r"^[0-9a-f]{64}$")
    last_modified: datetime | None = None


class BackupManifest(BaseModel):
    """Persisted index entry of a backup."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    backup_id: str = Field(min_length=1)
    container: str = Field(min_length=1)
    created_at: datetime
    compressed: bool = True
    file_count: int = Field(ge=0)
    total_size: int = Field(ge=0)
    files: tuple[BackupFileEntry, ...] = ()
    failed_files: tuple[str, ...] = ()

    @property
    def complete(self) -> bool:
        return not self.failed_files and self.file_count == len(self.files)


@dataclass(frozen=True)
class BackupResult:
    """Outcome of create_backup; callers must check ``success``."""

    success: bool
    backup_id: str
    container: str
    file_count: int = 0
    total_size: int = 0
    created_at: datetime | None = None
    error_message: str | None = None
    failed_files: tuple[str, ...] = ()


@dataclass(frozen=True)
class RestoreResult:
    """Outcome of restore_backup."""

    success: bool
    backup_id: str
    target_container: str
    restored_file_count: int = 0
    restored_bytes: int = 0
    restored_at: datetime | None = None
    error_message: str | None = None
    failed_files: tuple[str, ...] = ()


@dataclass(frozen=True)
class BackupInfo:
    """Summary of a backup read from its manifest."""

    backup_id: str
    container: str
    created_at: datetime
    file_count: int
    total_size: int


@dataclass(frozen=True)
class BackupStatistics:
    """Aggregate view over all backups in the backup container."""

    total_backups: int
    total_backup_size: int
    generated_at: datetime
    backups_by_container: dict[str, int] = field(default_factory=dict)
    oldest_backup: datetime | None = None
    newest_backup: datetime | None = None
