"""Tests for the BackupOrchestrator.

Covers:
- Backup and restore of whole containers
- Manifest layout and restore provenance metadata
- Validation of missing and corrupted backup files
- Listing, deletion, retention cleanup and statistics
"""

from __future__ import annotations

import asyncio
import gzip
from datetime import timedelta
from typing import Any

import pytest

from blobguard.backup.models import BackupManifest
from blobguard.backup.orchestrator import RESTORED_FROM_BACKUP_KEY, BackupOrchestrator
from blobguard.config import BackupSettings
from blobguard.errors import BackendUnavailableError, BackupNotFoundError
from blobguard.storage.gateway import StorageGateway


class FailingDownloads:
    """StorageService wrapper whose download fails for selected names."""

    def __init__(self, target: StorageGateway, failing: set[str]) -> None:
        self._target = target
        self._failing = failing

    def download(self, container: str, name: str, *, context: Any = None) -> Any:
        if name in self._failing:
            raise BackendUnavailableError("read failed", container=container, name=name)
        return self._target.download(container, name, context=context)

    def __getattr__(self, name: str) -> Any:
        return getattr(self._target, name)


@pytest.fixture
def seeded(gateway: StorageGateway) -> StorageGateway:
    """Gateway whose 'docs' container holds three objects."""
    gateway.upload("docs", "a.txt", b"alpha", "text/plain")
    gateway.upload("docs", "dir/b.json", b'{"b": 1}', "application/json")
    gateway.upload("docs", "c.bin", bytes(range(64)), "application/octet-stream")
    return gateway


@pytest.fixture
def orchestrator(seeded: StorageGateway, clock: Any) -> BackupOrchestrator:
    """Orchestrator over the seeded gateway with a fixed clock."""
    return BackupOrchestrator(seeded, BackupSettings(max_concurrency=2), clock=clock)


class TestCreateAndRestore:
    """Tests for creating and restoring backups."""

    def test_backup_then_restore_roundtrip(
        self, orchestrator: BackupOrchestrator, seeded: StorageGateway
    ) -> None:
        """A restored container matches the source, with provenance metadata."""
        backup = orchestrator.create_backup("docs")
        seeded.delete_batch("docs", ["a.txt", "dir/b.json", "c.bin"])

        restore = orchestrator.restore_backup(backup.backup_id)

        assert backup.success is True
        assert backup.file_count == 3
        assert backup.total_size == 5 + 8 + 64
        assert restore.success is True
        assert restore.restored_file_count == 3
        assert restore.restored_bytes == 77
        assert seeded.download("docs", "dir/b.json").read() == b'{"b": 1}'
        meta = seeded.get_metadata("docs", "dir/b.json")
        assert meta.content_type == "application/json"
        assert meta.metadata[RESTORED_FROM_BACKUP_KEY] == backup.backup_id

    def test_restore_into_other_container(
        self, orchestrator: BackupOrchestrator, seeded: StorageGateway
    ) -> None:
        """A target container is created when it does not exist."""
        backup = orchestrator.create_backup("docs")

        restore = orchestrator.restore_backup(backup.backup_id, "docs-copy")

        assert restore.target_container == "docs-copy"
        assert seeded.download("docs-copy", "a.txt").read() == b"alpha"

    def test_layout_in_backup_container(
        self, orchestrator: BackupOrchestrator, seeded: StorageGateway
    ) -> None:
        """Data objects are gzip-compressed under {id}/data/ beside the manifest."""
        backup = orchestrator.create_backup("docs")
        bid = backup.backup_id

        names = sorted(info.name for info in seeded.list_objects("backups"))
        stored = seeded.download("backups", f"{bid}/data/a.txt").read()
        manifest = BackupManifest.model_validate_json(
            seeded.download("backups", f"{bid}/manifest.json").read()
        )

        assert names == [
            f"{bid}/data/a.txt",
            f"{bid}/data/c.bin",
            f"{bid}/data/dir/b.json",
            f"{bid}/manifest.json",
        ]
        assert gzip.decompress(stored) == b"alpha"
        assert manifest.container == "docs"
        assert manifest.compressed is True
        assert {f.name for f in manifest.files} == {"a.txt", "dir/b.json", "c.bin"}

    def test_uncompressed_backups(self, seeded: StorageGateway) -> None:
        """With compression off, data objects are stored as-is."""
        orch = BackupOrchestrator(seeded, BackupSettings(compress=False))

        backup = orch.create_backup("docs")

        assert seeded.download("backups", f"{backup.backup_id}/data/a.txt").read() == b"alpha"
        assert orch.validate_backup(backup.backup_id).valid is True

    def test_backup_and_restore_from_coroutine(
        self, orchestrator: BackupOrchestrator, seeded: StorageGateway
    ) -> None:
        """Backups and restores work when called from inside a running event loop."""

        async def scheduled_job() -> tuple[Any, Any]:
            backup = orchestrator.create_backup("docs")
            restore = orchestrator.restore_backup(backup.backup_id, "docs-restored")
            return backup, restore

        backup, restore = asyncio.run(scheduled_job())

        assert backup.success is True
        assert backup.file_count == 3
        assert restore.restored_file_count == 3
        assert seeded.download("docs-restored", "c.bin").read() == bytes(range(64))

    def test_missing_source_container_fails(self, orchestrator: BackupOrchestrator) -> None:
        """Backing up an absent container returns an unsuccessful result."""
        result = orchestrator.create_backup("nope")

        assert result.success is False
        assert result.error_message is not None

    def test_per_object_failure_recorded(self, seeded: StorageGateway, clock: Any) -> None:
        """One unreadable object is listed as failed; the others are backed up."""
        orch = BackupOrchestrator(FailingDownloads(seeded, {"c.bin"}), clock=clock)

        result = orch.create_backup("docs")

        assert result.success is False
        assert result.failed_files == ("c.bin",)
        assert result.file_count == 2
        validation = orch.validate_backup(result.backup_id)
        assert validation.errors == ["Backup is incomplete: 1 object(s) were not copied"]

    def test_unknown_backup_raises(self, orchestrator: BackupOrchestrator) -> None:
        """Restoring an unknown id raises BackupNotFoundError."""
        with pytest.raises(BackupNotFoundError):
            orchestrator.restore_backup("does-not-exist")


class TestValidation:
    """Tests for backup verification."""

    def test_intact_backup_is_valid(self, orchestrator: BackupOrchestrator) -> None:
        """A fresh backup validates."""
        backup = orchestrator.create_backup("docs")

        assert orchestrator.validate_backup(backup.backup_id).valid is True

    def test_unknown_backup_reported(self, orchestrator: BackupOrchestrator) -> None:
        """An unknown id is reported, not raised."""
        assert orchestrator.validate_backup("missing").errors == ["Backup manifest not found"]

    def test_missing_file_reported(
        self, orchestrator: BackupOrchestrator, seeded: StorageGateway
    ) -> None:
        """A deleted data object is reported along with the count mismatch."""
        backup = orchestrator.create_backup("docs")
        seeded.delete("backups", f"{backup.backup_id}/data/a.txt")

        errors = orchestrator.validate_backup(backup.backup_id).errors

        assert errors == [
            f"Backup file missing: {backup.backup_id}/data/a.txt",
            "File count mismatch: expected 3, found 2",
        ]

    def test_corrupt_file_reported(
        self, orchestrator: BackupOrchestrator, seeded: StorageGateway
    ) -> None:
        """Undecodable and checksum-mismatched data objects are both detected."""
        backup = orchestrator.create_backup("docs")
        bid = backup.backup_id
        seeded.upload("backups", f"{bid}/data/a.txt", b"not gzip", "application/gzip")
        tampered = gzip.compress(b"tampered")
        seeded.upload("backups", f"{bid}/data/c.bin", tampered, "application/gzip")

        errors = orchestrator.validate_backup(bid).errors

        assert f"Backup file corrupt: {bid}/data/a.txt" in errors
        assert "Checksum mismatch: c.bin" in errors

    def test_invalid_manifest_reported(
        self, orchestrator: BackupOrchestrator, seeded: StorageGateway
    ) -> None:
        """A manifest that does not parse is reported."""
        seeded.create_container("backups")
        seeded.upload("backups", "broken/manifest.json", b'{"backup_id": ""}', "application/json")

        assert orchestrator.validate_backup("broken").errors == ["Invalid backup manifest format"]


class TestRetention:
    """Tests for listing, deleting and expiring backups."""

    def test_list_backups_newest_first(self, orchestrator: BackupOrchestrator, clock: Any) -> None:
        """Backups are ordered newest first and filterable by container."""
        first = orchestrator.create_backup("docs")
        clock.now += timedelta(hours=1)
        second = orchestrator.create_backup("docs")

        listed = orchestrator.list_backups()

        assert [b.backup_id for b in listed] == [second.backup_id, first.backup_id]
        assert orchestrator.list_backups("other") == []

    def test_no_backup_container_lists_nothing(self, orchestrator: BackupOrchestrator) -> None:
        """Listing before any backup exists returns an empty list."""
        assert orchestrator.list_backups() == []

    def test_delete_backup(self, orchestrator: BackupOrchestrator, seeded: StorageGateway) -> None:
        """Deleting removes data and manifest; a second delete raises."""
        backup = orchestrator.create_backup("docs")

        assert orchestrator.delete_backup(backup.backup_id) == 3
        assert list(seeded.list_objects("backups")) == []
        with pytest.raises(BackupNotFoundError):
            orchestrator.delete_backup(backup.backup_id)

    def test_cleanup_expired_backups(self, orchestrator: BackupOrchestrator, clock: Any) -> None:
        """Only backups older than the retention period are deleted."""
        old = orchestrator.create_backup("docs")
        clock.now += timedelta(days=40)
        recent = orchestrator.create_backup("docs")

        deleted = orchestrator.cleanup_expired_backups()

        assert deleted == [old.backup_id]
        assert [b.backup_id for b in orchestrator.list_backups()] == [recent.backup_id]

    def test_cleanup_rejects_non_positive_retention(
        self, orchestrator: BackupOrchestrator
    ) -> None:
        """A retention of zero days is a programming error."""
        with pytest.raises(ValueError):
            orchestrator.cleanup_expired_backups(retention_days=0)

    def test_statistics(
        self, orchestrator: BackupOrchestrator, seeded: StorageGateway, clock: Any
    ) -> None:
        """Statistics aggregate counts, sizes and age bounds per container."""
        seeded.create_container("media")
        seeded.upload("media", "m.png", b"png", "image/png")
        first = orchestrator.create_backup("docs")
        clock.now += timedelta(days=1)
        orchestrator.create_backup("media")

        stats = orchestrator.get_statistics()

        assert stats.total_backups == 2
        assert stats.total_backup_size == 77 + 3
        assert stats.backups_by_container == {"docs": 1, "media": 1}
        assert stats.oldest_backup == first.created_at
        assert stats.newest_backup == clock.now
