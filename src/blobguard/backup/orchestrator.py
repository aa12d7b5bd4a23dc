"""Backup orchestrator: snapshot, restore and verify containers.

Layout inside the backup container::

    {backup_id}/manifest.json        BackupManifest (JSON)
    {backup_id}/data/{object_name}   stored object bytes, gzip-compressed

The orchestrator talks to the storage gateway directly, so backups capture the
bytes exactly as stored (ciphertext when encryption at rest is enabled).
Per-object failures are collected and reported; they never abort the batch.
"""

from __future__ import annotations

import gzip
import hashlib
import logging
import uuid
import zlib
from collections import Counter
from collections.abc import Callable
from datetime import UTC, datetime, timedelta

import pydantic

from blobguard.backup.models import (
    MANIFEST_NAME,
    BackupFileEntry,
    BackupInfo,
    BackupManifest,
    BackupResult,
    BackupStatistics,
    RestoreResult,
)
from blobguard.config import BackupSettings
from blobguard.context import OperationContext, check_cancelled
from blobguard.errors import BackupNotFoundError, NotFoundError, StorageError, ValidationError
from blobguard.scheduling.worker_pool import run_bounded
from blobguard.security.models import ValidationResult
from blobguard.storage.models import StorageObjectInfo
from blobguard.storage.service import StorageService

logger = logging.getLogger(__name__)

RESTORED_FROM_BACKUP_KEY = "restored-from-backup"
_GZIP_CONTENT_TYPE = "application/gzip"


class BackupCorruptError(StorageError):
    """Raised when a backed-up object cannot be decoded or fails its checksum."""


def _sha256(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


class BackupOrchestrator:
    """Creates, restores, validates and expires container backups.

    Args:
        gateway: Storage service used for all reads and writes.
        settings: Backup container, retention and concurrency.
        clock: Returns the current UTC time (injectable for tests).
    """

    def __init__(
        self,
        gateway: StorageService,
        settings: BackupSettings | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._gateway = gateway
        self._settings = settings or BackupSettings()
        self._clock = clock or (lambda: datetime.now(UTC))

    @property
    def backup_container(self) -> str:
        return self._settings.backup_container

    @staticmethod
    def manifest_name(backup_id: str) -> str:
        return f"{backup_id}/{MANIFEST_NAME}"

    @staticmethod
    def data_prefix(backup_id: str) -> str:
        return f"{backup_id}/data/"

    def _encode(self, data: bytes) -> bytes:
        return gzip.compress(data) if self._settings.compress else data

    @staticmethod
    def _decode(stored: bytes, compressed: bool, entry: BackupFileEntry) -> bytes:
        if not compressed:
            return stored
        try:
            return gzip.decompress(stored)
        except (OSError, EOFError, zlib.error) as e:
            raise BackupCorruptError(
                f"Backup file corrupt: {entry.backup_object_name}", name=entry.backup_object_name
            ) from e

    def _backup_object(
        self,
        container: str,
        backup_id: str,
        info: StorageObjectInfo,
        context: OperationContext | None,
    ) -> BackupFileEntry:
        check_cancelled(context, container=container, name=info.name)
        meta = self._gateway.get_metadata(container, info.name, context=context)
        data = self._gateway.download(container, info.name, context=context).read()
        stored = self._encode(data)
        backup_name = f"{self.data_prefix(backup_id)}{info.name}"
        self._gateway.upload(
            self.backup_container,
            backup_name,
            stored,
            _GZIP_CONTENT_TYPE if self._settings.compress else meta.content_type,
            {
                "backup-id": backup_id,
                "source-container": container,
                "original-content-type": meta.content_type,
                "original-size": str(len(data)),
            },
            context=context,
        )
        return BackupFileEntry(
            name=info.name,
            backup_object_name=backup_name,
            original_size=len(data),
            stored_size=len(stored),
            content_type=meta.content_type,
            sha256=_sha256(data),
            last_modified=meta.modified_at,
        )

    def create_backup(
        self, container: str, context: OperationContext | None = None
    ) -> BackupResult:
        """Copy every object in ``container`` into a new backup.

        The manifest is written with whatever succeeded; the result is successful
        only if every object was copied and the manifest was stored.
        """
        backup_id = str(uuid.uuid4())
        created_at = self._clock()
        logger.info("Creating backup: container=%s backup_id=%s", container, backup_id)

        try:
            objects = list(self._gateway.list_objects(container, context=context))
            self._gateway.create_container(self.backup_container, context=context)
        except StorageError as e:
            logger.error(
                "Backup failed before copying: container=%s backup_id=%s error=%s",
                container,
                backup_id,
                e,
            )
            return BackupResult(
                success=False,
                backup_id=backup_id,
                container=container,
                created_at=created_at,
                error_message=str(e),
            )

        outcomes = run_bounded(
            objects,
            lambda info: self._backup_object(container, backup_id, info, context),
            self._settings.max_concurrency,
        )
        entries = [o.result for o in outcomes if o.ok and o.result is not None]
        failed = tuple(o.item.name for o in outcomes if not o.ok)
        for outcome in outcomes:
            if not outcome.ok:
                logger.error(
                    "Error backing up object: container=%s name=%s error=%s",
                    container,
                    outcome.item.name,
                    outcome.error,
                )

        manifest = BackupManifest(
            backup_id=backup_id,
            container=container,
            created_at=created_at,
            compressed=self._settings.compress,
            file_count=len(entries),
            total_size=sum(e.original_size for e in entries),
            files=tuple(entries),
            failed_files=failed,
        )
        error_message = f"Failed to back up {len(failed)} object(s)" if failed else None
        try:
            self._gateway.upload(
                self.backup_container,
                self.manifest_name(backup_id),
                manifest.model_dump_json(indent=2).encode("utf-8"),
                "application/json",
                {"backup-id": backup_id, "source-container": container},
                context=context,
            )
        except StorageError as e:
            logger.error("Failed to write backup manifest: backup_id=%s error=%s", backup_id, e)
            error_message = f"Failed to write backup manifest: {e}"

        success = error_message is None
        logger.info(
            "Backup finished: container=%s backup_id=%s files=%d failed=%d success=%s",
            container,
            backup_id,
            manifest.file_count,
            len(failed),
            success,
        )
        return BackupResult(
            success=success,
            backup_id=backup_id,
            container=container,
            file_count=manifest.file_count,
            total_size=manifest.total_size,
            created_at=created_at,
            error_message=error_message,
            failed_files=failed,
        )

    def load_manifest(
        self, backup_id: str, context: OperationContext | None = None
    ) -> BackupManifest:
        """Read and parse a backup manifest.

        Raises:
            BackupNotFoundError: If the backup does not exist.
            ValidationError: If the manifest cannot be parsed.
        """
        try:
            raw = self._gateway.download(
                self.backup_container, self.manifest_name(backup_id), context=context
            ).read()
        except NotFoundError as e:
            raise BackupNotFoundError(backup_id, container=self.backup_container) from e
        try:
            return BackupManifest.model_validate_json(raw)
        except pydantic.ValidationError as e:
            raise ValidationError(
                "Invalid backup manifest format",
                [str(err["msg"]) for err in e.errors()],
                container=self.backup_container,
                name=self.manifest_name(backup_id),
            ) from e

    def _read_entry(
        self,
        manifest: BackupManifest,
        entry: BackupFileEntry,
        context: OperationContext | None,
    ) -> bytes:
        stored = self._gateway.download(
            self.backup_container, entry.backup_object_name, context=context
        ).read()
        data = self._decode(stored, manifest.compressed, entry)
        if _sha256(data) != entry.sha256:
            raise BackupCorruptError(
                f"Checksum mismatch: {entry.name}", name=entry.backup_object_name
            )
        return data

    def _restore_entry(
        self,
        manifest: BackupManifest,
        entry: BackupFileEntry,
        target: str,
        context: OperationContext | None,
    ) -> int:
        check_cancelled(context, container=target, name=entry.name)
        data = self._read_entry(manifest, entry, context)
        self._gateway.upload(
            target,
            entry.name,
            data,
            entry.content_type,
            {RESTORED_FROM_BACKUP_KEY: manifest.backup_id},
            context=context,
        )
        return len(data)

    def restore_backup(
        self,
        backup_id: str,
        target_container: str | None = None,
        context: OperationContext | None = None,
    ) -> RestoreResult:
        """Restore every object of a backup under its original name.

        Raises:
            BackupNotFoundError: If the backup id is unknown.
        """
        manifest = self.load_manifest(backup_id, context)
        target = target_container or manifest.container
        restored_at = self._clock()
        logger.info("Restoring backup: backup_id=%s target=%s", backup_id, target)

        try:
            self._gateway.create_container(target, context=context)
        except StorageError as e:
            logger.error("Restore failed: backup_id=%s target=%s error=%s", backup_id, target, e)
            return RestoreResult(
                success=False,
                backup_id=backup_id,
                target_container=target,
                restored_at=restored_at,
                error_message=str(e),
            )

        outcomes = run_bounded(
            list(manifest.files),
            lambda entry: self._restore_entry(manifest, entry, target, context),
            self._settings.max_concurrency,
        )
        restored = [o for o in outcomes if o.ok]
        failed = tuple(o.item.name for o in outcomes if not o.ok)
        for outcome in outcomes:
            if not outcome.ok:
                logger.error(
                    "Error restoring object: backup_id=%s name=%s error=%s",
                    backup_id,
                    outcome.item.name,
                    outcome.error,
                )

        success = len(restored) == manifest.file_count and not failed
        error_message = None
        if not success:
            error_message = (
                f"Restored {len(restored)} of {manifest.file_count} object(s) "
                f"from backup {backup_id}"
            )
        logger.info(
            "Restore finished: backup_id=%s target=%s restored=%d success=%s",
            backup_id,
            target,
            len(restored),
            success,
        )
        return RestoreResult(
            success=success,
            backup_id=backup_id,
            target_container=target,
            restored_file_count=len(restored),
            restored_bytes=sum(o.result or 0 for o in restored),
            restored_at=restored_at,
            error_message=error_message,
            failed_files=failed,
        )

    def validate_backup(
        self, backup_id: str, context: OperationContext | None = None
    ) -> ValidationResult:
        """Verify a backup against its manifest; problems are reported, not raised."""
        result = ValidationResult()
        try:
            manifest = self.load_manifest(backup_id, context)
        except BackupNotFoundError:
            result.add_error("Backup manifest not found")
            return result
        except ValidationError:
            result.add_error("Invalid backup manifest format")
            return result

        try:
            for entry in manifest.files:
                try:
                    self._read_entry(manifest, entry, context)
                except NotFoundError:
                    result.add_error(f"Backup file missing: {entry.backup_object_name}")
                except BackupCorruptError as e:
                    result.add_error(e.message)
            found = sum(
                1
                for _ in self._gateway.list_objects(
                    self.backup_container, self.data_prefix(backup_id), context=context
                )
            )
        except StorageError as e:
            result.add_error(f"Validation error: {e}")
            return result

        if found != manifest.file_count:
            result.add_error(f"File count mismatch: expected {manifest.file_count}, found {found}")
        if manifest.failed_files:
            result.add_error(
                f"Backup is incomplete: {len(manifest.failed_files)} object(s) were not copied"
            )
        if result.valid:
            logger.info("Backup validated: backup_id=%s files=%d", backup_id, manifest.file_count)
        else:
            logger.warning(
                "Backup validation failed: backup_id=%s errors=%d", backup_id, len(result.errors)
            )
        return result

    def list_backups(
        self, container: str | None = None, context: OperationContext | None = None
    ) -> list[BackupInfo]:
        """List backups (optionally of one source container), newest first."""
        try:
            listing = list(self._gateway.list_objects(self.backup_container, context=context))
        except NotFoundError:
            return []

        backups: list[BackupInfo] = []
        for info in listing:
            backup_id, _, rest = info.name.partition("/")
            if rest != MANIFEST_NAME:
                continue
            try:
                manifest = self.load_manifest(backup_id, context)
            except (BackupNotFoundError, ValidationError) as e:
                logger.error("Error reading backup manifest: backup_id=%s error=%s", backup_id, e)
                continue
            if container is not None and manifest.container != container:
                continue
            backups.append(
                BackupInfo(
                    backup_id=manifest.backup_id,
                    container=manifest.container,
                    created_at=manifest.created_at,
                    file_count=manifest.file_count,
                    total_size=manifest.total_size,
                )
            )
        backups.sort(key=lambda b: b.created_at, reverse=True)
        return backups

    def delete_backup(self, backup_id: str, context: OperationContext | None = None) -> int:
        """Delete a backup's data objects and manifest; returns data objects deleted.

        Raises:
            BackupNotFoundError: If the backup id is unknown.
        """
        manifest_name = self.manifest_name(backup_id)
        if not self._gateway.exists(self.backup_container, manifest_name, context=context):
            raise BackupNotFoundError(backup_id, container=self.backup_container)
        names = [
            info.name
            for info in self._gateway.list_objects(
                self.backup_container, self.data_prefix(backup_id), context=context
            )
        ]
        deleted = self._gateway.delete_batch(self.backup_container, names, context=context)
        self._gateway.delete(self.backup_container, manifest_name, context=context)
        logger.info("Deleted backup: backup_id=%s objects=%d", backup_id, deleted)
        return deleted

    def cleanup_expired_backups(
        self, retention_days: int | None = None, context: OperationContext | None = None
    ) -> list[str]:
        """Delete backups older than the retention period; returns deleted ids."""
        days = retention_days if retention_days is not None else self._settings.retention_days
        if days <= 0:
            raise ValueError("retention_days must be positive")
        cutoff = self._clock() - timedelta(days=days)
        deleted: list[str] = []
        for backup in self.list_backups(context=context):
            if backup.created_at >= cutoff:
                continue
            check_cancelled(context, container=self.backup_container)
            try:
                self.delete_backup(backup.backup_id, context)
            except StorageError as e:
                logger.error(
                    "Error deleting expired backup: backup_id=%s error=%s", backup.backup_id, e
                )
                continue
            deleted.append(backup.backup_id)
        if deleted:
            logger.info("Cleaned up expired backups: count=%d", len(deleted))
        return deleted

    def get_statistics(self, context: OperationContext | None = None) -> BackupStatistics:
        """Aggregate counts and sizes over every backup."""
        backups = self.list_backups(context=context)
        created = [b.created_at for b in backups]
        return BackupStatistics(
            total_backups=len(backups),
            total_backup_size=sum(b.total_size for b in backups),
            generated_at=self._clock(),
            backups_by_container=dict(Counter(b.container for b in backups)),
            oldest_backup=min(created) if created else None,
            newest_backup=max(created) if created else None,
        )
