"""Filesystem blob backend.

Provides local filesystem storage for development and testing with:
- Container isolation via physical directory namespacing
- Path traversal protection
- SHA256 content hashing
- Atomic temp-file writes with JSON metadata side files

Environment Variables:
    BLOBGUARD_FS_BASE_DIR: Base directory for storage
        (default: tempfile.gettempdir() / blobguard_objects)
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import re
import shutil
import tempfile
import uuid
from collections.abc import Iterator, Mapping
from dataclasses import replace
from datetime import UTC, datetime, timedelta
from pathlib import Path

from blobguard.errors import BackendUnavailableError, NotFoundError, PathTraversalError
from blobguard.storage.backend import BlobBackend
from blobguard.storage.models import (
    StorageObjectInfo,
    StorageObjectMetadata,
    StoragePermission,
    StorageTier,
)
from blobguard.storage.presign import generate_signing_secret, sign_local_url
from blobguard.storage.tracing import traced_storage_operation

logger = logging.getLogger(__name__)

BLOBGUARD_FS_BASE_DIR_ENV = "BLOBGUARD_FS_BASE_DIR"

_SAFE_NAME_PATTERN = re.compile(r"^[a-zA-Z0-9_\-./]+$")
_SAFE_CONTAINER_PATTERN = re.compile(r"^[a-zA-Z0-9][a-zA-Z0-9_\-.]{0,127}$")

_CONTAINER_MARKER = "_container.json"
_METADATA_FILE = "meta.json"
_CONTENT_FILE = "content.data"


def _is_path_traversal(name: str) -> bool:
    """Check if an object name contains path traversal sequences.

    Detects:
    - ".." segments
    - Absolute paths (starting with / or ~, or drive letters like C:)
    - Backslashes and null bytes
    - Characters outside the safe set
    """
    if not name or "\x00" in name or "\\" in name:
        return True
    if name.startswith(("/", "~")):
        return True
    if len(name) >= 2 and name[1] == ":":
        return True
    if any(segment == ".." for segment in name.split("/")):
        return True
    return not _SAFE_NAME_PATTERN.match(name)


def _validate_container(container: str) -> None:
    if ".." in container or not _SAFE_CONTAINER_PATTERN.match(container):
        raise PathTraversalError("Invalid container name", container=container)


def _validate_name(container: str, name: str) -> None:
    if _is_path_traversal(name):
        raise PathTraversalError(
            "Invalid name: path traversal or unsafe characters detected",
            container=container,
            name=name,
        )


def _write_atomic(target: Path, data: bytes) -> None:
    """Write bytes to target via a temp file and rename."""
    tmp_file = target.parent / f"{target.name}.{uuid.uuid4().hex}.tmp"
    try:
        tmp_file.write_bytes(data)
        tmp_file.replace(target)
    except OSError as e:
        tmp_file.unlink(missing_ok=True)
        raise BackendUnavailableError(f"Failed to write {target.name}: {e}", cause=e) from e


class FilesystemBlobBackend(BlobBackend):
    """Filesystem-based blob backend.

    Objects are stored in a directory structure:
        {base_dir}/{container}/
            _container.json             # container marker (public flag)
            {safe_name}_{name_hash}/
                content.data            # payload
                meta.json               # StorageObjectMetadata
    """

    def __init__(
        self,
        base_dir: str | Path | None = None,
        signing_secret: bytes | None = None,
    ) -> None:
        """Initialize filesystem storage.

        Args:
            base_dir: Base directory for storage. If None, uses
                BLOBGUARD_FS_BASE_DIR env var or OS temp directory.
            signing_secret: HMAC secret for presigned URLs (random if None).
        """
        if base_dir is None:
            base_dir = os.environ.get(BLOBGUARD_FS_BASE_DIR_ENV)

        if base_dir is None:
            base_dir = Path(tempfile.gettempdir()) / "blobguard_objects"
        else:
            base_dir = Path(base_dir)

        self._base_dir = base_dir.resolve()
        self._base_dir.mkdir(parents=True, exist_ok=True)
        self._secret = signing_secret or generate_signing_secret()
        logger.debug("FilesystemBlobBackend initialized with base_dir=%s", self._base_dir)

    @property
    def backend_name(self) -> str:
        """Return the backend identifier."""
        return "filesystem"

    @property
    def base_dir(self) -> Path:
        """Return the base directory path."""
        return self._base_dir

    @property
    def signing_secret(self) -> bytes:
        """Secret used to sign presigned URLs."""
        return self._secret

    def _container_dir(self, container: str) -> Path:
        _validate_container(container)
        return self._base_dir / container

    def _existing_container_dir(self, container: str) -> Path:
        container_dir = self._container_dir(container)
        if not (container_dir / _CONTAINER_MARKER).exists():
            raise NotFoundError("Container not found", container=container)
        return container_dir

    def _object_dir(self, container_dir: Path, container: str, name: str) -> Path:
        """Get the directory for an object using a hash of the name."""
        _validate_name(container, name)
        name_hash = hashlib.sha256(name.encode("utf-8")).hexdigest()[:16]
        safe_name = re.sub(r"[^a-zA-Z0-9_\-]", "_", name)[:64]
        obj_dir = container_dir / f"{safe_name}_{name_hash}"
        self._ensure_resolved_within_base(obj_dir, container, name)
        return obj_dir

    def _ensure_resolved_within_base(self, path: Path, container: str, name: str) -> Path:
        """Ensure a path resolves within the base directory."""
        resolved = path.resolve()
        try:
            resolved.relative_to(self._base_dir)
        except ValueError as e:
            raise PathTraversalError(
                "Path resolves outside storage base directory",
                container=container,
                name=name,
            ) from e
        return resolved

    def _read_metadata(self, obj_dir: Path) -> StorageObjectMetadata | None:
        meta_file = obj_dir / _METADATA_FILE
        if not meta_file.exists():
            return None
        try:
            data = json.loads(meta_file.read_text(encoding="utf-8"))
            return StorageObjectMetadata.from_dict(data)
        except (OSError, json.JSONDecodeError, KeyError, ValueError) as e:
            logger.warning("Failed to read metadata %s: %s", meta_file.name, e)
            return None

    def _write_metadata(self, obj_dir: Path, metadata: StorageObjectMetadata) -> None:
        payload = json.dumps(metadata.to_dict(), indent=2).encode("utf-8")
        _write_atomic(obj_dir / _METADATA_FILE, payload)

    def _require_metadata(self, container: str, name: str) -> tuple[Path, StorageObjectMetadata]:
        container_dir = self._existing_container_dir(container)
        obj_dir = self._object_dir(container_dir, container, name)
        metadata = self._read_metadata(obj_dir)
        if metadata is None:
            raise NotFoundError(container=container, name=name)
        return obj_dir, metadata

    @traced_storage_operation("put")
    def put(
        self,
        container: str,
        name: str,
        data: bytes,
        *,
        content_type: str,
        metadata: Mapping[str, str] | None = None,
    ) -> StorageObjectMetadata:
        """Store an object."""
        container_dir = self._existing_container_dir(container)
        obj_dir = self._object_dir(container_dir, container, name)
        try:
            obj_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise BackendUnavailableError(
                f"Failed to create object directory: {e}",
                container=container,
                name=name,
                cause=e,
            ) from e

        now = datetime.now(UTC)
        previous = self._read_metadata(obj_dir)
        meta = StorageObjectMetadata(
            container=container,
            name=name,
            size=len(data),
            content_type=content_type,
            created_at=previous.created_at if previous else now,
            modified_at=now,
            sha256=hashlib.sha256(data).hexdigest(),
            metadata=dict(metadata or {}),
        )
        _write_atomic(obj_dir / _CONTENT_FILE, data)
        self._write_metadata(obj_dir, meta)

        logger.debug(
            "Stored object: container=%s name=%s sha256=%s", container, name, meta.sha256
        )
        return meta

    @traced_storage_operation("get")
    def get(self, container: str, name: str) -> bytes:
        """Return the object payload."""
        obj_dir, _ = self._require_metadata(container, name)
        content_file = obj_dir / _CONTENT_FILE
        try:
            return content_file.read_bytes()
        except FileNotFoundError as e:
            raise NotFoundError(
                "Object content not found", container=container, name=name
            ) from e
        except OSError as e:
            raise BackendUnavailableError(
                f"Failed to read content: {e}", container=container, name=name, cause=e
            ) from e

    @traced_storage_operation("head")
    def head(self, container: str, name: str) -> StorageObjectMetadata:
        """Return object metadata."""
        return self._require_metadata(container, name)[1]

    @traced_storage_operation("delete")
    def delete(self, container: str, name: str) -> None:
        """Delete an object."""
        obj_dir, _ = self._require_metadata(container, name)
        try:
            shutil.rmtree(obj_dir)
        except OSError as e:
            raise BackendUnavailableError(
                f"Failed to delete object directory: {e}",
                container=container,
                name=name,
                cause=e,
            ) from e
        logger.debug("Deleted object: container=%s name=%s", container, name)

    def exists(self, container: str, name: str) -> bool:
        """Return True if the object exists."""
        try:
            self._require_metadata(container, name)
        except NotFoundError:
            return False
        return True

    def list_objects(
        self, container: str, prefix: str | None = None
    ) -> Iterator[StorageObjectInfo]:
        """Yield listing entries ordered by name."""
        container_dir = self._existing_container_dir(container)
        entries: list[StorageObjectInfo] = []
        try:
            children = list(container_dir.iterdir())
        except OSError as e:
            raise BackendUnavailableError(
                f"Failed to list container: {e}", container=container, cause=e
            ) from e
        for child in children:
            if not child.is_dir():
                continue
            meta = self._read_metadata(child)
            if meta is None:
                continue
            if prefix is not None and not meta.name.startswith(prefix):
                continue
            entries.append(
                StorageObjectInfo(name=meta.name, size=meta.size, last_modified=meta.modified_at)
            )
        entries.sort(key=lambda info: info.name)
        return iter(entries)

    @traced_storage_operation("copy")
    def copy(
        self,
        src_container: str,
        src_name: str,
        dst_container: str,
        dst_name: str,
    ) -> StorageObjectMetadata:
        """Copy an object, preserving content type, tier and metadata."""
        data = self.get(src_container, src_name)
        src_meta = self.head(src_container, src_name)
        copied = self.put(
            dst_container,
            dst_name,
            data,
            content_type=src_meta.content_type,
            metadata=src_meta.metadata,
        )
        if src_meta.tier != copied.tier:
            copied = self.set_tier(dst_container, dst_name, src_meta.tier)
        return copied

    def set_tier(self, container: str, name: str, tier: StorageTier) -> StorageObjectMetadata:
        """Move an object to another access tier (recorded in the side file)."""
        obj_dir, meta = self._require_metadata(container, name)
        updated = replace(meta, tier=tier)
        self._write_metadata(obj_dir, updated)
        return updated

    def presigned_url(
        self,
        container: str,
        name: str,
        ttl: timedelta,
        permissions: StoragePermission,
    ) -> str:
        """Return an HMAC-signed file:// URL."""
        _validate_container(container)
        _validate_name(container, name)
        return sign_local_url("file", self._secret, container, name, ttl, permissions)

    def create_container(self, container: str, *, public: bool = False) -> None:
        """Create a container; no-op if it already exists."""
        container_dir = self._container_dir(container)
        marker = container_dir / _CONTAINER_MARKER
        if marker.exists():
            return
        try:
            container_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise BackendUnavailableError(
                f"Failed to create container: {e}", container=container, cause=e
            ) from e
        body = {"public": public, "created_at": datetime.now(UTC).isoformat()}
        _write_atomic(marker, json.dumps(body).encode("utf-8"))
        logger.debug("Created container: container=%s public=%s", container, public)

    def delete_container(self, container: str) -> None:
        """Delete a container and all of its objects."""
        container_dir = self._existing_container_dir(container)
        try:
            shutil.rmtree(container_dir)
        except OSError as e:
            raise BackendUnavailableError(
                f"Failed to delete container: {e}", container=container, cause=e
            ) from e
        logger.debug("Deleted container: container=%s", container)

    def container_exists(self, container: str) -> bool:
        """Return True if the container exists."""
        return (self._container_dir(container) / _CONTAINER_MARKER).exists()

    def list_containers(self) -> list[str]:
        """Return all container names, sorted."""
        return sorted(
            child.name
            for child in self._base_dir.iterdir()
            if child.is_dir() and (child / _CONTAINER_MARKER).exists()
        )
