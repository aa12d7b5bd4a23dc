"""In-memory blob backend for development and testing.

Thread-safe: every container map mutation happens under a single re-entrant lock.
Payloads are stored as immutable bytes so callers can never alias backend state.
"""

from __future__ import annotations

import hashlib
import logging
import threading
from collections.abc import Iterator, Mapping
from dataclasses import replace
from datetime import UTC, datetime, timedelta

from blobguard.errors import NotFoundError
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


class InMemoryBlobBackend(BlobBackend):
    """Process-local blob backend keyed by container and object name."""

    def __init__(self, signing_secret: bytes | None = None) -> None:
        self._lock = threading.RLock()
        self._containers: dict[str, dict[str, tuple[bytes, StorageObjectMetadata]]] = {}
        self._public: set[str] = set()
        self._secret = signing_secret or generate_signing_secret()

    @property
    def backend_name(self) -> str:
        """Return the backend identifier."""
        return "memory"

    @property
    def signing_secret(self) -> bytes:
        """Secret used to sign presigned URLs."""
        return self._secret

    def _container(self, container: str) -> dict[str, tuple[bytes, StorageObjectMetadata]]:
        objects = self._containers.get(container)
        if objects is None:
            raise NotFoundError("Container not found", container=container)
        return objects

    def _entry(self, container: str, name: str) -> tuple[bytes, StorageObjectMetadata]:
        entry = self._container(container).get(name)
        if entry is None:
            raise NotFoundError(container=container, name=name)
        return entry

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
        now = datetime.now(UTC)
        with self._lock:
            objects = self._container(container)
            previous = objects.get(name)
            created_at = previous[1].created_at if previous else now
            meta = StorageObjectMetadata(
                container=container,
                name=name,
                size=len(data),
                content_type=content_type,
                created_at=created_at,
                modified_at=now,
                sha256=hashlib.sha256(data).hexdigest(),
                metadata=dict(metadata or {}),
            )
            objects[name] = (bytes(data), meta)
        logger.debug("Stored object: container=%s name=%s size=%d", container, name, len(data))
        return meta

    @traced_storage_operation("get")
    def get(self, container: str, name: str) -> bytes:
        """Return the object payload."""
        with self._lock:
            return self._entry(container, name)[0]

    @traced_storage_operation("head")
    def head(self, container: str, name: str) -> StorageObjectMetadata:
        """Return object metadata."""
        with self._lock:
            return self._entry(container, name)[1]

    @traced_storage_operation("delete")
    def delete(self, container: str, name: str) -> None:
        """Delete an object."""
        with self._lock:
            objects = self._container(container)
            if objects.pop(name, None) is None:
                raise NotFoundError(container=container, name=name)
        logger.debug("Deleted object: container=%s name=%s", container, name)

    def exists(self, container: str, name: str) -> bool:
        """Return True if the object exists."""
        with self._lock:
            return name in self._containers.get(container, {})

    def list_objects(
        self, container: str, prefix: str | None = None
    ) -> Iterator[StorageObjectInfo]:
        """Yield listing entries ordered by name from a point-in-time snapshot."""
        with self._lock:
            snapshot = [
                StorageObjectInfo(name=n, size=m.size, last_modified=m.modified_at)
                for n, (_, m) in self._container(container).items()
                if prefix is None or n.startswith(prefix)
            ]
        snapshot.sort(key=lambda info: info.name)
        return iter(snapshot)

    @traced_storage_operation("copy")
    def copy(
        self,
        src_container: str,
        src_name: str,
        dst_container: str,
        dst_name: str,
    ) -> StorageObjectMetadata:
        """Copy an object, preserving content type, tier and metadata."""
        now = datetime.now(UTC)
        with self._lock:
            data, src_meta = self._entry(src_container, src_name)
            objects = self._container(dst_container)
            meta = replace(
                src_meta,
                container=dst_container,
                name=dst_name,
                created_at=now,
                modified_at=now,
            )
            objects[dst_name] = (data, meta)
        return meta

    def set_tier(self, container: str, name: str, tier: StorageTier) -> StorageObjectMetadata:
        """Move an object to another access tier."""
        with self._lock:
            data, meta = self._entry(container, name)
            updated = replace(meta, tier=tier)
            self._containers[container][name] = (data, updated)
        return updated

    def presigned_url(
        self,
        container: str,
        name: str,
        ttl: timedelta,
        permissions: StoragePermission,
    ) -> str:
        """Return an HMAC-signed memory:// URL."""
        return sign_local_url("memory", self._secret, container, name, ttl, permissions)

    def create_container(self, container: str, *, public: bool = False) -> None:
        """Create a container; no-op if it already exists."""
        with self._lock:
            self._containers.setdefault(container, {})
            if public:
                self._public.add(container)

    def delete_container(self, container: str) -> None:
        """Delete a container and all of its objects."""
        with self._lock:
            if self._containers.pop(container, None) is None:
                raise NotFoundError("Container not found", container=container)
            self._public.discard(container)

    def container_exists(self, container: str) -> bool:
        """Return True if the container exists."""
        with self._lock:
            return container in self._containers

    def is_public(self, container: str) -> bool:
        """Return True if the container was created with public access."""
        with self._lock:
            return container in self._public

    def list_containers(self) -> list[str]:
        """Return all container names, sorted."""
        with self._lock:
            return sorted(self._containers)
