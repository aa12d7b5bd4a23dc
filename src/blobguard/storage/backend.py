"""Blob backend interface definition.

Provides the BlobBackend abstract base class that every concrete object-store
client implements. Backends move bytes; policy lives in the gateway and filters.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterator, Mapping
from datetime import UTC, datetime, timedelta

from blobguard.storage.models import (
    StorageObjectInfo,
    StorageObjectMetadata,
    StoragePermission,
    StorageTier,
    StorageUsage,
)


class BlobBackend(ABC):
    """Abstract base class for blob storage backends.

    All implementations must:
    - Surface a distinguishable NotFoundError for missing objects/containers
    - Translate transport failures into BackendUnavailableError
    - Never swallow backend errors

    Implementations:
    - InMemoryBlobBackend: process-local dictionaries (dev/test)
    - FilesystemBlobBackend: local filesystem (dev/test)
    - S3BlobBackend: AWS S3 and S3-compatible endpoints (production)
    """

    @property
    @abstractmethod
    def backend_name(self) -> str:
        """Return the backend identifier for observability (e.g., "s3")."""
        ...

    @abstractmethod
    def put(
        self,
        container: str,
        name: str,
        data: bytes,
        *,
        content_type: str,
        metadata: Mapping[str, str] | None = None,
    ) -> StorageObjectMetadata:
        """Store an object, replacing any existing object with the same name.

        Raises:
            NotFoundError: If the container does not exist.
            BackendUnavailableError: If the backend cannot complete the write.
        """
        ...

    @abstractmethod
    def get(self, container: str, name: str) -> bytes:
        """Return the object payload.

        Raises:
            NotFoundError: If the object or container does not exist.
        """
        ...

    @abstractmethod
    def head(self, container: str, name: str) -> StorageObjectMetadata:
        """Return object metadata without the payload.

        Raises:
            NotFoundError: If the object or container does not exist.
        """
        ...

    @abstractmethod
    def delete(self, container: str, name: str) -> None:
        """Delete an object.

        Raises:
            NotFoundError: If the object or container does not exist.
        """
        ...

    @abstractmethod
    def exists(self, container: str, name: str) -> bool:
        """Return True if the object exists (False for a missing container)."""
        ...

    @abstractmethod
    def list_objects(
        self, container: str, prefix: str | None = None
    ) -> Iterator[StorageObjectInfo]:
        """Yield listing entries ordered by name.

        Raises:
            NotFoundError: If the container does not exist.
        """
        ...

    @abstractmethod
    def copy(
        self,
        src_container: str,
        src_name: str,
        dst_container: str,
        dst_name: str,
    ) -> StorageObjectMetadata:
        """Copy an object, preserving content type and metadata.

        Raises:
            NotFoundError: If the source object or either container does not exist.
        """
        ...

    @abstractmethod
    def set_tier(self, container: str, name: str, tier: StorageTier) -> StorageObjectMetadata:
        """Move an object to another access tier.

        Raises:
            NotFoundError: If the object does not exist.
        """
        ...

    @abstractmethod
    def presigned_url(
        self,
        container: str,
        name: str,
        ttl: timedelta,
        permissions: StoragePermission,
    ) -> str:
        """Return a time-limited, capability-scoped URL for the object."""
        ...

    @abstractmethod
    def create_container(self, container: str, *, public: bool = False) -> None:
        """Create a container; no-op if it already exists."""
        ...

    @abstractmethod
    def delete_container(self, container: str) -> None:
        """Delete a container and all of its objects.

        Raises:
            NotFoundError: If the container does not exist.
        """
        ...

    @abstractmethod
    def container_exists(self, container: str) -> bool:
        """Return True if the container exists."""
        ...

    @abstractmethod
    def list_containers(self) -> list[str]:
        """Return all container names, sorted."""
        ...

    def usage(self, container: str) -> StorageUsage:
        """Return usage statistics computed from a full listing.

        Backends with a cheaper native usage query override this.
        """
        total = 0
        count = 0
        for info in self.list_objects(container):
            total += info.size
            count += 1
        return StorageUsage(
            container=container,
            total_size=total,
            object_count=count,
            last_updated=datetime.now(UTC),
        )
