"""The uniform storage contract.

StorageService is implemented by the gateway and by every filter that decorates
it. Each filter holds a reference to the next layer and exposes exactly the same
operation set, so layers can be reordered or replaced with stubs in tests.

Every operation accepts an optional OperationContext carrying the client IP and
the caller's cancellation signal.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from datetime import timedelta
from typing import BinaryIO, Protocol, runtime_checkable

from blobguard.context import OperationContext
from blobguard.storage.models import (
    StorageObjectInfo,
    StorageObjectMetadata,
    StoragePermission,
    StorageTier,
    StorageUsage,
)

Payload = bytes | BinaryIO


@runtime_checkable
class StorageService(Protocol):
    """Protocol for the storage façade and its decorators."""

    def upload(
        self,
        container: str,
        name: str,
        content: Payload,
        content_type: str,
        metadata: Mapping[str, str] | None = None,
        *,
        context: OperationContext | None = None,
    ) -> str:
        """Store an object and return its object id."""
        ...

    def download(
        self, container: str, name: str, *, context: OperationContext | None = None
    ) -> BinaryIO:
        """Return the object payload as a stream positioned at the start."""
        ...

    def delete(self, container: str, name: str, *, context: OperationContext | None = None) -> None:
        """Delete an object; deleting an absent object succeeds silently."""
        ...

    def delete_batch(
        self, container: str, names: Iterable[str], *, context: OperationContext | None = None
    ) -> int:
        """Delete several objects; returns the number of names processed."""
        ...

    def exists(self, container: str, name: str, *, context: OperationContext | None = None) -> bool:
        """Return True if the object exists."""
        ...

    def get_metadata(
        self, container: str, name: str, *, context: OperationContext | None = None
    ) -> StorageObjectMetadata:
        """Return the object's metadata snapshot."""
        ...

    def list_objects(
        self,
        container: str,
        prefix: str | None = None,
        *,
        context: OperationContext | None = None,
    ) -> Iterable[StorageObjectInfo]:
        """Return a lazy, finite, restartable listing."""
        ...

    def get_presigned_url(
        self,
        container: str,
        name: str,
        ttl: timedelta,
        permissions: StoragePermission = StoragePermission.READ,
        *,
        context: OperationContext | None = None,
    ) -> str:
        """Return a time-limited direct-access URL."""
        ...

    def create_container(
        self, container: str, public: bool = False, *, context: OperationContext | None = None
    ) -> None:
        """Create a container if it does not exist."""
        ...

    def delete_container(self, container: str, *, context: OperationContext | None = None) -> None:
        """Delete a container and its contents."""
        ...

    def list_containers(self, *, context: OperationContext | None = None) -> list[str]:
        """Return all container names."""
        ...

    def copy(
        self,
        src_container: str,
        src_name: str,
        dst_container: str,
        dst_name: str,
        *,
        context: OperationContext | None = None,
    ) -> None:
        """Copy an object."""
        ...

    def change_tier(
        self,
        container: str,
        name: str,
        tier: StorageTier,
        *,
        context: OperationContext | None = None,
    ) -> None:
        """Move an object to another access tier."""
        ...

    def get_usage(self, container: str, *, context: OperationContext | None = None) -> StorageUsage:
        """Return size/count usage for a container."""
        ...
