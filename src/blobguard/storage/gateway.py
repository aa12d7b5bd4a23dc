"""Storage gateway: the uniform façade over the active blob backend.

The gateway is the innermost StorageService layer. It dispatches every call to
exactly one active backend, normalizes payloads and validates caller input.
Backend errors propagate typed and unchanged; the gateway never swallows them.
"""

from __future__ import annotations

import io
import logging
from collections.abc import Iterable, Iterator, Mapping
from datetime import timedelta
from typing import BinaryIO

from blobguard.config import StorageSettings
from blobguard.context import OperationContext, check_cancelled
from blobguard.errors import ConfigError, NotFoundError, ValidationError
from blobguard.storage.backend import BlobBackend
from blobguard.storage.models import (
    StorageObjectInfo,
    StorageObjectMetadata,
    StoragePermission,
    StorageTier,
    StorageUsage,
)
from blobguard.storage.service import Payload

logger = logging.getLogger(__name__)


def read_payload(content: Payload) -> bytes:
    """Return the payload bytes.

    Seekable streams are read from the start and rewound to it afterwards;
    non-seekable streams are read from wherever they are.
    """
    if isinstance(content, (bytes, bytearray, memoryview)):
        return bytes(content)
    if content.seekable():
        content.seek(0)
        try:
            data = content.read()
        finally:
            content.seek(0)
    else:
        data = content.read()
    if not isinstance(data, bytes):
        raise ValidationError("Content stream must yield bytes", ["content must be binary"])
    return data


def validate_metadata(
    metadata: Mapping[str, str] | None,
    *,
    container: str | None = None,
    name: str | None = None,
) -> dict[str, str]:
    """Validate user metadata: non-empty string keys, unique ignoring case.

    Raises:
        ValidationError: Listing every offending key, in iteration order.
    """
    if not metadata:
        return {}
    errors: list[str] = []
    seen: set[str] = set()
    for key, value in metadata.items():
        if not isinstance(key, str) or not key.strip():
            errors.append(f"Metadata key must be a non-empty string: {key!r}")
            continue
        folded = key.lower()
        if folded in seen:
            errors.append(f"Duplicate metadata key: {key}")
        seen.add(folded)
        if not isinstance(value, str):
            errors.append(f"Metadata value for {key} must be a string")
    if errors:
        raise ValidationError("Invalid object metadata", errors, container=container, name=name)
    return dict(metadata)


class ObjectListing(Iterable[StorageObjectInfo]):
    """Lazy, finite, restartable listing.

    Each iteration re-queries the backend, so iterating twice observes writes made
    in between. Cancellation is checked between items.
    """

    def __init__(
        self,
        backend: BlobBackend,
        container: str,
        prefix: str | None = None,
        context: OperationContext | None = None,
    ) -> None:
        self._backend = backend
        self.container = container
        self.prefix = prefix
        self._context = context

    def __iter__(self) -> Iterator[StorageObjectInfo]:
        check_cancelled(self._context, container=self.container)
        for info in self._backend.list_objects(self.container, self.prefix):
            check_cancelled(self._context, container=self.container)
            yield info

    def __repr__(self) -> str:
        return f"ObjectListing(container={self.container!r}, prefix={self.prefix!r})"


class StorageGateway:
    """Uniform façade dispatching to one active backend.

    Attributes:
        backends: Registered backends by name.
        active: Name of the backend receiving calls.
    """

    def __init__(self, backends: Mapping[str, BlobBackend], active: str) -> None:
        if not backends:
            raise ConfigError("At least one backend must be registered")
        self._backends = dict(backends)
        self._active = ""
        self.switch_backend(active)

    @property
    def backends(self) -> Mapping[str, BlobBackend]:
        return dict(self._backends)

    @property
    def active(self) -> str:
        return self._active

    @property
    def backend(self) -> BlobBackend:
        """The active backend."""
        return self._backends[self._active]

    def switch_backend(self, name: str) -> None:
        """Make a registered backend the active one.

        Raises:
            ConfigError: If no backend is registered under ``name``.
        """
        if name not in self._backends:
            raise ConfigError(f"Unknown storage backend: {name}")
        self._active = name
        logger.info("Active storage backend: %s", name)

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
        check_cancelled(context, container=container, name=name)
        clean_metadata = validate_metadata(metadata, container=container, name=name)
        data = read_payload(content)
        check_cancelled(context, container=container, name=name)
        backend = self.backend
        backend.put(container, name, data, content_type=content_type, metadata=clean_metadata)
        logger.debug("Uploaded object: container=%s name=%s size=%d", container, name, len(data))
        return f"{backend.backend_name}://{container}/{name}"

    def download(
        self, container: str, name: str, *, context: OperationContext | None = None
    ) -> BinaryIO:
        check_cancelled(context, container=container, name=name)
        data = self.backend.get(container, name)
        return io.BytesIO(data)

    def delete(self, container: str, name: str, *, context: OperationContext | None = None) -> None:
        check_cancelled(context, container=container, name=name)
        try:
            self.backend.delete(container, name)
        except NotFoundError:
            logger.debug("Delete of absent object: container=%s name=%s", container, name)

    def delete_batch(
        self, container: str, names: Iterable[str], *, context: OperationContext | None = None
    ) -> int:
        processed = 0
        for name in names:
            self.delete(container, name, context=context)
            processed += 1
        return processed

    def exists(self, container: str, name: str, *, context: OperationContext | None = None) -> bool:
        check_cancelled(context, container=container, name=name)
        return self.backend.exists(container, name)

    def get_metadata(
        self, container: str, name: str, *, context: OperationContext | None = None
    ) -> StorageObjectMetadata:
        check_cancelled(context, container=container, name=name)
        return self.backend.head(container, name)

    def list_objects(
        self,
        container: str,
        prefix: str | None = None,
        *,
        context: OperationContext | None = None,
    ) -> ObjectListing:
        check_cancelled(context, container=container)
        backend = self.backend
        if not backend.container_exists(container):
            raise NotFoundError("Container not found", container=container)
        return ObjectListing(backend, container, prefix, context)

    def get_presigned_url(
        self,
        container: str,
        name: str,
        ttl: timedelta,
        permissions: StoragePermission = StoragePermission.READ,
        *,
        context: OperationContext | None = None,
    ) -> str:
        check_cancelled(context, container=container, name=name)
        if ttl <= timedelta(0):
            raise ValidationError(
                "Invalid presigned URL request",
                ["ttl must be positive"],
                container=container,
                name=name,
            )
        backend = self.backend
        if StoragePermission.READ in permissions and not backend.exists(container, name):
            raise NotFoundError(container=container, name=name)
        return backend.presigned_url(container, name, ttl, permissions)

    def create_container(
        self, container: str, public: bool = False, *, context: OperationContext | None = None
    ) -> None:
        check_cancelled(context, container=container)
        self.backend.create_container(container, public=public)

    def delete_container(self, container: str, *, context: OperationContext | None = None) -> None:
        check_cancelled(context, container=container)
        self.backend.delete_container(container)
        logger.info("Deleted container: container=%s", container)

    def list_containers(self, *, context: OperationContext | None = None) -> list[str]:
        check_cancelled(context)
        return self.backend.list_containers()

    def copy(
        self,
        src_container: str,
        src_name: str,
        dst_container: str,
        dst_name: str,
        *,
        context: OperationContext | None = None,
    ) -> None:
        check_cancelled(context, container=src_container, name=src_name)
        self.backend.copy(src_container, src_name, dst_container, dst_name)

    def change_tier(
        self,
        container: str,
        name: str,
        tier: StorageTier,
        *,
        context: OperationContext | None = None,
    ) -> None:
        check_cancelled(context, container=container, name=name)
        self.backend.set_tier(container, name, tier)

    def get_usage(self, container: str, *, context: OperationContext | None = None) -> StorageUsage:
        check_cancelled(context, container=container)
        if not self.backend.container_exists(container):
            raise NotFoundError("Container not found", container=container)
        return self.backend.usage(container)


def build_backend(settings: StorageSettings) -> BlobBackend:
    """Construct the backend selected by ``settings.provider``.

    Raises:
        ConfigError: If the provider is unknown.
    """
    if settings.provider == "memory":
        from blobguard.storage.memory_backend import InMemoryBlobBackend

        return InMemoryBlobBackend()
    if settings.provider == "filesystem":
        from blobguard.storage.filesystem_backend import FilesystemBlobBackend

        return FilesystemBlobBackend(settings.filesystem_base_dir)
    if settings.provider == "s3":
        from blobguard.storage.s3_backend import S3BlobBackend

        return S3BlobBackend(settings.s3)
    raise ConfigError(f"Unknown storage provider: {settings.provider}")
