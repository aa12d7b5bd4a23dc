"""AWS S3 blob backend using boto3.

Each container maps to one bucket named ``{bucket_prefix}{container}``. Standard
boto3 configuration (env vars, shared credentials) applies unless explicit keys
are supplied; pass endpoint_url for S3-compatible providers.

Access tiers map to S3 storage classes:
    HOT -> STANDARD, COOL -> STANDARD_IA, ARCHIVE -> GLACIER
"""

from __future__ import annotations

import hashlib
import logging
from collections.abc import Iterator, Mapping
from datetime import UTC, datetime, timedelta
from typing import Any

import boto3
from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectionClosedError,
    EndpointConnectionError,
)

from blobguard.config import S3Settings
from blobguard.errors import BackendUnavailableError, NotFoundError, StorageError
from blobguard.storage.backend import BlobBackend
from blobguard.storage.models import (
    StorageObjectInfo,
    StorageObjectMetadata,
    StoragePermission,
    StorageTier,
)
from blobguard.storage.tracing import traced_storage_operation

logger = logging.getLogger(__name__)

_NOT_FOUND_CODES = frozenset({"404", "NoSuchKey", "NoSuchBucket", "NotFound"})

_TIER_TO_STORAGE_CLASS: dict[StorageTier, str] = {
    StorageTier.HOT: "STANDARD",
    StorageTier.COOL: "STANDARD_IA",
    StorageTier.ARCHIVE: "GLACIER",
}
_STORAGE_CLASS_TO_TIER = {v: k for k, v in _TIER_TO_STORAGE_CLASS.items()}

# Reserved user-metadata key; S3 only tracks last-modified.
_CREATED_AT_KEY = "blobguard-created-at"


def _translate(
    e: Exception, *, container: str | None = None, name: str | None = None
) -> StorageError:
    """Translate a botocore exception into the blobguard taxonomy."""
    if isinstance(e, ClientError):
        code = str(e.response.get("Error", {}).get("Code", ""))
        if code in _NOT_FOUND_CODES:
            message = "Container not found" if code == "NoSuchBucket" else "Object not found"
            return NotFoundError(message, container=container, name=name)
        status = e.response.get("ResponseMetadata", {}).get("HTTPStatusCode", 0)
        if isinstance(status, int) and status >= 500:
            return BackendUnavailableError(
                f"S3 error {code}", container=container, name=name, cause=e
            )
        return StorageError(f"S3 request failed: {code}", container=container, name=name)
    if isinstance(e, (EndpointConnectionError, ConnectionClosedError)):
        return BackendUnavailableError(
            "S3 endpoint unreachable", container=container, name=name, cause=e
        )
    return BackendUnavailableError(
        f"S3 client error: {type(e).__name__}", container=container, name=name, cause=e
    )


class S3BlobBackend(BlobBackend):
    """Blob backend for AWS S3 and S3-compatible endpoints."""

    def __init__(self, settings: S3Settings | None = None, client: Any | None = None) -> None:
        """Initialize the S3 backend.

        Args:
            settings: Connection settings; defaults to S3Settings().
            client: Pre-built boto3 S3 client (overrides settings-based construction).
        """
        self._settings = settings or S3Settings()
        if client is None:
            session_kwargs: dict[str, str] = {}
            if self._settings.access_key_id and self._settings.secret_access_key:
                session_kwargs["aws_access_key_id"] = self._settings.access_key_id
                session_kwargs["aws_secret_access_key"] = self._settings.secret_access_key
            client = boto3.client(
                "s3",
                region_name=self._settings.region,
                endpoint_url=self._settings.endpoint_url,
                **session_kwargs,
            )
        self._client = client

    @property
    def backend_name(self) -> str:
        """Return the backend identifier."""
        return "s3"

    def _bucket(self, container: str) -> str:
        return f"{self._settings.bucket_prefix}{container}"

    def _head_raw(self, container: str, name: str) -> dict[str, Any]:
        try:
            response: dict[str, Any] = self._client.head_object(
                Bucket=self._bucket(container), Key=name
            )
        except (ClientError, BotoCoreError) as e:
            if isinstance(e, ClientError) and not self.container_exists(container):
                raise NotFoundError("Container not found", container=container) from e
            raise _translate(e, container=container, name=name) from e
        return response

    def _to_metadata(
        self, container: str, name: str, head: Mapping[str, Any]
    ) -> StorageObjectMetadata:
        user_meta = dict(head.get("Metadata") or {})
        modified_at = head.get("LastModified") or datetime.now(UTC)
        created_raw = user_meta.pop(_CREATED_AT_KEY, None)
        created_at = datetime.fromisoformat(created_raw) if created_raw else modified_at
        storage_class = head.get("StorageClass") or "STANDARD"
        return StorageObjectMetadata(
            container=container,
            name=name,
            size=int(head.get("ContentLength") or 0),
            content_type=head.get("ContentType") or "application/octet-stream",
            created_at=created_at,
            modified_at=modified_at,
            sha256=user_meta.pop("sha256", ""),
            tier=_STORAGE_CLASS_TO_TIER.get(storage_class, StorageTier.HOT),
            metadata=user_meta,
        )

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
        created_at = datetime.now(UTC)
        if self.exists(container, name):
            created_at = self.head(container, name).created_at

        user_meta = dict(metadata or {})
        user_meta[_CREATED_AT_KEY] = created_at.isoformat()
        user_meta["sha256"] = hashlib.sha256(data).hexdigest()
        try:
            self._client.put_object(
                Bucket=self._bucket(container),
                Key=name,
                Body=data,
                ContentType=content_type,
                Metadata=user_meta,
            )
        except (ClientError, BotoCoreError) as e:
            raise _translate(e, container=container, name=name) from e
        logger.debug("Stored object: container=%s name=%s size=%d", container, name, len(data))
        return self.head(container, name)

    @traced_storage_operation("get")
    def get(self, container: str, name: str) -> bytes:
        """Return the object payload."""
        try:
            response = self._client.get_object(Bucket=self._bucket(container), Key=name)
            body: bytes = response["Body"].read()
        except (ClientError, BotoCoreError) as e:
            raise _translate(e, container=container, name=name) from e
        return body

    @traced_storage_operation("head")
    def head(self, container: str, name: str) -> StorageObjectMetadata:
        """Return object metadata."""
        return self._to_metadata(container, name, self._head_raw(container, name))

    @traced_storage_operation("delete")
    def delete(self, container: str, name: str) -> None:
        """Delete an object; S3 deletes are silent, so existence is checked first."""
        self._head_raw(container, name)
        try:
            self._client.delete_object(Bucket=self._bucket(container), Key=name)
        except (ClientError, BotoCoreError) as e:
            raise _translate(e, container=container, name=name) from e
        logger.debug("Deleted object: container=%s name=%s", container, name)

    def exists(self, container: str, name: str) -> bool:
        """Return True if the object exists."""
        try:
            self._client.head_object(Bucket=self._bucket(container), Key=name)
        except ClientError as e:
            if str(e.response.get("Error", {}).get("Code", "")) in _NOT_FOUND_CODES:
                return False
            raise _translate(e, container=container, name=name) from e
        except BotoCoreError as e:
            raise _translate(e, container=container, name=name) from e
        return True

    def list_objects(
        self, container: str, prefix: str | None = None
    ) -> Iterator[StorageObjectInfo]:
        """Yield listing entries ordered by name (S3 lists keys lexicographically)."""
        paginator = self._client.get_paginator("list_objects_v2")
        kwargs: dict[str, str] = {"Bucket": self._bucket(container)}
        if prefix:
            kwargs["Prefix"] = prefix
        try:
            for page in paginator.paginate(**kwargs):
                for obj in page.get("Contents", []):
                    yield StorageObjectInfo(
                        name=obj["Key"],
                        size=int(obj.get("Size") or 0),
                        last_modified=obj["LastModified"],
                    )
        except (ClientError, BotoCoreError) as e:
            raise _translate(e, container=container) from e

    @traced_storage_operation("copy")
    def copy(
        self,
        src_container: str,
        src_name: str,
        dst_container: str,
        dst_name: str,
    ) -> StorageObjectMetadata:
        """Copy an object server-side; user metadata is copied with it."""
        source = self._to_metadata(src_container, src_name, self._head_raw(src_container, src_name))
        now = datetime.now(UTC)
        user_meta = dict(source.metadata)
        user_meta[_CREATED_AT_KEY] = now.isoformat()
        user_meta["sha256"] = source.sha256
        try:
            self._client.copy_object(
                Bucket=self._bucket(dst_container),
                Key=dst_name,
                CopySource={"Bucket": self._bucket(src_container), "Key": src_name},
                ContentType=source.content_type,
                Metadata=user_meta,
                MetadataDirective="REPLACE",
                StorageClass=_TIER_TO_STORAGE_CLASS[source.tier],
            )
        except (ClientError, BotoCoreError) as e:
            raise _translate(e, container=dst_container, name=dst_name) from e
        return self.head(dst_container, dst_name)

    def set_tier(self, container: str, name: str, tier: StorageTier) -> StorageObjectMetadata:
        """Change the storage class by copying the object onto itself."""
        head = self._head_raw(container, name)
        try:
            self._client.copy_object(
                Bucket=self._bucket(container),
                Key=name,
                CopySource={"Bucket": self._bucket(container), "Key": name},
                MetadataDirective="COPY",
                StorageClass=_TIER_TO_STORAGE_CLASS[tier],
            )
        except (ClientError, BotoCoreError) as e:
            raise _translate(e, container=container, name=name) from e
        logger.debug(
            "Changed tier: container=%s name=%s from=%s to=%s",
            container,
            name,
            head.get("StorageClass") or "STANDARD",
            _TIER_TO_STORAGE_CLASS[tier],
        )
        return self.head(container, name)

    def presigned_url(
        self,
        container: str,
        name: str,
        ttl: timedelta,
        permissions: StoragePermission,
    ) -> str:
        """Return a presigned URL for the operation the permissions grant."""
        if StoragePermission.READ in permissions:
            client_method = "get_object"
        elif StoragePermission.WRITE in permissions:
            client_method = "put_object"
        else:
            client_method = "delete_object"
        try:
            url: str = self._client.generate_presigned_url(
                client_method,
                Params={"Bucket": self._bucket(container), "Key": name},
                ExpiresIn=int(ttl.total_seconds()),
            )
        except (ClientError, BotoCoreError) as e:
            raise _translate(e, container=container, name=name) from e
        return url

    def create_container(self, container: str, *, public: bool = False) -> None:
        """Create the bucket; no-op if it already exists."""
        if self.container_exists(container):
            return
        kwargs: dict[str, Any] = {"Bucket": self._bucket(container)}
        if self._settings.region != "us-east-1":
            kwargs["CreateBucketConfiguration"] = {"LocationConstraint": self._settings.region}
        if public:
            kwargs["ACL"] = "public-read"
        try:
            self._client.create_bucket(**kwargs)
        except ClientError as e:
            code = str(e.response.get("Error", {}).get("Code", ""))
            if code in ("BucketAlreadyOwnedByYou", "BucketAlreadyExists"):
                return
            raise _translate(e, container=container) from e
        except BotoCoreError as e:
            raise _translate(e, container=container) from e
        logger.debug("Created container: container=%s public=%s", container, public)

    def delete_container(self, container: str) -> None:
        """Empty and delete the bucket."""
        if not self.container_exists(container):
            raise NotFoundError("Container not found", container=container)
        bucket = self._bucket(container)
        try:
            for info in list(self.list_objects(container)):
                self._client.delete_object(Bucket=bucket, Key=info.name)
            self._client.delete_bucket(Bucket=bucket)
        except (ClientError, BotoCoreError) as e:
            raise _translate(e, container=container) from e
        logger.debug("Deleted container: container=%s", container)

    def container_exists(self, container: str) -> bool:
        """Return True if the bucket exists."""
        try:
            self._client.head_bucket(Bucket=self._bucket(container))
        except ClientError as e:
            code = str(e.response.get("Error", {}).get("Code", ""))
            if code in _NOT_FOUND_CODES:
                return False
            raise _translate(e, container=container) from e
        except BotoCoreError as e:
            raise _translate(e, container=container) from e
        return True

    def list_containers(self) -> list[str]:
        """Return container names of buckets carrying the configured prefix."""
        prefix = self._settings.bucket_prefix
        try:
            response = self._client.list_buckets()
        except (ClientError, BotoCoreError) as e:
            raise _translate(e) from e
        names = [b["Name"] for b in response.get("Buckets", []) if b["Name"].startswith(prefix)]
        return sorted(name[len(prefix) :] for name in names)
