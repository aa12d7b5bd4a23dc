"""Tests for the StorageGateway and the in-memory blob backend.

Covers:
- Upload/download roundtrip and object identifiers
- Idempotent delete and batch delete
- Lazy, restartable listings
- Metadata validation, presigned URLs, copy, tier change and usage
- Cancellation through OperationContext
"""

from __future__ import annotations

import hashlib
import io
import threading
from datetime import UTC, datetime, timedelta

import pytest

from blobguard.context import OperationContext
from blobguard.errors import ConfigError, NotFoundError, OperationCancelledError, ValidationError
from blobguard.storage.gateway import StorageGateway, validate_metadata
from blobguard.storage.memory_backend import InMemoryBlobBackend
from blobguard.storage.models import StoragePermission, StorageTier
from blobguard.storage.presign import sign_local_url, verify_local_url


class TestUploadDownload:
    """Tests for basic upload/download behavior."""

    def test_upload_returns_backend_qualified_id(self, gateway: StorageGateway) -> None:
        """Upload should return '{backend}://{container}/{name}'."""
        object_id = gateway.upload("docs", "a/report.txt", b"hello", "text/plain")

        assert object_id == "memory://docs/a/report.txt"

    def test_roundtrip_returns_identical_bytes(self, gateway: StorageGateway) -> None:
        """Download should return exactly the uploaded bytes."""
        data = bytes(range(256)) * 4
        gateway.upload("docs", "blob.bin", data, "application/octet-stream")

        stream = gateway.download("docs", "blob.bin")

        assert stream.read() == data

    def test_upload_accepts_stream(self, gateway: StorageGateway) -> None:
        """A seekable stream is stored from its start and rewound afterwards."""
        stream = io.BytesIO(b"streamed")
        stream.seek(3)

        gateway.upload("docs", "stream.txt", stream, "text/plain")

        assert stream.tell() == 0
        assert gateway.download("docs", "stream.txt").read() == b"streamed"

    def test_metadata_reflects_upload(self, gateway: StorageGateway) -> None:
        """get_metadata should report size, content type, digest and user metadata."""
        gateway.upload("docs", "m.txt", b"abc", "text/plain", {"owner": "ops"})

        meta = gateway.get_metadata("docs", "m.txt")

        assert meta.size == 3
        assert meta.content_type == "text/plain"
        assert meta.sha256 == hashlib.sha256(b"abc").hexdigest()
        assert meta.metadata["owner"] == "ops"
        assert meta.tier == StorageTier.HOT

    def test_download_missing_object_raises_not_found(self, gateway: StorageGateway) -> None:
        """Downloading an absent object should raise NotFoundError."""
        with pytest.raises(NotFoundError):
            gateway.download("docs", "missing.txt")

    def test_upload_to_missing_container_raises_not_found(self, gateway: StorageGateway) -> None:
        """Uploading into an absent container should raise NotFoundError."""
        with pytest.raises(NotFoundError):
            gateway.upload("nope", "x.txt", b"x", "text/plain")

    def test_exists(self, gateway: StorageGateway) -> None:
        """exists() should reflect presence without raising."""
        gateway.upload("docs", "e.txt", b"x", "text/plain")

        assert gateway.exists("docs", "e.txt") is True
        assert gateway.exists("docs", "other.txt") is False
        assert gateway.exists("nope", "e.txt") is False


class TestDelete:
    """Tests for delete semantics."""

    def test_delete_removes_object(self, gateway: StorageGateway) -> None:
        """Delete should remove an existing object."""
        gateway.upload("docs", "d.txt", b"x", "text/plain")

        gateway.delete("docs", "d.txt")

        assert gateway.exists("docs", "d.txt") is False

    def test_delete_missing_object_is_silent(self, gateway: StorageGateway) -> None:
        """Deleting an absent object should succeed silently."""
        gateway.delete("docs", "never-existed.txt")

    def test_delete_batch_returns_processed_count(self, gateway: StorageGateway) -> None:
        """delete_batch should process every name, present or not."""
        for name in ("1.txt", "2.txt"):
            gateway.upload("docs", name, b"x", "text/plain")

        count = gateway.delete_batch("docs", ["1.txt", "2.txt", "3.txt"])

        assert count == 3
        assert list(gateway.list_objects("docs")) == []


class TestListing:
    """Tests for lazy listings."""

    def test_listing_is_sorted_and_prefix_filtered(self, gateway: StorageGateway) -> None:
        """Listings are ordered by name and honor the prefix."""
        for name in ("logs/b.txt", "logs/a.txt", "img/c.png"):
            gateway.upload("docs", name, b"x", "text/plain")

        names = [info.name for info in gateway.list_objects("docs", "logs/")]

        assert names == ["logs/a.txt", "logs/b.txt"]

    def test_listing_is_restartable(self, gateway: StorageGateway) -> None:
        """Iterating a listing twice re-queries the backend."""
        gateway.upload("docs", "one.txt", b"x", "text/plain")
        listing = gateway.list_objects("docs")

        first = [info.name for info in listing]
        gateway.upload("docs", "two.txt", b"x", "text/plain")
        second = [info.name for info in listing]

        assert first == ["one.txt"]
        assert second == ["one.txt", "two.txt"]

    def test_listing_missing_container_raises_not_found(self, gateway: StorageGateway) -> None:
        """Listing an absent container should raise NotFoundError."""
        with pytest.raises(NotFoundError):
            gateway.list_objects("nope")

    def test_list_containers(self, gateway: StorageGateway) -> None:
        """list_containers should include created containers."""
        gateway.create_container("media")

        assert set(gateway.list_containers()) >= {"docs", "media"}


class TestMetadataValidation:
    """Tests for user metadata validation."""

    def test_duplicate_keys_ignoring_case_rejected(self) -> None:
        """Keys that differ only in case are duplicates."""
        with pytest.raises(ValidationError) as exc_info:
            validate_metadata({"Owner": "a", "owner": "b"})

        assert "Duplicate metadata key: owner" in exc_info.value.errors

    def test_empty_key_rejected(self, gateway: StorageGateway) -> None:
        """An empty key is rejected before anything is written."""
        with pytest.raises(ValidationError):
            gateway.upload("docs", "k.txt", b"x", "text/plain", {" ": "v"})

        assert gateway.exists("docs", "k.txt") is False


class TestPresignedUrls:
    """Tests for presigned URL generation and verification."""

    def test_presigned_url_verifies(
        self, gateway: StorageGateway, memory_backend: InMemoryBlobBackend
    ) -> None:
        """A generated URL verifies with the backend secret."""
        gateway.upload("docs", "p.txt", b"x", "text/plain")

        url = gateway.get_presigned_url("docs", "p.txt", timedelta(minutes=5))

        assert url.startswith("memory://docs/p.txt?")
        assert verify_local_url(url, memory_backend.signing_secret) is True

    def test_presigned_url_rejects_non_positive_ttl(self, gateway: StorageGateway) -> None:
        """A TTL of zero is a validation error."""
        gateway.upload("docs", "p.txt", b"x", "text/plain")

        with pytest.raises(ValidationError):
            gateway.get_presigned_url("docs", "p.txt", timedelta(0))

    def test_read_url_for_missing_object_raises_not_found(self, gateway: StorageGateway) -> None:
        """READ URLs require the object to exist."""
        with pytest.raises(NotFoundError):
            gateway.get_presigned_url("docs", "missing.txt", timedelta(minutes=5))

    def test_write_url_for_missing_object_allowed(self, gateway: StorageGateway) -> None:
        """WRITE-only URLs may target an object that does not exist yet."""
        url = gateway.get_presigned_url(
            "docs", "new.txt", timedelta(minutes=5), StoragePermission.WRITE
        )

        assert "perm=2" in url

    def test_expired_or_tampered_url_fails(self) -> None:
        """Expired, tampered or under-privileged URLs do not verify."""
        secret = b"s" * 32
        issued = datetime(2026, 1, 1, tzinfo=UTC)
        url = sign_local_url(
            "memory",
            secret,
            "docs",
            "x.txt",
            timedelta(minutes=1),
            StoragePermission.READ,
            now=issued,
        )

        assert verify_local_url(url, secret, now=issued + timedelta(seconds=30)) is True
        assert verify_local_url(url, secret, now=issued + timedelta(minutes=2)) is False
        assert verify_local_url(url.replace("x.txt", "y.txt"), secret, now=issued) is False
        assert verify_local_url(url, secret, StoragePermission.WRITE, now=issued) is False


class TestCopyTierUsage:
    """Tests for copy, tier change and usage."""

    def test_copy_preserves_content(self, gateway: StorageGateway) -> None:
        """Copy should duplicate bytes and content type into the destination."""
        gateway.create_container("archive")
        gateway.upload("docs", "c.txt", b"copy me", "text/plain")

        gateway.copy("docs", "c.txt", "archive", "c.txt")

        assert gateway.download("archive", "c.txt").read() == b"copy me"
        assert gateway.get_metadata("archive", "c.txt").content_type == "text/plain"
        assert gateway.exists("docs", "c.txt") is True

    def test_change_tier(self, gateway: StorageGateway) -> None:
        """change_tier should update the reported tier."""
        gateway.upload("docs", "t.txt", b"x", "text/plain")

        gateway.change_tier("docs", "t.txt", StorageTier.ARCHIVE)

        assert gateway.get_metadata("docs", "t.txt").tier == StorageTier.ARCHIVE

    def test_usage_counts_objects_and_bytes(self, gateway: StorageGateway) -> None:
        """get_usage should total sizes and object counts."""
        gateway.upload("docs", "u1.txt", b"12345", "text/plain")
        gateway.upload("docs", "u2.txt", b"123", "text/plain")

        usage = gateway.get_usage("docs")

        assert usage.object_count == 2
        assert usage.total_size == 8

    def test_usage_missing_container_raises_not_found(self, gateway: StorageGateway) -> None:
        """Usage of an absent container should raise NotFoundError."""
        with pytest.raises(NotFoundError):
            gateway.get_usage("nope")


class TestBackendSelection:
    """Tests for backend registration and switching."""

    def test_switch_to_unknown_backend_raises(self, gateway: StorageGateway) -> None:
        """Switching to an unregistered backend is a configuration error."""
        with pytest.raises(ConfigError):
            gateway.switch_backend("azure")

    def test_switch_backend_routes_calls(self) -> None:
        """After switching, calls reach the newly active backend."""
        first, second = InMemoryBlobBackend(), InMemoryBlobBackend()
        gw = StorageGateway({"first": first, "second": second}, active="first")
        gw.switch_backend("second")
        gw.create_container("docs")

        assert second.container_exists("docs") is True
        assert first.container_exists("docs") is False


class TestCancellation:
    """Tests for OperationContext cancellation."""

    def test_cancelled_context_aborts_upload(self, gateway: StorageGateway) -> None:
        """A set cancel event stops the upload before anything is written."""
        event = threading.Event()
        event.set()

        with pytest.raises(OperationCancelledError):
            gateway.upload(
                "docs", "c.txt", b"x", "text/plain", context=OperationContext(cancel_event=event)
            )

        assert gateway.exists("docs", "c.txt") is False

    def test_cancellation_checked_between_listed_items(self, gateway: StorageGateway) -> None:
        """Cancelling mid-iteration stops the listing."""
        for name in ("a", "b", "c"):
            gateway.upload("docs", name, b"x", "text/plain")
        event = threading.Event()
        listing = gateway.list_objects("docs", context=OperationContext(cancel_event=event))

        seen: list[str] = []
        with pytest.raises(OperationCancelledError):
            for info in listing:
                seen.append(info.name)
                event.set()

        assert seen == ["a"]
