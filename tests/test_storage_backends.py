"""Tests for the filesystem and S3 blob backends.

Filesystem:
- Roundtrip and persistence across backend instances
- Path traversal prevention for object and container names
- Signed file:// URLs

S3 (moto):
- Roundtrip, metadata, listing, copy, tier change and delete through the gateway
- Error translation to NotFoundError
"""

from __future__ import annotations

import hashlib
import tempfile
from collections.abc import Iterator
from datetime import timedelta
from pathlib import Path
from typing import Any

import boto3
import pytest
from moto import mock_aws

from blobguard.config import S3Settings, StorageSettings
from blobguard.errors import NotFoundError, PathTraversalError
from blobguard.storage.filesystem_backend import FilesystemBlobBackend
from blobguard.storage.gateway import StorageGateway, build_backend
from blobguard.storage.memory_backend import InMemoryBlobBackend
from blobguard.storage.models import StorageTier
from blobguard.storage.presign import verify_local_url
from blobguard.storage.s3_backend import S3BlobBackend


@pytest.fixture
def temp_storage_dir() -> Iterator[Path]:
    """Create a temporary directory for filesystem backend tests."""
    with tempfile.TemporaryDirectory(prefix="blobguard_test_storage_") as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def fs_backend(temp_storage_dir: Path) -> FilesystemBlobBackend:
    """Create a FilesystemBlobBackend with a 'docs' container."""
    backend = FilesystemBlobBackend(base_dir=temp_storage_dir)
    backend.create_container("docs")
    return backend


@pytest.fixture
def s3_backend(monkeypatch: pytest.MonkeyPatch) -> Iterator[S3BlobBackend]:
    """Create an S3BlobBackend against moto with a 'docs' bucket."""
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")
    monkeypatch.setenv("AWS_DEFAULT_REGION", "us-east-1")
    with mock_aws():
        client = boto3.client("s3", region_name="us-east-1")
        backend = S3BlobBackend(S3Settings(bucket_prefix="bg-test-"), client=client)
        backend.create_container("docs")
        yield backend


class TestFilesystemRoundtrip:
    """Tests for filesystem put/get behavior."""

    def test_put_then_get_returns_identical_bytes(self, fs_backend: FilesystemBlobBackend) -> None:
        """Put then get should return identical bytes and a matching digest."""
        data = b"Hello, filesystem"

        meta = fs_backend.put("docs", "a/b/report.pdf", data, content_type="application/pdf")

        assert fs_backend.get("docs", "a/b/report.pdf") == data
        assert meta.sha256 == hashlib.sha256(data).hexdigest()
        assert meta.content_type == "application/pdf"

    def test_objects_survive_new_backend_instance(
        self, fs_backend: FilesystemBlobBackend, temp_storage_dir: Path
    ) -> None:
        """A new backend over the same directory sees existing objects."""
        fs_backend.put("docs", "keep.txt", b"persisted", content_type="text/plain")

        reopened = FilesystemBlobBackend(base_dir=temp_storage_dir)

        assert reopened.get("docs", "keep.txt") == b"persisted"
        assert reopened.head("docs", "keep.txt").size == 9
        assert "docs" in reopened.list_containers()

    def test_overwrite_keeps_created_at(self, fs_backend: FilesystemBlobBackend) -> None:
        """Overwriting an object keeps its creation time and updates its content."""
        first = fs_backend.put("docs", "o.txt", b"v1", content_type="text/plain")
        second = fs_backend.put("docs", "o.txt", b"version2", content_type="text/plain")

        assert second.created_at == first.created_at
        assert fs_backend.get("docs", "o.txt") == b"version2"

    def test_listing_and_delete(self, fs_backend: FilesystemBlobBackend) -> None:
        """Listed names match stored names; deleting removes them."""
        for name in ("x/2.txt", "x/1.txt"):
            fs_backend.put("docs", name, b"x", content_type="text/plain")

        assert [i.name for i in fs_backend.list_objects("docs")] == ["x/1.txt", "x/2.txt"]

        fs_backend.delete("docs", "x/1.txt")

        assert [i.name for i in fs_backend.list_objects("docs")] == ["x/2.txt"]
        with pytest.raises(NotFoundError):
            fs_backend.delete("docs", "x/1.txt")

    def test_set_tier_persists(self, fs_backend: FilesystemBlobBackend) -> None:
        """Tier changes are stored in the object metadata."""
        fs_backend.put("docs", "t.txt", b"x", content_type="text/plain")

        fs_backend.set_tier("docs", "t.txt", StorageTier.COOL)

        assert fs_backend.head("docs", "t.txt").tier == StorageTier.COOL


class TestFilesystemPathTraversal:
    """Tests for path traversal prevention."""

    @pytest.mark.parametrize("name", ["../x", "a/../../x", "/abs/path", "..\\x", "C:evil", ""])
    def test_unsafe_object_names_rejected(
        self, fs_backend: FilesystemBlobBackend, name: str
    ) -> None:
        """Traversal-style object names raise PathTraversalError."""
        with pytest.raises(PathTraversalError):
            fs_backend.put("docs", name, b"x", content_type="text/plain")

    @pytest.mark.parametrize("container", ["..", "../etc", "a/b", ""])
    def test_unsafe_container_names_rejected(
        self, fs_backend: FilesystemBlobBackend, container: str
    ) -> None:
        """Unsafe container names raise PathTraversalError."""
        with pytest.raises(PathTraversalError):
            fs_backend.create_container(container)


class TestFilesystemPresignedUrls:
    """Tests for signed file:// URLs."""

    def test_file_url_verifies_with_backend_secret(self, temp_storage_dir: Path) -> None:
        """URLs are signed with the backend's secret."""
        backend = FilesystemBlobBackend(base_dir=temp_storage_dir, signing_secret=b"k" * 32)
        backend.create_container("docs")
        gateway = StorageGateway({"filesystem": backend}, active="filesystem")
        gateway.upload("docs", "f.txt", b"x", "text/plain")

        url = gateway.get_presigned_url("docs", "f.txt", timedelta(minutes=1))

        assert url.startswith("file://docs/f.txt?")
        assert verify_local_url(url, b"k" * 32) is True
        assert verify_local_url(url, b"other" * 8) is False


class TestS3Backend:
    """Tests for the S3 backend against moto."""

    def test_roundtrip_with_metadata(self, s3_backend: S3BlobBackend) -> None:
        """Put then get returns the bytes; head returns content type, digest and metadata."""
        data = b"s3 payload"

        s3_backend.put("docs", "r.txt", data, content_type="text/plain", metadata={"owner": "ops"})

        assert s3_backend.get("docs", "r.txt") == data
        meta = s3_backend.head("docs", "r.txt")
        assert meta.size == len(data)
        assert meta.content_type == "text/plain"
        assert meta.sha256 == hashlib.sha256(data).hexdigest()
        assert meta.metadata["owner"] == "ops"
        assert meta.tier == StorageTier.HOT

    def test_missing_object_raises_not_found(self, s3_backend: S3BlobBackend) -> None:
        """Absent objects translate to NotFoundError."""
        with pytest.raises(NotFoundError):
            s3_backend.get("docs", "missing.txt")
        with pytest.raises(NotFoundError):
            s3_backend.head("docs", "missing.txt")
        with pytest.raises(NotFoundError):
            s3_backend.delete("docs", "missing.txt")

    def test_missing_bucket_raises_not_found(self, s3_backend: S3BlobBackend) -> None:
        """Absent buckets translate to NotFoundError."""
        assert s3_backend.container_exists("nope") is False
        with pytest.raises(NotFoundError):
            s3_backend.head("nope", "x.txt")

    def test_listing_copy_and_tier_change(self, s3_backend: S3BlobBackend) -> None:
        """Listing, server-side copy and storage-class changes behave like other backends."""
        s3_backend.create_container("archive")
        for name in ("logs/b.log", "logs/a.log"):
            s3_backend.put("docs", name, b"line", content_type="text/plain")

        assert [i.name for i in s3_backend.list_objects("docs", "logs/")] == [
            "logs/a.log",
            "logs/b.log",
        ]

        s3_backend.copy("docs", "logs/a.log", "archive", "logs/a.log")
        assert s3_backend.get("archive", "logs/a.log") == b"line"

        s3_backend.set_tier("docs", "logs/b.log", StorageTier.COOL)
        assert s3_backend.head("docs", "logs/b.log").tier == StorageTier.COOL

    def test_list_containers_strips_prefix(self, s3_backend: S3BlobBackend) -> None:
        """Only prefixed buckets are listed, without their prefix."""
        s3_backend.create_container("media")

        assert s3_backend.list_containers() == ["docs", "media"]

    def test_delete_container_empties_bucket(self, s3_backend: S3BlobBackend) -> None:
        """delete_container removes objects before the bucket."""
        s3_backend.put("docs", "x.txt", b"x", content_type="text/plain")

        s3_backend.delete_container("docs")

        assert s3_backend.container_exists("docs") is False

    def test_gateway_over_s3(self, s3_backend: S3BlobBackend) -> None:
        """The gateway returns s3:// identifiers and presigned HTTPS URLs."""
        gateway = StorageGateway({"s3": s3_backend}, active="s3")

        object_id = gateway.upload("docs", "g.txt", b"via gateway", "text/plain")
        url = gateway.get_presigned_url("docs", "g.txt", timedelta(minutes=5))

        assert object_id == "s3://docs/g.txt"
        assert gateway.download("docs", "g.txt").read() == b"via gateway"
        assert "bg-test-docs" in url


class TestBuildBackend:
    """Tests for provider selection."""

    def test_memory_provider(self) -> None:
        """The default provider is the in-memory backend."""
        assert isinstance(build_backend(StorageSettings()), InMemoryBlobBackend)

    def test_filesystem_provider(self, temp_storage_dir: Path) -> None:
        """The filesystem provider honors the configured base directory."""
        backend: Any = build_backend(
            StorageSettings(provider="filesystem", filesystem_base_dir=str(temp_storage_dir))
        )

        assert isinstance(backend, FilesystemBlobBackend)
        backend.create_container("docs")
        assert (temp_storage_dir / "docs").is_dir()
