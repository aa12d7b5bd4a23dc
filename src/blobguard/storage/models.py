"""blobguard storage data models.

Provides typed, immutable snapshots returned by backends and the gateway.
The backend is the sole writer of object metadata.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Flag, StrEnum
from types import MappingProxyType
from typing import Any, Mapping


class StoragePermission(Flag):
    """Capabilities granted by a presigned URL."""

    READ = 1
    WRITE = 2
    DELETE = 4
    READ_WRITE = 3
    FULL = 7


class StorageTier(StrEnum):
    """Access tiers an object can be moved between by lifecycle rules."""

    HOT = "HOT"
    COOL = "COOL"
    ARCHIVE = "ARCHIVE"


def _parse_timestamp(raw: Any) -> datetime:
    if isinstance(raw, datetime):
        value = raw
    elif isinstance(raw, str):
        value = datetime.fromisoformat(raw)
    else:
        value = datetime.now(UTC)
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value


@dataclass(frozen=True)
class StorageObjectMetadata:
    """Metadata snapshot for a stored object.

    Attributes:
        container: Container holding the object.
        name: Object name within the container.
        size: Size of the stored payload in bytes (>= 0).
        content_type: MIME type of the content.
        created_at: When the object was first written.
        modified_at: When the object was last written.
        sha256: SHA256 hex digest of the stored payload.
        tier: Current access tier.
        metadata: User metadata (string keys unique, string values).
    """

    container: str
    name: str
    size: int
    content_type: str
    created_at: datetime
    modified_at: datetime
    sha256: str = ""
    tier: StorageTier = StorageTier.HOT
    metadata: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.size < 0:
            raise ValueError(f"size must be >= 0, got {self.size}")
        object.__setattr__(self, "metadata", MappingProxyType(dict(self.metadata)))

    @property
    def object_id(self) -> str:
        """Container-qualified object identifier."""
        return f"{self.container}/{self.name}"

    def to_dict(self) -> dict[str, Any]:
        """Convert metadata to dictionary for JSON serialization."""
        return {
            "container": self.container,
            "name": self.name,
            "size": self.size,
            "content_type": self.content_type,
            "created_at": self.created_at.isoformat(),
            "modified_at": self.modified_at.isoformat(),
            "sha256": self.sha256,
            "tier": self.tier.value,
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> StorageObjectMetadata:
        """Create metadata from dictionary."""
        created_at = _parse_timestamp(data.get("created_at"))
        modified_raw = data.get("modified_at")
        modified_at = _parse_timestamp(modified_raw) if modified_raw else created_at
        raw_meta = data.get("metadata") or {}
        return cls(
            container=str(data["container"]),
            name=str(data["name"]),
            size=int(data.get("size") or 0),
            content_type=str(data.get("content_type") or "application/octet-stream"),
            created_at=created_at,
            modified_at=modified_at,
            sha256=str(data.get("sha256") or ""),
            tier=StorageTier(data.get("tier") or StorageTier.HOT.value),
            metadata={str(k): str(v) for k, v in dict(raw_meta).items()},
        )


@dataclass(frozen=True)
class StorageObjectInfo:
    """Lightweight listing entry."""

    name: str
    size: int
    last_modified: datetime


@dataclass(frozen=True)
class StorageUsage:
    """Usage statistics for one container."""

    container: str
    total_size: int
    object_count: int
    last_updated: datetime
