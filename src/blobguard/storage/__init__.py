"""blobguard storage layer.

Provides the uniform StorageService contract, the StorageGateway façade and the
blob backends it dispatches to.

Backends:
- InMemoryBlobBackend: process-local dictionaries (dev/test)
- FilesystemBlobBackend: local filesystem (dev/test)
- S3BlobBackend: AWS S3 compatible (production)

Environment Variables:
    BLOBGUARD_PROVIDER: "memory", "filesystem" or "s3" (default: "memory")
    BLOBGUARD_FS_BASE_DIR: Base directory for the filesystem backend
"""

from blobguard.storage.backend import BlobBackend
from blobguard.storage.gateway import ObjectListing, StorageGateway, build_backend
from blobguard.storage.memory_backend import InMemoryBlobBackend
from blobguard.storage.models import (
    StorageObjectInfo,
    StorageObjectMetadata,
    StoragePermission,
    StorageTier,
    StorageUsage,
)
from blobguard.storage.service import StorageService

__all__ = [
    "BlobBackend",
    "InMemoryBlobBackend",
    "ObjectListing",
    "StorageGateway",
    "StorageObjectInfo",
    "StorageObjectMetadata",
    "StoragePermission",
    "StorageService",
    "StorageTier",
    "StorageUsage",
    "build_backend",
]
