"""blobguard: storage policy and security layer for object storage backends.

Security validation, content scanning, encryption at rest, rate limiting,
monitoring, lifecycle retention and backup/restore composed around pluggable
blob backends.
"""

from blobguard.config import StorageSettings, load_storage_settings
from blobguard.context import OperationContext
from blobguard.errors import (
    BackendUnavailableError,
    BackupNotFoundError,
    ConfigError,
    DecryptionError,
    NotFoundError,
    OperationCancelledError,
    PolicyInvalidError,
    RateLimitExceededError,
    ScanFailureError,
    SecurityValidationError,
    StorageError,
    ValidationError,
)
from blobguard.pipeline import StoragePipeline, build_storage_pipeline

__version__ = "0.1.0"

__all__ = [
    "BackendUnavailableError",
    "BackupNotFoundError",
    "ConfigError",
    "DecryptionError",
    "NotFoundError",
    "OperationCancelledError",
    "OperationContext",
    "PolicyInvalidError",
    "RateLimitExceededError",
    "ScanFailureError",
    "SecurityValidationError",
    "StorageError",
    "StoragePipeline",
    "StorageSettings",
    "ValidationError",
    "__version__",
    "build_storage_pipeline",
    "load_storage_settings",
]
