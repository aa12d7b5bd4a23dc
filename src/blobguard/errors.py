"""blobguard error types.

Provides the typed exception taxonomy shared by the gateway, the filters and the
scheduled passes. Backend-native errors are translated into these types at the
adapter boundary; filters never convert one type into another.

Categories:
- Client errors: ValidationError and subclasses (policy violations, rate limits)
- Absence: NotFoundError, BackupNotFoundError
- Transient: BackendUnavailableError (retryable by the caller)
- Fatal: DecryptionError, PolicyInvalidError, ConfigError
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from blobguard.security.models import ScanResult


class StorageError(Exception):
    """Base exception for every error raised by blobguard.

    Attributes:
        message: Human-readable error message.
        container: Container associated with the operation (if applicable).
        name: Object name associated with the operation (if applicable).
    """

    def __init__(
        self,
        message: str,
        *,
        container: str | None = None,
        name: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.container = container
        self.name = name

    def __str__(self) -> str:
        parts = [self.message]
        if self.container:
            parts.append(f"container={self.container}")
        if self.name:
            parts.append(f"name={self.name}")
        return " ".join(parts)


class NotFoundError(StorageError):
    """Raised when an object or container does not exist.

    A NotFoundError surfacing to a reader while a lifecycle Delete runs on the same
    container is a benign race, not a defect.
    """

    def __init__(
        self,
        message: str = "Object not found",
        *,
        container: str | None = None,
        name: str | None = None,
    ) -> None:
        super().__init__(message, container=container, name=name)


class BackupNotFoundError(NotFoundError):
    """Raised when a backup identifier is unknown to the backup namespace."""

    def __init__(self, backup_id: str, *, container: str | None = None) -> None:
        super().__init__(f"Backup not found: {backup_id}", container=container)
        self.backup_id = backup_id


class BackendUnavailableError(StorageError):
    """Raised when the backend cannot be reached or fails at the transport level.

    Transient: callers decide whether to retry. The filters record and re-raise it
    unchanged.
    """

    def __init__(
        self,
        message: str = "Storage backend unavailable",
        *,
        container: str | None = None,
        name: str | None = None,
        cause: Exception | None = None,
    ) -> None:
        super().__init__(message, container=container, name=name)
        self.cause = cause


class PathTraversalError(StorageError):
    """Raised when an object name contains path traversal sequences.

    Security error indicating an attempt to escape the filesystem backend sandbox
    via names like "../", absolute paths, or other traversal patterns.
    """

    def __init__(
        self,
        message: str = "Invalid name: path traversal detected",
        *,
        container: str | None = None,
        name: str | None = None,
    ) -> None:
        super().__init__(message, container=container, name=name)


class OperationCancelledError(StorageError):
    """Raised when the caller's cancellation signal or deadline is observed.

    Partially written backend state is not rolled back.
    """

    def __init__(
        self,
        message: str = "Operation cancelled",
        *,
        container: str | None = None,
        name: str | None = None,
    ) -> None:
        super().__init__(message, container=container, name=name)


class ValidationError(StorageError):
    """Raised for client-side policy violations (HTTP-equivalent 4xx).

    Attributes:
        errors: Ordered list of human-readable errors, in detection order.
    """

    def __init__(
        self,
        message: str,
        errors: list[str] | None = None,
        *,
        container: str | None = None,
        name: str | None = None,
    ) -> None:
        super().__init__(message, container=container, name=name)
        self.errors = list(errors or [])


class SecurityValidationError(ValidationError):
    """Raised by the security filter when upload/download validation fails.

    The wrapped storage operation was never invoked.
    """


class RateLimitExceededError(SecurityValidationError):
    """Raised when the client has exhausted its download allowance for the window."""

    def __init__(
        self,
        message: str,
        errors: list[str] | None = None,
        *,
        client_id: str | None = None,
        container: str | None = None,
        name: str | None = None,
    ) -> None:
        super().__init__(message, errors, container=container, name=name)
        self.client_id = client_id


class ScanFailureError(StorageError):
    """Raised when scanned content is deemed unsafe."""

    def __init__(
        self,
        scan_result: ScanResult,
        *,
        container: str | None = None,
    ) -> None:
        super().__init__(
            f"Unsafe content detected: {scan_result.threat_name}",
            container=container,
            name=scan_result.object_name,
        )
        self.scan_result = scan_result


class DecryptionError(StorageError):
    """Raised when a payload fails integrity checks on decryption.

    Fatal: never retried and never degraded to returning the raw payload.
    """


class PolicyInvalidError(StorageError):
    """Raised when a lifecycle policy is rejected at registration time.

    Attributes:
        policy_name: Name of the rejected policy (may be empty).
        reasons: Validation failures, in detection order.
    """

    def __init__(self, policy_name: str, reasons: list[str]) -> None:
        label = policy_name or "<unnamed>"
        super().__init__(f"Invalid lifecycle policy {label}: {'; '.join(reasons)}")
        self.policy_name = policy_name
        self.reasons = list(reasons)


class ConfigError(StorageError):
    """Raised when configuration values are invalid (fail-closed parsing)."""
