"""Security filter: validation, encryption and rate limiting around storage.

SecurityFilter implements StorageService by decorating the next layer. Uploads
and downloads are validated first; validation failures are accumulated into a
ValidationResult and, when invalid, raised as SecurityValidationError without
ever invoking the wrapped layer.

Upload checks (all run, errors kept in detection order):
    extension, size, content type (when enabled), client IP, content scan
Download checks:
    client IP (deny-list before allow-list), rate limit

Payloads are encrypted before they reach the wrapped layer and decrypted on the
way back when encryption at rest is enabled. A successful download counts
against the client's rate allowance.
"""

from __future__ import annotations

import io
import logging
from collections.abc import Iterable, Mapping
from datetime import timedelta
from typing import BinaryIO

from blobguard.audit.sink import AuditSink, AuditSinkError
from blobguard.config import SecuritySettings
from blobguard.context import OperationContext, check_cancelled
from blobguard.errors import RateLimitExceededError, ScanFailureError, SecurityValidationError
from blobguard.security.access import (
    IpAccessPolicy,
    file_extension,
    is_content_type_allowed,
    is_extension_allowed,
)
from blobguard.security.encryption import ContentCipher
from blobguard.security.models import (
    RateLimitStatus,
    ScanResult,
    SecurityEvent,
    SecurityEventType,
    StorageOperation,
    ThreatType,
    ValidationResult,
)
from blobguard.security.rate_limiter import RateLimiter
from blobguard.security.scanner import ContentScanner
from blobguard.storage.models import (
    StorageObjectInfo,
    StorageObjectMetadata,
    StoragePermission,
    StorageTier,
    StorageUsage,
)
from blobguard.storage.service import Payload, StorageService

logger = logging.getLogger(__name__)


def _payload_size(content: Payload) -> int:
    """Return the total payload size, leaving a stream at the start."""
    if isinstance(content, (bytes, bytearray, memoryview)):
        return len(content)
    try:
        return content.seek(0, io.SEEK_END)
    finally:
        content.seek(0)


def _read_all(content: Payload) -> bytes:
    if isinstance(content, (bytes, bytearray, memoryview)):
        return bytes(content)
    content.seek(0)
    try:
        return content.read()
    finally:
        content.seek(0)


def _client_ip(context: OperationContext | None) -> str | None:
    return context.client_ip if context is not None else None


class SecurityFilter:
    """StorageService decorator enforcing upload/download security policy.

    Args:
        inner: Next layer (normally the MonitoringFilter).
        settings: Read-only security policy.
        rate_limiter: Per-client download limiter.
        scanner: Content scanner (default ContentScanner()).
        cipher: Payload cipher; built from settings when encryption is enabled.
        audit_sink: Destination for SecurityEvents (None disables emission).
        audit_required: Re-raise AuditSinkError instead of logging it.
    """

    def __init__(
        self,
        inner: StorageService,
        settings: SecuritySettings,
        rate_limiter: RateLimiter,
        *,
        scanner: ContentScanner | None = None,
        cipher: ContentCipher | None = None,
        audit_sink: AuditSink | None = None,
        audit_required: bool = False,
    ) -> None:
        self._inner = inner
        self._settings = settings
        self._rate_limiter = rate_limiter
        self._scanner = scanner or ContentScanner()
        if cipher is None and settings.enable_encryption_at_rest:
            cipher = ContentCipher.from_key_material(settings.encryption_key)
        self._cipher = cipher if settings.enable_encryption_at_rest else None
        self._ip_policy = IpAccessPolicy(settings.allowed_ips, settings.blocked_ips)
        self._audit_sink = audit_sink
        self._audit_required = audit_required

    @property
    def settings(self) -> SecuritySettings:
        return self._settings

    @property
    def rate_limiter(self) -> RateLimiter:
        return self._rate_limiter

    def _emit(self, event: SecurityEvent) -> None:
        if not self._settings.enable_access_logging:
            return
        logger.info(
            "Security event: type=%s success=%s container=%s name=%s client=%s",
            event.event_type.value,
            event.success,
            event.container,
            event.object_name,
            event.client_ip,
        )
        if self._audit_sink is None:
            return
        try:
            self._audit_sink.emit(event.to_dict())
        except AuditSinkError:
            if self._audit_required:
                raise
            logger.error(
                "Failed to append security event: type=%s", event.event_type.value, exc_info=True
            )

    def is_ip_allowed(self, client_ip: str) -> bool:
        """Return True if the client address passes the IP policy."""
        return self._ip_policy.is_allowed(client_ip)

    def _check_ip(
        self,
        client_ip: str,
        result: ValidationResult,
        *,
        container: str | None,
        name: str | None,
    ) -> None:
        if self._ip_policy.is_allowed(client_ip):
            return
        message = f"IP address not allowed: {client_ip}"
        result.add_error(message)
        self._emit(
            SecurityEvent(
                event_type=SecurityEventType.ACCESS_DENIED,
                success=False,
                container=container,
                object_name=name,
                client_ip=client_ip,
                details=message,
            )
        )

    def scan(self, content: Payload, name: str) -> ScanResult:
        """Scan a payload and record a SCAN_PERFORMED event."""
        scan_result = self._scanner.scan(content, name)
        self._emit(
            SecurityEvent(
                event_type=SecurityEventType.SCAN_PERFORMED,
                success=scan_result.is_clean,
                object_name=name,
                details=scan_result.threat_name or "clean",
            )
        )
        return scan_result

    def _validate_upload(
        self,
        name: str,
        content: Payload,
        content_type: str,
        client_ip: str | None,
        container: str | None = None,
    ) -> tuple[ValidationResult, ScanResult | None]:
        settings = self._settings
        result = ValidationResult()

        if not is_extension_allowed(name, settings.allowed_extensions, settings.blocked_extensions):
            result.add_error(f"File extension not allowed: {file_extension(name) or name}")

        size = _payload_size(content)
        if size > settings.max_file_size:
            result.add_error(
                f"File size exceeds maximum allowed size: {size} > {settings.max_file_size}"
            )

        if settings.validate_content_type and not is_content_type_allowed(content_type):
            result.add_error(f"Content type not allowed: {content_type}")

        if client_ip:
            self._check_ip(client_ip, result, container=container, name=name)

        scan_result: ScanResult | None = None
        if settings.enable_virus_scanning:
            scan_result = self.scan(content, name)
            if not scan_result.is_clean:
                if scan_result.threat_type == ThreatType.MALWARE:
                    result.add_error(f"Malware detected: {scan_result.threat_name}")
                else:
                    result.add_error(f"Suspicious content detected: {scan_result.threat_name}")

        self._emit(
            SecurityEvent(
                event_type=SecurityEventType.UPLOAD_VALIDATION,
                success=result.valid,
                container=container,
                object_name=name,
                content_type=content_type,
                client_ip=client_ip,
                details="Upload validation passed" if result.valid else ", ".join(result.errors),
            )
        )
        if not result.valid:
            logger.warning("Upload rejected: name=%s errors=%d", name, len(result.errors))
        return result, scan_result

    def validate_file_upload(
        self,
        name: str,
        content: Payload,
        content_type: str,
        client_ip: str | None = None,
    ) -> ValidationResult:
        """Validate an upload; a stream is left positioned at its start."""
        return self._validate_upload(name, content, content_type, client_ip)[0]

    def _validate_download(
        self, container: str, name: str, client_ip: str | None
    ) -> tuple[ValidationResult, bool]:
        result = ValidationResult()
        rate_limited = False

        if client_ip:
            self._check_ip(client_ip, result, container=container, name=name)
            status = self._rate_limiter.get_status(client_ip)
            if not status.allowed:
                rate_limited = True
                message = f"Rate limit exceeded for IP: {client_ip}"
                result.add_error(message)
                self._emit(
                    SecurityEvent(
                        event_type=SecurityEventType.RATE_LIMIT_TRIGGERED,
                        success=False,
                        container=container,
                        object_name=name,
                        client_ip=client_ip,
                        details=f"{status.current_count}/{status.max_allowed}",
                    )
                )

        self._emit(
            SecurityEvent(
                event_type=SecurityEventType.DOWNLOAD_VALIDATION,
                success=result.valid,
                container=container,
                object_name=name,
                client_ip=client_ip,
                details="Download validation passed" if result.valid else ", ".join(result.errors),
            )
        )
        if not result.valid:
            logger.warning(
                "Download rejected: container=%s name=%s client=%s", container, name, client_ip
            )
        return result, rate_limited

    def validate_file_download(
        self, container: str, name: str, client_ip: str | None = None
    ) -> ValidationResult:
        """Validate a download against the IP policy and the client's rate allowance."""
        return self._validate_download(container, name, client_ip)[0]

    def get_rate_limit_status(self, client_id: str) -> RateLimitStatus:
        return self._rate_limiter.get_status(client_id)

    def encrypt_content(self, data: bytes) -> bytes:
        """Encrypt with the configured cipher (identity when encryption is disabled)."""
        return self._cipher.encrypt(data) if self._cipher else data

    def decrypt_content(self, data: bytes) -> bytes:
        """Decrypt with the configured cipher (identity when encryption is disabled).

        Raises:
            DecryptionError: If the payload is not a valid envelope.
        """
        return self._cipher.decrypt(data) if self._cipher else data

    def _require_ip(
        self, context: OperationContext | None, *, container: str, name: str | None = None
    ) -> None:
        client_ip = _client_ip(context)
        if not client_ip:
            return
        result = ValidationResult()
        self._check_ip(client_ip, result, container=container, name=name)
        if not result.valid:
            raise SecurityValidationError(
                "Access denied", result.errors, container=container, name=name
            )

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
        data = _read_all(content)
        result, scan_result = self._validate_upload(
            name, data, content_type, _client_ip(context), container
        )
        if not result.valid:
            error = SecurityValidationError(
                "Upload validation failed", result.errors, container=container, name=name
            )
            if scan_result is not None and not scan_result.is_clean:
                raise error from ScanFailureError(scan_result, container=container)
            raise error
        return self._inner.upload(
            container,
            name,
            self.encrypt_content(data),
            content_type,
            metadata,
            context=context,
        )

    def download(
        self, container: str, name: str, *, context: OperationContext | None = None
    ) -> BinaryIO:
        check_cancelled(context, container=container, name=name)
        client_ip = _client_ip(context)
        result, rate_limited = self._validate_download(container, name, client_ip)
        if not result.valid:
            if rate_limited:
                raise RateLimitExceededError(
                    "Download validation failed",
                    result.errors,
                    client_id=client_ip,
                    container=container,
                    name=name,
                )
            raise SecurityValidationError(
                "Download validation failed", result.errors, container=container, name=name
            )

        stream = self._inner.download(container, name, context=context)
        plaintext = self.decrypt_content(stream.read())
        if client_ip:
            self._rate_limiter.increment(client_ip, StorageOperation.DOWNLOAD)
        return io.BytesIO(plaintext)

    def delete(self, container: str, name: str, *, context: OperationContext | None = None) -> None:
        self._require_ip(context, container=container, name=name)
        self._inner.delete(container, name, context=context)

    def delete_batch(
        self, container: str, names: Iterable[str], *, context: OperationContext | None = None
    ) -> int:
        self._require_ip(context, container=container)
        return self._inner.delete_batch(container, names, context=context)

    def exists(self, container: str, name: str, *, context: OperationContext | None = None) -> bool:
        return self._inner.exists(container, name, context=context)

    def get_metadata(
        self, container: str, name: str, *, context: OperationContext | None = None
    ) -> StorageObjectMetadata:
        return self._inner.get_metadata(container, name, context=context)

    def list_objects(
        self,
        container: str,
        prefix: str | None = None,
        *,
        context: OperationContext | None = None,
    ) -> Iterable[StorageObjectInfo]:
        return self._inner.list_objects(container, prefix, context=context)

    def get_presigned_url(
        self,
        container: str,
        name: str,
        ttl: timedelta,
        permissions: StoragePermission = StoragePermission.READ,
        *,
        context: OperationContext | None = None,
    ) -> str:
        self._require_ip(context, container=container, name=name)
        return self._inner.get_presigned_url(container, name, ttl, permissions, context=context)

    def create_container(
        self, container: str, public: bool = False, *, context: OperationContext | None = None
    ) -> None:
        self._inner.create_container(container, public, context=context)

    def delete_container(self, container: str, *, context: OperationContext | None = None) -> None:
        self._require_ip(context, container=container)
        self._inner.delete_container(container, context=context)

    def list_containers(self, *, context: OperationContext | None = None) -> list[str]:
        return self._inner.list_containers(context=context)

    def copy(
        self,
        src_container: str,
        src_name: str,
        dst_container: str,
        dst_name: str,
        *,
        context: OperationContext | None = None,
    ) -> None:
        self._require_ip(context, container=src_container, name=src_name)
        self._inner.copy(src_container, src_name, dst_container, dst_name, context=context)

    def change_tier(
        self,
        container: str,
        name: str,
        tier: StorageTier,
        *,
        context: OperationContext | None = None,
    ) -> None:
        self._inner.change_tier(container, name, tier, context=context)

    def get_usage(self, container: str, *, context: OperationContext | None = None) -> StorageUsage:
        return self._inner.get_usage(container, context=context)
