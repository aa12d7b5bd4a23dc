"""Security data models: scan results, validation results, events, rate status."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any


class ThreatType(StrEnum):
    """Classification of a scanner finding."""

    MALWARE = "Malware"
    SUSPICIOUS_CONTENT = "Suspicious content"


class SecurityEventType(StrEnum):
    """Kinds of security event appended to the audit sink."""

    UPLOAD_VALIDATION = "UPLOAD_VALIDATION"
    DOWNLOAD_VALIDATION = "DOWNLOAD_VALIDATION"
    SCAN_PERFORMED = "SCAN_PERFORMED"
    RATE_LIMIT_TRIGGERED = "RATE_LIMIT_TRIGGERED"
    ACCESS_DENIED = "ACCESS_DENIED"


class StorageOperation(StrEnum):
    """Operations counted by the rate limiter."""

    UPLOAD = "UPLOAD"
    DOWNLOAD = "DOWNLOAD"
    DELETE = "DELETE"
    LIST = "LIST"
    GET_METADATA = "GET_METADATA"


@dataclass(frozen=True)
class ScanResult:
    """Outcome of scanning one payload.

    Attributes:
        object_name: Name of the scanned object.
        is_clean: True when no signature or suspicious marker was found.
        threat_name: Name of the matched threat (None when clean).
        threat_type: Classification of the threat (None when clean).
        scanned_at: When the scan completed.
        bytes_scanned: Number of bytes inspected.
        truncated: True if content past the scan cap was not inspected.
    """

    object_name: str
    is_clean: bool
    threat_name: str | None = None
    threat_type: ThreatType | None = None
    scanned_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    bytes_scanned: int = 0
    truncated: bool = False

    def __post_init__(self) -> None:
        if not self.is_clean and not self.threat_name:
            raise ValueError("An unclean ScanResult requires a threat_name")


@dataclass
class ValidationResult:
    """Accumulated result of one or more validators.

    Errors keep detection order and may repeat. ``valid`` is derived from the
    error list so validators only ever append.
    """

    errors: list[str] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.errors

    def add_error(self, message: str) -> None:
        self.errors.append(message)

    def extend(self, other: ValidationResult) -> None:
        self.errors.extend(other.errors)


@dataclass(frozen=True)
class SecurityEvent:
    """Write-once audit record.

    Attributes:
        event_type: Kind of event.
        success: Whether the validated action was allowed.
        container: Container involved (if any).
        object_name: Object involved (if any).
        content_type: Declared content type for uploads.
        client_ip: Calling client address (if known).
        details: Free-text summary (validation errors joined, never payload bytes).
        timestamp: When the event was recorded.
    """

    event_type: SecurityEventType
    success: bool
    container: str | None = None
    object_name: str | None = None
    content_type: str | None = None
    client_ip: str | None = None
    details: str = ""
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-serializable dictionary."""
        return {
            "event_type": self.event_type.value,
            "success": self.success,
            "container": self.container,
            "object_name": self.object_name,
            "content_type": self.content_type,
            "client_ip": self.client_ip,
            "details": self.details,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass(frozen=True)
class RateLimitStatus:
    """Snapshot of one client's counter.

    Attributes:
        client_id: Client identifier (the client IP for downloads).
        current_count: Operations counted in the current window (>= 0).
        max_allowed: Allowance per window (> 0).
        reset_at: When the counter expires if not written again.
    """

    client_id: str
    current_count: int
    max_allowed: int
    reset_at: datetime

    def __post_init__(self) -> None:
        if self.current_count < 0:
            raise ValueError(f"current_count must be >= 0, got {self.current_count}")
        if self.max_allowed <= 0:
            raise ValueError(f"max_allowed must be positive, got {self.max_allowed}")

    @property
    def allowed(self) -> bool:
        return self.current_count < self.max_allowed
