"""Environment-driven configuration for blobguard.

All settings are immutable and validated on construction. Values that are set but
malformed raise ConfigError (fail-closed); unset values fall back to defaults.

Environment Variables:
    BLOBGUARD_PROVIDER: "memory", "filesystem" or "s3" (default: "memory")
    BLOBGUARD_FS_BASE_DIR: Base directory for the filesystem backend
    BLOBGUARD_S3_REGION / BLOBGUARD_S3_ENDPOINT_URL / BLOBGUARD_S3_BUCKET_PREFIX
    BLOBGUARD_S3_ACCESS_KEY_ID / BLOBGUARD_S3_SECRET_ACCESS_KEY
    BLOBGUARD_MAX_FILE_SIZE: Maximum upload size in bytes (default: 100 MiB)
    BLOBGUARD_ALLOWED_EXTENSIONS / BLOBGUARD_BLOCKED_EXTENSIONS: CSV, e.g. ".txt,.pdf"
    BLOBGUARD_ALLOWED_IPS / BLOBGUARD_BLOCKED_IPS: CSV of addresses or CIDR ranges
    BLOBGUARD_ENCRYPTION_AT_REST: "1" to encrypt payloads (default: enabled)
    BLOBGUARD_ENCRYPTION_KEY: urlsafe-base64 32-byte key or passphrase
    BLOBGUARD_ACCESS_LOGGING / BLOBGUARD_VIRUS_SCANNING / BLOBGUARD_VALIDATE_CONTENT_TYPE
    BLOBGUARD_MAX_DOWNLOADS_PER_HOUR: Download allowance per client (default: 100)
    BLOBGUARD_METRICS_WINDOW_SECONDS: Health window (default: 300)
    BLOBGUARD_BACKUP_CONTAINER: Backup namespace container (default: "backups")
    BLOBGUARD_BACKUP_RETENTION_DAYS: Days to keep backups (default: 30)
    BLOBGUARD_LIFECYCLE_POLICY_FILE: YAML file with lifecycle policies
    BLOBGUARD_REDIS_URL: Redis URL for the shared rate-limit counter store (default: in-process)
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Final

from blobguard.errors import ConfigError

ENV_PREFIX: Final[str] = "BLOBGUARD_"

DEFAULT_MAX_FILE_SIZE: Final[int] = 100 * 1024 * 1024
DEFAULT_MAX_DOWNLOADS_PER_HOUR: Final[int] = 100
DEFAULT_RATE_LIMIT_WINDOW_SECONDS: Final[int] = 3600
DEFAULT_METRICS_WINDOW_SECONDS: Final[int] = 300
DEFAULT_METRICS_RETENTION_SECONDS: Final[int] = 24 * 3600
DEFAULT_BACKUP_CONTAINER: Final[str] = "backups"
DEFAULT_BACKUP_RETENTION_DAYS: Final[int] = 30
DEFAULT_MAX_CONCURRENCY: Final[int] = 4

SUPPORTED_PROVIDERS: Final[frozenset[str]] = frozenset({"memory", "filesystem", "s3"})


def _env(name: str) -> str | None:
    raw = os.environ.get(ENV_PREFIX + name)
    if raw is None:
        return None
    raw = raw.strip()
    return raw or None


def _get_env_bool(name: str, default: bool) -> bool:
    """Get boolean from environment variable."""
    raw = _env(name)
    if raw is None:
        return default
    val = raw.lower()
    if val in ("1", "true", "yes"):
        return True
    if val in ("0", "false", "no"):
        return False
    raise ConfigError(f"{ENV_PREFIX}{name} must be a boolean, got '{raw}'")


def _parse_positive_int(name: str, default: int) -> int:
    """Parse a positive integer from environment variable.

    Raises:
        ConfigError: If value is set but not a positive integer.
    """
    raw = _env(name)
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError as e:
        raise ConfigError(f"{ENV_PREFIX}{name} must be a positive integer, got '{raw}'") from e
    if value <= 0:
        raise ConfigError(f"{ENV_PREFIX}{name} must be a positive integer, got {value}")
    return value


def _parse_fraction(name: str, default: float) -> float:
    raw = _env(name)
    if raw is None:
        return default
    try:
        value = float(raw)
    except ValueError as e:
        raise ConfigError(f"{ENV_PREFIX}{name} must be a number in [0, 1], got '{raw}'") from e
    if not 0.0 <= value <= 1.0:
        raise ConfigError(f"{ENV_PREFIX}{name} must be a number in [0, 1], got {value}")
    return value


def _parse_csv(name: str) -> tuple[str, ...]:
    raw = _env(name)
    if raw is None:
        return ()
    return tuple(item.strip() for item in raw.split(",") if item.strip())


def normalize_extension(ext: str) -> str:
    """Normalize an extension to lower case with a leading dot."""
    ext = ext.strip().lower()
    if ext and not ext.startswith("."):
        ext = "." + ext
    return ext


@dataclass(frozen=True)
class SecuritySettings:
    """Upload/download security policy (read-only after startup).

    Attributes:
        max_file_size: Maximum upload size in bytes.
        allowed_extensions: If non-empty, only these extensions may be uploaded.
        blocked_extensions: Extensions that are always rejected.
        allowed_ips: If non-empty, only these addresses/ranges are allowed.
        blocked_ips: Addresses/ranges that are always rejected (takes precedence).
        enable_encryption_at_rest: Encrypt payloads on upload, decrypt on download.
        encryption_key: Base64 key or passphrase; random per-process key when None.
        enable_access_logging: Emit SecurityEvents to the audit sink.
        enable_virus_scanning: Scan uploads with the content scanner.
        validate_content_type: Enforce the content-type allow-list on upload.
        max_download_attempts_per_hour: Download allowance per client per window.
        rate_limit_window_seconds: Rate window length.
    """

    max_file_size: int = DEFAULT_MAX_FILE_SIZE
    allowed_extensions: tuple[str, ...] = ()
    blocked_extensions: tuple[str, ...] = (".exe", ".bat", ".cmd", ".scr", ".com", ".vbs")
    allowed_ips: tuple[str, ...] = ()
    blocked_ips: tuple[str, ...] = ()
    enable_encryption_at_rest: bool = True
    encryption_key: str | None = field(default=None, repr=False)
    enable_access_logging: bool = True
    enable_virus_scanning: bool = True
    validate_content_type: bool = False
    max_download_attempts_per_hour: int = DEFAULT_MAX_DOWNLOADS_PER_HOUR
    rate_limit_window_seconds: int = DEFAULT_RATE_LIMIT_WINDOW_SECONDS

    def __post_init__(self) -> None:
        if self.max_file_size <= 0:
            raise ConfigError(f"max_file_size must be positive, got {self.max_file_size}")
        if self.max_download_attempts_per_hour <= 0:
            raise ConfigError(
                "max_download_attempts_per_hour must be positive, "
                f"got {self.max_download_attempts_per_hour}"
            )
        if self.rate_limit_window_seconds <= 0:
            raise ConfigError(
                f"rate_limit_window_seconds must be positive, got {self.rate_limit_window_seconds}"
            )
        object.__setattr__(
            self,
            "allowed_extensions",
            tuple(normalize_extension(e) for e in self.allowed_extensions),
        )
        object.__setattr__(
            self,
            "blocked_extensions",
            tuple(normalize_extension(e) for e in self.blocked_extensions),
        )


@dataclass(frozen=True)
class MonitoringSettings:
    """Health aggregation thresholds.

    Attributes:
        enable_metrics: Record OperationMetrics for every gateway call.
        window_seconds: Rolling window used for health status.
        retention_seconds: How long metrics are kept for get_metrics().
        degraded_success_rate: Success rate below which status is Degraded.
        unhealthy_success_rate: Success rate below which status is Unhealthy.
        max_response_time_seconds: Average latency above which status is Degraded.
        max_error_rate: Error rate above which a threshold alert is raised.
    """

    enable_metrics: bool = True
    window_seconds: int = DEFAULT_METRICS_WINDOW_SECONDS
    retention_seconds: int = DEFAULT_METRICS_RETENTION_SECONDS
    degraded_success_rate: float = 0.95
    unhealthy_success_rate: float = 0.80
    max_response_time_seconds: float = 30.0
    max_error_rate: float = 0.05

    def __post_init__(self) -> None:
        if self.window_seconds <= 0 or self.retention_seconds <= 0:
            raise ConfigError("Monitoring windows must be positive")
        if self.unhealthy_success_rate > self.degraded_success_rate:
            raise ConfigError("unhealthy_success_rate cannot exceed degraded_success_rate")
        if self.max_response_time_seconds <= 0:
            raise ConfigError("max_response_time_seconds must be positive")


@dataclass(frozen=True)
class BackupSettings:
    """Backup namespace and schedule settings."""

    backup_container: str = DEFAULT_BACKUP_CONTAINER
    retention_days: int = DEFAULT_BACKUP_RETENTION_DAYS
    max_concurrency: int = DEFAULT_MAX_CONCURRENCY
    compress: bool = True
    containers: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if not self.backup_container:
            raise ConfigError("backup_container cannot be empty")
        if self.retention_days <= 0 or self.max_concurrency <= 0:
            raise ConfigError("Backup retention_days and max_concurrency must be positive")


@dataclass(frozen=True)
class LifecycleSettings:
    """Lifecycle execution settings."""

    archive_suffix: str = "-archive"
    max_concurrency: int = DEFAULT_MAX_CONCURRENCY
    policy_file: str | None = None

    def __post_init__(self) -> None:
        if not self.archive_suffix:
            raise ConfigError("archive_suffix cannot be empty")
        if self.max_concurrency <= 0:
            raise ConfigError("Lifecycle max_concurrency must be positive")


@dataclass(frozen=True)
class S3Settings:
    """Connection settings for the S3 backend."""

    region: str = "us-east-1"
    endpoint_url: str | None = None
    bucket_prefix: str = ""
    access_key_id: str | None = field(default=None, repr=False)
    secret_access_key: str | None = field(default=None, repr=False)


@dataclass(frozen=True)
class StorageSettings:
    """Top-level settings for the storage pipeline."""

    provider: str = "memory"
    filesystem_base_dir: str | None = None
    redis_url: str | None = field(default=None, repr=False)
    s3: S3Settings = field(default_factory=S3Settings)
    security: SecuritySettings = field(default_factory=SecuritySettings)
    monitoring: MonitoringSettings = field(default_factory=MonitoringSettings)
    backup: BackupSettings = field(default_factory=BackupSettings)
    lifecycle: LifecycleSettings = field(default_factory=LifecycleSettings)

    def __post_init__(self) -> None:
        if self.provider not in SUPPORTED_PROVIDERS:
            raise ConfigError(
                f"{ENV_PREFIX}PROVIDER must be one of {sorted(SUPPORTED_PROVIDERS)}, "
                f"got '{self.provider}'"
            )


def load_security_settings() -> SecuritySettings:
    """Load SecuritySettings from environment variables."""
    defaults = SecuritySettings()
    blocked = _parse_csv("BLOCKED_EXTENSIONS")
    return SecuritySettings(
        max_file_size=_parse_positive_int("MAX_FILE_SIZE", defaults.max_file_size),
        allowed_extensions=_parse_csv("ALLOWED_EXTENSIONS"),
        blocked_extensions=blocked or defaults.blocked_extensions,
        allowed_ips=_parse_csv("ALLOWED_IPS"),
        blocked_ips=_parse_csv("BLOCKED_IPS"),
        enable_encryption_at_rest=_get_env_bool(
            "ENCRYPTION_AT_REST", defaults.enable_encryption_at_rest
        ),
        encryption_key=_env("ENCRYPTION_KEY"),
        enable_access_logging=_get_env_bool("ACCESS_LOGGING", defaults.enable_access_logging),
        enable_virus_scanning=_get_env_bool("VIRUS_SCANNING", defaults.enable_virus_scanning),
        validate_content_type=_get_env_bool(
            "VALIDATE_CONTENT_TYPE", defaults.validate_content_type
        ),
        max_download_attempts_per_hour=_parse_positive_int(
            "MAX_DOWNLOADS_PER_HOUR", defaults.max_download_attempts_per_hour
        ),
        rate_limit_window_seconds=_parse_positive_int(
            "RATE_LIMIT_WINDOW_SECONDS", defaults.rate_limit_window_seconds
        ),
    )


def load_monitoring_settings() -> MonitoringSettings:
    """Load MonitoringSettings from environment variables."""
    defaults = MonitoringSettings()
    return MonitoringSettings(
        enable_metrics=_get_env_bool("METRICS_ENABLED", defaults.enable_metrics),
        window_seconds=_parse_positive_int("METRICS_WINDOW_SECONDS", defaults.window_seconds),
        degraded_success_rate=_parse_fraction(
            "DEGRADED_SUCCESS_RATE", defaults.degraded_success_rate
        ),
        unhealthy_success_rate=_parse_fraction(
            "UNHEALTHY_SUCCESS_RATE", defaults.unhealthy_success_rate
        ),
        max_error_rate=_parse_fraction("MAX_ERROR_RATE", defaults.max_error_rate),
    )


def load_storage_settings() -> StorageSettings:
    """Load the full StorageSettings tree from environment variables.

    Raises:
        ConfigError: If any value is invalid.
    """
    backup_defaults = BackupSettings()
    lifecycle_defaults = LifecycleSettings()
    return StorageSettings(
        provider=(_env("PROVIDER") or "memory").lower(),
        filesystem_base_dir=_env("FS_BASE_DIR"),
        redis_url=_env("REDIS_URL"),
        s3=S3Settings(
            region=_env("S3_REGION") or "us-east-1",
            endpoint_url=_env("S3_ENDPOINT_URL"),
            bucket_prefix=_env("S3_BUCKET_PREFIX") or "",
            access_key_id=_env("S3_ACCESS_KEY_ID"),
            secret_access_key=_env("S3_SECRET_ACCESS_KEY"),
        ),
        security=load_security_settings(),
        monitoring=load_monitoring_settings(),
        backup=BackupSettings(
            backup_container=_env("BACKUP_CONTAINER") or backup_defaults.backup_container,
            retention_days=_parse_positive_int(
                "BACKUP_RETENTION_DAYS", backup_defaults.retention_days
            ),
            max_concurrency=_parse_positive_int(
                "BACKUP_MAX_CONCURRENCY", backup_defaults.max_concurrency
            ),
            compress=_get_env_bool("BACKUP_COMPRESS", backup_defaults.compress),
            containers=_parse_csv("BACKUP_CONTAINERS"),
        ),
        lifecycle=LifecycleSettings(
            archive_suffix=_env("LIFECYCLE_ARCHIVE_SUFFIX") or lifecycle_defaults.archive_suffix,
            max_concurrency=_parse_positive_int(
                "LIFECYCLE_MAX_CONCURRENCY", lifecycle_defaults.max_concurrency
            ),
            policy_file=_env("LIFECYCLE_POLICY_FILE"),
        ),
    )
