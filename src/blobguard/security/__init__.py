"""blobguard security layer.

Provides the SecurityFilter decorator and its collaborators: content scanner,
rate limiter, payload cipher and access policy checks.
"""

from blobguard.security.encryption import ContentCipher, derive_key
from blobguard.security.filter import SecurityFilter
from blobguard.security.models import (
    RateLimitStatus,
    ScanResult,
    SecurityEvent,
    SecurityEventType,
    StorageOperation,
    ThreatType,
    ValidationResult,
)
from blobguard.security.rate_limiter import (
    CounterStore,
    InMemoryCounterStore,
    RateLimiter,
    RedisCounterStore,
)
from blobguard.security.scanner import ContentScanner

__all__ = [
    "ContentCipher",
    "ContentScanner",
    "CounterStore",
    "InMemoryCounterStore",
    "RateLimitStatus",
    "RateLimiter",
    "RedisCounterStore",
    "ScanResult",
    "SecurityEvent",
    "SecurityEventType",
    "SecurityFilter",
    "StorageOperation",
    "ThreatType",
    "ValidationResult",
    "derive_key",
]
