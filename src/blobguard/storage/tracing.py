"""OpenTelemetry tracing for blob backend operations.

Provides the traced_storage_operation decorator applied to backend methods.

Security:
    - Never export absolute filesystem paths in span attributes
    - Object names are exported only as SHA256 digests
    - No secrets or credentials in any span attribute
"""

from __future__ import annotations

import functools
import hashlib
import logging
import os
from collections.abc import Callable
from typing import Any, TypeVar, cast

from opentelemetry import trace

from blobguard.storage.models import StorageObjectMetadata

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])

BLOBGUARD_OTEL_ENABLED_ENV = "BLOBGUARD_OTEL_ENABLED"
TRACER_NAME = "blobguard.storage"


def _is_otel_enabled() -> bool:
    """Check if OpenTelemetry tracing is enabled."""
    val = os.environ.get(BLOBGUARD_OTEL_ENABLED_ENV, "").strip().lower()
    return val in ("1", "true", "yes")


def hash_name(name: str) -> str:
    """Return the SHA256 hex digest of an object name for correlation."""
    return hashlib.sha256(name.encode("utf-8")).hexdigest()


def traced_storage_operation(operation: str) -> Callable[[F], F]:
    """Decorator to trace backend operations with OpenTelemetry.

    The decorated method must take ``(self, container, name, ...)``.

    Args:
        operation: Operation name (e.g., "put", "get", "head", "delete").

    Returns:
        Decorated function that emits spans when tracing is enabled.
    """

    def decorator(func: F) -> F:
        @functools.wraps(func)
        def wrapper(self: Any, container: str, name: str, *args: Any, **kwargs: Any) -> Any:
            if not _is_otel_enabled():
                return func(self, container, name, *args, **kwargs)

            tracer = trace.get_tracer(TRACER_NAME)
            with tracer.start_as_current_span(f"blobguard.storage.{operation}") as span:
                span.set_attribute("blobguard.container", container)
                span.set_attribute("blobguard.object_name_sha256", hash_name(name))
                span.set_attribute("storage.backend", getattr(self, "backend_name", "unknown"))
                try:
                    result = func(self, container, name, *args, **kwargs)
                except Exception as e:
                    span.set_attribute("error", True)
                    span.set_attribute("error.type", type(e).__name__)
                    raise

                _add_result_attributes(span, result)
                return result

        return cast(F, wrapper)

    return decorator


def _add_result_attributes(span: Any, result: Any) -> None:
    """Add safe result attributes (size, digest, tier) to the span."""
    if isinstance(result, StorageObjectMetadata):
        span.set_attribute("blobguard.object_size_bytes", result.size)
        span.set_attribute("blobguard.object_tier", result.tier.value)
        if result.sha256:
            span.set_attribute("blobguard.object_sha256", result.sha256)
    elif isinstance(result, bytes):
        span.set_attribute("blobguard.object_size_bytes", len(result))
