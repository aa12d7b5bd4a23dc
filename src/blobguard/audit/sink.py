"""Security event sinks for blobguard.

Provides append-only sinks for SecurityEvent records emitted by the security
filter. All sinks implement the AuditSink protocol.

Design requirements:
- Append-only: never truncate/overwrite
- Fail closed: any IO failure raises AuditSinkError
- Deterministic: consistent JSON serialization (sorted keys, no extra whitespace)
"""

from __future__ import annotations

import json
import logging
import os
import threading
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from blobguard.errors import StorageError

logger = logging.getLogger(__name__)

AUDIT_LOG_PATH_ENV = "BLOBGUARD_AUDIT_LOG_PATH"
DEFAULT_AUDIT_LOG_PATH = "./var/audit/security_events.jsonl"


class AuditSinkError(StorageError):
    """Raised when security event emission fails."""


@runtime_checkable
class AuditSink(Protocol):
    """Protocol for security event sinks.

    All implementations must be append-only and fail closed on errors.
    """

    def emit(self, event: dict[str, Any]) -> None:
        """Append one event.

        Raises:
            AuditSinkError: If emission fails for any reason
        """
        ...


def _serialize(event: dict[str, Any]) -> str:
    try:
        return json.dumps(event, sort_keys=True, separators=(",", ":"))
    except (TypeError, ValueError) as e:
        raise AuditSinkError(f"Failed to serialize security event: {e}") from e


class JsonlFileAuditSink:
    """Append-only JSONL file sink.

    Configuration:
    - File path from env BLOBGUARD_AUDIT_LOG_PATH
      (default: ./var/audit/security_events.jsonl)
    - Creates parent directories if missing
    - Appends one line per event and never truncates existing content
    """

    def __init__(self, file_path: str | Path | None = None) -> None:
        """Initialize the JSONL file sink.

        Args:
            file_path: Override path for the log file. If None, reads from
                BLOBGUARD_AUDIT_LOG_PATH, falling back to DEFAULT_AUDIT_LOG_PATH.
        """
        if file_path is None:
            file_path = os.environ.get(AUDIT_LOG_PATH_ENV) or DEFAULT_AUDIT_LOG_PATH
        self._file_path = Path(file_path)
        self._lock = threading.Lock()

    @property
    def file_path(self) -> Path:
        """Return the configured file path."""
        return self._file_path

    def _ensure_parent_directory(self) -> None:
        parent = self._file_path.parent
        if not parent.exists():
            try:
                parent.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise AuditSinkError(f"Failed to create audit log directory {parent}: {e}") from e

    def emit(self, event: dict[str, Any]) -> None:
        """Append the event as one JSON line.

        Raises:
            AuditSinkError: If serialization or file write fails
        """
        line = _serialize(event) + "\n"
        self._ensure_parent_directory()
        with self._lock:
            try:
                with open(self._file_path, mode="a", encoding="utf-8") as f:
                    f.write(line)
            except OSError as e:
                raise AuditSinkError(
                    f"Failed to write security event to {self._file_path}: {e}"
                ) from e


class InMemoryAuditSink:
    """In-memory sink for testing (no disk writes)."""

    def __init__(self) -> None:
        self._events: list[dict[str, Any]] = []
        self._lock = threading.Lock()

    def emit(self, event: dict[str, Any]) -> None:
        """Store a JSON-normalized copy of the event."""
        line = _serialize(event)
        with self._lock:
            self._events.append(json.loads(line))

    @property
    def events(self) -> list[dict[str, Any]]:
        """Return all emitted events."""
        with self._lock:
            return list(self._events)

    def clear(self) -> None:
        """Clear all stored events."""
        with self._lock:
            self._events.clear()


def get_audit_sink() -> AuditSink:
    """Return the configured sink (JSONL file at BLOBGUARD_AUDIT_LOG_PATH)."""
    return JsonlFileAuditSink()
