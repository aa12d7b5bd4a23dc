"""Per-call operation context.

Carries the caller identity (client IP) and the cancellation signal through the
filter chain down to the gateway. Timeouts are supplied per call by the caller and
are never enforced globally by the filters.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field

from blobguard.errors import OperationCancelledError


@dataclass(frozen=True)
class OperationContext:
    """Caller-supplied context for a single storage operation.

    Attributes:
        client_ip: IP address of the calling client (used for IP policy and rate limits).
        cancel_event: Event set by the caller to request cancellation.
        timeout_seconds: Optional per-call timeout; converted to a deadline at creation.
    """

    client_ip: str | None = None
    cancel_event: threading.Event | None = None
    timeout_seconds: float | None = None
    _deadline: float | None = field(default=None, init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        if self.timeout_seconds is not None:
            if self.timeout_seconds <= 0:
                raise ValueError("timeout_seconds must be positive")
            object.__setattr__(self, "_deadline", time.monotonic() + self.timeout_seconds)

    @property
    def is_cancelled(self) -> bool:
        """True if cancellation was requested or the deadline has passed."""
        if self.cancel_event is not None and self.cancel_event.is_set():
            return True
        return self._deadline is not None and time.monotonic() >= self._deadline

    def raise_if_cancelled(self, *, container: str | None = None, name: str | None = None) -> None:
        """Raise OperationCancelledError if the operation should stop."""
        if not self.is_cancelled:
            return
        reason = "Operation timed out" if self._timed_out() else "Operation cancelled"
        raise OperationCancelledError(reason, container=container, name=name)

    def _timed_out(self) -> bool:
        return self._deadline is not None and time.monotonic() >= self._deadline


def check_cancelled(
    context: OperationContext | None,
    *,
    container: str | None = None,
    name: str | None = None,
) -> None:
    """Raise if the optional context signals cancellation."""
    if context is not None:
        context.raise_if_cancelled(container=container, name=name)
