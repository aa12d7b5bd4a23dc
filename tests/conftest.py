"""Pytest configuration and fixtures for blobguard tests.

This module provides common fixtures and configuration for all tests.
"""

from __future__ import annotations

import os
from collections.abc import Iterator
from datetime import UTC, datetime
from typing import Any

import pytest

from blobguard.audit.sink import InMemoryAuditSink
from blobguard.config import SecuritySettings, StorageSettings
from blobguard.pipeline import StoragePipeline, build_storage_pipeline
from blobguard.security.rate_limiter import InMemoryCounterStore
from blobguard.storage.gateway import StorageGateway
from blobguard.storage.memory_backend import InMemoryBlobBackend

TEST_ENCRYPTION_KEY = "blobguard-test-passphrase"


class SpyService:
    """StorageService stand-in that records every call and delegates to a target."""

    def __init__(self, target: Any) -> None:
        self._target = target
        self.calls: list[str] = []

    def __getattr__(self, name: str) -> Any:
        attr = getattr(self._target, name)
        if not callable(attr):
            return attr

        def recorder(*args: Any, **kwargs: Any) -> Any:
            self.calls.append(name)
            return attr(*args, **kwargs)

        return recorder


class FixedClock:
    """Mutable UTC clock for lifecycle, backup and metric tests."""

    def __init__(self, now: datetime | None = None) -> None:
        self.now = now or datetime(2026, 1, 15, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture(autouse=True)
def clear_blobguard_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Remove BLOBGUARD_* variables so tests never read the developer's environment."""
    for key in list(os.environ):
        if key.startswith("BLOBGUARD_"):
            monkeypatch.delenv(key, raising=False)


@pytest.fixture
def memory_backend() -> InMemoryBlobBackend:
    """Return an empty in-memory backend."""
    return InMemoryBlobBackend()


@pytest.fixture
def gateway(memory_backend: InMemoryBlobBackend) -> StorageGateway:
    """Return a gateway over the in-memory backend with a 'docs' container."""
    gw = StorageGateway({"memory": memory_backend}, active="memory")
    gw.create_container("docs")
    return gw


@pytest.fixture
def audit_sink() -> InMemoryAuditSink:
    """Return an in-memory audit sink."""
    return InMemoryAuditSink()


@pytest.fixture
def counter_store() -> InMemoryCounterStore:
    """Return an in-memory rate-limit counter store."""
    return InMemoryCounterStore()


@pytest.fixture
def security_settings() -> SecuritySettings:
    """Return default security settings with a fixed encryption passphrase."""
    return SecuritySettings(encryption_key=TEST_ENCRYPTION_KEY)


@pytest.fixture
def pipeline(
    memory_backend: InMemoryBlobBackend,
    counter_store: InMemoryCounterStore,
    audit_sink: InMemoryAuditSink,
    security_settings: SecuritySettings,
) -> StoragePipeline:
    """Return a fully wired pipeline over the in-memory backend."""
    settings = StorageSettings(security=security_settings)
    built = build_storage_pipeline(
        settings,
        backend=memory_backend,
        counter_store=counter_store,
        audit_sink=audit_sink,
    )
    built.gateway.create_container("docs")
    return built


@pytest.fixture
def clock() -> FixedClock:
    """Return a fixed, mutable clock."""
    return FixedClock()


@pytest.fixture
def spy_factory() -> Iterator[type[SpyService]]:
    """Return the SpyService class for wrapping a layer under test."""
    yield SpyService
