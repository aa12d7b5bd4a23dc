"""Tests for pipeline composition.

Covers:
- Layer order: security -> monitoring -> gateway -> backend
- Settings from the environment and fail-closed provider selection
- Lifecycle policy file registration
- Worker creation from backup settings
"""

from __future__ import annotations

from datetime import timedelta
from pathlib import Path

import pytest

from blobguard.audit.sink import InMemoryAuditSink
from blobguard.config import BackupSettings, LifecycleSettings, StorageSettings
from blobguard.context import OperationContext
from blobguard.errors import ConfigError, PolicyInvalidError, SecurityValidationError
from blobguard.pipeline import StoragePipeline, build_storage_pipeline
from blobguard.security.rate_limiter import InMemoryCounterStore
from blobguard.storage.memory_backend import InMemoryBlobBackend


@pytest.fixture(autouse=True)
def audit_log_path(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Path:
    """Point the default JSONL audit sink into the test's temp directory."""
    path = tmp_path / "audit" / "security_events.jsonl"
    monkeypatch.setenv("BLOBGUARD_AUDIT_LOG_PATH", str(path))
    return path


class TestComposition:
    """Tests for the wired layer stack."""

    def test_service_is_security_filter(self, pipeline: StoragePipeline) -> None:
        """Callers get the outermost layer."""
        assert pipeline.service is pipeline.security

    def test_upload_flows_through_every_layer(
        self,
        pipeline: StoragePipeline,
        memory_backend: InMemoryBlobBackend,
        audit_sink: InMemoryAuditSink,
    ) -> None:
        """An upload is validated, measured and stored encrypted."""
        ctx = OperationContext(client_ip="10.0.0.1")

        pipeline.service.upload("docs", "a.txt", b"plaintext", "text/plain", context=ctx)
        restored = pipeline.service.download("docs", "a.txt", context=ctx).read()

        assert restored == b"plaintext"
        assert memory_backend.get("docs", "a.txt") != b"plaintext"
        metrics = pipeline.monitoring.get_metrics(timedelta(hours=1))
        assert metrics.successful_operations == 2
        assert "UPLOAD_VALIDATION" in [e["event_type"] for e in audit_sink.events]

    def test_rejected_upload_is_not_measured(self, pipeline: StoragePipeline) -> None:
        """Security rejections happen before the monitoring layer."""
        with pytest.raises(SecurityValidationError):
            pipeline.service.upload("docs", "setup.exe", b"MZ", "application/octet-stream")

        assert len(pipeline.monitoring.window) == 0
        assert pipeline.gateway.exists("docs", "setup.exe") is False

    def test_batch_components_share_the_gateway(self, pipeline: StoragePipeline) -> None:
        """Lifecycle and backup see objects written through the service."""
        pipeline.service.upload("docs", "a.txt", b"x", "text/plain")

        backup = pipeline.backup.create_backup("docs")

        assert backup.success is True
        assert backup.file_count == 1

    def test_create_worker_uses_backup_containers(
        self, memory_backend: InMemoryBlobBackend, counter_store: InMemoryCounterStore
    ) -> None:
        """The worker backs up the configured containers."""
        settings = StorageSettings(backup=BackupSettings(containers=("docs", "media")))
        built = build_storage_pipeline(
            settings, backend=memory_backend, counter_store=counter_store
        )

        worker = built.create_worker(interval_seconds=5)

        assert worker.backup_containers == ("docs", "media")
        assert worker.running is False


class TestSettingsSelection:
    """Tests for building from settings."""

    def test_defaults_from_environment(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """With no settings the environment is read and the memory backend is used."""
        monkeypatch.setenv("BLOBGUARD_ACCESS_LOGGING", "0")

        built = build_storage_pipeline(counter_store=InMemoryCounterStore())

        assert built.gateway.active == "memory"
        assert built.settings.security.enable_access_logging is False

    def test_access_logging_writes_jsonl(
        self, monkeypatch: pytest.MonkeyPatch, audit_log_path: Path
    ) -> None:
        """With access logging on and no sink given, events go to the JSONL file."""
        monkeypatch.setenv("BLOBGUARD_ENCRYPTION_KEY", "pipeline-test-passphrase")

        built = build_storage_pipeline(counter_store=InMemoryCounterStore())
        built.service.create_container("docs")
        built.service.upload("docs", "a.txt", b"hello", "text/plain")

        lines = audit_log_path.read_text(encoding="utf-8").splitlines()
        assert any('"UPLOAD_VALIDATION"' in line for line in lines)

    def test_filesystem_provider(
        self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path
    ) -> None:
        """The filesystem provider stores under the configured base directory."""
        monkeypatch.setenv("BLOBGUARD_PROVIDER", "filesystem")
        monkeypatch.setenv("BLOBGUARD_FS_BASE_DIR", str(tmp_path))
        monkeypatch.setenv("BLOBGUARD_ENCRYPTION_AT_REST", "0")
        monkeypatch.setenv("BLOBGUARD_ACCESS_LOGGING", "0")

        built = build_storage_pipeline(counter_store=InMemoryCounterStore())
        built.service.create_container("docs")
        built.service.upload("docs", "a.txt", b"hello", "text/plain")

        assert built.gateway.active == "filesystem"
        assert built.service.download("docs", "a.txt").read() == b"hello"

    def test_unknown_provider_fails_closed(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """An unsupported provider raises ConfigError before anything is built."""
        monkeypatch.setenv("BLOBGUARD_PROVIDER", "ftp")

        with pytest.raises(ConfigError):
            build_storage_pipeline()


class TestPolicyFile:
    """Tests for lifecycle policy registration at startup."""

    def test_policies_registered(
        self, tmp_path: Path, memory_backend: InMemoryBlobBackend
    ) -> None:
        """Policies from the configured YAML file are registered."""
        policy_file = tmp_path / "policies.yaml"
        policy_file.write_text(
            "policies:\n"
            "  - name: expire-logs\n"
            '    container_pattern: "^logs$"\n'
            "    rules:\n"
            "      - action: DELETE\n"
            "        days_after_creation: 90\n",
            encoding="utf-8",
        )
        settings = StorageSettings(lifecycle=LifecycleSettings(policy_file=str(policy_file)))

        built = build_storage_pipeline(
            settings, backend=memory_backend, counter_store=InMemoryCounterStore()
        )

        assert [p.name for p in built.lifecycle.policies] == ["expire-logs"]

    def test_invalid_policy_file_aborts(
        self, tmp_path: Path, memory_backend: InMemoryBlobBackend
    ) -> None:
        """A policy without rules stops the build."""
        policy_file = tmp_path / "policies.yaml"
        policy_file.write_text(
            "policies:\n  - name: empty\n    container_pattern: logs\n    rules: []\n",
            encoding="utf-8",
        )
        settings = StorageSettings(lifecycle=LifecycleSettings(policy_file=str(policy_file)))

        with pytest.raises(PolicyInvalidError):
            build_storage_pipeline(
                settings, backend=memory_backend, counter_store=InMemoryCounterStore()
            )
