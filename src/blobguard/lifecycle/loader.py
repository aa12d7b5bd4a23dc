"""YAML loader for lifecycle policy files.

Expected document shape::

    policies:
      - name: expire-logs
        container_pattern: "^logs-"
        file_pattern: "\\.log$"
        rules:
          - action: ARCHIVE
            days_after_modification: 30
          - action: DELETE
            days_after_creation: 90

Loading is fail-closed: an unreadable file raises ConfigError and any invalid
policy raises PolicyInvalidError; nothing is partially returned.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import pydantic
import yaml

from blobguard.errors import ConfigError, PolicyInvalidError
from blobguard.lifecycle.models import LifecyclePolicy


def parse_policies(document: Any, *, source: str = "<document>") -> list[LifecyclePolicy]:
    """Build validated policies from an already-parsed YAML document.

    Raises:
        ConfigError: If the document does not have the expected shape.
        PolicyInvalidError: If a policy fails field or semantic validation,
            or two policies share a name.
    """
    if document is None:
        return []
    if not isinstance(document, dict):
        raise ConfigError(f"Policy file {source} must be a mapping, got {type(document).__name__}")

    entries = document.get("policies") or []
    if not isinstance(entries, list):
        raise ConfigError(f"Policy file {source}: 'policies' must be a list")

    policies: list[LifecyclePolicy] = []
    seen: set[str] = set()
    for index, entry in enumerate(entries):
        name = entry.get("name", "") if isinstance(entry, dict) else ""
        try:
            policy = LifecyclePolicy.model_validate(entry)
        except pydantic.ValidationError as e:
            reasons = [
                f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}" for err in e.errors()
            ]
            raise PolicyInvalidError(str(name or f"#{index}"), reasons) from e
        errors = policy.validation_errors()
        if errors:
            raise PolicyInvalidError(policy.name, errors)
        if policy.name in seen:
            raise PolicyInvalidError(policy.name, [f"Duplicate policy name: {policy.name}"])
        seen.add(policy.name)
        policies.append(policy)
    return policies


def load_policies(path: str | Path) -> list[LifecyclePolicy]:
    """Load lifecycle policies from a YAML file.

    Raises:
        ConfigError: If the file is missing, unreadable or not valid YAML.
        PolicyInvalidError: If any policy is invalid.
    """
    policy_path = Path(path)
    if not policy_path.is_file():
        raise ConfigError(f"Lifecycle policy file not found: {policy_path}")
    try:
        content = policy_path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"Failed to read lifecycle policy file: {e}") from e
    try:
        document = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in lifecycle policy file {policy_path}: {e}") from e
    return parse_policies(document, source=str(policy_path))
