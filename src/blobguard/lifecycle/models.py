"""Lifecycle policy models and pass reports.

Policies are Pydantic models so they can be loaded from YAML with strict field
checking. Semantic validity (non-empty name, compilable patterns, usable rules)
is reported by ``validation_errors()`` rather than raised at construction, so an
invalid policy can still be represented and rejected at registration.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field

from blobguard.storage.models import StorageObjectMetadata, StorageTier


class LifecycleAction(StrEnum):
    """Action taken on an object matched by a rule."""

    DELETE = "DELETE"
    ARCHIVE = "ARCHIVE"
    TIER_CHANGE = "TIER_CHANGE"


class LifecycleRule(BaseModel):
    """Age-triggered action, optionally bounded by object size.

    A threshold of 0 is not configured. Every configured threshold must be met
    for the rule to apply.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    action: LifecycleAction
    days_after_creation: int = Field(default=0, ge=0)
    days_after_modification: int = Field(default=0, ge=0)
    min_size: int | None = Field(default=None, ge=0)
    max_size: int | None = Field(default=None, ge=0)
    target_tier: StorageTier | None = None

    @property
    def effective_tier(self) -> StorageTier:
        """Tier a TIER_CHANGE moves objects to (ARCHIVE when unset)."""
        return self.target_tier or StorageTier.ARCHIVE

    def validation_errors(self) -> list[str]:
        errors: list[str] = []
        if self.days_after_creation <= 0 and self.days_after_modification <= 0:
            errors.append(
                "Rule must have days_after_creation or days_after_modification greater than 0"
            )
        if self.min_size is not None and self.max_size is not None:
            if self.min_size > self.max_size:
                errors.append("min_size cannot be greater than max_size")
        return errors

    def is_met(self, obj: StorageObjectMetadata, now: datetime) -> bool:
        """Return True if every configured threshold holds for the object."""
        if self.days_after_creation > 0:
            if (now - obj.created_at).days < self.days_after_creation:
                return False
        if self.days_after_modification > 0:
            if (now - obj.modified_at).days < self.days_after_modification:
                return False
        if self.min_size is not None and obj.size < self.min_size:
            return False
        if self.max_size is not None and obj.size > self.max_size:
            return False
        return True


def _pattern_error(label: str, pattern: str) -> str | None:
    try:
        re.compile(pattern)
    except re.error as e:
        return f"Invalid {label} pattern '{pattern}': {e}"
    return None


class LifecyclePolicy(BaseModel):
    """Named set of ordered rules applied to pattern-matched objects.

    Attributes:
        name: Unique, non-empty policy name.
        container_pattern: Regular expression searched in container names.
        file_pattern: Optional regular expression searched in object names.
        enabled: Disabled policies are never evaluated.
        rules: Ordered rules; the first rule met decides the action.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str = ""
    container_pattern: str = ""
    file_pattern: str | None = None
    enabled: bool = True
    rules: tuple[LifecycleRule, ...] = ()

    def validation_errors(self) -> list[str]:
        """Return every reason the policy is invalid, in detection order."""
        errors: list[str] = []
        if not self.name.strip():
            errors.append("Policy name is required")
        if not self.container_pattern:
            errors.append("Container pattern is required")
        else:
            error = _pattern_error("container", self.container_pattern)
            if error:
                errors.append(error)
        if self.file_pattern:
            error = _pattern_error("file", self.file_pattern)
            if error:
                errors.append(error)
        for index, rule in enumerate(self.rules):
            errors.extend(f"Rule {index}: {message}" for message in rule.validation_errors())
        if self.enabled and not self.rules:
            errors.append("An enabled policy requires at least one rule")
        return errors


@dataclass(frozen=True)
class LifecycleDecision:
    """Action chosen for one object by one policy."""

    policy_name: str
    container: str
    name: str
    action: LifecycleAction
    rule_index: int
    size: int = 0
    target_tier: StorageTier | None = None


@dataclass(frozen=True)
class LifecycleActionOutcome:
    """Result of executing one decision."""

    decision: LifecycleDecision
    success: bool
    error: str | None = None
    error_type: str | None = None


@dataclass
class LifecyclePassReport:
    """Per-object report of a lifecycle pass.

    Attributes:
        started_at: When the pass began.
        finished_at: When the pass ended.
        decisions: Every decision produced by evaluation.
        outcomes: Execution outcome per decision, in decision order.
        errors: Policy- or container-level failures (listing, invalid policy).
    """

    started_at: datetime
    finished_at: datetime | None = None
    decisions: list[LifecycleDecision] = field(default_factory=list)
    outcomes: list[LifecycleActionOutcome] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def failures(self) -> list[LifecycleActionOutcome]:
        return [o for o in self.outcomes if not o.success]

    @property
    def success(self) -> bool:
        return not self.errors and not self.failures

    @property
    def action_counts(self) -> dict[LifecycleAction, int]:
        """Successful actions per action type."""
        counts = {action: 0 for action in LifecycleAction}
        for outcome in self.outcomes:
            if outcome.success:
                counts[outcome.decision.action] += 1
        return counts

    def merge(self, other: LifecyclePassReport) -> None:
        self.decisions.extend(other.decisions)
        self.outcomes.extend(other.outcomes)
        self.errors.extend(other.errors)


@dataclass(frozen=True)
class PolicyStatistics:
    """Accumulated execution counters for one policy."""

    policy_name: str
    enabled: bool
    rule_count: int
    last_run_at: datetime | None = None
    objects_processed: int = 0
    objects_deleted: int = 0
    objects_archived: int = 0
    objects_tier_changed: int = 0
    bytes_reclaimed: int = 0


@dataclass(frozen=True)
class LifecycleStatistics:
    """Snapshot over all registered policies."""

    total_policies: int
    enabled_policies: int
    last_run_at: datetime | None
    policies: tuple[PolicyStatistics, ...] = ()
