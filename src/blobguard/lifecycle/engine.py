"""Lifecycle engine: evaluate retention rules and execute the resulting actions.

Evaluation is a pure function of (policy, objects, now). Execution is delegated to
the storage gateway through the bounded worker pool; a failing object is recorded
in the pass report and never aborts the remaining objects.
"""

from __future__ import annotations

import logging
import re
import threading
from collections.abc import Callable, Iterable, Sequence
from dataclasses import replace
from datetime import UTC, datetime

from blobguard.config import LifecycleSettings
from blobguard.context import OperationContext, check_cancelled
from blobguard.errors import NotFoundError, PolicyInvalidError, StorageError
from blobguard.lifecycle.models import (
    LifecycleAction,
    LifecycleActionOutcome,
    LifecycleDecision,
    LifecyclePassReport,
    LifecyclePolicy,
    LifecycleStatistics,
    PolicyStatistics,
)
from blobguard.scheduling.worker_pool import run_bounded
from blobguard.storage.models import StorageObjectMetadata
from blobguard.storage.service import StorageService

logger = logging.getLogger(__name__)


class LifecycleEngine:
    """Registers lifecycle policies and runs them against a storage gateway.

    Args:
        gateway: Storage service the actions are executed against (the gateway,
            not the filtered service).
        settings: Archive suffix and worker pool size.
        clock: Returns the current UTC time (injectable for tests).
    """

    def __init__(
        self,
        gateway: StorageService,
        settings: LifecycleSettings | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._gateway = gateway
        self._settings = settings or LifecycleSettings()
        self._clock = clock or (lambda: datetime.now(UTC))
        self._policies: dict[str, LifecyclePolicy] = {}
        self._stats: dict[str, PolicyStatistics] = {}
        self._last_run_at: datetime | None = None
        self._lock = threading.Lock()

    @property
    def policies(self) -> list[LifecyclePolicy]:
        with self._lock:
            return list(self._policies.values())

    def archive_container_for(self, container: str) -> str:
        return f"{container}{self._settings.archive_suffix}"

    def validate_policy(self, policy: LifecyclePolicy) -> bool:
        """Return True if the policy can be registered; never raises."""
        errors = policy.validation_errors()
        for error in errors:
            logger.warning("Lifecycle policy invalid: policy=%s reason=%s", policy.name, error)
        return not errors

    def register_policy(self, policy: LifecyclePolicy) -> None:
        """Register a policy for scheduled passes.

        Raises:
            PolicyInvalidError: If the policy is invalid or its name is taken.
        """
        errors = policy.validation_errors()
        if errors:
            raise PolicyInvalidError(policy.name, errors)
        with self._lock:
            if policy.name in self._policies:
                raise PolicyInvalidError(policy.name, [f"Duplicate policy name: {policy.name}"])
            self._policies[policy.name] = policy
            self._stats[policy.name] = PolicyStatistics(
                policy_name=policy.name,
                enabled=policy.enabled,
                rule_count=len(policy.rules),
            )
        logger.info(
            "Registered lifecycle policy: policy=%s rules=%d enabled=%s",
            policy.name,
            len(policy.rules),
            policy.enabled,
        )

    def unregister_policy(self, name: str) -> bool:
        """Remove a registered policy; returns False if it was not registered."""
        with self._lock:
            removed = self._policies.pop(name, None)
            self._stats.pop(name, None)
        return removed is not None

    def evaluate(
        self,
        policy: LifecyclePolicy,
        objects: Iterable[StorageObjectMetadata],
        now: datetime | None = None,
    ) -> list[LifecycleDecision]:
        """Decide the action for every object the policy matches.

        The first rule in list order whose thresholds are met decides the action;
        later rules are not considered for that object.

        Raises:
            PolicyInvalidError: If the policy is invalid.
        """
        errors = policy.validation_errors()
        if errors:
            raise PolicyInvalidError(policy.name, errors)
        if not policy.enabled:
            return []

        now = now or self._clock()
        container_re = re.compile(policy.container_pattern)
        file_re = re.compile(policy.file_pattern) if policy.file_pattern else None

        decisions: list[LifecycleDecision] = []
        for obj in objects:
            if not container_re.search(obj.container):
                continue
            if file_re is not None and not file_re.search(obj.name):
                continue
            for index, rule in enumerate(policy.rules):
                if not rule.is_met(obj, now):
                    continue
                decisions.append(
                    LifecycleDecision(
                        policy_name=policy.name,
                        container=obj.container,
                        name=obj.name,
                        action=rule.action,
                        rule_index=index,
                        size=obj.size,
                        target_tier=(
                            rule.effective_tier
                            if rule.action == LifecycleAction.TIER_CHANGE
                            else None
                        ),
                    )
                )
                break
        return decisions

    def _execute(self, decision: LifecycleDecision, context: OperationContext | None) -> None:
        check_cancelled(context, container=decision.container, name=decision.name)
        if decision.action == LifecycleAction.DELETE:
            self._gateway.delete(decision.container, decision.name, context=context)
        elif decision.action == LifecycleAction.ARCHIVE:
            archive = self.archive_container_for(decision.container)
            self._gateway.create_container(archive, context=context)
            self._gateway.copy(
                decision.container, decision.name, archive, decision.name, context=context
            )
            self._gateway.delete(decision.container, decision.name, context=context)
        elif decision.action == LifecycleAction.TIER_CHANGE:
            if decision.target_tier is None:
                raise PolicyInvalidError(
                    decision.policy_name, ["Tier change decision has no target tier"]
                )
            self._gateway.change_tier(
                decision.container, decision.name, decision.target_tier, context=context
            )
        logger.info(
            "Lifecycle action applied: policy=%s action=%s container=%s name=%s",
            decision.policy_name,
            decision.action,
            decision.container,
            decision.name,
        )

    def apply(
        self,
        decisions: Sequence[LifecycleDecision],
        context: OperationContext | None = None,
    ) -> list[LifecycleActionOutcome]:
        """Execute decisions with bounded concurrency; outcomes keep decision order."""
        results = run_bounded(
            decisions,
            lambda decision: self._execute(decision, context),
            self._settings.max_concurrency,
        )
        outcomes: list[LifecycleActionOutcome] = []
        for result in results:
            if result.ok:
                outcomes.append(LifecycleActionOutcome(decision=result.item, success=True))
                continue
            logger.warning(
                "Lifecycle action failed: policy=%s action=%s container=%s name=%s error=%s",
                result.item.policy_name,
                result.item.action,
                result.item.container,
                result.item.name,
                type(result.error).__name__,
            )
            outcomes.append(
                LifecycleActionOutcome(
                    decision=result.item,
                    success=False,
                    error=str(result.error),
                    error_type=type(result.error).__name__,
                )
            )
        return outcomes

    def _matching_containers(
        self, policy: LifecyclePolicy, context: OperationContext | None
    ) -> list[str]:
        pattern = re.compile(policy.container_pattern)
        suffix = self._settings.archive_suffix
        containers: list[str] = []
        for container in self._gateway.list_containers(context=context):
            # Archive targets are only processed by policies that name them explicitly.
            if container.endswith(suffix) and suffix not in policy.container_pattern:
                continue
            if pattern.search(container):
                containers.append(container)
        return containers

    def _collect_objects(
        self,
        policy: LifecyclePolicy,
        container: str,
        context: OperationContext | None,
    ) -> list[StorageObjectMetadata]:
        file_re = re.compile(policy.file_pattern) if policy.file_pattern else None
        objects: list[StorageObjectMetadata] = []
        for info in self._gateway.list_objects(container, context=context):
            if file_re is not None and not file_re.search(info.name):
                continue
            try:
                objects.append(self._gateway.get_metadata(container, info.name, context=context))
            except NotFoundError:
                # Removed concurrently since listing.
                logger.debug(
                    "Object vanished during lifecycle scan: container=%s name=%s",
                    container,
                    info.name,
                )
        return objects

    def run_policy(
        self,
        policy: LifecyclePolicy,
        context: OperationContext | None = None,
    ) -> LifecyclePassReport:
        """Run one policy against every matching container known to the gateway."""
        report = LifecyclePassReport(started_at=self._clock())
        errors = policy.validation_errors()
        if errors:
            report.errors.append(str(PolicyInvalidError(policy.name, errors)))
            report.finished_at = self._clock()
            return report
        if not policy.enabled:
            report.finished_at = self._clock()
            return report

        try:
            containers = self._matching_containers(policy, context)
        except StorageError as e:
            logger.error(
                "Lifecycle container enumeration failed: policy=%s error=%s", policy.name, e
            )
            report.errors.append(f"Policy {policy.name}: failed to list containers: {e}")
            report.finished_at = self._clock()
            return report

        processed = 0
        for container in containers:
            check_cancelled(context, container=container)
            try:
                objects = self._collect_objects(policy, container, context)
            except StorageError as e:
                logger.error(
                    "Lifecycle object listing failed: policy=%s container=%s error=%s",
                    policy.name,
                    container,
                    e,
                )
                report.errors.append(f"Policy {policy.name}: failed to list {container}: {e}")
                continue
            processed += len(objects)
            decisions = self.evaluate(policy, objects, now=report.started_at)
            report.decisions.extend(decisions)
            report.outcomes.extend(self.apply(decisions, context))

        report.finished_at = self._clock()
        self._record_statistics(policy, report, processed)
        logger.info(
            "Lifecycle policy completed: policy=%s containers=%d decisions=%d failures=%d",
            policy.name,
            len(containers),
            len(report.decisions),
            len(report.failures),
        )
        return report

    def run_lifecycle_pass(
        self,
        policies: Sequence[LifecyclePolicy] | None = None,
        context: OperationContext | None = None,
    ) -> LifecyclePassReport:
        """Run the given policies (default: all registered) and merge their reports."""
        selected = list(policies) if policies is not None else self.policies
        report = LifecyclePassReport(started_at=self._clock())
        for policy in selected:
            report.merge(self.run_policy(policy, context))
        report.finished_at = self._clock()
        with self._lock:
            self._last_run_at = report.finished_at
        counts = report.action_counts
        logger.info(
            "Lifecycle pass completed: policies=%d deleted=%d archived=%d "
            "tier_changed=%d failures=%d",
            len(selected),
            counts[LifecycleAction.DELETE],
            counts[LifecycleAction.ARCHIVE],
            counts[LifecycleAction.TIER_CHANGE],
            len(report.failures) + len(report.errors),
        )
        return report

    def _record_statistics(
        self, policy: LifecyclePolicy, report: LifecyclePassReport, processed: int
    ) -> None:
        succeeded = [o.decision for o in report.outcomes if o.success]
        with self._lock:
            current = self._stats.get(policy.name)
            if current is None:
                return
            self._stats[policy.name] = replace(
                current,
                last_run_at=report.finished_at,
                objects_processed=current.objects_processed + processed,
                objects_deleted=current.objects_deleted
                + sum(1 for d in succeeded if d.action == LifecycleAction.DELETE),
                objects_archived=current.objects_archived
                + sum(1 for d in succeeded if d.action == LifecycleAction.ARCHIVE),
                objects_tier_changed=current.objects_tier_changed
                + sum(1 for d in succeeded if d.action == LifecycleAction.TIER_CHANGE),
                bytes_reclaimed=current.bytes_reclaimed
                + sum(d.size for d in succeeded if d.action == LifecycleAction.DELETE),
            )

    def get_statistics(self) -> LifecycleStatistics:
        """Snapshot of registered policies and their accumulated counters."""
        with self._lock:
            return LifecycleStatistics(
                total_policies=len(self._policies),
                enabled_policies=sum(1 for p in self._policies.values() if p.enabled),
                last_run_at=self._last_run_at,
                policies=tuple(self._stats.values()),
            )
