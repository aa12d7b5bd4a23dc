"""blobguard lifecycle engine.

Declarative retention rules (delete, archive, tier change) evaluated against
pattern-matched containers and objects, executed through the storage gateway.
"""

from blobguard.lifecycle.engine import LifecycleEngine
from blobguard.lifecycle.loader import load_policies, parse_policies
from blobguard.lifecycle.models import (
    LifecycleAction,
    LifecycleActionOutcome,
    LifecycleDecision,
    LifecyclePassReport,
    LifecyclePolicy,
    LifecycleRule,
    LifecycleStatistics,
    PolicyStatistics,
)

__all__ = [
    "LifecycleAction",
    "LifecycleActionOutcome",
    "LifecycleDecision",
    "LifecycleEngine",
    "LifecyclePassReport",
    "LifecyclePolicy",
    "LifecycleRule",
    "LifecycleStatistics",
    "PolicyStatistics",
    "load_policies",
    "parse_policies",
]
