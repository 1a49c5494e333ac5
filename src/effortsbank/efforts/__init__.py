"""Efforts module — transition rules and per-effort locking."""

from effortsbank.efforts.engine import EffortRulesEngine, ErrorKind, RuleViolation
from effortsbank.efforts.guard import EffortLockTable, ReentrantCallError

__all__ = [
    "EffortRulesEngine",
    "ErrorKind",
    "RuleViolation",
    "EffortLockTable",
    "ReentrantCallError",
]
