"""Effort rules engine — validates every lifecycle transition.

Pure computation: no side effects. The ledger handles locking, event
recording, payouts, persistence and state mutations.

Each check returns None when the transition is allowed, or the first
RuleViolation found. Checks run in a fixed order: authorization, then
lifecycle state, then timing. A caller who is not a party to the effort
therefore never learns anything about its timing.

Terminal-path exclusivity:
- approve and auto-fail both require completion_marked.
- deadline-fail requires completion NOT marked.
- all three require not concluded.
So once completion is marked, the deadline path is closed for good, and
once any path concludes the effort, the other two are closed too.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional

from effortsbank.models.effort import Effort
from effortsbank.policy.resolver import PolicyResolver


class ErrorKind(str, enum.Enum):
    """Classification of a rejected operation."""
    NOT_FOUND = "not_found"
    AUTHORIZATION = "authorization"
    STATE = "state"
    TIMING = "timing"
    VALUE = "value"
    TRANSFER = "transfer"
    AUDIT = "audit"


@dataclass(frozen=True)
class RuleViolation:
    """Why a transition was refused."""
    kind: ErrorKind
    message: str


def _auth(message: str) -> RuleViolation:
    return RuleViolation(ErrorKind.AUTHORIZATION, message)


def _state(message: str) -> RuleViolation:
    return RuleViolation(ErrorKind.STATE, message)


class EffortRulesEngine:
    """Checks preconditions for effort transitions.

    Usage:
        engine = EffortRulesEngine(resolver)
        violation = engine.check_approval(effort, caller_handle)
        if violation:
            ...  # reject with violation.kind / violation.message
    """

    def __init__(self, resolver: PolicyResolver) -> None:
        self._resolver = resolver

    # ------------------------------------------------------------------
    # Submission and renegotiation
    # ------------------------------------------------------------------

    def check_submission(
        self,
        proposer_handle: Optional[int],
        performer_handle: Optional[int],
        proposer_active: bool,
        deposit: Decimal,
        duration_days: int,
    ) -> Optional[RuleViolation]:
        """Check a new proposal.

        Requirements:
        1. Proposer and performer are both members
        2. Proposer is not proposing to themselves
        3. Proposer is an active member
        4. Deposit is positive and meets the minimum
        5. Duration is within policy bounds
        """
        if proposer_handle is None:
            return _auth("Proposer is not a member")
        if performer_handle is None:
            return _auth("Performer is not a member")
        if proposer_handle == performer_handle:
            return RuleViolation(ErrorKind.VALUE, "Cannot propose an effort to yourself")
        if not proposer_active:
            return _auth("Proposer membership is not active")

        min_deposit = self._resolver.min_deposit()
        if deposit <= 0 or deposit < min_deposit:
            return RuleViolation(
                ErrorKind.VALUE,
                f"Deposit {deposit} is below the minimum {min_deposit}",
            )
        return self.check_duration(duration_days)

    def check_duration(self, duration_days: int) -> Optional[RuleViolation]:
        lo, hi = self._resolver.duration_bounds()
        if isinstance(duration_days, bool) or not isinstance(duration_days, int):
            return RuleViolation(ErrorKind.VALUE, f"Duration must be whole days, got {duration_days!r}")
        if not (lo <= duration_days <= hi):
            return RuleViolation(
                ErrorKind.VALUE,
                f"Duration {duration_days} days outside allowed range [{lo}, {hi}]",
            )
        return None

    def check_duration_request(
        self,
        effort: Effort,
        caller_handle: Optional[int],
        new_duration_days: int,
    ) -> Optional[RuleViolation]:
        if caller_handle != effort.performer_handle:
            return _auth("Only the performer can request a duration update")
        if effort.concluded:
            return _state(f"Effort {effort.effort_id} is concluded")
        return self.check_duration(new_duration_days)

    def check_duration_approval(
        self,
        effort: Effort,
        caller_handle: Optional[int],
    ) -> Optional[RuleViolation]:
        if caller_handle != effort.proposer_handle:
            return _auth("Only the proposer can approve a duration update")
        if effort.concluded:
            return _state(f"Effort {effort.effort_id} is concluded")
        if effort.duration_update is None:
            return _state("No duration update is pending")
        return None

    # ------------------------------------------------------------------
    # Performer transitions
    # ------------------------------------------------------------------

    def check_commit(
        self,
        effort: Effort,
        caller_handle: Optional[int],
    ) -> Optional[RuleViolation]:
        """Role and state check for commitment.

        The performer's activity check is separate (check_performer_active)
        because it must run after the accrual tick.
        """
        if caller_handle != effort.performer_handle:
            return _auth("Only the performer can commit to an effort")
        if effort.concluded:
            return _state(f"Effort {effort.effort_id} is concluded")
        if effort.committed:
            return _state(f"Effort {effort.effort_id} is already committed")
        return None

    def check_performer_active(self, active: bool) -> Optional[RuleViolation]:
        if not active:
            return _auth("Performer membership is not active (unpaid subscription or penalty)")
        return None

    def check_mark_completed(
        self,
        effort: Effort,
        caller_handle: Optional[int],
    ) -> Optional[RuleViolation]:
        if caller_handle != effort.performer_handle:
            return _auth("Only the performer can mark an effort completed")
        if effort.concluded:
            return _state(f"Effort {effort.effort_id} is concluded")
        if not effort.committed:
            return _state(f"Effort {effort.effort_id} is not committed")
        if effort.completion_marked:
            return _state(f"Effort {effort.effort_id} is already marked completed")
        return None

    # ------------------------------------------------------------------
    # Terminal transitions
    # ------------------------------------------------------------------

    def check_approval(
        self,
        effort: Effort,
        caller_handle: Optional[int],
    ) -> Optional[RuleViolation]:
        if caller_handle != effort.proposer_handle:
            return _auth("Only the proposer can approve completion")
        if effort.concluded:
            return _state(f"Effort {effort.effort_id} is concluded")
        if not effort.committed:
            return _state(f"Effort {effort.effort_id} is not committed")
        if not effort.completion_marked:
            return _state(f"Effort {effort.effort_id} has not been marked completed")
        return None

    def check_auto_fail(self, effort: Effort, now: datetime) -> Optional[RuleViolation]:
        """Anyone may force a refund once the confirm window has passed."""
        if effort.concluded:
            return _state(f"Effort {effort.effort_id} is concluded")
        if not effort.completion_marked:
            return _state(f"Effort {effort.effort_id} has not been marked completed")
        window_end = effort.confirm_deadline_utc(self._resolver.confirm_window())
        if not now > window_end:
            return RuleViolation(
                ErrorKind.TIMING,
                f"Confirm window open until {window_end.isoformat()}",
            )
        return None

    def check_deadline_fail(self, effort: Effort, now: datetime) -> Optional[RuleViolation]:
        """Anyone may force a refund once a committed effort's deadline passes.

        A marked completion is resolved only by approval or auto-fail.
        """
        if effort.concluded:
            return _state(f"Effort {effort.effort_id} is concluded")
        if not effort.committed:
            return _state(f"Effort {effort.effort_id} is not committed")
        if effort.completion_marked:
            return _state(
                f"Effort {effort.effort_id} is marked completed; "
                f"resolve via approval or auto-fail"
            )
        deadline = effort.deadline_utc()
        if not now > deadline:
            return RuleViolation(
                ErrorKind.TIMING,
                f"Deadline not reached until {deadline.isoformat()}",
            )
        return None
