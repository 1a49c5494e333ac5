"""Effort proposal data models.

An effort binds two members: the proposer, who escrows a deposit, and the
performer, who commits to doing the work within an agreed number of days.
Identity fields are fixed at creation; only the lifecycle fields move.

Lifecycle:
    PROPOSED → COMMITTED → COMPLETION_MARKED → APPROVED
    COMPLETION_MARKED → AUTO_FAILED        (proposer never approved)
    COMMITTED → DEADLINE_FAILED            (performer never marked completion)

A duration renegotiation (request/approve) may run in PROPOSED, COMMITTED
or COMPLETION_MARKED without changing the primary state.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional


class EffortState(str, enum.Enum):
    """Primary lifecycle state, derived from the effort's flags."""
    PROPOSED = "proposed"
    COMMITTED = "committed"
    COMPLETION_MARKED = "completion_marked"
    APPROVED = "approved"
    AUTO_FAILED = "auto_failed"
    DEADLINE_FAILED = "deadline_failed"


class EffortOutcome(str, enum.Enum):
    """Which terminal path concluded an effort."""
    APPROVED = "approved"
    AUTO_FAILED = "auto_failed"
    DEADLINE_FAILED = "deadline_failed"


_OUTCOME_TO_STATE = {
    EffortOutcome.APPROVED: EffortState.APPROVED,
    EffortOutcome.AUTO_FAILED: EffortState.AUTO_FAILED,
    EffortOutcome.DEADLINE_FAILED: EffortState.DEADLINE_FAILED,
}


@dataclass(frozen=True)
class DurationUpdateRequest:
    """A performer's pending request to change the agreed duration."""
    requested_days: int
    requested_utc: Optional[datetime] = None


@dataclass
class Effort:
    """A proposer-funded, performer-executed task with escrowed deposit.

    Invariants enforced by the ledger:
    - deposit_amount drops to zero exactly once, when concluded flips.
    - Once concluded, no field changes again.
    - completion_marked implies committed.
    - commitment_accepted_utc is set iff committed.
    """
    effort_id: int
    proposer_handle: int
    performer_handle: int
    deposit_amount: Decimal
    initial_deposit: Decimal
    proposed_duration_days: int
    created_utc: datetime

    duration_update: Optional[DurationUpdateRequest] = None

    committed: bool = False
    commitment_accepted_utc: Optional[datetime] = None

    completion_marked: bool = False
    completed_utc: Optional[datetime] = None

    concluded: bool = False
    concluded_utc: Optional[datetime] = None
    outcome: Optional[EffortOutcome] = None
    matched_amount: Decimal = Decimal("0")

    @property
    def state(self) -> EffortState:
        if self.concluded and self.outcome is not None:
            return _OUTCOME_TO_STATE[self.outcome]
        if self.completion_marked:
            return EffortState.COMPLETION_MARKED
        if self.committed:
            return EffortState.COMMITTED
        return EffortState.PROPOSED

    @property
    def is_renegotiating(self) -> bool:
        return self.duration_update is not None and not self.concluded

    def deadline_utc(self) -> Optional[datetime]:
        """Commitment deadline. None until the performer commits.

        Computed from the current duration, so an approved renegotiation
        after commitment moves the deadline.
        """
        if self.commitment_accepted_utc is None:
            return None
        return self.commitment_accepted_utc + timedelta(days=self.proposed_duration_days)

    def confirm_deadline_utc(self, window: timedelta) -> Optional[datetime]:
        """End of the proposer's approval grace window."""
        if self.completed_utc is None:
            return None
        return self.completed_utc + window

    def involves(self, handle: int) -> bool:
        return handle in (self.proposer_handle, self.performer_handle)
