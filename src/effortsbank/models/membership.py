"""Membership record — one per address, identified by a numeric handle.

A member is active when the subscription is paid through the current
moment and no accrued penalty is outstanding. Penalty accrues per whole
overdue day and is only brought up to date by an explicit accrual tick.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional


@dataclass
class MembershipRecord:
    """A single membership.

    paid_until_utc is None until the first subscription payment.
    penalty_accrued_through_utc marks how far the last accrual tick
    counted, so repeated ticks never double-charge the same day.
    """
    handle: int
    address: str
    registered_utc: datetime
    paid_until_utc: Optional[datetime] = None
    penalty_due: Decimal = Decimal("0")
    penalty_accrued_through_utc: Optional[datetime] = None
    total_paid: Decimal = Decimal("0")

    def is_active(self, now: datetime) -> bool:
        if self.paid_until_utc is None:
            return False
        return now <= self.paid_until_utc and self.penalty_due == 0
