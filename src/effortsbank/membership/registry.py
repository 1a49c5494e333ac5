"""Membership registry — maps addresses to membership handles.

The registry is the source of truth for who may take part in efforts.
It tracks:
- One membership per address (a second registration is rejected).
- A hard cap on total memberships (policy max_members).
- Subscription coverage (paid_until_utc).
- Accrued penalty for overdue subscriptions.

Invariants enforced:
- Handles are sequential from 1 and never reused.
- Penalty accrues once per whole overdue day, never twice for the same day.
- Penalty payments can never exceed what is due.

Thread-safety: this class is not thread-safe. The ledger serialises
access with its registry lock.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional

from effortsbank.models.membership import MembershipRecord
from effortsbank.policy.resolver import PolicyResolver

log = logging.getLogger(__name__)

_ONE_DAY = timedelta(days=1)


class MembershipRegistry:
    """Registry of all memberships."""

    def __init__(self, resolver: PolicyResolver) -> None:
        self._resolver = resolver
        self._by_handle: dict[int, MembershipRecord] = {}
        self._by_address: dict[str, int] = {}

    def register(self, address: str, now: datetime) -> MembershipRecord:
        """Issue a new membership for an address.

        Raises ValueError if:
        - address is blank
        - address already holds a membership
        - the membership cap is reached
        """
        canonical = address.strip()
        if not canonical:
            raise ValueError("Cannot register member with blank address")
        if canonical in self._by_address:
            raise ValueError(f"Address already holds a membership: {canonical}")
        cap = self._resolver.max_members()
        if len(self._by_handle) >= cap:
            raise ValueError(f"Membership cap reached ({cap})")

        handle = len(self._by_handle) + 1
        record = MembershipRecord(handle=handle, address=canonical, registered_utc=now)
        self.add(record)
        return record

    def add(self, record: MembershipRecord) -> None:
        """Insert an existing record (used on recovery)."""
        if record.handle in self._by_handle:
            raise ValueError(f"Duplicate membership handle: {record.handle}")
        self._by_handle[record.handle] = record
        self._by_address[record.address] = record.handle

    def remove(self, handle: int) -> None:
        """Drop a membership. Only used to undo a failed registration."""
        record = self._by_handle.pop(handle, None)
        if record is not None:
            self._by_address.pop(record.address, None)

    def is_member(self, address: str) -> bool:
        return address.strip() in self._by_address

    def handle_of(self, address: str) -> int:
        """Resolve an address to its handle.

        Raises ValueError if the address holds no membership.
        """
        handle = self._by_address.get(address.strip())
        if handle is None:
            raise ValueError(f"Not a member: {address}")
        return handle

    def get(self, handle: int) -> Optional[MembershipRecord]:
        return self._by_handle.get(handle)

    def address_of(self, handle: int) -> str:
        return self._require(handle).address

    def all_members(self) -> list[MembershipRecord]:
        return list(self._by_handle.values())

    def is_active(self, handle: int, now: datetime) -> bool:
        record = self._by_handle.get(handle)
        return record is not None and record.is_active(now)

    # ------------------------------------------------------------------
    # Billing
    # ------------------------------------------------------------------

    def pay_subscription(self, handle: int, amount: Decimal, now: datetime) -> datetime:
        """Pay one subscription period. Returns the new paid-until time.

        Coverage extends from whichever is later: the current paid-until
        or now. A lapsed subscription does not back-pay the gap.
        """
        record = self._require(handle)
        fee = self._resolver.subscription_fee()
        if amount != fee:
            raise ValueError(f"Subscription fee is {fee}, got {amount}")
        start = now
        if record.paid_until_utc is not None and record.paid_until_utc > now:
            start = record.paid_until_utc
        record.paid_until_utc = start + self._resolver.subscription_period()
        record.total_paid += amount
        return record.paid_until_utc

    def accrue(self, handle: int, now: datetime) -> Decimal:
        """Bring the penalty up to date. Returns the amount added.

        Every whole day past the subscription end (or past the previous
        accrual, whichever is later) adds penalty_per_day.
        """
        record = self._require(handle)
        if record.paid_until_utc is None or now <= record.paid_until_utc:
            return Decimal("0")

        start = record.paid_until_utc
        if (
            record.penalty_accrued_through_utc is not None
            and record.penalty_accrued_through_utc > start
        ):
            start = record.penalty_accrued_through_utc

        days = (now - start) // _ONE_DAY
        if days <= 0:
            return Decimal("0")

        added = self._resolver.penalty_per_day() * days
        record.penalty_due += added
        record.penalty_accrued_through_utc = start + days * _ONE_DAY
        log.info(
            "Accrued penalty %s for member %d (%d overdue day(s))",
            added, handle, days,
        )
        return added

    def pay_penalty(self, handle: int, amount: Decimal) -> Decimal:
        """Pay down accrued penalty. Returns the remaining amount due."""
        record = self._require(handle)
        if amount <= 0:
            raise ValueError(f"Penalty payment must be positive, got {amount}")
        if amount > record.penalty_due:
            raise ValueError(
                f"Penalty payment {amount} exceeds amount due {record.penalty_due}"
            )
        record.penalty_due -= amount
        record.total_paid += amount
        return record.penalty_due

    # ------------------------------------------------------------------
    # Rollback support
    # ------------------------------------------------------------------

    def snapshot(self, handle: int) -> MembershipRecord:
        """Return a detached copy of a record for later restore()."""
        return replace(self._require(handle))

    def restore(self, snapshot: MembershipRecord) -> None:
        """Overwrite a live record's billing fields from a snapshot."""
        record = self._require(snapshot.handle)
        record.paid_until_utc = snapshot.paid_until_utc
        record.penalty_due = snapshot.penalty_due
        record.penalty_accrued_through_utc = snapshot.penalty_accrued_through_utc
        record.total_paid = snapshot.total_paid

    @property
    def count(self) -> int:
        return len(self._by_handle)

    def _require(self, handle: int) -> MembershipRecord:
        record = self._by_handle.get(handle)
        if record is None:
            raise ValueError(f"Unknown membership handle: {handle}")
        return record
