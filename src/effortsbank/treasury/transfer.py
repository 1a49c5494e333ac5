"""Fund transfer boundary — where money leaves the ledger.

payout() is the only call that hands control to something outside the
ledger. A recipient may try to call back into the ledger from inside it,
so the ledger finishes every state mutation before calling out and
rejects nested calls on the same effort.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from decimal import Decimal
from typing import Callable, Optional, Protocol


class FundTransfer(Protocol):
    """Sends funds to a member. Returns True on success."""

    def payout(self, recipient_handle: int, amount: Decimal) -> bool:
        ...


@dataclass(frozen=True)
class Payout:
    """A completed payout."""
    recipient_handle: int
    amount: Decimal


class RecordingTransfer:
    """In-process FundTransfer that records every successful payout.

    on_payout, if set, is invoked before the payout is recorded with the
    recipient handle and amount. It models the recipient's side of the
    call, including a recipient that calls back into the ledger.

    fail_next makes the next payout report failure (and then resets).
    """

    def __init__(
        self,
        on_payout: Optional[Callable[[int, Decimal], None]] = None,
    ) -> None:
        self._lock = threading.Lock()
        self._payouts: list[Payout] = []
        self.on_payout = on_payout
        self.fail_next = False

    def payout(self, recipient_handle: int, amount: Decimal) -> bool:
        if amount <= 0:
            raise ValueError(f"Payout amount must be positive, got {amount}")
        if self.on_payout is not None:
            self.on_payout(recipient_handle, amount)
        with self._lock:
            if self.fail_next:
                self.fail_next = False
                return False
            self._payouts.append(Payout(recipient_handle, amount))
            return True

    @property
    def payouts(self) -> list[Payout]:
        with self._lock:
            return list(self._payouts)

    def total_paid_to(self, recipient_handle: int) -> Decimal:
        with self._lock:
            return sum(
                (p.amount for p in self._payouts if p.recipient_handle == recipient_handle),
                Decimal("0"),
            )

    @property
    def total_paid(self) -> Decimal:
        with self._lock:
            return sum((p.amount for p in self._payouts), Decimal("0"))
