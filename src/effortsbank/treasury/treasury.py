"""Treasury — the shared balance that matches approved efforts.

Inflows: subscription fees, penalty payments, voluntary top-ups.
Outflows: matching contributions on approved effort completion.

Key properties:
- The balance is never negative. Every mutation goes through credit(),
  debit() or draw_match(), all under a single lock.
- draw_match() reads and debits in one critical section so two approvals
  racing on different efforts can never both match against the same funds.
- Escrowed effort deposits are NOT treasury funds. The ledger holds them
  separately until a terminal transition disburses them.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from decimal import Decimal


@dataclass(frozen=True)
class TreasuryState:
    """Point-in-time view of the treasury."""
    balance: Decimal
    total_credited: Decimal
    total_debited: Decimal


class Treasury:
    """Thread-safe shared balance.

    Usage:
        treasury = Treasury()
        treasury.credit(Decimal("40"))
        matched = treasury.draw_match(Decimal("100"))   # → 40
    """

    def __init__(self, balance: Decimal = Decimal("0")) -> None:
        if balance < 0:
            raise ValueError(f"Opening balance must be non-negative, got {balance}")
        self._lock = threading.Lock()
        self._balance = balance
        self._total_credited = Decimal("0")
        self._total_debited = Decimal("0")

    def balance(self) -> Decimal:
        with self._lock:
            return self._balance

    def credit(self, amount: Decimal) -> Decimal:
        """Add funds. Returns the new balance."""
        if amount <= 0:
            raise ValueError(f"Credit amount must be positive, got {amount}")
        with self._lock:
            self._balance += amount
            self._total_credited += amount
            return self._balance

    def debit(self, amount: Decimal) -> Decimal:
        """Remove funds. Returns the new balance.

        Raises ValueError if amount is not positive or exceeds the balance.
        """
        if amount <= 0:
            raise ValueError(f"Debit amount must be positive, got {amount}")
        with self._lock:
            if amount > self._balance:
                raise ValueError(
                    f"Debit amount {amount} exceeds treasury balance {self._balance}"
                )
            self._balance -= amount
            self._total_debited += amount
            return self._balance

    def draw_match(self, cap: Decimal) -> Decimal:
        """Debit min(cap, balance) atomically and return the amount drawn."""
        if cap < 0:
            raise ValueError(f"Match cap must be non-negative, got {cap}")
        with self._lock:
            matched = min(cap, self._balance)
            self._balance -= matched
            self._total_debited += matched
            return matched

    def return_match(self, amount: Decimal) -> None:
        """Undo a draw_match() whose payout failed.

        Reverses the debit rather than recording a fresh credit, so the
        running totals reflect only matches that were actually paid.
        """
        if amount <= 0:
            return
        with self._lock:
            self._balance += amount
            self._total_debited -= amount

    def get_state(self) -> TreasuryState:
        with self._lock:
            return TreasuryState(
                balance=self._balance,
                total_credited=self._total_credited,
                total_debited=self._total_debited,
            )
