"""State store — JSON-based persistence for ledger runtime state.

Stores and recovers:
- Memberships (handle, address, subscription coverage, penalty)
- Efforts (every effort ever created, concluded ones included)
- Ledger totals (treasury balance, escrow total, effort id counter)

This is a simple file-based store suitable for single-node deployment.
Datetimes are written as ISO-8601 UTC strings and amounts as decimal
strings, so a round trip is exact.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import Any, Optional

from effortsbank.models.effort import DurationUpdateRequest, Effort, EffortOutcome
from effortsbank.models.membership import MembershipRecord


def _ts(value: Optional[datetime]) -> Optional[str]:
    """ISO-8601 in UTC, microseconds kept."""
    return value.astimezone(timezone.utc).isoformat() if value else None


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


class StateStore:
    """JSON file-based state persistence.

    Usage:
        store = StateStore(Path("data/ledger_state.json"))
        store.save_members(registry.all_members())
        store.save_efforts(efforts)
        store.save_ledger_totals(treasury_balance, escrow_total, effort_counter)

        # On recovery:
        members = store.load_members()
        efforts = store.load_efforts()
        totals = store.load_ledger_totals()
    """

    def __init__(self, storage_path: Path) -> None:
        self._path = storage_path
        self._state: dict[str, Any] = {}
        if storage_path.exists():
            self._load()

    def _load(self) -> None:
        with self._path.open("r", encoding="utf-8") as f:
            self._state = json.load(f)

    def _save(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        with self._path.open("w", encoding="utf-8") as f:
            json.dump(self._state, f, indent=2, sort_keys=True, ensure_ascii=False)

    # ------------------------------------------------------------------
    # Memberships
    # ------------------------------------------------------------------

    def save_members(self, members: list[MembershipRecord]) -> None:
        """Serialize memberships to state."""
        self._state["members"] = [
            {
                "handle": m.handle,
                "address": m.address,
                "registered_utc": _ts(m.registered_utc),
                "paid_until_utc": _ts(m.paid_until_utc),
                "penalty_due": str(m.penalty_due),
                "penalty_accrued_through_utc": _ts(m.penalty_accrued_through_utc),
                "total_paid": str(m.total_paid),
            }
            for m in members
        ]
        self._save()

    def load_members(self) -> list[MembershipRecord]:
        """Deserialize memberships from state."""
        return [
            MembershipRecord(
                handle=data["handle"],
                address=data["address"],
                registered_utc=_parse_ts(data["registered_utc"]),
                paid_until_utc=_parse_ts(data.get("paid_until_utc")),
                penalty_due=Decimal(data.get("penalty_due", "0")),
                penalty_accrued_through_utc=_parse_ts(
                    data.get("penalty_accrued_through_utc"),
                ),
                total_paid=Decimal(data.get("total_paid", "0")),
            )
            for data in self._state.get("members", [])
        ]

    # ------------------------------------------------------------------
    # Efforts
    # ------------------------------------------------------------------

    def save_efforts(self, efforts: dict[int, Effort]) -> None:
        """Serialize efforts to state, keyed by effort id."""
        entries = {}
        for effort_id, e in efforts.items():
            update = None
            if e.duration_update is not None:
                update = {
                    "requested_days": e.duration_update.requested_days,
                    "requested_utc": _ts(e.duration_update.requested_utc),
                }
            entries[str(effort_id)] = {
                "effort_id": e.effort_id,
                "proposer_handle": e.proposer_handle,
                "performer_handle": e.performer_handle,
                "deposit_amount": str(e.deposit_amount),
                "initial_deposit": str(e.initial_deposit),
                "proposed_duration_days": e.proposed_duration_days,
                "created_utc": _ts(e.created_utc),
                "duration_update": update,
                "committed": e.committed,
                "commitment_accepted_utc": _ts(e.commitment_accepted_utc),
                "completion_marked": e.completion_marked,
                "completed_utc": _ts(e.completed_utc),
                "concluded": e.concluded,
                "concluded_utc": _ts(e.concluded_utc),
                "outcome": e.outcome.value if e.outcome else None,
                "matched_amount": str(e.matched_amount),
            }
        self._state["efforts"] = entries
        self._save()

    def load_efforts(self) -> dict[int, Effort]:
        """Deserialize efforts from state."""
        efforts: dict[int, Effort] = {}
        for data in self._state.get("efforts", {}).values():
            update = None
            if data.get("duration_update"):
                update = DurationUpdateRequest(
                    requested_days=data["duration_update"]["requested_days"],
                    requested_utc=_parse_ts(data["duration_update"].get("requested_utc")),
                )
            effort = Effort(
                effort_id=data["effort_id"],
                proposer_handle=data["proposer_handle"],
                performer_handle=data["performer_handle"],
                deposit_amount=Decimal(data["deposit_amount"]),
                initial_deposit=Decimal(data["initial_deposit"]),
                proposed_duration_days=data["proposed_duration_days"],
                created_utc=_parse_ts(data["created_utc"]),
                duration_update=update,
                committed=data.get("committed", False),
                commitment_accepted_utc=_parse_ts(data.get("commitment_accepted_utc")),
                completion_marked=data.get("completion_marked", False),
                completed_utc=_parse_ts(data.get("completed_utc")),
                concluded=data.get("concluded", False),
                concluded_utc=_parse_ts(data.get("concluded_utc")),
                outcome=EffortOutcome(data["outcome"]) if data.get("outcome") else None,
                matched_amount=Decimal(data.get("matched_amount", "0")),
            )
            efforts[effort.effort_id] = effort
        return efforts

    # ------------------------------------------------------------------
    # Ledger totals
    # ------------------------------------------------------------------

    def save_ledger_totals(
        self,
        treasury_balance: Decimal,
        escrow_total: Decimal,
        effort_counter: int,
    ) -> None:
        self._state["ledger"] = {
            "treasury_balance": str(treasury_balance),
            "escrow_total": str(escrow_total),
            "effort_counter": effort_counter,
        }
        self._save()

    def load_ledger_totals(self) -> tuple[Decimal, Decimal, int]:
        """Return (treasury_balance, escrow_total, effort_counter)."""
        data = self._state.get("ledger", {})
        return (
            Decimal(data.get("treasury_balance", "0")),
            Decimal(data.get("escrow_total", "0")),
            int(data.get("effort_counter", 0)),
        )
