"""Efforts bank service — unified facade for the membership treasury.

This is the primary interface for programmatic access to the ledger.
It orchestrates all subsystems:
- Membership (register, subscription payment, penalty accrual and payment)
- Treasury (top-ups, matching on approved efforts)
- Effort lifecycle (submit, renegotiate, commit, mark completed,
  approve, auto-fail, deadline-fail)
- Persistence (event log, state store)

All operations return a ServiceResult. Precondition failures never raise
and never leave partial effects. Every committed state change is appended
to the event log; if the audit append fails, the change is rolled back.
The exception is a terminal transition whose payout already went out:
that is reported as a warning and flags the ledger audit-degraded.

Terminal transitions move money. They mutate the effort (concluded,
deposit zeroed) before calling out to the FundTransfer, so a recipient
that re-enters the ledger observes a concluded effort. If the payout
fails, the effort, escrow total and treasury match are restored exactly.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Optional, Union

from effortsbank.efforts.engine import EffortRulesEngine, ErrorKind, RuleViolation
from effortsbank.efforts.guard import EffortLockTable, ReentrantCallError
from effortsbank.membership.registry import MembershipRegistry
from effortsbank.models.effort import (
    DurationUpdateRequest,
    Effort,
    EffortOutcome,
    EffortState,
)
from effortsbank.persistence.event_log import EventKind, EventLog, EventRecord
from effortsbank.persistence.state_store import StateStore
from effortsbank.policy.resolver import PolicyResolver
from effortsbank.treasury.transfer import FundTransfer, RecordingTransfer
from effortsbank.treasury.treasury import Treasury

log = logging.getLogger(__name__)

Amount = Union[Decimal, int, str]

_ZERO = Decimal("0")


@dataclass(frozen=True)
class ServiceResult:
    """Result of a service operation."""
    success: bool
    errors: list[str] = field(default_factory=list)
    data: dict[str, Any] = field(default_factory=dict)
    error_kind: Optional[ErrorKind] = None


def _reject(kind: ErrorKind, message: str) -> ServiceResult:
    return ServiceResult(success=False, errors=[message], error_kind=kind)


def _from_violation(violation: RuleViolation) -> ServiceResult:
    return _reject(violation.kind, violation.message)


def _utc(now: Optional[datetime]) -> datetime:
    return now or datetime.now(timezone.utc)


def _to_amount(value: Amount) -> Optional[Decimal]:
    try:
        amount = Decimal(str(value))
    except InvalidOperation:
        return None
    if not amount.is_finite():
        return None
    return amount


class EffortLedger:
    """Membership treasury and effort proposal ledger.

    Usage:
        resolver = PolicyResolver.from_config_dir(config_dir)
        ledger = EffortLedger(resolver)

        ledger.register_member("alice")
        ledger.pay_subscription("alice", Decimal("10"))

        result = ledger.submit_proposal("alice", "bob", Decimal("100"), 5)
        effort_id = result.data["effort_id"]
        ledger.commit_to_effort("bob", effort_id)
        ledger.mark_effort_completed("bob", effort_id)
        ledger.approve_effort_completion("alice", effort_id)

    Persistence (optional):
        ledger = EffortLedger(resolver, event_log=log, state_store=store)
        # State is persisted on each mutation and loaded on construction.

    Concurrency: effort transitions lock their effort; membership and
    escrow bookkeeping share one ledger lock; the treasury has its own
    lock. Payouts are issued while holding only the effort lock.
    """

    def __init__(
        self,
        resolver: PolicyResolver,
        transfer: Optional[FundTransfer] = None,
        treasury: Optional[Treasury] = None,
        event_log: Optional[EventLog] = None,
        state_store: Optional[StateStore] = None,
    ) -> None:
        self._resolver = resolver
        self._rules = EffortRulesEngine(resolver)
        self._registry = MembershipRegistry(resolver)
        self._transfer: FundTransfer = transfer if transfer is not None else RecordingTransfer()
        self._event_log = event_log if event_log is not None else EventLog()
        self._state_store = state_store

        self._locks = EffortLockTable()
        self._ledger_lock = threading.Lock()
        # effort_id -> (last committed copy, match drawn) while a payout is out
        self._in_flight: dict[int, tuple[Effort, Decimal]] = {}
        self._event_lock = threading.Lock()
        self._persist_lock = threading.Lock()

        # Load persisted state or start fresh
        if state_store is not None:
            for record in state_store.load_members():
                self._registry.add(record)
            self._efforts: dict[int, Effort] = state_store.load_efforts()
            balance, self._escrow_total, self._effort_counter = (
                state_store.load_ledger_totals()
            )
            self._treasury = treasury if treasury is not None else Treasury(balance)
        else:
            self._efforts = {}
            self._escrow_total = _ZERO
            self._effort_counter = 0
            self._treasury = treasury if treasury is not None else Treasury()

        # Initialise counter from persisted log to avoid ID collision on restart
        self._event_counter = self._event_log.count

        self._persistence_degraded = False
        self._audit_degraded = False

    # ------------------------------------------------------------------
    # Membership
    # ------------------------------------------------------------------

    def register_member(self, address: str, now: Optional[datetime] = None) -> ServiceResult:
        """Issue a membership handle for an address."""
        now = _utc(now)
        with self._ledger_lock:
            try:
                record = self._registry.register(address, now)
            except ValueError as e:
                return _reject(ErrorKind.VALUE, str(e))

            err = self._record_event(
                EventKind.MEMBER_REGISTERED, record.address,
                {"handle": record.handle, "address": record.address}, now,
            )
            if err:
                self._registry.remove(record.handle)
                return _reject(ErrorKind.AUDIT, err)

        log.info("Registered member %s as handle %d", record.address, record.handle)
        return self._ok({"handle": record.handle, "address": record.address})

    def pay_subscription(
        self,
        address: str,
        amount: Amount,
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        """Pay one subscription period. The fee goes to the treasury."""
        now = _utc(now)
        value = _to_amount(amount)
        if value is None:
            return _reject(ErrorKind.VALUE, f"Invalid amount: {amount!r}")

        with self._ledger_lock:
            handle = self._handle_or_none(address)
            if handle is None:
                return _reject(ErrorKind.AUTHORIZATION, f"Not a member: {address}")
            snapshot = self._registry.snapshot(handle)
            try:
                paid_until = self._registry.pay_subscription(handle, value, now)
            except ValueError as e:
                return _reject(ErrorKind.VALUE, str(e))

            err = self._record_event(
                EventKind.SUBSCRIPTION_PAID, address,
                {
                    "handle": handle,
                    "amount": str(value),
                    "paid_until_utc": paid_until.isoformat(),
                },
                now,
            )
            if err:
                self._registry.restore(snapshot)
                return _reject(ErrorKind.AUDIT, err)
            if value > 0:
                self._treasury.credit(value)

        return self._ok({"handle": handle, "paid_until_utc": paid_until.isoformat()})

    def accrue_penalty(self, address: str, now: Optional[datetime] = None) -> ServiceResult:
        """Run the penalty accrual tick for a member."""
        now = _utc(now)
        with self._ledger_lock:
            handle = self._handle_or_none(address)
            if handle is None:
                return _reject(ErrorKind.AUTHORIZATION, f"Not a member: {address}")
            snapshot = self._registry.snapshot(handle)
            added = self._registry.accrue(handle, now)
            if added > 0:
                err = self._record_event(
                    EventKind.PENALTY_ACCRUED, address,
                    {"handle": handle, "amount": str(added)}, now,
                )
                if err:
                    self._registry.restore(snapshot)
                    return _reject(ErrorKind.AUDIT, err)
            due = self._registry.get(handle).penalty_due

        return self._ok({
            "handle": handle,
            "accrued": str(added),
            "penalty_due": str(due),
        })

    def pay_penalty(
        self,
        address: str,
        amount: Amount,
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        """Pay down accrued penalty. Payments go to the treasury."""
        now = _utc(now)
        value = _to_amount(amount)
        if value is None:
            return _reject(ErrorKind.VALUE, f"Invalid amount: {amount!r}")

        with self._ledger_lock:
            handle = self._handle_or_none(address)
            if handle is None:
                return _reject(ErrorKind.AUTHORIZATION, f"Not a member: {address}")
            snapshot = self._registry.snapshot(handle)
            try:
                remaining = self._registry.pay_penalty(handle, value)
            except ValueError as e:
                return _reject(ErrorKind.VALUE, str(e))

            err = self._record_event(
                EventKind.PENALTY_PAID, address,
                {"handle": handle, "amount": str(value), "remaining": str(remaining)},
                now,
            )
            if err:
                self._registry.restore(snapshot)
                return _reject(ErrorKind.AUDIT, err)
            self._treasury.credit(value)

        return self._ok({"handle": handle, "penalty_due": str(remaining)})

    def top_up_treasury(
        self,
        caller: str,
        amount: Amount,
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        """Add funds to the treasury. Anyone may top up."""
        now = _utc(now)
        value = _to_amount(amount)
        if value is None or value <= 0:
            return _reject(ErrorKind.VALUE, f"Top-up amount must be positive, got {amount!r}")

        err = self._record_event(
            EventKind.TREASURY_CREDITED, caller, {"amount": str(value)}, now,
        )
        if err:
            return _reject(ErrorKind.AUDIT, err)
        balance = self._treasury.credit(value)
        return self._ok({"treasury_balance": str(balance)})

    def is_member(self, address: str) -> bool:
        with self._ledger_lock:
            return self._registry.is_member(address)

    def is_active(self, address: str, now: Optional[datetime] = None) -> bool:
        now = _utc(now)
        with self._ledger_lock:
            handle = self._handle_or_none(address)
            return handle is not None and self._registry.is_active(handle, now)

    def handle_of(self, address: str) -> Optional[int]:
        with self._ledger_lock:
            return self._handle_or_none(address)

    # ------------------------------------------------------------------
    # Effort proposal
    # ------------------------------------------------------------------

    def submit_proposal(
        self,
        proposer: str,
        performer: str,
        deposit: Amount,
        duration_days: int,
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        """Create an effort and escrow the proposer's deposit.

        The deposit is held in ledger escrow, not in the treasury.
        """
        now = _utc(now)
        value = _to_amount(deposit)
        if value is None:
            return _reject(ErrorKind.VALUE, f"Invalid deposit: {deposit!r}")

        with self._ledger_lock:
            proposer_handle = self._handle_or_none(proposer)
            performer_handle = self._handle_or_none(performer)
            active = (
                proposer_handle is not None
                and self._registry.is_active(proposer_handle, now)
            )
            violation = self._rules.check_submission(
                proposer_handle, performer_handle, active, value, duration_days,
            )
            if violation:
                return _from_violation(violation)

            self._effort_counter += 1
            effort = Effort(
                effort_id=self._effort_counter,
                proposer_handle=proposer_handle,
                performer_handle=performer_handle,
                deposit_amount=value,
                initial_deposit=value,
                proposed_duration_days=duration_days,
                created_utc=now,
            )
            self._efforts[effort.effort_id] = effort
            self._escrow_total += value

            err = self._record_event(
                EventKind.PROPOSAL_SUBMITTED, proposer,
                {
                    "effort_id": effort.effort_id,
                    "proposer": self._registry.address_of(proposer_handle),
                    "performer": self._registry.address_of(performer_handle),
                    "deposit": str(value),
                    "duration_days": duration_days,
                },
                now,
            )
            if err:
                del self._efforts[effort.effort_id]
                self._escrow_total -= value
                self._effort_counter -= 1
                return _reject(ErrorKind.AUDIT, err)

        log.info(
            "Effort %d submitted: deposit %s, %d day(s)",
            effort.effort_id, value, duration_days,
        )
        return self._ok({"effort_id": effort.effort_id, "state": effort.state.value})

    # ------------------------------------------------------------------
    # Duration renegotiation
    # ------------------------------------------------------------------

    def request_duration_update(
        self,
        caller: str,
        effort_id: int,
        new_duration_days: int,
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        """Performer proposes a new duration. Replaces any pending request."""
        now = _utc(now)

        def _apply(effort: Effort) -> ServiceResult:
            violation = self._rules.check_duration_request(
                effort, self.handle_of(caller), new_duration_days,
            )
            if violation:
                return _from_violation(violation)

            with self._ledger_lock:
                prior = effort.duration_update
                effort.duration_update = DurationUpdateRequest(
                    requested_days=new_duration_days, requested_utc=now,
                )
                err = self._record_event(
                    EventKind.DURATION_UPDATE_REQUESTED, caller,
                    {"effort_id": effort.effort_id, "requested_days": new_duration_days},
                    now,
                )
                if err:
                    effort.duration_update = prior
                    return _reject(ErrorKind.AUDIT, err)
            return self._ok({
                "effort_id": effort.effort_id,
                "requested_days": new_duration_days,
            })

        return self._with_effort(effort_id, _apply)

    def approve_duration_update(
        self,
        caller: str,
        effort_id: int,
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        """Proposer accepts the pending duration request."""
        now = _utc(now)

        def _apply(effort: Effort) -> ServiceResult:
            violation = self._rules.check_duration_approval(effort, self.handle_of(caller))
            if violation:
                return _from_violation(violation)

            with self._ledger_lock:
                pending = effort.duration_update
                prior_days = effort.proposed_duration_days
                effort.proposed_duration_days = pending.requested_days
                effort.duration_update = None

                err = self._record_event(
                    EventKind.DURATION_UPDATE_APPROVED, caller,
                    {
                        "effort_id": effort.effort_id,
                        "previous_days": prior_days,
                        "duration_days": pending.requested_days,
                    },
                    now,
                )
                if err:
                    effort.proposed_duration_days = prior_days
                    effort.duration_update = pending
                    return _reject(ErrorKind.AUDIT, err)
            return self._ok({
                "effort_id": effort.effort_id,
                "duration_days": effort.proposed_duration_days,
            })

        return self._with_effort(effort_id, _apply)

    # ------------------------------------------------------------------
    # Performer transitions
    # ------------------------------------------------------------------

    def commit_to_effort(
        self,
        caller: str,
        effort_id: int,
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        """Performer accepts the effort and starts the deadline clock.

        Runs the performer's penalty accrual tick first, then requires the
        performer to be active. A rejected commitment also undoes the tick.
        """
        now = _utc(now)

        def _apply(effort: Effort) -> ServiceResult:
            violation = self._rules.check_commit(effort, self.handle_of(caller))
            if violation:
                return _from_violation(violation)

            with self._ledger_lock:
                performer = effort.performer_handle
                snapshot = self._registry.snapshot(performer)
                self._registry.accrue(performer, now)
                violation = self._rules.check_performer_active(
                    self._registry.is_active(performer, now),
                )
                if violation:
                    self._registry.restore(snapshot)
                    return _from_violation(violation)

                effort.committed = True
                effort.commitment_accepted_utc = now

                err = self._record_event(
                    EventKind.COMMITMENT_ACCEPTED, caller,
                    {
                        "effort_id": effort.effort_id,
                        "deadline_utc": effort.deadline_utc().isoformat(),
                    },
                    now,
                )
                if err:
                    effort.committed = False
                    effort.commitment_accepted_utc = None
                    self._registry.restore(snapshot)
                    return _reject(ErrorKind.AUDIT, err)

            log.info("Effort %d committed; deadline %s", effort.effort_id, effort.deadline_utc())
            return self._ok({
                "effort_id": effort.effort_id,
                "state": effort.state.value,
                "deadline_utc": effort.deadline_utc().isoformat(),
            })

        return self._with_effort(effort_id, _apply)

    def mark_effort_completed(
        self,
        caller: str,
        effort_id: int,
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        """Performer claims the work is done. Starts the confirm window."""
        now = _utc(now)

        def _apply(effort: Effort) -> ServiceResult:
            violation = self._rules.check_mark_completed(effort, self.handle_of(caller))
            if violation:
                return _from_violation(violation)

            with self._ledger_lock:
                effort.completion_marked = True
                effort.completed_utc = now
                err = self._record_event(
                    EventKind.COMPLETION_MARKED, caller,
                    {"effort_id": effort.effort_id}, now,
                )
                if err:
                    effort.completion_marked = False
                    effort.completed_utc = None
                    return _reject(ErrorKind.AUDIT, err)
            return self._ok({"effort_id": effort.effort_id, "state": effort.state.value})

        return self._with_effort(effort_id, _apply)

    # ------------------------------------------------------------------
    # Terminal transitions
    # ------------------------------------------------------------------

    def approve_effort_completion(
        self,
        caller: str,
        effort_id: int,
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        """Proposer approves: performer receives deposit plus treasury match.

        matched = min(deposit, treasury balance). One payout of
        deposit + matched goes to the performer.
        """
        now = _utc(now)

        def _apply(effort: Effort) -> ServiceResult:
            violation = self._rules.check_approval(effort, self.handle_of(caller))
            if violation:
                return _from_violation(violation)

            deposit, matched = self._conclude(
                effort, EffortOutcome.APPROVED, now, draw_match=True,
            )
            reward = deposit + matched
            if not self._issue_payout(effort, effort.performer_handle, reward):
                return self._transfer_failed(
                    f"Payout of {reward} to performer failed; effort {effort.effort_id} unchanged",
                )

            log.info(
                "Effort %d approved: reward %s (deposit %s + match %s)",
                effort.effort_id, reward, deposit, matched,
            )
            return self._finish_terminal(
                effort, EventKind.COMPLETION_APPROVED, caller, now,
                {
                    "effort_id": effort.effort_id,
                    "performer": self._address_of(effort.performer_handle),
                    "reward": str(reward),
                    "deposit": str(deposit),
                    "matched": str(matched),
                },
            )

        return self._with_effort(effort_id, _apply)

    def auto_fail_if_no_approval(
        self,
        caller: str,
        effort_id: int,
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        """Anyone may refund the proposer once the confirm window has passed.

        An unconfirmed completion always resolves to a refund, never a reward.
        """
        now = _utc(now)

        def _apply(effort: Effort) -> ServiceResult:
            violation = self._rules.check_auto_fail(effort, now)
            if violation:
                return _from_violation(violation)
            return self._refund_proposer(
                effort, caller, now, EffortOutcome.AUTO_FAILED, "no_approval",
            )

        return self._with_effort(effort_id, _apply)

    def fail_if_not_completed_by_deadline(
        self,
        caller: str,
        effort_id: int,
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        """Anyone may refund the proposer once a committed effort is overdue.

        Rejected when completion is marked; that case belongs to approval
        or auto-fail.
        """
        now = _utc(now)

        def _apply(effort: Effort) -> ServiceResult:
            violation = self._rules.check_deadline_fail(effort, now)
            if violation:
                return _from_violation(violation)
            return self._refund_proposer(
                effort, caller, now, EffortOutcome.DEADLINE_FAILED, "deadline_missed",
            )

        return self._with_effort(effort_id, _apply)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_effort(self, effort_id: int) -> Optional[Effort]:
        """Look up an effort. Returns a detached copy."""
        with self._ledger_lock:
            effort = self._efforts.get(effort_id)
            return replace(effort) if effort is not None else None

    def efforts_for(self, address: str) -> list[Effort]:
        """All efforts where the address is proposer or performer (copies)."""
        with self._ledger_lock:
            handle = self._handle_or_none(address)
            if handle is None:
                return []
            return [replace(e) for e in self._efforts.values() if e.involves(handle)]

    def events(self, kind: Optional[EventKind] = None) -> list[EventRecord]:
        return self._event_log.events(kind)

    @property
    def treasury_balance(self) -> Decimal:
        return self._treasury.balance()

    @property
    def escrow_balance(self) -> Decimal:
        with self._ledger_lock:
            return self._escrow_total

    @property
    def registry(self) -> MembershipRegistry:
        return self._registry

    @property
    def persistence_degraded(self) -> bool:
        return self._persistence_degraded

    @property
    def audit_degraded(self) -> bool:
        return self._audit_degraded

    def status(self) -> dict[str, Any]:
        """Return system-wide status summary."""
        efforts = list(self._efforts.values())
        treasury = self._treasury.get_state()
        return {
            "version": self._resolver.version,
            "members": {
                "total": self._registry.count,
                "cap": self._resolver.max_members(),
            },
            "efforts": {
                "total": len(efforts),
                "by_state": self._count_efforts_by_state(efforts),
                # Never-committed efforts have no failure path; their
                # deposits stay in escrow until the performer commits.
                "stuck_proposed": sum(
                    1 for e in efforts if e.state == EffortState.PROPOSED
                ),
            },
            "treasury": {
                "balance": str(treasury.balance),
                "total_credited": str(treasury.total_credited),
                "total_debited": str(treasury.total_debited),
            },
            "escrow": str(self.escrow_balance),
            "persistence_degraded": self._persistence_degraded,
            "audit_degraded": self._audit_degraded,
        }

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _with_effort(
        self,
        effort_id: int,
        action: Callable[[Effort], ServiceResult],
    ) -> ServiceResult:
        """Run action on an effort under its lock.

        A nested call on the same effort from the same thread is
        rejected as a state error. Unknown ids are rejected before any
        lock is created for them.
        """
        with self._ledger_lock:
            known = effort_id in self._efforts
        if not known:
            return _reject(ErrorKind.NOT_FOUND, f"Effort not found: {effort_id}")
        try:
            with self._locks.hold(effort_id):
                effort = self._efforts.get(effort_id)
                if effort is None:
                    return _reject(ErrorKind.NOT_FOUND, f"Effort not found: {effort_id}")
                return action(effort)
        except ReentrantCallError as e:
            log.warning("%s", e)
            return _reject(ErrorKind.STATE, str(e))

    def _handle_or_none(self, address: str) -> Optional[int]:
        """Resolve an address. Caller must hold the ledger lock."""
        if not self._registry.is_member(address):
            return None
        return self._registry.handle_of(address)

    def _address_of(self, handle: int) -> str:
        with self._ledger_lock:
            return self._registry.address_of(handle)

    def _conclude(
        self,
        effort: Effort,
        outcome: EffortOutcome,
        now: datetime,
        draw_match: bool = False,
    ) -> tuple[Decimal, Decimal]:
        """Zero the deposit, mark the effort concluded and draw any match.

        Runs before any payout is issued. The pre-transition copy is kept
        in _in_flight until the payout settles, and is what gets persisted
        meanwhile. Returns (deposit, matched).
        """
        with self._ledger_lock:
            prior = replace(effort)
            deposit = effort.deposit_amount
            matched = self._treasury.draw_match(deposit) if draw_match else _ZERO
            self._escrow_total -= deposit
            effort.deposit_amount = _ZERO
            effort.concluded = True
            effort.concluded_utc = now
            effort.outcome = outcome
            effort.matched_amount = matched
            self._in_flight[effort.effort_id] = (prior, matched)
        return deposit, matched

    def _rollback_terminal(self, effort: Effort) -> None:
        with self._ledger_lock:
            prior, matched = self._in_flight.pop(effort.effort_id)
            effort.deposit_amount = prior.deposit_amount
            effort.concluded = prior.concluded
            effort.concluded_utc = prior.concluded_utc
            effort.outcome = prior.outcome
            effort.matched_amount = prior.matched_amount
            self._treasury.return_match(matched)
            self._escrow_total += prior.deposit_amount

    def _settle_terminal(self, effort: Effort) -> None:
        with self._ledger_lock:
            self._in_flight.pop(effort.effort_id, None)

    def _issue_payout(
        self,
        effort: Effort,
        recipient_handle: int,
        amount: Decimal,
    ) -> bool:
        """Call out to the FundTransfer. Rolls back on failure.

        A payout that reports failure returns False. A payout that raises
        is rolled back and the exception propagates to the caller.
        """
        ok = False
        try:
            ok = bool(self._transfer.payout(recipient_handle, amount))
        finally:
            if ok:
                self._settle_terminal(effort)
            else:
                self._rollback_terminal(effort)
                log.warning(
                    "Payout of %s to handle %d failed; effort %d rolled back",
                    amount, recipient_handle, effort.effort_id,
                )
        return ok

    def _transfer_failed(self, message: str) -> ServiceResult:
        """Reject a terminal transition whose payout failed.

        State is persisted again so the store matches the rolled-back
        ledger.
        """
        warning = self._safe_persist_post_audit()
        errors = [message] if not warning else [message, warning]
        return ServiceResult(success=False, errors=errors, error_kind=ErrorKind.TRANSFER)

    def _refund_proposer(
        self,
        effort: Effort,
        caller: str,
        now: datetime,
        outcome: EffortOutcome,
        failure_path: str,
    ) -> ServiceResult:
        deposit, _ = self._conclude(effort, outcome, now)
        if not self._issue_payout(effort, effort.proposer_handle, deposit):
            return self._transfer_failed(
                f"Refund of {deposit} to proposer failed; effort {effort.effort_id} unchanged",
            )

        log.info("Effort %d failed (%s): refunded %s", effort.effort_id, failure_path, deposit)
        return self._finish_terminal(
            effort, EventKind.PROPOSAL_FAILED, caller, now,
            {
                "effort_id": effort.effort_id,
                "proposer": self._address_of(effort.proposer_handle),
                "refund": str(deposit),
                "failure_path": failure_path,
            },
        )

    def _finish_terminal(
        self,
        effort: Effort,
        kind: EventKind,
        caller: str,
        now: datetime,
        payload: dict[str, Any],
    ) -> ServiceResult:
        """Record the audit event for a transition whose payout already went out.

        Money has moved, so an audit failure here cannot be rolled back.
        It is reported as a warning and flags the ledger as audit-degraded.
        """
        data: dict[str, Any] = {
            "effort_id": effort.effort_id,
            "state": effort.state.value,
        }
        data.update({k: v for k, v in payload.items() if k != "effort_id"})

        err = self._record_event(kind, caller, payload, now)
        if err:
            self._audit_degraded = True
            log.error("Effort %d concluded without audit record: %s", effort.effort_id, err)
            data["warning"] = f"Concluded without audit record: {err}"

        warning = self._safe_persist_post_audit()
        if warning:
            data["warning"] = warning
        return ServiceResult(success=True, data=data)

    def _next_event_id(self) -> str:
        """Generate a monotonically increasing unique event ID."""
        self._event_counter += 1
        return f"EVT-{self._event_counter:08d}"

    def _record_event(
        self,
        kind: EventKind,
        actor_id: str,
        payload: dict[str, Any],
        now: datetime,
    ) -> Optional[str]:
        """Append an audit event. Returns error string or None.

        Callers roll back their in-memory mutation when this fails.
        """
        with self._event_lock:
            try:
                event = EventRecord.create(
                    event_id=self._next_event_id(),
                    event_kind=kind,
                    actor_id=actor_id,
                    payload=payload,
                    timestamp_utc=now,
                )
                self._event_log.append(event)
            except (ValueError, OSError) as e:
                log.error("Event log failure for %s: %s", kind.value, e)
                return f"Event log failure: {e}"
        return None

    def _ok(self, data: dict[str, Any]) -> ServiceResult:
        warning = self._safe_persist_post_audit()
        if warning:
            data["warning"] = warning
        return ServiceResult(success=True, data=data)

    def _persist_state(self) -> None:
        """Persist current state to the state store (if wired).

        Efforts whose payout is still out are written as they were before
        the transition, with their deposit counted in escrow and their
        match counted in the treasury.
        """
        if self._state_store is None:
            return
        with self._persist_lock:
            with self._ledger_lock:
                members = [replace(m) for m in self._registry.all_members()]
                efforts = {eid: replace(e) for eid, e in self._efforts.items()}
                escrow_total = self._escrow_total
                treasury_balance = self._treasury.balance()
                effort_counter = self._effort_counter
                for eid, (prior, matched) in self._in_flight.items():
                    efforts[eid] = replace(prior)
                    escrow_total += prior.deposit_amount
                    treasury_balance += matched
            self._state_store.save_members(members)
            self._state_store.save_efforts(efforts)
            self._state_store.save_ledger_totals(
                treasury_balance, escrow_total, effort_counter,
            )

    def _safe_persist_post_audit(self) -> Optional[str]:
        """Persist state after audit events have been committed.

        MUST NOT rollback in-memory state; the audit trail is already
        durable. On failure sets the persistence_degraded flag and returns
        a warning string (not a hard error).
        """
        try:
            self._persist_state()
            return None
        except OSError as e:
            self._persistence_degraded = True
            log.warning("Persistence degraded: %s", e)
            return f"Persistence degraded: {e}; state committed in audit trail but StateStore is stale"

    @staticmethod
    def _count_efforts_by_state(efforts: list[Effort]) -> dict[str, int]:
        counts: dict[str, int] = {}
        for e in efforts:
            counts[e.state.value] = counts.get(e.state.value, 0) + 1
        return counts
