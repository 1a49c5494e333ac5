"""Tests for effort and membership data models — derived state and deadlines."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

from effortsbank.models.effort import (
    DurationUpdateRequest,
    Effort,
    EffortOutcome,
    EffortState,
)
from effortsbank.models.membership import MembershipRecord

T0 = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _make_effort(**overrides) -> Effort:
    fields = dict(
        effort_id=1,
        proposer_handle=1,
        performer_handle=2,
        deposit_amount=Decimal("100"),
        initial_deposit=Decimal("100"),
        proposed_duration_days=5,
        created_utc=T0,
    )
    fields.update(overrides)
    return Effort(**fields)


class TestEffortState:
    def test_new_effort_is_proposed(self) -> None:
        assert _make_effort().state == EffortState.PROPOSED

    def test_committed(self) -> None:
        effort = _make_effort(committed=True, commitment_accepted_utc=T0)
        assert effort.state == EffortState.COMMITTED

    def test_completion_marked(self) -> None:
        effort = _make_effort(
            committed=True, commitment_accepted_utc=T0,
            completion_marked=True, completed_utc=T0,
        )
        assert effort.state == EffortState.COMPLETION_MARKED

    def test_terminal_states_follow_outcome(self) -> None:
        for outcome, state in (
            (EffortOutcome.APPROVED, EffortState.APPROVED),
            (EffortOutcome.AUTO_FAILED, EffortState.AUTO_FAILED),
            (EffortOutcome.DEADLINE_FAILED, EffortState.DEADLINE_FAILED),
        ):
            effort = _make_effort(concluded=True, outcome=outcome)
            assert effort.state == state

    def test_renegotiating_flag(self) -> None:
        effort = _make_effort(duration_update=DurationUpdateRequest(10, T0))
        assert effort.is_renegotiating
        assert effort.state == EffortState.PROPOSED

    def test_concluded_effort_is_not_renegotiating(self) -> None:
        effort = _make_effort(
            duration_update=DurationUpdateRequest(10, T0),
            concluded=True, outcome=EffortOutcome.DEADLINE_FAILED,
        )
        assert not effort.is_renegotiating


class TestEffortDeadlines:
    def test_no_deadline_before_commit(self) -> None:
        assert _make_effort().deadline_utc() is None

    def test_deadline_from_commitment(self) -> None:
        effort = _make_effort(committed=True, commitment_accepted_utc=T0)
        assert effort.deadline_utc() == T0 + timedelta(days=5)

    def test_deadline_tracks_duration_changes(self) -> None:
        effort = _make_effort(committed=True, commitment_accepted_utc=T0)
        effort.proposed_duration_days = 10
        assert effort.deadline_utc() == T0 + timedelta(days=10)

    def test_confirm_deadline(self) -> None:
        effort = _make_effort(completed_utc=T0)
        window = timedelta(hours=72)
        assert effort.confirm_deadline_utc(window) == T0 + window
        assert _make_effort().confirm_deadline_utc(window) is None

    def test_involves(self) -> None:
        effort = _make_effort()
        assert effort.involves(1)
        assert effort.involves(2)
        assert not effort.involves(3)


class TestMembershipRecord:
    def test_unpaid_member_is_inactive(self) -> None:
        record = MembershipRecord(handle=1, address="alice", registered_utc=T0)
        assert not record.is_active(T0)

    def test_paid_member_is_active_until_expiry(self) -> None:
        record = MembershipRecord(
            handle=1, address="alice", registered_utc=T0,
            paid_until_utc=T0 + timedelta(days=30),
        )
        assert record.is_active(T0 + timedelta(days=30))
        assert not record.is_active(T0 + timedelta(days=30, seconds=1))

    def test_outstanding_penalty_blocks_activity(self) -> None:
        record = MembershipRecord(
            handle=1, address="alice", registered_utc=T0,
            paid_until_utc=T0 + timedelta(days=30),
            penalty_due=Decimal("2"),
        )
        assert not record.is_active(T0)
