"""Unit tests for the policy resolver and the effort rules engine.

Pure computation — no ledger, no side effects.
"""

import json
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from pathlib import Path

import pytest

from effortsbank.efforts.engine import EffortRulesEngine, ErrorKind
from effortsbank.models.effort import DurationUpdateRequest, Effort, EffortOutcome
from effortsbank.policy.resolver import PolicyResolver

CONFIG_DIR = Path(__file__).resolve().parents[1] / "config"
T0 = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
PROPOSER, PERFORMER, STRANGER = 1, 2, 3


def _make_resolver() -> PolicyResolver:
    return PolicyResolver.from_config_dir(CONFIG_DIR)


def _make_effort(**overrides) -> Effort:
    fields = dict(
        effort_id=7,
        proposer_handle=PROPOSER,
        performer_handle=PERFORMER,
        deposit_amount=Decimal("100"),
        initial_deposit=Decimal("100"),
        proposed_duration_days=5,
        created_utc=T0,
    )
    fields.update(overrides)
    return Effort(**fields)


def _committed(**overrides) -> Effort:
    return _make_effort(committed=True, commitment_accepted_utc=T0, **overrides)


def _marked(**overrides) -> Effort:
    return _committed(
        completion_marked=True, completed_utc=T0 + timedelta(days=2), **overrides,
    )


@pytest.fixture
def engine() -> EffortRulesEngine:
    return EffortRulesEngine(_make_resolver())


# ===================================================================
# Policy resolver
# ===================================================================

class TestPolicyResolver:
    def test_loads_canonical_config(self) -> None:
        resolver = _make_resolver()
        assert resolver.max_members() == 10
        assert resolver.min_deposit() == Decimal("1")
        assert resolver.confirm_window() == timedelta(hours=72)
        assert resolver.subscription_fee() == Decimal("10")
        assert resolver.subscription_period() == timedelta(days=30)
        assert resolver.penalty_per_day() == Decimal("1")
        assert resolver.duration_bounds() == (1, 365)

    def test_missing_config_fails_loud(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            PolicyResolver.from_config_dir(tmp_path)

    def test_missing_version_rejected(self) -> None:
        with pytest.raises(ValueError, match="version"):
            PolicyResolver({"membership": {}, "efforts": {}})

    def test_missing_section_rejected(self) -> None:
        with pytest.raises(ValueError, match="efforts"):
            PolicyResolver({"version": "1", "membership": {}})

    def test_invalid_money_rejected(self) -> None:
        policy = json.loads((CONFIG_DIR / "ledger_policy.json").read_text())
        policy["efforts"]["min_deposit"] = "lots"
        with pytest.raises(ValueError, match="min_deposit"):
            PolicyResolver(policy)

    def test_zero_min_deposit_rejected(self) -> None:
        policy = json.loads((CONFIG_DIR / "ledger_policy.json").read_text())
        policy["efforts"]["min_deposit"] = "0"
        with pytest.raises(ValueError, match="min_deposit must be positive"):
            PolicyResolver(policy)

    def test_inverted_duration_bounds_rejected(self) -> None:
        policy = json.loads((CONFIG_DIR / "ledger_policy.json").read_text())
        policy["efforts"]["min_duration_days"] = 30
        policy["efforts"]["max_duration_days"] = 10
        with pytest.raises(ValueError, match="duration bounds"):
            PolicyResolver(policy)


# ===================================================================
# Submission
# ===================================================================

class TestSubmissionRules:
    def test_valid_submission(self, engine: EffortRulesEngine) -> None:
        assert engine.check_submission(PROPOSER, PERFORMER, True, Decimal("100"), 5) is None

    def test_non_member_proposer(self, engine: EffortRulesEngine) -> None:
        v = engine.check_submission(None, PERFORMER, False, Decimal("100"), 5)
        assert v.kind == ErrorKind.AUTHORIZATION

    def test_non_member_performer(self, engine: EffortRulesEngine) -> None:
        v = engine.check_submission(PROPOSER, None, True, Decimal("100"), 5)
        assert v.kind == ErrorKind.AUTHORIZATION

    def test_self_proposal(self, engine: EffortRulesEngine) -> None:
        v = engine.check_submission(PROPOSER, PROPOSER, True, Decimal("100"), 5)
        assert v.kind == ErrorKind.VALUE
        assert "yourself" in v.message

    def test_inactive_proposer(self, engine: EffortRulesEngine) -> None:
        v = engine.check_submission(PROPOSER, PERFORMER, False, Decimal("100"), 5)
        assert v.kind == ErrorKind.AUTHORIZATION

    def test_deposit_below_minimum(self, engine: EffortRulesEngine) -> None:
        v = engine.check_submission(PROPOSER, PERFORMER, True, Decimal("0.5"), 5)
        assert v.kind == ErrorKind.VALUE
        assert "minimum" in v.message

    def test_non_positive_deposit(self, engine: EffortRulesEngine) -> None:
        for deposit in (Decimal("0"), Decimal("-5")):
            v = engine.check_submission(PROPOSER, PERFORMER, True, deposit, 5)
            assert v.kind == ErrorKind.VALUE

    def test_deposit_at_minimum(self, engine: EffortRulesEngine) -> None:
        assert engine.check_submission(PROPOSER, PERFORMER, True, Decimal("1"), 5) is None

    def test_duration_out_of_bounds(self, engine: EffortRulesEngine) -> None:
        for days in (0, 366, -3):
            v = engine.check_submission(PROPOSER, PERFORMER, True, Decimal("100"), days)
            assert v.kind == ErrorKind.VALUE

    def test_duration_must_be_whole_days(self, engine: EffortRulesEngine) -> None:
        assert engine.check_duration(2.5).kind == ErrorKind.VALUE
        assert engine.check_duration(True).kind == ErrorKind.VALUE


# ===================================================================
# Renegotiation, commitment, completion
# ===================================================================

class TestRenegotiationRules:
    def test_only_performer_requests(self, engine: EffortRulesEngine) -> None:
        effort = _make_effort()
        assert engine.check_duration_request(effort, PERFORMER, 10) is None
        assert engine.check_duration_request(effort, PROPOSER, 10).kind == ErrorKind.AUTHORIZATION

    def test_request_on_concluded_effort(self, engine: EffortRulesEngine) -> None:
        effort = _make_effort(concluded=True, outcome=EffortOutcome.DEADLINE_FAILED)
        assert engine.check_duration_request(effort, PERFORMER, 10).kind == ErrorKind.STATE

    def test_only_proposer_approves(self, engine: EffortRulesEngine) -> None:
        effort = _make_effort(duration_update=DurationUpdateRequest(10))
        assert engine.check_duration_approval(effort, PROPOSER) is None
        assert engine.check_duration_approval(effort, PERFORMER).kind == ErrorKind.AUTHORIZATION

    def test_approval_requires_pending_request(self, engine: EffortRulesEngine) -> None:
        v = engine.check_duration_approval(_make_effort(), PROPOSER)
        assert v.kind == ErrorKind.STATE
        assert "pending" in v.message


class TestPerformerRules:
    def test_commit(self, engine: EffortRulesEngine) -> None:
        assert engine.check_commit(_make_effort(), PERFORMER) is None
        assert engine.check_commit(_make_effort(), PROPOSER).kind == ErrorKind.AUTHORIZATION
        assert engine.check_commit(_make_effort(), None).kind == ErrorKind.AUTHORIZATION
        assert engine.check_commit(_committed(), PERFORMER).kind == ErrorKind.STATE

    def test_inactive_performer(self, engine: EffortRulesEngine) -> None:
        assert engine.check_performer_active(True) is None
        assert engine.check_performer_active(False).kind == ErrorKind.AUTHORIZATION

    def test_mark_completed(self, engine: EffortRulesEngine) -> None:
        assert engine.check_mark_completed(_committed(), PERFORMER) is None
        assert engine.check_mark_completed(_make_effort(), PERFORMER).kind == ErrorKind.STATE
        assert engine.check_mark_completed(_marked(), PERFORMER).kind == ErrorKind.STATE
        assert engine.check_mark_completed(_committed(), STRANGER).kind == ErrorKind.AUTHORIZATION


# ===================================================================
# Terminal transitions
# ===================================================================

class TestTerminalRules:
    def test_approval(self, engine: EffortRulesEngine) -> None:
        assert engine.check_approval(_marked(), PROPOSER) is None
        assert engine.check_approval(_marked(), PERFORMER).kind == ErrorKind.AUTHORIZATION
        assert engine.check_approval(_committed(), PROPOSER).kind == ErrorKind.STATE
        assert engine.check_approval(_make_effort(), PROPOSER).kind == ErrorKind.STATE

    def test_auto_fail_window_is_strict(self, engine: EffortRulesEngine) -> None:
        effort = _marked()
        window_end = effort.completed_utc + timedelta(hours=72)
        assert engine.check_auto_fail(effort, window_end).kind == ErrorKind.TIMING
        assert engine.check_auto_fail(effort, window_end + timedelta(seconds=1)) is None

    def test_auto_fail_requires_marked(self, engine: EffortRulesEngine) -> None:
        later = T0 + timedelta(days=30)
        assert engine.check_auto_fail(_committed(), later).kind == ErrorKind.STATE
        assert engine.check_auto_fail(_make_effort(), later).kind == ErrorKind.STATE

    def test_deadline_is_strict(self, engine: EffortRulesEngine) -> None:
        effort = _committed()
        deadline = T0 + timedelta(days=5)
        assert engine.check_deadline_fail(effort, deadline).kind == ErrorKind.TIMING
        assert engine.check_deadline_fail(effort, deadline + timedelta(seconds=1)) is None

    def test_deadline_fail_rejected_once_marked(self, engine: EffortRulesEngine) -> None:
        later = T0 + timedelta(days=30)
        v = engine.check_deadline_fail(_marked(), later)
        assert v.kind == ErrorKind.STATE

    def test_deadline_fail_requires_commitment(self, engine: EffortRulesEngine) -> None:
        later = T0 + timedelta(days=3650)
        assert engine.check_deadline_fail(_make_effort(), later).kind == ErrorKind.STATE

    def test_concluded_blocks_every_terminal_path(self, engine: EffortRulesEngine) -> None:
        effort = _marked(concluded=True, outcome=EffortOutcome.APPROVED)
        later = T0 + timedelta(days=30)
        assert engine.check_approval(effort, PROPOSER).kind == ErrorKind.STATE
        assert engine.check_auto_fail(effort, later).kind == ErrorKind.STATE
        assert engine.check_deadline_fail(effort, later).kind == ErrorKind.STATE
