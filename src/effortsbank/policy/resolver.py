"""Policy resolver — loads ledger_policy.json and exposes every runtime
constant as a typed method call.

No magic. No defaults. If a value is missing from the config, it fails loud.
Monetary values are stored as decimal strings and returned as Decimal.
"""

from __future__ import annotations

import json
from datetime import timedelta
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any


POLICY_FILENAME = "ledger_policy.json"


class PolicyResolver:
    """Loads and resolves membership and effort policy.

    Usage:
        resolver = PolicyResolver.from_config_dir(Path("config"))
        min_deposit = resolver.min_deposit()
        window = resolver.confirm_window()
    """

    def __init__(self, policy: dict[str, Any]) -> None:
        self._policy = policy
        self._validate()

    @classmethod
    def from_config_dir(cls, config_dir: Path) -> PolicyResolver:
        """Load from the canonical config directory."""
        return cls(_load_json(config_dir / POLICY_FILENAME))

    def _validate(self) -> None:
        if "version" not in self._policy:
            raise ValueError(f"{POLICY_FILENAME} missing version")
        for section in ("membership", "efforts"):
            if section not in self._policy:
                raise ValueError(f"{POLICY_FILENAME} missing section: {section}")
        lo, hi = self.duration_bounds()
        if lo < 1 or hi < lo:
            raise ValueError(f"Invalid duration bounds: [{lo}, {hi}]")
        if self.min_deposit() <= 0:
            raise ValueError(f"min_deposit must be positive, got {self.min_deposit()}")

    @property
    def version(self) -> str:
        return self._policy["version"]

    # ------------------------------------------------------------------
    # Membership
    # ------------------------------------------------------------------

    def max_members(self) -> int:
        """Maximum number of memberships the registry will issue."""
        return int(self._policy["membership"]["max_members"])

    def subscription_fee(self) -> Decimal:
        """Fee due for one subscription period."""
        return _money(self._policy["membership"]["subscription_fee"], "subscription_fee")

    def subscription_period(self) -> timedelta:
        return timedelta(days=self._policy["membership"]["subscription_period_days"])

    def penalty_per_day(self) -> Decimal:
        """Penalty accrued for each whole day a subscription is overdue."""
        return _money(self._policy["membership"]["penalty_per_day"], "penalty_per_day")

    # ------------------------------------------------------------------
    # Efforts
    # ------------------------------------------------------------------

    def min_deposit(self) -> Decimal:
        return _money(self._policy["efforts"]["min_deposit"], "min_deposit")

    def confirm_window(self) -> timedelta:
        """Grace period after completion marking before anyone may auto-fail."""
        return timedelta(hours=self._policy["efforts"]["confirm_window_hours"])

    def duration_bounds(self) -> tuple[int, int]:
        """Return (min_days, max_days) for a proposed effort duration."""
        efforts = self._policy["efforts"]
        return int(efforts["min_duration_days"]), int(efforts["max_duration_days"])


def _money(raw: Any, name: str) -> Decimal:
    try:
        value = Decimal(str(raw))
    except InvalidOperation:
        raise ValueError(f"Invalid monetary value for {name}: {raw!r}") from None
    if value < 0:
        raise ValueError(f"{name} must be non-negative, got {value}")
    return value


def _load_json(path: Path) -> dict[str, Any]:
    """Load a JSON file or raise with clear path."""
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")
    with path.open("r", encoding="utf-8") as f:
        return json.load(f)
