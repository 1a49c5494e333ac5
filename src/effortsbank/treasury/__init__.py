"""Treasury module — shared matching balance and the payout boundary."""

from effortsbank.treasury.transfer import FundTransfer, Payout, RecordingTransfer
from effortsbank.treasury.treasury import Treasury, TreasuryState

__all__ = [
    "FundTransfer",
    "Payout",
    "RecordingTransfer",
    "Treasury",
    "TreasuryState",
]
