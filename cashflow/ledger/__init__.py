"""Ledger apply/revert engine."""

from cashflow.ledger.effects import Direction, adjust_left, budget_matches, wallet_deltas
from cashflow.ledger.engine import LedgerEngine, LedgerOutcome

__all__ = [
    "Direction",
    "LedgerEngine",
    "LedgerOutcome",
    "adjust_left",
    "budget_matches",
    "wallet_deltas",
]
