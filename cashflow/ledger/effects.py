"""
Ledger Effects

Pure rules for what a transaction does to wallet balances and budget
counters. Nothing in here touches storage.

Apply:
    Income    balance(S) += A
    Expense   balance(S) -= A; matching budgets: left = max(left - A, 0)
    Transfer  balance(S) -= A; balance(D) += A

Revert is the exact algebraic inverse, except that budget `left` is
restored WITHOUT clamping (left += A).
"""

from decimal import Decimal
from enum import Enum

from cashflow.models.ledger import Budget, Plan, Transaction, TransactionKind
from cashflow.models.money import ZERO


class Direction(str, Enum):
    APPLY = "apply"
    REVERT = "revert"

    @property
    def sign(self) -> int:
        return 1 if self == Direction.APPLY else -1


def wallet_deltas(tx: Transaction, direction: Direction) -> dict[str, Decimal]:
    """Signed balance change per wallet name."""
    amount = tx.amount * direction.sign

    if tx.kind == TransactionKind.INCOME:
        return {tx.wallet_from: amount}
    if tx.kind == TransactionKind.EXPENSE:
        return {tx.wallet_from: -amount}

    deltas = {tx.wallet_from: -amount}
    if tx.wallet_to:
        deltas[tx.wallet_to] = amount
    return deltas


def budget_matches(budget: Budget, tx: Transaction) -> bool:
    """
    Does this expense count against the budget?

    Personal budgets cover every wallet of their owner; Shared budgets
    cover exactly one wallet.
    """
    if tx.kind != TransactionKind.EXPENSE:
        return False
    if not budget.matches_category(tx.category):
        return False
    if budget.plan == Plan.PERSONAL:
        return budget.owner_user_id == tx.owner_user_id
    return budget.wallet == tx.wallet_from


def adjust_left(left: Decimal, amount: Decimal, direction: Direction) -> Decimal:
    """New remaining amount of a matching budget."""
    if direction == Direction.APPLY:
        return max(left - amount, ZERO)
    return left + amount
