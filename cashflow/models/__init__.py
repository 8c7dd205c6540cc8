"""
Data Models Package

This package contains all Pydantic models used by the ledger engine.
All data flowing through the system must conform to these schemas.
"""

from cashflow.models.ledger import (
    Budget,
    BudgetPeriod,
    BudgetUpdate,
    Caller,
    Collaborator,
    CustomCategory,
    Plan,
    Role,
    Transaction,
    TransactionKind,
    TransactionUpdate,
    Wallet,
    WalletUpdate,
)
from cashflow.models.activity import (
    ActivityAction,
    ActivityEntry,
    ActivityMessages,
    CommentEntry,
    EntityType,
    RecordKind,
)
from cashflow.models.money import format_amount, to_amount

__all__ = [
    # Ledger models
    "Budget",
    "BudgetPeriod",
    "BudgetUpdate",
    "Caller",
    "Collaborator",
    "CustomCategory",
    "Plan",
    "Role",
    "Transaction",
    "TransactionKind",
    "TransactionUpdate",
    "Wallet",
    "WalletUpdate",
    # Activity models
    "ActivityAction",
    "ActivityEntry",
    "ActivityMessages",
    "CommentEntry",
    "EntityType",
    "RecordKind",
    # Money
    "format_amount",
    "to_amount",
]
