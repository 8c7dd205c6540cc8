"""
Core Ledger Models for Cashflow

These models define the strict schemas for wallets, budgets and
transactions. They are designed to:
1. Enforce the ledger's input rules before anything is mutated
2. Keep money in Decimal, serialized as two-decimal strings
3. Be serializable as plain documents for any document store

DESIGN DECISION: Wallets are cross-referenced by NAME (transactions and
shared budgets store the wallet name, not its id).
"""

from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Annotated, Optional
from uuid import uuid4

from pydantic import (
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    PlainSerializer,
    field_validator,
    model_validator,
)

from cashflow.models.money import ZERO, format_amount, to_amount


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


def new_id() -> str:
    return uuid4().hex


# Decimal in memory, "12.50" on the wire
Money = Annotated[
    Decimal,
    BeforeValidator(to_amount),
    PlainSerializer(format_amount, return_type=str),
]


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class Role(str, Enum):
    """
    Access role on a shared wallet or budget.

    Owner: full control, Editor: can transact and update,
    Viewer: read-only.
    """
    OWNER = "Owner"
    EDITOR = "Editor"
    VIEWER = "Viewer"


class Plan(str, Enum):
    """Whether a wallet/budget belongs to one user or is shared."""
    PERSONAL = "Personal"
    SHARED = "Shared"


class TransactionKind(str, Enum):
    INCOME = "Income"
    EXPENSE = "Expense"
    TRANSFER = "Transfer"


class BudgetPeriod(str, Enum):
    WEEKLY = "Weekly"
    MONTHLY = "Monthly"
    ONE_TIME = "One-time"


# =============================================================================
# IDENTITY
# =============================================================================

class Caller(BaseModel):
    """
    The verified identity making a request.

    Produced by the identity provider. `uid` is the stable id used for
    ownership; `email` is the join key for collaborator lookups.
    """
    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    uid: str = Field(..., min_length=1)
    email: str = Field(default="")
    display_name: str = Field(default="Unknown")


class Collaborator(BaseModel):
    """
    A participant on a shared wallet or budget.

    Collaborators are matched by email because they can be invited
    before they hold a stable identity on record.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    identity: str = Field(..., min_length=1, description="Participant's user id")
    name: str = Field(..., min_length=1)
    email: str = Field(..., min_length=1)
    role: Role = Field(default=Role.EDITOR)


# =============================================================================
# WALLET
# =============================================================================

class Wallet(BaseModel):
    """
    A balance-holding account, personal or shared.

    The owning user is an implicit Owner; `collaborators` lists everyone
    else with access.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: str = Field(default_factory=new_id)
    owner_user_id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1, max_length=100)
    currency: str = Field(default="PHP", min_length=3, max_length=3)
    plan: Plan = Field(default=Plan.PERSONAL)
    balance: Money = Field(default=ZERO)
    description: str = Field(default="", max_length=500)
    wallet_type: str = Field(default="Cash", max_length=50)
    collaborators: list[Collaborator] = Field(default_factory=list)

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def is_shared(self) -> bool:
        return self.plan == Plan.SHARED


class WalletUpdate(BaseModel):
    """
    Fields a wallet update may change.

    Balance, plan, owner and collaborators are deliberately absent:
    balance only moves through the ledger engine and collaborators only
    through the membership operations.
    """
    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    currency: Optional[str] = Field(default=None, min_length=3, max_length=3)
    description: Optional[str] = Field(default=None, max_length=500)
    wallet_type: Optional[str] = Field(default=None, max_length=50)


# =============================================================================
# BUDGET
# =============================================================================

class Budget(BaseModel):
    """
    A spending cap tracked per category.

    A Shared budget is scoped to one shared wallet (by name); a Personal
    budget applies to all of its owner's wallets.

    INVARIANT: 0 <= left. The engine clamps on apply.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: str = Field(default_factory=new_id)
    owner_user_id: str = Field(..., min_length=1)
    wallet: Optional[str] = Field(
        default=None,
        description="Target wallet name (Shared plan only)"
    )
    category: str = Field(..., min_length=1, max_length=100)
    plan: Plan = Field(default=Plan.PERSONAL)
    amount: Money
    left: Optional[Money] = Field(
        default=None,
        description="Remaining amount; defaults to the full amount"
    )
    period: BudgetPeriod = Field(default=BudgetPeriod.MONTHLY)
    description: str = Field(default="", max_length=500)
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    collaborators: list[Collaborator] = Field(default_factory=list)

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @model_validator(mode='after')
    def validate_budget(self) -> 'Budget':
        """Check amounts, scope and date range."""
        if self.amount < 0:
            raise ValueError("Budget amount cannot be negative")
        if self.left is None:
            self.left = self.amount
        if self.left < 0:
            raise ValueError("Budget remaining amount cannot be negative")

        if self.plan == Plan.SHARED and not self.wallet:
            raise ValueError("A shared budget must reference a wallet")
        if self.plan == Plan.PERSONAL:
            self.wallet = None

        if self.start_date and self.end_date:
            if self.end_date < self.start_date:
                raise ValueError("Budget end date cannot be before start date")

        return self

    def matches_category(self, category: str) -> bool:
        """Case-insensitive category match."""
        return self.category.lower() == category.strip().lower()


class BudgetUpdate(BaseModel):
    """
    Fields a budget update may change.

    Changing `amount` shifts `left` by the same delta.
    """
    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    category: Optional[str] = Field(default=None, min_length=1, max_length=100)
    amount: Optional[Money] = None
    period: Optional[BudgetPeriod] = None
    description: Optional[str] = Field(default=None, max_length=500)
    start_date: Optional[date] = None
    end_date: Optional[date] = None


# =============================================================================
# TRANSACTION
# =============================================================================

class Transaction(BaseModel):
    """
    A committed income, expense or transfer.

    Only the actor-tracked edit protocol changes a transaction after it
    is committed: created_by_* is kept, updated_by_* is restamped.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: str = Field(default_factory=new_id)
    owner_user_id: str = Field(..., min_length=1)
    kind: TransactionKind
    amount: Money
    occurred_at: datetime = Field(default_factory=utcnow)
    category: str = Field(default="", max_length=100)
    wallet_from: str = Field(..., min_length=1, description="Source wallet name")
    wallet_to: Optional[str] = Field(
        default=None,
        description="Destination wallet name (Transfer only)"
    )
    description: str = Field(default="", max_length=500)

    created_by_id: Optional[str] = None
    created_by_name: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_by_id: Optional[str] = None
    updated_by_name: Optional[str] = None
    updated_at: datetime = Field(default_factory=utcnow)

    @field_validator('amount')
    @classmethod
    def validate_amount(cls, v: Decimal) -> Decimal:
        if v <= 0:
            raise ValueError("Transaction amount must be greater than zero")
        return v

    @model_validator(mode='after')
    def validate_wallets(self) -> 'Transaction':
        """Destination is required iff the transaction is a transfer."""
        if self.kind == TransactionKind.TRANSFER:
            if not self.wallet_to:
                raise ValueError("A transfer requires a destination wallet")
            if self.wallet_to == self.wallet_from:
                raise ValueError("Cannot transfer a wallet to itself")
        else:
            self.wallet_to = None

        if self.kind == TransactionKind.EXPENSE and not self.category:
            raise ValueError("An expense requires a category")

        return self

    @property
    def wallet_names(self) -> list[str]:
        """Every wallet this transaction touches."""
        names = [self.wallet_from]
        if self.wallet_to:
            names.append(self.wallet_to)
        return names


class TransactionUpdate(BaseModel):
    """
    Fields a transaction edit may change.

    The owner and the created_by_* stamp are kept from the original.
    """
    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    kind: Optional[TransactionKind] = None
    amount: Optional[Money] = None
    occurred_at: Optional[datetime] = None
    category: Optional[str] = Field(default=None, max_length=100)
    wallet_from: Optional[str] = Field(default=None, min_length=1)
    wallet_to: Optional[str] = None
    description: Optional[str] = Field(default=None, max_length=500)


class CustomCategory(BaseModel):
    """A user-defined category, unique per (user_id, category)."""

    id: str = Field(default_factory=new_id)
    user_id: str = Field(..., min_length=1)
    category: str = Field(..., min_length=1, max_length=100)
    created_at: datetime = Field(default_factory=utcnow)

    @field_validator('category')
    @classmethod
    def strip_category(cls, v: str) -> str:
        return v.strip()
