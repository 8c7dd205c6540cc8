"""
Ledger Apply/Revert Engine

Maintains the invariant:
    the sum of balance deltas applied to a wallet equals the sum of
    signed amounts of all committed transactions referencing it, and a
    budget's `left` equals its amount minus the expenses currently
    attributed to it (clamped at zero).

EDIT PROTOCOL (mandatory order):
    1. revert the original transaction's effect
    2. remove the original
    3. apply the new version
    4. insert the new version
Applying before reverting double-counts.

Each operation runs inside one store transaction. On backends that
support it, a failure part-way leaves no wallet or budget half-updated.
Per-document writes are atomic read-modify-write either way.
"""

from decimal import Decimal
from typing import Optional

import structlog
from pydantic import BaseModel, Field

from cashflow.errors import ValidationError
from cashflow.ledger.effects import Direction, adjust_left, budget_matches, wallet_deltas
from cashflow.models.ledger import Budget, Plan, Transaction, TransactionKind, Wallet, utcnow
from cashflow.models.money import format_amount
from cashflow.services.storage.repository import Repositories


class LedgerOutcome(BaseModel):
    """Records touched by one engine operation."""

    wallets: list[Wallet] = Field(default_factory=list)
    budgets: list[Budget] = Field(default_factory=list)
    transaction: Optional[Transaction] = None

    def wallet(self, name: str) -> Optional[Wallet]:
        for wallet in self.wallets:
            if wallet.name == name:
                return wallet
        return None

    def merge(self, other: "LedgerOutcome") -> "LedgerOutcome":
        """Later snapshots of the same record replace earlier ones."""
        wallets = {w.id: w for w in self.wallets}
        wallets.update({w.id: w for w in other.wallets})
        budgets = {b.id: b for b in self.budgets}
        budgets.update({b.id: b for b in other.budgets})
        return LedgerOutcome(
            wallets=list(wallets.values()),
            budgets=list(budgets.values()),
            transaction=other.transaction or self.transaction,
        )


class LedgerEngine:
    """
    Applies and reverts transactions against wallets and budgets.

    The engine does not authorize; callers gate access first.
    """

    def __init__(self, repositories: Repositories):
        self._repos = repositories
        self._logger = structlog.get_logger(__name__)

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def apply_transaction(self, tx: Transaction) -> LedgerOutcome:
        """Apply a new transaction's effect and commit it."""
        await self.require_wallets(tx)

        async with self._repos.transaction():
            outcome = await self._run(tx, Direction.APPLY)
            stored = await self._repos.transactions.add(tx)

        outcome.transaction = stored
        self._log("ledger_applied", tx, outcome)
        return outcome

    async def revert_and_remove_transaction(self, original: Transaction) -> LedgerOutcome:
        """Undo a committed transaction's effect and delete it."""
        async with self._repos.transaction():
            outcome = await self._run(original, Direction.REVERT)
            await self._repos.transactions.delete(original.id)

        self._log("ledger_reverted", original, outcome)
        return outcome

    async def replace_transaction(
        self,
        original: Transaction,
        updated: Transaction,
    ) -> LedgerOutcome:
        """Edit: revert + remove the original, then apply + insert the update."""
        await self.require_wallets(updated)

        async with self._repos.transaction():
            reverted = await self._run(original, Direction.REVERT)
            await self._repos.transactions.delete(original.id)
            applied = await self._run(updated, Direction.APPLY)
            stored = await self._repos.transactions.add(updated)

        outcome = reverted.merge(applied)
        outcome.transaction = stored
        self._log("ledger_replaced", updated, outcome, original_id=original.id)
        return outcome

    async def require_wallets(self, tx: Transaction) -> list[Wallet]:
        """
        Resolve every wallet the transaction touches.

        Raises:
            ValidationError: if a wallet does not exist
        """
        wallets = []
        for field, name in (("wallet_from", tx.wallet_from), ("wallet_to", tx.wallet_to)):
            if not name:
                continue
            wallet = await self._repos.wallets.find_one(name=name)
            if wallet is None:
                raise ValidationError(f"Wallet not found: {name}", field=field)
            wallets.append(wallet)
        return wallets

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _run(self, tx: Transaction, direction: Direction) -> LedgerOutcome:
        outcome = LedgerOutcome()

        for name, delta in wallet_deltas(tx, direction).items():
            wallet = await self._shift_balance(name, delta)
            if wallet is None:
                # Only reachable on revert; the wallet was deleted since
                self._logger.warning(
                    "ledger_wallet_missing",
                    wallet=name,
                    transaction_id=tx.id,
                    direction=direction.value,
                )
                continue
            outcome.wallets.append(wallet)

        if tx.kind == TransactionKind.EXPENSE:
            for budget in await self._matching_budgets(tx):
                updated = await self._shift_left(budget.id, tx.amount, direction)
                if updated is not None:
                    outcome.budgets.append(updated)

        return outcome

    async def _shift_balance(self, wallet_name: str, delta: Decimal) -> Optional[Wallet]:
        wallet = await self._repos.wallets.find_one(name=wallet_name)
        if wallet is None:
            return None
        return await self._repos.wallets.update(
            wallet.id,
            lambda w: w.model_copy(update={
                "balance": w.balance + delta,
                "updated_at": utcnow(),
            }),
        )

    async def _shift_left(
        self,
        budget_id: str,
        amount: Decimal,
        direction: Direction,
    ) -> Optional[Budget]:
        return await self._repos.budgets.update(
            budget_id,
            lambda b: b.model_copy(update={
                "left": adjust_left(b.left, amount, direction),
                "updated_at": utcnow(),
            }),
        )

    async def _matching_budgets(self, tx: Transaction) -> list[Budget]:
        candidates = await self._repos.budgets.find(
            owner_user_id=tx.owner_user_id,
            plan=Plan.PERSONAL,
        )
        candidates += await self._repos.budgets.find(
            plan=Plan.SHARED,
            wallet=tx.wallet_from,
        )
        return [budget for budget in candidates if budget_matches(budget, tx)]

    def _log(self, event: str, tx: Transaction, outcome: LedgerOutcome, **extra) -> None:
        self._logger.info(
            event,
            transaction_id=tx.id,
            kind=tx.kind.value,
            amount=format_amount(tx.amount),
            wallets={w.name: format_amount(w.balance) for w in outcome.wallets},
            budgets={b.id: format_amount(b.left) for b in outcome.budgets},
            **extra,
        )
