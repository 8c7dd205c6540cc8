"""
Visibility Queries

DESIGN DECISION: Reads are filtered by the same role rules as writes.
A caller sees a wallet or budget only if they own it (by uid) or are
listed as a collaborator (by email). Transactions are visible when they
touch a visible wallet.

This engine only reads; it never mutates.
"""

from typing import Optional

from cashflow.access.roles import can_view
from cashflow.models.ledger import (
    Budget,
    Caller,
    Plan,
    Transaction,
    Wallet,
)
from cashflow.services.storage.repository import Repositories


class LedgerQueries:
    """
    Read-side access to wallets, budgets and transactions.

    GUARANTEES:
    - Only returns records the caller may view
    - Personal records are visible to their owner only
    """

    def __init__(self, repositories: Repositories):
        self._repos = repositories

    async def visible_wallets(self, caller: Caller) -> list[Wallet]:
        """Owned wallets first, then shared wallets the caller joined."""
        owned = await self._repos.wallets.find(sort_by="created_at", owner_user_id=caller.uid)
        shared = await self._repos.wallets.find(sort_by="created_at", plan=Plan.SHARED)
        joined = [
            wallet for wallet in shared
            if wallet.owner_user_id != caller.uid
            and can_view(wallet, caller.uid, caller.email)
        ]
        return owned + joined

    async def visible_budgets(self, caller: Caller) -> list[Budget]:
        """
        Owned budgets, then shared budgets on a wallet the caller can see.

        A shared budget whose wallet is gone falls back to its own
        collaborator list.
        """
        owned = await self._repos.budgets.find(sort_by="created_at", owner_user_id=caller.uid)
        shared = await self._repos.budgets.find(sort_by="created_at", plan=Plan.SHARED)
        wallets = {
            wallet.name: wallet
            for wallet in await self._repos.wallets.find(plan=Plan.SHARED)
        }
        joined = [
            budget for budget in shared
            if budget.owner_user_id != caller.uid
            and can_view(wallets.get(budget.wallet, budget), caller.uid, caller.email)
        ]
        return owned + joined

    async def visible_transactions(
        self,
        caller: Caller,
        wallet_name: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> list[Transaction]:
        """
        Transactions touching a visible wallet, newest first.

        Args:
            wallet_name: Restrict to one wallet (must be visible)
        """
        names = {wallet.name for wallet in await self.visible_wallets(caller)}
        if wallet_name is not None:
            names &= {wallet_name}

        transactions = await self._repos.transactions.find(sort_by="occurred_at", descending=True)
        results = [
            tx for tx in transactions
            if any(name in names for name in tx.wallet_names)
        ]
        return results[:limit] if limit else results
