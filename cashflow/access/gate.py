"""
Authorization Gate

Checks run BEFORE every mutating operation. A denied check raises
AuthorizationError and nothing has been written yet.

Rules:
- Shared records: role resolved from owner id + collaborator emails
- Personal records: direct record ownership only (no role resolution)
- Membership changes and deletions need Owner; everything else that
  mutates needs Owner or Editor
"""

from typing import Optional

import structlog

from cashflow.access.roles import SharedResource, resolve_role
from cashflow.errors import AuthorizationError
from cashflow.models.ledger import Budget, Caller, Plan, Role, Wallet


class AccessGate:
    """Role-based checks for wallets and the budgets attached to them."""

    def __init__(self):
        self._logger = structlog.get_logger(__name__)

    def role_for(self, resource: SharedResource, plan: Plan, caller: Caller) -> Optional[Role]:
        """The caller's effective role, honouring the Personal-plan bypass."""
        if plan == Plan.PERSONAL:
            return Role.OWNER if resource.owner_user_id == caller.uid else None
        return resolve_role(resource, caller.uid, caller.email)

    def _deny(self, resource_kind: str, resource_id: str, caller: Caller, required: str) -> None:
        self._logger.warning(
            "authorization_denied",
            resource=resource_kind,
            resource_id=resource_id,
            caller_id=caller.uid,
            required=required,
        )
        raise AuthorizationError(
            f"{caller.display_name} is not allowed to modify this {resource_kind}",
            required=required,
        )

    # ------------------------------------------------------------------
    # Wallets
    # ------------------------------------------------------------------

    def require_wallet_view(self, wallet: Wallet, caller: Caller) -> Role:
        role = self.role_for(wallet, wallet.plan, caller)
        if role is None:
            self._deny("wallet", wallet.id, caller, "Viewer")
        return role

    def require_wallet_edit(self, wallet: Wallet, caller: Caller) -> Role:
        """Owner or Editor; used for transactions and wallet updates."""
        role = self.role_for(wallet, wallet.plan, caller)
        if role not in (Role.OWNER, Role.EDITOR):
            self._deny("wallet", wallet.id, caller, "Editor")
        return role

    def require_wallet_owner(self, wallet: Wallet, caller: Caller) -> Role:
        """Owner only; used for membership changes and deletion."""
        role = self.role_for(wallet, wallet.plan, caller)
        if role != Role.OWNER:
            self._deny("wallet", wallet.id, caller, "Owner")
        return role

    # ------------------------------------------------------------------
    # Budgets
    # ------------------------------------------------------------------

    def require_budget_edit(
        self,
        budget: Budget,
        caller: Caller,
        wallet: Optional[Wallet] = None,
    ) -> Role:
        """
        Shared budgets defer to the role on their wallet; Personal
        budgets need direct ownership.
        """
        if budget.plan == Plan.SHARED:
            # Without the wallet, fall back to the budget's mirrored list
            resource = wallet if wallet is not None else budget
            role = resolve_role(resource, caller.uid, caller.email)
        else:
            role = Role.OWNER if budget.owner_user_id == caller.uid else None

        if role not in (Role.OWNER, Role.EDITOR):
            self._deny("budget", budget.id, caller, "Editor")
        return role

    def require_budget_owner(self, budget: Budget, caller: Caller) -> Role:
        role = self.role_for(budget, budget.plan, caller)
        if role != Role.OWNER:
            self._deny("budget", budget.id, caller, "Owner")
        return role
