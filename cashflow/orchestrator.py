"""
Main Orchestrator for Cashflow

This module ties together all the components and defines the
end-to-end flows for:
1. Transactions (authorize → apply/revert → record activity)
2. Budgets (authorize → create/update/delete → record activity)
3. Wallets and their collaborators
4. Chat and the activity feed

DESIGN DECISION: The orchestrator enforces the boundaries:
- Nothing is written before the Authorization Gate passes
- Balances only move through the ledger engine
- Activity, category registration and cache invalidation run AFTER the
  primary mutation has committed, and their failures never undo it

This is the "glue" that ensures the system works correctly
even when individual components might behave unexpectedly.
"""

from datetime import datetime
from typing import Any, Optional, Union

import pydantic
import structlog

from cashflow.access import AccessGate
from cashflow.activity import ActivityRecorder, PostCommitEffects
from cashflow.config import LedgerSettings, get_settings, validate_all_settings
from cashflow.errors import AuthorizationError, NotFoundError, ValidationError
from cashflow.ledger import LedgerEngine, LedgerOutcome
from cashflow.models.activity import (
    ActivityAction,
    ActivityEntry,
    ActivityMessages,
    CommentEntry,
    EntityType,
)
from cashflow.models.ledger import (
    Budget,
    BudgetPeriod,
    BudgetUpdate,
    Caller,
    Collaborator,
    Plan,
    Role,
    Transaction,
    TransactionKind,
    TransactionUpdate,
    Wallet,
    WalletUpdate,
    utcnow,
)
from cashflow.models.money import AmountLike, ZERO
from cashflow.queries import LedgerQueries
from cashflow.services.cache import LedgerSnapshot, SnapshotCache
from cashflow.services.categories import CategoryRegistry
from cashflow.services.identity import IdentityProviderInterface, StaticIdentityProvider
from cashflow.services.storage import DocumentStore, InMemoryDocumentStore, Repositories
from cashflow.services.storage.google_sheets import GoogleSheetsClient, GoogleSheetsDocumentStore


def _validated(model: type, **data: Any):
    """Build an input model, surfacing pydantic failures as ValidationError."""
    try:
        return model(**data)
    except pydantic.ValidationError as e:
        error = e.errors()[0]
        field = ".".join(str(part) for part in error["loc"]) or None
        raise ValidationError(error["msg"], field=field)


def _changes(update: pydantic.BaseModel) -> dict:
    """Only the fields the caller actually set."""
    return {
        key: value
        for key, value in update.model_dump(exclude_unset=True).items()
        if value is not None
    }


def _audience(resource: Union[Wallet, Budget]) -> set[str]:
    """User ids whose cached view includes this record."""
    return {resource.owner_user_id} | {c.identity for c in resource.collaborators}


class _Flow:
    """Shared wiring for every flow."""

    def __init__(
        self,
        repositories: Repositories,
        gate: Optional[AccessGate] = None,
        recorder: Optional[ActivityRecorder] = None,
        categories: Optional[CategoryRegistry] = None,
        cache: Optional[SnapshotCache] = None,
        settings: Optional[LedgerSettings] = None,
    ):
        self._repos = repositories
        self._settings = settings or get_settings().ledger
        self._gate = gate or AccessGate()
        self._recorder = recorder or ActivityRecorder(repositories, settings=self._settings)
        self._categories = categories or CategoryRegistry(repositories, self._settings)
        self._queries = LedgerQueries(repositories)
        self._cache = cache
        self._logger = structlog.get_logger(__name__)

    async def _wallet(self, wallet_id: str) -> Wallet:
        wallet = await self._repos.wallets.get(wallet_id)
        if wallet is None:
            raise NotFoundError(f"Wallet not found: {wallet_id}")
        return wallet

    async def _budget(self, budget_id: str) -> Budget:
        budget = await self._repos.budgets.get(budget_id)
        if budget is None:
            raise NotFoundError(f"Budget not found: {budget_id}")
        return budget

    def _activity(
        self,
        effects: PostCommitEffects,
        wallet: Wallet,
        caller: Caller,
        action: ActivityAction,
        entity_type: EntityType,
        entity_id: str,
        message: str,
    ) -> None:
        effects.add(
            action.value,
            lambda: self._recorder.record(
                wallet_id=wallet.id,
                actor_id=caller.uid,
                actor_name=caller.display_name,
                action=action,
                entity_type=entity_type,
                entity_id=entity_id,
                message=message,
            ),
        )

    def _invalidate(self, effects: PostCommitEffects, user_ids: set[str]) -> None:
        if self._cache is None:
            return

        async def invalidate():
            for user_id in user_ids:
                self._cache.invalidate(user_id)

        effects.add("cache_invalidate", invalidate)


# =============================================================================
# TRANSACTIONS
# =============================================================================

class TransactionFlow(_Flow):
    """
    Orchestrates transaction create / edit / delete.

    Flow:
    1. Validate input (amount > 0, wallets, transfer destination)
    2. Gate: Editor or Owner on every touched wallet
    3. Ledger engine applies / reverts in one store transaction
    4. Post-commit: activity entry per wallet, category registration,
       cache invalidation
    """

    def __init__(self, repositories: Repositories, engine: Optional[LedgerEngine] = None, **kwargs):
        super().__init__(repositories, **kwargs)
        self._engine = engine or LedgerEngine(repositories)

    async def create_transaction(
        self,
        caller: Caller,
        kind: Union[TransactionKind, str],
        amount: AmountLike,
        wallet_from: str,
        category: str = "",
        wallet_to: Optional[str] = None,
        description: str = "",
        occurred_at: Optional[datetime] = None,
    ) -> LedgerOutcome:
        """
        Record a new income, expense or transfer.

        Raises:
            ValidationError: bad amount, missing wallet or destination
            AuthorizationError: caller cannot edit a touched wallet
        """
        data = dict(
            owner_user_id=caller.uid,
            kind=kind,
            amount=amount,
            category=category,
            wallet_from=wallet_from,
            wallet_to=wallet_to,
            description=description,
            created_by_id=caller.uid,
            created_by_name=caller.display_name,
            updated_by_id=caller.uid,
            updated_by_name=caller.display_name,
        )
        if occurred_at is not None:
            data["occurred_at"] = occurred_at
        tx = _validated(Transaction, **data)

        wallets = await self._authorize(tx, caller)
        outcome = await self._engine.apply_transaction(tx)

        effects = PostCommitEffects()
        self._announce(effects, caller, outcome.transaction, wallets, "added", ActivityAction.TRANSACTION_ADDED)
        self._register_category(effects, caller, outcome.transaction)
        await effects.run()
        return outcome

    async def edit_transaction(
        self,
        caller: Caller,
        transaction_id: str,
        update: Union[TransactionUpdate, dict],
    ) -> LedgerOutcome:
        """
        Edit a committed transaction: revert the original, apply the update.

        The original creator stays on record; the editor is stamped as
        updated_by.
        """
        if isinstance(update, dict):
            update = _validated(TransactionUpdate, **update)

        original = await self._transaction(transaction_id)
        await self._authorize_existing(original, caller)

        data = original.model_dump()
        data.update(_changes(update))
        data.update(
            updated_by_id=caller.uid,
            updated_by_name=caller.display_name,
            updated_at=utcnow(),
        )
        updated = _validated(Transaction, **data)
        wallets = await self._authorize(updated, caller)

        outcome = await self._engine.replace_transaction(original, updated)

        effects = PostCommitEffects()
        self._announce(effects, caller, outcome.transaction, wallets, "updated", ActivityAction.TRANSACTION_UPDATED)
        self._register_category(effects, caller, outcome.transaction)
        await effects.run()
        return outcome

    async def delete_transaction(self, caller: Caller, transaction_id: str) -> LedgerOutcome:
        original = await self._transaction(transaction_id)
        wallets = await self._authorize_existing(original, caller)

        outcome = await self._engine.revert_and_remove_transaction(original)

        effects = PostCommitEffects()
        self._announce(effects, caller, original, wallets, "deleted", ActivityAction.TRANSACTION_DELETED)
        await effects.run()
        return outcome

    async def list_transactions(
        self,
        caller: Caller,
        wallet_name: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> list[Transaction]:
        return await self._queries.visible_transactions(caller, wallet_name, limit)

    async def _transaction(self, transaction_id: str) -> Transaction:
        tx = await self._repos.transactions.get(transaction_id)
        if tx is None:
            raise NotFoundError(f"Transaction not found: {transaction_id}")
        return tx

    async def _authorize(self, tx: Transaction, caller: Caller) -> list[Wallet]:
        """Every touched wallet must exist and be editable by the caller."""
        wallets = await self._engine.require_wallets(tx)
        for wallet in wallets:
            self._gate.require_wallet_edit(wallet, caller)
        return wallets

    async def _authorize_existing(self, tx: Transaction, caller: Caller) -> list[Wallet]:
        """
        Gate a committed transaction on the wallets that still exist.

        With every wallet gone, only the transaction's owner may touch it.
        """
        wallets = []
        for name in tx.wallet_names:
            wallet = await self._repos.wallets.find_one(name=name)
            if wallet is not None:
                self._gate.require_wallet_edit(wallet, caller)
                wallets.append(wallet)

        if not wallets and tx.owner_user_id != caller.uid:
            raise AuthorizationError(
                f"{caller.display_name} is not allowed to modify this transaction",
                required="Owner",
            )
        return wallets

    def _announce(
        self,
        effects: PostCommitEffects,
        caller: Caller,
        tx: Transaction,
        wallets: list[Wallet],
        verb: str,
        action: ActivityAction,
    ) -> None:
        audience = {tx.owner_user_id}
        for wallet in wallets:
            message = ActivityMessages.transaction(caller, tx, verb, wallet.currency)
            self._activity(effects, wallet, caller, action, EntityType.TRANSACTION, tx.id, message)
            audience |= _audience(wallet)
        self._invalidate(effects, audience)

    def _register_category(self, effects: PostCommitEffects, caller: Caller, tx: Transaction) -> None:
        if tx.category and tx.kind != TransactionKind.INCOME:
            effects.add(
                "category_register",
                lambda: self._categories.register_if_absent(caller.uid, tx.category),
            )


# =============================================================================
# BUDGETS
# =============================================================================

class BudgetFlow(_Flow):
    """
    Orchestrates budget create / update / delete.

    Shared budgets are authorized against their wallet's roles; Personal
    budgets against direct ownership.
    """

    async def create_budget(
        self,
        caller: Caller,
        category: str,
        amount: AmountLike,
        plan: Union[Plan, str] = Plan.PERSONAL,
        wallet: Optional[str] = None,
        period: Union[BudgetPeriod, str] = BudgetPeriod.MONTHLY,
        description: str = "",
        start_date=None,
        end_date=None,
    ) -> Budget:
        """
        Create a budget.

        A Shared budget copies its wallet's collaborators and always
        lists the creator first as Owner.
        """
        try:
            plan = Plan(plan)
        except ValueError:
            raise ValidationError(f"Unknown plan: {plan}", field="plan")

        target = None
        collaborators = []
        if plan == Plan.SHARED:
            if not wallet:
                raise ValidationError("A shared budget must reference a wallet", field="wallet")
            target = await self._repos.wallets.find_one(name=wallet)
            if target is None:
                raise ValidationError(f"Wallet not found: {wallet}", field="wallet")
            if not target.is_shared:
                raise ValidationError("Shared budgets need a shared wallet", field="wallet")
            self._gate.require_wallet_edit(target, caller)
            collaborators = self._with_owner_entry(caller, target.collaborators)

        budget = _validated(
            Budget,
            owner_user_id=caller.uid,
            category=category,
            amount=amount,
            plan=plan,
            wallet=wallet,
            period=period,
            description=description,
            start_date=start_date,
            end_date=end_date,
            collaborators=collaborators,
        )
        stored = await self._repos.budgets.add(budget)
        self._logger.info("budget_created", budget_id=stored.id, plan=stored.plan.value, caller_id=caller.uid)

        effects = PostCommitEffects()
        effects.add(
            "category_register",
            lambda: self._categories.register_if_absent(caller.uid, stored.category),
        )
        audience = {caller.uid}
        if target is not None:
            self._activity(
                effects, target, caller,
                ActivityAction.BUDGET_ADDED, EntityType.BUDGET, stored.id,
                ActivityMessages.budget(caller, stored, "created", target.currency),
            )
            audience |= _audience(target)
        self._invalidate(effects, audience)
        await effects.run()
        return stored

    async def update_budget(
        self,
        caller: Caller,
        budget_id: str,
        update: Union[BudgetUpdate, dict],
    ) -> Budget:
        """
        Apply an allow-listed update.

        Changing the amount shifts `left` by the same delta, kept within
        [0, amount].
        """
        if isinstance(update, dict):
            update = _validated(BudgetUpdate, **update)

        budget = await self._budget(budget_id)
        wallet = await self._wallet_of(budget)
        self._gate.require_budget_edit(budget, caller, wallet)

        changes = _changes(update)
        # Validate the merged record before touching storage
        _validated(Budget, **{**budget.model_dump(), **changes, "left": None})

        def mutate(current: Budget) -> Budget:
            data = current.model_dump()
            data.update(changes)
            if "amount" in changes:
                new_amount = update.amount
                left = current.left + (new_amount - current.amount)
                data["left"] = min(max(left, ZERO), new_amount)
            data["updated_at"] = utcnow()
            return Budget.model_validate(data)

        stored = await self._repos.budgets.update(budget.id, mutate)
        if stored is None:
            raise NotFoundError(f"Budget not found: {budget_id}")
        self._logger.info("budget_updated", budget_id=stored.id, fields=sorted(changes), caller_id=caller.uid)

        effects = PostCommitEffects()
        if "category" in changes:
            effects.add(
                "category_register",
                lambda: self._categories.register_if_absent(caller.uid, stored.category),
            )
        audience = _audience(stored)
        if wallet is not None:
            self._activity(
                effects, wallet, caller,
                ActivityAction.BUDGET_UPDATED, EntityType.BUDGET, stored.id,
                ActivityMessages.budget(caller, stored, "updated", wallet.currency),
            )
            audience |= _audience(wallet)
        self._invalidate(effects, audience)
        await effects.run()
        return stored

    async def delete_budget(self, caller: Caller, budget_id: str) -> None:
        budget = await self._budget(budget_id)
        self._gate.require_budget_owner(budget, caller)
        wallet = await self._wallet_of(budget)

        await self._repos.budgets.delete(budget.id)
        self._logger.info("budget_deleted", budget_id=budget.id, caller_id=caller.uid)

        effects = PostCommitEffects()
        audience = _audience(budget)
        if wallet is not None:
            self._activity(
                effects, wallet, caller,
                ActivityAction.BUDGET_DELETED, EntityType.BUDGET, budget.id,
                ActivityMessages.budget(caller, budget, "deleted", wallet.currency),
            )
            audience |= _audience(wallet)
        self._invalidate(effects, audience)
        await effects.run()

    async def list_budgets(self, caller: Caller) -> list[Budget]:
        return await self._queries.visible_budgets(caller)

    async def _wallet_of(self, budget: Budget) -> Optional[Wallet]:
        if budget.plan != Plan.SHARED:
            return None
        return await self._repos.wallets.find_one(name=budget.wallet)

    @staticmethod
    def _with_owner_entry(caller: Caller, collaborators: list[Collaborator]) -> list[Collaborator]:
        """Creator first as Owner; any other entry with the creator's email is dropped."""
        if not caller.email:
            raise ValidationError("An email address is required to share a budget", field="email")
        owner = Collaborator(
            identity=caller.uid,
            name=caller.display_name,
            email=caller.email,
            role=Role.OWNER,
        )
        return [owner] + [c for c in collaborators if c.email != caller.email]


# =============================================================================
# WALLETS & COLLABORATORS
# =============================================================================

class WalletFlow(_Flow):
    """
    Orchestrates wallets and their membership.

    Membership changes and deletion need Owner. Every membership change
    is mirrored onto the Shared budgets of the wallet.
    """

    async def create_wallet(
        self,
        caller: Caller,
        name: str,
        plan: Union[Plan, str] = Plan.PERSONAL,
        currency: Optional[str] = None,
        balance: AmountLike = ZERO,
        description: str = "",
        wallet_type: str = "Cash",
    ) -> Wallet:
        wallet = _validated(
            Wallet,
            owner_user_id=caller.uid,
            name=name,
            plan=plan,
            currency=currency or self._settings.default_currency,
            balance=balance,
            description=description,
            wallet_type=wallet_type,
        )
        await self._require_unique_name(wallet.name)
        stored = await self._repos.wallets.add(wallet)
        self._logger.info("wallet_created", wallet_id=stored.id, plan=stored.plan.value, caller_id=caller.uid)

        effects = PostCommitEffects()
        self._invalidate(effects, {caller.uid})
        await effects.run()
        return stored

    async def get_wallet(self, caller: Caller, wallet_id: str) -> Wallet:
        wallet = await self._wallet(wallet_id)
        self._gate.require_wallet_view(wallet, caller)
        return wallet

    async def list_wallets(self, caller: Caller) -> list[Wallet]:
        return await self._queries.visible_wallets(caller)

    async def update_wallet(
        self,
        caller: Caller,
        wallet_id: str,
        update: Union[WalletUpdate, dict],
    ) -> Wallet:
        """
        Apply an allow-listed update.

        A rename is carried over to every transaction and Shared budget
        that references the wallet by name.
        """
        if isinstance(update, dict):
            update = _validated(WalletUpdate, **update)

        wallet = await self._wallet(wallet_id)
        self._gate.require_wallet_edit(wallet, caller)

        changes = _changes(update)
        renamed = "name" in changes and changes["name"] != wallet.name
        if renamed:
            await self._require_unique_name(changes["name"])

        async with self._repos.transaction():
            stored = await self._repos.wallets.update(
                wallet.id,
                lambda w: w.model_copy(update={**changes, "updated_at": utcnow()}),
            )
            if renamed:
                await self._rename_references(wallet.name, stored.name)

        self._logger.info("wallet_updated", wallet_id=wallet.id, fields=sorted(changes), caller_id=caller.uid)

        effects = PostCommitEffects()
        self._activity(
            effects, stored, caller,
            ActivityAction.SYSTEM_MESSAGE, EntityType.WALLET, stored.id,
            f"{caller.display_name} updated the wallet {stored.name}",
        )
        self._invalidate(effects, _audience(stored))
        await effects.run()
        return stored

    async def delete_wallet(self, caller: Caller, wallet_id: str) -> int:
        """
        Delete a wallet with every record that names it.

        Shared budgets on the wallet (whoever created them) and every
        transaction touching it go with it, so a later wallet reusing the
        name starts empty. Other wallets a removed transfer touched keep
        their balances.

        Returns:
            Number of budgets removed with the wallet
        """
        wallet = await self._wallet(wallet_id)
        self._gate.require_wallet_owner(wallet, caller)

        async with self._repos.transaction():
            budgets = await self._repos.budgets.find(plan=Plan.SHARED, wallet=wallet.name)
            removed = await self._repos.budgets.delete(*[b.id for b in budgets])
            transactions = (
                await self._repos.transactions.find(wallet_from=wallet.name)
                + await self._repos.transactions.find(wallet_to=wallet.name)
            )
            dropped = await self._repos.transactions.delete(*{tx.id for tx in transactions})
            await self._repos.wallets.delete(wallet.id)

        self._logger.info(
            "wallet_deleted",
            wallet_id=wallet.id,
            budgets_removed=removed,
            transactions_removed=dropped,
            caller_id=caller.uid,
        )

        effects = PostCommitEffects()
        self._activity(
            effects, wallet, caller,
            ActivityAction.SYSTEM_MESSAGE, EntityType.WALLET, wallet.id,
            f"{caller.display_name} deleted the wallet {wallet.name}",
        )
        owners = {b.owner_user_id for b in budgets} | {tx.owner_user_id for tx in transactions}
        self._invalidate(effects, _audience(wallet) | owners)
        await effects.run()
        return removed

    async def add_collaborator(
        self,
        caller: Caller,
        wallet_id: str,
        identity: str,
        name: str,
        email: str,
        role: Union[Role, str] = Role.EDITOR,
    ) -> Wallet:
        """
        Invite a collaborator (Editor unless told otherwise).

        Someone already on the wallet (same identity or email) is left
        as they are.
        """
        wallet = await self._wallet(wallet_id)
        self._gate.require_wallet_owner(wallet, caller)
        if not wallet.is_shared:
            raise ValidationError("Only shared wallets have collaborators", field="plan")
        if identity == wallet.owner_user_id:
            raise ValidationError("The owner is already on the wallet", field="identity")

        collaborator = _validated(Collaborator, identity=identity, name=name, email=email, role=role)
        if self._find_member(wallet.collaborators, collaborator.identity, collaborator.email):
            self._logger.info("collaborator_exists", wallet_id=wallet.id, identity=identity)
            return wallet

        def add(members: list[Collaborator]) -> list[Collaborator]:
            if self._find_member(members, collaborator.identity, collaborator.email):
                return members
            return members + [collaborator]

        stored = await self._update_members(wallet, add)

        effects = PostCommitEffects()
        self._activity(
            effects, stored, caller,
            ActivityAction.MEMBER_ADDED, EntityType.MEMBER, collaborator.identity,
            ActivityMessages.member_added(caller, collaborator),
        )
        self._invalidate(effects, _audience(stored))
        await effects.run()
        return stored

    async def remove_collaborator(self, caller: Caller, wallet_id: str, identity: str) -> Wallet:
        wallet = await self._wallet(wallet_id)
        self._gate.require_wallet_owner(wallet, caller)

        collaborator = self._find_member(wallet.collaborators, identity)
        if collaborator is None:
            raise NotFoundError(f"Collaborator not found: {identity}")

        stored = await self._update_members(
            wallet,
            lambda members: [m for m in members if m.identity != identity],
        )

        effects = PostCommitEffects()
        self._activity(
            effects, stored, caller,
            ActivityAction.MEMBER_REMOVED, EntityType.MEMBER, identity,
            ActivityMessages.member_removed(caller, collaborator),
        )
        # The removed member's cached view still shows the wallet
        self._invalidate(effects, _audience(wallet))
        await effects.run()
        return stored

    async def set_collaborator_role(
        self,
        caller: Caller,
        wallet_id: str,
        identity: str,
        role: Union[Role, str],
    ) -> Wallet:
        wallet = await self._wallet(wallet_id)
        self._gate.require_wallet_owner(wallet, caller)

        try:
            role = Role(role)
        except ValueError:
            raise ValidationError(f"Unknown role: {role}", field="role")

        collaborator = self._find_member(wallet.collaborators, identity)
        if collaborator is None:
            raise NotFoundError(f"Collaborator not found: {identity}")

        stored = await self._update_members(
            wallet,
            lambda members: [
                m.model_copy(update={"role": role}) if m.identity == identity else m
                for m in members
            ],
        )

        effects = PostCommitEffects()
        self._activity(
            effects, stored, caller,
            ActivityAction.SYSTEM_MESSAGE, EntityType.MEMBER, identity,
            ActivityMessages.role_changed(caller, collaborator, role),
        )
        self._invalidate(effects, _audience(stored))
        await effects.run()
        return stored

    async def _require_unique_name(self, name: str) -> None:
        if await self._repos.wallets.find_one(name=name) is not None:
            raise ValidationError(f"A wallet named {name} already exists", field="name")

    async def _rename_references(self, old: str, new: str) -> None:
        for tx in await self._repos.transactions.find(wallet_from=old):
            await self._repos.transactions.update(tx.id, lambda t: t.model_copy(update={"wallet_from": new}))
        for tx in await self._repos.transactions.find(wallet_to=old):
            await self._repos.transactions.update(tx.id, lambda t: t.model_copy(update={"wallet_to": new}))
        for budget in await self._repos.budgets.find(plan=Plan.SHARED, wallet=old):
            await self._repos.budgets.update(budget.id, lambda b: b.model_copy(update={"wallet": new}))

    async def _update_members(self, wallet: Wallet, change) -> Wallet:
        """
        Apply a membership change to the wallet and its Shared budgets.

        A budget's own Owner entry (its creator) is never touched.
        """
        async with self._repos.transaction():
            stored = await self._repos.wallets.update(
                wallet.id,
                lambda w: w.model_copy(update={
                    "collaborators": change(w.collaborators),
                    "updated_at": utcnow(),
                }),
            )

            def mirror(budget: Budget) -> Budget:
                pinned = [m for m in budget.collaborators if m.identity == budget.owner_user_id]
                others = [m for m in budget.collaborators if m.identity != budget.owner_user_id]
                changed = [
                    m for m in change(others)
                    if not any(p.email == m.email for p in pinned)
                ]
                return budget.model_copy(update={
                    "collaborators": pinned + changed,
                    "updated_at": utcnow(),
                })

            for budget in await self._repos.budgets.find(plan=Plan.SHARED, wallet=wallet.name):
                await self._repos.budgets.update(budget.id, mirror)

        self._logger.info(
            "wallet_members_changed",
            wallet_id=wallet.id,
            members=len(stored.collaborators),
        )
        return stored

    @staticmethod
    def _find_member(
        members: list[Collaborator],
        identity: str,
        email: Optional[str] = None,
    ) -> Optional[Collaborator]:
        for member in members:
            if member.identity == identity or (email and member.email == email):
                return member
        return None


# =============================================================================
# CHAT & ACTIVITY
# =============================================================================

class ChatFlow(_Flow):
    """Wallet chat threads and activity feeds. Any role may read and post."""

    async def post_comment(
        self,
        caller: Caller,
        wallet_id: str,
        message: str,
        entity_id: Optional[str] = None,
    ) -> CommentEntry:
        wallet = await self._wallet(wallet_id)
        self._gate.require_wallet_view(wallet, caller)

        comment = await self._recorder.record_comment(
            wallet_id=wallet.id,
            author_id=caller.uid,
            author_name=caller.display_name,
            message=message,
            entity_id=entity_id,
        )

        effects = PostCommitEffects()
        self._invalidate(effects, _audience(wallet))
        await effects.run()
        return comment

    async def list_comments(
        self,
        caller: Caller,
        wallet_id: str,
        entity_id: Optional[str] = None,
    ) -> list[CommentEntry]:
        wallet = await self._wallet(wallet_id)
        self._gate.require_wallet_view(wallet, caller)
        return await self._recorder.list_comments(wallet.id, entity_id=entity_id)

    async def list_activity(
        self,
        caller: Caller,
        wallet_id: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> list[ActivityEntry]:
        """The caller's own feed, or a wallet's feed when a wallet is given."""
        if wallet_id is None:
            return await self._recorder.list_activity(user_id=caller.uid, limit=limit)

        wallet = await self._wallet(wallet_id)
        self._gate.require_wallet_view(wallet, caller)
        return await self._recorder.list_activity(wallet_id=wallet.id, limit=limit)


# =============================================================================
# APPLICATION
# =============================================================================

class LedgerApp:
    """
    All flows over one store, plus credential verification.

    Usage:
        app = create_app_components()
        caller = await app.authenticate(token)
        await app.transactions.create_transaction(caller, "Expense", "25.00", "Cash", "Food")
    """

    def __init__(
        self,
        store: DocumentStore,
        identity: Optional[IdentityProviderInterface] = None,
        settings: Optional[LedgerSettings] = None,
    ):
        self.settings = settings or get_settings().ledger
        self.repositories = Repositories(store)
        self.identity = identity or StaticIdentityProvider()
        self.queries = LedgerQueries(self.repositories)
        self.recorder = ActivityRecorder(self.repositories, settings=self.settings)
        self.categories = CategoryRegistry(self.repositories, self.settings)
        self.cache = SnapshotCache(self.queries, self.recorder, self.settings)

        shared = dict(
            gate=AccessGate(),
            recorder=self.recorder,
            categories=self.categories,
            cache=self.cache,
            settings=self.settings,
        )
        self.wallets = WalletFlow(self.repositories, **shared)
        self.budgets = BudgetFlow(self.repositories, **shared)
        self.transactions = TransactionFlow(self.repositories, **shared)
        self.chat = ChatFlow(self.repositories, **shared)
        self._logger = structlog.get_logger(__name__)

    async def authenticate(self, token: str) -> Caller:
        """
        Resolve a bearer credential to a Caller.

        Raises:
            AuthorizationError: if the identity provider rejects it
        """
        try:
            return await self.identity.verify(token)
        except Exception as e:
            self._logger.warning("authentication_failed", error=str(e))
            raise AuthorizationError("Unauthorized") from e

    async def snapshot(self, caller: Caller, refresh: bool = False) -> LedgerSnapshot:
        return await self.cache.snapshot(caller, refresh=refresh)

    async def known_categories(self, caller: Caller) -> list[str]:
        return await self.categories.known_categories(caller.uid)


def create_app_components(
    store: Optional[DocumentStore] = None,
    identity: Optional[IdentityProviderInterface] = None,
) -> LedgerApp:
    """
    Factory function to create all application components.

    Args:
        store: Document store to use. Defaults to the backend named by
               STORAGE_BACKEND. If the settings fail validation or
               Google Sheets cannot be reached, the in-memory store
               is used instead.
        identity: Credential verifier. Defaults to an empty token table.
    """
    logger = structlog.get_logger(__name__)
    settings = get_settings()

    status = validate_all_settings()
    for section, ok in status.items():
        if ok is False:
            logger.warning("settings_invalid", section=section, error=status.get(f"{section}_error"))

    if store is None:
        backend = settings.app.storage_backend if status["app"] else "memory"
        if backend == "google_sheets" and status.get("google_sheets"):
            try:
                client = GoogleSheetsClient()
                client.connect()
                store = GoogleSheetsDocumentStore(client)
            except Exception as e:
                # Storage not configured - continue without it
                logger.warning("storage_unavailable", backend="google_sheets", error=str(e))
                store = InMemoryDocumentStore()
        else:
            store = InMemoryDocumentStore()

    return LedgerApp(store, identity=identity, settings=settings.ledger)
