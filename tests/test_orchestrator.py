"""
Integration tests for the flows, run against the in-memory store.
"""

import pytest
from decimal import Decimal

from cashflow.config import get_settings, validate_all_settings
from cashflow.errors import AuthorizationError, NotFoundError, ValidationError
from cashflow.models.activity import ActivityAction
from cashflow.models.ledger import CustomCategory, Role
from cashflow.orchestrator import LedgerApp, create_app_components
from cashflow.services.identity import StaticIdentityProvider
from cashflow.services.storage import InMemoryDocumentStore


async def _balance(app, name):
    return (await app.repositories.wallets.find_one(name=name)).balance


@pytest.fixture
async def shared_budget(app, owner, shared_wallet):
    return await app.budgets.create_budget(owner, "Food", "100.00", plan="Shared", wallet="House")


class TestTransactionFlow:
    """Tests for TransactionFlow."""

    async def test_owner_records_income(self, app, owner, shared_wallet):
        """Test income updates the balance and the wallet feed."""
        outcome = await app.transactions.create_transaction(owner, "Income", "20.00", "House")

        assert outcome.wallet("House").balance == Decimal("120.00")
        feed = await app.chat.list_activity(owner, shared_wallet.id)
        assert feed[0].action == ActivityAction.TRANSACTION_ADDED
        assert feed[0].message == "Ana added an income of PHP 20.00"

    async def test_viewer_rejected_editor_allowed(self, app, editor, viewer, shared_wallet):
        """Test a Viewer cannot transact on a Shared wallet but an Editor can."""
        with pytest.raises(AuthorizationError):
            await app.transactions.create_transaction(viewer, "Expense", "5.00", "House", "Food")
        assert await _balance(app, "House") == Decimal("100.00")

        await app.transactions.create_transaction(editor, "Expense", "5.00", "House", "Food")
        assert await _balance(app, "House") == Decimal("95.00")

    async def test_stranger_rejected(self, app, stranger, shared_wallet):
        """Test someone with no role can neither read nor write."""
        with pytest.raises(AuthorizationError):
            await app.transactions.create_transaction(stranger, "Income", "5.00", "House")
        with pytest.raises(AuthorizationError):
            await app.wallets.get_wallet(stranger, shared_wallet.id)

    async def test_personal_wallet_owner_only(self, app, owner, editor, personal_wallet):
        """Test Personal wallets are authorized by ownership alone."""
        await app.transactions.create_transaction(owner, "Income", "10.00", "Cash")
        with pytest.raises(AuthorizationError):
            await app.transactions.create_transaction(editor, "Income", "10.00", "Cash")

    async def test_transfer_needs_edit_on_both_wallets(self, app, owner, editor, shared_wallet, personal_wallet):
        """Test an Editor cannot move money into a wallet they cannot edit."""
        with pytest.raises(AuthorizationError):
            await app.transactions.create_transaction(editor, "Transfer", "10.00", "House", wallet_to="Cash")

        await app.transactions.create_transaction(owner, "Transfer", "30.00", "House", wallet_to="Cash")
        assert await _balance(app, "House") == Decimal("70.00")
        assert await _balance(app, "Cash") == Decimal("30.00")

    async def test_invalid_input(self, app, owner, shared_wallet):
        """Test bad input raises ValidationError before anything moves."""
        with pytest.raises(ValidationError) as exc:
            await app.transactions.create_transaction(owner, "Expense", "5.00", "Nowhere", "Food")
        assert exc.value.field == "wallet_from"

        for amount in ("0", 5.0):
            with pytest.raises(ValidationError):
                await app.transactions.create_transaction(owner, "Income", amount, "House")
        with pytest.raises(ValidationError):
            await app.transactions.create_transaction(owner, "Transfer", "5.00", "House")
        assert await _balance(app, "House") == Decimal("100.00")

    async def test_edit_stamps_actor(self, app, owner, editor, shared_wallet, shared_budget):
        """Test edits keep the creator and restamp the editor."""
        created = await app.transactions.create_transaction(owner, "Expense", "30.00", "House", "Food")
        tx_id = created.transaction.id

        outcome = await app.transactions.edit_transaction(editor, tx_id, {"amount": "10.00"})

        tx = outcome.transaction
        assert tx.id == tx_id
        assert tx.created_by_name == "Ana"
        assert tx.updated_by_name == "Ben"
        assert await _balance(app, "House") == Decimal("90.00")
        assert (await app.repositories.budgets.get(shared_budget.id)).left == Decimal("90.00")

        feed = await app.chat.list_activity(owner, shared_wallet.id)
        assert feed[0].message == "Ben updated an expense of PHP 10.00 for Food"

    async def test_edit_rejects_unknown_fields(self, app, owner, shared_wallet):
        """Test the owner and balance cannot be smuggled into an edit."""
        created = await app.transactions.create_transaction(owner, "Income", "5.00", "House")
        with pytest.raises(ValidationError):
            await app.transactions.edit_transaction(owner, created.transaction.id, {"owner_user_id": "u-x"})

    async def test_viewer_cannot_delete(self, app, owner, viewer, shared_wallet):
        """Test delete is gated like create."""
        created = await app.transactions.create_transaction(owner, "Income", "5.00", "House")
        with pytest.raises(AuthorizationError):
            await app.transactions.delete_transaction(viewer, created.transaction.id)

    async def test_delete_reverts_and_records(self, app, owner, shared_wallet):
        """Test deleting a transaction restores the balance."""
        created = await app.transactions.create_transaction(owner, "Income", "20.00", "House")
        await app.transactions.delete_transaction(owner, created.transaction.id)

        assert await _balance(app, "House") == Decimal("100.00")
        feed = await app.chat.list_activity(owner, shared_wallet.id)
        assert feed[0].action == ActivityAction.TRANSACTION_DELETED

    async def test_missing_transaction(self, app, owner):
        """Test unknown ids raise NotFoundError."""
        with pytest.raises(NotFoundError):
            await app.transactions.delete_transaction(owner, "nope")

    async def test_list_transactions_by_visibility(self, app, owner, viewer, stranger, shared_wallet, personal_wallet):
        """Test callers only see transactions on wallets they can view."""
        await app.transactions.create_transaction(owner, "Income", "5.00", "House")
        await app.transactions.create_transaction(owner, "Income", "7.00", "Cash")

        assert len(await app.transactions.list_transactions(owner)) == 2
        assert [t.wallet_from for t in await app.transactions.list_transactions(viewer)] == ["House"]
        assert await app.transactions.list_transactions(stranger) == []


class TestBudgetFlow:
    """Tests for BudgetFlow."""

    async def test_shared_budget_forces_owner_entry(self, app, editor, shared_wallet):
        """Test the creator is listed first as Owner, without duplicates."""
        budget = await app.budgets.create_budget(editor, "Bills", "300.00", plan="Shared", wallet="House")

        first = budget.collaborators[0]
        assert (first.email, first.role) == ("ben@example.com", Role.OWNER)
        assert [c.email for c in budget.collaborators].count("ben@example.com") == 1
        assert budget.left == Decimal("300.00")

    async def test_viewer_cannot_create_shared_budget(self, app, viewer, shared_wallet):
        """Test creating a Shared budget needs edit rights on the wallet."""
        with pytest.raises(AuthorizationError):
            await app.budgets.create_budget(viewer, "Bills", "300.00", plan="Shared", wallet="House")

    async def test_shared_budget_requires_shared_wallet(self, app, owner, personal_wallet):
        """Test a Shared budget cannot point at a Personal wallet."""
        with pytest.raises(ValidationError):
            await app.budgets.create_budget(owner, "Bills", "300.00", plan="Shared", wallet="Cash")

    async def test_viewer_update_rejected_editor_allowed(self, app, editor, viewer, shared_budget):
        """Test budget updates follow the wallet's roles."""
        with pytest.raises(AuthorizationError):
            await app.budgets.update_budget(viewer, shared_budget.id, {"description": "x"})

        updated = await app.budgets.update_budget(editor, shared_budget.id, {"description": "groceries"})
        assert updated.description == "groceries"

    async def test_amount_change_shifts_left(self, app, owner, shared_wallet, shared_budget):
        """Test left moves with the amount and stays within [0, amount]."""
        await app.transactions.create_transaction(owner, "Expense", "30.00", "House", "Food")

        budget = await app.budgets.update_budget(owner, shared_budget.id, {"amount": "50.00"})
        assert budget.left == Decimal("20.00")

        budget = await app.budgets.update_budget(owner, shared_budget.id, {"amount": "20.00"})
        assert budget.left == Decimal("0.00")

        budget = await app.budgets.update_budget(owner, shared_budget.id, {"amount": "120.00"})
        assert budget.left == Decimal("100.00")

    async def test_budget_activity(self, app, owner, shared_wallet, shared_budget):
        """Test creating and deleting a Shared budget shows in the feed."""
        await app.budgets.delete_budget(owner, shared_budget.id)

        feed = await app.chat.list_activity(owner, shared_wallet.id)
        assert [e.action for e in feed[:2]] == [ActivityAction.BUDGET_DELETED, ActivityAction.BUDGET_ADDED]
        assert feed[1].message == "Ana created the Food budget (PHP 100.00)"

    async def test_only_owner_deletes(self, app, editor, shared_budget):
        """Test budget deletion needs Owner."""
        with pytest.raises(AuthorizationError):
            await app.budgets.delete_budget(editor, shared_budget.id)

    async def test_list_budgets(self, app, owner, viewer, stranger, shared_budget):
        """Test shared budgets are visible through the wallet's roles."""
        await app.budgets.create_budget(owner, "Car", "80.00")

        assert len(await app.budgets.list_budgets(owner)) == 2
        assert [b.id for b in await app.budgets.list_budgets(viewer)] == [shared_budget.id]
        assert await app.budgets.list_budgets(stranger) == []


class TestWalletFlow:
    """Tests for WalletFlow and collaborator management."""

    async def test_create_wallet_defaults(self, app, owner):
        """Test new wallets get the default currency and a unique name."""
        wallet = await app.wallets.create_wallet(owner, "Savings", balance="10")
        assert wallet.currency == "PHP"
        assert wallet.balance == Decimal("10.00")

        with pytest.raises(ValidationError):
            await app.wallets.create_wallet(owner, "Savings")

    async def test_update_wallet_allow_list(self, app, owner, editor, viewer, shared_wallet):
        """Test editors may update details but never the balance."""
        updated = await app.wallets.update_wallet(editor, shared_wallet.id, {"description": "Rent and food"})
        assert updated.description == "Rent and food"

        with pytest.raises(ValidationError):
            await app.wallets.update_wallet(owner, shared_wallet.id, {"balance": "1000000.00"})
        with pytest.raises(AuthorizationError):
            await app.wallets.update_wallet(viewer, shared_wallet.id, {"description": "x"})

    async def test_rename_carries_references(self, app, owner, shared_wallet, shared_budget):
        """Test a rename updates transactions and Shared budgets."""
        created = await app.transactions.create_transaction(owner, "Expense", "5.00", "House", "Food")
        await app.wallets.update_wallet(owner, shared_wallet.id, {"name": "Home"})

        tx = await app.repositories.transactions.get(created.transaction.id)
        assert tx.wallet_from == "Home"
        assert (await app.repositories.budgets.get(shared_budget.id)).wallet == "Home"

        await app.transactions.delete_transaction(owner, tx.id)
        assert await _balance(app, "Home") == Decimal("100.00")

    async def test_delete_cascades_budgets_and_transactions(
        self, app, owner, editor, shared_wallet, personal_wallet, shared_budget,
    ):
        """Test deleting a wallet removes every Shared budget and transaction naming it."""
        others = await app.budgets.create_budget(editor, "Bills", "50.00", plan="Shared", wallet="House")
        expense = await app.transactions.create_transaction(editor, "Expense", "5.00", "House", "Food")
        transfer = await app.transactions.create_transaction(owner, "Transfer", "30.00", "House", wallet_to="Cash")
        kept = await app.transactions.create_transaction(owner, "Income", "7.00", "Cash")

        with pytest.raises(AuthorizationError):
            await app.wallets.delete_wallet(editor, shared_wallet.id)

        assert await app.wallets.delete_wallet(owner, shared_wallet.id) == 2
        assert await app.repositories.budgets.get(shared_budget.id) is None
        assert await app.repositories.budgets.get(others.id) is None
        assert await app.repositories.transactions.get(expense.transaction.id) is None
        assert await app.repositories.transactions.get(transfer.transaction.id) is None
        assert await app.repositories.transactions.get(kept.transaction.id) is not None
        assert await _balance(app, "Cash") == Decimal("37.00")
        with pytest.raises(NotFoundError):
            await app.wallets.get_wallet(owner, shared_wallet.id)

    async def test_reused_name_starts_empty(self, app, owner, editor, stranger, shared_wallet, shared_budget):
        """Test a new wallet with a deleted wallet's name inherits none of its records."""
        await app.budgets.create_budget(editor, "Bills", "50.00", plan="Shared", wallet="House")
        old = await app.transactions.create_transaction(owner, "Expense", "20.00", "House", "Food")
        await app.wallets.delete_wallet(owner, shared_wallet.id)

        await app.wallets.create_wallet(stranger, "House", plan="Shared", balance="0")

        assert await app.transactions.list_transactions(stranger) == []
        with pytest.raises(NotFoundError):
            await app.transactions.delete_transaction(stranger, old.transaction.id)

        outcome = await app.transactions.create_transaction(stranger, "Expense", "20.00", "House", "Bills")
        assert outcome.budgets == []
        assert await app.repositories.budgets.find(wallet="House") == []
        assert await _balance(app, "House") == Decimal("-20.00")

    async def test_add_collaborator(self, app, owner, stranger, shared_wallet, shared_budget):
        """Test new members default to Editor and reach the wallet's budgets."""
        wallet = await app.wallets.add_collaborator(
            owner, shared_wallet.id, stranger.uid, stranger.display_name, stranger.email,
        )

        assert wallet.collaborators[-1].role == Role.EDITOR
        budget = await app.repositories.budgets.get(shared_budget.id)
        assert stranger.email in [c.email for c in budget.collaborators]

        feed = await app.chat.list_activity(owner, shared_wallet.id)
        assert feed[0].action == ActivityAction.MEMBER_ADDED
        assert feed[0].message == "Ana added Dee as Editor"

        await app.transactions.create_transaction(stranger, "Income", "1.00", "House")

    async def test_add_collaborator_dedupes(self, app, owner, editor, shared_wallet):
        """Test re-inviting an existing member changes nothing."""
        wallet = await app.wallets.add_collaborator(owner, shared_wallet.id, "u-new", "Ben 2", editor.email)
        assert len(wallet.collaborators) == 2

    async def test_only_owner_manages_members(self, app, editor, stranger, shared_wallet):
        """Test membership changes need Owner."""
        with pytest.raises(AuthorizationError):
            await app.wallets.add_collaborator(editor, shared_wallet.id, stranger.uid, "Dee", stranger.email)

    async def test_personal_wallet_has_no_members(self, app, owner, stranger, personal_wallet):
        """Test collaborators can only join Shared wallets."""
        with pytest.raises(ValidationError):
            await app.wallets.add_collaborator(owner, personal_wallet.id, stranger.uid, "Dee", stranger.email)

    async def test_set_role(self, app, owner, editor, shared_wallet, shared_budget):
        """Test a demoted editor loses write access everywhere."""
        await app.wallets.set_collaborator_role(owner, shared_wallet.id, editor.uid, "Viewer")

        feed = await app.chat.list_activity(owner, shared_wallet.id)
        assert feed[0].action == ActivityAction.SYSTEM_MESSAGE
        assert feed[0].message == "Ana set Ben as Viewer"

        budget = await app.repositories.budgets.get(shared_budget.id)
        assert [c.role for c in budget.collaborators if c.email == editor.email] == [Role.VIEWER]
        with pytest.raises(AuthorizationError):
            await app.transactions.create_transaction(editor, "Income", "1.00", "House")

    async def test_remove_collaborator(self, app, owner, viewer, shared_wallet, shared_budget):
        """Test a removed member loses access and leaves the budgets."""
        await app.wallets.remove_collaborator(owner, shared_wallet.id, viewer.uid)

        feed = await app.chat.list_activity(owner, shared_wallet.id)
        assert feed[0].message == "Ana removed Cy from the wallet"
        budget = await app.repositories.budgets.get(shared_budget.id)
        assert viewer.email not in [c.email for c in budget.collaborators]
        with pytest.raises(AuthorizationError):
            await app.wallets.get_wallet(viewer, shared_wallet.id)
        with pytest.raises(NotFoundError):
            await app.wallets.remove_collaborator(owner, shared_wallet.id, viewer.uid)

    async def test_list_wallets(self, app, owner, viewer, stranger, shared_wallet, personal_wallet):
        """Test callers see owned wallets and wallets they joined."""
        assert {w.name for w in await app.wallets.list_wallets(owner)} == {"House", "Cash"}
        assert [w.name for w in await app.wallets.list_wallets(viewer)] == ["House"]
        assert await app.wallets.list_wallets(stranger) == []


class TestChatFlow:
    """Tests for chat and the activity feed."""

    async def test_any_role_may_chat(self, app, owner, viewer, shared_wallet):
        """Test viewers can post and everyone reads oldest first."""
        await app.chat.post_comment(viewer, shared_wallet.id, "hello")
        await app.chat.post_comment(owner, shared_wallet.id, "hi Cy")

        thread = await app.chat.list_comments(owner, shared_wallet.id)
        assert [c.message for c in thread] == ["hello", "hi Cy"]

        feed = await app.chat.list_activity(viewer)
        assert feed[0].message == 'Cy sent a chat message: "hello"'

    async def test_stranger_cannot_chat(self, app, stranger, shared_wallet):
        """Test chatting needs a role on the wallet."""
        with pytest.raises(AuthorizationError):
            await app.chat.post_comment(stranger, shared_wallet.id, "let me in")
        with pytest.raises(AuthorizationError):
            await app.chat.list_comments(stranger, shared_wallet.id)

    async def test_long_message_preview(self, app, owner, shared_wallet):
        """Test long chat text is shortened in the feed only."""
        text = "word " * 60
        comment = await app.chat.post_comment(owner, shared_wallet.id, text)

        assert comment.message == text.strip()
        feed = await app.chat.list_activity(owner, shared_wallet.id)
        assert feed[0].message.endswith('..."')


class TestCategoriesAndCache:
    """Tests for custom categories and the snapshot cache."""

    async def test_new_category_registered_once(self, app, owner, shared_wallet):
        """Test unknown categories are stored, known ones are not."""
        await app.transactions.create_transaction(owner, "Expense", "5.00", "House", "Pets")
        await app.transactions.create_transaction(owner, "Expense", "5.00", "House", "pets")
        await app.transactions.create_transaction(owner, "Expense", "5.00", "House", "food")

        assert await app.categories.custom_categories(owner.uid) == ["Pets"]
        assert await app.known_categories(owner) == ["Food", "Shopping", "Bills", "Car", "Pets"]

    async def test_duplicate_insert_counts_as_success(self, app, owner, monkeypatch):
        """Test a lost insert race is not an error."""
        await app.repositories.categories.add(CustomCategory(user_id=owner.uid, category="Gym"))

        async def not_known(user_id, category):
            return False

        # Simulate the check passing before a concurrent insert landed
        monkeypatch.setattr(app.categories, "is_known", not_known)
        assert await app.categories.register_if_absent(owner.uid, "Gym") is False
        assert await app.categories.custom_categories(owner.uid) == ["Gym"]

    async def test_snapshot_is_stale_until_refresh(self, app, owner, shared_wallet):
        """Test direct store writes only show after an explicit refresh."""
        first = await app.snapshot(owner)
        assert [w.name for w in first.wallets] == ["House"]

        await app.repositories.wallets.add(
            shared_wallet.model_copy(update={"id": "w-side", "name": "Side"})
        )
        assert await app.snapshot(owner) is first

        refreshed = await app.snapshot(owner, refresh=True)
        assert {w.name for w in refreshed.wallets} == {"House", "Side"}

    async def test_mutation_invalidates_snapshot(self, app, owner, viewer, shared_wallet):
        """Test a committed transaction drops every member's snapshot."""
        await app.snapshot(owner)
        await app.snapshot(viewer)

        await app.transactions.create_transaction(owner, "Income", "5.00", "House")

        assert not app.cache.is_cached(owner.uid)
        assert not app.cache.is_cached(viewer.uid)
        snapshot = await app.snapshot(viewer)
        assert snapshot.wallets[0].balance == Decimal("105.00")
        assert len(snapshot.transactions) == 1


class TestLedgerApp:
    """Tests for wiring and authentication."""

    async def test_authenticate(self, settings, owner):
        """Test tokens resolve to callers and bad tokens are unauthorized."""
        identity = StaticIdentityProvider({"t-ana": owner})
        app = LedgerApp(InMemoryDocumentStore(), identity=identity, settings=settings)

        assert await app.authenticate("t-ana") == owner
        with pytest.raises(AuthorizationError):
            await app.authenticate("forged")
        with pytest.raises(AuthorizationError):
            await app.authenticate("")

    def test_factory_defaults_to_memory(self, monkeypatch):
        """Test the factory builds an in-memory app by default."""
        monkeypatch.setenv("STORAGE_BACKEND", "memory")
        get_settings.cache_clear()
        app = create_app_components()
        get_settings.cache_clear()

        assert isinstance(app.repositories.store, InMemoryDocumentStore)

    def test_factory_survives_invalid_settings(self, monkeypatch):
        """Test a rejected backend setting is reported and memory is used."""
        monkeypatch.setenv("STORAGE_BACKEND", "postgres")
        get_settings.cache_clear()
        status = validate_all_settings()
        app = create_app_components()
        get_settings.cache_clear()

        assert status["app"] is False
        assert isinstance(app.repositories.store, InMemoryDocumentStore)
