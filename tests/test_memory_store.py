"""
Tests for the in-memory document store and typed repositories.
"""

import pytest

from cashflow.models.ledger import CustomCategory, Wallet
from cashflow.services.storage import Collection, DuplicateError, StorageError
from cashflow.services.storage.google_sheets import decode_document, encode_document


class TestInMemoryDocumentStore:
    """Tests for InMemoryDocumentStore."""

    async def test_insert_and_find(self, store):
        """Test documents round-trip through insert and find_one."""
        await store.insert(Collection.WALLETS, {"id": "w1", "name": "Cash"})
        assert await store.find_one(Collection.WALLETS, {"name": "Cash"}) == {"id": "w1", "name": "Cash"}
        assert await store.find_one(Collection.WALLETS, {"name": "Bank"}) is None

    async def test_returned_documents_are_copies(self, store):
        """Test callers cannot mutate stored state through results."""
        await store.insert(Collection.WALLETS, {"id": "w1", "tags": ["a"]})
        found = await store.find_one(Collection.WALLETS, {"id": "w1"})
        found["tags"].append("b")
        assert (await store.find_one(Collection.WALLETS, {"id": "w1"}))["tags"] == ["a"]

    async def test_duplicate_id_rejected(self, store):
        """Test inserting an existing id raises DuplicateError."""
        await store.insert(Collection.WALLETS, {"id": "w1"})
        with pytest.raises(DuplicateError):
            await store.insert(Collection.WALLETS, {"id": "w1"})

    async def test_unique_category_index(self, store):
        """Test (user_id, category) is unique for custom categories."""
        await store.insert(Collection.CUSTOM_CATEGORIES, {"id": "c1", "user_id": "u1", "category": "Pets"})
        await store.insert(Collection.CUSTOM_CATEGORIES, {"id": "c2", "user_id": "u2", "category": "Pets"})
        with pytest.raises(DuplicateError):
            await store.insert(Collection.CUSTOM_CATEGORIES, {"id": "c3", "user_id": "u1", "category": "Pets"})

    async def test_sort_ties_keep_insertion_order(self, store):
        """Test equal sort keys fall back to insertion order."""
        for doc_id in ("a", "b", "c"):
            await store.insert(Collection.ACTIVITIES, {"id": doc_id, "created_at": 1})
        ascending = await store.find(Collection.ACTIVITIES, sort_by="created_at")
        descending = await store.find(Collection.ACTIVITIES, sort_by="created_at", descending=True, limit=2)
        assert [d["id"] for d in ascending] == ["a", "b", "c"]
        assert [d["id"] for d in descending] == ["c", "b"]

    async def test_find_one_and_update(self, store):
        """Test the mutation callable sees and replaces the document."""
        await store.insert(Collection.WALLETS, {"id": "w1", "n": 1})
        updated = await store.find_one_and_update(
            Collection.WALLETS,
            {"id": "w1"},
            lambda doc: {**doc, "n": doc["n"] + 1},
        )
        assert updated["n"] == 2
        assert await store.find_one_and_update(Collection.WALLETS, {"id": "zz"}, lambda d: d) is None

    async def test_update_cannot_change_id(self, store):
        """Test a mutation that rewrites the id is refused."""
        await store.insert(Collection.WALLETS, {"id": "w1"})
        with pytest.raises(StorageError):
            await store.find_one_and_update(Collection.WALLETS, {"id": "w1"}, lambda d: {"id": "w2"})

    async def test_delete_many_is_delete_if_present(self, store):
        """Test missing ids are skipped, not errors."""
        await store.insert(Collection.WALLETS, {"id": "w1"})
        assert await store.delete_many(Collection.WALLETS, ["w1", "w1", "missing"]) == 1
        assert await store.count(Collection.WALLETS) == 0

    async def test_transaction_rolls_back(self, store):
        """Test every write inside a failed block is undone."""
        await store.insert(Collection.WALLETS, {"id": "w1", "n": 1})

        with pytest.raises(RuntimeError):
            async with store.transaction():
                await store.find_one_and_update(Collection.WALLETS, {"id": "w1"}, lambda d: {**d, "n": 5})
                await store.insert(Collection.WALLETS, {"id": "w2"})
                await store.delete_many(Collection.WALLETS, ["w1"])
                raise RuntimeError("boom")

        assert await store.find(Collection.WALLETS) == [{"id": "w1", "n": 1}]

    async def test_nested_transaction_joins_outer(self, store):
        """Test an inner block's writes are undone with the outer block."""
        with pytest.raises(RuntimeError):
            async with store.transaction():
                async with store.transaction():
                    await store.insert(Collection.WALLETS, {"id": "w1"})
                raise RuntimeError("boom")

        assert await store.count(Collection.WALLETS) == 0


class TestRepositories:
    """Tests for the typed repository layer."""

    async def test_models_round_trip(self, repos):
        """Test a wallet comes back as an equal model."""
        wallet = await repos.wallets.add(Wallet(owner_user_id="u1", name="Cash", balance="12.34"))
        assert await repos.wallets.get(wallet.id) == wallet

    async def test_update_applies_mutation(self, repos):
        """Test update runs the mutation against the stored model."""
        wallet = await repos.wallets.add(Wallet(owner_user_id="u1", name="Cash"))
        updated = await repos.wallets.update(wallet.id, lambda w: w.model_copy(update={"name": "Pocket"}))
        assert updated.name == "Pocket"
        assert await repos.wallets.find_one(name="Cash") is None

    async def test_duplicate_category_raises(self, repos):
        """Test the unique index applies through the repository."""
        await repos.categories.add(CustomCategory(user_id="u1", category="Pets"))
        with pytest.raises(DuplicateError):
            await repos.categories.add(CustomCategory(user_id="u1", category="Pets"))


class TestSheetsEncoding:
    """Tests for the Google Sheets document column codec."""

    def test_timestamps_revived(self):
        """Test *_at fields come back as datetimes and amounts as strings."""
        wallet = Wallet(owner_user_id="u1", name="Cash", balance="5")
        decoded = decode_document(encode_document(wallet.model_dump()))
        assert decoded["created_at"] == wallet.created_at
        assert decoded["balance"] == "5.00"
        assert Wallet.model_validate(decoded) == wallet
