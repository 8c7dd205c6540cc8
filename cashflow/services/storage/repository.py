"""
Typed Repositories

Thin typed wrappers that turn pydantic models into documents and back.
Business logic only ever talks to repositories; the document store
underneath stays swappable.
"""

from typing import Any, Callable, Generic, Optional, Type, TypeVar

from pydantic import BaseModel

from cashflow.models.activity import ActivityEntry, CommentEntry
from cashflow.models.ledger import Budget, CustomCategory, Transaction, Wallet
from cashflow.services.storage.interface import Collection, Document, DocumentStore

ModelT = TypeVar("ModelT", bound=BaseModel)


class Repository(Generic[ModelT]):
    """Collection-scoped access to one model type."""

    def __init__(
        self,
        store: DocumentStore,
        collection: Collection,
        model: Type[ModelT],
    ):
        self._store = store
        self.collection = collection
        self.model = model

    def _load(self, document: Document) -> ModelT:
        return self.model.model_validate(document)

    def _dump(self, record: ModelT) -> Document:
        return record.model_dump()

    async def add(self, record: ModelT) -> ModelT:
        stored = await self._store.insert(self.collection, self._dump(record))
        return self._load(stored)

    async def get(self, record_id: str) -> Optional[ModelT]:
        document = await self._store.find_one(self.collection, {"id": record_id})
        return self._load(document) if document else None

    async def find_one(self, **filters: Any) -> Optional[ModelT]:
        document = await self._store.find_one(self.collection, filters)
        return self._load(document) if document else None

    async def find(
        self,
        sort_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
        **filters: Any,
    ) -> list[ModelT]:
        documents = await self._store.find(
            self.collection,
            filters or None,
            sort_by=sort_by,
            descending=descending,
            limit=limit,
        )
        return [self._load(doc) for doc in documents]

    async def update(
        self,
        record_id: str,
        mutate: Callable[[ModelT], ModelT],
    ) -> Optional[ModelT]:
        """Atomically apply `mutate` to the stored record."""
        document = await self._store.find_one_and_update(
            self.collection,
            {"id": record_id},
            lambda doc: self._dump(mutate(self._load(doc))),
        )
        return self._load(document) if document else None

    async def delete(self, *record_ids: str) -> int:
        return await self._store.delete_many(self.collection, record_ids)

    async def count(self, **filters: Any) -> int:
        return await self._store.count(self.collection, filters or None)


class Repositories:
    """All ledger repositories over one document store."""

    def __init__(self, store: DocumentStore):
        self.store = store
        self.wallets = Repository(store, Collection.WALLETS, Wallet)
        self.budgets = Repository(store, Collection.BUDGETS, Budget)
        self.transactions = Repository(store, Collection.TRANSACTIONS, Transaction)
        self.activities = Repository(store, Collection.ACTIVITIES, ActivityEntry)
        self.comments = Repository(store, Collection.COMMENTS, CommentEntry)
        self.categories = Repository(store, Collection.CUSTOM_CATEGORIES, CustomCategory)

    def transaction(self):
        """Multi-document transaction on the underlying store."""
        return self.store.transaction()
