"""
In-Memory Document Store

Used by the test-suite and for local development.

Every operation completes without yielding to the event loop, so each
single-document read-modify-write is atomic under asyncio. Writes made
inside `transaction()` are journaled and undone if the block raises.
"""

import copy
from contextlib import asynccontextmanager
from contextvars import ContextVar
from itertools import count
from typing import Any, AsyncIterator, Iterable, Optional

from cashflow.services.storage.interface import (
    UNIQUE_KEYS,
    Collection,
    Document,
    DocumentStore,
    DuplicateError,
    Mutation,
    StorageError,
    matches,
)


# (collection, id) -> (seq, document) before the first write, or None if
# the document did not exist yet
Journal = dict[tuple[Collection, str], Optional[tuple[int, Document]]]


class InMemoryDocumentStore(DocumentStore):
    """Dict-backed implementation of the document store."""

    def __init__(self):
        self._data: dict[Collection, dict[str, tuple[int, Document]]] = {
            collection: {} for collection in Collection
        }
        self._seq = count()
        self._journal: ContextVar[Optional[Journal]] = ContextVar(
            f"journal_{id(self)}", default=None
        )

    def _remember(self, collection: Collection, doc_id: str) -> None:
        journal = self._journal.get()
        if journal is None or (collection, doc_id) in journal:
            return
        existing = self._data[collection].get(doc_id)
        journal[(collection, doc_id)] = copy.deepcopy(existing)

    def _check_unique(self, collection: Collection, document: Document) -> None:
        keys = UNIQUE_KEYS.get(collection)
        if not keys:
            return
        wanted = tuple(document.get(k) for k in keys)
        for _, existing in self._data[collection].values():
            if tuple(existing.get(k) for k in keys) == wanted:
                raise DuplicateError(
                    f"Duplicate key in {collection.value}: "
                    + ", ".join(f"{k}={v!r}" for k, v in zip(keys, wanted))
                )

    async def insert(self, collection: Collection, document: Document) -> Document:
        doc_id = document.get("id")
        if not doc_id:
            raise StorageError("Documents must carry an 'id'")
        if doc_id in self._data[collection]:
            raise DuplicateError(f"Duplicate id in {collection.value}: {doc_id}")
        self._check_unique(collection, document)

        self._remember(collection, doc_id)
        stored = copy.deepcopy(document)
        self._data[collection][doc_id] = (next(self._seq), stored)
        return copy.deepcopy(stored)

    async def find(
        self,
        collection: Collection,
        filters: Optional[dict[str, Any]] = None,
        sort_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> list[Document]:
        rows = [
            (seq, doc)
            for seq, doc in self._data[collection].values()
            if matches(doc, filters)
        ]
        if sort_by:
            rows.sort(key=lambda row: (row[1].get(sort_by), row[0]), reverse=descending)
        else:
            rows.sort(key=lambda row: row[0])

        docs = [copy.deepcopy(doc) for _, doc in rows]
        if limit is not None:
            docs = docs[:limit]
        return docs

    async def find_one(
        self,
        collection: Collection,
        filters: dict[str, Any],
    ) -> Optional[Document]:
        found = await self.find(collection, filters, limit=1)
        return found[0] if found else None

    async def find_one_and_update(
        self,
        collection: Collection,
        filters: dict[str, Any],
        mutate: Mutation,
    ) -> Optional[Document]:
        for doc_id, (seq, doc) in self._data[collection].items():
            if not matches(doc, filters):
                continue
            updated = mutate(copy.deepcopy(doc))
            if updated.get("id") != doc_id:
                raise StorageError("A document's id cannot be changed")
            self._remember(collection, doc_id)
            self._data[collection][doc_id] = (seq, copy.deepcopy(updated))
            return copy.deepcopy(updated)
        return None

    async def delete_many(self, collection: Collection, ids: Iterable[str]) -> int:
        deleted = 0
        for doc_id in set(ids):
            if doc_id not in self._data[collection]:
                continue
            self._remember(collection, doc_id)
            del self._data[collection][doc_id]
            deleted += 1
        return deleted

    async def count(
        self,
        collection: Collection,
        filters: Optional[dict[str, Any]] = None,
    ) -> int:
        return sum(1 for _, doc in self._data[collection].values() if matches(doc, filters))

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        if self._journal.get() is not None:
            # Nested blocks join the outer transaction
            yield
            return

        journal: Journal = {}
        token = self._journal.set(journal)
        try:
            yield
        except BaseException:
            self._rollback(journal)
            raise
        finally:
            self._journal.reset(token)

    def _rollback(self, journal: Journal) -> None:
        for (collection, doc_id), previous in journal.items():
            if previous is None:
                self._data[collection].pop(doc_id, None)
            else:
                self._data[collection][doc_id] = previous
