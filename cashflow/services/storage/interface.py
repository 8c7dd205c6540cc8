"""
Abstract Document Store Interface

DESIGN DECISION: We define an abstract interface for storage operations.
This allows us to:
1. Swap Google Sheets for a real document database later
2. Use in-memory storage for testing
3. Keep the ledger engine decoupled from storage implementation

The interface is intentionally small: it is exactly the set of operations
the ledger needs from a document store, nothing more.

Documents are plain dicts keyed by "id". Filters are equality matches on
top-level fields.
"""

from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, AsyncContextManager, Callable, Iterable, Optional


class Collection(str, Enum):
    """Per-entity document collections."""
    WALLETS = "wallets"
    BUDGETS = "budgets"
    TRANSACTIONS = "transactions"
    ACTIVITIES = "activities"
    COMMENTS = "comments"
    CUSTOM_CATEGORIES = "custom_categories"


# Unique indexes; inserting a second document with the same key values
# raises DuplicateError.
UNIQUE_KEYS: dict[Collection, tuple[str, ...]] = {
    Collection.CUSTOM_CATEGORIES: ("user_id", "category"),
}


Document = dict[str, Any]
Mutation = Callable[[Document], Document]


def matches(document: Document, filters: Optional[dict[str, Any]]) -> bool:
    """Check a document against equality filters."""
    if not filters:
        return True
    return all(document.get(key) == value for key, value in filters.items())


class DocumentStore(ABC):
    """
    Abstract interface for document storage.

    Any storage implementation must implement these methods.
    """

    @abstractmethod
    async def insert(self, collection: Collection, document: Document) -> Document:
        """
        Insert a new document.

        Returns:
            The stored document

        Raises:
            DuplicateError: If a unique key is already taken
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    async def find(
        self,
        collection: Collection,
        filters: Optional[dict[str, Any]] = None,
        sort_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> list[Document]:
        """
        Find documents matching the filters.

        Ties on `sort_by` keep insertion order.
        """
        pass

    @abstractmethod
    async def find_one(
        self,
        collection: Collection,
        filters: dict[str, Any],
    ) -> Optional[Document]:
        """Return the first matching document, or None."""
        pass

    @abstractmethod
    async def find_one_and_update(
        self,
        collection: Collection,
        filters: dict[str, Any],
        mutate: Mutation,
    ) -> Optional[Document]:
        """
        Atomically read, mutate and write back one document.

        Args:
            mutate: Receives a copy of the current document and returns
                    the replacement

        Returns:
            The updated document, or None if nothing matched
        """
        pass

    @abstractmethod
    async def delete_many(self, collection: Collection, ids: Iterable[str]) -> int:
        """
        Delete documents by id.

        Ids that are already gone are ignored.

        Returns:
            Number of documents actually deleted
        """
        pass

    @abstractmethod
    async def count(
        self,
        collection: Collection,
        filters: Optional[dict[str, Any]] = None,
    ) -> int:
        """Count documents matching the filters."""
        pass

    @abstractmethod
    def transaction(self) -> AsyncContextManager[None]:
        """
        Group several document writes.

        Backends with multi-document transactions roll every write in the
        block back when it raises. Backends without them run the block
        as-is (last write wins).
        """
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class DuplicateError(StorageError):
    """Attempted to insert a document whose unique key already exists."""
    pass


class ConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass
