"""
Storage Services Package

Provides the abstract document store, typed repositories and the
concrete backends (in-memory and Google Sheets).
"""

from cashflow.services.storage.interface import (
    Collection,
    ConnectionError,
    DocumentStore,
    DuplicateError,
    StorageError,
)
from cashflow.services.storage.memory import InMemoryDocumentStore
from cashflow.services.storage.repository import Repositories, Repository

__all__ = [
    # Interface
    "Collection",
    "DocumentStore",
    # Exceptions
    "ConnectionError",
    "DuplicateError",
    "StorageError",
    # Implementations
    "InMemoryDocumentStore",
    "Repositories",
    "Repository",
]
