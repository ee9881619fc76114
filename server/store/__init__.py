"""
Document store layer.

Provides the reactive document store the game runs on, with an in-memory
backend and a SQLite backend.
"""

from server.config import settings
from server.store.base import (
    DocumentNotFoundError,
    DocumentStore,
    QuerySnapshot,
    Snapshot,
    StaleRevisionError,
    StoreError,
    Subscription,
    TransactionConflictError,
)
from server.store.memory import InMemoryDocumentStore
from server.store.sqlite import Database, SqliteDocumentStore
from server.store.transaction import DELETE_DOCUMENT, TransactionResult, run_transaction


def create_store(backend: str | None = None, db_path: str | None = None) -> DocumentStore:
    """Build the store named by STORE_BACKEND ("memory" or "sqlite")."""
    backend = (backend or settings.STORE_BACKEND).lower()
    if backend == "memory":
        return InMemoryDocumentStore()
    if backend == "sqlite":
        return SqliteDocumentStore(Database(db_path))
    raise ValueError(f"Unknown store backend: {backend}")


__all__ = [
    "DELETE_DOCUMENT",
    "Database",
    "DocumentNotFoundError",
    "DocumentStore",
    "InMemoryDocumentStore",
    "QuerySnapshot",
    "Snapshot",
    "SqliteDocumentStore",
    "StaleRevisionError",
    "StoreError",
    "Subscription",
    "TransactionConflictError",
    "TransactionResult",
    "create_store",
    "run_transaction",
]
