"""
Storage Services Package

Provides the abstract document store interface and its implementations.
The in-memory store serves tests and offline use; Google Sheets is the
remote backend, but designed to be swappable.
"""

from pocket_ledger.services.storage.interface import (
    BackendConnectionError,
    Document,
    DocumentNotFoundError,
    DocumentStoreInterface,
    PersistenceError,
)
from pocket_ledger.services.storage.memory import InMemoryDocumentStore
from pocket_ledger.services.storage.google_sheets import (
    GoogleSheetsClient,
    GoogleSheetsDocumentStore,
)

__all__ = [
    # Interface
    "Document",
    "DocumentStoreInterface",
    # Exceptions
    "BackendConnectionError",
    "DocumentNotFoundError",
    "PersistenceError",
    # Implementations
    "GoogleSheetsClient",
    "GoogleSheetsDocumentStore",
    "InMemoryDocumentStore",
]
