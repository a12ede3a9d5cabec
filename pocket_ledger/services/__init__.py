"""Services package."""

from pocket_ledger.services.storage import (
    BackendConnectionError,
    DocumentNotFoundError,
    DocumentStoreInterface,
    GoogleSheetsClient,
    GoogleSheetsDocumentStore,
    InMemoryDocumentStore,
    PersistenceError,
)

__all__ = [
    # Storage services
    "BackendConnectionError",
    "DocumentNotFoundError",
    "DocumentStoreInterface",
    "GoogleSheetsClient",
    "GoogleSheetsDocumentStore",
    "InMemoryDocumentStore",
    "PersistenceError",
]
