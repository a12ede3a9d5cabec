"""
Abstract Document Store Interface

DESIGN DECISION: We define an abstract interface for remote persistence.
This allows us to:
1. Swap Google Sheets for Firestore or a real database later
2. Use in-memory storage for testing and offline use
3. Keep ledger logic decoupled from any transport

The interface is intentionally generic: documents are JSON-ready dicts
addressed by (collection_path, id). The ledger never reads through it;
it only mirrors local state outward.
"""

from abc import ABC, abstractmethod
from typing import Any, Callable


Document = dict[str, Any]
SnapshotCallback = Callable[[list[Document]], None]
Unsubscribe = Callable[[], None]


class DocumentStoreInterface(ABC):
    """
    Abstract interface for a per-collection document store.

    Any storage implementation (Google Sheets, Firestore, etc.)
    must implement these methods.
    """

    @abstractmethod
    async def create(
        self,
        collection_path: str,
        document_id: str,
        document: Document,
    ) -> None:
        """
        Write a new document, replacing any existing one with the same id.

        Args:
            collection_path: e.g. "books/b1/accounts"
            document_id: The entity's id, used as the document key
            document: Full JSON-ready document

        Raises:
            PersistenceError: If the write fails
        """
        pass

    @abstractmethod
    async def update(
        self,
        collection_path: str,
        document_id: str,
        partial_document: Document,
        merge: bool = True,
    ) -> None:
        """
        Update an existing document.

        Args:
            collection_path: Collection holding the document
            document_id: The document key
            partial_document: Fields to write
            merge: Merge into the stored document (False replaces it)

        Raises:
            DocumentNotFoundError: If the document doesn't exist
            PersistenceError: If the write fails
        """
        pass

    @abstractmethod
    async def delete(self, collection_path: str, document_id: str) -> None:
        """
        Delete a document. Deleting a missing document is not an error.

        Raises:
            PersistenceError: If the delete fails
        """
        pass

    @abstractmethod
    async def query(self, collection_path: str) -> list[Document]:
        """
        Read every document in a collection.

        Returns:
            Documents, each including its "id"
        """
        pass

    @abstractmethod
    def subscribe(
        self,
        collection_path: str,
        callback: SnapshotCallback,
    ) -> Unsubscribe:
        """
        Receive a snapshot of the collection whenever it changes.

        Used by read-oriented peripheral code only; the ledger's own
        consistency never depends on it.

        Returns:
            A function that cancels the subscription
        """
        pass


class PersistenceError(Exception):
    """Base exception for remote persistence operations."""
    pass


class DocumentNotFoundError(PersistenceError):
    """Document not found in the remote store."""
    pass


class BackendConnectionError(PersistenceError):
    """Could not connect to the storage backend."""
    pass
