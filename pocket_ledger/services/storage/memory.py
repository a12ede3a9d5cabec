"""
In-Memory Document Store

Dict-backed implementation of the document store interface. Used for
tests, demos and running fully offline. Subscribers are notified
synchronously after every change to their collection.
"""

import copy
from collections import defaultdict

from pocket_ledger.log import get_logger
from pocket_ledger.services.storage.interface import (
    Document,
    DocumentNotFoundError,
    DocumentStoreInterface,
    SnapshotCallback,
    Unsubscribe,
)

logger = get_logger(__name__)


class InMemoryDocumentStore(DocumentStoreInterface):
    """
    Document store that lives in process memory.

    Stored documents are deep copies; callers can't mutate them
    behind the store's back.
    """

    def __init__(self):
        self._collections: dict[str, dict[str, Document]] = defaultdict(dict)
        self._subscribers: dict[str, list[SnapshotCallback]] = defaultdict(list)

    def snapshot(self, collection_path: str) -> dict[str, Document]:
        """Copy of a collection keyed by document id."""
        return copy.deepcopy(dict(self._collections.get(collection_path, {})))

    async def create(
        self,
        collection_path: str,
        document_id: str,
        document: Document,
    ) -> None:
        stored = copy.deepcopy(document)
        stored["id"] = document_id
        self._collections[collection_path][document_id] = stored
        self._notify(collection_path)

    async def update(
        self,
        collection_path: str,
        document_id: str,
        partial_document: Document,
        merge: bool = True,
    ) -> None:
        collection = self._collections[collection_path]
        if document_id not in collection:
            raise DocumentNotFoundError(
                f"Document not found: {collection_path}/{document_id}"
            )
        if merge:
            collection[document_id].update(copy.deepcopy(partial_document))
        else:
            replaced = copy.deepcopy(partial_document)
            replaced["id"] = document_id
            collection[document_id] = replaced
        self._notify(collection_path)

    async def delete(self, collection_path: str, document_id: str) -> None:
        if self._collections[collection_path].pop(document_id, None) is not None:
            self._notify(collection_path)

    async def query(self, collection_path: str) -> list[Document]:
        return list(self.snapshot(collection_path).values())

    def subscribe(
        self,
        collection_path: str,
        callback: SnapshotCallback,
    ) -> Unsubscribe:
        self._subscribers[collection_path].append(callback)
        callback(list(self.snapshot(collection_path).values()))

        def unsubscribe() -> None:
            if callback in self._subscribers[collection_path]:
                self._subscribers[collection_path].remove(callback)

        return unsubscribe

    def _notify(self, collection_path: str) -> None:
        documents = list(self.snapshot(collection_path).values())
        for callback in list(self._subscribers.get(collection_path, [])):
            try:
                callback(documents)
            except Exception as e:
                # A broken subscriber must not fail the write
                logger.error(
                    "subscriber_failed",
                    collection_path=collection_path,
                    error=str(e),
                )
