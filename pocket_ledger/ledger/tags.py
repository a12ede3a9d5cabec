"""
Tag Index

Tags scoped to one book. Unlike the rest of the ledger, tag writes are
flushed to the gateway immediately and the caller awaits them.

DESIGN DECISION: Tag mutations are optimistic. The local index changes
first; if the remote write then fails, the caller gets a PersistenceError
but the local change stays and the outbox keeps the write as FAILED.
There is no rollback.
"""

import time
from typing import Any, Optional, Union

from pocket_ledger.ledger.errors import (
    ConflictError,
    NotFoundError,
    ValidationError,
    coerce,
)
from pocket_ledger.log import get_logger
from pocket_ledger.models.ledger import Tag, TagDraft, TagPatch, utc_now
from pocket_ledger.models.sync import (
    Collection,
    OutboxEntry,
    SyncOperation,
    SyncStatus,
    collection_path,
)
from pocket_ledger.services.storage.interface import (
    DocumentStoreInterface,
    PersistenceError,
)
from pocket_ledger.sync.outbox import SyncOutbox

logger = get_logger(__name__)


class TagIndex:
    """
    CRUD over the tags of one book.

    Usage:
        tag = await index.create(TagDraft(name="groceries"))
        await index.update(tag.id, TagPatch(color="#00ff00"))
    """

    def __init__(self, book_id: str, user_id: str, outbox: SyncOutbox):
        self.book_id = book_id
        self.user_id = user_id
        self._outbox = outbox
        self._path = collection_path(book_id, Collection.TAGS)
        self._tags: dict[str, Tag] = {}

    def get(self, tag_id: str) -> Optional[Tag]:
        tag = self._tags.get(tag_id)
        return tag.model_copy(deep=True) if tag else None

    async def create(self, draft: Union[TagDraft, dict[str, Any]]) -> Tag:
        """
        Add a tag and write it to the gateway.

        Raises:
            ValidationError: Blank name
            ConflictError: A tag with this id already exists
            PersistenceError: The remote write failed (local tag is kept)
        """
        draft = coerce(TagDraft, draft)
        if not draft.name:
            raise ValidationError("Tag name cannot be blank")

        tag_id = draft.id or self._generate_id()
        if tag_id in self._tags:
            raise ConflictError(f"Tag already exists: {tag_id}")

        tag = coerce(Tag, {
            "id": tag_id,
            "user_id": self.user_id,
            "book_id": self.book_id,
            "name": draft.name,
            "color": draft.color,
        })
        self._tags[tag_id] = tag
        logger.info("tag_created", tag_id=tag_id, book_id=self.book_id)

        entry = self._outbox.enqueue(
            self._path, tag_id, SyncOperation.CREATE, tag.model_dump(mode="json")
        )
        await self._push(entry)
        return tag.model_copy(deep=True)

    async def update(self, tag_id: str, patch: Union[TagPatch, dict[str, Any]]) -> Tag:
        """
        Rename or recolor a tag.

        Raises:
            NotFoundError: Unknown tag id
            ValidationError: Blank name
            PersistenceError: The remote write failed (local change is kept)
        """
        current = self._tags.get(tag_id)
        if current is None:
            raise NotFoundError(f"Tag not found: {tag_id}")

        patch = coerce(TagPatch, patch)
        if patch.name is not None and not patch.name:
            raise ValidationError("Tag name cannot be blank")

        changes = patch.model_dump(exclude_unset=True, exclude_none=True)
        updated = current.model_copy(update={**changes, "updated_at": utc_now()})
        self._tags[tag_id] = updated
        logger.info("tag_updated", tag_id=tag_id, fields=sorted(changes))

        entry = self._outbox.enqueue(
            self._path,
            tag_id,
            SyncOperation.UPDATE,
            updated.model_dump(mode="json", include=set(changes) | {"updated_at"}),
        )
        await self._push(entry)
        return updated.model_copy(deep=True)

    async def delete(self, tag_id: str) -> Tag:
        """
        Remove a tag.

        Transactions keep any tag ids they carry; tags are labels only.

        Raises:
            NotFoundError: Unknown tag id
            PersistenceError: The remote delete failed (tag stays removed locally)
        """
        removed = self._tags.pop(tag_id, None)
        if removed is None:
            raise NotFoundError(f"Tag not found: {tag_id}")
        logger.info("tag_deleted", tag_id=tag_id)

        entry = self._outbox.enqueue(self._path, tag_id, SyncOperation.DELETE)
        await self._push(entry)
        return removed

    async def refresh(self, gateway: Optional[DocumentStoreInterface] = None) -> list[Tag]:
        """
        Reload the book's tags from the gateway.

        Tags with unsaved local changes keep their local version.
        """
        gateway = gateway or self._outbox.gateway
        documents = await gateway.query(self._path)

        loaded: dict[str, Tag] = {}
        for document in documents:
            document.setdefault("book_id", self.book_id)
            document.setdefault("user_id", self.user_id)
            try:
                tag = coerce(Tag, document)
            except ValidationError as e:
                logger.warning("tag_document_skipped", document_id=document.get("id"), error=str(e))
                continue
            loaded[tag.id] = tag

        for tag_id, tag in self._tags.items():
            if self._outbox.status_for(tag_id, self._path) != SyncStatus.SYNCED:
                loaded[tag_id] = tag
        unsaved_deletes = {
            e.document_id for e in self._outbox.entries
            if e.collection_path == self._path
            and e.operation == SyncOperation.DELETE
            and e.status != SyncStatus.SYNCED
        }
        for tag_id in unsaved_deletes:
            loaded.pop(tag_id, None)

        self._tags = loaded
        logger.info("tags_refreshed", book_id=self.book_id, count=len(loaded))
        return self.list()

    async def _push(self, entry: OutboxEntry) -> None:
        try:
            await self._outbox.flush_entry(entry)
        except PersistenceError as e:
            logger.warning(
                "tag_sync_failed",
                tag_id=entry.document_id,
                operation=entry.operation.value,
                error=str(e),
            )
            raise

    def _generate_id(self) -> str:
        millis = int(time.time() * 1000)
        while f"tag-{millis}" in self._tags:
            millis += 1
        return f"tag-{millis}"

    # Defined last: the name shadows the builtin in the class body
    def list(self) -> list[Tag]:
        return [tag.model_copy(deep=True) for tag in self._tags.values()]
