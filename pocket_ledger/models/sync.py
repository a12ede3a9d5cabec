"""
Sync Models for Pocket Ledger

Every local mutation leaves behind a record of the remote write it needs.
This provides:
1. Immediate local responsiveness even when the network is down
2. Visible "not yet saved" state instead of silent divergence
3. Ordered, retryable remote writes
4. Recovery after a crash mid-write (entries can be journaled)

DESIGN DECISION: Writes that belong to one ledger operation (e.g. a transfer
touching two accounts) share a batch_id, so they can be reasoned about as one
logical transaction even though the remote store has no multi-document commit.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from pocket_ledger.models.ledger import utc_now


class Collection(str, Enum):
    """Document collections kept per book."""
    ACCOUNTS = "accounts"
    TRANSACTIONS = "transactions"
    BUDGETS = "budgets"
    CATEGORIES = "categories"
    TAGS = "tags"
    RECURRING_TRANSACTIONS = "recurring_transactions"


def collection_path(book_id: str, collection: Collection) -> str:
    """Remote path of a collection, e.g. `books/b1/accounts`."""
    return f"books/{book_id}/{collection.value}"


class SyncOperation(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class SyncStatus(str, Enum):
    """
    Remote state of one document, as far as this process knows.

    SYNCED is also reported for documents the outbox never saw.
    """
    SYNCED = "synced"
    PENDING = "pending"        # Waiting to be sent
    IN_FLIGHT = "in_flight"    # Gateway call issued, not finished
    FAILED = "failed"          # Retries exhausted, needs attention


class OutboxEntry(BaseModel):
    """
    One pending remote write.

    `document` is JSON-ready (Decimals as strings, dates as ISO text):
    the full document for CREATE, the changed fields for UPDATE,
    empty for DELETE.
    """

    entry_id: UUID = Field(default_factory=uuid4)
    sequence: int = Field(
        default=0,
        ge=0,
        description="Enqueue order within the outbox"
    )
    batch_id: UUID = Field(
        default_factory=uuid4,
        description="Shared by all writes of one ledger operation"
    )
    collection_path: str = Field(..., min_length=1)
    document_id: str = Field(..., min_length=1)
    operation: SyncOperation
    document: dict[str, Any] = Field(default_factory=dict)

    status: SyncStatus = SyncStatus.PENDING
    attempts: int = Field(default=0, ge=0)
    last_error: Optional[str] = None

    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @property
    def key(self) -> tuple[str, str]:
        """Identity of the remote document this entry writes."""
        return (self.collection_path, self.document_id)

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "entry_id": str(self.entry_id),
            "batch_id": str(self.batch_id),
            "sequence": self.sequence,
            "collection_path": self.collection_path,
            "document_id": self.document_id,
            "operation": self.operation.value,
            "status": self.status.value,
            "attempts": self.attempts,
            "last_error": self.last_error,
        }


class SyncReport(BaseModel):
    """Outcome of one outbox flush."""

    synced: list[OutboxEntry] = Field(default_factory=list)
    failed: list[OutboxEntry] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed
