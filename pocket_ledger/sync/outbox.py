"""
Sync Outbox

Ordered queue of remote writes produced by ledger mutations.

DESIGN DECISION: The ledger changes its in-memory state synchronously and
leaves the remote write here. Nothing is fire-and-forget:
1. Every write is retried with exponential backoff (tenacity)
2. A write that keeps failing is marked FAILED and kept, never dropped
3. Per-document status answers "is this saved yet?"
4. The queue can be journaled to disk so a crash mid-transfer is recoverable

Ordering: writes to the same document are sent one after another in
enqueue order; writes to different documents go out concurrently. A
failed write holds back later writes to the same document until it is
retried, so the remote copy never skips a step.
"""

import asyncio
import json
from pathlib import Path
from typing import Any, Callable, Optional
from uuid import UUID

from tenacity import (
    AsyncRetrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from pocket_ledger.config import SyncSettings, get_settings
from pocket_ledger.log import get_logger
from pocket_ledger.models.ledger import utc_now
from pocket_ledger.models.sync import (
    OutboxEntry,
    SyncOperation,
    SyncReport,
    SyncStatus,
)
from pocket_ledger.services.storage.interface import (
    DocumentNotFoundError,
    DocumentStoreInterface,
    PersistenceError,
)

logger = get_logger(__name__)


FailureCallback = Callable[[OutboxEntry], None]

# Worst status wins when a document has several outstanding entries
_STATUS_RANK = {
    SyncStatus.SYNCED: 0,
    SyncStatus.PENDING: 1,
    SyncStatus.IN_FLIGHT: 2,
    SyncStatus.FAILED: 3,
}


def _is_retryable(error: BaseException) -> bool:
    # Updating a document that isn't there won't succeed on a second try
    return isinstance(error, PersistenceError) and not isinstance(
        error, DocumentNotFoundError
    )


class SyncOutbox:
    """
    Queue of pending remote writes for one gateway.

    Usage:
        outbox = SyncOutbox(gateway, settings.sync)
        outbox.enqueue("books/b1/accounts", "acc-1", SyncOperation.CREATE, doc)
        report = await outbox.flush()
    """

    def __init__(
        self,
        gateway: DocumentStoreInterface,
        settings: Optional[SyncSettings] = None,
        on_failure: Optional[FailureCallback] = None,
        journal_path: Optional[str] = None,
    ):
        self._gateway = gateway
        self._settings = settings or get_settings().sync
        self.on_failure = on_failure
        self._journal_path = journal_path or self._settings.outbox_path
        self._entries: list[OutboxEntry] = []
        self._next_sequence = 0
        self._locks: dict[tuple[str, str], asyncio.Lock] = {}

    @property
    def gateway(self) -> DocumentStoreInterface:
        return self._gateway

    # =========================================================================
    # QUEUE
    # =========================================================================

    def enqueue(
        self,
        collection_path: str,
        document_id: str,
        operation: SyncOperation,
        document: Optional[dict[str, Any]] = None,
        batch_id: Optional[UUID] = None,
    ) -> OutboxEntry:
        """
        Record a remote write. Never touches the gateway.

        Args:
            collection_path: Collection the document lives in
            document_id: The document key
            operation: create / update / delete
            document: JSON-ready body (full for create, changed fields for update)
            batch_id: Shared id of all writes from one ledger operation

        Returns:
            The new PENDING entry
        """
        fields: dict[str, Any] = {
            "sequence": self._next_sequence,
            "collection_path": collection_path,
            "document_id": document_id,
            "operation": operation,
            "document": document or {},
        }
        if batch_id is not None:
            fields["batch_id"] = batch_id
        entry = OutboxEntry(**fields)

        self._next_sequence += 1
        self._entries.append(entry)
        logger.debug("outbox_entry_enqueued", **entry.to_log_dict())
        self._journal()
        return entry

    @property
    def entries(self) -> list[OutboxEntry]:
        """Every entry still held, in enqueue order."""
        return list(self._entries)

    def pending(self) -> list[OutboxEntry]:
        return [e for e in self._entries if e.status == SyncStatus.PENDING]

    def failed(self) -> list[OutboxEntry]:
        return [e for e in self._entries if e.status == SyncStatus.FAILED]

    def status_for(self, document_id: str, collection_path: Optional[str] = None) -> SyncStatus:
        """
        Sync status of one document.

        Documents the outbox has no outstanding entry for are SYNCED.
        """
        status = SyncStatus.SYNCED
        for entry in self._entries:
            if entry.document_id != document_id:
                continue
            if collection_path is not None and entry.collection_path != collection_path:
                continue
            if _STATUS_RANK[entry.status] > _STATUS_RANK[status]:
                status = entry.status
        return status

    def retry_failed(self) -> int:
        """Put FAILED entries back in the queue. Returns how many."""
        count = 0
        for entry in self._entries:
            if entry.status == SyncStatus.FAILED:
                entry.status = SyncStatus.PENDING
                entry.updated_at = utc_now()
                count += 1
        if count:
            logger.info("outbox_failed_requeued", count=count)
            self._journal()
        return count

    def discard_synced(self) -> int:
        """Forget entries that reached the gateway. Returns how many."""
        before = len(self._entries)
        self._entries = [e for e in self._entries if e.status != SyncStatus.SYNCED]
        removed = before - len(self._entries)

        outstanding = {e.key for e in self._entries}
        for key in [k for k in self._locks if k not in outstanding]:
            if not self._locks[key].locked():
                del self._locks[key]

        if removed:
            self._journal()
        return removed

    # =========================================================================
    # FLUSHING
    # =========================================================================

    async def flush(self) -> SyncReport:
        """
        Send every PENDING entry to the gateway.

        Returns:
            SyncReport listing entries that synced and entries that failed
        """
        chains = self._ready_chains()

        report = SyncReport()
        if not chains:
            return report

        logger.info(
            "outbox_flush_started",
            entries=sum(len(chain) for chain in chains.values()),
            documents=len(chains),
        )
        await asyncio.gather(
            *(self._send_chain(chain, report) for chain in chains.values())
        )
        logger.info(
            "outbox_flush_completed",
            synced=len(report.synced),
            failed=len(report.failed),
        )
        self._journal()
        return report

    async def flush_entry(self, entry: OutboxEntry) -> OutboxEntry:
        """
        Send one entry now.

        Earlier PENDING entries for the same document go first so the
        remote copy sees writes in order. Nothing is sent while an earlier
        write to the document is FAILED.

        Raises:
            PersistenceError: If the entry (or one ahead of it) failed
        """
        chain = [
            e for e in self._ready_chains().get(entry.key, [])
            if e.sequence <= entry.sequence
        ]
        report = SyncReport()
        await self._send_chain(chain, report)
        self._journal()

        if entry.status != SyncStatus.SYNCED:
            blocker = self._failed_before(entry)
            failed = report.failed[0] if report.failed else blocker or entry
            raise PersistenceError(
                failed.last_error or f"Write not sent: {entry.collection_path}/{entry.document_id}"
            )
        return entry

    def _ready_chains(self) -> dict[tuple[str, str], list[OutboxEntry]]:
        """
        PENDING entries per document, in sequence order.

        A document's chain stops at its first FAILED entry: later writes
        stay queued until the failed one is retried.
        """
        chains: dict[tuple[str, str], list[OutboxEntry]] = {}
        blocked: set[tuple[str, str]] = set()
        for entry in sorted(self._entries, key=lambda e: e.sequence):
            if entry.key in blocked:
                continue
            if entry.status == SyncStatus.FAILED:
                blocked.add(entry.key)
            elif entry.status == SyncStatus.PENDING:
                chains.setdefault(entry.key, []).append(entry)
        return chains

    def _failed_before(self, entry: OutboxEntry) -> Optional[OutboxEntry]:
        for other in self._entries:
            if (
                other.key == entry.key
                and other.sequence < entry.sequence
                and other.status == SyncStatus.FAILED
            ):
                return other
        return None

    async def _send_chain(self, chain: list[OutboxEntry], report: SyncReport) -> None:
        if not chain:
            return
        lock = self._locks.setdefault(chain[0].key, asyncio.Lock())
        async with lock:
            for entry in chain:
                if entry.status != SyncStatus.PENDING:
                    continue
                # A concurrent flush may have failed an earlier write meanwhile
                if self._failed_before(entry) is not None:
                    return
                await self._send(entry)
                if entry.status == SyncStatus.FAILED:
                    report.failed.append(entry)
                    # Later writes to this document wait for a retry
                    return
                report.synced.append(entry)

    async def _send(self, entry: OutboxEntry) -> None:
        entry.status = SyncStatus.IN_FLIGHT
        entry.updated_at = utc_now()

        retrying = AsyncRetrying(
            stop=stop_after_attempt(self._settings.max_attempts),
            wait=wait_exponential(
                multiplier=self._settings.backoff_multiplier,
                min=self._settings.backoff_min,
                max=self._settings.backoff_max,
            ),
            retry=retry_if_exception(_is_retryable),
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    entry.attempts += 1
                    await self._dispatch(entry)
        except PersistenceError as e:
            self._mark_failed(entry, str(e))
            return
        except Exception as e:
            self._mark_failed(entry, f"{type(e).__name__}: {e}")
            raise

        entry.status = SyncStatus.SYNCED
        entry.last_error = None
        entry.updated_at = utc_now()
        logger.debug("outbox_entry_synced", **entry.to_log_dict())

    async def _dispatch(self, entry: OutboxEntry) -> None:
        if entry.operation == SyncOperation.CREATE:
            await self._gateway.create(
                entry.collection_path, entry.document_id, entry.document
            )
        elif entry.operation == SyncOperation.UPDATE:
            await self._gateway.update(
                entry.collection_path, entry.document_id, entry.document, merge=True
            )
        else:
            await self._gateway.delete(entry.collection_path, entry.document_id)

    def _mark_failed(self, entry: OutboxEntry, error: str) -> None:
        entry.status = SyncStatus.FAILED
        entry.last_error = error
        entry.updated_at = utc_now()
        logger.error("outbox_entry_failed", **entry.to_log_dict())

        if self.on_failure is not None:
            try:
                self.on_failure(entry)
            except Exception as e:
                logger.error(
                    "outbox_failure_callback_failed",
                    entry_id=str(entry.entry_id),
                    error=str(e),
                )

    # =========================================================================
    # JOURNAL
    # =========================================================================

    def save(self, path: Optional[str] = None) -> None:
        """Write every unsynced entry to a JSON journal file."""
        target = Path(path or self._journal_path)
        outstanding = [
            e.model_dump(mode="json")
            for e in self._entries
            if e.status != SyncStatus.SYNCED
        ]
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(json.dumps(outstanding, indent=2), encoding="utf-8")

    @classmethod
    def load(
        cls,
        path: str,
        gateway: DocumentStoreInterface,
        settings: Optional[SyncSettings] = None,
        on_failure: Optional[FailureCallback] = None,
    ) -> "SyncOutbox":
        """
        Rebuild an outbox from a journal file.

        Entries that were in flight when the journal was written are
        queued again. A missing file gives an empty outbox.
        """
        outbox = cls(gateway, settings, on_failure=on_failure, journal_path=path)
        journal = Path(path)
        if not journal.exists():
            return outbox

        for raw in json.loads(journal.read_text(encoding="utf-8")):
            entry = OutboxEntry.model_validate(raw)
            if entry.status == SyncStatus.IN_FLIGHT:
                entry.status = SyncStatus.PENDING
            outbox._entries.append(entry)

        outbox._entries.sort(key=lambda e: e.sequence)
        if outbox._entries:
            outbox._next_sequence = outbox._entries[-1].sequence + 1
        logger.info("outbox_loaded", path=path, entries=len(outbox._entries))
        return outbox

    def _journal(self) -> None:
        if self._journal_path:
            self.save(self._journal_path)
