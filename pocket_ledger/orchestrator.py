"""
Main Orchestrator for Pocket Ledger

Builds the components that serve one book and wires them together:

    gateway -> outbox -> ledger store -> budgets / recurring / summary

DESIGN DECISION: Construction is explicit. There is no module-level
ledger or gateway; every component receives its collaborators, so tests
and multiple books in one process are just more calls to `create_ledger`.
"""

from typing import Optional

from pydantic import ValidationError as SchemaError

from pocket_ledger.config import Settings, get_settings
from pocket_ledger.ledger import (
    BudgetProgressCalculator,
    LedgerStore,
    RecurringScheduler,
    TagIndex,
)
from pocket_ledger.log import configure_logging, get_logger
from pocket_ledger.models.sync import SyncReport
from pocket_ledger.queries import LedgerSummary
from pocket_ledger.services.storage import (
    DocumentStoreInterface,
    GoogleSheetsClient,
    GoogleSheetsDocumentStore,
    InMemoryDocumentStore,
    PersistenceError,
)
from pocket_ledger.sync import FailureCallback, SyncOutbox

logger = get_logger(__name__)


class LedgerComponents:
    """Everything that serves one book, built by `create_ledger`."""

    def __init__(
        self,
        gateway: DocumentStoreInterface,
        outbox: SyncOutbox,
        store: LedgerStore,
    ):
        self.gateway = gateway
        self.outbox = outbox
        self.store = store
        self.budgets = BudgetProgressCalculator(store)
        self.recurring = RecurringScheduler(store)
        self.summary = LedgerSummary(store)

    @property
    def tags(self) -> TagIndex:
        return self.store.tags

    async def sync(self) -> SyncReport:
        """Push pending writes, then forget the ones that made it."""
        report = await self.outbox.flush()
        self.outbox.discard_synced()
        if not report.ok:
            logger.warning(
                "sync_incomplete",
                failed=len(report.failed),
                documents=sorted({e.document_id for e in report.failed}),
            )
        return report


def _remote_gateway(settings: Settings) -> Optional[DocumentStoreInterface]:
    """Google Sheets gateway, or None when it isn't configured."""
    try:
        sheets_settings = settings.google_sheets
    except SchemaError as e:
        logger.warning("remote_storage_not_configured", error=str(e))
        return None
    try:
        return GoogleSheetsDocumentStore(
            GoogleSheetsClient(sheets_settings),
            poll_interval_seconds=settings.sync.poll_interval_seconds,
        )
    except PersistenceError as e:
        logger.warning("remote_storage_unavailable", error=str(e))
        return None


def create_ledger(
    settings: Optional[Settings] = None,
    gateway: Optional[DocumentStoreInterface] = None,
    use_remote: bool = True,
    on_failure: Optional[FailureCallback] = None,
) -> LedgerComponents:
    """
    Factory function to create the components for one book.

    Args:
        settings: Settings to build from (defaults to get_settings())
        gateway: Document store to sync to. When omitted, Google Sheets is
                 used if configured, otherwise an in-memory store.
        use_remote: Set to False to skip Google Sheets (tests, offline use)
        on_failure: Called with every outbox entry that exhausts its retries

    Returns:
        LedgerComponents for the configured book
    """
    settings = settings or get_settings()
    app_settings = settings.app
    configure_logging(app_settings)

    if gateway is None and use_remote:
        gateway = _remote_gateway(settings)
    if gateway is None:
        gateway = InMemoryDocumentStore()

    sync_settings = settings.sync
    if sync_settings.outbox_path:
        # Pick up writes left over from a previous run
        outbox = SyncOutbox.load(
            sync_settings.outbox_path, gateway, sync_settings, on_failure=on_failure
        )
    else:
        outbox = SyncOutbox(gateway, sync_settings, on_failure=on_failure)

    ledger_settings = settings.ledger
    store = LedgerStore(
        ledger_settings.book_id,
        ledger_settings.user_id,
        outbox,
        default_currency=ledger_settings.default_currency,
        max_transaction_amount=app_settings.max_transaction_amount,
    )

    logger.info(
        "ledger_created",
        book_id=ledger_settings.book_id,
        gateway=type(gateway).__name__,
        pending_writes=len(outbox.pending()),
    )
    return LedgerComponents(gateway, outbox, store)
