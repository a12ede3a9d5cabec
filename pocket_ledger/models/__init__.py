"""
Data Models Package

This package contains all Pydantic models used by Pocket Ledger.
All data flowing through the ledger must conform to these schemas.
"""

from pocket_ledger.models.ledger import (
    Account,
    AccountKind,
    Budget,
    BudgetPeriod,
    BudgetProgress,
    Category,
    CategoryType,
    PeriodFrequency,
    RecurrenceFrequency,
    RecurringTransaction,
    Tag,
    TagDraft,
    TagPatch,
    Transaction,
    TransactionDraft,
    TransactionPatch,
    TransactionType,
    is_positive_amount,
    transfer_error,
    utc_now,
)
from pocket_ledger.models.sync import (
    Collection,
    OutboxEntry,
    SyncOperation,
    SyncReport,
    SyncStatus,
    collection_path,
)

__all__ = [
    # Ledger models
    "Account",
    "AccountKind",
    "Budget",
    "BudgetPeriod",
    "BudgetProgress",
    "Category",
    "CategoryType",
    "PeriodFrequency",
    "RecurrenceFrequency",
    "RecurringTransaction",
    "Tag",
    "TagDraft",
    "TagPatch",
    "Transaction",
    "TransactionDraft",
    "TransactionPatch",
    "TransactionType",
    "is_positive_amount",
    "transfer_error",
    "utc_now",
    # Sync models
    "Collection",
    "OutboxEntry",
    "SyncOperation",
    "SyncReport",
    "SyncStatus",
    "collection_path",
]
