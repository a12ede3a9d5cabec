"""
Ledger Package

The consistency engine: balance reconciliation, the ledger store and
the read/write components built on it.
"""

from pocket_ledger.ledger.errors import (
    ConflictError,
    LedgerError,
    NotFoundError,
    ValidationError,
)
from pocket_ledger.ledger import reconciler
from pocket_ledger.ledger.tags import TagIndex
from pocket_ledger.ledger.store import LedgerStore
from pocket_ledger.ledger.budget import BudgetProgressCalculator
from pocket_ledger.ledger.recurring import RecurringScheduler

__all__ = [
    # Errors
    "ConflictError",
    "LedgerError",
    "NotFoundError",
    "ValidationError",
    # Components
    "BudgetProgressCalculator",
    "LedgerStore",
    "RecurringScheduler",
    "TagIndex",
    "reconciler",
]
