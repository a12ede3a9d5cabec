"""Read-only query package."""

from pocket_ledger.queries.summary import LedgerSummary

__all__ = ["LedgerSummary"]
