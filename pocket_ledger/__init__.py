"""
Pocket Ledger - Source Package

The ledger consistency engine of a personal-finance tracker: accounts,
transactions, budgets and tags for one book, mirrored to a remote
document store.

DESIGN PRINCIPLES:
1. Local state is the source of truth for reads
2. Balances change only through reconciliation
3. Bad input is rejected before anything changes
4. Remote writes never block the user, but are never silent either
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Pocket Ledger Team"
