"""
Ledger Summary

Read-only aggregates over a ledger store, the figures a dashboard shows:
net worth, income/expense totals, a month-by-month trend and spending by
category.

All amounts are Decimal. Transfers move money between the user's own
accounts, so they never count as income or expense.
"""

from collections import defaultdict
from datetime import date
from decimal import Decimal
from typing import Optional

from dateutil.relativedelta import relativedelta

from pocket_ledger.ledger.store import LedgerStore
from pocket_ledger.models.ledger import (
    AccountKind,
    BudgetPeriod,
    PeriodFrequency,
    TransactionType,
)


ZERO = Decimal("0")


class LedgerSummary:
    """Aggregates computed on demand from the store's current state."""

    def __init__(self, store: LedgerStore):
        self._store = store

    def total_balance(self) -> Decimal:
        """Asset balances minus liability balances."""
        total = ZERO
        for account in self._store.list_accounts():
            if account.kind == AccountKind.LIABILITY:
                total -= account.balance
            else:
                total += account.balance
        return total

    def total_income(self, period: Optional[BudgetPeriod] = None) -> Decimal:
        return self._total(TransactionType.INCOME, period)

    def total_expenses(self, period: Optional[BudgetPeriod] = None) -> Decimal:
        return self._total(TransactionType.EXPENSE, period)

    def monthly_totals(self, months: int = 6, today: Optional[date] = None) -> list[dict]:
        """
        Income and expenses for the last `months` calendar months.

        Returns:
            Oldest month first, e.g.
            [{"month": "2024-01", "income": Decimal(...), "expenses": Decimal(...)}, ...]
        """
        if months < 1:
            return []
        today = today or date.today()
        current = BudgetPeriod.containing(today, PeriodFrequency.MONTHLY)

        totals = []
        for offset in range(months - 1, -1, -1):
            start = current.start - relativedelta(months=offset)
            period = BudgetPeriod.month(start.year, start.month)
            totals.append({
                "month": start.strftime("%Y-%m"),
                "income": self.total_income(period),
                "expenses": self.total_expenses(period),
            })
        return totals

    def category_spending(self, period: Optional[BudgetPeriod] = None) -> dict[str, Decimal]:
        """
        Expense totals per category, largest first.

        Uncategorized expenses are grouped under "uncategorized".
        """
        spending: dict[str, Decimal] = defaultdict(lambda: ZERO)
        for transaction in self._transactions(period):
            if transaction.type == TransactionType.EXPENSE:
                spending[transaction.category_id or "uncategorized"] += transaction.amount
        return dict(sorted(spending.items(), key=lambda item: item[1], reverse=True))

    def _total(self, transaction_type: TransactionType, period: Optional[BudgetPeriod]) -> Decimal:
        return sum(
            (t.amount for t in self._transactions(period) if t.type == transaction_type),
            ZERO,
        )

    def _transactions(self, period: Optional[BudgetPeriod]):
        if period is None:
            return self._store.list_transactions()
        return self._store.list_transactions(date_from=period.start, date_to=period.end)
