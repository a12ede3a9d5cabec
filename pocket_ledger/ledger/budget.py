"""
Budget Progress Calculator

Derives spending-vs-limit figures from the ledger's transactions.
Nothing is cached: every call reads the store, so progress always
reflects the latest edits.

Only EXPENSE transactions count toward a budget. Income and transfers
never do, even when they carry the budget's category.
"""

from decimal import Decimal
from typing import Optional, Union

from pocket_ledger.ledger.errors import ValidationError
from pocket_ledger.ledger.store import LedgerStore
from pocket_ledger.models.ledger import (
    Budget,
    BudgetPeriod,
    BudgetProgress,
    TransactionType,
    is_positive_amount,
)


HUNDRED = Decimal("100")
PERCENT_PLACES = Decimal("0.01")


class BudgetProgressCalculator:
    """
    Usage:
        calculator = BudgetProgressCalculator(store)
        progress = calculator.progress("food", 100, BudgetPeriod.month(2024, 3))
        progress.percentage  # Decimal("75.00")
    """

    def __init__(self, store: LedgerStore):
        self._store = store

    def spent(self, category_id: str, period: BudgetPeriod) -> Decimal:
        """Sum of expenses in a category within a period (inclusive)."""
        transactions = self._store.list_transactions(
            category_id=category_id,
            date_from=period.start,
            date_to=period.end,
        )
        return sum(
            (t.amount for t in transactions if t.type == TransactionType.EXPENSE),
            Decimal("0"),
        )

    def progress(
        self,
        category_id: str,
        budget_amount: Union[Decimal, int, str],
        period: BudgetPeriod,
        budget_id: Optional[str] = None,
    ) -> BudgetProgress:
        """
        Spending against a limit.

        `remaining` goes negative when over budget and `percentage` is not
        capped at 100.

        Raises:
            ValidationError: budget_amount <= 0 or no period given
        """
        if not is_positive_amount(budget_amount):
            raise ValidationError("Budget amount must be greater than zero")
        if period is None:
            raise ValidationError("Budget progress needs an explicit period")

        limit = Decimal(str(budget_amount))
        spent = self.spent(category_id, period)
        percentage = (spent / limit * HUNDRED).quantize(PERCENT_PLACES)

        return BudgetProgress(
            budget_id=budget_id,
            category_id=category_id,
            period=period,
            budget_amount=limit,
            spent=spent,
            remaining=limit - spent,
            percentage=percentage,
        )

    def progress_for(self, budget: Budget) -> BudgetProgress:
        return self.progress(
            budget.category_id,
            budget.amount,
            budget.period,
            budget_id=budget.id,
        )

    def all_progress(self) -> list[BudgetProgress]:
        """Progress of every stored budget."""
        return [self.progress_for(budget) for budget in self._store.list_budgets()]

    def over_budget(self) -> list[BudgetProgress]:
        return [p for p in self.all_progress() if p.is_over_budget]
