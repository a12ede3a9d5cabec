"""
Core Data Models for Pocket Ledger

These models define the schemas for every entity the ledger owns.
They are designed to:
1. Enforce type safety at runtime
2. Provide clear validation error messages
3. Be serializable for remote storage and logging
4. Keep money exact (Decimal, never float)

DESIGN DECISION: Drafts are shape-checked only. Business rules (positive
amounts, transfer references) live in the shared predicates below so the
Ledger Store can reject a draft with a clear reason BEFORE touching state.
Committed entities re-check the same predicates as a last line of defense.
"""

import datetime as dt
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, ClassVar, Optional

from dateutil.relativedelta import relativedelta
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)


def utc_now() -> datetime:
    """Timezone-aware current time used for all entity timestamps."""
    return datetime.now(timezone.utc)


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class AccountKind(str, Enum):
    """
    Kinds of balance-holding accounts.

    Liabilities (credit cards, loans) hold a balance like any other account;
    only summaries treat them differently.
    """
    ASSET = "asset"
    LIABILITY = "liability"


class TransactionType(str, Enum):
    """How a transaction moves money."""
    INCOME = "income"
    EXPENSE = "expense"
    TRANSFER = "transfer"  # Needs a destination account


class CategoryType(str, Enum):
    INCOME = "income"
    EXPENSE = "expense"


class PeriodFrequency(str, Enum):
    """Length of a budget period."""
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"


class RecurrenceFrequency(str, Enum):
    """Step between two runs of a recurring transaction."""
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"


# =============================================================================
# SHARED PREDICATES - used by the Ledger Store before any state change
# =============================================================================

def is_positive_amount(value: Any) -> bool:
    """True if value is a finite decimal strictly greater than zero."""
    if value is None or isinstance(value, bool):
        return False
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError):
        return False
    return amount.is_finite() and amount > 0


def transfer_error(
    transaction_type: TransactionType,
    account_id: Optional[str],
    to_account_id: Optional[str],
) -> Optional[str]:
    """
    Check the account references of a transaction.

    Returns a human-readable reason if the references are malformed,
    None if they are fine.
    """
    if not account_id:
        return "Transaction needs a source account"
    if transaction_type == TransactionType.TRANSFER:
        if not to_account_id:
            return "A transfer needs a destination account"
        if to_account_id == account_id:
            return "A transfer cannot move money into the same account"
    elif to_account_id:
        return f"Only transfers can have a destination account (got {transaction_type.value})"
    return None


# =============================================================================
# REFERENCE DATA
# =============================================================================

class Category(BaseModel):
    """
    Spending/earning category.

    Read-only from the ledger's point of view.
    """
    model_config = ConfigDict(str_strip_whitespace=True, frozen=True)

    id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1, max_length=100)
    color: str = Field(default="", max_length=50)
    type: CategoryType = CategoryType.EXPENSE


# =============================================================================
# ACCOUNTS
# =============================================================================

class Account(BaseModel):
    """
    A balance-holding account.

    CRITICAL: `balance` is derived-but-cached. It always equals
    `initial_balance` plus the effects of every transaction touching
    the account, and only the Ledger Store writes it.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: str = Field(..., min_length=1)
    name: str = Field(
        ...,
        min_length=1,
        max_length=200,
        description="Display name"
    )
    kind: AccountKind = AccountKind.ASSET
    balance: Decimal = Field(
        default=Decimal("0"),
        description="Current balance (maintained by reconciliation)"
    )
    initial_balance: Decimal = Field(
        default=Decimal("0"),
        description="Balance at creation, before any transaction"
    )
    currency: str = Field(default="INR", min_length=3, max_length=3)
    color: str = Field(default="", max_length=50)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


# =============================================================================
# TRANSACTIONS
# =============================================================================

class TransactionDraft(BaseModel):
    """
    What a caller supplies to create a transaction.

    Shape only: amount sign and account references are checked by the
    Ledger Store through the shared predicates.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    account_id: str
    to_account_id: Optional[str] = None
    type: TransactionType
    amount: Decimal
    category_id: Optional[str] = None
    date: dt.date = Field(default_factory=date.today)
    description: str = Field(default="", max_length=500)
    notes: Optional[str] = Field(default=None, max_length=1000)
    tag_ids: list[str] = Field(default_factory=list)


class Transaction(TransactionDraft):
    """
    A committed transaction.

    Identity never changes. Edits go through the Ledger Store, which
    reverses the old effect before applying the new one.
    """

    id: str = Field(..., min_length=1)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @model_validator(mode='after')
    def validate_invariants(self) -> 'Transaction':
        if not is_positive_amount(self.amount):
            raise ValueError("Transaction amount must be greater than zero")
        problem = transfer_error(self.type, self.account_id, self.to_account_id)
        if problem:
            raise ValueError(problem)
        return self

    @property
    def account_ids(self) -> tuple[str, ...]:
        """Every account this transaction touches."""
        if self.to_account_id:
            return (self.account_id, self.to_account_id)
        return (self.account_id,)

    def to_draft(self) -> TransactionDraft:
        return TransactionDraft.model_validate(
            self.model_dump(include=set(TransactionDraft.model_fields))
        )


class TransactionPatch(BaseModel):
    """
    Partial edit of a transaction.

    Only fields that are explicitly set are applied, and `None` leaves a
    field unchanged. The optional references (`to_account_id`,
    `category_id`, `notes`) are the exception: an explicit `None` clears
    them. Changing the type away from transfer drops the destination
    unless one is given.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    CLEARABLE_FIELDS: ClassVar[frozenset[str]] = frozenset(
        {"to_account_id", "category_id", "notes"}
    )

    account_id: Optional[str] = None
    to_account_id: Optional[str] = None
    type: Optional[TransactionType] = None
    amount: Optional[Decimal] = None
    category_id: Optional[str] = None
    date: Optional[dt.date] = None
    description: Optional[str] = Field(default=None, max_length=500)
    notes: Optional[str] = Field(default=None, max_length=1000)
    tag_ids: Optional[list[str]] = None

    def apply_to(self, draft: TransactionDraft) -> dict[str, Any]:
        """Merge this patch over a draft, returning raw draft fields."""
        changes = {
            field: value
            for field, value in self.model_dump(exclude_unset=True).items()
            if value is not None or field in self.CLEARABLE_FIELDS
        }
        merged = draft.model_dump()
        merged.update(changes)
        if (
            merged["type"] != TransactionType.TRANSFER
            and "to_account_id" not in changes
        ):
            merged["to_account_id"] = None
        return merged


# =============================================================================
# BUDGETS
# =============================================================================

class BudgetPeriod(BaseModel):
    """
    The window a budget aggregates over.

    DESIGN DECISION: Periods are always explicit. There is no implicit
    "current month"; callers pick the period they mean.

    Weekly periods start on Monday, monthly on the 1st, yearly on Jan 1.
    """
    model_config = ConfigDict(frozen=True)

    frequency: PeriodFrequency
    start: date

    @model_validator(mode='after')
    def validate_alignment(self) -> 'BudgetPeriod':
        if self.frequency == PeriodFrequency.WEEKLY and self.start.weekday() != 0:
            raise ValueError("Weekly periods must start on a Monday")
        if self.frequency == PeriodFrequency.MONTHLY and self.start.day != 1:
            raise ValueError("Monthly periods must start on the 1st")
        if self.frequency == PeriodFrequency.YEARLY and (self.start.month, self.start.day) != (1, 1):
            raise ValueError("Yearly periods must start on January 1st")
        return self

    @property
    def end(self) -> date:
        """Last day of the period (inclusive)."""
        if self.frequency == PeriodFrequency.WEEKLY:
            return self.start + timedelta(days=6)
        if self.frequency == PeriodFrequency.MONTHLY:
            return self.start + relativedelta(months=1, days=-1)
        return self.start + relativedelta(years=1, days=-1)

    @property
    def key(self) -> str:
        return f"{self.frequency.value}:{self.start.isoformat()}"

    def contains(self, day: date) -> bool:
        return self.start <= day <= self.end

    @classmethod
    def month(cls, year: int, month: int) -> 'BudgetPeriod':
        return cls(frequency=PeriodFrequency.MONTHLY, start=date(year, month, 1))

    @classmethod
    def year(cls, year: int) -> 'BudgetPeriod':
        return cls(frequency=PeriodFrequency.YEARLY, start=date(year, 1, 1))

    @classmethod
    def containing(cls, day: date, frequency: PeriodFrequency) -> 'BudgetPeriod':
        """The period of the given frequency that includes `day`."""
        if frequency == PeriodFrequency.WEEKLY:
            return cls(frequency=frequency, start=day - timedelta(days=day.weekday()))
        if frequency == PeriodFrequency.MONTHLY:
            return cls.month(day.year, day.month)
        return cls.year(day.year)


class Budget(BaseModel):
    """Spending limit for one category over one period."""

    id: str = Field(..., min_length=1)
    category_id: str = Field(..., min_length=1)
    amount: Decimal = Field(..., gt=0, description="Spending limit")
    period: BudgetPeriod
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


class BudgetProgress(BaseModel):
    """
    Spending against a budget.

    `remaining` goes negative and `percentage` goes above 100 when
    over budget. Presentation (clamping, colors) is the caller's job.
    """

    budget_id: Optional[str] = None
    category_id: str
    period: BudgetPeriod
    budget_amount: Decimal
    spent: Decimal
    remaining: Decimal
    percentage: Decimal

    @property
    def is_over_budget(self) -> bool:
        return self.spent > self.budget_amount


# =============================================================================
# TAGS
# =============================================================================

class TagDraft(BaseModel):
    """What a caller supplies to create a tag."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: Optional[str] = Field(
        default=None,
        description="Caller-chosen id; generated from the clock if absent"
    )
    name: str = Field(default="", max_length=100)
    color: str = Field(default="", max_length=50)


class TagPatch(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: Optional[str] = Field(default=None, max_length=100)
    color: Optional[str] = Field(default=None, max_length=50)


class Tag(BaseModel):
    """A label scoped to one book."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: str = Field(..., min_length=1)
    user_id: str
    book_id: str
    name: str = Field(..., min_length=1, max_length=100)
    color: str = Field(default="", max_length=50)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


# =============================================================================
# RECURRING TRANSACTIONS
# =============================================================================

class RecurringTransaction(BaseModel):
    """
    A transaction template that materializes on a schedule.

    `next_run` is the date the next transaction will carry.
    """

    id: str = Field(..., min_length=1)
    template: TransactionDraft
    frequency: RecurrenceFrequency
    interval: int = Field(default=1, ge=1, le=365)
    next_run: date
    last_run: Optional[date] = None
    active: bool = True
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @field_validator('template')
    @classmethod
    def validate_template(cls, v: TransactionDraft) -> TransactionDraft:
        if not is_positive_amount(v.amount):
            raise ValueError("Recurring template amount must be greater than zero")
        problem = transfer_error(v.type, v.account_id, v.to_account_id)
        if problem:
            raise ValueError(problem)
        return v
