"""
Ledger Store

The authoritative in-memory state of one book: accounts, transactions,
budgets and categories.

DESIGN DECISION: Every mutation follows the same sequence:
1. Validate everything (shape, amount, transfer references, existence)
2. Compute balance deltas through the reconciler
3. Change in-memory state (synchronously, all or nothing)
4. Record the remote writes in the sync outbox under one batch id

Steps 1 and 2 raise before anything changes. Steps 3 and 4 cannot fail
part-way, so a caller never observes a half-applied transaction. The
remote store is a mirror; it is never read back to compute a balance.

CRITICAL: Account balances are only ever written here, and only through
reconciler deltas. Invariant after every mutation:

    account.balance == account.initial_balance + sum(effect(t, account))
"""

from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable, Optional, Union
from uuid import UUID, uuid4

from pocket_ledger.ledger import reconciler
from pocket_ledger.ledger.errors import (
    ConflictError,
    NotFoundError,
    ValidationError,
    coerce,
)
from pocket_ledger.ledger.tags import TagIndex
from pocket_ledger.log import get_logger
from pocket_ledger.models.ledger import (
    Account,
    AccountKind,
    Budget,
    BudgetPeriod,
    Category,
    Transaction,
    TransactionDraft,
    TransactionPatch,
    is_positive_amount,
    transfer_error,
    utc_now,
)
from pocket_ledger.models.sync import (
    Collection,
    SyncOperation,
    SyncStatus,
    collection_path,
)
from pocket_ledger.sync.outbox import SyncOutbox

logger = get_logger(__name__)


DRAFT_FIELDS = set(TransactionDraft.model_fields)


def _new_id() -> str:
    return str(uuid4())


def _to_decimal(value: Any, field: str) -> Decimal:
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError) as e:
        raise ValidationError(f"{field} is not a valid amount: {value!r}") from e
    if not amount.is_finite():
        raise ValidationError(f"{field} is not a valid amount: {value!r}")
    return amount


class LedgerStore:
    """
    Accounts, transactions and budgets of one book.

    Reads return copies and never raise. Mutations raise ValidationError,
    NotFoundError or ConflictError before changing anything.

    Usage:
        store = LedgerStore("book-1", "user-1", outbox)
        wallet = store.create_account("Wallet", initial_balance=100)
        store.add_transaction({"account_id": wallet.id, "type": "expense", "amount": 20})
        await outbox.flush()
    """

    def __init__(
        self,
        book_id: str,
        user_id: str,
        outbox: SyncOutbox,
        default_currency: str = "INR",
        max_transaction_amount: Optional[Decimal] = None,
    ):
        self.book_id = book_id
        self.user_id = user_id
        self._outbox = outbox
        self._default_currency = default_currency
        self._max_amount = (
            Decimal(str(max_transaction_amount))
            if max_transaction_amount is not None
            else None
        )

        self._accounts: dict[str, Account] = {}
        self._transactions: dict[str, Transaction] = {}
        # Effect map applied for each transaction; reversed verbatim on edit/delete
        self._applied: dict[str, reconciler.EffectMap] = {}
        self._budgets: dict[str, Budget] = {}
        self._categories: dict[str, Category] = {}

        self._paths = {c: collection_path(book_id, c) for c in Collection}
        self._tags = TagIndex(book_id, user_id, outbox)

    @property
    def outbox(self) -> SyncOutbox:
        return self._outbox

    @property
    def tags(self) -> TagIndex:
        return self._tags

    # =========================================================================
    # ACCOUNTS
    # =========================================================================

    def create_account(
        self,
        name: str,
        kind: Union[AccountKind, str] = AccountKind.ASSET,
        initial_balance: Union[Decimal, int, str] = 0,
        currency: Optional[str] = None,
        color: str = "",
    ) -> Account:
        """
        Open an account whose balance starts at `initial_balance`.

        Raises:
            ValidationError: Blank name or malformed fields
        """
        if not name or not name.strip():
            raise ValidationError("Account name cannot be blank")

        opening = _to_decimal(initial_balance, "initial_balance")
        account = coerce(Account, {
            "id": _new_id(),
            "name": name,
            "kind": kind,
            "balance": opening,
            "initial_balance": opening,
            "currency": currency or self._default_currency,
            "color": color,
        })

        self._accounts[account.id] = account
        self._outbox.enqueue(
            self._paths[Collection.ACCOUNTS],
            account.id,
            SyncOperation.CREATE,
            account.model_dump(mode="json"),
        )
        logger.info(
            "account_created",
            account_id=account.id,
            kind=account.kind.value,
            initial_balance=str(opening),
        )
        return account.model_copy(deep=True)

    def update_account(
        self,
        account_id: str,
        name: Optional[str] = None,
        kind: Optional[Union[AccountKind, str]] = None,
        color: Optional[str] = None,
    ) -> Account:
        """
        Change an account's metadata. Balances are not editable.

        Raises:
            NotFoundError: Unknown account
            ValidationError: Blank name or malformed fields
        """
        current = self._require_account(account_id)
        if name is not None and not name.strip():
            raise ValidationError("Account name cannot be blank")

        changes = {
            field: value
            for field, value in (("name", name), ("kind", kind), ("color", color))
            if value is not None
        }
        if not changes:
            return current.model_copy(deep=True)

        updated = coerce(Account, {
            **current.model_dump(),
            **changes,
            "updated_at": utc_now(),
        })
        self._accounts[account_id] = updated
        self._outbox.enqueue(
            self._paths[Collection.ACCOUNTS],
            account_id,
            SyncOperation.UPDATE,
            updated.model_dump(mode="json", include=set(changes) | {"updated_at"}),
        )
        logger.info("account_updated", account_id=account_id, fields=sorted(changes))
        return updated.model_copy(deep=True)

    def delete_account(self, account_id: str) -> list[str]:
        """
        Delete an account and every transaction touching it.

        Each cascaded transaction is reversed on ALL its accounts first, so
        the other side of a transfer gets its money back.

        Returns:
            Ids of the transactions removed by the cascade

        Raises:
            NotFoundError: Unknown account
        """
        self._require_account(account_id)
        batch_id = uuid4()

        cascaded = [
            t.id for t in self._transactions.values()
            if account_id in t.account_ids
        ]
        deltas: reconciler.EffectMap = {}
        for transaction_id in cascaded:
            undo = reconciler.net_deltas(self._applied[transaction_id], {})
            for touched, delta in undo.items():
                deltas[touched] = deltas.get(touched, reconciler.ZERO) + delta

        deltas.pop(account_id, None)
        self._apply_deltas(deltas, batch_id)

        for transaction_id in cascaded:
            del self._transactions[transaction_id]
            del self._applied[transaction_id]
            self._outbox.enqueue(
                self._paths[Collection.TRANSACTIONS],
                transaction_id,
                SyncOperation.DELETE,
                batch_id=batch_id,
            )

        del self._accounts[account_id]
        self._outbox.enqueue(
            self._paths[Collection.ACCOUNTS],
            account_id,
            SyncOperation.DELETE,
            batch_id=batch_id,
        )
        logger.info(
            "account_deleted",
            account_id=account_id,
            cascaded_transactions=len(cascaded),
            batch_id=str(batch_id),
        )
        return cascaded

    # =========================================================================
    # TRANSACTIONS
    # =========================================================================

    def add_transaction(self, draft: Union[TransactionDraft, dict[str, Any]]) -> Transaction:
        """
        Record a transaction and apply it to the balances it touches.

        Raises:
            ValidationError: Non-positive amount, bad transfer references
            NotFoundError: A referenced account doesn't exist
        """
        draft = coerce(TransactionDraft, draft)
        self._check_draft(draft)

        transaction = coerce(Transaction, {
            **draft.model_dump(include=DRAFT_FIELDS),
            "id": _new_id(),
        })
        applied = reconciler.effects(transaction)
        batch_id = uuid4()

        self._transactions[transaction.id] = transaction
        self._applied[transaction.id] = applied
        self._outbox.enqueue(
            self._paths[Collection.TRANSACTIONS],
            transaction.id,
            SyncOperation.CREATE,
            transaction.model_dump(mode="json"),
            batch_id=batch_id,
        )
        self._apply_deltas(reconciler.net_deltas({}, applied), batch_id)

        logger.info(
            "transaction_added",
            transaction_id=transaction.id,
            type=transaction.type.value,
            amount=str(transaction.amount),
            accounts=list(transaction.account_ids),
            batch_id=str(batch_id),
        )
        return transaction.model_copy(deep=True)

    def update_transaction(
        self,
        transaction_id: str,
        patch: Union[TransactionPatch, dict[str, Any]],
    ) -> Transaction:
        """
        Edit a transaction: reverse its old effect, apply the new one.

        Raises:
            NotFoundError: Unknown transaction or account
            ValidationError: The edited transaction is malformed
        """
        current = self._transactions.get(transaction_id)
        if current is None:
            raise NotFoundError(f"Transaction not found: {transaction_id}")

        patch = coerce(TransactionPatch, patch)
        draft = coerce(TransactionDraft, patch.apply_to(current.to_draft()))
        self._check_draft(draft)

        updated = coerce(Transaction, {
            **draft.model_dump(include=DRAFT_FIELDS),
            "id": current.id,
            "created_at": current.created_at,
            "updated_at": utc_now(),
        })
        applied = reconciler.effects(updated)
        deltas = reconciler.net_deltas(self._applied[transaction_id], applied)
        batch_id = uuid4()

        self._transactions[transaction_id] = updated
        self._applied[transaction_id] = applied
        self._outbox.enqueue(
            self._paths[Collection.TRANSACTIONS],
            transaction_id,
            SyncOperation.UPDATE,
            updated.model_dump(mode="json", exclude={"id", "created_at"}),
            batch_id=batch_id,
        )
        self._apply_deltas(deltas, batch_id)

        logger.info(
            "transaction_updated",
            transaction_id=transaction_id,
            balance_writes=len(deltas),
            batch_id=str(batch_id),
        )
        return updated.model_copy(deep=True)

    def delete_transaction(self, transaction_id: str) -> Transaction:
        """
        Remove a transaction, restoring the balances it changed.

        Raises:
            NotFoundError: Unknown transaction
        """
        removed = self._transactions.get(transaction_id)
        if removed is None:
            raise NotFoundError(f"Transaction not found: {transaction_id}")

        deltas = reconciler.net_deltas(self._applied[transaction_id], {})
        batch_id = uuid4()

        del self._transactions[transaction_id]
        del self._applied[transaction_id]
        self._outbox.enqueue(
            self._paths[Collection.TRANSACTIONS],
            transaction_id,
            SyncOperation.DELETE,
            batch_id=batch_id,
        )
        self._apply_deltas(deltas, batch_id)

        logger.info(
            "transaction_deleted",
            transaction_id=transaction_id,
            batch_id=str(batch_id),
        )
        return removed

    # =========================================================================
    # BUDGETS
    # =========================================================================

    def create_budget(
        self,
        category_id: str,
        amount: Union[Decimal, int, str],
        period: BudgetPeriod,
    ) -> Budget:
        """
        Set a spending limit for a category over one period.

        Raises:
            ValidationError: Blank category, amount <= 0, missing period
            ConflictError: The category already has a budget for this period
        """
        if not category_id or not category_id.strip():
            raise ValidationError("Budget needs a category")
        if not is_positive_amount(amount):
            raise ValidationError("Budget amount must be greater than zero")
        if period is None:
            raise ValidationError("Budget needs an explicit period")
        period = coerce(BudgetPeriod, period)
        self._check_budget_conflict(category_id, period)

        budget = coerce(Budget, {
            "id": _new_id(),
            "category_id": category_id,
            "amount": _to_decimal(amount, "amount"),
            "period": period,
        })
        self._budgets[budget.id] = budget
        self._outbox.enqueue(
            self._paths[Collection.BUDGETS],
            budget.id,
            SyncOperation.CREATE,
            budget.model_dump(mode="json"),
        )
        logger.info(
            "budget_created",
            budget_id=budget.id,
            category_id=category_id,
            period=period.key,
            amount=str(budget.amount),
        )
        return budget.model_copy(deep=True)

    def update_budget(
        self,
        budget_id: str,
        amount: Optional[Union[Decimal, int, str]] = None,
        period: Optional[BudgetPeriod] = None,
    ) -> Budget:
        """
        Change a budget's limit or period.

        Raises:
            NotFoundError: Unknown budget
            ValidationError: amount <= 0
            ConflictError: The new period is already budgeted for this category
        """
        current = self._budgets.get(budget_id)
        if current is None:
            raise NotFoundError(f"Budget not found: {budget_id}")

        changes: dict[str, Any] = {}
        if amount is not None:
            if not is_positive_amount(amount):
                raise ValidationError("Budget amount must be greater than zero")
            changes["amount"] = _to_decimal(amount, "amount")
        if period is not None:
            period = coerce(BudgetPeriod, period)
            if period != current.period:
                self._check_budget_conflict(current.category_id, period, ignore_id=budget_id)
            changes["period"] = period
        if not changes:
            return current.model_copy(deep=True)

        updated = coerce(Budget, {
            **current.model_dump(),
            **changes,
            "updated_at": utc_now(),
        })
        self._budgets[budget_id] = updated
        self._outbox.enqueue(
            self._paths[Collection.BUDGETS],
            budget_id,
            SyncOperation.UPDATE,
            updated.model_dump(mode="json", include=set(changes) | {"updated_at"}),
        )
        logger.info("budget_updated", budget_id=budget_id, fields=sorted(changes))
        return updated.model_copy(deep=True)

    def delete_budget(self, budget_id: str) -> Budget:
        """
        Raises:
            NotFoundError: Unknown budget
        """
        removed = self._budgets.pop(budget_id, None)
        if removed is None:
            raise NotFoundError(f"Budget not found: {budget_id}")
        self._outbox.enqueue(
            self._paths[Collection.BUDGETS],
            budget_id,
            SyncOperation.DELETE,
        )
        logger.info("budget_deleted", budget_id=budget_id)
        return removed

    # =========================================================================
    # CATEGORIES (reference data)
    # =========================================================================

    def register_category(self, category: Union[Category, dict[str, Any]]) -> Category:
        """Make a category known to the ledger. Re-registering replaces it."""
        category = coerce(Category, category)
        self._categories[category.id] = category
        return category

    def list_categories(self) -> list[Category]:
        return list(self._categories.values())

    # =========================================================================
    # QUERIES
    # =========================================================================

    def list_accounts(self) -> list[Account]:
        return [a.model_copy(deep=True) for a in self._accounts.values()]

    def get_account_by_id(self, account_id: str) -> Optional[Account]:
        account = self._accounts.get(account_id)
        return account.model_copy(deep=True) if account else None

    def list_transactions(
        self,
        account_id: Optional[str] = None,
        category_id: Optional[str] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> list[Transaction]:
        """
        Transactions, newest first.

        `account_id` matches either side of a transfer. Date bounds are
        inclusive.
        """
        matches = []
        for transaction in self._transactions.values():
            if account_id and account_id not in transaction.account_ids:
                continue
            if category_id and transaction.category_id != category_id:
                continue
            if date_from and transaction.date < date_from:
                continue
            if date_to and transaction.date > date_to:
                continue
            matches.append(transaction.model_copy(deep=True))

        matches.sort(key=lambda t: (t.date, t.created_at), reverse=True)
        return matches

    def get_transaction(self, transaction_id: str) -> Optional[Transaction]:
        transaction = self._transactions.get(transaction_id)
        return transaction.model_copy(deep=True) if transaction else None

    def list_budgets(self) -> list[Budget]:
        return [b.model_copy(deep=True) for b in self._budgets.values()]

    def get_budget(self, budget_id: str) -> Optional[Budget]:
        budget = self._budgets.get(budget_id)
        return budget.model_copy(deep=True) if budget else None

    def sync_status(self, entity_id: str) -> SyncStatus:
        """Whether the remote copy of an account/transaction/budget is current."""
        return self._outbox.status_for(entity_id)

    # =========================================================================
    # HYDRATION
    # =========================================================================

    def load(
        self,
        accounts: Iterable[Union[Account, dict[str, Any]]],
        transactions: Iterable[Union[Transaction, dict[str, Any]]] = (),
        budgets: Iterable[Union[Budget, dict[str, Any]]] = (),
    ) -> None:
        """
        Replace the ledger's state with a snapshot.

        Stored balances are ignored: each one is rebuilt from
        `initial_balance` and the loaded transactions. Nothing is queued
        for sync, since the snapshot came from the remote side.

        Raises:
            ValidationError: A record is malformed or references a missing account
        """
        loaded_accounts = {}
        for raw in accounts:
            account = coerce(Account, raw)
            loaded_accounts[account.id] = account.model_copy(
                update={"balance": account.initial_balance}
            )

        loaded_transactions = {}
        for raw in transactions:
            transaction = coerce(Transaction, raw)
            missing = [a for a in transaction.account_ids if a not in loaded_accounts]
            if missing:
                raise ValidationError(
                    f"Transaction {transaction.id} references unknown accounts: {missing}"
                )
            loaded_transactions[transaction.id] = transaction

        loaded_budgets = {}
        for raw in budgets:
            budget = coerce(Budget, raw)
            loaded_budgets[budget.id] = budget

        applied = {}
        for transaction in loaded_transactions.values():
            applied[transaction.id] = reconciler.effects(transaction)
            for account_id, delta in applied[transaction.id].items():
                account = loaded_accounts[account_id]
                loaded_accounts[account_id] = account.model_copy(
                    update={"balance": account.balance + delta}
                )

        self._accounts = loaded_accounts
        self._transactions = loaded_transactions
        self._applied = applied
        self._budgets = loaded_budgets
        logger.info(
            "ledger_loaded",
            book_id=self.book_id,
            accounts=len(loaded_accounts),
            transactions=len(loaded_transactions),
            budgets=len(loaded_budgets),
        )

    # =========================================================================
    # INTERNALS
    # =========================================================================

    def _require_account(self, account_id: str) -> Account:
        account = self._accounts.get(account_id)
        if account is None:
            raise NotFoundError(f"Account not found: {account_id}")
        return account

    def _check_draft(self, draft: TransactionDraft) -> None:
        """Business rules for a transaction about to be committed."""
        if not is_positive_amount(draft.amount):
            raise ValidationError("Transaction amount must be greater than zero")
        if self._max_amount is not None and draft.amount > self._max_amount:
            raise ValidationError(
                f"Transaction amount {draft.amount} exceeds the limit of {self._max_amount}"
            )
        problem = transfer_error(draft.type, draft.account_id, draft.to_account_id)
        if problem:
            raise ValidationError(problem)

        for account_id in (draft.account_id, draft.to_account_id):
            if account_id and account_id not in self._accounts:
                raise NotFoundError(f"Account not found: {account_id}")

    def _check_budget_conflict(
        self,
        category_id: str,
        period: BudgetPeriod,
        ignore_id: Optional[str] = None,
    ) -> None:
        for budget in self._budgets.values():
            if budget.id == ignore_id:
                continue
            if budget.category_id == category_id and budget.period == period:
                raise ConflictError(
                    f"Category {category_id} already has a budget for {period.key}"
                )

    def _apply_deltas(self, deltas: reconciler.EffectMap, batch_id: UUID) -> None:
        """Add each delta to its account's balance and queue the balance write."""
        now = utc_now()
        for account_id, delta in deltas.items():
            account = self._accounts[account_id]
            updated = account.model_copy(
                update={"balance": account.balance + delta, "updated_at": now}
            )
            self._accounts[account_id] = updated
            self._outbox.enqueue(
                self._paths[Collection.ACCOUNTS],
                account_id,
                SyncOperation.UPDATE,
                updated.model_dump(mode="json", include={"balance", "updated_at"}),
                batch_id=batch_id,
            )
            logger.debug(
                "balance_adjusted",
                account_id=account_id,
                delta=str(delta),
                balance=str(updated.balance),
            )
