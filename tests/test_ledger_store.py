"""
Tests for the ledger store.

Covers the balance invariant, edit/delete reconciliation, the account
cascade, budgets and the writes each mutation leaves in the outbox.
"""

import random
from datetime import date
from decimal import Decimal

import pytest

from pocket_ledger.ledger import (
    ConflictError,
    LedgerStore,
    NotFoundError,
    ValidationError,
)
from pocket_ledger.ledger.reconciler import effect
from pocket_ledger.models import (
    AccountKind,
    BudgetPeriod,
    Category,
    SyncOperation,
    SyncStatus,
    TransactionDraft,
    TransactionPatch,
    TransactionType,
)


def assert_balances_consistent(store: LedgerStore):
    """balance == initial_balance + sum of effects, for every account."""
    transactions = store.list_transactions()
    for account in store.list_accounts():
        expected = account.initial_balance + sum(
            (effect(t, account.id) for t in transactions), Decimal("0")
        )
        assert account.balance == expected, account.name


def balance(store: LedgerStore, account_id: str) -> Decimal:
    return store.get_account_by_id(account_id).balance


class TestAccounts:
    """Tests for account lifecycle."""

    def test_create_account(self, store):
        """Test that a new account's balance starts at its initial balance."""
        account = store.create_account("Wallet", initial_balance="250.75")
        assert account.balance == Decimal("250.75")
        assert account.initial_balance == Decimal("250.75")
        assert account.kind == AccountKind.ASSET
        assert account.currency == "INR"
        assert store.get_account_by_id(account.id) == account

    def test_blank_name_rejected(self, store, outbox):
        """Test that a blank name is rejected with nothing recorded."""
        with pytest.raises(ValidationError):
            store.create_account("   ")
        assert store.list_accounts() == []
        assert outbox.entries == []

    def test_invalid_initial_balance_rejected(self, store):
        with pytest.raises(ValidationError):
            store.create_account("Wallet", initial_balance="lots")

    def test_update_metadata(self, store, wallet):
        """Test that name and kind change but the balance does not."""
        updated = store.update_account(wallet.id, name="Credit Card", kind="liability")
        assert updated.name == "Credit Card"
        assert updated.kind == AccountKind.LIABILITY
        assert updated.balance == wallet.balance

    def test_update_unknown_account(self, store):
        with pytest.raises(NotFoundError):
            store.update_account("missing", name="x")

    def test_update_blank_name(self, store, wallet):
        with pytest.raises(ValidationError):
            store.update_account(wallet.id, name="")
        assert store.get_account_by_id(wallet.id).name == "Wallet"

    def test_delete_unknown_account(self, store):
        with pytest.raises(NotFoundError):
            store.delete_account("missing")

    def test_reads_return_copies(self, store, wallet):
        """Test that callers can't change the ledger through a returned model."""
        copy = store.get_account_by_id(wallet.id)
        copy.balance = Decimal("999999")
        assert balance(store, wallet.id) == Decimal("100")

    def test_unknown_account_read_returns_none(self, store):
        assert store.get_account_by_id("missing") is None


class TestTransactions:
    """Tests for adding, editing and deleting transactions."""

    def test_income_and_expense(self, store, wallet):
        store.add_transaction({"account_id": wallet.id, "type": "income", "amount": 40})
        store.add_transaction({"account_id": wallet.id, "type": "expense", "amount": "15.50"})
        assert balance(store, wallet.id) == Decimal("124.50")

    def test_transfer_symmetry(self, store, wallet, bank):
        """Test that a transfer moves money without changing the total."""
        store.add_transaction(TransactionDraft(
            account_id=bank.id,
            to_account_id=wallet.id,
            type=TransactionType.TRANSFER,
            amount=Decimal("50"),
        ))
        assert balance(store, bank.id) == Decimal("950")
        assert balance(store, wallet.id) == Decimal("150")
        assert balance(store, bank.id) + balance(store, wallet.id) == Decimal("1100")

    def test_self_transfer_rejected(self, store, wallet, outbox):
        """Test that a transfer into its own source changes nothing."""
        entries_before = len(outbox.entries)
        with pytest.raises(ValidationError):
            store.add_transaction({
                "account_id": wallet.id,
                "to_account_id": wallet.id,
                "type": "transfer",
                "amount": 10,
            })
        assert balance(store, wallet.id) == Decimal("100")
        assert store.list_transactions() == []
        assert len(outbox.entries) == entries_before

    @pytest.mark.parametrize("amount", [0, -5, "0.00"])
    def test_non_positive_amount_rejected(self, store, wallet, amount):
        with pytest.raises(ValidationError):
            store.add_transaction({"account_id": wallet.id, "type": "expense", "amount": amount})
        assert balance(store, wallet.id) == Decimal("100")

    def test_malformed_draft_rejected(self, store, wallet):
        """Test that schema failures surface as ledger validation errors."""
        with pytest.raises(ValidationError):
            store.add_transaction({"account_id": wallet.id, "type": "gift", "amount": 5})

    def test_missing_account(self, store, wallet):
        with pytest.raises(NotFoundError):
            store.add_transaction({"account_id": "missing", "type": "income", "amount": 5})
        with pytest.raises(NotFoundError):
            store.add_transaction({
                "account_id": wallet.id,
                "to_account_id": "missing",
                "type": "transfer",
                "amount": 5,
            })

    def test_amount_limit(self, outbox):
        store = LedgerStore("book-1", "user-1", outbox, max_transaction_amount=1000)
        account = store.create_account("Wallet")
        with pytest.raises(ValidationError):
            store.add_transaction({"account_id": account.id, "type": "income", "amount": 1001})
        store.add_transaction({"account_id": account.id, "type": "income", "amount": 1000})
        assert balance(store, account.id) == Decimal("1000")

    def test_edit_re_reconciles(self, store, wallet):
        """Test that editing 50 -> 30 leaves the balance at -30, not -80."""
        transaction = store.add_transaction(
            {"account_id": wallet.id, "type": "expense", "amount": 50}
        )
        store.update_transaction(transaction.id, TransactionPatch(amount=Decimal("30")))
        assert balance(store, wallet.id) == Decimal("70")
        assert store.get_transaction(transaction.id).amount == Decimal("30")

    def test_edit_with_none_fields_leaves_them_unchanged(self, store, wallet):
        """Test that a patch carrying None for required fields keeps their values."""
        transaction = store.add_transaction({
            "account_id": wallet.id,
            "type": "expense",
            "amount": 50,
            "description": "Groceries",
            "category_id": "food",
        })

        updated = store.update_transaction(
            transaction.id, {"amount": 80, "description": None, "type": None}
        )
        assert updated.description == "Groceries"
        assert updated.type == TransactionType.EXPENSE
        assert balance(store, wallet.id) == Decimal("20")

        updated = store.update_transaction(transaction.id, {"amount": None, "category_id": None})
        assert updated.amount == Decimal("80")
        assert updated.category_id is None

    def test_edit_moves_between_accounts(self, store, wallet, bank):
        transaction = store.add_transaction(
            {"account_id": wallet.id, "type": "expense", "amount": 20}
        )
        store.update_transaction(transaction.id, {"account_id": bank.id})
        assert balance(store, wallet.id) == Decimal("100")
        assert balance(store, bank.id) == Decimal("980")

    def test_edit_transfer_to_expense(self, store, wallet, bank):
        """Test that dropping the transfer type refunds the old destination."""
        transfer = store.add_transaction({
            "account_id": bank.id,
            "to_account_id": wallet.id,
            "type": "transfer",
            "amount": 100,
        })
        updated = store.update_transaction(transfer.id, {"type": "expense"})
        assert updated.to_account_id is None
        assert balance(store, bank.id) == Decimal("900")
        assert balance(store, wallet.id) == Decimal("100")

    def test_edit_keeps_identity(self, store, wallet):
        transaction = store.add_transaction(
            {"account_id": wallet.id, "type": "income", "amount": 5}
        )
        updated = store.update_transaction(transaction.id, {"description": "Refund"})
        assert updated.id == transaction.id
        assert updated.created_at == transaction.created_at
        assert updated.description == "Refund"

    def test_invalid_edit_changes_nothing(self, store, wallet, bank):
        """Test that a rejected edit leaves balances and the transaction alone."""
        transfer = store.add_transaction({
            "account_id": bank.id,
            "to_account_id": wallet.id,
            "type": "transfer",
            "amount": 10,
        })
        with pytest.raises(ValidationError):
            store.update_transaction(transfer.id, {"to_account_id": bank.id})
        with pytest.raises(NotFoundError):
            store.update_transaction(transfer.id, {"account_id": "missing"})
        assert store.get_transaction(transfer.id).to_account_id == wallet.id
        assert balance(store, bank.id) == Decimal("990")
        assert balance(store, wallet.id) == Decimal("110")

    def test_edit_unknown_transaction(self, store):
        with pytest.raises(NotFoundError):
            store.update_transaction("missing", {"amount": 5})

    def test_delete_restores_balances(self, store, wallet, bank):
        """Test that deleting a transaction undoes it exactly."""
        transfer = store.add_transaction({
            "account_id": wallet.id,
            "to_account_id": bank.id,
            "type": "transfer",
            "amount": "33.33",
        })
        removed = store.delete_transaction(transfer.id)
        assert removed.id == transfer.id
        assert balance(store, wallet.id) == Decimal("100")
        assert balance(store, bank.id) == Decimal("1000")
        assert store.get_transaction(transfer.id) is None

    def test_delete_unknown_transaction(self, store):
        with pytest.raises(NotFoundError):
            store.delete_transaction("missing")

    def test_random_operations_keep_balances_consistent(self, store):
        """Test the balance invariant over a seeded random mix of operations."""
        rng = random.Random(20240301)
        account_ids = [
            store.create_account(f"Account {i}", initial_balance=rng.randint(0, 5000)).id
            for i in range(4)
        ]

        def random_draft():
            kind = rng.choice(["income", "expense", "transfer"])
            amount = Decimal(rng.randint(1, 100000)) / Decimal(100)
            if kind == "transfer":
                source, destination = rng.sample(account_ids, 2)
            else:
                source, destination = rng.choice(account_ids), None
            return {
                "account_id": source,
                "to_account_id": destination,
                "type": kind,
                "amount": amount,
            }

        for _ in range(300):
            live = [t.id for t in store.list_transactions()]
            operation = rng.choice(["add", "add", "update", "delete"])
            if operation == "add" or not live:
                store.add_transaction(random_draft())
            elif operation == "update":
                store.update_transaction(rng.choice(live), random_draft())
            else:
                store.delete_transaction(rng.choice(live))
            assert_balances_consistent(store)

        store.delete_account(account_ids[0])
        assert_balances_consistent(store)
        assert all(
            account_ids[0] not in t.account_ids for t in store.list_transactions()
        )


class TestCascade:
    """Tests for deleting an account with transactions."""

    def test_cascade_reverses_other_side(self, store, wallet, bank):
        """Test that a cascaded transfer gives the other account its money back."""
        transfer = store.add_transaction({
            "account_id": wallet.id,
            "to_account_id": bank.id,
            "type": "transfer",
            "amount": 40,
        })
        expense = store.add_transaction({"account_id": wallet.id, "type": "expense", "amount": 10})
        income = store.add_transaction({"account_id": bank.id, "type": "income", "amount": 5})

        cascaded = store.delete_account(wallet.id)

        assert sorted(cascaded) == sorted([transfer.id, expense.id])
        assert store.get_account_by_id(wallet.id) is None
        assert balance(store, bank.id) == Decimal("1005")
        assert [t.id for t in store.list_transactions()] == [income.id]

    def test_cascade_restores_transfer_source(self, store, wallet, bank):
        """Test that deleting a transfer's destination refunds the source account."""
        store.add_transaction({
            "account_id": bank.id,
            "to_account_id": wallet.id,
            "type": "transfer",
            "amount": 250,
        })
        assert balance(store, bank.id) == Decimal("750")

        cascaded = store.delete_account(wallet.id)

        assert len(cascaded) == 1
        assert balance(store, bank.id) == Decimal("1000")
        assert store.list_transactions(account_id=bank.id) == []

    def test_cascade_writes_share_a_batch(self, store, outbox, wallet, bank):
        store.add_transaction({
            "account_id": wallet.id,
            "to_account_id": bank.id,
            "type": "transfer",
            "amount": 40,
        })
        before = len(outbox.entries)
        store.delete_account(wallet.id)
        written = outbox.entries[before:]

        assert len({e.batch_id for e in written}) == 1
        assert {(e.document_id, e.operation) for e in written} >= {
            (wallet.id, SyncOperation.DELETE),
            (bank.id, SyncOperation.UPDATE),
        }
        # No balance write for the account being deleted
        assert not any(
            e.document_id == wallet.id and e.operation == SyncOperation.UPDATE
            for e in written
        )


class TestQueries:
    """Tests for transaction listing."""

    def test_newest_first_and_filters(self, store, wallet, bank):
        old = store.add_transaction({
            "account_id": wallet.id, "type": "expense", "amount": 1,
            "date": date(2024, 1, 5), "category_id": "food",
        })
        new = store.add_transaction({
            "account_id": bank.id, "type": "expense", "amount": 2,
            "date": date(2024, 3, 5), "category_id": "rent",
        })
        transfer = store.add_transaction({
            "account_id": bank.id, "to_account_id": wallet.id, "type": "transfer",
            "amount": 3, "date": date(2024, 2, 5),
        })

        assert [t.id for t in store.list_transactions()] == [new.id, transfer.id, old.id]
        assert [t.id for t in store.list_transactions(account_id=wallet.id)] == [transfer.id, old.id]
        assert [t.id for t in store.list_transactions(category_id="food")] == [old.id]
        assert [
            t.id for t in store.list_transactions(date_from=date(2024, 2, 5), date_to=date(2024, 3, 4))
        ] == [transfer.id]

    def test_categories(self, store):
        """Test that categories are reference data the store just holds."""
        store.register_category(Category(id="food", name="Food"))
        store.register_category({"id": "salary", "name": "Salary", "type": "income"})
        assert [c.id for c in store.list_categories()] == ["food", "salary"]


class TestBudgets:
    """Tests for budget creation and uniqueness."""

    def test_create_budget(self, store):
        budget = store.create_budget("food", 100, BudgetPeriod.month(2024, 3))
        assert budget.amount == Decimal("100")
        assert store.get_budget(budget.id) == budget

    def test_duplicate_period_conflicts(self, store):
        """Test that a category has at most one budget per period."""
        store.create_budget("food", 100, BudgetPeriod.month(2024, 3))
        with pytest.raises(ConflictError):
            store.create_budget("food", 200, BudgetPeriod.month(2024, 3))
        store.create_budget("food", 200, BudgetPeriod.month(2024, 4))
        store.create_budget("rent", 200, BudgetPeriod.month(2024, 3))
        assert len(store.list_budgets()) == 3

    @pytest.mark.parametrize("amount", [0, -10])
    def test_non_positive_amount(self, store, amount):
        with pytest.raises(ValidationError):
            store.create_budget("food", amount, BudgetPeriod.month(2024, 3))

    def test_period_is_mandatory(self, store):
        with pytest.raises(ValidationError):
            store.create_budget("food", 100, None)

    def test_update_budget(self, store):
        budget = store.create_budget("food", 100, BudgetPeriod.month(2024, 3))
        updated = store.update_budget(budget.id, amount=150, period=BudgetPeriod.month(2024, 4))
        assert updated.amount == Decimal("150")
        assert updated.period == BudgetPeriod.month(2024, 4)

    def test_update_into_taken_period_conflicts(self, store):
        march = store.create_budget("food", 100, BudgetPeriod.month(2024, 3))
        store.create_budget("food", 100, BudgetPeriod.month(2024, 4))
        with pytest.raises(ConflictError):
            store.update_budget(march.id, period=BudgetPeriod.month(2024, 4))
        assert store.get_budget(march.id).period == BudgetPeriod.month(2024, 3)

    def test_delete_budget(self, store):
        budget = store.create_budget("food", 100, BudgetPeriod.month(2024, 3))
        store.delete_budget(budget.id)
        assert store.list_budgets() == []
        with pytest.raises(NotFoundError):
            store.delete_budget(budget.id)


class TestSyncIntents:
    """Tests for the remote writes recorded by mutations."""

    def test_transfer_writes_share_a_batch(self, store, outbox, wallet, bank):
        """Test that a transfer records three writes as one logical unit."""
        before = len(outbox.entries)
        transfer = store.add_transaction({
            "account_id": wallet.id,
            "to_account_id": bank.id,
            "type": "transfer",
            "amount": 25,
        })
        written = outbox.entries[before:]

        assert len(written) == 3
        assert len({e.batch_id for e in written}) == 1
        assert {e.document_id for e in written} == {transfer.id, wallet.id, bank.id}
        balance_doc = next(e.document for e in written if e.document_id == wallet.id)
        assert balance_doc["balance"] == "75"

    @pytest.mark.asyncio
    async def test_status_pending_until_flushed(self, store, outbox, gateway, wallet):
        """Test that entities read as unsaved until the outbox reaches the gateway."""
        transaction = store.add_transaction(
            {"account_id": wallet.id, "type": "income", "amount": 5}
        )
        assert store.sync_status(transaction.id) == SyncStatus.PENDING
        assert store.sync_status(wallet.id) == SyncStatus.PENDING

        report = await outbox.flush()

        assert report.ok
        assert store.sync_status(transaction.id) == SyncStatus.SYNCED
        remote = gateway.snapshot("books/book-1/accounts")[wallet.id]
        assert Decimal(remote["balance"]) == Decimal("105")


class TestLoad:
    """Tests for hydrating the store from a snapshot."""

    def test_load_recomputes_balances(self, store, outbox):
        """Test that stored balances are ignored in favor of reconciliation."""
        store.load(
            accounts=[
                {"id": "a", "name": "Wallet", "balance": "999", "initial_balance": "100"},
                {"id": "b", "name": "Bank", "initial_balance": "0"},
            ],
            transactions=[
                {"id": "t1", "account_id": "a", "type": "expense", "amount": "30"},
                {"id": "t2", "account_id": "a", "to_account_id": "b", "type": "transfer", "amount": "20"},
            ],
            budgets=[
                {"id": "bud", "category_id": "food", "amount": "50",
                 "period": {"frequency": "monthly", "start": "2024-03-01"}},
            ],
        )
        assert balance(store, "a") == Decimal("50")
        assert balance(store, "b") == Decimal("20")
        assert store.get_budget("bud").amount == Decimal("50")
        assert outbox.entries == []

        # Loaded transactions reverse cleanly
        store.delete_transaction("t2")
        assert balance(store, "a") == Decimal("70")
        assert balance(store, "b") == Decimal("0")

    def test_load_rejects_dangling_reference(self, store, wallet):
        """Test that a bad snapshot leaves the current state in place."""
        with pytest.raises(ValidationError):
            store.load(
                accounts=[{"id": "a", "name": "Wallet"}],
                transactions=[{"id": "t1", "account_id": "zzz", "type": "income", "amount": 1}],
            )
        assert store.get_account_by_id(wallet.id) is not None


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
