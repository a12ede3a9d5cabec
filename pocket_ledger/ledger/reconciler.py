"""
Balance Reconciler

Pure functions mapping a transaction to the signed change it makes to
each account's balance. No state, no I/O.

    income    on account_id     -> +amount
    expense   on account_id     -> -amount
    transfer  on account_id     -> -amount  (source)
    transfer  on to_account_id  -> +amount  (destination)
    anything else               ->  0

DESIGN DECISION: Edits and deletes reverse the effect map that was
stored when the transaction was applied, never a recomputation. The old
effect is therefore undone exactly even if the transaction has changed
since.
"""

from decimal import Decimal
from typing import Mapping

from pocket_ledger.models.ledger import Transaction, TransactionType


ZERO = Decimal("0")

EffectMap = dict[str, Decimal]


def effect(transaction: Transaction, account_id: str) -> Decimal:
    """Signed balance change `transaction` makes to `account_id`."""
    amount = transaction.amount

    if transaction.type == TransactionType.TRANSFER:
        if account_id == transaction.account_id:
            return -amount
        if account_id == transaction.to_account_id:
            return amount
        return ZERO

    if account_id != transaction.account_id:
        return ZERO
    if transaction.type == TransactionType.INCOME:
        return amount
    if transaction.type == TransactionType.EXPENSE:
        return -amount
    return ZERO


def reverse(amount: Decimal) -> Decimal:
    return -amount


def effects(transaction: Transaction) -> EffectMap:
    """Effect on every account the transaction touches."""
    return {
        account_id: effect(transaction, account_id)
        for account_id in transaction.account_ids
    }


def net_deltas(old_effects: Mapping[str, Decimal], new_effects: Mapping[str, Decimal]) -> EffectMap:
    """
    Combine reversing `old_effects` with applying `new_effects`.

    Accounts in both maps get one merged delta, so an edit that keeps the
    same account produces a single balance write. Zero deltas are dropped.
    """
    deltas: EffectMap = {}
    for account_id, amount in old_effects.items():
        deltas[account_id] = deltas.get(account_id, ZERO) + reverse(amount)
    for account_id, amount in new_effects.items():
        deltas[account_id] = deltas.get(account_id, ZERO) + amount
    return {account_id: delta for account_id, delta in deltas.items() if delta != ZERO}
