"""
Recurring Scheduler

Materializes transactions from recurring templates (rent, salary,
subscriptions) when they fall due.

Each due run becomes an ordinary transaction added through the ledger
store, dated on its scheduled day, so balances and budgets treat it like
any other entry. A schedule that was missed for several periods catches
up with one transaction per missed run.
"""

from datetime import date
from typing import Any, Optional, Union
from uuid import uuid4

from dateutil.relativedelta import relativedelta

from pocket_ledger.ledger.errors import (
    ConflictError,
    LedgerError,
    NotFoundError,
    coerce,
)
from pocket_ledger.ledger.store import LedgerStore
from pocket_ledger.log import get_logger
from pocket_ledger.models.ledger import (
    RecurrenceFrequency,
    RecurringTransaction,
    Transaction,
    TransactionDraft,
    utc_now,
)
from pocket_ledger.models.sync import Collection, SyncOperation, collection_path

logger = get_logger(__name__)


def advance(day: date, frequency: RecurrenceFrequency, interval: int = 1) -> date:
    """The run date `interval` steps of `frequency` after `day`."""
    if frequency == RecurrenceFrequency.DAILY:
        return day + relativedelta(days=interval)
    if frequency == RecurrenceFrequency.WEEKLY:
        return day + relativedelta(weeks=interval)
    if frequency == RecurrenceFrequency.MONTHLY:
        return day + relativedelta(months=interval)
    return day + relativedelta(years=interval)


class RecurringScheduler:
    """Recurring templates of one book, processed against its ledger store."""

    def __init__(self, store: LedgerStore):
        self._store = store
        self._path = collection_path(store.book_id, Collection.RECURRING_TRANSACTIONS)
        self._schedules: dict[str, RecurringTransaction] = {}

    def add(self, recurring: Union[RecurringTransaction, dict[str, Any]]) -> RecurringTransaction:
        """
        Register a schedule.

        Raises:
            ValidationError: Malformed template
            NotFoundError: The template references a missing account
            ConflictError: A schedule with this id already exists
        """
        if isinstance(recurring, dict) and not recurring.get("id"):
            recurring = {**recurring, "id": str(uuid4())}
        recurring = coerce(RecurringTransaction, recurring)

        if recurring.id in self._schedules:
            raise ConflictError(f"Recurring transaction already exists: {recurring.id}")
        self._require_accounts(recurring.template)

        self._schedules[recurring.id] = recurring
        self._store.outbox.enqueue(
            self._path,
            recurring.id,
            SyncOperation.CREATE,
            recurring.model_dump(mode="json"),
        )
        logger.info(
            "recurring_added",
            recurring_id=recurring.id,
            frequency=recurring.frequency.value,
            interval=recurring.interval,
            next_run=recurring.next_run.isoformat(),
        )
        return recurring.model_copy(deep=True)

    def update(
        self,
        recurring_id: str,
        active: Optional[bool] = None,
        interval: Optional[int] = None,
        frequency: Optional[Union[RecurrenceFrequency, str]] = None,
        next_run: Optional[date] = None,
        template: Optional[Union[TransactionDraft, dict[str, Any]]] = None,
    ) -> RecurringTransaction:
        """
        Pause, resume or reschedule a schedule, or replace its template.

        Raises:
            NotFoundError: Unknown schedule, or the template references a missing account
            ValidationError: Malformed interval, frequency or template
        """
        current = self._schedules.get(recurring_id)
        if current is None:
            raise NotFoundError(f"Recurring transaction not found: {recurring_id}")

        changes = {
            field: value
            for field, value in (
                ("active", active),
                ("interval", interval),
                ("frequency", frequency),
                ("next_run", next_run),
                ("template", template),
            )
            if value is not None
        }
        if not changes:
            return current.model_copy(deep=True)

        updated = coerce(RecurringTransaction, {
            **current.model_dump(),
            **changes,
            "updated_at": utc_now(),
        })
        if template is not None:
            self._require_accounts(updated.template)

        self._schedules[recurring_id] = updated
        self._store.outbox.enqueue(
            self._path,
            recurring_id,
            SyncOperation.UPDATE,
            updated.model_dump(mode="json", include=set(changes) | {"updated_at"}),
        )
        logger.info(
            "recurring_updated",
            recurring_id=recurring_id,
            fields=sorted(changes),
            active=updated.active,
        )
        return updated.model_copy(deep=True)

    def remove(self, recurring_id: str) -> RecurringTransaction:
        removed = self._schedules.pop(recurring_id, None)
        if removed is None:
            raise NotFoundError(f"Recurring transaction not found: {recurring_id}")
        self._store.outbox.enqueue(self._path, recurring_id, SyncOperation.DELETE)
        logger.info("recurring_removed", recurring_id=recurring_id)
        return removed

    def get(self, recurring_id: str) -> Optional[RecurringTransaction]:
        schedule = self._schedules.get(recurring_id)
        return schedule.model_copy(deep=True) if schedule else None

    def process_due(self, today: Optional[date] = None) -> list[Transaction]:
        """
        Create every transaction that is due on or before `today`.

        A schedule whose template can no longer be applied (for example its
        account was deleted) is deactivated and skipped; the others still run.

        Returns:
            The transactions created, in schedule order
        """
        today = today or date.today()
        created: list[Transaction] = []

        for recurring_id, schedule in list(self._schedules.items()):
            if not schedule.active or schedule.next_run > today:
                continue

            runs = 0
            while schedule.active and schedule.next_run <= today:
                draft = schedule.template.model_copy(update={"date": schedule.next_run})
                try:
                    created.append(self._store.add_transaction(draft))
                except LedgerError as e:
                    logger.error(
                        "recurring_run_failed",
                        recurring_id=recurring_id,
                        run_date=schedule.next_run.isoformat(),
                        error=str(e),
                    )
                    schedule = schedule.model_copy(update={"active": False})
                    break
                runs += 1
                schedule = schedule.model_copy(update={
                    "last_run": schedule.next_run,
                    "next_run": advance(schedule.next_run, schedule.frequency, schedule.interval),
                })

            schedule = schedule.model_copy(update={"updated_at": utc_now()})
            self._schedules[recurring_id] = schedule
            self._store.outbox.enqueue(
                self._path,
                recurring_id,
                SyncOperation.UPDATE,
                schedule.model_dump(
                    mode="json",
                    include={"next_run", "last_run", "active", "updated_at"},
                ),
            )
            logger.info(
                "recurring_processed",
                recurring_id=recurring_id,
                runs=runs,
                active=schedule.active,
                next_run=schedule.next_run.isoformat(),
            )

        return created

    def _require_accounts(self, template: TransactionDraft) -> None:
        for account_id in (template.account_id, template.to_account_id):
            if account_id and self._store.get_account_by_id(account_id) is None:
                raise NotFoundError(f"Account not found: {account_id}")

    # Defined last: the name shadows the builtin in the class body
    def list(self) -> list[RecurringTransaction]:
        return [s.model_copy(deep=True) for s in self._schedules.values()]
