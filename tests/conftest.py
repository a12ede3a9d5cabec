"""
Shared fixtures for Pocket Ledger tests.

No test talks to a real backend: the gateway is the in-memory store,
optionally wrapped to fail on demand.
"""

from decimal import Decimal

import pytest

from pocket_ledger.config import SyncSettings, get_settings
from pocket_ledger.ledger import LedgerStore
from pocket_ledger.services.storage import InMemoryDocumentStore, PersistenceError
from pocket_ledger.sync import SyncOutbox


class FlakyDocumentStore(InMemoryDocumentStore):
    """
    In-memory store whose writes fail on demand.

    `failures` write calls fail before the store starts behaving;
    `healthy = False` makes every write fail until switched back.
    """

    def __init__(self, failures: int = 0, healthy: bool = True):
        super().__init__()
        self.failures = failures
        self.healthy = healthy
        self.calls = 0

    def _maybe_fail(self):
        self.calls += 1
        if not self.healthy:
            raise PersistenceError("backend down")
        if self.failures > 0:
            self.failures -= 1
            raise PersistenceError("transient error")

    async def create(self, collection_path, document_id, document):
        self._maybe_fail()
        await super().create(collection_path, document_id, document)

    async def update(self, collection_path, document_id, partial_document, merge=True):
        self._maybe_fail()
        await super().update(collection_path, document_id, partial_document, merge)

    async def delete(self, collection_path, document_id):
        self._maybe_fail()
        await super().delete(collection_path, document_id)


@pytest.fixture(autouse=True)
def fresh_settings():
    """Settings are cached per process; start every test from the environment."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def sync_settings():
    """Retry settings without waiting between attempts."""
    return SyncSettings(
        max_attempts=3,
        backoff_multiplier=0,
        backoff_min=0,
        backoff_max=0,
        outbox_path=None,
    )


@pytest.fixture
def gateway():
    return InMemoryDocumentStore()


@pytest.fixture
def flaky_gateway_cls():
    return FlakyDocumentStore


@pytest.fixture
def outbox(gateway, sync_settings):
    return SyncOutbox(gateway, sync_settings)


@pytest.fixture
def store(outbox):
    return LedgerStore("book-1", "user-1", outbox)


@pytest.fixture
def wallet(store):
    """Asset account opened with 100."""
    return store.create_account("Wallet", initial_balance=Decimal("100"))


@pytest.fixture
def bank(store):
    """Asset account opened with 1000."""
    return store.create_account("Bank", initial_balance=Decimal("1000"))
