"""Remote sync package."""

from pocket_ledger.sync.outbox import FailureCallback, SyncOutbox

__all__ = [
    "FailureCallback",
    "SyncOutbox",
]
