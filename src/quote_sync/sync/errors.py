"""Exception hierarchy for the sync engine.

All sync-cycle failures are caught at the scheduler boundary and reported
as ``SyncEvent`` instances; only ``RecordNotFoundError`` (misuse of the local
write API) reaches callers directly.
"""


class SyncError(Exception):
    """Base exception for sync operations."""


class GatewayError(SyncError):
    """The remote gateway failed to push or pull.

    Recoverable: the cycle aborts cleanly and the next trigger retries from
    scratch with the pending-changes log untouched.
    """


class ConflictResolutionError(SyncError):
    """Manual resolution input was missing, malformed, or raised."""


class InvariantViolation(SyncError):
    """A single record broke a data invariant (duplicate id, negative
    version or timestamp).  The record is skipped; the cycle continues.
    """

    def __init__(self, record_id: int | None, reason: str) -> None:
        self.record_id = record_id
        self.reason = reason
        super().__init__(f"record {record_id}: {reason}")


class RecordNotFoundError(SyncError, KeyError):
    """The local write API was asked to change a record that does not exist."""

    def __init__(self, record_id: int) -> None:
        self.record_id = record_id
        super().__init__(f"Record {record_id} not found")

    def __str__(self) -> str:
        return f"Record {self.record_id} not found"
