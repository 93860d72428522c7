"""Pydantic models for the quote sync engine.

Defines the core data contracts used across all sync modules:

- ``Quote``: The domain payload carried by a record (opaque to the engine).
- ``Record``: A versioned, synchronised unit of data.
- ``PendingChange``: A local mutation not yet confirmed by the remote.
- ``Conflict``: A divergence between local and remote state for one id.
- ``SyncEvent`` / ``SyncLogEntry``: Observability records.
- ``SyncStateSnapshot``: The persisted part of the engine's sync state.
- ``CycleReport``: Outcome of one reconciliation cycle.

Records travel over the wire and to disk with camelCase keys
(``lastModified``); both spellings are accepted on input.  All models are
frozen (immutable) for safety.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

_WIRE_CONFIG = ConfigDict(
    frozen=True,
    alias_generator=to_camel,
    populate_by_name=True,
)


class Origin(str, Enum):
    """Provenance tag of a record.  Diagnostic only."""

    LOCAL = "local"
    REMOTE = "remote"
    MERGED = "merged"


class ChangeKind(str, Enum):
    """Kinds of local mutation tracked as pending changes."""

    ADD = "add"
    UPDATE = "update"
    DELETE = "delete"


class ConflictKind(str, Enum):
    """Kinds of divergence the detector can report."""

    UPDATE = "update"
    ADDITION = "addition"
    DELETION = "deletion"


class Resolution(str, Enum):
    """Per-conflict choice applied by the resolver."""

    REMOTE = "remote"
    LOCAL = "local"
    KEEP_BOTH = "keep-both"


class ConflictStrategy(str, Enum):
    """Configured conflict-resolution policy."""

    REMOTE_WINS = "remote-wins"
    LOCAL_WINS = "local-wins"
    MANUAL = "manual"
    MERGE_KEEP_BOTH = "merge-keep-both"


class SyncStatus(str, Enum):
    """Machine-readable status tag carried by every sync event."""

    SYNCING = "syncing"
    SUCCESS = "success"
    CONFLICT = "conflict"
    ERROR = "error"


class SchedulerState(str, Enum):
    """States of the sync scheduler state machine."""

    IDLE = "idle"
    SYNCING = "syncing"
    AWAITING_RESOLUTION = "awaiting-resolution"
    BACKOFF = "backoff"


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------


class Quote(BaseModel):
    """Quote payload.

    Attributes:
        text: The quote text.
        category: Free-form category label.
        conflict_marked: Set on the local copy kept by merge-keep-both so
            callers can tell it apart from the remote duplicate.
    """

    model_config = _WIRE_CONFIG

    text: str
    category: str
    conflict_marked: bool = False


class Record(BaseModel):
    """A versioned unit of synchronised data.

    Attributes:
        id: Stable identifier, immutable once assigned.
        payload: Domain content.
        version: Incremented on every mutation.
        last_modified: Epoch milliseconds of the most recent mutation.
        origin: Provenance tag (diagnostics only).
    """

    model_config = _WIRE_CONFIG

    id: int
    payload: Quote
    version: int = 1
    last_modified: int = 0
    origin: Origin = Origin.LOCAL

    def to_wire(self) -> dict[str, Any]:
        """Serialise with camelCase keys for persistence and transport."""
        return self.model_dump(mode="json", by_alias=True)


class PendingChange(BaseModel):
    """A local mutation awaiting confirmation by the remote.

    Attributes:
        seq: Monotonic sequence number assigned by the change tracker.
        kind: Mutation kind.
        record_id: Id of the affected record.
        record: Snapshot of the affected record (last known state for
            ``delete``).
        created_at: Epoch milliseconds when the mutation committed.
    """

    model_config = _WIRE_CONFIG

    seq: int
    kind: ChangeKind
    record_id: int
    record: Record
    created_at: int

    def to_wire(self) -> dict[str, Any]:
        """Serialise with camelCase keys for persistence and transport."""
        return self.model_dump(mode="json", by_alias=True)


class Conflict(BaseModel):
    """A detected divergence between local and remote state for one id.

    ``local`` is absent for ``addition`` conflicts, ``remote`` is absent for
    ``deletion`` conflicts.
    """

    model_config = _WIRE_CONFIG

    kind: ConflictKind
    record_id: int
    local: Record | None = None
    remote: Record | None = None
    detected_at: int


# ---------------------------------------------------------------------------
# Observability
# ---------------------------------------------------------------------------


class SyncEvent(BaseModel):
    """Event fired for cycle start, success, conflict, and failure."""

    model_config = _WIRE_CONFIG

    status: SyncStatus
    message: str
    timestamp: int
    details: dict[str, Any] = Field(default_factory=dict)


class SyncLogEntry(BaseModel):
    """One timestamped entry in the bounded sync log."""

    model_config = _WIRE_CONFIG

    timestamp: int
    level: str
    message: str


class SyncStateSnapshot(BaseModel):
    """Persisted portion of the engine's sync state."""

    model_config = _WIRE_CONFIG

    last_sync_at: int | None = None
    strategy: ConflictStrategy = ConflictStrategy.REMOTE_WINS
    known_remote_ids: list[int] = Field(default_factory=list)
    consecutive_failures: int = 0
    backoff_until: int | None = None


# ---------------------------------------------------------------------------
# Cycle report
# ---------------------------------------------------------------------------


class CycleReport(BaseModel):
    """Aggregate outcome of one reconciliation cycle.

    Attributes:
        started_at: Epoch milliseconds when the cycle started.
        completed_at: Epoch milliseconds when it finished (``None`` while
            running or when aborted).
        status: Final status tag.
        pushed: Number of pending changes pushed.
        pulled: Number of records accepted from the remote snapshot.
        conflicts: Conflicts detected during the cycle.
        resolutions: Choice applied per conflict, in conflict order.
        added_ids: Ids that are new in the local store after the cycle.
        updated_ids: Ids whose stored record changed.
        removed_ids: Ids removed from the local store.
        requeued_ids: Ids re-queued as pending changes for the next cycle.
        skipped: Human-readable invariant violations that were skipped.
        error: Error message when the cycle failed.
    """

    model_config = ConfigDict(frozen=True)

    started_at: int
    completed_at: int | None = None
    status: SyncStatus = SyncStatus.SUCCESS
    pushed: int = 0
    pulled: int = 0
    conflicts: list[Conflict] = Field(default_factory=list)
    resolutions: list[Resolution] = Field(default_factory=list)
    added_ids: list[int] = Field(default_factory=list)
    updated_ids: list[int] = Field(default_factory=list)
    removed_ids: list[int] = Field(default_factory=list)
    requeued_ids: list[int] = Field(default_factory=list)
    skipped: list[str] = Field(default_factory=list)
    error: str | None = None

    def summary(self) -> str:
        """Format a one-line human-readable summary of the cycle."""
        if self.error:
            return f"Sync failed: {self.error}"
        parts = [
            f"{self.pushed} pushed",
            f"{self.pulled} pulled",
            f"{len(self.added_ids)} added",
            f"{len(self.updated_ids)} updated",
            f"{len(self.removed_ids)} removed",
        ]
        if self.conflicts:
            parts.append(f"{len(self.conflicts)} conflicts resolved")
        if self.skipped:
            parts.append(f"{len(self.skipped)} skipped")
        return "Sync completed: " + ", ".join(parts)
