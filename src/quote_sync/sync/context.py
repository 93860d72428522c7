"""Explicit sync context shared by every engine component.

All mutable engine state -- the record store, the pending-changes log and
the sync state proper -- lives on one ``SyncContext`` instance that is
handed to each component's constructor.  There is no module-level mutable
state.
"""

from __future__ import annotations

import logging
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Protocol

from pydantic import ValidationError

from .models import (
    Conflict,
    ConflictStrategy,
    PendingChange,
    SchedulerState,
    SyncLogEntry,
    SyncStateSnapshot,
)
from .persistence import (
    PENDING_KEY,
    SYNC_LOG_KEY,
    SYNC_STATE_KEY,
    KeyValueStore,
)
from .store import RecordStore

logger = logging.getLogger(__name__)

DEFAULT_LOG_LIMIT = 100


class Clock(Protocol):
    """Source of epoch-millisecond timestamps."""

    def now_ms(self) -> int:
        ...  # pragma: no cover


class SystemClock:
    """Wall-clock implementation of ``Clock``."""

    def now_ms(self) -> int:
        return int(time.time() * 1000)


@dataclass
class SyncContext:
    """Process-wide sync state plus the stores it governs.

    Attributes:
        persistence: Durable key/value storage.
        clock: Timestamp source.
        strategy: Active conflict-resolution policy.
        log_limit: Maximum number of sync log entries kept.
        store: The record store.
        pending: Ordered pending-changes log (owned by ``ChangeTracker``).
        last_sync_at: Completion time of the last successful cycle.
        in_flight: Re-entrancy guard for sync cycles.
        state: Current scheduler state.
        conflicts: Conflicts awaiting manual resolution.
        known_remote_ids: Ids present in the last accepted remote snapshot.
        consecutive_failures: Failed cycles since the last success.
        backoff_until: Periodic ticks before this time may be skipped.
        sync_log: Bounded log of recent sync events, oldest first.
    """

    persistence: KeyValueStore
    clock: Clock = field(default_factory=SystemClock)
    strategy: ConflictStrategy = ConflictStrategy.REMOTE_WINS
    log_limit: int = DEFAULT_LOG_LIMIT
    store: RecordStore = field(init=False)
    pending: list[PendingChange] = field(default_factory=list)
    last_sync_at: int | None = None
    in_flight: bool = False
    state: SchedulerState = SchedulerState.IDLE
    conflicts: list[Conflict] = field(default_factory=list)
    known_remote_ids: set[int] = field(default_factory=set)
    consecutive_failures: int = 0
    backoff_until: int | None = None
    sync_log: deque[SyncLogEntry] = field(init=False)

    def __post_init__(self) -> None:
        self.store = RecordStore(self.persistence, self.clock)
        self.sync_log = deque(maxlen=self.log_limit)

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def load(self) -> None:
        """Restore records, pending changes, sync state and log from storage.

        The configured ``strategy`` is kept even if a different one was
        persisted.
        """
        count = self.store.load()

        self.pending = []
        for item in self.persistence.load(PENDING_KEY) or []:
            try:
                self.pending.append(PendingChange.model_validate(item))
            except ValidationError as exc:
                logger.warning("Skipping unreadable pending change: %s", exc)
        self.pending.sort(key=lambda c: c.seq)

        raw_state = self.persistence.load(SYNC_STATE_KEY)
        if raw_state:
            snapshot = SyncStateSnapshot.model_validate(raw_state)
            self.last_sync_at = snapshot.last_sync_at
            self.known_remote_ids = set(snapshot.known_remote_ids)
            self.consecutive_failures = snapshot.consecutive_failures
            self.backoff_until = snapshot.backoff_until
            if snapshot.strategy != self.strategy:
                logger.info(
                    "Configured strategy %s replaces persisted %s",
                    self.strategy.value,
                    snapshot.strategy.value,
                )

        self.sync_log.clear()
        for item in self.persistence.load(SYNC_LOG_KEY) or []:
            self.sync_log.append(SyncLogEntry.model_validate(item))

        logger.info(
            "Loaded %d records, %d pending changes", count, len(self.pending)
        )

    # ------------------------------------------------------------------
    # Saving
    # ------------------------------------------------------------------

    def save_pending(self) -> None:
        self.persistence.save(
            PENDING_KEY, [c.to_wire() for c in self.pending]
        )

    def save_state(self) -> None:
        self.persistence.save(
            SYNC_STATE_KEY,
            self.snapshot().model_dump(mode="json", by_alias=True),
        )

    def snapshot(self) -> SyncStateSnapshot:
        """Return the persistable part of the sync state."""
        return SyncStateSnapshot(
            last_sync_at=self.last_sync_at,
            strategy=self.strategy,
            known_remote_ids=sorted(self.known_remote_ids),
            consecutive_failures=self.consecutive_failures,
            backoff_until=self.backoff_until,
        )

    def append_log(self, level: str, message: str) -> SyncLogEntry:
        """Append an entry to the bounded sync log and persist it."""
        entry = SyncLogEntry(
            timestamp=self.clock.now_ms(), level=level, message=message
        )
        self.sync_log.append(entry)
        self.persistence.save(
            SYNC_LOG_KEY,
            [e.model_dump(mode="json", by_alias=True) for e in self.sync_log],
        )
        return entry
