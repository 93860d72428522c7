"""Pending-change bookkeeping and the local write API.

``ChangeTracker`` is the only component that performs local writes.  Each
``add``/``update``/``delete`` mutates the record store and appends a
``PendingChange`` as one step from the caller's point of view: if tracking
fails, the store mutation is rolled back before the error propagates.

Pending changes are kept in creation order (FIFO) so earlier local edits
are pushed before later ones.
"""

from __future__ import annotations

import logging
from typing import Iterable

from .context import SyncContext
from .errors import RecordNotFoundError
from .models import ChangeKind, Origin, PendingChange, Quote, Record

logger = logging.getLogger(__name__)


class ChangeTracker:
    """Record local mutations as pending changes.

    Args:
        context: Shared sync context holding the store and pending log.
    """

    def __init__(self, context: SyncContext) -> None:
        self.context = context

    # ------------------------------------------------------------------
    # Pending log
    # ------------------------------------------------------------------

    def record_change(
        self, kind: ChangeKind, record: Record
    ) -> PendingChange:
        """Append a pending change for *record* and persist the log."""
        change = PendingChange(
            seq=self.latest_seq() + 1,
            kind=kind,
            record_id=record.id,
            record=record,
            created_at=self.context.clock.now_ms(),
        )
        self.context.pending.append(change)
        try:
            self.context.save_pending()
        except Exception:
            self.context.pending.pop()
            raise
        logger.debug("Tracked %s for record %s", kind.value, record.id)
        return change

    def pending_changes(self) -> list[PendingChange]:
        """Return pending changes in creation order."""
        return list(self.context.pending)

    def has_pending(self) -> bool:
        return bool(self.context.pending)

    def latest_seq(self) -> int:
        """Return the sequence number of the newest pending change (0 if none)."""
        if not self.context.pending:
            return 0
        return self.context.pending[-1].seq

    def pending_ids(self, after_seq: int = 0) -> set[int]:
        """Return record ids with pending changes newer than *after_seq*."""
        return {
            c.record_id for c in self.context.pending if c.seq > after_seq
        }

    def clear(
        self, ids: Iterable[int], up_to_seq: int | None = None
    ) -> int:
        """Remove satisfied pending changes by record id.

        Args:
            ids: Record ids whose pending changes are satisfied.
            up_to_seq: When given, only entries with ``seq <= up_to_seq``
                are removed, so changes committed after a cycle started
                stay queued.

        Returns:
            Number of entries removed.
        """
        targets = set(ids)
        kept = [
            c
            for c in self.context.pending
            if c.record_id not in targets
            or (up_to_seq is not None and c.seq > up_to_seq)
        ]
        removed = len(self.context.pending) - len(kept)
        if removed:
            self.context.pending = kept
            self.context.save_pending()
        return removed

    # ------------------------------------------------------------------
    # Local write API
    # ------------------------------------------------------------------

    def add(
        self, text: str, category: str, record_id: int | None = None
    ) -> Record:
        """Create a new local quote and track it as an ``add``.

        Args:
            text: Quote text.
            category: Quote category.
            record_id: Fixed id for the record, used for the starter quotes
                every client shares.  A fresh id is minted when omitted.

        Raises:
            ValueError: If *text* or *category* is blank, or *record_id* is
                already in use.
        """
        payload = _make_payload(text, category)
        store = self.context.store
        if record_id is None:
            record_id = store.next_id(self.context.known_remote_ids)
        elif record_id in store:
            raise ValueError(f"Record {record_id} already exists")
        record = Record(
            id=record_id,
            payload=payload,
            version=1,
            last_modified=self.context.clock.now_ms(),
            origin=Origin.LOCAL,
        )
        stored = store.upsert(record)
        self._track_or_rollback(ChangeKind.ADD, stored, previous=None)
        logger.info("Added quote %s (%s)", stored.id, payload.category)
        return stored

    def update(
        self,
        record_id: int,
        text: str | None = None,
        category: str | None = None,
    ) -> Record:
        """Change the text and/or category of an existing quote.

        A change that leaves the payload identical records nothing and
        returns the stored record unchanged.

        Raises:
            RecordNotFoundError: If *record_id* is not in the store.
        """
        store = self.context.store
        existing = store.get(record_id)
        if existing is None:
            raise RecordNotFoundError(record_id)
        payload = _make_payload(
            existing.payload.text if text is None else text,
            existing.payload.category if category is None else category,
            conflict_marked=existing.payload.conflict_marked,
        )
        stored = store.upsert(existing.model_copy(update={"payload": payload}))
        if stored is existing:
            return stored
        self._track_or_rollback(ChangeKind.UPDATE, stored, previous=existing)
        logger.info("Updated quote %s to version %d", stored.id, stored.version)
        return stored

    def delete(self, record_id: int) -> Record:
        """Remove a quote locally and track it as a ``delete``.

        Raises:
            RecordNotFoundError: If *record_id* is not in the store.
        """
        store = self.context.store
        removed = store.remove(record_id)
        if removed is None:
            raise RecordNotFoundError(record_id)
        self._track_or_rollback(ChangeKind.DELETE, removed, previous=removed)
        logger.info("Deleted quote %s", record_id)
        return removed

    def _track_or_rollback(
        self, kind: ChangeKind, record: Record, previous: Record | None
    ) -> None:
        try:
            self.record_change(kind, record)
        except Exception:
            logger.error(
                "Change tracking failed for record %s; rolling back",
                record.id,
            )
            self.context.store.restore(previous, record.id)
            raise


def _make_payload(
    text: str, category: str, conflict_marked: bool = False
) -> Quote:
    text = text.strip()
    category = category.strip()
    if not text:
        raise ValueError("Quote text cannot be empty")
    if not category:
        raise ValueError("Quote category cannot be empty")
    return Quote(text=text, category=category, conflict_marked=conflict_marked)
