"""In-memory record store, the single source of truth for local data.

Every mutation is followed by a save of the full ordered record list
through the persistence collaborator.  ``upsert`` only bumps ``version``
and ``last_modified`` when the payload actually changes, so re-saving an
identical record never manufactures a conflict.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Iterable

from pydantic import ValidationError

from .models import Record
from .persistence import RECORDS_KEY, KeyValueStore

if TYPE_CHECKING:
    from .context import Clock

logger = logging.getLogger(__name__)


class RecordStore:
    """Ordered collection of versioned records keyed by id.

    Args:
        persistence: Durable storage written after every mutation.
        clock: Source of ``last_modified`` timestamps.
    """

    def __init__(self, persistence: KeyValueStore, clock: Clock) -> None:
        self._persistence = persistence
        self._clock = clock
        self._records: dict[int, Record] = {}

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def load(self) -> int:
        """Replace the in-memory collection with the persisted one.

        Invalid persisted entries are skipped with a warning.

        Returns:
            Number of records loaded.
        """
        raw = self._persistence.load(RECORDS_KEY) or []
        records: dict[int, Record] = {}
        for item in raw:
            try:
                record = Record.model_validate(item)
            except ValidationError as exc:
                logger.warning("Skipping unreadable stored record: %s", exc)
                continue
            records[record.id] = record
        self._records = records
        return len(records)

    def _save(self) -> None:
        self._persistence.save(
            RECORDS_KEY, [r.to_wire() for r in self._records.values()]
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get(self, record_id: int) -> Record | None:
        """Return the record for *record_id*, or ``None``."""
        return self._records.get(record_id)

    def all(self) -> list[Record]:
        """Return all records in insertion order."""
        return list(self._records.values())

    def ids(self) -> list[int]:
        return list(self._records)

    def __contains__(self, record_id: object) -> bool:
        return record_id in self._records

    def __len__(self) -> int:
        return len(self._records)

    def next_id(self, extra_ids: Iterable[int] = ()) -> int:
        """Return a fresh id for a new record.

        The id is the current time in milliseconds, or one past the highest
        id used locally or in *extra_ids* when that is larger.  Clients that
        have not yet seen each other's records therefore mint different ids
        unless they create a record in the same millisecond.
        """
        highest = max([0, *self._records, *extra_ids])
        return max(self._clock.now_ms(), highest + 1)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def upsert(self, record: Record) -> Record:
        """Insert or update *record*.

        For an existing id the stored version is incremented and
        ``last_modified`` refreshed only when the payload differs; an
        identical payload is a no-op returning the stored record.

        Returns:
            The record as stored.
        """
        existing = self._records.get(record.id)
        if existing is not None:
            if existing.payload == record.payload:
                return existing
            stored = record.model_copy(
                update={
                    "version": existing.version + 1,
                    "last_modified": max(
                        self._clock.now_ms(), existing.last_modified + 1
                    ),
                }
            )
        else:
            stored = record.model_copy(
                update={
                    "version": max(record.version, 1),
                    "last_modified": record.last_modified
                    or self._clock.now_ms(),
                }
            )
        self._records[stored.id] = stored
        self._save()
        return stored

    def remove(self, record_id: int) -> Record | None:
        """Remove and return the record for *record_id* (``None`` if absent)."""
        removed = self._records.pop(record_id, None)
        if removed is not None:
            self._save()
        return removed

    def restore(self, record: Record | None, record_id: int) -> None:
        """Put back a prior state of *record_id* (``None`` removes it).

        Used to roll back a mutation whose change tracking failed; versions
        are restored verbatim.
        """
        if record is None:
            self._records.pop(record_id, None)
        else:
            self._records[record_id] = record
        self._save()

    def replace_all(self, records: Iterable[Record]) -> None:
        """Replace the whole collection in one write.

        Records are stored verbatim (no version bump): this is how remote-
        derived state produced by a sync cycle is applied as a single unit.
        """
        self._records = {r.id: r for r in records}
        self._save()
