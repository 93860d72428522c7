"""Tests for ChangeTracker (quote_sync.sync.tracker)."""

import pytest

from quote_sync.sync.context import SyncContext
from quote_sync.sync.errors import RecordNotFoundError
from quote_sync.sync.models import ChangeKind
from quote_sync.sync.persistence import PENDING_KEY
from quote_sync.sync.tracker import ChangeTracker


class FailingPendingStore:
    """Persistence that refuses to save the pending log."""

    def __init__(self, inner):
        self.inner = inner
        self.fail = False

    def load(self, key):
        return self.inner.load(key)

    def save(self, key, value):
        if self.fail and key == PENDING_KEY:
            raise OSError("disk full")
        self.inner.save(key, value)


class TestLocalWrites:
    def test_add_tracks_pending_change(self, context, clock):
        tracker = ChangeTracker(context)
        record = tracker.add("Carpe diem.", "Life")
        assert record.id == clock.now
        assert record.version == 1
        changes = tracker.pending_changes()
        assert [(c.kind, c.record_id) for c in changes] == [
            (ChangeKind.ADD, record.id)
        ]
        assert context.store.get(record.id) == record

    def test_add_strips_and_validates(self, context):
        tracker = ChangeTracker(context)
        record = tracker.add("  spaced  ", " Wisdom ")
        assert record.payload.text == "spaced"
        assert record.payload.category == "Wisdom"
        with pytest.raises(ValueError, match="text cannot be empty"):
            tracker.add("   ", "Life")
        with pytest.raises(ValueError, match="category cannot be empty"):
            tracker.add("text", "")

    def test_add_avoids_known_remote_ids(self, context, clock):
        """New ids never collide with ids the remote already knows."""
        context.known_remote_ids = {1, 2, clock.now + 6}
        record = ChangeTracker(context).add("x", "y")
        assert record.id == clock.now + 7

    def test_ids_are_unique_within_one_millisecond(self, context):
        tracker = ChangeTracker(context)
        first = tracker.add("a", "x")
        second = tracker.add("b", "x")
        assert second.id == first.id + 1

    def test_add_with_fixed_id(self, context):
        tracker = ChangeTracker(context)
        record = tracker.add("starter", "Life", record_id=3)
        assert record.id == 3
        assert tracker.pending_changes()[0].record_id == 3
        with pytest.raises(ValueError, match="Record 3 already exists"):
            tracker.add("again", "Life", record_id=3)
        assert len(tracker.pending_changes()) == 1

    def test_update_bumps_version(self, context, clock):
        tracker = ChangeTracker(context)
        added = tracker.add("old", "Life")
        clock.advance(5)
        updated = tracker.update(added.id, text="new")
        assert updated.version == 2
        assert updated.payload.category == "Life"
        assert [c.kind for c in tracker.pending_changes()] == [
            ChangeKind.ADD,
            ChangeKind.UPDATE,
        ]

    def test_identical_update_records_nothing(self, context):
        tracker = ChangeTracker(context)
        original = tracker.add("same", "Life")
        result = tracker.update(original.id, text="same", category="Life")
        assert result == original
        assert len(tracker.pending_changes()) == 1

    def test_update_keeps_conflict_mark(self, context):
        tracker = ChangeTracker(context)
        stored = tracker.add("text", "Life")
        context.store.replace_all(
            [
                stored.model_copy(
                    update={
                        "payload": stored.payload.model_copy(
                            update={"conflict_marked": True}
                        )
                    }
                )
            ]
        )
        assert tracker.update(stored.id, category="Wisdom").payload.conflict_marked

    def test_delete_tracks_last_known_state(self, context):
        tracker = ChangeTracker(context)
        added = tracker.add("bye", "Life")
        removed = tracker.delete(added.id)
        assert removed == added
        assert added.id not in context.store
        last = tracker.pending_changes()[-1]
        assert last.kind == ChangeKind.DELETE
        assert last.record == added

    def test_missing_record_raises(self, context):
        tracker = ChangeTracker(context)
        with pytest.raises(RecordNotFoundError):
            tracker.update(99, text="x")
        with pytest.raises(RecordNotFoundError):
            tracker.delete(99)
        assert tracker.pending_changes() == []


class TestAtomicity:
    def test_failed_tracking_rolls_back_add(self, kv, clock):
        persistence = FailingPendingStore(kv)
        context = SyncContext(persistence=persistence, clock=clock)
        tracker = ChangeTracker(context)
        persistence.fail = True
        with pytest.raises(OSError):
            tracker.add("text", "Life")
        assert len(context.store) == 0
        assert context.pending == []

    def test_failed_tracking_rolls_back_update_and_delete(self, kv, clock):
        persistence = FailingPendingStore(kv)
        context = SyncContext(persistence=persistence, clock=clock)
        tracker = ChangeTracker(context)
        original = tracker.add("text", "Life")
        persistence.fail = True

        with pytest.raises(OSError):
            tracker.update(original.id, text="changed")
        assert context.store.get(original.id) == original

        with pytest.raises(OSError):
            tracker.delete(original.id)
        assert context.store.get(original.id) == original
        assert len(context.pending) == 1


class TestPendingLog:
    def test_sequence_is_monotonic(self, context):
        tracker = ChangeTracker(context)
        first = tracker.add("a", "x")
        tracker.add("b", "x")
        tracker.update(first.id, text="c")
        assert [c.seq for c in tracker.pending_changes()] == [1, 2, 3]
        assert tracker.latest_seq() == 3

    def test_pending_log_persisted(self, context, kv):
        tracker = ChangeTracker(context)
        added = tracker.add("a", "x")
        saved = kv.load(PENDING_KEY)
        assert saved[0]["recordId"] == added.id
        assert saved[0]["kind"] == "add"

    def test_clear_by_id(self, context):
        tracker = ChangeTracker(context)
        first = tracker.add("a", "x")
        second = tracker.add("b", "x")
        assert tracker.clear([first.id]) == 1
        assert [c.record_id for c in tracker.pending_changes()] == [second.id]

    def test_clear_respects_cutoff(self, context):
        """Changes newer than the cutoff stay queued."""
        tracker = ChangeTracker(context)
        added = tracker.add("a", "x")
        cutoff = tracker.latest_seq()
        tracker.update(added.id, text="edited mid-cycle")
        assert tracker.clear([added.id], up_to_seq=cutoff) == 1
        remaining = tracker.pending_changes()
        assert [(c.kind, c.seq) for c in remaining] == [(ChangeKind.UPDATE, 2)]
        assert tracker.pending_ids(after_seq=cutoff) == {added.id}

    def test_clear_nothing(self, context):
        assert ChangeTracker(context).clear([5]) == 0
