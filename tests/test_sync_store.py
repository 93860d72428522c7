"""Tests for RecordStore (quote_sync.sync.store)."""

from quote_sync.sync.models import Quote, Record
from quote_sync.sync.persistence import RECORDS_KEY, MemoryKeyValueStore
from quote_sync.sync.store import RecordStore


def _record(record_id, text="text", category="Life", version=1, last_modified=0):
    return Record(
        id=record_id,
        payload=Quote(text=text, category=category),
        version=version,
        last_modified=last_modified,
    )


class TestUpsert:
    def test_insert_stamps_timestamp(self, kv, clock):
        store = RecordStore(kv, clock)
        stored = store.upsert(_record(1))
        assert stored.version == 1
        assert stored.last_modified == clock.now
        assert store.get(1) == stored

    def test_insert_keeps_given_timestamp(self, kv, clock):
        store = RecordStore(kv, clock)
        stored = store.upsert(_record(1, last_modified=55, version=3))
        assert stored.last_modified == 55
        assert stored.version == 3

    def test_change_bumps_version(self, kv, clock):
        store = RecordStore(kv, clock)
        first = store.upsert(_record(1))
        clock.advance(10)
        second = store.upsert(_record(1, text="changed"))
        assert second.version == first.version + 1
        assert second.last_modified > first.last_modified

    def test_identical_payload_is_noop(self, kv, clock):
        """Re-saving an identical record changes neither version nor time."""
        store = RecordStore(kv, clock)
        first = store.upsert(_record(1))
        clock.advance(10)
        again = store.upsert(_record(1, version=9))
        assert again is first
        assert store.get(1).version == 1

    def test_timestamp_strictly_increases_on_same_tick(self, kv, clock):
        store = RecordStore(kv, clock)
        first = store.upsert(_record(1))
        second = store.upsert(_record(1, text="changed"))
        assert second.last_modified > first.last_modified

    def test_every_mutation_is_persisted(self, kv, clock):
        store = RecordStore(kv, clock)
        store.upsert(_record(1))
        store.upsert(_record(2))
        store.remove(1)
        saved = kv.load(RECORDS_KEY)
        assert [item["id"] for item in saved] == [2]


class TestQueries:
    def test_order_and_membership(self, kv, clock):
        store = RecordStore(kv, clock)
        for record_id in (3, 1, 2):
            store.upsert(_record(record_id))
        assert store.ids() == [3, 1, 2]
        assert 1 in store
        assert 9 not in store
        assert len(store) == 3

    def test_next_id_follows_the_clock(self, kv, clock):
        store = RecordStore(kv, clock)
        assert store.next_id() == clock.now
        clock.advance(7)
        assert store.next_id() == clock.now

    def test_next_id_stays_above_known_ids(self, kv, clock):
        store = RecordStore(kv, clock)
        store.upsert(_record(clock.now))
        assert store.next_id() == clock.now + 1
        assert store.next_id([clock.now + 10]) == clock.now + 11

    def test_remove_missing_returns_none(self, kv, clock):
        assert RecordStore(kv, clock).remove(1) is None


class TestLoadAndReplace:
    def test_load_skips_unreadable_entries(self, clock):
        kv = MemoryKeyValueStore(
            {
                RECORDS_KEY: [
                    _record(1).to_wire(),
                    {"id": "not-a-number"},
                    _record(2).to_wire(),
                ]
            }
        )
        store = RecordStore(kv, clock)
        assert store.load() == 2
        assert store.ids() == [1, 2]

    def test_replace_all_stores_verbatim(self, kv, clock):
        store = RecordStore(kv, clock)
        store.upsert(_record(1))
        store.replace_all([_record(2, version=7, last_modified=3)])
        assert store.ids() == [2]
        assert store.get(2).version == 7
        assert len(kv.load(RECORDS_KEY)) == 1

    def test_restore(self, kv, clock):
        store = RecordStore(kv, clock)
        original = store.upsert(_record(1))
        store.upsert(_record(1, text="changed"))
        store.restore(original, 1)
        assert store.get(1) == original
        store.restore(None, 1)
        assert store.get(1) is None
