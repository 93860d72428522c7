"""Tests for the persistence collaborators (quote_sync.sync.persistence)."""

import json

import pytest

from quote_sync.sync.persistence import (
    RECORDS_KEY,
    JsonFileStore,
    MemoryKeyValueStore,
)


class TestMemoryKeyValueStore:
    def test_missing_key_is_none(self):
        assert MemoryKeyValueStore().load("records") is None

    def test_save_and_load(self):
        store = MemoryKeyValueStore()
        store.save("records", [{"id": 1}])
        assert store.load("records") == [{"id": 1}]
        assert store.keys() == ["records"]

    def test_values_are_copied(self):
        """Mutating a loaded value does not change what is stored."""
        store = MemoryKeyValueStore()
        value = [{"id": 1}]
        store.save("records", value)
        value.append({"id": 2})
        loaded = store.load("records")
        loaded.append({"id": 3})
        assert store.load("records") == [{"id": 1}]

    def test_initial_data(self):
        store = MemoryKeyValueStore({"pending": []})
        assert store.load("pending") == []


class TestJsonFileStore:
    def test_missing_file_loads_none(self, tmp_path):
        assert JsonFileStore(tmp_path).load(RECORDS_KEY) is None

    def test_save_creates_directory(self, tmp_path):
        data_dir = tmp_path / "nested" / "data"
        store = JsonFileStore(data_dir)
        store.save(RECORDS_KEY, [{"id": 1}])
        path = data_dir / "records.json"
        assert path.exists()
        assert json.loads(path.read_text()) == [{"id": 1}]

    def test_round_trip(self, tmp_path):
        store = JsonFileStore(tmp_path)
        value = {"lastSyncAt": 5, "knownRemoteIds": [1, 2]}
        store.save("sync_state", value)
        assert JsonFileStore(tmp_path).load("sync_state") == value

    def test_overwrite_leaves_no_temp_files(self, tmp_path):
        store = JsonFileStore(tmp_path)
        store.save("records", [1])
        store.save("records", [2])
        assert store.load("records") == [2]
        assert [p.name for p in tmp_path.iterdir()] == ["records.json"]

    def test_failed_write_keeps_previous_value(self, tmp_path):
        """A value that cannot be encoded leaves the old file intact."""
        store = JsonFileStore(tmp_path)
        store.save("records", [1])
        with pytest.raises(TypeError):
            store.save("records", [object()])
        assert store.load("records") == [1]
        assert [p.name for p in tmp_path.iterdir()] == ["records.json"]

    @pytest.mark.parametrize("key", ["../escape", "a/b", "", "white space"])
    def test_invalid_keys_rejected(self, tmp_path, key):
        with pytest.raises(ValueError, match="Invalid storage key"):
            JsonFileStore(tmp_path).save(key, [])
