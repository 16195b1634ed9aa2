import struct

import pytest

from dedupcore.chunk import TEMPORARY_ID
from dedupcore.kvstore import KeyValueStore, index_path, open_kvstore


def test_lookup_missing_returns_none():
    store = KeyValueStore(4, 2)
    assert store.lookup(b"abcd") is None


def test_update_keeps_newest_first_and_drops_oldest():
    store = KeyValueStore(4, 2)
    store.update(b"abcd", 1)
    assert store.lookup(b"abcd") == [1, TEMPORARY_ID]
    store.update(b"abcd", 2)
    store.update(b"abcd", 3)
    assert store.lookup(b"abcd") == [3, 2]


def test_key_is_truncated_to_key_size():
    store = KeyValueStore(4, 1)
    store.update(b"abcdXXXX", 7)
    assert store.lookup(b"abcdYYYY") == [7]
    assert len(store) == 1


def test_short_key_rejected():
    store = KeyValueStore(4, 1)
    with pytest.raises(ValueError):
        store.update(b"ab", 1)


def test_delete_removes_key_when_empty():
    store = KeyValueStore(4, 2)
    store.update(b"abcd", 1)
    store.update(b"abcd", 2)
    store.delete(b"abcd", 1)
    assert store.lookup(b"abcd") == [2, TEMPORARY_ID]
    store.delete(b"abcd", 2)
    assert store.lookup(b"abcd") is None
    assert len(store) == 0


def test_delete_unknown_key_is_ignored():
    store = KeyValueStore(4, 1)
    store.delete(b"abcd", 1)
    assert len(store) == 0


def test_save_load_round_trip(tmp_path):
    store = KeyValueStore(4, 3)
    store.update(b"aaaa", 1)
    store.update(b"aaaa", 2)
    store.update(b"bbbb", 5)
    path = tmp_path / "htable"
    store.save(path)
    loaded = KeyValueStore.load(path, 4, 3)
    assert loaded.lookup(b"aaaa") == store.lookup(b"aaaa")
    assert loaded.lookup(b"bbbb") == store.lookup(b"bbbb")
    assert len(loaded) == 2


def test_save_layout(tmp_path):
    store = KeyValueStore(4, 1)
    store.update(b"abcd", 9)
    path = tmp_path / "htable"
    store.save(path)
    data = path.read_bytes()
    assert data == struct.pack("<i", 1) + b"abcd" + struct.pack("<i", 1) + struct.pack("<q", 9)


def test_load_rejects_too_many_ids(tmp_path):
    path = tmp_path / "htable"
    path.write_bytes(struct.pack("<i", 1) + b"abcd" + struct.pack("<i", 2) + struct.pack("<qq", 1, 2))
    with pytest.raises(ValueError):
        KeyValueStore.load(path, 4, 1)


def test_load_rejects_truncated(tmp_path):
    path = tmp_path / "htable"
    path.write_bytes(struct.pack("<i", 1) + b"ab")
    with pytest.raises(ValueError):
        KeyValueStore.load(path, 4, 1)


def test_memory_footprint_grows_with_keys():
    store = KeyValueStore(4, 2)
    assert store.memory_footprint() == 0
    store.update(b"aaaa", 1)
    one = store.memory_footprint()
    store.update(b"bbbb", 1)
    assert store.memory_footprint() == 2 * one


def test_open_kvstore_loads_or_resets(tmp_path):
    (tmp_path / "index").mkdir()
    store = KeyValueStore(4, 1)
    store.update(b"abcd", 3)
    store.save(index_path(tmp_path))
    assert open_kvstore(tmp_path, 4, 1).lookup(b"abcd") == [3]
    assert len(open_kvstore(tmp_path, 4, 1, reset=True)) == 0


def test_open_kvstore_without_dump_is_empty(tmp_path):
    assert len(open_kvstore(tmp_path, 4, 1)) == 0