"""In-memory feature index mapping a key to the latest units that hold it."""

from __future__ import annotations

import logging
import os
import struct
from typing import BinaryIO, Dict, List, Optional

from .chunk import TEMPORARY_ID

logger = logging.getLogger(__name__)

_INT = struct.Struct("<i")
_ID = struct.Struct("<q")


def _read_exact(stream: BinaryIO, size: int) -> bytes:
    data = stream.read(size)
    if len(data) != size:
        raise ValueError("truncated key-value store dump")
    return data


class KeyValueStore:
    """Map a feature (a fingerprint prefix of ``key_size`` bytes) to up to
    ``value_length`` container or segment IDs, newest first."""

    def __init__(self, key_size: int, value_length: int) -> None:
        if key_size <= 0:
            raise ValueError("key size must be positive")
        if value_length <= 0:
            raise ValueError("value length must be positive")
        self.key_size = key_size
        self.value_length = value_length
        self._table: Dict[bytes, List[int]] = {}

    def _key(self, key: bytes) -> bytes:
        key = bytes(key)
        if len(key) < self.key_size:
            raise ValueError(f"key shorter than {self.key_size} bytes")
        return key[: self.key_size]

    def lookup(self, key: bytes) -> Optional[List[int]]:
        """Return the IDs stored for ``key``, newest first, or None."""
        value = self._table.get(self._key(key))
        return list(value) if value is not None else None

    def update(self, key: bytes, unit_id: int) -> None:
        """Record ``unit_id`` as the newest holder of ``key``; the oldest drops out."""
        key = self._key(key)
        value = self._table.get(key)
        if value is None:
            value = [TEMPORARY_ID] * self.value_length
            self._table[key] = value
        value.insert(0, unit_id)
        del value[self.value_length:]

    def delete(self, key: bytes, unit_id: int) -> None:
        """Remove ``unit_id`` from ``key``; drop the key once no ID is left."""
        key = self._key(key)
        value = self._table.get(key)
        if value is None:
            return
        if unit_id in value:
            value.remove(unit_id)
            value.append(TEMPORARY_ID)
        if value[0] == TEMPORARY_ID:
            del self._table[key]

    def save(self, path) -> None:
        """Dump the store to ``path`` in its binary layout."""
        with open(os.fspath(path), "wb") as stream:
            logger.info("flushing hash table!")
            stream.write(_INT.pack(len(self._table)))
            for key, value in self._table.items():
                stream.write(key)
                stream.write(_INT.pack(self.value_length))
                for unit_id in value:
                    stream.write(_ID.pack(unit_id))
        logger.info("flushing hash table successfully!")

    @classmethod
    def load(cls, path, key_size: int, value_length: int) -> "KeyValueStore":
        """Read a store dumped by :meth:`save`."""
        store = cls(key_size, value_length)
        with open(os.fspath(path), "rb") as stream:
            (count,) = _INT.unpack(_read_exact(stream, _INT.size))
            for _ in range(count):
                key = _read_exact(stream, key_size)
                (id_num,) = _INT.unpack(_read_exact(stream, _INT.size))
                if id_num > value_length or id_num < 0:
                    raise ValueError(
                        f"{id_num} IDs stored for a key, at most {value_length} allowed"
                    )
                value = [TEMPORARY_ID] * value_length
                for i in range(id_num):
                    (value[i],) = _ID.unpack(_read_exact(stream, _ID.size))
                store._table[key] = value
        return store

    def memory_footprint(self) -> int:
        """A rough estimate of the bytes the store occupies."""
        return len(self._table) * (self.key_size + 8 * self.value_length + 4)

    def __len__(self) -> int:
        return len(self._table)


def index_path(working_directory) -> str:
    """Path of the dump file under a working directory."""
    return os.path.join(os.fspath(working_directory), "index", "htable")


def open_kvstore(working_directory, key_size: int, value_length: int, reset: bool = False) -> KeyValueStore:
    """Load the store from the working directory, or start an empty one.

    With ``reset`` (an update job) any existing dump is ignored.
    """
    path = index_path(working_directory)
    if not reset and os.path.exists(path):
        return KeyValueStore.load(path, key_size, value_length)
    return KeyValueStore(key_size, value_length)