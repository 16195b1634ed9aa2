"""Restore cache that evicts the container whose next access is farthest away."""

from __future__ import annotations

import bisect
import dataclasses
import logging
from collections import OrderedDict, deque
from typing import Any, Callable, Deque, Dict, Iterable, Iterator, List, Mapping, Optional

from .chunk import TEMPORARY_ID, Chunk

logger = logging.getLogger(__name__)

#: ``load_container(id)`` returns a mapping from fingerprint to chunk.
ContainerLoader = Callable[[int], Mapping[bytes, Chunk]]

#: How many extra never-again-used containers are considered for eviction.
_EXTRA_CANDIDATES = 10


class OptimalCache:
    """Container cache driven by the known future container accesses.

    ``access_ids`` is the sequence of container IDs the restore will read,
    one per run of consecutive chunks. A sliding window of it is kept to
    decide evictions. Without ``load_container`` only the container IDs are
    tracked (simulation).
    """

    def __init__(
        self,
        capacity: int,
        window_size: int,
        access_ids: Iterable[int],
        load_container: Optional[ContainerLoader] = None,
    ) -> None:
        if capacity < 1:
            raise ValueError("cache capacity must be at least 1")
        if window_size < 1:
            raise ValueError("window size must be at least 1")
        self.capacity = capacity
        self.window_size = window_size
        self._access = iter(access_ids)
        self._load = load_container
        self._sequence = 0
        self._records: Dict[int, Deque[int]] = {}
        self._buffered = 0
        self._cached: List[int] = []
        # Least recently used container first.
        self._lru: "OrderedDict[int, Any]" = OrderedDict()
        self._last_id = TEMPORARY_ID
        #: Number of containers read.
        self.read_container_num = 0
        self._fill_window()

    def _fill_window(self) -> None:
        wanted = self.window_size - self._buffered
        for _ in range(wanted):
            cid = next(self._access, None)
            if cid is None:
                break
            self._records.setdefault(cid, deque()).append(self._sequence)
            self._sequence += 1
            self._buffered += 1

    def _slide_window(self, container_id: int) -> None:
        if self._buffered * 2 <= self.window_size:
            self._fill_window()
        queue = self._records.get(container_id)
        if not queue:
            raise LookupError(f"no pending access to container {container_id}")
        queue.popleft()
        self._buffered -= 1

    def _order_key(self, cid: int):
        queue = self._records[cid]
        return (0, queue[0]) if queue else (1, 0)

    def hits(self, container_id: int) -> bool:
        """Advance the access window and report whether the container is cached."""
        if self._last_id != container_id:
            self._slide_window(container_id)
            self._last_id = container_id
        if container_id in self._lru:
            self._lru.move_to_end(container_id)
            return True
        return False

    def _evict(self) -> None:
        self._cached.sort(key=self._order_key)
        candidates = {self._cached[-1]}
        for cid in reversed(self._cached[-1 - _EXTRA_CANDIDATES:-1]):
            if self._records[cid]:
                break
            candidates.add(cid)

        victim = next(cid for cid in self._lru if cid in candidates)
        del self._lru[victim]
        position = len(self._cached) - 1 - self._cached[::-1].index(victim)
        if not self._records[victim]:
            # The container will not be accessed again.
            del self._records[victim]
        self._cached.pop(position)

    def insert(self, container_id: int) -> None:
        """Read a container into the cache, evicting one if it is full."""
        if container_id not in self._records:
            raise LookupError(f"no access record for container {container_id}")
        if len(self._lru) >= self.capacity:
            self._evict()
        self.read_container_num += 1
        container = self._load(container_id) if self._load is not None else None
        self._lru[container_id] = container
        keys = [self._order_key(cid) for cid in self._cached]
        position = bisect.bisect_right(keys, self._order_key(container_id))
        self._cached.insert(position, container_id)

    def lookup(self, fp: bytes) -> Chunk:
        """Return a copy of the cached chunk with fingerprint ``fp``."""
        if self._load is None:
            raise RuntimeError("chunks are not available in simulation")
        for cid in reversed(self._lru):
            container = self._lru[cid]
            if fp in container:
                self._lru.move_to_end(cid)
                return dataclasses.replace(container[fp])
        raise KeyError(fp)

    def __contains__(self, container_id: object) -> bool:
        return container_id in self._lru


def optimal_restore(
    chunks: Iterable[Chunk],
    capacity: int,
    window_size: int,
    access_ids: Iterable[int],
    load_container: Optional[ContainerLoader] = None,
) -> Iterator[Chunk]:
    """Yield the restored chunks of a recipe stream, with file markers.

    Without ``load_container`` only the markers are yielded.
    """
    cache = OptimalCache(capacity, window_size, access_ids, load_container)
    for chunk in chunks:
        if chunk.is_boundary():
            yield chunk
            continue
        if not cache.hits(chunk.id):
            logger.debug("Restore cache: container %d is missed", chunk.id)
            cache.insert(chunk.id)
        if load_container is not None:
            yield cache.lookup(chunk.fp)