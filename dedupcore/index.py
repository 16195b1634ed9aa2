"""Fingerprint index: look up segments of chunks and buffer recent results."""

from __future__ import annotations

import dataclasses
import enum
import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Deque, Dict, Iterable, Optional, Set, TextIO

from .chunk import FINGERPRINT_SIZE, TEMPORARY_ID, Chunk, ChunkFlag, Segment
from .fingerprint_cache import FingerprintCache, IndexCategory
from .kvstore import KeyValueStore
from .sampling import SamplingMethod, make_sampler
from .segmenting import SegmentAlgorithm, make_segmenter
from .similarity import select_top_segments

logger = logging.getLogger(__name__)


class IndexSpecific(enum.Enum):
    """Well-known index designs that preset the detailed settings."""

    NO = "no"
    DDFS = "ddfs"
    BLOCK_LOCALITY_CACHING = "block_locality_caching"
    SAMPLED = "sampled"
    SPARSE = "sparse"
    SILO = "silo"


class SelectionMethod(enum.Enum):
    """How similar segments are chosen for a new segment."""

    BASE = "base"
    TOP = "top"
    MIX = "mix"


@dataclass
class IndexConfig:
    """Settings of the fingerprint index."""

    specific: IndexSpecific = IndexSpecific.NO
    exactness: IndexCategory = IndexCategory.EXACT
    locality: IndexCategory = IndexCategory.PHYSICAL_LOCALITY
    key_size: int = FINGERPRINT_SIZE
    value_length: int = 1
    sampling_method: SamplingMethod = SamplingMethod.UNIFORM
    sampling_ratio: int = 1
    segment_algorithm: SegmentAlgorithm = SegmentAlgorithm.FIXED
    segment_size: int = 1024
    segment_min: int = 8
    segment_max: int = 4096
    selection_method: SelectionMethod = SelectionMethod.BASE
    selection_top_k: int = 1
    segment_prefetch: int = 1


def resolve_config(config: IndexConfig) -> IndexConfig:
    """Return a copy of ``config`` with the presets of its design applied.

    Raises ValueError for an invalid key size.
    """
    cfg = dataclasses.replace(config)
    specific = IndexSpecific(cfg.specific)
    if specific is not IndexSpecific.NO:
        cfg.key_size = FINGERPRINT_SIZE
        if specific is IndexSpecific.DDFS:
            cfg.exactness = IndexCategory.EXACT
            cfg.locality = IndexCategory.PHYSICAL_LOCALITY
        elif specific is IndexSpecific.BLOCK_LOCALITY_CACHING:
            cfg.exactness = IndexCategory.EXACT
            cfg.locality = IndexCategory.LOGICAL_LOCALITY
            cfg.sampling_method = SamplingMethod.UNIFORM
            cfg.sampling_ratio = 1
            cfg.segment_prefetch = cfg.segment_prefetch if cfg.segment_prefetch > 1 else 16
        elif specific is IndexSpecific.SAMPLED:
            cfg.exactness = IndexCategory.NEAR_EXACT
            cfg.locality = IndexCategory.PHYSICAL_LOCALITY
            cfg.sampling_method = SamplingMethod.UNIFORM
            cfg.sampling_ratio = cfg.sampling_ratio if cfg.sampling_ratio > 1 else 128
        elif specific is IndexSpecific.SPARSE:
            cfg.exactness = IndexCategory.NEAR_EXACT
            cfg.locality = IndexCategory.LOGICAL_LOCALITY
            cfg.segment_algorithm = SegmentAlgorithm.CONTENT_DEFINED
            cfg.selection_method = SelectionMethod.TOP
            cfg.sampling_method = SamplingMethod.RANDOM
            cfg.sampling_ratio = cfg.sampling_ratio if cfg.sampling_ratio > 1 else 128
            cfg.segment_prefetch = 1
        elif specific is IndexSpecific.SILO:
            cfg.exactness = IndexCategory.NEAR_EXACT
            cfg.locality = IndexCategory.LOGICAL_LOCALITY
            cfg.segment_algorithm = SegmentAlgorithm.FIXED
            cfg.selection_method = SelectionMethod.TOP
            cfg.selection_top_k = 1
            cfg.sampling_method = SamplingMethod.MIN
            cfg.sampling_ratio = 0
            cfg.segment_prefetch = cfg.segment_prefetch if cfg.segment_prefetch > 1 else 16

    if cfg.exactness is IndexCategory.EXACT:
        cfg.key_size = FINGERPRINT_SIZE

    if cfg.locality is IndexCategory.PHYSICAL_LOCALITY:
        cfg.segment_algorithm = SegmentAlgorithm.FIXED
        if cfg.exactness is IndexCategory.EXACT:
            cfg.sampling_method = SamplingMethod.UNIFORM
            cfg.sampling_ratio = 1

    if not 0 < cfg.key_size <= FINGERPRINT_SIZE:
        raise ValueError(f"invalid index key size {cfg.key_size}")
    return cfg


def feature_hash(feature: bytes, key_size: int) -> int:
    """32-bit hash of the first ``key_size`` bytes of a feature."""
    if len(feature) < key_size:
        raise ValueError(f"feature shorter than {key_size} bytes")
    value = 0
    for i, byte in enumerate(feature[:key_size]):
        signed = byte - 256 if byte >= 128 else byte
        value += signed << ((8 * i) & 31)
    return value & 0xFFFFFFFF


@dataclass
class IndexOverhead:
    """Counters of the work done by the index."""

    index_lookup_requests: int = 0
    storage_buffer_hits: int = 0
    index_buffer_hits: int = 0
    cache_lookup_requests: int = 0
    cache_hits: int = 0
    kvstore_lookup_requests: int = 0
    kvstore_hits: int = 0
    lookup_requests_for_unique: int = 0
    kvstore_update_requests: int = 0
    read_prefetching_units: int = 0

    def report(self, stream: TextIO) -> None:
        """Write the counters to ``stream``, one ``name: value`` per line."""
        for name in (
            "index_lookup_requests",
            "storage_buffer_hits",
            "index_buffer_hits",
            "cache_lookup_requests",
            "cache_hits",
            "kvstore_lookup_requests",
            "kvstore_hits",
            "lookup_requests_for_unique",
            "read_prefetching_units",
        ):
            stream.write(f"{name}: {getattr(self, name)}\n")


@dataclass
class StorageBuffer:
    """The container currently being filled with unique chunks."""

    id: int
    fingerprints: Set[bytes] = field(default_factory=set)

    def __contains__(self, fp: object) -> bool:
        return fp in self.fingerprints


@dataclass
class _IndexElem:
    id: int
    fp: bytes


class FingerprintIndex:
    """Look up fingerprints of segments and keep every looked-up fingerprint
    buffered until its chunk has been written."""

    def __init__(
        self,
        config: IndexConfig,
        kvstore: KeyValueStore,
        cache: FingerprintCache,
        wait_threshold: int = -1,
    ) -> None:
        self.config = resolve_config(config)
        if kvstore.key_size != self.config.key_size:
            raise ValueError(
                f"key-value store keys are {kvstore.key_size} bytes, "
                f"the index uses {self.config.key_size}"
            )
        if cache.category is not self.config.locality:
            raise ValueError("fingerprint cache does not match the index locality")
        self.kvstore = kvstore
        self.cache = cache
        self.wait_threshold = wait_threshold
        self.sampler = make_sampler(
            self.config.sampling_method, self.config.sampling_ratio, self.config.key_size
        )
        self.segment_algorithm = self.config.segment_algorithm
        self.overhead = IndexOverhead()
        #: Fingerprints looked up but not yet updated, each with a queue of entries.
        self.buffered: Dict[bytes, Deque[_IndexElem]] = {}
        self.chunk_num = 0
        logger.info("Init index module successfully")

    def new_segmenter(self):
        """Build a segmenter configured for this index."""
        return make_segmenter(
            self.config.segment_algorithm,
            self.config.segment_size,
            self.config.segment_min,
            self.config.segment_max,
        )

    def _prefetch(self, unit_id: int) -> None:
        before = self.cache.prefetches
        self.cache.prefetch(unit_id)
        self.overhead.read_prefetching_units += self.cache.prefetches - before

    def _check_cache(self, chunk: Chunk, count: bool) -> None:
        if chunk.has(ChunkFlag.DUPLICATE):
            return
        if count:
            self.overhead.cache_lookup_requests += 1
        unit = self.cache.lookup(chunk.fp)
        if unit != TEMPORARY_ID:
            if count:
                self.overhead.cache_hits += 1
            chunk.id = unit
            chunk.mark(ChunkFlag.DUPLICATE)

    def _check_kvstore(self, chunk: Chunk, count_all: bool) -> None:
        if chunk.has(ChunkFlag.DUPLICATE):
            return
        if count_all:
            self.overhead.kvstore_lookup_requests += 1
        ids = self.kvstore.lookup(chunk.fp)
        if ids is None:
            self.overhead.lookup_requests_for_unique += 1
            logger.debug("Dedup phase: non-existing fingerprint")
            return
        if count_all:
            self.overhead.kvstore_hits += 1
        else:
            self.overhead.kvstore_lookup_requests += 1
        self._prefetch(ids[0])
        unit = self.cache.lookup(chunk.fp)
        if unit != TEMPORARY_ID:
            chunk.id = unit
            chunk.mark(ChunkFlag.DUPLICATE)
        else:
            # A partial key may match a different fingerprint.
            logger.info("Filter phase: A key collision occurs")

    def _buffer(self, chunk: Chunk, queue: Deque[_IndexElem]) -> None:
        queue.append(_IndexElem(chunk.id, chunk.fp))
        self.buffered[chunk.fp] = queue
        self.chunk_num += 1

    def _lookup_base(self, segment: Segment, storage_buffer: Optional[StorageBuffer]) -> None:
        for chunk in segment.chunks:
            if chunk.is_boundary():
                continue
            self.overhead.index_lookup_requests += 1
            if (
                storage_buffer is not None
                and not chunk.has(ChunkFlag.DUPLICATE)
                and chunk.fp in storage_buffer
            ):
                self.overhead.storage_buffer_hits += 1
                chunk.id = storage_buffer.id
                chunk.mark(ChunkFlag.DUPLICATE | ChunkFlag.REWRITE_DENIED)

            queue = self.buffered.get(chunk.fp)
            if queue is None:
                queue = deque()
            elif not chunk.has(ChunkFlag.DUPLICATE):
                self.overhead.index_buffer_hits += 1
                chunk.id = queue[0].id
                chunk.mark(ChunkFlag.DUPLICATE)

            self._check_cache(chunk, count=True)
            self._check_kvstore(chunk, count_all=True)
            self._buffer(chunk, queue)

    def _lookup_similar(self, segment: Segment, storage_buffer: Optional[StorageBuffer]) -> None:
        features = segment.features or {}
        for feature in features:
            if self.kvstore.lookup(feature) is not None:
                self.overhead.kvstore_lookup_requests += 1
            else:
                self.overhead.lookup_requests_for_unique += 1
        before = self.cache.prefetches
        select_top_segments(self.kvstore, self.cache, features, self.config.selection_top_k)
        self.overhead.read_prefetching_units += self.cache.prefetches - before

        check_store = (
            self.config.exactness is IndexCategory.EXACT
            or self.config.selection_method is SelectionMethod.MIX
        )
        for chunk in segment.chunks:
            if chunk.is_boundary():
                continue
            if storage_buffer is not None and chunk.fp in storage_buffer:
                chunk.id = storage_buffer.id
                chunk.mark(ChunkFlag.DUPLICATE | ChunkFlag.REWRITE_DENIED)

            queue = self.buffered.get(chunk.fp)
            if queue is None:
                queue = deque()
            elif not chunk.has(ChunkFlag.DUPLICATE):
                chunk.id = queue[0].id
                chunk.mark(ChunkFlag.DUPLICATE)

            self._check_cache(chunk, count=False)
            if check_store:
                self._check_kvstore(chunk, count_all=False)
            self._buffer(chunk, queue)

    def lookup(self, segment: Segment, storage_buffer: Optional[StorageBuffer] = None) -> bool:
        """Look up every chunk of ``segment``; False when the buffer is full."""
        if self.wait_threshold > 0 and self.chunk_num >= self.wait_threshold:
            logger.debug("The index buffer is full (%d chunks in buffer)", self.chunk_num)
            return False
        if (
            self.config.locality is IndexCategory.LOGICAL_LOCALITY
            and self.config.selection_method is not SelectionMethod.BASE
        ):
            segment.features = self.sampler(segment.chunks, segment.chunk_num)
            self._lookup_similar(segment, storage_buffer)
        else:
            self._lookup_base(segment, storage_buffer)
        return True

    def update(self, features: Iterable[bytes], unit_id: int) -> None:
        """Record that the features now live in container or segment ``unit_id``."""
        features = list(features)
        logger.debug("Filter phase: update %d features", len(features))
        for feature in features:
            self.overhead.kvstore_update_requests += 1
            self.kvstore.update(feature, unit_id)

    def delete(self, fp: bytes, unit_id: int) -> None:
        """Remove ``unit_id`` from the entry of ``fp``."""
        self.kvstore.delete(fp, unit_id)

    def check_buffer(self, segment: Segment) -> None:
        """Give chunks that are copies of recent or rewritten chunks their newest ID."""
        for chunk in segment.chunks:
            if chunk.is_boundary():
                continue
            if (
                (chunk.has(ChunkFlag.DUPLICATE) and chunk.id == TEMPORARY_ID)
                or chunk.has(ChunkFlag.OUT_OF_ORDER)
                or chunk.has(ChunkFlag.SPARSE)
            ):
                queue = self.buffered.get(chunk.fp)
                if not queue:
                    raise LookupError("chunk is not in the index buffer")
                head = queue[0]
                if head.id > chunk.id:
                    if chunk.id != TEMPORARY_ID:
                        # The chunk has been rewritten recently.
                        chunk.mark(ChunkFlag.REWRITE_DENIED)
                    chunk.id = head.id

    def update_buffer(self, segment: Segment) -> bool:
        """Drop written chunks from the buffer; True if it remains full."""
        for chunk in segment.chunks:
            if chunk.is_boundary():
                continue
            if chunk.id == TEMPORARY_ID:
                raise ValueError("a written chunk must have a container ID")
            queue = self.buffered.get(chunk.fp)
            if not queue:
                raise LookupError("chunk is not in the index buffer")
            queue.popleft()
            if not queue:
                del self.buffered[chunk.fp]
            else:
                for elem in queue:
                    elem.id = chunk.id
            self.chunk_num -= 1

        if self.wait_threshold <= 0 or self.chunk_num < self.wait_threshold:
            logger.debug(
                "The index buffer is ready for more chunks (%d chunks in buffer)",
                self.chunk_num,
            )
            return False
        return True