"""Group the chunk stream into segments for the index."""

from __future__ import annotations

import enum
from typing import Optional

from .chunk import Chunk, ChunkFlag, Segment


class SegmentAlgorithm(enum.Enum):
    FIXED = "fixed"
    CONTENT_DEFINED = "content_defined"
    FILE_DEFINED = "file_defined"


def _head(fp: bytes) -> int:
    return int.from_bytes(fp[16:20], "little", signed=True)


class _Segmenter:
    def __init__(self) -> None:
        self._current = Segment()

    def _take(self) -> Segment:
        segment = self._current
        self._current = Segment()
        return segment

    def flush(self) -> Segment:
        """Return the unfinished segment at the end of the stream."""
        return self._take()


class FixedSegmenter(_Segmenter):
    """Cut a segment every ``size`` data chunks (SiLo, Block Locality Caching)."""

    def __init__(self, size: int) -> None:
        super().__init__()
        self.size = size

    def push(self, chunk: Chunk) -> Optional[Segment]:
        """Add a chunk; return a finished segment or None."""
        self._current.chunks.append(chunk)
        if chunk.is_boundary():
            return None
        self._current.chunk_num += 1
        if self._current.chunk_num == self.size:
            return self._take()
        return None

    def flush(self) -> Segment:
        return self._take()


class FileDefinedSegmenter(_Segmenter):
    """Cut a segment at the end of every file (Extreme Binning)."""

    def push(self, chunk: Chunk) -> Optional[Segment]:
        """Add a chunk; return a finished segment or None."""
        self._current.chunks.append(chunk)
        if chunk.has(ChunkFlag.FILE_END):
            return self._take()
        if not chunk.has(ChunkFlag.FILE_START):
            self._current.chunk_num += 1
        return None

    def flush(self) -> Segment:
        return self._take()


class ContentDefinedSegmenter(_Segmenter):
    """Cut where a fingerprint is divisible by ``divisor`` (Sparse Indexing),
    keeping segments between ``min_chunks`` and ``max_chunks`` data chunks."""

    def __init__(self, divisor: int, min_chunks: int, max_chunks: int) -> None:
        if divisor == 0:
            raise ValueError("content-defined segmenting needs a non-zero divisor")
        super().__init__()
        self.divisor = divisor
        self.min_chunks = min_chunks
        self.max_chunks = max_chunks

    def push(self, chunk: Chunk) -> Optional[Segment]:
        """Add a chunk; return a finished segment or None."""
        current = self._current
        if chunk.is_boundary():
            current.chunks.append(chunk)
            return None

        if current.chunk_num < self.min_chunks:
            current.chunks.append(chunk)
            current.chunk_num += 1
            return None

        if _head(chunk.fp) % self.divisor == 0:
            finished = self._take()
            self._current.chunks.append(chunk)
            self._current.chunk_num += 1
            return finished

        current.chunks.append(chunk)
        current.chunk_num += 1
        if current.chunk_num >= self.max_chunks:
            return self._take()
        return None

    def flush(self) -> Segment:
        return self._take()


def make_segmenter(algorithm, size: int, min_chunks: int, max_chunks: int):
    """Build the segmenter for ``algorithm``; ``size`` is the segment length
    or, for content-defined segmenting, the divisor."""
    try:
        algorithm = SegmentAlgorithm(algorithm)
    except ValueError:
        raise ValueError(f"Invalid segment algorithm: {algorithm!r}") from None
    if algorithm is SegmentAlgorithm.FIXED:
        return FixedSegmenter(size)
    if algorithm is SegmentAlgorithm.CONTENT_DEFINED:
        return ContentDefinedSegmenter(size, min_chunks, max_chunks)
    return FileDefinedSegmenter()