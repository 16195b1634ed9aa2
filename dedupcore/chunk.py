"""Chunks and segments that flow through the backup pipeline."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Optional

#: Identifier of a chunk, container or segment that has not been assigned yet.
TEMPORARY_ID = -1

#: Size in bytes of a chunk fingerprint; shorter digests are zero padded.
FINGERPRINT_SIZE = 32


class ChunkFlag(enum.Flag):
    """State flags carried by a chunk through the pipeline."""

    NONE = 0
    FILE_START = enum.auto()
    FILE_END = enum.auto()
    DUPLICATE = enum.auto()
    SPARSE = enum.auto()
    OUT_OF_ORDER = enum.auto()
    NOT_IN_CACHE = enum.auto()
    REWRITE_DENIED = enum.auto()


def _empty_fingerprint() -> bytes:
    return bytes(FINGERPRINT_SIZE)


@dataclass
class Chunk:
    """A piece of a file, or a marker that opens or closes a file.

    ``size`` defaults to the length of ``data``; trace chunks carry a size
    without any data.
    """

    data: bytes = b""
    size: Optional[int] = None
    flags: ChunkFlag = ChunkFlag.NONE
    id: int = TEMPORARY_ID
    fp: bytes = field(default_factory=_empty_fingerprint)
    old_fp: bytes = field(default_factory=_empty_fingerprint)

    def __post_init__(self) -> None:
        if self.size is None:
            self.size = len(self.data)

    def has(self, flag: ChunkFlag) -> bool:
        """Return True if every bit of ``flag`` is set."""
        return (self.flags & flag) == flag

    def mark(self, flag: ChunkFlag) -> None:
        """Set ``flag`` on this chunk."""
        self.flags |= flag

    def is_boundary(self) -> bool:
        """Return True for the markers that open or close a file."""
        return bool(self.flags & (ChunkFlag.FILE_START | ChunkFlag.FILE_END))


def file_start(name: str) -> Chunk:
    """Return the marker chunk that opens the file ``name``."""
    return Chunk(data=name.encode("utf-8", "surrogateescape"), flags=ChunkFlag.FILE_START)


def file_end() -> Chunk:
    """Return the marker chunk that closes the current file."""
    return Chunk(flags=ChunkFlag.FILE_END)


@dataclass
class Segment:
    """A run of chunks that the index looks up together."""

    id: int = TEMPORARY_ID
    chunks: list = field(default_factory=list)
    chunk_num: int = 0
    features: Optional[dict] = None