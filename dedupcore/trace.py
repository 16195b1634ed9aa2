"""Turn hash-file traces into the chunk stream of a backup."""

from __future__ import annotations

import logging
import os
import stat
import time
from typing import Iterator

from .chunk import FINGERPRINT_SIZE, Chunk, file_end, file_start
from .hashfile_reader import HashFileReader

logger = logging.getLogger(__name__)


def format_chunk_hash(count: int, digest: bytes) -> str:
    """Render one chunk's hash as ``Chunk NNNNNN: aa:bb:...``."""
    return f"Chunk {count:06d}: " + ":".join(f"{b:02x}" for b in digest)


def describe_trace(reader: HashFileReader) -> str:
    """Describe where and how a trace was collected.

    Raises HashFileError for unknown chunking or hashing methods.
    """
    header = reader.header
    sysid = header.sysid if header.sysid is not None else "(null)"
    collected = time.ctime(header.start_time)
    chunking = header.chunking_description()
    hashing = header.hashing_description()
    return (
        f"Collected at [{sysid}] on {collected}\n"
        f"Chunking method: {chunking}"
        f"Hashing method: {hashing}\n"
    )


def _fingerprint(digest: bytes) -> bytes:
    return digest[:FINGERPRINT_SIZE].ljust(FINGERPRINT_SIZE, b"\0")


def trace_chunks(path) -> Iterator[Chunk]:
    """Yield file markers and data-less chunks for every record of one trace."""
    with HashFileReader(path) as reader:
        for line in describe_trace(reader).splitlines():
            logger.info(line)
        for header in reader.files():
            logger.debug("Read trace phase: %s", header.path)
            yield file_start(header.path)
            for info in reader.chunks():
                yield Chunk(size=info.size, fp=_fingerprint(info.hash))
            yield file_end()


def read_traces(path) -> Iterator[Chunk]:
    """Yield the chunks of a trace, or of every trace named in a ``.txt`` list."""
    path = os.fspath(path)
    mode = os.stat(path).st_mode
    if stat.S_ISDIR(mode):
        raise IsADirectoryError(f"reading traces from a directory is not supported: {path}")
    if not stat.S_ISREG(mode):
        raise ValueError(f"The path {path} is not a regular file or directory")
    if ".txt" not in path:
        yield from trace_chunks(path)
        return
    with open(path, "r", encoding="utf-8", errors="surrogateescape") as listing:
        for line in listing:
            if line.endswith("\n"):
                line = line[:-1]
            yield from trace_chunks(line)