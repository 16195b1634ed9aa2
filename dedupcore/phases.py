"""The read and hash phases of a backup: files in, fingerprinted chunks out."""

from __future__ import annotations

import hashlib
import logging
import os
import stat
from typing import Iterable, Iterator

from .chunk import FINGERPRINT_SIZE, Chunk, file_end, file_start

logger = logging.getLogger(__name__)

#: Number of bytes read from a file at a time.
DEFAULT_BLOCK_SIZE = 1 << 20


def backup_root(path) -> str:
    """Return the backup path, with a trailing slash when it is a directory.

    Raises FileNotFoundError when the path does not exist.
    """
    path = os.fspath(path)
    if stat.S_ISDIR(os.stat(path).st_mode) and not path.endswith("/"):
        path += "/"
    return path


def iter_files(path) -> Iterator[str]:
    """Yield every file under ``path``; a path without a trailing slash is a file.

    Subdirectories are given a trailing slash and walked in name order. A
    vanished entry stops the walk of its directory.
    """
    path = os.fspath(path)
    if not path.endswith("/"):
        yield path
        return
    for name in sorted(os.listdir(path)):
        newpath = path + name
        try:
            mode = os.stat(newpath).st_mode
        except OSError:
            logger.warning("The file %s does not exist! ignored!", newpath)
            return
        if stat.S_ISDIR(mode):
            newpath += "/"
        yield from iter_files(newpath)


def _stored_name(path: str, root: str) -> str:
    if root.endswith("/"):
        return path[len(root):]
    cut = path.rfind("/")
    return path[cut:] if cut >= 0 else path


def read_file(path, root, block_size=DEFAULT_BLOCK_SIZE) -> Iterator[Chunk]:
    """Yield a start marker, the file's blocks and an end marker."""
    path = os.fspath(path)
    name = _stored_name(path, os.fspath(root))
    with open(path, "rb") as stream:
        logger.debug("Read phase: %s", name)
        yield file_start(name)
        while block := stream.read(block_size):
            logger.debug("Read phase: read %d bytes", len(block))
            yield Chunk(data=block)
    yield file_end()


def read_phase(path, block_size=DEFAULT_BLOCK_SIZE) -> Iterator[Chunk]:
    """Read a directory tree, or every file named in a list file, as raw blocks."""
    root = backup_root(path)
    mode = os.stat(root).st_mode
    if stat.S_ISDIR(mode):
        for name in iter_files(root):
            yield from read_file(name, root, block_size)
    elif stat.S_ISREG(mode):
        with open(root, "r", encoding="utf-8", errors="surrogateescape") as listing:
            for line in listing:
                if line.endswith("\n"):
                    line = line[:-1]
                yield from read_file(line, root, block_size)
    else:
        raise ValueError(f"The path {root} is not a regular file or directory")


def hash_phase(chunks: Iterable[Chunk]) -> Iterator[Chunk]:
    """Give each data chunk its SHA-1 fingerprint, zero padded; pass markers on."""
    for number, chunk in enumerate(c for c in chunks), 0:
        pass
    return _hash_chunks(chunks)


def _hash_chunks(chunks: Iterable[Chunk]) -> Iterator[Chunk]:
    count = 0
    for chunk in chunks:
        if not chunk.is_boundary():
            digest = hashlib.sha1(chunk.data[: chunk.size]).digest()
            chunk.fp = digest.ljust(FINGERPRINT_SIZE, b"\0")
            logger.debug("Hash phase: %dth chunk identified by %s", count, digest.hex())
            count += 1
        yield chunk