"""Sequential reader for hash files of every supported version."""

from __future__ import annotations

import errno
import os
import stat
import struct
from typing import BinaryIO, Iterator, Optional

from .hashfile_format import (
    CHUNK_SIZE_32BIT,
    CHUNK_SIZE_64BIT,
    CRATIO_SIZE,
    MAGIC,
    SUPPORTED_VERSIONS,
    VERSION1,
    VERSION2,
    VERSION3,
    VERSION4,
    VERSION6,
    VERSION7,
    ChunkInfo,
    ChunkingMethod,
    FileHeader,
    FixedChunkingParams,
    Header,
    HashFileError,
    file_header_size,
    header_size,
)

_MAGIC_VERSION = struct.Struct("<II")
_SIZE32 = struct.Struct("<I")
_SIZE64 = struct.Struct("<Q")


class HashFileReader:
    """Walk the files of a hash file and the chunk records of each file.

    ``header`` holds the global header; ``current_file`` the header of the
    file most recently returned by :meth:`next_file`.
    """

    def __init__(self, path) -> None:
        self._file: BinaryIO = open(os.fspath(path), "rb")
        try:
            self.header: Header = self._read_header()
        except BaseException:
            self._file.close()
            raise
        self.current_file = FileHeader()
        self._files_processed = 0
        self._chunks_processed = 0
        self._record_size = self._chunk_record_size()

    def _read_exact(self, size: int, what: str) -> bytes:
        data = self._file.read(size)
        if len(data) != size:
            raise HashFileError(errno.EAGAIN, f"truncated {what}")
        return data

    def _read_header(self) -> Header:
        base = header_size(VERSION1)
        data = self._read_exact(base, "hash file header")
        magic, version = _MAGIC_VERSION.unpack_from(data)
        if magic != MAGIC:
            raise HashFileError(errno.EINVAL, "not a hash file")
        if version not in SUPPORTED_VERSIONS:
            raise HashFileError(errno.ENOTSUP, f"unsupported hash file version {version}")
        full = header_size(version)
        if full > base:
            self._file.seek(0)
            data = self._read_exact(full, "hash file header")
        return Header.unpack(data)

    def _is_variable(self) -> bool:
        return self.header.chunking_method == ChunkingMethod.VARIABLE

    def _chunk_record_size(self) -> int:
        size = self.header.hash_size // 8
        if self._is_variable():
            if self.header.version >= VERSION7:
                size += CHUNK_SIZE_32BIT
            elif self.header.version >= VERSION3:
                size += CHUNK_SIZE_64BIT
        if self.header.version >= VERSION6:
            size += CRATIO_SIZE
        return size

    def _check_open(self) -> None:
        if self._file.closed:
            raise HashFileError(errno.EBADF, "hash file is closed")

    def next_file(self) -> Optional[FileHeader]:
        """Advance to the next file; return its header, or None after the last."""
        self._check_open()
        if self._files_processed == self.header.files:
            return None

        remaining = self.current_file.chunks - self._chunks_processed
        self._file.seek(remaining * self._record_size, os.SEEK_CUR)
        self._chunks_processed = self.current_file.chunks

        version = self.header.version
        fixed = self._read_exact(file_header_size(version), "file header")
        header = FileHeader.unpack(version, fixed)

        if version >= VERSION2:
            extra = header.pathlen
            if version >= VERSION4 and stat.S_ISLNK(header.perm):
                extra += header.target_pathlen
            tail = self._read_exact(extra, "file path")
            if tail:
                header = FileHeader.unpack(version, fixed + tail)

        self.current_file = header
        self._files_processed += 1
        self._chunks_processed = 0
        return header

    def _fixed_chunk_size(self) -> int:
        params = self.header.chunking_params
        chunk_size = params.chunk_size if isinstance(params, FixedChunkingParams) else 0
        current = self.current_file
        if current.chunks - 1 != self._chunks_processed:
            return chunk_size
        size = current.file_size - (current.chunks - 1) * chunk_size
        # The tail chunk never exceeds the configured size.
        if size < 0 or size > chunk_size:
            size = chunk_size
        return size

    def next_chunk(self) -> Optional[ChunkInfo]:
        """Return the next chunk record of the current file, or None at its end."""
        self._check_open()
        if self.current_file.chunks == self._chunks_processed:
            return None

        version = self.header.version
        if self._is_variable() and version >= VERSION7:
            (size,) = _SIZE32.unpack(self._read_exact(CHUNK_SIZE_32BIT, "chunk size"))
        elif self._is_variable() and version >= VERSION3:
            (size,) = _SIZE64.unpack(self._read_exact(CHUNK_SIZE_64BIT, "chunk size"))
        elif self.header.chunking_method == ChunkingMethod.FIXED:
            size = self._fixed_chunk_size()
        else:
            # Old variable-chunking files do not record chunk sizes.
            size = 0

        digest = self._read_exact(self.header.hash_size // 8, "chunk hash")
        cratio = 0
        if version >= VERSION6:
            cratio = self._read_exact(CRATIO_SIZE, "compression ratio")[0]

        self._chunks_processed += 1
        return ChunkInfo(hash=digest, size=size, cratio=cratio)

    def files(self) -> Iterator[FileHeader]:
        """Yield the header of each remaining file."""
        while (header := self.next_file()) is not None:
            yield header

    def chunks(self) -> Iterator[ChunkInfo]:
        """Yield the remaining chunk records of the current file."""
        while (info := self.next_chunk()) is not None:
            yield info

    def reset(self) -> None:
        """Rewind to the first file so the hash file can be scanned again."""
        self._check_open()
        self._file.seek(header_size(self.header.version))
        self._files_processed = 0
        self._chunks_processed = 0
        self.current_file = FileHeader()

    def close(self) -> None:
        self._file.close()

    def __enter__(self) -> "HashFileReader":
        return self

    def __exit__(self, *args) -> None:
        self.close()