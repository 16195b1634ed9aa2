"""Writer that produces hash files in the latest format version."""

from __future__ import annotations

import dataclasses
import errno
import os
import platform
import stat
import struct
import time
from typing import BinaryIO, Optional

from .hashfile_format import (
    LATEST_VERSION,
    MAGIC,
    ChunkInfo,
    ChunkingMethod,
    FileHeader,
    FixedChunkingParams,
    Header,
    HashFileError,
    VarChunkingParams,
)

_SIZE32 = struct.Struct("<I")


class HashFileWriter:
    """Create a new hash file and append files and their chunk records.

    The global header and each file header are written first as
    placeholders and rewritten with the final counters once known.
    """

    def __init__(self, path, chunking_method, hashing_method, hash_size, root_path) -> None:
        self._file: BinaryIO = open(os.fspath(path), "xb")
        uname = platform.uname()
        params = (
            FixedChunkingParams() if chunking_method == ChunkingMethod.FIXED else None
        )
        self.header = Header(
            magic=MAGIC,
            version=LATEST_VERSION,
            files=0,
            path_root=os.fsdecode(root_path),
            chunks=0,
            chunking_method=chunking_method,
            chunking_params=params,
            hashing_method=hashing_method,
            hash_size=hash_size,
            sysid=f"{uname.system} {uname.release} {uname.machine} {uname.node}",
            start_time=int(time.time()),
            bytes=0,
        )
        self._current: Optional[FileHeader] = None
        self._current_offset = 0
        self._files_processed = 0
        self._chunks_in_file = 0
        try:
            self._file.write(self.header.pack())
        except BaseException:
            self._file.close()
            raise

    def _check_writable(self) -> None:
        if self._file.closed:
            raise HashFileError(errno.EBADF, "hash file is closed")

    def set_fixed_params(self, params: FixedChunkingParams) -> None:
        """Record the parameters of fixed-size chunking."""
        self._check_writable()
        if self.header.chunking_method != ChunkingMethod.FIXED:
            raise HashFileError(errno.EINVAL, "hash file does not use fixed chunking")
        self.header.chunking_params = dataclasses.replace(params)

    def set_var_params(self, params: VarChunkingParams) -> None:
        """Record the parameters of variable-size chunking."""
        self._check_writable()
        if self.header.chunking_method != ChunkingMethod.VARIABLE:
            raise HashFileError(errno.EINVAL, "hash file does not use variable chunking")
        self.header.chunking_params = dataclasses.replace(params)

    def _finalize_current(self) -> None:
        if self._current is None:
            return
        resume = self._file.tell()
        self._file.seek(self._current_offset)
        final = dataclasses.replace(self._current, chunks=self._chunks_in_file)
        self._file.write(final.pack())
        self._file.seek(resume)
        self._current = None

    def add_file(self, file_path, stat_result, target_path) -> None:
        """Start a new file; chunks added afterwards belong to it."""
        self._check_writable()
        self._finalize_current()

        perm = stat_result.st_mode
        target = ""
        if stat.S_ISLNK(perm) and target_path is not None:
            target = os.fsdecode(target_path)

        header = FileHeader(
            file_size=stat_result.st_size,
            chunks=0,
            blocks=getattr(stat_result, "st_blocks", 0) or 0,
            uid=stat_result.st_uid,
            gid=stat_result.st_gid,
            perm=perm,
            atime=int(stat_result.st_atime),
            mtime=int(stat_result.st_mtime),
            ctime=int(stat_result.st_ctime),
            hardlinks=stat_result.st_nlink,
            deviceid=stat_result.st_dev,
            inodenum=stat_result.st_ino,
            path=os.fsdecode(file_path),
            target_path=target,
        )
        self._files_processed += 1
        self._chunks_in_file = 0
        self._current_offset = self._file.tell()
        self._file.write(header.pack())
        self._current = header

    def add_chunk(self, info: ChunkInfo) -> None:
        """Append one chunk record to the current file."""
        self._check_writable()
        length = self.header.hash_size // 8
        digest = bytes(info.hash)
        if len(digest) < length:
            raise HashFileError(errno.EINVAL, "chunk hash shorter than the hash size")

        record = b""
        if self.header.chunking_method == ChunkingMethod.VARIABLE:
            record += _SIZE32.pack(info.size & 0xFFFFFFFF)
        record += digest[:length] + bytes([info.cratio & 0xFF])
        self._file.write(record)

        self._chunks_in_file += 1
        self.header.chunks += 1
        self.header.bytes += info.size

    def close(self) -> None:
        """Finalise the last file, rewrite the global header and close."""
        if self._file.closed:
            return
        try:
            self._finalize_current()
            self.header.end_time = int(time.time())
            self.header.files = self._files_processed
            self._file.seek(0)
            self._file.write(self.header.pack())
        finally:
            self._file.close()

    def __enter__(self) -> "HashFileWriter":
        return self

    def __exit__(self, *args) -> None:
        self.close()