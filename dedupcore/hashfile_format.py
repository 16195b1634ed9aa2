"""On-disk layout of hash files: the global header, file headers and chunk records.

Version history:

* v1: fixed-size path inside each file header.
* v2: file headers carry a variable-length path.
* v3: global header gains a system id and start/end times; variable
  chunking stores a 64-bit chunk size before each hash.
* v4: file headers carry stat() information and symlink targets.
* v5: global header counts bytes; file headers count 512-byte blocks.
* v6: a one-byte compression ratio follows each hash.
* v7: chunk sizes for variable chunking shrink to 32 bits.
"""

from __future__ import annotations

import enum
import errno
import math
import stat
import struct
from dataclasses import dataclass, field
from typing import Optional, Union

MAGIC = 0xDEADDEAD
MAX_PATH_SIZE = 4096
MAX_SYSID_LEN = 4096

VERSION1 = 1
VERSION2 = 2
VERSION3 = 3
VERSION4 = 4
VERSION5 = 5
VERSION6 = 6
VERSION7 = 7
LATEST_VERSION = VERSION7
SUPPORTED_VERSIONS = frozenset(range(VERSION1, VERSION7 + 1))

CHUNK_SIZE_32BIT = 4
CHUNK_SIZE_64BIT = 8
CRATIO_SIZE = 1

_PARAMS_SIZE = 44
_ALGO_PARAMS_SIZE = 32

_HEADER_BASE = struct.Struct(f"<IIQ{MAX_PATH_SIZE}sQI{_PARAMS_SIZE}sII")
_HEADER_V3_EXTRA = struct.Struct(f"<{MAX_SYSID_LEN}sQQ")
_HEADER_V4_EXTRA = struct.Struct("<Q")
_MAGIC_VERSION = struct.Struct("<II")

_VAR_PARAMS = struct.Struct(f"<I{_ALGO_PARAMS_SIZE}sII")
_FIXED_PARAMS = struct.Struct("<I")
_SIMPLE_PARAMS = struct.Struct("<IQ")
_RABIN_PARAMS = struct.Struct("<IQQIQ")
_X87 = struct.Struct("<QH6x")

_FILE_V1 = struct.Struct(f"<{MAX_PATH_SIZE}sQQ")
_FILE_V2 = struct.Struct("<QQI")
_FILE_V3 = struct.Struct("<QII8QII")
_FILE_V4 = struct.Struct("<QQII8QII")


class HashFileError(OSError):
    """A hash file is malformed, truncated, unsupported or misused."""


class ChunkingMethod(enum.IntEnum):
    FIXED = 1
    VARIABLE = 2


class HashingMethod(enum.IntEnum):
    MD5 = 1
    SHA256 = 2
    MD5_48BIT = 3
    MURMUR = 4
    MD5_64BIT = 5
    SHA1 = 6


class VarChunkingAlgo(enum.IntEnum):
    RANDOM = 1
    SIMPLE_MATCH = 2
    RABIN = 3


def _as_enum(enum_cls, value: int):
    try:
        return enum_cls(value)
    except ValueError:
        return value


def _decode(raw: bytes) -> str:
    return raw.split(b"\0", 1)[0].decode("utf-8", "surrogateescape")


def _encode(text: str) -> bytes:
    return text.encode("utf-8", "surrogateescape")


def _float_to_x87(value: float) -> bytes:
    """Encode a float as an x86 80-bit extended value in a 16-byte slot."""
    if math.isnan(value):
        return _X87.pack(0xC000000000000000, 0x7FFF)
    sign = 0x8000 if math.copysign(1.0, value) < 0 else 0
    value = abs(value)
    if math.isinf(value):
        return _X87.pack(1 << 63, sign | 0x7FFF)
    if value == 0:
        return _X87.pack(0, sign)
    mant, exp = math.frexp(value)
    return _X87.pack(int(mant * (1 << 64)), sign | (exp - 1 + 16383))


def _x87_to_float(raw: bytes) -> float:
    mantissa, sign_exp = _X87.unpack_from(raw)
    sign = -1.0 if sign_exp & 0x8000 else 1.0
    exponent = sign_exp & 0x7FFF
    if exponent == 0x7FFF:
        if mantissa & ((1 << 63) - 1):
            return math.nan
        return sign * math.inf
    if exponent == 0:
        exponent = 1
    try:
        return sign * math.ldexp(float(mantissa), exponent - 16383 - 63)
    except OverflowError:
        return sign * math.inf


@dataclass
class FixedChunkingParams:
    chunk_size: int = 0


@dataclass
class RandomParams:
    probability: float = 0.0


@dataclass
class SimpleMatchParams:
    bits_to_compare: int = 0
    pattern: int = 0


@dataclass
class RabinParams:
    window_size: int = 0
    prime: int = 0
    module: int = 0
    bits_to_compare: int = 0
    pattern: int = 0


AlgoParams = Union[RandomParams, SimpleMatchParams, RabinParams]


@dataclass
class VarChunkingParams:
    algo: Union[VarChunkingAlgo, int] = VarChunkingAlgo.RABIN
    algo_params: Optional[AlgoParams] = None
    min_size: int = 0
    max_size: int = 0

    def _pack(self) -> bytes:
        params = self.algo_params
        if isinstance(params, RandomParams):
            body = _float_to_x87(params.probability)
        elif isinstance(params, SimpleMatchParams):
            body = _SIMPLE_PARAMS.pack(params.bits_to_compare, params.pattern)
        elif isinstance(params, RabinParams):
            body = _RABIN_PARAMS.pack(
                params.window_size,
                params.prime,
                params.module,
                params.bits_to_compare,
                params.pattern,
            )
        else:
            body = b""
        return _VAR_PARAMS.pack(int(self.algo), body, self.min_size, self.max_size)

    @classmethod
    def _unpack(cls, raw: bytes) -> "VarChunkingParams":
        algo, body, min_size, max_size = _VAR_PARAMS.unpack_from(raw)
        algo = _as_enum(VarChunkingAlgo, algo)
        params: Optional[AlgoParams]
        if algo == VarChunkingAlgo.RANDOM:
            params = RandomParams(_x87_to_float(body))
        elif algo == VarChunkingAlgo.SIMPLE_MATCH:
            params = SimpleMatchParams(*_SIMPLE_PARAMS.unpack_from(body))
        elif algo == VarChunkingAlgo.RABIN:
            params = RabinParams(*_RABIN_PARAMS.unpack_from(body))
        else:
            params = None
        return cls(algo, params, min_size, max_size)


def header_size(version: int) -> int:
    """Size in bytes of the global header written by ``version``."""
    if version not in SUPPORTED_VERSIONS:
        raise HashFileError(errno.ENOTSUP, f"unsupported hash file version {version}")
    size = _HEADER_BASE.size
    if version >= VERSION3:
        size += _HEADER_V3_EXTRA.size
    if version >= VERSION5:
        size += _HEADER_V4_EXTRA.size
    return size


def file_header_size(version: int) -> int:
    """Size in bytes of the fixed part of a file header in ``version``."""
    if version not in SUPPORTED_VERSIONS:
        raise HashFileError(errno.ENOTSUP, f"unsupported hash file version {version}")
    if version >= VERSION5:
        return _FILE_V4.size
    if version == VERSION4:
        return _FILE_V3.size
    if version >= VERSION2:
        return _FILE_V2.size
    return _FILE_V1.size


ChunkingParams = Union[FixedChunkingParams, VarChunkingParams, None]


@dataclass
class Header:
    """Global header of a hash file.

    ``sysid`` is None for versions that do not record it.
    """

    magic: int = MAGIC
    version: int = LATEST_VERSION
    files: int = 0
    path_root: str = ""
    chunks: int = 0
    chunking_method: Union[ChunkingMethod, int] = ChunkingMethod.FIXED
    chunking_params: ChunkingParams = None
    hashing_method: Union[HashingMethod, int] = HashingMethod.SHA1
    hash_size: int = 160
    sysid: Optional[str] = ""
    start_time: int = 0
    end_time: int = 0
    bytes: int = 0

    def _pack_params(self) -> bytes:
        params = self.chunking_params
        if isinstance(params, FixedChunkingParams):
            return _FIXED_PARAMS.pack(params.chunk_size)
        if isinstance(params, VarChunkingParams):
            return params._pack()
        return b""

    def pack(self) -> bytes:
        """Serialise the header in the layout of its own version."""
        header_size(self.version)
        out = _HEADER_BASE.pack(
            self.magic,
            self.version,
            self.files,
            _encode(self.path_root),
            self.chunks,
            int(self.chunking_method),
            self._pack_params(),
            int(self.hashing_method),
            self.hash_size,
        )
        if self.version >= VERSION3:
            sysid = _encode(self.sysid or "")[: MAX_SYSID_LEN - 1]
            out += _HEADER_V3_EXTRA.pack(sysid, self.start_time, self.end_time)
        if self.version >= VERSION5:
            out += _HEADER_V4_EXTRA.pack(self.bytes)
        return out

    @classmethod
    def unpack(cls, data: bytes) -> "Header":
        """Parse a header; ``data`` must hold the whole header of its version."""
        if len(data) < _MAGIC_VERSION.size:
            raise HashFileError(errno.EAGAIN, "truncated hash file header")
        magic, version = _MAGIC_VERSION.unpack_from(data)
        if magic != MAGIC:
            raise HashFileError(errno.EINVAL, "not a hash file")
        if version not in SUPPORTED_VERSIONS:
            raise HashFileError(errno.ENOTSUP, f"unsupported hash file version {version}")
        if len(data) < header_size(version):
            raise HashFileError(errno.EAGAIN, "truncated hash file header")

        (_, _, files, root, chunks, cmeth, params_raw, hmeth, hash_size) = (
            _HEADER_BASE.unpack_from(data)
        )
        cmeth = _as_enum(ChunkingMethod, cmeth)
        params: ChunkingParams
        if cmeth == ChunkingMethod.FIXED:
            params = FixedChunkingParams(*_FIXED_PARAMS.unpack_from(params_raw))
        elif cmeth == ChunkingMethod.VARIABLE:
            params = VarChunkingParams._unpack(params_raw)
        else:
            params = None

        sysid: Optional[str] = None
        start_time = end_time = total_bytes = 0
        offset = _HEADER_BASE.size
        if version >= VERSION3:
            raw_sysid, start_time, end_time = _HEADER_V3_EXTRA.unpack_from(data, offset)
            sysid = _decode(raw_sysid)
            offset += _HEADER_V3_EXTRA.size
        if version >= VERSION5:
            (total_bytes,) = _HEADER_V4_EXTRA.unpack_from(data, offset)

        return cls(
            magic=magic,
            version=version,
            files=files,
            path_root=_decode(root),
            chunks=chunks,
            chunking_method=cmeth,
            chunking_params=params,
            hashing_method=_as_enum(HashingMethod, hmeth),
            hash_size=hash_size,
            sysid=sysid,
            start_time=start_time,
            end_time=end_time,
            bytes=total_bytes,
        )

    def chunking_description(self) -> str:
        """Human-readable description of the chunking method."""
        params = self.chunking_params
        if self.chunking_method == ChunkingMethod.FIXED:
            size = params.chunk_size if isinstance(params, FixedChunkingParams) else 0
            return f"Fixed-{size}\n"
        if self.chunking_method == ChunkingMethod.VARIABLE and isinstance(
            params, VarChunkingParams
        ):
            algo = params.algo_params
            if isinstance(algo, RandomParams):
                text = f"Variable-random, p={algo.probability:.6f}"
            elif isinstance(algo, SimpleMatchParams):
                text = (
                    f"Variable-simple_match, bits={algo.bits_to_compare},"
                    f" pattern={algo.pattern:x}"
                )
            elif isinstance(algo, RabinParams):
                text = (
                    f"Variable-rabin bits={algo.bits_to_compare}, "
                    f"pattern={algo.pattern:x}, Window size={algo.window_size}"
                )
            else:
                raise HashFileError(errno.EINVAL, "unknown variable chunking algorithm")
            return f"{text}[{params.min_size}:{params.max_size}]\n"
        raise HashFileError(errno.EINVAL, "unknown chunking method")

    def hashing_description(self) -> str:
        """Human-readable description of the hashing method."""
        names = {
            HashingMethod.MD5: "MD5",
            HashingMethod.MD5_48BIT: "MD5",
            HashingMethod.SHA256: "SHA256",
            HashingMethod.SHA1: "SHA1",
            HashingMethod.MURMUR: "MURMUR",
        }
        name = names.get(_as_enum(HashingMethod, int(self.hashing_method)))
        if name is None:
            raise HashFileError(errno.EINVAL, "unknown hashing method")
        return f"{name}-{self.hash_size}\n"


@dataclass
class FileHeader:
    """Description of one scanned file, independent of the format version.

    ``pathlen`` and ``target_pathlen`` record the stored lengths; when only
    the fixed part of a header was parsed, the paths are empty and these
    lengths tell how many bytes follow.
    """

    file_size: int = 0
    chunks: int = 0
    blocks: int = 0
    uid: int = 0
    gid: int = 0
    perm: int = 0
    atime: int = 0
    mtime: int = 0
    ctime: int = 0
    hardlinks: int = 0
    deviceid: int = 0
    inodenum: int = 0
    path: str = ""
    target_path: str = ""
    pathlen: Optional[int] = field(default=None)
    target_pathlen: Optional[int] = field(default=None)

    def __post_init__(self) -> None:
        if self.pathlen is None:
            self.pathlen = len(_encode(self.path))
        if self.target_pathlen is None:
            self.target_pathlen = len(_encode(self.target_path))

    def pack(self) -> bytes:
        """Serialise in the latest layout, followed by the path and link target."""
        path = _encode(self.path)
        target = _encode(self.target_path)
        fixed = _FILE_V4.pack(
            self.file_size,
            self.blocks,
            self.uid,
            self.gid,
            self.perm,
            self.atime,
            self.mtime,
            self.ctime,
            self.hardlinks,
            self.deviceid,
            self.inodenum,
            self.chunks,
            len(path),
            len(target),
        )
        return fixed + path + target

    @classmethod
    def unpack(cls, version: int, data: bytes) -> "FileHeader":
        """Parse a file header of ``version``.

        ``data`` holds either just the fixed part, or the fixed part followed
        by the path (and the link target of a symlink).
        """
        size = file_header_size(version)
        if len(data) < size:
            raise HashFileError(errno.EAGAIN, "truncated file header")

        if version == VERSION1:
            raw_path, file_size, chunks = _FILE_V1.unpack_from(data)
            return cls(file_size=file_size, chunks=chunks, path=_decode(raw_path))

        values = dict(uid=0, gid=0, perm=0, atime=0, mtime=0, ctime=0,
                      hardlinks=0, deviceid=0, inodenum=0, blocks=0)
        target_pathlen = 0
        if version <= VERSION3:
            file_size, chunks, pathlen = _FILE_V2.unpack_from(data)
        else:
            if version == VERSION4:
                fields = _FILE_V3.unpack_from(data)
                file_size = fields[0]
                rest = fields[1:]
            else:
                fields = _FILE_V4.unpack_from(data)
                file_size = fields[0]
                values["blocks"] = fields[1]
                rest = fields[2:]
            (values["uid"], values["gid"], values["perm"], values["atime"],
             values["mtime"], values["ctime"], values["hardlinks"],
             values["deviceid"], values["inodenum"], chunks, pathlen,
             target_pathlen) = rest

        tail = data[size:]
        path = target = ""
        if tail:
            has_target = version >= VERSION4 and stat.S_ISLNK(values["perm"])
            needed = pathlen + (target_pathlen if has_target else 0)
            if len(tail) < needed:
                raise HashFileError(errno.EAGAIN, "truncated file path")
            path = tail[:pathlen].decode("utf-8", "surrogateescape")
            if has_target:
                target = tail[pathlen:needed].decode("utf-8", "surrogateescape")

        return cls(
            file_size=file_size,
            chunks=chunks,
            path=path,
            target_path=target,
            pathlen=pathlen,
            target_pathlen=target_pathlen,
            **values,
        )


@dataclass
class ChunkInfo:
    """One chunk record: its hash, size and compression ratio."""

    hash: bytes
    size: int = 0
    cratio: int = 0