import errno
import stat
import struct

import pytest

from dedupcore.hashfile_format import (
    MAGIC,
    MAX_PATH_SIZE,
    ChunkInfo,
    ChunkingMethod,
    FileHeader,
    FixedChunkingParams,
    HashFileError,
    Header,
    HashingMethod,
    RabinParams,
    RandomParams,
    SimpleMatchParams,
    VarChunkingAlgo,
    VarChunkingParams,
    file_header_size,
    header_size,
)


def test_header_sizes_by_version():
    assert header_size(1) == header_size(2)
    assert header_size(3) == header_size(4)
    assert header_size(5) == header_size(6) == header_size(7)
    assert header_size(3) > header_size(2)
    assert header_size(5) - header_size(3) == 8


def test_file_header_sizes_by_version():
    assert file_header_size(2) == file_header_size(3)
    assert file_header_size(5) == file_header_size(7)
    assert file_header_size(5) > file_header_size(4) > file_header_size(3)
    assert file_header_size(1) > MAX_PATH_SIZE


@pytest.mark.parametrize("version", [0, 8])
def test_unsupported_version_sizes_raise(version):
    with pytest.raises(HashFileError) as info:
        header_size(version)
    assert info.value.errno == errno.ENOTSUP
    with pytest.raises(HashFileError):
        file_header_size(version)


@pytest.mark.parametrize("version", [1, 3, 5, 7])
def test_pack_length_matches_version(version):
    assert len(Header(version=version).pack()) == header_size(version)


def test_pack_starts_with_magic():
    data = Header().pack()
    assert data[:4] == MAGIC.to_bytes(4, "little")


def test_header_round_trip_fixed():
    h = Header(
        files=3,
        path_root="/data",
        chunks=42,
        chunking_method=ChunkingMethod.FIXED,
        chunking_params=FixedChunkingParams(4096),
        hashing_method=HashingMethod.SHA256,
        hash_size=256,
        sysid="Linux x86_64 host",
        start_time=100,
        end_time=200,
        bytes=999,
    )
    assert Header.unpack(h.pack()) == h


def test_header_round_trip_variable_rabin():
    params = VarChunkingParams(
        VarChunkingAlgo.RABIN, RabinParams(48, 3, 7, 13, 0x1FFF), 2048, 65536
    )
    h = Header(chunking_method=ChunkingMethod.VARIABLE, chunking_params=params)
    back = Header.unpack(h.pack())
    assert back.chunking_params == params
    assert back.chunking_method is ChunkingMethod.VARIABLE


def test_old_version_drops_newer_fields():
    h = Header(version=1, sysid="machine", start_time=5, bytes=10)
    back = Header.unpack(h.pack())
    assert back.sysid is None
    assert back.start_time == 0
    assert back.bytes == 0
    assert back.version == 1


def test_v3_keeps_times_but_not_bytes():
    h = Header(version=3, sysid="machine", start_time=5, end_time=6, bytes=10)
    back = Header.unpack(h.pack())
    assert (back.sysid, back.start_time, back.end_time) == ("machine", 5, 6)
    assert back.bytes == 0


def test_long_root_path_is_truncated():
    h = Header(path_root="a" * (MAX_PATH_SIZE + 100))
    assert len(Header.unpack(h.pack()).path_root) == MAX_PATH_SIZE


def test_unpack_bad_magic():
    data = bytearray(Header().pack())
    data[0] ^= 0xFF
    with pytest.raises(HashFileError) as info:
        Header.unpack(bytes(data))
    assert info.value.errno == errno.EINVAL


def test_unpack_unsupported_version():
    data = bytearray(Header().pack())
    data[4:8] = struct.pack("<I", 9)
    with pytest.raises(HashFileError) as info:
        Header.unpack(bytes(data))
    assert info.value.errno == errno.ENOTSUP


def test_unpack_truncated():
    data = Header().pack()
    with pytest.raises(HashFileError) as info:
        Header.unpack(data[:-1])
    assert info.value.errno == errno.EAGAIN


def test_fixed_description():
    h = Header(chunking_params=FixedChunkingParams(4096))
    assert h.chunking_description() == "Fixed-4096\n"


def test_rabin_description():
    params = VarChunkingParams(
        VarChunkingAlgo.RABIN, RabinParams(48, 0, 0, 13, 0x1FFF), 2048, 65536
    )
    h = Header(chunking_method=ChunkingMethod.VARIABLE, chunking_params=params)
    assert h.chunking_description() == (
        "Variable-rabin bits=13, pattern=1fff, Window size=48[2048:65536]\n"
    )


def test_simple_match_description():
    params = VarChunkingParams(
        VarChunkingAlgo.SIMPLE_MATCH, SimpleMatchParams(12, 0xABC), 512, 8192
    )
    h = Header(chunking_method=ChunkingMethod.VARIABLE, chunking_params=params)
    assert h.chunking_description() == (
        "Variable-simple_match, bits=12, pattern=abc[512:8192]\n"
    )


def test_random_probability_round_trip():
    params = VarChunkingParams(VarChunkingAlgo.RANDOM, RandomParams(0.25), 512, 8192)
    h = Header(chunking_method=ChunkingMethod.VARIABLE, chunking_params=params)
    back = Header.unpack(h.pack())
    assert back.chunking_params.algo_params.probability == 0.25
    assert back.chunking_description() == "Variable-random, p=0.250000[512:8192]\n"


def test_unknown_chunking_method_description_raises():
    h = Header(chunking_method=9)
    with pytest.raises(HashFileError) as info:
        h.chunking_description()
    assert info.value.errno == errno.EINVAL


@pytest.mark.parametrize(
    "method, name",
    [
        (HashingMethod.MD5, "MD5"),
        (HashingMethod.MD5_48BIT, "MD5"),
        (HashingMethod.SHA256, "SHA256"),
        (HashingMethod.SHA1, "SHA1"),
        (HashingMethod.MURMUR, "MURMUR"),
    ],
)
def test_hashing_description(method, name):
    h = Header(hashing_method=method, hash_size=128)
    assert h.hashing_description() == f"{name}-128\n"


def test_md5_64bit_has_no_description():
    with pytest.raises(HashFileError):
        Header(hashing_method=HashingMethod.MD5_64BIT).hashing_description()


def test_file_header_round_trip_regular():
    fh = FileHeader(
        file_size=10000,
        chunks=3,
        blocks=24,
        uid=1000,
        gid=100,
        perm=stat.S_IFREG | 0o644,
        atime=1,
        mtime=2,
        ctime=3,
        hardlinks=1,
        deviceid=7,
        inodenum=8,
        path="/data/file.bin",
    )
    data = fh.pack()
    assert len(data) == file_header_size(7) + len(b"/data/file.bin")
    assert FileHeader.unpack(7, data) == fh


def test_file_header_round_trip_symlink():
    fh = FileHeader(perm=stat.S_IFLNK | 0o777, path="/a/link", target_path="/a/real")
    assert FileHeader.unpack(7, fh.pack()) == fh


def test_file_header_fixed_part_only():
    fh = FileHeader(perm=stat.S_IFLNK | 0o777, path="/a/link", target_path="/t")
    part = FileHeader.unpack(6, fh.pack()[: file_header_size(6)])
    assert part.path == ""
    assert part.pathlen == len("/a/link")
    assert part.target_pathlen == len("/t")


def test_file_header_truncated_path():
    data = FileHeader(path="/data/file").pack()
    with pytest.raises(HashFileError) as info:
        FileHeader.unpack(7, data[:-2])
    assert info.value.errno == errno.EAGAIN


def test_file_header_version1():
    raw = b"/old/path".ljust(MAX_PATH_SIZE, b"\0") + struct.pack("<QQ", 500, 2)
    fh = FileHeader.unpack(1, raw)
    assert (fh.path, fh.file_size, fh.chunks) == ("/old/path", 500, 2)
    assert fh.pathlen == len("/old/path")


def test_file_header_version2():
    raw = struct.pack("<QQI", 300, 4, 5) + b"/abcd"
    fh = FileHeader.unpack(2, raw)
    assert (fh.path, fh.file_size, fh.chunks) == ("/abcd", 300, 4)
    assert fh.uid == 0


def test_chunk_info_defaults():
    ci = ChunkInfo(hash=b"\x01\x02")
    assert (ci.hash, ci.size, ci.cratio) == (b"\x01\x02", 0, 0)