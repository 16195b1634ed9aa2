from dedupcore.chunk import (
    FINGERPRINT_SIZE,
    TEMPORARY_ID,
    Chunk,
    ChunkFlag,
    Segment,
    file_end,
    file_start,
)


def test_new_chunk_defaults():
    c = Chunk(data=b"abcdef")
    assert c.size == len(b"abcdef")
    assert c.id == TEMPORARY_ID
    assert c.fp == bytes(FINGERPRINT_SIZE)
    assert c.flags == ChunkFlag.NONE


def test_explicit_size_kept_without_data():
    c = Chunk(size=8192)
    assert c.size == 8192
    assert c.data == b""


def test_mark_and_has():
    c = Chunk()
    assert not c.has(ChunkFlag.DUPLICATE)
    c.mark(ChunkFlag.DUPLICATE)
    c.mark(ChunkFlag.SPARSE)
    assert c.has(ChunkFlag.DUPLICATE)
    assert c.has(ChunkFlag.SPARSE)
    assert c.has(ChunkFlag.DUPLICATE | ChunkFlag.SPARSE)
    assert not c.has(ChunkFlag.REWRITE_DENIED)


def test_has_requires_all_bits():
    c = Chunk()
    c.mark(ChunkFlag.DUPLICATE)
    assert not c.has(ChunkFlag.DUPLICATE | ChunkFlag.OUT_OF_ORDER)


def test_file_start_marker():
    c = file_start("/docs/report.txt")
    assert c.has(ChunkFlag.FILE_START)
    assert c.is_boundary()
    assert c.data == b"/docs/report.txt"
    assert c.size == len(c.data)


def test_file_end_marker():
    c = file_end()
    assert c.has(ChunkFlag.FILE_END)
    assert c.is_boundary()
    assert c.size == 0


def test_normal_chunk_is_not_boundary():
    c = Chunk(data=b"x")
    c.mark(ChunkFlag.DUPLICATE)
    assert c.is_boundary() is False


def test_segment_defaults_are_independent():
    a = Segment()
    b = Segment()
    a.chunks.append(Chunk())
    assert b.chunks == []
    assert a.id == TEMPORARY_ID
    assert a.features is None