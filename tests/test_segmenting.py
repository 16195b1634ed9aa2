import struct

import pytest

from dedupcore.chunk import Chunk, file_end, file_start
from dedupcore.segmenting import (
    ContentDefinedSegmenter,
    FileDefinedSegmenter,
    FixedSegmenter,
    SegmentAlgorithm,
    make_segmenter,
)


def chunk_with_head(head, tag=0):
    return Chunk(data=bytes([tag]), fp=bytes(16) + struct.pack("<i", head) + bytes(12))


def test_fixed_cuts_at_size():
    seg = FixedSegmenter(2)
    start, a, b = file_start("f"), Chunk(data=b"a"), Chunk(data=b"b")
    assert seg.push(start) is None
    assert seg.push(a) is None
    done = seg.push(b)
    assert done.chunks == [start, a, b]
    assert done.chunk_num == 2


def test_fixed_markers_do_not_count():
    seg = FixedSegmenter(1)
    end = file_end()
    assert seg.push(end) is None
    c = Chunk(data=b"c")
    done = seg.push(c)
    assert done.chunks == [end, c]


def test_fixed_flush_returns_rest():
    seg = FixedSegmenter(3)
    a, b = Chunk(data=b"a"), Chunk(data=b"b")
    seg.push(a)
    seg.push(b)
    rest = seg.flush()
    assert rest.chunks == [a, b]
    assert seg.flush().chunks == []


def test_file_defined_cuts_at_file_end():
    seg = FileDefinedSegmenter()
    start, a, b, end = file_start("f"), Chunk(data=b"a"), Chunk(data=b"b"), file_end()
    assert seg.push(start) is None
    assert seg.push(a) is None
    assert seg.push(b) is None
    done = seg.push(end)
    assert done.chunks == [start, a, b, end]
    assert done.chunk_num == 2
    second = file_start("g")
    seg.push(second)
    assert seg.flush().chunks == [second]


def test_content_defined_respects_minimum():
    seg = ContentDefinedSegmenter(4, 2, 10)
    a, b, c = (chunk_with_head(4, t) for t in range(3))
    assert seg.push(a) is None
    assert seg.push(b) is None
    done = seg.push(c)
    assert done.chunks == [a, b]
    assert seg.flush().chunks == [c]


def test_content_defined_cuts_at_maximum():
    seg = ContentDefinedSegmenter(4, 0, 3)
    x, y, z = (chunk_with_head(1, t) for t in range(3))
    assert seg.push(x) is None
    assert seg.push(y) is None
    done = seg.push(z)
    assert done.chunks == [x, y, z]
    assert done.chunk_num == 3
    assert seg.flush().chunks == []


def test_content_defined_markers_kept_without_counting():
    seg = ContentDefinedSegmenter(4, 1, 10)
    start = file_start("f")
    assert seg.push(start) is None
    a = chunk_with_head(4, 1)
    assert seg.push(a) is None
    b = chunk_with_head(8, 2)
    done = seg.push(b)
    assert done.chunks == [start, a]
    assert done.chunk_num == 1


def test_content_defined_zero_divisor():
    with pytest.raises(ValueError):
        ContentDefinedSegmenter(0, 1, 2)


def test_make_segmenter_fixed():
    seg = make_segmenter(SegmentAlgorithm.FIXED, 1, 0, 0)
    a = Chunk(data=b"a")
    assert seg.push(a).chunks == [a]


def test_make_segmenter_file_defined():
    seg = make_segmenter("file_defined", 0, 0, 0)
    end = file_end()
    assert seg.push(end).chunks == [end]


def test_make_segmenter_content_defined():
    seg = make_segmenter(SegmentAlgorithm.CONTENT_DEFINED, 4, 0, 2)
    x, y = chunk_with_head(1, 0), chunk_with_head(1, 1)
    seg.push(x)
    assert seg.push(y).chunks == [x, y]


def test_make_segmenter_invalid():
    with pytest.raises(ValueError):
        make_segmenter("bogus", 1, 0, 0)