# dedupcore

A library of building blocks for a chunk-level deduplicating backup system.
It needs only the standard library.

## What is in it

- **Chunks and segments** (`dedupcore.chunk`): `Chunk` holds data, a size, a
  32-byte fingerprint (`fp`), a container id and `ChunkFlag` flags, with
  `has`, `mark` and `is_boundary`. Files are framed by the marker chunks
  `file_start(name)` and `file_end()`. `Segment` groups chunks for the index.
- **Job record** (`dedupcore.jcr`): `new_job(path)` checks that the path
  exists, gives a directory a trailing slash and returns a
  `JobControlRecord` of counters and timings; `write_result(stream)` writes
  its counters as `name: value` lines.
- **Hash-file traces**:
  - `dedupcore.hashfile_format` describes the binary layout of versions 1 to
    7: `Header`, `FileHeader`, `ChunkInfo`, the chunking and hashing enums and
    parameter classes, `header_size` and `file_header_size`. Errors raise
    `HashFileError` (an `OSError`).
  - `HashFileReader` (`dedupcore.hashfile_reader`) reads any supported
    version: `next_file`, `next_chunk`, the generators `files` and `chunks`,
    `reset` and `close`. It is a context manager.
  - `HashFileWriter` (`dedupcore.hashfile_writer`) creates a new file in
    version 7: `set_fixed_params`, `set_var_params`, `add_file`, `add_chunk`,
    `close`. It is a context manager and refuses to overwrite an existing file.
  - `dedupcore.trace`: `trace_chunks(path)` yields file markers and data-less
    chunks for one trace; `read_traces(path)` does the same for one trace, or
    for every trace named in a path containing `.txt`. `describe_trace` and
    `format_chunk_hash` produce readable text.
- **Read phase** (`dedupcore.phases`): `read_phase(path, block_size)` walks a
  directory (entries in name order), or reads every file named in a regular
  list file, and yields a start marker, the raw blocks and an end marker for
  each file. `backup_root`, `iter_files` and `read_file` are the steps it uses.
- **Indexing**:
  - `dedupcore.sampling`: min, optimized min, random and uniform feature
    sampling; `make_sampler` binds a method to its ratio and key size.
  - `dedupcore.segmenting`: `FixedSegmenter`, `FileDefinedSegmenter` and
    `ContentDefinedSegmenter`, each with `push` and `flush`; `make_segmenter`.
  - `dedupcore.fingerprint_cache`: `FingerprintCache`, an LRU cache of
    `PrefetchUnit`s (containers or segments) filled through a loader you supply.
  - `dedupcore.kvstore`: `KeyValueStore` maps a feature to its newest unit
    ids, with `save`/`load` to a binary dump; `open_kvstore` loads it from
    `<working directory>/index/htable` or starts empty.
  - `dedupcore.similarity`: `rank_candidates` and `select_top_segments` pick
    and prefetch the most similar stored segments.
  - `dedupcore.index`: `resolve_config` applies the presets of the
    `IndexSpecific` designs (DDFS, block locality caching, sampled, sparse,
    SiLo); `FingerprintIndex` looks up segments, buffers results
    (`check_buffer`, `update_buffer`) and updates the key-value store;
    `IndexOverhead.report` writes its counters.
- **Rewriting** (`dedupcore.har`): `HarRewriter` tracks referenced bytes per
  container, marks duplicates in containers the previous backup found sparse,
  and on `close` writes this backup's sparse containers to
  `recipes/bv<id>.sparse`.
- **Restore** (`dedupcore.optimal_restore`): `OptimalCache` and
  `optimal_restore` evict the cached container whose next access lies
  furthest ahead in a look-ahead window of container ids.

## Installation

```
pip install .
```

## Examples

Reading files as blocks:

```python
from dedupcore.phases import read_phase

for chunk in read_phase("/data/to/back/up/", 8192):
    if not chunk.is_boundary():
        print(chunk.size)
```

Reading a hash-file trace:

```python
from dedupcore.hashfile_reader import HashFileReader
from dedupcore.trace import describe_trace, format_chunk_hash

with HashFileReader("trace.hash") as reader:
    print(describe_trace(reader))
    for _ in reader.files():
        for count, info in enumerate(reader.chunks(), start=1):
            print(format_chunk_hash(count, info.hash))
```

## What it does not do

- There is no command-line program; everything is used from Python.
- There is no container store or recipe store. Containers, segments and the
  sequence of container accesses for a restore are supplied by the caller
  through loader functions and iterables.
- Blocks are not cut into content-defined chunks, and there is no filter or
  write phase that packs unique chunks into containers.
- Restored chunks are yielded, not written back to files.
- `read_traces` raises `IsADirectoryError` for a directory.

## Running the tests

```
pip install .[test]
pytest
```