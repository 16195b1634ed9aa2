"""Job control record: the counters and timings of one backup or restore job."""

from __future__ import annotations

import enum
import os
from dataclasses import dataclass
from typing import Any, Optional, TextIO

from .chunk import TEMPORARY_ID


class JobStatus(enum.IntEnum):
    INIT = 1
    RUNNING = 2
    DONE = 3


@dataclass
class JobControlRecord:
    """State and statistics of a running job."""

    path: str = ""
    id: int = TEMPORARY_ID
    new_id: int = TEMPORARY_ID
    status: JobStatus = JobStatus.INIT

    file_num: int = 0
    pre_process_file_num: int = 0
    data_size: int = 0
    unique_data_size: int = 0
    chunk_num: int = 0
    unique_chunk_num: int = 0
    zero_chunk_num: int = 0
    zero_chunk_size: int = 0
    rewritten_chunk_num: int = 0
    rewritten_chunk_size: int = 0

    sparse_container_num: int = 0
    inherited_sparse_num: int = 0
    total_container_num: int = 0

    hash_num: int = 0

    bv: Optional[Any] = None
    new_bv: Optional[Any] = None

    total_time: float = 0.0
    read_time: float = 0.0
    chunk_time: float = 0.0
    hash_time: float = 0.0
    pre_dedup_time: float = 0.0
    dedup_time: float = 0.0
    rewrite_time: float = 0.0
    filter_time: float = 0.0
    write_time: float = 0.0

    read_recipe_time: float = 0.0
    read_chunk_time: float = 0.0
    write_chunk_time: float = 0.0

    sql_insert: int = 0
    sql_insert_all: int = 0
    sql_fetch: int = 0
    sql_fetch_buffered: int = 0

    read_container_num: int = 0
    read_container_new: int = 0
    read_container_new_buffered: int = 0
    sync_buffer_num: int = 0
    logic_recipe_unique_container: int = 0
    physical_recipe_unique_container: int = 0

    recipe_hit: int = 0

    def write_result(self, stream: TextIO) -> None:
        """Write the job's counters to ``stream``, one ``name: value`` per line."""
        if self.logic_recipe_unique_container == 0:
            self.logic_recipe_unique_container = self.physical_recipe_unique_container
        lines = [
            ("sync_buffer_num", self.sync_buffer_num),
            ("read_container", self.read_container_num),
            ("read_container_new", self.read_container_new),
            ("read_container_new_buffered", self.read_container_new_buffered),
            ("hash_num", self.hash_num),
            ("sql_insert_all", self.sql_insert_all),
            ("sql_insert", self.sql_insert),
            ("sql_fetch", self.sql_fetch),
            ("sql_fetch_buffered", self.sql_fetch_buffered),
            ("logic_recipe_unique_container", self.logic_recipe_unique_container),
            ("physical_recipe_unique_container", self.physical_recipe_unique_container),
            ("recipe_hit", self.recipe_hit),
        ]
        for name, value in lines:
            stream.write(f"{name}: {value}\n")


def new_job(path: str) -> JobControlRecord:
    """Create a fresh record for a job on ``path``.

    A directory path is given a trailing slash. Raises FileNotFoundError
    when the path does not exist.
    """
    path = os.fspath(path)
    if not os.path.exists(path):
        raise FileNotFoundError(f"backup path does not exist: {path}")
    if os.path.isdir(path) and not path.endswith("/"):
        path += "/"
    return JobControlRecord(path=path)