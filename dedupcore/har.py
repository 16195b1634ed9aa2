"""History-aware rewriting: find sparse containers and rewrite their chunks
in the next backup."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Dict, List

from .chunk import Chunk, ChunkFlag

logger = logging.getLogger(__name__)


@dataclass
class ContainerRecord:
    """How many bytes of one container the current backup references."""

    cid: int
    size: int = 0


def sparse_file_path(working_directory, backup_id: int) -> str:
    """Path of the sparse-container list written by backup ``backup_id``."""
    return os.path.join(os.fspath(working_directory), "recipes", f"bv{backup_id}.sparse")


def load_sparse_containers(path) -> Dict[int, ContainerRecord]:
    """Read a sparse-container list; a missing file gives an empty mapping."""
    records: Dict[int, ContainerRecord] = {}
    try:
        stream = open(os.fspath(path), "r", encoding="ascii")
    except FileNotFoundError:
        return records
    with stream:
        for line in stream:
            fields = line.split()
            if not fields:
                continue
            cid = int(fields[0])
            size = int(fields[1]) if len(fields) > 1 else 0
            records[cid] = ContainerRecord(cid, size)
    return records


class HarRewriter:
    """Monitor container utilisation during a backup.

    Duplicate chunks found in containers that the previous backup judged
    sparse are marked for rewriting; on close, this backup's sparse
    containers are recorded for the next one.
    """

    def __init__(
        self,
        working_directory,
        backup_id: int,
        capacity: int,
        utilization_threshold: float,
        rewrite_limit: float = 1.0,
        inherit: bool = True,
    ) -> None:
        if capacity <= 0:
            raise ValueError("container capacity must be positive")
        self.working_directory = os.fspath(working_directory)
        self.backup_id = backup_id
        self.capacity = capacity
        self.utilization_threshold = utilization_threshold
        self.rewrite_limit = rewrite_limit
        #: Referenced bytes per container in this backup.
        self.utilization: Dict[int, ContainerRecord] = {}
        self.inherited: Dict[int, ContainerRecord] = {}
        if inherit and backup_id > 0:
            self.inherited = load_sparse_containers(
                sparse_file_path(self.working_directory, backup_id - 1)
            )
        logger.info("Read %d inherited sparse containers", len(self.inherited))
        self.total_container_num = 0
        self.sparse_container_num = 0
        self.inherited_sparse_num = 0

    def monitor_update(self, container_id: int, size: int) -> None:
        """Count ``size`` more bytes referenced in ``container_id``."""
        record = self.utilization.setdefault(container_id, ContainerRecord(container_id))
        record.size += size

    def check(self, chunk: Chunk) -> None:
        """Mark a duplicate chunk sparse if it lives in an inherited sparse container."""
        if chunk.is_boundary() or not chunk.has(ChunkFlag.DUPLICATE):
            return
        if chunk.id in self.inherited:
            chunk.mark(ChunkFlag.SPARSE)
            logger.debug("chunk %s in sparse container %d", chunk.fp[:20].hex(), chunk.id)

    def close(self) -> List[ContainerRecord]:
        """Write this backup's sparse containers, least used first, and return them.

        When ``rewrite_limit`` is below 1, the most used sparse containers are
        dropped until the estimated rewrite ratio fits the limit.
        """
        self.total_container_num = len(self.utilization)
        total_size = 0
        sparse_size = 0
        sparse: List[ContainerRecord] = []
        for record in self.utilization.values():
            total_size += record.size
            if record.size / self.capacity < self.utilization_threshold:
                if record.cid in self.inherited:
                    self.inherited_sparse_num += 1
                self.sparse_container_num += 1
                sparse_size += record.size
                sparse.append(record)
        sparse.sort(key=lambda r: r.size)

        while (
            sparse
            and self.rewrite_limit < 1
            and total_size > 0
            and sparse_size / total_size > self.rewrite_limit
        ):
            record = sparse.pop()
            logger.debug("Trim sparse container %d", record.cid)
            sparse_size -= record.size

        path = sparse_file_path(self.working_directory, self.backup_id)
        with open(path, "w", encoding="ascii") as stream:
            for record in sparse:
                stream.write(f"{record.cid} {record.size}\n")

        logger.info(
            "Record %d sparse containers, and %d of them are inherited",
            len(sparse),
            self.inherited_sparse_num,
        )
        return sparse