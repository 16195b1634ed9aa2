"""Select the stored segments most similar to a new segment's features."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List

from .chunk import TEMPORARY_ID
from .kvstore import KeyValueStore

logger = logging.getLogger(__name__)


@dataclass
class Candidate:
    """A stored segment sharing at least one feature with the new segment."""

    id: int
    features: Dict[bytes, None] = field(default_factory=dict)


def _rank_key(candidate: Candidate):
    # More shared features first; on a tie, the newer (larger) ID first.
    return (-len(candidate.features), -candidate.id)


def rank_candidates(kvstore: KeyValueStore, features: Iterable[bytes]) -> List[Candidate]:
    """Return the segments holding any of ``features``, most similar first."""
    candidates: Dict[int, Candidate] = {}
    for feature in features:
        ids = kvstore.lookup(feature)
        if ids is None:
            continue
        for unit_id in ids:
            if unit_id == TEMPORARY_ID:
                break
            candidate = candidates.setdefault(unit_id, Candidate(unit_id))
            candidate.features[bytes(feature)[: kvstore.key_size]] = None
    ranked = sorted(candidates.values(), key=_rank_key)
    for candidate in ranked:
        logger.info(
            "candidate segment %d with %d shared features",
            candidate.id,
            len(candidate.features),
        )
    return ranked


def select_top_segments(kvstore: KeyValueStore, cache, features: Iterable[bytes], top_k: int) -> List[int]:
    """Prefetch the ``top_k`` most similar segments into ``cache``.

    After each pick, the features it covers no longer count for the
    remaining candidates. Returns the IDs prefetched, in order.
    """
    ranked = rank_candidates(kvstore, features)
    num = min(len(ranked), top_k)
    logger.info("select Top-%d in %d segments", num, len(ranked))
    selected: List[int] = []
    for _ in range(num):
        top = ranked.pop(0)
        logger.info("read segment %d", top.id)
        cache.prefetch(top.id)
        selected.append(top.id)
        for candidate in ranked:
            for feature in top.features:
                candidate.features.pop(feature, None)
        ranked.sort(key=_rank_key)
    return selected