"""Feature sampling: pick the fingerprints that represent a run of chunks."""

from __future__ import annotations

import bisect
import enum
import logging
from typing import Callable, Dict, Sequence

from .chunk import FINGERPRINT_SIZE, Chunk

logger = logging.getLogger(__name__)

#: An insertion-ordered set of features (each a fingerprint prefix).
Features = Dict[bytes, None]

#: How many previous fingerprints the optimized min sampler looks back.
_LOOKBACK = 8


class SamplingMethod(enum.Enum):
    RANDOM = "random"
    OPTIMIZED_MIN = "optimized_min"
    MIN = "min"
    UNIFORM = "uniform"


def _head(fp: bytes) -> int:
    """The 32-bit signed integer stored at byte 16 of a fingerprint."""
    return int.from_bytes(fp[16:20], "little", signed=True)


def feature_count(chunk_num: int, ratio: int) -> int:
    """Number of features to select for ``chunk_num`` chunks at ``ratio``."""
    if ratio == 0 or chunk_num <= ratio:
        return 1
    count, remain = divmod(chunk_num, ratio)
    return count + 1 if remain * 2 > ratio else count


def sample_min(chunks: Sequence[Chunk], chunk_num: int, ratio: int, key_size: int) -> Features:
    """Select the smallest fingerprints (used by Extreme Binning and SiLo)."""
    wanted = feature_count(chunk_num or len(chunks), ratio)
    candidates: list = []
    for chunk in chunks:
        if chunk.is_boundary():
            continue
        if len(candidates) < wanted or chunk.fp < candidates[-1]:
            bisect.insort_right(candidates, chunk.fp)
            if len(candidates) > wanted:
                candidates.pop()

    features: Features = dict.fromkeys(fp[:key_size] for fp in candidates)
    if not features:
        logger.warning("Dedup phase: An empty segment and thus no min-feature is selected!")
        features = {b"\xff" * key_size: None}
    return features


def sample_optimized_min(
    chunks: Sequence[Chunk], chunk_num: int, ratio: int, key_size: int
) -> Features:
    """Select the smallest fingerprints as anchors and use, as each feature,
    the fingerprint seen a few chunks before its anchor."""
    wanted = feature_count(chunk_num or len(chunks), ratio)
    recent = [b"\xff" * FINGERPRINT_SIZE] * (_LOOKBACK + 1)
    anchors: list = []  # (anchor fingerprint, candidate fingerprint)
    count = 0
    for chunk in chunks:
        if chunk.is_boundary():
            continue
        recent = [chunk.fp] + recent[:_LOOKBACK]
        if len(anchors) < wanted or chunk.fp < anchors[-1][0]:
            candidate = recent[min(count, _LOOKBACK)]
            bisect.insort_right(anchors, (chunk.fp, candidate), key=lambda a: a[0])
            if len(anchors) > wanted:
                anchors.pop()
        count += 1

    features: Features = dict.fromkeys(candidate[:key_size] for _, candidate in anchors)
    if not features:
        logger.warning("Dedup phase: An empty segment and thus no min-feature is selected!")
        features = {b"\xff" * key_size: None}
    return features


def sample_random(chunks: Sequence[Chunk], chunk_num: int, ratio: int, key_size: int) -> Features:
    """Select fingerprints whose embedded integer is divisible by ``ratio``
    (used by Sparse Indexing)."""
    if ratio == 0:
        raise ValueError("random sampling needs a non-zero ratio")
    features: Features = {}
    for chunk in chunks:
        if chunk.is_boundary():
            continue
        if _head(chunk.fp) % ratio == 0:
            features.setdefault(chunk.fp[:key_size], None)

    if not features:
        logger.warning("Dedup phase: no features are sampled")
        features = {bytes(key_size): None}
    return features


def sample_uniform(chunks: Sequence[Chunk], chunk_num: int, ratio: int, key_size: int) -> Features:
    """Select every ``ratio``-th chunk, file markers included in the count."""
    if ratio == 0:
        raise ValueError("uniform sampling needs a non-zero ratio")
    features: Features = {}
    for count, chunk in enumerate(chunks):
        if count % ratio == 0:
            features.setdefault(chunk.fp[:key_size], None)

    if not features:
        if chunk_num != 0:
            raise ValueError("no chunks to sample although chunk_num is not zero")
        logger.warning(
            "Dedup phase: An empty segment and thus no uniform-feature is selected!"
        )
        features = {bytes(key_size): None}
    return features


_SAMPLERS = {
    SamplingMethod.RANDOM: sample_random,
    SamplingMethod.OPTIMIZED_MIN: sample_optimized_min,
    SamplingMethod.MIN: sample_min,
    SamplingMethod.UNIFORM: sample_uniform,
}


def make_sampler(method, ratio: int, key_size: int) -> Callable[..., Features]:
    """Return ``sampler(chunks, chunk_num=0)`` for ``method`` with fixed settings."""
    try:
        func = _SAMPLERS[SamplingMethod(method)]
    except (ValueError, KeyError):
        raise ValueError(f"Invalid sampling method: {method!r}") from None

    def sampler(chunks: Sequence[Chunk], chunk_num: int = 0) -> Features:
        return func(chunks, chunk_num, ratio, key_size)

    return sampler