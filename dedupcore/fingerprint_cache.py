"""LRU cache of prefetched containers or segments for fingerprint lookups."""

from __future__ import annotations

import enum
import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional, Sequence

from .chunk import TEMPORARY_ID

logger = logging.getLogger(__name__)


class IndexCategory(enum.Enum):
    """Exactness of an index, and the locality its cache exploits."""

    EXACT = "exact"
    NEAR_EXACT = "near_exact"
    PHYSICAL_LOCALITY = "physical_locality"
    LOGICAL_LOCALITY = "logical_locality"


@dataclass
class PrefetchUnit:
    """A container (physical locality) or segment (logical locality).

    ``fingerprints`` maps each fingerprint in the unit to the container that
    holds it; for a container the values are not used.
    """

    id: int
    fingerprints: Dict[bytes, int] = field(default_factory=dict)


#: ``loader(unit_id, count)`` returns up to ``count`` units starting at ``unit_id``.
Loader = Callable[[int, int], Sequence[PrefetchUnit]]


class FingerprintCache:
    """Least recently used cache of prefetch units."""

    def __init__(self, capacity: int, category, loader: Loader, segment_prefetch: int = 1) -> None:
        category = IndexCategory(category)
        if category not in (IndexCategory.PHYSICAL_LOCALITY, IndexCategory.LOGICAL_LOCALITY):
            raise ValueError(f"Invalid index category: {category}")
        if capacity < 1:
            raise ValueError("cache capacity must be at least 1")
        self.capacity = capacity
        self.category = category
        self.segment_prefetch = segment_prefetch
        self._loader = loader
        # Most recently used units are at the end.
        self._units: "OrderedDict[int, PrefetchUnit]" = OrderedDict()
        #: Number of reads of prefetching units.
        self.prefetches = 0

    def _find(self, fp: bytes) -> Optional[PrefetchUnit]:
        for unit_id in reversed(self._units):
            unit = self._units[unit_id]
            if fp in unit.fingerprints:
                self._units.move_to_end(unit_id)
                return unit
        return None

    def _insert(self, unit: PrefetchUnit) -> None:
        if unit.id in self._units:
            self._units.move_to_end(unit.id)
        elif len(self._units) >= self.capacity:
            self._units.popitem(last=False)
        self._units[unit.id] = unit

    def lookup(self, fp: bytes) -> int:
        """Return the container holding ``fp``, or TEMPORARY_ID when not cached."""
        unit = self._find(fp)
        if unit is None:
            return TEMPORARY_ID
        if self.category is IndexCategory.PHYSICAL_LOCALITY:
            return unit.id
        container_id = unit.fingerprints[fp]
        if container_id <= TEMPORARY_ID:
            raise ValueError(f"expect > TEMPORARY_ID, but being {container_id}")
        return container_id

    def prefetch(self, unit_id: int) -> None:
        """Load the unit ``unit_id`` (and, for segments, its successors)."""
        if self.category is IndexCategory.PHYSICAL_LOCALITY:
            units = list(self._loader(unit_id, 1))
            self.prefetches += 1
            if not units:
                raise KeyError(f"The container {unit_id} has not been written!")
            self._insert(units[0])
            return

        if unit_id in self._units:
            # The segment is already cached; no need to read it.
            self._units.move_to_end(unit_id)
            return
        units = list(self._loader(unit_id, self.segment_prefetch))
        self.prefetches += 1
        logger.debug(
            "Dedup phase: prefetch %d segments into %d cache", len(units), self.capacity
        )
        for unit in reversed(units):
            if unit.id in self._units:
                self._units.move_to_end(unit.id)
            else:
                self._insert(unit)

    def __contains__(self, unit_id: object) -> bool:
        return unit_id in self._units

    def __len__(self) -> int:
        return len(self._units)