"""
Pending queue for identifier lookups.

Merges newly discovered identifiers with what the resolution cache already
knows, so repeated discovery of the same identifier (for example on every
refresh of the same audit log page) never turns into a second lookup. Queued
identifiers are grouped by tenant, since the lookup endpoint is tenant-scoped,
and chunked into batches of bounded size.
"""

from typing import TYPE_CHECKING, Dict, Iterable, List, Optional

from directory_enrichment.utils.logging import get_logger

from .models import Batch, IdentifierKey, ResolutionEntry
from .observability import ResolutionStats

if TYPE_CHECKING:
    from directory_enrichment.infrastructure.enrichment.resolution_cache import (
        ResolutionCache,
    )

logger = get_logger(__name__)

DEFAULT_MAX_BATCH_SIZE = 100


class PendingQueue:
    """
    Deduplicating, tenant-grouped queue of identifiers awaiting lookup.

    Every queued identifier has a PENDING cache entry; an identifier with any
    cache entry at all is never queued again, which keeps at most one
    in-flight resolution per identifier.

    Examples:
        >>> queue = PendingQueue(cache, max_batch_size=2)
        >>> _ = queue.submit({IdentifierKey("a", "t1"), IdentifierKey("b", "t1")})
        >>> [len(batch) for batch in queue.drain()]
        [2]
    """

    def __init__(
        self,
        cache: "ResolutionCache",
        *,
        max_batch_size: int = DEFAULT_MAX_BATCH_SIZE,
        stats: Optional[ResolutionStats] = None,
    ) -> None:
        if max_batch_size < 1:
            raise ValueError("max_batch_size must be at least 1")

        self.cache = cache
        self.max_batch_size = max_batch_size
        self.stats = stats if stats is not None else ResolutionStats()
        # tenant -> ids in discovery order
        self._queued: Dict[str, List[str]] = {}

    def __len__(self) -> int:
        return sum(len(ids) for ids in self._queued.values())

    def submit(self, discovered: Iterable[IdentifierKey]) -> List[IdentifierKey]:
        """
        Queue identifiers that have never been seen by this resolver.

        Args:
            discovered: Identifier keys from the extractor.

        Returns:
            Keys that were newly queued (in a stable order).
        """
        fresh: List[IdentifierKey] = []
        coalesced = 0
        for key in sorted(set(discovered)):
            if key in self.cache:
                coalesced += 1
                continue
            fresh.append(key)

        self.stats.identifiers_discovered += len(fresh)
        self.stats.identifiers_coalesced += coalesced

        if not fresh:
            return []

        self.cache.apply(ResolutionEntry.pending(key) for key in fresh)
        for key in fresh:
            self._queued.setdefault(key.tenant, []).append(key.object_id)

        logger.debug(
            "lookup_queue.submitted",
            queued=len(fresh),
            coalesced=coalesced,
            tenants=len({key.tenant for key in fresh}),
        )
        return fresh

    def drain(self) -> List[Batch]:
        """
        Remove everything queued and return it as tenant-scoped batches.

        Returns:
            Batches of at most ``max_batch_size`` ids, one tenant each.
        """
        batches: List[Batch] = []
        for tenant, object_ids in self._queued.items():
            for start in range(0, len(object_ids), self.max_batch_size):
                chunk = tuple(object_ids[start : start + self.max_batch_size])
                batches.append(Batch(tenant=tenant, object_ids=chunk))
        self._queued = {}
        return batches

    def clear(self) -> int:
        """Drop queued identifiers without dispatching them."""
        dropped = len(self)
        self._queued = {}
        return dropped
