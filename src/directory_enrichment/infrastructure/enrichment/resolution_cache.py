"""
Resolution cache owned by one resolver instance.

Entries are keyed by ``(object_id, tenant)``. Writes replace the whole entry
map in one assignment, so a reader either sees all of a batch's results or
none of them, and snapshots handed out earlier stay unchanged.
"""

from types import MappingProxyType
from typing import Dict, Iterable, Mapping, Optional

from directory_enrichment.domain.identifier_resolution.models import (
    IdentifierKey,
    ResolutionEntry,
    ResolutionState,
)
from directory_enrichment.utils.logging import get_logger

logger = get_logger(__name__)


class ResolutionCache:
    """
    Identifier -> resolution state store.

    Terminal entries (RESOLVED, FAILED) are never overwritten or removed.
    PENDING entries are only removed when their lookup was abandoned. The
    cache lives exactly as long as its owning resolver.

    Examples:
        >>> cache = ResolutionCache()
        >>> key = IdentifierKey("550e8400-e29b-41d4-a716-446655440000", "contoso.com")
        >>> cache.apply([ResolutionEntry.pending(key)])
        1
        >>> cache.get(key).state
        <ResolutionState.PENDING: 'pending'>
    """

    def __init__(self) -> None:
        self._entries: Mapping[IdentifierKey, ResolutionEntry] = MappingProxyType({})

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def get(self, key: IdentifierKey) -> Optional[ResolutionEntry]:
        return self._entries.get(key)

    def entries(self) -> Mapping[IdentifierKey, ResolutionEntry]:
        """Read-only view of the current entry map."""
        return self._entries

    def apply(self, updates: Iterable[ResolutionEntry]) -> int:
        """
        Merge a group of entries in a single atomic update.

        Updates targeting an entry that is already terminal are dropped.

        Args:
            updates: Entries to write, keyed by their own ``key``.

        Returns:
            Number of entries actually written.
        """
        merged: Dict[IdentifierKey, ResolutionEntry] = dict(self._entries)
        written = 0
        for entry in updates:
            current = merged.get(entry.key)
            if current is not None and current.state.is_terminal:
                logger.debug(
                    "resolution_cache.terminal_entry_kept",
                    tenant=entry.tenant,
                    state=current.state.value,
                )
                continue
            merged[entry.key] = entry
            written += 1

        if written:
            self._entries = MappingProxyType(merged)
        return written

    def forget_pending(self, keys: Iterable[IdentifierKey]) -> int:
        """
        Drop PENDING entries whose lookup will never finish.

        Forgotten keys count as unknown again, so the next discovery queues
        them for a fresh lookup. Terminal entries are kept.

        Returns:
            Number of entries removed.
        """
        remaining: Dict[IdentifierKey, ResolutionEntry] = dict(self._entries)
        removed = 0
        for key in keys:
            entry = remaining.get(key)
            if entry is not None and entry.state is ResolutionState.PENDING:
                del remaining[key]
                removed += 1

        if removed:
            self._entries = MappingProxyType(remaining)
        return removed

    def guid_mapping(self) -> Dict[str, str]:
        """Object id -> display name, for RESOLVED entries only."""
        return {
            entry.object_id: entry.display_name
            for entry in self._entries.values()
            if entry.state is ResolutionState.RESOLVED and entry.display_name
        }

    def upn_mapping(self) -> Dict[str, str]:
        """Object id -> UPN, for RESOLVED entries that carry one."""
        return {
            entry.object_id: entry.upn
            for entry in self._entries.values()
            if entry.state is ResolutionState.RESOLVED and entry.upn
        }

    def count(self, state: ResolutionState) -> int:
        return sum(1 for entry in self._entries.values() if entry.state is state)

    def pending_count(self) -> int:
        return self.count(ResolutionState.PENDING)
