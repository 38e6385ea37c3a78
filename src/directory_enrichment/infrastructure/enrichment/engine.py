"""
GuidResolver - identifier resolution engine facade.

Owns one resolution cache, one pending queue and one batch resolver for its
whole lifetime. Callers hand it arbitrary data, it discovers identifiers,
resolves them in the background, and substitutes names back into strings.

Lifecycle:
    resolver = GuidResolver(lookup, "contoso.onmicrosoft.com")
    resolver.resolve_guids(rows)          # fire-and-forget
    await resolver.wait_idle()            # optional: wait for lookups
    resolver.replace_guids_and_upns_in_string(text)
    resolver.dispose()                    # or ``async with GuidResolver(...)``

After ``dispose`` nothing is looked up or written any more; lookups already
in flight finish and their results are discarded.

If the event loop shuts down under a running lookup, the ids of the cut-off
batches are forgotten and looked up again when next discovered.
"""

import asyncio
import random
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Iterable, List, Mapping, Optional

from directory_enrichment.domain.identifier_resolution.extractor import (
    DEFAULT_PARTNER_PREFIX,
    extract_identifiers,
    extract_object_id_from_partner_upn,
    is_guid,
)
from directory_enrichment.domain.identifier_resolution.lookup_queue import (
    DEFAULT_MAX_BATCH_SIZE,
    PendingQueue,
)
from directory_enrichment.domain.identifier_resolution.models import (
    IdentifierKey,
    ResolutionEntry,
)
from directory_enrichment.domain.identifier_resolution.observability import (
    ResolutionStats,
)
from directory_enrichment.io.connectors.directory.core import LookupFunction
from directory_enrichment.utils.logging import get_logger

from .batch_resolver import BatchResolver, SleepFunction
from .resolution_cache import ResolutionCache
from .retry_policy import RetryPolicy
from .substitution import (
    Formatter,
    SubstitutionResult,
    display_name_only,
    replace_identifiers,
    substitute_in_value,
)

logger = get_logger(__name__)


@dataclass(frozen=True)
class ResolutionSnapshot:
    """Consistent read-only view of the resolver state at one instant."""

    entries: Mapping[IdentifierKey, ResolutionEntry]
    guid_mapping: Mapping[str, str]
    upn_mapping: Mapping[str, str]
    is_loading: bool


class GuidResolver:
    """
    Resolves directory object ids and partner UPNs to display names.

    Attributes:
        default_tenant: Tenant used for canonical GUIDs.
        partner_prefix: Local-part prefix identifying partner UPNs.
        match_embedded: Whether GUIDs inside longer text are handled too.

    Example:
        >>> async with GuidResolver(lookup, "contoso.com") as resolver:
        ...     resolver.resolve_guids(record)
        ...     await resolver.wait_idle()
        ...     resolver.replace_guids_and_upns_in_string(record["id"]).result
        'Alice'
    """

    def __init__(
        self,
        lookup: LookupFunction,
        default_tenant: str = "",
        *,
        max_batch_size: int = DEFAULT_MAX_BATCH_SIZE,
        retry_policy: Optional[RetryPolicy] = None,
        partner_prefix: str = DEFAULT_PARTNER_PREFIX,
        match_embedded: bool = False,
        sleep: SleepFunction = asyncio.sleep,
        rng: Optional[random.Random] = None,
    ) -> None:
        """
        Initialize GuidResolver.

        Args:
            lookup: ``async lookup(tenant, ids) -> list[dict]`` backend call.
            default_tenant: Tenant for canonical GUIDs.
            max_batch_size: Maximum ids per lookup call.
            retry_policy: Backoff policy; RetryPolicy() if None.
            partner_prefix: Local-part prefix of partner UPNs.
            match_embedded: Also resolve GUIDs embedded in longer text.
            sleep: Backoff sleep (injectable for tests).
            rng: Random source for backoff jitter.

        Raises:
            ValueError: If max_batch_size is less than 1 or partner_prefix
                is empty.
        """
        if not partner_prefix:
            raise ValueError("partner_prefix must not be empty")

        self.default_tenant = self._normalize_tenant(default_tenant)
        self.partner_prefix = partner_prefix
        self.match_embedded = match_embedded

        self._alive = True
        self._stats = ResolutionStats()
        self._cache = ResolutionCache()
        self._queue = PendingQueue(
            self._cache, max_batch_size=max_batch_size, stats=self._stats
        )
        self._resolver = BatchResolver(
            lookup,
            self._cache,
            policy=retry_policy,
            stats=self._stats,
            is_alive=lambda: self._alive,
            sleep=sleep,
            rng=rng,
        )

    @classmethod
    def from_settings(
        cls, lookup: Optional[LookupFunction] = None, **overrides: Any
    ) -> "GuidResolver":
        """
        Factory: build a resolver from global settings.

        Without ``lookup`` a DirectoryObjectsClient is created from the
        ``DIRENRICH_DIRECTORY_*`` settings.
        """
        from directory_enrichment.config.settings import get_settings

        settings = get_settings()
        if lookup is None:
            from directory_enrichment.io.connectors.directory.core import (
                DirectoryObjectsClient,
            )

            lookup = DirectoryObjectsClient(
                token=settings.directory_token,
                timeout=settings.directory_timeout,
                base_url=settings.directory_base_url,
            ).as_lookup()

        options = {
            "max_batch_size": settings.lookup_batch_size,
            "retry_policy": RetryPolicy.from_settings(),
            "partner_prefix": settings.partner_upn_prefix,
            "match_embedded": settings.match_embedded_guids,
        }
        options.update(overrides)
        default_tenant = options.pop("default_tenant", settings.default_tenant)
        return cls(lookup, default_tenant, **options)

    @staticmethod
    def _normalize_tenant(tenant: Optional[str]) -> str:
        return (tenant or "").strip().lower()

    def _tenant(self, tenant_override: Optional[str]) -> str:
        if tenant_override is None:
            return self.default_tenant
        return self._normalize_tenant(tenant_override)

    # Lifecycle

    @property
    def is_disposed(self) -> bool:
        return not self._alive

    def dispose(self) -> None:
        """Stop all further lookups and cache writes. Safe to call twice."""
        if not self._alive:
            return
        self._alive = False
        dropped_ids = self._queue.clear()
        dropped_batches = self._resolver.clear()
        logger.info(
            "guid_resolver.disposed",
            dropped_ids=dropped_ids,
            dropped_batches=dropped_batches,
            in_flight=self._resolver.is_busy,
            **self._stats.to_dict(),
        )

    async def wait_idle(self) -> None:
        """
        Dispatch anything still queued and wait until no lookup is running.

        Needed when ``resolve_guids`` was called outside a running event loop.
        Cancelling the wait leaves the lookups themselves running.
        """
        self._dispatch()
        await self._resolver.wait_idle()

    async def __aenter__(self) -> "GuidResolver":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.dispose()

    # Discovery

    def resolve_guids(
        self, value: Any, tenant_override: Optional[str] = None
    ) -> List[IdentifierKey]:
        """
        Discover identifiers in ``value`` and schedule lookups for new ones.

        Returns immediately; results show up in the mappings once resolved.
        Identifiers already known to this resolver (in any state) cause no
        lookup.

        Args:
            value: Any data (record, list of records, string).
            tenant_override: Tenant for canonical GUIDs in this call.

        Returns:
            Keys newly queued by this call.
        """
        if not self._alive:
            logger.debug("guid_resolver.resolve_after_dispose")
            return []

        discovered = extract_identifiers(
            value,
            self._tenant(tenant_override),
            prefix=self.partner_prefix,
            match_embedded=self.match_embedded,
        )
        return self.submit(discovered)

    def submit(self, discovered: Iterable[IdentifierKey]) -> List[IdentifierKey]:
        """Queue already-extracted keys; see ``resolve_guids``."""
        if not self._alive:
            return []
        fresh = self._queue.submit(discovered)
        if fresh:
            self._dispatch()
        return fresh

    def _dispatch(self) -> None:
        if not self._alive or not len(self._queue):
            return
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("guid_resolver.dispatch_deferred", queued=len(self._queue))
            return
        self._resolver.schedule(self._queue.drain())

    # State

    @property
    def guid_mapping(self) -> dict:
        """
        Object id -> display name for every resolved identifier.

        Keyed by object id alone, across all tenants; see
        ``replace_guids_and_upns_in_string`` for tenant-scoped substitution.
        """
        return self._cache.guid_mapping()

    @property
    def upn_mapping(self) -> dict:
        """Object id -> UPN for every resolved identifier that has one."""
        return self._cache.upn_mapping()

    @property
    def is_loading_guids(self) -> bool:
        """True while lookups are queued, in flight or backing off."""
        if not self._alive:
            return False
        return self._resolver.is_busy or len(self._queue) > 0

    @property
    def stats(self) -> ResolutionStats:
        return self._stats

    def snapshot(self) -> ResolutionSnapshot:
        entries = self._cache.entries()
        return ResolutionSnapshot(
            entries=entries,
            guid_mapping=MappingProxyType(self._cache.guid_mapping()),
            upn_mapping=MappingProxyType(self._cache.upn_mapping()),
            is_loading=self.is_loading_guids,
        )

    # Pure helpers

    @staticmethod
    def is_guid(value: Any) -> bool:
        return is_guid(value)

    def extract_object_id_from_partner_upn(self, value: Any) -> List[str]:
        return extract_object_id_from_partner_upn(value, self.partner_prefix)

    # Substitution

    def replace_guids_and_upns_in_string(
        self,
        text: Any,
        tenant_override: Optional[str] = None,
        formatter: Optional[Formatter] = None,
    ) -> SubstitutionResult:
        """
        Replace resolved GUIDs and partner UPNs in ``text`` with names.

        Unresolved, pending and failed identifiers are left verbatim; a
        non-string input comes back unchanged with ``has_resolved_names``
        False.

        Canonical GUIDs are looked up under the same tenant they were
        resolved for. An id resolved with ``resolve_guids(value, "fabrikam.com")``
        is listed in ``guid_mapping`` but only substituted when the same
        ``tenant_override`` is passed here; without it the default tenant is
        used and the id stays raw. Partner UPNs carry their own tenant and
        need no override.
        """
        if not isinstance(text, str):
            return SubstitutionResult(text, False)
        return replace_identifiers(
            text,
            self._cache.entries(),
            self._tenant(tenant_override),
            prefix=self.partner_prefix,
            match_embedded=self.match_embedded,
            formatter=formatter or display_name_only,
        )

    def enrich_value(
        self,
        value: Any,
        tenant_override: Optional[str] = None,
        formatter: Optional[Formatter] = None,
    ) -> Any:
        """
        Return a copy of ``value`` with every string leaf substituted.

        Tenant scoping works as in ``replace_guids_and_upns_in_string``.
        """
        return substitute_in_value(
            value,
            self._cache.entries(),
            self._tenant(tenant_override),
            prefix=self.partner_prefix,
            match_embedded=self.match_embedded,
            formatter=formatter or display_name_only,
        )
