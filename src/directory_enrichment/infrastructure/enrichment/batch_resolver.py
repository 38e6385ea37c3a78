"""
Batch Resolver for directory object identifiers.

Runs tenant-scoped batches through an injected async lookup function and
writes the outcome into the resolution cache.

Features:
- One lookup call per attempt, never more ids than the configured batch size
- Atomic cache write per batch (readers never see a half-merged batch)
- Ids missing from a successful response become FAILED, the rest RESOLVED
- Rate limits (429/503), lookup timeouts and transient errors retried with
  bounded exponential backoff; the whole batch becomes FAILED once the attempt
  budget is spent
- Authentication and not-found errors fail the batch without retrying
- Batches of one tenant run sequentially; tenants run concurrently
- Nothing is written once the owning resolver has been disposed
- A lane cancelled mid-batch (loop shutdown) forgets the PENDING entries it
  still held, so the ids are looked up again when next discovered

Security:
- Never logs display names, UPNs or credentials; only tenants and counts
"""

import asyncio
import functools
import random
from collections import deque
from typing import Any, Awaitable, Callable, Deque, Dict, Iterable, List, Optional

from directory_enrichment.domain.identifier_resolution.models import (
    Batch,
    DirectoryObject,
    ResolutionEntry,
    ResolutionState,
)
from directory_enrichment.domain.identifier_resolution.observability import (
    ResolutionStats,
)
from directory_enrichment.io.connectors.directory.core import LookupFunction
from directory_enrichment.io.connectors.directory.models import (
    NON_RETRYABLE_ERRORS,
    DirectoryRateLimitError,
    DirectoryResponseError,
)
from directory_enrichment.utils.logging import get_logger

from .resolution_cache import ResolutionCache
from .retry_policy import RetryPolicy

logger = get_logger(__name__)

SleepFunction = Callable[[float], Awaitable[Any]]


def parse_lookup_response(raw: Any) -> Dict[str, DirectoryObject]:
    """
    Validate a lookup response and index it by normalized object id.

    Raises:
        DirectoryResponseError: If the response is not a list.
        pydantic.ValidationError: If an item is not a valid directory object.
    """
    if not isinstance(raw, list):
        raise DirectoryResponseError(
            f"Lookup returned {type(raw).__name__}, expected a list"
        )
    objects = [DirectoryObject.model_validate(item) for item in raw]
    return {obj.id: obj for obj in objects}


class BatchResolver:
    """
    Executes lookup batches with retry and per-tenant sequencing.

    Attributes:
        cache: Cache the results are written to.
        policy: Retry policy applied to every batch.
        stats: Shared counters of the owning resolver.

    Example:
        >>> resolver = BatchResolver(lookup, cache)
        >>> resolver.schedule(queue.drain())
        >>> await resolver.wait_idle()
    """

    def __init__(
        self,
        lookup: LookupFunction,
        cache: ResolutionCache,
        *,
        policy: Optional[RetryPolicy] = None,
        stats: Optional[ResolutionStats] = None,
        is_alive: Callable[[], bool] = lambda: True,
        sleep: SleepFunction = asyncio.sleep,
        rng: Optional[random.Random] = None,
    ) -> None:
        """
        Initialize BatchResolver.

        Args:
            lookup: ``async lookup(tenant, ids) -> list[dict]``.
            cache: Resolution cache to write into.
            policy: Retry policy. Defaults to RetryPolicy().
            stats: Counters to update. A private instance if None.
            is_alive: Liveness flag of the owner; checked before every write.
            sleep: Awaitable used for backoff waits (injectable for tests).
            rng: Random source for backoff jitter.
        """
        self._lookup = lookup
        self.cache = cache
        self.policy = policy or RetryPolicy()
        self.stats = stats if stats is not None else ResolutionStats()
        self._is_alive = is_alive
        self._sleep = sleep
        self._rng = rng or random.Random()

        # tenant -> batches not started yet
        self._waiting: Dict[str, Deque[Batch]] = {}
        # tenant -> task draining that tenant's batches
        self._lanes: Dict[str, "asyncio.Task[None]"] = {}

    @property
    def is_busy(self) -> bool:
        """True while any batch is in flight or waiting on a backoff timer."""
        return bool(self._lanes)

    @property
    def active_tenants(self) -> List[str]:
        return sorted(self._lanes)

    def schedule(self, batches: Iterable[Batch]) -> None:
        """
        Queue batches and start a lane for every tenant without one.

        Must be called from within a running event loop.
        """
        loop = asyncio.get_running_loop()
        touched: List[str] = []
        for batch in batches:
            self._waiting.setdefault(batch.tenant, deque()).append(batch)
            if batch.tenant not in touched:
                touched.append(batch.tenant)

        for tenant in touched:
            if tenant not in self._lanes:
                task = loop.create_task(
                    self._drain_lane(tenant), name=f"guid-lookup:{tenant}"
                )
                task.add_done_callback(functools.partial(self._on_lane_done, tenant))
                self._lanes[tenant] = task

    async def wait_idle(self) -> None:
        """
        Wait until every lane has finished, including lanes started meanwhile.

        Cancelling the waiter (``asyncio.wait_for`` timing out, for instance)
        leaves the lanes running.
        """
        while self._lanes:
            await asyncio.wait(list(self._lanes.values()))

    def clear(self) -> int:
        """
        Drop batches that have not started yet.

        Running lanes are left to finish the batch they hold; they stop
        writing as soon as the owner reports itself dead.
        """
        dropped = sum(len(queue) for queue in self._waiting.values())
        for queue in self._waiting.values():
            queue.clear()
        self._waiting.clear()
        return dropped

    async def _drain_lane(self, tenant: str) -> None:
        queue = self._waiting.get(tenant)
        current: Optional[Batch] = None
        try:
            while queue and self._is_alive():
                current = queue.popleft()
                try:
                    await self.run(current)
                except Exception:
                    logger.error(
                        "batch_resolver.lane_error",
                        tenant=tenant,
                        batch_size=len(current),
                        exc_info=True,
                    )
                    self._fail_batch(current)
                current = None
        except asyncio.CancelledError:
            abandoned = [current] if current is not None else []
            if queue:
                abandoned.extend(queue)
                queue.clear()
            self._release(tenant, abandoned)
            raise
        finally:
            # No await between the last emptiness check and this point, so a
            # batch scheduled meanwhile always finds the lane gone or running
            self._lanes.pop(tenant, None)
            if queue is not None and not queue:
                self._waiting.pop(tenant, None)

    def _on_lane_done(self, tenant: str, task: "asyncio.Task[None]") -> None:
        # A lane cancelled before its first step never reaches _drain_lane's
        # cleanup, so its registration and queued batches are released here
        if self._lanes.get(tenant) is not task:
            return
        del self._lanes[tenant]
        self._release(tenant, list(self._waiting.pop(tenant, ())))

    def _release(self, tenant: str, batches: List[Batch]) -> None:
        if not batches or not self._is_alive():
            return
        keys = [key for batch in batches for key in batch.keys]
        released = self.cache.forget_pending(keys)
        logger.warning(
            "batch_resolver.lane_cancelled",
            tenant=tenant,
            batches=len(batches),
            released=released,
        )

    async def run(self, batch: Batch) -> None:
        """
        Resolve one batch, retrying per policy until success or exhaustion.

        Never raises for lookup failures; the outcome is recorded in the cache.
        """
        log = logger.bind(tenant=batch.tenant, batch_size=len(batch))
        current = batch

        while self._is_alive():
            current = current.next_attempt()
            self.stats.lookups_issued += 1
            if current.attempts > 1:
                self.stats.retries += 1

            retry_after: Optional[float] = None
            try:
                raw = await asyncio.wait_for(
                    self._lookup(current.tenant, list(current.object_ids)),
                    self.policy.timeout,
                )
                objects = parse_lookup_response(raw)
            except asyncio.TimeoutError:
                self.stats.timed_out += 1
                log.warning(
                    "batch_resolver.lookup_timeout",
                    attempt=current.attempts,
                    timeout_seconds=self.policy.timeout,
                )
            except DirectoryRateLimitError as e:
                self.stats.rate_limited += 1
                retry_after = e.retry_after
                log.warning(
                    "batch_resolver.rate_limited",
                    attempt=current.attempts,
                    status_code=e.status_code,
                )
            except NON_RETRYABLE_ERRORS as e:
                log.warning(
                    "batch_resolver.non_retryable_error",
                    attempt=current.attempts,
                    error_type=type(e).__name__,
                )
                self._fail_batch(current)
                return
            except Exception as e:
                log.warning(
                    "batch_resolver.lookup_error",
                    attempt=current.attempts,
                    error_type=type(e).__name__,
                    error=str(e),
                )
            else:
                self._apply_results(current, objects)
                return

            if not self.policy.should_retry(current.attempts):
                self.stats.batches_exhausted += 1
                log.warning(
                    "batch_resolver.attempts_exhausted",
                    attempts=current.attempts,
                    max_attempts=self.policy.max_attempts,
                )
                self._fail_batch(current)
                return

            self._record_attempts(current)
            delay = self.policy.delay_for(
                current.attempts, retry_after=retry_after, rng=self._rng
            )
            log.debug(
                "batch_resolver.backoff",
                attempt=current.attempts,
                delay_seconds=round(delay, 3),
            )
            await self._sleep(delay)

        log.debug("batch_resolver.abandoned_after_dispose", attempts=current.attempts)

    def _entries_for(self, batch: Batch) -> List[ResolutionEntry]:
        entries = []
        for key in batch.keys:
            entry = self.cache.get(key) or ResolutionEntry.pending(key)
            entries.append(entry.with_attempts(max(entry.attempts, batch.attempts)))
        return entries

    def _write(self, updates: List[ResolutionEntry], batch: Batch) -> bool:
        if not self._is_alive():
            logger.debug(
                "batch_resolver.write_discarded",
                tenant=batch.tenant,
                batch_size=len(batch),
            )
            return False
        self.cache.apply(updates)
        return True

    def _record_attempts(self, batch: Batch) -> None:
        self._write(self._entries_for(batch), batch)

    def _fail_batch(self, batch: Batch) -> None:
        updates = [entry.failed() for entry in self._entries_for(batch)]
        if self._write(updates, batch):
            self.stats.failed += len(updates)

    def _apply_results(self, batch: Batch, objects: Dict[str, DirectoryObject]) -> None:
        updates: List[ResolutionEntry] = []
        for entry in self._entries_for(batch):
            obj = objects.get(entry.object_id)
            if obj is not None and obj.label:
                updates.append(entry.resolved(obj.label, obj.upn))
            else:
                updates.append(entry.failed())

        if not self._write(updates, batch):
            return

        resolved = sum(1 for e in updates if e.state is ResolutionState.RESOLVED)
        self.stats.resolved += resolved
        self.stats.failed += len(updates) - resolved
        logger.info(
            "batch_resolver.batch_completed",
            tenant=batch.tenant,
            attempts=batch.attempts,
            resolved=resolved,
            missing=len(updates) - resolved,
            unexpected=len(set(objects) - set(batch.object_ids)),
        )
