"""
Resolution metrics for observability.

Tracks how much work a resolver instance has done so callers can log a summary
(lookup calls issued, throttling and timeouts encountered, resolution rate)
without inspecting cache internals.
"""

from dataclasses import asdict, dataclass
from typing import Any, Dict


@dataclass
class ResolutionStats:
    """
    Counters for one resolver instance.

    Attributes:
        identifiers_discovered: New identifiers queued for lookup
        identifiers_coalesced: Discoveries skipped because already known
        lookups_issued: Lookup calls made (including retries)
        resolved: Identifiers that reached RESOLVED
        failed: Identifiers that reached FAILED
        rate_limited: Lookup calls rejected with a rate-limit signal
        timed_out: Lookup calls abandoned after the per-call timeout
        retries: Lookup calls that were repeats of a failed attempt
        batches_exhausted: Batches failed after using up their attempt budget

    Examples:
        >>> stats = ResolutionStats(resolved=9, failed=1)
        >>> stats.resolution_rate
        0.9
    """

    identifiers_discovered: int = 0
    identifiers_coalesced: int = 0
    lookups_issued: int = 0
    resolved: int = 0
    failed: int = 0
    rate_limited: int = 0
    timed_out: int = 0
    retries: int = 0
    batches_exhausted: int = 0

    @property
    def resolution_rate(self) -> float:
        """Share of terminal identifiers that resolved, or 0.0 if none finished."""
        finished = self.resolved + self.failed
        if finished == 0:
            return 0.0
        return self.resolved / finished

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON logging."""
        data = asdict(self)
        data["resolution_rate"] = round(self.resolution_rate, 4)
        return data
