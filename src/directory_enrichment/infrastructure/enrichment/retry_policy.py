"""
Retry Policy - bounded exponential backoff for batch lookups.

The policy is a frozen dataclass injected into the batch resolver, so the
retry behaviour can be configured per resolver and asserted on directly in
tests instead of being buried in control flow.

Delay for the n-th failed attempt (1-based):

    min(max_delay, base_delay * 2 ** (n - 1)) * uniform(1 - jitter, 1 + jitter)

clamped to ``max_delay``. A server ``Retry-After`` hint raises the delay, up
to the same cap.

Each lookup call is bounded by ``timeout``; a call that runs longer counts
as a failed attempt and uses the same budget as any transient error.
"""

from __future__ import annotations

import random
from dataclasses import dataclass
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class RetryPolicy:
    """
    Configuration for lookup retry behaviour.

    Attributes:
        max_attempts: Total lookup calls allowed per batch (first call
            included). When exhausted the batch is marked failed.
        base_delay: Delay in seconds after the first failed attempt.
        max_delay: Upper bound in seconds for any single delay.
        multiplier: Growth factor between consecutive delays.
        jitter: Relative jitter; 0.2 spreads delays over +/-20%.
        timeout: Seconds one lookup call may take, or None for no limit.

    Example:
        >>> policy = RetryPolicy(max_attempts=3, base_delay=0.5, jitter=0.0)
        >>> [policy.delay_for(n) for n in (1, 2, 3)]
        [0.5, 1.0, 2.0]
        >>> policy.should_retry(3)
        False
    """

    max_attempts: int = 4
    base_delay: float = 0.5
    max_delay: float = 8.0
    multiplier: float = 2.0
    jitter: float = 0.2
    timeout: Optional[float] = 60.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base_delay < 0:
            raise ValueError("base_delay must not be negative")
        if self.max_delay < self.base_delay:
            raise ValueError("max_delay must be greater than or equal to base_delay")
        if self.multiplier < 1:
            raise ValueError("multiplier must be at least 1")
        if not 0 <= self.jitter < 1:
            raise ValueError("jitter must be in [0, 1)")
        if self.timeout is not None and self.timeout <= 0:
            raise ValueError("timeout must be positive")

    def should_retry(self, attempts: int) -> bool:
        """Whether another call is allowed after ``attempts`` calls."""
        return attempts < self.max_attempts

    def delay_for(
        self,
        attempt: int,
        *,
        retry_after: Optional[float] = None,
        rng: Optional[random.Random] = None,
    ) -> float:
        """
        Compute the wait before the next call.

        Args:
            attempt: Number of the attempt that just failed (1-based).
            retry_after: Server-provided minimum wait in seconds, if any.
            rng: Random source for jitter (module random if None).

        Returns:
            Delay in seconds, never above ``max_delay``.
        """
        exponent = max(attempt - 1, 0)
        delay = min(self.max_delay, self.base_delay * self.multiplier**exponent)
        if self.jitter:
            source = rng if rng is not None else random
            delay *= source.uniform(1 - self.jitter, 1 + self.jitter)
        if retry_after is not None:
            delay = max(delay, retry_after)
        return min(delay, self.max_delay)

    @classmethod
    def no_retry(cls) -> RetryPolicy:
        """
        Factory: single attempt, failures are terminal immediately.

        Example:
            >>> RetryPolicy.no_retry().should_retry(1)
            False
        """
        return cls(max_attempts=1, base_delay=0.0, max_delay=0.0, jitter=0.0)

    @classmethod
    def from_settings(cls) -> RetryPolicy:
        """Factory: build the policy from global settings."""
        from directory_enrichment.config.settings import get_settings

        settings = get_settings()
        return cls(
            max_attempts=settings.lookup_retry_max,
            base_delay=settings.lookup_backoff_base,
            max_delay=settings.lookup_backoff_max,
            timeout=settings.lookup_timeout,
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> RetryPolicy:
        """
        Factory: deserialize a policy from a dictionary.

        Example:
            >>> RetryPolicy.from_dict({"max_attempts": 5}).max_attempts
            5
        """
        defaults = cls()
        return cls(
            max_attempts=data.get("max_attempts", defaults.max_attempts),
            base_delay=data.get("base_delay", defaults.base_delay),
            max_delay=data.get("max_delay", defaults.max_delay),
            multiplier=data.get("multiplier", defaults.multiplier),
            jitter=data.get("jitter", defaults.jitter),
            timeout=data.get("timeout", defaults.timeout),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Serialize the policy to a dictionary."""
        return {
            "max_attempts": self.max_attempts,
            "base_delay": self.base_delay,
            "max_delay": self.max_delay,
            "multiplier": self.multiplier,
            "jitter": self.jitter,
            "timeout": self.timeout,
        }
