"""
Retry policy — bounded attempts with optional backoff and jitter.

Health polling is the only thing in the engine that retries. The policy
is a value object handed to the verifier, so tests can pass a zero-wait
policy and run instantly.
"""

from __future__ import annotations

import math
import random
from dataclasses import dataclass, replace

from provisioner.core.models.descriptor import HealthCheck


@dataclass(frozen=True)
class RetryPolicy:
    """How many times to probe and how long to wait between probes.

    Args:
        max_attempts: Total probe attempts (>= 1).
        interval: Seconds before the second attempt.
        backoff: Multiplier applied to the interval after each attempt
            (1.0 = fixed interval).
        max_interval: Cap for a single wait.
        jitter: Fraction of each wait added at random (0 = none).
    """

    max_attempts: int = 30
    interval: float = 1.0
    backoff: float = 1.0
    max_interval: float = 30.0
    jitter: float = 0.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.interval < 0 or self.max_interval < 0:
            raise ValueError("intervals must be >= 0")

    @classmethod
    def from_health_check(cls, check: HealthCheck, jitter: float = 0.0) -> RetryPolicy:
        return cls(
            max_attempts=check.max_attempts,
            interval=check.interval,
            backoff=check.backoff,
            max_interval=check.max_interval,
            jitter=jitter,
        )

    @classmethod
    def immediate(cls, max_attempts: int = 1) -> RetryPolicy:
        """A policy that never sleeps."""
        return cls(max_attempts=max_attempts, interval=0.0, max_interval=0.0)

    def scaled(self, factor: float) -> RetryPolicy:
        """Stretch the attempt budget (``--timeout-scale``)."""
        if factor <= 0:
            raise ValueError("timeout scale must be > 0")
        return replace(self, max_attempts=max(1, math.ceil(self.max_attempts * factor)))

    def delay(self, attempt: int) -> float:
        """Wait after the given 1-based attempt."""
        base = min(self.interval * (self.backoff ** (attempt - 1)), self.max_interval)
        if self.jitter and base:
            base += random.uniform(0, base * self.jitter)
        return base

    @property
    def budget_seconds(self) -> float:
        """Upper bound of total waiting, ignoring jitter and probe time."""
        return sum(
            min(self.interval * (self.backoff ** (a - 1)), self.max_interval)
            for a in range(1, self.max_attempts)
        )
