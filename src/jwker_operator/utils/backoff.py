"""
Retry delay policies for failed reconciles.

A failed reconcile is handed back to kopf as a temporary error carrying the
delay computed here. The attempt number is kopf's retry counter for the
handler, so the delay grows across consecutive failures of the same
resource and resets once a reconcile succeeds.
"""

import random
from typing import Protocol

from ..constants import DEFAULT_BACKOFF_FACTOR
from ..errors import ConfigurationError


class BackoffPolicy(Protocol):
    """Maps a retry attempt (0 for the first failure) to a delay in seconds."""

    def next_delay(self, attempt: int) -> float: ...


class FixedBackoff:
    """Always waits the same interval."""

    def __init__(self, interval: float):
        self.interval = interval

    def next_delay(self, attempt: int) -> float:
        return self.interval


class ExponentialBackoff:
    """Multiplies the delay per attempt up to a ceiling, with optional jitter."""

    def __init__(
        self,
        base: float,
        factor: float = DEFAULT_BACKOFF_FACTOR,
        maximum: float = 300.0,
        jitter: float = 0.0,
    ):
        self.base = base
        self.factor = factor
        self.maximum = maximum
        self.jitter = jitter

    def next_delay(self, attempt: int) -> float:
        delay = min(self.base * (self.factor ** max(attempt, 0)), self.maximum)
        if self.jitter:
            # Spread retries of resources that failed together
            delay += random.uniform(0, self.jitter * delay)
        return min(delay, self.maximum)


def backoff_from_settings(kind: str, interval: float, maximum: float) -> BackoffPolicy:
    """
    Build the configured policy.

    Args:
        kind: 'fixed' or 'exponential'
        interval: Base delay in seconds
        maximum: Ceiling for exponential delays

    Raises:
        ConfigurationError: For an unknown policy name
    """
    kind = kind.strip().lower()
    if kind == "fixed":
        return FixedBackoff(interval)
    if kind == "exponential":
        return ExponentialBackoff(interval, maximum=maximum, jitter=0.1)
    raise ConfigurationError(
        f"Unknown reconcile backoff policy '{kind}'",
        user_action="Set RECONCILE_BACKOFF to 'fixed' or 'exponential'",
    )
