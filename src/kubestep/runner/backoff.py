"""
Delay strategies between step attempts.

A policy maps the retry number (1 for the wait before the second attempt,
2 before the third, ...) to a delay in seconds.
"""

from __future__ import annotations

import math
import random
from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable

from kubestep.timeouts import (
    DEFAULT_RETRY_BACKOFF,
    DEFAULT_RETRY_DELAY_S,
    DEFAULT_RETRY_JITTER,
    DEFAULT_RETRY_MAX_DELAY_S,
)

__all__ = [
    "BackoffPolicy",
    "FixedBackoff",
    "ExponentialBackoff",
    "NoBackoff",
    "backoff_from_config",
]


@runtime_checkable
class BackoffPolicy(Protocol):
    def delay(self, retry: int) -> float: ...

    def describe(self) -> str: ...


@dataclass(frozen=True)
class FixedBackoff:
    """Wait the same amount of time before every retry."""

    delay_s: float = DEFAULT_RETRY_DELAY_S

    def __post_init__(self) -> None:
        if self.delay_s < 0:
            raise ValueError(f"delay_s must be >= 0, got {self.delay_s}")

    def delay(self, retry: int) -> float:
        return self.delay_s

    def describe(self) -> str:
        return f"fixed {self.delay_s:g}s"


@dataclass(frozen=True)
class ExponentialBackoff:
    """
    Exponential backoff with jitter.

    The base delay for retry ``n`` is ``initial_s * multiplier ** (n - 1)``
    capped at ``max_s``. Jitter then picks a value uniformly from
    ``[base * (1 - jitter), base]``, so ``jitter=0`` is deterministic and
    ``jitter=1`` is "full jitter".
    """

    initial_s: float = DEFAULT_RETRY_DELAY_S
    multiplier: float = DEFAULT_RETRY_BACKOFF
    max_s: float = DEFAULT_RETRY_MAX_DELAY_S
    jitter: float = DEFAULT_RETRY_JITTER
    rng: random.Random = field(default_factory=random.Random, compare=False, repr=False)

    def __post_init__(self) -> None:
        if self.initial_s < 0 or self.max_s < 0:
            raise ValueError("backoff delays must be >= 0")
        if self.multiplier < 1.0:
            raise ValueError(f"multiplier must be >= 1.0, got {self.multiplier}")
        if not 0.0 <= self.jitter <= 1.0:
            raise ValueError(f"jitter must be within [0, 1], got {self.jitter}")

    def base_delay(self, retry: int) -> float:
        exponent = max(retry, 1) - 1
        if self.initial_s == 0 or self.initial_s >= self.max_s:
            return min(self.initial_s, self.max_s)
        # Past the cap the power itself can overflow a float
        if self.multiplier > 1.0 and exponent >= math.log(self.max_s / self.initial_s, self.multiplier):
            return self.max_s
        return min(self.max_s, self.initial_s * (self.multiplier ** exponent))

    def delay(self, retry: int) -> float:
        base = self.base_delay(retry)
        if self.jitter == 0 or base == 0:
            return base
        return self.rng.uniform(base * (1.0 - self.jitter), base)

    def describe(self) -> str:
        return (
            f"exponential {self.initial_s:g}s x{self.multiplier:g} "
            f"(max {self.max_s:g}s, jitter {self.jitter:g})"
        )


@dataclass(frozen=True)
class NoBackoff:
    """Retry immediately."""

    def delay(self, retry: int) -> float:
        return 0.0

    def describe(self) -> str:
        return "none"


def backoff_from_config(config) -> BackoffPolicy:
    """Build the default policy described by a ``KubestepConfig``."""
    if config.backoff_strategy == "exponential":
        return ExponentialBackoff(
            initial_s=config.default_retry_delay_s,
            multiplier=config.backoff_multiplier,
            max_s=config.backoff_max_s,
            jitter=config.backoff_jitter,
        )
    return FixedBackoff(config.default_retry_delay_s)
