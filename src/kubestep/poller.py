"""
Poll-until-true primitive used by every readiness wait.
"""

from __future__ import annotations

import logging
import time
from typing import Callable

from kubestep.errors import PollTimeout
from kubestep.timeouts import POLL_INTERVAL_S, WAIT_TIMEOUT_S

__all__ = ["ConditionPoller", "poll_until"]

logger = logging.getLogger(__name__)


class ConditionPoller:
    """
    Repeatedly evaluate a predicate until it is true or time runs out.

    A predicate that raises counts as "not yet"; the error is logged and
    polling continues.

    Args:
        interval_s: Delay between evaluations
        timeout_s: Total time allowed
        sleep: Blocking sleep (injectable for tests)
        clock: Monotonic clock (injectable for tests)
    """

    def __init__(
        self,
        interval_s: float = POLL_INTERVAL_S,
        timeout_s: float = WAIT_TIMEOUT_S,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        if interval_s <= 0:
            raise ValueError(f"interval_s must be > 0, got {interval_s}")
        self.interval_s = interval_s
        self.timeout_s = timeout_s
        self._sleep = sleep
        self._clock = clock

    def wait(
        self,
        predicate: Callable[[], bool],
        description: str,
        *,
        interval_s: float | None = None,
        timeout_s: float | None = None,
    ) -> float:
        """
        Block until ``predicate()`` is true.

        Returns:
            Seconds spent waiting

        Raises:
            PollTimeout: The predicate was still false at the deadline
        """
        interval = interval_s if interval_s is not None else self.interval_s
        timeout = timeout_s if timeout_s is not None else self.timeout_s
        start = self._clock()
        deadline = start + timeout

        while True:
            try:
                if predicate():
                    elapsed = self._clock() - start
                    logger.info("Condition met after %.1fs: %s", elapsed, description)
                    return elapsed
            except Exception as e:
                logger.debug("Condition check for %s raised: %s", description, e)

            now = self._clock()
            if now >= deadline:
                raise PollTimeout(description, timeout)

            logger.info("Waiting for %s...", description)
            self._sleep(min(interval, max(deadline - now, 0.0)))


def poll_until(
    predicate: Callable[[], bool],
    *,
    interval_s: float = POLL_INTERVAL_S,
    timeout_s: float = WAIT_TIMEOUT_S,
    description: str = "condition",
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> float:
    """Functional form of ``ConditionPoller.wait``."""
    poller = ConditionPoller(interval_s=interval_s, timeout_s=timeout_s, sleep=sleep, clock=clock)
    return poller.wait(predicate, description)
