"""
Sequential step runner with bounded retries.

Executes an ordered list of steps. Each step is attempted up to its
``max_attempts``; between attempts the runner blocks for the delay chosen
by the step's backoff policy. A critical step that exhausts its attempts
halts the run; a non-critical one is recorded as failed and the run
carries on.

Usage::

    from kubestep.runner import Step, StepRunner

    log = StepRunner().run([
        Step("apt-update", action=update_packages),
        Step("apt-upgrade", action=upgrade_packages, critical=False),
    ])
    for result in log:
        print(result.step_name, result.succeeded, result.attempts_used)
"""

from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from typing import Callable, List, Optional, Sequence

from kubestep.errors import ProvisioningError
from kubestep.logger import RunLogger
from kubestep.runner import otel
from kubestep.runner.models import AttemptRecord, RunLog, RunResult, Step

logger = logging.getLogger(__name__)


def describe_error(exc: BaseException) -> str:
    """Render an action failure for the run log."""
    if isinstance(exc, ProvisioningError):
        return str(exc) or type(exc).__name__
    text = str(exc)
    return f"{type(exc).__name__}: {text}" if text else type(exc).__name__


class StepRunner:
    """
    Execute steps in order with uniform retry and reporting.

    Args:
        run_logger: Structured event logger (one is created per run if omitted)
        sleep: Blocking sleep used between attempts
        clock: Monotonic clock used to time steps
        service_name: Service name attached to log entries
    """

    def __init__(
        self,
        run_logger: Optional[RunLogger] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
        service_name: str = "kubestep",
    ):
        self._run_logger = run_logger
        self._sleep = sleep
        self._clock = clock
        self._service_name = service_name

    def run(self, steps: Sequence[Step], session_id: Optional[str] = None) -> RunLog:
        """
        Run every step in declared order.

        Returns:
            RunLog with one RunResult per executed step; truncated at the
            first critical failure.
        """
        run_log = RunLog(session_id=session_id)
        events = self._run_logger or RunLogger(
            session_id=run_log.session_id, service_name=self._service_name
        )

        events.log_run_started(step_count=len(steps))
        with otel.run_span(run_log.session_id, len(steps)):
            for step in steps:
                result = self.run_step(step, events)
                run_log.append(result)

                if result.succeeded:
                    continue

                events.log_step_failed(
                    step=step.name,
                    attempts_used=result.attempts_used,
                    critical=step.critical,
                    error=result.last_error,
                )
                if step.critical:
                    run_log.halt(step.name)
                    events.log_run_halted(step=step.name, error=result.last_error)
                    break

            run_log.finish()
            otel.emit_run_result(run_log)

        if not run_log.halted:
            events.log_run_completed(
                succeeded=len(run_log) - len(run_log.failures),
                failed=len(run_log.failures),
            )
        return run_log

    def run_step(self, step: Step, events: Optional[RunLogger] = None) -> RunResult:
        """Attempt one step until it succeeds or its budget is spent."""
        events = events or self._run_logger or RunLogger(
            session_id="adhoc", service_name=self._service_name
        )
        started_at = datetime.now(timezone.utc)
        start = self._clock()
        last_error: Optional[str] = None
        attempts: List[AttemptRecord] = []

        with otel.step_span(step):
            for attempt in range(1, step.max_attempts + 1):
                events.log_step_started(step.name, attempt, step.max_attempts)
                attempt_start = self._clock()
                try:
                    outcome = step.action()
                except Exception as e:
                    last_error = describe_error(e)
                    logger.debug("Step %s attempt %d raised", step.name, attempt, exc_info=True)
                else:
                    if outcome is not False:
                        attempts.append(AttemptRecord(
                            attempt=attempt,
                            succeeded=True,
                            duration_seconds=self._clock() - attempt_start,
                        ))
                        duration = self._clock() - start
                        events.log_step_succeeded(step.name, attempt, duration)
                        result = RunResult(
                            step_name=step.name,
                            attempts_used=attempt,
                            succeeded=True,
                            critical=step.critical,
                            started_at=started_at,
                            finished_at=datetime.now(timezone.utc),
                            duration_seconds=duration,
                            attempts=tuple(attempts),
                        )
                        otel.emit_step_result(result)
                        return result
                    last_error = "action reported failure"

                attempts.append(AttemptRecord(
                    attempt=attempt,
                    succeeded=False,
                    error=last_error,
                    duration_seconds=self._clock() - attempt_start,
                ))
                events.log_attempt_failed(step.name, attempt, step.max_attempts, last_error)
                otel.emit_attempt_failed(step, attempt, last_error)

                if attempt < step.max_attempts:
                    delay = step.backoff.delay(attempt)
                    events.log_retrying(step.name, attempt + 1, delay)
                    if delay > 0:
                        self._sleep(delay)

            result = RunResult(
                step_name=step.name,
                attempts_used=step.max_attempts,
                succeeded=False,
                critical=step.critical,
                last_error=last_error,
                started_at=started_at,
                finished_at=datetime.now(timezone.utc),
                duration_seconds=self._clock() - start,
                attempts=tuple(attempts),
            )
            otel.emit_step_result(result)
            return result


def run(steps: Sequence[Step], **kwargs) -> RunLog:
    """Run steps with a default ``StepRunner``."""
    return StepRunner(**kwargs).run(steps)
