"""
Step runner: ordered, fail-fast execution of idempotent steps with
bounded retries and backoff.

Example:
    from kubestep.runner import Step, StepRunner, FixedBackoff

    steps = [
        Step("apply-cni", action=apply_cni, max_attempts=5, backoff=FixedBackoff(5)),
        Step("completion", action=write_completion, critical=False),
    ]
    log = StepRunner().run(steps)
    log.raise_for_status()
"""

from kubestep.runner.backoff import (
    BackoffPolicy,
    ExponentialBackoff,
    FixedBackoff,
    NoBackoff,
    backoff_from_config,
)
from kubestep.runner.models import AttemptRecord, RunLog, RunResult, Step, StepAction, StepStatus
from kubestep.runner.runner import StepRunner, describe_error, run

__all__ = [
    "BackoffPolicy",
    "ExponentialBackoff",
    "FixedBackoff",
    "NoBackoff",
    "backoff_from_config",
    "AttemptRecord",
    "RunLog",
    "RunResult",
    "Step",
    "StepAction",
    "StepStatus",
    "StepRunner",
    "describe_error",
    "run",
]
