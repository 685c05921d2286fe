"""
Data model for the step runner: Step, RunResult and RunLog.
"""

from __future__ import annotations

import dataclasses
import json
import os
import tempfile
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field

from kubestep.errors import CriticalStepFailure, ExhaustedRetries, NonCriticalStepFailure
from kubestep.runner.backoff import BackoffPolicy, FixedBackoff
from kubestep.timeouts import DEFAULT_MAX_ATTEMPTS

__all__ = [
    "StepStatus",
    "Step",
    "StepAction",
    "AttemptRecord",
    "RunResult",
    "RunLog",
]

# An action returns False to report failure; None/True (or any other
# value) is success. Raising any Exception is a failed attempt.
StepAction = Callable[[], Optional[bool]]


class StepStatus(str, Enum):
    """Lifecycle of a single step. Succeeded and Failed are terminal."""
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass(frozen=True)
class Step:
    """One idempotent provisioning action with a retry budget."""

    name: str
    action: StepAction = field(compare=False)
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    backoff: BackoffPolicy = field(default_factory=FixedBackoff)
    critical: bool = True
    description: str = ""

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("step name must not be empty")
        if self.max_attempts < 1:
            raise ValueError(
                f"step '{self.name}': max_attempts must be >= 1, got {self.max_attempts}"
            )
        if not callable(self.action):
            raise TypeError(f"step '{self.name}': action must be callable")

    def replace(self, **changes: Any) -> "Step":
        """Return a copy with some fields changed; the original is untouched."""
        return dataclasses.replace(self, **changes)


class AttemptRecord(BaseModel):
    """Outcome of one attempt of a step."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    attempt: int = Field(..., ge=1)
    succeeded: bool
    error: Optional[str] = None
    duration_seconds: float = 0.0


class RunResult(BaseModel):
    """Outcome of executing one step."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    step_name: str
    attempts_used: int = Field(..., ge=1)
    succeeded: bool
    critical: bool = True
    last_error: Optional[str] = None
    started_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    duration_seconds: float = 0.0
    attempts: Tuple[AttemptRecord, ...] = ()

    @property
    def status(self) -> StepStatus:
        return StepStatus.SUCCEEDED if self.succeeded else StepStatus.FAILED

    def error(self) -> Optional[ExhaustedRetries]:
        """The exhaustion error for a failed step, or None if it succeeded."""
        if self.succeeded:
            return None
        cls = CriticalStepFailure if self.critical else NonCriticalStepFailure
        return cls(self.step_name, self.attempts_used, self.last_error)


class RunLog:
    """
    Ordered, append-only record of step outcomes for one session.

    A run that stopped on a critical failure is *halted*; ``halted_at``
    names the step, and it is always the last entry.
    """

    def __init__(self, session_id: Optional[str] = None):
        self.session_id = session_id or (
            f"{datetime.now(timezone.utc):%Y%m%dT%H%M%SZ}-{uuid.uuid4().hex[:8]}"
        )
        self.started_at: datetime = datetime.now(timezone.utc)
        self.finished_at: Optional[datetime] = None
        self.halted_at: Optional[str] = None
        self._results: List[RunResult] = []

    def append(self, result: RunResult) -> None:
        if self.finished_at is not None:
            raise RuntimeError("cannot append to a finished RunLog")
        self._results.append(result)

    def halt(self, step_name: str) -> None:
        self.halted_at = step_name

    def finish(self) -> None:
        self.finished_at = datetime.now(timezone.utc)

    def __iter__(self) -> Iterator[RunResult]:
        return iter(self._results)

    def __len__(self) -> int:
        return len(self._results)

    def __getitem__(self, index: int) -> RunResult:
        return self._results[index]

    @property
    def results(self) -> tuple[RunResult, ...]:
        return tuple(self._results)

    @property
    def halted(self) -> bool:
        return self.halted_at is not None

    @property
    def failures(self) -> List[RunResult]:
        return [r for r in self._results if not r.succeeded]

    @property
    def succeeded(self) -> bool:
        """True when the run was not halted and no step failed."""
        return not self.halted and not self.failures

    def get(self, step_name: str) -> Optional[RunResult]:
        for result in self._results:
            if result.step_name == step_name:
                return result
        return None

    def raise_for_status(self) -> None:
        """Raise ``CriticalStepFailure`` if the run was halted."""
        if not self.halted:
            return
        raise self._results[-1].error()

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "session_id": self.session_id,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "succeeded": self.succeeded,
            "halted_at": self.halted_at,
            "results": [
                {**r.model_dump(mode="json"), "status": r.status.value}
                for r in self._results
            ],
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2)

    def write_json(self, path: Union[str, Path]) -> Path:
        """Write the summary atomically (temp file + rename)."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(self.to_json())
            os.replace(tmp, path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise
        return path
