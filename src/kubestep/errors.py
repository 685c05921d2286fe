"""
Error taxonomy for provisioning runs.

Every failure an action can report maps onto one of these:

- ``TransientFailure``: retryable, consumes one attempt
- ``ExhaustedRetries``: terminal for a single step
- ``CriticalStepFailure``: halts the entire run
- ``NonCriticalStepFailure``: recorded, the run continues
"""

from __future__ import annotations

from typing import Optional

__all__ = [
    "ProvisioningError",
    "TransientFailure",
    "CommandFailed",
    "PollTimeout",
    "ExhaustedRetries",
    "CriticalStepFailure",
    "NonCriticalStepFailure",
    "SecretNotFound",
    "ArtifactNotFound",
]


class ProvisioningError(Exception):
    """Base class for all kubestep errors."""


class TransientFailure(ProvisioningError):
    """A single attempt failed; the step may be retried."""


class CommandFailed(TransientFailure):
    """An external command exited with a non-zero status."""

    def __init__(self, command: str, exit_code: int, stderr: str = ""):
        self.command = command
        self.exit_code = exit_code
        self.stderr = stderr
        detail = stderr.strip().splitlines()[-1] if stderr.strip() else ""
        message = f"command failed with exit code {exit_code}: {command}"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)


class PollTimeout(TransientFailure):
    """A polled condition did not become true before the timeout."""

    def __init__(self, description: str, timeout_s: float):
        self.description = description
        self.timeout_s = timeout_s
        super().__init__(f"timed out after {timeout_s:g}s waiting for {description}")


class ExhaustedRetries(ProvisioningError):
    """A step used its whole attempt budget without succeeding."""

    def __init__(
        self,
        step_name: str,
        attempts_used: int,
        last_error: Optional[str] = None,
    ):
        self.step_name = step_name
        self.attempts_used = attempts_used
        self.last_error = last_error
        message = f"step '{step_name}' failed after {attempts_used} attempt(s)"
        if last_error:
            message = f"{message}: {last_error}"
        super().__init__(message)


class CriticalStepFailure(ExhaustedRetries):
    """A critical step was exhausted; no further steps run."""


class NonCriticalStepFailure(ExhaustedRetries):
    """A non-critical step was exhausted; the run carried on."""


class SecretNotFound(ProvisioningError):
    """A required credential is not available from any secret store."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"secret '{name}' not found")


class ArtifactNotFound(ProvisioningError, KeyError):
    """An artifact was requested before any step produced it."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"artifact '{name}' has not been produced")

    def __str__(self) -> str:
        return self.args[0]
