"""
Structured logging for provisioning runs.

Outputs JSON-formatted logs (one object per line) to stdout and to the
session transcript file, so the whole provisioning session can be
reviewed or shipped to a log store afterwards.

Logged events:
- run.started
- step.started
- step.attempt_failed
- step.retrying
- step.succeeded
- step.failed
- run.halted
- run.completed

Usage:
    from kubestep.logger import RunLogger, configure_logging

    configure_logging(config)
    logger = RunLogger(session_id="20251001T120000Z")
    logger.log_step_started(step="kubeadm-init", attempt=1, max_attempts=5)
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, Optional

if TYPE_CHECKING:
    from kubestep.config import KubestepConfig

# Root of every kubestep logger; configure_logging attaches handlers here
ROOT_LOGGER_NAME = "kubestep"

_run_logger = logging.getLogger("kubestep.run")

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


class JsonLineFormatter(logging.Formatter):
    """Render records as single-line JSON.

    Records emitted by ``RunLogger`` carry a prepared ``entry`` dict which is
    written as-is; plain module log records are wrapped in a minimal entry.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry = getattr(record, "entry", None)
        if entry is None:
            entry = {
                "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
                "level": record.levelname.lower(),
                "logger": record.name,
                "message": record.getMessage(),
            }
            if record.exc_info:
                entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class TextFormatter(logging.Formatter):
    """Human-readable console format."""

    def __init__(self) -> None:
        super().__init__("%(asctime)s %(levelname)-7s %(name)s: %(message)s")


def configure_logging(config: "KubestepConfig") -> logging.Logger:
    """
    Attach stdout and session-transcript handlers to the kubestep logger.

    Calling it again replaces the handlers, so tests and repeated CLI
    invocations do not duplicate output.

    Args:
        config: Effective configuration (log_level, log_format, log_file)

    Returns:
        The configured root kubestep logger
    """
    root = logging.getLogger(ROOT_LOGGER_NAME)
    # The transcript keeps command output whatever the console level is
    root.setLevel(logging.DEBUG)
    root.propagate = False

    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()

    formatter: logging.Formatter
    if config.log_format == "json":
        formatter = JsonLineFormatter()
    else:
        formatter = TextFormatter()

    console = logging.StreamHandler(sys.stdout)
    console.setLevel(_LEVELS[config.log_level])
    console.setFormatter(formatter)
    root.addHandler(console)

    log_path = Path(config.log_file)
    log_path.parent.mkdir(parents=True, exist_ok=True)
    transcript = logging.FileHandler(log_path, mode="a", encoding="utf-8")
    transcript.setLevel(logging.DEBUG)
    transcript.setFormatter(formatter)
    root.addHandler(transcript)

    return root


class RunLogger:
    """
    Structured logger for step runner events.

    Each log entry includes standard fields for filtering:
    - service, session_id
    - event type and the step it concerns
    - event-specific attributes (attempt, error, delay)
    """

    def __init__(
        self,
        session_id: str,
        service_name: str = "kubestep",
        extra_labels: Optional[Dict[str, str]] = None,
    ):
        """
        Initialize run logger.

        Args:
            session_id: Identifier of the provisioning session
            service_name: Service name for log attribution
            extra_labels: Additional labels attached to every entry
        """
        self.session_id = session_id
        self.service_name = service_name
        self.extra_labels = extra_labels or {}
        self._logger = _run_logger

    def _emit(
        self,
        event: str,
        step: Optional[str] = None,
        level: str = "info",
        **extra_fields: Any,
    ) -> None:
        entry: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": level,
            "event": event,
            "service": self.service_name,
            "session_id": self.session_id,
        }
        if step:
            entry["step"] = step

        entry.update({k: v for k, v in extra_fields.items() if v is not None})

        if self.extra_labels:
            entry["labels"] = self.extra_labels

        details = " ".join(
            f"{k}={v}" for k, v in extra_fields.items() if v is not None
        )
        message = f"{event} {step or ''} {details}".strip()
        message = " ".join(message.split())

        if level == "error":
            self._logger.error(message, extra={"entry": entry})
        elif level == "warn":
            self._logger.warning(message, extra={"entry": entry})
        else:
            self._logger.info(message, extra={"entry": entry})

    def log_run_started(self, step_count: int) -> None:
        """Log the start of a provisioning run."""
        self._emit("run.started", step_count=step_count)

    def log_step_started(self, step: str, attempt: int, max_attempts: int) -> None:
        """Log the start of one attempt of a step."""
        self._emit("step.started", step=step, attempt=attempt, max_attempts=max_attempts)

    def log_attempt_failed(
        self,
        step: str,
        attempt: int,
        max_attempts: int,
        error: str,
    ) -> None:
        """Log a failed attempt (retryable or final)."""
        self._emit(
            "step.attempt_failed",
            step=step,
            level="warn",
            attempt=attempt,
            max_attempts=max_attempts,
            error=error,
        )

    def log_retrying(self, step: str, next_attempt: int, delay_s: float) -> None:
        """Log the wait before the next attempt."""
        self._emit("step.retrying", step=step, next_attempt=next_attempt, delay_s=round(delay_s, 3))

    def log_step_succeeded(self, step: str, attempts_used: int, duration_seconds: float) -> None:
        """Log step success."""
        self._emit(
            "step.succeeded",
            step=step,
            attempts_used=attempts_used,
            duration_seconds=round(duration_seconds, 3),
        )

    def log_step_failed(
        self,
        step: str,
        attempts_used: int,
        critical: bool,
        error: Optional[str],
    ) -> None:
        """Log a step that exhausted its attempts."""
        self._emit(
            "step.failed",
            step=step,
            level="error" if critical else "warn",
            attempts_used=attempts_used,
            critical=critical,
            error=error,
        )

    def log_run_halted(self, step: str, error: Optional[str]) -> None:
        """Log a run stopped by a critical step failure."""
        self._emit("run.halted", step=step, level="error", error=error)

    def log_run_completed(self, succeeded: int, failed: int) -> None:
        """Log a run that processed every step."""
        self._emit(
            "run.completed",
            level="warn" if failed else "info",
            succeeded=succeeded,
            failed=failed,
        )
