"""
OTel spans and span events for provisioning runs.

One ``provision.run`` span wraps the session and each step gets a child
``provision.step`` span. Without a configured exporter the global tracer
provider is a no-op, so these helpers are always safe to call.

Usage::

    from kubestep.runner.otel import configure_tracing, step_span

    configure_tracing(config)
    with step_span(step):
        ...
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import TYPE_CHECKING, Iterator

from opentelemetry import trace as otel_trace
from opentelemetry.trace import Span, Status, StatusCode

from kubestep.timeouts import OTEL_FLUSH_TIMEOUT_MS

if TYPE_CHECKING:
    from kubestep.config import KubestepConfig
    from kubestep.runner.models import RunLog, RunResult, Step

logger = logging.getLogger(__name__)

_tracer = otel_trace.get_tracer("kubestep.runner")


def configure_tracing(config: "KubestepConfig") -> bool:
    """
    Install an OTLP span exporter when ``config.otlp_endpoint`` is set.

    Returns:
        True if a provider was installed, False otherwise
    """
    if not config.otlp_endpoint:
        return False

    from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
    from opentelemetry.sdk.resources import Resource
    from opentelemetry.sdk.trace import TracerProvider
    from opentelemetry.sdk.trace.export import BatchSpanProcessor

    resource = Resource.create({"service.name": config.service_name})
    provider = TracerProvider(resource=resource)
    provider.add_span_processor(
        BatchSpanProcessor(OTLPSpanExporter(endpoint=config.otlp_endpoint, insecure=True))
    )
    otel_trace.set_tracer_provider(provider)
    logger.debug("Tracing enabled, exporting to %s", config.otlp_endpoint)
    return True


def flush_tracing() -> None:
    """Flush the tracer provider, if it supports flushing."""
    provider = otel_trace.get_tracer_provider()
    if hasattr(provider, "force_flush"):
        provider.force_flush(timeout_millis=OTEL_FLUSH_TIMEOUT_MS)


def _add_span_event(name: str, attributes: dict[str, str | int | float | bool]) -> None:
    """Add an event to the current OTel span if it is recording."""
    span = otel_trace.get_current_span()
    if span and span.is_recording():
        span.add_event(name=name, attributes=attributes)


@contextmanager
def run_span(session_id: str, step_count: int) -> Iterator[Span]:
    with _tracer.start_as_current_span(
        "provision.run",
        attributes={"provision.session_id": session_id, "provision.step_count": step_count},
    ) as span:
        yield span


@contextmanager
def step_span(step: "Step") -> Iterator[Span]:
    with _tracer.start_as_current_span(
        "provision.step",
        attributes={
            "provision.step.name": step.name,
            "provision.step.max_attempts": step.max_attempts,
            "provision.step.critical": step.critical,
        },
    ) as span:
        yield span


def emit_attempt_failed(step: "Step", attempt: int, error: str) -> None:
    """Event name: ``provision.step.attempt_failed``"""
    _add_span_event(
        "provision.step.attempt_failed",
        {
            "provision.step.name": step.name,
            "provision.step.attempt": attempt,
            "provision.step.error": error,
        },
    )


def emit_step_result(result: "RunResult") -> None:
    """Record the outcome on the current step span.

    Event name: ``provision.step.result``
    """
    attrs: dict[str, str | int | float | bool] = {
        "provision.step.name": result.step_name,
        "provision.step.attempts_used": result.attempts_used,
        "provision.step.succeeded": result.succeeded,
        "provision.step.critical": result.critical,
    }
    if result.last_error:
        attrs["provision.step.error"] = result.last_error

    span = otel_trace.get_current_span()
    if span and span.is_recording():
        span.set_attribute("provision.step.attempts_used", result.attempts_used)
        span.set_attribute("provision.step.succeeded", result.succeeded)
        if not result.succeeded:
            span.set_status(Status(StatusCode.ERROR, result.last_error or "failed"))

    _add_span_event("provision.step.result", attrs)


def emit_run_result(run_log: "RunLog") -> None:
    """Event name: ``provision.run.result``"""
    attrs: dict[str, str | int | float | bool] = {
        "provision.run.steps": len(run_log),
        "provision.run.failed": len(run_log.failures),
        "provision.run.succeeded": run_log.succeeded,
    }
    if run_log.halted_at:
        attrs["provision.run.halted_at"] = run_log.halted_at
    _add_span_event("provision.run.result", attrs)
