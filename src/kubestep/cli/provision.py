"""kubestep CLI - Plan listing and provisioning runs."""

import sys
from typing import List, Optional, Sequence

import click
from pydantic import ValidationError

from kubestep import artifacts
from kubestep.config import KubestepConfig, get_config
from kubestep.logger import configure_logging
from kubestep.plan import (
    ProvisionContext,
    apply_overrides,
    build_context,
    build_plan,
    load_overrides,
    select_steps,
)
from kubestep.runner import RunLog, Step, StepRunner
from kubestep.runner.otel import configure_tracing, flush_tracing

EXIT_HALTED = 1
EXIT_NONCRITICAL_FAILURES = 2

_STATUS_COLORS = {
    "succeeded": "green",
    "failed": "red",
}


def _steps_option(flag: str, help_text: str):
    return click.option(flag, multiple=True, metavar="STEP", help=help_text)


def _build_steps(
    ctx: ProvisionContext,
    only: Sequence[str],
    skip: Sequence[str],
    overrides_path: Optional[str],
) -> List[Step]:
    steps = build_plan(ctx)
    try:
        if overrides_path:
            steps = apply_overrides(steps, load_overrides(overrides_path))
        return select_steps(steps, only=list(only), skip=list(skip))
    except ValidationError as e:
        raise click.UsageError(f"Invalid overrides file {overrides_path}:\n{e}") from e
    except ValueError as e:
        raise click.UsageError(str(e)) from e


def _echo_plan(steps: Sequence[Step]) -> None:
    click.echo(click.style(f"{'#':>3}  {'STEP':26} {'ATTEMPTS':>8}  {'BACKOFF':28} CRITICAL", bold=True))
    for index, step in enumerate(steps, 1):
        critical = click.style("yes", fg="red") if step.critical else "no"
        click.echo(
            f"{index:>3}  {step.name:26} {step.max_attempts:>8}  "
            f"{step.backoff.describe():28} {critical}"
        )
        if step.description:
            click.echo(f"     {click.style(step.description, dim=True)}")


def _echo_summary(run_log: RunLog, planned: int) -> None:
    click.echo()
    click.echo(click.style("=== Provisioning Summary ===", fg="cyan"))
    click.echo(f"Session: {run_log.session_id}")
    click.echo()
    for result in run_log:
        status = result.status.value
        indicator = click.style(f"[{status.upper()}]", fg=_STATUS_COLORS.get(status, "yellow"))
        critical_badge = click.style(" [CRITICAL]", fg="red") if result.critical else ""
        click.echo(
            f"  {indicator} {result.step_name}{critical_badge} "
            f"(attempts: {result.attempts_used}, {result.duration_seconds:.1f}s)"
        )
        if result.last_error and not result.succeeded:
            click.echo(f"      {click.style(result.last_error, fg='red')}")

    not_run = planned - len(run_log)
    click.echo()
    click.echo(f"Steps run: {len(run_log)}/{planned}")
    if not_run:
        click.echo(click.style(f"Steps not run: {not_run}", fg="yellow"))


def _load_config(**overrides) -> KubestepConfig:
    try:
        return get_config(**overrides)
    except ValidationError as e:
        raise click.ClickException(f"Invalid configuration:\n{e}") from e


@click.command("plan")
@_steps_option("--only", "Run only these steps (repeatable)")
@_steps_option("--skip", "Skip these steps (repeatable)")
@click.option("--overrides", "overrides_path", type=click.Path(exists=True, dir_okay=False),
              help="YAML file with per-step retry overrides")
def plan(only, skip, overrides_path):
    """List the provisioning steps in execution order."""
    config = _load_config(dry_run=True)
    ctx = build_context(config)
    steps = _build_steps(ctx, only, skip, overrides_path)
    _echo_plan(steps)


@click.command("provision")
@click.option("--dry-run", is_flag=True, help="Log commands instead of running them")
@_steps_option("--only", "Run only these steps (repeatable)")
@_steps_option("--skip", "Skip these steps (repeatable)")
@click.option("--overrides", "overrides_path", type=click.Path(exists=True, dir_okay=False),
              help="YAML file with per-step retry overrides")
@click.option("--summary", "summary_path", type=click.Path(dir_okay=False),
              help="Also write the run summary JSON to this path")
def provision(dry_run, only, skip, overrides_path, summary_path):
    """
    Run the provisioning plan.

    Exit codes: 0 when every step succeeded, 1 when a critical step
    failed and the run halted, 2 when non-critical steps failed.
    """
    config = _load_config(dry_run=True) if dry_run else _load_config()
    configure_logging(config)
    tracing = configure_tracing(config)
    if tracing:
        click.echo(f"Telemetry export configured to {config.otlp_endpoint}")

    ctx = build_context(config)
    steps = _build_steps(ctx, only, skip, overrides_path)
    if config.dry_run:
        click.echo(click.style("Dry run: commands are logged, not executed", fg="yellow"))

    runner = StepRunner(service_name=config.service_name)
    run_log = runner.run(steps)
    try:
        _echo_summary(run_log, len(steps))

        ctx.artifacts.put_text(artifacts.RUN_SUMMARY, run_log.to_json())
        if summary_path:
            run_log.write_json(summary_path)
            click.echo(f"Summary written to {summary_path}")
    finally:
        if tracing:
            flush_tracing()

    if run_log.halted:
        click.echo(
            click.style(f"Provisioning halted at critical step '{run_log.halted_at}'", fg="red"),
            err=True,
        )
        sys.exit(EXIT_HALTED)
    if run_log.failures:
        names = ", ".join(r.step_name for r in run_log.failures)
        click.echo(click.style(f"Completed with non-critical failures: {names}", fg="yellow"))
        sys.exit(EXIT_NONCRITICAL_FAILURES)
    click.echo(click.style("Provisioning complete!", fg="green"))
