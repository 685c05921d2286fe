"""
The single-node Kubernetes + Metal3 + Nephio provisioning plan.

``build_plan`` returns the ordered steps; each action closes over the
``ProvisionContext`` it was built with.

Example:
    from kubestep.config import get_config
    from kubestep.plan import build_context, build_plan
    from kubestep.runner import StepRunner

    ctx = build_context(get_config())
    log = StepRunner().run(build_plan(ctx))
"""

from __future__ import annotations

from typing import Iterable, List, Optional, Sequence

from kubestep.plan.addons import addon_steps
from kubestep.plan.cluster import cluster_steps
from kubestep.plan.context import ProvisionContext, build_context
from kubestep.plan.metal3 import metal3_steps
from kubestep.plan.nephio import nephio_steps
from kubestep.plan.overrides import PlanOverrides, apply_overrides, load_overrides
from kubestep.plan.system import system_steps
from kubestep.runner import Step

__all__ = [
    "ProvisionContext",
    "build_context",
    "build_plan",
    "select_steps",
    "PlanOverrides",
    "apply_overrides",
    "load_overrides",
]


def build_plan(ctx: ProvisionContext) -> List[Step]:
    """All provisioning steps in execution order."""
    steps: List[Step] = []
    steps += system_steps(ctx)
    steps += cluster_steps(ctx)
    steps += addon_steps(ctx)
    steps += metal3_steps(ctx)
    steps += nephio_steps(ctx)

    names = [s.name for s in steps]
    duplicates = {n for n in names if names.count(n) > 1}
    if duplicates:
        raise ValueError(f"Duplicate step names in plan: {', '.join(sorted(duplicates))}")
    return steps


def _check_names(steps: Sequence[Step], names: Iterable[str], option: str) -> None:
    known = {s.name for s in steps}
    unknown = sorted(set(names) - known)
    if unknown:
        raise ValueError(f"Unknown step(s) for {option}: {', '.join(unknown)}")


def select_steps(
    steps: Sequence[Step],
    only: Optional[Sequence[str]] = None,
    skip: Optional[Sequence[str]] = None,
) -> List[Step]:
    """
    Filter a plan by step name, keeping plan order.

    Raises:
        ValueError: ``only`` or ``skip`` names a step not in the plan
    """
    if only:
        _check_names(steps, only, "--only")
    if skip:
        _check_names(steps, skip, "--skip")
    selected = [s for s in steps if not only or s.name in only]
    return [s for s in selected if not skip or s.name not in skip]
