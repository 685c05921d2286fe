"""
Per-step retry overrides loaded from YAML.

Example file::

    skip:
      - apt-upgrade
    steps:
      kubeadm-init:
        max_attempts: 3
      nephio-install:
        critical: false
      wait-flannel:
        backoff_s: 15
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field

from kubestep.runner import FixedBackoff, Step

logger = logging.getLogger(__name__)

__all__ = ["StepOverride", "PlanOverrides", "load_overrides", "apply_overrides"]


class StepOverride(BaseModel):
    model_config = ConfigDict(extra="forbid")

    max_attempts: Optional[int] = Field(default=None, ge=1)
    critical: Optional[bool] = None
    backoff_s: Optional[float] = Field(default=None, ge=0)


class PlanOverrides(BaseModel):
    model_config = ConfigDict(extra="forbid")

    steps: Dict[str, StepOverride] = Field(default_factory=dict)
    skip: List[str] = Field(default_factory=list)


def load_overrides(path: Union[str, Path]) -> PlanOverrides:
    """Read and validate an overrides file. An empty file means no overrides."""
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    return PlanOverrides.model_validate(data)


def apply_overrides(steps: Sequence[Step], overrides: PlanOverrides) -> List[Step]:
    """
    Return the plan with overrides applied and skipped steps removed.

    Raises:
        ValueError: An override or skip names a step not in the plan
    """
    known = {step.name for step in steps}
    unknown = sorted((set(overrides.steps) | set(overrides.skip)) - known)
    if unknown:
        raise ValueError(f"Unknown step(s) in overrides: {', '.join(unknown)}")

    result = []
    for step in steps:
        if step.name in overrides.skip:
            logger.info("Skipping step %s (overrides)", step.name)
            continue
        override = overrides.steps.get(step.name)
        if override is None:
            result.append(step)
            continue
        changes = {}
        if override.max_attempts is not None:
            changes["max_attempts"] = override.max_attempts
        if override.critical is not None:
            changes["critical"] = override.critical
        if override.backoff_s is not None:
            changes["backoff"] = FixedBackoff(override.backoff_s)
        result.append(step.replace(**changes))
    return result
