"""
kubestep - Retrying, fail-fast provisioning of a single-node Kubernetes
cluster with Metal3 and Nephio.

Provisioning is an ordered list of idempotent steps. Each step gets a
bounded number of attempts with a backoff between them; a critical step
that runs out of attempts halts the run, a non-critical one is recorded
and the run continues. Every attempt is logged and the outcome of the
whole session is kept in a RunLog.

Example usage:
    from kubestep import Step, StepRunner

    log = StepRunner().run([
        Step("apt-update", action=update_packages),
        Step("kubectl-completion", action=write_completion, critical=False),
    ])
    log.raise_for_status()
"""

__version__ = "0.1.0"
__all__ = [
    "Step",
    "StepRunner",
    "RunLog",
    "RunResult",
    "get_config",
    "__version__",
]


# Lazy imports to avoid loading the Kubernetes client and OTel at import time
def __getattr__(name: str):
    if name in ("Step", "StepRunner", "RunLog", "RunResult"):
        from kubestep import runner
        return getattr(runner, name)
    if name == "get_config":
        from kubestep.config import get_config
        return get_config
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
