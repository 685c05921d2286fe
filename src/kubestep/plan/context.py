"""
Explicit dependencies handed to every step action.

Actions are closures over a ``ProvisionContext`` rather than reading the
ambient shell environment; everything they touch (host commands, cluster,
network, artifacts, credentials) comes through here.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Any, List, Optional, Sequence

from kubestep import artifacts as artifact_names
from kubestep.artifacts import ArtifactStore, MemoryArtifactStore, get_artifact_store
from kubestep.config import KubestepConfig
from kubestep.executor import CommandExecutor, CommandResult, DryRunExecutor, SubprocessExecutor
from kubestep.httpclient import HttpClient, HttpFetcher
from kubestep.kube import KubeClient, Kubectl
from kubestep.poller import ConditionPoller
from kubestep.runner import Step, StepAction, backoff_from_config
from kubestep.runner.backoff import BackoffPolicy
from kubestep.secrets import SecretStore, build_secret_store
from kubestep.timeouts import SUBPROCESS_PROBE_TIMEOUT_S

logger = logging.getLogger(__name__)

__all__ = ["ProvisionContext", "build_context"]


@dataclass
class ProvisionContext:
    """Everything a provisioning action may use."""

    config: KubestepConfig
    executor: CommandExecutor
    artifacts: ArtifactStore
    secrets: SecretStore
    http: HttpClient
    poller: ConditionPoller
    kubectl: Kubectl = field(init=False)
    kube: KubeClient = field(init=False)
    is_root: bool = field(default_factory=lambda: os.geteuid() == 0)

    def __post_init__(self) -> None:
        self.kubectl = Kubectl(self.executor, kubeconfig=self.kubeconfig_path)
        self.kube = KubeClient(kubeconfig=self.kubeconfig_path)

    # ------------------------------------------------------------------
    # Step construction
    # ------------------------------------------------------------------

    def default_backoff(self) -> BackoffPolicy:
        return backoff_from_config(self.config)

    def step(
        self,
        name: str,
        action: StepAction,
        *,
        critical: bool = True,
        max_attempts: Optional[int] = None,
        backoff: Optional[BackoffPolicy] = None,
        description: str = "",
    ) -> Step:
        """Build a Step with the configured retry defaults."""
        return Step(
            name=name,
            action=action,
            max_attempts=max_attempts or self.config.default_max_attempts,
            backoff=backoff or self.default_backoff(),
            critical=critical,
            description=description,
        )

    # ------------------------------------------------------------------
    # Host helpers
    # ------------------------------------------------------------------

    def sudo(self, *args: str) -> List[str]:
        """Prefix a command with sudo unless already running as root."""
        return list(args) if self.is_root else ["sudo", *args]

    def run(self, *args: str, **kwargs: Any) -> CommandResult:
        return self.executor.run(list(args), **kwargs)

    def run_root(self, *args: str, **kwargs: Any) -> CommandResult:
        return self.executor.run(self.sudo(*args), **kwargs)

    def write_root_file(self, path: str, content: str | bytes, mode: str = "644") -> None:
        """Write a root-owned file (the equivalent of ``sudo tee``)."""
        self.run_root("mkdir", "-p", os.path.dirname(path))
        self.run_root("tee", path, input=content)
        self.run_root("chmod", mode, path)

    def package_installed(self, package: str) -> bool:
        result = self.run("dpkg", "-s", package, check=False, timeout=SUBPROCESS_PROBE_TIMEOUT_S)
        return result.ok

    def install_if_missing(self, packages: Sequence[str]) -> List[str]:
        """Install the packages dpkg does not know about. Returns those installed."""
        missing = [p for p in packages if not self.package_installed(p)]
        for package in packages:
            if package in missing:
                logger.info("Package %s not found. Installing...", package)
            else:
                logger.info("Package %s is already installed.", package)
        if missing:
            self.apt_install(missing)
        return missing

    def apt_get(self, *args: str, **kwargs: Any) -> CommandResult:
        """Run apt-get as root without interactive prompts (sudo drops the caller env)."""
        return self.run_root("env", "DEBIAN_FRONTEND=noninteractive", "apt-get", *args, **kwargs)

    def apt_install(self, packages: Sequence[str], extra_args: Sequence[str] = ()) -> CommandResult:
        return self.apt_get("install", "-y", *extra_args, *packages)

    # ------------------------------------------------------------------
    # Cluster helpers
    # ------------------------------------------------------------------

    def kubeconfig_path(self) -> Optional[str]:
        """Kubeconfig for kubectl and the API client.

        An explicit ``config.kubeconfig`` wins; otherwise the admin
        kubeconfig captured by the configure-kubectl step, once it exists.
        """
        if self.config.kubeconfig:
            return self.config.kubeconfig
        path = self.artifacts.path_for(artifact_names.KUBECONFIG)
        return str(path) if path else None

    def wait_for(self, predicate, description: str, timeout_s: Optional[float] = None) -> float:
        return self.poller.wait(predicate, description, timeout_s=timeout_s)


def build_context(
    config: KubestepConfig,
    *,
    executor: Optional[CommandExecutor] = None,
    artifacts: Optional[ArtifactStore] = None,
    secrets: Optional[SecretStore] = None,
    http: Optional[HttpClient] = None,
    poller: Optional[ConditionPoller] = None,
) -> ProvisionContext:
    """
    Assemble a context from configuration.

    Dry runs get a ``DryRunExecutor`` and an in-memory artifact store so
    nothing on the host changes.
    """
    if executor is None:
        if config.dry_run:
            executor = DryRunExecutor()
        else:
            executor = SubprocessExecutor(default_timeout=config.command_timeout_s)
    if artifacts is None:
        artifacts = MemoryArtifactStore() if config.dry_run else get_artifact_store(config)

    return ProvisionContext(
        config=config,
        executor=executor,
        artifacts=artifacts,
        secrets=secrets or build_secret_store(config),
        http=http or HttpFetcher(),
        poller=poller or ConditionPoller(
            interval_s=config.poll_interval_s,
            timeout_s=config.wait_timeout_s,
        ),
    )
