"""
Cluster access for provisioning steps.

Two collaborators with distinct jobs:

- ``KubeClient``: read-only readiness predicates through the official
  Kubernetes Python client. They answer "is resource X in state Y?" and are
  meant to be passed to the condition poller.
- ``Kubectl``: mutations (apply, patch, taint, wait) through the kubectl
  CLI, run by the step's ``CommandExecutor``.

Both resolve the kubeconfig lazily, so they can be built before
``kubeadm init`` has produced one.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, List, Optional, Sequence

from kubernetes import client, config
from kubernetes.client.rest import ApiException

from kubestep.executor import CommandExecutor, CommandResult
from kubestep.timeouts import (
    K8S_API_CONNECT_TIMEOUT_S,
    K8S_API_READ_TIMEOUT_S,
    WAIT_TIMEOUT_S,
)

logger = logging.getLogger(__name__)

__all__ = ["KubeClient", "Kubectl", "KubeconfigProvider"]

KubeconfigProvider = Callable[[], Optional[str]]

_REQUEST_TIMEOUT = (K8S_API_CONNECT_TIMEOUT_S, K8S_API_READ_TIMEOUT_S)


def _condition_true(conditions: Optional[Sequence[Any]], condition_type: str) -> bool:
    for condition in conditions or []:
        if condition.type == condition_type:
            return condition.status == "True"
    return False


class KubeClient:
    """
    Readiness predicates backed by the Kubernetes API.

    Args:
        kubeconfig: Callable returning the kubeconfig path (or None for the
            default loading rules); evaluated on first API use
        core_api: Pre-built CoreV1Api (tests)
        apps_api: Pre-built AppsV1Api (tests)
        extensions_api: Pre-built ApiextensionsV1Api (tests)
    """

    def __init__(
        self,
        kubeconfig: Optional[KubeconfigProvider] = None,
        core_api: Optional[client.CoreV1Api] = None,
        apps_api: Optional[client.AppsV1Api] = None,
        extensions_api: Optional[client.ApiextensionsV1Api] = None,
    ):
        self._kubeconfig = kubeconfig or (lambda: None)
        self._core = core_api
        self._apps = apps_api
        self._ext = extensions_api

    def _load(self) -> None:
        path = self._kubeconfig()
        if path:
            api_client = config.new_client_from_config(config_file=path)
        else:
            try:
                config.load_incluster_config()
            except config.ConfigException:
                config.load_kube_config()
            api_client = client.ApiClient()
        logger.debug("Kubernetes client initialized (kubeconfig=%s)", path or "default")
        self._core = self._core or client.CoreV1Api(api_client)
        self._apps = self._apps or client.AppsV1Api(api_client)
        self._ext = self._ext or client.ApiextensionsV1Api(api_client)

    @property
    def core(self) -> client.CoreV1Api:
        if self._core is None:
            self._load()
        return self._core

    @property
    def apps(self) -> client.AppsV1Api:
        if self._apps is None:
            self._load()
        return self._apps

    @property
    def extensions(self) -> client.ApiextensionsV1Api:
        if self._ext is None:
            self._load()
        return self._ext

    def pods_running(self, namespace: str, label_selector: Optional[str] = None) -> bool:
        """True when at least one pod in the namespace is in phase Running."""
        pods = self.core.list_namespaced_pod(
            namespace,
            label_selector=label_selector or "",
            _request_timeout=_REQUEST_TIMEOUT,
        )
        return any(p.status and p.status.phase == "Running" for p in pods.items)

    def deployment_available(self, namespace: str, name: str) -> bool:
        try:
            deployment = self.apps.read_namespaced_deployment(
                name, namespace, _request_timeout=_REQUEST_TIMEOUT
            )
        except ApiException as e:
            if e.status == 404:
                return False
            raise
        status = deployment.status
        return bool(status) and _condition_true(status.conditions, "Available")

    def crds_in_group(self, group: str) -> List[str]:
        """Names of installed CustomResourceDefinitions belonging to an API group."""
        crds = self.extensions.list_custom_resource_definition(_request_timeout=_REQUEST_TIMEOUT)
        return sorted(c.metadata.name for c in crds.items if c.spec.group == group)

    def nodes_ready(self) -> bool:
        nodes = self.core.list_node(_request_timeout=_REQUEST_TIMEOUT)
        if not nodes.items:
            return False
        return all(n.status and _condition_true(n.status.conditions, "Ready") for n in nodes.items)


class Kubectl:
    """
    kubectl invocations through a ``CommandExecutor``.

    Every mutation used by the plan is idempotent under re-application.
    """

    def __init__(
        self,
        executor: CommandExecutor,
        kubeconfig: Optional[KubeconfigProvider] = None,
        binary: str = "kubectl",
    ):
        self.executor = executor
        self._kubeconfig = kubeconfig or (lambda: None)
        self.binary = binary

    def command(self, *args: str) -> List[str]:
        cmd = [self.binary]
        path = self._kubeconfig()
        if path:
            cmd += ["--kubeconfig", path]
        return cmd + list(args)

    def run(
        self,
        *args: str,
        check: bool = True,
        timeout: Optional[float] = None,
        input: Optional[str] = None,
    ) -> CommandResult:
        return self.executor.run(self.command(*args), check=check, timeout=timeout, input=input)

    def apply(self, manifest: str) -> CommandResult:
        """Apply a manifest URL or file path."""
        return self.run("apply", "-f", manifest)

    def create_namespace(self, name: str) -> bool:
        """Create a namespace unless it exists. Returns True if it was created."""
        if self.run("get", "namespace", name, check=False).ok:
            logger.info("Namespace %s already exists", name)
            return False
        self.run("create", "namespace", name)
        return True

    def remove_taint(self, taint: str) -> bool:
        """Remove a taint from all nodes. Returns False if no node carried it."""
        result = self.run("taint", "nodes", "--all", f"{taint}-", check=False)
        if result.ok:
            return True
        if "not found" in result.stderr:
            logger.info("Taint %s not present on any node", taint)
            return False
        result_error = result.stderr.strip() or f"exit code {result.exit_code}"
        raise RuntimeError(f"failed to remove taint {taint}: {result_error}")

    def patch_default_storageclass(self, name: str) -> CommandResult:
        patch = (
            '{"metadata": {"annotations":'
            '{"storageclass.kubernetes.io/is-default-class":"true"}}}'
        )
        return self.run("patch", "storageclass", name, "-p", patch)

    def wait(
        self,
        resource: str,
        condition: str,
        namespace: str,
        *,
        selector: Optional[str] = None,
        all_resources: bool = False,
        timeout_s: int = WAIT_TIMEOUT_S,
    ) -> CommandResult:
        args = ["wait", f"--for=condition={condition}", resource]
        if selector:
            args += ["-l", selector]
        if all_resources:
            args.append("--all")
        args += ["-n", namespace, f"--timeout={timeout_s}s"]
        return self.run(*args, timeout=timeout_s + 30)

    def rollout_status(self, deployment: str, namespace: str, timeout_s: int = WAIT_TIMEOUT_S) -> CommandResult:
        return self.run(
            "rollout", "status", f"deployment/{deployment}",
            "-n", namespace, f"--timeout={timeout_s}s",
            timeout=timeout_s + 30,
        )

    def current_context(self) -> str:
        return self.run("config", "current-context").stdout.strip()

    def completion_bash(self) -> str:
        return self.run("completion", "bash").stdout
