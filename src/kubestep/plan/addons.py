"""
Cluster add-ons: Flannel CNI, local-path storage, Docker, kubectl
completion and the system-pod readiness gate.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import List

from kubestep.plan.context import ProvisionContext
from kubestep.plan.system import KEYRING_DIR, dearmor_key
from kubestep.runner import Step

logger = logging.getLogger(__name__)

FLANNEL_NAMESPACE = "kube-flannel"
LOCAL_PATH_NAMESPACE = "local-path-storage"
LOCAL_PATH_DEPLOYMENT = "local-path-provisioner"
LOCAL_PATH_STORAGECLASS = "local-path"

SYSTEM_NAMESPACES = ("kube-system", FLANNEL_NAMESPACE, LOCAL_PATH_NAMESPACE)

DOCKER_GPG_URL = "https://download.docker.com/linux/ubuntu/gpg"
DOCKER_KEYRING = f"{KEYRING_DIR}/docker.gpg"
DOCKER_SOURCES = "/etc/apt/sources.list.d/docker.list"
DOCKER_CONFLICTS = ("docker", "docker-engine", "docker.io", "containerd", "runc")
DOCKER_PACKAGES = (
    "docker-ce",
    "docker-ce-cli",
    "containerd.io",
    "docker-buildx-plugin",
    "docker-compose-plugin",
)
# Keep existing config files (containerd's SystemdCgroup setting) on upgrade
DPKG_KEEP_CONFIG = (
    "-o", "Dpkg::Options::=--force-confdef",
    "-o", "Dpkg::Options::=--force-confold",
)

BASH_COMPLETION_FILE = "/etc/bash_completion.d/kubectl"
BASHRC_COMPLETION_LINE = "source <(kubectl completion bash)"


def ensure_line(path: Path, line: str) -> bool:
    """Append ``line`` to a file unless already present. Returns True if appended."""
    existing = path.read_text(encoding="utf-8") if path.exists() else ""
    if line in existing.splitlines():
        return False
    with open(path, "a", encoding="utf-8") as f:
        if existing and not existing.endswith("\n"):
            f.write("\n")
        f.write(line + "\n")
    return True


def addon_steps(ctx: ProvisionContext) -> List[Step]:
    cfg = ctx.config

    def deploy_flannel() -> None:
        ctx.kubectl.apply(cfg.flannel_manifest_url)

    def wait_flannel() -> None:
        if not cfg.dry_run:
            ctx.wait_for(
                lambda: ctx.kube.pods_running(FLANNEL_NAMESPACE),
                "Flannel pods to be Running",
            )
        ctx.kubectl.wait(
            "pod", "ready", FLANNEL_NAMESPACE,
            selector="app=flannel", timeout_s=cfg.wait_timeout_s,
        )

    def local_path_storage() -> None:
        ctx.kubectl.apply(cfg.local_path_manifest_url)
        ctx.kubectl.rollout_status(LOCAL_PATH_DEPLOYMENT, LOCAL_PATH_NAMESPACE, cfg.wait_timeout_s)
        ctx.kubectl.patch_default_storageclass(LOCAL_PATH_STORAGECLASS)

    def install_docker() -> None:
        if ctx.executor.which("docker"):
            version = ctx.run("docker", "--version", check=False).stdout.strip()
            logger.info("Docker is already installed: %s", version)
            return

        logger.info("Docker not found. Installing latest Docker...")
        ctx.apt_get("update", "-y")
        ctx.apt_get("remove", "-y", *DOCKER_CONFLICTS, check=False)
        ctx.install_if_missing(["ca-certificates", "curl", "gnupg", "lsb-release"])

        dearmor_key(ctx, ctx.http.fetch(DOCKER_GPG_URL), DOCKER_KEYRING)
        arch = ctx.run("dpkg", "--print-architecture").stdout.strip()
        codename = ctx.run("lsb_release", "-cs").stdout.strip()
        ctx.write_root_file(
            DOCKER_SOURCES,
            f"deb [arch={arch} signed-by={DOCKER_KEYRING}] "
            f"https://download.docker.com/linux/ubuntu {codename} stable\n",
        )

        ctx.apt_get("update", "-y")
        ctx.apt_install(DOCKER_PACKAGES, extra_args=DPKG_KEEP_CONFIG)

        user = cfg.get_nephio_user()
        if not ctx.run_root("usermod", "-aG", "docker", user, check=False).ok:
            logger.warning("Could not add %s to the docker group", user)
        logger.info("Docker installed. Log out and back in to apply group changes.")

    def kubectl_completion() -> None:
        ctx.write_root_file(BASH_COMPLETION_FILE, ctx.kubectl.completion_bash())
        if not cfg.dry_run:
            ensure_line(Path.home() / ".bashrc", BASHRC_COMPLETION_LINE)

    def verify_system_pods() -> None:
        if not cfg.dry_run:
            ctx.wait_for(ctx.kube.nodes_ready, "the node to be Ready")
        for namespace in SYSTEM_NAMESPACES:
            ctx.kubectl.wait(
                "pod", "ready", namespace,
                all_resources=True, timeout_s=cfg.wait_timeout_s,
            )

    return [
        ctx.step("deploy-flannel", deploy_flannel, description="Apply the Flannel CNI manifest"),
        ctx.step("wait-flannel", wait_flannel, description="Wait for Flannel pods to be ready"),
        ctx.step("local-path-storage", local_path_storage,
                 description="Install local-path provisioner as the default StorageClass"),
        ctx.step("install-docker", install_docker, description="Install Docker CE if missing"),
        ctx.step("kubectl-completion", kubectl_completion, critical=False,
                 description="Enable kubectl bash completion"),
        ctx.step("verify-system-pods", verify_system_pods,
                 description="Wait for all system pods to be ready"),
    ]
