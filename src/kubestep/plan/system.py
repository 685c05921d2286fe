"""
Host preparation: packages, swap, kernel modules, sysctl, containerd and
the Kubernetes node tools.
"""

from __future__ import annotations

import logging
from typing import List

from kubestep.plan.context import ProvisionContext
from kubestep.runner import Step

logger = logging.getLogger(__name__)

PREREQUISITE_PACKAGES = (
    "apt-transport-https",
    "ca-certificates",
    "curl",
    "gpg",
    "iptables",
    "iproute2",
    "wget",
    "lsb-release",
)

KERNEL_MODULES = ("overlay", "br_netfilter")

SYSCTL_PARAMS = {
    "net.bridge.bridge-nf-call-ip6tables": "1",
    "net.bridge.bridge-nf-call-iptables": "1",
    "net.ipv4.ip_forward": "1",
}

KUBE_TOOLS = ("kubelet", "kubeadm", "kubectl")

KEYRING_DIR = "/etc/apt/keyrings"
KUBERNETES_KEYRING = f"{KEYRING_DIR}/kubernetes-apt-keyring.gpg"
KUBERNETES_SOURCES = "/etc/apt/sources.list.d/kubernetes.list"
MODULES_LOAD_FILE = "/etc/modules-load.d/k8s.conf"
SYSCTL_FILE = "/etc/sysctl.d/k8s.conf"
CONTAINERD_CONFIG = "/etc/containerd/config.toml"
KUBELET_DROPIN = "/etc/systemd/system/kubelet.service.d/20-extra-args.conf"

KUBELET_DROPIN_CONTENT = (
    "[Service]\n"
    'Environment="KUBELET_EXTRA_ARGS=--cgroup-driver=systemd"\n'
)

# Comment out active swap entries only, so re-running never stacks '#'
_FSTAB_SWAP_SED = r"/^[^#].*\bswap\b/ s/^/#/"


def render_sysctl_conf(params: dict[str, str] = SYSCTL_PARAMS) -> str:
    return "".join(f"{key} = {value}\n" for key, value in params.items())


def enable_systemd_cgroup(containerd_config: str) -> str:
    """Switch the runc runtime to the systemd cgroup driver."""
    return containerd_config.replace("SystemdCgroup = false", "SystemdCgroup = true")


def dearmor_key(ctx: ProvisionContext, key: bytes, keyring: str) -> None:
    """Install an ASCII-armored apt signing key as a binary keyring."""
    ctx.run_root("mkdir", "-p", KEYRING_DIR)
    ctx.run_root("gpg", "--batch", "--yes", "--dearmor", "-o", keyring, input=key)


def system_steps(ctx: ProvisionContext) -> List[Step]:
    cfg = ctx.config

    def apt_update() -> None:
        ctx.apt_get("update", "-y")

    def install_prerequisites() -> None:
        ctx.install_if_missing(PREREQUISITE_PACKAGES)

    def apt_upgrade() -> None:
        ctx.apt_get("upgrade", "-y")

    def disable_swap() -> None:
        ctx.run_root("swapoff", "-a")
        ctx.run_root("sed", "-i", _FSTAB_SWAP_SED, "/etc/fstab")
        swaps = ctx.run_root("swapon", "--show").stdout.strip()
        if swaps:
            raise RuntimeError(f"swap is still active: {swaps}")

    def load_kernel_modules() -> None:
        ctx.write_root_file(MODULES_LOAD_FILE, "".join(f"{m}\n" for m in KERNEL_MODULES))
        for module in KERNEL_MODULES:
            ctx.run_root("modprobe", module)

    def sysctl_params() -> None:
        ctx.write_root_file(SYSCTL_FILE, render_sysctl_conf())
        ctx.run_root("sysctl", "--system")
        ctx.run_root("sysctl", "-w", "net.ipv4.ip_forward=1")

    def install_containerd() -> bool:
        ctx.apt_install(["containerd"])
        default_config = ctx.run("containerd", "config", "default").stdout
        ctx.write_root_file(CONTAINERD_CONFIG, enable_systemd_cgroup(default_config))
        ctx.run_root("systemctl", "restart", "containerd")
        ctx.run_root("systemctl", "enable", "containerd")
        dump = ctx.run_root("containerd", "config", "dump").stdout
        if cfg.dry_run:
            return True
        return "SystemdCgroup = true" in dump

    def kubernetes_apt_repo() -> None:
        repo = cfg.kubernetes_repo_url()
        dearmor_key(ctx, ctx.http.fetch(f"{repo}Release.key"), KUBERNETES_KEYRING)
        ctx.write_root_file(
            KUBERNETES_SOURCES,
            f"deb [signed-by={KUBERNETES_KEYRING}] {repo} /\n",
        )

    def install_kube_tools() -> None:
        ctx.apt_get("update", "-y")
        ctx.apt_install(KUBE_TOOLS)
        ctx.run_root("apt-mark", "hold", *KUBE_TOOLS)
        ctx.run_root("systemctl", "enable", "--now", "kubelet")

    def kubelet_cgroup_driver() -> None:
        ctx.write_root_file(KUBELET_DROPIN, KUBELET_DROPIN_CONTENT)
        ctx.run_root("systemctl", "daemon-reload")
        ctx.run_root("systemctl", "restart", "kubelet")

    return [
        ctx.step("apt-update", apt_update, description="Refresh package lists"),
        ctx.step("install-prerequisites", install_prerequisites,
                 description="Install base packages that are missing"),
        ctx.step("apt-upgrade", apt_upgrade, critical=False, description="Upgrade system packages"),
        ctx.step("disable-swap", disable_swap, description="Turn swap off now and at boot"),
        ctx.step("load-kernel-modules", load_kernel_modules,
                 description="Load overlay and br_netfilter"),
        ctx.step("sysctl-params", sysctl_params, description="Bridge netfilter and IP forwarding"),
        ctx.step("install-containerd", install_containerd,
                 description="Install containerd with the systemd cgroup driver"),
        ctx.step("kubernetes-apt-repo", kubernetes_apt_repo,
                 description=f"Add the pkgs.k8s.io {cfg.kubernetes_version} repository"),
        ctx.step("install-kube-tools", install_kube_tools,
                 description="Install and hold kubelet, kubeadm, kubectl"),
        ctx.step("kubelet-cgroup-driver", kubelet_cgroup_driver,
                 description="Run kubelet with the systemd cgroup driver"),
    ]
