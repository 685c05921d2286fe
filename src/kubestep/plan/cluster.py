"""
Control-plane bootstrap: advertise address, kubeadm init, kubeconfig and
single-node scheduling.
"""

from __future__ import annotations

import ipaddress
import logging
import os
from pathlib import Path
from typing import List, Optional

from kubestep import artifacts
from kubestep.errors import TransientFailure
from kubestep.plan.context import ProvisionContext
from kubestep.runner import Step

logger = logging.getLogger(__name__)

ADMIN_CONF = "/etc/kubernetes/admin.conf"
CONTROL_PLANE_TAINT = "node-role.kubernetes.io/control-plane"


def extract_join_command(output: str) -> Optional[str]:
    """
    Pull the worker join command out of ``kubeadm init`` output.

    kubeadm prints it over several lines joined with trailing backslashes;
    the result is a single line.
    """
    lines = output.splitlines()
    for index, line in enumerate(lines):
        if "kubeadm join" not in line:
            continue
        parts = []
        current = line
        while True:
            stripped = current.strip()
            if stripped.endswith("\\"):
                parts.append(stripped[:-1].strip())
                index += 1
                if index >= len(lines):
                    break
                current = lines[index]
            else:
                parts.append(stripped)
                break
        # Worker join, not the control-plane variant (it carries --control-plane)
        command = " ".join(p for p in parts if p)
        if "--control-plane" not in command:
            return command
    return None


def render_join_script(join_command: str) -> str:
    return f"#!/bin/sh\nset -e\n{join_command}\n"


def first_address(hostname_output: str) -> str:
    """First address printed by ``hostname -I``."""
    for token in hostname_output.split():
        try:
            ipaddress.ip_address(token)
        except ValueError:
            continue
        return token
    raise TransientFailure(f"no IP address in hostname output: {hostname_output!r}")


def cluster_steps(ctx: ProvisionContext) -> List[Step]:
    cfg = ctx.config

    def detect_internal_ip() -> None:
        if cfg.advertise_address:
            address = cfg.advertise_address
        elif cfg.dry_run:
            address = "127.0.0.1"
        else:
            address = first_address(ctx.run("hostname", "-I").stdout)
        logger.info("Detected internal IP: %s", address)
        ctx.artifacts.put_text(artifacts.INTERNAL_IP, address)

    def kubeadm_init() -> None:
        if ctx.run_root("test", "-f", ADMIN_CONF, check=False).ok and not cfg.dry_run:
            # Control plane already initialized by an earlier attempt or run
            logger.info("%s exists; regenerating the join command only", ADMIN_CONF)
            join = ctx.run_root("kubeadm", "token", "create", "--print-join-command").stdout.strip()
        else:
            address = ctx.artifacts.get_text(artifacts.INTERNAL_IP)
            result = ctx.run_root(
                "kubeadm", "init",
                f"--apiserver-advertise-address={address}",
                f"--pod-network-cidr={cfg.pod_network_cidr}",
            )
            ctx.artifacts.put_text(artifacts.KUBEADM_INIT_OUTPUT, result.stdout)
            join = extract_join_command(result.stdout)
            if cfg.dry_run and not join:
                join = "kubeadm join <dry-run>"

        if not join:
            raise TransientFailure("kubeadm output did not contain a join command")
        ctx.artifacts.put_text(artifacts.JOIN_COMMAND, render_join_script(join), mode=0o755)
        logger.info("Kubeadm join command saved as artifact %s", artifacts.JOIN_COMMAND)

    def configure_kubectl() -> None:
        admin_conf = ctx.run_root("cat", ADMIN_CONF).stdout
        ctx.artifacts.put_text(artifacts.KUBECONFIG, admin_conf, mode=0o600)
        if cfg.install_user_kubeconfig and not cfg.dry_run:
            kube_dir = Path.home() / ".kube"
            kube_dir.mkdir(parents=True, exist_ok=True)
            target = kube_dir / "config"
            fd = os.open(target, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                # An existing file keeps its old mode under O_CREAT
                os.fchmod(f.fileno(), 0o600)
                f.write(admin_conf)
            logger.info("Installed kubeconfig to %s", target)

    def untaint_control_plane() -> None:
        ctx.kubectl.remove_taint(CONTROL_PLANE_TAINT)

    return [
        ctx.step("detect-internal-ip", detect_internal_ip,
                 description="Choose the API server advertise address"),
        ctx.step("kubeadm-init", kubeadm_init,
                 description="Initialize the control plane and save the join command"),
        ctx.step("configure-kubectl", configure_kubectl,
                 description="Capture the admin kubeconfig"),
        ctx.step("untaint-control-plane", untaint_control_plane, critical=False,
                 description="Allow workloads on the single control-plane node"),
    ]
