"""
Nephio installation and the final cluster status report.

The installer runs with registry credentials taken from the secret store.
They travel to the child process through its environment only and are
registered with the executor's redactor before anything is logged.
"""

from __future__ import annotations

import logging
from typing import List

from kubestep.plan.context import ProvisionContext
from kubestep.runner import Step
from kubestep.secrets import DOCKERHUB_TOKEN, DOCKERHUB_USERNAME
from kubestep.timeouts import NEPHIO_INSTALL_TIMEOUT_S

logger = logging.getLogger(__name__)

STATUS_COMMANDS = (
    ("get", "nodes", "-o", "wide"),
    ("get", "pods", "-A"),
    ("get", "storageclass"),
)


def installer_env(ctx: ProvisionContext) -> dict[str, str]:
    """Environment for the Nephio init script. Values are secret-bearing."""
    cfg = ctx.config
    username = ctx.secrets.get(DOCKERHUB_USERNAME).get_secret_value()
    token = ctx.secrets.get(DOCKERHUB_TOKEN).get_secret_value()
    ctx.executor.redactor.add(username)
    ctx.executor.redactor.add(token)
    return {
        "NEPHIO_DEBUG": "true" if cfg.nephio_debug else "false",
        "NEPHIO_BRANCH": cfg.nephio_branch,
        "NEPHIO_USER": cfg.get_nephio_user(),
        "DOCKERHUB_USERNAME": username,
        "DOCKERHUB_TOKEN": token,
        "K8S_CONTEXT": ctx.kubectl.current_context(),
    }


def installer_command(ctx: ProvisionContext, env: dict[str, str]) -> list[str]:
    if ctx.is_root:
        return ["bash"]
    return ["sudo", f"--preserve-env={','.join(sorted(env))}", "bash"]


def nephio_steps(ctx: ProvisionContext) -> List[Step]:
    cfg = ctx.config

    def cluster_status() -> None:
        for args in STATUS_COMMANDS:
            result = ctx.kubectl.run(*args, check=False)
            logger.info("kubectl %s\n%s", " ".join(args), result.stdout.rstrip())
        docker = ctx.run("docker", "--version", check=False)
        logger.info("%s", docker.stdout.strip() or "docker not available")

    def nephio_install() -> None:
        env = installer_env(ctx)
        script = ctx.http.fetch(cfg.nephio_init_url)
        logger.info("Installing Nephio (branch %s)...", cfg.nephio_branch)
        ctx.executor.run(
            installer_command(ctx, env),
            input=script,
            env=env,
            timeout=NEPHIO_INSTALL_TIMEOUT_S,
        )
        logger.info("Nephio installation complete. Logs saved in %s", cfg.log_file)

    steps = [
        ctx.step("cluster-status", cluster_status, critical=False, max_attempts=1,
                 description="Report nodes, pods, storage classes and Docker version"),
    ]
    if cfg.install_nephio:
        # The installer is not idempotent, so it gets a single attempt
        steps.append(
            ctx.step("nephio-install", nephio_install, max_attempts=1,
                     description="Run the Nephio bootstrap installer")
        )
    return steps
