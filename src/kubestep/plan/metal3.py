"""
Metal3 Baremetal Operator and its cert-manager dependency (needed by
Nephio's CAPM3 provider).
"""

from __future__ import annotations

import logging
from typing import List

from kubestep.errors import CommandFailed, TransientFailure
from kubestep.plan.context import ProvisionContext
from kubestep.runner import Step

logger = logging.getLogger(__name__)

METAL3_GROUP = "metal3.io"
METAL3_CRDS = ("baremetalhosts", "firmwareschemas", "hostfirmwaresettings")
BMO_NAMESPACE = "baremetal-operator-system"
BMO_DEPLOYMENT = "baremetal-operator-controller-manager"
CERT_MANAGER_NAMESPACE = "cert-manager"


def metal3_steps(ctx: ProvisionContext) -> List[Step]:
    cfg = ctx.config
    base = cfg.metal3_base_url()

    def metal3_crds() -> None:
        for crd in METAL3_CRDS:
            ctx.kubectl.apply(f"{base}/base/crds/bases/{METAL3_GROUP}_{crd}.yaml")

    def metal3_namespace() -> None:
        ctx.kubectl.create_namespace(BMO_NAMESPACE)

    def cert_manager() -> None:
        ctx.kubectl.apply(cfg.cert_manager_manifest_url())
        ctx.kubectl.wait(
            "pods", "Ready", CERT_MANAGER_NAMESPACE,
            all_resources=True, timeout_s=cfg.wait_timeout_s,
        )

    def baremetal_operator() -> None:
        ctx.kubectl.apply(f"{base}/render/capm3.yaml")
        try:
            ctx.kubectl.wait(
                f"deployment/{BMO_DEPLOYMENT}", "available", BMO_NAMESPACE,
                timeout_s=cfg.wait_timeout_s,
            )
        except CommandFailed as e:
            logger.info("Deployment wait failed (%s); falling back to rollout status", e)
            ctx.kubectl.rollout_status(BMO_DEPLOYMENT, BMO_NAMESPACE, cfg.wait_timeout_s)

    def verify_metal3() -> bool:
        if cfg.dry_run:
            return True
        crds = ctx.kube.crds_in_group(METAL3_GROUP)
        if not crds:
            raise TransientFailure(f"no {METAL3_GROUP} CRDs installed")
        logger.info("CRDs installed: %s", ", ".join(crds))
        return ctx.kube.deployment_available(BMO_NAMESPACE, BMO_DEPLOYMENT)

    return [
        ctx.step("metal3-crds", metal3_crds, description=f"Apply Metal3 {cfg.metal3_version} CRDs"),
        ctx.step("metal3-namespace", metal3_namespace, description=f"Ensure namespace {BMO_NAMESPACE}"),
        ctx.step("cert-manager", cert_manager,
                 description=f"Install cert-manager {cfg.cert_manager_version}"),
        ctx.step("baremetal-operator", baremetal_operator,
                 description="Install the pre-rendered Baremetal Operator"),
        ctx.step("verify-metal3", verify_metal3, critical=False,
                 description="Check Metal3 CRDs and operator availability"),
    ]
