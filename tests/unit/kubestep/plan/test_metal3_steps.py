"""Tests for the Metal3 and cert-manager steps."""

import pytest

from kubestep.errors import TransientFailure
from kubestep.plan.metal3 import metal3_steps


def _steps(ctx):
    return {s.name: s for s in metal3_steps(ctx)}


def test_crds_for_configured_version(make_context, executor):
    _steps(make_context({"metal3_version": "v0.9.0"}))["metal3-crds"].action()

    base = "https://raw.githubusercontent.com/metal3-io/baremetal-operator/v0.9.0/config/base/crds/bases"
    assert executor.commands == [
        f"kubectl apply -f {base}/metal3.io_baremetalhosts.yaml",
        f"kubectl apply -f {base}/metal3.io_firmwareschemas.yaml",
        f"kubectl apply -f {base}/metal3.io_hostfirmwaresettings.yaml",
    ]


def test_namespace_created_once(make_context, executor):
    step = _steps(make_context())["metal3-namespace"]
    executor.respond("kubectl get namespace", exit_code=1)
    step.action()
    assert executor.ran("kubectl create namespace baremetal-operator-system")


def test_cert_manager(make_context, executor):
    _steps(make_context())["cert-manager"].action()
    assert executor.commands[0].endswith("/v1.16.2/cert-manager.yaml")
    assert executor.commands[1] == "kubectl wait --for=condition=Ready pods --all -n cert-manager --timeout=5s"


def test_baremetal_operator_falls_back_to_rollout_status(make_context, executor):
    executor.respond("kubectl wait", exit_code=1, stderr="error: no matching resources found")

    _steps(make_context())["baremetal-operator"].action()

    assert executor.commands[0].endswith("/config/render/capm3.yaml")
    assert executor.ran(
        "kubectl rollout status deployment/baremetal-operator-controller-manager "
        "-n baremetal-operator-system"
    )


def test_baremetal_operator_available(make_context, executor):
    _steps(make_context())["baremetal-operator"].action()
    assert not executor.ran("rollout status")


class TestVerifyMetal3:
    def test_is_non_critical(self, make_context):
        assert _steps(make_context())["verify-metal3"].critical is False

    def test_requires_crds(self, make_context):
        ctx = make_context()
        ctx.kube.crds_in_group.return_value = []
        with pytest.raises(TransientFailure):
            _steps(ctx)["verify-metal3"].action()

    def test_reports_deployment_availability(self, make_context):
        ctx = make_context()
        ctx.kube.crds_in_group.return_value = ["baremetalhosts.metal3.io"]
        ctx.kube.deployment_available.return_value = False
        assert _steps(ctx)["verify-metal3"].action() is False

        ctx.kube.deployment_available.return_value = True
        assert _steps(ctx)["verify-metal3"].action() is True
        ctx.kube.deployment_available.assert_called_with(
            "baremetal-operator-system", "baremetal-operator-controller-manager"
        )
