"""Tests for control-plane bootstrap steps."""

import os

import pytest

from kubestep import artifacts
from kubestep.errors import TransientFailure
from kubestep.plan.cluster import (
    cluster_steps,
    extract_join_command,
    first_address,
    render_join_script,
)

KUBEADM_OUTPUT = """\
Your Kubernetes control-plane has initialized successfully!

To start using your cluster, you need to run the following as a regular user:

  mkdir -p $HOME/.kube

Then you can join any number of worker nodes by running the following on each as root:

kubeadm join 10.0.0.5:6443 --token abcdef.0123456789abcdef \\
\t--discovery-token-ca-cert-hash sha256:1234
"""


def _steps(ctx):
    return {s.name: s for s in cluster_steps(ctx)}


class TestExtractJoinCommand:
    def test_joins_continuation_lines(self):
        assert extract_join_command(KUBEADM_OUTPUT) == (
            "kubeadm join 10.0.0.5:6443 --token abcdef.0123456789abcdef "
            "--discovery-token-ca-cert-hash sha256:1234"
        )

    def test_skips_control_plane_variant(self):
        output = (
            "kubeadm join 10.0.0.5:6443 --token t \\\n"
            "  --discovery-token-ca-cert-hash sha256:1 \\\n"
            "  --control-plane\n"
            "\n"
            "kubeadm join 10.0.0.5:6443 --token t \\\n"
            "  --discovery-token-ca-cert-hash sha256:1\n"
        )
        assert extract_join_command(output) == (
            "kubeadm join 10.0.0.5:6443 --token t --discovery-token-ca-cert-hash sha256:1"
        )

    def test_single_line(self):
        assert extract_join_command("kubeadm join 1.2.3.4:6443 --token t") == "kubeadm join 1.2.3.4:6443 --token t"

    def test_absent(self):
        assert extract_join_command("[preflight] Running pre-flight checks") is None


def test_render_join_script():
    assert render_join_script("kubeadm join x") == "#!/bin/sh\nset -e\nkubeadm join x\n"


def test_first_address():
    assert first_address("10.0.0.5 172.17.0.1 fe80::1 \n") == "10.0.0.5"
    with pytest.raises(TransientFailure):
        first_address("\n")


class TestClusterSteps:
    def test_step_order_and_criticality(self, make_context):
        steps = cluster_steps(make_context())
        assert [s.name for s in steps] == [
            "detect-internal-ip", "kubeadm-init", "configure-kubectl", "untaint-control-plane",
        ]
        assert [s.critical for s in steps] == [True, True, True, False]

    def test_detect_internal_ip(self, make_context, executor):
        executor.respond("hostname -I", stdout="192.168.1.20 10.244.0.0\n")
        ctx = make_context()
        _steps(ctx)["detect-internal-ip"].action()
        assert ctx.artifacts.get_text(artifacts.INTERNAL_IP) == "192.168.1.20"

    def test_configured_advertise_address_wins(self, make_context, executor):
        ctx = make_context({"advertise_address": "10.1.1.1"})
        _steps(ctx)["detect-internal-ip"].action()
        assert ctx.artifacts.get_text(artifacts.INTERNAL_IP) == "10.1.1.1"
        assert not executor.ran("hostname")

    def test_kubeadm_init_saves_join_script(self, make_context, executor):
        executor.respond("sudo test -f /etc/kubernetes/admin.conf", exit_code=1)
        executor.respond("sudo kubeadm init", stdout=KUBEADM_OUTPUT)
        ctx = make_context()
        ctx.artifacts.put_text(artifacts.INTERNAL_IP, "10.0.0.5")

        _steps(ctx)["kubeadm-init"].action()

        assert executor.ran(
            "sudo kubeadm init --apiserver-advertise-address=10.0.0.5 --pod-network-cidr=10.244.0.0/16"
        )
        script = ctx.artifacts.get_text(artifacts.JOIN_COMMAND)
        assert script.startswith("#!/bin/sh\n")
        assert "--discovery-token-ca-cert-hash sha256:1234" in script
        assert ctx.artifacts.mode_of(artifacts.JOIN_COMMAND) == 0o755
        assert ctx.artifacts.get_text(artifacts.KUBEADM_INIT_OUTPUT) == KUBEADM_OUTPUT

    def test_kubeadm_init_fails_without_join_command(self, make_context, executor):
        executor.respond("sudo test -f", exit_code=1)
        executor.respond("sudo kubeadm init", stdout="something unexpected")
        ctx = make_context()
        ctx.artifacts.put_text(artifacts.INTERNAL_IP, "10.0.0.5")

        with pytest.raises(TransientFailure):
            _steps(ctx)["kubeadm-init"].action()

    def test_kubeadm_init_is_idempotent(self, make_context, executor):
        executor.respond(
            "sudo kubeadm token create",
            stdout="kubeadm join 10.0.0.5:6443 --token new --discovery-token-ca-cert-hash sha256:9\n",
        )
        ctx = make_context()

        _steps(ctx)["kubeadm-init"].action()

        assert not executor.ran("kubeadm init")
        assert "--token new" in ctx.artifacts.get_text(artifacts.JOIN_COMMAND)

    def test_configure_kubectl_stores_private_kubeconfig(self, make_context, executor):
        executor.respond("sudo cat /etc/kubernetes/admin.conf", stdout="apiVersion: v1\nkind: Config\n")
        ctx = make_context({"install_user_kubeconfig": False})

        _steps(ctx)["configure-kubectl"].action()

        assert ctx.artifacts.get_text(artifacts.KUBECONFIG).startswith("apiVersion: v1")
        assert ctx.artifacts.mode_of(artifacts.KUBECONFIG) == 0o600

    def test_configure_kubectl_installs_user_kubeconfig(self, make_context, executor, tmp_path, monkeypatch):
        monkeypatch.setenv("HOME", str(tmp_path))
        executor.respond("sudo cat", stdout="apiVersion: v1\n")
        ctx = make_context()

        _steps(ctx)["configure-kubectl"].action()

        target = tmp_path / ".kube" / "config"
        assert target.read_text() == "apiVersion: v1\n"
        assert target.stat().st_mode & 0o777 == 0o600

    def test_user_kubeconfig_never_group_readable(self, make_context, executor, tmp_path, monkeypatch):
        monkeypatch.setenv("HOME", str(tmp_path))
        executor.respond("sudo cat", stdout="apiVersion: v1\n")
        target = tmp_path / ".kube" / "config"
        target.parent.mkdir()
        target.write_text("stale\n")
        target.chmod(0o644)
        modes = []
        real_fdopen = os.fdopen

        def fdopen(fd, *args, **kwargs):
            handle = real_fdopen(fd, *args, **kwargs)
            real_write = handle.write

            def write(data):
                modes.append(os.stat(target).st_mode & 0o777)
                return real_write(data)

            handle.write = write
            return handle

        monkeypatch.setattr("kubestep.plan.cluster.os.fdopen", fdopen)
        _steps(make_context())["configure-kubectl"].action()

        assert modes == [0o600]
        assert target.read_text() == "apiVersion: v1\n"

    def test_untaint_tolerates_missing_taint(self, make_context, executor):
        executor.respond("kubectl taint", exit_code=1, stderr="taint not found")
        _steps(make_context())["untaint-control-plane"].action()
        assert executor.ran("taint nodes --all node-role.kubernetes.io/control-plane-")
