"""Tests for the Nephio installer and the cluster status report."""

import pytest

from kubestep.errors import SecretNotFound
from kubestep.plan.nephio import nephio_steps

SECRETS = {"dockerhub_username": "nephio-bot", "dockerhub_token": "dckr_pat_123"}
INIT_URL = "https://raw.githubusercontent.com/nephio-project/test-infra/main/e2e/provision/init.sh"


def _steps(ctx):
    return {s.name: s for s in nephio_steps(ctx)}


def test_nephio_install_is_single_attempt(make_context):
    step = _steps(make_context())["nephio-install"]
    assert step.max_attempts == 1
    assert step.critical is True


def test_nephio_can_be_disabled(make_context):
    assert list(_steps(make_context({"install_nephio": False}))) == ["cluster-status"]


def test_installer_receives_credentials_through_env_only(make_context, executor, fake_http):
    fake_http.responses[INIT_URL] = b"#!/bin/bash\necho installing\n"
    executor.respond("kubectl config current-context", stdout="kubernetes-admin@kubernetes\n")
    ctx = make_context(secrets=SECRETS)

    _steps(ctx)["nephio-install"].action()

    call = executor.calls[-1]
    assert call["command"] == (
        "sudo --preserve-env=DOCKERHUB_TOKEN,DOCKERHUB_USERNAME,K8S_CONTEXT,"
        "NEPHIO_BRANCH,NEPHIO_DEBUG,NEPHIO_USER bash"
    )
    assert call["input"] == b"#!/bin/bash\necho installing\n"
    assert call["env"] == {
        "NEPHIO_DEBUG": "false",
        "NEPHIO_BRANCH": "main",
        "NEPHIO_USER": "ubuntu",
        "DOCKERHUB_USERNAME": "nephio-bot",
        "DOCKERHUB_TOKEN": "dckr_pat_123",
        "K8S_CONTEXT": "kubernetes-admin@kubernetes",
    }
    assert all("dckr_pat_123" not in c for c in executor.commands)
    assert executor.redactor.redact("token dckr_pat_123") == "token ********"


def test_installer_as_root_runs_bash_directly(make_context, executor, fake_http):
    fake_http.responses[INIT_URL] = b"true"
    ctx = make_context(secrets=SECRETS, is_root=True)

    _steps(ctx)["nephio-install"].action()

    assert executor.calls[-1]["command"] == "bash"


def test_missing_credentials_fail_before_running(make_context, executor, fake_http):
    fake_http.responses[INIT_URL] = b"true"
    with pytest.raises(SecretNotFound):
        _steps(make_context())["nephio-install"].action()
    assert not executor.ran("bash")


def test_cluster_status_tolerates_failures(make_context, executor):
    executor.respond("kubectl", exit_code=1, stderr="connection refused")
    executor.respond("docker", exit_code=127)
    step = _steps(make_context())["cluster-status"]

    step.action()

    assert step.critical is False
    assert step.max_attempts == 1
    assert executor.commands == [
        "kubectl get nodes -o wide",
        "kubectl get pods -A",
        "kubectl get storageclass",
        "docker --version",
    ]
