"""
Pytest configuration and fixtures for kubestep tests.

Nothing here touches the real host or a real cluster: commands go to a
recording executor, waits use a fake clock, and HTTP is a dict of canned
responses.
"""

from __future__ import annotations

import logging
import shlex
from typing import Callable, Dict, Generator, List, Optional, Sequence
from unittest.mock import MagicMock

import pytest

from kubestep.artifacts import MemoryArtifactStore
from kubestep.config import KubestepConfig, reset_config
from kubestep.errors import CommandFailed, TransientFailure
from kubestep.executor import CommandResult, Redactor
from kubestep.poller import ConditionPoller
from kubestep.secrets import EnvSecretStore


# ============================================================================
# Environment Fixtures
# ============================================================================


@pytest.fixture(autouse=True)
def isolated_env(tmp_path, monkeypatch) -> Generator[None, None, None]:
    """Keep config, logs and artifacts out of the real home directory."""
    monkeypatch.setenv("KUBESTEP_LOG_FILE", str(tmp_path / "k8s-setup.log"))
    monkeypatch.setenv("KUBESTEP_ARTIFACT_DIR", str(tmp_path / "artifacts"))
    monkeypatch.delenv("KUBESTEP_OTLP_ENDPOINT", raising=False)
    monkeypatch.delenv("KUBESTEP_DRY_RUN", raising=False)
    monkeypatch.delenv("KUBESTEP_KUBECONFIG", raising=False)
    reset_config()

    yield

    reset_config()
    root = logging.getLogger("kubestep")
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
    root.propagate = True


# ============================================================================
# Fakes
# ============================================================================


class FakeClock:
    """Monotonic clock advanced only by the fake sleep."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class RecordingExecutor:
    """
    CommandExecutor fake that records every command.

    Responses are matched by command prefix: the first registered prefix
    that the command line starts with decides the result.
    """

    def __init__(self) -> None:
        self.redactor = Redactor()
        self.calls: List[dict] = []
        self._responses: List[tuple] = []
        self.available: Dict[str, str] = {}

    def respond(self, prefix: str, stdout: str = "", exit_code: int = 0, stderr: str = "") -> None:
        self._responses.append((prefix, stdout, exit_code, stderr))

    @property
    def commands(self) -> List[str]:
        return [c["command"] for c in self.calls]

    def ran(self, fragment: str) -> bool:
        return any(fragment in c for c in self.commands)

    def run(self, args: Sequence[str], *, input=None, env=None, timeout=None, check=True) -> CommandResult:
        command = shlex.join(args)
        self.calls.append({"command": command, "input": input, "env": env, "timeout": timeout})
        stdout, exit_code, stderr = "", 0, ""
        for prefix, out, code, err in self._responses:
            if command.startswith(prefix):
                stdout, exit_code, stderr = out, code, err
                break
        result = CommandResult(command=command, exit_code=exit_code, stdout=stdout, stderr=stderr)
        if check and not result.ok:
            raise CommandFailed(command, exit_code, stderr)
        return result

    def which(self, name: str) -> Optional[str]:
        return self.available.get(name)


class FakeHttp:
    def __init__(self, responses: Optional[Dict[str, bytes]] = None) -> None:
        self.responses = responses or {}
        self.fetched: List[str] = []

    def fetch(self, url: str) -> bytes:
        self.fetched.append(url)
        if url not in self.responses:
            raise TransientFailure(f"GET {url} returned HTTP 404")
        return self.responses[url]


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def executor() -> RecordingExecutor:
    return RecordingExecutor()


@pytest.fixture
def fake_http() -> FakeHttp:
    return FakeHttp()


@pytest.fixture
def config(tmp_path) -> KubestepConfig:
    return KubestepConfig(
        log_file=str(tmp_path / "k8s-setup.log"),
        artifact_dir=str(tmp_path / "artifacts"),
        default_max_attempts=2,
        default_retry_delay_s=0,
        poll_interval_s=1,
        wait_timeout_s=5,
        nephio_user="ubuntu",
    )


@pytest.fixture
def make_context(config, executor, fake_http, clock):
    """Build a ProvisionContext wired to the fakes; Kubernetes APIs are mocks."""
    from kubestep.plan.context import ProvisionContext

    def _make(
        config_overrides: Optional[dict] = None,
        secrets: Optional[Dict[str, str]] = None,
        is_root: bool = False,
    ) -> ProvisionContext:
        cfg = config.model_copy(update=config_overrides or {})
        ctx = ProvisionContext(
            config=cfg,
            executor=executor,
            artifacts=MemoryArtifactStore(),
            secrets=EnvSecretStore(prefix="TEST_SECRET_", environ={
                f"TEST_SECRET_{k.upper()}": v for k, v in (secrets or {}).items()
            }),
            http=fake_http,
            poller=ConditionPoller(
                interval_s=cfg.poll_interval_s,
                timeout_s=cfg.wait_timeout_s,
                sleep=clock.sleep,
                clock=clock,
            ),
            is_root=is_root,
        )
        ctx.kube = MagicMock()
        return ctx

    return _make


@pytest.fixture
def recording_action() -> Callable:
    """Factory for step actions that follow a script of outcomes.

    Each entry is returned (or raised, if it is an exception) on the
    corresponding call; the last entry repeats.
    """

    def _make(*outcomes):
        calls = []

        def action():
            calls.append(len(calls) + 1)
            outcome = outcomes[min(len(calls), len(outcomes)) - 1]
            if isinstance(outcome, BaseException):
                raise outcome
            return outcome

        action.calls = calls
        return action

    return _make
