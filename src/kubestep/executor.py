"""
Command execution for provisioning steps.

Steps never call ``subprocess`` directly; they go through a
``CommandExecutor`` so runs can be dry-run or tested with a fake.

- ``SubprocessExecutor`` runs commands and streams their output to the
  session transcript
- ``DryRunExecutor`` logs commands and reports success without running them

Registered secret values are masked in every logged command line and in
captured output.
"""

from __future__ import annotations

import logging
import os
import shlex
import shutil
import subprocess
import threading
import time
from dataclasses import dataclass
from typing import IO, List, Mapping, Optional, Protocol, Sequence, Set, Union, runtime_checkable

from kubestep.errors import CommandFailed
from kubestep.timeouts import SUBPROCESS_DEFAULT_TIMEOUT_S, SUBPROCESS_DRAIN_TIMEOUT_S

__all__ = [
    "CommandInput",
    "CommandResult",
    "CommandExecutor",
    "Redactor",
    "SubprocessExecutor",
    "DryRunExecutor",
]

logger = logging.getLogger(__name__)

CommandInput = Union[str, bytes]

REDACTED = "********"


@dataclass(frozen=True)
class CommandResult:
    """Captured outcome of one command."""
    command: str
    exit_code: int
    stdout: str = ""
    stderr: str = ""
    duration_seconds: float = 0.0

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


@runtime_checkable
class CommandExecutor(Protocol):
    """Runs external commands on behalf of steps."""

    redactor: "Redactor"

    def run(
        self,
        args: Sequence[str],
        *,
        input: Optional[CommandInput] = None,
        env: Optional[Mapping[str, str]] = None,
        timeout: Optional[float] = None,
        check: bool = True,
    ) -> CommandResult: ...

    def which(self, name: str) -> Optional[str]: ...


class Redactor:
    """Masks registered secret values in text."""

    def __init__(self) -> None:
        self._secrets: Set[str] = set()

    def add(self, value: Optional[str]) -> None:
        if value:
            self._secrets.add(value)

    def redact(self, text: str) -> str:
        # Longest first so a secret containing another is fully masked
        for secret in sorted(self._secrets, key=len, reverse=True):
            text = text.replace(secret, REDACTED)
        return text


def _decode(data: Union[str, bytes, None]) -> str:
    if data is None:
        return ""
    if isinstance(data, bytes):
        return data.decode("utf-8", errors="replace")
    return data


class SubprocessExecutor:
    """
    Run commands with ``subprocess.Popen``.

    Each line of stdout and stderr is written to the session transcript as
    it arrives and is also collected for the ``CommandResult``.
    """

    def __init__(
        self,
        default_timeout: float = SUBPROCESS_DEFAULT_TIMEOUT_S,
        redactor: Optional[Redactor] = None,
    ):
        self.default_timeout = default_timeout
        self.redactor = redactor or Redactor()

    def _format(self, args: Sequence[str]) -> str:
        return self.redactor.redact(shlex.join(args))

    def _pump(self, stream: IO[bytes], command: str, name: str, sink: List[str]) -> None:
        with stream:
            for raw in iter(stream.readline, b""):
                line = _decode(raw)
                sink.append(line)
                logger.debug("%s [%s]: %s", name, command, self.redactor.redact(line.rstrip("\n")))

    @staticmethod
    def _feed(stream: IO[bytes], data: bytes) -> None:
        try:
            with stream:
                stream.write(data)
        except BrokenPipeError:
            # The child exited without reading all of its input
            pass

    def run(
        self,
        args: Sequence[str],
        *,
        input: Optional[CommandInput] = None,
        env: Optional[Mapping[str, str]] = None,
        timeout: Optional[float] = None,
        check: bool = True,
    ) -> CommandResult:
        """
        Run a command.

        Args:
            args: Command and arguments (never passed through a shell)
            input: Data fed to stdin; str is encoded as UTF-8
            env: Variables merged over the current environment
            timeout: Seconds before the command is killed
            check: Raise ``CommandFailed`` on a non-zero exit

        Raises:
            CommandFailed: Non-zero exit with ``check=True``, or timeout
            OSError: The executable could not be started
        """
        command = self._format(args)
        timeout = timeout if timeout is not None else self.default_timeout
        merged_env = {**os.environ, **env} if env else None

        logger.info("Running: %s", command)
        start = time.monotonic()
        proc = subprocess.Popen(
            list(args),
            stdin=subprocess.PIPE if input is not None else subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            env=merged_env,
        )
        stdout: List[str] = []
        stderr: List[str] = []
        threads = [
            threading.Thread(target=self._pump, args=(proc.stdout, command, "stdout", stdout), daemon=True),
            threading.Thread(target=self._pump, args=(proc.stderr, command, "stderr", stderr), daemon=True),
        ]
        if input is not None:
            data = input if isinstance(input, bytes) else input.encode("utf-8")
            threads.append(threading.Thread(target=self._feed, args=(proc.stdin, data), daemon=True))
        for thread in threads:
            thread.start()

        try:
            exit_code = proc.wait(timeout=timeout)
        except subprocess.TimeoutExpired as e:
            proc.kill()
            proc.wait()
            # A surviving grandchild can hold the pipes open
            for thread in threads:
                thread.join(timeout=SUBPROCESS_DRAIN_TIMEOUT_S)
            logger.error("Command timed out after %ss: %s", timeout, command)
            raise CommandFailed(
                command,
                -1,
                self.redactor.redact("".join(stderr)) or f"timed out after {timeout}s",
            ) from e

        for thread in threads:
            thread.join()

        result = CommandResult(
            command=command,
            exit_code=exit_code,
            stdout=self.redactor.redact("".join(stdout)),
            stderr=self.redactor.redact("".join(stderr)),
            duration_seconds=time.monotonic() - start,
        )
        if not result.ok:
            logger.warning(
                "Command exited with %d after %.1fs: %s",
                result.exit_code,
                result.duration_seconds,
                result.command,
            )

        if check and not result.ok:
            raise CommandFailed(command, result.exit_code, result.stderr)
        return result

    def which(self, name: str) -> Optional[str]:
        return shutil.which(name)


class DryRunExecutor:
    """Log commands instead of running them; every command succeeds."""

    def __init__(self, redactor: Optional[Redactor] = None, stdout: str = ""):
        self.redactor = redactor or Redactor()
        self.stdout = stdout
        self.commands: list[str] = []

    def run(
        self,
        args: Sequence[str],
        *,
        input: Optional[CommandInput] = None,
        env: Optional[Mapping[str, str]] = None,
        timeout: Optional[float] = None,
        check: bool = True,
    ) -> CommandResult:
        command = self.redactor.redact(shlex.join(args))
        self.commands.append(command)
        logger.info("[dry-run] %s", command)
        return CommandResult(command=command, exit_code=0, stdout=self.stdout)

    def which(self, name: str) -> Optional[str]:
        return shutil.which(name)
