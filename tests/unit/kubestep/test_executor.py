"""Tests for command executors and secret redaction."""

import logging
import sys
import textwrap

import pytest

from kubestep.errors import CommandFailed
from kubestep.executor import DryRunExecutor, Redactor, SubprocessExecutor


class TestRedactor:
    def test_masks_registered_values(self):
        redactor = Redactor()
        redactor.add("s3cret")
        assert redactor.redact("token=s3cret user=bob") == "token=******** user=bob"

    def test_ignores_empty_values(self):
        redactor = Redactor()
        redactor.add("")
        redactor.add(None)
        assert redactor.redact("nothing here") == "nothing here"

    def test_longest_secret_first(self):
        redactor = Redactor()
        redactor.add("abc")
        redactor.add("abcdef")
        assert redactor.redact("x abcdef y") == "x ******** y"


def _python(code):
    return [sys.executable, "-c", textwrap.dedent(code)]


class TestSubprocessExecutor:
    def test_success(self):
        result = SubprocessExecutor().run(_python("print('v1.34.0')"))

        assert result.ok
        assert result.stdout == "v1.34.0\n"
        assert "v1.34.0" in result.command

    def test_non_zero_raises_when_checked(self):
        code = """
            import sys
            sys.stderr.write("E: Unable to locate package\\n")
            sys.exit(2)
        """
        with pytest.raises(CommandFailed) as exc_info:
            SubprocessExecutor().run(_python(code))

        assert exc_info.value.exit_code == 2
        assert "Unable to locate package" in str(exc_info.value)

    def test_non_zero_returned_when_unchecked(self):
        result = SubprocessExecutor().run(_python("raise SystemExit(1)"), check=False)
        assert result.exit_code == 1
        assert not result.ok

    def test_timeout_becomes_command_failed(self, caplog):
        code = """
            import time
            print("pulling images", flush=True)
            time.sleep(30)
        """
        with caplog.at_level("DEBUG", logger="kubestep.executor"):
            with pytest.raises(CommandFailed) as exc_info:
                SubprocessExecutor().run(_python(code), timeout=1)

        assert exc_info.value.exit_code == -1
        assert "pulling images" in caplog.text

    def test_output_is_logged_while_command_runs(self, tmp_path):
        marker = tmp_path / "seen"
        code = f"""
            import os, sys, time
            print("first", flush=True)
            deadline = time.monotonic() + 20
            while not os.path.exists({str(marker)!r}):
                if time.monotonic() > deadline:
                    sys.exit(3)
                time.sleep(0.05)
            print("second")
        """

        class MarkOnFirstLine(logging.Handler):
            def emit(self, record):
                if record.getMessage().endswith(": first"):
                    marker.touch()

        handler = MarkOnFirstLine()
        executor_logger = logging.getLogger("kubestep.executor")
        previous_level = executor_logger.level
        executor_logger.addHandler(handler)
        executor_logger.setLevel(logging.DEBUG)
        try:
            result = SubprocessExecutor().run(_python(code), timeout=30)
        finally:
            executor_logger.removeHandler(handler)
            executor_logger.setLevel(previous_level)

        assert result.exit_code == 0
        assert result.stdout == "first\nsecond\n"

    def test_bytes_input_passed_through(self):
        code = "import sys; sys.stdout.write(sys.stdin.buffer.read().decode()[::-1])"
        result = SubprocessExecutor().run(_python(code), input=b"enod")
        assert result.stdout == "done"

    def test_str_input_encoded(self):
        code = "import sys; print(sys.stdin.read().upper())"
        result = SubprocessExecutor().run(_python(code), input="nephio")
        assert result.stdout == "NEPHIO\n"

    def test_env_is_merged(self, monkeypatch):
        monkeypatch.setenv("KUBESTEP_TEST_INHERITED", "yes")
        code = "import os; print(os.environ['NEPHIO_BRANCH'], os.environ['KUBESTEP_TEST_INHERITED'])"
        result = SubprocessExecutor().run(_python(code), env={"NEPHIO_BRANCH": "main"})
        assert result.stdout == "main yes\n"

    def test_secrets_redacted_from_output_and_command(self, caplog):
        executor = SubprocessExecutor()
        executor.redactor.add("hunter2")

        with caplog.at_level("DEBUG", logger="kubestep.executor"):
            result = executor.run(_python("import sys; print('login as', sys.argv[1])") + ["hunter2"])

        assert "hunter2" not in result.command
        assert result.stdout == "login as ********\n"
        assert "hunter2" not in caplog.text

    def test_missing_executable(self):
        with pytest.raises(OSError):
            SubprocessExecutor().run(["kubestep-no-such-binary"])


class TestDryRunExecutor:
    def test_records_and_succeeds(self):
        executor = DryRunExecutor()
        result = executor.run(["kubeadm", "init"], check=True)

        assert result.ok
        assert executor.commands == ["kubeadm init"]

    def test_redacts(self):
        executor = DryRunExecutor()
        executor.redactor.add("tok")
        executor.run(["echo", "tok"])
        assert executor.commands == ["echo ********"]
