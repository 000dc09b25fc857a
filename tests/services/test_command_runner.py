import sys

import pytest

from pgdowngrade.errors import ToolInvocationError
from pgdowngrade.services.command_runner import CommandRunner


class DummyLogger:
    def __init__(self):
        self.info_messages = []

    def debug(self, *_args, **_kwargs):
        return None

    def info(self, message, *args):
        self.info_messages.append(message % args)

    def warning(self, *_args, **_kwargs):
        return None


def test_command_runner_raises_with_stderr_and_tool_name():
    runner = CommandRunner(logger=DummyLogger())

    with pytest.raises(ToolInvocationError, match="boom") as exc_info:
        runner.run(
            [sys.executable, "-c", "import sys; sys.stderr.write('boom'); sys.exit(1)"],
            tool="pg_dumpall",
            check=True,
            capture_output=True,
        )

    assert exc_info.value.tool == "pg_dumpall"
    assert str(exc_info.value).startswith("pg_dumpall failed:")


def test_command_runner_returns_when_check_disabled():
    runner = CommandRunner(logger=DummyLogger())

    result = runner.run(
        [sys.executable, "-c", "import sys; sys.exit(1)"],
        check=False,
        capture_output=True,
    )

    assert result.returncode == 1


def test_command_runner_passes_input_text():
    runner = CommandRunner(logger=DummyLogger())

    result = runner.run(
        [sys.executable, "-c", "import sys; print(sys.stdin.read().upper())"],
        capture_output=True,
        input_text="job manifest",
    )

    assert result.stdout.strip() == "JOB MANIFEST"


def test_command_runner_timeout_raises_error():
    runner = CommandRunner(logger=DummyLogger())

    with pytest.raises(ToolInvocationError, match="timed out"):
        runner.run(
            [sys.executable, "-c", "import time; time.sleep(2)"],
            check=True,
            capture_output=True,
            timeout=0.1,
        )


def test_command_runner_reports_missing_command():
    runner = CommandRunner(logger=DummyLogger())

    with pytest.raises(ToolInvocationError, match="Required command not found") as exc_info:
        runner.stream(["pgdowngrade-definitely-missing-tool"], tool="initdb")

    assert exc_info.value.tool == "initdb"


def test_stream_logs_each_line_with_tool_name():
    logger = DummyLogger()
    runner = CommandRunner(logger=logger)

    returncode = runner.stream(
        [sys.executable, "-c", "print('first'); print(''); print('second')"],
        tool="pg_ctl",
    )

    assert returncode == 0
    assert logger.info_messages == ["[pg_ctl] first", "[pg_ctl] second"]


def test_stream_failure_carries_tail_of_output():
    runner = CommandRunner(logger=DummyLogger())

    with pytest.raises(ToolInvocationError, match="could not connect") as exc_info:
        runner.stream(
            [
                sys.executable,
                "-c",
                "import sys; sys.stderr.write('could not connect to server\\n'); sys.exit(2)",
            ],
            tool="psql",
        )

    assert "Command failed (2)" in str(exc_info.value)


def test_stream_failure_with_non_utf8_output_names_the_tool():
    logger = DummyLogger()
    runner = CommandRunner(logger=logger)

    with pytest.raises(ToolInvocationError, match="Command failed \\(3\\)") as exc_info:
        runner.stream(
            [
                sys.executable,
                "-c",
                "import sys; sys.stdout.buffer.write(b'ERROR: \\xe9t\\xe9\\n'); sys.stdout.flush(); sys.exit(3)",
            ],
            tool="psql",
        )

    assert exc_info.value.tool == "psql"
    assert "ERROR: \ufffdt\ufffd" in str(exc_info.value)
    assert logger.info_messages == ["[psql] ERROR: \ufffdt\ufffd"]
