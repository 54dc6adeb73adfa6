"""Tests for plan_review/tools/shell.py — subprocess execution."""

import os

import pytest

from plan_review.core.exceptions import ShellTimeoutError, ToolError
from plan_review.tools.shell import (
    MAX_OUTPUT_BYTES,
    ShellResult,
    _truncate_output,
    find_executable,
    run_command,
)


class TestShellResult:
    def test_success_property(self):
        result = ShellResult(command="echo hi", return_code=0, stdout="hi\n", stderr="")
        assert result.success is True

    def test_failure_property(self):
        result = ShellResult(command="false", return_code=1, stdout="", stderr="error")
        assert result.success is False

    def test_timeout_property(self):
        result = ShellResult(command="sleep", return_code=0, stdout="", stderr="", timed_out=True)
        assert result.success is False


class TestRunCommand:
    def test_echo_command(self):
        result = run_command(["echo", "hello"])
        assert result.success
        assert result.stdout.strip() == "hello"
        assert result.command == "echo hello"

    def test_stdin_is_delivered(self):
        result = run_command(["cat"], input_text="plan body\nline two")
        assert result.stdout == "plan body\nline two"

    def test_captures_stderr_and_return_code(self):
        result = run_command(["sh", "-c", "echo oops >&2; exit 3"])
        assert result.return_code == 3
        assert "oops" in result.stderr
        assert result.success is False

    def test_cwd_parameter(self, tmp_path):
        result = run_command(["pwd"], cwd=str(tmp_path))
        assert str(tmp_path.resolve()) in result.stdout

    def test_env_is_complete_replacement(self, monkeypatch):
        monkeypatch.setenv("LEAK_CHECK", "leaked")
        env = {"PATH": os.environ.get("PATH", ""), "ONLY_VAR": "present"}
        result = run_command(["sh", "-c", "echo ${ONLY_VAR}-${LEAK_CHECK:-unset}"], env=env)
        assert result.stdout.strip() == "present-unset"

    def test_timeout_raises(self):
        with pytest.raises(ShellTimeoutError, match="timed out"):
            run_command(["sleep", "10"], timeout=1)

    def test_nonexistent_command_raises(self):
        with pytest.raises(ToolError, match="Command not found"):
            run_command(["completely_nonexistent_binary_xyz"])

    def test_invalid_utf8_output_is_replaced(self):
        result = run_command(["printf", "\\377ok"])
        assert result.stdout.endswith("ok")


class TestFindExecutable:
    def test_finds_on_custom_path(self, tmp_path):
        tool = tmp_path / "mytool"
        tool.write_text("#!/bin/sh\n")
        tool.chmod(0o755)
        assert find_executable("mytool", {"PATH": str(tmp_path)}) == str(tool)

    def test_missing_returns_none(self, tmp_path):
        assert find_executable("mytool", {"PATH": str(tmp_path)}) is None


class TestTruncateOutput:
    def test_short_text_unchanged(self):
        assert _truncate_output("short") == "short"

    def test_long_text_truncated(self):
        text = "x" * (MAX_OUTPUT_BYTES + 10)
        result = _truncate_output(text)
        assert result.endswith("[output truncated]")
        assert len(result) < len(text) + 30
