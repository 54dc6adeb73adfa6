"""Tests for plan_review/cli.py — the hook, status and reset commands."""

import json

import pytest
from click.testing import CliRunner

from plan_review.cli import cli
from plan_review.core.models import AckPhase, CounterRecord
from plan_review.state.ack import AckRoundController
from plan_review.state.counter import CounterStore


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def cli_env(tmp_path):
    return {
        "HOME": str(tmp_path / "home"),
        "REVIEW_COUNTER_DIR": str(tmp_path / "counters"),
        "REVIEW_PLAN_DIR": str(tmp_path / "plans"),
        "REVIEW_LOG_DIR": str(tmp_path / "logs"),
        "REVIEW_DRY_RUN": "1",
        "REVIEW_DISABLED": None,
        "GEMINI_REVIEW_OFF": None,
        "PLAN_REVIEW_RUNNING": None,
    }


def _payload(session_id="cli-session", tool_name="ExitPlanMode", plan="CLI plan"):
    return json.dumps({
        "tool_name": tool_name,
        "session_id": session_id,
        "tool_input": {"plan": plan},
    })


def _decision(output):
    # stdout carries one JSON line; anything else is log output
    last = [line for line in output.splitlines() if line.startswith("{")][-1]
    return json.loads(last)["hookSpecificOutput"]


class TestHookCommand:
    def test_help(self, runner):
        result = runner.invoke(cli, ["--help"])
        assert result.exit_code == 0
        for command in ("hook", "status", "reset"):
            assert command in result.output

    def test_other_tool_emits_nothing(self, runner, cli_env):
        result = runner.invoke(cli, ["hook"], input=_payload(tool_name="Bash"), env=cli_env)
        assert result.exit_code == 0
        assert result.output.strip() == ""

    def test_nested_invocation_emits_nothing(self, runner, cli_env):
        env = dict(cli_env, PLAN_REVIEW_RUNNING="1")
        result = runner.invoke(cli, ["hook"], input=_payload(), env=env)
        assert result.exit_code == 0
        assert result.output.strip() == ""

    def test_disabled_emits_nothing(self, runner, cli_env):
        env = dict(cli_env, REVIEW_DISABLED="1")
        result = runner.invoke(cli, ["hook"], input=_payload(), env=env)
        assert result.output.strip() == ""

    def test_dry_run_approval_handshake(self, runner, cli_env):
        first = runner.invoke(cli, ["hook"], input=_payload(), env=cli_env)
        assert first.exit_code == 0
        denied = _decision(first.output)
        assert denied["hookEventName"] == "PreToolUse"
        assert denied["permissionDecision"] == "deny"
        assert "APPROVED" in denied["permissionDecisionReason"]
        assert "[DRY-RUN]" in denied["permissionDecisionReason"]

        second = runner.invoke(cli, ["hook"], input=_payload(), env=cli_env)
        allowed = _decision(second.output)
        assert allowed["permissionDecision"] == "allow"
        assert "CONFIRMED" in allowed["permissionDecisionReason"]

    def test_unreadable_input_allows(self, runner, cli_env):
        result = runner.invoke(cli, ["hook"], input="{broken", env=cli_env)
        assert result.exit_code == 0
        decision = _decision(result.output)
        assert decision["permissionDecision"] == "allow"
        assert decision["permissionDecisionReason"].startswith("[WARNING]")

    def test_invalid_config_allows(self, runner, cli_env):
        env = dict(cli_env, REVIEW_MAX_ROUNDS="-5")
        result = runner.invoke(cli, ["hook"], input=_payload(), env=env)
        assert result.exit_code == 0
        decision = _decision(result.output)
        assert decision["permissionDecision"] == "allow"
        assert "configuration invalid" in decision["permissionDecisionReason"]

    def test_invalid_config_other_tool_emits_nothing(self, runner, cli_env):
        env = dict(cli_env, REVIEW_MAX_ROUNDS="-5")
        result = runner.invoke(cli, ["hook"], input=_payload(tool_name="Bash"), env=env)
        assert result.exit_code == 0
        assert "hookSpecificOutput" not in result.output

    def test_invalid_config_disabled_emits_nothing(self, runner, cli_env):
        env = dict(cli_env, REVIEW_MAX_ROUNDS="-5", REVIEW_DISABLED="1")
        result = runner.invoke(cli, ["hook"], input=_payload(), env=env)
        assert result.exit_code == 0
        assert "hookSpecificOutput" not in result.output

    def test_invalid_config_legacy_disabled_emits_nothing(self, runner, cli_env):
        env = dict(cli_env, REVIEW_MAX_ROUNDS="-5", GEMINI_REVIEW_OFF="1")
        result = runner.invoke(cli, ["hook"], input=_payload(), env=env)
        assert "hookSpecificOutput" not in result.output

    def test_invalid_config_missing_session_emits_nothing(self, runner, cli_env):
        env = dict(cli_env, REVIEW_MAX_ROUNDS="-5")
        result = runner.invoke(cli, ["hook"], input=_payload(session_id=""), env=env)
        assert "hookSpecificOutput" not in result.output

    def test_decision_log_written(self, runner, cli_env, tmp_path):
        runner.invoke(cli, ["hook"], input=_payload(), env=cli_env)
        log = (tmp_path / "logs" / "plan-review.log").read_text()
        assert "session=cli-session" in log
        assert "verdict=APPROVE decision=deny" in log


class TestStatusCommand:
    def test_fresh_session(self, runner, cli_env):
        result = runner.invoke(cli, ["status", "--session-id", "s1"], env=cli_env)
        assert result.exit_code == 0
        payload = json.loads(result.output)
        assert payload == {
            "session_id": "s1",
            "attempt": 0,
            "total": 0,
            "counter_present": False,
            "ack_phase": "RESOLVED",
            "max_rounds": 3,
            "max_total_rounds": 20,
        }

    def test_reports_stored_state(self, runner, cli_env, tmp_path):
        CounterStore(tmp_path / "counters").save("s1", CounterRecord(attempt=2, total=4))
        AckRoundController(tmp_path / "counters").mark_pending("s1", "abc")
        payload = json.loads(runner.invoke(cli, ["status", "--session-id", "s1"], env=cli_env).output)
        assert payload["attempt"] == 2
        assert payload["total"] == 4
        assert payload["counter_present"] is True
        assert payload["ack_phase"] == "PENDING_ACK"

    def test_requires_session_id(self, runner, cli_env):
        result = runner.invoke(cli, ["status"], env=cli_env)
        assert result.exit_code != 0

    def test_invalid_config_is_an_error(self, runner, cli_env):
        env = dict(cli_env, REVIEW_MAX_TOTAL_ROUNDS="-1")
        result = runner.invoke(cli, ["status", "--session-id", "s1"], env=env)
        assert result.exit_code == 1
        assert "Invalid plan-review configuration" in result.output


class TestResetCommand:
    def test_clears_counter_and_marker(self, runner, cli_env, tmp_path):
        counters = CounterStore(tmp_path / "counters")
        ack = AckRoundController(tmp_path / "counters")
        counters.save("s1", CounterRecord(attempt=0, total=20))
        ack.mark_pending("s1", "abc")

        result = runner.invoke(cli, ["reset", "--session-id", "s1"], env=cli_env)
        assert result.exit_code == 0
        assert "Reset review state for session s1" in result.output
        assert counters.exists("s1") is False
        assert ack.phase("s1") is AckPhase.RESOLVED

    def test_reset_unknown_session_succeeds(self, runner, cli_env):
        result = runner.invoke(cli, ["reset", "--session-id", "nobody"], env=cli_env)
        assert result.exit_code == 0
