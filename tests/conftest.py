"""Shared fixtures for plan-review tests.

Engines are REAL executables: small POSIX shell scripts written into a
temporary bin directory that is put first on the invoker's PATH. The
subprocess, retry and parsing paths run for real; only the model behind
the CLI is replaced.
"""

from __future__ import annotations

import os
import stat
from pathlib import Path
from typing import Callable, Optional

import pytest

from plan_review.core.config import (
    AppConfig,
    EngineConfig,
    PathsConfig,
    ReviewConfig,
)
from plan_review.core.models import ExecutionContext, HookInput
from plan_review.engine.invoker import EngineInvoker
from plan_review.review.consultation import ConsultationStateMachine
from plan_review.review.context import PlanSource
from plan_review.review.decision_log import DecisionLog
from plan_review.state.ack import AckRoundController
from plan_review.state.counter import CounterStore

SESSION = "test-session"
PLAN = "Test plan content"

_ENGINE_SCRIPT = """#!/bin/sh
dir="{state_dir}"
n=$(( $(cat "$dir/count" 2>/dev/null || echo 0) + 1 ))
echo "$n" > "$dir/count"
cat > "$dir/stdin_$n.txt"
env > "$dir/env_$n.txt"
printf '%s\\n' "$@" > "$dir/argv_$n.txt"
if [ -f "$dir/exit_$n" ]; then
  exit "$(cat "$dir/exit_$n")"
fi
if [ -f "$dir/out_$n.txt" ]; then
  cat "$dir/out_$n.txt"
elif [ -f "$dir/out_default.txt" ]; then
  cat "$dir/out_default.txt"
fi
"""


class FakeEngine:
    """A scripted stand-in for the `gemini` / `claude` CLI.

    Each call records its stdin, environment and argv under state_dir and
    prints the output queued for that call number (or the default).
    """

    def __init__(self, bin_dir: Path, name: str):
        self.name = name
        self.state_dir = bin_dir.parent / f"{name}-state"
        self.state_dir.mkdir(parents=True, exist_ok=True)
        self.path = bin_dir / name
        self.path.write_text(_ENGINE_SCRIPT.format(state_dir=self.state_dir), encoding="utf-8")
        self.path.chmod(self.path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)

    def always(self, output: str) -> FakeEngine:
        (self.state_dir / "out_default.txt").write_text(output, encoding="utf-8")
        return self

    def then(self, *outputs: str) -> FakeEngine:
        """Queue outputs for the next calls, in order."""
        start = self.calls + 1
        for offset, output in enumerate(outputs):
            (self.state_dir / f"out_{start + offset}.txt").write_text(output, encoding="utf-8")
        return self

    def fail_call(self, n: int, exit_code: int = 1) -> FakeEngine:
        (self.state_dir / f"exit_{n}").write_text(str(exit_code), encoding="utf-8")
        return self

    @property
    def calls(self) -> int:
        count = self.state_dir / "count"
        return int(count.read_text().strip()) if count.exists() else 0

    def stdin(self, n: int = 1) -> str:
        return (self.state_dir / f"stdin_{n}.txt").read_text(encoding="utf-8")

    def argv(self, n: int = 1) -> list[str]:
        return (self.state_dir / f"argv_{n}.txt").read_text(encoding="utf-8").splitlines()

    def env(self, n: int = 1) -> dict[str, str]:
        pairs = {}
        for line in (self.state_dir / f"env_{n}.txt").read_text(encoding="utf-8").splitlines():
            key, sep, value = line.partition("=")
            if sep:
                pairs[key] = value
        return pairs


# ---------------------------------------------------------------------------
# Config fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def review_paths(tmp_path: Path) -> PathsConfig:
    paths = PathsConfig(
        counter_dir=tmp_path / "counters",
        plan_dir=tmp_path / "plans",
        log_dir=tmp_path / "logs",
        home_dir=tmp_path / "home",
    )
    for directory in (paths.counter_dir, paths.plan_dir, paths.log_dir, paths.home_dir):
        directory.mkdir(parents=True, exist_ok=True)
    return paths


@pytest.fixture
def make_config(review_paths: PathsConfig) -> Callable[..., AppConfig]:
    def _make(**review_overrides) -> AppConfig:
        return AppConfig(
            review=ReviewConfig(**review_overrides),
            engine=EngineConfig(retry_delay_seconds=0, timeout_seconds=30),
            paths=review_paths,
        )
    return _make


@pytest.fixture
def app_config(make_config) -> AppConfig:
    return make_config()


# ---------------------------------------------------------------------------
# Engine fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def bin_dir(tmp_path: Path) -> Path:
    path = tmp_path / "bin"
    path.mkdir()
    return path


@pytest.fixture
def engine_environ(bin_dir: Path) -> dict[str, str]:
    env = dict(os.environ)
    env["PATH"] = f"{bin_dir}{os.pathsep}{os.environ.get('PATH', '')}"
    env.pop("PLAN_REVIEW_RUNNING", None)
    return env


@pytest.fixture
def gemini(bin_dir: Path) -> FakeEngine:
    return FakeEngine(bin_dir, "gemini")


@pytest.fixture
def claude(bin_dir: Path) -> FakeEngine:
    return FakeEngine(bin_dir, "claude")


# ---------------------------------------------------------------------------
# State machine fixtures
# ---------------------------------------------------------------------------

def build_machine(
    config: AppConfig,
    environ: dict[str, str],
    context: Optional[ExecutionContext] = None,
) -> ConsultationStateMachine:
    context = context or ExecutionContext()
    return ConsultationStateMachine(
        config=config,
        context=context,
        counters=CounterStore(config.paths.counter_dir),
        ack=AckRoundController(config.paths.counter_dir),
        invoker=EngineInvoker(config, context, environ=environ),
        plan_source=PlanSource(config.paths.plan_dir),
        decisions=DecisionLog.from_config(config),
    )


@pytest.fixture
def make_machine(make_config, engine_environ) -> Callable[..., ConsultationStateMachine]:
    def _make(context: Optional[ExecutionContext] = None, **review_overrides) -> ConsultationStateMachine:
        return build_machine(make_config(**review_overrides), engine_environ, context)
    return _make


def hook_input(
    plan: Optional[str] = PLAN,
    session_id: str = SESSION,
    tool_name: str = "ExitPlanMode",
    **extra,
) -> HookInput:
    tool_input = {} if plan is None else {"plan": plan}
    return HookInput(tool_name=tool_name, session_id=session_id, tool_input=tool_input, **extra)
