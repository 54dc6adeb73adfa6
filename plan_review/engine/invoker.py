"""Review engine invocation for plan-review.

Runs the ``gemini`` or ``claude`` CLI as a subprocess with a fixed
two-attempt policy. A missing executable is permanent and fails fast;
non-zero exits, timeouts and empty output are transient and retried once
after a fixed delay.
"""

from __future__ import annotations

import logging
import os
import time
from typing import Callable, Mapping, Optional

from plan_review.core.config import AppConfig
from plan_review.core.exceptions import (
    EngineExhaustedError,
    EngineNotFoundError,
    ToolError,
)
from plan_review.core.models import ExecutionContext
from plan_review.tools.shell import ShellResult, find_executable, run_command

logger = logging.getLogger("plan_review.engine.invoker")

ENGINE_ATTEMPTS = 2

DRY_RUN_RESPONSE = "<verdict>APPROVE</verdict>\n[DRY-RUN] review call skipped."

ENGINE_COMMANDS = {
    "gemini": "gemini",
    "claude": "claude",
}

# Host-internal variables that would make a nested `claude -p` load our hooks.
_STRIPPED_ENV_VARS = ("CLAUDECODE", "CLAUDE_CODE_ENTRYPOINT")


class EngineInvoker:
    """Calls the configured review engine and returns its raw text.

    Injected dependencies:
        config: Engine selection, models, retry delay and timeout.
        context: Execution context propagated to the child process.
        sleep: Delay function between attempts (time.sleep by default).
        environ: Base environment for the child (os.environ by default).
    """

    def __init__(
        self,
        config: AppConfig,
        context: ExecutionContext,
        sleep: Callable[[float], None] = time.sleep,
        environ: Optional[Mapping[str, str]] = None,
    ):
        self.config = config
        self.context = context
        self._sleep = sleep
        self._environ = environ

    @property
    def engine(self) -> str:
        return self.config.review.engine

    @property
    def command_name(self) -> str:
        return ENGINE_COMMANDS[self.engine]

    def uses_system_prompt_channel(self) -> bool:
        """Claude takes instructions via --system-prompt; Gemini via the prompt body."""
        return self.engine == "claude"

    def invoke(self, prompt: str, system_prompt: str = "") -> str:
        """Run the engine and return its non-empty stdout.

        Args:
            prompt: Text fed to the engine on stdin.
            system_prompt: Instructions for engines with a system channel.

        Returns:
            Raw review text.

        Raises:
            EngineNotFoundError: Executable is not on PATH (no attempt made).
            EngineExhaustedError: Both attempts failed or returned nothing.
        """
        if self.config.review.dry_run:
            logger.info("Dry run: skipping %s call", self.engine)
            return DRY_RUN_RESPONSE

        env = self._child_env()
        executable = find_executable(self.command_name, env)
        if executable is None:
            raise EngineNotFoundError(self.engine, self.command_name)

        argv = self._build_argv(executable, system_prompt)
        last_error = ""
        for attempt in range(1, ENGINE_ATTEMPTS + 1):
            try:
                result = run_command(
                    argv,
                    input_text=prompt,
                    timeout=self.config.engine.timeout_seconds,
                    env=env,
                )
            except ToolError as e:
                last_error = str(e)
                result = None

            if result is not None:
                text = self._accept(result)
                if text is not None:
                    return text
                last_error = _describe_failure(result)

            if attempt < ENGINE_ATTEMPTS:
                delay = self.config.engine.retry_delay_seconds
                logger.warning(
                    "%s failed (attempt %d/%d): %s. Retrying in %.1fs",
                    self.command_name, attempt, ENGINE_ATTEMPTS, last_error, delay,
                )
                if delay > 0:
                    self._sleep(delay)

        raise EngineExhaustedError(self.engine, ENGINE_ATTEMPTS, last_error)

    def _accept(self, result: ShellResult) -> Optional[str]:
        if result.stderr:
            logger.debug("%s stderr: %s", self.command_name, result.stderr.strip())
        if not result.success:
            return None
        if not result.stdout.strip():
            return None
        return result.stdout

    def _build_argv(self, executable: str, system_prompt: str) -> list[str]:
        if self.engine == "claude":
            return [
                executable,
                "-p",
                "--model", self.config.engine.claude_model,
                "--setting-sources", "local",
                "--no-session-persistence",
                "--tools", "",
                "--disable-slash-commands",
                "--system-prompt", system_prompt,
            ]
        return [executable, "-m", self.config.engine.gemini_model]

    def _child_env(self) -> dict[str, str]:
        base = self._environ if self._environ is not None else os.environ
        env = {k: v for k, v in base.items() if k not in _STRIPPED_ENV_VARS}
        env.update(self.context.child_env_overrides())
        return env


def _describe_failure(result: ShellResult) -> str:
    if result.return_code != 0:
        return f"exit code {result.return_code}"
    return "empty response"
