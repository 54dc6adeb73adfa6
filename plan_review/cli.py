"""CLI entrypoint for plan-review.

``plan-review hook`` is what the host runs on every PreToolUse event for
ExitPlanMode. stdout carries only the hook's JSON decision; all logging
goes to stderr.
"""

from __future__ import annotations

import json
import logging
import os
import sys
from pathlib import Path
from typing import Optional

import click

from plan_review.core.config import AppConfig, load_config, review_disabled
from plan_review.core.exceptions import ConfigError, HookInputError, StateError
from plan_review.core.models import ExecutionContext, HookDecision, HookInput
from plan_review.review.consultation import (
    WARNING_INTERNAL_ERROR,
    ConsultationStateMachine,
    skips_event,
)
from plan_review.state.ack import AckRoundController
from plan_review.state.counter import CounterStore

logger = logging.getLogger("plan_review.cli")

_config_dir_option = click.option(
    "--config-dir",
    required=False,
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Directory holding default.yaml (defaults to the bundled config/).",
)


def _setup_logging(verbose: bool = False, config_dir: Optional[Path] = None) -> None:
    """Apply logging configuration from config/default.yaml."""
    try:
        config = load_config(config_dir=config_dir)
        level_name = config.logging.level
        fmt = config.logging.format
    except Exception:
        level_name = "INFO"
        fmt = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    level = logging.DEBUG if verbose else getattr(logging, level_name.upper(), logging.INFO)
    logging.basicConfig(level=level, format=fmt, stream=sys.stderr)


def _load_config_or_exit(config_dir: Optional[Path]) -> AppConfig:
    try:
        return load_config(config_dir=config_dir)
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc


def _guard_exit_without_config(raw_input: str) -> bool:
    """Guard checks that need no loaded config: env flag, tool name, session."""
    if review_disabled(os.environ):
        return True
    try:
        hook_input = HookInput.from_json(raw_input)
    except HookInputError:
        return False
    return skips_event(hook_input)


def _emit(decision: Optional[HookDecision]) -> None:
    if decision is not None:
        click.echo(decision.to_json())


@click.group()
@click.option("--verbose", is_flag=True, default=False, help="Enable verbose (DEBUG) logging.")
@click.pass_context
def cli(ctx: click.Context, verbose: bool) -> None:
    """Adversarial plan review hook."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose


@cli.command("hook")
@_config_dir_option
@click.pass_context
def hook(ctx: click.Context, config_dir: Optional[Path]) -> None:
    """Review the plan in the PreToolUse event read from stdin."""
    _setup_logging(verbose=ctx.obj.get("verbose", False), config_dir=config_dir)
    context = ExecutionContext.from_environ(os.environ)
    if context.nested:
        return

    raw_input = click.get_text_stream("stdin").read()

    try:
        config = load_config(config_dir=config_dir)
    except ConfigError as exc:
        logger.error("%s", exc)
        if _guard_exit_without_config(raw_input):
            return
        _emit(HookDecision.allow(f"[WARNING] plan-review configuration invalid, review skipped: {exc}"))
        return

    machine = ConsultationStateMachine.from_config(config, context)
    try:
        decision = machine.evaluate_raw(raw_input)
    except Exception:
        # Last line of defence: the host workflow must never break on us.
        logger.exception("Unexpected plan-review failure")
        decision = HookDecision.allow(WARNING_INTERNAL_ERROR)
    _emit(decision)


@cli.command("status")
@click.option("--session-id", required=True, help="Session identifier.")
@_config_dir_option
def status(session_id: str, config_dir: Optional[Path]) -> None:
    """Show a session's counter and approval phase as JSON."""
    config = _load_config_or_exit(config_dir)
    counters = CounterStore(config.paths.counter_dir)
    ack = AckRoundController(config.paths.counter_dir)
    record = counters.load(session_id)
    payload = {
        "session_id": session_id,
        "attempt": record.attempt,
        "total": record.total,
        "counter_present": counters.exists(session_id),
        "ack_phase": ack.phase(session_id).value,
        "max_rounds": config.review.max_rounds,
        "max_total_rounds": config.review.max_total_rounds,
    }
    click.echo(json.dumps(payload, indent=2))


@cli.command("reset")
@click.option("--session-id", required=True, help="Session identifier.")
@_config_dir_option
def reset(session_id: str, config_dir: Optional[Path]) -> None:
    """Delete a session's counter and approval marker (lifts a hard stop)."""
    config = _load_config_or_exit(config_dir)
    try:
        CounterStore(config.paths.counter_dir).clear(session_id)
        AckRoundController(config.paths.counter_dir).resolve(session_id)
    except StateError as exc:
        raise click.ClickException(str(exc)) from exc
    click.echo(f"Reset review state for session {session_id}")


def main() -> None:
    """Entry point used by the `plan-review` console script."""
    from dotenv import load_dotenv
    load_dotenv(Path(__file__).parent.parent / ".env", override=False)
    cli()


if __name__ == "__main__":
    main()
