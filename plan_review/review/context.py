"""Plan text and project context for a review round.

Collects what the prompt needs: the plan itself (from the tool input or
the newest plan file), the author's CLAUDE.md rules, and the last few
user messages from the session transcript. Every reader here is
best-effort: unreadable sources yield empty strings, never errors.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

from plan_review.core.config import AppConfig
from plan_review.core.models import HookInput

logger = logging.getLogger("plan_review.review.context")

RULES_FILENAME = "CLAUDE.md"
USER_ROLES = ("user", "human")
MESSAGE_SEPARATOR = "\n---\n"


@dataclass
class ReviewContext:
    global_rules: str = ""
    project_rules: str = ""
    user_request: str = ""


class PlanSource:
    """Primary plan source is the tool input; the fallback is the plan store."""

    def __init__(self, plan_dir: Path):
        self.plan_dir = Path(plan_dir)

    def resolve(self, hook_input: HookInput) -> Optional[str]:
        plan = hook_input.tool_input.plan
        if plan:
            return plan
        return self.latest_plan_file_text()

    def latest_plan_file(self) -> Optional[Path]:
        """Most recently modified non-hidden ``*.md`` directly in plan_dir."""
        if not self.plan_dir.is_dir():
            return None
        candidates: list[tuple[float, Path]] = []
        try:
            for path in self.plan_dir.glob("*.md"):
                if path.name.startswith(".") or not path.is_file():
                    continue
                candidates.append((path.stat().st_mtime, path))
        except OSError as e:
            logger.warning("Cannot scan plan dir %s: %s", self.plan_dir, e)
            return None
        if not candidates:
            return None
        return max(candidates, key=lambda item: item[0])[1]

    def latest_plan_file_text(self) -> Optional[str]:
        path = self.latest_plan_file()
        if path is None:
            return None
        text = _read_prefix(path)
        if not text:
            return None
        logger.info("Using fallback plan file %s", path)
        return text


def collect_context(config: AppConfig, hook_input: HookInput) -> ReviewContext:
    limits = config.context
    global_rules = _read_prefix(config.paths.home_dir / ".claude" / RULES_FILENAME,
                                limits.global_rules_chars)
    project_rules = _read_prefix(Path(hook_input.cwd) / RULES_FILENAME,
                                 limits.project_rules_chars)
    user_request = ""
    if hook_input.transcript_path:
        user_request = read_recent_user_messages(
            Path(hook_input.transcript_path), limits.transcript_messages,
        )
    return ReviewContext(
        global_rules=global_rules,
        project_rules=project_rules,
        user_request=user_request,
    )


def read_recent_user_messages(transcript_path: Path, limit: int = 3) -> str:
    """Last ``limit`` user turns of a JSONL transcript, joined by separators.

    Entries may carry the role at the top level or inside ``message``;
    content may be a string or a list of blocks, of which only text
    blocks are kept. Malformed lines are skipped.
    """
    if limit <= 0 or not transcript_path.is_file():
        return ""

    messages: list[str] = []
    try:
        with open(transcript_path, encoding="utf-8", errors="replace") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    entry = json.loads(line)
                except json.JSONDecodeError:
                    continue
                text = _user_text(entry)
                if text is not None:
                    messages.append(text)
    except OSError as e:
        logger.warning("Cannot read transcript %s: %s", transcript_path, e)
        return ""

    return MESSAGE_SEPARATOR.join(messages[-limit:])


def _user_text(entry: Any) -> Optional[str]:
    if not isinstance(entry, dict):
        return None
    message = entry.get("message") if isinstance(entry.get("message"), dict) else entry
    role = entry.get("role") or message.get("role")
    if role not in USER_ROLES:
        return None

    content = message.get("content", entry.get("content"))
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        return "\n".join(
            block["text"] if isinstance(block.get("text"), str) else ""
            for block in content
            if isinstance(block, dict) and block.get("type") == "text"
        )
    return ""


def _read_prefix(path: Path, max_chars: Optional[int] = None) -> str:
    try:
        if not path.is_file():
            return ""
        with open(path, encoding="utf-8", errors="replace") as f:
            return f.read(max_chars) if max_chars is not None else f.read()
    except OSError as e:
        logger.debug("Cannot read %s: %s", path, e)
        return ""
