"""Pydantic data models for plan-review.

Defines the contracts that cross module boundaries: the hook payload read
from stdin, the decision written to stdout, the persisted per-session
counter record and the execution context handed to the engine invoker.
"""

from __future__ import annotations

import enum
import json
import re
from typing import Any, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from plan_review.core.exceptions import HookInputError

PLAN_TOOL_NAME = "ExitPlanMode"
HOOK_EVENT_NAME = "PreToolUse"
RECURSION_GUARD_ENV = "PLAN_REVIEW_RUNNING"


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class Verdict(str, enum.Enum):
    APPROVE = "APPROVE"
    CONCERNS = "CONCERNS"
    REJECT = "REJECT"


class PermissionDecision(str, enum.Enum):
    ALLOW = "allow"
    DENY = "deny"


class AckPhase(str, enum.Enum):
    PENDING_ACK = "PENDING_ACK"
    RESOLVED = "RESOLVED"


class AckOutcome(str, enum.Enum):
    NONE = "NONE"  # no marker for this session
    LEGACY = "LEGACY"  # marker without a fingerprint
    CONFIRMED = "CONFIRMED"  # marker matches the resubmitted plan
    STALE = "STALE"  # marker was for a different plan, discarded


# ---------------------------------------------------------------------------
# Hook I/O
# ---------------------------------------------------------------------------

class ToolInput(BaseModel):
    model_config = ConfigDict(extra="ignore")

    plan: Optional[str] = None

    @field_validator("plan", mode="before")
    @classmethod
    def _plan_text_only(cls, value: Any) -> Optional[str]:
        if not isinstance(value, str) or value in ("", "null"):
            return None
        return value


class HookInput(BaseModel):
    """One PreToolUse event as delivered on stdin."""

    model_config = ConfigDict(extra="ignore")

    tool_name: str = ""
    session_id: str = ""
    tool_input: ToolInput = Field(default_factory=ToolInput)
    cwd: str = "."
    transcript_path: str = ""

    @field_validator("tool_name", "session_id", "transcript_path", mode="before")
    @classmethod
    def _coerce_text(cls, value: Any) -> str:
        if value is None:
            return ""
        return value if isinstance(value, str) else str(value)

    @field_validator("cwd", mode="before")
    @classmethod
    def _coerce_cwd(cls, value: Any) -> str:
        if not isinstance(value, str) or not value:
            return "."
        return value

    @field_validator("tool_input", mode="before")
    @classmethod
    def _coerce_tool_input(cls, value: Any) -> Any:
        return value if isinstance(value, dict) else {}

    @classmethod
    def from_json(cls, raw: str) -> HookInput:
        """Decode the stdin payload.

        Raises:
            HookInputError: If the payload is not a JSON object.
        """
        try:
            data = json.loads(raw)
        except (json.JSONDecodeError, TypeError) as e:
            raise HookInputError(f"Hook input is not valid JSON: {e}") from e
        if not isinstance(data, dict):
            raise HookInputError(f"Hook input must be a JSON object, got {type(data).__name__}")
        return cls(**data)


class HookDecision(BaseModel):
    """The single structured decision emitted on a non-guard exit."""

    permission: PermissionDecision
    reason: str

    @classmethod
    def allow(cls, reason: str) -> HookDecision:
        return cls(permission=PermissionDecision.ALLOW, reason=reason)

    @classmethod
    def deny(cls, reason: str) -> HookDecision:
        return cls(permission=PermissionDecision.DENY, reason=reason)

    @property
    def allowed(self) -> bool:
        return self.permission is PermissionDecision.ALLOW

    def to_hook_output(self) -> dict[str, Any]:
        return {
            "hookSpecificOutput": {
                "hookEventName": HOOK_EVENT_NAME,
                "permissionDecision": self.permission.value,
                "permissionDecisionReason": self.reason,
            }
        }

    def to_json(self) -> str:
        return json.dumps(self.to_hook_output(), ensure_ascii=False)


# ---------------------------------------------------------------------------
# Persisted session state
# ---------------------------------------------------------------------------

_DIGITS = re.compile(r"^[0-9]+$")


def _parse_count(field: str) -> int:
    field = field.strip()
    return int(field) if _DIGITS.match(field) else 0


class CounterRecord(BaseModel):
    """Consultation progress for one session.

    Wire format v2 is ``"<attempt>:<total>"``. Version 1 stored only the
    attempt count, and ``total`` migrates to that value.
    """

    model_config = ConfigDict(frozen=True)

    attempt: int = 0  # CONCERNS rounds since the last REJECT
    total: int = 0  # every non-approving round

    @classmethod
    def decode(cls, raw: Optional[str]) -> CounterRecord:
        """Decode a stored record. Never raises; junk decodes to zeros.

        An unparseable field reads as 0, except that ``total`` is then raised
        to ``attempt``: ``"3:abc"`` decodes to ``3:3``, not ``3:0``, so
        ``attempt <= total`` holds for every decoded record.
        """
        if not isinstance(raw, str):
            return cls()
        text = raw.strip()
        if not text:
            return cls()

        attempt_field, sep, total_field = text.partition(":")
        attempt = _parse_count(attempt_field)
        if not sep:
            # v1: single integer
            return cls(attempt=attempt, total=attempt)

        # v2 with an empty total (``"3:"``) takes the v1 migration path too.
        if not total_field.strip():
            return cls(attempt=attempt, total=attempt)
        total = _parse_count(total_field)
        # total counts every round attempt counts
        return cls(attempt=attempt, total=max(total, attempt))

    def encode(self) -> str:
        return f"{self.attempt}:{self.total}"

    def after_concerns(self) -> CounterRecord:
        return CounterRecord(attempt=self.attempt + 1, total=self.total + 1)

    def after_reject(self) -> CounterRecord:
        return CounterRecord(attempt=0, total=self.total + 1)


# ---------------------------------------------------------------------------
# Execution context
# ---------------------------------------------------------------------------

class ExecutionContext(BaseModel):
    """Per-process context threaded from the entry point to the invoker.

    ``nested`` is True when this process was spawned by our own engine call.
    It crosses the process boundary as RECURSION_GUARD_ENV in the child's
    environment and nowhere else.
    """

    model_config = ConfigDict(frozen=True)

    nested: bool = False

    @classmethod
    def from_environ(cls, environ: Mapping[str, str]) -> ExecutionContext:
        return cls(nested=environ.get(RECURSION_GUARD_ENV, "") == "1")

    def child_env_overrides(self) -> dict[str, str]:
        return {RECURSION_GUARD_ENV: "1"}
