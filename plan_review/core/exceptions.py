"""Custom exception hierarchy for plan-review.

All exceptions inherit from PlanReviewError so callers can catch broadly
or narrowly as needed. None of these escape the hook entry point: the
consultation state machine converts every one of them into an allow or
deny decision.
"""


class PlanReviewError(Exception):
    """Base exception for all plan-review errors."""


# ---------------------------------------------------------------------------
# Hook input
# ---------------------------------------------------------------------------

class HookInputError(PlanReviewError):
    """Hook payload on stdin could not be decoded."""


# ---------------------------------------------------------------------------
# Review engine
# ---------------------------------------------------------------------------

class EngineError(PlanReviewError):
    """Review engine invocation failure."""


class EngineNotFoundError(EngineError):
    """Engine executable is not on PATH. Permanent, never retried."""

    def __init__(self, engine: str, command: str):
        self.engine = engine
        self.command = command
        super().__init__(f"REVIEW_ENGINE={engine} but '{command}' not found")


class EngineExhaustedError(EngineError):
    """Every attempt failed (non-zero exit, timeout or empty output)."""

    def __init__(self, engine: str, attempts: int, last_error: str = ""):
        self.engine = engine
        self.attempts = attempts
        self.last_error = last_error
        message = f"Engine '{engine}' failed after {attempts} attempts"
        if last_error:
            message += f": {last_error}"
        super().__init__(message)


# ---------------------------------------------------------------------------
# Session state
# ---------------------------------------------------------------------------

class StateError(PlanReviewError):
    """Failed to persist a counter record or approval marker."""


# ---------------------------------------------------------------------------
# Tools
# ---------------------------------------------------------------------------

class ToolError(PlanReviewError):
    """Tool execution failure."""


class ShellTimeoutError(ToolError):
    """Shell command exceeded timeout."""


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

class ConfigError(PlanReviewError):
    """Invalid or missing configuration."""
