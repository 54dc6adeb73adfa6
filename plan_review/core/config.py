"""Configuration loader for plan-review.

Loads config from a YAML cascade: config/default.yaml is always loaded,
then environment-specific overrides, then environment variables. The
environment keys are the hook's public interface; the legacy GEMINI_*
names are honored only when the primary REVIEW_* key is unset.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Callable, Literal, Mapping, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from plan_review.core.exceptions import ConfigError

logger = logging.getLogger("plan_review.config")

ENGINES = ("gemini", "claude")
DEFAULT_ENGINE = "gemini"


# ---------------------------------------------------------------------------
# Config schema
# ---------------------------------------------------------------------------

class ReviewConfig(BaseModel):
    engine: Literal["gemini", "claude"] = DEFAULT_ENGINE
    disabled: bool = False
    dry_run: bool = False
    max_rounds: int = Field(default=3, ge=0)  # non-critical (CONCERNS) limit
    max_total_rounds: int = Field(default=20, ge=0)  # global limit

    @field_validator("engine", mode="before")
    @classmethod
    def _fallback_engine(cls, value: Any) -> str:
        if value not in ENGINES:
            logger.warning("Unknown review engine %r, using '%s'", value, DEFAULT_ENGINE)
            return DEFAULT_ENGINE
        return value


class EngineConfig(BaseModel):
    retry_delay_seconds: float = Field(default=2.0, ge=0)
    timeout_seconds: int = Field(default=300, gt=0)
    claude_model: str = "opus"
    gemini_model: str = "gemini-3-pro-preview"


class PathsConfig(BaseModel):
    counter_dir: Path = Path("/tmp/claude-reviews")
    plan_dir: Path = Path("~/.claude/plans")
    log_dir: Path = Path("~/.claude/logs")
    home_dir: Path = Path("~")

    @field_validator("counter_dir", "plan_dir", "log_dir", "home_dir", mode="after")
    @classmethod
    def _expand(cls, value: Path) -> Path:
        return value.expanduser()


class ContextConfig(BaseModel):
    global_rules_chars: int = 3000
    project_rules_chars: int = 8000
    transcript_messages: int = 3


class LoggingConfig(BaseModel):
    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    decision_log_name: str = "plan-review.log"


class AppConfig(BaseModel):
    review: ReviewConfig = Field(default_factory=ReviewConfig)
    engine: EngineConfig = Field(default_factory=EngineConfig)
    paths: PathsConfig = Field(default_factory=PathsConfig)
    context: ContextConfig = Field(default_factory=ContextConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


# ---------------------------------------------------------------------------
# Environment overrides
# ---------------------------------------------------------------------------

def _parse_flag(raw: str) -> bool:
    return raw == "1"


def _parse_int(raw: str) -> int:
    return int(raw.strip())


def _parse_float(raw: str) -> float:
    return float(raw.strip())


def _parse_str(raw: str) -> str:
    return raw


# (section, field, primary key, legacy alias, parser)
_ENV_OVERRIDES: tuple[tuple[str, str, str, Optional[str], Callable[[str], Any]], ...] = (
    ("review", "engine", "REVIEW_ENGINE", None, _parse_str),
    ("review", "disabled", "REVIEW_DISABLED", "GEMINI_REVIEW_OFF", _parse_flag),
    ("review", "dry_run", "REVIEW_DRY_RUN", "GEMINI_DRY_RUN", _parse_flag),
    ("review", "max_rounds", "REVIEW_MAX_ROUNDS", "GEMINI_MAX_REVIEWS", _parse_int),
    ("review", "max_total_rounds", "REVIEW_MAX_TOTAL_ROUNDS", None, _parse_int),
    ("engine", "retry_delay_seconds", "REVIEW_RETRY_DELAY", None, _parse_float),
    ("engine", "timeout_seconds", "REVIEW_ENGINE_TIMEOUT", None, _parse_int),
    ("engine", "claude_model", "CLAUDE_MODEL", None, _parse_str),
    ("engine", "gemini_model", "GEMINI_MODEL", None, _parse_str),
    ("paths", "counter_dir", "REVIEW_COUNTER_DIR", None, _parse_str),
    ("paths", "plan_dir", "REVIEW_PLAN_DIR", None, _parse_str),
    ("paths", "log_dir", "REVIEW_LOG_DIR", None, _parse_str),
)


def _lookup(environ: Mapping[str, str], primary: str, legacy: Optional[str]) -> Optional[str]:
    """Primary key wins when non-empty, legacy alias is the fallback."""
    value = environ.get(primary)
    if value:
        return value
    if legacy:
        return environ.get(legacy) or None
    return None


def review_disabled(environ: Mapping[str, str]) -> bool:
    """Disabled flag read straight from the environment, without loading config."""
    raw = _lookup(environ, "REVIEW_DISABLED", "GEMINI_REVIEW_OFF")
    return raw is not None and _parse_flag(raw)


def _apply_env_overrides(merged: dict[str, Any], environ: Mapping[str, str]) -> dict[str, Any]:
    for section, field, primary, legacy, parser in _ENV_OVERRIDES:
        raw = _lookup(environ, primary, legacy)
        if raw is None:
            continue
        try:
            value = parser(raw)
        except ValueError:
            logger.warning("Ignoring unparseable %s=%r", primary, raw)
            continue
        merged.setdefault(section, {})[field] = value
    return merged


# ---------------------------------------------------------------------------
# Loader
# ---------------------------------------------------------------------------

def _deep_merge(base: dict, override: dict) -> dict:
    """Recursively merge override into base, returning a new dict."""
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _load_yaml(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    try:
        with open(path) as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e
    return data if isinstance(data, dict) else {}


def default_config_dir() -> Path:
    return Path(__file__).parent.parent.parent / "config"


def load_config(
    config_dir: Optional[Path] = None,
    env: Optional[str] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> AppConfig:
    """Load application config from YAML cascade.

    Order: default.yaml -> {env}.yaml -> environment variables.

    Raises:
        ConfigError: If a YAML file is malformed or a value fails validation.
    """
    if config_dir is None:
        config_dir = default_config_dir()
    if environ is None:
        environ = os.environ

    merged = _load_yaml(config_dir / "default.yaml")

    if env:
        overlay = _load_yaml(config_dir / f"{env}.yaml")
        merged = _deep_merge(merged, overlay)

    merged = _apply_env_overrides(merged, environ)

    try:
        return AppConfig(**merged)
    except ValidationError as e:
        raise ConfigError(f"Invalid plan-review configuration: {e}") from e


# ---------------------------------------------------------------------------
# Prompt loader
# ---------------------------------------------------------------------------

class PromptLoader:
    """Loads prompt templates from config/prompts/ directory.

    Falls back to hardcoded defaults if the file doesn't exist, so the
    review instructions can be tuned without code changes.
    """

    def __init__(self, prompts_dir: Optional[Path] = None):
        if prompts_dir is None:
            prompts_dir = default_config_dir() / "prompts"
        self.prompts_dir = prompts_dir

    def load(self, name: str, default: str = "") -> str:
        """Load a prompt template by filename.

        Args:
            name: Filename within config/prompts/ (e.g. "review_system.txt").
            default: Fallback text if file doesn't exist.

        Returns:
            Prompt text (stripped of leading/trailing whitespace).
        """
        path = self.prompts_dir / name
        if path.exists():
            return path.read_text(encoding="utf-8").strip()
        return default
