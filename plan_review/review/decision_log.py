"""Machine-parseable decision log, one line per hook exit.

    [2026-01-01T00:00:00Z] session=abc attempt=1/3 total=1/20 verdict=CONCERNS decision=deny

The file is a side channel: if the log directory cannot be created or
written, lines are dropped and the decision is unaffected.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from pathlib import Path
from typing import Optional

from plan_review.core.config import AppConfig
from plan_review.core.models import CounterRecord

logger = logging.getLogger("plan_review.review.decisions")


class DecisionLog:
    def __init__(self, log_dir: Path, filename: str = "plan-review.log"):
        self.path: Optional[Path] = None
        try:
            Path(log_dir).mkdir(parents=True, exist_ok=True)
            self.path = Path(log_dir) / filename
        except OSError as e:
            logger.debug("Decision log disabled, cannot create %s: %s", log_dir, e)

    @classmethod
    def from_config(cls, config: AppConfig) -> DecisionLog:
        return cls(config.paths.log_dir, config.logging.decision_log_name)

    @property
    def location(self) -> str:
        return str(self.path) if self.path is not None else "/dev/null"

    def record(
        self,
        session_id: str,
        counter: Optional[CounterRecord],
        config: AppConfig,
        **fields: object,
    ) -> str:
        stamp = datetime.now(UTC).strftime("%Y-%m-%dT%H:%M:%SZ")
        attempt = counter.attempt if counter is not None else "?"
        total = counter.total if counter is not None else "?"
        details = " ".join(f"{key}={value}" for key, value in fields.items())
        line = (
            f"[{stamp}] session={session_id or 'unknown'} "
            f"attempt={attempt}/{config.review.max_rounds} "
            f"total={total}/{config.review.max_total_rounds} {details}"
        ).rstrip()
        logger.info("%s", line)

        if self.path is not None:
            try:
                with open(self.path, "a", encoding="utf-8") as f:
                    f.write(line + "\n")
            except OSError as e:
                logger.debug("Decision log write failed: %s", e)
        return line
