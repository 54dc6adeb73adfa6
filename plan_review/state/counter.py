"""Persistent session counter.

One flat file per session holding a CounterRecord. Loading is total:
missing, empty or corrupt storage reads as a fresh record.
"""

from __future__ import annotations

import logging
from pathlib import Path

from plan_review.core.models import CounterRecord
from plan_review.state.storage import read_text, remove, session_path, write_text_atomic

logger = logging.getLogger("plan_review.state.counter")

COUNTER_PREFIX = ".review-count-"


class CounterStore:
    """Reads and writes ``<counter_dir>/.review-count-<session_id>``."""

    def __init__(self, counter_dir: Path):
        self.counter_dir = Path(counter_dir)

    def path_for(self, session_id: str) -> Path:
        return session_path(self.counter_dir, COUNTER_PREFIX, session_id)

    def exists(self, session_id: str) -> bool:
        return self.path_for(session_id).is_file()

    def load(self, session_id: str) -> CounterRecord:
        raw = read_text(self.path_for(session_id))
        record = CounterRecord.decode(raw)
        logger.debug("Loaded counter session=%s %s", session_id, record.encode())
        return record

    def save(self, session_id: str, record: CounterRecord) -> None:
        write_text_atomic(self.path_for(session_id), record.encode() + "\n")
        logger.debug("Saved counter session=%s %s", session_id, record.encode())

    def clear(self, session_id: str) -> None:
        if remove(self.path_for(session_id)):
            logger.debug("Cleared counter session=%s", session_id)
