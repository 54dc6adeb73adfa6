"""Ack-round controller: the two-phase approval handshake.

The host does not show allow reasons to the user, so an APPROVE verdict
is first surfaced as a deny carrying the review text. That moves the
session to PENDING_ACK by writing an approval marker holding the plan's
fingerprint. When the agent resubmits the same plan, the marker is
consumed and the session is RESOLVED with a real allow.

    RESOLVED --APPROVE verdict--> PENDING_ACK
    PENDING_ACK --same plan--> RESOLVED (allow)
    PENDING_ACK --different plan--> RESOLVED (marker dropped, full review)
"""

from __future__ import annotations

import hashlib
import logging
from pathlib import Path

from plan_review.core.models import AckOutcome, AckPhase
from plan_review.state.storage import read_text, remove, session_path, write_text_atomic

logger = logging.getLogger("plan_review.state.ack")

MARKER_PREFIX = ".review-approved-"


def fingerprint(plan_text: str) -> str:
    """Content fingerprint of a plan (sha256 hex of its UTF-8 bytes)."""
    return hashlib.sha256(plan_text.encode("utf-8", errors="replace")).hexdigest()


class AckRoundController:
    """Owns the approval marker for each session."""

    def __init__(self, marker_dir: Path):
        self.marker_dir = Path(marker_dir)

    def path_for(self, session_id: str) -> Path:
        return session_path(self.marker_dir, MARKER_PREFIX, session_id)

    def phase(self, session_id: str) -> AckPhase:
        if read_text(self.path_for(session_id)) is None:
            return AckPhase.RESOLVED
        return AckPhase.PENDING_ACK

    def check(self, session_id: str, plan_fingerprint: str) -> AckOutcome:
        """Classify a pending marker against the resubmitted plan.

        A STALE marker is deleted here; LEGACY and CONFIRMED are left for
        the caller to ``resolve`` once it has cleared the counter.
        """
        stored = read_text(self.path_for(session_id))
        if stored is None:
            return AckOutcome.NONE

        stored = stored.strip()
        if not stored:
            return AckOutcome.LEGACY
        if stored == plan_fingerprint:
            return AckOutcome.CONFIRMED

        logger.info("Approval marker for session=%s is stale, re-reviewing", session_id)
        self.resolve(session_id)
        return AckOutcome.STALE

    def mark_pending(self, session_id: str, plan_fingerprint: str) -> None:
        write_text_atomic(self.path_for(session_id), plan_fingerprint)
        logger.debug("Approval marker set session=%s", session_id)

    def resolve(self, session_id: str) -> None:
        if remove(self.path_for(session_id)):
            logger.debug("Approval marker removed session=%s", session_id)
