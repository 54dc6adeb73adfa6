"""Verdict extraction from untrusted engine output.

The review text comes from an external model and may contain anything,
including text crafted to look like an approval. Only a well-formed
``<verdict>KEYWORD</verdict>`` tag counts; everything else falls back to
CONCERNS so a broken or hostile response can never approve a plan.
"""

from __future__ import annotations

import logging
import re
from typing import Any

from plan_review.core.models import Verdict

logger = logging.getLogger("plan_review.engine.verdict")

_VERDICT_TAG = re.compile(r"<VERDICT>\s*(APPROVE|CONCERNS|REJECT)\s*</VERDICT>")

FALLBACK_VERDICT = Verdict.CONCERNS


def extract_verdict(raw_text: Any) -> Verdict:
    """Return the first tagged verdict in ``raw_text``, or CONCERNS.

    Matching is case-insensitive and tolerates whitespace inside the tag.
    Bare keywords outside the tag are ignored.
    """
    if not isinstance(raw_text, str):
        logger.warning("Verdict tag missing (non-text engine output), falling back to %s",
                       FALLBACK_VERDICT.value)
        return FALLBACK_VERDICT

    match = _VERDICT_TAG.search(raw_text.upper())
    if match is None:
        logger.warning("Verdict tag missing or malformed, falling back to %s",
                       FALLBACK_VERDICT.value)
        return FALLBACK_VERDICT

    return Verdict(match.group(1))
