"""Review engine invocation and verdict extraction."""

from plan_review.engine.invoker import DRY_RUN_RESPONSE, EngineInvoker
from plan_review.engine.verdict import extract_verdict

__all__ = ["DRY_RUN_RESPONSE", "EngineInvoker", "extract_verdict"]
