"""Per-session review state: attempt counters and approval markers."""

from plan_review.state.ack import AckRoundController, fingerprint
from plan_review.state.counter import CounterStore

__all__ = ["AckRoundController", "CounterStore", "fingerprint"]
