"""Consultation state machine for adversarial plan review.

One evaluation per hook invocation. Steps run in a fixed order and each
one may end the evaluation:

    GUARD -> ACK_CHECK -> GLOBAL_VALVE -> NONCRITICAL_VALVE
          -> PLAN_EXTRACT -> ENGINE_CALL -> VERDICT_ROUTE -> EMIT

Verdict routing (counter is ``attempt:total``):
    APPROVE  -> counter cleared, approval marker set, deny surfacing the
                review; the next call with the same plan allows and clears
                the marker
    CONCERNS -> attempt+1, total+1, deny with remaining negotiation rounds
    REJECT   -> attempt=0, total+1, deny until Critical items are resolved

Termination:
    non-critical valve: attempt >= max_rounds       -> allow, escalate to user
    global valve:       total >= max_total_rounds   -> deny, counter kept

Fail-open posture: when the review mechanism itself is impaired (bad
input, missing or failing engine, unwritable state) the plan is allowed
with a visible warning. Only a working engine with an unparseable
verdict fails closed, as CONCERNS.
"""

from __future__ import annotations

import logging
from typing import Optional

from plan_review.core.config import AppConfig
from plan_review.core.exceptions import (
    EngineExhaustedError,
    EngineNotFoundError,
    HookInputError,
    StateError,
)
from plan_review.core.models import (
    PLAN_TOOL_NAME,
    AckOutcome,
    AckPhase,
    CounterRecord,
    ExecutionContext,
    HookDecision,
    HookInput,
    Verdict,
)
from plan_review.engine.invoker import EngineInvoker
from plan_review.engine.verdict import extract_verdict
from plan_review.review.context import PlanSource, collect_context
from plan_review.review.decision_log import DecisionLog
from plan_review.review.prompt import compose_prompt, load_system_instructions
from plan_review.state.ack import AckRoundController, fingerprint
from plan_review.state.counter import CounterStore

logger = logging.getLogger("plan_review.review.consultation")

WARNING_INPUT_UNREADABLE = "[WARNING] hook input unreadable, plan-review skipped"
WARNING_INTERNAL_ERROR = "[WARNING] plan-review internal error, review skipped"
SKIP_NO_PLAN = "[SKIP] no plan content to review"


def skips_event(hook_input: HookInput) -> bool:
    """True for events this hook never answers: other tools, or no session."""
    if hook_input.tool_name != PLAN_TOOL_NAME:
        return True
    return not hook_input.session_id


class ConsultationStateMachine:
    """Evaluates one PreToolUse event against the session's review state.

    Injected dependencies:
        config: Limits, engine selection and paths.
        context: Execution context (recursion guard).
        counters: Per-session attempt/total store.
        ack: Approval marker sub-machine.
        invoker: Review engine caller.
        plan_source: Plan text lookup (tool input, then plan files).
        decisions: One-line-per-exit decision log.
    """

    def __init__(
        self,
        config: AppConfig,
        context: ExecutionContext,
        counters: CounterStore,
        ack: AckRoundController,
        invoker: EngineInvoker,
        plan_source: PlanSource,
        decisions: DecisionLog,
        instructions: Optional[str] = None,
    ):
        self.config = config
        self.context = context
        self.counters = counters
        self.ack = ack
        self.invoker = invoker
        self.plan_source = plan_source
        self.decisions = decisions
        self._instructions = instructions

    @classmethod
    def from_config(cls, config: AppConfig, context: ExecutionContext) -> ConsultationStateMachine:
        return cls(
            config=config,
            context=context,
            counters=CounterStore(config.paths.counter_dir),
            ack=AckRoundController(config.paths.counter_dir),
            invoker=EngineInvoker(config, context),
            plan_source=PlanSource(config.paths.plan_dir),
            decisions=DecisionLog.from_config(config),
        )

    @property
    def engine(self) -> str:
        return self.config.review.engine

    @property
    def instructions(self) -> str:
        if self._instructions is None:
            self._instructions = load_system_instructions()
        return self._instructions

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def evaluate_raw(self, raw_input: str) -> Optional[HookDecision]:
        """Evaluate the undecoded stdin payload."""
        if self._environment_guard():
            return None
        try:
            hook_input = HookInput.from_json(raw_input)
        except HookInputError as e:
            logger.warning("%s", e)
            self.decisions.record("", None, self.config, decision="allow", reason="input-unreadable")
            return HookDecision.allow(WARNING_INPUT_UNREADABLE)
        return self.evaluate(hook_input)

    def evaluate(self, hook_input: HookInput) -> Optional[HookDecision]:
        """Run the state machine. None means guard exit: emit nothing."""
        if self._environment_guard() or skips_event(hook_input):
            return None
        try:
            return self._consult(hook_input)
        except StateError as e:
            logger.error("Session state unavailable: %s", e)
            self.decisions.record(hook_input.session_id, None, self.config,
                                  decision="allow", reason="state-error")
            return HookDecision.allow(WARNING_INTERNAL_ERROR)

    # ------------------------------------------------------------------
    # GUARD
    # ------------------------------------------------------------------

    def _environment_guard(self) -> bool:
        if self.context.nested:
            logger.debug("Nested invocation from our own engine call, skipping")
            return True
        if self.config.review.disabled:
            logger.debug("Plan review disabled, skipping")
            return True
        return False

    # ------------------------------------------------------------------
    # ACK_CHECK .. EMIT
    # ------------------------------------------------------------------

    def _consult(self, hook_input: HookInput) -> HookDecision:
        session_id = hook_input.session_id
        plan: Optional[str] = None
        plan_resolved = False

        if self.ack.phase(session_id) is AckPhase.PENDING_ACK:
            plan = self.plan_source.resolve(hook_input)
            plan_resolved = True
            decision = self._ack_check(session_id, plan)
            if decision is not None:
                return decision

        counter = self.counters.load(session_id)

        decision = self._safety_valves(session_id, counter)
        if decision is not None:
            return decision

        if not plan_resolved:
            plan = self.plan_source.resolve(hook_input)
        if not plan:
            self._log(session_id, counter, decision="allow", reason="no-plan-content")
            return HookDecision.allow(SKIP_NO_PLAN)

        review = self._call_engine(hook_input, plan, counter)
        if isinstance(review, HookDecision):
            return review

        verdict = extract_verdict(review)
        return self._route_verdict(session_id, counter, verdict, review, plan)

    def _ack_check(self, session_id: str, plan: Optional[str]) -> Optional[HookDecision]:
        outcome = self.ack.check(session_id, fingerprint(plan) if plan else "")
        if outcome is AckOutcome.LEGACY:
            self._resolve_session(session_id)
            self._log(session_id, None, decision="allow", reason="ack-legacy-marker")
            return HookDecision.allow(
                f"## Red Team Review - {self.engine} - APPROVED\n\nReview already passed."
            )
        if outcome is AckOutcome.CONFIRMED:
            self._resolve_session(session_id)
            self._log(session_id, None, decision="allow", reason="ack-confirmed")
            return HookDecision.allow(
                f"## Red Team Review - {self.engine} - CONFIRMED\n\n"
                "Review already passed for this plan, confirmed. Proceeding."
            )
        # STALE: marker dropped by the controller, re-review from scratch
        return None

    def _safety_valves(self, session_id: str, counter: CounterRecord) -> Optional[HookDecision]:
        review = self.config.review

        if counter.total >= review.max_total_rounds:
            # Tombstone: the counter stays so every later call is blocked too.
            self._log(session_id, counter, decision="deny", reason="global-safety-valve")
            return HookDecision.deny(
                "## Red Team Review - HARD STOP\n\n"
                f"Review reached the global limit ({counter.total}/{review.max_total_rounds}) "
                "with unresolved findings. The plan is blocked. Stop the current work "
                "and escalate to the user for a manual decision."
            )

        if counter.attempt >= review.max_rounds:
            self.counters.clear(session_id)
            self._log(session_id, counter, decision="allow", reason="non-critical-safety-valve")
            return HookDecision.allow(
                f"## Red Team Review - {self.engine} - ESCALATED\n\n"
                f"Non-critical negotiation reached its limit ({counter.attempt}/{review.max_rounds}) "
                "without agreement. The plan goes to the user for the final call."
            )

        return None

    def _call_engine(
        self,
        hook_input: HookInput,
        plan: str,
        counter: CounterRecord,
    ) -> str | HookDecision:
        session_id = hook_input.session_id
        prompt = compose_prompt(
            instructions=self.instructions,
            context=collect_context(self.config, hook_input),
            plan=plan,
            total_rounds=counter.total,
            use_system_channel=self.invoker.uses_system_prompt_channel(),
        )

        try:
            review = self.invoker.invoke(prompt.body, system_prompt=prompt.system_prompt)
        except EngineNotFoundError as e:
            logger.warning("%s", e)
            self._log(session_id, counter, decision="allow", reason="engine-not-found",
                      engine=self.engine)
            return HookDecision.allow(f"[WARNING] {e}")
        except EngineExhaustedError as e:
            logger.warning("%s", e)
            self._log(session_id, counter, decision="allow", reason="engine-exhausted",
                      engine=self.engine)
            return HookDecision.allow(
                "[WARNING] engine call failed (retried), review skipped. "
                f"See {self.decisions.location}"
            )

        if not review or not review.strip():
            self._log(session_id, counter, decision="allow", reason="engine-empty",
                      engine=self.engine)
            return HookDecision.allow("[WARNING] engine returned no review, review skipped")
        return review

    def _route_verdict(
        self,
        session_id: str,
        counter: CounterRecord,
        verdict: Verdict,
        review: str,
        plan: str,
    ) -> HookDecision:
        limits = self.config.review

        if verdict is Verdict.APPROVE:
            # A revised plan after a stale marker starts a fresh negotiation.
            self.counters.clear(session_id)
            self.ack.mark_pending(session_id, fingerprint(plan))
            self._log(session_id, counter, verdict=verdict.value, decision="deny",
                      reason="approve-pending-ack")
            header = f"Red Team Review - {self.engine} - APPROVED"
            if counter.total > 0:
                header += f" (Round {counter.total + 1})"
            return HookDecision.deny(
                f"## {header}\n\n"
                "The review passed. Call ExitPlanMode again with the same plan to proceed.\n\n"
                f"---\n\n{review}"
            )

        if verdict is Verdict.REJECT:
            updated = counter.after_reject()
            header = (
                f"Red Team Review - {self.engine} - REJECT "
                f"(Round {updated.total}/{limits.max_total_rounds})"
            )
            phase = (
                "The review found Critical issues. All Critical items must be resolved "
                "before the negotiation counter starts."
            )
        else:
            updated = counter.after_concerns()
            remaining = max(limits.max_rounds - updated.attempt, 0)
            header = (
                f"Red Team Review - {self.engine} - CONCERNS "
                f"(Round {updated.attempt}/{limits.max_rounds})"
            )
            phase = (
                f"Negotiation rounds remaining: {remaining}. If no agreement is reached, "
                "the plan goes to the user for the final call."
            )

        self.counters.save(session_id, updated)
        self._log(session_id, updated, verdict=verdict.value, decision="deny")
        return HookDecision.deny(
            f"## {header}\n\n"
            f"{phase}\n\n"
            "You have two options:\n"
            "1. If the findings are valid, revise the plan and call ExitPlanMode again\n"
            "2. If you believe a finding is wrong, add your rebuttal to the plan and "
            "call ExitPlanMode again\n\n"
            f"---\n\n{review}"
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _resolve_session(self, session_id: str) -> None:
        self.ack.resolve(session_id)
        self.counters.clear(session_id)

    def _log(self, session_id: str, counter: Optional[CounterRecord], **fields: object) -> None:
        self.decisions.record(session_id, counter, self.config, **fields)
