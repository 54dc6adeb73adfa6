"""Review prompt composition.

Static instructions are a single source for both engines: Claude gets them
on its system-prompt channel, Gemini gets them prefixed to the body.
Dynamic sections are ordered stable to volatile, with the round context
always last.
"""

from __future__ import annotations

from dataclasses import dataclass

from plan_review.core.config import PromptLoader
from plan_review.review.context import ReviewContext

SYSTEM_PROMPT_FILE = "review_system.txt"
NOT_AVAILABLE = "<not available>"

DEFAULT_SYSTEM_INSTRUCTIONS = """# Red Team Plan Review

You are a senior software architect performing an ADVERSARIAL review of the
following implementation plan. Your job is to find flaws before implementation
begins. Be direct and specific, no generic advice.

Keep your response under 2000 characters.

## Review Criteria
1. **Correctness**: does the plan actually solve the stated problem?
2. **Completeness**: missing steps, edge cases, error handling?
3. **Simplicity**: is there a simpler approach? Unnecessary complexity?
4. **Safety**: security risks, data loss, backwards-compatibility breaks?
5. **Testability**: can changes be verified? Missing test scenarios?
6. **Architecture fit**: consistent with project patterns?

## Severity Definitions
- **[Critical]** Blocker: security vulnerabilities, data loss, logic errors producing wrong results, breaking changes to existing behavior, fundamental approach flaws
- **[Major]** Significant gap: missing error handling on critical paths, poor architecture decisions, performance issues under normal load, incomplete implementation
- **[Minor]** Polish: naming, style, documentation gaps, minor optimization opportunities

## Verdict Rules
- **APPROVE**: no issues, or only Minor items remaining
- **CONCERNS**: Major items present but no Critical
- **REJECT**: Critical items present

The verdict is the structured severity signal. The automation routes on verdict
tags only and never scans the body, so keep verdict and severity consistent.

## Output Format
- FIRST line must be a verdict tag: <verdict>APPROVE</verdict> or <verdict>CONCERNS</verdict> or <verdict>REJECT</verdict>
- List issues, each prefixed with a severity tag: `[Critical]`, `[Major]`, or `[Minor]`
- Each issue format: `[Severity] description -> impact -> suggested fix`
- If a severity level has no issues, omit it entirely
- End with brief strengths of the plan (if any)

IMPORTANT: The verdict MUST be wrapped in <verdict></verdict> XML tags on the
very first line. This is machine-parsed. Do NOT place verdict keywords anywhere
else in your response without the tags."""


@dataclass
class ReviewPrompt:
    system_prompt: str  # empty when instructions are inlined in body
    body: str


def load_system_instructions(loader: PromptLoader | None = None) -> str:
    loader = loader or PromptLoader()
    return loader.load(SYSTEM_PROMPT_FILE, default=DEFAULT_SYSTEM_INSTRUCTIONS)


def compose_prompt(
    instructions: str,
    context: ReviewContext,
    plan: str,
    total_rounds: int,
    use_system_channel: bool,
) -> ReviewPrompt:
    """Build the engine input for one review round.

    Args:
        instructions: Static reviewer instructions.
        context: Rules and user request gathered for this session.
        plan: Plan text under review.
        total_rounds: Non-approving rounds so far; > 0 adds a round context tail.
        use_system_channel: Keep instructions out of the body (Claude).
    """
    sections = [
        f"## Coding Standards (Author's Reference)\n{context.global_rules or NOT_AVAILABLE}",
        f"## Project Architecture\n{context.project_rules or NOT_AVAILABLE}",
        f"## User's Original Request\n{context.user_request or NOT_AVAILABLE}",
        f"## Plan to Review\n{plan}",
    ]
    if total_rounds > 0:
        sections.append(
            "## Consultation Context\n"
            f"This is round {total_rounds + 1} of adversarial review.\n"
            "The plan author may have revised or added rebuttals since the previous round.\n"
            "Evaluate the CURRENT plan on its merits. If prior concerns have been addressed, APPROVE."
        )
    body = "\n\n".join(sections) + "\n"

    if use_system_channel:
        return ReviewPrompt(system_prompt=instructions, body=body)
    return ReviewPrompt(system_prompt="", body=f"{instructions}\n\n{body}")
