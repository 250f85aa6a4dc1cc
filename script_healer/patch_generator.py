"""
Patch Generator

Produces the candidate script for the next attempt. The advisory service is
asked to rewrite the script first; if it fails, times out or replies with
nothing usable, the rules in `auto_fix_rules` rewrite it instead.

The candidate is never executed or validated here.
"""

import re
from typing import Optional

from script_healer.advisory import AdvisoryClient, bounded_call
from script_healer.auto_fix_rules import apply_auto_fixes, selector_suggestions
from script_healer.config import Config
from script_healer.diagnosis import describe_intent
from script_healer.logger import get_logger
from script_healer.models import FailureDiagnosis, UISnapshot, UserReference

logger = get_logger('patch_generator')

CODE_FENCE = re.compile(r'```[\w+-]*[ \t]*\n(?P<code>[\s\S]*?)```')


def build_fix_prompt(original_script: str, diagnosis: FailureDiagnosis, snapshot: Optional[UISnapshot],
                     user_intent: Optional[UserReference], attempt_number: int) -> str:
    lines = [
        "Repair this UI-automation script.",
        "",
        "Script:",
        "```javascript",
        original_script,
        "```",
        "",
        f"Failure cause: {diagnosis.primary_cause}",
    ]
    if diagnosis.explanation:
        lines.append(f"Details: {diagnosis.explanation}")
    lines.append("Suggested fixes:")
    lines += [f"- {fix}" for fix in diagnosis.suggested_fixes]

    lines += ["", "Interactive elements on the current screen:"]
    elements = snapshot.interactable_elements()[:10] if snapshot else []
    for element in elements:
        lines.append(f"- {element.simple_kind}: {element.label or '(no text)'}")
        lines.append(f"  selectors: {' or '.join(selector_suggestions(element))}")
        lines.append(f"  center: ({element.bounds.center_x}, {element.bounds.center_y})")
    if not elements:
        lines.append("(none captured)")

    intent_lines = describe_intent(user_intent)
    if intent_lines:
        lines += ["", *intent_lines]

    lines += ["", f"This is repair attempt {attempt_number}. Return only the repaired script."]
    return "\n".join(lines)


def cleanup_generated_script(content: str) -> str:
    """Strip markdown code fences from an advisory reply."""
    match = CODE_FENCE.search(content or "")
    if match:
        return match.group('code').strip()
    return (content or "").replace("```javascript", "").replace("```js", "").replace("```", "").strip()


def rule_context(diagnosis: FailureDiagnosis, user_intent: Optional[UserReference]) -> str:
    parts = []
    if user_intent and user_intent.description:
        parts.append(user_intent.description)
    if diagnosis.explanation:
        parts.append(diagnosis.explanation)
    return " ".join(parts)


class PatchGenerator:
    """Advisory-first script repair with a rule-based fallback."""

    def __init__(self, advisory: Optional[AdvisoryClient] = None, timeout: float = Config.ADVISORY_TIMEOUT,
                 settle_delay_ms: int = Config.SETTLE_DELAY_MS, find_timeout_ms: int = Config.FIND_TIMEOUT_MS):
        self.advisory = advisory
        self.timeout = timeout
        self.settle_delay_ms = settle_delay_ms
        self.find_timeout_ms = find_timeout_ms

    async def generate_patch(self, original_script: str, diagnosis: FailureDiagnosis,
                             current_snapshot: Optional[UISnapshot], attempt_number: int,
                             user_intent: Optional[UserReference] = None,
                             timeout: Optional[float] = None) -> str:
        if self.advisory is not None:
            prompt = build_fix_prompt(original_script, diagnosis, current_snapshot, user_intent, attempt_number)
            try:
                reply = await bounded_call(self.advisory.generate, prompt, timeout or self.timeout)
                candidate = cleanup_generated_script(reply)
                if candidate:
                    logger.info(f"Advisory patch generated for attempt {attempt_number}")
                    return candidate
                logger.warning("Advisory patch was empty, using rules")
            except Exception as e:
                logger.warning(f"Advisory patch failed, using rules: {e}")

        return self.rule_based_patch(original_script, diagnosis, current_snapshot, user_intent)

    def rule_based_patch(self, original_script: str, diagnosis: FailureDiagnosis,
                         current_snapshot: Optional[UISnapshot],
                         user_intent: Optional[UserReference] = None) -> str:
        result = apply_auto_fixes(
            original_script,
            current_snapshot,
            context=rule_context(diagnosis, user_intent),
            settle_delay_ms=self.settle_delay_ms,
            find_timeout_ms=self.find_timeout_ms,
        )
        if result.applied:
            logger.info(f"Rule-based fixes applied: {', '.join(result.fixes_applied)}")
        else:
            logger.info("No rule-based fix applies - retrying script unchanged")
        return result.script
