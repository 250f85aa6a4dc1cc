"""
Diagnosis Engine

Explains why a script attempt failed before anything tries to fix it.

Two tiers:
1. Advisory service (bounded by a timeout), asked for a JSON verdict.
2. Deterministic rules over the error text. Always available, never raises,
   and never more confident than RULE_CONFIDENCE_CAP.
"""

import json
import re
from typing import List, Optional, Sequence

from script_healer.advisory import AdvisoryClient, bounded_call
from script_healer.config import Config
from script_healer.differ import summarize_changes
from script_healer.logger import get_logger
from script_healer.models import (
    ChangeType,
    DiagnosisSource,
    FailureDiagnosis,
    ScreenChange,
    UISnapshot,
    UserReference,
)

logger = get_logger('diagnosis')

ELEMENT_NOT_FOUND = "element-not-found"
STALE_COORDINATES = "stale-coordinates"
PERMISSION_DENIED = "permission-denied"
TIMEOUT = "timeout"
GENERIC_LOGIC_ERROR = "generic-logic-error"

RULE_CONFIDENCE_CAP = 0.7
ADVISORY_DEFAULT_CONFIDENCE = 0.8

# Checked in this order; the first category with a matching pattern wins.
FAILURE_PATTERNS = [
    (ELEMENT_NOT_FOUND, [
        r"not found", r"can(?:no|')t find", r"could not find", r"unable to (?:find|locate)",
        r"no such element", r"\bnull\b", r"\bundefined\b", r"找不到",
    ]),
    (STALE_COORDINATES, [
        r"coordinate", r"\bbounds\b", r"out of (?:screen|range|bounds)", r"outside (?:the )?screen", r"坐标",
    ]),
    (PERMISSION_DENIED, [
        r"permission", r"denied", r"accessibility service", r"not allowed", r"权限",
    ]),
    (TIMEOUT, [
        r"time[sd]? ?out", r"deadline exceeded", r"超时",
    ]),
]

RULE_RECOMMENDATIONS = {
    ELEMENT_NOT_FOUND: (
        0.7,
        [
            "Use a more specific selector (text, desc or id) taken from the current screen",
            "Wait for the screen to finish loading before looking up the element",
            "Check that the expected screen is open",
        ],
    ),
    STALE_COORDINATES: (
        0.65,
        [
            "Replace fixed coordinates with an element lookup",
            "Update coordinates from the current screen",
            "Check coordinates are on screen before clicking",
        ],
    ),
    PERMISSION_DENIED: (
        0.6,
        [
            "Check that the accessibility service is enabled",
            "Add a permission check before the first action",
        ],
    ),
    TIMEOUT: (
        0.5,
        [
            "Increase wait times before and between actions",
            "Wait for the target element instead of sleeping a fixed time",
        ],
    ),
    GENERIC_LOGIC_ERROR: (
        0.3,
        [
            "Review the script logic",
            "Add error handling around element actions",
        ],
    ),
}


def classify_error(error_message: Optional[str]) -> str:
    """Map an error message to a failure category."""
    text = (error_message or "").lower()
    for category, patterns in FAILURE_PATTERNS:
        if any(re.search(pattern, text) for pattern in patterns):
            return category
    return GENERIC_LOGIC_ERROR


def rule_based_diagnosis(error_message: Optional[str],
                         changes: Sequence[ScreenChange] = ()) -> FailureDiagnosis:
    """Deterministic diagnosis from the error text. Never raises."""
    category = classify_error(error_message)
    confidence, fixes = RULE_RECOMMENDATIONS[category]

    observations = []
    if error_message:
        observations.append(f"Error: {error_message.strip()[:200]}")
    text_changes = [c for c in changes if c.change_type == ChangeType.TEXT_CHANGED]
    if text_changes:
        observations.append("Screen text changed: " + "; ".join(c.describe() for c in text_changes[:3]))
    removed = [c for c in changes if c.change_type == ChangeType.ELEMENT_REMOVED]
    if removed:
        observations.append(f"{len(removed)} element(s) disappeared from the screen")

    return FailureDiagnosis(
        primary_cause=category,
        suggested_fixes=fixes,
        confidence=min(confidence, RULE_CONFIDENCE_CAP),
        source=DiagnosisSource.RULE_BASED,
        explanation=". ".join(observations),
    )


def describe_elements(snapshot: Optional[UISnapshot], limit: int = 10) -> List[str]:
    if snapshot is None:
        return ["(screen not captured)"]
    lines = []
    for element in snapshot.elements[:limit]:
        lines.append(
            f"- {element.simple_kind}: {element.label or '(no text)'} "
            f"at ({element.bounds.left},{element.bounds.top}) clickable: {element.interactable}"
        )
    return lines or ["(no elements)"]


def describe_intent(intent: Optional[UserReference]) -> List[str]:
    if intent is None:
        return []
    lines = []
    if intent.description:
        lines.append(f"Expected behaviour: {intent.description}")
    if intent.image_ref:
        lines.append(f"The user supplied a reference image ({intent.image_ref}) of the target element")
    return lines


def build_diagnosis_prompt(script: str, error_message: Optional[str], snapshot: Optional[UISnapshot],
                           changes: Sequence[ScreenChange], user_intent: Optional[UserReference]) -> str:
    lines = [
        "Analyse why this UI-automation script failed.",
        "",
        "Script:",
        "```javascript",
        script,
        "```",
        "",
        f"Error: {error_message or 'unknown error'}",
        "",
        "Current screen elements (first 10):",
        *describe_elements(snapshot),
    ]
    if changes:
        lines += ["", "Screen changes during the attempt:", *summarize_changes(list(changes))]
    intent_lines = describe_intent(user_intent)
    if intent_lines:
        lines += ["", *intent_lines]
    lines += ["", "Identify the primary cause and suggest concrete fixes."]
    return "\n".join(lines)


def parse_advisory_diagnosis(response_text: str) -> FailureDiagnosis:
    """Parse the advisory JSON verdict. Raises ValueError if malformed."""
    json_match = re.search(r'\{[\s\S]*\}', response_text or "")
    if not json_match:
        raise ValueError("No JSON object in advisory reply")

    data = json.loads(json_match.group())
    if not isinstance(data, dict):
        raise ValueError("Advisory reply is not a JSON object")

    primary_cause = data.get("primary_cause")
    if not isinstance(primary_cause, str) or not primary_cause.strip():
        raise ValueError("Advisory reply has no primary_cause")

    fixes = data.get("suggested_fixes", [])
    if not isinstance(fixes, list):
        raise ValueError("suggested_fixes must be a list")
    fixes = [str(f).strip() for f in fixes if str(f).strip()] or ["Review the script logic"]

    try:
        confidence = float(data.get("confidence", ADVISORY_DEFAULT_CONFIDENCE))
    except (TypeError, ValueError):
        confidence = ADVISORY_DEFAULT_CONFIDENCE

    return FailureDiagnosis(
        primary_cause=primary_cause.strip(),
        suggested_fixes=fixes,
        confidence=confidence,
        source=DiagnosisSource.ADVISORY,
        explanation=str(data.get("explanation") or ""),
    )


class DiagnosisEngine:
    """Advisory-first failure diagnosis with a rule-based fallback."""

    def __init__(self, advisory: Optional[AdvisoryClient] = None, timeout: float = Config.ADVISORY_TIMEOUT):
        self.advisory = advisory
        self.timeout = timeout

    async def diagnose(self, script: str, error_message: Optional[str],
                       snapshot_before: Optional[UISnapshot], snapshot_after: Optional[UISnapshot],
                       changes: Sequence[ScreenChange], user_intent: Optional[UserReference],
                       timeout: Optional[float] = None) -> FailureDiagnosis:
        if self.advisory is not None:
            prompt = build_diagnosis_prompt(
                script, error_message, snapshot_after or snapshot_before, changes, user_intent
            )
            try:
                reply = await bounded_call(self.advisory.diagnose, prompt, timeout or self.timeout)
                diagnosis = parse_advisory_diagnosis(reply)
                logger.info(f"Advisory diagnosis: {diagnosis.primary_cause} ({diagnosis.confidence:.0%})")
                return diagnosis
            except ValueError as e:
                logger.warning(f"Malformed advisory diagnosis, using rules: {e}")
            except Exception as e:
                logger.warning(f"Advisory diagnosis failed, using rules: {e}")

        diagnosis = rule_based_diagnosis(error_message, changes)
        logger.info(f"Rule-based diagnosis: {diagnosis.primary_cause} ({diagnosis.confidence:.0%})")
        return diagnosis
