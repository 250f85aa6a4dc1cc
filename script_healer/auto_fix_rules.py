"""
Auto-Fix Rules for Self-Healing Scripts

Line-level rewrites that can be applied to a failing automation script
without parsing it:

1. COORDINATE_CLICK: `click(x, y)` -> lookup of the best matching element on
   the current screen, guarded by an existence check
2. SETTLE_DELAY: `sleep(ms)` before the first action when the script never waits
3. EXISTENCE_CHECK: `text("OK").click()` -> lookup + existence check, unless the
   script already guards that selector or wraps its actions in try

All applicable rules run in one pass. Nothing here touches the network or
executes the script.
"""

import json
import re
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Set, Tuple

from script_healer.config import Config
from script_healer.models import UIElement, UISnapshot

COORDINATE_CLICK = re.compile(r'(?<![\w.])(?P<action>click|longClick)\s*\(\s*(?P<x>\d+)\s*,\s*(?P<y>\d+)\s*\)')

SELECTOR = r'(?:text|desc|id|className|textContains|descContains|textStartsWith|idContains)\((?:"[^"]*"|\'[^\']*\')\)'
DIRECT_ACTION = re.compile(
    r'^(?P<indent>\s*)(?P<selector>' + SELECTOR + r')\.(?P<action>click|longClick)\(\)\s*;?\s*(?://.*)?$'
)
EXISTING_GUARD = re.compile(r'(' + SELECTOR + r')\s*\.\s*(?:exists\s*\(\s*\)|findOne\s*\()')
TRY_BLOCK = re.compile(r'\btry\s*\{')

WAIT_CALL = re.compile(r'\b(?:sleep|waitFor\w*)\s*\(')
ACTION_CALL = re.compile(
    r'(?<![\w.])(?:click|longClick|press|swipe|gesture|setText|input)\s*\('
    r'|\.(?:click|longClick|setText|scrollForward|scrollBackward)\s*\('
)
LINE_COMMENT = re.compile(r'//\s*(.*)$')


@dataclass
class AutoFixResult:
    """Script after the rule pass and the names of the rules that changed it."""
    script: str
    fixes_applied: List[str] = field(default_factory=list)

    @property
    def applied(self) -> bool:
        return bool(self.fixes_applied)


def js_string(value: str) -> str:
    return json.dumps(value, ensure_ascii=False)


def selector_for(element: UIElement) -> str:
    """Most specific selector for an element: text, then desc, then id, then kind."""
    if element.text and element.text.strip():
        return f"text({js_string(element.text)})"
    if element.description and element.description.strip():
        return f"desc({js_string(element.description)})"
    if element.element_id and element.element_id.strip():
        return f"id({js_string(element.element_id.rsplit(':', 1)[-1].rsplit('/', 1)[-1])})"
    return f"className({js_string(element.simple_kind)})"


def selector_suggestions(element: UIElement) -> List[str]:
    """All selectors that could target an element, for prompts."""
    suggestions = []
    if element.text and element.text.strip():
        suggestions.append(f"text({js_string(element.text)})")
        if len(element.text) > 10:
            suggestions.append(f"textContains({js_string(element.text[:8])})")
    if element.description and element.description.strip():
        suggestions.append(f"desc({js_string(element.description)})")
    if element.element_id and element.element_id.strip():
        suggestions.append(f"id({js_string(element.element_id.rsplit(':', 1)[-1].rsplit('/', 1)[-1])})")
    suggestions.append(f"className({js_string(element.simple_kind)})")
    return suggestions


def _words(text: str) -> Set[str]:
    return set(re.findall(r'\w+', text.lower()))


def match_score(element: UIElement, context: str) -> float:
    """How well an element's text or description matches the context, 0..1."""
    context = context.lower()
    best = 0.0
    context_words = _words(context)
    for label in (element.text, element.description):
        if not label or not label.strip():
            continue
        label = label.lower().strip()
        if re.search(r'(?<!\w)' + re.escape(label) + r'(?!\w)', context):
            return 1.0
        label_words = _words(label)
        if label_words:
            best = max(best, len(label_words & context_words) / len(label_words))
    return best


def choose_element(elements: Sequence[UIElement], x: int, y: int, context: str) -> Optional[UIElement]:
    """
    Pick the element a stale coordinate click most likely meant.

    Best text/description match against the context wins; ties go to the
    element containing the old point, then to the nearest one.
    """
    if not elements:
        return None

    def rank(element: UIElement) -> Tuple[float, bool, float]:
        return (match_score(element, context), element.bounds.contains(x, y), -element.bounds.distance_to(x, y))

    return max(elements, key=rank)


def guarded_action(indent: str, selector: str, action: str, timeout_ms: int) -> List[str]:
    return [
        f"{indent}var target = {selector}.findOne({timeout_ms});",
        f"{indent}if (target) {{",
        f"{indent}    target.{action}();",
        f"{indent}}} else {{",
        f"{indent}    toast({js_string('Element not found: ' + selector)});",
        f"{indent}}}",
    ]


def replace_coordinate_click(line: str, elements: Sequence[UIElement], context: str,
                             timeout_ms: int) -> Optional[List[str]]:
    """Rewrite every fixed-coordinate click on this line, or None if there is nothing to do."""
    if line.lstrip().startswith('//'):
        return None
    comment = LINE_COMMENT.search(line)
    statement = line[:comment.start()] if comment else line
    matches = list(COORDINATE_CLICK.finditer(statement))
    if not matches:
        return None
    line_context = f"{context} {comment.group(1)}" if comment else context

    if len(matches) == 1 and statement.strip().rstrip(';').strip() == matches[0].group(0):
        match = matches[0]
        element = choose_element(elements, int(match.group('x')), int(match.group('y')), line_context)
        if element is None:
            return None
        indent = line[:len(line) - len(line.lstrip())]
        return guarded_action(indent, selector_for(element), match.group('action'), timeout_ms)

    def lookup(match):
        element = choose_element(elements, int(match.group('x')), int(match.group('y')), line_context)
        if element is None:
            return match.group(0)
        return f"{selector_for(element)}.findOne({timeout_ms}).{match.group('action')}()"

    rewritten = COORDINATE_CLICK.sub(lookup, statement)
    if rewritten == statement:
        return None
    return [rewritten + line[len(statement):]]


def guarded_selectors(script: str) -> Set[str]:
    """Selectors the script already checks with exists() or looks up with findOne()."""
    return set(EXISTING_GUARD.findall(script))


def wrap_direct_action(line: str, timeout_ms: int, guarded: Set[str] = frozenset()) -> Optional[List[str]]:
    """Guard `selector.click()` with an existence check, or None if not applicable."""
    match = DIRECT_ACTION.match(line)
    if not match or match.group('selector') in guarded:
        return None
    return guarded_action(match.group('indent'), match.group('selector'), match.group('action'), timeout_ms)


def find_first_action(lines: Sequence[str]) -> Optional[int]:
    for index, line in enumerate(lines):
        if line.lstrip().startswith('//'):
            continue
        if ACTION_CALL.search(line) or COORDINATE_CLICK.search(line):
            return index
    return None


def apply_auto_fixes(script: str, snapshot: Optional[UISnapshot], context: str = "",
                     settle_delay_ms: int = Config.SETTLE_DELAY_MS,
                     find_timeout_ms: int = Config.FIND_TIMEOUT_MS) -> AutoFixResult:
    """
    Apply every applicable rule to a script in a single pass.

    Args:
        script: Script that just failed
        snapshot: Current screen, used to resolve coordinate clicks
        context: Free text (intent, diagnosis) used to match elements by label
    """
    lines = script.split('\n')
    elements = snapshot.interactable_elements() if snapshot else []

    # a try block anywhere means the script already handles lookup failures
    wrap_actions = not TRY_BLOCK.search(script)
    guarded = guarded_selectors(script)

    settle_at = None
    if not WAIT_CALL.search(script):
        settle_at = find_first_action(lines)

    fixes = []
    output = []
    for index, line in enumerate(lines):
        if index == settle_at:
            indent = line[:len(line) - len(line.lstrip())]
            output.append(f"{indent}sleep({settle_delay_ms});")
            fixes.append("settle_delay")

        rewritten = replace_coordinate_click(line, elements, context, find_timeout_ms)
        if rewritten is not None:
            output.extend(rewritten)
            fixes.append("coordinate_click")
            continue

        rewritten = wrap_direct_action(line, find_timeout_ms, guarded) if wrap_actions else None
        if rewritten is not None:
            output.extend(rewritten)
            fixes.append("existence_check")
            continue

        output.append(line)

    # one entry per rule, in first-applied order
    return AutoFixResult(script='\n'.join(output), fixes_applied=list(dict.fromkeys(fixes)))
