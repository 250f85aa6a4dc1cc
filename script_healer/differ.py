"""
Snapshot Differ

Compares two UI snapshots and reports what changed between them.

Elements are matched by key: the stable element id when there is one,
otherwise bounds + text. For an element present in both snapshots only the
first matching change is reported, checked in this order:

1. TEXT_CHANGED
2. POSITION_CHANGED
3. VISIBILITY_CHANGED
4. ELEMENT_MODIFIED (any other field)

Text is checked first because a relabelled control says more about a broken
selector than a moved one. Diagnosis output depends on this order.
"""

from typing import Dict, List, Optional

from script_healer.models import ChangeType, ScreenChange, UIElement, UISnapshot


def index_elements(snapshot: UISnapshot) -> Dict[str, UIElement]:
    """Map element key -> element. Later duplicates win."""
    return {element.key: element for element in snapshot.elements}


def classify_change(key: str, old: UIElement, new: UIElement) -> Optional[ScreenChange]:
    """Return the single change between two versions of one element, or None."""
    if old == new:
        return None
    if old.text != new.text:
        return ScreenChange(ChangeType.TEXT_CHANGED, key, new, old.text, new.text)
    if old.bounds != new.bounds:
        return ScreenChange(ChangeType.POSITION_CHANGED, key, new, old.bounds, new.bounds)
    if old.visible != new.visible:
        return ScreenChange(ChangeType.VISIBILITY_CHANGED, key, new, old.visible, new.visible)
    return ScreenChange(ChangeType.ELEMENT_MODIFIED, key, new)


def diff(before: UISnapshot, after: UISnapshot) -> List[ScreenChange]:
    """
    Compare two snapshots.

    Returns added elements (in `after` order), then removed elements (in
    `before` order), then changed elements (in `after` order).
    """
    before_index = index_elements(before)
    after_index = index_elements(after)

    changes: List[ScreenChange] = []

    for key, element in after_index.items():
        if key not in before_index:
            changes.append(ScreenChange(ChangeType.ELEMENT_ADDED, key, element))

    for key, element in before_index.items():
        if key not in after_index:
            changes.append(ScreenChange(ChangeType.ELEMENT_REMOVED, key, element))

    for key, element in after_index.items():
        if key in before_index:
            change = classify_change(key, before_index[key], element)
            if change:
                changes.append(change)

    return changes


def summarize_changes(changes: List[ScreenChange], limit: int = 10) -> List[str]:
    """Human-readable lines for prompts and logs."""
    lines = [change.describe() for change in changes[:limit]]
    if len(changes) > limit:
        lines.append(f"... and {len(changes) - limit} more")
    return lines
