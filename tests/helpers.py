"""
In-memory collaborators shared by the test modules.

No real interpreter, screen or advisory service is involved.
"""

import asyncio
from typing import List, Optional, Sequence

from script_healer.advisory import AdvisoryClient
from script_healer.collaborators import ScriptInterpreter, SnapshotCapture
from script_healer.exceptions import AdvisoryError, CaptureUnavailable
from script_healer.models import Bounds, ExecutionOutcome, MonitoringOptions, UIElement, UISnapshot


def element(text=None, bounds=(0, 0, 100, 50), kind="android.widget.Button", element_id=None,
            description=None, interactable=True, visible=True, **kwargs) -> UIElement:
    return UIElement(
        kind=kind,
        bounds=Bounds(*bounds),
        element_id=element_id,
        text=text,
        description=description,
        interactable=interactable,
        visible=visible,
        **kwargs,
    )


def snapshot(*elements: UIElement) -> UISnapshot:
    return UISnapshot(elements=elements)


def fast_options(**overrides) -> MonitoringOptions:
    values = dict(max_attempts=3, capture_timeout=1, advisory_timeout=1, session_timeout=None, retry_delay=0)
    values.update(overrides)
    return MonitoringOptions(**values)


FAILURE = ExecutionOutcome(success=False, error_message="Element text(\"Login\") not found")
SUCCESS = ExecutionOutcome(success=True, duration=0.1)


class ScriptedInterpreter(ScriptInterpreter):
    """Returns queued outcomes in order; the last one repeats. Exceptions are raised."""

    def __init__(self, outcomes: Sequence, delay: float = 0):
        self.outcomes = list(outcomes)
        self.delay = delay
        self.executed: List[str] = []

    async def execute(self, script: str) -> ExecutionOutcome:
        self.executed.append(script)
        if self.delay:
            await asyncio.sleep(self.delay)
        outcome = self.outcomes[min(len(self.executed), len(self.outcomes)) - 1]
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


class StaticCapture(SnapshotCapture):
    """Returns the given snapshots in turn, repeating the last one."""

    def __init__(self, *snapshots: UISnapshot):
        self.snapshots = list(snapshots) or [UISnapshot()]
        self.calls = 0

    async def capture(self) -> UISnapshot:
        self.calls += 1
        return self.snapshots[min(self.calls, len(self.snapshots)) - 1]


class FailingCapture(SnapshotCapture):
    def __init__(self, error: Optional[BaseException] = None):
        self.error = error or CaptureUnavailable("screen locked")
        self.calls = 0

    async def capture(self) -> UISnapshot:
        self.calls += 1
        raise self.error


class FailingAdvisory(AdvisoryClient):
    def __init__(self):
        self.calls = 0

    async def diagnose(self, prompt: str) -> str:
        self.calls += 1
        raise AdvisoryError("service unavailable")

    async def generate(self, prompt: str) -> str:
        self.calls += 1
        raise AdvisoryError("service unavailable")


class SlowAdvisory(AdvisoryClient):
    def __init__(self, delay: float = 5):
        self.delay = delay

    async def diagnose(self, prompt: str) -> str:
        await asyncio.sleep(self.delay)
        return '{"primary_cause": "too-late", "suggested_fixes": []}'

    async def generate(self, prompt: str) -> str:
        await asyncio.sleep(self.delay)
        return "too_late();"


class CannedAdvisory(AdvisoryClient):
    """Replies with fixed text and remembers the prompts it was given."""

    def __init__(self, diagnosis_reply: str = "", generation_reply: str = ""):
        self.diagnosis_reply = diagnosis_reply
        self.generation_reply = generation_reply
        self.prompts: List[str] = []

    async def diagnose(self, prompt: str) -> str:
        self.prompts.append(prompt)
        return self.diagnosis_reply

    async def generate(self, prompt: str) -> str:
        self.prompts.append(prompt)
        return self.generation_reply


class GatedAdvisory(AdvisoryClient):
    """Diagnosis fails fast; generation blocks until the gate opens."""

    def __init__(self, generation_reply: str):
        self.generation_reply = generation_reply
        self.entered = asyncio.Event()
        self.gate = asyncio.Event()

    async def diagnose(self, prompt: str) -> str:
        raise AdvisoryError("diagnosis disabled")

    async def generate(self, prompt: str) -> str:
        self.entered.set()
        await self.gate.wait()
        return self.generation_reply
