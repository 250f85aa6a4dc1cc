"""Script Healer

Self-healing execution of UI-automation scripts:
- models: snapshots, diagnoses, modifications, sessions
- differ: snapshot comparison
- diagnosis: failure diagnosis (advisory + rules)
- auto_fix_rules / patch_generator: script repair (advisory + rules)
- orchestrator: the bounded retry loop
- store: live sessions and status stream
"""

from .exceptions import (
    AdvisoryError,
    AdvisoryTimeout,
    CaptureUnavailable,
    HealerError,
    InterpreterUnavailable,
    SessionNotFound,
    SessionOptionsError,
)
from .models import (
    Bounds,
    ChangeType,
    DiagnosisSource,
    ExecutionOutcome,
    FailureDiagnosis,
    MonitoringOptions,
    MonitoringSession,
    ScreenChange,
    ScriptModification,
    SessionStatus,
    StatusEvent,
    UIElement,
    UISnapshot,
    UserReference,
)
from .differ import diff
from .diagnosis import DiagnosisEngine
from .patch_generator import PatchGenerator
from .store import SessionStore
from .orchestrator import Orchestrator

__all__ = [
    "AdvisoryError",
    "AdvisoryTimeout",
    "CaptureUnavailable",
    "HealerError",
    "InterpreterUnavailable",
    "SessionNotFound",
    "SessionOptionsError",
    "Bounds",
    "ChangeType",
    "DiagnosisSource",
    "ExecutionOutcome",
    "FailureDiagnosis",
    "MonitoringOptions",
    "MonitoringSession",
    "ScreenChange",
    "ScriptModification",
    "SessionStatus",
    "StatusEvent",
    "UIElement",
    "UISnapshot",
    "UserReference",
    "diff",
    "DiagnosisEngine",
    "PatchGenerator",
    "SessionStore",
    "Orchestrator",
]
