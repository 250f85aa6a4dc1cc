"""
Data models for Script Healer.

Snapshots, diagnoses, modifications and sessions are frozen dataclasses: a new
capture, a new diagnosis or a new session state is always a new object. The
orchestrator publishes a fresh MonitoringSession on every change, so a reader
holding an older one never sees it move underneath them.
"""
from dataclasses import dataclass, field, asdict
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from script_healer.config import Config
from script_healer.exceptions import SessionOptionsError


class SessionStatus(Enum):
    MONITORING = "monitoring"
    EXECUTING = "executing"
    ANALYZING = "analyzing"
    COMPLETED = "completed"
    STOPPED = "stopped"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({SessionStatus.COMPLETED, SessionStatus.STOPPED, SessionStatus.ERROR})
ACTIVE_STATUSES = frozenset({SessionStatus.MONITORING, SessionStatus.EXECUTING, SessionStatus.ANALYZING})


class ChangeType(Enum):
    ELEMENT_ADDED = "element_added"
    ELEMENT_REMOVED = "element_removed"
    TEXT_CHANGED = "text_changed"
    POSITION_CHANGED = "position_changed"
    VISIBILITY_CHANGED = "visibility_changed"
    ELEMENT_MODIFIED = "element_modified"


class DiagnosisSource(Enum):
    RULE_BASED = "rule_based"
    ADVISORY = "advisory"


@dataclass(frozen=True)
class Bounds:
    """Screen rectangle of an element, in pixels."""
    left: int
    top: int
    right: int
    bottom: int

    @property
    def center_x(self) -> int:
        return (self.left + self.right) // 2

    @property
    def center_y(self) -> int:
        return (self.top + self.bottom) // 2

    def contains(self, x: int, y: int) -> bool:
        return self.left <= x <= self.right and self.top <= y <= self.bottom

    def distance_to(self, x: int, y: int) -> float:
        return ((self.center_x - x) ** 2 + (self.center_y - y) ** 2) ** 0.5

    def __str__(self) -> str:
        return f"[{self.left},{self.top}][{self.right},{self.bottom}]"

    @classmethod
    def from_value(cls, value) -> "Bounds":
        """Accept {left, top, right, bottom}, {x, y, width, height} or a 4-item list."""
        if isinstance(value, Bounds):
            return value
        if isinstance(value, (list, tuple)) and len(value) == 4:
            return cls(*(int(v) for v in value))
        if isinstance(value, dict):
            if 'width' in value:
                x, y = int(value.get('x', 0)), int(value.get('y', 0))
                return cls(x, y, x + int(value['width']), y + int(value.get('height', 0)))
            return cls(int(value.get('left', 0)), int(value.get('top', 0)),
                       int(value.get('right', 0)), int(value.get('bottom', 0)))
        raise ValueError(f"Unsupported bounds value: {value!r}")


@dataclass(frozen=True)
class UIElement:
    """One node of a UI snapshot."""
    kind: str
    bounds: Bounds
    element_id: Optional[str] = None
    text: Optional[str] = None
    description: Optional[str] = None
    interactable: bool = False
    scrollable: bool = False
    editable: bool = False
    enabled: bool = True
    visible: bool = True
    attributes: Dict[str, Any] = field(default_factory=dict)
    parent_id: Optional[str] = None  # hierarchy metadata only

    @property
    def key(self) -> str:
        """Stable identifier if there is one, else bounds + text."""
        if self.element_id:
            return self.element_id
        return f"{self.bounds}_{self.text}"

    @property
    def label(self) -> str:
        return self.text or self.description or ""

    @property
    def simple_kind(self) -> str:
        return self.kind.rsplit('.', 1)[-1] if self.kind else "View"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UIElement":
        return cls(
            kind=data.get('kind') or data.get('className') or 'View',
            bounds=Bounds.from_value(data.get('bounds', (0, 0, 0, 0))),
            element_id=data.get('element_id') or data.get('id'),
            text=data.get('text'),
            description=data.get('description') or data.get('desc'),
            interactable=bool(data.get('interactable', data.get('clickable', False))),
            scrollable=bool(data.get('scrollable', False)),
            editable=bool(data.get('editable', False)),
            enabled=bool(data.get('enabled', True)),
            visible=bool(data.get('visible', True)),
            attributes=dict(data.get('attributes') or {}),
            parent_id=data.get('parent_id'),
        )


@dataclass(frozen=True)
class UISnapshot:
    """Ordered, immutable read of the UI at one point in time."""
    elements: Tuple[UIElement, ...] = ()
    captured_at: datetime = field(default_factory=datetime.now)
    image_ref: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(self, 'elements', tuple(self.elements))

    def interactable_elements(self) -> List[UIElement]:
        return [e for e in self.elements if (e.interactable or e.editable) and e.visible]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "captured_at": self.captured_at.isoformat(),
            "image_ref": self.image_ref,
            "elements": [e.to_dict() for e in self.elements],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UISnapshot":
        elements = data.get('elements', [])
        captured_at = data.get('captured_at')
        return cls(
            elements=tuple(UIElement.from_dict(e) for e in elements),
            captured_at=datetime.fromisoformat(captured_at) if captured_at else datetime.now(),
            image_ref=data.get('image_ref') or data.get('screenshot'),
        )


@dataclass(frozen=True)
class ScreenChange:
    """One difference between two snapshots, produced by the differ."""
    change_type: ChangeType
    key: str
    element: UIElement
    old_value: Any = None
    new_value: Any = None

    def describe(self) -> str:
        label = self.element.label or self.element.simple_kind
        if self.change_type == ChangeType.ELEMENT_ADDED:
            return f"added {self.element.simple_kind} '{label}' at {self.element.bounds}"
        if self.change_type == ChangeType.ELEMENT_REMOVED:
            return f"removed {self.element.simple_kind} '{label}'"
        if self.change_type == ChangeType.TEXT_CHANGED:
            return f"text changed '{self.old_value}' -> '{self.new_value}'"
        if self.change_type == ChangeType.POSITION_CHANGED:
            return f"'{label}' moved {self.old_value} -> {self.new_value}"
        if self.change_type == ChangeType.VISIBILITY_CHANGED:
            return f"'{label}' visibility {self.old_value} -> {self.new_value}"
        return f"'{label}' modified"


@dataclass(frozen=True)
class FailureDiagnosis:
    """Why an attempt failed and what to try next."""
    primary_cause: str
    suggested_fixes: Tuple[str, ...]
    confidence: float
    source: DiagnosisSource
    explanation: str = ""

    def __post_init__(self):
        object.__setattr__(self, 'suggested_fixes', tuple(self.suggested_fixes))
        object.__setattr__(self, 'confidence', min(1.0, max(0.0, float(self.confidence))))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "primary_cause": self.primary_cause,
            "suggested_fixes": list(self.suggested_fixes),
            "confidence": self.confidence,
            "source": self.source.value,
            "explanation": self.explanation,
        }


@dataclass(frozen=True)
class ScriptModification:
    """Audit record of one failed attempt and the script that replaced it."""
    attempt_number: int
    script_before: str
    script_after: Optional[str]
    diagnosis: FailureDiagnosis
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "attempt_number": self.attempt_number,
            "script_before": self.script_before,
            "script_after": self.script_after,
            "diagnosis": self.diagnosis.to_dict(),
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass(frozen=True)
class UserReference:
    """What the user expects the script to do: a description, an image, or both."""
    description: Optional[str] = None
    image_ref: Optional[str] = None

    @property
    def kind(self) -> str:
        if self.description and self.image_ref:
            return "mixed"
        if self.image_ref:
            return "image"
        return "text"

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind, "description": self.description, "image_ref": self.image_ref}

    @classmethod
    def from_value(cls, value) -> "UserReference":
        if isinstance(value, UserReference):
            return value
        if isinstance(value, str):
            return cls(description=value)
        if isinstance(value, dict):
            return cls(description=value.get('description'), image_ref=value.get('image_ref'))
        raise SessionOptionsError(f"Unsupported intent reference: {value!r}")


def _is_number(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


@dataclass(frozen=True)
class MonitoringOptions:
    """Per-session retry and timeout policy."""
    max_attempts: int = Config.MAX_ATTEMPTS
    capture_timeout: float = Config.CAPTURE_TIMEOUT
    advisory_timeout: float = Config.ADVISORY_TIMEOUT
    session_timeout: Optional[float] = Config.SESSION_TIMEOUT
    retry_delay: float = Config.RETRY_DELAY
    enable_auto_fix: bool = True
    capture_on_failure: bool = True

    @classmethod
    def from_config(cls, **overrides) -> "MonitoringOptions":
        values = {
            "max_attempts": Config.MAX_ATTEMPTS,
            "capture_timeout": Config.CAPTURE_TIMEOUT,
            "advisory_timeout": Config.ADVISORY_TIMEOUT,
            "session_timeout": Config.SESSION_TIMEOUT,
            "retry_delay": Config.RETRY_DELAY,
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)

    def validate(self) -> "MonitoringOptions":
        if isinstance(self.max_attempts, bool) or not isinstance(self.max_attempts, int):
            raise SessionOptionsError("max_attempts must be an integer")
        if not 1 <= self.max_attempts <= Config.MAX_ATTEMPTS_LIMIT:
            raise SessionOptionsError(
                f"max_attempts must be between 1 and {Config.MAX_ATTEMPTS_LIMIT}, got {self.max_attempts}"
            )
        for name in ('capture_timeout', 'advisory_timeout', 'retry_delay'):
            if not _is_number(getattr(self, name)):
                raise SessionOptionsError(f"{name} must be a number")
        if self.session_timeout is not None and not _is_number(self.session_timeout):
            raise SessionOptionsError("session_timeout must be a number when set")
        for name in ('enable_auto_fix', 'capture_on_failure'):
            if not isinstance(getattr(self, name), bool):
                raise SessionOptionsError(f"{name} must be true or false")
        for name in ('capture_timeout', 'advisory_timeout'):
            if getattr(self, name) <= 0:
                raise SessionOptionsError(f"{name} must be positive")
        if self.session_timeout is not None and self.session_timeout <= 0:
            raise SessionOptionsError("session_timeout must be positive when set")
        if self.retry_delay < 0:
            raise SessionOptionsError("retry_delay cannot be negative")
        return self

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class ExecutionOutcome:
    """Result of running one script once."""
    success: bool
    error_message: Optional[str] = None
    duration: float = 0.0
    output: str = ""


@dataclass(frozen=True)
class StatusEvent:
    """Pushed to subscribers on every session transition."""
    session_id: str
    status: SessionStatus
    message: str
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "status": self.status.value,
            "message": self.message,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass(frozen=True)
class MonitoringSession:
    """One bounded-retry monitored run of a script."""
    session_id: str
    original_script: str
    current_script: str
    intent: UserReference
    options: MonitoringOptions
    status: SessionStatus = SessionStatus.MONITORING
    modifications: Tuple[ScriptModification, ...] = ()
    attempt_count: int = 0
    started_at: datetime = field(default_factory=datetime.now)
    ended_at: Optional[datetime] = None
    is_successful: bool = False
    last_diagnosis: Optional[FailureDiagnosis] = None
    message: str = ""

    def __post_init__(self):
        object.__setattr__(self, 'modifications', tuple(self.modifications))

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def final_script(self) -> Optional[str]:
        """The script that succeeded, if any."""
        return self.current_script if self.is_successful else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "status": self.status.value,
            "original_script": self.original_script,
            "current_script": self.current_script,
            "final_script": self.final_script,
            "intent": self.intent.to_dict(),
            "options": self.options.to_dict(),
            "attempt_count": self.attempt_count,
            "modifications": [m.to_dict() for m in self.modifications],
            "started_at": self.started_at.isoformat(),
            "ended_at": self.ended_at.isoformat() if self.ended_at else None,
            "is_successful": self.is_successful,
            "last_diagnosis": self.last_diagnosis.to_dict() if self.last_diagnosis else None,
            "message": self.message,
        }
