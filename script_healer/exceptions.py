"""
Exceptions raised by Script Healer and its collaborators.

Collaborator failures (capture, interpreter, advisory) are caught at the
orchestrator boundary and turned into retries or terminal statuses. Only
SessionOptionsError and SessionNotFound ever reach callers.
"""


class HealerError(Exception):
    """Base class for all Script Healer errors."""


class CaptureUnavailable(HealerError):
    """The UI surface could not be read (no target, permission denied, timeout)."""


class InterpreterUnavailable(HealerError):
    """The script interpreter could not be started."""


class AdvisoryError(HealerError):
    """The advisory service failed or returned an unusable reply."""


class AdvisoryTimeout(AdvisoryError):
    """The advisory service did not answer within its time budget."""


class SessionOptionsError(HealerError, ValueError):
    """Rejected session request (bad options or empty script)."""


class SessionNotFound(HealerError, KeyError):
    """No session with the given id is held by the store."""
