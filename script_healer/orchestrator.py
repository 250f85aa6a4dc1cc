"""
Execution Orchestrator

Runs automation scripts with automatic failure diagnosis and repair.

Healing loop, one asyncio task per session:
1. CAPTURE the screen before the attempt (best effort)
2. EXECUTE the current script
3. On success: capture again, mark COMPLETED
4. On failure: capture again, diff the two screens, DIAGNOSE, PATCH,
   record a ScriptModification, retry with the candidate
5. After max_attempts failures: mark ERROR with the last diagnosis

Status: MONITORING -> EXECUTING -> ANALYZING -> EXECUTING ... ending in
COMPLETED, STOPPED or ERROR, none of which is ever left again.

Stop requests are checked before every attempt; a running step is never
interrupted. Collaborator failures never escape the session task.
"""

import asyncio
import random
import time
from dataclasses import replace
from datetime import datetime
from typing import Dict, Optional, Tuple

from script_healer.advisory import AdvisoryClient
from script_healer.collaborators import ScriptInterpreter, SnapshotCapture
from script_healer.diagnosis import DiagnosisEngine, rule_based_diagnosis
from script_healer.differ import diff
from script_healer.exceptions import CaptureUnavailable, InterpreterUnavailable, SessionOptionsError
from script_healer.logger import get_logger
from script_healer.models import (
    ExecutionOutcome,
    FailureDiagnosis,
    MonitoringOptions,
    MonitoringSession,
    ScriptModification,
    SessionStatus,
    StatusEvent,
    UISnapshot,
    UserReference,
)
from script_healer.patch_generator import PatchGenerator
from script_healer.store import SessionStore

logger = get_logger('orchestrator')


def generate_session_id() -> str:
    return f"monitor_{int(time.time() * 1000)}_{random.randint(1000, 9999)}"


def coerce_options(options) -> MonitoringOptions:
    if options is None:
        options = MonitoringOptions.from_config()
    elif isinstance(options, dict):
        options = dict(options)
        if 'per_step_timeout' in options:
            options.setdefault('capture_timeout', options.pop('per_step_timeout'))
        try:
            options = MonitoringOptions.from_config(**options)
        except TypeError as e:
            raise SessionOptionsError(f"Unknown session option: {e}") from e
    elif not isinstance(options, MonitoringOptions):
        raise SessionOptionsError(f"Unsupported options: {options!r}")
    return options.validate()


class Orchestrator:
    """Owns the healing loop of every session it starts."""

    def __init__(self, capture: SnapshotCapture, interpreter: ScriptInterpreter,
                 advisory: Optional[AdvisoryClient] = None, store: Optional[SessionStore] = None,
                 diagnosis_engine: Optional[DiagnosisEngine] = None,
                 patch_generator: Optional[PatchGenerator] = None,
                 max_concurrent_sessions: Optional[int] = None):
        self.capture = capture
        self.interpreter = interpreter
        self.store = store if store is not None else SessionStore()
        self.diagnosis_engine = diagnosis_engine or DiagnosisEngine(advisory)
        self.patch_generator = patch_generator or PatchGenerator(advisory)
        self._slots = asyncio.Semaphore(max_concurrent_sessions) if max_concurrent_sessions else None
        self._tasks: Dict[str, asyncio.Task] = {}

    # Caller API

    async def start_session(self, script: str, intent_reference=None, options=None) -> str:
        """Validate the request, register the session and start its task."""
        if not isinstance(script, str) or not script.strip():
            raise SessionOptionsError("script must be a non-empty string")
        options = coerce_options(options)
        intent = UserReference.from_value(intent_reference) if intent_reference is not None else UserReference()

        session_id = generate_session_id()
        while session_id in self.store:
            session_id = generate_session_id()

        session = MonitoringSession(
            session_id=session_id,
            original_script=script,
            current_script=script,
            intent=intent,
            options=options,
            message="Waiting to start",
        )
        self.store.put(session)
        self.store.publish(StatusEvent(session_id, session.status, session.message))
        logger.info(f"[{session_id}] Session created (max_attempts={options.max_attempts})")

        task = asyncio.create_task(self._run(session_id), name=f"healer-{session_id}")
        self._tasks[session_id] = task
        task.add_done_callback(lambda _: self._tasks.pop(session_id, None))
        return session_id

    def stop_session(self, session_id: str) -> bool:
        return self.store.stop(session_id)

    def get_session(self, session_id: str) -> MonitoringSession:
        return self.store.get(session_id)

    def list_active_sessions(self):
        return self.store.list_active()

    def subscribe(self, maxsize: int = 0) -> asyncio.Queue:
        return self.store.subscribe(maxsize)

    def unsubscribe(self, queue: asyncio.Queue):
        self.store.unsubscribe(queue)

    async def wait(self, session_id: str, timeout: Optional[float] = None) -> MonitoringSession:
        """Wait for a session to reach a terminal status and return it."""
        task = self._tasks.get(session_id)
        if task is not None:
            await asyncio.wait_for(asyncio.shield(task), timeout=timeout)
        return self.store.get(session_id)

    async def run_session(self, script: str, intent_reference=None, options=None) -> MonitoringSession:
        session_id = await self.start_session(script, intent_reference, options)
        return await self.wait(session_id)

    async def shutdown(self):
        """Ask every active session to stop and wait for their tasks."""
        for session in self.store.list_active():
            self.store.stop(session.session_id)
        tasks = list(self._tasks.values())
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    # Healing loop

    async def _run(self, session_id: str):
        try:
            if self._slots is None:
                await self._monitor(session_id)
            else:
                async with self._slots:
                    await self._monitor(session_id)
        except asyncio.CancelledError:
            self._finish(self.store.get(session_id), SessionStatus.STOPPED, "Session task cancelled")
            raise
        except Exception as e:
            logger.exception(f"[{session_id}] Healing loop crashed: {e}")
            self._finish(self.store.get(session_id), SessionStatus.ERROR, f"Internal error: {e}")
        finally:
            await asyncio.shield(self.store.archive_session(self.store.get(session_id)))

    async def _monitor(self, session_id: str):
        session = self.store.get(session_id)
        options = session.options
        loop = asyncio.get_running_loop()
        deadline = loop.time() + options.session_timeout if options.session_timeout else None
        attempt = 0

        while True:
            if self.store.stop_requested(session_id):
                self._finish(session, SessionStatus.STOPPED, f"Stopped after {attempt} attempt(s)")
                return
            if deadline is not None and loop.time() >= deadline:
                self._finish_timed_out(session)
                return

            attempt += 1
            script = session.current_script
            session = self._transition(
                session, SessionStatus.EXECUTING,
                f"Attempt {attempt}/{options.max_attempts}", attempt_count=attempt,
            )

            try:
                outcome, before, after = await self._attempt(script, options, deadline)
            except Exception as e:
                logger.error(f"[{session_id}] Attempt {attempt} raised {type(e).__name__}: {e}")
                outcome, before, after = ExecutionOutcome(False, f"{type(e).__name__}: {e}"), None, None

            if outcome.success:
                self._finish(
                    session, SessionStatus.COMPLETED,
                    f"Script succeeded on attempt {attempt}"
                    + (f" after {attempt - 1} repair(s)" if attempt > 1 else ""),
                    is_successful=True,
                )
                return

            logger.warning(f"[{session_id}] Attempt {attempt} failed: {outcome.error_message}")
            session = self._transition(
                session, SessionStatus.ANALYZING,
                f"Attempt {attempt} failed, analysing: {outcome.error_message}",
            )

            timed_out = deadline is not None and loop.time() >= deadline
            final = attempt >= options.max_attempts or timed_out
            try:
                diagnosis, candidate = await self._analyze(session, script, outcome, before, after, attempt, final)
            except Exception as e:
                logger.error(f"[{session_id}] Analysis of attempt {attempt} raised {type(e).__name__}: {e}")
                diagnosis = rule_based_diagnosis(f"{outcome.error_message}; {type(e).__name__}: {e}")
                candidate = None if final else script

            modification = ScriptModification(
                attempt_number=attempt,
                script_before=script,
                script_after=candidate,
                diagnosis=diagnosis,
            )
            session = self._update(
                session,
                modifications=session.modifications + (modification,),
                last_diagnosis=diagnosis,
                current_script=candidate if candidate is not None else script,
            )

            if timed_out:
                self._finish_timed_out(session)
                return
            if final:
                self._finish(
                    session, SessionStatus.ERROR,
                    f"Failed after {attempt} attempt(s): {diagnosis.primary_cause}",
                )
                return

            if options.retry_delay:
                await asyncio.sleep(options.retry_delay)

    async def _attempt(self, script: str, options: MonitoringOptions,
                       deadline: Optional[float]) -> Tuple[ExecutionOutcome, Optional[UISnapshot], Optional[UISnapshot]]:
        before = await self._capture(options, deadline, "pre-attempt")
        outcome = await self._execute(script, deadline)
        after = None
        if outcome.success or options.capture_on_failure:
            after = await self._capture(options, deadline, "post-attempt")
        return outcome, before, after

    async def _capture(self, options: MonitoringOptions, deadline: Optional[float],
                       label: str) -> Optional[UISnapshot]:
        """Capture the screen; a capture failure only costs us the snapshot."""
        timeout = self._bounded(options.capture_timeout, deadline)
        try:
            snapshot = await asyncio.wait_for(self.capture.capture(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(f"{label} capture timed out after {timeout:.1f}s")
            return None
        except CaptureUnavailable as e:
            logger.warning(f"{label} capture unavailable: {e}")
            return None
        logger.debug(f"{label} capture: {len(snapshot.elements)} elements")
        return snapshot

    async def _execute(self, script: str, deadline: Optional[float]) -> ExecutionOutcome:
        timeout = self._bounded(None, deadline)
        try:
            return await asyncio.wait_for(self.interpreter.execute(script), timeout=timeout)
        except asyncio.TimeoutError:
            return ExecutionOutcome(False, "Script execution timed out: session time budget exhausted")
        except InterpreterUnavailable as e:
            return ExecutionOutcome(False, f"Interpreter unavailable: {e}")

    async def _analyze(self, session: MonitoringSession, script: str, outcome: ExecutionOutcome,
                       before: Optional[UISnapshot], after: Optional[UISnapshot], attempt: int,
                       final: bool) -> Tuple[FailureDiagnosis, Optional[str]]:
        changes = diff(before, after) if before is not None and after is not None else []
        diagnosis = await self.diagnosis_engine.diagnose(
            script, outcome.error_message, before, after, changes, session.intent,
            timeout=session.options.advisory_timeout,
        )
        if final:
            return diagnosis, None
        if not session.options.enable_auto_fix:
            return diagnosis, script
        candidate = await self.patch_generator.generate_patch(
            script, diagnosis, after or before, attempt,
            user_intent=session.intent, timeout=session.options.advisory_timeout,
        )
        return diagnosis, candidate

    @staticmethod
    def _bounded(timeout: Optional[float], deadline: Optional[float]) -> Optional[float]:
        if deadline is None:
            return timeout
        remaining = max(0.0, deadline - asyncio.get_running_loop().time())
        return remaining if timeout is None else min(timeout, remaining)

    # Session state

    def _update(self, session: MonitoringSession, **changes) -> MonitoringSession:
        session = replace(session, **changes)
        self.store.put(session)
        return session

    def _transition(self, session: MonitoringSession, status: SessionStatus, message: str,
                    **changes) -> MonitoringSession:
        if session.is_terminal:
            logger.warning(f"[{session.session_id}] Already {session.status.value}, ignoring {status.value}")
            return session
        session = self._update(session, status=status, message=message, **changes)
        self.store.publish(StatusEvent(session.session_id, status, message))
        logger.info(f"[{session.session_id}] {status.value}: {message}")
        return session

    def _finish(self, session: MonitoringSession, status: SessionStatus, message: str,
                **changes) -> MonitoringSession:
        return self._transition(session, status, message, ended_at=datetime.now(), **changes)

    def _finish_timed_out(self, session: MonitoringSession) -> MonitoringSession:
        diagnosis = session.last_diagnosis or rule_based_diagnosis("session timed out")
        return self._finish(
            session, SessionStatus.ERROR,
            f"Session timed out after {session.attempt_count} attempt(s)",
            last_diagnosis=diagnosis,
        )
