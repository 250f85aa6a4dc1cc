"""
Background event loop for synchronous hosts.

Flask handlers and other thread-based callers cannot await the orchestrator
directly. HealerRuntime runs the orchestrator on its own event loop thread
and forwards every call onto that loop, so the session store is only ever
touched from one thread.
"""

import asyncio
import threading
from typing import Dict, List, Optional

from script_healer.logger import get_logger
from script_healer.models import MonitoringSession
from script_healer.orchestrator import Orchestrator

logger = get_logger('runtime')


async def _call(func, *args, **kwargs):
    return func(*args, **kwargs)


class HealerRuntime:
    """Thread-safe, blocking facade over an Orchestrator."""

    def __init__(self, orchestrator: Orchestrator, call_timeout: float = 30):
        self.orchestrator = orchestrator
        self.call_timeout = call_timeout
        self.loop = asyncio.new_event_loop()
        self._thread = threading.Thread(target=self._run_loop, name='script-healer-loop', daemon=True)

    def _run_loop(self):
        asyncio.set_event_loop(self.loop)
        self.loop.run_forever()

    def start(self) -> "HealerRuntime":
        if not self._thread.is_alive():
            self._thread.start()
            logger.info("Healer runtime started")
        return self

    def call(self, coro, timeout: Optional[float] = None):
        """Run a coroutine on the runtime loop and block for its result."""
        future = asyncio.run_coroutine_threadsafe(coro, self.loop)
        return future.result(timeout or self.call_timeout)

    def start_session(self, script: str, intent_reference=None, options=None) -> str:
        return self.call(self.orchestrator.start_session(script, intent_reference, options))

    def stop_session(self, session_id: str) -> bool:
        return self.call(_call(self.orchestrator.stop_session, session_id))

    def get_session(self, session_id: str) -> MonitoringSession:
        return self.call(_call(self.orchestrator.get_session, session_id))

    def list_active_sessions(self) -> List[MonitoringSession]:
        return self.call(_call(self.orchestrator.list_active_sessions))

    def evict_session(self, session_id: str) -> bool:
        return self.call(_call(self.orchestrator.store.evict, session_id))

    def history(self, limit: int = 50) -> List[Dict]:
        return self.call(_call(self.orchestrator.store.history, limit))

    def archived_session(self, session_id: str) -> Optional[Dict]:
        archive = self.orchestrator.store.archive
        if archive is None:
            return None
        return self.call(_call(archive.get_record, session_id))

    def wait(self, session_id: str, timeout: Optional[float] = None) -> MonitoringSession:
        return self.call(self.orchestrator.wait(session_id, timeout), timeout=timeout)

    def shutdown(self, timeout: float = 30):
        if not self._thread.is_alive():
            return
        try:
            self.call(self.orchestrator.shutdown(), timeout=timeout)
        finally:
            self.loop.call_soon_threadsafe(self.loop.stop)
            self._thread.join(timeout)
            logger.info("Healer runtime stopped")
