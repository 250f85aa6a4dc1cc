"""
In-memory table of monitoring sessions.

Each session is written only by the orchestrator task that owns it. Writes
swap in a new frozen MonitoringSession, so readers always get a complete,
consistent version without locking. Finished sessions stay in memory until
evicted and, when an archive is attached, are also written to the database
from a worker thread.
"""

import asyncio
from typing import Callable, Dict, List, Optional, Set

from script_healer.database import SessionArchive
from script_healer.exceptions import SessionNotFound
from script_healer.logger import get_logger
from script_healer.models import ACTIVE_STATUSES, MonitoringSession, StatusEvent

logger = get_logger('store')


class SessionStore:
    """Sessions keyed by id, plus stop requests and status subscribers."""

    def __init__(self, archive: Optional[SessionArchive] = None):
        self.archive = archive
        self._sessions: Dict[str, MonitoringSession] = {}
        self._stop_requests: Set[str] = set()
        self._queues: List[asyncio.Queue] = []
        self._listeners: List[Callable[[StatusEvent], None]] = []

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions

    def put(self, session: MonitoringSession):
        """Publish a new version of a session. Owner only."""
        self._sessions[session.session_id] = session
        if session.is_terminal:
            self._stop_requests.discard(session.session_id)

    async def archive_session(self, session: MonitoringSession) -> bool:
        """
        Write a finished session to the archive on a worker thread.

        Never raises; failures are logged and reported as False.
        """
        if self.archive is None or not session.is_terminal:
            return False
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, self.archive.save_session, session)
        except Exception as e:
            logger.error(f"Failed to archive session {session.session_id}: {e}")
            return False

    def get(self, session_id: str) -> MonitoringSession:
        try:
            return self._sessions[session_id]
        except KeyError:
            raise SessionNotFound(session_id) from None

    def find(self, session_id: str) -> Optional[MonitoringSession]:
        return self._sessions.get(session_id)

    def list_active(self) -> List[MonitoringSession]:
        return [s for s in tuple(self._sessions.values()) if s.status in ACTIVE_STATUSES]

    def list_all(self) -> List[MonitoringSession]:
        return list(tuple(self._sessions.values()))

    def stop(self, session_id: str) -> bool:
        """
        Ask a session to stop before its next attempt.

        Returns False when the session has already finished; repeated calls
        are harmless.
        """
        session = self.get(session_id)
        if session.is_terminal:
            return False
        self._stop_requests.add(session_id)
        logger.info(f"Stop requested for session {session_id}")
        return True

    def stop_requested(self, session_id: str) -> bool:
        return session_id in self._stop_requests

    def evict(self, session_id: str) -> bool:
        """Drop a finished session from memory. Active sessions are kept."""
        session = self.get(session_id)
        if not session.is_terminal:
            return False
        del self._sessions[session_id]
        return True

    def history(self, limit: int = 50) -> List[Dict]:
        """Archived sessions, newest first. Empty without an archive."""
        if self.archive is None:
            return []
        return self.archive.load_history(limit)

    # Status stream

    def subscribe(self, maxsize: int = 0) -> asyncio.Queue:
        """Queue that receives a StatusEvent for every transition from now on."""
        queue = asyncio.Queue(maxsize=maxsize)
        self._queues.append(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue):
        if queue in self._queues:
            self._queues.remove(queue)

    def add_listener(self, listener: Callable[[StatusEvent], None]):
        self._listeners.append(listener)

    def remove_listener(self, listener: Callable[[StatusEvent], None]):
        if listener in self._listeners:
            self._listeners.remove(listener)

    def publish(self, event: StatusEvent):
        for queue in list(self._queues):
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                logger.warning(f"Status subscriber queue full, dropping event for {event.session_id}")
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                logger.error(f"Status listener failed: {e}")
