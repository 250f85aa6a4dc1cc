"""
Session store and archive tests
"""
import asyncio
import threading
from dataclasses import replace
from datetime import datetime

import pytest

from script_healer.database import SessionArchive
from script_healer.diagnosis import rule_based_diagnosis
from script_healer.exceptions import SessionNotFound
from script_healer.models import (
    MonitoringSession,
    ScriptModification,
    SessionStatus,
    StatusEvent,
    UserReference,
)
from script_healer.orchestrator import Orchestrator
from script_healer.store import SessionStore

from tests.helpers import FAILURE, SUCCESS, ScriptedInterpreter, StaticCapture, fast_options


def make_session(session_id="monitor_1_1000", status=SessionStatus.MONITORING, **changes):
    session = MonitoringSession(
        session_id=session_id,
        original_script="click(10, 10);",
        current_script="click(10, 10);",
        intent=UserReference(description="Open settings"),
        options=fast_options(),
        status=status,
    )
    return replace(session, **changes)


@pytest.fixture
def archive(tmp_path):
    archive = SessionArchive(f"sqlite:///{tmp_path / 'sessions.db'}")
    archive.create_tables()
    yield archive
    archive.drop_tables()
    archive.engine.dispose()


def test_get_unknown_session_raises():
    store = SessionStore()

    with pytest.raises(SessionNotFound):
        store.get("missing")
    assert store.find("missing") is None
    assert "missing" not in store


def test_active_and_terminal_listing():
    store = SessionStore()
    store.put(make_session("a", SessionStatus.EXECUTING))
    store.put(make_session("b", SessionStatus.COMPLETED, is_successful=True))

    assert [s.session_id for s in store.list_active()] == ["a"]
    assert {s.session_id for s in store.list_all()} == {"a", "b"}


def test_stop_flag_lifecycle():
    store = SessionStore()
    store.put(make_session("a", SessionStatus.ANALYZING))

    assert store.stop("a") is True
    assert store.stop("a") is True
    assert store.stop_requested("a")

    store.put(make_session("a", SessionStatus.STOPPED))

    assert not store.stop_requested("a")
    assert store.stop("a") is False


def test_evict_only_finished_sessions():
    store = SessionStore()
    store.put(make_session("a", SessionStatus.EXECUTING))
    store.put(make_session("b", SessionStatus.ERROR))

    assert store.evict("a") is False
    assert store.evict("b") is True
    assert "b" not in store
    with pytest.raises(SessionNotFound):
        store.evict("b")


def test_publish_reaches_queues_and_listeners():
    received = []

    def broken_listener(event):
        raise RuntimeError("listener bug")

    async def scenario():
        store = SessionStore()
        queue = store.subscribe()
        full = store.subscribe(maxsize=1)
        store.add_listener(broken_listener)
        store.add_listener(received.append)

        store.publish(StatusEvent("a", SessionStatus.EXECUTING, "Attempt 1/3"))
        store.publish(StatusEvent("a", SessionStatus.COMPLETED, "done"))
        store.unsubscribe(queue)
        store.publish(StatusEvent("a", SessionStatus.COMPLETED, "late"))
        return queue.qsize(), full.qsize()

    queued, full_queued = asyncio.run(scenario())

    assert queued == 2
    assert full_queued == 1
    assert [e.message for e in received] == ["Attempt 1/3", "done", "late"]


def test_history_empty_without_archive():
    assert SessionStore().history() == []


def test_archive_connection(archive):
    assert archive.test_connection() is True


def test_archive_round_trip(archive):
    diagnosis = rule_based_diagnosis("Element not found")
    session = make_session(
        "monitor_2_2000",
        SessionStatus.ERROR,
        attempt_count=1,
        modifications=(ScriptModification(1, "click(10, 10);", None, diagnosis),),
        last_diagnosis=diagnosis,
        ended_at=datetime.now(),
        message="Failed after 1 attempt(s): element-not-found",
    )

    assert archive.save_session(session) is True

    record = archive.get_record("monitor_2_2000")
    assert record["status"] == "error"
    assert record["intent"]["description"] == "Open settings"
    assert record["last_diagnosis"]["primary_cause"] == "element-not-found"
    assert len(record["modifications"]) == 1
    assert record["modifications"][0]["script_after"] is None
    assert record["modifications"][0]["diagnosis"]["source"] == "rule_based"


def test_archive_save_replaces_existing_record(archive):
    archive.save_session(make_session("monitor_3_3000", SessionStatus.STOPPED))
    archive.save_session(make_session("monitor_3_3000", SessionStatus.ERROR, message="second"))

    history = archive.load_history()

    assert len(history) == 1
    assert history[0]["status"] == "error"
    assert history[0]["message"] == "second"


def test_store_archives_finished_sessions(archive):
    async def scenario():
        orchestrator = Orchestrator(
            StaticCapture(),
            ScriptedInterpreter([FAILURE, SUCCESS]),
            store=SessionStore(archive),
        )
        first = await orchestrator.run_session("text(\"Login\").click();", options=fast_options())
        second = await orchestrator.run_session("text(\"Next\").click();", options=fast_options())
        return orchestrator, first, second

    orchestrator, first, second = asyncio.run(scenario())

    history = orchestrator.store.history(limit=10)
    assert [h["session_id"] for h in history] == [second.session_id, first.session_id]
    assert history[1]["is_successful"] is True
    assert history[1]["final_script"] == first.final_script
    assert len(history[1]["modifications"]) == 1


class RecordingArchive(SessionArchive):
    """Archive that remembers which thread wrote each session"""

    def __init__(self, database_url, fail=False):
        super().__init__(database_url)
        self.fail = fail
        self.writer_threads = []

    def save_session(self, session):
        self.writer_threads.append(threading.get_ident())
        if self.fail:
            raise RuntimeError("disk full")
        return super().save_session(session)


def test_archive_writes_happen_off_the_event_loop(tmp_path):
    archive = RecordingArchive(f"sqlite:///{tmp_path / 'threads.db'}")
    archive.create_tables()

    async def scenario():
        orchestrator = Orchestrator(StaticCapture(), ScriptedInterpreter([SUCCESS]), store=SessionStore(archive))
        session = await orchestrator.run_session("text(\"Login\").click();", options=fast_options())
        return session, threading.get_ident()

    session, loop_thread = asyncio.run(scenario())

    assert len(archive.writer_threads) == 1
    assert archive.writer_threads[0] != loop_thread
    assert archive.get_record(session.session_id)["status"] == "completed"
    archive.engine.dispose()


def test_archive_failure_does_not_fail_the_session(tmp_path):
    archive = RecordingArchive(f"sqlite:///{tmp_path / 'broken.db'}", fail=True)
    archive.create_tables()

    async def scenario():
        store = SessionStore(archive)
        orchestrator = Orchestrator(StaticCapture(), ScriptedInterpreter([SUCCESS]), store=store)
        session = await orchestrator.run_session("text(\"Login\").click();", options=fast_options())
        saved = await store.archive_session(session)
        return session, saved

    session, saved = asyncio.run(scenario())

    assert session.status == SessionStatus.COMPLETED
    assert saved is False
    assert len(archive.writer_threads) == 2
    archive.engine.dispose()


def test_active_sessions_are_not_archived(archive):
    store = SessionStore(archive)

    saved = asyncio.run(store.archive_session(make_session("monitor_4_4000", SessionStatus.EXECUTING)))

    assert saved is False
    assert archive.load_history() == []
