"""
Subprocess collaborator tests

The current Python interpreter stands in for both the script interpreter
and the UI-tree dump command.
"""
import asyncio
import json
import shlex
import sys

import pytest

from script_healer.collaborators import CommandSnapshotCapture, SubprocessInterpreter, UnavailableCapture
from script_healer.exceptions import CaptureUnavailable, InterpreterUnavailable
from script_healer.models import SessionStatus
from script_healer.orchestrator import Orchestrator

from tests.helpers import StaticCapture, fast_options

PYTHON = shlex.quote(sys.executable)


def python_command(code):
    return f"{PYTHON} -c {shlex.quote(code)}"


def test_command_capture_parses_element_list():
    elements = [
        {"className": "android.widget.Button", "text": "Login", "id": "com.app:id/login",
         "bounds": [10, 20, 110, 70], "clickable": True},
        {"className": "android.widget.TextView", "desc": "Title", "bounds": {"x": 0, "y": 0, "width": 50, "height": 10}},
    ]
    capture = CommandSnapshotCapture(python_command(f"print({json.dumps(json.dumps(elements))})"), timeout=10)

    snapshot = asyncio.run(capture.capture())

    assert len(snapshot.elements) == 2
    login, title = snapshot.elements
    assert login.text == "Login"
    assert login.element_id == "com.app:id/login"
    assert login.interactable is True
    assert str(login.bounds) == "[10,20][110,70]"
    assert title.description == "Title"
    assert str(title.bounds) == "[0,0][50,10]"
    assert snapshot.interactable_elements() == [login]


@pytest.mark.parametrize("command", [
    python_command("print('not json')"),
    python_command("import sys; sys.exit(3)"),
    "definitely-not-a-real-capture-binary --dump",
])
def test_command_capture_failures_are_unavailable(command):
    with pytest.raises(CaptureUnavailable):
        asyncio.run(CommandSnapshotCapture(command, timeout=10).capture())


def test_capture_without_source():
    with pytest.raises(CaptureUnavailable):
        asyncio.run(UnavailableCapture().capture())


def test_interpreter_success():
    interpreter = SubprocessInterpreter(PYTHON, timeout=10, suffix='.py')

    outcome = asyncio.run(interpreter.execute("print('clicked')"))

    assert outcome.success
    assert outcome.error_message is None
    assert outcome.output.strip() == "clicked"


def test_interpreter_failure_reports_stderr_tail():
    interpreter = SubprocessInterpreter(PYTHON, timeout=10, suffix='.py')
    script = "import sys\nfor i in range(8):\n    print(f'line {i}', file=sys.stderr)\nsys.exit(1)"

    outcome = asyncio.run(interpreter.execute(script))

    assert not outcome.success
    assert outcome.error_message.splitlines() == [f"line {i}" for i in range(3, 8)]


def test_interpreter_timeout_is_a_failed_outcome():
    interpreter = SubprocessInterpreter(PYTHON, timeout=0.5, suffix='.py')

    outcome = asyncio.run(interpreter.execute("import time\ntime.sleep(10)"))

    assert not outcome.success
    assert "timed out" in outcome.error_message


def test_missing_interpreter_raises():
    interpreter = SubprocessInterpreter("definitely-not-a-real-interpreter", timeout=10)

    with pytest.raises(InterpreterUnavailable):
        asyncio.run(interpreter.execute("click(1, 1);"))


def late_marker_script(marker):
    return f"import pathlib, time\ntime.sleep(1.5)\npathlib.Path({str(marker)!r}).write_text('ran')"


def test_cancelled_execute_kills_interpreter(tmp_path):
    marker = tmp_path / "late.txt"
    interpreter = SubprocessInterpreter(PYTHON, timeout=10, suffix='.py')

    async def scenario():
        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(interpreter.execute(late_marker_script(marker)), timeout=0.3)
        await asyncio.sleep(2)

    asyncio.run(scenario())

    assert not marker.exists()


def test_session_timeout_kills_interpreter(tmp_path):
    marker = tmp_path / "late.txt"

    async def scenario():
        orchestrator = Orchestrator(StaticCapture(), SubprocessInterpreter(PYTHON, timeout=10, suffix='.py'))
        session = await orchestrator.run_session(
            late_marker_script(marker), options=fast_options(max_attempts=3, session_timeout=0.3),
        )
        await asyncio.sleep(2)
        return session

    session = asyncio.run(scenario())

    assert session.status == SessionStatus.ERROR
    assert "timed out" in session.message
    assert not marker.exists()
