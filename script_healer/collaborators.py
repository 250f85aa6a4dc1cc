"""
External collaborators of the healing loop.

The orchestrator only sees two small interfaces:

- SnapshotCapture.capture() -> UISnapshot, raises CaptureUnavailable
- ScriptInterpreter.execute(script) -> ExecutionOutcome, raises InterpreterUnavailable

The subprocess-backed implementations below let the loop drive any
command-line interpreter (node, an adb wrapper, ...) and any tool that can
print the UI tree as JSON.
"""

import asyncio
import json
import os
import shlex
import tempfile
import time
from typing import Optional

from script_healer.config import Config
from script_healer.exceptions import CaptureUnavailable, InterpreterUnavailable
from script_healer.logger import get_logger
from script_healer.models import ExecutionOutcome, UISnapshot

logger = get_logger('collaborators')


class SnapshotCapture:
    """Reads the live UI."""

    async def capture(self) -> UISnapshot:
        raise NotImplementedError


class ScriptInterpreter:
    """Runs one script once. One call per attempt."""

    async def execute(self, script: str) -> ExecutionOutcome:
        raise NotImplementedError


class UnavailableCapture(SnapshotCapture):
    """Used when no capture source is configured; every capture fails."""

    async def capture(self) -> UISnapshot:
        raise CaptureUnavailable("No capture source configured")


async def _run_command(argv, timeout: Optional[float]):
    process = await asyncio.create_subprocess_exec(
        *argv,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    try:
        stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
    finally:
        # timed out or cancelled by the caller: the child must not outlive the attempt
        if process.returncode is None:
            try:
                process.kill()
            except ProcessLookupError:
                pass
            await process.wait()
    return process.returncode, stdout.decode(errors='replace'), stderr.decode(errors='replace')


class CommandSnapshotCapture(SnapshotCapture):
    """Runs a command that prints a snapshot as JSON on stdout."""

    def __init__(self, command: Optional[str] = None, timeout: float = Config.CAPTURE_TIMEOUT):
        self.command = command or Config.CAPTURE_COMMAND
        self.timeout = timeout

    async def capture(self) -> UISnapshot:
        if not self.command:
            raise CaptureUnavailable("CAPTURE_COMMAND not set")
        try:
            returncode, stdout, stderr = await _run_command(shlex.split(self.command), self.timeout)
        except asyncio.TimeoutError as e:
            raise CaptureUnavailable(f"Capture timed out after {self.timeout}s") from e
        except OSError as e:
            raise CaptureUnavailable(f"Capture command failed to start: {e}") from e

        if returncode != 0:
            raise CaptureUnavailable(f"Capture command exited with {returncode}: {stderr.strip()[:200]}")

        try:
            data = json.loads(stdout)
        except json.JSONDecodeError as e:
            raise CaptureUnavailable(f"Capture output is not JSON: {e}") from e
        if isinstance(data, list):
            data = {"elements": data}
        try:
            return UISnapshot.from_dict(data)
        except (TypeError, ValueError, AttributeError) as e:
            raise CaptureUnavailable(f"Capture output has unexpected shape: {e}") from e


class SubprocessInterpreter(ScriptInterpreter):
    """Writes the script to a temp file and runs it with a command-line interpreter."""

    def __init__(self, command: Optional[str] = None, timeout: Optional[float] = 600, suffix: str = '.js'):
        self.command = command or Config.INTERPRETER_COMMAND
        self.timeout = timeout
        self.suffix = suffix

    async def execute(self, script: str) -> ExecutionOutcome:
        with tempfile.NamedTemporaryFile('w', suffix=self.suffix, delete=False, encoding='utf-8') as f:
            f.write(script)
            script_path = f.name

        start_time = time.time()
        try:
            returncode, stdout, stderr = await _run_command(shlex.split(self.command) + [script_path], self.timeout)
        except asyncio.TimeoutError:
            return ExecutionOutcome(
                success=False,
                error_message=f"Script timed out after {self.timeout}s",
                duration=time.time() - start_time,
            )
        except OSError as e:
            raise InterpreterUnavailable(f"Cannot start interpreter '{self.command}': {e}") from e
        finally:
            os.unlink(script_path)

        duration = time.time() - start_time
        logger.debug(f"Interpreter exited with {returncode} after {duration:.1f}s")
        if returncode == 0:
            return ExecutionOutcome(success=True, duration=duration, output=stdout)

        error_lines = [line for line in stderr.strip().splitlines() if line.strip()]
        error_message = "\n".join(error_lines[-5:]) or f"Interpreter exited with code {returncode}"
        return ExecutionOutcome(success=False, error_message=error_message, duration=duration, output=stdout)
