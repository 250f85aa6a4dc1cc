#!/usr/bin/env python3
"""
Script Healer command line

Commands:
    run      Run one script with self-healing and save a JSON report
    history  Show archived sessions
    serve    Start the JSON API
"""

import argparse
import asyncio
import json
import sys
from datetime import datetime
from pathlib import Path

from script_healer.advisory import build_advisory_client
from script_healer.collaborators import CommandSnapshotCapture, SubprocessInterpreter, UnavailableCapture
from script_healer.config import Config
from script_healer.database import SessionArchive
from script_healer.exceptions import SessionOptionsError
from script_healer.logger import setup_logging
from script_healer.models import MonitoringOptions, MonitoringSession, UserReference
from script_healer.orchestrator import Orchestrator
from script_healer.store import SessionStore


def build_orchestrator(interpreter_command=None, capture_command=None, use_advisory=True,
                       database_url=None, persist=False, max_concurrent_sessions=None) -> Orchestrator:
    """Wire the orchestrator from Config plus command line overrides."""
    capture_command = capture_command or Config.CAPTURE_COMMAND
    capture = CommandSnapshotCapture(capture_command) if capture_command else UnavailableCapture()
    interpreter = SubprocessInterpreter(interpreter_command)
    advisory = build_advisory_client() if use_advisory else None

    archive = None
    if persist or Config.PERSIST_SESSIONS:
        archive = SessionArchive(database_url)
        archive.create_tables()

    return Orchestrator(
        capture=capture,
        interpreter=interpreter,
        advisory=advisory,
        store=SessionStore(archive),
        max_concurrent_sessions=max_concurrent_sessions,
    )


def print_summary(session: MonitoringSession):
    print(f"\n{'=' * 60}")
    print("HEALING SUMMARY")
    print(f"{'=' * 60}")
    print(f"Session:  {session.session_id}")
    print(f"Status:   {session.status.value}")
    print(f"Attempts: {session.attempt_count}/{session.options.max_attempts}")
    print(f"Message:  {session.message}")

    for modification in session.modifications:
        diagnosis = modification.diagnosis
        print(f"\n  Attempt {modification.attempt_number}: {diagnosis.primary_cause} "
              f"({diagnosis.source.value}, confidence {diagnosis.confidence:.0%})")
        for fix in diagnosis.suggested_fixes:
            print(f"    - {fix}")

    if session.is_successful:
        print("\n✅ Script succeeded")
    else:
        print("\n❌ Script did not succeed")


def save_report(session: MonitoringSession, output_dir: Path, script_path: Path) -> Path:
    output_dir.mkdir(parents=True, exist_ok=True)
    timestamp = datetime.now().strftime('%Y%m%d_%H%M%S')
    report_path = output_dir / f"healing_{script_path.stem}_{timestamp}.json"
    with open(report_path, "w") as f:
        json.dump(session.to_dict(), f, indent=2)

    # keep the repaired script next to the report
    if session.is_successful and session.modifications:
        healed_path = output_dir / f"{script_path.stem}.healed{script_path.suffix}"
        healed_path.write_text(session.final_script)
        print(f"🔧 Healed script saved to: {healed_path}")

    print(f"📄 Report saved to: {report_path}")
    return report_path


async def heal_script(args) -> MonitoringSession:
    orchestrator = build_orchestrator(
        interpreter_command=args.interpreter,
        capture_command=args.capture_command,
        use_advisory=not args.no_advisory,
        database_url=args.database_url,
        persist=args.persist,
    )
    options = MonitoringOptions.from_config(
        max_attempts=args.max_attempts,
        session_timeout=args.session_timeout,
        retry_delay=args.retry_delay,
        enable_auto_fix=not args.no_auto_fix,
    )
    intent = UserReference(description=args.intent, image_ref=args.intent_image)
    script = Path(args.script).read_text()
    return await orchestrator.run_session(script, intent, options)


def cmd_run(args) -> int:
    script_path = Path(args.script)
    if not script_path.exists():
        print(f"❌ Script not found: {script_path}")
        return 2

    try:
        session = asyncio.run(heal_script(args))
    except SessionOptionsError as e:
        print(f"❌ Invalid options: {e}")
        return 2

    print_summary(session)
    save_report(session, Path(args.output), script_path)
    return 0 if session.is_successful else 1


def cmd_history(args) -> int:
    archive = SessionArchive(args.database_url)
    archive.create_tables()
    sessions = archive.load_history(args.limit)
    if not sessions:
        print("No archived sessions")
        return 0
    for record in sessions:
        cause = (record.get('last_diagnosis') or {}).get('primary_cause', '-')
        print(f"{record['session_id']}  {record['status']:<9}  attempts={record['attempt_count']}  "
              f"cause={cause}  ended={record['ended_at']}")
    return 0


def cmd_serve(args) -> int:
    from script_healer.runtime import HealerRuntime
    from script_healer.web.app import create_app

    orchestrator = build_orchestrator(
        use_advisory=not args.no_advisory,
        database_url=args.database_url,
        persist=True,
        max_concurrent_sessions=args.max_sessions,
    )
    runtime = HealerRuntime(orchestrator).start()
    try:
        create_app(runtime).run(debug=args.debug, host=args.host, port=args.port, use_reloader=False)
    finally:
        runtime.shutdown()
    return 0


def main(argv=None):
    parser = argparse.ArgumentParser(description='Self-healing UI automation runner')
    parser.add_argument('--log-level', default=None, help='Override LOG_LEVEL')
    subparsers = parser.add_subparsers(dest='command', required=True)

    run_parser = subparsers.add_parser('run', help='Run a script with self-healing')
    run_parser.add_argument('script', help='Path to the automation script')
    run_parser.add_argument('--intent', help='What the script is supposed to do')
    run_parser.add_argument('--intent-image', help='Reference image of the target element')
    run_parser.add_argument('--max-attempts', type=int, default=None, help='Attempts before giving up')
    run_parser.add_argument('--session-timeout', type=float, default=None, help='Overall time budget in seconds')
    run_parser.add_argument('--retry-delay', type=float, default=None, help='Seconds between attempts')
    run_parser.add_argument('--interpreter', help='Interpreter command (default: INTERPRETER_COMMAND)')
    run_parser.add_argument('--capture-command', help='Command printing the UI tree as JSON')
    run_parser.add_argument('--no-advisory', action='store_true', help='Use rule-based healing only')
    run_parser.add_argument('--no-auto-fix', action='store_true', help='Retry without rewriting the script')
    run_parser.add_argument('--persist', action='store_true', help='Archive the session in the database')
    run_parser.add_argument('--database-url', default=None, help='Override DATABASE_URL')
    run_parser.add_argument('--output', default='data/output', help='Directory for reports')
    run_parser.set_defaults(func=cmd_run)

    history_parser = subparsers.add_parser('history', help='Show archived sessions')
    history_parser.add_argument('--limit', type=int, default=20)
    history_parser.add_argument('--database-url', default=None, help='Override DATABASE_URL')
    history_parser.set_defaults(func=cmd_history)

    serve_parser = subparsers.add_parser('serve', help='Start the JSON API')
    serve_parser.add_argument('--host', default='0.0.0.0')
    serve_parser.add_argument('--port', type=int, default=5001)
    serve_parser.add_argument('--debug', action='store_true')
    serve_parser.add_argument('--max-sessions', type=int, default=None, help='Concurrent session limit')
    serve_parser.add_argument('--no-advisory', action='store_true', help='Use rule-based healing only')
    serve_parser.add_argument('--database-url', default=None, help='Override DATABASE_URL')
    serve_parser.set_defaults(func=cmd_serve)

    args = parser.parse_args(argv)
    setup_logging(level=args.log_level)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
