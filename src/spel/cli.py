"""Argparse-based CLI for the spel daemon.

Manages daemon processes and forwards single commands to a running session.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import subprocess
import sys

from spel.client import send_command, start_daemon, stop_daemon
from spel.config import get_version, load_settings
from spel.devices import VIEWPORT_PRESETS, available_device_names
from spel.session import (
    daemon_running,
    list_sessions,
    log_path,
    read_pid,
    resolve_session_name,
    socket_path,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _parse_value(text: str) -> object:
    """Parse ``text`` as JSON when possible, otherwise keep it as a string."""
    try:
        return json.loads(text)
    except ValueError:
        return text


def _parse_pairs(pairs: list[str] | None, what: str) -> dict:
    """Turn ``["key=value", ...]`` into a dict with JSON-parsed values."""
    result: dict = {}
    for pair in pairs or []:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise ValueError(f"Invalid {what} {pair!r}, expected key=value")
        result[key] = _parse_value(value)
    return result


def _print_json(obj: object) -> None:
    print(json.dumps(obj, indent=2, default=str))


# ---------------------------------------------------------------------------
# Subparser registration
# ---------------------------------------------------------------------------


def _register_subcommands(subparsers: argparse._SubParsersAction) -> None:
    """Register every subcommand on *subparsers*."""

    # ── Daemon lifecycle ───────────────────────────────────────────────

    p = subparsers.add_parser("start", help="Start a detached daemon for the session")
    p.add_argument(
        "--headed", action="store_true", default=False, help="Show the browser window"
    )

    p = subparsers.add_parser("serve", help="Run the daemon in the foreground")
    p.add_argument(
        "--headed", action="store_true", default=False, help="Show the browser window"
    )

    subparsers.add_parser("status", help="Show whether the session daemon is running")
    subparsers.add_parser("stop", help="Close the session and stop its daemon")

    # ── Commands ───────────────────────────────────────────────────────

    p = subparsers.add_parser("send", help="Send one action to the session daemon")
    p.add_argument("action", help="Action name (e.g. navigate, snapshot, click)")
    p.add_argument(
        "-p",
        "--param",
        action="append",
        default=None,
        metavar="KEY=VALUE",
        help="Action parameter; VALUE is parsed as JSON when possible",
    )
    p.add_argument(
        "--json", dest="params_json", default=None, help="Parameters as a JSON object"
    )
    p.add_argument(
        "-f",
        "--flag",
        action="append",
        default=None,
        metavar="KEY=VALUE",
        help="Launch flag merged into the session (e.g. proxy=http://host:3128)",
    )
    p.add_argument(
        "--headed", action="store_true", default=False, help="Headed mode if starting"
    )
    p.add_argument(
        "--no-start",
        action="store_true",
        default=False,
        help="Fail instead of starting a daemon when none is running",
    )

    # ── Inspection ─────────────────────────────────────────────────────

    subparsers.add_parser("list", help="List sessions in the runtime directory")
    subparsers.add_parser("devices", help="List device and viewport presets")

    p = subparsers.add_parser("logs", help="Show the daemon log")
    p.add_argument(
        "-n", "--lines", type=int, default=50, help="Number of lines (0 for all)"
    )
    p.add_argument(
        "--follow", action="store_true", help="Follow log output (like tail -f)"
    )


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------


def _cmd_start(session: str, args: argparse.Namespace) -> int:
    settings = load_settings(session=session)
    headless = settings.headless and not args.headed
    if not start_daemon(session, headless=headless, timeout=settings.start_timeout):
        print(
            f"Failed to start daemon for session '{session}'. "
            f"Check {log_path(session)}",
            file=sys.stderr,
        )
        return 1
    print(f"Session '{session}' running (pid {read_pid(session)})")
    return 0


def _cmd_serve(session: str, args: argparse.Namespace) -> int:
    from spel.server import run_server

    settings = load_settings(session=session)
    if args.headed:
        settings = settings.model_copy(update={"headless": False})
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    asyncio.run(run_server(session, settings=settings))
    return 0


def _cmd_status(session: str, args: argparse.Namespace) -> int:
    if daemon_running(session):
        print(f"Session '{session}' is running (pid {read_pid(session)})")
        print(f"  - socket: {socket_path(session)}")
        print(f"  - log: {log_path(session)}")
        return 0
    print(f"Session '{session}' is not running")
    return 1


def _cmd_stop(session: str, args: argparse.Namespace) -> int:
    result = stop_daemon(session)
    if not result.get("success"):
        print(result.get("error", "Failed to stop daemon."), file=sys.stderr)
        return 1
    if result.get("data", {}).get("stopped"):
        print(f"Session '{session}' stopped")
    else:
        print(f"Session '{session}' was not running")
    return 0


def _cmd_send(session: str, args: argparse.Namespace) -> int:
    try:
        params = _parse_pairs(args.param, "parameter")
        if args.params_json:
            extra = json.loads(args.params_json)
            if not isinstance(extra, dict):
                raise ValueError("--json must be a JSON object")
            params.update(extra)
        flags = _parse_pairs(args.flag, "flag")
    except ValueError as e:
        print(str(e), file=sys.stderr)
        return 2

    settings = load_settings(session=session)
    if not daemon_running(session):
        if args.no_start:
            print(f"Session '{session}' is not running.", file=sys.stderr)
            return 1
        headless = settings.headless and not args.headed
        if not start_daemon(session, headless=headless, timeout=settings.start_timeout):
            print("Failed to start browser daemon. Check logs.", file=sys.stderr)
            return 1

    result = send_command(
        session, args.action, params, flags or None, timeout=settings.socket_timeout
    )
    if not result.get("success"):
        print(result.get("error", "Unknown error"), file=sys.stderr)
        return 1

    data = result.get("data") or {}
    snapshot = data.get("snapshot") if isinstance(data, dict) else None
    if isinstance(snapshot, str) and len(data) <= 2:
        # Snapshot-shaped responses read better as plain text
        print(snapshot)
        rest = {k: v for k, v in data.items() if k != "snapshot"}
        if rest:
            _print_json(rest)
    else:
        _print_json(data)
    return 1 if isinstance(data, dict) and "error" in data else 0


def _cmd_list(session: str, args: argparse.Namespace) -> int:
    sessions = list_sessions()
    if not sessions:
        print("No sessions found.")
        return 0
    print("### Sessions")
    for s in sessions:
        status = "running" if s["alive"] else "stale"
        print(f"- {s['name']}:")
        print(f"  - status: {status}")
        print(f"  - pid: {s['pid'] if s['pid'] is not None else '-'}")
        print(f"  - socket: {s['socket']}")
    return 0


def _cmd_devices(session: str, args: argparse.Namespace) -> int:
    print("### Devices")
    for name in available_device_names():
        print(f"- {name}")
    print("### Viewports")
    for key, viewport in VIEWPORT_PRESETS.items():
        print(f"- {key}: {viewport.width}x{viewport.height}")
    return 0


def _cmd_logs(session: str, args: argparse.Namespace) -> int:
    path = log_path(session)
    if not path.exists():
        print(f"No log file found for session '{session}'.", file=sys.stderr)
        print(f"Expected: {path}", file=sys.stderr)
        return 1
    if args.follow:
        try:
            subprocess.run(["tail", "-f", str(path)], check=False)
        except KeyboardInterrupt:
            pass
    elif args.lines == 0:
        print(path.read_text(encoding="utf-8"), end="")
    else:
        subprocess.run(["tail", "-n", str(args.lines), str(path)], check=False)
    return 0


_HANDLERS = {
    "start": _cmd_start,
    "serve": _cmd_serve,
    "status": _cmd_status,
    "stop": _cmd_stop,
    "send": _cmd_send,
    "list": _cmd_list,
    "devices": _cmd_devices,
    "logs": _cmd_logs,
}


# ---------------------------------------------------------------------------
# Main entry point
# ---------------------------------------------------------------------------


def main(argv: list[str] | None = None) -> None:
    """Parse CLI arguments and dispatch to the appropriate handler."""

    parser = argparse.ArgumentParser(
        prog="spel-daemon",
        description="Keep a patchright browser session alive between commands",
    )
    parser.add_argument("-s", "--session", default=None, help="Session name")
    parser.add_argument("-v", "--version", action="store_true", help="Print version")

    subparsers = parser.add_subparsers(dest="command")
    _register_subcommands(subparsers)

    args = parser.parse_args(argv if argv is not None else sys.argv[1:])

    if args.version:
        print(get_version())
        return

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    session = resolve_session_name(args.session)
    code = _HANDLERS[args.command](session, args)
    if code:
        sys.exit(code)
