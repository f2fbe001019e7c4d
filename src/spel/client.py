"""Synchronous client for the spel daemon.

Connects to a daemon over its Unix domain socket to send one command and
receive one response, and starts or stops daemons as detached processes.
"""

from __future__ import annotations

import json
import os
import signal
import socket
import subprocess
import sys
import time

from spel.session import (
    cleanup_session,
    daemon_running,
    is_pid_alive,
    read_pid,
    socket_path,
)


def _receive_all(sock: socket.socket, buffer_size: int = 65536) -> bytes:
    """Read from *sock* until the connection closes or a full line arrived.

    The daemon protocol uses newline-delimited JSON, so we stop reading
    as soon as a complete line has arrived.
    """
    data = b""
    while True:
        chunk = sock.recv(buffer_size)
        if not chunk:
            break
        data += chunk
        if b"\n" in data:
            break
    return data.strip()


def build_command(
    action: str,
    params: dict | None = None,
    flags: dict | None = None,
) -> dict:
    """Build a wire command: ``{"action": ..., **params, "_flags": ...}``."""
    command: dict = {"action": action, **(params or {})}
    if flags:
        command["_flags"] = dict(flags)
    return command


def send_command(
    session: str,
    action: str,
    params: dict | None = None,
    flags: dict | None = None,
    timeout: float = 120.0,
) -> dict:
    """Send one command to the daemon for *session* and return its response.

    The returned dict always contains a ``success`` key.  Transport
    failures produce ``{"success": False, "error": ...}`` the same way the
    daemon reports a parse error.
    """
    sock_path = socket_path(session)
    if not sock_path.exists():
        return {
            "success": False,
            "error": (
                f"Session '{session}' is not running. "
                "Use 'spel-daemon start' to start it."
            ),
        }

    payload = json.dumps(build_command(action, params, flags)).encode("utf-8") + b"\n"
    s = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
    try:
        s.settimeout(timeout)
        s.connect(str(sock_path))
        s.sendall(payload)
        # Read response (may be large for snapshots)
        data = _receive_all(s)
    except ConnectionRefusedError:
        if not daemon_running(session):
            cleanup_session(session)
        return {
            "success": False,
            "error": (
                f"Session '{session}' daemon is not responding. "
                "Stale files were cleaned up."
            ),
        }
    except socket.timeout:
        return {"success": False, "error": f"Command timed out after {timeout}s"}
    except OSError as e:
        return {"success": False, "error": f"Connection error: {e}"}
    finally:
        s.close()

    if not data:
        return {"success": False, "error": "Empty response from daemon"}
    try:
        return json.loads(data)
    except ValueError as e:
        return {"success": False, "error": f"Invalid response from daemon: {e}"}


def start_daemon(session: str, headless: bool = True, timeout: float = 15.0) -> bool:
    """Start the daemon for *session* as a detached subprocess.

    The daemon is launched by running::

        python -c "from spel.server import start_daemon; ..."

    and this function waits up to *timeout* seconds for
    :func:`~spel.session.daemon_running` to hold.  Returns ``True`` if the
    daemon started (or was already running), ``False`` otherwise.
    """
    if daemon_running(session):
        return True

    # Clean up stale files from a previous run.
    cleanup_session(session)

    # The daemon logs to its own file, so its stdio is discarded here.
    proc = subprocess.Popen(
        [
            sys.executable,
            "-c",
            (
                "from spel.server import start_daemon; "
                f"start_daemon({session!r}, headless={bool(headless)!r})"
            ),
        ],
        stdin=subprocess.DEVNULL,
        stdout=subprocess.DEVNULL,
        stderr=subprocess.DEVNULL,
        start_new_session=True,
    )

    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if daemon_running(session):
            return True
        if proc.poll() is not None:
            return False
        time.sleep(0.1)

    return False


def stop_daemon(session: str, timeout: float = 10.0) -> dict:
    """Stop the daemon for *session*.

    Sends ``close`` first so the session state is saved, then falls back to
    ``SIGTERM`` if the process is still alive after *timeout* seconds.
    """
    pid = read_pid(session)
    if not daemon_running(session):
        cleanup_session(session)
        return {"success": True, "data": {"stopped": False, "reason": "not running"}}

    result = send_command(session, "close", timeout=timeout)

    deadline = time.monotonic() + timeout
    while pid is not None and is_pid_alive(pid) and time.monotonic() < deadline:
        time.sleep(0.1)

    if pid is not None and is_pid_alive(pid):
        try:
            os.kill(pid, signal.SIGTERM)
        except ProcessLookupError:
            pass
        except PermissionError:
            return {"success": False, "error": f"Permission denied killing PID {pid}"}
        return {"success": True, "data": {"stopped": True, "signalled": pid}}

    if not result.get("success"):
        return result
    return {"success": True, "data": {"stopped": True, **result.get("data", {})}}
