"""Session file management for the spel daemon.

Every daemon serves exactly one named session.  Its runtime files live flat
in a per-user runtime directory and are namespaced by the session name, so
independent sessions never collide:

    $SPEL_RUNTIME_DIR (or the system temp dir)/
      spel-default.sock           # Unix domain socket
      spel-default.pid            # Daemon PID
      spel-default.log            # Daemon log
      spel-session-default.json   # Persisted storage state (--session-name)
      spel-work.sock
      ...

The path helpers are pure: they build paths and never touch the filesystem.
"""

from __future__ import annotations

import os
import socket
import tempfile
from pathlib import Path

from spel.config import load_settings

# ---------------------------------------------------------------------------
# Path helpers
# ---------------------------------------------------------------------------

_PREFIX = "spel-"
_STATE_PREFIX = "spel-session-"
_SOCKET_SUFFIX = ".sock"
_PID_SUFFIX = ".pid"
_LOG_SUFFIX = ".log"
_STATE_SUFFIX = ".json"
_ENV_RUNTIME_DIR = "SPEL_RUNTIME_DIR"
_ENV_SESSION_VAR = "SPEL_SESSION"
_DEFAULT_SESSION = "default"


def get_runtime_dir() -> Path:
    """Return the directory holding socket, pid, log and state files.

    Resolved through :class:`~spel.config.DaemonSettings`, so
    ``SPEL_RUNTIME_DIR`` picks it; blank means the system temp dir.
    """
    override = (load_settings().runtime_dir or "").strip()
    return Path(override) if override else Path(tempfile.gettempdir())


def set_runtime_dir(path: str | os.PathLike[str]) -> None:
    """Point this process, and any daemon it spawns, at *path*."""
    os.environ[_ENV_RUNTIME_DIR] = str(path)


def socket_path(session: str) -> Path:
    """Return the Unix domain socket path for *session*."""
    return get_runtime_dir() / f"{_PREFIX}{session}{_SOCKET_SUFFIX}"


def pid_path(session: str) -> Path:
    """Return the PID file path for *session*."""
    return get_runtime_dir() / f"{_PREFIX}{session}{_PID_SUFFIX}"


def log_path(session: str) -> Path:
    """Return the daemon log file path for *session*."""
    return get_runtime_dir() / f"{_PREFIX}{session}{_LOG_SUFFIX}"


def session_state_path(session_name: str) -> Path:
    """Return the persisted storage-state file for a ``session-name`` flag."""
    return get_runtime_dir() / f"{_STATE_PREFIX}{session_name}{_STATE_SUFFIX}"


# ---------------------------------------------------------------------------
# PID management
# ---------------------------------------------------------------------------


def write_pid(session: str, pid: int) -> None:
    """Write *pid* to the session's PID file."""
    path = pid_path(session)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(str(pid), encoding="utf-8")


def read_pid(session: str) -> int | None:
    """Read the PID from the session's PID file.

    Returns ``None`` if the file is missing, empty, or contains non-integer
    content.
    """
    try:
        text = pid_path(session).read_text(encoding="utf-8").strip()
        if not text:
            return None
        return int(text)
    except (OSError, ValueError):
        return None


def is_pid_alive(pid: int) -> bool:
    """Return ``True`` if a process with *pid* exists.

    Uses ``os.kill(pid, 0)`` which checks for process existence without
    sending a signal.
    """
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # Process exists but we lack permission to signal it
        return True
    except OSError:
        return False
    return True


def owns_pid_file(session: str, pid: int | None = None) -> bool:
    """Return ``True`` if the session's PID file names *pid* (default: us)."""
    if pid is None:
        pid = os.getpid()
    return read_pid(session) == pid


# ---------------------------------------------------------------------------
# Liveness
# ---------------------------------------------------------------------------


def socket_connectable(session: str, timeout: float = 0.5) -> bool:
    """Return ``True`` if something accepts connections on the session socket."""
    path = socket_path(session)
    if not path.exists():
        return False
    sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
    try:
        sock.settimeout(timeout)
        sock.connect(str(path))
    except OSError:
        return False
    finally:
        sock.close()
    return True


def daemon_running(session: str) -> bool:
    """Return ``True`` only if a daemon for *session* is alive and reachable.

    All three must hold: the PID file exists, the PID it names is a live
    process, and the session socket accepts a connection.  Any failing check
    yields ``False``; stale files never raise.

    The daemon binds its socket before writing the PID file, so a daemon that
    is still starting reads as "not running" rather than half-alive.  A
    caller that then spawns a second daemon races the first one; the loser's
    ``run_server`` replaces the socket and the PID file, and the first daemon
    leaves them alone on shutdown because it no longer owns the PID file.
    """
    pid = read_pid(session)
    if pid is None:
        return False
    if not is_pid_alive(pid):
        return False
    return socket_connectable(session)


# ---------------------------------------------------------------------------
# Session enumeration & cleanup
# ---------------------------------------------------------------------------


def cleanup_session(session: str) -> None:
    """Remove the socket and PID files of *session*.

    The log and the persisted storage-state file are left intact.
    """
    for path in (socket_path(session), pid_path(session)):
        try:
            path.unlink()
        except FileNotFoundError:
            pass


def list_sessions() -> list[dict]:
    """Scan the runtime directory for session sockets.

    Each entry is a dict with keys:

    * ``name``: session name (``str``)
    * ``socket``: absolute socket path (``str``)
    * ``pid``: the PID read from the file, or ``None``
    * ``alive``: whether :func:`daemon_running` holds (``bool``)
    """
    runtime_dir = get_runtime_dir()
    if not runtime_dir.is_dir():
        return []
    results: list[dict] = []
    for entry in sorted(runtime_dir.glob(f"{_PREFIX}*{_SOCKET_SUFFIX}")):
        name = entry.name[len(_PREFIX) : -len(_SOCKET_SUFFIX)]
        if not name:
            continue
        results.append(
            {
                "name": name,
                "socket": str(entry.absolute()),
                "pid": read_pid(name),
                "alive": daemon_running(name),
            }
        )
    return results


def resolve_session_name(cli_arg: str | None) -> str:
    """Determine which session name to use.

    Priority (highest to lowest):

    1. Explicit *cli_arg* (if not ``None`` and not empty).
    2. The ``SPEL_SESSION`` environment variable.
    3. ``"default"``.
    """
    if cli_arg:
        return cli_arg
    env_value = os.environ.get(_ENV_SESSION_VAR, "").strip()
    if env_value:
        return env_value
    return _DEFAULT_SESSION
