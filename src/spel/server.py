"""Daemon server for spel.

Listens on the session's Unix domain socket and hands every command to one
:class:`~spel.dispatcher.Dispatcher`.  Framing is one newline-terminated JSON
line per connection: the server reads a line, writes one response line and
closes the connection.

The server runs until a ``close`` command, ``SIGTERM`` or ``SIGINT``.  On the
way out it releases the browser and removes its socket and PID files, but
only while it still owns the PID file.
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import sys

from spel.browser import close_browser
from spel.config import DaemonSettings, load_settings
from spel.dispatcher import Dispatcher, error_response
from spel.session import (
    cleanup_session,
    log_path,
    owns_pid_file,
    read_pid,
    set_runtime_dir,
    socket_path,
    write_pid,
)

logger = logging.getLogger("spel.server")

# Commands can carry large scripts or file lists.
_READ_LIMIT = 16 * 1024 * 1024


def _release_session_files(session: str) -> None:
    if read_pid(session) is None:
        return
    if owns_pid_file(session):
        cleanup_session(session)
        logger.info(f"Removed socket and PID files for {session!r}")
    else:
        logger.info(f"PID file for {session!r} belongs to another daemon, leaving files")


async def run_server(
    session: str,
    headless: bool | None = None,
    settings: DaemonSettings | None = None,
) -> None:
    """Main daemon entry point: serve *session* until closed or signalled."""
    if settings is None:
        settings = load_settings(session=session, headless=headless)
    elif headless is not None:
        settings = settings.model_copy(update={"headless": headless})
    if settings.runtime_dir:
        set_runtime_dir(settings.runtime_dir)

    dispatcher = Dispatcher(settings=settings)
    dispatcher.state.session = session
    logger.info(f"Dispatcher created for {session!r} (headless={settings.headless})")

    # Remove stale socket and PID files from a previous run
    cleanup_session(session)
    sock_path = socket_path(session)
    sock_path.parent.mkdir(parents=True, exist_ok=True)

    stop = asyncio.Event()

    async def handle_client(
        reader: asyncio.StreamReader, writer: asyncio.StreamWriter
    ) -> None:
        try:
            try:
                data = await reader.readline()
            except ValueError as exc:
                # Line longer than _READ_LIMIT
                logger.warning(f"Rejected command: {exc}")
                response = error_response(f"Parse error: {exc}")
            else:
                if not data:
                    return
                response = await dispatcher.process_command(data)
            writer.write(response.encode("utf-8") + b"\n")
            await writer.drain()
        except Exception:
            logger.exception("Unhandled error in handle_client")
        finally:
            writer.close()
            try:
                await writer.wait_closed()
            except OSError as exc:
                logger.debug(f"Client went away before close: {exc}")

        if dispatcher.shutdown_requested and not stop.is_set():
            logger.info("Close command received, shutting down server")
            _release_session_files(session)
            stop.set()

    server = await asyncio.start_unix_server(
        handle_client, path=str(sock_path), limit=_READ_LIMIT
    )
    # Written only once the socket is bound, see session.daemon_running
    write_pid(session, os.getpid())
    logger.info(f"Server listening on {sock_path}")

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, stop.set)

    try:
        async with server:
            await stop.wait()
    finally:
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.remove_signal_handler(sig)
        logger.info("Server stopped, releasing browser")
        await close_browser(dispatcher.state)
        _release_session_files(session)


def _setup_logging(session: str, level: str = "DEBUG") -> None:
    """Configure logging for the daemon process.

    Writes to ``spel-<session>.log`` in the runtime directory.  Also redirects
    *stdout*/*stderr* so that stray ``print()`` calls or unhandled tracebacks
    land in the same file.
    """
    path = log_path(session)
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(path, mode="a", encoding="utf-8")
    handler.setFormatter(
        logging.Formatter(
            "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    )
    root = logging.getLogger()
    root.setLevel(level)
    root.addHandler(handler)

    sys.stdout = open(path, "a", encoding="utf-8")  # noqa: SIM115
    sys.stderr = sys.stdout


def start_daemon(session: str, headless: bool = True) -> None:
    """Entry point for the detached daemon subprocess. Called by client.py."""
    settings = load_settings(session=session, headless=headless)
    _setup_logging(session, settings.log_level)
    logger.info(f"Daemon starting for session {session!r} (pid={os.getpid()})")
    try:
        asyncio.run(run_server(session, settings=settings))
    except Exception:
        logger.exception("Daemon crashed")
        raise
