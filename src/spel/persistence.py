from __future__ import annotations

import logging

from spel.browser import build_context_options, replace_context
from spel.config import DaemonSettings
from spel.session import session_state_path
from spel.state import SessionState

logger = logging.getLogger("spel.persistence")

SESSION_NAME_FLAG = "session-name"


async def auto_save_session_state(state: SessionState) -> str | None:
    """Save cookies and storage to ``spel-session-<name>.json``.

    Only runs when the ``session-name`` flag is set and a context exists.
    Failures are logged and do not propagate, so ``close`` always succeeds.
    """
    name = state.launch_flags.get(SESSION_NAME_FLAG)
    if not name or state.context is None:
        return None
    path = session_state_path(name)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        await state.context.storage_state(path=str(path))
    except Exception as exc:
        logger.warning(f"Could not save session state to {path}: {exc}")
        return None
    logger.info(f"Session state saved to {path}")
    return str(path)


async def auto_load_session_state(
    state: SessionState, settings: DaemonSettings | None = None
) -> str | None:
    """Restore a saved session into a fresh context, if one was saved.

    A missing ``session-name`` flag or a missing file is a silent no-op.
    """
    name = state.launch_flags.get(SESSION_NAME_FLAG)
    if not name:
        return None
    path = session_state_path(name)
    if not path.is_file():
        logger.debug(f"No saved session state at {path}")
        return None
    context_opts = build_context_options(state.launch_flags)
    context_opts["storage_state"] = str(path)
    await replace_context(state, settings, **context_opts)
    logger.info(f"Session state loaded from {path}")
    return str(path)
