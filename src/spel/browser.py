"""Browser lifecycle for the daemon: launch, context replacement, teardown.

The browser is started lazily on the first command that needs a page, using
whatever launch flags have been merged into the session by then.  All
functions here operate on a :class:`~spel.state.SessionState`.
"""

from __future__ import annotations

import json
import logging
import time
from typing import Any

from patchright.async_api import async_playwright

from spel.config import DaemonSettings
from spel.errors import CommandError
from spel.session import get_runtime_dir
from spel.state import SessionState

logger = logging.getLogger("spel.browser")


# ---------------------------------------------------------------------------
# Option building
# ---------------------------------------------------------------------------


def build_launch_options(flags: dict[str, Any], headless: bool) -> dict[str, Any]:
    """Translate launch flags into ``chromium.launch`` keyword arguments."""
    opts: dict[str, Any] = {"headless": headless}
    if flags.get("executable-path"):
        opts["executable_path"] = flags["executable-path"]
    if flags.get("args"):
        args = flags["args"]
        if isinstance(args, str):
            args = [a.strip() for a in args.split(",") if a.strip()]
        opts["args"] = list(args)
    if flags.get("proxy"):
        proxy: dict[str, Any] = {"server": flags["proxy"]}
        if flags.get("proxy-bypass"):
            proxy["bypass"] = flags["proxy-bypass"]
        opts["proxy"] = proxy
    return opts


def build_context_options(flags: dict[str, Any]) -> dict[str, Any]:
    """Translate launch flags into ``browser.new_context`` keyword arguments."""
    opts: dict[str, Any] = {}
    if flags.get("user-agent"):
        opts["user_agent"] = flags["user-agent"]
    if flags.get("ignore-https-errors"):
        opts["ignore_https_errors"] = True
    headers = flags.get("headers")
    if headers:
        if isinstance(headers, str):
            try:
                headers = json.loads(headers)
            except json.JSONDecodeError:
                logger.warning(f"Ignoring headers flag, not a JSON object: {headers!r}")
                headers = None
        if isinstance(headers, dict):
            opts["extra_http_headers"] = {str(k): str(v) for k, v in headers.items()}
    if flags.get("storage-state"):
        opts["storage_state"] = flags["storage-state"]
    return opts


# ---------------------------------------------------------------------------
# Page events
# ---------------------------------------------------------------------------


def attach_page_listeners(state: SessionState, page: Any) -> None:
    """Record console messages, page errors and responses from *page*."""

    def _on_console(msg: Any) -> None:
        state.console_messages.append({"type": msg.type, "text": msg.text})

    def _on_page_error(error: Any) -> None:
        state.page_errors.append({"message": str(error)})

    def _on_response(response: Any) -> None:
        request = response.request
        state.tracked_requests.append(
            {
                "url": request.url,
                "method": request.method,
                "status": response.status,
                "resource-type": request.resource_type,
            }
        )

    page.on("console", _on_console)
    page.on("pageerror", _on_page_error)
    page.on("response", _on_response)


def _adopt_page(state: SessionState, page: Any) -> None:
    state.page = page
    state.console_messages.clear()
    state.page_errors.clear()
    state.tracked_requests.clear()
    attach_page_listeners(state, page)


def _apply_timeouts(context: Any, settings: DaemonSettings | None) -> None:
    if settings is None:
        return
    context.set_default_timeout(settings.action_timeout)
    context.set_default_navigation_timeout(settings.navigation_timeout)


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


async def _stop_failed_driver(state: SessionState, playwright: Any) -> None:
    try:
        await playwright.stop()
    except Exception as exc:
        logger.warning(f"close-playwright after failed launch: {exc}")
    state.clear_driver_handles()


async def launch_browser(state: SessionState, settings: DaemonSettings | None = None) -> None:
    """Start Chromium according to ``state.launch_flags``.

    ``profile`` launches a persistent context on that directory, ``cdp``
    attaches to an already running browser, anything else launches a fresh
    browser with one context and one page.  When any step after the driver
    started fails, the driver is stopped and the handles are reset before
    the error propagates.
    """
    flags = state.launch_flags
    launch_opts = build_launch_options(flags, state.headless)
    context_opts = build_context_options(flags)

    playwright = await async_playwright().start()
    state.playwright = playwright
    try:
        page = await _open_page(state, playwright.chromium, flags, launch_opts, context_opts)
    except Exception:
        await _stop_failed_driver(state, playwright)
        raise

    _apply_timeouts(state.context, settings)
    _adopt_page(state, page)


async def _open_page(
    state: SessionState,
    chromium: Any,
    flags: dict[str, Any],
    launch_opts: dict[str, Any],
    context_opts: dict[str, Any],
) -> Any:
    profile = flags.get("profile")
    if profile:
        logger.info(f"Launching persistent context on {profile!r}")
        context = await chromium.launch_persistent_context(
            profile, **launch_opts, **context_opts
        )
        state.context = context
        state.browser = context.browser
        state.persistent_profile = True
        return context.pages[0] if context.pages else await context.new_page()
    if flags.get("cdp"):
        logger.info(f"Connecting over CDP to {flags['cdp']!r}")
        state.browser = await chromium.connect_over_cdp(flags["cdp"])
        contexts = state.browser.contexts
        context = contexts[0] if contexts else await state.browser.new_context(**context_opts)
        state.context = context
        return context.pages[0] if context.pages else await context.new_page()
    logger.info(f"Launching chromium (headless={state.headless})")
    state.browser = await chromium.launch(**launch_opts)
    state.context = await state.browser.new_context(**context_opts)
    return await state.context.new_page()


async def connect_over_cdp(
    state: SessionState, url: str, settings: DaemonSettings | None = None
) -> Any:
    """Attach the session to a running browser at *url*, replacing handles."""
    started = state.playwright is None
    if started:
        state.playwright = await async_playwright().start()
    try:
        browser = await state.playwright.chromium.connect_over_cdp(url)
        contexts = browser.contexts
        context = contexts[0] if contexts else await browser.new_context()
        page = context.pages[0] if context.pages else await context.new_page()
    except Exception:
        if started:
            await _stop_failed_driver(state, state.playwright)
        raise
    state.browser = browser
    state.context = context
    state.persistent_profile = False
    state.tracing = False
    state.refs.clear()
    _apply_timeouts(context, settings)
    _adopt_page(state, page)
    return page


async def save_inflight_trace(state: SessionState) -> str | None:
    """Stop an active trace and save it next to the session files.

    Returns the trace path, or ``None`` when no trace was running or saving
    failed.
    """
    if not state.tracing or state.context is None:
        return None
    path = get_runtime_dir() / f"trace-autosave-{int(time.time() * 1000)}.zip"
    try:
        await state.context.tracing.stop(path=str(path))
    except Exception as exc:
        logger.warning(f"Failed to auto-save trace: {exc}")
        return None
    finally:
        state.tracing = False
    logger.warning(f"Trace auto-saved to {path}")
    return str(path)


async def replace_context(
    state: SessionState,
    settings: DaemonSettings | None = None,
    **context_opts: Any,
) -> Any:
    """Swap the current context for a new one built from *context_opts*.

    Used for device emulation, credentials and storage-state loading.  An
    in-flight trace is saved first, the old page and context are closed,
    listeners are attached to the new page, and the ref table is emptied
    (the counter is kept so ids are never reused).
    """
    if state.browser is None:
        if state.persistent_profile:
            raise CommandError(
                "Cannot replace the context of a persistent profile session."
            )
        raise CommandError("No browser running.")

    await save_inflight_trace(state)
    if state.page is not None:
        try:
            await state.page.close()
        except Exception as exc:
            logger.warning(f"close-page: {exc}")
    if state.context is not None:
        try:
            await state.context.close()
        except Exception as exc:
            logger.warning(f"close-context: {exc}")

    state.context = await state.browser.new_context(**context_opts)
    page = await state.context.new_page()
    state.routes.clear()
    state.dialog_handler = None
    state.refs.clear()
    _apply_timeouts(state.context, settings)
    _adopt_page(state, page)
    return page


async def close_browser(state: SessionState) -> None:
    """Close page, context, browser and driver, logging but not raising."""
    await save_inflight_trace(state)
    steps = (
        ("close-page", state.page, "close"),
        ("close-context", state.context, "close"),
        ("close-browser", state.browser, "close"),
        ("close-playwright", state.playwright, "stop"),
    )
    for label, handle, method in steps:
        if handle is None:
            continue
        try:
            await getattr(handle, method)()
        except Exception as exc:
            logger.warning(f"{label}: {exc}")
    state.clear_driver_handles()
