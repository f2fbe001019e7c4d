"""Command dispatcher for the spel daemon.

Owns the :class:`~spel.state.SessionState` and turns one raw JSON command
into one JSON response.  Every action in :class:`~spel.protocol.Action` has a
``cmd_<action>`` coroutine on :class:`Dispatcher`; each receives its
validated params model and returns the ``data`` object of the response.

``process_command`` is the protocol boundary and never raises:

* malformed JSON becomes ``{"success": false, "error": "Parse error: ..."}``
* an unknown action becomes ``{"success": true, "data": {"error": ...}}``
* any failure inside a handler is folded into ``data.error`` the same way

Commands run one at a time under a single lock, including the ``_flags``
merge that precedes them.
"""

from __future__ import annotations

import asyncio
import base64
import json
import logging
import re
import time
from pathlib import Path
from typing import Any

from spel.browser import (
    attach_page_listeners,
    build_context_options,
    close_browser,
    connect_over_cdp,
    launch_browser,
    replace_context,
)
from spel.config import DaemonSettings
from spel.devices import available_device_names, resolve_device_by_name, resolve_viewport
from spel.errors import CommandError, ErrorKind, SpelError
from spel.persistence import auto_load_session_state, auto_save_session_state
from spel.protocol import Action, parse_params
from spel.refs import clear_refs, is_ref, normalize_ref, resolve_ref
from spel.session import get_runtime_dir, list_sessions
from spel.snapshot import (
    Snapshot,
    capture_full_snapshot,
    capture_snapshot,
    filter_snapshot_tree,
    ref_bounding_box,
)
from spel.state import SessionState

logger = logging.getLogger("spel.dispatcher")

_ENVELOPE_KEYS = ("action", "_flags")
_BLANK_URLS = ("", "about:blank")

_DESCRIBE_JS = """
el => {
  const tag = el.tagName.toLowerCase();
  const text = (el.innerText || '').trim().replace(/\\s+/g, ' ');
  const cls = el.className && typeof el.className === 'string'
    ? '.' + el.className.trim().split(/\\s+/)[0] : '';
  const name = el.getAttribute('name');
  const type = el.getAttribute('type');
  let desc = tag;
  if (cls && cls !== '.' && !text) desc += cls;
  if (type) desc += '[type=' + type + ']';
  if (name) desc += '[name=' + name + ']';
  const shown = text.length > 30 ? text.slice(0, 30) + '...' : text;
  if (shown) desc += ' "' + shown + '"';
  return desc;
}
"""

_STORAGE_GET_JS = """
([kind, key]) => {
  const store = kind === 'session' ? window.sessionStorage : window.localStorage;
  return key === null ? JSON.stringify(Object.entries(store)) : store.getItem(key);
}
"""

_STORAGE_SET_JS = """
([kind, key, value]) => {
  const store = kind === 'session' ? window.sessionStorage : window.localStorage;
  store.setItem(key, value);
}
"""

_STORAGE_CLEAR_JS = """
(kind) => {
  const store = kind === 'session' ? window.sessionStorage : window.localStorage;
  store.clear();
}
"""

_SCROLL_JS = "([dx, dy]) => window.scrollBy(dx, dy)"
_SCROLL_ELEMENT_JS = "(el, [dx, dy]) => el.scrollBy(dx, dy)"

_COLOR_SCHEMES = {"dark": "dark", "light": "light", "no-preference": "no-preference"}


def error_response(message: str) -> str:
    """Return the wire line for a command that could not be read."""
    return json.dumps({"success": False, "error": message})


def decode_command(raw: str | bytes) -> dict[str, Any]:
    """Decode one raw command into a JSON object.

    Raises a ``parse`` :class:`CommandError` for undecodable bytes, invalid
    or too deeply nested JSON, and any JSON value that is not an object.
    """
    try:
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        command = json.loads(raw)
    except (ValueError, UnicodeDecodeError, RecursionError) as exc:
        raise CommandError(f"Parse error: {exc}", ErrorKind.PARSE) from exc
    if not isinstance(command, dict):
        raise CommandError("Parse error: command must be a JSON object", ErrorKind.PARSE)
    return command


class Dispatcher:
    """Executes protocol commands against one browser session."""

    def __init__(
        self,
        state: SessionState | None = None,
        settings: DaemonSettings | None = None,
    ) -> None:
        self.settings: DaemonSettings = settings or DaemonSettings()
        self.state: SessionState = state or SessionState(
            session=self.settings.session, headless=self.settings.headless
        )
        self.shutdown_requested: bool = False
        self._lock = asyncio.Lock()

    # -- Protocol boundary ---------------------------------------------------

    async def process_command(self, raw: str | bytes) -> str:
        """Process one raw command and return the JSON response text."""
        try:
            command = decode_command(raw)
        except CommandError as exc:
            logger.warning(f"Rejected command ({exc.kind.value}): {exc}")
            return error_response(str(exc))

        async with self._lock:
            data = await self.execute(command)
        return json.dumps({"success": True, "data": data}, default=str)

    async def execute(self, command: dict[str, Any]) -> dict[str, Any]:
        """Run *command* and fold any failure into ``{"error": ...}``."""
        try:
            return await self.run(command)
        except SpelError as exc:
            logger.warning(
                f"Command {command.get('action')!r} failed ({exc.kind.value}): {exc}"
            )
            return {"error": str(exc)}

    async def run(self, command: dict[str, Any]) -> dict[str, Any]:
        """Run *command*, raising :class:`~spel.errors.SpelError` on failure.

        Driver exceptions are wrapped in a ``driver`` :class:`CommandError`.
        """
        flags = command.get("_flags")
        if flags is not None:
            if not isinstance(flags, dict):
                raise CommandError("_flags must be a JSON object", ErrorKind.INVALID_PARAMS)
            self.state.merge_flags(flags)

        name = command.get("action")
        action = Action.lookup(name)
        if action is None:
            raise CommandError(f"Unknown action: {name}", ErrorKind.UNKNOWN_ACTION)

        payload = {k: v for k, v in command.items() if k not in _ENVELOPE_KEYS}
        params = parse_params(action, payload)
        handler = getattr(self, f"cmd_{action.value}")
        logger.debug(f"Executing {action.value} {payload}")
        try:
            return await handler(params)
        except SpelError:
            raise
        except Exception as exc:
            logger.exception(f"Command {action.value!r} raised an exception")
            raise CommandError(str(exc) or exc.__class__.__name__) from exc

    # -- Browser & page helpers ---------------------------------------------

    async def ensure_browser(self) -> None:
        """Launch the browser on first use, then restore a saved session."""
        if self.state.context is not None:
            return
        await launch_browser(self.state, self.settings)
        if not self.state.launch_flags.get("profile"):
            await auto_load_session_state(self.state, self.settings)

    async def _page(self) -> Any:
        await self.ensure_browser()
        if self.state.page is None:
            page = await self.state.context.new_page()
            attach_page_listeners(self.state, page)
            self.state.page = page
        return self.state.page

    async def _loaded_page(self) -> Any:
        page = await self._page()
        if page.url in _BLANK_URLS:
            raise CommandError("No page loaded. Navigate first with the 'navigate' action.")
        return page

    def _ref_hint(self) -> str:
        known = sorted(self.state.refs, key=lambda k: int(k[1:]))
        if known:
            return f"Available: @{known[0]}-@{known[-1]}. Run 'snapshot' to refresh."
        return "No refs available. Run 'snapshot' first to assign refs (@e1, @e2, ...)."

    async def _locator(self, selector: str) -> Any:
        """Resolve a CSS selector or a ref (``e3`` / ``@e3``) to a locator."""
        page = await self._loaded_page()
        if is_ref(selector):
            ref_id = normalize_ref(selector)
            if ref_id not in self.state.refs:
                raise CommandError(
                    f"Ref {ref_id} not found. {self._ref_hint()}", ErrorKind.LOOKUP
                )
            return await resolve_ref(page, ref_id)
        return page.locator(selector)

    def _record(self, snap: Snapshot) -> None:
        self.state.record_refs(snap.refs)
        self.state.advance_counter(snap.counter)

    async def _snapshot_after_action(self, scope: str | None = None) -> str | None:
        snap = await capture_snapshot(self.state.page, self.state.counter, scope)
        self._record(snap)
        return snap.tree

    async def _describe(self, locator: Any) -> str | None:
        try:
            return await locator.evaluate(_DESCRIBE_JS)
        except Exception as exc:
            logger.debug(f"Could not describe element: {exc}")
            return None

    def _current_url(self) -> str | None:
        page = self.state.page
        if page is None or page.url in _BLANK_URLS:
            return None
        return page.url

    def _output_path(self, prefix: str, ext: str) -> Path:
        return get_runtime_dir() / f"spel-{prefix}-{int(time.time() * 1000)}.{ext}"

    async def _rebuild_context(self, **overrides: Any) -> Any:
        """Recreate the context with launch-flag options plus *overrides*."""
        await self.ensure_browser()
        current_url = self._current_url()
        opts = build_context_options(self.state.launch_flags)
        opts.update(overrides)
        page = await replace_context(self.state, self.settings, **opts)
        if current_url:
            await page.goto(current_url)
        return page

    # -----------------------------------------------------------------------
    # Command handlers
    # -----------------------------------------------------------------------

    # -- Navigation ----------------------------------------------------------

    async def cmd_navigate(self, params) -> dict[str, Any]:
        """Open *url* in the current page."""
        page = await self._page()
        await page.goto(params.url)
        await page.wait_for_load_state()
        self.state.refs.clear()
        tree = await self._snapshot_after_action()
        return {"snapshot": tree, "url": page.url, "title": await page.title()}

    async def _history(self, method: str) -> dict[str, Any]:
        page = await self._loaded_page()
        await getattr(page, method)()
        self.state.refs.clear()
        tree = await self._snapshot_after_action()
        return {"snapshot": tree, "url": page.url}

    async def cmd_back(self, params) -> dict[str, Any]:
        return await self._history("go_back")

    async def cmd_forward(self, params) -> dict[str, Any]:
        return await self._history("go_forward")

    async def cmd_reload(self, params) -> dict[str, Any]:
        return await self._history("reload")

    async def cmd_url(self, params) -> dict[str, Any]:
        page = await self._page()
        return {"url": page.url}

    async def cmd_title(self, params) -> dict[str, Any]:
        page = await self._page()
        return {"title": await page.title()}

    async def cmd_content(self, params) -> dict[str, Any]:
        """Return the page HTML, or the inner HTML of *selector*."""
        page = await self._loaded_page()
        if params.selector:
            locator = await self._locator(params.selector)
            return {"html": await locator.inner_html()}
        return {"html": await page.content()}

    async def cmd_wait(self, params) -> dict[str, Any]:
        """Wait for the first condition given, checked in a fixed order."""
        page = await self._page()
        if params.text:
            await page.wait_for_selector(f"text={params.text}")
            return {"found_text": params.text}
        if params.url:
            await page.wait_for_url(params.url)
            return {"url": params.url}
        if params.function:
            await page.wait_for_function(params.function)
            return {"function_completed": True}
        if params.selector:
            await page.wait_for_selector(params.selector)
            return {"found": params.selector}
        if params.state:
            await page.wait_for_load_state(params.state)
            return {"state": params.state}
        if params.timeout is not None:
            await page.wait_for_timeout(params.timeout)
            return {"waited": params.timeout}
        raise CommandError("No wait condition specified", ErrorKind.INVALID_PARAMS)

    # -- Snapshot ------------------------------------------------------------

    async def cmd_snapshot(self, params) -> dict[str, Any]:
        """Capture the outline, record new refs, and return the filtered tree."""
        page = await self._loaded_page()
        if params.full and not params.selector:
            snap = await capture_full_snapshot(page, self.state.counter)
        else:
            snap = await capture_snapshot(page, self.state.counter, params.selector)
        self._record(snap)
        tree = filter_snapshot_tree(snap.tree, params.filter_options())
        return {"snapshot": tree, "refs_count": self.state.counter}

    async def cmd_clear_refs(self, params) -> dict[str, Any]:
        """Remove ref markers from the DOM; the ref table is kept."""
        page = await self._page()
        return {"cleared": await clear_refs(page)}

    async def cmd_bounding_box(self, params) -> dict[str, Any]:
        if is_ref(params.selector):
            ref_id = normalize_ref(params.selector)
            box = ref_bounding_box(self.state.refs, ref_id)
            if box is not None:
                return {"box": box}
        locator = await self._locator(params.selector)
        return {"box": await locator.bounding_box()}

    # -- Interaction ---------------------------------------------------------

    async def cmd_click(self, params) -> dict[str, Any]:
        await (await self._locator(params.selector)).click()
        return {"clicked": params.selector, "snapshot": await self._snapshot_after_action()}

    async def cmd_dblclick(self, params) -> dict[str, Any]:
        await (await self._locator(params.selector)).dblclick()
        return {
            "dblclicked": params.selector,
            "snapshot": await self._snapshot_after_action(),
        }

    async def cmd_fill(self, params) -> dict[str, Any]:
        await (await self._locator(params.selector)).fill(params.value)
        return {"filled": params.selector, "snapshot": await self._snapshot_after_action()}

    async def cmd_type(self, params) -> dict[str, Any]:
        """Type *text* key by key into the element."""
        await (await self._locator(params.selector)).press_sequentially(params.text)
        return {"typed": params.selector, "snapshot": await self._snapshot_after_action()}

    async def cmd_press(self, params) -> dict[str, Any]:
        """Press a key on an element, or on the page when no selector is given."""
        if params.selector:
            await (await self._locator(params.selector)).press(params.key)
        else:
            page = await self._loaded_page()
            await page.keyboard.press(params.key)
        return {"pressed": params.key, "snapshot": await self._snapshot_after_action()}

    async def _act_and_describe(self, selector: str, method: str, key: str) -> dict[str, Any]:
        locator = await self._locator(selector)
        await getattr(locator, method)()
        result: dict[str, Any] = {key: selector}
        desc = await self._describe(locator)
        if desc:
            result["desc"] = desc
        return result

    async def cmd_hover(self, params) -> dict[str, Any]:
        return await self._act_and_describe(params.selector, "hover", "hovered")

    async def cmd_focus(self, params) -> dict[str, Any]:
        return await self._act_and_describe(params.selector, "focus", "focused")

    async def cmd_clear(self, params) -> dict[str, Any]:
        return await self._act_and_describe(params.selector, "clear", "cleared")

    async def cmd_check(self, params) -> dict[str, Any]:
        await (await self._locator(params.selector)).check()
        return {"checked": params.selector, "snapshot": await self._snapshot_after_action()}

    async def cmd_uncheck(self, params) -> dict[str, Any]:
        await (await self._locator(params.selector)).uncheck()
        return {
            "unchecked": params.selector,
            "snapshot": await self._snapshot_after_action(),
        }

    async def cmd_select(self, params) -> dict[str, Any]:
        await (await self._locator(params.selector)).select_option(params.values)
        return {"selected": params.selector, "snapshot": await self._snapshot_after_action()}

    async def cmd_scroll(self, params) -> dict[str, Any]:
        """Scroll the window, or one element, by *amount* pixels."""
        amount = params.amount
        dx, dy = {
            "up": (0, -amount),
            "down": (0, amount),
            "left": (-amount, 0),
            "right": (amount, 0),
        }[params.direction]
        if params.selector:
            locator = await self._locator(params.selector)
            await locator.evaluate(_SCROLL_ELEMENT_JS, [dx, dy])
        else:
            page = await self._loaded_page()
            await page.evaluate(_SCROLL_JS, [dx, dy])
        return {
            "scrolled": params.direction,
            "amount": amount,
            "snapshot": await self._snapshot_after_action(),
        }

    async def cmd_scrollintoview(self, params) -> dict[str, Any]:
        await (await self._locator(params.selector)).scroll_into_view_if_needed()
        return {
            "scrolled_into_view": params.selector,
            "snapshot": await self._snapshot_after_action(),
        }

    async def cmd_drag(self, params) -> dict[str, Any]:
        source = await self._locator(params.source)
        target = await self._locator(params.target)
        await source.drag_to(target)
        return {
            "dragged": {"from": params.source, "to": params.target},
            "snapshot": await self._snapshot_after_action(),
        }

    async def cmd_upload(self, params) -> dict[str, Any]:
        files = params.file_list()
        await (await self._locator(params.selector)).set_input_files(files)
        return {
            "uploaded": {"selector": params.selector, "files": files},
            "snapshot": await self._snapshot_after_action(),
        }

    async def cmd_keydown(self, params) -> dict[str, Any]:
        page = await self._loaded_page()
        await page.keyboard.down(params.key)
        return {"keydown": params.key}

    async def cmd_keyup(self, params) -> dict[str, Any]:
        page = await self._loaded_page()
        await page.keyboard.up(params.key)
        return {"keyup": params.key}

    async def cmd_mouse_move(self, params) -> dict[str, Any]:
        page = await self._page()
        await page.mouse.move(params.x, params.y)
        return {"moved": {"x": params.x, "y": params.y}}

    async def cmd_mouse_down(self, params) -> dict[str, Any]:
        page = await self._page()
        await page.mouse.down(button=params.button)
        return {"mouse_down": params.button}

    async def cmd_mouse_up(self, params) -> dict[str, Any]:
        page = await self._page()
        await page.mouse.up(button=params.button)
        return {"mouse_up": params.button}

    async def cmd_mouse_wheel(self, params) -> dict[str, Any]:
        page = await self._page()
        await page.mouse.wheel(params.delta_x, params.delta_y)
        return {"wheel": {"dx": params.delta_x, "dy": params.delta_y}}

    # -- Queries -------------------------------------------------------------

    async def cmd_get_text(self, params) -> dict[str, Any]:
        return {"text": await (await self._locator(params.selector)).text_content()}

    async def cmd_get_attribute(self, params) -> dict[str, Any]:
        locator = await self._locator(params.selector)
        return {"value": await locator.get_attribute(params.attribute)}

    async def cmd_get_value(self, params) -> dict[str, Any]:
        return {"value": await (await self._locator(params.selector)).input_value()}

    async def cmd_is_visible(self, params) -> dict[str, Any]:
        return {"visible": await (await self._locator(params.selector)).is_visible()}

    async def cmd_is_enabled(self, params) -> dict[str, Any]:
        return {"enabled": await (await self._locator(params.selector)).is_enabled()}

    async def cmd_is_checked(self, params) -> dict[str, Any]:
        return {"checked": await (await self._locator(params.selector)).is_checked()}

    async def cmd_count(self, params) -> dict[str, Any]:
        return {"count": await (await self._locator(params.selector)).count()}

    async def cmd_evaluate(self, params) -> dict[str, Any]:
        """Evaluate a JavaScript expression in the page."""
        page = await self._loaded_page()
        result = await page.evaluate(params.script)
        if params.base64:
            encoded = base64.b64encode(str(result).encode("utf-8")).decode("ascii")
            return {"result": encoded}
        return {"result": result}

    # -- Output --------------------------------------------------------------

    async def cmd_screenshot(self, params) -> dict[str, Any]:
        """Capture the page (or one element) as PNG."""
        page = await self._loaded_page()
        if params.selector:
            data = await (await self._locator(params.selector)).screenshot()
        else:
            data = await page.screenshot(full_page=params.full_page)
        path = Path(params.path) if params.path else self._output_path("screenshot", "png")
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        return {"path": str(path), "size": len(data)}

    async def cmd_pdf(self, params) -> dict[str, Any]:
        page = await self._loaded_page()
        path = Path(params.path) if params.path else self._output_path("page", "pdf")
        await page.pdf(path=str(path))
        return {"path": str(path)}

    # -- Tabs & frames -------------------------------------------------------

    async def cmd_tab_new(self, params) -> dict[str, Any]:
        await self.ensure_browser()
        page = await self.state.context.new_page()
        attach_page_listeners(self.state, page)
        self.state.page = page
        if params.url:
            await page.goto(params.url)
        return {"tab": "new", "url": page.url}

    async def cmd_tab_list(self, params) -> dict[str, Any]:
        await self.ensure_browser()
        tabs = []
        for index, page in enumerate(self.state.context.pages):
            tabs.append(
                {
                    "index": index,
                    "url": page.url,
                    "title": await page.title(),
                    "active": page is self.state.page,
                }
            )
        return {"tabs": tabs}

    async def cmd_tab_switch(self, params) -> dict[str, Any]:
        await self.ensure_browser()
        pages = self.state.context.pages
        if params.index >= len(pages):
            raise CommandError(
                f"No tab at index {params.index} ({len(pages)} open)", ErrorKind.LOOKUP
            )
        page = pages[params.index]
        self.state.page = page
        await page.bring_to_front()
        return {
            "tab": params.index,
            "url": page.url,
            "snapshot": await self._snapshot_after_action(),
        }

    async def cmd_tab_close(self, params) -> dict[str, Any]:
        page = await self._page()
        await page.close()
        remaining = [p for p in self.state.context.pages if p is not page]
        self.state.page = remaining[-1] if remaining else None
        return {"closed": True, "remaining": len(remaining)}

    async def cmd_frame_list(self, params) -> dict[str, Any]:
        page = await self._page()
        return {"frames": [{"name": f.name, "url": f.url} for f in page.frames]}

    # -- Emulation -----------------------------------------------------------

    async def cmd_set_viewport(self, params) -> dict[str, Any]:
        """Resize the viewport to *width* x *height* or to a named preset."""
        page = await self._page()
        if params.preset:
            viewport = resolve_viewport(params.preset).model_dump()
        else:
            viewport = {"width": params.width, "height": params.height}
        await page.set_viewport_size(viewport)
        return {"viewport": viewport}

    async def cmd_set_device(self, params) -> dict[str, Any]:
        """Emulate a catalog device by rebuilding the context."""
        preset = resolve_device_by_name(params.device)
        if preset is None:
            raise CommandError(
                f"Unknown device: {params.device}. "
                f"Available: {', '.join(available_device_names())}",
                ErrorKind.LOOKUP,
            )
        await self._rebuild_context(**preset.context_options())
        return {"device": params.device, "preset": preset.model_dump()}

    async def cmd_set_offline(self, params) -> dict[str, Any]:
        await self.ensure_browser()
        await self.state.context.set_offline(params.enabled)
        return {"offline": params.enabled}

    async def cmd_set_headers(self, params) -> dict[str, Any]:
        page = await self._page()
        await page.set_extra_http_headers(params.headers)
        return {"headers_set": True}

    async def cmd_set_media(self, params) -> dict[str, Any]:
        page = await self._page()
        scheme = _COLOR_SCHEMES.get((params.color_scheme or "").lower(), "no-preference")
        await page.emulate_media(color_scheme=scheme)
        return {"media": {"colorScheme": scheme}}

    async def cmd_set_geo(self, params) -> dict[str, Any]:
        await self.ensure_browser()
        context = self.state.context
        await context.grant_permissions(["geolocation"])
        await context.set_geolocation(
            {
                "latitude": params.latitude,
                "longitude": params.longitude,
                "accuracy": params.accuracy,
            }
        )
        return {"geolocation": {"latitude": params.latitude, "longitude": params.longitude}}

    async def cmd_set_credentials(self, params) -> dict[str, Any]:
        await self._rebuild_context(
            http_credentials={"username": params.username, "password": params.password}
        )
        return {"credentials_set": True}

    # -- Storage -------------------------------------------------------------

    async def cmd_cookies_get(self, params) -> dict[str, Any]:
        await self.ensure_browser()
        if params.urls:
            cookies = await self.state.context.cookies(params.urls)
        else:
            cookies = await self.state.context.cookies()
        return {"cookies": cookies}

    async def cmd_cookies_set(self, params) -> dict[str, Any]:
        """Add one cookie, scoped by *domain* or else by URL."""
        page = await self._page()
        cookie: dict[str, Any] = {"name": params.name, "value": params.value}
        if params.domain:
            cookie["domain"] = params.domain
            cookie["path"] = params.path or "/"
        else:
            cookie["url"] = params.url or page.url
        await self.state.context.add_cookies([cookie])
        return {"cookie_set": {"name": params.name, "value": params.value}}

    async def cmd_cookies_clear(self, params) -> dict[str, Any]:
        await self.ensure_browser()
        await self.state.context.clear_cookies()
        return {"cookies_cleared": True}

    async def cmd_storage_get(self, params) -> dict[str, Any]:
        page = await self._loaded_page()
        return {"storage": await page.evaluate(_STORAGE_GET_JS, [params.type, params.key])}

    async def cmd_storage_set(self, params) -> dict[str, Any]:
        page = await self._loaded_page()
        await page.evaluate(_STORAGE_SET_JS, [params.type, params.key, params.value])
        return {"storage_set": {"key": params.key, "value": params.value}}

    async def cmd_storage_clear(self, params) -> dict[str, Any]:
        page = await self._loaded_page()
        await page.evaluate(_STORAGE_CLEAR_JS, params.type)
        return {"storage_cleared": params.type}

    def _state_file(self, path: str | None) -> Path:
        return Path(path) if path else Path(f"state-{self.state.session}.json")

    async def cmd_state_save(self, params) -> dict[str, Any]:
        """Write cookies and storage to a JSON file."""
        await self.ensure_browser()
        path = self._state_file(params.path)
        await self.state.context.storage_state(path=str(path))
        return {"state": "saved", "path": str(path)}

    async def cmd_state_load(self, params) -> dict[str, Any]:
        """Load a storage-state file into a fresh context."""
        path = self._state_file(params.path)
        if not path.is_file():
            raise CommandError(f"State file not found: {path}", ErrorKind.LOOKUP)
        await self._rebuild_context(storage_state=str(path))
        return {"state": "loaded", "path": str(path)}

    # -- Network & diagnostics -----------------------------------------------

    async def cmd_network_route(self, params) -> dict[str, Any]:
        """Intercept requests matching *url*: continue, abort or fulfill."""
        page = await self._page()
        action_type = params.action_type

        async def _handler(route: Any) -> None:
            if action_type == "abort":
                await route.abort()
            elif action_type == "fulfill":
                fulfill_kwargs: dict[str, Any] = {}
                if params.status is not None:
                    fulfill_kwargs["status"] = params.status
                if params.body is not None:
                    fulfill_kwargs["body"] = params.body
                if params.content_type is not None:
                    fulfill_kwargs["content_type"] = params.content_type
                await route.fulfill(**fulfill_kwargs)
            else:
                await route.continue_()

        previous = self.state.routes.pop(params.url, None)
        if previous is not None:
            await page.unroute(params.url, previous)
        await page.route(params.url, _handler)
        self.state.routes[params.url] = _handler
        return {"route_added": params.url}

    async def cmd_network_unroute(self, params) -> dict[str, Any]:
        page = await self._page()
        if params.url:
            await page.unroute(params.url, self.state.routes.pop(params.url, None))
            return {"route_removed": params.url}
        for url, handler in list(self.state.routes.items()):
            await page.unroute(url, handler)
        self.state.routes.clear()
        return {"all_routes_removed": True}

    async def cmd_network_requests(self, params) -> dict[str, Any]:
        """Return tracked responses, optionally filtered."""
        requests = list(self.state.tracked_requests)
        if params.filter:
            try:
                pattern = re.compile(params.filter)
            except re.error as exc:
                raise CommandError(
                    f"Invalid filter pattern {params.filter!r}: {exc}",
                    ErrorKind.INVALID_PARAMS,
                ) from exc
            requests = [r for r in requests if pattern.search(str(r.get("url", "")))]
        if params.type:
            requests = [r for r in requests if r.get("resource-type") == params.type]
        if params.method:
            method = params.method.upper()
            requests = [r for r in requests if str(r.get("method", "")).upper() == method]
        if params.status:
            requests = [r for r in requests if str(r.get("status", "")).startswith(params.status)]
        return {"requests": requests}

    async def cmd_network_clear(self, params) -> dict[str, Any]:
        self.state.tracked_requests.clear()
        return {"network": "cleared"}

    async def cmd_console_get(self, params) -> dict[str, Any]:
        messages = list(self.state.console_messages)
        if params.clear:
            self.state.console_messages.clear()
        return {"messages": messages}

    async def cmd_console_clear(self, params) -> dict[str, Any]:
        self.state.console_messages.clear()
        return {"console": "cleared"}

    async def cmd_errors_get(self, params) -> dict[str, Any]:
        errors = list(self.state.page_errors)
        if params.clear:
            self.state.page_errors.clear()
        return {"errors": errors}

    async def cmd_errors_clear(self, params) -> dict[str, Any]:
        self.state.page_errors.clear()
        return {"errors": "cleared"}

    def _install_dialog_handler(self, page: Any, handler: Any) -> None:
        if self.state.dialog_handler is not None:
            page.remove_listener("dialog", self.state.dialog_handler)
        self.state.dialog_handler = handler
        page.on("dialog", handler)

    async def cmd_dialog_accept(self, params) -> dict[str, Any]:
        """Accept every future dialog, answering prompts with *text*."""
        page = await self._page()
        text = params.text or ""

        async def _accept(dialog: Any) -> None:
            await dialog.accept(text)

        self._install_dialog_handler(page, _accept)
        return {"dialog_handler": "accept", "text": params.text}

    async def cmd_dialog_dismiss(self, params) -> dict[str, Any]:
        page = await self._page()

        async def _dismiss(dialog: Any) -> None:
            await dialog.dismiss()

        self._install_dialog_handler(page, _dismiss)
        return {"dialog_handler": "dismiss"}

    async def cmd_trace_start(self, params) -> dict[str, Any]:
        await self.ensure_browser()
        if self.state.tracing:
            raise CommandError("Tracing is already active.")
        trace_kwargs: dict[str, Any] = {"screenshots": True, "snapshots": True}
        if params.name:
            trace_kwargs["name"] = params.name
        await self.state.context.tracing.start(**trace_kwargs)
        self.state.tracing = True
        return {"trace": "started", "name": params.name}

    async def cmd_trace_stop(self, params) -> dict[str, Any]:
        if not self.state.tracing or self.state.context is None:
            raise CommandError("Tracing is not active.")
        path = params.path or "trace.zip"
        await self.state.context.tracing.stop(path=path)
        self.state.tracing = False
        return {"trace": "stopped", "path": path}

    # -- Sessions ------------------------------------------------------------

    async def cmd_session_list(self, params) -> dict[str, Any]:
        return {"sessions": list_sessions(), "current": self.state.session}

    async def cmd_session_info(self, params) -> dict[str, Any]:
        """Describe this session without launching a browser."""
        url = title = None
        page = self.state.page
        if page is not None:
            url = page.url
            try:
                title = await page.title()
            except Exception as exc:
                logger.debug(f"Could not read title: {exc}")
        return {
            "session": self.state.session,
            "headless": self.state.headless,
            "tracing": self.state.tracing,
            "url": url,
            "title": title,
            "refs_count": self.state.counter,
        }

    async def cmd_connect(self, params) -> dict[str, Any]:
        """Attach to a running browser over CDP, dropping the current one."""
        if self.state.context is not None:
            await close_browser(self.state)
        page = await connect_over_cdp(self.state, params.url, self.settings)
        return {"connected": params.url, "url": page.url}

    async def cmd_close(self, params) -> dict[str, Any]:
        """Save the session if configured and ask the server to shut down."""
        await auto_save_session_state(self.state)
        self.shutdown_requested = True
        data: dict[str, Any] = {"closed": True, "shutdown": True}
        if self.state.tracing:
            data["trace_warning"] = "active trace will be auto-saved on shutdown"
        return data
