"""Shared fixtures for spel tests."""

from __future__ import annotations

import copy
import shutil
import tempfile
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

from spel.config import DaemonSettings
from spel.dispatcher import Dispatcher
from spel.state import SessionState

# What the snapshot walker returns for a page with one button.
SNAPSHOT_RESULT = {
    "tree": {
        "role": "document",
        "children": [
            {"role": "heading", "name": "Welcome", "attrs": {"level": 1}},
            {"role": "button", "name": "Submit", "ref": "e1"},
        ],
    },
    "refs": {
        "e1": {
            "role": "button",
            "name": "Submit",
            "tag": "button",
            "x": 10,
            "y": 20,
            "width": 80,
            "height": 30,
        }
    },
    "counter": 1,
}


@pytest.fixture
def runtime_dir(monkeypatch):
    """Point SPEL_RUNTIME_DIR at a short temp dir (Unix socket paths max ~108 chars)."""
    tmpdir = tempfile.mkdtemp(prefix="spel-")
    monkeypatch.setenv("SPEL_RUNTIME_DIR", tmpdir)
    monkeypatch.delenv("SPEL_SESSION", raising=False)
    yield Path(tmpdir)
    shutil.rmtree(tmpdir, ignore_errors=True)


@pytest.fixture
def snapshot_result():
    return copy.deepcopy(SNAPSHOT_RESULT)


@pytest.fixture
def mock_locator():
    """A MagicMock standing in for a Playwright Locator."""
    locator = MagicMock()
    locator.count = AsyncMock(return_value=1)
    locator.click = AsyncMock()
    locator.dblclick = AsyncMock()
    locator.fill = AsyncMock()
    locator.press_sequentially = AsyncMock()
    locator.press = AsyncMock()
    locator.hover = AsyncMock()
    locator.focus = AsyncMock()
    locator.clear = AsyncMock()
    locator.check = AsyncMock()
    locator.uncheck = AsyncMock()
    locator.select_option = AsyncMock()
    locator.scroll_into_view_if_needed = AsyncMock()
    locator.drag_to = AsyncMock()
    locator.set_input_files = AsyncMock()
    locator.text_content = AsyncMock(return_value="Submit")
    locator.get_attribute = AsyncMock(return_value="submit")
    locator.input_value = AsyncMock(return_value="hello")
    locator.is_visible = AsyncMock(return_value=True)
    locator.is_enabled = AsyncMock(return_value=True)
    locator.is_checked = AsyncMock(return_value=False)
    locator.inner_html = AsyncMock(return_value="<b>hi</b>")
    locator.bounding_box = AsyncMock(
        return_value={"x": 1, "y": 2, "width": 3, "height": 4}
    )
    locator.screenshot = AsyncMock(return_value=b"element-png")
    locator.evaluate = AsyncMock(return_value='button "Submit"')
    return locator


@pytest.fixture
def mock_page(mock_locator):
    """A MagicMock standing in for a Playwright Page."""
    page = MagicMock()
    page.url = "https://example.com/"
    page.frames = [MagicMock(name="main-frame")]
    page.title = AsyncMock(return_value="Example")
    page.goto = AsyncMock()
    page.wait_for_load_state = AsyncMock()
    page.evaluate = AsyncMock(return_value=copy.deepcopy(SNAPSHOT_RESULT))
    page.content = AsyncMock(return_value="<html></html>")
    page.screenshot = AsyncMock(return_value=b"png-bytes")
    page.pdf = AsyncMock()
    page.reload = AsyncMock()
    page.go_back = AsyncMock()
    page.go_forward = AsyncMock()
    page.close = AsyncMock()
    page.bring_to_front = AsyncMock()
    page.set_viewport_size = AsyncMock()
    page.set_extra_http_headers = AsyncMock()
    page.emulate_media = AsyncMock()
    page.route = AsyncMock()
    page.unroute = AsyncMock()
    page.wait_for_selector = AsyncMock()
    page.wait_for_url = AsyncMock()
    page.wait_for_function = AsyncMock()
    page.wait_for_timeout = AsyncMock()

    page.keyboard = MagicMock()
    page.keyboard.press = AsyncMock()
    page.keyboard.down = AsyncMock()
    page.keyboard.up = AsyncMock()

    page.mouse = MagicMock()
    page.mouse.move = AsyncMock()
    page.mouse.down = AsyncMock()
    page.mouse.up = AsyncMock()
    page.mouse.wheel = AsyncMock()

    page.locator = MagicMock(return_value=mock_locator)
    return page


@pytest.fixture
def mock_context(mock_page):
    """A MagicMock standing in for a Playwright BrowserContext."""
    ctx = MagicMock()
    ctx.pages = [mock_page]
    ctx.new_page = AsyncMock(return_value=mock_page)
    ctx.cookies = AsyncMock(return_value=[{"name": "sid", "value": "abc"}])
    ctx.add_cookies = AsyncMock()
    ctx.clear_cookies = AsyncMock()
    ctx.storage_state = AsyncMock()
    ctx.close = AsyncMock()
    ctx.set_offline = AsyncMock()
    ctx.grant_permissions = AsyncMock()
    ctx.set_geolocation = AsyncMock()
    ctx.set_default_timeout = MagicMock()
    ctx.set_default_navigation_timeout = MagicMock()

    ctx.tracing = MagicMock()
    ctx.tracing.start = AsyncMock()
    ctx.tracing.stop = AsyncMock()
    return ctx


@pytest.fixture
def mock_browser(mock_context):
    """A MagicMock standing in for a Playwright Browser."""
    browser = MagicMock()
    browser.new_context = AsyncMock(return_value=mock_context)
    browser.close = AsyncMock()
    browser.contexts = [mock_context]
    return browser


@pytest.fixture
def session_state(mock_page, mock_context, mock_browser):
    """A SessionState with mocked driver handles pre-wired."""
    state = SessionState(session="test")
    state.playwright = MagicMock()
    state.playwright.stop = AsyncMock()
    state.browser = mock_browser
    state.context = mock_context
    state.page = mock_page
    return state


@pytest.fixture
def settings(runtime_dir):
    return DaemonSettings(session="test")


@pytest.fixture
def dispatcher(session_state, settings):
    """A Dispatcher wired to the mocked session."""
    return Dispatcher(state=session_state, settings=settings)
