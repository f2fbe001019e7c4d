"""Shared fixtures for spel integration tests.

These fixtures drive a real headless Chromium through Patchright.  Every test
gets a fresh dispatcher and browser (function-scoped) for isolation.
"""

from __future__ import annotations

import json
import urllib.parse

import pytest

from spel.browser import close_browser
from spel.config import DaemonSettings
from spel.dispatcher import Dispatcher

# Containers usually run without a user namespace for the Chromium sandbox.
LAUNCH_FLAGS = {"args": "--no-sandbox"}

# ---------------------------------------------------------------------------
# Test HTML pages served via data: URL (no external HTTP server needed)
# ---------------------------------------------------------------------------

TEST_HTML = "data:text/html," + urllib.parse.quote(
    """<html><head><title>Test Page</title></head><body>
<h1 id="heading">Test Page</h1>
<p>Some text</p>
<a href="https://example.com" id="link1">Example Link</a>
<form onsubmit="return false">
  <input type="text" name="username" placeholder="Enter username">
  <input type="checkbox" name="agree" id="agree-cb">
  <button type="button" id="go"
    onclick="document.getElementById('heading').textContent = 'Clicked'">Go</button>
</form>
<select name="color"><option value="red">Red</option><option value="blue">Blue</option></select>
</body></html>"""
)

FRAME_HTML = "data:text/html," + urllib.parse.quote(
    """<html><body>
<h1>Outer</h1>
<iframe name="inner" srcdoc="<button>Inside</button>"></iframe>
</body></html>"""
)


@pytest.fixture
def form_page() -> str:
    return TEST_HTML


@pytest.fixture
def frame_page() -> str:
    return FRAME_HTML


@pytest.fixture
def launch_flags() -> dict:
    return dict(LAUNCH_FLAGS)


@pytest.fixture
async def dispatcher_real(runtime_dir):
    """A Dispatcher that launches a real browser on first use."""
    dispatcher = Dispatcher(settings=DaemonSettings(session="integration"))
    dispatcher.state.merge_flags(LAUNCH_FLAGS)
    try:
        yield dispatcher
    finally:
        await close_browser(dispatcher.state)


@pytest.fixture
def call(dispatcher_real):
    """Send one command through the protocol boundary and return its data."""

    async def _call(**command) -> dict:
        response = json.loads(await dispatcher_real.process_command(json.dumps(command)))
        assert response["success"] is True, response
        return response["data"]

    return _call
