"""Resolve snapshot refs back to live elements.

A ref is only a marker attribute on the element that the snapshot walker
tagged, so resolution is a plain attribute selector.  The main frame is
searched first, then child frames (refs from ``snapshot --full``).
"""

from __future__ import annotations

import logging
import re
from typing import Any

from spel.errors import StaleRefError
from spel.snapshot import REF_ATTRIBUTE

logger = logging.getLogger("spel.refs")

_REF_RE = re.compile(r"^@?e\d+$")

_CLEAR_JS = """
() => {
  const marked = document.querySelectorAll('[data-pw-ref]');
  marked.forEach(el => el.removeAttribute('data-pw-ref'));
  return marked.length;
}
"""


def is_ref(text: str | None) -> bool:
    """Return ``True`` for ``e12`` and ``@e12``."""
    return bool(text) and _REF_RE.match(text) is not None


def normalize_ref(ref_id: str) -> str:
    return ref_id[1:] if ref_id.startswith("@") else ref_id


def ref_selector(ref_id: str) -> str:
    return f'[{REF_ATTRIBUTE}="{normalize_ref(ref_id)}"]'


async def resolve_ref(page: Any, ref_id: str) -> Any:
    """Return a ``Locator`` for the element tagged with *ref_id*.

    Raises :class:`~spel.errors.StaleRefError` when no frame holds a live
    element with that marker (cleared, or gone after navigation).
    """
    ref_id = normalize_ref(ref_id)
    selector = ref_selector(ref_id)

    locator = page.locator(selector)
    if await locator.count() > 0:
        return locator

    for frame in list(page.frames)[1:]:
        try:
            frame_locator = frame.locator(selector)
            if await frame_locator.count() > 0:
                return frame_locator
        except Exception as exc:
            logger.debug(f"Frame {frame.url!r} not searchable for {ref_id}: {exc}")

    raise StaleRefError(ref_id)


async def clear_refs(page: Any) -> int:
    """Strip every ref marker from the page and its frames.

    Returns the number of markers removed.  The session's ref table is not
    touched; its entries simply stop resolving.
    """
    removed = int(await page.evaluate(_CLEAR_JS) or 0)
    for frame in list(page.frames)[1:]:
        try:
            removed += int(await frame.evaluate(_CLEAR_JS) or 0)
        except Exception as exc:
            logger.debug(f"Could not clear refs in frame {frame.url!r}: {exc}")
    return removed
