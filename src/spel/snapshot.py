"""Accessibility snapshot module for spel.

Walks the DOM with an injected JavaScript function, computes ARIA roles and
accessible names, and renders an indented outline such as::

    - heading "Example Domain" [@e1] [level=1]
    - paragraph [@e2] : This domain is for use in examples.
    - link "More information..." [@e3]

Every element worth addressing is tagged with a ``data-pw-ref`` attribute so
later commands can find it again with ``[data-pw-ref="e3"]`` (see
:mod:`spel.refs`).

Ref ids are session scoped.  The walker receives the current counter and
numbers new elements above it; an element that already carries a marker from
an earlier capture keeps its id.  Capturing twice on an unchanged page
therefore returns the same ids and never lowers the counter.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger("spel.snapshot")

REF_ATTRIBUTE = "data-pw-ref"

# Matches refs with or without the CLI "@" prefix: e3, @e3
_REF_RE = re.compile(r"^@?e\d+$")

# JS function evaluated with {"start": <counter>, "scope": <css or null>}
_CAPTURE_JS = r"""
(opts) => {
  const REF_ATTR = 'data-pw-ref';
  let counter = opts.start || 0;
  const refs = {};

  const SKIP_ROLES = new Set(['generic', 'presentation', 'none', '']);

  const MEANINGFUL_ROLES = new Set([
    'button', 'link', 'textbox', 'checkbox', 'radio', 'combobox',
    'listbox', 'menuitem', 'tab', 'switch', 'slider', 'spinbutton',
    'searchbox', 'option', 'menuitemcheckbox', 'menuitemradio',
    'treeitem', 'heading', 'img', 'navigation', 'main', 'banner',
    'contentinfo', 'complementary', 'form', 'search', 'region',
    'article', 'dialog', 'alertdialog', 'alert', 'status', 'log',
    'progressbar', 'table', 'row', 'cell', 'columnheader', 'rowheader',
    'list', 'listitem', 'separator', 'figure', 'group', 'toolbar',
    'tablist', 'tabpanel', 'menu', 'menubar', 'tree', 'treegrid',
    'grid', 'rowgroup', 'meter', 'math',
    'paragraph', 'span'
  ]);

  const INTERACTIVE_TAGS = new Set([
    'a', 'button', 'input', 'select', 'textarea', 'summary', 'details'
  ]);

  const TAG_FALLBACK_ROLES = {
    'a': 'link', 'button': 'button', 'select': 'combobox',
    'textarea': 'textbox', 'h1': 'heading', 'h2': 'heading',
    'h3': 'heading', 'h4': 'heading', 'h5': 'heading', 'h6': 'heading',
    'nav': 'navigation', 'main': 'main', 'header': 'banner',
    'footer': 'contentinfo', 'aside': 'complementary', 'form': 'form',
    'table': 'table', 'tr': 'row', 'td': 'cell', 'th': 'columnheader',
    'ul': 'list', 'ol': 'list', 'li': 'listitem', 'img': 'img',
    'dialog': 'dialog', 'progress': 'progressbar', 'meter': 'meter',
    'article': 'article', 'section': 'region', 'figure': 'figure',
    'hr': 'separator', 'menu': 'list', 'fieldset': 'group',
    'output': 'status', 'summary': 'button', 'details': 'group',
    'p': 'paragraph', 'span': 'span'
  };

  const INPUT_ROLES = {
    'button': 'button', 'checkbox': 'checkbox', 'email': 'textbox',
    'number': 'spinbutton', 'password': 'textbox', 'radio': 'radio',
    'range': 'slider', 'reset': 'button', 'search': 'searchbox',
    'submit': 'button', 'tel': 'textbox', 'text': 'textbox',
    'url': 'textbox'
  };

  const SKIP_TAGS = new Set(['script', 'style', 'noscript', 'link', 'meta', 'br', 'wbr']);

  function truncate(text) {
    return text.length <= 200 ? text : text.substring(0, 197) + '...';
  }

  function textOfIds(ids) {
    return ids.split(/\s+/).map(id => {
      const ref = document.getElementById(id);
      return ref ? (ref.textContent || '').trim() : '';
    }).filter(Boolean).join(' ');
  }

  function getRole(el) {
    const explicit = el.getAttribute('role');
    if (explicit) return explicit;
    if (typeof el.computedRole === 'string' && el.computedRole) return el.computedRole;
    const tag = el.tagName.toLowerCase();
    if (tag === 'input') {
      const type = (el.getAttribute('type') || 'text').toLowerCase();
      return INPUT_ROLES[type] || 'textbox';
    }
    return TAG_FALLBACK_ROLES[tag] || '';
  }

  function getName(el) {
    const ariaLabel = el.getAttribute('aria-label');
    if (ariaLabel) return ariaLabel.trim();
    const labelledBy = el.getAttribute('aria-labelledby');
    if (labelledBy) {
      const text = textOfIds(labelledBy);
      if (text) return text;
    }
    if (typeof el.computedName === 'string' && el.computedName) return el.computedName.trim();
    if (el.labels && el.labels.length) return (el.labels[0].textContent || '').trim();
    for (const attr of ['alt', 'title', 'placeholder']) {
      const value = el.getAttribute(attr);
      if (value) return value.trim();
    }
    if (el.children.length === 0) return truncate((el.textContent || '').trim());
    return '';
  }

  function isVisible(el) {
    if (el.getAttribute('aria-hidden') === 'true') return false;
    if (el.hidden) return false;
    const style = getComputedStyle(el);
    if (style.display === 'none') return false;
    if (style.visibility === 'hidden') return false;
    if (parseFloat(style.opacity) === 0) return false;
    return true;
  }

  function headingLevel(el) {
    const tag = el.tagName.toLowerCase();
    if (/^h[1-6]$/.test(tag)) return parseInt(tag[1]);
    const ariaLevel = el.getAttribute('aria-level');
    return ariaLevel ? parseInt(ariaLevel) : null;
  }

  function shouldAssignRef(el, role) {
    if (INTERACTIVE_TAGS.has(el.tagName.toLowerCase())) return true;
    if (el.getAttribute('tabindex') !== null) return true;
    if (el.getAttribute('onclick') !== null) return true;
    if (el.getAttribute('contenteditable') === 'true') return true;
    return MEANINGFUL_ROLES.has(role);
  }

  function getAttributes(el, role) {
    const attrs = {};
    const level = headingLevel(el);
    if (level) attrs.level = level;
    if (el.checked) attrs.checked = true;
    if (el.disabled) attrs.disabled = true;
    if (el.required) attrs.required = true;
    if (el.readOnly) attrs.readonly = true;
    for (const name of ['expanded', 'selected', 'pressed']) {
      const value = el.getAttribute('aria-' + name);
      if (value) attrs[name] = value === 'true';
    }
    const current = el.getAttribute('aria-current');
    if (current && current !== 'false') attrs.current = current;
    if (el.value && ['textbox', 'searchbox', 'spinbutton', 'combobox'].includes(role)) {
      attrs.value = String(el.value).substring(0, 200);
    }
    const describedBy = el.getAttribute('aria-describedby');
    if (describedBy) {
      const desc = textOfIds(describedBy);
      if (desc) attrs.description = desc.substring(0, 200);
    }
    if (el === document.activeElement && el !== document.body) attrs.focused = true;
    return attrs;
  }

  function hasCSSImage(el) {
    const rect = el.getBoundingClientRect();
    if (rect.width < 4 || rect.height < 4) return false;
    try {
      const style = getComputedStyle(el);
      const bg = style.backgroundImage;
      if (bg && bg !== 'none') return true;
      const ct = style.content;
      if (ct && ct !== 'none' && ct !== 'normal' && ct !== '""' && ct !== "''") return true;
    } catch (e) {}
    return false;
  }

  function walk(el) {
    if (!el || el.nodeType !== 1) return null;
    if (!isVisible(el)) return null;
    const tag = el.tagName.toLowerCase();
    if (SKIP_TAGS.has(tag)) return null;

    const role = getRole(el);
    const name = getName(el);
    const attrs = getAttributes(el, role);

    const children = [];
    for (const child of el.children) {
      const node = walk(child);
      if (node) children.push(node);
    }

    let text = null;
    if (children.length === 0) {
      const leaf = (el.textContent || '').trim();
      if (leaf && !name) text = truncate(leaf);
    } else {
      const parts = [];
      for (const n of el.childNodes) {
        if (n.nodeType === 3) {
          const t = n.textContent.trim();
          if (t) parts.push(t);
        }
      }
      const direct = parts.join(' ');
      if (direct && !name) text = truncate(direct);
    }

    const meaningful = !SKIP_ROLES.has(role);
    const interactive = shouldAssignRef(el, role);
    const hasContent = Boolean(name || text);
    const cssImage = !hasContent && children.length === 0 && hasCSSImage(el);
    const textLeaf = !meaningful && !interactive && children.length === 0 && hasContent;
    const mixed = !meaningful && !interactive && children.length > 0 && Boolean(text);

    if (!meaningful && !interactive && !hasContent && !cssImage) {
      if (children.length === 0) return null;
      if (children.length === 1) return children[0];
    }

    let ref = null;
    if (interactive || (meaningful && hasContent) || textLeaf || mixed || cssImage) {
      ref = el.getAttribute(REF_ATTR);
      if (!ref) {
        counter += 1;
        ref = 'e' + counter;
        el.setAttribute(REF_ATTR, ref);
      }
      const rect = el.getBoundingClientRect();
      refs[ref] = {
        role: cssImage ? 'img' : ((textLeaf || mixed) ? 'text' : (role || tag)),
        name: name,
        tag: tag,
        x: Math.round(rect.x),
        y: Math.round(rect.y),
        width: Math.round(rect.width),
        height: Math.round(rect.height),
        mixed: children.length > 0 && Boolean(text)
      };
    }

    return { role: role || tag, name: name, ref: ref, attrs: attrs, text: text, children: children };
  }

  const root = opts.scope ? document.querySelector(opts.scope) : document.body;
  if (!root) return { tree: null, refs: {}, counter: counter };
  return { tree: walk(root), refs: refs, counter: counter };
}
"""


@dataclass
class Snapshot:
    """Result of one capture: rendered outline, refs found, new counter."""

    tree: str | None
    refs: dict[str, dict[str, Any]] = field(default_factory=dict)
    counter: int = 0


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------


def _format_attr_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _format_attrs(attrs: dict[str, Any]) -> str:
    parts = []
    for key, value in attrs.items():
        if value is True:
            parts.append(f"[{key}]")
        else:
            parts.append(f"[{key}={_format_attr_value(value)}]")
    return " ".join(parts)


def _format_node(node: dict[str, Any], depth: int) -> str:
    parts = [f"- {node.get('role')}"]
    if node.get("name"):
        parts.append(f'"{node["name"]}"')
    if node.get("ref"):
        parts.append(f"[@{node['ref']}]")
    if node.get("attrs"):
        parts.append(_format_attrs(node["attrs"]))
    if node.get("text"):
        parts.append(f": {node['text']}")
    return "  " * depth + " ".join(parts)


def render_tree(node: dict[str, Any] | None, depth: int = 0) -> list[str]:
    """Render the walker's node tree into outline lines."""
    if not node:
        return []
    lines = [_format_node(node, depth)]
    for child in node.get("children") or []:
        lines.extend(render_tree(child, depth + 1))
    return lines


def _convert_refs(raw_refs: dict[str, dict[str, Any]]) -> dict[str, dict[str, Any]]:
    refs: dict[str, dict[str, Any]] = {}
    for ref_id, info in (raw_refs or {}).items():
        entry: dict[str, Any] = {
            "role": info.get("role"),
            "name": info.get("name"),
            "tag": info.get("tag"),
            "bbox": {
                "x": info.get("x"),
                "y": info.get("y"),
                "width": info.get("width"),
                "height": info.get("height"),
            },
        }
        if info.get("mixed"):
            entry["mixed"] = True
        refs[ref_id] = entry
    return refs


def scope_selector(scope: str | None) -> str | None:
    """Turn a scope given as ``e3`` / ``@e3`` into a marker selector.

    Anything else is treated as a CSS selector and returned unchanged.
    """
    if not scope:
        return None
    if _REF_RE.match(scope):
        return f'[{REF_ATTRIBUTE}="{scope.lstrip("@")}"]'
    return scope


# ---------------------------------------------------------------------------
# Capture
# ---------------------------------------------------------------------------


async def _evaluate(target: Any, counter: int, scope: str | None) -> tuple[list[str], dict, int]:
    result = await target.evaluate(
        _CAPTURE_JS, {"start": counter, "scope": scope_selector(scope)}
    )
    result = result or {}
    lines = render_tree(result.get("tree"))
    refs = _convert_refs(result.get("refs") or {})
    new_counter = max(counter, int(result.get("counter") or 0))
    return lines, refs, new_counter


async def capture_snapshot(
    page: Any, counter: int = 0, scope: str | None = None
) -> Snapshot:
    """Capture the accessibility outline of *page* (or a frame).

    Parameters
    ----------
    page:
        A patchright async ``Page`` or ``Frame``.
    counter:
        The session's current ref counter.  New refs are numbered above it.
    scope:
        Optional CSS selector or ref restricting the walk to one subtree.
        A scope that matches nothing yields an empty snapshot.

    Returns
    -------
    Snapshot
        ``tree`` is ``None`` when nothing was captured; ``counter`` is never
        lower than the *counter* passed in.
    """
    lines, refs, new_counter = await _evaluate(page, counter, scope)
    tree = "\n".join(lines) if lines else None
    logger.debug(f"Captured {len(refs)} refs (counter {counter} -> {new_counter})")
    return Snapshot(tree=tree, refs=refs, counter=new_counter)


async def capture_full_snapshot(page: Any, counter: int = 0) -> Snapshot:
    """Capture the page plus every child frame into one outline.

    Frames share the session counter, so ids stay unique across the merged
    table.  Each frame's subtree is nested under an ``- iframe`` line.  For a
    page with no child frames the result equals :func:`capture_snapshot`.
    """
    main = await capture_snapshot(page, counter)
    frames = list(page.frames)[1:]
    if not frames:
        return main

    lines = main.tree.split("\n") if main.tree else []
    refs = dict(main.refs)
    counter = main.counter
    for frame in frames:
        try:
            frame_lines, frame_refs, counter = await _evaluate(frame, counter, None)
        except Exception as exc:
            logger.debug(f"Skipping frame {frame.url!r}: {exc}")
            continue
        label = frame.name or frame.url
        lines.append(f'- iframe "{label}"')
        lines.extend("  " + line for line in frame_lines)
        for ref_id, entry in frame_refs.items():
            refs.setdefault(ref_id, entry)

    return Snapshot(tree="\n".join(lines) if lines else None, refs=refs, counter=counter)


def ref_bounding_box(refs: dict[str, dict[str, Any]] | None, ref_id: str) -> dict | None:
    """Return the cached bounding box of *ref_id*, or ``None`` if unknown."""
    if not refs:
        return None
    entry = refs.get(ref_id)
    if not entry:
        return None
    return entry.get("bbox")


# ---------------------------------------------------------------------------
# Filtering
# ---------------------------------------------------------------------------

_CURSOR_ROLE_RE = re.compile(r'role="(textbox|combobox|searchbox|spinbutton|slider)"')
_TEXT_ENTRY_LINE_RE = re.compile(r"^\s*- (textbox|combobox|searchbox|spinbutton|slider)\b")
_BARE_ROLE_RE = re.compile(r"\s*- \w+\s*")


def _keep_for_cursor(line: str) -> bool:
    return (
        "[@" in line
        or "[focused]" in line
        or _CURSOR_ROLE_RE.search(line) is not None
        or _TEXT_ENTRY_LINE_RE.match(line) is not None
    )


def filter_snapshot_tree(tree: str | None, options: dict[str, Any] | None) -> str | None:
    """Filter an outline line by line.

    Options, applied in order:

    ``interactive``
        Keep only lines carrying a ``[@eN]`` ref.
    ``cursor``
        With ``interactive``, also keep ``[focused]`` lines and text-entry
        roles even when they carry no ref.
    ``compact``
        Drop lines that are a bare role with nothing else (``- heading``).
    ``depth``
        Drop lines indented deeper than ``depth`` levels.

    ``None`` and blank input are returned unchanged.
    """
    if tree is None or not tree.strip():
        return tree
    options = options or {}
    lines = tree.split("\n")

    if options.get("interactive"):
        if options.get("cursor"):
            lines = [line for line in lines if _keep_for_cursor(line)]
        else:
            lines = [line for line in lines if "[@" in line]

    if options.get("compact"):
        lines = [line for line in lines if not _BARE_ROLE_RE.fullmatch(line)]

    depth = options.get("depth")
    if depth not in (None, "") and not isinstance(depth, bool):
        max_indent = 2 * int(depth)
        lines = [line for line in lines if len(line) - len(line.lstrip(" ")) <= max_indent]

    return "\n".join(lines)
