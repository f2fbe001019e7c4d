from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from typing import Any

CAPTURE_LIMIT = 500


@dataclass
class SessionState:
    """All mutable state owned by one daemon process.

    ``refs`` and ``counter`` are session-lifetime scoped: captures only add
    entries, and ``counter`` only grows until :meth:`reset`.
    """

    session: str = "default"
    headless: bool = True
    launch_flags: dict[str, Any] = field(default_factory=dict)

    # Driver handles, None until the browser is launched
    playwright: Any = None
    browser: Any = None
    context: Any = None
    page: Any = None

    refs: dict[str, dict[str, Any]] = field(default_factory=dict)
    counter: int = 0

    persistent_profile: bool = False
    tracing: bool = False

    # Captured page events, each kept to the newest CAPTURE_LIMIT entries
    console_messages: deque = field(default_factory=lambda: deque(maxlen=CAPTURE_LIMIT))
    page_errors: deque = field(default_factory=lambda: deque(maxlen=CAPTURE_LIMIT))
    tracked_requests: deque = field(default_factory=lambda: deque(maxlen=CAPTURE_LIMIT))
    routes: dict[str, Any] = field(default_factory=dict)
    dialog_handler: Any = None

    def merge_flags(self, flags: dict[str, Any] | None) -> None:
        """Merge *flags* into ``launch_flags``, keeping keys not mentioned."""
        if flags:
            self.launch_flags.update(flags)

    def record_refs(self, refs: dict[str, dict[str, Any]]) -> None:
        """Add newly captured refs; existing entries are never overwritten."""
        for ref_id, entry in refs.items():
            self.refs.setdefault(ref_id, entry)

    def advance_counter(self, value: int) -> None:
        self.counter = max(self.counter, int(value))

    def clear_driver_handles(self) -> None:
        self.playwright = None
        self.browser = None
        self.context = None
        self.page = None
        self.tracing = False
        self.persistent_profile = False
        self.routes.clear()
        self.dialog_handler = None

    def reset(self) -> None:
        """Return to the freshly started record: no driver, no refs, counter 0."""
        self.clear_driver_handles()
        self.refs.clear()
        self.counter = 0
        self.launch_flags.clear()
        self.console_messages.clear()
        self.page_errors.clear()
        self.tracked_requests.clear()
