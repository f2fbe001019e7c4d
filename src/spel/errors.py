"""Error types for the spel daemon.

Everything reachable through the socket protocol is converted into a
response object by the dispatcher; the ``kind`` on :class:`CommandError`
survives up to that point so callers (and tests) can tell a lookup failure
from a driver failure before it is flattened into ``data.error``.
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    PARSE = "parse"
    UNKNOWN_ACTION = "unknown_action"
    INVALID_PARAMS = "invalid_params"
    DRIVER = "driver"
    LOOKUP = "lookup"


class SpelError(Exception):
    """Base class for errors raised by spel itself."""

    kind: ErrorKind = ErrorKind.DRIVER


class CommandError(SpelError):
    """A command could not be carried out."""

    def __init__(self, message: str, kind: ErrorKind = ErrorKind.DRIVER) -> None:
        super().__init__(message)
        self.kind = kind


class UnknownPresetError(SpelError, KeyError):
    """Raised when a device or viewport preset name is not in the catalog."""

    kind = ErrorKind.LOOKUP

    def __init__(self, message: str, name: object, available: list[str]) -> None:
        super().__init__(message)
        self.name = name
        self.available = available

    def __str__(self) -> str:
        # KeyError.__str__ would repr() the message
        return self.args[0]


class StaleRefError(SpelError):
    """Raised when no live element carries the marker for a ref."""

    kind = ErrorKind.LOOKUP

    def __init__(self, ref_id: str) -> None:
        super().__init__(
            f"Ref {ref_id} is no longer attached to the page. "
            "Run 'snapshot' to refresh refs."
        )
        self.ref_id = ref_id
