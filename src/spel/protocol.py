"""Wire protocol: the closed set of actions and one params model per payload.

A command on the socket is a single JSON object::

    {"action": "click", "selector": "@e3", "_flags": {"proxy": "..."}}

``action`` and ``_flags`` are envelope keys; everything else is validated by
the params model registered for the action in :data:`PARAMS_BY_ACTION`.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from spel.errors import CommandError, ErrorKind


class Action(str, Enum):
    # Navigation
    NAVIGATE = "navigate"
    BACK = "back"
    FORWARD = "forward"
    RELOAD = "reload"
    URL = "url"
    TITLE = "title"
    CONTENT = "content"
    WAIT = "wait"
    # Snapshot
    SNAPSHOT = "snapshot"
    CLEAR_REFS = "clear_refs"
    BOUNDING_BOX = "bounding_box"
    # Interaction
    CLICK = "click"
    DBLCLICK = "dblclick"
    FILL = "fill"
    TYPE = "type"
    PRESS = "press"
    HOVER = "hover"
    FOCUS = "focus"
    CLEAR = "clear"
    CHECK = "check"
    UNCHECK = "uncheck"
    SELECT = "select"
    SCROLL = "scroll"
    SCROLLINTOVIEW = "scrollintoview"
    DRAG = "drag"
    UPLOAD = "upload"
    KEYDOWN = "keydown"
    KEYUP = "keyup"
    MOUSE_MOVE = "mouse_move"
    MOUSE_DOWN = "mouse_down"
    MOUSE_UP = "mouse_up"
    MOUSE_WHEEL = "mouse_wheel"
    # Queries
    GET_TEXT = "get_text"
    GET_ATTRIBUTE = "get_attribute"
    GET_VALUE = "get_value"
    IS_VISIBLE = "is_visible"
    IS_ENABLED = "is_enabled"
    IS_CHECKED = "is_checked"
    COUNT = "count"
    EVALUATE = "evaluate"
    # Output
    SCREENSHOT = "screenshot"
    PDF = "pdf"
    # Tabs & frames
    TAB_NEW = "tab_new"
    TAB_LIST = "tab_list"
    TAB_SWITCH = "tab_switch"
    TAB_CLOSE = "tab_close"
    FRAME_LIST = "frame_list"
    # Emulation
    SET_VIEWPORT = "set_viewport"
    SET_DEVICE = "set_device"
    SET_OFFLINE = "set_offline"
    SET_HEADERS = "set_headers"
    SET_MEDIA = "set_media"
    SET_GEO = "set_geo"
    SET_CREDENTIALS = "set_credentials"
    # Storage
    COOKIES_GET = "cookies_get"
    COOKIES_SET = "cookies_set"
    COOKIES_CLEAR = "cookies_clear"
    STORAGE_GET = "storage_get"
    STORAGE_SET = "storage_set"
    STORAGE_CLEAR = "storage_clear"
    STATE_SAVE = "state_save"
    STATE_LOAD = "state_load"
    # Network & diagnostics
    NETWORK_ROUTE = "network_route"
    NETWORK_UNROUTE = "network_unroute"
    NETWORK_REQUESTS = "network_requests"
    NETWORK_CLEAR = "network_clear"
    CONSOLE_GET = "console_get"
    CONSOLE_CLEAR = "console_clear"
    ERRORS_GET = "errors_get"
    ERRORS_CLEAR = "errors_clear"
    DIALOG_ACCEPT = "dialog_accept"
    DIALOG_DISMISS = "dialog_dismiss"
    TRACE_START = "trace_start"
    TRACE_STOP = "trace_stop"
    # Sessions
    SESSION_LIST = "session_list"
    SESSION_INFO = "session_info"
    CONNECT = "connect"
    CLOSE = "close"

    @classmethod
    def lookup(cls, name: Any) -> Action | None:
        """Return the action named *name*, or ``None`` if it is not supported."""
        if not isinstance(name, str):
            return None
        try:
            return cls(name)
        except ValueError:
            return None


# ---------------------------------------------------------------------------
# Params models
# ---------------------------------------------------------------------------


class Params(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class EmptyParams(Params):
    pass


class NavigateParams(Params):
    url: str


class SelectorParams(Params):
    selector: str


class OptionalSelectorParams(Params):
    selector: str | None = None


class FillParams(SelectorParams):
    value: str


class TypeParams(SelectorParams):
    text: str


class PressParams(Params):
    key: str
    selector: str | None = None


class KeyParams(Params):
    key: str


class SelectParams(SelectorParams):
    values: str | list[str]


class ScrollParams(Params):
    direction: Literal["up", "down", "left", "right"] = "down"
    amount: int = 500
    selector: str | None = None


class DragParams(Params):
    source: str
    target: str


class UploadParams(SelectorParams):
    files: str | list[str]

    def file_list(self) -> list[str]:
        return [self.files] if isinstance(self.files, str) else list(self.files)


class GetAttributeParams(SelectorParams):
    attribute: str


class EvaluateParams(Params):
    script: str
    base64: bool = False


class WaitParams(Params):
    text: str | None = None
    url: str | None = None
    function: str | None = None
    selector: str | None = None
    state: Literal["load", "domcontentloaded", "networkidle"] | None = None
    timeout: float | None = None


class SnapshotParams(Params):
    selector: str | None = None
    interactive: bool = False
    cursor: bool = False
    compact: bool = False
    depth: int | None = Field(default=None, ge=0)
    full: bool = False

    def filter_options(self) -> dict[str, Any]:
        return self.model_dump(include={"interactive", "cursor", "compact", "depth"})


class ScreenshotParams(Params):
    path: str | None = None
    full_page: bool = Field(default=False, alias="fullPage")
    selector: str | None = None


class PathParams(Params):
    path: str | None = None


class TabNewParams(Params):
    url: str | None = None


class TabSwitchParams(Params):
    index: int = Field(ge=0)


class MouseMoveParams(Params):
    x: float
    y: float


class MouseButtonParams(Params):
    button: Literal["left", "right", "middle"] = "left"


class MouseWheelParams(Params):
    delta_x: float = Field(default=0, alias="deltaX")
    delta_y: float = Field(default=0, alias="deltaY")


class ViewportParams(Params):
    width: int | None = Field(default=None, gt=0)
    height: int | None = Field(default=None, gt=0)
    preset: str | None = None

    @model_validator(mode="after")
    def _size_or_preset(self) -> ViewportParams:
        if self.preset is None and (self.width is None or self.height is None):
            raise ValueError("set_viewport needs width and height, or a preset")
        return self


class DeviceParams(Params):
    device: str


class OfflineParams(Params):
    enabled: bool = True


class HeadersParams(Params):
    headers: dict[str, str]


class MediaParams(Params):
    color_scheme: str | None = Field(default=None, alias="colorScheme")


class GeoParams(Params):
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)
    accuracy: float = 1


class CredentialsParams(Params):
    username: str
    password: str


class CookiesGetParams(Params):
    urls: list[str] | None = None


class CookieSetParams(Params):
    name: str
    value: str
    domain: str | None = None
    path: str | None = None
    url: str | None = None


class StorageParams(Params):
    type: Literal["local", "session"] = "local"
    key: str | None = None


class StorageSetParams(Params):
    type: Literal["local", "session"] = "local"
    key: str
    value: str


class RouteParams(Params):
    url: str
    action_type: Literal["continue", "abort", "fulfill"] = "continue"
    body: str | None = None
    status: int | None = None
    content_type: str | None = None


class UnrouteParams(Params):
    url: str | None = None


class RequestsParams(Params):
    filter: str | None = None
    type: str | None = None
    method: str | None = None
    status: str | None = None

    @field_validator("status", mode="before")
    @classmethod
    def status_as_text(cls, v: Any) -> Any:
        return str(v) if isinstance(v, int) else v


class ClearableParams(Params):
    clear: bool = False


class DialogAcceptParams(Params):
    text: str | None = None


class TraceStartParams(Params):
    name: str | None = None


class ConnectParams(Params):
    url: str


PARAMS_BY_ACTION: dict[Action, type[Params]] = {
    Action.NAVIGATE: NavigateParams,
    Action.BACK: EmptyParams,
    Action.FORWARD: EmptyParams,
    Action.RELOAD: EmptyParams,
    Action.URL: EmptyParams,
    Action.TITLE: EmptyParams,
    Action.CONTENT: OptionalSelectorParams,
    Action.WAIT: WaitParams,
    Action.SNAPSHOT: SnapshotParams,
    Action.CLEAR_REFS: EmptyParams,
    Action.BOUNDING_BOX: SelectorParams,
    Action.CLICK: SelectorParams,
    Action.DBLCLICK: SelectorParams,
    Action.FILL: FillParams,
    Action.TYPE: TypeParams,
    Action.PRESS: PressParams,
    Action.HOVER: SelectorParams,
    Action.FOCUS: SelectorParams,
    Action.CLEAR: SelectorParams,
    Action.CHECK: SelectorParams,
    Action.UNCHECK: SelectorParams,
    Action.SELECT: SelectParams,
    Action.SCROLL: ScrollParams,
    Action.SCROLLINTOVIEW: SelectorParams,
    Action.DRAG: DragParams,
    Action.UPLOAD: UploadParams,
    Action.KEYDOWN: KeyParams,
    Action.KEYUP: KeyParams,
    Action.MOUSE_MOVE: MouseMoveParams,
    Action.MOUSE_DOWN: MouseButtonParams,
    Action.MOUSE_UP: MouseButtonParams,
    Action.MOUSE_WHEEL: MouseWheelParams,
    Action.GET_TEXT: SelectorParams,
    Action.GET_ATTRIBUTE: GetAttributeParams,
    Action.GET_VALUE: SelectorParams,
    Action.IS_VISIBLE: SelectorParams,
    Action.IS_ENABLED: SelectorParams,
    Action.IS_CHECKED: SelectorParams,
    Action.COUNT: SelectorParams,
    Action.EVALUATE: EvaluateParams,
    Action.SCREENSHOT: ScreenshotParams,
    Action.PDF: PathParams,
    Action.TAB_NEW: TabNewParams,
    Action.TAB_LIST: EmptyParams,
    Action.TAB_SWITCH: TabSwitchParams,
    Action.TAB_CLOSE: EmptyParams,
    Action.FRAME_LIST: EmptyParams,
    Action.SET_VIEWPORT: ViewportParams,
    Action.SET_DEVICE: DeviceParams,
    Action.SET_OFFLINE: OfflineParams,
    Action.SET_HEADERS: HeadersParams,
    Action.SET_MEDIA: MediaParams,
    Action.SET_GEO: GeoParams,
    Action.SET_CREDENTIALS: CredentialsParams,
    Action.COOKIES_GET: CookiesGetParams,
    Action.COOKIES_SET: CookieSetParams,
    Action.COOKIES_CLEAR: EmptyParams,
    Action.STORAGE_GET: StorageParams,
    Action.STORAGE_SET: StorageSetParams,
    Action.STORAGE_CLEAR: StorageParams,
    Action.STATE_SAVE: PathParams,
    Action.STATE_LOAD: PathParams,
    Action.NETWORK_ROUTE: RouteParams,
    Action.NETWORK_UNROUTE: UnrouteParams,
    Action.NETWORK_REQUESTS: RequestsParams,
    Action.NETWORK_CLEAR: EmptyParams,
    Action.CONSOLE_GET: ClearableParams,
    Action.CONSOLE_CLEAR: EmptyParams,
    Action.ERRORS_GET: ClearableParams,
    Action.ERRORS_CLEAR: EmptyParams,
    Action.DIALOG_ACCEPT: DialogAcceptParams,
    Action.DIALOG_DISMISS: EmptyParams,
    Action.TRACE_START: TraceStartParams,
    Action.TRACE_STOP: PathParams,
    Action.SESSION_LIST: EmptyParams,
    Action.SESSION_INFO: EmptyParams,
    Action.CONNECT: ConnectParams,
    Action.CLOSE: EmptyParams,
}


def _describe_validation_error(action: Action, exc: ValidationError) -> str:
    problems = []
    for err in exc.errors():
        loc = ".".join(str(part) for part in err.get("loc", ())) or "params"
        problems.append(f"{loc}: {err.get('msg')}")
    return f"Invalid params for {action.value}: " + "; ".join(problems)


def parse_params(action: Action, payload: dict[str, Any]) -> Params:
    """Validate *payload* against the model registered for *action*.

    Raises :class:`~spel.errors.CommandError` with kind ``invalid_params``.
    """
    model = PARAMS_BY_ACTION[action]
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        raise CommandError(
            _describe_validation_error(action, exc), ErrorKind.INVALID_PARAMS
        ) from exc
