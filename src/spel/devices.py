"""Device and viewport presets for browser context emulation.

Device presets carry everything ``browser.new_context`` needs to emulate a
handset or a desktop browser: viewport, scale factor, mobile/touch flags and
user agent.  Viewport presets are only a width and a height.

Keys are lowercase and hyphenated (``"iphone-14"``, ``"desktop-hd"``).  The
CLI-facing lookup :func:`resolve_device_by_name` also accepts display names
with spaces in any case (``"iPhone 14"``).
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict

from spel.errors import UnknownPresetError


class Viewport(BaseModel):
    model_config = ConfigDict(frozen=True)

    width: int
    height: int


class DevicePreset(BaseModel):
    model_config = ConfigDict(frozen=True)

    viewport: Viewport
    device_scale_factor: float
    is_mobile: bool
    has_touch: bool
    user_agent: str

    def context_options(self) -> dict[str, Any]:
        """Return keyword arguments for ``browser.new_context(...)``."""
        return {
            "viewport": self.viewport.model_dump(),
            "device_scale_factor": self.device_scale_factor,
            "is_mobile": self.is_mobile,
            "has_touch": self.has_touch,
            "user_agent": self.user_agent,
        }


_UA_IOS_15 = (
    "Mozilla/5.0 (iPhone; CPU iPhone OS 15_0 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/15.0 Mobile/15E148 Safari/604.1"
)
_UA_IOS_16 = (
    "Mozilla/5.0 (iPhone; CPU iPhone OS 16_0 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/16.0 Mobile/15E148 Safari/604.1"
)
_UA_IOS_17 = (
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.0 Mobile/15E148 Safari/604.1"
)
_UA_IPAD = (
    "Mozilla/5.0 (iPad; CPU OS 16_0 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/16.0 Mobile/15E148 Safari/604.1"
)
_UA_CHROME_116 = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/116.0.0.0 Safari/537.36"
)


def _device(
    width: int,
    height: int,
    scale: float,
    user_agent: str,
    mobile: bool = True,
) -> DevicePreset:
    return DevicePreset(
        viewport=Viewport(width=width, height=height),
        device_scale_factor=scale,
        is_mobile=mobile,
        has_touch=mobile,
        user_agent=user_agent,
    )


DEVICE_PRESETS: dict[str, DevicePreset] = {
    # Apple iPhones
    "iphone-se": _device(375, 667, 2, _UA_IOS_15),
    "iphone-12": _device(390, 844, 3, _UA_IOS_15),
    "iphone-13": _device(390, 844, 3, _UA_IOS_15),
    "iphone-14": _device(390, 844, 3, _UA_IOS_16),
    "iphone-14-pro": _device(393, 852, 3, _UA_IOS_16),
    "iphone-15": _device(393, 852, 3, _UA_IOS_17),
    "iphone-15-pro": _device(393, 852, 3, _UA_IOS_17),
    # Apple iPads
    "ipad": _device(810, 1080, 2, _UA_IPAD),
    "ipad-mini": _device(768, 1024, 2, _UA_IPAD),
    "ipad-pro-11": _device(834, 1194, 2, _UA_IPAD),
    "ipad-pro": _device(1024, 1366, 2, _UA_IPAD),
    # Android
    "pixel-5": _device(
        393,
        851,
        2.75,
        "Mozilla/5.0 (Linux; Android 12; Pixel 5) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/101.0.0.0 Mobile Safari/537.36",
    ),
    "pixel-7": _device(
        412,
        915,
        2.625,
        "Mozilla/5.0 (Linux; Android 13; Pixel 7) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/116.0.0.0 Mobile Safari/537.36",
    ),
    "galaxy-s24": _device(
        360,
        780,
        3,
        "Mozilla/5.0 (Linux; Android 14; SM-S921U) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/121.0.0.0 Mobile Safari/537.36",
    ),
    "galaxy-s9": _device(
        360,
        740,
        3,
        "Mozilla/5.0 (Linux; Android 8.0.0; SM-G960F) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/116.0.0.0 Mobile Safari/537.36",
    ),
    # Desktop
    "desktop": _device(1280, 720, 1, _UA_CHROME_116, mobile=False),
    "desktop-hd": _device(1920, 1080, 1, _UA_CHROME_116, mobile=False),
    "desktop-chrome": _device(
        1280,
        720,
        1,
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/121.0.0.0 Safari/537.36",
        mobile=False,
    ),
    "desktop-firefox": _device(
        1280,
        720,
        1,
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:121.0) "
        "Gecko/20100101 Firefox/121.0",
        mobile=False,
    ),
    "desktop-safari": _device(
        1280,
        720,
        1,
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 14_0) AppleWebKit/605.1.15 "
        "(KHTML, like Gecko) Version/17.0 Safari/605.1.15",
        mobile=False,
    ),
}

VIEWPORT_PRESETS: dict[str, Viewport] = {
    "mobile": Viewport(width=375, height=667),
    "mobile-lg": Viewport(width=428, height=926),
    "tablet": Viewport(width=768, height=1024),
    "tablet-lg": Viewport(width=1024, height=1366),
    "desktop": Viewport(width=1280, height=720),
    "desktop-hd": Viewport(width=1920, height=1080),
    "desktop-4k": Viewport(width=3840, height=2160),
}

# "iphone 14" -> "iphone-14"
_DISPLAY_NAMES: dict[str, str] = {key.replace("-", " "): key for key in DEVICE_PRESETS}


def resolve_device(key: str) -> DevicePreset:
    """Return the device preset stored under *key*.

    Raises :class:`~spel.errors.UnknownPresetError` for unknown keys.
    """
    preset = DEVICE_PRESETS.get(key)
    if preset is None:
        available = sorted(DEVICE_PRESETS)
        raise UnknownPresetError(
            f"Unknown device preset: {key!r}. Available: {', '.join(available)}",
            key,
            available,
        )
    return preset


def resolve_viewport(value: str | dict | Viewport | None) -> Viewport | None:
    """Resolve a viewport preset name or explicit size.

    * a preset key (``"mobile"``) is looked up in :data:`VIEWPORT_PRESETS`
    * a ``{"width": ..., "height": ...}`` mapping or a :class:`Viewport` is
      returned as a :class:`Viewport`
    * ``None`` stays ``None`` (use the driver default)
    """
    if value is None:
        return None
    if isinstance(value, Viewport):
        return value
    if isinstance(value, dict):
        return Viewport(**value)
    if isinstance(value, str):
        viewport = VIEWPORT_PRESETS.get(value)
        if viewport is None:
            available = sorted(VIEWPORT_PRESETS)
            raise UnknownPresetError(
                f"Unknown viewport preset: {value!r}. "
                f"Available: {', '.join(available)}",
                value,
                available,
            )
        return viewport
    raise TypeError(
        f"Invalid viewport value: {value!r}. Expected a preset name, a mapping, or None."
    )


def resolve_device_by_name(name: str | None) -> DevicePreset | None:
    """Case-insensitive lookup by display name (``"iPhone 14"``, ``"pixel 7"``).

    Hyphenated keys are accepted too.  Returns ``None`` for unknown names.
    """
    normalized = " ".join((name or "").lower().replace("-", " ").split())
    key = _DISPLAY_NAMES.get(normalized)
    if key is None:
        return None
    return DEVICE_PRESETS[key]


def available_device_names() -> list[str]:
    """Return the sorted display names accepted by :func:`resolve_device_by_name`."""
    return sorted(_DISPLAY_NAMES)
