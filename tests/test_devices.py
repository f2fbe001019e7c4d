"""Tests for spel.devices module."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from spel.devices import (
    DEVICE_PRESETS,
    VIEWPORT_PRESETS,
    DevicePreset,
    Viewport,
    available_device_names,
    resolve_device,
    resolve_device_by_name,
    resolve_viewport,
)
from spel.errors import ErrorKind, UnknownPresetError


class TestCatalog:
    def test_every_device_is_complete(self):
        for key, preset in DEVICE_PRESETS.items():
            assert isinstance(preset, DevicePreset), key
            assert preset.viewport.width > 0 and preset.viewport.height > 0
            assert preset.device_scale_factor >= 1
            assert preset.user_agent

    def test_keys_are_lowercase_hyphenated(self):
        for key in list(DEVICE_PRESETS) + list(VIEWPORT_PRESETS):
            assert key == key.lower()
            assert " " not in key

    def test_known_sizes(self):
        assert DEVICE_PRESETS["iphone-14"].viewport == Viewport(width=390, height=844)
        assert DEVICE_PRESETS["desktop"].is_mobile is False
        assert VIEWPORT_PRESETS["desktop-hd"] == Viewport(width=1920, height=1080)

    def test_presets_are_frozen(self):
        with pytest.raises(ValidationError):
            DEVICE_PRESETS["pixel-7"].is_mobile = False

    def test_context_options(self):
        opts = DEVICE_PRESETS["iphone-14"].context_options()
        assert opts["viewport"] == {"width": 390, "height": 844}
        assert opts["is_mobile"] is True
        assert opts["has_touch"] is True
        assert set(opts) == {
            "viewport",
            "device_scale_factor",
            "is_mobile",
            "has_touch",
            "user_agent",
        }


class TestResolveDevice:
    def test_known_key(self):
        assert resolve_device("pixel-7") is DEVICE_PRESETS["pixel-7"]

    def test_unknown_key_raises(self):
        with pytest.raises(UnknownPresetError) as excinfo:
            resolve_device("nokia-3310")
        err = excinfo.value
        assert err.name == "nokia-3310"
        assert "iphone-14" in err.available
        assert err.kind is ErrorKind.LOOKUP
        assert "Unknown device preset" in str(err)

    def test_unknown_preset_is_a_key_error(self):
        with pytest.raises(KeyError):
            resolve_device("nope")


class TestResolveViewport:
    def test_none(self):
        assert resolve_viewport(None) is None

    def test_preset_name(self):
        assert resolve_viewport("mobile") == Viewport(width=375, height=667)

    def test_mapping(self):
        assert resolve_viewport({"width": 800, "height": 600}) == Viewport(
            width=800, height=600
        )

    def test_viewport_passthrough(self):
        vp = Viewport(width=10, height=20)
        assert resolve_viewport(vp) is vp

    def test_unknown_preset(self):
        with pytest.raises(UnknownPresetError, match="Unknown viewport preset"):
            resolve_viewport("watch")

    def test_wrong_type(self):
        with pytest.raises(TypeError):
            resolve_viewport(42)


class TestResolveDeviceByName:
    @pytest.mark.parametrize("name", ["iPhone 14", "iphone-14", "  IPHONE   14 "])
    def test_display_name_variants(self, name):
        assert resolve_device_by_name(name) is DEVICE_PRESETS["iphone-14"]

    def test_unknown_returns_none(self):
        assert resolve_device_by_name("Commodore 64") is None

    def test_none_returns_none(self):
        assert resolve_device_by_name(None) is None

    def test_available_names_sorted_and_resolvable(self):
        names = available_device_names()
        assert names == sorted(names)
        assert "iphone 14" in names
        for name in names:
            assert resolve_device_by_name(name) is not None
