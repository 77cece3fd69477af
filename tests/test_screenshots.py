"""Tests for screenshot identity and retention."""

import base64
import io

import pytest
from PIL import Image

from trace_recorder.config import ScreenshotConfig
from trace_recorder.screenshots import (
    ScreenshotRegistry,
    decode_image,
    element_semantics,
    generate_screenshot_id,
)


@pytest.fixture
def png_bytes():
    buffer = io.BytesIO()
    Image.new("RGB", (4, 3), "white").save(buffer, format="PNG")
    return buffer.getvalue()


@pytest.fixture
def registry():
    return ScreenshotRegistry(ScreenshotConfig())


class TestElementSemantics:
    @pytest.mark.parametrize(
        "element,expected",
        [
            ({"tagName": "BUTTON", "textContent": "Save changes"}, "button-save"),
            ({"tagName": "BUTTON", "textContent": ""}, "button"),
            ({"tagName": "INPUT", "id": "dateFrom"}, "input-date"),
            ({"tagName": "INPUT", "id": "zip-code"}, "input-zipcode"),
            ({"tagName": "A"}, "link"),
            ({"tagName": "TD"}, "table-row"),
            ({"tagName": "DIV", "className": "sapMTile"}, "tile"),
            ({"tagName": "DIV"}, None),
            (None, None),
        ],
    )
    def test_semantics(self, element, expected):
        assert element_semantics(element) == expected


class TestScreenshotId:
    def test_full_id(self):
        screenshot_id = generate_screenshot_id(
            "click", "0003", 1000, "manage-alerts", {"tagName": "BUTTON", "textContent": "Go"}
        )
        assert screenshot_id == "0003-click-manage-alerts-button-go"

    def test_timestamp_when_no_event_id(self):
        assert generate_screenshot_id("editing_start", timestamp=1234) == "1234-editingstart"


class TestDecodeImage:
    def test_bytes_pass_through(self, png_bytes):
        assert decode_image(png_bytes) == png_bytes

    def test_data_url(self, png_bytes):
        url = "data:image/png;base64," + base64.b64encode(png_bytes).decode()
        assert decode_image(url) == png_bytes

    def test_invalid_base64(self):
        with pytest.raises(ValueError):
            decode_image("data:image/png;base64,abc")


class TestScreenshotRegistry:
    def test_register(self, registry, png_bytes):
        screenshot = registry.register("tab-1", png_bytes, 1000, "click", "0001")
        assert screenshot.id == "0001-click"
        assert screenshot.filename == "0001-click.png"
        assert (screenshot.width, screenshot.height) == (4, 3)
        assert registry.get(screenshot.id) is screenshot
        ref = screenshot.to_ref()
        assert ref.id == screenshot.id
        assert ref.event_type == "click"

    def test_unreadable_image_still_registered(self, registry):
        screenshot = registry.register("tab-1", b"not an image", 1000, "click", "0001")
        assert screenshot.width is None
        assert "0001-click" in registry

    def test_id_collisions_get_suffix(self, registry, png_bytes):
        ids = [registry.register("tab-1", png_bytes, 1000, "click", "0001").id for _ in range(3)]
        assert ids == ["0001-click", "0001-click-2", "0001-click-3"]

    def test_should_capture(self, registry):
        assert registry.should_capture("click") is True
        assert registry.should_capture("input") is False
        assert ScreenshotRegistry(ScreenshotConfig(enabled=False)).should_capture("click") is False

    def test_oldest_evicted_per_owner(self, registry, png_bytes):
        for i in range(150):
            registry.register("tab-1", png_bytes, timestamp=i, event_type="click")
        registry.register("tab-2", png_bytes, timestamp=0, event_type="click")

        remaining = registry.for_owner("tab-1")
        assert len(remaining) == 100
        assert min(s.timestamp for s in remaining) == 50
        assert len(registry.for_owner("tab-2")) == 1

    def test_new_session_has_its_own_budget(self, registry, png_bytes):
        for i in range(100):
            registry.register("tab-1", png_bytes, timestamp=i, event_type="click", session_id="first")
        for i in range(100, 150):
            registry.register("tab-1", png_bytes, timestamp=i, event_type="click", session_id="second")

        assert len(registry.for_session("first")) == 100
        assert len(registry.for_session("second")) == 50
        assert len(registry.for_owner("tab-1")) == 150

    def test_clear_owner(self, registry, png_bytes):
        registry.register("tab-1", png_bytes, 1, "click")
        registry.register("tab-2", png_bytes, 2, "click")
        registry.clear("tab-1")
        assert len(registry) == 1
