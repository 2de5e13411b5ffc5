"""Tests for screenshot post-processing."""

from __future__ import annotations

import io

import pytest
from PIL import Image

from mobilectl.device.screenshots import process_screenshot
from mobilectl.models import DeviceError


def _png(width: int = 200, height: int = 400, mode: str = "RGBA") -> bytes:
    buf = io.BytesIO()
    Image.new(mode, (width, height), (255, 0, 0, 255) if mode == "RGBA" else (255, 0, 0)).save(buf, format="PNG")
    return buf.getvalue()


class TestProcessScreenshot:
    def test_default_halves_png(self):
        data, media_type = process_screenshot(_png())
        assert media_type == "image/png"
        assert Image.open(io.BytesIO(data)).size == (100, 200)

    def test_full_scale(self):
        data, _ = process_screenshot(_png(), scale=1.0)
        assert Image.open(io.BytesIO(data)).size == (200, 400)

    def test_jpeg_drops_alpha(self):
        data, media_type = process_screenshot(_png(), format="jpeg", scale=0.25, quality=50)
        assert media_type == "image/jpeg"
        img = Image.open(io.BytesIO(data))
        assert img.format == "JPEG"
        assert img.mode == "RGB"
        assert img.size == (50, 100)

    def test_never_below_one_pixel(self):
        data, _ = process_screenshot(_png(3, 3), scale=0.1)
        assert Image.open(io.BytesIO(data)).size == (1, 1)

    def test_jpg_alias(self):
        _, media_type = process_screenshot(_png(), format="jpg")
        assert media_type == "image/jpeg"

    def test_palette_png_converted_for_jpeg(self):
        buf = io.BytesIO()
        Image.new("P", (20, 20)).save(buf, format="PNG")
        data, _ = process_screenshot(buf.getvalue(), format="jpeg", scale=1.0)
        assert Image.open(io.BytesIO(data)).mode == "RGB"

    @pytest.mark.parametrize("raw", [b"", b"not an image"])
    def test_unreadable_bytes_raise_device_error(self, raw):
        with pytest.raises(DeviceError, match="unreadable screenshot") as exc_info:
            process_screenshot(raw)
        assert exc_info.value.tool == "screenshot"
