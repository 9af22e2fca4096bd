"""
Unit tests for image post-processing
"""

from io import BytesIO
from unittest.mock import Mock, patch

import pytest
import requests
from PIL import Image as PILImage

from image_utils import (
    RAINBOW_BRIDGE_QUOTES,
    add_rainbow_bridge_overlay,
    composite_onto_scene,
    compress_image,
    create_watermarked_image,
    detect_image_mime_type,
    download_image_from_url,
    prepare_for_vision,
    wrap_text,
)


def image_bytes(size=(256, 256), color=(90, 60, 30), mode="RGB", fmt="PNG"):
    buffer = BytesIO()
    PILImage.new(mode, size, color).save(buffer, format=fmt)
    return buffer.getvalue()


def open_image(data):
    return PILImage.open(BytesIO(data))


class TestPreparation:
    def test_prepare_for_vision_fits_without_enlarging(self):
        large = open_image(prepare_for_vision(image_bytes((2048, 1024))))
        assert large.format == "JPEG"
        assert large.size == (1024, 512)

        small = open_image(prepare_for_vision(image_bytes((300, 200))))
        assert small.size == (300, 200)

    def test_prepare_for_vision_flattens_transparency(self):
        data = image_bytes((64, 64), (10, 20, 30, 0), mode="RGBA")
        assert open_image(prepare_for_vision(data)).mode == "RGB"

    def test_compress_image_limits_longest_side(self):
        result = open_image(compress_image(image_bytes((3000, 1500)), max_dimension=2000))
        assert result.format == "JPEG"
        assert result.size == (2000, 1000)

    def test_compress_image_returns_original_on_error(self):
        assert compress_image(b"not an image") == b"not an image"

    def test_detect_mime_type(self):
        assert detect_image_mime_type(image_bytes(fmt="PNG")) == "image/png"
        assert detect_image_mime_type(image_bytes(fmt="JPEG")) == "image/jpeg"
        assert detect_image_mime_type(b"garbage") == "image/jpeg"


class TestWatermark:
    def test_watermark_keeps_size_and_changes_pixels(self):
        original = image_bytes((512, 512), (20, 20, 20))
        watermarked = open_image(create_watermarked_image(original))

        assert watermarked.format == "PNG"
        assert watermarked.size == (512, 512)
        colors = watermarked.convert("RGB").getcolors(maxcolors=512 * 512)
        assert len(colors) > 1


class TestRainbowBridge:
    def test_overlay_returns_quote(self):
        data, quote = add_rainbow_bridge_overlay(image_bytes((512, 512)), "Bella")
        assert quote in RAINBOW_BRIDGE_QUOTES
        assert open_image(data).size == (512, 512)

    def test_overlay_uses_given_quote(self):
        _, quote = add_rainbow_bridge_overlay(image_bytes((512, 512)), "Bella", quote="Run free.")
        assert quote == "Run free."

    def test_wrap_text(self):
        lines = wrap_text("one two three four five six seven", max_chars_per_line=10)
        assert lines == ["one two", "three four", "five six", "seven"]
        assert all(len(line) <= 10 for line in lines)


class TestComposite:
    def test_subject_is_centred_near_bottom(self):
        scene = image_bytes((1000, 1000), (0, 0, 255))
        subject = image_bytes((100, 200), (255, 0, 0, 255), mode="RGBA")

        result = open_image(composite_onto_scene(subject, scene)).convert("RGB")

        assert result.size == (1000, 1000)
        # 700px tall subject, 80px above the bottom edge, centred horizontally
        assert result.getpixel((500, 600)) == (255, 0, 0)
        assert result.getpixel((500, 50)) == (0, 0, 255)
        assert result.getpixel((500, 960)) == (0, 0, 255)


class TestDownload:
    @patch("image_utils.requests.get")
    def test_download_returns_content(self, mock_get):
        mock_get.return_value = Mock(content=b"png-bytes", raise_for_status=Mock())
        assert download_image_from_url("https://cdn/x.png") == b"png-bytes"

    @patch("image_utils.requests.get")
    def test_download_failure_raises(self, mock_get):
        mock_get.side_effect = requests.exceptions.Timeout("slow")
        with pytest.raises(Exception, match="Failed to download image"):
            download_image_from_url("https://cdn/x.png")
