"""
Tests for payload inspection and local WebP re-encoding.
"""

import io
import os
import sys

import pytest
from PIL import Image

sys.path.insert(0, os.path.abspath(os.path.dirname(os.path.dirname(__file__))))

from tests.mock_factories import png_bytes
from utils.exceptions import InvalidImageError
from utils.image_transcoder import ensure_image, reencode_webp, sniff_extension


def encoded(format, mode="RGB", size=(8, 8)):
    output = io.BytesIO()
    Image.new(mode, size).save(output, format=format)
    return output.getvalue()


def animated_gif(frames=3):
    output = io.BytesIO()
    colors = ["red", "green", "blue", "white"]
    images = [Image.new("RGB", (8, 8), colors[n % len(colors)]) for n in range(frames)]
    images[0].save(output, format="GIF", save_all=True, append_images=images[1:], duration=50, loop=0)
    return output.getvalue()


@pytest.mark.parametrize(
    "format, extension",
    [("PNG", "png"), ("JPEG", "jpg"), ("GIF", "gif"), ("WEBP", "webp")],
)
def test_sniff_extension(format, extension):
    assert sniff_extension(encoded(format)) == extension


def test_sniff_unknown_bytes():
    assert sniff_extension(b"BM not supported") is None


@pytest.mark.parametrize(
    "data, content_type",
    [
        (b"", ""),
        (b"<!DOCTYPE html><html>blocked</html>", ""),
        (b'  {"error": "upstream"}', "image/webp"),
        (b"Error 502", "image/png"),
        (png_bytes(), "text/html"),
        (png_bytes(), "application/json"),
        (b"\x00\x01\x02 random bytes that are long enough to not look like an error body" * 3, ""),
    ],
)
def test_ensure_image_rejects_error_bodies(data, content_type):
    with pytest.raises(InvalidImageError):
        ensure_image(data, content_type)


def test_ensure_image_accepts_real_images():
    assert ensure_image(png_bytes(), "image/png") == "png"
    assert ensure_image(encoded("WEBP"), "") == "webp"


def test_reencode_webp_produces_webp():
    data = reencode_webp(png_bytes((16, 16), "blue"))

    assert sniff_extension(data) == "webp"
    with Image.open(io.BytesIO(data)) as image:
        assert image.size == (16, 16)


def test_reencode_converts_palette_images():
    data = reencode_webp(encoded("PNG", mode="P"), lossless=False, quality=80)
    assert sniff_extension(data) == "webp"


def test_reencode_keeps_animation_frames():
    data = reencode_webp(animated_gif(frames=3))

    with Image.open(io.BytesIO(data)) as image:
        assert image.format == "WEBP"
        assert getattr(image, "n_frames", 1) == 3


def test_reencode_rejects_garbage():
    with pytest.raises(InvalidImageError):
        reencode_webp(b"definitely not an image")


def test_reencode_rejects_decompression_bombs(monkeypatch):
    monkeypatch.setattr(Image, "MAX_IMAGE_PIXELS", 100)

    with pytest.raises(InvalidImageError):
        reencode_webp(png_bytes((64, 64)))


def test_reencode_maps_decoder_value_errors(monkeypatch):
    def broken_open(*args, **kwargs):
        raise ValueError("tile cannot extend outside image")

    monkeypatch.setattr(Image, "open", broken_open)

    with pytest.raises(InvalidImageError):
        reencode_webp(png_bytes())
