"""Tests for photo normalisation."""

import io

import pytest
from PIL import Image

from chronometry.photos import PhotoError, normalize_photo

COLORS = {"RGB": (10, 200, 30), "RGBA": (10, 200, 30, 128)}


def image_bytes(size, mode="RGB"):
    buffer = io.BytesIO()
    Image.new(mode, size, COLORS[mode]).save(buffer, format="PNG")
    return buffer.getvalue()


class TestNormalizePhoto:
    def test_png_becomes_jpeg(self):
        jpeg = normalize_photo(image_bytes((64, 48)))

        image = Image.open(io.BytesIO(jpeg))
        assert image.format == "JPEG"
        assert image.size == (64, 48)

    def test_downscales_keeping_aspect_ratio(self):
        jpeg = normalize_photo(image_bytes((800, 400)), max_dimension=200)

        assert Image.open(io.BytesIO(jpeg)).size == (200, 100)

    def test_transparent_image_converted(self):
        jpeg = normalize_photo(image_bytes((32, 32), mode="RGBA"))

        assert Image.open(io.BytesIO(jpeg)).mode == "RGB"

    def test_rejects_non_image(self):
        with pytest.raises(PhotoError):
            normalize_photo(b"definitely not an image")
