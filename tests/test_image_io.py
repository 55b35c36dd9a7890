"""
Tests for image loading/decoding and the processing deadline.
"""

import cv2
import numpy as np
import pytest

from sprite_separator.deadline import Deadline
from sprite_separator.errors import DeadlineExceeded, ImageDecodeError, StageError
from sprite_separator.geometry import BoundingBox
from sprite_separator.image_io import RasterImage, decode_image, load_image


def test_bgr_input_becomes_opaque_rgba():
    bgr = np.zeros((2, 3, 3), dtype=np.uint8)
    bgr[0, 0] = (255, 0, 0)  # blue in BGR
    image = RasterImage.from_bgr(bgr)
    assert (image.width, image.height) == (3, 2)
    assert tuple(image.pixels[0, 0]) == (0, 0, 255, 255)
    assert np.all(image.alpha == 255)


def test_raster_image_is_read_only():
    image = RasterImage.from_rgba(np.zeros((4, 4, 4), dtype=np.uint8))
    with pytest.raises(ValueError):
        image.pixels[0, 0, 0] = 1
    crop = image.crop(BoundingBox(1, 1, 2, 2))
    crop[0, 0, 0] = 1  # crops are writable copies
    assert image.pixels[1, 1, 0] == 0


def test_raster_image_leaves_caller_array_writable():
    pixels = np.zeros((4, 4, 4), dtype=np.uint8)
    image = RasterImage(pixels)
    assert pixels.flags.writeable
    pixels[0, 0, 0] = 9
    assert image.pixels[0, 0, 0] == 0, "The image keeps its own copy"
    assert not image.pixels.flags.writeable


def test_decode_png_bytes_keeps_alpha():
    bgra = np.zeros((5, 7, 4), dtype=np.uint8)
    bgra[2, 3] = (10, 20, 30, 200)
    ok, encoded = cv2.imencode(".png", bgra)
    assert ok

    image = decode_image(encoded.tobytes())

    assert image.pixels.shape == (5, 7, 4)
    assert tuple(image.pixels[2, 3]) == (30, 20, 10, 200)


def test_decode_grayscale_and_16_bit(tmp_path):
    gray16 = np.full((4, 4), 65535, dtype=np.uint16)
    path = tmp_path / "gray16.png"
    assert cv2.imwrite(str(path), gray16)

    image = load_image(path)

    assert image.pixels.shape == (4, 4, 4)
    assert np.all(image.rgb == 255) and np.all(image.alpha == 255)


def test_undecodable_input_raises():
    with pytest.raises(ImageDecodeError):
        decode_image(b"definitely not an image")
    with pytest.raises(ImageDecodeError):
        decode_image(b"")
    with pytest.raises(ValueError, match="Could not load"):
        load_image("/nonexistent/sheet.png")


def test_deadline_without_budget_never_expires():
    deadline = Deadline()
    assert not deadline.expired
    assert deadline.remaining is None
    deadline.check("anything")


def test_deadline_with_fake_clock():
    now = [100.0]
    deadline = Deadline(2.0, clock=lambda: now[0])
    assert deadline.remaining == pytest.approx(2.0)

    now[0] = 101.5
    deadline.check("edge detection")
    assert deadline.remaining == pytest.approx(0.5)

    now[0] = 102.0
    with pytest.raises(DeadlineExceeded) as excinfo:
        deadline.check("edge detection")
    assert isinstance(excinfo.value, StageError)
    assert excinfo.value.stage == "edge detection"
    assert "budget of 2.00s exceeded" in str(excinfo.value)
    assert deadline.remaining == 0.0
