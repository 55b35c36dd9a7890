"""
Raster image container and conversions between OpenCV arrays and RGBA.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import cv2
import numpy as np

from sprite_separator.errors import ImageDecodeError
from sprite_separator.geometry import BoundingBox


@dataclass(frozen=True)
class RasterImage:
    """
    An immutable RGBA image. `pixels` has shape (height, width, 4), dtype uint8,
    and is flagged read-only; stages that need scratch space copy it. The
    constructor keeps its own copy, so the caller's array stays writable.
    """
    pixels: np.ndarray

    def __post_init__(self):
        validate_array(self.pixels)
        if self.pixels.shape[2] != 4:
            raise ValueError(f"RasterImage needs 4 channels (RGBA), got {self.pixels.shape[2]}")
        pixels = self.pixels.copy()
        pixels.flags.writeable = False
        object.__setattr__(self, "pixels", pixels)

    @property
    def width(self) -> int:
        return self.pixels.shape[1]

    @property
    def height(self) -> int:
        return self.pixels.shape[0]

    @property
    def rgb(self) -> np.ndarray:
        return self.pixels[:, :, :3]

    @property
    def alpha(self) -> np.ndarray:
        return self.pixels[:, :, 3]

    def crop(self, box: BoundingBox) -> np.ndarray:
        """Writable RGBA copy of the given region."""
        ys, xs = box.as_yx_slices()
        return self.pixels[ys, xs].copy()

    def to_bgra(self) -> np.ndarray:
        return rgba_to_bgra(self.pixels)

    @classmethod
    def from_rgba(cls, array: np.ndarray) -> RasterImage:
        return cls(np.asarray(array, dtype=np.uint8))

    @classmethod
    def from_bgr(cls, image: np.ndarray) -> RasterImage:
        """
        Convert an OpenCV BGR or BGRA array. BGR input is treated as fully opaque.

        Raises:
            ValueError: If the array is not a valid 8-bit colour image.
        """
        validate_array(image)
        if image.shape[2] == 3:
            return cls(cv2.cvtColor(image, cv2.COLOR_BGR2RGBA))
        return cls(cv2.cvtColor(image, cv2.COLOR_BGRA2RGBA))


def validate_array(image: np.ndarray | None) -> None:
    """Check that image is a (height, width, 3|4) uint8 array."""
    if image is None:
        raise ValueError("image cannot be None")

    if not isinstance(image, np.ndarray):
        raise ValueError(f"image must be a numpy array, got {type(image)}")

    if image.ndim != 3:
        raise ValueError(f"image must be 3D array (height, width, channels), got shape {image.shape}")

    if image.shape[2] not in (3, 4):
        raise ValueError(f"image must have 3 (BGR) or 4 (BGRA) channels, got {image.shape[2]}")

    if image.dtype != np.uint8:
        raise ValueError(f"image must be uint8, got {image.dtype}")

    if image.shape[0] == 0 or image.shape[1] == 0:
        raise ValueError(f"image must not be empty, got shape {image.shape}")


def _normalize_decoded(img: np.ndarray) -> np.ndarray:
    # cv2 hands back grayscale as 2D and 16-bit PNGs as uint16
    if img.dtype == np.uint16:
        img = (img >> 8).astype(np.uint8)
    if img.ndim == 2:
        img = cv2.cvtColor(img, cv2.COLOR_GRAY2BGR)
    elif img.shape[2] == 1:
        img = cv2.cvtColor(img[:, :, 0], cv2.COLOR_GRAY2BGR)
    return img


def load_image(path: str | Path) -> RasterImage:
    """
    Read an image file, keeping its alpha channel.

    Raises:
        ImageDecodeError: If the file is missing or cannot be decoded.
    """
    img = cv2.imread(str(path), cv2.IMREAD_UNCHANGED)
    if img is None:
        raise ImageDecodeError(f"Could not load image from {path}")
    return RasterImage.from_bgr(_normalize_decoded(img))


def decode_image(data: bytes) -> RasterImage:
    """
    Decode encoded image bytes (PNG, JPEG, ...).

    Raises:
        ImageDecodeError: If the bytes are not a decodable image.
    """
    buf = np.frombuffer(data, dtype=np.uint8)
    img = cv2.imdecode(buf, cv2.IMREAD_UNCHANGED) if buf.size else None
    if img is None:
        raise ImageDecodeError(f"Could not decode {len(data)} bytes as an image")
    return RasterImage.from_bgr(_normalize_decoded(img))


def rgba_to_bgra(pixels: np.ndarray) -> np.ndarray:
    return cv2.cvtColor(np.ascontiguousarray(pixels), cv2.COLOR_RGBA2BGRA)
