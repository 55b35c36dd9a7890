"""
Tests for the edge and contour analyzer.
"""

import numpy as np
import pytest

from sprite_separator.config import EdgeDetectionOptions
from sprite_separator.edge_detection import (
    canny,
    contour_metrics,
    detect_edges,
    gaussian_blur,
    gaussian_kernel_1d,
    hysteresis,
    luma,
    non_maximum_suppression,
    sobel,
    trace_contours,
)
from sprite_separator.geometry import BoundingBox
from sprite_separator.image_io import RasterImage


def _canvas(width=100, height=100):
    return np.zeros((height, width, 4), dtype=np.uint8)


def test_uniform_image_has_no_edges():
    """A flat image yields an empty edge map, no contours and zero confidence."""
    pixels = _canvas()
    pixels[:, :] = (120, 80, 40, 255)
    result = detect_edges(RasterImage.from_rgba(pixels))
    assert not result.edge_map.any()
    assert result.contours == []
    assert result.confidence == 0.0


def test_transparent_pixels_read_as_white():
    pixels = _canvas(4, 1)
    pixels[0, 0] = (0, 0, 0, 0)
    pixels[0, 1] = (0, 0, 0, 255)
    gray = luma(pixels)
    assert gray[0, 0] == pytest.approx(255.0)
    assert gray[0, 1] == pytest.approx(0.0)


def test_gaussian_kernel_is_normalised_and_symmetric():
    kernel = gaussian_kernel_1d(5)
    assert kernel.sum() == pytest.approx(1.0)
    assert np.allclose(kernel, kernel[::-1])
    assert kernel.argmax() == 2


def test_blur_preserves_constant_image():
    gray = np.full((10, 12), 77.0)
    assert np.allclose(gaussian_blur(gray, 7), 77.0)


def test_sobel_border_is_zero_without_padding():
    gray = np.zeros((10, 10))
    gray[:, 5:] = 255
    magnitude, _ = sobel(gray)
    assert not magnitude[0, :].any() and not magnitude[:, 0].any()
    assert magnitude[5, 4] > 0 and magnitude[5, 5] > 0


def test_sobel_padding_finds_edges_on_the_border():
    gray = np.zeros((10, 10))  # dark shape filling the whole crop
    magnitude, _ = sobel(gray, pad_value=255.0)
    assert magnitude[5, 0] > 0, "Left border sees the white surround"
    assert magnitude[5, 5] == 0


def test_non_maximum_suppression_thins_a_ramp():
    magnitude = np.zeros((7, 7))
    magnitude[:, 2] = 50
    magnitude[:, 3] = 100
    magnitude[:, 4] = 50
    direction = np.zeros((7, 7))  # horizontal gradient
    suppressed = non_maximum_suppression(magnitude, direction)
    assert np.all(suppressed[1:-1, 3] == 100)
    assert not suppressed[:, 2].any() and not suppressed[:, 4].any()
    assert not suppressed[0, :].any(), "Border is cleared"


def test_hysteresis_keeps_weak_pixels_next_to_strong_ones():
    suppressed = np.zeros((10, 10))
    suppressed[5, 5] = 200   # strong
    suppressed[5, 6] = 60    # weak, touches strong
    suppressed[6, 7] = 60    # weak, touches only the weak pixel
    suppressed[1, 1] = 60    # weak, isolated
    edges = hysteresis(suppressed, 50, 150)
    assert edges[5, 5] == 255
    assert edges[5, 6] == 255
    assert edges[6, 7] == 0
    assert edges[1, 1] == 0
    assert edges.dtype == np.uint8


def test_trace_rectangle_outline():
    """A one-pixel rectangle outline is walked once, clockwise, and closes."""
    edges = np.zeros((30, 40), dtype=np.uint8)
    edges[5, 10:30] = 255
    edges[19, 10:30] = 255
    edges[5:20, 10] = 255
    edges[5:20, 29] = 255

    contours = trace_contours(edges)

    assert len(contours) == 1
    points = contours[0]
    assert len(points) == 2 * 20 + 2 * 13
    assert tuple(points[0]) == (10, 5)
    assert tuple(points[1]) == (11, 5), "Walk starts to the right"

    contour = contour_metrics(points)
    assert contour.area == pytest.approx(19 * 14)
    assert contour.perimeter == pytest.approx(2 * (19 + 14))
    assert contour.bounds == BoundingBox(10, 5, 20, 15)
    assert contour.extent == pytest.approx(266 / 300)
    assert contour.solidity == contour.extent
    assert contour.convex


def test_trace_stops_at_point_limit():
    edges = np.zeros((5, 50), dtype=np.uint8)
    edges[2, :] = 255
    contours = trace_contours(edges, max_points=10)
    assert len(contours[0]) == 10


def test_isolated_pixel_is_a_single_point_contour():
    edges = np.zeros((5, 5), dtype=np.uint8)
    edges[2, 2] = 255
    contours = trace_contours(edges)
    assert len(contours) == 1
    contour = contour_metrics(contours[0])
    assert contour.area == 0
    assert not contour.convex


def test_detect_edges_outlines_a_square():
    pixels = _canvas()
    pixels[30:70, 30:70] = (20, 20, 20, 255)
    result = detect_edges(RasterImage.from_rgba(pixels), EdgeDetectionOptions(min_area=0, max_area=10_000))

    ys, xs = np.nonzero(result.edge_map)
    assert len(xs) > 0
    assert xs.min() >= 27 and xs.max() <= 72
    assert ys.min() >= 27 and ys.max() <= 72
    for side in (result.edge_map[28:32, 40:60], result.edge_map[68:72, 40:60],
                 result.edge_map[40:60, 28:32], result.edge_map[40:60, 68:72]):
        assert side.any(), "Every side of the square produces edges"
    assert 0 < result.confidence <= 1


def test_canny_padding_detects_shape_touching_border():
    gray = np.full((40, 40), 255.0)
    gray[:, :20] = 0  # dark area runs off the left border
    edges = canny(gray, 40, 120, blur_size=5, pad_value=255.0)
    assert edges[20, :3].any(), "Outline along the image border is found"
    assert edges[20, 17:23].any()
