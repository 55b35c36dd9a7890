"""
Edge and contour analysis: a Canny-style detector built from its parts
(blur, Sobel, non-maximum suppression, hysteresis) plus a border-following
contour walk and per-contour shape metrics.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass

import cv2
import numpy as np

from sprite_separator.config import EdgeDetectionOptions
from sprite_separator.deadline import Deadline
from sprite_separator.geometry import BoundingBox
from sprite_separator.image_io import RasterImage

logger = logging.getLogger(__name__)

STRONG = 255

# Walk directions: right, down-right, down, down-left, left, up-left, up, up-right
DIRECTIONS_X = (1, 1, 0, -1, -1, -1, 0, 1)
DIRECTIONS_Y = (0, 1, 1, 1, 0, -1, -1, -1)

# (dy, dx) of the two neighbours compared against, per quantised gradient direction
_NMS_NEIGHBOURS = {
    0: ((0, 1), (0, -1)),
    1: ((1, 1), (-1, -1)),
    2: ((1, 0), (-1, 0)),
    3: ((1, -1), (-1, 1)),
}


@dataclass
class Contour:
    points: np.ndarray  # (n, 2) int array of (x, y)
    area: float
    perimeter: float
    centroid: tuple[float, float]
    bounds: BoundingBox
    aspect_ratio: float
    extent: float
    solidity: float
    convex: bool


@dataclass
class EdgeDetectionResult:
    edge_map: np.ndarray  # uint8, 0 or 255
    contours: list[Contour]
    confidence: float


def luma(pixels: np.ndarray) -> np.ndarray:
    """
    Weighted luminance of an RGBA or RGB array, composited over white so that
    transparent pixels read as background regardless of their stored colour.
    """
    rgb = pixels[:, :, :3].astype(np.float64)
    if pixels.shape[2] == 4:
        a = pixels[:, :, 3:4].astype(np.float64) / 255
        rgb = rgb * a + 255 * (1 - a)
    return rgb[:, :, 0] * 0.299 + rgb[:, :, 1] * 0.587 + rgb[:, :, 2] * 0.114


def gaussian_kernel_1d(size: int, sigma: float | None = None) -> np.ndarray:
    """Normalised 1D Gaussian of `size` taps; sigma defaults to size / 3."""
    size = max(1, int(size))
    sigma = sigma if sigma is not None else size / 3
    offsets = np.arange(size) - size // 2
    kernel = np.exp(-(offsets ** 2) / (2 * sigma * sigma))
    return kernel / kernel.sum()


def gaussian_blur(gray: np.ndarray, size: int, sigma: float | None = None) -> np.ndarray:
    """Separable Gaussian blur with clamped (edge-replicated) borders."""
    kernel = gaussian_kernel_1d(size, sigma)
    n = len(kernel)
    before, after = n // 2, n - 1 - n // 2
    h, w = gray.shape

    padded = np.pad(gray.astype(np.float64), ((0, 0), (before, after)), mode="edge")
    horizontal = np.zeros((h, w))
    for i, weight in enumerate(kernel):
        horizontal += weight * padded[:, i:i + w]

    padded = np.pad(horizontal, ((before, after), (0, 0)), mode="edge")
    blurred = np.zeros((h, w))
    for i, weight in enumerate(kernel):
        blurred += weight * padded[i:i + h, :]
    return blurred


def sobel(gray: np.ndarray, pad_value: float | None = None) -> tuple[np.ndarray, np.ndarray]:
    """
    Sobel gradient magnitude and direction (radians).

    With pad_value None only interior pixels get a gradient and the one-pixel
    border is zero. Otherwise the image is surrounded by pad_value first, so
    shapes touching the border still produce edges there.
    """
    g = gray.astype(np.float64)
    if pad_value is not None:
        g = np.pad(g, 1, mode="constant", constant_values=pad_value)
    h, w = g.shape
    gx = np.zeros_like(g)
    gy = np.zeros_like(g)
    if h >= 3 and w >= 3:
        gx[1:-1, 1:-1] = (g[:-2, 2:] + 2 * g[1:-1, 2:] + g[2:, 2:]) - (g[:-2, :-2] + 2 * g[1:-1, :-2] + g[2:, :-2])
        gy[1:-1, 1:-1] = (g[2:, :-2] + 2 * g[2:, 1:-1] + g[2:, 2:]) - (g[:-2, :-2] + 2 * g[:-2, 1:-1] + g[:-2, 2:])
    if pad_value is not None:
        gx, gy = gx[1:-1, 1:-1], gy[1:-1, 1:-1]
    return np.hypot(gx, gy), np.arctan2(gy, gx)


def non_maximum_suppression(magnitude: np.ndarray, direction: np.ndarray) -> np.ndarray:
    """Thin edges to one pixel by keeping local maxima along the gradient."""
    h, w = magnitude.shape
    quantised = np.mod(np.floor(direction * 4 / np.pi + 0.5).astype(np.int64), 4)
    padded = np.pad(magnitude, 1)

    keep = np.zeros((h, w), dtype=bool)
    for q, ((dy1, dx1), (dy2, dx2)) in _NMS_NEIGHBOURS.items():
        n1 = padded[1 + dy1:1 + dy1 + h, 1 + dx1:1 + dx1 + w]
        n2 = padded[1 + dy2:1 + dy2 + h, 1 + dx2:1 + dx2 + w]
        keep |= (quantised == q) & (magnitude >= n1) & (magnitude >= n2)

    suppressed = np.where(keep, magnitude, 0.0)
    suppressed[0, :] = suppressed[-1, :] = 0
    suppressed[:, 0] = suppressed[:, -1] = 0
    return suppressed


def hysteresis(suppressed: np.ndarray, low: float, high: float) -> np.ndarray:
    """
    Double threshold, then keep weak pixels only when one of their 8
    neighbours is strong. Returns a uint8 map of 0 / 255.
    """
    strong = suppressed >= high
    weak = (suppressed >= low) & ~strong
    near_strong = cv2.dilate(strong.astype(np.uint8), np.ones((3, 3), np.uint8)) > 0
    edges = strong | (weak & near_strong)
    return edges.astype(np.uint8) * STRONG


def canny(gray: np.ndarray, low: float, high: float, blur_size: int = 5,
          sigma: float | None = None, pad_value: float | None = None) -> np.ndarray:
    """
    Edge map of gray. With pad_value set the image is first surrounded by
    that value, so outlines touching the border are found like any other.
    """
    margin = 0
    if pad_value is not None:
        margin = max(1, int(blur_size)) // 2 + 2
        gray = np.pad(gray.astype(np.float64), margin, mode="constant", constant_values=pad_value)
    blurred = gaussian_blur(gray, blur_size, sigma)
    magnitude, direction = sobel(blurred)
    edges = hysteresis(non_maximum_suppression(magnitude, direction), low, high)
    if margin:
        edges = edges[margin:-margin, margin:-margin]
    return edges


def trace_contours(edge_map: np.ndarray, max_points: int = 10_000,
                   deadline: Deadline | None = None) -> list[np.ndarray]:
    """
    Follow edge pixels into ordered point lists.

    Every unvisited edge pixel (in raster order) starts a walk. At each step
    the 8 neighbours are searched starting from the current direction; after
    moving, the direction turns back by two steps so the walk hugs the
    border. A walk ends on returning to its start, on a dead end, or after
    max_points points.
    """
    h, w = edge_map.shape
    edges = (edge_map > 0).tolist()
    visited = [[False] * w for _ in range(h)]
    contours = []

    for sy, sx in np.argwhere(edge_map > 0).tolist():
        if visited[sy][sx]:
            continue
        if deadline is not None:
            deadline.check("contour tracing")

        points = []
        x, y, d = sx, sy, 0
        while len(points) < max_points:
            points.append((x, y))
            visited[y][x] = True
            for i in range(8):
                nd = (d + i) % 8
                nx, ny = x + DIRECTIONS_X[nd], y + DIRECTIONS_Y[nd]
                if 0 <= nx < w and 0 <= ny < h and edges[ny][nx]:
                    break
            else:
                break
            x, y, d = nx, ny, (nd + 6) % 8
            if x == sx and y == sy:
                break
        contours.append(np.array(points, dtype=np.int64))

    return contours


def contour_metrics(points: np.ndarray) -> Contour:
    xs = points[:, 0].astype(np.float64)
    ys = points[:, 1].astype(np.float64)
    nx, ny = np.roll(xs, -1), np.roll(ys, -1)

    area = abs(float(np.sum(xs * ny - nx * ys))) / 2
    perimeter = float(np.sum(np.hypot(nx - xs, ny - ys))) if len(points) > 1 else 0.0
    bounds = BoundingBox.from_corners(xs.min(), ys.min(), xs.max(), ys.max())
    extent = area / bounds.area

    convex = False
    if len(points) >= 3:
        ex, ey = nx - xs, ny - ys
        cross = ex * np.roll(ey, -1) - ey * np.roll(ex, -1)
        cross = cross[cross != 0]
        convex = bool(np.all(cross > 0) or np.all(cross < 0))

    return Contour(
        points=points,
        area=area,
        perimeter=perimeter,
        centroid=(float(xs.mean()), float(ys.mean())),
        bounds=bounds,
        aspect_ratio=bounds.aspect_ratio,
        extent=extent,
        # Solidity would need a convex hull; extent stands in for it
        solidity=extent,
        convex=convex,
    )


def detect_edges(image: RasterImage, options: EdgeDetectionOptions | None = None,
                 deadline: Deadline | None = None) -> EdgeDetectionResult:
    """
    Run the full edge pipeline on an image and return the edge map, the
    contours whose enclosed area is within [min_area, max_area], and a
    confidence derived from edge density and contour count.
    """
    options = options or EdgeDetectionOptions()
    gray = luma(image.pixels)
    edge_map = canny(gray, options.low_threshold, options.high_threshold, options.blur_size)
    if deadline is not None:
        deadline.check("edge detection")

    contours = []
    for points in trace_contours(edge_map, options.max_contour_points, deadline):
        contour = contour_metrics(points)
        if options.min_area <= contour.area <= options.max_area:
            contours.append(contour)

    density = np.count_nonzero(edge_map) / edge_map.size
    confidence = (min(1.0, density * 10) + min(1.0, len(contours) / options.target_contour_count)) / 2
    logger.debug("Edge detection: density %.4f, %d contour(s) kept, confidence %.2f",
                 density, len(contours), confidence)
    return EdgeDetectionResult(edge_map=edge_map, contours=contours, confidence=confidence)
