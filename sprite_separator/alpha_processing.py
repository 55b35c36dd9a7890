"""
Functions for building and softening the alpha channel of sprite cutouts.
"""

import math

import cv2
import numpy as np
from scipy import ndimage

ANTI_ALIAS_KERNEL = np.array([[1, 2, 1],
                              [2, 4, 2],
                              [1, 2, 1]], dtype=np.float64) / 16


def line_kernels(length: int) -> list[np.ndarray]:
    """Horizontal, vertical and both diagonal line structuring elements."""
    return [
        np.ones((1, length), np.uint8),
        np.ones((length, 1), np.uint8),
        np.eye(length, dtype=np.uint8),
        np.fliplr(np.eye(length, dtype=np.uint8)).copy(),
    ]


def clean_edge_mask(edges: np.ndarray, kernel_size: int = 3) -> np.ndarray:
    """
    Denoise a one-pixel-wide edge map with morphological opening.

    A square element would erase thin strokes entirely, so the map is opened
    (erosion followed by dilation) with a line element in each of the four
    principal directions and the results are combined. Strokes with a
    straight run of kernel_size pixels survive; isolated specks do not.

    Args:
        edges: Edge map (0 / 255)
        kernel_size: Length of the line elements

    Returns:
        Cleaned edge map (0 / 255)
    """
    cleaned = np.zeros_like(edges)
    for kernel in line_kernels(max(1, kernel_size)):
        cleaned |= cv2.morphologyEx(edges, cv2.MORPH_OPEN, kernel)
    return cleaned


def gaussian_kernel_2d(sigma: float) -> np.ndarray:
    """Normalised 2D Gaussian with side ceil(3 * sigma) * 2 + 1."""
    radius = math.ceil(3 * sigma)
    offsets = np.arange(-radius, radius + 1)
    g = np.exp(-(offsets ** 2) / (2 * sigma * sigma))
    kernel = np.outer(g, g)
    return kernel / kernel.sum()


def feather_alpha(alpha: np.ndarray, radius: float) -> np.ndarray:
    """
    Soften the edges of an alpha mask with a Gaussian blur.

    The mask is extended by repeating its border pixels, so a fully opaque
    mask stays fully opaque. A radius of 0 returns the mask unchanged.
    """
    if radius <= 0:
        return alpha.copy()
    kernel = gaussian_kernel_2d(radius)
    blurred = ndimage.convolve(alpha.astype(np.float64), kernel, mode="nearest")
    return np.clip(np.rint(blurred), 0, 255).astype(np.uint8)


def anti_alias(alpha: np.ndarray) -> np.ndarray:
    """Apply the 3x3 binomial kernel to interior pixels; the border row/column is kept."""
    result = alpha.copy()
    if alpha.shape[0] < 3 or alpha.shape[1] < 3:
        return result
    smoothed = ndimage.correlate(alpha.astype(np.float64), ANTI_ALIAS_KERNEL, mode="constant")
    result[1:-1, 1:-1] = np.clip(np.rint(smoothed[1:-1, 1:-1]), 0, 255).astype(np.uint8)
    return result


def content_aware_fill(rgb: np.ndarray, alpha: np.ndarray, reach: int = 2, window: int = 7) -> np.ndarray:
    """
    Recolour transparent pixels next to the sprite with the average colour of
    nearby opaque pixels, so softened edges blend toward the sprite rather
    than toward whatever was behind it.

    Pass the hard mask, before any feathering. Targets with no foreground
    inside their window take the colour of the nearest foreground pixel.

    Args:
        rgb: (h, w, 3) colour data
        alpha: (h, w) alpha; 0 marks background
        reach: Background pixels within this many pixels of foreground are filled
        window: Side of the square window averaged over

    Returns:
        A filled copy of rgb
    """
    foreground = alpha > 0
    near = cv2.dilate(foreground.astype(np.uint8), np.ones((2 * reach + 1, 2 * reach + 1), np.uint8)) > 0
    targets = near & ~foreground

    filled = rgb.copy()
    if not targets.any():
        return filled

    box = np.ones((window, window))
    count = ndimage.convolve(foreground.astype(np.float64), box, mode="constant")
    has_source = targets & (count > 0)
    for c in range(rgb.shape[2]):
        total = ndimage.convolve(rgb[:, :, c].astype(np.float64) * foreground, box, mode="constant")
        filled[:, :, c][has_source] = np.rint(total[has_source] / count[has_source]).astype(np.uint8)

    missing = targets & ~has_source
    if missing.any():
        _, (iy, ix) = ndimage.distance_transform_edt(~foreground, return_indices=True)
        filled[missing] = rgb[iy[missing], ix[missing]]
    return filled


def smooth_edges(rgba: np.ndarray, sigma: float) -> np.ndarray:
    """
    Gaussian-smooth all four channels, but only at semi-transparent pixels
    whose whole kernel window lies inside the image.
    """
    if sigma <= 0:
        return rgba.copy()
    kernel = gaussian_kernel_2d(sigma)
    radius = kernel.shape[0] // 2
    alpha = rgba[:, :, 3]

    targets = (alpha > 0) & (alpha < 255)
    interior = np.zeros_like(targets)
    interior[radius:alpha.shape[0] - radius, radius:alpha.shape[1] - radius] = True
    targets &= interior

    result = rgba.copy()
    if not targets.any():
        return result
    for c in range(4):
        blurred = ndimage.convolve(rgba[:, :, c].astype(np.float64), kernel, mode="constant")
        result[:, :, c][targets] = np.clip(np.rint(blurred[targets]), 0, 255).astype(np.uint8)
    return result
