"""
Default morphological separation: clean the alpha mask with morphology,
then split touching shapes with a distance-transform seeded watershed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import cv2
import numpy as np
from scipy import ndimage

from sprite_separator.config import MorphologyOptions
from sprite_separator.deadline import Deadline
from sprite_separator.geometry import BoundingBox
from sprite_separator.image_io import RasterImage

logger = logging.getLogger(__name__)

_SHAPES = {
    "ellipse": cv2.MORPH_ELLIPSE,
    "rect": cv2.MORPH_RECT,
    "cross": cv2.MORPH_CROSS,
}

_OPERATIONS = {
    "open": cv2.MORPH_OPEN,
    "close": cv2.MORPH_CLOSE,
    "erode": cv2.MORPH_ERODE,
    "dilate": cv2.MORPH_DILATE,
}

REGION_CONFIDENCE = 0.8


@dataclass
class SeparatedRegion:
    bounds: BoundingBox
    area: int
    confidence: float


@dataclass
class MorphologyResult:
    separated_regions: list[SeparatedRegion]
    confidence: float


def clean_mask(alpha: np.ndarray, options: MorphologyOptions) -> np.ndarray:
    """Threshold alpha and apply the configured morphology operations in order."""
    _, binary = cv2.threshold(alpha, options.alpha_threshold, 255, cv2.THRESH_BINARY)
    element = options.structuring_element
    if element.shape not in _SHAPES:
        raise ValueError(f"unsupported structuring element {element.shape!r}")
    kernel = cv2.getStructuringElement(_SHAPES[element.shape], (element.size, element.size))

    for name in options.operations:
        if name not in _OPERATIONS:
            raise ValueError(f"unsupported morphology operation {name!r}")
        binary = cv2.morphologyEx(binary, _OPERATIONS[name], kernel, iterations=options.iterations)
    return binary


def watershed_labels(rgb: np.ndarray, mask: np.ndarray, seed_ratio: float = 0.5) -> np.ndarray:
    """
    Label the foreground of mask, splitting blobs joined by thin necks.

    Seeds are the cores of each connected blob: pixels whose distance to the
    background is at least seed_ratio times the blob's maximum distance.
    Returns an int32 label image where 0 is background and boundaries are -1.
    """
    dist = cv2.distanceTransform(mask, cv2.DIST_L2, 5)
    blobs, n_blobs = ndimage.label(mask > 0)
    if n_blobs == 0:
        return np.zeros(mask.shape, dtype=np.int32)

    blob_max = np.asarray(ndimage.maximum(dist, blobs, index=np.arange(1, n_blobs + 1)))
    threshold = np.zeros(n_blobs + 1)
    threshold[1:] = blob_max * seed_ratio
    seeds = ((dist >= threshold[blobs]) & (blobs > 0)).astype(np.uint8)

    _, markers = cv2.connectedComponents(seeds, connectivity=8)
    markers = markers + 1  # background becomes 1
    markers[(mask > 0) & (seeds == 0)] = 0  # unknown, to be flooded
    markers = cv2.watershed(np.ascontiguousarray(rgb), markers.astype(np.int32))
    markers[markers == 1] = 0
    return markers


def separate_regions(image: RasterImage, options: MorphologyOptions | None = None,
                     deadline: Deadline | None = None) -> MorphologyResult:
    """
    Find connected regions of the cleaned alpha mask whose area lies in
    [min_region_size, max_region_size].
    """
    options = options or MorphologyOptions()
    mask = clean_mask(np.ascontiguousarray(image.alpha), options)
    if deadline is not None:
        deadline.check("morphology")

    if options.separation_method == "watershed":
        labels = watershed_labels(image.rgb, mask, options.seed_ratio)
    elif options.separation_method == "connected_components":
        _, labels = cv2.connectedComponents(mask, connectivity=8)
    else:
        raise ValueError(f"unsupported separation method {options.separation_method!r}")

    regions = []
    for label in np.unique(labels):
        if label <= 0:
            continue
        ys, xs = np.nonzero(labels == label)
        area = len(xs)
        if not options.min_region_size <= area <= options.max_region_size:
            continue
        regions.append(SeparatedRegion(
            bounds=BoundingBox.from_corners(xs.min(), ys.min(), xs.max(), ys.max()),
            area=area,
            confidence=REGION_CONFIDENCE,
        ))

    if regions:
        areas = np.array([r.area for r in regions], dtype=np.float64)
        count_score = max(0.0, 1 - abs(len(regions) - options.expected_count) / options.expected_count)
        consistency = max(0.0, 1 - float(areas.std() / areas.mean()))
        confidence = (count_score + consistency) / 2
    else:
        confidence = 0.0

    logger.debug("Morphology: %d region(s) in size range, confidence %.2f", len(regions), confidence)
    return MorphologyResult(separated_regions=regions, confidence=confidence)
