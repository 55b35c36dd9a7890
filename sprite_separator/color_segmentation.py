"""
Default color-cluster segmentation: k-means over the colours of opaque
pixels. Clusters are colour groups, not connected regions; the fusion
engine turns each into a bounding box.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import cv2
import numpy as np

from sprite_separator.config import ColorSegmentationOptions
from sprite_separator.deadline import Deadline
from sprite_separator.image_io import RasterImage

logger = logging.getLogger(__name__)

_COLOR_CONVERSIONS = {
    "lab": cv2.COLOR_RGB2LAB,
    "hsv": cv2.COLOR_RGB2HSV,
}


@dataclass
class ColorCluster:
    pixels: np.ndarray  # (n, 2) int array of (x, y)
    center: np.ndarray
    size: int
    average_alpha: float
    dominance: float  # percent of all clustered pixels


@dataclass
class ColorSegmentationResult:
    clusters: list[ColorCluster]
    confidence: float


def _to_color_space(rgb: np.ndarray, color_space: str) -> np.ndarray:
    if color_space == "rgb":
        return rgb
    if color_space not in _COLOR_CONVERSIONS:
        raise ValueError(f"unsupported color space {color_space!r}")
    return cv2.cvtColor(rgb, _COLOR_CONVERSIONS[color_space])


def _cluster_confidence(data: np.ndarray, labels: np.ndarray, centers: np.ndarray,
                        sizes: np.ndarray) -> float:
    """Mean of centre separation, cluster compactness and size balance, each 0..1."""
    if len(centers) > 1:
        diffs = centers[:, None, :] - centers[None, :, :]
        dists = np.sqrt((diffs ** 2).sum(axis=2))
        separation = min(1.0, float(dists[np.triu_indices(len(centers), 1)].mean()) / 100)
    else:
        separation = 0.0

    spread = np.sqrt(((data - centers[labels]) ** 2).sum(axis=1)).mean()
    compactness = max(0.0, 1 - float(spread) / 50)

    balance = max(0.0, 1 - float(sizes.std() / sizes.mean())) if sizes.mean() > 0 else 0.0
    return (separation + compactness + balance) / 3


def segment_colors(image: RasterImage, options: ColorSegmentationOptions | None = None,
                   deadline: Deadline | None = None) -> ColorSegmentationResult:
    """
    Cluster the colours of pixels whose alpha exceeds options.alpha_threshold.

    Returns clusters sorted by size (largest first). An image without such
    pixels yields no clusters and confidence 0.
    """
    options = options or ColorSegmentationOptions()
    alpha = image.alpha
    ys, xs = np.nonzero(alpha > options.alpha_threshold)
    if len(xs) == 0:
        return ColorSegmentationResult(clusters=[], confidence=0.0)

    converted = _to_color_space(np.ascontiguousarray(image.rgb), options.color_space)
    data = converted[ys, xs].astype(np.float32)
    k = max(1, min(options.k, len(data)))

    criteria = (cv2.TERM_CRITERIA_EPS + cv2.TERM_CRITERIA_MAX_ITER,
                options.max_iterations, options.convergence_threshold)
    cv2.setRNGSeed(options.seed)
    _compactness, labels, centers = cv2.kmeans(data, k, None, criteria, 1, cv2.KMEANS_PP_CENTERS)
    labels = labels.ravel()
    if deadline is not None:
        deadline.check("color segmentation")

    sizes = np.bincount(labels, minlength=k)
    point_alpha = alpha[ys, xs].astype(np.float64)
    clusters = []
    for label in np.argsort(-sizes, kind="stable"):
        if sizes[label] == 0:
            continue
        sel = labels == label
        clusters.append(ColorCluster(
            pixels=np.column_stack((xs[sel], ys[sel])),
            center=centers[label],
            size=int(sizes[label]),
            average_alpha=float(point_alpha[sel].mean()),
            dominance=float(sizes[label]) / len(data) * 100,
        ))

    confidence = _cluster_confidence(data, labels, centers, sizes[sizes > 0])
    logger.debug("Color segmentation: %d cluster(s) from %d pixels, confidence %.2f",
                 len(clusters), len(data), confidence)
    return ColorSegmentationResult(clusters=clusters, confidence=confidence)
