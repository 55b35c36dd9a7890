"""
Functions for segmenting sprites from a foreground mask.
"""

from __future__ import annotations

from dataclasses import dataclass

import cv2
import numpy as np
from scipy.sparse import csr_matrix
from scipy.sparse.csgraph import connected_components

from sprite_separator.geometry import BoundingBox


@dataclass
class PixelRegion:
    """
    A set of foreground pixels, stored as (y, x) rows, and their bounding box.
    `confidence` is set when an upstream detector scored the region.
    """
    coords: np.ndarray
    bounds: BoundingBox
    confidence: float | None = None

    @classmethod
    def from_coords(cls, coords: np.ndarray, confidence: float | None = None) -> PixelRegion:
        ys, xs = coords[:, 0], coords[:, 1]
        return cls(coords, BoundingBox.from_corners(xs.min(), ys.min(), xs.max(), ys.max()), confidence)

    @property
    def pixel_count(self) -> int:
        return len(self.coords)

    @property
    def density(self) -> float:
        return self.pixel_count / self.bounds.area

    @property
    def center(self) -> tuple[float, float]:
        return self.bounds.center

    def merged(self, other: PixelRegion) -> PixelRegion:
        """Union of both pixel sets with the bounding box recomputed."""
        return merge_pixel_regions([self, other])


def foreground_mask(pixels: np.ndarray, alpha_floor: int, white_level: int | None = 250) -> np.ndarray:
    """
    Boolean mask of pixels that belong to some sprite: alpha above alpha_floor
    and, unless white_level is None, not near-white in all colour channels.
    """
    mask = pixels[:, :, 3] > alpha_floor
    if white_level is not None:
        mask &= ~np.all(pixels[:, :, :3] > white_level, axis=2)
    return mask


def find_components(mask: np.ndarray, min_size: int = 1, max_size: int | None = None,
                    row_offset: int = 0) -> list[PixelRegion]:
    """
    8-connected components of mask with min_size <= pixels <= max_size.

    Args:
        mask: Boolean or uint8 mask
        min_size: Minimum size (in pixels) for a region to be kept
        max_size: Maximum size (in pixels), or None for no limit
        row_offset: Added to every y coordinate, for masks cut from a larger image

    Returns:
        Regions in label order (top-to-bottom, left-to-right by first pixel)
    """
    binary = mask.astype(np.uint8)
    num_labels, labels, stats, _centroids = cv2.connectedComponentsWithStats(binary, connectivity=8)

    # Group pixel coordinates by label in one pass instead of one scan per label
    flat = labels.ravel()
    order = np.argsort(flat, kind="stable")
    counts = np.bincount(flat, minlength=num_labels)
    starts = np.concatenate(([0], np.cumsum(counts)))
    ys, xs = np.divmod(order, labels.shape[1])

    regions = []
    # Start from 1 to skip the background (label 0)
    for i in range(1, num_labels):
        area = stats[i, cv2.CC_STAT_AREA]
        if area < min_size or (max_size is not None and area > max_size):
            continue
        sel = slice(starts[i], starts[i + 1])
        coords = np.column_stack((ys[sel] + row_offset, xs[sel]))
        bounds = BoundingBox(int(stats[i, cv2.CC_STAT_LEFT]), int(stats[i, cv2.CC_STAT_TOP]) + row_offset,
                             int(stats[i, cv2.CC_STAT_WIDTH]), int(stats[i, cv2.CC_STAT_HEIGHT]))
        regions.append(PixelRegion(coords, bounds))
    return regions


def _merge_where(regions: list[PixelRegion], adjacency: np.ndarray) -> list[PixelRegion]:
    n_groups, group_of = connected_components(csr_matrix(adjacency), directed=False)
    merged = []
    for g in range(n_groups):
        members = [regions[i] for i in np.flatnonzero(group_of == g)]
        if len(members) == 1:
            merged.append(members[0])
        else:
            merged.append(merge_pixel_regions(members))
    return merged


def merge_pixel_regions(regions: list[PixelRegion]) -> PixelRegion:
    """Union of the pixel sets; keeps the highest known confidence."""
    scores = [r.confidence for r in regions if r.confidence is not None]
    coords = np.unique(np.concatenate([r.coords for r in regions]), axis=0)
    return PixelRegion.from_coords(coords, max(scores) if scores else None)


def merge_close_regions(regions: list[PixelRegion], max_gap: int) -> list[PixelRegion]:
    """Merge regions whose bounding boxes are fewer than max_gap pixels apart (transitively)."""
    if len(regions) < 2 or max_gap <= 0:
        return list(regions)
    boxes = np.array([[r.bounds.x, r.bounds.y, r.bounds.x2, r.bounds.y2] for r in regions])
    x1, y1, x2, y2 = (boxes[:, i] for i in range(4))
    dx = np.maximum(np.maximum(x1[None, :] - x2[:, None], x1[:, None] - x2[None, :]), 0)
    dy = np.maximum(np.maximum(y1[None, :] - y2[:, None], y1[:, None] - y2[None, :]), 0)
    return _merge_where(regions, np.maximum(dx, dy) < max_gap)


def merge_nearby_centers(regions: list[PixelRegion], threshold: float) -> list[PixelRegion]:
    """Merge regions whose box centres are at most threshold pixels apart (transitively)."""
    if len(regions) < 2:
        return list(regions)
    centers = np.array([r.center for r in regions])
    dist = np.hypot(centers[:, None, 0] - centers[None, :, 0], centers[:, None, 1] - centers[None, :, 1])
    return _merge_where(regions, dist <= threshold)


def remove_overlaps(regions: list[PixelRegion]) -> list[PixelRegion]:
    """Where bounding boxes overlap, keep only the region with more pixels."""
    kept: list[PixelRegion] = []
    for region in sorted(regions, key=lambda r: r.pixel_count, reverse=True):
        if not any(region.bounds.overlaps(k.bounds) for k in kept):
            kept.append(region)
    return kept
