"""
Precision layer extraction.

Given an approximate sprite location (percent bounds, as handed over by a
detector or a human), find the tight pixel box from edge evidence, trace an
outline and produce a clean RGBA cutout with a soft alpha edge.
"""

from __future__ import annotations

import logging
import math
import time

import cv2
import numpy as np
from scipy import ndimage

from sprite_separator.alpha_processing import (
    anti_alias,
    clean_edge_mask,
    content_aware_fill,
    feather_alpha,
    smooth_edges,
)
from sprite_separator.config import ExtractionOptions, Precision
from sprite_separator.deadline import Deadline
from sprite_separator.edge_detection import canny, luma, sobel
from sprite_separator.geometry import BoundingBox, PercentBounds, PercentPoint
from sprite_separator.image_io import RasterImage
from sprite_separator.sprite_segmentation import foreground_mask
from sprite_separator.sprite_types import (
    ContourPoint,
    DetectedSprite,
    ExtractedLayerData,
    ExtractionMetadata,
    PointKind,
    SpriteType,
)

logger = logging.getLogger(__name__)

# Luma of the white backdrop that transparent pixels are composited onto
BACKGROUND_LUMA = 255.0

CONFIDENCE_WITH_EDGES = 0.95
CONFIDENCE_FALLBACK = 0.6

_NEIGHBOUR_SHIFTS = [(dy, dx) for dy in (-1, 0, 1) for dx in (-1, 0, 1) if dy or dx]


def _edge_map(crop: np.ndarray, options: ExtractionOptions) -> np.ndarray:
    gray = luma(crop)
    if options.precision == Precision.SURGICAL:
        threshold = options.edge_threshold
        edges = canny(gray, threshold * 0.5, threshold * 2, blur_size=7, sigma=1.0,
                      pad_value=BACKGROUND_LUMA)
        return clean_edge_mask(edges, options.morphology_kernel)
    magnitude, _ = sobel(gray, pad_value=BACKGROUND_LUMA)
    return (magnitude > options.edge_threshold).astype(np.uint8) * 255


def grow_region(image: RasterImage, seed_x: int, seed_y: int, threshold: float,
                alpha_floor: int) -> BoundingBox | None:
    """
    Bounding box of the 8-connected set of opaque pixels whose colour lies
    within `threshold` (Euclidean RGB distance) of the seed pixel's colour.
    Returns None when the seed itself is transparent.
    """
    rgb = image.rgb.astype(np.float64)
    seed = rgb[seed_y, seed_x]
    similar = (np.sqrt(((rgb - seed) ** 2).sum(axis=2)) <= threshold) & (image.alpha > alpha_floor)
    if not similar[seed_y, seed_x]:
        return None
    _, labels = cv2.connectedComponents(similar.astype(np.uint8), connectivity=8)
    ys, xs = np.nonzero(labels == labels[seed_y, seed_x])
    return BoundingBox.from_corners(xs.min(), ys.min(), xs.max(), ys.max())


def _point_kinds(edges: np.ndarray, direction: np.ndarray) -> np.ndarray:
    """
    Per-pixel PointKind codes: 2 = on the crop border, 1 = corner (an edge
    neighbour runs in a different quantised direction), 0 = smooth.
    """
    h, w = edges.shape
    quantised = np.where(edges, np.mod(np.floor(direction * 4 / np.pi + 0.5).astype(np.int64), 4), -1)
    padded = np.pad(quantised, 1, constant_values=-1)
    corner = np.zeros((h, w), dtype=bool)
    for dy, dx in _NEIGHBOUR_SHIFTS:
        neighbour = padded[1 + dy:1 + dy + h, 1 + dx:1 + dx + w]
        corner |= (neighbour >= 0) & (neighbour != quantised)
    kinds = np.where(edges & corner, 1, 0)
    border = np.zeros((h, w), dtype=bool)
    border[0, :] = border[-1, :] = border[:, 0] = border[:, -1] = True
    return np.where(edges & border, 2, kinds)


def trace_outline(image: RasterImage, box: BoundingBox, threshold: float,
                  stride: float) -> list[ContourPoint]:
    """
    Outline of the sprite inside box as a point cloud of edge pixels (raster
    order, every `stride`-th point), in percent coordinates of the image.
    """
    gray = luma(image.crop(box))
    magnitude, direction = sobel(gray, pad_value=BACKGROUND_LUMA)
    edges = magnitude > threshold
    ys, xs = np.nonzero(edges)
    if len(xs) == 0:
        return []

    step = max(1, math.floor(stride))
    ys, xs = ys[::step], xs[::step]
    pressure = magnitude[ys, xs] / magnitude.max()
    kinds = _point_kinds(edges, direction)[ys, xs]
    kind_names = (PointKind.SMOOTH, PointKind.CORNER, PointKind.EDGE)
    return [
        ContourPoint(
            x=(box.x + int(x)) / image.width * 100,
            y=(box.y + int(y)) / image.height * 100,
            pressure=float(p),
            kind=kind_names[k],
        )
        for x, y, p, k in zip(xs, ys, pressure, kinds)
    ]


class LayerExtractor:
    """Turns approximate sprite locations into precise RGBA layers."""

    def __init__(self, options: ExtractionOptions | None = None):
        self.options = options or ExtractionOptions()

    def refine_bounds(self, image: RasterImage, approx: BoundingBox,
                      hints: list[tuple[float, float]] | None = None) -> tuple[BoundingBox, bool]:
        """
        Tight box around the edges near `approx`.

        Returns the box and whether edge evidence was found; without edges
        the padded region of interest itself is returned.
        """
        options = self.options
        roi = approx.pad(options.padding, image.width, image.height)
        edges = _edge_map(image.crop(roi), options)

        ys, xs = np.nonzero(edges)
        if len(xs) == 0:
            logger.debug("No edges inside %s, using the region of interest", roi)
            refined, found = roi, False
        else:
            refined = BoundingBox.from_corners(roi.x + xs.min(), roi.y + ys.min(),
                                               roi.x + xs.max(), roi.y + ys.max())
            found = True

        if options.precision == Precision.SURGICAL and hints:
            hx, hy = (int(v) for v in hints[0])
            if 0 <= hx < image.width and 0 <= hy < image.height:
                grown = grow_region(image, hx, hy, options.color_similarity_threshold, options.alpha_floor)
                if grown is not None:
                    refined = refined.union(grown)
        return refined, found

    def _coverage_mask(self, crop: np.ndarray) -> np.ndarray:
        """Binary 0/255 mask of the sprite inside the crop, before feathering."""
        options = self.options
        # The mask is the whole refined rectangle unless background is removed
        mask = np.full(crop.shape[:2], 255, dtype=np.uint8)
        if options.background_removal:
            fg = foreground_mask(crop, options.alpha_floor, options.white_level)
            fg = ndimage.binary_fill_holes(fg)
            mask[~fg] = 0
        return mask

    def _fill_reach(self) -> int:
        """How far softened alpha can spread past the binary mask."""
        options = self.options
        reach = math.ceil(3 * options.alpha_feathering) + 1
        if options.edge_smoothing > 0:
            reach += math.ceil(3 * options.edge_smoothing)
        return max(2, reach)

    def refine(
        self,
        image: RasterImage,
        approx_bounds: PercentBounds,
        contour_hints: list[PercentPoint] | None = None,
        layer_id: str = "layer_0",
        name: str | None = None,
        layer_type: SpriteType = SpriteType.OBJECT,
        deadline: Deadline | None = None,
    ) -> ExtractedLayerData:
        """
        Extract one layer.

        Args:
            image: Source image
            approx_bounds: Approximate location in percent of the image size
            contour_hints: Optional points on the sprite, in percent; the first
                           seeds colour region growing in surgical mode
            layer_id: Identifier copied to the result
            name: Display name, defaults to layer_id
            layer_type: Classification copied to the result
            deadline: Optional processing budget

        Raises:
            InvalidBoundsError: If approx_bounds has no area inside the image.
            DeadlineExceeded: If the budget runs out.
        """
        options = self.options
        approx = approx_bounds.to_box(image.width, image.height)
        hints = [h.to_pixels(image.width, image.height) for h in contour_hints or []]

        refined, edges_found = self.refine_bounds(image, approx, hints)
        if deadline is not None:
            deadline.check("layer extraction")

        contour = trace_outline(image, refined, options.edge_threshold, options.contour_simplification)

        crop = image.crop(refined)
        coverage = self._coverage_mask(crop)
        rgb = crop[:, :, :3]
        surgical = options.precision == Precision.SURGICAL
        # Fill against the hard mask; the feathered halo is background and must be recoloured
        if surgical and options.content_aware_fill:
            rgb = content_aware_fill(rgb, coverage, reach=self._fill_reach())
        alpha = feather_alpha(coverage, options.alpha_feathering)
        if options.anti_aliasing:
            alpha = anti_alias(alpha)
        rgba = np.dstack((rgb, alpha))
        if surgical and options.edge_smoothing > 0:
            rgba = smooth_edges(rgba, options.edge_smoothing)
            alpha = rgba[:, :, 3].copy()

        method = "canny-surgical" if surgical else "sobel-standard"
        metadata = ExtractionMetadata(
            extraction_method=method,
            confidence=CONFIDENCE_WITH_EDGES if edges_found else CONFIDENCE_FALLBACK,
            pixel_count=int(np.count_nonzero(alpha > 128)),
            boundary_length=len(contour),
            timestamp=time.time(),
        )
        logger.debug("Layer %s: %s -> %s, %d px, %d outline points",
                     layer_id, approx, refined, metadata.pixel_count, len(contour))
        return ExtractedLayerData(
            layer_id=layer_id,
            name=name or layer_id,
            layer_type=layer_type,
            original_bounds=approx_bounds,
            refined_bounds=refined.to_percent(image.width, image.height),
            refined_pixel_bounds=refined,
            contour=contour,
            alpha=alpha,
            image=rgba,
            metadata=metadata,
        )

    def extract_sprites(self, image: RasterImage, sprites: list[DetectedSprite],
                        deadline: Deadline | None = None) -> list[ExtractedLayerData]:
        """Refine every detected sprite, using its box centre as the seed hint."""
        layers = []
        for sprite in sprites:
            cx, cy = sprite.bounds.center
            layers.append(self.refine(
                image,
                sprite.bounds.to_percent(image.width, image.height),
                [PercentPoint.from_pixels(cx, cy, image.width, image.height)],
                layer_id=sprite.id,
                layer_type=sprite.type,
                deadline=deadline,
            ))
        return layers
