#!/usr/bin/env python3
"""
Public API for the Sprite Separator library.

This module provides the main interface for programmatic use of sprite
detection and precision layer extraction.
"""

from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass
from typing import Generator

import numpy as np

from sprite_separator.config import DetectorConfig, Precision, SeparatorConfig
from sprite_separator.deadline import Deadline
from sprite_separator.image_io import RasterImage, rgba_to_bgra
from sprite_separator.layer_extraction import LayerExtractor
from sprite_separator.model_refinement import VisionModelRefiner
from sprite_separator.region_fusion import RegionFusionEngine
from sprite_separator.region_visualization import visualize_mask, visualize_regions
from sprite_separator.sprite_detection import SpriteDetector
from sprite_separator.sprite_segmentation import foreground_mask
from sprite_separator.sprite_types import DetectionResult, ExtractedLayerData

logger = logging.getLogger(__name__)


@dataclass
class ProcessedImage:
    """
    An image produced by the separation pipeline.

    Attributes:
        image: The image data as a numpy array (BGRA for sprites, BGR for most debug images, uint8)
        name: Descriptive name for the image (e.g., "sprite_0", "debug_detected_regions")
        bbox: Source bounding box for sprites as (y1, y2, x1, x2), or None for debug images
        is_debug: True if this is a debug/intermediate image, False for final output sprites
        metadata: Additional metadata (e.g., sprite type, confidence, detection strategy)
        layer: The full extraction record for sprites, None for debug images
    """
    image: np.ndarray
    name: str
    bbox: tuple[int, int, int, int] | None
    is_debug: bool
    metadata: dict[str, float | int | str] | None = None
    layer: ExtractedLayerData | None = None


def _to_raster(image: np.ndarray | RasterImage | None) -> RasterImage:
    if isinstance(image, RasterImage):
        return image
    # RasterImage.from_bgr validates shape and dtype and raises ValueError
    return RasterImage.from_bgr(image)


def detect_sprites(
    image: np.ndarray | RasterImage | None,
    *,
    expected_count: int | None = None,
    config: DetectorConfig | None = None,
    time_budget: float | None = None,
    model_refiner: VisionModelRefiner | None = None,
) -> DetectionResult:
    """
    Find sprite bounding boxes without extracting cutouts.

    Args:
        image: BGR/BGRA uint8 array (as loaded by cv2) or a RasterImage
        expected_count: Number of sprites the image is expected to contain
        config: Detector configuration, defaults to DetectorConfig()
        time_budget: Processing budget in seconds, overrides config.time_budget
        model_refiner: Optional vision model, consulted by the fusion strategy
                       when config.fusion.allow_model_refine is set

    Returns:
        DetectionResult; its status is NO_SPRITES when nothing was found.

    Raises:
        ValueError: If image is None or has invalid shape/dtype.
    """
    raster = _to_raster(image)
    config = config or DetectorConfig()
    budget = time_budget if time_budget is not None else config.time_budget
    detector = SpriteDetector(config, RegionFusionEngine(refiner=model_refiner))
    return detector.detect(raster, expected_count, Deadline(budget))


def separate_sprites(
    image: np.ndarray | RasterImage | None,
    *,
    expected_count: int | None = None,
    precision: str | Precision | None = None,
    config: SeparatorConfig | None = None,
    time_budget: float | None = None,
    model_refiner: VisionModelRefiner | None = None,
    debug: bool = False
) -> Generator[ProcessedImage, None, None]:
    """
    Separate a composite image into sprites and yield them as they're produced.

    Sprites are detected first, then each one is refined into a tight RGBA
    cutout with a feathered alpha edge. If no sprites are found, nothing
    (apart from debug images) is yielded.

    Args:
        image: Input image as numpy array in BGR or BGRA format (uint8), or a RasterImage.
        expected_count: Number of sprites the image is expected to contain.
                        Defaults to config.detector.expected_count.
        precision: "surgical" or "standard" extraction; defaults to config.extraction.precision.
        config: Full configuration, defaults to SeparatorConfig().
        time_budget: Processing budget in seconds for detection and extraction.
        model_refiner: Optional vision model for the fusion strategy.
        debug: If True, yield intermediate images for debugging.

    Yields:
        ProcessedImage objects: debug images first (if enabled), then one
        per sprite in top-to-bottom, left-to-right order. Sprite images are
        BGRA and carry their ExtractedLayerData in `layer`.

    Raises:
        ValueError: If image is None or has invalid shape/dtype, or precision is unknown.
        DeadlineExceeded: If the budget runs out during extraction. Sprites
                          already yielded are complete.

    Example:
        >>> import cv2
        >>> from sprite_separator import separate_sprites
        >>>
        >>> img = cv2.imread("sheet.png", cv2.IMREAD_UNCHANGED)
        >>> for result in separate_sprites(img, expected_count=5):
        >>>     if not result.is_debug:
        >>>         cv2.imwrite(f"{result.name}.png", result.image)
    """
    raster = _to_raster(image)
    config = config or SeparatorConfig()
    extraction = config.extraction
    if precision is not None:
        extraction = dataclasses.replace(extraction, precision=Precision(precision))

    budget = time_budget if time_budget is not None else config.detector.time_budget
    deadline = Deadline(budget)
    detector = SpriteDetector(config.detector, RegionFusionEngine(refiner=model_refiner))
    result = detector.detect(raster, expected_count, deadline)

    if debug:
        mask = foreground_mask(raster.pixels, config.detector.alpha_floor, config.detector.white_level)
        yield ProcessedImage(
            image=visualize_mask(mask),
            name="debug_foreground_mask",
            bbox=None,
            is_debug=True,
            metadata=None
        )
        yield ProcessedImage(
            image=visualize_regions(raster.to_bgra(), result.sprites),
            name="debug_detected_regions",
            bbox=None,
            is_debug=True,
            metadata={
                "num_sprites": len(result.sprites),
                "strategy": result.strategy.value if result.strategy else "none",
            }
        )

    if not result.found:
        logger.warning("No sprites found in %dx%d image", raster.width, raster.height)
        return

    extractor = LayerExtractor(extraction)
    for i, sprite in enumerate(result.sprites):
        if debug and sprite.image is not None:
            yield ProcessedImage(
                image=rgba_to_bgra(sprite.image),
                name=f"debug_sprite_{i}_crop",
                bbox=sprite.bounds.as_bbox_tuple(),
                is_debug=True,
                metadata={"sprite_index": i}
            )

        layer = extractor.extract_sprites(raster, [sprite], deadline)[0]
        yield ProcessedImage(
            image=rgba_to_bgra(layer.image),
            name=f"sprite_{i}",
            bbox=layer.refined_pixel_bounds.as_bbox_tuple(),
            is_debug=False,
            metadata={
                "sprite_index": i,
                "type": sprite.type.value,
                "confidence": float(sprite.confidence),
                "strategy": sprite.strategy.value,
                "pixel_count": layer.metadata.pixel_count,
            },
            layer=layer,
        )
