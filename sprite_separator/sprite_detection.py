"""
Sprite detection orchestrator.

Three strategies are tried in order until one finds at least one sprite:

1. baseline: connected components of the alpha mask with size/density
   filtering and a dominance rule for the main icon
2. fusion: the multi-analyzer RegionFusionEngine
3. legacy: spatially banded components with centre merging

Whatever a strategy finds is reconciled toward the expected count before
it is returned.
"""

from __future__ import annotations

import dataclasses
import logging

import numpy as np

from sprite_separator.config import DetectorConfig
from sprite_separator.deadline import Deadline
from sprite_separator.errors import StageError
from sprite_separator.image_io import RasterImage
from sprite_separator.region_fusion import RegionFusionEngine, classify_sprite
from sprite_separator.region_merging import reconcile_regions
from sprite_separator.sprite_segmentation import (
    PixelRegion,
    find_components,
    foreground_mask,
    merge_close_regions,
    merge_nearby_centers,
    remove_overlaps,
)
from sprite_separator.sprite_types import (
    DetectedSprite,
    DetectionResult,
    DetectionStatus,
    DetectionStrategy,
    SpriteType,
    StrategyAttempt,
)

logger = logging.getLogger(__name__)

# Components smaller than this never take part in gap merging
FRAGMENT_PIXELS = 10


def legacy_confidence(region: PixelRegion) -> float:
    confidence = 0.5
    if region.density > 0.3:
        confidence += 0.2
    if region.density > 0.5:
        confidence += 0.1
    if region.pixel_count > 500:
        confidence += 0.1
    if region.pixel_count > 2000:
        confidence += 0.1
    if 0.2 < region.bounds.aspect_ratio < 5:
        confidence += 0.1
    return min(1.0, confidence)


def split_into_thirds(region: PixelRegion, min_part_pixels: int) -> list[PixelRegion]:
    """Cut a region into three vertical strips, keeping strips with enough pixels."""
    x0, width = region.bounds.x, region.bounds.width
    xs = region.coords[:, 1]
    parts = []
    for k in range(3):
        lo = x0 + (width * k) // 3
        hi = x0 + (width * (k + 1)) // 3
        part = region.coords[(xs >= lo) & (xs < hi)]
        if len(part) > min_part_pixels:
            parts.append(PixelRegion.from_coords(part, confidence=0.8))
    return parts or [region]


class SpriteDetector:
    """
    Finds sprite bounding boxes in a composite image.

    A detector holds only configuration; every call to detect() works on
    its own buffers, so one instance can serve concurrent callers.
    """

    def __init__(self, config: DetectorConfig | None = None,
                 fusion_engine: RegionFusionEngine | None = None):
        self.config = config or DetectorConfig()
        self.fusion_engine = fusion_engine or RegionFusionEngine()

    def detect(self, image: RasterImage, expected_count: int | None = None,
               deadline: Deadline | None = None) -> DetectionResult:
        """
        Detect sprites, falling back through the strategies.

        Strategy failures (including an exhausted time budget) are logged
        and recorded in the result's attempts. If no strategy finds
        anything the result status is NO_SPRITES.

        Raises:
            ValueError: If expected_count is less than 1.
        """
        expected = expected_count if expected_count is not None else self.config.expected_count
        if expected < 1:
            raise ValueError(f"expected_count must be at least 1, got {expected}")
        deadline = deadline or Deadline(self.config.time_budget)

        strategies = (
            (DetectionStrategy.BASELINE, self._detect_baseline),
            (DetectionStrategy.FUSION, self._detect_fusion),
            (DetectionStrategy.LEGACY, self._detect_legacy),
        )
        attempts = []
        for strategy, run in strategies:
            try:
                deadline.check(strategy.value)
                sprites = run(image, expected, deadline)
            except StageError as e:
                logger.warning("%s detection failed: %s", strategy.value, e)
                attempts.append(StrategyAttempt(strategy, 0, str(e)))
                continue
            except Exception as e:
                logger.exception("%s detection failed unexpectedly", strategy.value)
                attempts.append(StrategyAttempt(strategy, 0, f"{type(e).__name__}: {e}"))
                continue

            attempts.append(StrategyAttempt(strategy, len(sprites)))
            if sprites:
                logger.info("Detected %d sprite(s) with the %s strategy", len(sprites), strategy.value)
                return DetectionResult(DetectionStatus.DETECTED, sprites, strategy, attempts)
            logger.info("%s detection found no sprites, trying next strategy", strategy.value)

        logger.warning("No sprites detected by any strategy")
        return DetectionResult(DetectionStatus.NO_SPRITES, [], None, attempts)

    def _baseline_types(self, regions: list[PixelRegion]) -> list[tuple[SpriteType, float]]:
        """
        Types and confidences for baseline regions. Very large regions are
        symbols; so is the largest region when it stands alone or clearly
        dominates the runner-up. Everything else is a letter.
        """
        cfg = self.config
        ranked = sorted(range(len(regions)), key=lambda i: regions[i].pixel_count, reverse=True)
        results: list[tuple[SpriteType, float]] = [(SpriteType.LETTER, 0.5)] * len(regions)
        for rank, i in enumerate(ranked):
            pixels = regions[i].pixel_count
            if pixels > cfg.symbol_pixels:
                results[i] = (SpriteType.SYMBOL, 1.0)
            elif rank == 0 and (len(regions) == 1
                                or pixels >= cfg.symbol_dominance * regions[ranked[1]].pixel_count):
                results[i] = (SpriteType.SYMBOL, 0.8)
            elif cfg.letter_pixels <= pixels:
                results[i] = (SpriteType.LETTER, 1.0)
            else:
                results[i] = (SpriteType.LETTER, 0.5)
            if regions[i].confidence is not None:
                results[i] = (results[i][0], min(results[i][1], regions[i].confidence))
        return results

    def _detect_baseline(self, image: RasterImage, expected: int, deadline: Deadline) -> list[DetectedSprite]:
        cfg = self.config
        mask = foreground_mask(image.pixels, cfg.alpha_floor, cfg.white_level)
        regions = merge_close_regions(find_components(mask, FRAGMENT_PIXELS), cfg.separation_threshold)
        regions = [r for r in regions
                   if cfg.min_pixels <= r.pixel_count <= cfg.max_pixels and r.density >= cfg.min_density]
        regions = sorted(regions, key=lambda r: r.pixel_count, reverse=True)[:cfg.max_regions]
        deadline.check("baseline detection")

        if cfg.split_merged and 0 < len(regions) < expected:
            if all(t != SpriteType.SYMBOL for t, _ in self._baseline_types(regions)):
                split = []
                for region in regions:
                    if region.pixel_count > cfg.split_min_pixels:
                        split.extend(split_into_thirds(region, cfg.split_part_min_pixels))
                    else:
                        split.append(region)
                if len(split) > len(regions):
                    logger.debug("Split merged regions: %d -> %d", len(regions), len(split))
                regions = split

        regions = reconcile_regions(regions, expected, image.height, cfg.reconciliation)
        types = self._baseline_types(regions)
        return self._to_sprites(image, regions, types, DetectionStrategy.BASELINE)

    def _detect_fusion(self, image: RasterImage, expected: int, deadline: Deadline) -> list[DetectedSprite]:
        cfg = self.config
        options = dataclasses.replace(cfg.fusion, expected_count=expected)
        result = self.fusion_engine.fuse(image, options, deadline)
        if not result.success:
            raise StageError("fusion", result.error or "fusion failed")

        # Attribute the foreground pixels inside each fused box to that sprite
        mask = foreground_mask(image.pixels, cfg.alpha_floor, cfg.white_level)
        regions = []
        for sprite in result.sprites:
            ys, xs = np.nonzero(mask[sprite.bounds.as_yx_slices()])
            if len(xs) == 0:
                continue
            coords = np.column_stack((ys + sprite.bounds.y, xs + sprite.bounds.x))
            regions.append(PixelRegion.from_coords(coords, sprite.confidence))

        regions = reconcile_regions(regions, expected, image.height, cfg.reconciliation)
        types = [(classify_sprite(r.bounds.area, r.bounds.aspect_ratio), r.confidence) for r in regions]
        return self._to_sprites(image, regions, types, DetectionStrategy.FUSION)

    def _detect_legacy(self, image: RasterImage, expected: int, deadline: Deadline) -> list[DetectedSprite]:
        cfg = self.config
        legacy = cfg.legacy
        mask = foreground_mask(image.pixels, legacy.alpha_floor, cfg.white_level)

        top_end = int(image.height * legacy.top_band_end)
        bottom_start = int(image.height * legacy.bottom_band_start)
        regions = (find_components(mask[:top_end + 1], *legacy.top_band_sizes)
                   + find_components(mask[bottom_start:], *legacy.bottom_band_sizes, row_offset=bottom_start))
        if len(regions) < legacy.min_band_regions:
            logger.debug("Spatial bands gave %d region(s), using whole-image components", len(regions))
            regions = find_components(mask, legacy.min_sprite_size, legacy.max_sprite_size)
        deadline.check("legacy detection")

        regions = [r for r in regions if r.density >= cfg.min_density]
        regions = remove_overlaps(merge_nearby_centers(regions, legacy.merge_threshold))
        regions = reconcile_regions(regions, expected, image.height, cfg.reconciliation)

        types = []
        kept = []
        for region in regions:
            confidence = legacy_confidence(region)
            if confidence < legacy.min_confidence:
                continue
            kept.append(region)
            types.append((classify_sprite(region.bounds.area, region.bounds.aspect_ratio), confidence))
        return self._to_sprites(image, kept, types, DetectionStrategy.LEGACY)

    def _to_sprites(self, image: RasterImage, regions: list[PixelRegion],
                    types: list[tuple[SpriteType, float]], strategy: DetectionStrategy) -> list[DetectedSprite]:
        """Build DetectedSprites ordered top-to-bottom, then left-to-right."""
        order = sorted(range(len(regions)), key=lambda i: (regions[i].bounds.y, regions[i].bounds.x))
        sprites = []
        for n, i in enumerate(order):
            region = regions[i]
            sprite_type, confidence = types[i]
            crop_box = region.bounds.pad(self.config.crop_padding, image.width, image.height)
            sprites.append(DetectedSprite(
                id=f"sprite_{n}",
                bounds=region.bounds,
                pixels=region.pixel_count,
                density=region.density,
                confidence=confidence if confidence is not None else 0.5,
                type=sprite_type,
                strategy=strategy,
                image=image.crop(crop_box),
            ))
        return sprites
