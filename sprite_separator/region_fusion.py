"""
Region fusion: run the edge, colour and morphology analyzers side by side,
normalise their proposals into Regions, group proposals that describe the
same object, and merge each group into a single FusedSprite.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from itertools import combinations
from typing import Callable

import numpy as np

from sprite_separator.color_segmentation import ColorCluster, ColorSegmentationResult, segment_colors
from sprite_separator.config import AlgorithmWeights, FusionOptions, FusionStrategy
from sprite_separator.deadline import Deadline
from sprite_separator.edge_detection import Contour, EdgeDetectionResult, detect_edges
from sprite_separator.geometry import BoundingBox
from sprite_separator.image_io import RasterImage
from sprite_separator.model_refinement import VisionModelRefiner, apply_model_refinement
from sprite_separator.morphology import MorphologyResult, SeparatedRegion, separate_regions
from sprite_separator.sprite_types import (
    FusedSprite,
    QualityMetrics,
    Region,
    RegionProperties,
    RegionSource,
    SpriteProperties,
    SpriteType,
)

logger = logging.getLogger(__name__)

_SOURCE_ORDER = {RegionSource.EDGE: 0, RegionSource.COLOR: 1, RegionSource.MORPH: 2}


@dataclass
class FusionResult:
    success: bool
    sprites: list[FusedSprite]
    confidence: float
    quality_metrics: QualityMetrics
    strategy: FusionStrategy
    error: str | None = None

    @classmethod
    def failed(cls, strategy: FusionStrategy, error: str) -> FusionResult:
        return cls(success=False, sprites=[], confidence=0.0,
                   quality_metrics=QualityMetrics(), strategy=strategy, error=error)


def regions_from_contours(contours: list[Contour], weight: float) -> list[Region]:
    return [
        Region(
            id=f"edge_{i}",
            source=RegionSource.EDGE,
            bounds=c.bounds,
            area=c.area,
            confidence=c.extent * c.solidity,
            weight=weight,
            properties=RegionProperties(edge_strength=1.0, color_uniformity=0.5, density=c.extent),
            centroid=c.centroid,
        )
        for i, c in enumerate(contours)
    ]


def regions_from_clusters(clusters: list[ColorCluster], weight: float,
                          min_alpha: float = 80, min_size: int = 1_000) -> list[Region]:
    """Clusters that are mostly opaque and large enough become one region each."""
    regions = []
    for i, cluster in enumerate(clusters):
        if cluster.average_alpha <= min_alpha or cluster.size < min_size:
            continue
        xs, ys = cluster.pixels[:, 0], cluster.pixels[:, 1]
        bounds = BoundingBox.from_corners(xs.min(), ys.min(), xs.max(), ys.max())
        regions.append(Region(
            id=f"color_{i}",
            source=RegionSource.COLOR,
            bounds=bounds,
            area=cluster.size,
            confidence=min(1.0, cluster.dominance / 50),
            weight=weight,
            properties=RegionProperties(edge_strength=0.5, color_uniformity=1.0,
                                        density=cluster.size / bounds.area),
            centroid=(float(xs.mean()), float(ys.mean())),
        ))
    return regions


def regions_from_morphology(separated: list[SeparatedRegion], weight: float) -> list[Region]:
    return [
        Region(
            id=f"morph_{i}",
            source=RegionSource.MORPH,
            bounds=r.bounds,
            area=r.area,
            confidence=r.confidence,
            weight=weight,
            properties=RegionProperties(edge_strength=0.7, color_uniformity=0.6,
                                        density=r.area / r.bounds.area),
        )
        for i, r in enumerate(separated)
    ]


def _same_object(a: Region, b: Region, options: FusionOptions) -> bool:
    if a.bounds.iou(b.bounds) > options.group_iou:
        return True
    larger = max(a.area, b.area)
    area_diff = abs(a.area - b.area) / larger if larger > 0 else 0.0
    return (a.bounds.center_distance(b.bounds) < options.group_center_distance
            and area_diff < options.group_area_difference)


def order_regions(regions: list[Region], strategy: FusionStrategy) -> list[Region]:
    """
    Order in which regions are offered to the greedy grouping.

    Hierarchical fusion trusts sources in a fixed order (edge, colour,
    morphology); every other strategy goes largest area first. Ties keep
    source order, then the analyzer's own order.
    """
    indexed = list(enumerate(regions))
    if strategy == FusionStrategy.HIERARCHICAL:
        indexed.sort(key=lambda item: (_SOURCE_ORDER[item[1].source], item[0]))
    else:
        indexed.sort(key=lambda item: (-item[1].area, _SOURCE_ORDER[item[1].source], item[0]))
    return [region for _, region in indexed]


def group_regions(regions: list[Region], options: FusionOptions) -> list[list[Region]]:
    """
    Greedy single-pass grouping: each ungrouped region opens a group and
    pulls in every later region that matches any current member.
    """
    grouped = [False] * len(regions)
    groups = []
    for i, seed in enumerate(regions):
        if grouped[i]:
            continue
        grouped[i] = True
        group = [seed]
        for j in range(i + 1, len(regions)):
            if not grouped[j] and any(_same_object(member, regions[j], options) for member in group):
                grouped[j] = True
                group.append(regions[j])
        groups.append(group)
    return groups


def classify_sprite(area: float, aspect_ratio: float) -> SpriteType:
    if area > 20_000:
        return SpriteType.SYMBOL
    if area > 10_000:
        return SpriteType.SYMBOL if 0.5 <= aspect_ratio <= 2 else SpriteType.OBJECT
    if area >= 5_000:
        return SpriteType.LETTER
    if area >= 2_000 and 0.2 <= aspect_ratio <= 4:
        return SpriteType.LETTER
    if area < 2_000:
        return SpriteType.DECORATION
    return SpriteType.OBJECT


def merge_group(group: list[Region], index: int, strategy: FusionStrategy) -> FusedSprite:
    if len(group) == 1:
        region = group[0]
        area = int(round(region.area))
        return FusedSprite(
            id=f"sprite_{index}",
            bounds=region.bounds,
            type=classify_sprite(area, region.aspect_ratio),
            confidence=region.confidence,
            source_algorithms=[region.source.value],
            fusion_method="direct_conversion",
            properties=SpriteProperties(
                area=area,
                aspect_ratio=region.aspect_ratio,
                density=region.properties.density,
                edge_strength=region.properties.edge_strength,
                color_uniformity=region.properties.color_uniformity,
            ),
        )

    members = sorted(group, key=lambda r: r.confidence * r.weight, reverse=True)
    primary = members[0]
    vote = np.array([r.confidence * r.weight for r in members])
    if vote.sum() <= 0:
        vote = np.ones(len(members))

    if strategy == FusionStrategy.WEIGHTED:
        bounds = primary.bounds
    else:
        boxes = np.array([[r.bounds.x, r.bounds.y, r.bounds.width, r.bounds.height] for r in members],
                         dtype=np.float64)
        x, y, w, h = (vote @ boxes) / vote.sum()
        bounds = BoundingBox(int(round(x)), int(round(y)), max(1, int(round(w))), max(1, int(round(h))))

    algorithm_weights = np.array([r.weight for r in members])
    confidences = np.array([r.confidence for r in members])
    if algorithm_weights.sum() > 0:
        confidence = float(confidences @ algorithm_weights / algorithm_weights.sum())
    else:
        confidence = float(confidences.mean())

    sources = list(dict.fromkeys(r.source.value for r in members))
    return FusedSprite(
        id=f"sprite_{index}",
        bounds=bounds,
        type=classify_sprite(bounds.area, bounds.aspect_ratio),
        confidence=confidence,
        source_algorithms=sources,
        fusion_method="intelligent_merge",
        properties=SpriteProperties(
            area=bounds.area,
            aspect_ratio=bounds.aspect_ratio,
            density=primary.properties.density,
            edge_strength=primary.properties.edge_strength,
            color_uniformity=primary.properties.color_uniformity,
        ),
    )


def fuse_regions(regions: list[Region], options: FusionOptions) -> list[FusedSprite]:
    """Group and merge regions according to options.strategy."""
    groups = group_regions(order_regions(regions, options.strategy), options)
    if options.strategy == FusionStrategy.VOTING:
        voted = [g for g in groups if len({r.source for r in g}) >= 2]
        if voted:
            groups = voted
        else:
            logger.debug("No region group has two supporting analyzers, keeping all groups")
    return [merge_group(group, i, options.strategy) for i, group in enumerate(groups)]


def validate_sprites(sprites: list[FusedSprite], options: FusionOptions) -> list[FusedSprite]:
    """Drop implausible sprites, rank the rest and cap the count."""
    valid = [
        s for s in sprites
        if s.confidence > options.min_confidence
        and options.min_area <= s.properties.area <= options.max_area
    ]
    valid.sort(key=lambda s: (s.type != SpriteType.SYMBOL, -s.properties.area, -s.confidence))
    return valid[:options.expected_count + options.count_overflow]


def compute_quality(sprites: list[FusedSprite], expected_count: int) -> QualityMetrics:
    if not sprites:
        return QualityMetrics(
            algorithm_agreement=0.0,
            spatial_consistency=1.0,
            size_distribution=0.0,
            expected_count=0.0,
        )

    agreement = min(1.0, float(np.mean([len(set(s.source_algorithms)) for s in sprites])) / 3)

    if len(sprites) > 1:
        overlaps = [a.bounds.iou(b.bounds) for a, b in combinations(sprites, 2)]
        spatial = max(0.0, 1 - 2 * float(np.mean(overlaps)))
    else:
        spatial = 1.0

    areas = np.array([s.properties.area for s in sprites], dtype=np.float64)
    size = max(0.0, 1 - float(areas.std() / areas.mean())) if areas.mean() > 0 else 0.0

    count = max(0.0, 1 - abs(len(sprites) - expected_count) / expected_count)
    return QualityMetrics(
        algorithm_agreement=agreement,
        spatial_consistency=spatial,
        size_distribution=size,
        expected_count=count,
    )


def overall_confidence(
    sprites: list[FusedSprite],
    quality: QualityMetrics,
    weights: AlgorithmWeights,
    edge_confidence: float,
    color_confidence: float,
    morph_confidence: float,
) -> float:
    if not sprites:
        return 0.0
    mean_confidence = float(np.mean([s.confidence for s in sprites]))
    total = (edge_confidence * weights.edge
             + color_confidence * weights.color
             + morph_confidence * weights.morph
             + mean_confidence * 0.3
             + quality.expected_count * 0.2
             + quality.algorithm_agreement * 0.1)
    return min(1.0, total)


class RegionFusionEngine:
    """
    Fork-join over the three analyzers followed by fusion.

    The analyzers are injectable so that alternative implementations of the
    colour and morphology contracts can be plugged in.
    """

    def __init__(
        self,
        refiner: VisionModelRefiner | None = None,
        edge_detector: Callable[..., EdgeDetectionResult] = detect_edges,
        color_segmenter: Callable[..., ColorSegmentationResult] = segment_colors,
        morphology: Callable[..., MorphologyResult] = separate_regions,
    ):
        self.refiner = refiner
        self.edge_detector = edge_detector
        self.color_segmenter = color_segmenter
        self.morphology = morphology

    def fuse(self, image: RasterImage, options: FusionOptions | None = None,
             deadline: Deadline | None = None) -> FusionResult:
        """
        Detect sprites by combining all analyzers.

        Never raises for analyzer failures: the returned result has
        success=False and carries the error text instead.

        Raises:
            ValueError: If an expected count in options is less than 1.
        """
        options = options or FusionOptions()
        for name, count in (("expected_count", options.expected_count),
                            ("morphology.expected_count", options.morphology.expected_count)):
            if count < 1:
                raise ValueError(f"{name} must be at least 1, got {count}")
        deadline = deadline or Deadline()
        weights = options.weights

        try:
            with ThreadPoolExecutor(max_workers=3, thread_name_prefix="fusion") as pool:
                edge_future = pool.submit(self.edge_detector, image, options.edge, deadline)
                color_future = pool.submit(self.color_segmenter, image, options.color, deadline)
                morph_future = pool.submit(self.morphology, image, options.morphology, deadline)
                edge_result = edge_future.result()
                color_result = color_future.result()
                morph_result = morph_future.result()
            deadline.check("fusion")
        except Exception as e:
            logger.exception("Region fusion analysis failed")
            return FusionResult.failed(options.strategy, str(e))

        regions = (regions_from_contours(edge_result.contours, weights.edge)
                   + regions_from_clusters(color_result.clusters, weights.color,
                                           options.min_cluster_alpha, options.min_cluster_size)
                   + regions_from_morphology(morph_result.separated_regions, weights.morph))
        logger.debug("Fusion input: %d edge, %d color, %d morph region(s)",
                     len(edge_result.contours), len(color_result.clusters),
                     len(morph_result.separated_regions))

        sprites = validate_sprites(fuse_regions(regions, options), options)
        quality = compute_quality(sprites, options.expected_count)

        if (options.allow_model_refine and self.refiner is not None and sprites
                and quality.overall < options.quality_threshold):
            logger.info("Fusion quality %.2f below %.2f, asking vision model",
                        quality.overall, options.quality_threshold)
            sprites = apply_model_refinement(image, sprites, self.refiner,
                                             options.expected_count, options.model_adjustment)

        confidence = overall_confidence(sprites, quality, weights, edge_result.confidence,
                                        color_result.confidence, morph_result.confidence)
        logger.info("Fusion produced %d sprite(s), quality %.2f, confidence %.2f",
                    len(sprites), quality.overall, confidence)
        return FusionResult(
            success=True,
            sprites=sprites,
            confidence=confidence,
            quality_metrics=quality,
            strategy=options.strategy,
        )
