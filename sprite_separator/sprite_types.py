"""
Data records passed between the detection, fusion and extraction stages.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field

import numpy as np

from sprite_separator.geometry import BoundingBox, PercentBounds


class SpriteType(str, enum.Enum):
    SYMBOL = "symbol"
    LETTER = "letter"
    OBJECT = "object"
    DECORATION = "decoration"


class RegionSource(str, enum.Enum):
    EDGE = "edge"
    COLOR = "color"
    MORPH = "morph"


class DetectionStrategy(str, enum.Enum):
    BASELINE = "baseline"
    FUSION = "fusion"
    LEGACY = "legacy"


class DetectionStatus(str, enum.Enum):
    DETECTED = "detected"
    NO_SPRITES = "no_sprites"


class PointKind(str, enum.Enum):
    CORNER = "corner"
    SMOOTH = "smooth"
    EDGE = "edge"


@dataclass(frozen=True)
class RegionProperties:
    edge_strength: float
    color_uniformity: float
    density: float


@dataclass(frozen=True)
class Region:
    """
    A candidate sprite location proposed by one analyzer, normalised so that
    regions from different sources can be compared and merged.
    """
    id: str
    source: RegionSource
    bounds: BoundingBox
    area: float
    confidence: float
    weight: float
    properties: RegionProperties
    centroid: tuple[float, float] | None = None

    @property
    def center(self) -> tuple[float, float]:
        return self.centroid if self.centroid is not None else self.bounds.center

    @property
    def aspect_ratio(self) -> float:
        return self.bounds.aspect_ratio


@dataclass
class SpriteProperties:
    area: int
    aspect_ratio: float
    density: float
    edge_strength: float
    color_uniformity: float


@dataclass
class FusedSprite:
    id: str
    bounds: BoundingBox
    type: SpriteType
    confidence: float
    source_algorithms: list[str]
    fusion_method: str
    properties: SpriteProperties
    image: np.ndarray | None = None


@dataclass(frozen=True)
class QualityMetrics:
    algorithm_agreement: float = 0.0
    spatial_consistency: float = 0.0
    size_distribution: float = 0.0
    expected_count: float = 0.0

    @property
    def overall(self) -> float:
        return (self.algorithm_agreement + self.spatial_consistency
                + self.size_distribution + self.expected_count) / 4


@dataclass
class DetectedSprite:
    """
    A sprite approved by the orchestrator.

    Attributes:
        id: Stable identifier within one detection call
        bounds: Pixel bounding box in the source image
        pixels: Number of foreground pixels attributed to the sprite
        density: pixels / bounds.area
        confidence: 0..1
        type: Coarse classification
        strategy: The detection strategy that produced the sprite
        image: Plain RGBA crop of the source (with a small padding), before
               precision extraction
    """
    id: str
    bounds: BoundingBox
    pixels: int
    density: float
    confidence: float
    type: SpriteType
    strategy: DetectionStrategy
    image: np.ndarray | None = None


@dataclass(frozen=True)
class StrategyAttempt:
    strategy: DetectionStrategy
    sprite_count: int
    error: str | None = None


@dataclass
class DetectionResult:
    status: DetectionStatus
    sprites: list[DetectedSprite] = field(default_factory=list)
    strategy: DetectionStrategy | None = None
    attempts: list[StrategyAttempt] = field(default_factory=list)

    @property
    def found(self) -> bool:
        return self.status == DetectionStatus.DETECTED


@dataclass(frozen=True)
class ContourPoint:
    """Boundary sample in percent coordinates of the source image."""
    x: float
    y: float
    pressure: float
    kind: PointKind


@dataclass(frozen=True)
class ExtractionMetadata:
    extraction_method: str
    confidence: float
    pixel_count: int
    boundary_length: int
    timestamp: float


@dataclass
class ExtractedLayerData:
    """
    Final product for one sprite: a tight RGBA cutout plus its outline.

    `image` and `alpha` cover `refined_pixel_bounds` of the source image.
    """
    layer_id: str
    name: str
    layer_type: SpriteType
    original_bounds: PercentBounds
    refined_bounds: PercentBounds
    refined_pixel_bounds: BoundingBox
    contour: list[ContourPoint]
    alpha: np.ndarray
    image: np.ndarray
    metadata: ExtractionMetadata

    def to_dict(self) -> dict:
        """JSON-serialisable summary without the pixel buffers."""
        return {
            "layer_id": self.layer_id,
            "name": self.name,
            "layer_type": self.layer_type.value,
            "original_bounds": _bounds_dict(self.original_bounds),
            "refined_bounds": _bounds_dict(self.refined_bounds),
            "refined_pixel_bounds": {
                "x": self.refined_pixel_bounds.x,
                "y": self.refined_pixel_bounds.y,
                "width": self.refined_pixel_bounds.width,
                "height": self.refined_pixel_bounds.height,
            },
            "contour": [
                {"x": p.x, "y": p.y, "pressure": p.pressure, "type": p.kind.value}
                for p in self.contour
            ],
            "metadata": {
                "extraction_method": self.metadata.extraction_method,
                "confidence": self.metadata.confidence,
                "pixel_count": self.metadata.pixel_count,
                "boundary_length": self.metadata.boundary_length,
                "timestamp": self.metadata.timestamp,
            },
        }


def _bounds_dict(bounds: PercentBounds) -> dict[str, float]:
    return {"x": bounds.x, "y": bounds.y, "width": bounds.width, "height": bounds.height}
