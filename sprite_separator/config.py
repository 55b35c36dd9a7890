"""
Tunable options for every stage, with defaults, and a JSON loader.

The defaults are the values the detector has been tuned with. A JSON file
may override any subset:

    {
        "detector": {"expected_count": 6, "fusion": {"quality_threshold": 0.6}},
        "extraction": {"precision": "standard", "alpha_feathering": 2}
    }
"""

from __future__ import annotations

import dataclasses
import enum
import json
import logging
import typing
from dataclasses import dataclass, field
from pathlib import Path

logger = logging.getLogger(__name__)


class FusionStrategy(str, enum.Enum):
    ADAPTIVE = "adaptive"
    WEIGHTED = "weighted"
    VOTING = "voting"
    HIERARCHICAL = "hierarchical"


class Precision(str, enum.Enum):
    SURGICAL = "surgical"
    STANDARD = "standard"


@dataclass
class EdgeDetectionOptions:
    low_threshold: float = 50
    high_threshold: float = 150
    blur_size: int = 5
    min_area: float = 100
    max_area: float = 100_000
    target_contour_count: int = 5
    max_contour_points: int = 10_000


@dataclass
class ColorSegmentationOptions:
    k: int = 8
    max_iterations: int = 75
    convergence_threshold: float = 1.5
    color_space: str = "lab"      # "lab", "rgb" or "hsv"
    alpha_threshold: int = 50
    seed: int = 0


@dataclass
class StructuringElement:
    shape: str = "ellipse"        # "ellipse", "rect" or "cross"
    size: int = 7


@dataclass
class MorphologyOptions:
    operations: tuple[str, ...] = ("close", "open")
    structuring_element: StructuringElement = field(default_factory=StructuringElement)
    iterations: int = 3
    min_region_size: int = 3_000
    max_region_size: int = 120_000
    separation_method: str = "watershed"  # or "connected_components"
    alpha_threshold: int = 128
    seed_ratio: float = 0.5
    expected_count: int = 5


@dataclass
class AlgorithmWeights:
    edge: float = 0.3
    color: float = 0.3
    morph: float = 0.25
    model: float = 0.15


def _fusion_edge_options() -> EdgeDetectionOptions:
    return EdgeDetectionOptions(low_threshold=40, high_threshold=120, blur_size=7,
                                min_area=5_000, max_area=150_000)


@dataclass
class FusionOptions:
    expected_count: int = 5
    weights: AlgorithmWeights = field(default_factory=AlgorithmWeights)
    strategy: FusionStrategy = FusionStrategy.ADAPTIVE
    quality_threshold: float = 0.7
    allow_model_refine: bool = True
    edge: EdgeDetectionOptions = field(default_factory=_fusion_edge_options)
    color: ColorSegmentationOptions = field(default_factory=ColorSegmentationOptions)
    morphology: MorphologyOptions = field(default_factory=MorphologyOptions)
    # Region grouping
    group_iou: float = 0.3
    group_center_distance: float = 20
    group_area_difference: float = 0.5
    # Adapters
    min_cluster_alpha: float = 80
    min_cluster_size: int = 1_000
    # Validation
    min_confidence: float = 0.2
    min_area: int = 2_000
    max_area: int = 200_000
    count_overflow: int = 2
    model_adjustment: float = 0.1


def _detector_fusion_options() -> FusionOptions:
    return FusionOptions(
        weights=AlgorithmWeights(edge=0.35, color=0.30, morph=0.25, model=0.10),
        quality_threshold=0.65,
        allow_model_refine=False,
    )


@dataclass
class ReconciliationOptions:
    large_pixels: int = 15_000
    noise_pixels: int = 2_000
    pair_merge_distance: float = 300


@dataclass
class LegacyOptions:
    alpha_floor: int = 5
    min_sprite_size: int = 25
    max_sprite_size: int = 800_000
    merge_threshold: float = 5
    min_confidence: float = 0.05
    top_band_end: float = 0.5
    bottom_band_start: float = 0.4
    top_band_sizes: tuple[int, int] = (200, 600_000)
    bottom_band_sizes: tuple[int, int] = (1_000, 700_000)
    min_band_regions: int = 4


@dataclass
class DetectorConfig:
    expected_count: int = 5
    time_budget: float | None = None
    white_level: int = 250
    min_density: float = 0.02
    crop_padding: int = 2
    # Baseline pass
    alpha_floor: int = 30
    min_pixels: int = 500
    max_pixels: int = 300_000
    separation_threshold: int = 3
    symbol_pixels: int = 100_000
    symbol_dominance: float = 1.5
    letter_pixels: int = 10_000
    max_regions: int = 10
    split_merged: bool = True
    split_min_pixels: int = 25_000
    split_part_min_pixels: int = 1_000
    fusion: FusionOptions = field(default_factory=_detector_fusion_options)
    legacy: LegacyOptions = field(default_factory=LegacyOptions)
    reconciliation: ReconciliationOptions = field(default_factory=ReconciliationOptions)


@dataclass
class ExtractionOptions:
    precision: Precision = Precision.SURGICAL
    edge_threshold: float = 100
    morphology_kernel: int = 3
    contour_simplification: float = 1.0
    alpha_feathering: float = 3
    background_removal: bool = True
    content_aware_fill: bool = True
    anti_aliasing: bool = True
    edge_smoothing: float = 2.0
    color_similarity_threshold: float = 15
    surgical_padding: int = 20
    standard_padding: int = 5
    alpha_floor: int = 30
    white_level: int = 250

    @property
    def padding(self) -> int:
        return self.surgical_padding if self.precision == Precision.SURGICAL else self.standard_padding


@dataclass
class SeparatorConfig:
    detector: DetectorConfig = field(default_factory=DetectorConfig)
    extraction: ExtractionOptions = field(default_factory=ExtractionOptions)


T = typing.TypeVar("T")


def _convert(hint, value, current):
    if typing.get_origin(hint) is tuple:
        return tuple(value)
    if dataclasses.is_dataclass(hint):
        if not isinstance(value, dict):
            raise ValueError(f"expected an object for {hint.__name__}, got {value!r}")
        return build_options(hint, value, current)
    if isinstance(hint, type) and issubclass(hint, enum.Enum):
        return hint(value)
    return value


def build_options(cls: type[T], data: dict, base: T | None = None) -> T:
    """
    Override fields of an options dataclass from a (possibly nested) dict.

    Fields missing from data keep their value in base, which defaults to
    cls(); nested sections start from base's own nested defaults.

    Raises:
        ValueError: On keys the dataclass does not define or bad enum values.
    """
    base = base if base is not None else cls()
    hints = typing.get_type_hints(cls)
    names = {f.name for f in dataclasses.fields(cls)}
    unknown = sorted(set(data) - names)
    if unknown:
        raise ValueError(f"unknown {cls.__name__} option(s): {', '.join(unknown)}")
    changes = {key: _convert(hints[key], value, getattr(base, key)) for key, value in data.items()}
    return dataclasses.replace(base, **changes)


def load_config(path: str | Path) -> SeparatorConfig:
    """
    Load a SeparatorConfig from a JSON file.

    Raises:
        ValueError: If the file is not valid JSON or contains unknown options.
    """
    with open(path, encoding="utf-8") as f:
        try:
            data = json.load(f)
        except json.JSONDecodeError as e:
            raise ValueError(f"invalid config file {path}: {e}") from e
    if not isinstance(data, dict):
        raise ValueError(f"config file {path} must contain a JSON object")
    config = build_options(SeparatorConfig, data)
    logger.debug("Loaded configuration from %s", path)
    return config
