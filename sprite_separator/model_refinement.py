"""
Optional second opinion from a vision model.

The model is advisory only: it may raise or lower confidences but never
moves, adds or removes sprites. Any failure leaves the sprites untouched.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Protocol

from sprite_separator.image_io import RasterImage
from sprite_separator.sprite_types import FusedSprite

logger = logging.getLogger(__name__)

PROVENANCE_TAG = "model_refined"


@dataclass
class RefinementRequest:
    prompt: str
    sprites: list[FusedSprite]
    expected_count: int


@dataclass
class RefinementAdvice:
    """
    Confidence changes proposed by the model. Sprites not named in
    `adjustments` get `default_adjustment`, or the caller's default when unset.
    """
    adjustments: dict[str, float] = field(default_factory=dict)
    default_adjustment: float | None = None


class VisionModelRefiner(Protocol):
    def refine(self, image: RasterImage, request: RefinementRequest) -> RefinementAdvice:
        ...


def build_prompt(sprites: list[FusedSprite], expected_count: int) -> str:
    lines = [
        f"Analyze this image and refine the sprite detection results. "
        f"{len(sprites)} potential sprites were found; {expected_count} are expected.",
        "",
        "Current detections:",
    ]
    for i, sprite in enumerate(sprites, start=1):
        b = sprite.bounds
        lines.append(f"{i}. {sprite.type.value} at ({b.x}, {b.y}) size {b.width}x{b.height} "
                     f"confidence {sprite.confidence * 100:.1f}%")
    lines += [
        "",
        "For each detection, report whether it is a distinct visual element, "
        "and how much its confidence should change.",
    ]
    return "\n".join(lines)


def apply_model_refinement(
    image: RasterImage,
    sprites: list[FusedSprite],
    refiner: VisionModelRefiner,
    expected_count: int,
    default_adjustment: float = 0.1,
) -> list[FusedSprite]:
    """
    Ask the refiner about the sprites and apply its confidence adjustments.

    Returns new FusedSprite objects with clamped confidences and the
    `model_refined` provenance tag; on any refiner error the input list is
    returned unchanged.
    """
    request = RefinementRequest(
        prompt=build_prompt(sprites, expected_count),
        sprites=list(sprites),
        expected_count=expected_count,
    )
    try:
        advice = refiner.refine(image, request)
    except Exception:
        logger.warning("Vision model refinement failed, keeping unrefined sprites", exc_info=True)
        return sprites

    default = advice.default_adjustment if advice.default_adjustment is not None else default_adjustment
    refined = []
    for sprite in sprites:
        delta = advice.adjustments.get(sprite.id, default)
        refined.append(replace(
            sprite,
            confidence=min(1.0, max(0.0, sprite.confidence + delta)),
            source_algorithms=sprite.source_algorithms + [PROVENANCE_TAG],
        ))
    logger.info("Vision model refined %d sprite(s)", len(refined))
    return refined
