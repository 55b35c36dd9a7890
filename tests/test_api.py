"""
End-to-end tests for the sprite_separator library API.

Tests that the library can be used programmatically to separate images
without using the CLI.
"""

import numpy as np
import pytest

from sprite_separator import ProcessedImage, SeparatorConfig, detect_sprites, separate_sprites
from sprite_separator.sprite_types import DetectionStatus, DetectionStrategy


def _example_image(with_alpha=True):
    """Four letter-sized squares and a larger icon on a transparent (or white) background."""
    image = np.zeros((100, 400, 4), dtype=np.uint8)
    if not with_alpha:
        image[:, :] = (255, 255, 255, 255)
    for x in (0, 70, 140, 210):
        image[20:80, x:x + 60] = (40, 40, 200, 255)   # BGR red
    image[10:90, 280:380] = (200, 60, 30, 255)        # BGR blue
    return image if with_alpha else image[:, :, :3].copy()


def _foreground(image):
    if image.shape[2] == 4:
        return image[:, :, 3] > 30
    return ~np.all(image > 250, axis=2)


def test_separate_sprites_basic():
    """Test basic separation with a raw numpy array."""
    image = _example_image()

    results = list(separate_sprites(image, expected_count=5))

    sprites = [r for r in results if not r.is_debug]
    debug_images = [r for r in results if r.is_debug]

    assert len(debug_images) == 0, "Should not get debug images without debug=True"
    assert len(sprites) == 5, "Should extract all five sprites"

    for result in sprites:
        assert isinstance(result, ProcessedImage), "Result should be ProcessedImage"
        assert result.image.dtype == np.uint8, "Sprite should be uint8"
        assert result.image.shape[2] == 4, "Sprite should be BGRA (4 channels)"

        # bbox is (y1, y2, x1, x2) and matches the sprite image size
        y1, y2, x1, x2 = result.bbox
        assert 0 <= y1 < y2 <= image.shape[0], "y range should be inside the image"
        assert 0 <= x1 < x2 <= image.shape[1], "x range should be inside the image"
        assert result.image.shape[:2] == (y2 - y1, x2 - x1), "Sprite size should match bbox"

        assert result.name.startswith("sprite_"), "Sprite name should start with 'sprite_'"
        assert result.layer is not None, "Sprite should carry its extraction record"
        assert result.metadata["pixel_count"] == result.layer.metadata.pixel_count


def test_separate_sprites_standard_precision_boxes():
    """Standard precision boxes hug each shape within one pixel."""
    image = _example_image()
    sprites = [r for r in separate_sprites(image, expected_count=5, precision="standard")
               if not r.is_debug]

    assert sprites[0].bbox == (9, 91, 279, 381)
    for sprite, x in zip(sprites[1:], (0, 70, 140, 210)):
        assert sprite.bbox == (19, 81, max(0, x - 1), x + 61)
        assert sprite.metadata["type"] == "letter"
    assert sprites[0].metadata["type"] == "symbol"
    assert all(s.layer.metadata.extraction_method == "sobel-standard" for s in sprites)


def test_union_of_sprites_covers_foreground():
    """Pasting every sprite's opaque pixels back reproduces the source foreground."""
    image = _example_image()
    foreground = _foreground(image)

    covered = np.zeros(foreground.shape, dtype=bool)
    for result in separate_sprites(image, expected_count=5):
        if result.is_debug:
            continue
        y1, y2, x1, x2 = result.bbox
        covered[y1:y2, x1:x2] |= result.image[:, :, 3] > 128

    iou = np.count_nonzero(covered & foreground) / np.count_nonzero(covered | foreground)
    assert iou > 0.95, f"Union coverage IoU too low: {iou:.3f}"


def test_separate_sprites_debug_images():
    """Debug mode yields the mask, the region overview and one crop per sprite."""
    image = _example_image()
    results = list(separate_sprites(image, expected_count=5, debug=True))

    names = [r.name for r in results if r.is_debug]
    assert names[:2] == ["debug_foreground_mask", "debug_detected_regions"]
    assert [n for n in names if n.endswith("_crop")] == [f"debug_sprite_{i}_crop" for i in range(5)]
    overview = results[1]
    assert overview.image.shape == (100, 400, 3), "Overview should be BGR at source size"
    assert overview.metadata == {"num_sprites": 5, "strategy": "baseline"}

    sprites = [r for r in results if not r.is_debug]
    assert len(sprites) == 5, "Debug mode should not change the sprites"


def test_separate_sprites_bgr_input():
    """Test that BGR images (without alpha) are handled correctly."""
    image = _example_image(with_alpha=False)
    assert image.shape[2] == 3, "Image should be BGR (3 channels)"

    sprites = [r for r in separate_sprites(image, expected_count=5) if not r.is_debug]

    assert len(sprites) == 5, "White background should not become a sprite"
    assert sprites[0].image.shape[2] == 4, "Output should still be BGRA"


def test_separate_sprites_invalid_input():
    """Test that invalid inputs raise appropriate errors."""
    with pytest.raises(ValueError, match="image.*None"):
        list(separate_sprites(None))  # type: ignore

    with pytest.raises(ValueError, match="shape"):
        list(separate_sprites(np.zeros((10, 10), dtype=np.uint8)))  # 2D array, needs 3D

    with pytest.raises(ValueError, match="uint8"):
        list(separate_sprites(np.zeros((10, 10, 4), dtype=np.float32)))

    with pytest.raises(ValueError):
        list(separate_sprites(_example_image(), precision="sloppy"))


def test_empty_image_yields_no_sprites():
    image = np.zeros((50, 50, 4), dtype=np.uint8)
    assert [r for r in separate_sprites(image) if not r.is_debug] == []

    debug = list(separate_sprites(image, debug=True))
    assert [r.name for r in debug] == ["debug_foreground_mask", "debug_detected_regions"]


def test_sprite_result_in_order():
    """Test that sprites are returned top-to-bottom, then left-to-right."""
    image = _example_image()
    sprites = [r for r in separate_sprites(image, expected_count=5, precision="standard")
               if not r.is_debug]

    keys = [(r.layer.refined_pixel_bounds.y, r.layer.refined_pixel_bounds.x) for r in sprites]
    assert keys == sorted(keys), "Sprites should be in reading order"
    assert [r.metadata["sprite_index"] for r in sprites] == list(range(len(sprites)))


def test_detect_sprites_only():
    result = detect_sprites(_example_image(), expected_count=5)
    assert result.status == DetectionStatus.DETECTED
    assert result.strategy == DetectionStrategy.BASELINE
    assert len(result.sprites) == 5


def test_time_budget_is_enforced():
    result = detect_sprites(_example_image(), time_budget=0.0)
    assert result.status == DetectionStatus.NO_SPRITES
    assert all("budget" in a.error for a in result.attempts)


def test_config_is_used():
    config = SeparatorConfig()
    config.detector.expected_count = 1
    config.detector.min_pixels = 5000
    sprites = [r for r in separate_sprites(_example_image(), config=config) if not r.is_debug]
    assert len(sprites) == 1, "Only the icon passes the larger minimum size"
    assert sprites[0].metadata["type"] == "symbol"
