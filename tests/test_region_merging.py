"""
Tests for pixel-region segmentation helpers and count reconciliation.
"""

import numpy as np

from sprite_separator.config import ReconciliationOptions
from sprite_separator.geometry import BoundingBox
from sprite_separator.region_merging import reconcile_regions
from sprite_separator.sprite_segmentation import (
    PixelRegion,
    find_components,
    foreground_mask,
    merge_close_regions,
    merge_nearby_centers,
    merge_pixel_regions,
    remove_overlaps,
)


def _block(x, y, w, h, confidence=None):
    ys, xs = np.mgrid[y:y + h, x:x + w]
    return PixelRegion.from_coords(np.column_stack((ys.ravel(), xs.ravel())), confidence)


def _total_pixels(regions):
    return sum(r.pixel_count for r in regions)


def test_foreground_mask_ignores_transparent_and_white():
    pixels = np.zeros((1, 4, 4), dtype=np.uint8)
    pixels[0, 0] = (10, 10, 10, 255)     # opaque dark
    pixels[0, 1] = (255, 255, 255, 255)  # opaque white
    pixels[0, 2] = (10, 10, 10, 20)      # nearly transparent
    pixels[0, 3] = (255, 255, 100, 255)  # bright but not white
    assert foreground_mask(pixels, 30).tolist() == [[True, False, False, True]]
    assert foreground_mask(pixels, 30, white_level=None).tolist() == [[True, True, False, True]]


def test_find_components_size_filter_and_order():
    mask = np.zeros((50, 50), dtype=bool)
    mask[30:40, 5:15] = True   # 100 px, lower
    mask[5:10, 20:25] = True   # 25 px, upper
    mask[45, 45] = True        # 1 px
    regions = find_components(mask, min_size=10)
    assert [r.pixel_count for r in regions] == [25, 100]
    assert regions[0].bounds == BoundingBox(20, 5, 5, 5)
    assert regions[1].bounds == BoundingBox(5, 30, 10, 10)
    assert find_components(mask, min_size=10, max_size=50)[0].pixel_count == 25


def test_find_components_diagonal_pixels_connect():
    mask = np.eye(6, dtype=bool)
    assert len(find_components(mask)) == 1


def test_find_components_row_offset():
    mask = np.zeros((10, 10), dtype=bool)
    mask[2:4, 2:4] = True
    region = find_components(mask, row_offset=100)[0]
    assert region.bounds == BoundingBox(2, 102, 2, 2)
    assert region.coords[:, 0].min() == 102


def test_merge_pixel_regions_deduplicates_and_keeps_best_confidence():
    a = _block(0, 0, 10, 10, confidence=0.4)
    b = _block(5, 0, 10, 10, confidence=0.9)
    merged = merge_pixel_regions([a, b])
    assert merged.pixel_count == 150
    assert merged.bounds == BoundingBox(0, 0, 15, 10)
    assert merged.confidence == 0.9
    assert merge_pixel_regions([_block(0, 0, 2, 2), _block(5, 5, 2, 2)]).confidence is None


def test_merge_close_regions_uses_box_gap():
    far = [_block(0, 20, 60, 60), _block(70, 20, 60, 60)]
    near = [_block(0, 20, 60, 60), _block(61, 20, 60, 60)]
    assert len(merge_close_regions(far, 3)) == 2
    merged = merge_close_regions(near, 3)
    assert len(merged) == 1
    assert merged[0].pixel_count == 7200


def test_merge_close_regions_is_transitive():
    chain = [_block(0, 0, 10, 10), _block(12, 0, 10, 10), _block(24, 0, 10, 10)]
    merged = merge_close_regions(chain, 3)
    assert len(merged) == 1
    assert merged[0].bounds == BoundingBox(0, 0, 34, 10)


def test_merge_nearby_centers():
    regions = [_block(0, 0, 10, 10), _block(3, 3, 10, 10), _block(50, 50, 10, 10)]
    merged = merge_nearby_centers(regions, 5)
    assert sorted(r.pixel_count for r in merged) == [100, 100 + 100 - 49]


def test_remove_overlaps_keeps_larger_region():
    big = _block(0, 0, 20, 20)
    small = _block(15, 15, 10, 10)
    apart = _block(50, 50, 5, 5)
    kept = remove_overlaps([small, big, apart])
    assert [r.pixel_count for r in kept] == [400, 25]


def test_reconcile_is_noop_at_or_below_target():
    regions = [_block(0, 0, 60, 60), _block(100, 0, 60, 60)]
    for target in (2, 5):
        result = reconcile_regions(regions, target, 200)
        assert len(result) == 2
        assert all(a is b for a, b in zip(result, regions))


def test_reconcile_merges_letters_down_to_target():
    """Eight letter-sized squares become exactly five regions without losing pixels."""
    regions = [_block(x, 20, 60, 60) for x in range(0, 560, 70)]
    assert len(regions) == 8

    result = reconcile_regions(regions, 5, 200)

    assert len(result) == 5
    assert _total_pixels(result) == 8 * 3600


def test_reconcile_folds_icon_fragments_and_drops_noise():
    icon = _block(20, 90, 150, 110)          # 16500 px, lower band
    fragment = _block(300, 150, 50, 50)      # 2500 px, lower band
    letters = [_block(20, 10, 60, 60), _block(100, 10, 60, 60)]
    noise = _block(500, 10, 10, 10)

    result = reconcile_regions([fragment, noise, letters[0], icon, letters[1]], 3, 200)

    assert len(result) == 3
    largest = max(result, key=lambda r: r.pixel_count)
    assert largest.pixel_count == 16500 + 2500
    assert largest.bounds == BoundingBox(20, 90, 330, 110)
    assert sorted(r.pixel_count for r in result) == [3600, 3600, 19000]


def test_reconcile_falls_back_to_largest_when_everything_is_noise():
    regions = [_block(0, 0, 10, 10), _block(50, 0, 10, 15), _block(100, 0, 10, 20)]
    result = reconcile_regions(regions, 2, 200)
    assert sorted(r.pixel_count for r in result) == [150, 200]


def test_reconcile_forces_far_apart_regions_together():
    regions = [_block(0, 0, 60, 60), _block(400, 0, 60, 60), _block(800, 0, 50, 50)]
    options = ReconciliationOptions(noise_pixels=100)
    result = reconcile_regions(regions, 1, 1000, options)
    assert len(result) == 1
    assert result[0].pixel_count == 3600 + 3600 + 2500
