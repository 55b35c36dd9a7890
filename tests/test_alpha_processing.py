"""
Tests for alpha feathering, anti-aliasing, fill and edge smoothing.
"""

import numpy as np

from sprite_separator.alpha_processing import (
    anti_alias,
    clean_edge_mask,
    content_aware_fill,
    feather_alpha,
    gaussian_kernel_2d,
    smooth_edges,
)


def _square_mask(size=40, inner=(10, 30)):
    mask = np.zeros((size, size), dtype=np.uint8)
    mask[inner[0]:inner[1], inner[0]:inner[1]] = 255
    return mask


def test_feather_radius_zero_is_identity():
    mask = _square_mask()
    result = feather_alpha(mask, 0)
    assert np.array_equal(result, mask)
    assert result is not mask


def test_feather_keeps_opaque_mask_opaque():
    """Image borders do not darken."""
    mask = np.full((20, 30), 255, dtype=np.uint8)
    assert np.all(feather_alpha(mask, 3) == 255)


def test_feather_softens_edges_but_keeps_coverage():
    mask = _square_mask()
    feathered = feather_alpha(mask, 3)
    assert feathered[20, 20] == 255, "Centre stays opaque"
    assert 0 < feathered[20, 9] < 128, "Just outside the edge becomes partly transparent"
    assert feathered[20, 10] > 128, "Just inside the edge stays mostly opaque"
    # Pixel coverage shrinks only at the corners
    assert abs(np.count_nonzero(feathered > 128) - 400) <= 40


def test_gaussian_kernel_size_and_normalisation():
    kernel = gaussian_kernel_2d(2.0)
    assert kernel.shape == (13, 13)
    assert np.isclose(kernel.sum(), 1.0)


def test_anti_alias_keeps_border_and_uniform_areas():
    alpha = _square_mask()
    alpha[0, :] = 255
    result = anti_alias(alpha)
    assert np.array_equal(result[0, :], alpha[0, :]), "Border row is not filtered"
    assert result[20, 20] == 255
    assert result[5, 5] == 0
    assert 0 < result[20, 10] < 255


def test_content_aware_fill_recolours_only_near_background():
    rgb = np.zeros((20, 20, 3), dtype=np.uint8)
    alpha = np.zeros((20, 20), dtype=np.uint8)
    rgb[5:15, 5:15] = (200, 40, 10)
    alpha[5:15, 5:15] = 255

    filled = content_aware_fill(rgb, alpha)

    assert tuple(filled[10, 4]) == (200, 40, 10), "Adjacent background takes the sprite colour"
    assert tuple(filled[10, 3]) == (200, 40, 10), "Two pixels away is still filled"
    assert tuple(filled[10, 1]) == (0, 0, 0), "Far background is untouched"
    assert np.array_equal(filled[5:15, 5:15], rgb[5:15, 5:15]), "Foreground is untouched"


def test_content_aware_fill_beyond_window_uses_nearest_colour():
    rgb = np.zeros((30, 30, 3), dtype=np.uint8)
    alpha = np.zeros((30, 30), dtype=np.uint8)
    rgb[10:20, 10:20] = (10, 200, 30)
    alpha[10:20, 10:20] = 255

    filled = content_aware_fill(rgb, alpha, reach=6)

    assert tuple(filled[15, 4]) == (10, 200, 30), "Six pixels away has no window source but is filled"
    assert tuple(filled[15, 3]) == (0, 0, 0), "Beyond the reach is untouched"


def test_smooth_edges_leaves_opaque_image_unchanged():
    rgba = np.zeros((30, 30, 4), dtype=np.uint8)
    rgba[:, :, 0] = np.arange(30, dtype=np.uint8)[None, :] * 8
    rgba[:, :, 3] = 255
    assert np.array_equal(smooth_edges(rgba, 2.0), rgba)


def test_smooth_edges_only_touches_semi_transparent_interior():
    rgba = np.zeros((40, 40, 4), dtype=np.uint8)
    rgba[:, 20:, :3] = 255
    rgba[:, :, 3] = 255
    rgba[20, 20, 3] = 128
    result = smooth_edges(rgba, 1.0)
    changed = np.argwhere(np.any(result != rgba, axis=2))
    assert [tuple(p) for p in changed] == [(20, 20)]


def test_clean_edge_mask_removes_specks_and_keeps_strokes():
    edges = np.zeros((20, 20), dtype=np.uint8)
    edges[3, 3] = 255                    # isolated speck
    edges[10, 2:12] = 255                # horizontal stroke
    for i in range(6):                   # diagonal stroke
        edges[12 + i, 12 + i] = 255

    cleaned = clean_edge_mask(edges, 3)

    assert cleaned[3, 3] == 0
    assert np.all(cleaned[10, 2:12] == 255)
    assert all(cleaned[12 + i, 12 + i] == 255 for i in range(6))
    assert np.count_nonzero(cleaned) == 16
