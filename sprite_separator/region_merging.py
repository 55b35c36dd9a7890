"""
Bring an over-segmented result down to the expected sprite count.

Generated sheets put letters in the upper half and the main icon below
them, so fragments are folded by vertical band: a fragment in the lower
(icon) band most likely belongs to the icon.
"""

from __future__ import annotations

import logging
from itertools import combinations

from sprite_separator.config import ReconciliationOptions
from sprite_separator.sprite_segmentation import PixelRegion

logger = logging.getLogger(__name__)


def _in_letter_band(region: PixelRegion, image_height: int) -> bool:
    return region.center[1] < image_height / 2


def _fold_into_icon(kept: list[PixelRegion], region: PixelRegion, image_height: int) -> None:
    """Merge region into the largest kept icon-band region, or keep it alone if there is none."""
    icons = [i for i, k in enumerate(kept) if not _in_letter_band(k, image_height)]
    if not icons:
        kept.append(region)
        return
    target = max(icons, key=lambda i: kept[i].pixel_count)
    kept[target] = kept[target].merged(region)


def _closest_pair(regions: list[PixelRegion], image_height: int,
                  max_distance: float) -> tuple[int, int] | None:
    best_same, best_any = None, None
    for (i, a), (j, b) in combinations(enumerate(regions), 2):
        d = a.bounds.center_distance(b.bounds)
        if d >= max_distance:
            continue
        if best_any is None or d < best_any[0]:
            best_any = (d, i, j)
        if _in_letter_band(a, image_height) == _in_letter_band(b, image_height):
            if best_same is None or d < best_same[0]:
                best_same = (d, i, j)
    best = best_same or best_any
    return (best[1], best[2]) if best else None


def reconcile_regions(regions: list[PixelRegion], target: int, image_height: int,
                      options: ReconciliationOptions | None = None) -> list[PixelRegion]:
    """
    Merge or drop regions until at most `target` remain.

    Runs only when there are more regions than `target`. Every loop
    iteration removes one region, so the pass always terminates and never
    increases the count.
    """
    if len(regions) <= target:
        return list(regions)
    options = options or ReconciliationOptions()
    by_size = sorted(regions, key=lambda r: r.pixel_count, reverse=True)

    kept = [r for r in by_size if r.pixel_count > options.large_pixels]
    for region in by_size:
        if region.pixel_count > options.large_pixels:
            continue
        if region.pixel_count <= options.noise_pixels:
            logger.debug("Discarding %d px fragment at %s", region.pixel_count, region.bounds)
            continue
        if _in_letter_band(region, image_height):
            kept.append(region)
        else:
            _fold_into_icon(kept, region, image_height)

    if not kept:
        # Everything was noise-sized; fall back to the largest regions
        kept = by_size[:target]

    while len(kept) > target:
        pair = _closest_pair(kept, image_height, options.pair_merge_distance)
        if pair is None:
            break
        i, j = pair
        kept[i] = kept[i].merged(kept[j])
        del kept[j]

    while len(kept) > target:
        kept.sort(key=lambda r: r.pixel_count, reverse=True)
        smallest = kept.pop()
        kept[0] = kept[0].merged(smallest)

    logger.info("Reconciled %d region(s) down to %d (target %d)", len(regions), len(kept), target)
    return kept
