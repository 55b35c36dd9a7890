#!/usr/bin/env python3
"""
Functions for saving sprite cutouts as individual images or as a spritesheet,
together with a JSON file describing each layer.
"""

import json
import logging
from pathlib import Path

import cv2
import numpy as np

from sprite_separator.sprite_types import ExtractedLayerData

logger = logging.getLogger(__name__)


def save_individual_sprites(
    sprites: list[np.ndarray],
    output_path: str,
    names: list[str] | None = None
) -> list[Path]:
    """
    Save each sprite as an individual PNG file next to output_path.

    Args:
        sprites: List of BGRA sprite images
        output_path: Base path for the output files; its stem prefixes every file name
        names: Optional per-sprite names, default sprite_<index>

    Returns:
        Paths of the written files
    """
    output_dir = Path(output_path).parent
    output_dir.mkdir(parents=True, exist_ok=True)

    written = []
    for i, sprite in enumerate(sprites):
        name = names[i] if names else f"sprite_{i}"
        sprite_path = output_dir / f"{Path(output_path).stem}_{name}.png"
        if not cv2.imwrite(str(sprite_path), sprite):
            raise OSError(f"Could not write {sprite_path}")
        written.append(sprite_path)
    return written


def create_spritesheet(
    sprites: list[np.ndarray],
    output_path: str,
    border_size: int = 2
) -> Path | None:
    """
    Create a single spritesheet containing all sprites with transparent borders.

    Args:
        sprites: List of BGRA sprite images
        output_path: Base path; the sheet is written as <stem>_spritesheet.png
        border_size: Size of the transparent border between sprites (default: 2)

    Returns:
        Path of the spritesheet, or None if there were no sprites
    """
    if not sprites:
        return None

    max_width = max(sprite.shape[1] for sprite in sprites)
    max_height = max(sprite.shape[0] for sprite in sprites)

    # Aim for a roughly square grid of cells
    num_sprites = len(sprites)
    num_cols = max(1, int(np.sqrt(num_sprites)))
    num_rows = (num_sprites + num_cols - 1) // num_cols

    sheet_width = num_cols * (max_width + border_size) + border_size
    sheet_height = num_rows * (max_height + border_size) + border_size
    spritesheet = np.zeros((sheet_height, sheet_width, 4), dtype=np.uint8)

    for i, sprite in enumerate(sprites):
        row, col = divmod(i, num_cols)
        y_pos = row * (max_height + border_size) + border_size + (max_height - sprite.shape[0]) // 2
        x_pos = col * (max_width + border_size) + border_size + (max_width - sprite.shape[1]) // 2
        spritesheet[y_pos:y_pos + sprite.shape[0], x_pos:x_pos + sprite.shape[1]] = sprite

    output_dir = Path(output_path).parent
    output_dir.mkdir(parents=True, exist_ok=True)
    spritesheet_path = output_dir / f"{Path(output_path).stem}_spritesheet.png"
    if not cv2.imwrite(str(spritesheet_path), spritesheet):
        raise OSError(f"Could not write {spritesheet_path}")
    return spritesheet_path


def save_layer_metadata(layers: list[ExtractedLayerData], output_path: str) -> Path:
    """Write <stem>_layers.json describing every extracted layer."""
    output_dir = Path(output_path).parent
    output_dir.mkdir(parents=True, exist_ok=True)
    metadata_path = output_dir / f"{Path(output_path).stem}_layers.json"
    with open(metadata_path, "w", encoding="utf-8") as f:
        json.dump({"layers": [layer.to_dict() for layer in layers]}, f, indent=2)
    logger.debug("Wrote metadata for %d layer(s) to %s", len(layers), metadata_path)
    return metadata_path


def save_sprites(
    sprites: list[np.ndarray],
    output_path: str,
    create_sheet: bool = False,
    border_size: int = 2,
    names: list[str] | None = None
) -> list[Path]:
    """
    Save sprites either as individual files or as a spritesheet.

    Args:
        sprites: List of BGRA sprite images
        output_path: Base path for output
        create_sheet: If True, create a spritesheet instead of individual files
        border_size: Size of transparent border in spritesheet (default: 2)
        names: Optional per-sprite names for individual files

    Returns:
        Paths of the written image files
    """
    if create_sheet:
        sheet = create_spritesheet(sprites, output_path, border_size)
        return [sheet] if sheet else []
    return save_individual_sprites(sprites, output_path, names)
