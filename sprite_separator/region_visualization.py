"""
Functions for visualizing detected sprite regions on images.
"""

import cv2
import numpy as np

from sprite_separator.sprite_types import DetectedSprite, SpriteType

# BGR colours per sprite type
TYPE_COLORS = {
    SpriteType.SYMBOL: (255, 0, 255),     # Magenta
    SpriteType.LETTER: (0, 160, 0),       # Green
    SpriteType.OBJECT: (255, 128, 0),     # Blue-ish
    SpriteType.DECORATION: (0, 128, 255), # Orange
}


def composite_on_white(img: np.ndarray) -> np.ndarray:
    """Alpha-blend a BGRA image onto a white background; BGR input is copied."""
    if img.shape[2] != 4:
        return img.copy()
    bg = np.ones((img.shape[0], img.shape[1], 3), dtype=np.uint8) * 255
    alpha = img[:, :, 3:4].astype(float) / 255
    return (img[:, :, :3] * alpha + bg * (1 - alpha)).astype(np.uint8)


def visualize_regions(img: np.ndarray, sprites: list[DetectedSprite],
                      output_path: str | None = None) -> np.ndarray:
    """
    Draw each sprite's bounding box and label over the image.

    Args:
        img: Input image (BGR or BGRA)
        sprites: Detected sprites
        output_path: Path to save the visualization (optional)

    Returns:
        BGR image with boxes and labels
    """
    vis_img = composite_on_white(img)
    font = cv2.FONT_HERSHEY_SIMPLEX

    for sprite in sprites:
        b = sprite.bounds
        color = TYPE_COLORS[sprite.type]
        cv2.rectangle(vis_img, (b.x, b.y), (b.x2 - 1, b.y2 - 1), color, 1)
        label = f"{sprite.id} {sprite.type.value} {sprite.confidence:.2f}"
        cv2.putText(vis_img, label, (b.x, max(10, b.y - 3)), font, 0.35, color, 1)

    if output_path:
        cv2.imwrite(output_path, vis_img)

    return vis_img


def visualize_mask(mask: np.ndarray) -> np.ndarray:
    """Boolean mask as a black-on-white BGR image."""
    vis = np.full((mask.shape[0], mask.shape[1], 3), 255, dtype=np.uint8)
    vis[mask] = 0
    return vis
