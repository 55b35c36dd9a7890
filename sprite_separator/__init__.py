"""
Sprite Separator

Splits a composite image (an icon with letters and decorations on a
transparent or plain background) into individual sprites with tight
bounding boxes and clean alpha-masked cutouts.

Public API:
    - separate_sprites: Main generator yielding sprite cutouts and debug images
    - detect_sprites: Detection only, returns a DetectionResult
    - ProcessedImage: Result object containing images with metadata
    - LayerExtractor: Precision extraction for a single approximate region
    - SeparatorConfig / load_config: Configuration
"""

from sprite_separator.api import ProcessedImage, detect_sprites, separate_sprites
from sprite_separator.config import SeparatorConfig, load_config
from sprite_separator.layer_extraction import LayerExtractor

__version__ = "0.1.0"
__all__ = [
    "separate_sprites",
    "detect_sprites",
    "ProcessedImage",
    "LayerExtractor",
    "SeparatorConfig",
    "load_config",
    "__version__",
]
